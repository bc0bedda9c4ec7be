"""
Clarify API Server

FastAPI app hosting the clarification LLM endpoint.

Run with:
    uvicorn interfaces.api.server:app --host 127.0.0.1 --port 8090 --reload
"""

import logging

from fastapi import FastAPI

from clarify.config import ClarifyConfig, FeatureFlags, LLMSettings, Thresholds, get_config
from clarify.llm_fallback import ClarificationLLMClient
from clarify.routing_log import RoutingLog
from interfaces.api.routes import router as api_router

logger = logging.getLogger("clarify.server")


def create_app(config: ClarifyConfig | None = None, llm_client=None) -> FastAPI:
    """Build the app with its shared state on app.state.

    llm_client defaults to a ClarificationLLMClient configured from config;
    tests pass a stub with the same `async call(request)` method.
    """
    config = config or get_config()
    if llm_client is None:
        llm_client = ClarificationLLMClient(
            settings=LLMSettings.from_config(config),
            thresholds=Thresholds.from_config(config),
            flags=FeatureFlags.from_config(config),
        )

    app = FastAPI(title="Clarify API")
    app.state.config = config
    app.state.llm_client = llm_client
    app.state.routing_log = RoutingLog(max_events=int(config.routing_log.max_events))
    app.include_router(api_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    logger.info("Clarify API ready (model=%s)", config.llm.model)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    config = get_config()
    uvicorn.run(app, host=config.api.host, port=int(config.api.port))
