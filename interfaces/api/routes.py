"""
Clarify REST API: /api/chat/

Server-side boundary for the clarification LLM. The browser never talks
to the model directly: it posts the user input and the frozen option list
here, and the response it gets back has already been validated and, if
needed, downgraded by validate_llm_response.

Shared objects (config, LLM client, routing log) are read from
``request.app.state`` so this module has no import-time dependencies on
the server.

Auth: optional API key via ``X-API-Key`` header. Set ``api.api_key`` in
config/settings.toml or the ``CLARIFY_API_KEY`` env var. Empty key = open access.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, ConfigDict, Field

from clarify.llm_fallback import ClarificationLLMRequest
from clarify.models import ClarificationOption

logger = logging.getLogger("clarify.api")

# ---------------------------------------------------------------------------
# Auth dependency
# ---------------------------------------------------------------------------

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Depends(_api_key_header),
):
    """Check X-API-Key against the configured key.

    If the configured key is empty (default), auth is disabled and all
    requests are allowed through. When a key is set, requests without
    a matching header receive 403.
    """
    configured_key: str = request.app.state.config.api.api_key
    if not configured_key:
        return  # open access
    if api_key != configured_key:
        raise HTTPException(status_code=403, detail="Invalid or missing API key")


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

router = APIRouter(
    prefix="/api/chat",
    dependencies=[Depends(verify_api_key)],
)


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class OptionIn(BaseModel):
    id: str
    label: str
    type: str = "option"
    sublabel: Optional[str] = None


class ClarificationLLMIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_input: str = Field(alias="userInput")
    options: list[OptionIn]
    context: str = ""
    preferred_candidate_id: Optional[str] = Field(default=None, alias="preferredCandidateId")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/clarification-llm")
async def clarification_llm(body: ClarificationLLMIn, request: Request):
    """Ask the clarification model which option the user meant.

    Always answers 200 with the LLMCallResult envelope; timeouts, rate
    limits and malformed model output show up as success=false or as a
    downgraded decision, never as a server error.
    """
    if not body.user_input.strip() or not body.options:
        raise HTTPException(status_code=400, detail="userInput and options are required")

    llm_request = ClarificationLLMRequest(
        user_input=body.user_input,
        options=tuple(
            ClarificationOption(id=o.id, label=o.label, type=o.type, sublabel=o.sublabel)
            for o in body.options
        ),
        context=body.context,
        preferred_candidate_id=body.preferred_candidate_id,
    )
    result = await request.app.state.llm_client.call(llm_request)

    routing_log = request.app.state.routing_log
    if result.success:
        routing_log.info("llm", "api_call", decision=result.response.decision,
                         choice_id=result.response.choice_id, latency_ms=result.latency_ms)
    else:
        routing_log.warn("llm", "api_call_failed", error=result.error, latency_ms=result.latency_ms)
    return result.to_dict()


@router.get("/routing-log")
async def get_routing_log(request: Request, count: int = 100):
    """Most recent routing decisions, oldest first."""
    routing_log = request.app.state.routing_log
    return {"events": routing_log.get_recent(count), "count": routing_log.count}
