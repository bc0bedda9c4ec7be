"""
Clarify: chat clarification arbitration

Decides what a reply to a clarifier means:
    - Classifiers:   ordinal / command / question / exit / scope-cue detection
    - Continuity:    deterministic tie-break from options already ruled out
    - Arbitration:   bounded LLM fallback with a single enrichment retry
    - Intercept:     per-turn sequencing over an injected ClarificationHost
"""

from clarify.arbitration import BoundedArbitrationLoop
from clarify.config import FeatureFlags, Thresholds, get_config
from clarify.intercept import (
    ClarificationHost,
    ClarificationInterceptHandler,
    InterceptContext,
    InterceptResult,
)
from clarify.llm_fallback import ClarificationLLMClient
from clarify.models import (
    ArbitrationResult,
    ClarificationOption,
    FallbackReason,
    LastClarificationState,
    Scope,
    SelectionContinuityState,
)

__all__ = [
    "ArbitrationResult",
    "BoundedArbitrationLoop",
    "ClarificationHost",
    "ClarificationInterceptHandler",
    "ClarificationLLMClient",
    "ClarificationOption",
    "FallbackReason",
    "FeatureFlags",
    "InterceptContext",
    "InterceptResult",
    "LastClarificationState",
    "Scope",
    "SelectionContinuityState",
    "Thresholds",
    "get_config",
]
