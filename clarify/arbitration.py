"""
Clarify Bounded Arbitration Loop

One resolution attempt per user input, with at most one retry:

    deterministic label match -> LLM (attempt 1) -> enrichment retry (attempt 2) -> safe clarifier

Hard exits, checked in order before any LLM call:
    question_intent   the input is a question; downstream handlers answer it
    feature_disabled  the LLM fallback flag is off
    loop_guard*       same canonical input and same candidates as the previous
                      cycle; the stored suggestion is reused, never recomputed

The candidate list is frozen for the whole cycle. Both LLM attempts see
the same options; only the context string differs, with the retry
appending an "enriched_evidence" block.

Every outcome is an ArbitrationResult. Nothing raises out of run(): LLM
failures arrive as LLMCallResult(success=False) and are mapped to a
FallbackReason.

Usage:
    from clarify.arbitration import BoundedArbitrationLoop

    loop = BoundedArbitrationLoop(llm_client=client, flags=flags)
    result = await loop.run(
        text="the links one",
        candidates=clarification.options,
        scope=Scope.CHAT,
        enrichment=create_enrichment_callback(Scope.CHAT, sources),
    )
"""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Protocol, Sequence

from clarify.classifiers import (
    AmbiguityReason,
    canonicalize_command_input,
    classify_arbitration_confidence,
    is_explicit_command,
    is_new_question_or_command,
    is_question_input,
)
from clarify.config import FeatureFlags, Thresholds
from clarify.enrichment import (
    EnrichmentCallback,
    compute_evidence_fingerprint,
    format_enriched_context,
)
from clarify.label_matching import match_label
from clarify.llm_fallback import ClarificationLLMRequest, LLMCallResult
from clarify.models import ArbitrationResult, ClarificationOption, FallbackReason, Scope
from clarify.routing_log import RoutingLog

logger = logging.getLogger("clarify.arbitration")


# Only these ambiguity reasons may auto-execute an LLM pick
AUTO_EXECUTE_ALLOWED_REASONS = frozenset({AmbiguityReason.NO_DETERMINISTIC_MATCH})

_DOWNGRADE_REASONS = {
    "contract_version_mismatch": FallbackReason.CONTRACT_VERSION_MISMATCH,
    "invalid_needed_context": FallbackReason.INVALID_NEEDED_CONTEXT,
}


class ClarificationLLM(Protocol):
    async def call(self, request: ClarificationLLMRequest) -> LLMCallResult: ...


@dataclass
class LoopGuardState:
    """What the previous cycle asked and what it settled on."""
    normalized_input: str
    candidate_ids: str
    suggested_id: str | None = None
    retry_attempted: bool = False
    enrichment_fingerprint: str | None = None


@dataclass(frozen=True)
class _Attempt:
    result: ArbitrationResult
    requested_context: bool = False
    needed_context: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Fallback mapping
# ---------------------------------------------------------------------------

def fallback_reason_for(llm_result: LLMCallResult, min_confidence_select: float) -> FallbackReason:
    """Map an unresolved LLM outcome to its typed reason.

    Server downgrade reasons are propagated verbatim and take precedence
    over the generic decision mapping.
    """
    if not llm_result.success:
        error = llm_result.error or ""
        if error == "Timeout":
            return FallbackReason.TIMEOUT
        if "429" in error:
            return FallbackReason.RATE_LIMITED
        return FallbackReason.TRANSPORT_ERROR

    response = llm_result.response
    if response is None:
        return FallbackReason.TRANSPORT_ERROR
    downgrade = _DOWNGRADE_REASONS.get(response.downgrade_reason or "")
    if downgrade is not None:
        return downgrade
    if response.confidence < min_confidence_select or response.decision == "ask_clarify":
        return FallbackReason.ABSTAIN
    if response.decision == "reroute":
        return FallbackReason.REROUTE
    if response.decision == "none":
        return FallbackReason.NONE_MATCH
    return FallbackReason.LOW_CONFIDENCE


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------

class BoundedArbitrationLoop:
    """Per-session arbitration orchestrator.

    Owns the loop guard for its conversation. Call reset_guard() on a
    cycle boundary (clarification resolved, chat cleared).

    Args:
        llm_client:   Anything with `async call(request) -> LLMCallResult`.
        flags:        Feature switches, fixed for the life of the loop.
        thresholds:   Confidence cut-offs.
        routing_log:  Decision log; a private one is created when omitted.
    """

    def __init__(
        self,
        llm_client: ClarificationLLM,
        flags: FeatureFlags | None = None,
        thresholds: Thresholds | None = None,
        routing_log: RoutingLog | None = None,
    ):
        self.llm_client = llm_client
        self.flags = flags or FeatureFlags()
        self.thresholds = thresholds or Thresholds()
        self.routing_log = routing_log or RoutingLog()
        self._guard: LoopGuardState | None = None

    # -------------------------------------------------------------------
    # Guard
    # -------------------------------------------------------------------

    @property
    def guard(self) -> LoopGuardState | None:
        return self._guard

    def reset_guard(self):
        self._guard = None

    # -------------------------------------------------------------------
    # Single attempt
    # -------------------------------------------------------------------

    async def _attempt(
        self,
        text: str,
        candidates: tuple[ClarificationOption, ...],
        context: str,
        match_count: int,
        exact_match_count: int,
        enriched_context: str | None = None,
        preferred_candidate_id: str | None = None,
    ) -> _Attempt:
        confidence = classify_arbitration_confidence(
            match_count=match_count,
            exact_match_count=exact_match_count,
            input_is_explicit_command=is_explicit_command(text),
            is_new_question_or_command=is_new_question_or_command(text),
            candidates=candidates,
            has_active_option_context=True,
        )
        if not confidence.llm_eligible:
            return _Attempt(ArbitrationResult(
                attempted=False, fallback_reason=FallbackReason.CLASSIFIER_NOT_ELIGIBLE,
            ))

        normalized = canonicalize_command_input(text) or text.strip()
        candidate_ids = ",".join(sorted(c.id for c in candidates))
        guard = self._guard
        if guard and guard.normalized_input == normalized and guard.candidate_ids == candidate_ids:
            reason = FallbackReason.LOOP_GUARD_CONTINUITY if guard.suggested_id else FallbackReason.LOOP_GUARD
            self.routing_log.info("arbitration", "loop_guard_hit", input=text,
                                  suggested_id=guard.suggested_id, reason=reason)
            return _Attempt(ArbitrationResult(
                attempted=False, suggested_id=guard.suggested_id, fallback_reason=reason,
            ))

        llm_context = f"{context}; enriched_evidence: {enriched_context}" if enriched_context else context
        llm_result = await self.llm_client.call(ClarificationLLMRequest(
            user_input=text,
            options=candidates,
            context=llm_context,
            preferred_candidate_id=preferred_candidate_id,
        ))
        response = llm_result.response if llm_result.success else None
        llm_confidence = response.confidence if response else 0.0

        if (
            response is not None
            and response.decision == "select"
            and response.choice_id
            and llm_confidence >= self.thresholds.min_confidence_select
        ):
            self._guard = LoopGuardState(normalized, candidate_ids, suggested_id=response.choice_id)
            auto_execute = (
                self.flags.auto_execute_enabled
                and llm_confidence >= self.thresholds.auto_execute_confidence
                and confidence.ambiguity_reason in AUTO_EXECUTE_ALLOWED_REASONS
            )
            self.routing_log.info(
                "arbitration", "llm_select", input=text, suggested_id=response.choice_id,
                confidence=llm_confidence, ambiguity_reason=confidence.ambiguity_reason,
                auto_execute=auto_execute, latency_ms=llm_result.latency_ms,
            )
            return _Attempt(ArbitrationResult(
                attempted=True, suggested_id=response.choice_id, auto_execute=auto_execute,
            ))

        self._guard = LoopGuardState(normalized, candidate_ids)

        if response is not None and response.decision == "request_context":
            self.routing_log.info("arbitration", "llm_request_context", input=text,
                                  needed_context=response.needed_context)
            return _Attempt(
                ArbitrationResult(attempted=True),
                requested_context=True,
                needed_context=response.needed_context,
            )

        reason = fallback_reason_for(llm_result, self.thresholds.min_confidence_select)
        self.routing_log.warn(
            "arbitration", "llm_fallback", input=text, reason=reason,
            decision=response.decision if response else None,
            error=llm_result.error, latency_ms=llm_result.latency_ms,
        )
        return _Attempt(ArbitrationResult(attempted=True, fallback_reason=reason))

    # -------------------------------------------------------------------
    # Full cycle
    # -------------------------------------------------------------------

    async def run(
        self,
        text: str,
        candidates: Sequence[ClarificationOption],
        scope: Scope | str = Scope.CHAT,
        enrichment: EnrichmentCallback | None = None,
        context: str = "clarification_unresolved",
        preferred_candidate_id: str | None = None,
    ) -> ArbitrationResult:
        """Run one arbitration cycle for text against the frozen candidates."""
        frozen = tuple(candidates)
        scope = Scope(scope)
        text = text.strip()

        if is_question_input(text):
            self.routing_log.info("arbitration", "question_bypass", input=text)
            return ArbitrationResult(attempted=False, fallback_reason=FallbackReason.QUESTION_INTENT)
        if not self.flags.llm_fallback_enabled:
            return ArbitrationResult(attempted=False, fallback_reason=FallbackReason.FEATURE_DISABLED)

        match = match_label(text, frozen)
        if match.is_unique:
            self.routing_log.info("arbitration", "deterministic_match", input=text,
                                  option_id=match.option.id, kind=match.kind)
            return ArbitrationResult(attempted=False, suggested_id=match.option.id, auto_execute=True)

        self.routing_log.info("arbitration", "loop_started", input=text, scope=scope,
                              candidate_count=len(frozen))
        first = await self._attempt(
            text, frozen, context, match.match_count, match.exact_match_count,
            preferred_candidate_id=preferred_candidate_id,
        )

        if first.result.resolved or not first.result.attempted:
            return first.result

        if not first.requested_context:
            return replace(first.result, fallback_reason=first.result.fallback_reason or FallbackReason.ABSTAIN)

        if not self.flags.context_retry_enabled:
            self.routing_log.info("arbitration", "retry_skipped", input=text,
                                  reason=FallbackReason.RETRY_FEATURE_DISABLED)
            return ArbitrationResult(attempted=True, fallback_reason=FallbackReason.RETRY_FEATURE_DISABLED)

        enriched = None
        if enrichment is not None:
            enriched = enrichment(first.needed_context)
            if asyncio.iscoroutine(enriched):
                enriched = await enriched
        if enriched is None:
            reason = (
                FallbackReason.SCOPE_NOT_AVAILABLE
                if scope in (Scope.DASHBOARD, Scope.WORKSPACE)
                else FallbackReason.ENRICHMENT_UNAVAILABLE
            )
            self.routing_log.info("arbitration", "retry_skipped", input=text, scope=scope, reason=reason)
            return ArbitrationResult(attempted=True, fallback_reason=reason)

        candidate_ids = [c.id for c in frozen]
        before = compute_evidence_fingerprint(candidate_ids, scope, {})
        after = compute_evidence_fingerprint(candidate_ids, scope, enriched.metadata)
        if before == after:
            self.routing_log.info("arbitration", "retry_skipped", input=text,
                                  reason=FallbackReason.NO_NEW_EVIDENCE, fingerprint=after)
            return ArbitrationResult(attempted=True, retry_attempted=True,
                                     fallback_reason=FallbackReason.NO_NEW_EVIDENCE)

        self.routing_log.info("arbitration", "retry_called", input=text, scope=scope,
                              fingerprint_before=before, fingerprint_after=after)

        # The retry is part of this cycle, not a user repeat
        guard_before_retry = self._guard
        self._guard = None
        second = await self._attempt(
            text, frozen, context, match.match_count, match.exact_match_count,
            enriched_context=format_enriched_context(enriched.metadata),
            preferred_candidate_id=preferred_candidate_id,
        )
        if self._guard is None:
            self._guard = guard_before_retry
        if self._guard is not None:
            self._guard.retry_attempted = True
            self._guard.enrichment_fingerprint = after

        if second.result.resolved:
            self.routing_log.info("arbitration", "retry_resolved", input=text,
                                  suggested_id=second.result.suggested_id)
            return ArbitrationResult(
                attempted=True,
                suggested_id=second.result.suggested_id,
                retry_attempted=True,
                auto_execute=second.result.auto_execute,
            )
        return ArbitrationResult(
            attempted=True,
            retry_attempted=True,
            fallback_reason=second.result.fallback_reason or FallbackReason.ABSTAIN,
        )
