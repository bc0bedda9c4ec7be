"""
Clarify Intercept Handler

Per-turn entry point that runs when a clarifier may be pending. Lanes are
tried in a fixed order and the first one that settles the turn wins:

    1. Stop with no clarifier    acknowledge, reset continuity
    2. Stop with a clarifier     drop it, reset continuity
    3. Scope cue                 dashboard / workspace selection is acknowledged only
    4. Rejection                 "not the first one" narrows the set and re-shows it
    5. Direct selection          ordinal ("the second one") or unique label match
    6. Continuity lane           unique eligible option, no LLM call
    7. Arbitration loop          LLM with at most one enrichment retry
       New topic                 an LLM reroute with unrelated words leaves the clarifier
    8. need_more_info veto       continuity outranks an LLM abstention
    9. Safe clarifier            re-show the options under a new message id

The handler owns no conversation state beyond its stop-suppression
counter. Everything it changes goes through the ClarificationHost the
session passes in, so a turn either fully applies its outcome or leaves
the previous state untouched.

Usage:
    from clarify.intercept import ClarificationInterceptHandler, InterceptContext

    handler = ClarificationInterceptHandler(host=session, loop=loop, flags=flags)
    result = await handler.handle(InterceptContext(
        text=user_input,
        last_clarification=session.last_clarification,
        continuity=session.continuity,
    ))
    if not result.handled:
        route_normally(user_input)
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from clarify.arbitration import BoundedArbitrationLoop
from clarify.classifiers import (
    SelectionMode,
    canonicalize_command_input,
    is_exit_phrase,
    is_explicit_command,
    is_question_input,
    is_selection_only,
    resolve_scope_cue,
)
from clarify.config import FeatureFlags
from clarify.continuity import record_execution, record_reshow, resolve_continuity
from clarify.enrichment import EnrichmentSources, create_enrichment_callback
from clarify.label_matching import EXIT_OPTIONS, detect_new_topic, escalation_message, match_label
from clarify.models import (
    ArbitrationResult,
    ClarificationOption,
    FallbackReason,
    FocusLatchState,
    LastClarificationState,
    Scope,
    SelectionContinuityState,
    WidgetSelectionContext,
    empty_continuity_state,
    is_latch_active,
)
from clarify.routing_log import RoutingLog

logger = logging.getLogger("clarify.intercept")


# Turns after a confirmed stop during which another stop is not re-confirmed
STOP_SUPPRESSION_TURN_LIMIT = 2

STOP_MESSAGE = "No problem, what would you like to do instead?"
STOP_SUPPRESSED_MESSAGE = "All set, what would you like to do?"
CLARIFICATION_DROPPED_MESSAGE = "Okay, we'll drop that. What would you like to do instead?"
SCOPE_NOT_AVAILABLE_TEMPLATE = (
    "{scope}-scoped selection is not yet available. "
    "Please select from the active options shown above."
)

_REJECTION = re.compile(r"^(no[,.!]?\s+)?not\s+(?P<target>.+)$", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Host interface
# ---------------------------------------------------------------------------

class ClarificationHost(Protocol):
    """Side effects the hosting chat session performs on the handler's behalf."""

    def execute_action(self, option: ClarificationOption) -> bool:
        """Run the option's action. Returns False if it failed."""
        ...

    def show_clarifier(
        self, message_id: str, content: str, options: Sequence[ClarificationOption],
    ) -> None: ...

    def add_message(self, content: str) -> None: ...

    def set_last_clarification(self, clarification: LastClarificationState | None) -> None: ...

    def update_continuity(self, continuity: SelectionContinuityState) -> None: ...

    def reset_continuity(self) -> None: ...

    def clear_focus_latch(self) -> None: ...

    def suspend_focus_latch(self) -> None: ...


# ---------------------------------------------------------------------------
# Per-turn input and output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InterceptContext:
    """Read-only inputs for one turn.

    Attributes:
        text:                   Raw user input
        last_clarification:     Clarifier currently on screen, if any
        continuity:             Current selection continuity snapshot
        focus_latch:            Widget the user is focused on, if any
        widget_selection:       Widget that owns an item list, if any
        clarification_snapshot: Options of a paused earlier clarifier
        last_options_shown:     Most recent option list shown in chat
        recovery_options:       Options kept for scope-cue recovery
        widget_labels:          Labels of widgets visible to the user
    """
    text: str
    last_clarification: LastClarificationState | None = None
    continuity: SelectionContinuityState = field(default_factory=empty_continuity_state)
    focus_latch: FocusLatchState | None = None
    widget_selection: WidgetSelectionContext | None = None
    clarification_snapshot: tuple[ClarificationOption, ...] = ()
    last_options_shown: tuple[ClarificationOption, ...] = ()
    recovery_options: tuple[ClarificationOption, ...] = ()
    widget_labels: tuple[str, ...] = ()


@dataclass(frozen=True)
class InterceptResult:
    """What the handler did with the turn.

    Attributes:
        handled:               False means normal routing should take the input
        clarification_cleared: The clarifier was resolved or dropped
        lane:                  Which lane settled the turn
        selected_id:           Option executed this turn, if any
        arbitration:           Loop outcome when the loop ran
    """
    handled: bool
    clarification_cleared: bool = False
    lane: str | None = None
    selected_id: str | None = None
    arbitration: ArbitrationResult | None = None


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------

class ClarificationInterceptHandler:
    """Sequences the clarification lanes for one conversation.

    Args:
        host:        Session callbacks for every side effect.
        loop:        Arbitration loop of this conversation (owns the loop guard).
        flags:       Feature switches; defaults to the loop's flags.
        routing_log: Decision log; defaults to the loop's log.
    """

    def __init__(
        self,
        host: ClarificationHost,
        loop: BoundedArbitrationLoop,
        flags: FeatureFlags | None = None,
        routing_log: RoutingLog | None = None,
    ):
        self.host = host
        self.loop = loop
        self.flags = flags or loop.flags
        self.routing_log = routing_log or loop.routing_log
        self._stop_suppression = 0

    async def handle(self, ctx: InterceptContext) -> InterceptResult:
        text = ctx.text.strip()
        is_exit = bool(text) and is_exit_phrase(text)
        suppression = self._stop_suppression
        # Only back-to-back stops are suppressed; any other input ends the window
        self._stop_suppression = max(0, suppression - 1) if is_exit else 0
        if not text:
            return InterceptResult(handled=False)

        clarification = ctx.last_clarification

        if is_exit:
            if clarification is None:
                return self._stop_without_clarifier(text, suppression)
            return self._drop_clarifier(text, clarification)

        if clarification is None or not clarification.options:
            return InterceptResult(handled=False)

        cue = resolve_scope_cue(text, ctx.widget_labels)
        stripped = _strip_cue(text, cue.cue_text)

        if cue.scope in (Scope.DASHBOARD, Scope.WORKSPACE):
            self.routing_log.info("intercept", "scope_not_available", input=text, scope=cue.scope)
            return self._scope_not_available(cue.scope)

        scope = self._current_scope(ctx, cue.scope)
        if cue.scope is Scope.CHAT and is_latch_active(ctx.focus_latch):
            self.host.suspend_focus_latch()

        # "not the first one" also contains an embedded ordinal
        rejected = self._rejected_option(stripped, clarification)
        if rejected is not None:
            return self._reject(ctx, clarification, rejected, scope)

        direct = self._direct_selection(stripped, clarification)
        if direct is not None:
            return self._execute(ctx, clarification, direct, scope, lane="deterministic")

        is_question = is_question_input(text)
        continuity = resolve_continuity(
            options=clarification.options,
            continuity=ctx.continuity,
            current_option_set_id=clarification.message_id,
            current_scope=scope,
            is_command_or_selection=_is_command_or_selection(stripped, clarification),
            is_question_intent=is_question,
        )
        if continuity.resolved and self.flags.selection_continuity_lane_enabled:
            self.routing_log.info("intercept", "continuity_execute", input=text,
                                  winner_id=continuity.winner_id)
            return self._execute(ctx, clarification, continuity.winner, scope, lane="continuity")
        if not continuity.resolved:
            self.routing_log.info("intercept", "continuity_unresolved", input=text,
                                  reason=continuity.reason)

        # A disabled lane still contributes its winner as an ordering hint
        hint_id = continuity.winner_id if continuity.resolved else None

        result = await self.loop.run(
            text=stripped,
            candidates=clarification.options,
            scope=scope,
            enrichment=create_enrichment_callback(scope, _enrichment_sources(ctx)),
            context="clarification_unresolved",
            preferred_candidate_id=hint_id,
        )

        if result.fallback_reason is FallbackReason.QUESTION_INTENT:
            self.routing_log.info("intercept", "question_escape", input=text)
            return InterceptResult(handled=False, lane="question_escape", arbitration=result)

        if result.fallback_reason is FallbackReason.SCOPE_NOT_AVAILABLE:
            return self._scope_not_available(None, result)

        if result.fallback_reason is FallbackReason.REROUTE:
            match = match_label(stripped, clarification.options)
            topic = detect_new_topic(stripped, clarification.options, match)
            if topic.is_new_topic:
                return self._leave_for_new_topic(text, clarification, topic.non_overlapping_tokens, result)

        if result.auto_execute and result.suggested_id:
            selected = clarification.option_by_id(result.suggested_id)
            if selected is not None:
                lane = "llm_executed" if result.attempted else "deterministic"
                return self._execute(ctx, clarification, selected, scope, lane=lane, arbitration=result)

        veto = self._need_more_info_veto(ctx, clarification, scope, result, is_question)
        if veto is not None:
            return self._execute(ctx, clarification, veto, scope,
                                 lane="need_more_info_veto", arbitration=result)

        return self._safe_clarifier(ctx, clarification, scope, result, hint_id)

    # -------------------------------------------------------------------
    # Lanes
    # -------------------------------------------------------------------

    def _stop_without_clarifier(self, text: str, suppression: int) -> InterceptResult:
        if suppression > 0:
            self.routing_log.info("intercept", "stop_repeated_suppressed", input=text,
                                  suppression=suppression)
            self.host.add_message(STOP_SUPPRESSED_MESSAGE)
            return InterceptResult(handled=True, clarification_cleared=True, lane="stop")

        self.routing_log.info("intercept", "stop_no_active_scope", input=text)
        self._reset_session_scope()
        self._stop_suppression = STOP_SUPPRESSION_TURN_LIMIT
        self.host.add_message(STOP_MESSAGE)
        return InterceptResult(handled=True, clarification_cleared=True, lane="stop")

    def _drop_clarifier(self, text: str, clarification: LastClarificationState) -> InterceptResult:
        self.routing_log.info("intercept", "clarification_exit", input=text,
                              message_id=clarification.message_id)
        self.host.set_last_clarification(None)
        self._reset_session_scope()
        self._stop_suppression = STOP_SUPPRESSION_TURN_LIMIT
        self.host.add_message(CLARIFICATION_DROPPED_MESSAGE)
        return InterceptResult(handled=True, clarification_cleared=True, lane="stop")

    def _leave_for_new_topic(
        self,
        text: str,
        clarification: LastClarificationState,
        novel_tokens: Sequence[str],
        result: ArbitrationResult,
    ) -> InterceptResult:
        self.routing_log.info("intercept", "new_topic_escape", input=text,
                              message_id=clarification.message_id, novel_tokens=novel_tokens)
        self.host.set_last_clarification(None)
        self.loop.reset_guard()
        return InterceptResult(handled=False, clarification_cleared=True, lane="new_topic",
                               arbitration=result)

    def _reset_session_scope(self):
        self.host.clear_focus_latch()
        self.host.reset_continuity()
        self.loop.reset_guard()

    def _direct_selection(
        self, text: str, clarification: LastClarificationState,
    ) -> ClarificationOption | None:
        labels = clarification.labels
        count = len(clarification.options)

        selection = is_selection_only(text, count, labels, SelectionMode.STRICT)
        if selection.is_selection:
            return clarification.options[selection.index]

        match = match_label(canonicalize_command_input(text), clarification.options, clarification.type)
        if match.is_unique:
            return match.option

        selection = is_selection_only(text, count, labels, SelectionMode.EMBEDDED)
        if selection.is_selection:
            return clarification.options[selection.index]
        return None

    def _rejected_option(
        self, text: str, clarification: LastClarificationState,
    ) -> ClarificationOption | None:
        m = _REJECTION.match(text.strip())
        if not m:
            return None
        return self._direct_selection(m.group("target"), clarification)

    def _need_more_info_veto(
        self,
        ctx: InterceptContext,
        clarification: LastClarificationState,
        scope: Scope,
        result: ArbitrationResult,
        is_question: bool,
    ) -> ClarificationOption | None:
        """Continuity winner that overrides an LLM abstention, if any.

        The LLM has already looked at the input and did not treat it as a
        new task, so the command/selection phrasing gate is not applied
        again. A reroute means the user moved on and is never vetoed.
        """
        if not self.flags.selection_continuity_lane_enabled:
            return None
        if not result.attempted or result.suggested_id:
            return None
        if result.fallback_reason is FallbackReason.REROUTE:
            return None

        veto = resolve_continuity(
            options=clarification.options,
            continuity=ctx.continuity,
            current_option_set_id=clarification.message_id,
            current_scope=scope,
            is_command_or_selection=True,
            is_question_intent=is_question,
        )
        if not veto.resolved:
            self.routing_log.info("intercept", "need_more_info_veto_blocked", reason=veto.reason)
            return None
        self.routing_log.info("intercept", "need_more_info_veto_applied", winner_id=veto.winner_id,
                              fallback_reason=result.fallback_reason)
        return veto.winner

    def _current_scope(self, ctx: InterceptContext, cue_scope: Scope) -> Scope:
        if cue_scope is not Scope.NONE:
            return cue_scope
        if is_latch_active(ctx.focus_latch) and ctx.widget_selection is not None:
            return Scope.WIDGET
        return Scope.CHAT

    def _scope_not_available(
        self, scope: Scope | None, arbitration: ArbitrationResult | None = None,
    ) -> InterceptResult:
        label = scope.value.capitalize() if scope else "This scope"
        self.host.add_message(SCOPE_NOT_AVAILABLE_TEMPLATE.format(scope=label))
        return InterceptResult(handled=True, clarification_cleared=False,
                               lane="scope_not_available", arbitration=arbitration)

    # -------------------------------------------------------------------
    # Outcomes
    # -------------------------------------------------------------------

    def _execute(
        self,
        ctx: InterceptContext,
        clarification: LastClarificationState,
        option: ClarificationOption,
        scope: Scope,
        lane: str,
        arbitration: ArbitrationResult | None = None,
    ) -> InterceptResult:
        succeeded = self.host.execute_action(option)
        outcome = "success" if succeeded is not False else "failed"

        self.routing_log.info("intercept", "execute", lane=lane, option_id=option.id,
                              label=option.label, outcome=outcome)
        self.host.update_continuity(record_execution(
            ctx.continuity, option, clarification.message_id, scope, outcome,
        ))
        self.host.set_last_clarification(None)
        self.loop.reset_guard()
        return InterceptResult(
            handled=True,
            clarification_cleared=True,
            lane=lane,
            selected_id=option.id,
            arbitration=arbitration,
        )

    def _reject(
        self,
        ctx: InterceptContext,
        clarification: LastClarificationState,
        rejected: ClarificationOption,
        scope: Scope,
    ) -> InterceptResult:
        remaining = tuple(o for o in clarification.options if o.id != rejected.id)
        ordered = remaining + (rejected,)
        self.routing_log.info("intercept", "option_rejected", option_id=rejected.id)
        self._reshow(ctx, clarification, ordered, scope, rejected_ids=(rejected.id,))
        return InterceptResult(handled=True, clarification_cleared=False, lane="rejection")

    def _safe_clarifier(
        self,
        ctx: InterceptContext,
        clarification: LastClarificationState,
        scope: Scope,
        result: ArbitrationResult,
        hint_id: str | None,
    ) -> InterceptResult:
        reorder_id = result.suggested_id or hint_id
        options = clarification.options
        if reorder_id and clarification.option_by_id(reorder_id) is not None:
            options = (
                tuple(o for o in options if o.id == reorder_id)
                + tuple(o for o in options if o.id != reorder_id)
            )

        self.routing_log.info(
            "intercept", "safe_clarifier",
            input=ctx.text, llm_attempted=result.attempted,
            suggested_id=result.suggested_id, hint_id=hint_id,
            fallback_reason=result.fallback_reason,
        )
        self._reshow(ctx, clarification, options, scope)
        lane = "llm_influenced" if reorder_id else "safe_clarifier"
        return InterceptResult(handled=True, clarification_cleared=False, lane=lane, arbitration=result)

    def _reshow(
        self,
        ctx: InterceptContext,
        clarification: LastClarificationState,
        options: tuple[ClarificationOption, ...],
        scope: Scope,
        rejected_ids: Sequence[str] = (),
    ) -> str:
        """Show options again under a new message id and rebind continuity to it."""
        message_id = f"assistant-{uuid.uuid4().hex[:12]}"
        attempt_count = clarification.attempt_count + 1
        prompt = escalation_message(attempt_count)
        shown = options + EXIT_OPTIONS if prompt.show_exits else options

        self.host.show_clarifier(message_id, prompt.content, shown)
        self.host.set_last_clarification(LastClarificationState(
            message_id=message_id,
            options=options,
            original_intent=clarification.original_intent,
            type=clarification.type,
            attempt_count=attempt_count,
        ))
        # Rejections survive the re-show only while continuity is bound to this clarifier
        continuity = ctx.continuity
        if continuity.active_option_set_id != clarification.message_id:
            continuity = continuity.with_option_set(clarification.message_id, scope)
        self.host.update_continuity(record_reshow(
            continuity, message_id, scope, rejected_ids, option_count=len(options),
        ))
        logger.debug("Re-showed clarifier %s (attempt %d)", message_id, attempt_count)
        return message_id


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _strip_cue(text: str, cue_text: str | None) -> str:
    if not cue_text:
        return text
    stripped = re.sub(re.escape(cue_text), " ", text, flags=re.IGNORECASE)
    return re.sub(r"\s+", " ", stripped).strip() or text


def _is_command_or_selection(text: str, clarification: LastClarificationState) -> bool:
    if is_explicit_command(text):
        return True
    return is_selection_only(
        text, len(clarification.options), clarification.labels, SelectionMode.EMBEDDED,
    ).is_selection


def _enrichment_sources(ctx: InterceptContext) -> EnrichmentSources:
    return EnrichmentSources(
        last_clarification=ctx.last_clarification,
        clarification_snapshot=ctx.clarification_snapshot,
        last_options_shown=ctx.last_options_shown,
        recovery_options=ctx.recovery_options,
        widget_selection=ctx.widget_selection,
    )
