"""
Clarify Selection Continuity

Deterministic pre-LLM tie-break. When the user keeps answering the same
clarifier, the options they have implicitly ruled out narrow the set; if
exactly one eligible option is left it can be executed without asking
the LLM.

Gates, all of which must pass:
    1. Input is a command or a selection
    2. Input is not a question
    3. Continuity is bound to the clarifier currently on screen
    4. Continuity scope equals the current scope
    5. Exactly one option remains after removing rejected ids
    6. That option would not replay the action already taken from this set

The resolver only ever returns an option from the list it was given.

Usage:
    from clarify.continuity import resolve_continuity

    result = resolve_continuity(
        options=clarification.options,
        continuity=state,
        current_option_set_id=clarification.message_id,
        current_scope=Scope.CHAT,
        is_command_or_selection=True,
        is_question_intent=False,
    )
    if result.resolved:
        execute(result.winner)
"""

import logging
from dataclasses import dataclass
from typing import Sequence

from clarify.models import (
    MAX_REJECTED_CHOICES,
    ClarificationOption,
    Scope,
    SelectionActionTrace,
    SelectionContinuityState,
)

logger = logging.getLogger("clarify.continuity")


@dataclass(frozen=True)
class ContinuityResolution:
    """Outcome of resolve_continuity.

    Attributes:
        resolved: True when a unique safe winner was found
        winner:   The winning option (None unless resolved)
        reason:   Which gate decided the outcome
    """
    resolved: bool
    winner: ClarificationOption | None
    reason: str

    @property
    def winner_id(self) -> str | None:
        return self.winner.id if self.winner else None


def _unresolved(reason: str) -> ContinuityResolution:
    return ContinuityResolution(False, None, reason)


def resolve_continuity(
    options: Sequence[ClarificationOption],
    continuity: SelectionContinuityState,
    current_option_set_id: str | None,
    current_scope: Scope,
    is_command_or_selection: bool = True,
    is_question_intent: bool = False,
) -> ContinuityResolution:
    """Find the unique safe winner in options, or explain why there is none."""
    if not is_command_or_selection:
        return _unresolved("not_command_or_selection")
    if is_question_intent:
        return _unresolved("question_intent")

    # Empty strings count as absent so two blank ids never "match"
    if not current_option_set_id or not continuity.active_option_set_id:
        return _unresolved("null_option_set_id")
    if continuity.active_option_set_id != current_option_set_id:
        return _unresolved("option_set_mismatch")
    if Scope(continuity.active_scope) is not Scope(current_scope):
        return _unresolved("scope_mismatch")

    rejected = set(continuity.recent_rejected_choice_ids)
    eligible = [o for o in options if o.id not in rejected]
    if not eligible:
        return _unresolved("all_candidates_rejected")
    if len(eligible) != 1:
        return _unresolved(f"ambiguous_{len(eligible)}_candidates")

    winner = eligible[0]
    last = continuity.last_resolved_action
    if last and last.option_set_id == current_option_set_id and last.target_ref == winner.label:
        return _unresolved("loop_guard_same_cycle")

    logger.debug(
        "Continuity winner %s (%s) from option set %s",
        winner.id, winner.label, current_option_set_id,
    )
    return ContinuityResolution(True, winner, "continuity_deterministic")


# ---------------------------------------------------------------------------
# State transitions used by the intercept handler
# ---------------------------------------------------------------------------

def record_execution(
    continuity: SelectionContinuityState,
    option: ClarificationOption,
    option_set_id: str | None,
    scope: Scope,
    outcome: str = "success",
) -> SelectionContinuityState:
    """Continuity after executing option from the given option set."""
    trace = SelectionActionTrace(
        type="select_option",
        target_ref=option.label,
        source_scope=scope,
        option_set_id=option_set_id,
        outcome=outcome,
    )
    return continuity.with_resolved(trace)


def record_reshow(
    continuity: SelectionContinuityState,
    new_message_id: str,
    scope: Scope,
    rejected_ids: Sequence[str] = (),
    option_count: int = 0,
) -> SelectionContinuityState:
    """Continuity after re-showing a clarifier under a new message id.

    Rejections are carried over (the option ids are stable across a
    re-show of the same set) and extended with rejected_ids. With
    option_count given, up to option_count - 1 rejections are kept so a
    large set can still narrow to one option.
    """
    carried = continuity.recent_rejected_choice_ids
    rebound = continuity.with_option_set(new_message_id, scope)
    merged = list(carried) + [cid for cid in rejected_ids if cid not in carried]
    if merged:
        rebound = rebound.with_rejected(merged, max(MAX_REJECTED_CHOICES, option_count - 1))
    return rebound
