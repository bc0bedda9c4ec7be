"""
Clarify Data Model

Types shared by the classifiers, the continuity resolver, the bounded
arbitration loop and the intercept handler.

Option sets and continuity snapshots are immutable: a new clarifier
produces a new LastClarificationState, and every continuity transition
returns a new SelectionContinuityState. The hosting session owns the
current values and swaps them through its ClarificationHost callbacks.
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Scope(str, Enum):
    """UI surface an option set or an input is bound to."""
    CHAT = "chat"
    WIDGET = "widget"
    DASHBOARD = "dashboard"
    WORKSPACE = "workspace"
    NONE = "none"


class FallbackReason(str, Enum):
    """Why an arbitration cycle ended without a resolved suggestion."""
    ABSTAIN = "abstain"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    TRANSPORT_ERROR = "transport_error"
    ENRICHMENT_UNAVAILABLE = "enrichment_unavailable"
    NO_NEW_EVIDENCE = "no_new_evidence"
    SCOPE_NOT_AVAILABLE = "scope_not_available"
    RETRY_FEATURE_DISABLED = "retry_feature_disabled"
    CONTRACT_VERSION_MISMATCH = "contract_version_mismatch"
    INVALID_NEEDED_CONTEXT = "invalid_needed_context"
    QUESTION_INTENT = "question_intent"
    FEATURE_DISABLED = "feature_disabled"
    LOOP_GUARD = "loop_guard"
    LOOP_GUARD_CONTINUITY = "loop_guard_continuity"
    CLASSIFIER_NOT_ELIGIBLE = "classifier_not_eligible"
    LOW_CONFIDENCE = "low_confidence"
    REROUTE = "reroute"
    NONE_MATCH = "none_match"


# Minimum cap on remembered rejections; older ones fall off first. Larger
# option sets raise the cap to one less than their size.
MAX_REJECTED_CHOICES = 5


# ---------------------------------------------------------------------------
# Clarification options
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ClarificationOption:
    """One candidate shown to the user in a clarifier.

    Attributes:
        id:       Opaque id, stable within one option set (e.g. "opt-2")
        label:    Display string
        type:     Kind of UI target (panel_drawer, workspace, widget_item, ...)
        sublabel: Optional secondary text shown under the label
        data:     Opaque payload handed back to the host on execution
    """
    id: str
    label: str
    type: str
    sublabel: str | None = None
    data: Any = None

    def display_label(self) -> str:
        return f"{self.label} ({self.sublabel})" if self.sublabel else self.label

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "type": self.type,
            "sublabel": self.sublabel,
        }


@dataclass(frozen=True)
class LastClarificationState:
    """The most recently shown option set.

    message_id identifies the option set and doubles as the continuity
    anchor: continuity only applies while it equals activeOptionSetId.
    """
    message_id: str
    options: tuple[ClarificationOption, ...]
    original_intent: str
    type: str = "option_selection"
    attempt_count: int = 0
    timestamp: float = field(default_factory=time.time)

    def option_by_id(self, option_id: str | None) -> ClarificationOption | None:
        if option_id is None:
            return None
        for option in self.options:
            if option.id == option_id:
                return option
        return None

    @property
    def labels(self) -> list[str]:
        return [o.label for o in self.options]


# ---------------------------------------------------------------------------
# Selection continuity
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SelectionActionTrace:
    """Record of the last action the selection lanes executed.

    Attributes:
        type:          Action kind ("select_option")
        target_ref:    Label of the selected option
        source_scope:  Scope the option set was bound to
        option_set_id: message_id of the option set the choice came from
        timestamp:     When the action executed (epoch seconds)
        outcome:       "success" or "failed"
    """
    type: str
    target_ref: str
    source_scope: Scope
    option_set_id: str | None
    timestamp: float = field(default_factory=time.time)
    outcome: str = "success"


@dataclass(frozen=True)
class SelectionContinuityState:
    """Bounded cross-turn memory used to narrow ambiguity without the LLM."""
    active_option_set_id: str | None = None
    active_scope: Scope = Scope.NONE
    recent_rejected_choice_ids: tuple[str, ...] = ()
    last_resolved_action: SelectionActionTrace | None = None
    pending_clarifier_type: str | None = None

    def with_option_set(
        self,
        message_id: str,
        scope: Scope,
        clarifier_type: str = "selection_disambiguation",
    ) -> "SelectionContinuityState":
        """Bind to a newly shown option set; rejections of the old set no longer apply."""
        return replace(
            self,
            active_option_set_id=message_id,
            active_scope=scope,
            recent_rejected_choice_ids=(),
            pending_clarifier_type=clarifier_type,
        )

    def with_rejected(self, choice_ids, limit: int = MAX_REJECTED_CHOICES) -> "SelectionContinuityState":
        merged = [cid for cid in self.recent_rejected_choice_ids if cid not in choice_ids]
        for cid in choice_ids:
            if cid not in merged:
                merged.append(cid)
        return replace(self, recent_rejected_choice_ids=tuple(merged[-limit:]))

    def with_resolved(self, trace: SelectionActionTrace) -> "SelectionContinuityState":
        return replace(self, last_resolved_action=trace, pending_clarifier_type=None)


def empty_continuity_state() -> SelectionContinuityState:
    """Reset value used on explicit stop and on session start."""
    return SelectionContinuityState()


@dataclass(frozen=True)
class WidgetSelectionContext:
    """A widget that currently owns an item selection list."""
    widget_id: str | None
    widget_label: str = ""
    options: tuple[ClarificationOption, ...] = ()


# ---------------------------------------------------------------------------
# Arbitration outcome
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ArbitrationResult:
    """Outcome of one bounded-loop invocation. Never persisted.

    Attributes:
        attempted:       Whether the LLM was consulted this cycle
        suggested_id:    Option id the cycle settled on, if any
        retry_attempted: Whether the single enrichment retry budget was spent
        fallback_reason: Why nothing resolved (None on success)
        auto_execute:    All auto-execute gates passed for suggested_id
    """
    attempted: bool
    suggested_id: str | None = None
    retry_attempted: bool = False
    fallback_reason: FallbackReason | None = None
    auto_execute: bool = False

    @property
    def resolved(self) -> bool:
        return self.suggested_id is not None


# ---------------------------------------------------------------------------
# Focus latch (tagged union)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolvedFocusLatch:
    """The user is focused on a widget whose id is known."""
    widget_id: str
    widget_label: str
    latched_at: float = field(default_factory=time.time)
    turns_since_latched: int = 0
    suspended: bool = False
    kind: str = field(default="resolved", init=False)


@dataclass(frozen=True)
class PendingFocusLatch:
    """Focus on a panel whose widget has not been registered yet."""
    pending_panel_id: str
    widget_label: str
    latched_at: float = field(default_factory=time.time)
    turns_since_latched: int = 0
    suspended: bool = False
    kind: str = field(default="pending", init=False)


FocusLatchState = ResolvedFocusLatch | PendingFocusLatch


def get_latch_id(latch: FocusLatchState) -> str:
    """Lookup key for a latch; a pending latch has no widget id yet."""
    if isinstance(latch, ResolvedFocusLatch):
        return latch.widget_id
    if isinstance(latch, PendingFocusLatch):
        return f"pending:{latch.pending_panel_id}"
    raise TypeError(f"Unknown focus latch type: {type(latch).__name__}")


def is_latch_active(latch: FocusLatchState | None) -> bool:
    return latch is not None and not latch.suspended


def suspend_latch(latch: FocusLatchState) -> FocusLatchState:
    return replace(latch, suspended=True)


def advance_latch_turn(latch: FocusLatchState) -> FocusLatchState:
    return replace(latch, turns_since_latched=latch.turns_since_latched + 1)
