"""
Clarify Deterministic Label Matching

Maps free text onto the labels of the active option set without the LLM.
Matching works on canonical tokens: lowercase, punctuation stripped,
stop-words dropped, and a short explicit alias list for plural and
morphological variants ("panels" -> "panel", "link" -> "links"). There
is no stemming and no global synonym table.

    - canonical equality with exactly one label     -> exact  (high)
    - input tokens a subset of exactly one label    -> mapped (medium)
    - several labels qualify                        -> ambiguous
    - nothing qualifies                             -> no_match

Usage:
    from clarify.label_matching import match_label

    match = match_label("links panels d", options)
    if match.is_unique:
        execute(match.option)
"""

import re
from dataclasses import dataclass, field
from typing import Sequence

from clarify.models import ClarificationOption


# Off-menu attempts before the clarifier offers exits
MAX_ATTEMPT_COUNT = 3

_STOPWORDS = frozenset({
    "a", "an", "the", "my", "your", "our", "their",
    "pls", "please", "plz", "now", "thanks", "thank", "thx",
})

# Opt-in variants only; extend when users repeatedly phrase a label differently
_MICRO_ALIASES: dict[str, str] = {
    "panel": "panel", "panels": "panel",
    "widget": "widget", "widgets": "widget",
    "link": "links", "links": "links",
    "workspace": "workspace", "workspaces": "workspace",
    "note": "note", "notes": "note",
    "setting": "settings", "settings": "settings",
    "preference": "preferences", "preferences": "preferences",
    "personal": "personalization", "personalize": "personalization",
    "personalization": "personalization",
    "custom": "customization", "customize": "customization",
    "customization": "customization",
}

_QUESTION_VERBS = frozenset({
    "what", "how", "why", "tell", "explain", "describe", "clarify", "show",
})
_ACTION_VERBS = frozenset({
    "open", "show", "go", "create", "rename", "delete", "add", "remove",
    "find", "search", "list", "view", "edit", "update", "close", "hide",
})

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


def _raw_tokens(text: str) -> list[str]:
    cleaned = _NON_ALNUM.sub("", text.lower())
    return [t for t in cleaned.split() if t not in _STOPWORDS]


def to_canonical_tokens(text: str) -> frozenset[str]:
    return frozenset(_MICRO_ALIASES.get(t, t) for t in _raw_tokens(text))


def label_alias_tokens(label: str) -> frozenset[str]:
    """Canonical tokens of a label plus its literal tokens."""
    return to_canonical_tokens(label) | frozenset(_raw_tokens(label))


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LabelMatch:
    """Result of matching input against the active option labels.

    Attributes:
        kind:              exact, mapped, ambiguous or no_match
        option:            The winning option for exact / mapped
        match_count:       Options whose tokens contain every input token
        exact_match_count: Options whose tokens equal the input tokens
        reason:            Short machine-readable explanation
        matches:           All qualifying options, in option order
    """
    kind: str
    option: ClarificationOption | None = None
    match_count: int = 0
    exact_match_count: int = 0
    reason: str = ""
    matches: tuple[ClarificationOption, ...] = field(default_factory=tuple)

    @property
    def is_unique(self) -> bool:
        return self.kind in ("exact", "mapped") and self.option is not None

    @property
    def confidence(self) -> str:
        return {"exact": "high", "mapped": "medium"}.get(self.kind, "low")


def match_label(
    text: str,
    options: Sequence[ClarificationOption],
    clarification_type: str = "option_selection",
) -> LabelMatch:
    """Deterministically map text onto one of options.

    A workspace_list clarifier only accepts canonical equality since
    workspace names are too short for subset matching to be safe.
    """
    if not options:
        return LabelMatch("no_match", reason="no_options")

    input_tokens = to_canonical_tokens(text)
    if not input_tokens:
        return LabelMatch("no_match", reason="empty_input_tokens")

    exact: list[ClarificationOption] = []
    subset: list[ClarificationOption] = []
    for option in options:
        label_tokens = label_alias_tokens(option.label)
        if not input_tokens <= label_tokens:
            continue
        subset.append(option)
        if input_tokens == to_canonical_tokens(option.label) or input_tokens == label_tokens:
            exact.append(option)

    counts = dict(match_count=len(subset), exact_match_count=len(exact), matches=tuple(subset))

    if len(exact) == 1:
        return LabelMatch("exact", exact[0], reason="canonical_equality", **counts)
    if clarification_type == "workspace_list":
        return LabelMatch("no_match", reason="workspace_requires_exact", **counts)
    if len(subset) == 1:
        return LabelMatch("mapped", subset[0], reason="canonical_subset_single", **counts)
    if subset:
        return LabelMatch("ambiguous", reason="multiple_options_match", **counts)
    return LabelMatch("no_match", reason="no_token_match", **counts)


# ---------------------------------------------------------------------------
# New topic detection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NewTopicResult:
    is_new_topic: bool
    reason: str
    non_overlapping_tokens: tuple[str, ...] = ()


def is_clear_command_or_question(text: str) -> bool:
    normalized = text.lower().strip()
    if "?" in normalized:
        return True
    words = normalized.split()
    if words and words[0] in _QUESTION_VERBS:
        return True
    return any(w in _ACTION_VERBS for w in words)


def detect_new_topic(
    text: str,
    options: Sequence[ClarificationOption],
    match: LabelMatch,
) -> NewTopicResult:
    """Treat input as leaving the clarifier only when it maps to nothing,
    reads as a command or question, and mentions something no label does."""
    if match.is_unique:
        return NewTopicResult(False, "has_label_match")
    if not is_clear_command_or_question(text):
        return NewTopicResult(False, "not_clear_command_or_question")

    option_tokens: set[str] = set()
    for option in options:
        option_tokens |= label_alias_tokens(option.label)

    novel = tuple(sorted(
        t for t in to_canonical_tokens(text)
        if t not in _ACTION_VERBS and t not in _QUESTION_VERBS and t not in option_tokens
    ))
    if novel:
        return NewTopicResult(True, "has_non_overlapping_tokens", novel)
    return NewTopicResult(False, "all_tokens_overlap_options")


# ---------------------------------------------------------------------------
# Escalation messaging
# ---------------------------------------------------------------------------

EXIT_OPTIONS = (
    ClarificationOption(id="exit_none", label="None of these", type="exit"),
    ClarificationOption(id="exit_start_over", label="Start over", type="exit"),
)


@dataclass(frozen=True)
class EscalationMessage:
    content: str
    show_exits: bool = False


def escalation_message(attempt_count: int) -> EscalationMessage:
    """Prompt text for the n-th consecutive clarifier on the same intent."""
    if attempt_count >= MAX_ATTEMPT_COUNT:
        return EscalationMessage(
            'Which one is closer, or tell me the feature in 3-6 words '
            '(e.g., "change workspace theme").',
            show_exits=True,
        )
    if attempt_count == 2:
        return EscalationMessage("Which one is closer to what you need?")
    return EscalationMessage("Please choose one of the options:")
