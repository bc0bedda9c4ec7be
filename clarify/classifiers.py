"""
Clarify Input Classifiers

Pure, stateless string classifiers used by every selection lane:

    - is_selection_only      ordinal / badge / "option 2" selection phrasing
    - is_explicit_command    verb-led UI commands ("open recent", "go home")
    - resolve_scope_cue      explicit scope markers ("from chat", "from dashboard")
    - has_question_intent    question phrasing the arbitration loop must not touch
    - is_exit_phrase         cancel / stop / start over
    - classify_arbitration_confidence
                             single place that decides whether a deterministic
                             result is executable or LLM-eligible

Usage:
    from clarify.classifiers import is_selection_only, resolve_scope_cue

    result = is_selection_only("open the second one", 3, labels, mode="embedded")
    if result.is_selection:
        option = options[result.index]
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Collection, Sequence

from clarify.models import Scope


# ---------------------------------------------------------------------------
# Shared patterns
# ---------------------------------------------------------------------------

# Canonical ordinals for per-token fuzzy matching
ORDINAL_TARGETS = ("first", "second", "third", "fourth", "fifth", "last")

_MAX_ORDINAL_EDIT_DISTANCE = 1
_MIN_FUZZY_TOKEN_LENGTH = 4   # "for" must never become "fourth"

_POLITE_SUFFIX = re.compile(r"\s*(pls|plz|please|thx|thanks|ty)\.?$", re.IGNORECASE)
_REPEATED_LETTERS = re.compile(r"(.)\1+")
_ORDINAL_CONCAT = re.compile(r"^(first|second|third|fourth|fifth|last)(option|one)$")
_TRAILING_PUNCT = re.compile(r"[?!.]+$")

_QUESTION_INTENT = re.compile(
    r"^(what|how|where|when|why|who|which|can|could|would|should|tell|explain|help|is|are|do|does)\b",
    re.IGNORECASE,
)
_QUESTION_START = re.compile(
    r"^(what|which|where|when|how|why|who|is|are|do|does|did|can|could|should|would)\b",
    re.IGNORECASE,
)
_COMMAND_START = re.compile(
    r"^(open|show|go|list|create|close|delete|rename|back|home)\b", re.IGNORECASE
)
_POLITE_IMPERATIVE = re.compile(
    r"^(hey\s+)?((can|could|would|will)\s+you\s+)?(please\s+|pls\s+)?"
    r"(open|close|show|list|go|create|rename|delete|remove|add|navigate|edit|change|update|launch|view)\b",
    re.IGNORECASE,
)

_ORDINAL_WORD = re.compile(r"\b(first|second|third|fourth|fifth|last|[1-9])\b", re.IGNORECASE)

_COMMAND_VERBS = (
    "open", "show", "list", "view", "go", "back", "home",
    "create", "rename", "delete", "remove",
)

_EXIT_PHRASES = (
    "cancel", "never mind", "nevermind", "none", "stop",
    "forget it", "none of these", "start over", "exit",
    "quit", "no thanks", "skip", "something else",
)
_EXIT_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(p) for p in _EXIT_PHRASES) + r")\b", re.IGNORECASE
)

# Checked in order; longer prefixes come first
_COMMAND_PREFIXES = (
    "hey can you please open ", "hey can you please show ",
    "hey can you pls open ", "hey can you pls show ",
    "hey can you open ", "hey can you show ",
    "hey could you please open ", "hey could you please show ",
    "hey could you pls open ", "hey could you pls show ",
    "hey could you open ", "hey could you show ",
    "hey can you please ", "hey can you pls ",
    "hey could you please ", "hey could you pls ",
    "can you please open ", "can you please show ",
    "can you pls open ", "can you pls show ",
    "can you please ", "can you pls ",
    "could you please open ", "could you please show ",
    "could you pls open ", "could you pls show ",
    "could you please ", "could you pls ",
    "would you please open ", "would you please show ",
    "would you pls open ", "would you pls show ",
    "would you please ", "would you pls ",
    "can you open ", "can you show ",
    "could you open ", "could you show ",
    "would you open ", "would you show ",
    "please open ", "pls open ",
    "please show ", "pls show ",
    "hey open ", "hey show ", "hey ",
    "open ", "show ", "view ", "go to ", "launch ",
)


# ---------------------------------------------------------------------------
# Edit distance
# ---------------------------------------------------------------------------

def levenshtein_distance(a: str, b: str) -> int:
    """Classic insert/delete/substitute edit distance."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


# ---------------------------------------------------------------------------
# Ordinal normalization
# ---------------------------------------------------------------------------

def _squash(text: str) -> str:
    return _REPEATED_LETTERS.sub(r"\1", text)


# One edit away from "last" but never meant as an ordinal
_NOT_ORDINALS = frozenset(_COMMAND_VERBS) | {"list", "lost", "past", "least", "fast"}


def _fuzzy_ordinal(token: str, protected: Collection[str] = ()) -> str:
    if len(token) < _MIN_FUZZY_TOKEN_LENGTH or token in ORDINAL_TARGETS:
        return token
    if token in _NOT_ORDINALS or token in protected:
        return token
    best, best_dist = None, _MAX_ORDINAL_EDIT_DISTANCE + 1
    for ordinal in ORDINAL_TARGETS:
        dist = levenshtein_distance(token, ordinal)
        if 0 < dist < best_dist:
            best, best_dist = ordinal, dist
    return best or token


def normalize_ordinal_typos(text: str, protected: Collection[str] = ()) -> str:
    """Repair common ordinal typos before selection matching.

    Tokens in protected (squashed, lowercase) are never repaired; pass the
    words of the current option labels so "east" stays "east" next to an
    "East Wing" option.

        normalize_ordinal_typos("ffirst")        # "first"
        normalize_ordinal_typos("secondoption")  # "second option"
        normalize_ordinal_typos("secnd pls")     # "second"
        normalize_ordinal_typos("for")           # "for"
    """
    n = text.lower().strip()
    n = _POLITE_SUFFIX.sub("", n).strip()
    n = _squash(n)
    n = _ORDINAL_CONCAT.sub(r"\1 \2", n)
    return " ".join(_fuzzy_ordinal(token, protected) for token in n.split())


def _label_words(labels: Sequence[str]) -> frozenset[str]:
    return frozenset(_squash(w) for label in labels for w in re.findall(r"[a-z]+", label.lower()))


# ---------------------------------------------------------------------------
# Selection parsing
# ---------------------------------------------------------------------------

class SelectionMode(str, Enum):
    STRICT = "strict"
    EMBEDDED = "embedded"


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of is_selection_only. index is 0-based and always in bounds."""
    is_selection: bool
    index: int | None = None


_NO_SELECTION = SelectionResult(False)

_STRICT_PATTERN = re.compile(
    r"^(first|second|third|fourth|fifth|last|[1-9]|option\s*[1-9]"
    r"|the\s+(first|second|third|fourth|fifth|last)\s+(one|option)"
    r"|(first|second|third|fourth|fifth)\s+option|[a-e])$"
)

_STRICT_WORDS = {"first": 0, "second": 1, "third": 2, "fourth": 3, "fifth": 4}

# Keys go through the same letter squashing as the input ("three" -> "thre")
_EMBEDDED_MAP: dict[str, int] = {_squash(k): v for k, v in {
    "1st": 0, "2nd": 1, "3rd": 2, "4th": 3, "5th": 4,
    "one": 0, "two": 1, "three": 2, "four": 3, "five": 4,
    "number one": 0, "number two": 1, "number three": 2, "number four": 3, "number five": 4,
    "the first": 0, "the second": 1, "the third": 2, "the fourth": 3, "the fifth": 4,
    "frist": 0, "fisrt": 0, "frst": 0,
    "sedond": 1, "sceond": 1,
    "thrid": 2, "tird": 2,
    "foruth": 3, "fouth": 3,
    "fith": 4, "fifht": 4,
}.items()}

_FIRST_WORDS = frozenset(_squash(w) for w in ("top", "upper", "top one", "first one"))
_LAST_WORDS = frozenset(
    _squash(w) for w in ("the last", "the last one", "last one", "bottom", "lower", "bottom one")
)

_PHRASE_ORDINALS: list[tuple[re.Pattern, int]] = [
    (re.compile(r"\b(first|1st)\b"), 0),
    (re.compile(r"\b(second|2nd)\b"), 1),
    (re.compile(r"\b(third|3rd)\b"), 2),
    (re.compile(r"\b(fourth|4th)\b"), 3),
    (re.compile(r"\b(fifth|5th)\b"), 4),
    (re.compile(r"\blast\b"), -1),
    (re.compile(r"\bnumber\s+one\b"), 0),
    (re.compile(r"\bnumber\s+two\b"), 1),
    (re.compile(r"\bnumber\s+thre+\b"), 2),
]


def _in_bounds(index: int | None, count: int) -> SelectionResult:
    if index is not None and 0 <= index < count:
        return SelectionResult(True, index)
    return _NO_SELECTION


def _letter_index(letter: str, count: int, labels: Sequence[str]) -> int | None:
    """Resolve a single-letter badge ("d") against labels like "Links Panel D"."""
    badge = letter.upper()
    if labels:
        for i, label in enumerate(labels):
            if label.upper().endswith(f" {badge}"):
                return i
        for i, label in enumerate(labels):
            if badge in label.upper().split():
                return i
        return None
    return ord(letter) - ord("a")


def _strict_selection(text: str, count: int, labels: Sequence[str]) -> SelectionResult:
    n = normalize_ordinal_typos(text, _label_words(labels))
    if not _STRICT_PATTERN.match(n):
        return _NO_SELECTION

    if n in ("last", "the last one", "the last option"):
        return _in_bounds(count - 1, count)
    if len(n) == 1 and n.isalpha():
        return _in_bounds(_letter_index(n, count, labels), count)
    if n.isdigit():
        return _in_bounds(int(n) - 1, count)
    if n.startswith("option"):
        return _in_bounds(int(n[-1]) - 1, count)

    for word, index in _STRICT_WORDS.items():
        if word in n.split():
            return _in_bounds(index, count)
    return _NO_SELECTION


def _extract_ordinal_from_phrase(text: str, count: int) -> int | None:
    for pattern, index in _PHRASE_ORDINALS:
        if pattern.search(text):
            resolved = count - 1 if index == -1 else index
            if 0 <= resolved < count:
                return resolved
    if count <= 5:
        digit = re.search(r"\b([1-5])\b", text)
        if digit and int(digit.group(1)) <= count:
            return int(digit.group(1)) - 1
    return None


def _embedded_selection(text: str, count: int, labels: Sequence[str]) -> SelectionResult:
    n = normalize_ordinal_typos(text, _label_words(labels))

    if n in _EMBEDDED_MAP:
        return _in_bounds(_EMBEDDED_MAP[n], count)
    if n in _LAST_WORDS:
        return _in_bounds(count - 1, count)
    if n in _FIRST_WORDS:
        return _in_bounds(0, count)
    if n in ("the other one", "the other", "other one", "other"):
        return _in_bounds(1 if count == 2 else None, count)

    return _in_bounds(_extract_ordinal_from_phrase(n, count), count)


def is_selection_only(
    text: str,
    candidate_count: int,
    labels: Sequence[str] = (),
    mode: SelectionMode | str = SelectionMode.STRICT,
) -> SelectionResult:
    """Detect selection phrasing and map it to a 0-based option index.

    strict matches only pure ordinal phrasing ("first", "2", "option 2",
    "b" against a "... B" badge). embedded additionally finds ordinals
    inside longer commands ("open the second one"). Every strict match
    is also an embedded match with the same index.
    """
    if candidate_count <= 0 or not text or not text.strip():
        return _NO_SELECTION

    strict = _strict_selection(text, candidate_count, labels)
    if strict.is_selection or SelectionMode(mode) is SelectionMode.STRICT:
        return strict
    return _embedded_selection(text, candidate_count, labels)


# ---------------------------------------------------------------------------
# Command / question / exit detection
# ---------------------------------------------------------------------------

def is_explicit_command(text: str) -> bool:
    """True for verb-led UI commands. Ordinal-bearing input always returns False
    so the selection lane gets first refusal."""
    normalized = text.lower()
    if _ORDINAL_WORD.search(normalized):
        return False
    tokens = set(re.findall(r"[a-z]+", normalized))
    return any(verb in tokens for verb in _COMMAND_VERBS)


def has_question_intent(text: str) -> bool:
    normalized = text.lower().strip()
    return bool(_QUESTION_INTENT.match(normalized)) or normalized.endswith("?")


def is_polite_imperative_request(text: str) -> bool:
    """Polite commands such as "can you open recent?" are not questions."""
    normalized = _TRAILING_PUNCT.sub("", text.lower().strip())
    return bool(_POLITE_IMPERATIVE.match(normalized))


def is_question_input(text: str) -> bool:
    """Question intent as the selection lanes see it: a trailing "?" alone does not count."""
    stripped = _TRAILING_PUNCT.sub("", text.strip())
    return has_question_intent(stripped) and not is_polite_imperative_request(text)


def is_new_question_or_command(text: str) -> bool:
    trimmed = text.strip()
    return bool(
        _QUESTION_START.match(trimmed)
        or _COMMAND_START.match(trimmed)
        or re.match(r"^(tell|explain|describe)\b", trimmed, re.IGNORECASE)
    )


def is_exit_phrase(text: str) -> bool:
    return bool(_EXIT_PATTERN.search(text.lower().strip()))


def canonicalize_command_input(text: str) -> str:
    """Strip polite prefixes, leading articles and trailing filler.

        canonicalize_command_input("Hey can you please open the Links Panel pls?")
        # "links panel"
    """
    normalized = _TRAILING_PUNCT.sub("", text.lower().strip())
    for prefix in _COMMAND_PREFIXES:
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix):].strip()
            break
    normalized = re.sub(r"^(the|a|an)\s+", "", normalized).strip()
    normalized = re.sub(r"\s+(pls|please|plz|thanks|thx|now)$", "", normalized).strip()
    return re.sub(r"\s+", " ", normalized)


# ---------------------------------------------------------------------------
# Scope cues
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScopeCue:
    """Explicit scope marker found in the input.

    Attributes:
        scope:      Target scope (Scope.NONE when no cue)
        cue_text:   The matched marker text
        confidence: "high" when a cue matched, otherwise "none"
    """
    scope: Scope = Scope.NONE
    cue_text: str | None = None
    confidence: str = "none"


# Evaluated in order; first hit wins regardless of token position
_SCOPE_CUES: list[tuple[Scope, re.Pattern]] = [
    (Scope.CHAT, re.compile(
        r"\b(back to options|from earlier options|from chat options?|from the chat|from chat|in chat)\b")),
    (Scope.WIDGET, re.compile(
        r"\b(from links panel\s*[a-z]?|from recent|from active widget|from the widget)\b")),
    (Scope.DASHBOARD, re.compile(
        r"\b(from dashboard|in dashboard|from active dashboard|from the dashboard)\b")),
    (Scope.WORKSPACE, re.compile(
        r"\b(from workspace|in workspace|from active workspace|from the workspace)\b")),
]


def resolve_scope_cue(text: str, widget_labels: Sequence[str] = ()) -> ScopeCue:
    """Detect an explicit scope marker. Precedence: chat, widget, dashboard, workspace.

    widget_labels lets "from <widget label>" count as a widget cue for
    widgets the host currently shows.
    """
    normalized = text.lower().strip()
    for scope, pattern in _SCOPE_CUES:
        match = pattern.search(normalized)
        if match:
            return ScopeCue(scope, match.group(0), "high")
        if scope is Scope.WIDGET:
            for label in widget_labels:
                cue = f"from {label.lower().strip()}"
                if re.search(rf"\b{re.escape(cue)}\b", normalized):
                    return ScopeCue(Scope.WIDGET, cue, "high")
    return ScopeCue()


# ---------------------------------------------------------------------------
# Arbitration confidence
# ---------------------------------------------------------------------------

class ConfidenceBucket(str, Enum):
    HIGH_CONFIDENCE_EXECUTE = "high_confidence_execute"
    LOW_CONFIDENCE_LLM_ELIGIBLE = "low_confidence_llm_eligible"
    LOW_CONFIDENCE_CLARIFIER_ONLY = "low_confidence_clarifier_only"


class AmbiguityReason(str, Enum):
    MULTI_MATCH_NO_EXACT_WINNER = "multi_match_no_exact_winner"
    COMMAND_SELECTION_COLLISION = "command_selection_collision"
    NO_CANDIDATE = "no_candidate"
    NO_DETERMINISTIC_MATCH = "no_deterministic_match"


@dataclass(frozen=True)
class ArbitrationConfidence:
    bucket: ConfidenceBucket
    ambiguity_reason: AmbiguityReason | None
    candidates: tuple[Any, ...] = field(default_factory=tuple)

    @property
    def llm_eligible(self) -> bool:
        return self.bucket is ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE


def classify_arbitration_confidence(
    match_count: int,
    exact_match_count: int,
    input_is_explicit_command: bool,
    is_new_question_or_command: bool,
    candidates: Sequence[Any],
    has_active_option_context: bool = False,
) -> ArbitrationConfidence:
    """Single source of truth for "execute, ask the LLM, or just clarify".

    Command-phrased input with active options and no unique winner is
    LLM-eligible (command_selection_collision), never auto-escaped.
    """
    candidates = tuple(candidates)
    if match_count == 0:
        if has_active_option_context and candidates:
            return ArbitrationConfidence(
                ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE,
                AmbiguityReason.NO_DETERMINISTIC_MATCH, candidates,
            )
        return ArbitrationConfidence(
            ConfidenceBucket.LOW_CONFIDENCE_CLARIFIER_ONLY,
            AmbiguityReason.NO_CANDIDATE, candidates,
        )

    if match_count == 1 or exact_match_count == 1:
        return ArbitrationConfidence(ConfidenceBucket.HIGH_CONFIDENCE_EXECUTE, None, candidates)

    if input_is_explicit_command or is_new_question_or_command:
        return ArbitrationConfidence(
            ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE,
            AmbiguityReason.COMMAND_SELECTION_COLLISION, candidates,
        )
    return ArbitrationConfidence(
        ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE,
        AmbiguityReason.MULTI_MATCH_NO_EXACT_WINNER, candidates,
    )
