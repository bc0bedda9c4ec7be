"""Tests for the stateless input classifiers."""

import pytest

from clarify.classifiers import (
    AmbiguityReason,
    ConfidenceBucket,
    SelectionMode,
    canonicalize_command_input,
    classify_arbitration_confidence,
    has_question_intent,
    is_exit_phrase,
    is_explicit_command,
    is_question_input,
    is_selection_only,
    levenshtein_distance,
    normalize_ordinal_typos,
    resolve_scope_cue,
)
from clarify.models import Scope
from tests.helpers import make_options

LINKS_LABELS = ["Links Panel A", "Links Panel B", "Links Panel D"]


# ---------------------------------------------------------------------------
# Ordinal typo normalization
# ---------------------------------------------------------------------------

class TestNormalizeOrdinalTypos:
    def test_repeated_letters_are_collapsed(self):
        assert normalize_ordinal_typos("ffirst") == "first"

    def test_concatenated_ordinal_and_noun_are_split(self):
        assert normalize_ordinal_typos("secondoption") == "second option"

    def test_short_tokens_are_never_altered(self):
        assert normalize_ordinal_typos("for") == "for"

    def test_polite_suffix_and_single_edit_typo(self):
        assert normalize_ordinal_typos("secnd pls") == "second"

    def test_command_verbs_are_not_mistaken_for_last(self):
        assert normalize_ordinal_typos("list") == "list"

    def test_protected_words_are_not_repaired(self):
        assert normalize_ordinal_typos("open the east one") == "open the last one"
        assert normalize_ordinal_typos("open the east one", {"east", "wing"}) == "open the east one"

    def test_levenshtein_distance(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0


# ---------------------------------------------------------------------------
# Selection detection
# ---------------------------------------------------------------------------

class TestIsSelectionOnly:
    @pytest.mark.parametrize("text, index", [
        ("first", 0),
        ("2", 1),
        ("option 2", 1),
        ("last", 2),
        ("the first one", 0),
    ])
    def test_strict_ordinals(self, text, index):
        result = is_selection_only(text, 3, LINKS_LABELS, SelectionMode.STRICT)
        assert result.is_selection
        assert result.index == index

    def test_letter_badge_resolves_against_label_suffix(self):
        result = is_selection_only("d", 3, LINKS_LABELS, SelectionMode.STRICT)
        assert result.is_selection
        assert result.index == 2

    def test_out_of_bounds_index_is_not_a_selection(self):
        assert not is_selection_only("4", 3, LINKS_LABELS).is_selection
        assert not is_selection_only("fifth", 3, LINKS_LABELS, SelectionMode.EMBEDDED).is_selection

    def test_embedded_ordinal_inside_command(self):
        assert not is_selection_only("open the second one", 3, LINKS_LABELS, SelectionMode.STRICT).is_selection
        result = is_selection_only("open the second one", 3, LINKS_LABELS, SelectionMode.EMBEDDED)
        assert result.is_selection
        assert result.index == 1

    def test_embedded_word_numbers_and_positions(self):
        assert is_selection_only("three", 3, mode=SelectionMode.EMBEDDED).index == 2
        assert is_selection_only("bottom", 3, mode=SelectionMode.EMBEDDED).index == 2
        assert is_selection_only("the other one", 2, mode=SelectionMode.EMBEDDED).index == 1

    def test_other_one_needs_exactly_two_options(self):
        assert not is_selection_only("the other one", 3, mode=SelectionMode.EMBEDDED).is_selection

    def test_label_words_are_not_read_as_ordinals(self):
        labels = ["East Wing", "West Wing", "Lobby"]
        assert not is_selection_only("open the east one", 3, labels, SelectionMode.EMBEDDED).is_selection
        assert not is_selection_only("east", 3, labels, SelectionMode.STRICT).is_selection
        assert is_selection_only("open the last one", 3, labels, SelectionMode.EMBEDDED).index == 2

    def test_digits_inside_words_are_not_ordinals(self):
        result = is_selection_only("open the sample2 pls", 3, LINKS_LABELS, SelectionMode.EMBEDDED)
        assert not result.is_selection

    @pytest.mark.parametrize("text", [
        "first", "2", "option 3", "last", "b", "the second one", "ffirst", "secnd",
    ])
    def test_every_strict_match_is_an_embedded_match(self, text):
        strict = is_selection_only(text, 3, LINKS_LABELS, SelectionMode.STRICT)
        embedded = is_selection_only(text, 3, LINKS_LABELS, SelectionMode.EMBEDDED)
        assert strict.is_selection
        assert embedded == strict

    def test_empty_input_or_no_candidates(self):
        assert not is_selection_only("", 3).is_selection
        assert not is_selection_only("first", 0).is_selection


# ---------------------------------------------------------------------------
# Commands, questions, exits
# ---------------------------------------------------------------------------

class TestCommandAndQuestion:
    def test_verb_led_commands(self):
        assert is_explicit_command("open recent")
        assert is_explicit_command("go home")
        assert not is_explicit_command("hello there")

    def test_ordinal_input_bypasses_command_detection(self):
        assert not is_explicit_command("open the second one")

    def test_question_intent(self):
        assert has_question_intent("what is panel a")
        assert has_question_intent("panel a?")
        assert is_question_input("what is panel a?")

    def test_trailing_question_mark_alone_is_not_a_question_input(self):
        assert not is_question_input("panel a?")

    def test_polite_imperative_is_not_a_question(self):
        assert not is_question_input("can you open recent?")

    @pytest.mark.parametrize("text", ["never mind", "start over", "cancel that", "stop", "None of these"])
    def test_exit_phrases(self, text):
        assert is_exit_phrase(text)

    @pytest.mark.parametrize("text", ["open panel", "nonetheless open it", "show stopwatch"])
    def test_not_exit_phrases(self, text):
        assert not is_exit_phrase(text)

    def test_canonicalize_strips_polite_wrapper(self):
        assert canonicalize_command_input("Hey can you please open the Links Panel pls?") == "links panel"


# ---------------------------------------------------------------------------
# Scope cues
# ---------------------------------------------------------------------------

class TestResolveScopeCue:
    @pytest.mark.parametrize("text, scope", [
        ("open panel d from chat from links panel d", Scope.CHAT),
        ("from links panel d from chat", Scope.CHAT),
        ("open panel d from links panel d", Scope.WIDGET),
        ("open panel from dashboard", Scope.DASHBOARD),
        ("show item from workspace", Scope.WORKSPACE),
        ("open panel d", Scope.NONE),
    ])
    def test_precedence(self, text, scope):
        assert resolve_scope_cue(text).scope is scope

    def test_known_widget_label_is_a_widget_cue(self):
        cue = resolve_scope_cue("open item from quick links", widget_labels=["Quick Links"])
        assert cue.scope is Scope.WIDGET
        assert cue.cue_text == "from quick links"
        assert cue.confidence == "high"

    def test_no_cue(self):
        cue = resolve_scope_cue("open item from quick links")
        assert cue.scope is Scope.NONE
        assert cue.cue_text is None


# ---------------------------------------------------------------------------
# Arbitration confidence
# ---------------------------------------------------------------------------

class TestArbitrationConfidence:
    candidates = make_options(["Links Panel A", "Links Panel B"])

    def test_no_match_with_active_options_is_llm_eligible(self):
        result = classify_arbitration_confidence(0, 0, False, False, self.candidates,
                                                 has_active_option_context=True)
        assert result.bucket is ConfidenceBucket.LOW_CONFIDENCE_LLM_ELIGIBLE
        assert result.ambiguity_reason is AmbiguityReason.NO_DETERMINISTIC_MATCH
        assert result.llm_eligible

    def test_no_match_without_context_only_clarifies(self):
        result = classify_arbitration_confidence(0, 0, False, False, self.candidates)
        assert result.bucket is ConfidenceBucket.LOW_CONFIDENCE_CLARIFIER_ONLY
        assert not result.llm_eligible

    def test_single_match_executes(self):
        result = classify_arbitration_confidence(1, 0, False, False, self.candidates)
        assert result.bucket is ConfidenceBucket.HIGH_CONFIDENCE_EXECUTE

    def test_command_collision_is_llm_eligible(self):
        result = classify_arbitration_confidence(2, 0, True, False, self.candidates)
        assert result.ambiguity_reason is AmbiguityReason.COMMAND_SELECTION_COLLISION
        assert result.llm_eligible

    def test_multi_match_without_exact_winner(self):
        result = classify_arbitration_confidence(2, 0, False, False, self.candidates)
        assert result.ambiguity_reason is AmbiguityReason.MULTI_MATCH_NO_EXACT_WINNER
