"""Tests for deterministic label matching, new-topic detection and escalation."""

from clarify.label_matching import (
    EXIT_OPTIONS,
    MAX_ATTEMPT_COUNT,
    detect_new_topic,
    escalation_message,
    match_label,
    to_canonical_tokens,
)
from tests.helpers import make_options

OPTIONS = make_options(["Links Panel A", "Links Panel B", "Links Panel D"])


class TestMatchLabel:
    def test_canonical_equality_with_alias(self):
        match = match_label("links panels d", OPTIONS)
        assert match.kind == "exact"
        assert match.option.id == "opt-2"
        assert match.confidence == "high"

    def test_unique_subset_maps(self):
        match = match_label("panel b", OPTIONS)
        assert match.kind == "mapped"
        assert match.option.id == "opt-1"
        assert match.is_unique

    def test_shared_tokens_are_ambiguous(self):
        match = match_label("panel", OPTIONS)
        assert match.kind == "ambiguous"
        assert match.match_count == 3
        assert match.exact_match_count == 0
        assert not match.is_unique

    def test_no_match(self):
        match = match_label("settings", OPTIONS)
        assert match.kind == "no_match"
        assert match.option is None

    def test_stopwords_only_input(self):
        assert match_label("the", OPTIONS).reason == "empty_input_tokens"

    def test_no_options(self):
        assert match_label("panel b", ()).reason == "no_options"

    def test_workspace_list_requires_exact(self):
        workspaces = make_options(["Research", "Research Notes"], type_="workspace")
        assert match_label("research", workspaces, "workspace_list").option.id == "opt-0"
        match = match_label("notes", workspaces, "workspace_list")
        assert match.kind == "no_match"
        assert match.reason == "workspace_requires_exact"

    def test_canonical_tokens(self):
        assert to_canonical_tokens("The Links, please!") == frozenset({"links"})


class TestDetectNewTopic:
    def test_command_with_novel_tokens_is_new_topic(self):
        result = detect_new_topic("open settings", OPTIONS, match_label("open settings", OPTIONS))
        assert result.is_new_topic
        assert result.non_overlapping_tokens == ("settings",)

    def test_tokens_overlapping_options_stay_in_clarifier(self):
        result = detect_new_topic("open panel", OPTIONS, match_label("open panel", OPTIONS))
        assert not result.is_new_topic
        assert result.reason == "all_tokens_overlap_options"

    def test_label_match_is_never_new_topic(self):
        result = detect_new_topic("panel b", OPTIONS, match_label("panel b", OPTIONS))
        assert result.reason == "has_label_match"

    def test_plain_phrase_is_not_new_topic(self):
        result = detect_new_topic("hmm maybe", OPTIONS, match_label("hmm maybe", OPTIONS))
        assert result.reason == "not_clear_command_or_question"


class TestEscalation:
    def test_first_attempts_do_not_offer_exits(self):
        assert escalation_message(1).content == "Please choose one of the options:"
        assert escalation_message(2).content == "Which one is closer to what you need?"
        assert not escalation_message(2).show_exits

    def test_exits_from_max_attempts(self):
        message = escalation_message(MAX_ATTEMPT_COUNT)
        assert message.show_exits
        assert [o.label for o in EXIT_OPTIONS] == ["None of these", "Start over"]
