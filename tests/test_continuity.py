"""Tests for the selection continuity resolver and its state transitions."""

from clarify.continuity import record_execution, record_reshow, resolve_continuity
from clarify.models import (
    MAX_REJECTED_CHOICES,
    Scope,
    SelectionActionTrace,
    SelectionContinuityState,
)
from tests.helpers import make_options

OPTIONS = make_options(["Links Panel A", "Links Panel B", "Links Panel D"])


def state(rejected=(), option_set="msg-1", scope=Scope.CHAT, last=None):
    return SelectionContinuityState(
        active_option_set_id=option_set,
        active_scope=scope,
        recent_rejected_choice_ids=tuple(rejected),
        last_resolved_action=last,
    )


def resolve(continuity, option_set_id="msg-1", scope=Scope.CHAT, **kwargs):
    return resolve_continuity(OPTIONS, continuity, option_set_id, scope, **kwargs)


class TestResolveContinuity:
    def test_single_eligible_candidate_wins(self):
        result = resolve(state(rejected=["opt-0", "opt-1"]))
        assert result.resolved
        assert result.winner_id == "opt-2"
        assert result.reason == "continuity_deterministic"

    def test_two_eligible_candidates_stay_ambiguous(self):
        result = resolve(state(rejected=["opt-0"]))
        assert not result.resolved
        assert result.reason == "ambiguous_2_candidates"

    def test_all_rejected(self):
        result = resolve(state(rejected=["opt-0", "opt-1", "opt-2"]))
        assert result.reason == "all_candidates_rejected"

    def test_stale_option_set(self):
        result = resolve(state(rejected=["opt-0", "opt-1"]), option_set_id="msg-2")
        assert result.reason == "option_set_mismatch"

    def test_missing_option_set_ids(self):
        assert resolve(state(option_set=None)).reason == "null_option_set_id"
        assert resolve(state(option_set=""), option_set_id="").reason == "null_option_set_id"

    def test_scope_mismatch(self):
        result = resolve(state(rejected=["opt-0", "opt-1"]), scope=Scope.WIDGET)
        assert result.reason == "scope_mismatch"

    def test_question_and_non_command_inputs_are_refused(self):
        continuity = state(rejected=["opt-0", "opt-1"])
        assert resolve(continuity, is_question_intent=True).reason == "question_intent"
        assert resolve(continuity, is_command_or_selection=False).reason == "not_command_or_selection"

    def test_does_not_replay_the_action_already_taken(self):
        last = SelectionActionTrace(
            type="select_option", target_ref="Links Panel D",
            source_scope=Scope.CHAT, option_set_id="msg-1",
        )
        result = resolve(state(rejected=["opt-0", "opt-1"], last=last))
        assert not result.resolved
        assert result.reason == "loop_guard_same_cycle"

    def test_action_from_another_option_set_does_not_block(self):
        last = SelectionActionTrace(
            type="select_option", target_ref="Links Panel D",
            source_scope=Scope.CHAT, option_set_id="msg-0",
        )
        assert resolve(state(rejected=["opt-0", "opt-1"], last=last)).resolved

    def test_is_deterministic(self):
        continuity = state(rejected=["opt-1", "opt-2"])
        results = {resolve(continuity).winner_id for _ in range(5)}
        assert results == {"opt-0"}


class TestTransitions:
    def test_record_execution_sets_trace(self):
        updated = record_execution(state(), OPTIONS[1], "msg-1", Scope.CHAT)
        trace = updated.last_resolved_action
        assert trace.target_ref == "Links Panel B"
        assert trace.option_set_id == "msg-1"
        assert trace.outcome == "success"
        assert updated.pending_clarifier_type is None

    def test_record_reshow_rebinds_and_keeps_rejections(self):
        updated = record_reshow(state(rejected=["opt-0"]), "msg-2", Scope.CHAT, rejected_ids=["opt-1"])
        assert updated.active_option_set_id == "msg-2"
        assert updated.recent_rejected_choice_ids == ("opt-0", "opt-1")
        assert updated.pending_clarifier_type == "selection_disambiguation"

    def test_with_option_set_clears_rejections(self):
        updated = state(rejected=["opt-0"]).with_option_set("msg-9", Scope.WIDGET)
        assert updated.recent_rejected_choice_ids == ()
        assert updated.active_scope is Scope.WIDGET

    def test_rejections_are_bounded_and_deduplicated(self):
        ids = [f"opt-{i}" for i in range(MAX_REJECTED_CHOICES + 2)]
        updated = state().with_rejected(ids).with_rejected(["opt-6"])
        assert len(updated.recent_rejected_choice_ids) == MAX_REJECTED_CHOICES
        assert updated.recent_rejected_choice_ids[-1] == "opt-6"
        assert updated.recent_rejected_choice_ids.count("opt-6") == 1

    def test_large_option_set_can_narrow_to_one(self):
        options = make_options([f"Room {i}" for i in range(8)])
        updated = state()
        for i in range(7):
            updated = record_reshow(updated, f"msg-{i + 2}", Scope.CHAT,
                                    rejected_ids=[f"opt-{i}"], option_count=len(options))
        assert len(updated.recent_rejected_choice_ids) == 7

        result = resolve_continuity(options, updated, updated.active_option_set_id, Scope.CHAT)
        assert result.resolved
        assert result.winner_id == "opt-7"
