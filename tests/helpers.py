"""Builders shared by the test modules."""

from clarify.config import FeatureFlags
from clarify.llm_fallback import ClarificationLLMResponse, LLMCallResult
from clarify.models import ClarificationOption, LastClarificationState


ALL_ON = FeatureFlags(
    llm_fallback_enabled=True,
    context_retry_enabled=True,
    auto_execute_enabled=True,
    selection_continuity_lane_enabled=True,
)


def make_options(labels, type_="panel_drawer"):
    """Options with ids opt-0, opt-1, ... in label order."""
    return tuple(
        ClarificationOption(id=f"opt-{i}", label=label, type=type_)
        for i, label in enumerate(labels)
    )


def make_clarification(labels, message_id="msg-1", attempt_count=0):
    return LastClarificationState(
        message_id=message_id,
        options=make_options(labels),
        original_intent="open links panel",
        attempt_count=attempt_count,
    )


def llm_select(choice_id, confidence=0.9):
    return LLMCallResult(True, response=ClarificationLLMResponse(
        decision="select", choice_id=choice_id, choice_index=int(choice_id.split("-")[1]),
        confidence=confidence, reason="matched", contract_version="2.0",
    ))


def llm_decision(decision, confidence=0.5, reason="", needed_context=()):
    return LLMCallResult(True, response=ClarificationLLMResponse(
        decision=decision, confidence=confidence, reason=reason,
        needed_context=tuple(needed_context), contract_version="2.0",
    ))


def llm_request_context(*needed):
    return llm_decision("request_context", confidence=0.3, needed_context=needed)


def llm_error(error):
    return LLMCallResult(False, error=error)


class RecordingHost:
    """ClarificationHost that records every side effect."""

    def __init__(self, execute_result=True):
        self.execute_result = execute_result
        self.executed = []
        self.clarifiers = []
        self.messages = []
        self.last_clarification_updates = []
        self.continuity_updates = []
        self.continuity_resets = 0
        self.latch_cleared = 0
        self.latch_suspended = 0

    def execute_action(self, option):
        self.executed.append(option)
        return self.execute_result

    def show_clarifier(self, message_id, content, options):
        self.clarifiers.append((message_id, content, tuple(options)))

    def add_message(self, content):
        self.messages.append(content)

    def set_last_clarification(self, clarification):
        self.last_clarification_updates.append(clarification)

    def update_continuity(self, continuity):
        self.continuity_updates.append(continuity)

    def reset_continuity(self):
        self.continuity_resets += 1

    def clear_focus_latch(self):
        self.latch_cleared += 1

    def suspend_focus_latch(self):
        self.latch_suspended += 1
