"""Tests for the LLM boundary: response validation and the async client."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from clarify.config import FeatureFlags, LLMSettings, Thresholds
from clarify.llm_fallback import (
    ClarificationLLMClient,
    ClarificationLLMRequest,
    build_user_prompt,
    parse_llm_json,
    validate_llm_response,
)
from tests.helpers import make_options

OPTIONS = make_options(["Links Panel A", "Links Panel B", "Links Panel D"])
REQUEST = ClarificationLLMRequest(
    user_input="the bee one", options=OPTIONS, context="clarification_unresolved",
)


def raw(**fields):
    base = {"decision": "select", "confidence": 0.9, "reason": "r", "contractVersion": "2.0"}
    base.update(fields)
    return base


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class TestValidateLLMResponse:
    def test_select_by_choice_id(self):
        response = validate_llm_response(raw(choiceId="opt-1"), REQUEST)
        assert response.decision == "select"
        assert response.choice_id == "opt-1"
        assert response.choice_index == 1

    def test_choice_id_derived_from_index(self):
        response = validate_llm_response(raw(choiceIndex=2), REQUEST)
        assert response.choice_id == "opt-2"

    def test_invalid_choice_becomes_none(self):
        response = validate_llm_response(raw(choiceId="opt-9", choiceIndex=7), REQUEST)
        assert response.decision == "none"
        assert response.reason == "Invalid choice index"

    def test_low_confidence_select_is_lowered(self):
        assert validate_llm_response(raw(choiceId="opt-1", confidence=0.5), REQUEST).decision == "ask_clarify"
        assert validate_llm_response(raw(choiceId="opt-1", confidence=0.2), REQUEST).decision == "none"

    def test_custom_thresholds(self):
        strict = Thresholds(min_confidence_select=0.95)
        response = validate_llm_response(raw(choiceId="opt-1"), REQUEST, thresholds=strict)
        assert response.decision == "ask_clarify"

    def test_malformed_payloads_are_downgraded(self):
        for payload in (None, {}, {"decision": 3}, raw(confidence="high")):
            response = validate_llm_response(payload, REQUEST)
            assert response.decision == "none"
            assert response.downgrade_reason == "malformed_response"

    def test_unknown_decision(self):
        response = validate_llm_response(raw(decision="maybe"), REQUEST)
        assert response.downgrade_reason == "unknown_decision"

    def test_request_context_contract_mismatch(self):
        response = validate_llm_response(
            raw(decision="request_context", contractVersion="1.0", neededContext=["chat_active_options"]),
            REQUEST,
        )
        assert response.decision == "ask_clarify"
        assert response.reason == "Downgraded: contract_version_mismatch"

    def test_request_context_needed_context_must_be_a_list(self):
        response = validate_llm_response(raw(decision="request_context", neededContext="chat"), REQUEST)
        assert response.decision == "ask_clarify"
        assert response.downgrade_reason == "invalid_needed_context"

    def test_needed_context_is_allow_listed_deduplicated_and_capped(self):
        response = validate_llm_response(raw(
            decision="request_context",
            neededContext=["rm -rf", "chat_active_options", "chat_active_options",
                           "active_widget_items", "scope_disambiguation_hint"],
        ), REQUEST, llm_settings=LLMSettings(max_needed_context_items=2))
        assert response.decision == "request_context"
        assert response.needed_context == ("chat_active_options", "active_widget_items")

    def test_confidence_is_clamped(self):
        assert validate_llm_response(raw(choiceId="opt-0", confidence=4), REQUEST).confidence == 1.0


class TestPrompt:
    def test_parse_strips_code_fence(self):
        assert parse_llm_json('```json\n{"decision": "none"}\n```') == {"decision": "none"}
        assert parse_llm_json("not json") is None
        assert parse_llm_json("[1, 2]") is None

    def test_user_prompt_lists_stable_ids_and_hint(self):
        request = ClarificationLLMRequest("x", OPTIONS, "ctx", preferred_candidate_id="opt-2")
        prompt = build_user_prompt(request)
        assert '[1] ID="opt-1" Label="Links Panel B"' in prompt
        assert "Context: ctx" in prompt
        assert "Recently preferred option ID: opt-2" in prompt

    def test_request_to_dict_is_camel_case(self):
        data = REQUEST.to_dict()
        assert data["userInput"] == "the bee one"
        assert data["options"][0]["id"] == "opt-0"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

def fake_anthropic(text=None, error=None):
    client = MagicMock()
    if error is not None:
        client.messages.create = AsyncMock(side_effect=error)
    else:
        message = SimpleNamespace(content=[SimpleNamespace(type="text", text=text)])
        client.messages.create = AsyncMock(return_value=message)
    return client


_REQ = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class TestClarificationLLMClient:
    @pytest.mark.asyncio
    async def test_successful_select(self):
        client = ClarificationLLMClient(
            client=fake_anthropic(json.dumps(raw(choiceId="opt-1"))),
        )
        result = await client.call(REQUEST)
        assert result.success
        assert result.response.choice_id == "opt-1"
        assert result.to_dict()["response"]["choiceId"] == "opt-1"

    @pytest.mark.asyncio
    async def test_non_json_output_is_downgraded_not_raised(self):
        client = ClarificationLLMClient(client=fake_anthropic("I think B"))
        result = await client.call(REQUEST)
        assert result.success
        assert result.response.downgrade_reason == "malformed_response"

    @pytest.mark.asyncio
    async def test_timeout(self):
        client = ClarificationLLMClient(client=fake_anthropic(error=anthropic.APITimeoutError(request=_REQ)))
        result = await client.call(REQUEST)
        assert not result.success
        assert result.error == "Timeout"

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        error = anthropic.RateLimitError(
            "rate limited", response=httpx.Response(429, request=_REQ), body=None,
        )
        result = await ClarificationLLMClient(client=fake_anthropic(error=error)).call(REQUEST)
        assert result.error == "HTTP 429 Too Many Requests"

    @pytest.mark.asyncio
    async def test_other_status_errors(self):
        error = anthropic.InternalServerError(
            "boom", response=httpx.Response(500, request=_REQ), body=None,
        )
        result = await ClarificationLLMClient(client=fake_anthropic(error=error)).call(REQUEST)
        assert result.error == "HTTP 500"

    @pytest.mark.asyncio
    async def test_disabled_flag_short_circuits(self):
        sdk = fake_anthropic("{}")
        client = ClarificationLLMClient(client=sdk, flags=FeatureFlags(llm_fallback_enabled=False))
        result = await client.call(REQUEST)
        assert result.error == "LLM fallback disabled"
        sdk.messages.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        result = await ClarificationLLMClient(api_key="").call(REQUEST)
        assert result.error == "ANTHROPIC_API_KEY not configured"

    @pytest.mark.asyncio
    async def test_invalid_request(self):
        client = ClarificationLLMClient(client=fake_anthropic("{}"))
        result = await client.call(ClarificationLLMRequest("  ", OPTIONS, ""))
        assert not result.success
