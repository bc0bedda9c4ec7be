"""Tests for the routing decision log."""

import json
import logging

from clarify.models import FallbackReason
from clarify.routing_log import RoutingLog


def test_events_are_bounded():
    routing_log = RoutingLog(max_events=3)
    for i in range(5):
        routing_log.info("arbitration", "loop_started", n=i)
    assert routing_log.count == 3
    assert [e["metadata"]["n"] for e in routing_log.get_recent()] == [2, 3, 4]


def test_find_filters_by_component_and_action():
    routing_log = RoutingLog()
    routing_log.info("intercept", "continuity_execute", winner_id="opt-2")
    routing_log.warn("arbitration", "llm_fallback", reason=FallbackReason.TIMEOUT)
    routing_log.info("intercept", "safe_clarifier")

    assert len(routing_log.find(component="intercept")) == 2
    assert len(routing_log.find(action="llm_fallback")) == 1
    assert routing_log.find("intercept", "continuity_execute")[0].metadata == {"winner_id": "opt-2"}


def test_enums_are_serialized_by_value():
    routing_log = RoutingLog()
    routing_log.warn("arbitration", "llm_fallback", reason=FallbackReason.TIMEOUT, ids=("a", "b"))
    event = routing_log.get_all()[0]
    assert event["severity"] == "WARN"
    assert event["metadata"] == {"reason": "timeout", "ids": ["a", "b"]}


def test_forwards_to_logging(caplog):
    routing_log = RoutingLog()
    with caplog.at_level(logging.INFO, logger="clarify.routing"):
        routing_log.error("llm", "api_call_failed", error="HTTP 500")
    assert "[llm] api_call_failed (error=HTTP 500)" in caplog.text
    assert caplog.records[-1].levelno == logging.ERROR


def test_export_json(tmp_path):
    routing_log = RoutingLog()
    routing_log.info("intercept", "stop_no_active_scope")
    path = tmp_path / "out" / "routing.json"

    assert routing_log.export_json(path) == 1
    data = json.loads(path.read_text())
    assert data["event_count"] == 1
    assert data["events"][0]["action"] == "stop_no_active_scope"


def test_clear():
    routing_log = RoutingLog()
    routing_log.info("intercept", "execute")
    routing_log.clear()
    assert routing_log.count == 0
