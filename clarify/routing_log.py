"""
Clarify Routing Log

Structured record of every routing decision the clarification core makes:
which lane fired, what the LLM answered, why a retry was or was not
issued, and which fallback reason closed the cycle.

Events live in a bounded in-memory ring buffer and are forwarded to
Python's logging module. The buffer can be exported to JSON for offline
analysis of routing behaviour.

Usage:
    from clarify.routing_log import RoutingLog

    routing_log = RoutingLog(max_events=500)
    routing_log.info("arbitration", "llm_select", suggested_id="opt-2", confidence=0.9)
    routing_log.warn("arbitration", "llm_fallback", reason="timeout")
    routing_log.find(component="intercept", action="continuity_execute")
"""

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("clarify.routing")


SEVERITY_INFO = "INFO"
SEVERITY_WARN = "WARN"
SEVERITY_ERROR = "ERROR"


@dataclass
class RoutingEvent:
    """A single routing decision.

    Attributes:
        timestamp:  When the decision was made (UTC)
        severity:   INFO, WARN, or ERROR
        component:  Emitting component (classifier, continuity, arbitration, intercept, llm)
        action:     Short decision name, e.g. "llm_select" or "retry_skipped"
        metadata:   Decision inputs and outputs (ids, reasons, confidences)
    """
    timestamp: datetime
    severity: str
    component: str
    action: str
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity,
            "component": self.component,
            "action": self.action,
            "metadata": {k: _plain(v) for k, v in self.metadata.items()},
        }


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


class RoutingLog:
    """Bounded routing-decision log.

    When the buffer is full the oldest events are dropped.

    Args:
        max_events: Maximum number of events kept in memory.
    """

    def __init__(self, max_events: int = 500):
        self._events: deque[RoutingEvent] = deque(maxlen=max_events)

    # -------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------

    def info(self, component: str, action: str, **metadata):
        self._record(SEVERITY_INFO, component, action, metadata)

    def warn(self, component: str, action: str, **metadata):
        self._record(SEVERITY_WARN, component, action, metadata)

    def error(self, component: str, action: str, **metadata):
        self._record(SEVERITY_ERROR, component, action, metadata)

    def _record(self, severity: str, component: str, action: str, metadata: dict):
        event = RoutingEvent(
            timestamp=datetime.now(timezone.utc),
            severity=severity,
            component=component,
            action=action,
            metadata=metadata,
        )
        self._events.append(event)

        log_msg = f"[{component}] {action}"
        if metadata:
            log_msg += " (" + ", ".join(f"{k}={_plain(v)}" for k, v in metadata.items()) + ")"

        if severity == SEVERITY_ERROR:
            logger.error(log_msg)
        elif severity == SEVERITY_WARN:
            logger.warning(log_msg)
        else:
            logger.info(log_msg)

    # -------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------

    def find(self, component: str | None = None, action: str | None = None) -> list[RoutingEvent]:
        """Events matching component and/or action, oldest first."""
        return [
            e for e in self._events
            if (component is None or e.component == component)
            and (action is None or e.action == action)
        ]

    def get_recent(self, count: int = 100) -> list[dict]:
        """Return the most recent N events as dicts, newest last."""
        events = list(self._events)
        return [e.to_dict() for e in events[-count:]]

    def get_all(self) -> list[dict]:
        return [e.to_dict() for e in self._events]

    def clear(self):
        self._events.clear()

    @property
    def count(self) -> int:
        return len(self._events)

    # -------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------

    def export_json(self, filepath: str | Path) -> int:
        """Write all events to a JSON file and return how many were written."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        events = self.get_all()
        with open(filepath, "w") as f:
            json.dump({
                "exported_at": datetime.now(timezone.utc).isoformat(),
                "event_count": len(events),
                "events": events,
            }, f, indent=2)

        logger.info("Exported %d routing events to %s", len(events), filepath)
        return len(events)
