"""
Clarify Context Enrichment

Evidence handed to the LLM on its single retry after it answered
request_context. Enrichment never adds candidates: the option list is
frozen for the whole cycle, so only descriptive metadata changes.

Each scope has its own source:
    chat       labels of the clarifier, snapshot, last shown and recoverable option sets
    widget     the active widget selection context
    dashboard  none (the loop reports scope_not_available)
    workspace  none (the loop reports scope_not_available)
    none       the widget source when a widget selection is active, otherwise chat

Usage:
    from clarify.enrichment import EnrichmentSources, create_enrichment_callback

    callback = create_enrichment_callback(Scope.CHAT, EnrichmentSources(last_clarification=lc))
    enrichment = callback(["chat_active_options"])
"""

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence, Union

from clarify.models import (
    ClarificationOption,
    LastClarificationState,
    Scope,
    WidgetSelectionContext,
)


@dataclass(frozen=True)
class Enrichment:
    """Metadata returned by an enrichment callback."""
    metadata: dict[str, Any] = field(default_factory=dict)


# Callbacks may be plain functions or coroutines (e.g. a snapshot fetch)
EnrichmentCallback = Callable[
    [Sequence[str]],
    Union[Enrichment, None, Awaitable[Union[Enrichment, None]]],
]


# ---------------------------------------------------------------------------
# Fingerprinting
# ---------------------------------------------------------------------------

def _json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def compute_evidence_fingerprint(
    candidate_ids: Sequence[str],
    scope: Scope | str,
    metadata: dict[str, Any],
) -> str:
    """Stable digest of (frozen candidates, scope, metadata).

    Candidates are frozen within a cycle, so a changed fingerprint means
    the metadata itself changed.
    """
    ids = ",".join(sorted(candidate_ids))
    entries = ";".join(f"{k}={_json(metadata[k])}" for k in sorted(metadata))
    return f"{ids}|{Scope(scope).value}|{entries}"


def format_enriched_context(metadata: dict[str, Any]) -> str:
    """Render metadata as "key: value; key2: value2" for the retry prompt."""
    return "; ".join(
        f"{k}: {v if isinstance(v, str) else _json(v)}" for k, v in metadata.items()
    )


# ---------------------------------------------------------------------------
# Scope-bound sources
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EnrichmentSources:
    """Recoverable option sets the host can offer as retry evidence."""
    last_clarification: LastClarificationState | None = None
    clarification_snapshot: Sequence[ClarificationOption] = ()
    last_options_shown: Sequence[ClarificationOption] = ()
    recovery_options: Sequence[ClarificationOption] = ()
    widget_selection: WidgetSelectionContext | None = None


def _labels(options: Sequence[ClarificationOption]) -> str:
    return ", ".join(o.display_label() for o in options)


def enrich_chat_evidence(sources: EnrichmentSources) -> Enrichment | None:
    metadata: dict[str, Any] = {}
    if sources.last_clarification and sources.last_clarification.options:
        metadata["lastClarification_labels"] = _labels(sources.last_clarification.options)
        metadata["lastClarification_source"] = "lastClarification"
    if sources.clarification_snapshot:
        metadata["snapshot_labels"] = _labels(sources.clarification_snapshot)
        metadata["snapshot_source"] = "clarificationSnapshot"
    if sources.last_options_shown:
        metadata["lastOptionsShown_labels"] = _labels(sources.last_options_shown)
    if sources.recovery_options:
        metadata["recoveryMemory_labels"] = _labels(sources.recovery_options)
    return Enrichment(metadata) if metadata else None


def enrich_widget_evidence(sources: EnrichmentSources) -> Enrichment | None:
    widget = sources.widget_selection
    if widget is None:
        return None
    metadata: dict[str, Any] = {
        "widget_context": "active",
        "widget_panelId": widget.widget_id or "unknown",
    }
    if widget.widget_label:
        metadata["widget_label"] = widget.widget_label
    if widget.options:
        metadata["widget_item_labels"] = _labels(widget.options)
    return Enrichment(metadata)


def create_enrichment_callback(scope: Scope | str, sources: EnrichmentSources) -> EnrichmentCallback:
    """Enrichment fetcher for the resolved scope.

    Dashboard and workspace have no evidence source; their callback
    returns None and the loop reports scope_not_available.
    """
    scope = Scope(scope)

    def callback(needed_context: Sequence[str]) -> Enrichment | None:
        if scope is Scope.CHAT:
            return enrich_chat_evidence(sources)
        if scope is Scope.WIDGET:
            return enrich_widget_evidence(sources)
        if scope in (Scope.DASHBOARD, Scope.WORKSPACE):
            return None
        if scope is Scope.NONE:
            if sources.widget_selection is not None:
                return enrich_widget_evidence(sources)
            return enrich_chat_evidence(sources)
        raise ValueError(f"Unhandled scope: {scope}")

    return callback
