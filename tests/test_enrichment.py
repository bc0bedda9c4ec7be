"""Tests for scope-bound enrichment and evidence fingerprints."""

from clarify.enrichment import (
    EnrichmentSources,
    compute_evidence_fingerprint,
    create_enrichment_callback,
    format_enriched_context,
)
from clarify.models import Scope, WidgetSelectionContext
from tests.helpers import make_clarification, make_options


def test_fingerprint_ignores_candidate_order_and_metadata_order():
    a = compute_evidence_fingerprint(["opt-1", "opt-0"], Scope.CHAT, {"b": 1, "a": "x"})
    b = compute_evidence_fingerprint(["opt-0", "opt-1"], "chat", {"a": "x", "b": 1})
    assert a == b


def test_fingerprint_changes_with_metadata():
    before = compute_evidence_fingerprint(["opt-0"], Scope.CHAT, {})
    after = compute_evidence_fingerprint(["opt-0"], Scope.CHAT, {"source": "chat"})
    assert before != after


def test_format_enriched_context():
    assert format_enriched_context({"source": "chat", "count": 2}) == "source: chat; count: 2"


def test_chat_callback_reads_recoverable_option_sets():
    sources = EnrichmentSources(
        last_clarification=make_clarification(["Panel A", "Panel B"]),
        recovery_options=make_options(["Recent"]),
    )
    enrichment = create_enrichment_callback(Scope.CHAT, sources)(["chat_active_options"])
    assert enrichment.metadata["lastClarification_labels"] == "Panel A, Panel B"
    assert enrichment.metadata["recoveryMemory_labels"] == "Recent"
    assert "snapshot_labels" not in enrichment.metadata


def test_chat_callback_without_sources_is_unavailable():
    assert create_enrichment_callback(Scope.CHAT, EnrichmentSources())([]) is None


def test_widget_callback():
    widget = WidgetSelectionContext("w-1", "Quick Links", make_options(["Doc 1", "Doc 2"]))
    enrichment = create_enrichment_callback(Scope.WIDGET, EnrichmentSources(widget_selection=widget))([])
    assert enrichment.metadata == {
        "widget_context": "active",
        "widget_panelId": "w-1",
        "widget_label": "Quick Links",
        "widget_item_labels": "Doc 1, Doc 2",
    }


def test_dashboard_and_workspace_have_no_source():
    sources = EnrichmentSources(last_clarification=make_clarification(["Panel A"]))
    assert create_enrichment_callback(Scope.DASHBOARD, sources)([]) is None
    assert create_enrichment_callback(Scope.WORKSPACE, sources)([]) is None


def test_scope_none_prefers_active_widget():
    widget = WidgetSelectionContext("w-1")
    sources = EnrichmentSources(
        last_clarification=make_clarification(["Panel A"]), widget_selection=widget,
    )
    enrichment = create_enrichment_callback(Scope.NONE, sources)([])
    assert enrichment.metadata["widget_context"] == "active"

    chat_only = EnrichmentSources(last_clarification=make_clarification(["Panel A"]))
    assert "lastClarification_labels" in create_enrichment_callback(Scope.NONE, chat_only)([]).metadata
