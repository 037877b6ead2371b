"""Prometheus collectors for the orchestration core."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

TURNS_TOTAL = Counter(
    "sophia_turns_total",
    "Processed turns by routed agent mode and outcome",
    ["mode", "outcome"],
)
CLASSIFIER_FALLBACKS = Counter(
    "sophia_classifier_fallbacks_total",
    "Turns where signal extraction failed and default signals were used",
)
HANDLER_FAILURES = Counter(
    "sophia_handler_failures_total",
    "Agent handler failures replaced by the outage template",
    ["mode"],
)
DEFERRALS = Counter(
    "sophia_deferrals_total",
    "Deferred topic operations by machine type and action",
    ["machine_type", "action"],
)
CONTEXT_LOAD_SECONDS = Histogram(
    "sophia_context_load_seconds",
    "Context loading duration in seconds",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5),
    labelnames=["profile"],
)
TURN_LATENCY = Histogram(
    "sophia_turn_duration_seconds",
    "End-to-end process_turn duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

__all__ = [
    "TURNS_TOTAL",
    "CLASSIFIER_FALLBACKS",
    "HANDLER_FAILURES",
    "DEFERRALS",
    "CONTEXT_LOAD_SECONDS",
    "TURN_LATENCY",
]
