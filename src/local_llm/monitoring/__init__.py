"""Monitoring and metrics instrumentation for Local LLM Companion.

Exports custom Prometheus metrics for the inference client and the
degradation layer.
"""

from local_llm.monitoring.metrics import (
    connection_up,
    errors_handled_total,
    feature_state,
    llm_errors_total,
    llm_latency_seconds,
    llm_requests_total,
    llm_retries_total,
    llm_tokens_total,
    record_feature_state,
    scheduled_retries_total,
)

__all__ = [
    "connection_up",
    "errors_handled_total",
    "feature_state",
    "llm_errors_total",
    "llm_latency_seconds",
    "llm_requests_total",
    "llm_retries_total",
    "llm_tokens_total",
    "record_feature_state",
    "scheduled_retries_total",
]
