"""Custom Prometheus metrics for Local LLM Companion.

These metrics are exposed at /metrics endpoint and should be scraped by Prometheus.
Alert rules should be configured for:
- llm_errors_total (sustained SERVER_ERROR or CONNECTION_REFUSED codes)
- connection_up (inference server down)
- feature_state (features stuck in unavailable or disabled)
"""

from prometheus_client import Counter, Gauge, Histogram

from local_llm.models.enums import Feature, FeatureState

# === Client Request Metrics ===

llm_requests_total = Counter(
    "llm_requests_total",
    "Total HTTP requests sent to the inference server",
    ["endpoint", "outcome"],
)
"""
Requests counter by endpoint and final outcome.

Labels:
- endpoint: /v1/models, /v1/chat/completions, /v1/completions, /v1/embeddings
- outcome: success, error (after retries are exhausted or a final error)
"""

llm_retries_total = Counter(
    "llm_retries_total",
    "Total client-level retries by endpoint and error code",
    ["endpoint", "code"],
)
"""
Client retry counter.

Labels:
- endpoint: API path
- code: error code that triggered the retry (TIMEOUT, SERVER_ERROR, ...)

Alert thresholds:
- WARN: retry rate > 10% of total requests
- CRITICAL: retry rate > 30% of total requests
"""

llm_errors_total = Counter(
    "llm_errors_total",
    "Final client errors by category and code",
    ["category", "code"],
)

llm_latency_seconds = Histogram(
    "llm_latency_seconds",
    "Inference request latency in seconds",
    ["endpoint", "success"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0],
)
"""
Request latency histogram, retries and backoff included.

Buckets cover fast model listings (0.1s) up to long generations (120s).
"""

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total tokens consumed by model and type",
    ["model", "token_type"],
)
"""
Token consumption counter.

Labels:
- model: Model identifier
- token_type: prompt (input tokens), completion (output tokens)
"""

# === Degradation Metrics ===

feature_state = Gauge(
    "feature_state",
    "Current feature state (1 for the active state, 0 otherwise)",
    ["feature", "state"],
)
"""
Feature availability, one series per (feature, state) pair.

Exactly one state per feature is 1 at any time.
"""

connection_up = Gauge(
    "connection_up",
    "Whether the last health check reached the inference server",
)

scheduled_retries_total = Counter(
    "scheduled_retries_total",
    "Background retries run by the retry scheduler",
    ["outcome"],
)
"""
Scheduler retry counter.

Labels:
- outcome: success, failure, exhausted
"""

errors_handled_total = Counter(
    "errors_handled_total",
    "Errors processed by the error handler by recovery strategy",
    ["category", "strategy"],
)


def record_feature_state(feature: Feature, state: FeatureState) -> None:
    """Set the one-hot gauge series for `feature`."""
    for candidate in FeatureState:
        feature_state.labels(feature=feature.value, state=candidate.value).set(
            1 if candidate == state else 0
        )
