# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Prometheus metrics — single source of truth for all metric objects.
Imported by services and middleware. Never instantiated in controllers.
"""

from prometheus_client import Counter, Gauge, Histogram

# ── HTTP Metrics (used by middleware) ──
REQUEST_COUNT = Counter(
    "alertgate_requests_total",
    "Total HTTP requests to the webhook ingestion service",
    ["method", "endpoint", "status"],
)
REQUEST_LATENCY = Histogram(
    "alertgate_request_duration_seconds",
    "Request latency in seconds",
    ["method", "endpoint"],
)
HTTP_ERRORS = Counter(
    "alertgate_http_errors_total",
    "Total HTTP error responses",
    ["method", "endpoint", "status"],
)
RATE_LIMITED = Counter(
    "webhook_rate_limited_total",
    "Webhook deliveries rejected by the per-client rate limiter",
)

# ── Business Metrics (updated by service layer only) ──
WEBHOOK_REQUESTS = Counter(
    "webhook_requests_total",
    "Webhook deliveries by terminal outcome",
    ["outcome"],  # processed | duplicate | rejected | failed
)
WEBHOOK_PROCESSING = Histogram(
    "webhook_processing_seconds",
    "Time taken to run one webhook through the ingestion pipeline",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)
WEBHOOK_RETRIES = Counter(
    "webhook_retries_total",
    "Retries scheduled by the retry executor",
)
IDEMPOTENCY_HITS = Counter(
    "idempotency_hits_total",
    "Deliveries short-circuited as already processed",
)
IDEMPOTENCY_SWEPT = Counter(
    "idempotency_records_swept_total",
    "Expired idempotency records removed by the background sweep",
)
CIRCUIT_STATE = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["name"],
)
CIRCUIT_TRANSITIONS = Counter(
    "circuit_breaker_transitions_total",
    "Circuit breaker state transitions",
    ["name", "from_state", "to_state"],
)
