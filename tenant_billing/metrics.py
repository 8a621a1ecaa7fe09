from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP requests that ended in a server error",
    ["method", "path", "status"],
)

SUBSCRIPTION_TRANSITIONS = Counter(
    "subscription_transitions_total",
    "Subscription status transitions applied by the billing engine",
    ["source", "target"],
)
SWEEP_RUNS = Counter(
    "reconciliation_sweep_runs_total",
    "Reconciliation sweep executions",
    ["outcome"],
)
