"""Prometheus metrics for monitoring evaluations, submissions, and ledger performance"""

from prometheus_client import Counter, Histogram

# Rule engine metrics
evaluation_counter = Counter(
    "capping_evaluation_total",
    "Local transaction evaluations",
    ["type", "outcome"],  # outcome: allowed | <ViolationReason>
)

# Submission metrics
submission_counter = Counter(
    "capping_submission_total",
    "Transactions submitted to the ledger",
    ["type", "outcome"],  # settled | NetworkError | StaleBalance | Rejected | Unauthorized
)

# Ledger API metrics
ledger_latency_histogram = Histogram(
    "ledger_request_latency_seconds",
    "Ledger API response time",
    ["operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ledger_failure_counter = Counter(
    "ledger_failures_total",
    "Failed ledger API calls",
    ["operation", "reason"],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_evaluation(transaction_type: str, allowed: bool, reason: str | None) -> None:
    """Record evaluation outcome for monitoring how often users hit capping limits"""
    outcome = "allowed" if allowed else (reason or "denied")
    evaluation_counter.labels(type=transaction_type, outcome=outcome).inc()


def record_submission(transaction_type: str, outcome: str) -> None:
    submission_counter.labels(type=transaction_type, outcome=outcome).inc()
