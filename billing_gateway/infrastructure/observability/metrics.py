"""Prometheus metrics for billing mutations and the overdue notification pipeline"""

from prometheus_client import Counter, Gauge, Histogram

# Aggregate mutations
billing_mutation_counter = Counter(
    "billing_mutations_total",
    "Committed invoice aggregate mutations",
    ["operation"],  # create_invoice | record_payment | ...
)

billing_rejection_counter = Counter(
    "billing_mutation_rejections_total",
    "Rejected invoice aggregate mutations",
    ["operation", "error"],
)

concurrency_conflict_counter = Counter(
    "billing_concurrency_conflicts_total",
    "Saves rejected because another writer changed the invoice first",
)

# Overdue pipeline
overdue_events_published_counter = Counter(
    "overdue_events_published_total",
    "Overdue installment events published by the detector",
)

overdue_scan_duration_histogram = Histogram(
    "overdue_scan_duration_seconds",
    "Time spent selecting overdue installments",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

notification_outcome_counter = Counter(
    "overdue_notifications_total",
    "Overdue notification handler outcomes",
    ["outcome"],  # DELIVERED | SKIPPED | LOGGED_FAILURE
)

event_queue_depth_gauge = Gauge(
    "overdue_event_queue_depth",
    "Events waiting in the in-process channel",
)

# Mail API
mailer_latency_histogram = Histogram(
    "mailer_latency_seconds",
    "Mail API response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

mailer_failure_counter = Counter(
    "mailer_failures_total",
    "Failed mail API calls, including retried attempts",
)


def record_mutation(operation: str) -> None:
    billing_mutation_counter.labels(operation=operation).inc()


def record_rejection(operation: str, error: Exception) -> None:
    billing_rejection_counter.labels(operation=operation, error=type(error).__name__).inc()
