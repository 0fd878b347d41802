"""
Prometheus metrics for payment service monitoring.

Tracks:
- Payments created by final status
- Create workflow duration
- Outcome API results
- Best-effort step failures
- Payment events published
- Order events consumed
"""
from prometheus_client import Counter, Histogram

# Payment metrics
payments_created_total = Counter(
    "payments_created_total",
    "Total number of payments created",
    ["status"],
)

payment_workflow_duration_seconds = Histogram(
    "payment_workflow_duration_seconds",
    "Payment create workflow duration in seconds",
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, 15.0),
)

# Outcome API metrics
outcome_results_total = Counter(
    "outcome_results_total",
    "Outcome API results",
    ["outcome"],  # even, odd, absent
)

# Best-effort steps
best_effort_failures_total = Counter(
    "best_effort_failures_total",
    "Failures of best-effort workflow steps",
    ["step"],  # notify_processing, notify_canceled, publish_event
)

# Kafka metrics
payment_events_published_total = Counter(
    "payment_events_published_total",
    "Payment events handed to Kafka",
    ["result"],  # delivered, failed
)

order_events_consumed_total = Counter(
    "order_events_consumed_total",
    "Order events consumed",
    ["result"],  # processed, skipped, failed
)


class MetricsCollector:
    """
    Helper class for recording metrics.

    Provides convenient methods for common metric operations.
    """

    @staticmethod
    def record_payment_created(status: str, duration_seconds: float) -> None:
        """
        Record a completed create workflow.

        Args:
            status: Final payment status
            duration_seconds: Workflow duration
        """
        payments_created_total.labels(status=status).inc()
        payment_workflow_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_outcome(number: int | None) -> None:
        if number is None:
            outcome = "absent"
        elif number % 2 == 0:
            outcome = "even"
        else:
            outcome = "odd"
        outcome_results_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_best_effort_failure(step: str) -> None:
        best_effort_failures_total.labels(step=step).inc()

    @staticmethod
    def record_event_published(result: str) -> None:
        payment_events_published_total.labels(result=result).inc()

    @staticmethod
    def record_order_event(result: str) -> None:
        order_events_consumed_total.labels(result=result).inc()


# Global metrics collector instance
metrics = MetricsCollector()
