"""
Prometheus metrics for membership system monitoring.

Tracks:
- Payment creations by outcome
- Midtrans webhook events by transaction status and outcome
- Membership activations
- Documents issued by type
- WhatsApp notification attempts
"""
from prometheus_client import Counter, Histogram

# Payment metrics
payments_created_total = Counter(
    "membership_payments_created_total",
    "Total payment rows created",
    ["outcome"],  # created, created_but_gateway_failed
)

# Webhook metrics
webhook_events_total = Counter(
    "membership_webhook_events_total",
    "Total Midtrans webhook events",
    ["transaction_status", "outcome"],  # applied, duplicate, ignored, rejected
)

webhook_processing_duration_seconds = Histogram(
    "membership_webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

membership_activations_total = Counter(
    "membership_activations_total",
    "Members activated by a settled payment",
)

# Document metrics
documents_issued_total = Counter(
    "membership_documents_issued_total",
    "Total documents registered or generated",
    ["document_type"],
)

# Notification metrics
notifications_total = Counter(
    "membership_notifications_total",
    "Total WhatsApp notification attempts",
    ["result"],  # sent, dry_run, rejected, failed
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_created(outcome: str) -> None:
        """Record a payment row creation."""
        payments_created_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_webhook_event(
        transaction_status: str, outcome: str, duration_seconds: float | None = None
    ) -> None:
        """Record webhook event processing."""
        webhook_events_total.labels(
            transaction_status=transaction_status, outcome=outcome
        ).inc()
        if duration_seconds is not None:
            webhook_processing_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_membership_activation() -> None:
        membership_activations_total.inc()

    @staticmethod
    def record_document_issued(document_type: str) -> None:
        documents_issued_total.labels(document_type=document_type).inc()

    @staticmethod
    def record_notification(result: str) -> None:
        notifications_total.labels(result=result).inc()


# Export singleton instance
metrics = MetricsCollector()
