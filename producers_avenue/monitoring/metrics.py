"""
Prometheus metrics for marketplace monitoring.

Tracks:
- Orders created and status changes
- Ledger entries by type
- Payout requests, cancellations and completions
- Webhook events per provider
- Payment provider API calls
- Notification failures
- Product download attempts
"""
from prometheus_client import Counter, Histogram

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total number of orders created from checkout",
    ["payment_method"],
)

order_amount = Histogram(
    "order_amount",
    "Order amounts in currency units",
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 5000),
)

checkout_lines_failed_total = Counter(
    "checkout_lines_failed_total",
    "Checkout lines that failed to produce an order",
    ["payment_method"],
)

order_status_changes_total = Counter(
    "order_status_changes_total",
    "Total order status changes",
    ["status", "source"],  # source: user, webhook
)

# Ledger metrics
ledger_entries_total = Counter(
    "ledger_entries_total",
    "Total ledger entries appended",
    ["type"],
)

# Payout metrics
payouts_total = Counter(
    "payouts_total",
    "Payout requests by action",
    ["action"],  # requested, cancelled, completed, rejected
)

# Payment provider metrics
provider_api_requests_total = Counter(
    "provider_api_requests_total",
    "Total payment provider API requests",
    ["provider", "operation", "status"],
)

provider_api_duration_seconds = Histogram(
    "provider_api_duration_seconds",
    "Payment provider API call duration in seconds",
    ["provider", "operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["provider", "event_type"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["provider", "event_type", "status"],  # success, ignored, duplicate
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

webhook_signature_failures_total = Counter(
    "webhook_signature_failures_total",
    "Webhook requests rejected by signature verification",
    ["provider"],
)

# Download metrics
product_downloads_total = Counter(
    "product_downloads_total",
    "Product download attempts by outcome",
    ["outcome"],  # served, not_purchased, unpaid, expired, exhausted, missing_file
)

# Notification metrics
notification_failures_total = Counter(
    "notification_failures_total",
    "Notifications that could not be stored",
    ["type"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_created(payment_method: str, amount: float) -> None:
        orders_created_total.labels(payment_method=payment_method).inc()
        order_amount.observe(amount)

    @staticmethod
    def record_checkout_line_failed(payment_method: str) -> None:
        checkout_lines_failed_total.labels(payment_method=payment_method).inc()

    @staticmethod
    def record_order_status_change(status: str, source: str) -> None:
        order_status_changes_total.labels(status=status, source=source).inc()

    @staticmethod
    def record_ledger_entry(type: str) -> None:
        ledger_entries_total.labels(type=type).inc()

    @staticmethod
    def record_payout(action: str) -> None:
        payouts_total.labels(action=action).inc()

    @staticmethod
    def record_provider_call(
        provider: str, operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record a Stripe or PayPal API call."""
        provider_api_requests_total.labels(
            provider=provider, operation=operation, status=status
        ).inc()
        provider_api_duration_seconds.labels(provider=provider, operation=operation).observe(
            duration_seconds
        )

    @staticmethod
    def record_webhook_event(
        provider: str, event_type: str, status: str, duration_seconds: float
    ) -> None:
        """Record webhook event processing."""
        webhook_events_received_total.labels(provider=provider, event_type=event_type).inc()
        webhook_events_processed_total.labels(
            provider=provider, event_type=event_type, status=status
        ).inc()
        webhook_processing_duration_seconds.labels(provider=provider).observe(duration_seconds)

    @staticmethod
    def record_webhook_signature_failure(provider: str) -> None:
        webhook_signature_failures_total.labels(provider=provider).inc()

    @staticmethod
    def record_download(outcome: str) -> None:
        product_downloads_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_notification_failure(type: str) -> None:
        notification_failures_total.labels(type=type).inc()


# Export singleton instance
metrics = MetricsCollector()
