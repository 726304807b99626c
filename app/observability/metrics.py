"""
Metrics Collection with Prometheus.

Exposes storefront, reconciliation, and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    TOKEN_KIND = "token_kind"
    ERROR_TYPE = "error_type"


class StorefrontMetrics:
    """
    Centralized metrics for the bookstore.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Orders created
    - Downloads (authorized / rejected)
    - Chain reconciliation (outcomes, fiat received, listener progress)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "storefront_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "storefront_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "storefront_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "storefront_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.METHOD],
        )

        # ====================================================================
        # Order / Download Metrics
        # ====================================================================
        self.orders_created_total = Counter(
            "storefront_orders_created_total",
            "Total payment requests created",
        )

        self.downloads_total = Counter(
            "storefront_downloads_total",
            "Download attempts by result",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Reconciliation Metrics
        # ====================================================================
        self.reconciliations_total = Counter(
            "storefront_reconciliations_total",
            "Chain payment events reconciled, by outcome",
            [MetricLabels.OUTCOME],
        )

        self.paid_amount_cents = Histogram(
            "storefront_paid_amount_cents",
            "Fiat value of accepted payments in cents",
            [MetricLabels.TOKEN_KIND],
            buckets=(100, 250, 500, 1000, 2500, 5000, 10000, 25000),
        )

        self.chain_last_processed_block = Gauge(
            "storefront_chain_last_processed_block",
            "Highest block whose payment events were fully processed",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "storefront_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_reconciliation(
        self, outcome: str, paid_cents: int | None = None, token_kind: str = "native"
    ) -> None:
        """Record one reconciled chain event."""
        self.reconciliations_total.labels(outcome=outcome).inc()
        if paid_cents is not None:
            self.paid_amount_cents.labels(token_kind=token_kind).observe(paid_cents)

    def record_download(self, outcome: str) -> None:
        """Record a download attempt."""
        self.downloads_total.labels(outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = StorefrontMetrics()
