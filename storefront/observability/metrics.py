"""
Metrics Collection with Prometheus.

Exposes order, inventory and HTTP metrics for monitoring.
"""

from enum import Enum

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, Info, generate_latest

from storefront.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OUTCOME = "outcome"
    PAYMENT_METHOD = "payment_method"
    ERROR_TYPE = "error_type"
    OPERATION = "operation"


class StoreMetrics:
    """
    Centralized metrics for the storefront API.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Order placement (outcome, duration, units delivered, revenue)
    - Inventory uploads and credit request reviews
    - Errors by type
    """

    def __init__(self) -> None:
        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("store_service", "Service information")
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
            "store_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "store_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "store_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Order Metrics
        # ====================================================================
        self.orders_total = Counter(
            "store_orders_total",
            "Order placement attempts by outcome",
            [MetricLabels.OUTCOME, MetricLabels.PAYMENT_METHOD],
        )

        self.order_duration_seconds = Histogram(
            "store_order_duration_seconds",
            "Order placement transaction duration in seconds",
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
        )

        self.units_allocated_total = Counter(
            "store_units_allocated_total",
            "Game codes delivered through completed orders",
        )

        self.order_amount = Histogram(
            "store_order_amount",
            "Completed order totals in currency units",
            buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000),
        )

        # ====================================================================
        # Inventory / Credit Metrics
        # ====================================================================
        self.codes_uploaded_total = Counter(
            "store_codes_uploaded_total",
            "Game codes processed by bulk uploads",
            ["result"],
        )

        self.credit_requests_reviewed_total = Counter(
            "store_credit_requests_reviewed_total",
            "Credit requests reviewed by administrators",
            ["action"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "store_errors_total",
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

    def record_order(
        self,
        outcome: str,
        payment_method: str,
        duration: float,
        units: int = 0,
        amount: float = 0.0,
    ) -> None:
        """Record an order placement attempt; units/amount only count on success."""
        self.orders_total.labels(outcome=outcome, payment_method=payment_method).inc()
        self.order_duration_seconds.observe(duration)
        if outcome == "completed":
            self.units_allocated_total.inc(units)
            self.order_amount.observe(amount)

    def record_code_upload(self, added: int, duplicates: int, errors: int) -> None:
        self.codes_uploaded_total.labels(result="added").inc(added)
        self.codes_uploaded_total.labels(result="duplicate").inc(duplicates)
        self.codes_uploaded_total.labels(result="error").inc(errors)

    def record_credit_review(self, action: str) -> None:
        self.credit_requests_reviewed_total.labels(action=action).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = StoreMetrics()


def render_metrics() -> bytes:
    """Render the default registry in Prometheus text exposition format."""
    return generate_latest(REGISTRY)
