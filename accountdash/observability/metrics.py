"""
Metrics Collection with Prometheus.

Exposes reconciliation, auth-handle and backend metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from accountdash.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    KIND = "kind"
    RESULT = "result"
    ERROR_TYPE = "error_type"


class DashboardMetrics:
    """
    Centralized metrics for the account dashboard.

    Covers:
    - HTTP requests (rate, duration)
    - Reconciliation cycles and outcomes per resource kind
    - Auth provider handle resolution
    - Backend snapshot fetches
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "dashboard_service",
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
            "dashboard_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_requests_in_progress = Gauge(
            "dashboard_http_requests_in_progress",
            "HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        self.http_request_duration_seconds = Histogram(
            "dashboard_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Reconciliation Metrics
        # ====================================================================
        self.reconcile_cycles_total = Counter(
            "dashboard_reconcile_cycles_total",
            "Reconciliation cycles by kind and result",
            [MetricLabels.KIND, MetricLabels.RESULT],
        )

        self.reconcile_outcomes_total = Counter(
            "dashboard_reconcile_outcomes_total",
            "Finished reconciliation loops by kind and outcome",
            [MetricLabels.KIND, MetricLabels.RESULT],
        )

        self.reconcile_loops_active = Gauge(
            "dashboard_reconcile_loops_active",
            "Reconciliation loops currently running",
            [MetricLabels.KIND],
        )

        # ====================================================================
        # Auth Handle Metrics
        # ====================================================================
        self.handle_resolutions_total = Counter(
            "dashboard_handle_resolutions_total",
            "Auth provider handle resolutions by result",
            [MetricLabels.RESULT],
        )

        self.handle_resolution_duration_seconds = Histogram(
            "dashboard_handle_resolution_duration_seconds",
            "Auth provider handle resolution duration in seconds",
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
        )

        # ====================================================================
        # Backend Metrics
        # ====================================================================
        self.backend_fetches_total = Counter(
            "dashboard_backend_fetches_total",
            "Backend snapshot fetches by kind and success",
            [MetricLabels.KIND, "success"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "dashboard_errors_total",
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

    def record_reconcile_cycle(self, kind: str, result: str) -> None:
        """Record one reconciliation cycle (converged, pending, error)."""
        self.reconcile_cycles_total.labels(kind=kind, result=result).inc()

    def record_reconcile_outcome(self, kind: str, outcome: str) -> None:
        """Record how a reconciliation loop finished."""
        self.reconcile_outcomes_total.labels(kind=kind, result=outcome).inc()

    def record_handle_resolution(self, result: str, duration: float) -> None:
        """Record auth handle resolution metrics."""
        self.handle_resolutions_total.labels(result=result).inc()
        self.handle_resolution_duration_seconds.observe(duration)

    def record_backend_fetch(self, kind: str, success: bool) -> None:
        """Record a backend snapshot fetch."""
        self.backend_fetches_total.labels(kind=kind, success=str(success)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = DashboardMetrics()
