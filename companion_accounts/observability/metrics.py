"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from companion_accounts.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    CHARACTER = "character"
    REASON = "reason"
    CHANNEL = "channel"
    EVENT_TYPE = "event_type"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"
    OPERATION = "operation"

    def __str__(self) -> str:
        return self.value


class AccountsMetrics:
    """
    Centralized metrics for the Companion Accounts API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Access decisions (by reason and character)
    - Trial metering and reactivation
    - Magic-link lifecycle
    - Payment webhooks and outbound notifications
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "accounts_service",
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
            "accounts_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "accounts_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "accounts_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.METHOD],
        )

        # ====================================================================
        # Access Metrics
        # ====================================================================
        self.access_checks_total = Counter(
            "accounts_access_checks_total",
            "Total access decisions",
            ["has_access", MetricLabels.REASON, MetricLabels.CHARACTER],
        )

        self.access_check_duration_seconds = Histogram(
            "accounts_access_check_duration_seconds",
            "Access decision duration in seconds",
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
        )

        # ====================================================================
        # Trial Metrics
        # ====================================================================
        self.trials_started_total = Counter(
            "accounts_trials_started_total",
            "Total trials created",
            [MetricLabels.CHARACTER],
        )

        self.trial_decrements_total = Counter(
            "accounts_trial_decrements_total",
            "Total trial decrement attempts",
            [MetricLabels.CHARACTER, "exhausted"],
        )

        self.trial_bumps_total = Counter(
            "accounts_trial_bumps_total",
            "Trial reactivation outcomes",
            [MetricLabels.CHARACTER, MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Magic Link Metrics
        # ====================================================================
        self.links_initiated_total = Counter(
            "accounts_links_initiated_total",
            "Magic links issued",
            [MetricLabels.CHARACTER, "delivered"],
        )

        self.links_verified_total = Counter(
            "accounts_links_verified_total",
            "Magic link verification outcomes",
            [MetricLabels.OUTCOME],
        )

        self.links_completed_total = Counter(
            "accounts_links_completed_total",
            "Magic links completed",
            [MetricLabels.CHARACTER],
        )

        # ====================================================================
        # Account Metrics
        # ====================================================================
        self.accounts_created_total = Counter(
            "accounts_accounts_created_total",
            "Total accounts created",
        )

        # ====================================================================
        # Payment Metrics
        # ====================================================================
        self.webhook_events_total = Counter(
            "accounts_webhook_events_total",
            "Payment webhook events received",
            [MetricLabels.EVENT_TYPE, MetricLabels.OUTCOME],
        )

        self.checkout_sessions_total = Counter(
            "accounts_checkout_sessions_total",
            "Checkout sessions created",
            ["tier", "success"],
        )

        # ====================================================================
        # Outbound Metrics
        # ====================================================================
        self.notifications_total = Counter(
            "accounts_notifications_total",
            "Outbound deliveries (email, chat, backend callbacks)",
            [MetricLabels.CHANNEL, "success"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "accounts_errors_total",
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

    def record_access_check(
        self, has_access: bool, reason: str, character: str, duration: float
    ) -> None:
        """Record access decision metrics."""
        self.access_checks_total.labels(
            has_access=str(has_access), reason=reason, character=character
        ).inc()
        self.access_check_duration_seconds.observe(duration)

    def record_trial_decrement(self, character: str, exhausted: bool) -> None:
        """Record one trial decrement attempt."""
        self.trial_decrements_total.labels(character=character, exhausted=str(exhausted)).inc()

    def record_trial_bump(self, character: str, outcome: str) -> None:
        """Record a reactivation outcome: bumped, skipped or failed."""
        self.trial_bumps_total.labels(character=character, outcome=outcome).inc()

    def record_webhook_event(self, event_type: str, outcome: str) -> None:
        """Record a payment webhook outcome: handled, ignored or rejected."""
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_notification(self, channel: str, success: bool) -> None:
        """Record an outbound delivery attempt."""
        self.notifications_total.labels(channel=channel, success=str(success)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = AccountsMetrics()

