"""
Prometheus metrics for provisioning monitoring.

Tracks:
- Webhook events by type and outcome
- Provisioning runs by variant and outcome
- Jira API calls and latency
- Directory search attempts per identity resolution
- Dead-lettered runs
"""
from prometheus_client import Counter, Gauge, Histogram

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["event_type", "status"],  # scheduled, ignored, malformed
)

# Provisioning metrics
provisioning_runs_total = Counter(
    "provisioning_runs_total",
    "Total provisioning runs",
    ["variant", "outcome"],  # outcome: succeeded, failed
)

provisioning_run_duration_seconds = Histogram(
    "provisioning_run_duration_seconds",
    "Provisioning run duration in seconds",
    buckets=(0.25, 0.5, 1.0, 2.5, 5.0, 7.5, 10.0, 20.0, 30.0),
)

provisioning_runs_in_flight = Gauge(
    "provisioning_runs_in_flight",
    "Number of detached provisioning runs currently executing",
)

# Jira API metrics
jira_api_requests_total = Counter(
    "jira_api_requests_total",
    "Total Jira API requests",
    ["operation", "status"],  # status: HTTP code or "transport_error"
)

jira_api_duration_seconds = Histogram(
    "jira_api_duration_seconds",
    "Jira API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Identity metrics
identity_search_attempts = Histogram(
    "identity_search_attempts",
    "Directory lookups needed per identity resolution",
    buckets=(1, 2, 3, 4, 5),
)

identity_resolutions_total = Counter(
    "identity_resolutions_total",
    "Identity resolutions by result",
    ["result"],  # created, found, unresolved
)

# Dead-letter metrics
dead_letters_total = Counter(
    "dead_letters_total",
    "Total provisioning runs sent to the dead-letter sink",
    ["reason"],
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_webhook_event(event_type: str, status: str) -> None:
        """Record a received webhook event."""
        webhook_events_received_total.labels(event_type=event_type, status=status).inc()

    @staticmethod
    def record_provisioning_run(variant: str, outcome: str, duration_seconds: float) -> None:
        """Record a finished provisioning run."""
        provisioning_runs_total.labels(variant=variant, outcome=outcome).inc()
        provisioning_run_duration_seconds.observe(duration_seconds)

    @staticmethod
    def set_runs_in_flight(count: int) -> None:
        provisioning_runs_in_flight.set(count)

    @staticmethod
    def record_jira_api_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record Jira API call."""
        jira_api_requests_total.labels(operation=operation, status=status).inc()
        jira_api_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_identity_resolution(result: str, search_attempts: int = 0) -> None:
        """Record an identity resolution result."""
        identity_resolutions_total.labels(result=result).inc()
        if search_attempts:
            identity_search_attempts.observe(search_attempts)

    @staticmethod
    def record_dead_letter(reason: str) -> None:
        dead_letters_total.labels(reason=reason).inc()


# Export singleton instance
metrics = MetricsCollector()
