"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from pueue.constants import (
    METRIC_DISPATCH_ROUNDS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_PROCESSED,
    METRIC_JOBS_SUBMITTED,
    METRIC_LISTENER_ERRORS,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth
    - Job submissions, claims and outcomes
    - Handler execution duration
    - Dispatch rounds
    - Event listener failures
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs eligible for claiming",
            ["process_name"],
            registry=self._registry,
        )

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of jobs submitted",
            ["process_name"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed by dispatch rounds",
            ["process_name"],
            registry=self._registry,
        )

        # status is completed, failed, interrupted or retried
        self.jobs_processed = Counter(
            METRIC_JOBS_PROCESSED,
            "Total number of job attempts by outcome",
            ["process_name", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job handler duration in seconds",
            ["process_name", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.dispatch_rounds = Counter(
            METRIC_DISPATCH_ROUNDS,
            "Total number of dispatch rounds by outcome",
            ["process_name", "outcome"],
            registry=self._registry,
        )

        self.listener_errors = Counter(
            METRIC_LISTENER_ERRORS,
            "Total number of event listener failures",
            ["process_name", "event"],
            registry=self._registry,
        )

    def record_job_submitted(self, process_name: str) -> None:
        """Record a job submission."""
        self.jobs_submitted.labels(process_name=process_name).inc()

    def record_jobs_claimed(self, process_name: str, count: int) -> None:
        """Record claimed jobs."""
        self.jobs_claimed.labels(process_name=process_name).inc(count)

    def record_job_processed(
        self,
        process_name: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record the outcome of one job attempt."""
        self.jobs_processed.labels(process_name=process_name, status=status).inc()
        self.job_duration.labels(process_name=process_name, status=status).observe(
            duration_seconds
        )

    def record_round(self, process_name: str, outcome: str) -> None:
        """Record a dispatch round (empty, processed or error)."""
        self.dispatch_rounds.labels(process_name=process_name, outcome=outcome).inc()

    def record_listener_error(self, process_name: str, event: str) -> None:
        """Record a listener that raised."""
        self.listener_errors.labels(process_name=process_name, event=event).inc()

    def update_queue_depth(self, process_name: str, depth: int) -> None:
        """Update queue depth for a process name."""
        self.queue_depth.labels(process_name=process_name).set(depth)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
