"""Prometheus metrics for lifecycle transitions, reminder delivery and job health"""

from prometheus_client import Counter, Histogram

from commitments_engine.domain.models import BatchReport, RecordOutcome

# Lifecycle metrics
transition_counter = Counter(
    "commitments_transition_total",
    "Commitment status transitions performed by jobs",
    ["to_status"],  # decision_needed | failed
)

# Reminder metrics
reminder_counter = Counter(
    "commitments_reminder_total",
    "Reminder events processed by the dispatcher",
    ["outcome"],  # sent | deferred | skipped | error
)

horizon_events_counter = Counter(
    "commitments_horizon_events_created_total",
    "Reminder events materialized by the horizon builder",
)

# Job health
job_duration_histogram = Histogram(
    "commitments_job_duration_seconds",
    "Duration of one batch job run",
    ["job"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

job_record_errors_counter = Counter(
    "commitments_job_record_errors_total",
    "Records that failed inside a batch run",
    ["job"],
)


def record_batch(report: BatchReport, duration_seconds: float) -> None:
    """Record job duration and per-record error counts"""
    job_duration_histogram.labels(job=report.job).observe(duration_seconds)
    errors = report.count(RecordOutcome.ERROR)
    if errors:
        job_record_errors_counter.labels(job=report.job).inc(errors)
