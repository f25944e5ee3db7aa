"""Prometheus metrics for the analysis engine."""

from prometheus_client import Counter, Histogram

RUNS_INGESTED = Counter(
    "pipelens_runs_ingested_total", "Pipeline runs ingested", ["status"]
)
ANOMALIES_DETECTED = Counter(
    "pipelens_anomalies_detected_total", "Anomalies detected", ["type", "severity"]
)
ALERTS_RAISED = Counter(
    "pipelens_alerts_raised_total", "Alerts raised", ["severity"]
)
CHECK_FAILURES = Counter(
    "pipelens_check_failures_total", "Analysis checks that raised", ["check"]
)
INGEST_DURATION = Histogram(
    "pipelens_ingest_duration_seconds",
    "Time spent analysing one ingested run",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)
