"""Rolling-window averages and trend classification over stored runs."""

import statistics
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Sequence

from .models import PipelineRun, RunStatus, StepStatus, TrendDirection
from .store import ExecutionRecordStore


class Metric(str, Enum):
    """Run-level metrics tracked over time."""
    DURATION = "duration"
    MEMORY = "memory"
    CPU = "cpu"
    ERROR_RATE = "error_rate"


def metric_value(run: PipelineRun, metric: Metric) -> Optional[float]:
    if metric == Metric.DURATION:
        return run.metadata.duration
    if metric == Metric.MEMORY:
        return run.metadata.memory_usage
    if metric == Metric.CPU:
        return run.metadata.cpu_usage
    if metric == Metric.ERROR_RATE:
        return 1.0 if run.status == RunStatus.ERROR else 0.0
    raise ValueError(f"Unknown metric: {metric}")


def mean_or_zero(values: Sequence[float]) -> float:
    return statistics.fmean(values) if values else 0.0


def classify_trend(
    values: Sequence[float],
    tolerance: float = 0.1,
    higher_is_worse: bool = True,
) -> TrendDirection:
    """Compare the first and second half of a series.

    The change is relative to the first half mean; when that mean is zero
    the absolute change is used instead.
    """
    if len(values) < 2:
        return TrendDirection.STABLE

    middle = len(values) // 2
    first = statistics.fmean(values[:middle])
    second = statistics.fmean(values[middle:])
    scale = abs(first) if first else 1.0
    change = (second - first) / scale

    if abs(change) <= tolerance:
        return TrendDirection.STABLE
    worse = change > 0 if higher_is_worse else change < 0
    return TrendDirection.DEGRADING if worse else TrendDirection.IMPROVING


class TrendTracker:
    """Reads metric series for a pipeline out of the record store."""

    def __init__(self, store: ExecutionRecordStore, window: int = 10, tolerance: float = 0.1):
        self.store = store
        self.window = window
        self.tolerance = tolerance

    def series(self, pipeline_id: str, metric: Metric, window: Optional[int] = None) -> List[float]:
        runs = self.store.get_completed_runs(pipeline_id, limit=window or self.window)
        values = [metric_value(run, metric) for run in runs]
        return [v for v in values if v is not None]

    def step_series(self, pipeline_id: str, step_id: str, window: Optional[int] = None) -> List[float]:
        runs = self.store.get_completed_runs(pipeline_id, limit=window or self.window)
        return [
            step.duration
            for run in runs
            for step in run.steps
            if step.step_id == step_id and step.status != StepStatus.SKIPPED
        ]

    def recent_average(self, pipeline_id: str, metric: Metric) -> float:
        return mean_or_zero(self.series(pipeline_id, metric))

    def recent_step_average(self, pipeline_id: str, step_id: str) -> float:
        return mean_or_zero(self.step_series(pipeline_id, step_id))

    def trend(self, pipeline_id: str, metric: Metric) -> TrendDirection:
        return classify_trend(self.series(pipeline_id, metric), self.tolerance)

    def step_trend(self, pipeline_id: str, step_id: str) -> TrendDirection:
        return classify_trend(self.step_series(pipeline_id, step_id), self.tolerance)

    def recent_errors(
        self, pipeline_id: str, reference: datetime, hours: int = 24
    ) -> List[PipelineRun]:
        """Error runs that started inside ``(reference - hours, reference]``."""
        cutoff = reference - timedelta(hours=hours)
        return [
            run
            for run in self.store.get_runs(pipeline_id)
            if run.status == RunStatus.ERROR and cutoff < run.start_time <= reference
        ]
