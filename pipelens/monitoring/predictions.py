"""Predictive insights derived from a run and its pipeline's history."""

import statistics
from typing import List, Optional, Sequence, Tuple

import structlog

from pipelens.config import Settings

from .models import InsightType, PipelineRun, PredictiveInsight
from .trends import Metric, TrendTracker

logger = structlog.get_logger()

FAILURE_THRESHOLD = 0.3
DEGRADATION_THRESHOLD = 0.4
EXHAUSTION_THRESHOLD = 0.5
LONG_RUN_MS = 60000


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


def slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    if len(values) < 2:
        return 0.0
    return statistics.linear_regression(range(len(values)), values).slope


class PredictiveInsightGenerator:
    """Turns run signals and history trends into forward-looking insights."""

    def __init__(self, trends: TrendTracker, settings: Settings):
        self.trends = trends
        self.settings = settings
        self.logger = logger.bind(component="predictive_insights")

    @staticmethod
    def failure_probability(run: PipelineRun) -> float:
        probability = 0.0
        if run.metadata.error_count > 0:
            probability += 0.2
        if run.metadata.retry_count > 0:
            probability += 0.3
        if run.metadata.duration is not None and run.metadata.duration > LONG_RUN_MS:
            probability += 0.1
        return _clamp(probability)

    def degradation_probability(self, pipeline_id: str) -> float:
        """Projected relative duration growth across the analysis window."""
        durations = self.trends.series(
            pipeline_id, Metric.DURATION, window=self.settings.analysis_window
        )
        if len(durations) < self.settings.prediction_min_runs:
            return 0.0
        mean = statistics.fmean(durations)
        if mean <= 0:
            return 0.0
        return _clamp(slope(durations) * len(durations) / mean)

    def _exhaustion(self, pipeline_id: str, metric: Metric, limit: float) -> float:
        values = self.trends.series(
            pipeline_id, metric, window=self.settings.analysis_window
        )
        if len(values) < self.settings.prediction_min_runs or limit <= 0:
            return 0.0
        recent = statistics.fmean(values[-self.settings.recent_window:])
        projected = recent + max(slope(values), 0.0) * self.settings.prediction_horizon_runs
        return _clamp(projected / limit)

    def exhaustion_probability(self, pipeline_id: str) -> Tuple[float, Optional[str]]:
        """Highest projected resource pressure and the resource it applies to."""
        candidates = [
            (self._exhaustion(pipeline_id, Metric.MEMORY, self.settings.max_execution_memory), "memory"),
            (self._exhaustion(pipeline_id, Metric.CPU, self.settings.max_cpu_percent), "cpu"),
        ]
        probability, resource = max(candidates, key=lambda c: c[0])
        if probability <= 0:
            return 0.0, None
        return probability, resource

    def generate(self, run: PipelineRun) -> List[PredictiveInsight]:
        insights = []

        failure = self.failure_probability(run)
        if failure > FAILURE_THRESHOLD:
            insights.append(
                PredictiveInsight(
                    type=InsightType.FAILURE_PREDICTION,
                    probability=failure,
                    timeframe="next 24 hours",
                    description=f"High probability of failure ({failure:.0%}) based on recent patterns",
                    preventive_actions=[
                        "Review recent error patterns",
                        "Check external service dependencies",
                        "Validate input data quality",
                        "Consider adding retry logic",
                    ],
                    monitoring_metrics=["error_rate", "execution_time", "success_rate"],
                )
            )

        degradation = self.degradation_probability(run.pipeline_id)
        if degradation > DEGRADATION_THRESHOLD:
            insights.append(
                PredictiveInsight(
                    type=InsightType.PERFORMANCE_DEGRADATION,
                    probability=degradation,
                    timeframe="next 7 days",
                    description="Performance degradation trend detected",
                    preventive_actions=[
                        "Optimize slow steps",
                        "Review resource allocation",
                        "Consider caching strategies",
                        "Monitor system resources",
                    ],
                    monitoring_metrics=["execution_time", "memory_usage", "cpu_usage"],
                )
            )

        exhaustion, resource = self.exhaustion_probability(run.pipeline_id)
        if exhaustion > EXHAUSTION_THRESHOLD:
            insights.append(
                PredictiveInsight(
                    type=InsightType.RESOURCE_EXHAUSTION,
                    probability=exhaustion,
                    timeframe="next 3 days",
                    description=f"Potential {resource} exhaustion predicted",
                    preventive_actions=[
                        "Optimize memory usage",
                        "Implement data streaming",
                        "Scale infrastructure",
                        "Review data processing logic",
                    ],
                    monitoring_metrics=["memory_usage", "cpu_usage", "disk_usage"],
                )
            )

        if insights:
            self.logger.info(
                "Predictive insights generated",
                pipeline_id=run.pipeline_id,
                run_id=run.id,
                types=[i.type.value for i in insights],
            )
        return insights
