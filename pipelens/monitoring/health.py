"""Composite pipeline health scoring."""

import math
import statistics
from collections import deque
from typing import Deque, Dict, List, Optional

import structlog

from pipelens.config import Settings

from .baselines import BaselineRegistry
from .exceptions import InvalidPipelineStructureError
from .models import HealthFactors, HealthScore, RunStatus, TrendDirection
from .store import ExecutionRecordStore
from .structure import (
    PipelineDefinitionProvider,
    PipelineStructure,
    complexity_from_run,
    fetch_definition,
)
from .trends import mean_or_zero

logger = structlog.get_logger()

RELIABILITY_WEIGHT = 0.4
PERFORMANCE_WEIGHT = 0.3
EFFICIENCY_WEIGHT = 0.2
MAINTAINABILITY_WEIGHT = 0.1

NEUTRAL_SCORE = 75.0
TREND_SNAPSHOTS = 5
TREND_MARGIN = 2


def round_half_up(value: float) -> int:
    """Round to the nearest int with .5 going up, unlike ``round``."""
    # Trim float noise first so 75.49999999999999 still counts as 75.5.
    return int(math.floor(round(value, 9) + 0.5))


def _clamp_score(value: float) -> float:
    return max(0.0, min(value, 100.0))


def default_health_score() -> HealthScore:
    """Score reported for a pipeline that has no finished runs."""
    return HealthScore(
        overall=75,
        reliability=80,
        performance=75,
        efficiency=70,
        maintainability=75,
        trend=TrendDirection.STABLE,
        factors=HealthFactors(
            success_rate=0.8,
            average_duration=5000,
            error_frequency=0.1,
            resource_usage=50,
            complexity_score=3,
        ),
    )


class HealthScorer:
    """Scores pipelines from their recent runs and keeps a bounded score history."""

    def __init__(
        self,
        store: ExecutionRecordStore,
        baselines: BaselineRegistry,
        settings: Settings,
        definitions: Optional[PipelineDefinitionProvider] = None,
    ):
        self.store = store
        self.baselines = baselines
        self.settings = settings
        self.definitions = definitions
        self._history: Dict[str, Deque[HealthScore]] = {}
        self.logger = logger.bind(component="health_scorer")

    def history(self, pipeline_id: str) -> List[HealthScore]:
        return list(self._history.get(pipeline_id, ()))

    def complexity(self, pipeline_id: str) -> int:
        definition = fetch_definition(self.definitions, pipeline_id)
        if definition is not None:
            try:
                return PipelineStructure(definition).complexity_score
            except InvalidPipelineStructureError as e:
                self.logger.warning(
                    "Ignoring invalid pipeline definition",
                    pipeline_id=pipeline_id,
                    error=str(e),
                )
        return complexity_from_run(self.store.latest(pipeline_id))

    def _trend(self, pipeline_id: str) -> TrendDirection:
        recent = [s.overall for s in self.history(pipeline_id)[-TREND_SNAPSHOTS:]]
        if len(recent) < 2:
            return TrendDirection.STABLE

        middle = len(recent) // 2
        difference = statistics.fmean(recent[middle:]) - statistics.fmean(recent[:middle])
        if difference > TREND_MARGIN:
            return TrendDirection.IMPROVING
        if difference < -TREND_MARGIN:
            return TrendDirection.DEGRADING
        return TrendDirection.STABLE

    def compute(self, pipeline_id: str) -> HealthScore:
        """Compute a fresh score and record it in the pipeline's score history."""
        runs = self.store.get_completed_runs(pipeline_id, limit=self.settings.health_window)
        if not runs:
            return default_health_score()

        total = len(runs)
        successes = sum(1 for r in runs if r.status == RunStatus.SUCCESS)
        errors = sum(1 for r in runs if r.status == RunStatus.ERROR)
        error_rate = errors / total

        durations = [r.metadata.duration for r in runs if r.metadata.duration is not None]
        memory = [r.metadata.memory_usage for r in runs if r.metadata.memory_usage is not None]
        average_duration = mean_or_zero(durations)
        average_memory = mean_or_zero(memory)

        baseline = self.baselines.get(pipeline_id)

        reliability = 100.0 * successes / total

        performance = NEUTRAL_SCORE
        if baseline is not None and baseline.average_duration and durations:
            ratio = (average_duration - baseline.average_duration) / baseline.average_duration
            performance = _clamp_score(100.0 - 100.0 * ratio)

        efficiency = NEUTRAL_SCORE
        if baseline is not None and baseline.average_memory and memory:
            ratio = (average_memory - baseline.average_memory) / baseline.average_memory
            efficiency = _clamp_score(100.0 - 50.0 * ratio)

        maintainability = _clamp_score(100.0 - 200.0 * error_rate)

        overall = (
            RELIABILITY_WEIGHT * reliability
            + PERFORMANCE_WEIGHT * performance
            + EFFICIENCY_WEIGHT * efficiency
            + MAINTAINABILITY_WEIGHT * maintainability
        )

        score = HealthScore(
            overall=round_half_up(overall),
            reliability=round_half_up(reliability),
            performance=round_half_up(performance),
            efficiency=round_half_up(efficiency),
            maintainability=round_half_up(maintainability),
            trend=self._trend(pipeline_id),
            factors=HealthFactors(
                success_rate=successes / total,
                average_duration=average_duration,
                error_frequency=error_rate,
                resource_usage=average_memory,
                complexity_score=self.complexity(pipeline_id),
            ),
        )

        snapshots = self._history.setdefault(
            pipeline_id, deque(maxlen=self.settings.health_history_limit)
        )
        snapshots.append(score)

        self.logger.debug(
            "Health score computed",
            pipeline_id=pipeline_id,
            overall=score.overall,
            trend=score.trend.value,
        )
        return score
