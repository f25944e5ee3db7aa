"""
Monitoring engine.

The engine owns every piece of analysis state (run history, baselines, score
history and alerts) and is the single entry point the orchestration layer
talks to. Ingestion for one pipeline is serialized; different pipelines are
processed independently.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import structlog
from pydantic import ValidationError as PydanticValidationError

from pipelens import metrics
from pipelens.config import Settings, get_settings
from pipelens.exceptions import ConfigurationError

from . import recommendations
from .alerts import AlertDispatcher, AlertSink
from .anomalies import AnomalyDetector, BehaviorCheck
from .baselines import BaselineRegistry
from .caching import CacheStrategySelector
from .exceptions import InvalidRunError, MonitoringError
from .health import HealthScorer
from .models import (
    Alert,
    CacheConfiguration,
    HealthScore,
    IngestResult,
    PerformanceProfile,
    PipelineDefinition,
    PipelineInsights,
    PipelineRun,
)
from .optimization import BottleneckAnalyzer
from .predictions import PredictiveInsightGenerator
from .store import ExecutionRecordStore
from .structure import (
    InMemoryDefinitionProvider,
    PipelineDefinitionProvider,
    PipelineStructure,
)
from .trends import TrendTracker

logger = structlog.get_logger()

RECENT_ANOMALY_LIMIT = 10

T = TypeVar("T")


class MonitoringEngine:
    """Pipeline run telemetry analysis service."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        alert_sink: Optional[AlertSink] = None,
        definitions: Optional[PipelineDefinitionProvider] = None,
        behavior_checks: Optional[List[BehaviorCheck]] = None,
    ):
        self.settings = settings or get_settings()
        self.definitions = definitions if definitions is not None else InMemoryDefinitionProvider()

        self.store = ExecutionRecordStore(
            history_limit=self.settings.history_limit,
            anomaly_retention=self.settings.anomaly_retention,
        )
        self.baselines = BaselineRegistry(smoothing=self.settings.baseline_smoothing)
        self.trends = TrendTracker(
            self.store,
            window=self.settings.recent_window,
            tolerance=self.settings.trend_tolerance,
        )
        self.detector = AnomalyDetector(
            self.store, self.trends, self.settings, behavior_checks=behavior_checks
        )
        self.health = HealthScorer(
            self.store, self.baselines, self.settings, definitions=self.definitions
        )
        self.predictions = PredictiveInsightGenerator(self.trends, self.settings)
        self.alerts = AlertDispatcher(self.settings, sink=alert_sink)
        self.analyzer = BottleneckAnalyzer(self.store, self.settings, definitions=self.definitions)
        self.cache_selector = CacheStrategySelector(
            self.store, self.settings, definitions=self.definitions
        )

        self._locks: Dict[str, asyncio.Lock] = {}
        self.logger = logger.bind(component="monitoring_engine")

    def _lock_for(self, pipeline_id: str) -> asyncio.Lock:
        lock = self._locks.get(pipeline_id)
        if lock is None:
            lock = self._locks[pipeline_id] = asyncio.Lock()
        return lock

    @staticmethod
    def _coerce(run: Union[PipelineRun, Dict[str, Any]]) -> PipelineRun:
        if isinstance(run, PipelineRun):
            return run
        if not isinstance(run, dict):
            raise InvalidRunError(f"Expected a pipeline run, got {type(run).__name__}")
        try:
            return PipelineRun.model_validate(run)
        except PydanticValidationError as e:
            raise InvalidRunError(
                f"Invalid pipeline run: {e.error_count()} validation error(s)",
                run_id=run.get("id"),
                errors=e.errors(include_url=False, include_context=False),
            ) from e

    def register_definition(self, definition: PipelineDefinition) -> PipelineStructure:
        """Register a pipeline's structure for complexity and bottleneck analysis."""
        if not isinstance(self.definitions, InMemoryDefinitionProvider):
            raise ConfigurationError(
                "Definitions come from an external provider and cannot be registered"
            )
        return self.definitions.register(definition)

    def _contained(self, stage: str, run: PipelineRun, compute: Callable[[], T], default: T) -> T:
        """Run one ingest stage, logging and counting a failure instead of raising."""
        try:
            return compute()
        except Exception as e:
            self._stage_failed(stage, run, e)
            return default

    def _stage_failed(self, stage: str, run: PipelineRun, error: Exception) -> None:
        self.logger.error(
            "Ingest stage failed",
            stage=stage,
            pipeline_id=run.pipeline_id,
            run_id=run.id,
            error=str(error),
        )
        if self.settings.metrics_enabled:
            metrics.CHECK_FAILURES.labels(check=stage).inc()

    async def ingest(self, run: Union[PipelineRun, Dict[str, Any]]) -> IngestResult:
        """
        Ingest one pipeline run.

        Runs that are still running or waiting are stored and upserted on
        later ingestion but not analysed. A finished run is analysed once.
        Each analysis stage is contained: a failing stage is logged and
        counted and contributes nothing, the rest of the result is returned.

        Raises:
            InvalidRunError: If the run fails validation or was already finalized
        """
        run = self._coerce(run)

        async with self._lock_for(run.pipeline_id):
            started = time.perf_counter()
            self.store.append(run)

            if not run.is_finished():
                self.logger.debug(
                    "Stored unfinished run",
                    pipeline_id=run.pipeline_id,
                    run_id=run.id,
                    status=run.status.value,
                )
                return IngestResult()

            anomalies = self._contained(
                "detection",
                run,
                lambda: self.detector.detect(run, self.baselines.get(run.pipeline_id)),
                [],
            )
            self._contained("baseline", run, lambda: self.baselines.update(run), None)
            try:
                await self.alerts.dispatch(anomalies)
            except Exception as e:
                self._stage_failed("alerts", run, e)
            self._contained("health", run, lambda: self.health.compute(run.pipeline_id), None)
            insights = self._contained(
                "predictions", run, lambda: self.predictions.generate(run), []
            )
            merged = self._contained(
                "recommendations",
                run,
                lambda: recommendations.merge(
                    rec for anomaly in anomalies for rec in anomaly.recommendations
                ),
                [],
            )

            if self.settings.metrics_enabled:
                metrics.RUNS_INGESTED.labels(status=run.status.value).inc()
                for anomaly in anomalies:
                    metrics.ANOMALIES_DETECTED.labels(
                        type=anomaly.type.value, severity=anomaly.severity.value
                    ).inc()
                metrics.INGEST_DURATION.observe(time.perf_counter() - started)

            self.logger.info(
                "Run ingested",
                pipeline_id=run.pipeline_id,
                run_id=run.id,
                status=run.status.value,
                anomalies=len(anomalies),
                insights=len(insights),
            )
            return IngestResult(
                anomalies=anomalies,
                insights=insights,
                recommendations=merged,
            )

    async def get_health_score(self, pipeline_id: str) -> HealthScore:
        """Compute the pipeline's health score and record it in its history."""
        try:
            return self.health.compute(pipeline_id)
        except Exception as e:
            self.logger.error("Failed to compute health score", pipeline_id=pipeline_id, error=str(e))
            raise MonitoringError(f"Failed to compute health score: {str(e)}")

    async def get_insights(self, pipeline_id: str) -> PipelineInsights:
        """Get a combined view of a pipeline's health, anomalies, predictions and alerts."""
        try:
            health = self.health.compute(pipeline_id)
            recent_anomalies = self.store.get_anomalies(pipeline_id, limit=RECENT_ANOMALY_LIMIT)

            latest = self.store.get_completed_runs(pipeline_id, limit=1)
            insights = self.predictions.generate(latest[0]) if latest else []

            runs = self.store.get_completed_runs(pipeline_id, limit=self.settings.analysis_window)
            bottlenecks = self.analyzer.find_bottlenecks(runs, self.analyzer.structure(pipeline_id))
            merged = recommendations.merge(
                [rec for anomaly in recent_anomalies for rec in anomaly.recommendations]
                + [rec for bottleneck in bottlenecks for rec in bottleneck.get_recommendations()]
            )
            if not merged:
                merged = [recommendations.add_monitoring()]

            return PipelineInsights(
                health=health,
                recent_anomalies=recent_anomalies,
                predictive_insights=insights,
                recommendations=merged,
                active_alerts=self.alerts.list_alerts(pipeline_id, resolved=False),
            )
        except Exception as e:
            self.logger.error("Failed to get insights", pipeline_id=pipeline_id, error=str(e))
            raise MonitoringError(f"Failed to get insights: {str(e)}")

    async def list_alerts(
        self,
        pipeline_id: Optional[str] = None,
        resolved: Optional[bool] = None,
    ) -> List[Alert]:
        return self.alerts.list_alerts(pipeline_id, resolved)

    async def resolve_alert(self, alert_id: str) -> Alert:
        """
        Resolve an alert.

        Raises:
            AlertNotFoundError: If no alert has this id
        """
        return self.alerts.resolve(alert_id)

    async def analyze_performance(self, pipeline_id: str) -> PerformanceProfile:
        try:
            return self.analyzer.analyze(pipeline_id)
        except Exception as e:
            self.logger.error("Failed to analyze performance", pipeline_id=pipeline_id, error=str(e))
            raise MonitoringError(f"Failed to analyze performance: {str(e)}")

    async def plan_caching(self, pipeline_id: str) -> CacheConfiguration:
        try:
            runs = self.store.get_completed_runs(pipeline_id, limit=self.settings.analysis_window)
            bottlenecks = self.analyzer.find_bottlenecks(runs, self.analyzer.structure(pipeline_id))
            return self.cache_selector.plan(pipeline_id, bottlenecks)
        except Exception as e:
            self.logger.error("Failed to plan caching", pipeline_id=pipeline_id, error=str(e))
            raise MonitoringError(f"Failed to plan caching: {str(e)}")
