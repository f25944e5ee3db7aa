"""Anomaly detection for finished pipeline runs."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import structlog

from pipelens import metrics
from pipelens.config import Settings

from . import recommendations
from .deviation import confidence, deviation
from .models import (
    Anomaly,
    AnomalyMetrics,
    AnomalyType,
    Baseline,
    HistoricalContext,
    PipelineRun,
    RunStatus,
    Severity,
    StepStatus,
    TrendDirection,
)
from .store import ExecutionRecordStore
from .trends import Metric, TrendTracker, mean_or_zero

logger = structlog.get_logger()

PIPELINE_DURATION_THRESHOLD = 2.0
PIPELINE_DURATION_HIGH = 3.0
STEP_DURATION_THRESHOLD = 2.5
STEP_DURATION_HIGH = 4.0
MEMORY_THRESHOLD = 2.0
MEMORY_CRITICAL = 3.5
CPU_THRESHOLD = 2.0
CPU_HIGH = 3.0
ERROR_SPIKE_CONFIDENCE = 0.9
RUN_ERROR_CONFIDENCE = 0.8

_MEASURED_STEP_STATUSES = (StepStatus.SUCCESS, StepStatus.ERROR)


@dataclass
class BehaviorFinding:
    """Result of a behavioral check that found something unusual."""

    description: str
    deviation: float
    confidence: float
    unusual_steps: List[str] = field(default_factory=list)
    baseline: float = 0.0
    recent_average: float = 0.0


BehaviorCheck = Callable[[PipelineRun, Sequence[PipelineRun]], Optional[BehaviorFinding]]


def check_name(check: BehaviorCheck) -> str:
    """Name used in anomaly ids and metric labels for a behavior check.

    An explicit ``name`` attribute wins, then the function's own name, then
    the class name of a callable object.
    """
    return (
        getattr(check, "name", None)
        or getattr(check, "__name__", None)
        or type(check).__name__
    )


class StepOrderCheck:
    """Flags runs whose step order differs from the pipeline's usual order.

    The usual order is the most frequent step sequence among recent successful
    runs. Failed runs are ignored since they stop part way through.
    """

    name = "step_order"

    def __init__(self, min_runs: int = 3, window: int = 20):
        self.min_runs = min_runs
        self.window = window

    def __call__(
        self, run: PipelineRun, history: Sequence[PipelineRun]
    ) -> Optional[BehaviorFinding]:
        if run.status != RunStatus.SUCCESS:
            return None

        prior = [r for r in history if r.id != run.id and r.status == RunStatus.SUCCESS]
        prior = prior[-self.window:]
        if len(prior) < self.min_runs:
            return None

        sequences = Counter(tuple(r.get_step_sequence()) for r in prior)
        usual, frequency = sequences.most_common(1)[0]
        current = tuple(run.get_step_sequence())
        if current == usual:
            return None

        unusual: List[str] = []
        for index, step_id in enumerate(current):
            if index >= len(usual) or usual[index] != step_id:
                unusual.append(step_id)
        for step_id in usual:
            if step_id not in current:
                unusual.append(step_id)
        unusual = list(dict.fromkeys(unusual))

        return BehaviorFinding(
            description=(
                f"Step order differs from the usual sequence of {len(usual)} steps "
                f"({len(unusual)} step(s) out of place)"
            ),
            deviation=len(unusual) / max(len(usual), 1),
            confidence=frequency / len(prior),
            unusual_steps=unusual,
            baseline=float(len(usual)),
            recent_average=mean_or_zero([len(r.get_step_sequence()) for r in prior]),
        )


class AnomalyDetector:
    """Runs every anomaly check against a finished run.

    Checks are independent: an exception in one is logged and counted and the
    remaining checks still run. Checks that need a baseline metric skip when
    that metric has never been observed.
    """

    def __init__(
        self,
        store: ExecutionRecordStore,
        trends: TrendTracker,
        settings: Settings,
        behavior_checks: Optional[List[BehaviorCheck]] = None,
    ):
        self.store = store
        self.trends = trends
        self.settings = settings
        if behavior_checks is None:
            behavior_checks = [StepOrderCheck(min_runs=settings.behavior_min_runs)]
        self.behavior_checks = list(behavior_checks)
        self.logger = logger.bind(component="anomaly_detector")

    def _checks(self) -> List[Tuple[str, Callable[[PipelineRun, Optional[Baseline]], List[Anomaly]]]]:
        return [
            ("pipeline_duration", self.check_pipeline_duration),
            ("step_duration", self.check_step_durations),
            ("run_error", self.check_run_error),
            ("error_spike", self.check_error_spike),
            ("memory_usage", self.check_memory),
            ("cpu_usage", self.check_cpu),
            ("behavior", self.check_behavior),
        ]

    def detect(self, run: PipelineRun, baseline: Optional[Baseline]) -> List[Anomaly]:
        """Detect anomalies and append them to the pipeline's anomaly log."""
        anomalies: List[Anomaly] = []
        for name, check in self._checks():
            try:
                anomalies.extend(check(run, baseline))
            except Exception as e:
                self.logger.error(
                    "Anomaly check failed",
                    check=name,
                    pipeline_id=run.pipeline_id,
                    run_id=run.id,
                    error=str(e),
                )
                if self.settings.metrics_enabled:
                    metrics.CHECK_FAILURES.labels(check=name).inc()

        self.store.add_anomalies(run.pipeline_id, anomalies)
        if anomalies:
            self.logger.info(
                "Anomalies detected",
                pipeline_id=run.pipeline_id,
                run_id=run.id,
                count=len(anomalies),
            )
        return anomalies

    # Performance

    def check_pipeline_duration(
        self, run: PipelineRun, baseline: Optional[Baseline]
    ) -> List[Anomaly]:
        duration = run.metadata.duration
        if baseline is None or baseline.average_duration is None or duration is None:
            return []

        score = deviation(duration, baseline.average_duration)
        if score <= PIPELINE_DURATION_THRESHOLD:
            return []

        direction = "above" if duration > baseline.average_duration else "below"
        return [
            Anomaly(
                id=f"perf_{run.id}_duration",
                pipeline_id=run.pipeline_id,
                run_id=run.id,
                type=AnomalyType.PERFORMANCE,
                severity=Severity.HIGH if score > PIPELINE_DURATION_HIGH else Severity.MEDIUM,
                check="pipeline_duration",
                description=(
                    f"Run duration ({duration:.0f}ms) is {score:.1f} deviations "
                    f"{direction} normal"
                ),
                metrics=AnomalyMetrics(
                    deviation=score,
                    confidence=confidence(score, PIPELINE_DURATION_HIGH),
                    affected_steps=run.get_slow_steps(self.settings.slow_step_threshold_ms),
                ),
                recommendations=recommendations.pipeline_performance(score),
                historical_context=HistoricalContext(
                    baseline=baseline.average_duration,
                    recent_average=self.trends.recent_average(run.pipeline_id, Metric.DURATION),
                    trend=self.trends.trend(run.pipeline_id, Metric.DURATION),
                ),
            )
        ]

    def check_step_durations(
        self, run: PipelineRun, baseline: Optional[Baseline]
    ) -> List[Anomaly]:
        if baseline is None:
            return []

        anomalies = []
        for step in run.steps:
            if step.status not in _MEASURED_STEP_STATUSES:
                continue
            step_baseline = baseline.steps.get(step.step_id)
            if step_baseline is None or step_baseline.average_duration is None:
                continue

            score = deviation(step.duration, step_baseline.average_duration)
            if score <= STEP_DURATION_THRESHOLD:
                continue

            anomalies.append(
                Anomaly(
                    id=f"perf_{run.id}_step_{step.step_id}",
                    pipeline_id=run.pipeline_id,
                    run_id=run.id,
                    type=AnomalyType.PERFORMANCE,
                    severity=Severity.HIGH if score > STEP_DURATION_HIGH else Severity.MEDIUM,
                    check="step_duration",
                    description=(
                        f"Step {step.display_name} took {step.duration:.0f}ms "
                        f"({score:.1f} deviations from normal)"
                    ),
                    metrics=AnomalyMetrics(
                        deviation=score,
                        confidence=confidence(score, STEP_DURATION_HIGH),
                        affected_steps=[step.step_id],
                    ),
                    recommendations=recommendations.step_performance(step),
                    historical_context=HistoricalContext(
                        baseline=step_baseline.average_duration,
                        recent_average=self.trends.recent_step_average(run.pipeline_id, step.step_id),
                        trend=self.trends.step_trend(run.pipeline_id, step.step_id),
                    ),
                )
            )
        return anomalies

    # Errors

    @staticmethod
    def error_severity(run: PipelineRun) -> Severity:
        if run.metadata.retry_count > 3:
            return Severity.CRITICAL
        if run.metadata.error_count > 5:
            return Severity.HIGH
        if run.metadata.error_count > 2:
            return Severity.MEDIUM
        return Severity.LOW

    def check_run_error(
        self, run: PipelineRun, baseline: Optional[Baseline]
    ) -> List[Anomaly]:
        if run.status != RunStatus.ERROR:
            return []

        failed = run.get_failed_steps()
        description = f"Pipeline run failed at {len(failed)} step(s)"
        first_error = next((s.error for s in failed if s.error is not None), None)
        if first_error is not None:
            description = f"{description}: {first_error.message}"

        error_baseline = 0.0
        if baseline is not None and baseline.success_rate is not None:
            error_baseline = 1.0 - baseline.success_rate

        return [
            Anomaly(
                id=f"error_{run.id}",
                pipeline_id=run.pipeline_id,
                run_id=run.id,
                type=AnomalyType.ERROR,
                severity=self.error_severity(run),
                check="run_error",
                description=description,
                metrics=AnomalyMetrics(
                    deviation=1.0,
                    confidence=RUN_ERROR_CONFIDENCE,
                    affected_steps=[s.step_id for s in failed],
                ),
                recommendations=recommendations.error_handling(),
                historical_context=HistoricalContext(
                    baseline=error_baseline,
                    recent_average=self.trends.recent_average(run.pipeline_id, Metric.ERROR_RATE),
                    trend=self.trends.trend(run.pipeline_id, Metric.ERROR_RATE),
                ),
            )
        ]

    def check_error_spike(
        self, run: PipelineRun, baseline: Optional[Baseline] = None
    ) -> List[Anomaly]:
        reference = run.end_time or run.start_time
        errors = self.trends.recent_errors(
            run.pipeline_id, reference, hours=self.settings.error_spike_window_hours
        )
        threshold = self.settings.error_spike_threshold
        if len(errors) <= threshold:
            return []

        failures = Counter(
            step.step_id for error_run in errors for step in error_run.get_failed_steps()
        )
        return [
            Anomaly(
                id=f"error_spike_{run.id}",
                pipeline_id=run.pipeline_id,
                run_id=run.id,
                type=AnomalyType.ERROR,
                severity=Severity.HIGH,
                check="error_spike",
                description=(
                    f"Error spike detected: {len(errors)} errors in last "
                    f"{self.settings.error_spike_window_hours} hours"
                ),
                metrics=AnomalyMetrics(
                    deviation=len(errors) / threshold,
                    confidence=ERROR_SPIKE_CONFIDENCE,
                    affected_steps=[step_id for step_id, _ in failures.most_common(5)],
                ),
                recommendations=recommendations.error_spike(),
                historical_context=HistoricalContext(
                    baseline=1.0,
                    recent_average=float(len(errors)),
                    trend=TrendDirection.DEGRADING,
                ),
            )
        ]

    # Resources

    def _memory_intensive_steps(self, run: PipelineRun, baseline: Baseline) -> List[str]:
        steps = []
        for step in run.steps:
            step_baseline = baseline.steps.get(step.step_id)
            heavy = step.memory_used > self.settings.high_memory_step_mb
            if not heavy and step_baseline is not None and step_baseline.average_memory:
                heavy = deviation(step.memory_used, step_baseline.average_memory) > MEMORY_THRESHOLD
            if heavy:
                steps.append(step.step_id)
        return steps

    def _cpu_intensive_steps(self, run: PipelineRun) -> List[str]:
        total = sum(step.duration for step in run.steps)
        if total <= 0:
            return []
        return [
            step.step_id
            for step in run.steps
            if step.duration / total > self.settings.high_cpu_share
        ]

    def check_memory(
        self, run: PipelineRun, baseline: Optional[Baseline]
    ) -> List[Anomaly]:
        usage = run.metadata.memory_usage
        if baseline is None or baseline.average_memory is None or usage is None:
            return []

        score = deviation(usage, baseline.average_memory)
        if score <= MEMORY_THRESHOLD:
            return []

        return [
            Anomaly(
                id=f"resource_{run.id}_memory",
                pipeline_id=run.pipeline_id,
                run_id=run.id,
                type=AnomalyType.RESOURCE,
                severity=Severity.CRITICAL if score > MEMORY_CRITICAL else Severity.HIGH,
                check="memory_usage",
                description=f"Memory usage ({usage:.0f}MB) is {score:.1f} deviations from normal",
                metrics=AnomalyMetrics(
                    deviation=score,
                    confidence=confidence(score, MEMORY_CRITICAL),
                    affected_steps=self._memory_intensive_steps(run, baseline),
                ),
                recommendations=recommendations.memory_usage(),
                historical_context=HistoricalContext(
                    baseline=baseline.average_memory,
                    recent_average=self.trends.recent_average(run.pipeline_id, Metric.MEMORY),
                    trend=self.trends.trend(run.pipeline_id, Metric.MEMORY),
                ),
            )
        ]

    def check_cpu(
        self, run: PipelineRun, baseline: Optional[Baseline]
    ) -> List[Anomaly]:
        usage = run.metadata.cpu_usage
        if baseline is None or baseline.average_cpu is None or usage is None:
            return []

        score = deviation(usage, baseline.average_cpu)
        if score <= CPU_THRESHOLD:
            return []

        return [
            Anomaly(
                id=f"resource_{run.id}_cpu",
                pipeline_id=run.pipeline_id,
                run_id=run.id,
                type=AnomalyType.RESOURCE,
                severity=Severity.HIGH if score > CPU_HIGH else Severity.MEDIUM,
                check="cpu_usage",
                description=f"CPU usage ({usage:.0f}%) is {score:.1f} deviations from normal",
                metrics=AnomalyMetrics(
                    deviation=score,
                    confidence=confidence(score, CPU_HIGH),
                    affected_steps=self._cpu_intensive_steps(run),
                ),
                recommendations=recommendations.cpu_usage(),
                historical_context=HistoricalContext(
                    baseline=baseline.average_cpu,
                    recent_average=self.trends.recent_average(run.pipeline_id, Metric.CPU),
                    trend=self.trends.trend(run.pipeline_id, Metric.CPU),
                ),
            )
        ]

    # Behavior

    def check_behavior(
        self, run: PipelineRun, baseline: Optional[Baseline] = None
    ) -> List[Anomaly]:
        history = self.store.get_completed_runs(run.pipeline_id)
        anomalies = []
        for check in self.behavior_checks:
            name = check_name(check)
            try:
                finding = check(run, history)
            except Exception as e:
                self.logger.error(
                    "Behavior check failed",
                    check=name,
                    pipeline_id=run.pipeline_id,
                    run_id=run.id,
                    error=str(e),
                )
                if self.settings.metrics_enabled:
                    metrics.CHECK_FAILURES.labels(check=name).inc()
                continue
            if finding is None:
                continue

            anomalies.append(
                Anomaly(
                    id=f"behavior_{run.id}_{name}",
                    pipeline_id=run.pipeline_id,
                    run_id=run.id,
                    type=AnomalyType.BEHAVIOR,
                    severity=Severity.MEDIUM,
                    check=name,
                    description=finding.description,
                    metrics=AnomalyMetrics(
                        deviation=max(finding.deviation, 0.0),
                        confidence=max(0.0, min(finding.confidence, 1.0)),
                        affected_steps=finding.unusual_steps,
                    ),
                    recommendations=recommendations.behavior_pattern(),
                    historical_context=HistoricalContext(
                        baseline=finding.baseline,
                        recent_average=finding.recent_average,
                        trend=TrendDirection.STABLE,
                    ),
                )
            )
        return anomalies
