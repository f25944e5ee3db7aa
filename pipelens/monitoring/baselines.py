"""Rolling per-pipeline and per-step baselines."""

from typing import Dict, List, Optional

import structlog

from .models import Baseline, PipelineRun, RunStatus, StepBaseline, StepStatus, utcnow

logger = structlog.get_logger()


def _ewma(previous: Optional[float], value: float, alpha: float) -> float:
    if previous is None:
        return value
    return previous + alpha * (value - previous)


class BaselineRegistry:
    """Exponentially weighted baselines keyed by pipeline id.

    Duration, memory and CPU averages learn only from successful runs so a
    burst of failures does not drag the reference point. Success rates learn
    from every finished run. Each metric stays ``None`` until it has been
    observed once, which is what suppresses anomaly checks on first runs.
    """

    def __init__(self, smoothing: float = 0.2):
        self.smoothing = smoothing
        self._baselines: Dict[str, Baseline] = {}
        self.logger = logger.bind(component="baseline_registry")

    def get(self, pipeline_id: str) -> Optional[Baseline]:
        return self._baselines.get(pipeline_id)

    def set(self, baseline: Baseline) -> None:
        """Install a baseline, e.g. one restored by the caller."""
        self._baselines[baseline.pipeline_id] = baseline

    def pipeline_ids(self) -> List[str]:
        return list(self._baselines.keys())

    def update(self, run: PipelineRun) -> Optional[Baseline]:
        """Fold a finished run into its pipeline baseline."""
        if not run.is_finished():
            return self._baselines.get(run.pipeline_id)

        alpha = self.smoothing
        baseline = self._baselines.get(run.pipeline_id)
        if baseline is None:
            baseline = Baseline(pipeline_id=run.pipeline_id)
            self._baselines[run.pipeline_id] = baseline

        succeeded = run.status == RunStatus.SUCCESS
        baseline.run_count += 1
        baseline.success_rate = _ewma(baseline.success_rate, 1.0 if succeeded else 0.0, alpha)

        if succeeded:
            metadata = run.metadata
            if metadata.duration is not None:
                baseline.average_duration = _ewma(baseline.average_duration, metadata.duration, alpha)
            if metadata.memory_usage is not None:
                baseline.average_memory = _ewma(baseline.average_memory, metadata.memory_usage, alpha)
            if metadata.cpu_usage is not None:
                baseline.average_cpu = _ewma(baseline.average_cpu, metadata.cpu_usage, alpha)

        for step in run.steps:
            if step.status not in (StepStatus.SUCCESS, StepStatus.ERROR):
                continue
            step_baseline = baseline.steps.setdefault(step.step_id, StepBaseline())
            step_ok = step.status == StepStatus.SUCCESS
            step_baseline.sample_count += 1
            step_baseline.success_rate = _ewma(
                step_baseline.success_rate, 1.0 if step_ok else 0.0, alpha
            )
            if step_ok:
                step_baseline.average_duration = _ewma(
                    step_baseline.average_duration, step.duration, alpha
                )
                step_baseline.average_memory = _ewma(
                    step_baseline.average_memory, step.memory_used, alpha
                )

        baseline.updated_at = utcnow()
        self.logger.debug(
            "Baseline updated",
            pipeline_id=run.pipeline_id,
            run_count=baseline.run_count,
            average_duration=baseline.average_duration,
        )
        return baseline
