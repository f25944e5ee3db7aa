"""Bounded in-memory history of pipeline runs and anomalies."""

from collections import deque
from typing import Deque, Dict, Iterable, List, Optional

import structlog

from .exceptions import RunFinalizedError
from .models import Anomaly, PipelineRun

logger = structlog.get_logger()


class ExecutionRecordStore:
    """Per-pipeline FIFO ring buffers of runs and detected anomalies.

    Runs are kept in insertion order. Once a pipeline holds ``history_limit``
    runs the oldest one is evicted on insert. A run that is still running may
    be re-inserted under the same id and replaces its earlier snapshot in
    place; a finished run is immutable.
    """

    def __init__(self, history_limit: int = 1000, anomaly_retention: int = 500):
        self.history_limit = history_limit
        self.anomaly_retention = anomaly_retention
        self._runs: Dict[str, Deque[PipelineRun]] = {}
        self._anomalies: Dict[str, Deque[Anomaly]] = {}
        self.logger = logger.bind(component="execution_record_store")

    def _history(self, pipeline_id: str) -> Deque[PipelineRun]:
        return self._runs.setdefault(pipeline_id, deque(maxlen=self.history_limit))

    def find(self, pipeline_id: str, run_id: str) -> Optional[PipelineRun]:
        """Find a stored run by id, newest first."""
        for run in reversed(self._runs.get(pipeline_id, ())):
            if run.id == run_id:
                return run
        return None

    def ensure_writable(self, run: PipelineRun) -> None:
        """Raise if ``run`` would overwrite a finished run."""
        existing = self.find(run.pipeline_id, run.id)
        if existing is not None and existing.is_finished():
            raise RunFinalizedError(run.id, run.pipeline_id)

    def append(self, run: PipelineRun) -> Optional[PipelineRun]:
        """Store a run and return the evicted run, if any."""
        self.ensure_writable(run)
        history = self._history(run.pipeline_id)

        for index in range(len(history) - 1, -1, -1):
            if history[index].id == run.id:
                history[index] = run
                return None

        evicted = history[0] if len(history) == history.maxlen else None
        history.append(run)
        if evicted is not None:
            self.logger.debug(
                "Evicted oldest run",
                pipeline_id=run.pipeline_id,
                run_id=evicted.id,
            )
        return evicted

    def get_runs(self, pipeline_id: str, limit: Optional[int] = None) -> List[PipelineRun]:
        """Get stored runs, oldest first, optionally only the last ``limit``."""
        runs = list(self._runs.get(pipeline_id, ()))
        if limit is not None:
            runs = runs[-limit:] if limit > 0 else []
        return runs

    def get_completed_runs(
        self, pipeline_id: str, limit: Optional[int] = None
    ) -> List[PipelineRun]:
        runs = [r for r in self._runs.get(pipeline_id, ()) if r.is_finished()]
        if limit is not None:
            runs = runs[-limit:] if limit > 0 else []
        return runs

    def latest(self, pipeline_id: str) -> Optional[PipelineRun]:
        history = self._runs.get(pipeline_id)
        return history[-1] if history else None

    def count(self, pipeline_id: str) -> int:
        return len(self._runs.get(pipeline_id, ()))

    def pipeline_ids(self) -> List[str]:
        return list(self._runs.keys())

    def add_anomalies(self, pipeline_id: str, anomalies: Iterable[Anomaly]) -> None:
        log = self._anomalies.setdefault(
            pipeline_id, deque(maxlen=self.anomaly_retention)
        )
        log.extend(anomalies)

    def get_anomalies(self, pipeline_id: str, limit: Optional[int] = None) -> List[Anomaly]:
        anomalies = list(self._anomalies.get(pipeline_id, ()))
        if limit is not None:
            anomalies = anomalies[-limit:] if limit > 0 else []
        return anomalies
