"""Pytest configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from pipelens.config import Settings
from pipelens.monitoring.alerts import AlertDispatcher
from pipelens.monitoring.anomalies import AnomalyDetector
from pipelens.monitoring.baselines import BaselineRegistry
from pipelens.monitoring.engine import MonitoringEngine
from pipelens.monitoring.models import (
    PipelineRun,
    RunMetadata,
    RunStatus,
    StepError,
    StepRun,
    StepStatus,
)
from pipelens.monitoring.store import ExecutionRecordStore
from pipelens.monitoring.trends import TrendTracker

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_step(
    step_id: str,
    duration: float = 1000.0,
    status: StepStatus = StepStatus.SUCCESS,
    step_type: str = "transform",
    memory_used: float = 10.0,
    output_size: int = 0,
    error: Optional[str] = None,
) -> StepRun:
    return StepRun(
        step_id=step_id,
        step_name=step_id.replace("_", " ").title(),
        step_type=step_type,
        status=status,
        duration=duration,
        memory_used=memory_used,
        output_size=output_size,
        error=StepError(message=error) if error else None,
    )


def make_run(
    run_id: str,
    pipeline_id: str = "pipeline-1",
    status: RunStatus = RunStatus.SUCCESS,
    duration: Optional[float] = 10000.0,
    memory: Optional[float] = None,
    cpu: Optional[float] = None,
    error_count: int = 0,
    retry_count: int = 0,
    steps: Optional[List[StepRun]] = None,
    minutes: int = 0,
) -> PipelineRun:
    start = BASE_TIME + timedelta(minutes=minutes)
    finished = status not in (RunStatus.RUNNING, RunStatus.WAITING)
    end = start + timedelta(milliseconds=duration or 0) if finished else None
    return PipelineRun(
        id=run_id,
        pipeline_id=pipeline_id,
        start_time=start,
        end_time=end,
        status=status,
        metadata=RunMetadata(
            duration=duration,
            memory_usage=memory,
            cpu_usage=cpu,
            error_count=error_count,
            retry_count=retry_count,
        ),
        steps=steps or [],
    )


@pytest.fixture
def run_factory():
    """Build pipeline runs with sensible defaults."""
    return make_run


@pytest.fixture
def step_factory():
    """Build step runs with sensible defaults."""
    return make_step


@pytest.fixture
def base_time():
    """Start time of runs built with ``minutes=0``."""
    return BASE_TIME


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(_env_file=None, environment="testing")


@pytest.fixture
def store(settings):
    return ExecutionRecordStore(
        history_limit=settings.history_limit,
        anomaly_retention=settings.anomaly_retention,
    )


@pytest.fixture
def baselines(settings):
    return BaselineRegistry(smoothing=settings.baseline_smoothing)


@pytest.fixture
def trends(store, settings):
    return TrendTracker(store, window=settings.recent_window, tolerance=settings.trend_tolerance)


@pytest.fixture
def detector(store, trends, settings):
    return AnomalyDetector(store, trends, settings)


@pytest.fixture
def dispatcher(settings):
    return AlertDispatcher(settings)


@pytest.fixture
def engine(settings):
    return MonitoringEngine(settings=settings)
