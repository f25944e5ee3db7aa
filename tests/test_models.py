"""Test monitoring data models."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from pipelens.monitoring.models import (
    Alert,
    AlertSeverity,
    AlertType,
    Anomaly,
    AnomalyMetrics,
    Complexity,
    ExpectedImpact,
    HealthFactors,
    HealthScore,
    Impact,
    OptimizationSuggestion,
    PipelineRun,
    RunStatus,
    StepStatus,
    SuggestionImplementation,
    SuggestionType,
    TrendDirection,
)


@pytest.mark.unit
class TestPipelineRun:
    """Test PipelineRun model."""

    def test_naive_timestamps_become_utc(self):
        run = PipelineRun(
            id="run-1",
            pipeline_id="pipeline-1",
            status=RunStatus.SUCCESS,
            start_time=datetime(2024, 3, 1, 12, 0),
        )
        assert run.start_time.tzinfo == timezone.utc

    def test_finished_states(self, run_factory):
        assert run_factory("a", status=RunStatus.RUNNING).is_finished() is False
        assert run_factory("b", status=RunStatus.WAITING).is_finished() is False
        assert run_factory("c", status=RunStatus.CANCELED).is_finished() is True

    def test_step_helpers(self, run_factory, step_factory):
        run = run_factory("run-1", steps=[
            step_factory("fetch", duration=7000),
            step_factory("branch", status=StepStatus.SKIPPED, duration=0),
            step_factory("parse", status=StepStatus.ERROR, duration=100),
        ])

        assert run.get_step_sequence() == ["fetch", "parse"]
        assert [s.step_id for s in run.get_failed_steps()] == ["parse"]
        assert run.get_slow_steps(5000) == ["fetch"]

    def test_negative_duration_rejected(self):
        with pytest.raises(ValidationError):
            PipelineRun(
                id="run-1",
                pipeline_id="pipeline-1",
                status=RunStatus.SUCCESS,
                metadata={"duration": -1},
            )


@pytest.mark.unit
class TestAnomaly:
    """Test Anomaly model constraints."""

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            AnomalyMetrics(deviation=1.0, confidence=1.5)

    def test_immutable(self):
        anomaly = Anomaly.model_validate({
            "id": "a-1",
            "pipeline_id": "pipeline-1",
            "run_id": "run-1",
            "type": "error",
            "severity": "low",
            "check": "run_error",
            "description": "failed",
            "metrics": {"deviation": 1.0, "confidence": 0.8},
            "historical_context": {"baseline": 0, "recent_average": 0, "trend": "stable"},
        })

        with pytest.raises(ValidationError):
            anomaly.severity = "critical"


@pytest.mark.unit
class TestHealthScore:
    """Test HealthScore grading."""

    @pytest.mark.parametrize("overall,grade", [(95, "A"), (80, "B"), (75, "C"), (60, "D"), (10, "F")])
    def test_grade(self, overall, grade):
        score = HealthScore(
            overall=overall,
            reliability=overall,
            performance=overall,
            efficiency=overall,
            maintainability=overall,
            trend=TrendDirection.STABLE,
            factors=HealthFactors(
                success_rate=1.0,
                average_duration=0,
                error_frequency=0,
                resource_usage=0,
                complexity_score=1,
            ),
        )
        assert score.get_grade() == grade


@pytest.mark.unit
class TestAlert:
    """Test Alert model."""

    def test_defaults(self):
        alert = Alert(
            pipeline_id="pipeline-1",
            type=AlertType.ANOMALY,
            severity=AlertSeverity.WARNING,
            title="PERFORMANCE Anomaly Detected",
            description="slow",
        )
        assert alert.id
        assert alert.is_active()
        assert alert.get_severity_score() == 2


@pytest.mark.unit
class TestOptimizationSuggestion:
    """Test suggestion ranking helpers."""

    def _suggestion(self, complexity, risk, hours=1, improvement=60):
        return OptimizationSuggestion(
            type=SuggestionType.CACHING,
            action="add_response_caching",
            description="Cache responses",
            implementation=SuggestionImplementation(
                complexity=complexity, effort_hours=hours, risk_level=risk
            ),
            expected_impact=ExpectedImpact(performance_improvement=improvement),
        )

    def test_effort_penalty_prefers_cheap_changes(self):
        cheap = self._suggestion(Complexity.LOW, Complexity.LOW)
        costly = self._suggestion(Complexity.HIGH, Complexity.HIGH)

        assert cheap.get_effort_penalty() == 1.0
        assert costly.get_effort_penalty() == pytest.approx(0.28)

    @pytest.mark.parametrize("improvement,impact", [(60, Impact.HIGH), (30, Impact.MEDIUM), (10, Impact.LOW)])
    def test_recommendation_impact(self, improvement, impact):
        suggestion = self._suggestion(Complexity.LOW, Complexity.LOW, improvement=improvement)
        assert suggestion.to_recommendation().impact == impact
