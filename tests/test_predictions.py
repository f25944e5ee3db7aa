"""Test predictive insights."""

import pytest

from pipelens.monitoring.models import InsightType
from pipelens.monitoring.predictions import PredictiveInsightGenerator, slope


@pytest.fixture
def generator(trends, settings):
    return PredictiveInsightGenerator(trends, settings)


@pytest.mark.unit
class TestFailureProbability:
    """Test the per-run failure heuristic."""

    @pytest.mark.parametrize("errors,retries,duration,expected", [
        (0, 0, 1000, 0.0),
        (1, 0, 1000, 0.2),
        (0, 1, 1000, 0.3),
        (1, 1, 1000, 0.5),
        (0, 1, 70000, 0.4),
        (3, 2, 70000, 0.6),
    ])
    def test_probability(self, run_factory, errors, retries, duration, expected):
        run = run_factory("run-1", error_count=errors, retry_count=retries, duration=duration)
        assert PredictiveInsightGenerator.failure_probability(run) == pytest.approx(expected)

    def test_emitted_above_threshold(self, generator, store, run_factory):
        run = run_factory("run-1", error_count=1, retry_count=1)
        store.append(run)

        insights = generator.generate(run)

        assert [i.type for i in insights] == [InsightType.FAILURE_PREDICTION]
        assert insights[0].timeframe == "next 24 hours"
        assert insights[0].probability == pytest.approx(0.5)

    def test_exactly_threshold_not_emitted(self, generator, store, run_factory):
        run = run_factory("run-1", retry_count=1)
        store.append(run)

        assert generator.generate(run) == []


@pytest.mark.unit
class TestTrendPredictions:
    """Test degradation and exhaustion projections."""

    def test_slope(self):
        assert slope([1, 2, 3, 4]) == pytest.approx(1.0)
        assert slope([5]) == 0.0

    def test_degradation_on_rising_durations(self, generator, store, run_factory):
        for i in range(10):
            store.append(run_factory(f"run-{i}", duration=1000 * (i + 1), minutes=i))

        assert generator.degradation_probability("pipeline-1") == 1.0
        insights = generator.generate(store.latest("pipeline-1"))
        assert InsightType.PERFORMANCE_DEGRADATION in [i.type for i in insights]

    def test_flat_durations(self, generator, store, run_factory):
        for i in range(10):
            store.append(run_factory(f"run-{i}", duration=5000, minutes=i))

        assert generator.degradation_probability("pipeline-1") == 0.0

    def test_needs_minimum_history(self, generator, store, run_factory):
        for i in range(4):
            store.append(run_factory(f"run-{i}", duration=1000 * (i + 1) ** 3, minutes=i))

        assert generator.degradation_probability("pipeline-1") == 0.0

    def test_memory_exhaustion(self, generator, store, run_factory):
        for i in range(5):
            store.append(run_factory(f"run-{i}", memory=500 + 100 * i, minutes=i))

        probability, resource = generator.exhaustion_probability("pipeline-1")
        assert probability == 1.0
        assert resource == "memory"

        insights = generator.generate(store.latest("pipeline-1"))
        exhaustion = [i for i in insights if i.type == InsightType.RESOURCE_EXHAUSTION]
        assert exhaustion[0].timeframe == "next 3 days"
        assert "memory" in exhaustion[0].description

    def test_low_steady_usage(self, generator, store, run_factory):
        for i in range(5):
            store.append(run_factory(f"run-{i}", memory=100, cpu=10, minutes=i))

        probability, _ = generator.exhaustion_probability("pipeline-1")
        assert probability < 0.5
        assert generator.generate(store.latest("pipeline-1")) == []
