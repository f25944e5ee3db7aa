"""Test bottleneck detection and optimization opportunities."""

import pytest

from pipelens.monitoring.models import (
    BottleneckType,
    Effort,
    Impact,
    OpportunityType,
    PipelineDefinition,
    PipelineEdge,
    PipelineStep,
    RecommendationType,
    RunStatus,
    Severity,
    StepStatus,
    SuggestionType,
)
from pipelens.monitoring.optimization import (
    BottleneckAnalyzer,
    aggregate_steps,
    execution_stats,
    percentile,
    resource_usage,
)
from pipelens.monitoring.structure import InMemoryDefinitionProvider


@pytest.fixture
def analyzer(store, settings):
    return BottleneckAnalyzer(store, settings)


@pytest.fixture
def mixed_runs(run_factory, step_factory):
    def steps():
        return [
            step_factory("call_api", duration=8000, step_type="httpRequest"),
            step_factory("crunch", duration=20000, step_type="code"),
            step_factory("load", duration=6000, step_type="transform", memory_used=300),
            step_factory("quick", duration=100),
        ]
    return [run_factory(f"run-{i}", duration=34100, minutes=i, steps=steps()) for i in range(3)]


@pytest.mark.unit
class TestExecutionStats:
    """Test run level statistics."""

    def test_percentile(self):
        assert percentile([], 0.95) == 0.0
        assert percentile([5], 0.95) == 5
        assert percentile(list(range(1, 21)), 0.95) == 19

    def test_stats(self, run_factory):
        runs = []
        for i in range(20):
            status = RunStatus.ERROR if i < 2 else RunStatus.SUCCESS
            runs.append(run_factory(
                f"run-{i}", status=status, duration=1000 * (i + 1), retry_count=1 if i < 3 else 0
            ))

        stats = execution_stats(runs)

        assert stats.average_duration == pytest.approx(10500)
        assert stats.median_duration == pytest.approx(10500)
        assert stats.p95_duration == 19000
        assert stats.success_rate == pytest.approx(0.9)
        assert stats.error_rate == pytest.approx(0.1)
        assert stats.retry_rate == pytest.approx(0.15)

    def test_empty(self):
        stats = execution_stats([])
        assert stats.average_duration == 0.0
        assert stats.success_rate == 0.0

    def test_resource_usage(self, run_factory):
        usage = resource_usage([
            run_factory("a", memory=100, cpu=20),
            run_factory("b", memory=300, cpu=60),
            run_factory("c"),
        ])

        assert usage.peak_memory == 300
        assert usage.average_memory == pytest.approx(200)
        assert usage.peak_cpu == 60
        assert usage.average_cpu == pytest.approx(40)

    def test_aggregate_skips_skipped_steps(self, run_factory, step_factory):
        aggregates = aggregate_steps([
            run_factory("a", steps=[step_factory("fetch", duration=100)]),
            run_factory("b", steps=[step_factory("fetch", duration=0, status=StepStatus.SKIPPED)]),
            run_factory("c", steps=[step_factory("fetch", duration=300)]),
        ])

        assert aggregates["fetch"].frequency == 2
        assert aggregates["fetch"].average_duration == pytest.approx(200)


@pytest.mark.unit
class TestBottlenecks:
    """Test bottleneck classification and suggestions."""

    def test_find_bottlenecks(self, analyzer, mixed_runs):
        bottlenecks = {b.step_id: b for b in analyzer.find_bottlenecks(mixed_runs)}

        assert set(bottlenecks) == {"call_api", "crunch", "load"}

        api = bottlenecks["call_api"]
        assert api.bottleneck_type == BottleneckType.NETWORK
        assert api.severity == Severity.MEDIUM
        assert api.impact == pytest.approx(0.8)
        assert api.metrics.frequency == 3
        assert [s.action for s in api.suggestions] == [
            "add_response_caching",
            "tune_timeouts_and_retries",
        ]

        crunch = bottlenecks["crunch"]
        assert crunch.bottleneck_type == BottleneckType.LOGIC
        assert crunch.severity == Severity.HIGH
        assert crunch.impact == 1.0
        assert [s.type for s in crunch.suggestions] == [SuggestionType.ALGORITHM]

        load = bottlenecks["load"]
        assert load.bottleneck_type == BottleneckType.MEMORY
        assert [s.type for s in load.suggestions] == [SuggestionType.BATCHING]

    def test_fallback_suggestion(self, analyzer, run_factory, step_factory):
        runs = [run_factory("a", steps=[step_factory("wait", duration=7000, step_type="delay")])]
        bottleneck = analyzer.find_bottlenecks(runs)[0]

        assert bottleneck.bottleneck_type == BottleneckType.CPU
        assert [s.action for s in bottleneck.suggestions] == ["optimize_step_configuration"]

    def test_recommendations(self, analyzer, mixed_runs):
        api = next(b for b in analyzer.find_bottlenecks(mixed_runs) if b.step_id == "call_api")
        caching, timeouts = api.get_recommendations()

        assert caching.type == RecommendationType.OPTIMIZATION
        assert caching.impact == Impact.HIGH
        assert caching.effort == Effort.MINIMAL
        assert timeouts.type == RecommendationType.CONFIGURATION
        assert timeouts.impact == Impact.MEDIUM


@pytest.mark.unit
class TestOpportunities:
    """Test opportunity ranking."""

    def test_ranked_by_roi(self, analyzer, store, mixed_runs):
        for run in mixed_runs:
            store.append(run)

        profile = analyzer.analyze("pipeline-1")

        assert profile.run_count == 3
        assert [o.id for o in profile.opportunities] == [
            "bottleneck_call_api",
            "bottleneck_load",
            "bottleneck_crunch",
        ]
        roi = {o.id: o.roi_score for o in profile.opportunities}
        assert roi["bottleneck_call_api"] == pytest.approx(0.8)
        assert roi["bottleneck_load"] == pytest.approx(0.6 * 0.7 * 0.85)
        assert roi["bottleneck_crunch"] == pytest.approx(1.0 * 0.4 * 0.85)

    def test_cheap_fix_beats_expensive_one_at_equal_impact(self, analyzer, run_factory, step_factory):
        runs = [run_factory("a", steps=[
            step_factory("api", duration=9000, step_type="http"),
            step_factory("script", duration=9000, step_type="code"),
        ])]
        bottlenecks = analyzer.find_bottlenecks(runs)
        opportunities = analyzer.find_opportunities(runs, bottlenecks, execution_stats(runs))

        assert [o.affected_steps for o in opportunities] == [["api"], ["script"]]

    def test_reliability_opportunity(self, analyzer, store, run_factory):
        for i in range(10):
            status = RunStatus.ERROR if i < 3 else RunStatus.SUCCESS
            store.append(run_factory(f"run-{i}", status=status, minutes=i))

        profile = analyzer.analyze("pipeline-1")

        reliability = [o for o in profile.opportunities if o.type == OpportunityType.RELIABILITY]
        assert len(reliability) == 1
        assert reliability[0].impact == pytest.approx(0.3)
        assert reliability[0].roi_score == pytest.approx(0.3 * 0.7)

    def test_no_reliability_opportunity_at_ten_percent(self, analyzer, store, run_factory):
        for i in range(10):
            status = RunStatus.ERROR if i < 1 else RunStatus.SUCCESS
            store.append(run_factory(f"run-{i}", status=status, minutes=i))

        assert analyzer.analyze("pipeline-1").opportunities == []

    def test_parallel_opportunity(self, store, settings, run_factory, step_factory):
        provider = InMemoryDefinitionProvider()
        provider.register(PipelineDefinition(
            id="pipeline-1",
            steps=[PipelineStep(id=s) for s in ("trigger", "users", "orders", "merge")],
            edges=[
                PipelineEdge(source="trigger", target="users"),
                PipelineEdge(source="trigger", target="orders"),
                PipelineEdge(source="users", target="merge"),
                PipelineEdge(source="orders", target="merge"),
            ],
        ))
        analyzer = BottleneckAnalyzer(store, settings, definitions=provider)
        for i in range(2):
            store.append(run_factory(f"run-{i}", duration=20000, minutes=i, steps=[
                step_factory("trigger", duration=100),
                step_factory("users", duration=6000),
                step_factory("orders", duration=6000),
                step_factory("merge", duration=100),
            ]))

        profile = analyzer.analyze("pipeline-1")

        users = next(b for b in profile.bottlenecks if b.step_id == "users")
        assert [s.configuration_changes for s in users.suggestions] == [{"parallel_with": ["orders"]}]
        parallel = next(o for o in profile.opportunities if o.id == "parallel_execution")
        assert parallel.impact == pytest.approx(0.3)
        assert sorted(parallel.affected_steps) == ["orders", "users"]
