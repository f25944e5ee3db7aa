"""Test cache planning."""

import pytest

from pipelens.monitoring.caching import (
    DISTRIBUTED_TTL,
    MEMORY_LRU,
    PERSISTENT_SIZE,
    STRATEGIES,
    CacheStrategySelector,
    applies,
    repeated_step_types,
)
from pipelens.monitoring.models import (
    CacheKeyStrategy,
    CacheScope,
    CacheStorage,
    EvictionPolicy,
    PipelineDefinition,
    PipelineStep,
)
from pipelens.monitoring.optimization import BottleneckAnalyzer
from pipelens.monitoring.structure import InMemoryDefinitionProvider


@pytest.fixture
def selector(store, settings):
    return CacheStrategySelector(store, settings)


@pytest.mark.unit
class TestCacheableSteps:
    """Test which steps qualify for caching."""

    def test_whitelisted_type(self, selector, store, run_factory, step_factory):
        store.append(run_factory("run-1", steps=[
            step_factory("lookup", step_type="httpRequest"),
            step_factory("format", step_type="set"),
        ]))

        plan = selector.plan("pipeline-1")

        assert plan.enabled is True
        assert list(plan.steps) == ["lookup"]
        config = plan.steps["lookup"]
        assert config.strategy.name == "memory_lru"
        assert config.strategy.storage == CacheStorage.MEMORY
        assert config.strategy.eviction_policy == EvictionPolicy.LRU
        assert config.strategy.settings.max_size == 100
        assert config.strategy.settings.ttl_seconds == 300
        assert config.cache_key == "pipeline-1:lookup:{input_hash}"
        assert [r.trigger for r in config.invalidation_rules] == ["time", "manual"]

    def test_repeated_calls(self, selector, store, run_factory, step_factory):
        steps = [step_factory(f"enrich_{i}", step_type="enrich") for i in range(4)]
        store.append(run_factory("run-1", steps=steps))

        plan = selector.plan("pipeline-1")

        assert sorted(plan.steps) == [f"enrich_{i}" for i in range(4)]
        assert "repeats" in plan.steps["enrich_0"].reason

    def test_repeated_step_types_threshold(self, run_factory, step_factory):
        runs = [run_factory("run-1", steps=[step_factory(f"s{i}", step_type="enrich") for i in range(3)])]
        assert repeated_step_types(runs, threshold=3) == set()
        assert repeated_step_types(runs, threshold=2) == {"enrich"}

    def test_side_effect_free_declaration(self, store, settings, run_factory, step_factory):
        provider = InMemoryDefinitionProvider()
        provider.register(PipelineDefinition(
            id="pipeline-1",
            steps=[PipelineStep(id="render", type="template", side_effect_free=True)],
        ))
        selector = CacheStrategySelector(store, settings, definitions=provider)
        store.append(run_factory("run-1", steps=[step_factory("render", step_type="template")]))

        plan = selector.plan("pipeline-1")

        assert plan.steps["render"].reason == "declared side-effect free"

    def test_slow_network_bottleneck(self, store, settings, run_factory, step_factory):
        selector = CacheStrategySelector(store, settings)
        analyzer = BottleneckAnalyzer(store, settings)
        store.append(run_factory("run-1", steps=[
            step_factory("hook", duration=9000, step_type="webhookCall"),
        ]))
        runs = store.get_completed_runs("pipeline-1")

        assert selector.plan("pipeline-1").steps == {}
        plan = selector.plan("pipeline-1", analyzer.find_bottlenecks(runs))
        assert list(plan.steps) == ["hook"]

    def test_nothing_cacheable(self, selector, store, run_factory, step_factory):
        store.append(run_factory("run-1", steps=[step_factory("send_email", step_type="email")]))

        plan = selector.plan("pipeline-1")

        assert plan.enabled is False
        assert plan.steps == {}
        assert plan.global_settings.max_total_memory == 512 * 1024 * 1024


@pytest.mark.unit
class TestStrategySelection:
    """Test deterministic strategy choice."""

    def test_shared_type_uses_distributed_cache(self, selector, store, run_factory, step_factory):
        store.append(run_factory("other-1", pipeline_id="other", steps=[
            step_factory("geo", step_type="httpRequest"),
        ]))
        store.append(run_factory("run-1", steps=[step_factory("lookup", step_type="httpRequest")]))

        config = selector.plan("pipeline-1").steps["lookup"]

        assert config.strategy.name == "distributed_ttl"
        assert config.strategy.scope == CacheScope.GLOBAL
        assert config.strategy.key_strategy == CacheKeyStrategy.COMPOSITE
        assert config.strategy.settings.compression is True
        assert config.cache_key == "httpRequest:{parameters}:{input_hash}"

    def test_large_output_uses_persistent_cache(self, selector, store, run_factory, step_factory):
        store.append(run_factory("run-1", steps=[
            step_factory("export", step_type="postgres", output_size=4 * 1024 * 1024),
        ]))

        config = selector.plan("pipeline-1").steps["export"]

        assert config.strategy.name == "persistent_size"
        assert config.strategy.storage == CacheStorage.PERSISTENT
        assert [r.action for r in config.invalidation_rules] == ["mark_stale", "clear"]

    def test_deterministic(self, selector, store, run_factory, step_factory):
        store.append(run_factory("run-1", steps=[
            step_factory("a", step_type="httpRequest"),
            step_factory("b", step_type="graphql"),
        ]))

        first = selector.plan("pipeline-1").model_dump()
        second = selector.plan("pipeline-1").model_dump()

        assert first == second

    def test_shared_type_outside_distributed_applicability(self, selector, store, run_factory, step_factory):
        store.append(run_factory("other-1", pipeline_id="other", steps=[
            step_factory("score", step_type="enrich"),
        ]))
        store.append(run_factory("run-1", steps=[
            step_factory(f"score_{i}", step_type="enrich") for i in range(4)
        ]))

        config = selector.plan("pipeline-1").steps["score_0"]

        assert config.strategy.name == "memory_lru"


@pytest.mark.unit
class TestApplicability:
    """Test matching steps against declared applicability rules."""

    def test_declared_step_types_must_match(self):
        assert applies(DISTRIBUTED_TTL, "httpRequest", set(), {"cross_pipeline"}) is True
        assert applies(DISTRIBUTED_TTL, "postgres", set(), {"cross_pipeline"}) is False

    def test_needs_an_observed_pattern(self):
        assert applies(MEMORY_LRU, "mysql", set(), {"frequent_read"}) is True
        assert applies(MEMORY_LRU, "mysql", set(), {"infrequent_read"}) is False
        assert applies(PERSISTENT_SIZE, "anything", {"large_payloads"}, set()) is True

    def test_strategies_checked_in_priority_order(self):
        assert list(STRATEGIES) == ["distributed_ttl", "persistent_size", "memory_lru"]
