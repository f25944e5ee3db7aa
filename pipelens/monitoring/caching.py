"""Cache planning for cacheable pipeline steps."""

from collections import Counter
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog

from pipelens.config import Settings

from .models import (
    BottleneckFinding,
    CacheApplicability,
    CacheConfiguration,
    CacheKeyStrategy,
    CacheScope,
    CacheSettings,
    CacheStorage,
    CacheStrategy,
    EvictionPolicy,
    InvalidationRule,
    PipelineRun,
    StepCacheConfig,
    SuggestionType,
)
from .optimization import StepAggregate, aggregate_steps
from .store import ExecutionRecordStore
from .structure import PipelineDefinitionProvider, fetch_definition

logger = structlog.get_logger()

MEMORY_LRU = CacheStrategy(
    name="memory_lru",
    storage=CacheStorage.MEMORY,
    scope=CacheScope.STEP,
    key_strategy=CacheKeyStrategy.HASH,
    eviction_policy=EvictionPolicy.LRU,
    settings=CacheSettings(max_size=100, ttl_seconds=300),
    applicability=CacheApplicability(
        step_types=["http", "postgres", "mysql"],
        data_patterns=["static_data", "slow_changing"],
        access_patterns=["frequent_read"],
    ),
)

DISTRIBUTED_TTL = CacheStrategy(
    name="distributed_ttl",
    storage=CacheStorage.DISTRIBUTED,
    scope=CacheScope.GLOBAL,
    key_strategy=CacheKeyStrategy.COMPOSITE,
    eviction_policy=EvictionPolicy.TTL,
    settings=CacheSettings(ttl_seconds=3600, compression=True),
    applicability=CacheApplicability(
        step_types=["http", "api", "graphql"],
        data_patterns=["api_responses", "computed_results"],
        access_patterns=["cross_pipeline"],
    ),
)

PERSISTENT_SIZE = CacheStrategy(
    name="persistent_size",
    storage=CacheStorage.PERSISTENT,
    scope=CacheScope.PIPELINE,
    key_strategy=CacheKeyStrategy.HASH,
    eviction_policy=EvictionPolicy.SIZE,
    settings=CacheSettings(max_size=1000, compression=True),
    applicability=CacheApplicability(
        data_patterns=["large_payloads"],
        access_patterns=["infrequent_read"],
    ),
)

# Checked in this order; the in-process cache takes whatever nothing else claims.
STRATEGIES: Dict[str, CacheStrategy] = {
    s.name: s for s in (DISTRIBUTED_TTL, PERSISTENT_SIZE, MEMORY_LRU)
}
DEFAULT_STRATEGY = MEMORY_LRU


def applies(
    strategy: CacheStrategy,
    step_type: str,
    data_patterns: Set[str],
    access_patterns: Set[str],
) -> bool:
    """Check a step against a strategy's declared applicability.

    Declared step types, when present, must match. At least one declared
    data or access pattern must have been observed.
    """
    rules = strategy.applicability
    step_type = step_type.lower()
    if rules.step_types and not any(marker in step_type for marker in rules.step_types):
        return False
    return bool(
        data_patterns.intersection(rules.data_patterns)
        or access_patterns.intersection(rules.access_patterns)
    )


def repeated_step_types(runs: Sequence[PipelineRun], threshold: int) -> Set[str]:
    """Step types called more than ``threshold`` times within a single run."""
    repeated: Set[str] = set()
    for run in runs:
        counts = Counter(step.step_type for step in run.steps)
        repeated.update(t for t, count in counts.items() if count > threshold)
    return repeated


class CacheStrategySelector:
    """Picks a named strategy for each cacheable step of a pipeline."""

    def __init__(
        self,
        store: ExecutionRecordStore,
        settings: Settings,
        definitions: Optional[PipelineDefinitionProvider] = None,
    ):
        self.store = store
        self.settings = settings
        self.definitions = definitions
        self.logger = logger.bind(component="cache_strategy_selector")

    def _shared_step_types(self, pipeline_id: str) -> Set[str]:
        """Step types also used by other pipelines."""
        shared: Set[str] = set()
        for other in self.store.pipeline_ids():
            if other == pipeline_id:
                continue
            for run in self.store.get_runs(other, limit=self.settings.analysis_window):
                shared.update(step.step_type for step in run.steps)
        return shared

    def is_whitelisted(self, step_type: str) -> bool:
        step_type = step_type.lower()
        return any(marker in step_type for marker in self.settings.cacheable_step_markers)

    def cacheable_steps(
        self,
        pipeline_id: str,
        runs: Sequence[PipelineRun],
        bottlenecks: Sequence[BottleneckFinding] = (),
    ) -> Dict[str, str]:
        """Map cacheable step ids to the reason they qualify."""
        aggregates = aggregate_steps(runs)
        repeated = repeated_step_types(runs, self.settings.repeated_call_threshold)
        definition = fetch_definition(self.definitions, pipeline_id)
        caching_bottlenecks = {
            b.step_id
            for b in bottlenecks
            if any(s.type == SuggestionType.CACHING for s in b.suggestions)
        }

        reasons: Dict[str, str] = {}
        for step_id, aggregate in aggregates.items():
            declared = definition.get_step(step_id) if definition is not None else None
            if declared is not None and declared.side_effect_free:
                reasons[step_id] = "declared side-effect free"
            elif aggregate.step_type in repeated:
                reasons[step_id] = (
                    f"step type {aggregate.step_type} repeats more than "
                    f"{self.settings.repeated_call_threshold} times per run"
                )
            elif step_id in caching_bottlenecks:
                reasons[step_id] = "slow step that benefits from response caching"
            elif self.is_whitelisted(aggregate.step_type):
                reasons[step_id] = f"step type {aggregate.step_type} is cacheable"
        return reasons

    def observed_patterns(
        self, aggregate: StepAggregate, shared_types: Set[str]
    ) -> Tuple[Set[str], Set[str]]:
        """Data and access patterns a step shows in its history."""
        data_patterns: Set[str] = set()
        access_patterns: Set[str] = set()
        if aggregate.average_output_size > self.settings.large_output_bytes:
            data_patterns.add("large_payloads")
            access_patterns.add("infrequent_read")
        else:
            access_patterns.add("frequent_read")
        if aggregate.step_type in shared_types:
            access_patterns.add("cross_pipeline")
        return data_patterns, access_patterns

    def select(self, aggregate: StepAggregate, shared_types: Set[str]) -> CacheStrategy:
        """First strategy, in ``STRATEGIES`` order, whose applicability matches."""
        data_patterns, access_patterns = self.observed_patterns(aggregate, shared_types)
        for strategy in STRATEGIES.values():
            if applies(strategy, aggregate.step_type, data_patterns, access_patterns):
                return strategy
        return DEFAULT_STRATEGY

    @staticmethod
    def cache_key(pipeline_id: str, aggregate: StepAggregate, strategy: CacheStrategy) -> str:
        if strategy.key_strategy == CacheKeyStrategy.COMPOSITE:
            return f"{aggregate.step_type}:{{parameters}}:{{input_hash}}"
        return f"{pipeline_id}:{aggregate.step_id}:{{input_hash}}"

    @staticmethod
    def invalidation_rules(strategy: CacheStrategy) -> List[InvalidationRule]:
        rules = []
        if strategy.settings.ttl_seconds is not None:
            rules.append(
                InvalidationRule(
                    trigger="time",
                    condition=f"age > {strategy.settings.ttl_seconds}s",
                    action="clear",
                )
            )
        if strategy.storage == CacheStorage.PERSISTENT:
            rules.append(
                InvalidationRule(
                    trigger="data_change",
                    condition="input payload changed",
                    action="mark_stale",
                )
            )
        rules.append(
            InvalidationRule(
                trigger="manual",
                condition="pipeline definition updated",
                action="clear",
            )
        )
        return rules

    def plan(
        self,
        pipeline_id: str,
        bottlenecks: Sequence[BottleneckFinding] = (),
    ) -> CacheConfiguration:
        runs = self.store.get_completed_runs(pipeline_id, limit=self.settings.analysis_window)
        aggregates = aggregate_steps(runs)
        reasons = self.cacheable_steps(pipeline_id, runs, bottlenecks)
        shared = self._shared_step_types(pipeline_id) if reasons else set()

        steps: Dict[str, StepCacheConfig] = {}
        for step_id, reason in reasons.items():
            aggregate = aggregates[step_id]
            strategy = self.select(aggregate, shared)
            steps[step_id] = StepCacheConfig(
                step_id=step_id,
                cache_key=self.cache_key(pipeline_id, aggregate, strategy),
                strategy=strategy,
                reason=reason,
                invalidation_rules=self.invalidation_rules(strategy),
            )

        self.logger.info(
            "Cache plan built",
            pipeline_id=pipeline_id,
            cacheable_steps=len(steps),
        )
        return CacheConfiguration(pipeline_id=pipeline_id, enabled=bool(steps), steps=steps)

