"""
Bottleneck detection and optimization opportunities.

Steps are aggregated across a window of finished runs. A step whose average
duration crosses the slow threshold is a bottleneck; each bottleneck gets
suggestions matching what the step does, and the resulting opportunities are
ranked by return on investment (impact scaled by how cheap and safe the best
suggestion is).
"""

import math
import statistics
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import structlog

from pipelens.config import Settings

from .exceptions import InvalidPipelineStructureError
from .models import (
    BottleneckFinding,
    BottleneckMetrics,
    BottleneckType,
    Complexity,
    ExecutionStats,
    ExpectedImpact,
    OpportunityType,
    OptimizationOpportunity,
    OptimizationSuggestion,
    PerformanceProfile,
    PipelineRun,
    ResourceUsage,
    RunStatus,
    Severity,
    StepStatus,
    SuggestionImplementation,
    SuggestionType,
)
from .store import ExecutionRecordStore
from .structure import PipelineDefinitionProvider, PipelineStructure, fetch_definition

logger = structlog.get_logger()

NETWORK_MARKERS = ("http", "request", "api", "graphql", "webhook")
DISK_MARKERS = ("file", "ftp", "s3", "storage")
CODE_MARKERS = ("code", "function", "script", "python", "javascript")

RELIABILITY_ERROR_RATE = 0.1


def _matches(step_type: str, markers: Sequence[str]) -> bool:
    step_type = step_type.lower()
    return any(marker in step_type for marker in markers)


def percentile(values: Sequence[float], fraction: float) -> float:
    """Nearest-rank percentile."""
    if not values:
        return 0.0
    ordered = sorted(values)
    rank = max(math.ceil(fraction * len(ordered)), 1)
    return ordered[rank - 1]


@dataclass
class StepAggregate:
    """One step's measurements gathered across runs."""

    step_id: str
    step_name: str
    step_type: str
    durations: List[float] = field(default_factory=list)
    memory: List[float] = field(default_factory=list)
    output_sizes: List[int] = field(default_factory=list)

    @property
    def average_duration(self) -> float:
        return statistics.fmean(self.durations) if self.durations else 0.0

    @property
    def average_memory(self) -> float:
        return statistics.fmean(self.memory) if self.memory else 0.0

    @property
    def average_output_size(self) -> float:
        return statistics.fmean(self.output_sizes) if self.output_sizes else 0.0

    @property
    def frequency(self) -> int:
        return len(self.durations)


def aggregate_steps(runs: Sequence[PipelineRun]) -> Dict[str, StepAggregate]:
    """Group executed steps by id, in order of first appearance."""
    aggregates: Dict[str, StepAggregate] = {}
    for run in runs:
        for step in run.steps:
            if step.status == StepStatus.SKIPPED:
                continue
            aggregate = aggregates.get(step.step_id)
            if aggregate is None:
                aggregate = StepAggregate(step.step_id, step.display_name, step.step_type)
                aggregates[step.step_id] = aggregate
            else:
                aggregate.step_name = step.display_name
                aggregate.step_type = step.step_type
            aggregate.durations.append(step.duration)
            aggregate.memory.append(step.memory_used)
            aggregate.output_sizes.append(step.output_size)
    return aggregates


def execution_stats(runs: Sequence[PipelineRun]) -> ExecutionStats:
    if not runs:
        return ExecutionStats()

    total = len(runs)
    durations = [r.metadata.duration for r in runs if r.metadata.duration is not None]
    return ExecutionStats(
        average_duration=statistics.fmean(durations) if durations else 0.0,
        median_duration=statistics.median(durations) if durations else 0.0,
        p95_duration=percentile(durations, 0.95),
        success_rate=sum(1 for r in runs if r.status == RunStatus.SUCCESS) / total,
        error_rate=sum(1 for r in runs if r.status == RunStatus.ERROR) / total,
        retry_rate=sum(1 for r in runs if r.metadata.retry_count > 0) / total,
    )


def resource_usage(runs: Sequence[PipelineRun]) -> ResourceUsage:
    memory = [r.metadata.memory_usage for r in runs if r.metadata.memory_usage is not None]
    cpu = [r.metadata.cpu_usage for r in runs if r.metadata.cpu_usage is not None]
    return ResourceUsage(
        peak_memory=max(memory, default=0.0),
        average_memory=statistics.fmean(memory) if memory else 0.0,
        peak_cpu=max(cpu, default=0.0),
        average_cpu=statistics.fmean(cpu) if cpu else 0.0,
    )


# Suggestions


def response_caching() -> OptimizationSuggestion:
    return OptimizationSuggestion(
        type=SuggestionType.CACHING,
        action="add_response_caching",
        description="Add response caching to reduce API call frequency",
        implementation=SuggestionImplementation(
            complexity=Complexity.LOW,
            effort_hours=1,
            risk_level=Complexity.LOW,
            compatibility=["http", "api"],
        ),
        expected_impact=ExpectedImpact(
            performance_improvement=60,
            resource_reduction=30,
            reliability_improvement=20,
        ),
        configuration_changes={"caching": {"enabled": True, "ttl": 300}},
    )


def timeout_tuning() -> OptimizationSuggestion:
    return OptimizationSuggestion(
        type=SuggestionType.CONFIGURATION,
        action="tune_timeouts_and_retries",
        description="Optimize timeout and retry settings",
        implementation=SuggestionImplementation(
            complexity=Complexity.LOW,
            effort_hours=0.5,
            risk_level=Complexity.LOW,
            compatibility=["http"],
        ),
        expected_impact=ExpectedImpact(
            performance_improvement=25,
            resource_reduction=10,
            reliability_improvement=40,
        ),
        configuration_changes={"timeout": 10000, "retry": {"attempts": 3, "delay": 1000}},
    )


def batching() -> OptimizationSuggestion:
    return OptimizationSuggestion(
        type=SuggestionType.BATCHING,
        action="process_in_batches",
        description="Process data in smaller batches to reduce memory usage",
        implementation=SuggestionImplementation(
            complexity=Complexity.MEDIUM,
            effort_hours=2,
            risk_level=Complexity.MEDIUM,
            compatibility=["data_processing"],
        ),
        expected_impact=ExpectedImpact(
            performance_improvement=20,
            resource_reduction=50,
            reliability_improvement=30,
        ),
        configuration_changes={"batch_size": 100},
    )


def parallel_execution(siblings: List[str]) -> OptimizationSuggestion:
    return OptimizationSuggestion(
        type=SuggestionType.PARALLEL,
        action="run_in_parallel",
        description=f"Run alongside {', '.join(siblings)} instead of sequentially",
        implementation=SuggestionImplementation(
            complexity=Complexity.MEDIUM,
            effort_hours=2,
            risk_level=Complexity.MEDIUM,
            compatibility=["pipeline"],
        ),
        expected_impact=ExpectedImpact(performance_improvement=40),
        configuration_changes={"parallel_with": list(siblings)},
    )


def algorithm_review() -> OptimizationSuggestion:
    return OptimizationSuggestion(
        type=SuggestionType.ALGORITHM,
        action="review_step_algorithm",
        description="Review the step's code for inefficient loops and data handling",
        implementation=SuggestionImplementation(
            complexity=Complexity.HIGH,
            effort_hours=4,
            risk_level=Complexity.MEDIUM,
            compatibility=["code"],
        ),
        expected_impact=ExpectedImpact(
            performance_improvement=35,
            resource_reduction=20,
        ),
    )


def configuration_review() -> OptimizationSuggestion:
    return OptimizationSuggestion(
        type=SuggestionType.CONFIGURATION,
        action="optimize_step_configuration",
        description="Review step parameters and remove unnecessary processing",
        implementation=SuggestionImplementation(
            complexity=Complexity.MEDIUM,
            effort_hours=1,
            risk_level=Complexity.LOW,
            compatibility=["all"],
        ),
        expected_impact=ExpectedImpact(performance_improvement=20),
    )


def reliability_improvement() -> OptimizationSuggestion:
    return OptimizationSuggestion(
        type=SuggestionType.CONFIGURATION,
        action="improve_error_handling",
        description="Add comprehensive error handling and retry logic",
        implementation=SuggestionImplementation(
            complexity=Complexity.MEDIUM,
            effort_hours=3,
            risk_level=Complexity.LOW,
            compatibility=["all"],
        ),
        expected_impact=ExpectedImpact(
            performance_improvement=10,
            resource_reduction=5,
            reliability_improvement=70,
        ),
    )


def roi_score(impact: float, suggestions: Sequence[OptimizationSuggestion]) -> float:
    """Impact scaled by the cheapest, safest suggestion."""
    if not suggestions:
        return 0.0
    return impact * max(s.get_effort_penalty() for s in suggestions)


class BottleneckAnalyzer:
    """Builds performance profiles from a pipeline's run history."""

    def __init__(
        self,
        store: ExecutionRecordStore,
        settings: Settings,
        definitions: Optional[PipelineDefinitionProvider] = None,
    ):
        self.store = store
        self.settings = settings
        self.definitions = definitions
        self.logger = logger.bind(component="bottleneck_analyzer")

    def structure(self, pipeline_id: str) -> Optional[PipelineStructure]:
        definition = fetch_definition(self.definitions, pipeline_id)
        if definition is None:
            return None
        try:
            return PipelineStructure(definition)
        except InvalidPipelineStructureError as e:
            self.logger.warning(
                "Ignoring invalid pipeline definition",
                pipeline_id=pipeline_id,
                error=str(e),
            )
            return None

    def classify(self, aggregate: StepAggregate) -> BottleneckType:
        if _matches(aggregate.step_type, NETWORK_MARKERS):
            return BottleneckType.NETWORK
        if aggregate.average_memory > self.settings.high_memory_step_mb:
            return BottleneckType.MEMORY
        if _matches(aggregate.step_type, DISK_MARKERS):
            return BottleneckType.DISK
        if _matches(aggregate.step_type, CODE_MARKERS):
            return BottleneckType.LOGIC
        return BottleneckType.CPU

    def suggestions_for(
        self, aggregate: StepAggregate, structure: Optional[PipelineStructure]
    ) -> List[OptimizationSuggestion]:
        suggestions = []
        if _matches(aggregate.step_type, NETWORK_MARKERS):
            suggestions.extend([response_caching(), timeout_tuning()])
        if aggregate.average_memory > self.settings.high_memory_step_mb:
            suggestions.append(batching())
        if structure is not None:
            siblings = structure.parallel_siblings(aggregate.step_id)
            if siblings:
                suggestions.append(parallel_execution(siblings))
        if _matches(aggregate.step_type, CODE_MARKERS):
            suggestions.append(algorithm_review())
        if not suggestions:
            suggestions.append(configuration_review())
        return suggestions

    def find_bottlenecks(
        self,
        runs: Sequence[PipelineRun],
        structure: Optional[PipelineStructure] = None,
    ) -> List[BottleneckFinding]:
        bottlenecks = []
        for aggregate in aggregate_steps(runs).values():
            average_duration = aggregate.average_duration
            if average_duration <= self.settings.slow_step_threshold_ms:
                continue

            bottleneck_type = self.classify(aggregate)
            bottlenecks.append(
                BottleneckFinding(
                    step_id=aggregate.step_id,
                    step_name=aggregate.step_name,
                    step_type=aggregate.step_type,
                    bottleneck_type=bottleneck_type,
                    severity=(
                        Severity.HIGH
                        if average_duration > self.settings.critical_step_threshold_ms
                        else Severity.MEDIUM
                    ),
                    impact=min(average_duration / 10000, 1.0),
                    description=f"Step takes an average of {average_duration:.0f}ms to execute",
                    metrics=BottleneckMetrics(
                        average_duration=average_duration,
                        average_memory=aggregate.average_memory,
                        frequency=aggregate.frequency,
                    ),
                    suggestions=self.suggestions_for(aggregate, structure),
                )
            )
        return bottlenecks

    def find_opportunities(
        self,
        runs: Sequence[PipelineRun],
        bottlenecks: Sequence[BottleneckFinding],
        stats: ExecutionStats,
        structure: Optional[PipelineStructure] = None,
    ) -> List[OptimizationOpportunity]:
        opportunities = []
        for bottleneck in bottlenecks:
            opportunities.append(
                OptimizationOpportunity(
                    id=f"bottleneck_{bottleneck.step_id}",
                    type=OpportunityType.PERFORMANCE,
                    description=(
                        f"Optimize {bottleneck.step_name} to reduce "
                        f"{bottleneck.bottleneck_type.value} usage"
                    ),
                    affected_steps=[bottleneck.step_id],
                    impact=bottleneck.impact,
                    roi_score=roi_score(bottleneck.impact, bottleneck.suggestions),
                    suggestions=list(bottleneck.suggestions),
                )
            )

        aggregates = aggregate_steps(runs)

        if stats.error_rate > RELIABILITY_ERROR_RATE:
            suggestions = [reliability_improvement()]
            impact = min(stats.error_rate, 1.0)
            opportunities.append(
                OptimizationOpportunity(
                    id="reliability_improvement",
                    type=OpportunityType.RELIABILITY,
                    description="Improve pipeline reliability by adding error handling",
                    affected_steps=list(aggregates.keys()),
                    impact=impact,
                    roi_score=roi_score(impact, suggestions),
                    prerequisites=["error handling knowledge"],
                    suggestions=suggestions,
                )
            )

        if structure is not None and stats.average_duration > 0:
            saved = 0.0
            grouped: List[str] = []
            for group in structure.parallel_groups():
                durations = [aggregates[s].average_duration for s in group if s in aggregates]
                if len(durations) > 1:
                    saved += sum(durations) - max(durations)
                    grouped.extend(group)
            if saved > 0:
                impact = min(saved / stats.average_duration, 1.0)
                suggestions = [parallel_execution(grouped)]
                opportunities.append(
                    OptimizationOpportunity(
                        id="parallel_execution",
                        type=OpportunityType.PERFORMANCE,
                        description="Run independent steps in parallel",
                        affected_steps=grouped,
                        impact=impact,
                        roi_score=roi_score(impact, suggestions),
                        suggestions=suggestions,
                    )
                )

        return sorted(opportunities, key=lambda o: (-o.roi_score, o.id))

    def analyze(self, pipeline_id: str) -> PerformanceProfile:
        runs = self.store.get_completed_runs(pipeline_id, limit=self.settings.analysis_window)
        structure = self.structure(pipeline_id)
        stats = execution_stats(runs)
        bottlenecks = self.find_bottlenecks(runs, structure)
        opportunities = self.find_opportunities(runs, bottlenecks, stats, structure)

        self.logger.info(
            "Performance analyzed",
            pipeline_id=pipeline_id,
            runs=len(runs),
            bottlenecks=len(bottlenecks),
            opportunities=len(opportunities),
        )
        return PerformanceProfile(
            pipeline_id=pipeline_id,
            run_count=len(runs),
            execution_stats=stats,
            resource_usage=resource_usage(runs),
            bottlenecks=bottlenecks,
            opportunities=opportunities,
        )
