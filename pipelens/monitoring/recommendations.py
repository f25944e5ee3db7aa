"""Catalog of recommendations attached to anomalies."""

from typing import Iterable, List

from .models import (
    Effort,
    ImplementationPlan,
    Impact,
    Recommendation,
    RecommendationType,
    StepRun,
)

_IMPACT_ORDER = {Impact.HIGH: 0, Impact.MEDIUM: 1, Impact.LOW: 2}
_EFFORT_ORDER = {Effort.MINIMAL: 0, Effort.MODERATE: 1, Effort.SIGNIFICANT: 2}


def pipeline_performance(deviation: float) -> List[Recommendation]:
    if deviation <= 3.0:
        return []
    return [
        Recommendation(
            type=RecommendationType.OPTIMIZATION,
            action="optimize_pipeline_structure",
            impact=Impact.HIGH,
            effort=Effort.MODERATE,
            description="Restructure pipeline to improve performance",
            implementation=ImplementationPlan(
                steps=[
                    "Identify bottleneck steps",
                    "Consider parallel execution",
                    "Optimize data transformations",
                    "Add caching where appropriate",
                ],
                estimated_time="2-4 hours",
                required_skills=["pipeline optimization", "performance analysis"],
            ),
        )
    ]


def step_performance(step: StepRun) -> List[Recommendation]:
    return [
        Recommendation(
            type=RecommendationType.OPTIMIZATION,
            action="optimize_step_configuration",
            impact=Impact.MEDIUM,
            effort=Effort.MINIMAL,
            description=f"Optimize configuration for {step.display_name}",
            implementation=ImplementationPlan(
                steps=[
                    "Review step parameters",
                    "Check for unnecessary data processing",
                    "Optimize API calls or queries",
                    "Consider step alternatives",
                ],
                estimated_time="30-60 minutes",
                required_skills=["step configuration"],
            ),
        )
    ]


def error_handling() -> List[Recommendation]:
    return [
        Recommendation(
            type=RecommendationType.CONFIGURATION,
            action="improve_error_handling",
            impact=Impact.HIGH,
            effort=Effort.MODERATE,
            description="Add comprehensive error handling",
            implementation=ImplementationPlan(
                steps=[
                    "Guard critical operations with error branches",
                    "Implement retry logic with exponential backoff",
                    "Add error notification mechanisms",
                    "Log detailed error information",
                ],
                estimated_time="1-2 hours",
                required_skills=["error handling", "pipeline design"],
            ),
        )
    ]


def error_spike() -> List[Recommendation]:
    return [
        Recommendation(
            type=RecommendationType.MONITORING,
            action="investigate_error_spike",
            impact=Impact.HIGH,
            effort=Effort.MINIMAL,
            description="Investigate cause of error spike",
            implementation=ImplementationPlan(
                steps=[
                    "Review error logs for common patterns",
                    "Check external service status",
                    "Validate input data quality",
                    "Consider temporarily disabling the pipeline",
                ],
                estimated_time="30 minutes",
                required_skills=["debugging", "system analysis"],
            ),
        )
    ]


def memory_usage() -> List[Recommendation]:
    return [
        Recommendation(
            type=RecommendationType.OPTIMIZATION,
            action="optimize_memory_usage",
            impact=Impact.HIGH,
            effort=Effort.MODERATE,
            description="Reduce memory consumption",
            implementation=ImplementationPlan(
                steps=[
                    "Process data in smaller chunks",
                    "Drop intermediate data that is no longer needed",
                    "Optimize data structures",
                    "Consider streaming for large datasets",
                ],
                estimated_time="1-3 hours",
                required_skills=["memory optimization", "data processing"],
            ),
        )
    ]


def cpu_usage() -> List[Recommendation]:
    return [
        Recommendation(
            type=RecommendationType.OPTIMIZATION,
            action="optimize_cpu_usage",
            impact=Impact.MEDIUM,
            effort=Effort.MODERATE,
            description="Reduce CPU intensive operations",
            implementation=ImplementationPlan(
                steps=[
                    "Optimize algorithms and loops",
                    "Use more efficient step operations",
                    "Consider parallel processing",
                    "Cache computation results",
                ],
                estimated_time="2-4 hours",
                required_skills=["performance optimization", "algorithm design"],
            ),
        )
    ]


def behavior_pattern() -> List[Recommendation]:
    return [
        Recommendation(
            type=RecommendationType.MONITORING,
            action="monitor_behavior_pattern",
            impact=Impact.LOW,
            effort=Effort.MINIMAL,
            description="Continue monitoring unusual behavior",
            implementation=ImplementationPlan(
                steps=[
                    "Set up behavior monitoring alerts",
                    "Track pattern evolution",
                    "Document behavioral changes",
                ],
                estimated_time="15 minutes",
                required_skills=["monitoring configuration"],
            ),
        )
    ]


def add_monitoring() -> Recommendation:
    return Recommendation(
        type=RecommendationType.ALERTING,
        action="add_monitoring",
        impact=Impact.MEDIUM,
        effort=Effort.MINIMAL,
        description="Enhance pipeline monitoring",
        implementation=ImplementationPlan(
            steps=[
                "Add performance tracking steps",
                "Set up execution alerts",
                "Configure health checks",
            ],
            estimated_time="1 hour",
            required_skills=["monitoring setup"],
        ),
    )


def merge(recommendations: Iterable[Recommendation]) -> List[Recommendation]:
    """Deduplicate by action, keeping first occurrence, then rank.

    Highest impact first; ties go to the smaller effort.
    """
    seen = {}
    for recommendation in recommendations:
        seen.setdefault(recommendation.action, recommendation)
    return sorted(
        seen.values(),
        key=lambda r: (_IMPACT_ORDER[r.impact], _EFFORT_ORDER[r.effort]),
    )
