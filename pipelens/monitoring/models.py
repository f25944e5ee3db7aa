"""Data models for pipeline run telemetry analysis.

Runs and steps come in from the orchestration layer; everything else
(baselines, anomalies, health scores, alerts, optimization findings and
cache plans) is produced by the engine.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_RUN_DATA_LENGTH = 65536


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    """Pipeline run status."""
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELED = "canceled"
    WAITING = "waiting"


class TriggerMode(str, Enum):
    """How a run was started."""
    MANUAL = "manual"
    TRIGGER = "trigger"
    WEBHOOK = "webhook"
    RETRY = "retry"


class StepStatus(str, Enum):
    """Step run status."""
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class AnomalyType(str, Enum):
    """Types of anomalies."""
    PERFORMANCE = "performance"
    ERROR = "error"
    PATTERN = "pattern"
    RESOURCE = "resource"
    BEHAVIOR = "behavior"


class Severity(str, Enum):
    """Anomaly and bottleneck severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TrendDirection(str, Enum):
    """Trend directions."""
    IMPROVING = "improving"
    STABLE = "stable"
    DEGRADING = "degrading"


class RecommendationType(str, Enum):
    """Recommendation categories."""
    CONFIGURATION = "configuration"
    OPTIMIZATION = "optimization"
    MONITORING = "monitoring"
    ALERTING = "alerting"


class Impact(str, Enum):
    """Expected impact of a recommendation."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Effort(str, Enum):
    """Effort needed to apply a recommendation."""
    MINIMAL = "minimal"
    MODERATE = "moderate"
    SIGNIFICANT = "significant"


class AlertType(str, Enum):
    """Alert types."""
    ANOMALY = "anomaly"
    FAILURE = "failure"
    THRESHOLD = "threshold"
    PREDICTION = "prediction"


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AlertActionType(str, Enum):
    """Follow-up actions attached to alerts."""
    RESTART = "restart"
    INVESTIGATE = "investigate"
    OPTIMIZE = "optimize"
    SCALE = "scale"
    NOTIFY = "notify"


class InsightType(str, Enum):
    """Types of predictive insights."""
    FAILURE_PREDICTION = "failure_prediction"
    PERFORMANCE_DEGRADATION = "performance_degradation"
    RESOURCE_EXHAUSTION = "resource_exhaustion"


class BottleneckType(str, Enum):
    """What a bottleneck step is bound by."""
    CPU = "cpu"
    MEMORY = "memory"
    NETWORK = "network"
    DISK = "disk"
    LOGIC = "logic"


class SuggestionType(str, Enum):
    """Optimization suggestion categories."""
    CACHING = "caching"
    BATCHING = "batching"
    PARALLEL = "parallel"
    ALGORITHM = "algorithm"
    CONFIGURATION = "configuration"
    REPLACEMENT = "replacement"


class Complexity(str, Enum):
    """Implementation complexity and risk levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class OpportunityType(str, Enum):
    """Optimization opportunity categories."""
    PERFORMANCE = "performance"
    RELIABILITY = "reliability"
    COST = "cost"
    MAINTAINABILITY = "maintainability"


class CacheStorage(str, Enum):
    """Cache storage tiers."""
    MEMORY = "memory"
    DISTRIBUTED = "distributed"
    PERSISTENT = "persistent"


class CacheScope(str, Enum):
    """Cache sharing scope."""
    STEP = "step"
    PIPELINE = "pipeline"
    GLOBAL = "global"


class CacheKeyStrategy(str, Enum):
    """How cache keys are derived."""
    SIMPLE = "simple"
    COMPOSITE = "composite"
    HASH = "hash"
    CUSTOM = "custom"


class EvictionPolicy(str, Enum):
    """Cache eviction policies."""
    LRU = "lru"
    TTL = "ttl"
    SIZE = "size"
    MANUAL = "manual"


# Run records


class StepError(BaseModel):
    """Error raised by a step."""

    message: str = Field(..., description="Error message")
    stack: Optional[str] = Field(default=None, description="Stack trace")
    code: Optional[str] = Field(default=None, description="Error code")


class StepRun(BaseModel):
    """One step's execution inside a pipeline run."""

    step_id: str = Field(..., min_length=1, description="Step ID")
    step_name: str = Field(default="", description="Step name")
    step_type: str = Field(default="unknown", description="Executor or integration type")
    start_time: Optional[datetime] = Field(default=None, description="Step start time")
    end_time: Optional[datetime] = Field(default=None, description="Step end time")
    status: StepStatus = Field(..., description="Step status")
    duration: float = Field(default=0.0, ge=0, description="Duration in ms")
    memory_used: float = Field(default=0.0, ge=0, description="Memory used in MB")
    output_size: int = Field(default=0, ge=0, description="Output size in bytes")
    error: Optional[StepError] = Field(default=None, description="Error details")

    model_config = ConfigDict(from_attributes=True)

    @property
    def display_name(self) -> str:
        return self.step_name or self.step_id


class RunMetadata(BaseModel):
    """Resource and error counters for a run."""

    duration: Optional[float] = Field(default=None, ge=0, description="Duration in ms")
    memory_usage: Optional[float] = Field(default=None, ge=0, description="Memory usage in MB")
    cpu_usage: Optional[float] = Field(default=None, ge=0, description="CPU usage in percent")
    error_count: int = Field(default=0, ge=0, description="Number of errors")
    retry_count: int = Field(default=0, ge=0, description="Number of retries")


class PipelineRun(BaseModel):
    """One execution of a pipeline."""

    id: str = Field(..., min_length=1, description="Run ID")
    pipeline_id: str = Field(..., min_length=1, description="Pipeline ID")
    start_time: datetime = Field(default_factory=utcnow, description="Run start time")
    end_time: Optional[datetime] = Field(default=None, description="Run end time")
    status: RunStatus = Field(..., description="Run status")
    mode: TriggerMode = Field(default=TriggerMode.MANUAL, description="Trigger mode")
    metadata: RunMetadata = Field(default_factory=RunMetadata, description="Run metrics")
    steps: List[StepRun] = Field(default_factory=list, description="Steps in execution order")
    data: Optional[str] = Field(
        default=None, max_length=MAX_RUN_DATA_LENGTH, description="Opaque payload"
    )

    model_config = ConfigDict(from_attributes=True)

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_finished(self) -> bool:
        """Check if the run has left the running/waiting states."""
        return self.status not in (RunStatus.RUNNING, RunStatus.WAITING)

    def get_failed_steps(self) -> List[StepRun]:
        return [s for s in self.steps if s.status == StepStatus.ERROR]

    def get_slow_steps(self, threshold_ms: float) -> List[str]:
        """Get ids of steps slower than the threshold."""
        return [s.step_id for s in self.steps if s.duration > threshold_ms]

    def get_step_sequence(self) -> List[str]:
        """Get executed step ids in order, ignoring skipped steps."""
        return [s.step_id for s in self.steps if s.status != StepStatus.SKIPPED]


# Baselines


class StepBaseline(BaseModel):
    """Rolling statistics for one step."""

    average_duration: Optional[float] = None
    average_memory: Optional[float] = None
    success_rate: Optional[float] = None
    sample_count: int = 0


class Baseline(BaseModel):
    """Rolling statistics for a pipeline."""

    pipeline_id: str
    average_duration: Optional[float] = None
    average_memory: Optional[float] = None
    average_cpu: Optional[float] = None
    success_rate: Optional[float] = None
    run_count: int = 0
    steps: Dict[str, StepBaseline] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None


# Recommendations and anomalies


class ImplementationPlan(BaseModel):
    """How to carry out a recommendation."""

    steps: List[str] = Field(default_factory=list)
    estimated_time: str = ""
    required_skills: List[str] = Field(default_factory=list)


class Recommendation(BaseModel):
    """An actionable suggestion."""

    type: RecommendationType
    action: str
    impact: Impact
    effort: Effort
    description: str
    implementation: ImplementationPlan = Field(default_factory=ImplementationPlan)

    model_config = ConfigDict(frozen=True)


class AnomalyMetrics(BaseModel):
    deviation: float = Field(..., ge=0)
    confidence: float = Field(..., ge=0, le=1)
    affected_steps: List[str] = Field(default_factory=list)


class HistoricalContext(BaseModel):
    baseline: float
    recent_average: float
    trend: TrendDirection


class Anomaly(BaseModel):
    """A detected deviation."""

    id: str
    pipeline_id: str
    run_id: str
    type: AnomalyType
    severity: Severity
    check: str = Field(..., description="Name of the check that produced it")
    description: str
    detected_at: datetime = Field(default_factory=utcnow)
    metrics: AnomalyMetrics
    recommendations: List[Recommendation] = Field(default_factory=list)
    historical_context: HistoricalContext

    model_config = ConfigDict(frozen=True)


# Health


class HealthFactors(BaseModel):
    success_rate: float
    average_duration: float
    error_frequency: float
    resource_usage: float
    complexity_score: int = Field(..., ge=1, le=5)


class HealthScore(BaseModel):
    """Composite pipeline health assessment."""

    overall: int = Field(..., ge=0, le=100)
    reliability: int = Field(..., ge=0, le=100)
    performance: int = Field(..., ge=0, le=100)
    efficiency: int = Field(..., ge=0, le=100)
    maintainability: int = Field(..., ge=0, le=100)
    trend: TrendDirection
    factors: HealthFactors
    computed_at: datetime = Field(default_factory=utcnow)

    def get_grade(self) -> str:
        """Get health grade (A-F)."""
        if self.overall >= 90:
            return "A"
        elif self.overall >= 80:
            return "B"
        elif self.overall >= 70:
            return "C"
        elif self.overall >= 60:
            return "D"
        return "F"


# Predictions


class PredictiveInsight(BaseModel):
    type: InsightType
    probability: float = Field(..., ge=0, le=1)
    timeframe: str
    description: str
    preventive_actions: List[str] = Field(default_factory=list)
    monitoring_metrics: List[str] = Field(default_factory=list)


# Alerts


class AlertAction(BaseModel):
    type: AlertActionType
    description: str
    automated: bool = False
    estimated_resolution_time: str = ""


class Alert(BaseModel):
    """Alert model."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    pipeline_id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    description: str
    timestamp: datetime = Field(default_factory=utcnow)
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    anomaly_id: Optional[str] = None
    actions: List[AlertAction] = Field(default_factory=list)

    def is_active(self) -> bool:
        """Check if alert is still active."""
        return not self.resolved

    def get_severity_score(self) -> int:
        """Get numeric severity score for sorting."""
        scores = {
            AlertSeverity.INFO: 1,
            AlertSeverity.WARNING: 2,
            AlertSeverity.ERROR: 3,
            AlertSeverity.CRITICAL: 4,
        }
        return scores[self.severity]


# Optimization


class SuggestionImplementation(BaseModel):
    complexity: Complexity
    effort_hours: float
    risk_level: Complexity
    compatibility: List[str] = Field(default_factory=list)


class ExpectedImpact(BaseModel):
    """Expected improvements in percent."""

    performance_improvement: float = 0.0
    resource_reduction: float = 0.0
    reliability_improvement: float = 0.0


class OptimizationSuggestion(BaseModel):
    """A concrete change that relieves a bottleneck."""

    type: SuggestionType
    action: str
    description: str
    implementation: SuggestionImplementation
    expected_impact: ExpectedImpact = Field(default_factory=ExpectedImpact)
    configuration_changes: Dict[str, Any] = Field(default_factory=dict)

    def get_effort_penalty(self) -> float:
        """Multiplier (0-1] that favours cheap, low risk changes."""
        complexity_factor = {
            Complexity.LOW: 1.0,
            Complexity.MEDIUM: 0.7,
            Complexity.HIGH: 0.4,
        }[self.implementation.complexity]
        risk_factor = {
            Complexity.LOW: 1.0,
            Complexity.MEDIUM: 0.85,
            Complexity.HIGH: 0.7,
        }[self.implementation.risk_level]
        return complexity_factor * risk_factor

    def to_recommendation(self) -> Recommendation:
        improvement = max(
            self.expected_impact.performance_improvement,
            self.expected_impact.resource_reduction,
            self.expected_impact.reliability_improvement,
        )
        if improvement >= 50:
            impact = Impact.HIGH
        elif improvement >= 25:
            impact = Impact.MEDIUM
        else:
            impact = Impact.LOW

        hours = self.implementation.effort_hours
        if hours <= 1:
            effort = Effort.MINIMAL
        elif hours <= 4:
            effort = Effort.MODERATE
        else:
            effort = Effort.SIGNIFICANT

        rec_type = (
            RecommendationType.CONFIGURATION
            if self.type == SuggestionType.CONFIGURATION
            else RecommendationType.OPTIMIZATION
        )
        return Recommendation(
            type=rec_type,
            action=self.action,
            impact=impact,
            effort=effort,
            description=self.description,
            implementation=ImplementationPlan(
                steps=[self.description],
                estimated_time=f"{hours:g} hours",
                required_skills=list(self.implementation.compatibility),
            ),
        )


class BottleneckMetrics(BaseModel):
    average_duration: float
    average_memory: float
    frequency: int


class BottleneckFinding(BaseModel):
    """A step whose time or resource use dominates its pipeline."""

    step_id: str
    step_name: str
    step_type: str
    bottleneck_type: BottleneckType
    severity: Severity
    impact: float = Field(..., ge=0, le=1)
    description: str
    metrics: BottleneckMetrics
    suggestions: List[OptimizationSuggestion] = Field(default_factory=list)

    def get_recommendations(self) -> List[Recommendation]:
        return [s.to_recommendation() for s in self.suggestions]


class OptimizationOpportunity(BaseModel):
    id: str
    type: OpportunityType
    description: str
    affected_steps: List[str] = Field(default_factory=list)
    impact: float = Field(..., ge=0, le=1)
    roi_score: float = Field(..., ge=0)
    prerequisites: List[str] = Field(default_factory=list)
    suggestions: List[OptimizationSuggestion] = Field(default_factory=list)


class ExecutionStats(BaseModel):
    average_duration: float = 0.0
    median_duration: float = 0.0
    p95_duration: float = 0.0
    success_rate: float = 0.0
    error_rate: float = 0.0
    retry_rate: float = 0.0


class ResourceUsage(BaseModel):
    peak_memory: float = 0.0
    average_memory: float = 0.0
    peak_cpu: float = 0.0
    average_cpu: float = 0.0


class PerformanceProfile(BaseModel):
    pipeline_id: str
    run_count: int
    execution_stats: ExecutionStats
    resource_usage: ResourceUsage
    bottlenecks: List[BottleneckFinding] = Field(default_factory=list)
    opportunities: List[OptimizationOpportunity] = Field(default_factory=list)
    analyzed_at: datetime = Field(default_factory=utcnow)


# Caching


class CacheSettings(BaseModel):
    max_size: Optional[int] = None
    ttl_seconds: Optional[int] = None
    compression: bool = False
    encryption: bool = False


class CacheApplicability(BaseModel):
    step_types: List[str] = Field(default_factory=list)
    data_patterns: List[str] = Field(default_factory=list)
    access_patterns: List[str] = Field(default_factory=list)


class CacheStrategy(BaseModel):
    """A named caching policy."""

    name: str
    storage: CacheStorage
    scope: CacheScope
    key_strategy: CacheKeyStrategy
    eviction_policy: EvictionPolicy
    settings: CacheSettings = Field(default_factory=CacheSettings)
    applicability: CacheApplicability = Field(default_factory=CacheApplicability)

    model_config = ConfigDict(frozen=True)


class InvalidationRule(BaseModel):
    trigger: str = Field(..., description="time, data_change, manual or dependency")
    condition: str
    action: str = Field(default="clear", description="clear, refresh or mark_stale")


class StepCacheConfig(BaseModel):
    step_id: str
    cache_key: str
    strategy: CacheStrategy
    reason: str
    invalidation_rules: List[InvalidationRule] = Field(default_factory=list)


class CacheGlobalSettings(BaseModel):
    max_total_memory: int = 512 * 1024 * 1024
    cleanup_interval: int = 300
    metrics_enabled: bool = True


class CacheConfiguration(BaseModel):
    pipeline_id: str
    enabled: bool = True
    global_settings: CacheGlobalSettings = Field(default_factory=CacheGlobalSettings)
    steps: Dict[str, StepCacheConfig] = Field(default_factory=dict)


# Pipeline structure


class PipelineStep(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = ""
    type: str = "unknown"
    side_effect_free: bool = Field(default=False, description="Declared safe to cache")


class PipelineEdge(BaseModel):
    source: str
    target: str


class PipelineDefinition(BaseModel):
    """Structural definition of a pipeline."""

    id: str = Field(..., min_length=1)
    name: str = ""
    steps: List[PipelineStep] = Field(default_factory=list)
    edges: List[PipelineEdge] = Field(default_factory=list)

    def get_step(self, step_id: str) -> Optional[PipelineStep]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


# Engine results


class IngestResult(BaseModel):
    anomalies: List[Anomaly] = Field(default_factory=list)
    insights: List[PredictiveInsight] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)


class PipelineInsights(BaseModel):
    health: HealthScore
    recent_anomalies: List[Anomaly] = Field(default_factory=list)
    predictive_insights: List[PredictiveInsight] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    active_alerts: List[Alert] = Field(default_factory=list)
