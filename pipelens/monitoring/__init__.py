"""Pipeline run monitoring and analysis module."""

from .alerts import AlertDispatcher, AlertSink
from .anomalies import AnomalyDetector, BehaviorCheck, BehaviorFinding, StepOrderCheck
from .baselines import BaselineRegistry
from .caching import CacheStrategySelector
from .deviation import confidence, deviation
from .engine import MonitoringEngine
from .exceptions import (
    AlertNotFoundError,
    InvalidPipelineStructureError,
    InvalidRunError,
    MonitoringError,
    RunFinalizedError,
)
from .health import HealthScorer
from .models import (
    Alert,
    Anomaly,
    Baseline,
    CacheConfiguration,
    HealthScore,
    IngestResult,
    PerformanceProfile,
    PipelineDefinition,
    PipelineInsights,
    PipelineRun,
    PredictiveInsight,
    Recommendation,
    StepRun,
)
from .optimization import BottleneckAnalyzer
from .predictions import PredictiveInsightGenerator
from .store import ExecutionRecordStore
from .structure import InMemoryDefinitionProvider, PipelineDefinitionProvider, PipelineStructure
from .trends import TrendTracker

__all__ = [
    "MonitoringEngine",
    "ExecutionRecordStore",
    "BaselineRegistry",
    "TrendTracker",
    "AnomalyDetector",
    "BehaviorCheck",
    "BehaviorFinding",
    "StepOrderCheck",
    "HealthScorer",
    "PredictiveInsightGenerator",
    "AlertDispatcher",
    "AlertSink",
    "BottleneckAnalyzer",
    "CacheStrategySelector",
    "PipelineStructure",
    "PipelineDefinitionProvider",
    "InMemoryDefinitionProvider",
    "deviation",
    "confidence",
    "MonitoringError",
    "InvalidRunError",
    "RunFinalizedError",
    "AlertNotFoundError",
    "InvalidPipelineStructureError",
    "Alert",
    "Anomaly",
    "Baseline",
    "CacheConfiguration",
    "HealthScore",
    "IngestResult",
    "PerformanceProfile",
    "PipelineDefinition",
    "PipelineInsights",
    "PipelineRun",
    "PredictiveInsight",
    "Recommendation",
    "StepRun",
]
