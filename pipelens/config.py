"""Application configuration."""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Pipelens", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Log level")

    # History retention
    history_limit: int = Field(
        default=1000, ge=1, description="Max stored runs per pipeline"
    )
    anomaly_retention: int = Field(
        default=500, ge=1, description="Max stored anomalies per pipeline"
    )
    health_window: int = Field(
        default=100, ge=1, description="Runs considered by the health scorer"
    )
    health_history_limit: int = Field(
        default=100, ge=5, description="Stored health score snapshots per pipeline"
    )
    alert_retention: int = Field(
        default=10000, ge=1, description="Max stored alerts"
    )

    # Baselines and trends
    baseline_smoothing: float = Field(
        default=0.2, gt=0.0, le=1.0, description="EWMA smoothing factor for baselines"
    )
    recent_window: int = Field(
        default=10, ge=2, description="Runs used for recent averages and trends"
    )
    trend_tolerance: float = Field(
        default=0.1, ge=0.0, description="Relative change treated as stable"
    )

    # Anomaly detection
    slow_step_threshold_ms: float = Field(
        default=5000.0, description="Step duration flagged as slow"
    )
    critical_step_threshold_ms: float = Field(
        default=15000.0, description="Step duration flagged as a severe bottleneck"
    )
    high_memory_step_mb: float = Field(
        default=100.0, description="Step memory flagged as memory intensive"
    )
    high_cpu_share: float = Field(
        default=0.5, description="Share of run duration flagging a CPU intensive step"
    )
    error_spike_window_hours: int = Field(
        default=24, ge=1, description="Trailing window for error spike detection"
    )
    error_spike_threshold: int = Field(
        default=5, ge=1, description="Error runs tolerated inside the spike window"
    )
    behavior_min_runs: int = Field(
        default=3, ge=1, description="Prior runs needed before step order is compared"
    )

    # Optimization analysis
    analysis_window: int = Field(
        default=50, ge=1, description="Runs inspected by the bottleneck analyzer"
    )
    cacheable_step_markers: List[str] = Field(
        default=["http", "request", "api", "postgres", "mysql", "graphql"],
        description="Step type fragments considered cacheable",
    )
    repeated_call_threshold: int = Field(
        default=3, ge=1, description="Calls per run of one step type marking it cacheable"
    )
    large_output_bytes: int = Field(
        default=1048576, description="Average output size routed to persistent caching"
    )

    # Predictions
    prediction_min_runs: int = Field(
        default=5, ge=2, description="Runs needed before trend predictions are made"
    )
    prediction_horizon_runs: int = Field(
        default=20, ge=1, description="Runs ahead projected for resource exhaustion"
    )
    max_execution_memory: int = Field(
        default=1024, description="Max execution memory in MB"
    )
    max_cpu_percent: float = Field(
        default=100.0, description="CPU usage ceiling in percent"
    )

    # Monitoring
    metrics_enabled: bool = Field(default=True, description="Enable metrics")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() in ("development", "dev")

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment.lower() in ("testing", "test")


@lru_cache()
def get_settings() -> Settings:
    """Get application settings (cached)."""
    return Settings()


# Global settings instance
settings = get_settings()
