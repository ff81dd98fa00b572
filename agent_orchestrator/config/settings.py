"""
Typed settings for the orchestration engine.

Values come from, in increasing precedence: model defaults, the loaded
configuration file or dictionary, and ``ORCHESTRATOR_`` environment
variables (``ORCHESTRATOR_LEARNING__LEARNING_RATE=0.2``).
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseModel):
    """Queue, dispatch and timeout behaviour."""

    tick_interval: float = Field(default=1.0, gt=0)
    task_timeout: float = Field(default=300.0, gt=0)
    queue_name: str = Field(default="ai-processing", min_length=1)
    requeue_on_no_agent: bool = False


class LearningSettings(BaseModel):
    """Switch pattern learning and prediction."""

    enable_pattern_detection: bool = True
    minimum_occurrences: int = Field(default=5, ge=1)
    confidence_threshold: float = Field(default=0.7, ge=0, le=1)
    pattern_retention_days: int = Field(default=30, ge=1)
    enable_predictive_analysis: bool = True
    enable_auto_optimization: bool = True
    learning_rate: float = Field(default=0.1, gt=0, le=1)
    max_patterns_per_type: int = Field(default=50, ge=1)
    max_history_size: int = Field(default=10000, ge=1)
    max_insights_size: int = Field(default=1000, ge=1)
    detection_window: int = Field(default=1000, ge=2)
    optimization_interval: float = Field(default=3600.0, gt=0)
    insight_prune_interval: float = Field(default=86400.0, gt=0)
    insight_retention_days: int = Field(default=7, ge=1)


class LoggingSettings(BaseModel):
    """Log level, format and destinations."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json_format: bool = False
    file: Optional[str] = None
    max_size: int = Field(default=10 * 1024 * 1024, gt=0)
    backup_count: int = Field(default=5, ge=0)

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


class MetricsSettings(BaseModel):
    """Prometheus metrics."""

    enabled: bool = True
    namespace: str = "orchestrator"


class OrchestratorSettings(BaseSettings):
    """Complete engine configuration."""

    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    learning: LearningSettings = Field(default_factory=LearningSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)

    model_config = SettingsConfigDict(
        env_prefix="ORCHESTRATOR_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # environment variables override file and dictionary values
        return env_settings, init_settings, dotenv_settings, file_secret_settings
