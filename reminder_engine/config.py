"""Engine configuration using Pydantic settings."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "console"

    # Local time used for hour/day-of-week reasoning (IANA name)
    timezone: str = "UTC"

    # Pattern learning
    learning_rate: float = 0.1
    pattern_confidence_threshold: float = 0.6  # Patterns below this are pruned
    pattern_decay_days: float = 30.0  # Recency weight is e^(-days/decay_days)
    max_patterns_per_user: int = 100
    max_learning_sessions: int = 1000
    pattern_match_hour_window: int = 2
    enhanced_prediction_threshold: float = 0.6

    # Context analysis
    context_cache_ttl_seconds: float = 30.0
    max_context_history: int = 100
    max_local_patterns: int = 50
    local_pattern_max_age_days: int = 30
    min_location_confidence: float = 0.3
    signal_max_age_seconds: int = 900  # Pushed sensor/presence readings older than this are ignored

    # Fusion weights per estimator family (unvalidated against real sensors)
    activity_weight_time: float = 0.3
    activity_weight_sensor: float = 0.4
    activity_weight_calendar: float = 0.6
    activity_weight_pattern: float = 0.5
    availability_weight_manual: float = 1.0
    availability_weight_calendar: float = 0.6
    availability_weight_time: float = 0.3

    # Deferral and batching
    deferral_threshold: float = 0.6
    min_deferral_minutes: int = 15
    batch_window_minutes: int = 5

    # Strategy adaptation
    max_adaptation_history: int = 50

    class Config:
        env_prefix = "REMINDER_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
