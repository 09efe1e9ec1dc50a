from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./putaway.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Putaway Bin Optimizer"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    SCHEDULER_TIMEZONE: str = "UTC"

    # Algorithm selection (empirical tuning values)
    HIGH_VARIANCE_THRESHOLD: float = 2.0  # Item volume std dev (cf) above which FFD is used
    LOW_VARIANCE_THRESHOLD: float = 0.5  # Item volume std dev (cf) below which BFD is considered
    HIGH_UTILIZATION_THRESHOLD: float = 70.0  # Average bin utilization % that enables BFD
    OPTIMAL_UTILIZATION_MIN: float = 60.0  # Lower bound of target post-placement utilization %
    OPTIMAL_UTILIZATION_MAX: float = 85.0  # Upper bound of target post-placement utilization %
    PRIME_PICK_SEQUENCE: int = 100  # Pick sequence below which a location is prime

    # Congestion tracking
    CONGESTION_CACHE_TTL: int = 300  # 5 minutes
    CONGESTION_SCORE_CAP: float = 100.0  # Max congestion score per aisle
    CONGESTION_PENALTY_CAP: float = 15.0  # Max points congestion can subtract

    # SKU affinity
    AFFINITY_CACHE_TTL: int = 86400  # 24 hours
    AFFINITY_MIN_CO_PICKS: int = 3  # Noise floor for co-pick pairs
    AFFINITY_LOOKBACK_DAYS: int = 90
    AFFINITY_WEIGHT: float = 10.0  # Max bonus points for co-location

    # Input bounds
    MAX_QUANTITY: float = 1_000_000
    MAX_CUBIC_FEET_PER_UNIT: float = 10_000
    MAX_WEIGHT_LBS_PER_UNIT: float = 50_000

    # Query execution
    QUERY_TIMEOUT_SECONDS: float = 10.0  # Per-query timeout on the placement path
    CANDIDATE_LOCATION_LIMIT: int = 50  # Candidate rows fetched for a single-item suggestion

    # ML confidence model
    ML_LEARNING_RATE: float = 0.01
    ML_TRAINING_WINDOW_DAYS: int = 90
    ML_HEALTHY_ACCURACY: float = 85.0  # At or above: healthy
    ML_UNHEALTHY_ACCURACY: float = 75.0  # Below: unhealthy + operator alert
    ML_MIN_HEALTH_SAMPLES: int = 10  # Fewer decided recommendations than this is not judged

    # Health monitoring
    CACHE_DEGRADED_AGE_SECONDS: int = 600  # 10 minutes
    CACHE_UNHEALTHY_AGE_SECONDS: int = 1800  # 30 minutes
    DB_LATENCY_DEGRADED_MS: int = 100
    ALGORITHM_LATENCY_DEGRADED_MS: int = 1000
    AUTO_REMEDIATION_ENABLED: bool = True

    # Data quality alerting
    CAPACITY_FAILURE_WARNING_RATE: float = 5.0  # % of recommendations
    CAPACITY_FAILURE_CRITICAL_RATE: float = 20.0  # % of recommendations

    # Background jobs
    HEALTH_CHECK_INTERVAL_MINUTES: int = 15
    CACHE_REFRESH_INTERVAL_MINUTES: int = 10
    FRAGMENTATION_CHECK_INTERVAL_HOURS: int = 6
    ML_RETRAIN_HOUR: int = 2  # Hour of day (scheduler timezone) for nightly retraining
    UTILIZATION_PREDICTION_HOUR: int = 3  # Hour of day for the daily utilization forecast

    @field_validator('LOW_VARIANCE_THRESHOLD')
    @classmethod
    def validate_low_variance(cls, v, info):
        """Low variance threshold must stay below the high variance threshold."""
        high = info.data.get('HIGH_VARIANCE_THRESHOLD')
        if high is not None and v >= high:
            raise ValueError("LOW_VARIANCE_THRESHOLD must be less than HIGH_VARIANCE_THRESHOLD")
        return v

    @field_validator('ML_UNHEALTHY_ACCURACY')
    @classmethod
    def validate_accuracy_bands(cls, v, info):
        """Unhealthy accuracy band must sit below the healthy band."""
        healthy = info.data.get('ML_HEALTHY_ACCURACY')
        if healthy is not None and v > healthy:
            raise ValueError("ML_UNHEALTHY_ACCURACY must not exceed ML_HEALTHY_ACCURACY")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
