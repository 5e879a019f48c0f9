# src/app/config.py
"""
Configuration Management for Comment Insight Pipeline
Standalone configuration system with environment variable overrides
"""

import yaml
import logging
import threading
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple
from functools import lru_cache
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


# ============================================================================
# Infrastructure Configuration Classes
# ============================================================================


class DatabaseConfig(BaseSettings):
    """Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="DB_")

    url: str = Field(
        default="sqlite+aiosqlite:///./comment_insight.db",
        description="Async database URL",
    )
    echo: bool = Field(default=False, description="Echo SQL queries")
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Max overflow connections")


class CacheConfig(BaseSettings):
    """Cache Configuration (attempt tracking backend)"""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    redis_enable: bool = Field(
        default=False, description="Track client attempts in Redis"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/1", description="Redis URL for attempt store"
    )
    key_prefix: str = Field(default="analysis_attempts", description="Redis key prefix")


class LoggingConfig(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format",
    )
    file_path: Optional[str] = Field(
        default="./logs/comment_insight.log", description="Log file path"
    )
    max_bytes: int = Field(default=10 * 1024 * 1024, description="Rotate after size")
    backup_count: int = Field(default=5, description="Rotated files to keep")


class SecuritySettings(BaseSettings):
    """Submission throttling per client identity"""

    model_config = SettingsConfigDict(env_prefix="SECURITY_")

    max_analysis_attempts: int = Field(
        default=10, description="Analysis submissions allowed per window"
    )
    attempt_window_seconds: int = Field(
        default=3600, description="Attempt tracking window (1 hour)"
    )


class CeleryConfig(BaseSettings):
    """Celery Task Queue Configuration"""

    model_config = SettingsConfigDict(env_prefix="CELERY_")

    # Broker Settings
    broker_url: str = Field(
        default="redis://localhost:6379/0",
        description="Celery message broker URL (Redis or RabbitMQ)",
    )
    result_backend: str = Field(
        default="redis://localhost:6379/0",
        description="Task result storage backend URL",
    )

    # Task Serialization
    task_serializer: str = Field(default="json", description="Task serialization")
    result_serializer: str = Field(default="json", description="Result serialization")
    accept_content: List[str] = Field(
        default=["json"], description="Accepted content types"
    )

    # Worker Settings
    worker_concurrency: int = Field(
        default=3, description="Number of concurrent worker processes"
    )
    worker_prefetch_multiplier: int = Field(
        default=1, description="Tasks to prefetch per worker"
    )
    worker_max_tasks_per_child: int = Field(
        default=200, description="Max tasks before worker restart"
    )

    # Task Execution Settings
    task_track_started: bool = Field(default=True, description="Track task start")
    task_time_limit: int = Field(
        default=1800, description="Hard task timeout in seconds (30 min)"
    )
    task_soft_time_limit: int = Field(
        default=1500, description="Soft task timeout in seconds"
    )
    task_acks_late: bool = Field(
        default=True, description="Acknowledge tasks after completion"
    )
    task_reject_on_worker_lost: bool = Field(
        default=True, description="Reject tasks if worker dies"
    )

    # Queue Settings
    task_default_queue: str = Field(default="default", description="Default queue")
    task_routes: dict = Field(
        default={
            "tasks.analysis.*": {"queue": "analysis"},
            "tasks.scheduled.*": {"queue": "default"},
        },
        description="Task routing configuration",
    )

    # Result Backend Settings
    result_expires: int = Field(
        default=86400, description="Task result expiration time (24 hours)"
    )

    # Beat Scheduler Settings
    maintenance_interval_hours: int = Field(
        default=24, description="How often the maintenance task runs"
    )

    # Logging
    worker_hijack_root_logger: bool = Field(
        default=False, description="Don't hijack root logger"
    )
    worker_log_format: str = Field(
        default="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
        description="Worker log format",
    )


# ============================================================================
# Text Generation Provider
# ============================================================================


class LLMSettings(BaseSettings):
    """Gemini text generation settings"""

    model_config = SettingsConfigDict(env_prefix="GEMINI_")

    api_key: str = Field(default="", description="Gemini API key")
    model: str = Field(default="gemini-1.5-flash", description="Model name")
    base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Generative Language API base URL",
    )
    request_timeout: float = Field(default=30.0, description="HTTP timeout (seconds)")

    # Rate Limiting
    requests_per_second: float = Field(
        default=2.0, description="Maximum generation requests per second"
    )
    burst_capacity: int = Field(default=5, description="Maximum burst capacity")

    # Generation configs
    sentiment_temperature: float = Field(default=0.1)
    sentiment_max_output_tokens: int = Field(default=2048)
    summary_temperature: float = Field(default=0.3)
    summary_max_output_tokens: int = Field(default=1024)

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Validate API key format"""
        if v and len(v) < 20:
            raise ValueError("Gemini API key appears to be invalid (too short)")
        return v


# ============================================================================
# Pipeline Stage Settings
# ============================================================================


class FilterSettings(BaseSettings):
    """Spam, toxicity and duplicate filtering thresholds"""

    model_config = SettingsConfigDict(env_prefix="FILTER_")

    min_comment_length: int = Field(default=3)
    max_comment_length: int = Field(default=5000)
    caps_ratio_threshold: float = Field(default=0.7)
    caps_min_length: int = Field(
        default=10, description="Caps check only applies from this length on"
    )
    duplicate_threshold: float = Field(
        default=0.9, description="Jaccard overlap treated as near-duplicate"
    )

    @field_validator("duplicate_threshold", "caps_ratio_threshold")
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        """Ratios must be within (0, 1]"""
        if not 0 < v <= 1:
            raise ValueError("Ratio thresholds must be within (0, 1]")
        return v


class SentimentSettings(BaseSettings):
    """Sentiment stage batching and retry settings"""

    model_config = SettingsConfigDict(env_prefix="SENTIMENT_")

    batch_size: int = Field(default=10)
    max_retries: int = Field(default=3)
    retry_delay_seconds: float = Field(default=1.0)
    rate_limit_multiplier: float = Field(default=5.0)
    request_timeout_seconds: float = Field(default=30.0)
    inter_batch_delay_seconds: float = Field(default=0.5)
    confidence_threshold: float = Field(
        default=0.5, description="Advanced mode re-runs results below this"
    )


class ThemeSettings(BaseSettings):
    """Theme clustering settings"""

    model_config = SettingsConfigDict(env_prefix="THEME_")

    min_cluster_size: int = Field(default=2)
    max_clusters: int = Field(default=10)
    similarity_threshold: float = Field(default=0.15)
    min_keyword_frequency: int = Field(default=2)
    max_keywords: int = Field(default=20)


class SummarySettings(BaseSettings):
    """Summary generation settings"""

    model_config = SettingsConfigDict(env_prefix="SUMMARY_")

    max_retries: int = Field(default=3)
    retry_delay_seconds: float = Field(default=1.0)
    request_timeout_seconds: float = Field(default=30.0)
    min_words: int = Field(default=75)
    max_words: int = Field(default=150)
    min_quality_score: float = Field(default=0.6)

    @property
    def target_word_range(self) -> Tuple[int, int]:
        """Target word range as (min, max)"""
        return (self.min_words, self.max_words)


class PipelineSettings(BaseSettings):
    """Orchestration, caching and job settings"""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    cache_ttl_hours: int = Field(default=24, description="Result freshness window")
    max_job_retries: int = Field(default=3)
    max_concurrent_jobs: int = Field(default=3)
    min_valid_comments: int = Field(default=5)

    # Time estimation
    estimate_base_seconds: float = Field(default=10.0)
    estimate_per_comment_seconds: float = Field(default=0.1)
    estimate_max_seconds: float = Field(default=300.0)

    # Maintenance
    result_retention_days: int = Field(default=7)
    dispatcher: str = Field(
        default="inprocess", description="Job dispatch transport: inprocess or celery"
    )

    @field_validator("dispatcher")
    @classmethod
    def validate_dispatcher(cls, v: str) -> str:
        """Only known transports are accepted"""
        if v not in ("inprocess", "celery"):
            raise ValueError("dispatcher must be 'inprocess' or 'celery'")
        return v


# ============================================================================
# Main Configuration Class
# ============================================================================


class Config:
    """
    Main Application Configuration
    Aggregates all configuration modules with unified access
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize application configuration

        Args:
            config_path: Optional YAML config file path
        """
        self.config_path = config_path or "configs/app.yaml"
        self.yaml_config = self._load_yaml_config()

        # Infrastructure
        self.database = DatabaseConfig()
        self.cache = CacheConfig()
        self.logging = LoggingConfig()
        self.security = SecuritySettings()
        self.celery = CeleryConfig()
        self.llm = LLMSettings()

        # Pipeline stages
        self.filter = FilterSettings(**self._section("filter"))
        self.sentiment = SentimentSettings(**self._section("sentiment"))
        self.theme = ThemeSettings(**self._section("theme"))
        self.summary = SummarySettings(**self._section("summary"))
        self.pipeline = PipelineSettings(**self._section("pipeline"))

    def _load_yaml_config(self) -> Dict[str, Any]:
        """Load YAML configuration file"""
        config_file = Path(self.config_path)

        if not config_file.exists():
            logger.debug(f"Config file not found: {config_file}, using defaults")
            return {}

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except Exception as e:
            logger.error(f"Failed to load config: {e}")
            return {}

    def _section(self, name: str) -> Dict[str, Any]:
        """YAML overrides for one settings section"""
        section = self.yaml_config.get(name, {})
        return section if isinstance(section, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot notation key"""
        keys = key.split(".")
        value = self.yaml_config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def to_dict(self) -> Dict[str, Any]:
        """Export full configuration as dictionary"""
        llm = self.llm.model_dump()
        llm["api_key"] = "***" if self.llm.api_key else ""

        return {
            "database": self.database.model_dump(),
            "cache": self.cache.model_dump(),
            "logging": self.logging.model_dump(),
            "security": self.security.model_dump(),
            "llm": llm,
            "filter": self.filter.model_dump(),
            "sentiment": self.sentiment.model_dump(),
            "theme": self.theme.model_dump(),
            "summary": self.summary.model_dump(),
            "pipeline": self.pipeline.model_dump(),
        }

    def get_summary(self) -> Dict[str, Any]:
        """Get configuration summary"""
        return {
            "database": {"url": self.database.url},
            "llm": {
                "model": self.llm.model,
                "api_key_set": bool(self.llm.api_key),
                "requests_per_second": self.llm.requests_per_second,
            },
            "pipeline": {
                "dispatcher": self.pipeline.dispatcher,
                "cache_ttl_hours": self.pipeline.cache_ttl_hours,
                "max_concurrent_jobs": self.pipeline.max_concurrent_jobs,
            },
            "sentiment": {"batch_size": self.sentiment.batch_size},
            "theme": {
                "max_clusters": self.theme.max_clusters,
                "similarity_threshold": self.theme.similarity_threshold,
            },
            "cache": {"redis_enabled": self.cache.redis_enable},
        }


# ============================================================================
# Global Configuration Instance (Singleton)
# ============================================================================

_config: Optional[Config] = None
_config_lock = threading.Lock()


@lru_cache()
def get_config(config_path: Optional[str] = None) -> Config:
    """
    Get or create global configuration instance (Thread-safe singleton)

    Args:
        config_path: Optional path to config file

    Returns:
        Config instance
    """
    global _config

    if _config is None:
        with _config_lock:
            if _config is None:
                _config = Config(config_path)
                logger.info("✅ Configuration initialized")

    return _config


def reload_config(config_path: Optional[str] = None) -> Config:
    """
    Force reload configuration

    Args:
        config_path: Optional new config path

    Returns:
        New Config instance
    """
    global _config

    with _config_lock:
        get_config.cache_clear()
        _config = Config(config_path)
        logger.info("🔄 Configuration reloaded")

    return _config


def reset_config() -> None:
    """Reset global configuration (mainly for testing)"""
    global _config

    with _config_lock:
        get_config.cache_clear()
        _config = None
        logger.info("🗑️ Configuration reset")


# ============================================================================
# Configuration Validation
# ============================================================================


def validate_config(config: Optional[Config] = None) -> Dict[str, Any]:
    """
    Validate configuration

    Args:
        config: Config instance (uses global if None)

    Returns:
        Validation result with errors and warnings
    """
    if config is None:
        config = get_config()

    errors = []
    warnings = []

    # Check log path
    if config.logging.file_path:
        log_path = Path(config.logging.file_path)
        if not log_path.parent.exists():
            try:
                log_path.parent.mkdir(parents=True, exist_ok=True)
            except Exception as e:
                errors.append(f"Cannot create log directory: {e}")

    # Check Gemini API key
    if not config.llm.api_key:
        warnings.append(
            "Gemini API key not set - sentiment and summary stages will use fallbacks"
        )

    # Check database URL
    if not config.database.url:
        errors.append("Database URL not configured")

    # Check summary word range
    if config.summary.min_words <= 0 or config.summary.max_words <= config.summary.min_words:
        errors.append("Summary word range must satisfy 0 < min_words < max_words")

    # Check batch sizing
    if not 1 <= config.sentiment.batch_size <= 50:
        errors.append("Sentiment batch size must be between 1 and 50")

    if config.pipeline.dispatcher == "celery" and not config.celery.broker_url:
        errors.append("Celery dispatcher selected but no broker URL configured")

    if config.theme.min_cluster_size < 1:
        errors.append("Theme min_cluster_size must be at least 1")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
    }


# ============================================================================
# Convenience Functions
# ============================================================================


def setup_logging(config: Optional[Config] = None) -> None:
    """
    Setup logging based on configuration

    Args:
        config: Config instance (uses global if None)
    """
    import logging.handlers

    if config is None:
        config = get_config()

    # Set log level
    log_level = getattr(logging, config.logging.level.upper(), logging.INFO)

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(config.logging.format))
    root_logger.addHandler(console_handler)

    # File handler (if specified)
    if config.logging.file_path:
        log_path = Path(config.logging.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path,
            maxBytes=config.logging.max_bytes,
            backupCount=config.logging.backup_count,
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(config.logging.format))
        root_logger.addHandler(file_handler)

    logger.info(f"📝 Logging configured: level={config.logging.level}")
