"""Configuration management using pydantic-settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from tuningsearch_mcp.exceptions import ConfigurationError
from tuningsearch_mcp.monitoring.health import HealthCheckConfig
from tuningsearch_mcp.monitoring.performance import AlertConfig
from tuningsearch_mcp.search.cache import CacheConfig
from tuningsearch_mcp.search.reliability import RetryConfig

DEFAULT_BASE_URL = "https://api.tuningsearch.com/v1"


class ApiSettings(BaseSettings):
    """Upstream TuningSearch API settings."""

    model_config = SettingsConfigDict(
        env_prefix="TUNINGSEARCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    api_key: str = Field(default="", description="TuningSearch API key (required)")
    base_url: str = Field(default=DEFAULT_BASE_URL, description="TuningSearch API base URL")
    timeout: float = Field(default=30000, gt=0, description="Per-attempt request timeout in milliseconds")
    retry_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per request, including the first")
    retry_delay: int = Field(default=1000, ge=0, description="Initial retry delay in milliseconds")
    max_retry_delay: int = Field(default=30000, ge=0, description="Maximum retry delay in milliseconds")
    backoff_factor: float = Field(default=2.0, ge=1.0, description="Retry delay multiplier")
    retry_jitter: bool = Field(default=True, description="Spread retry delays by +/-25%")

    def retry_config(self) -> RetryConfig:
        """Build the retry policy for upstream calls."""
        return RetryConfig(
            max_attempts=self.retry_attempts,
            initial_delay_ms=self.retry_delay,
            max_delay_ms=max(self.max_retry_delay, self.retry_delay),
            backoff_factor=self.backoff_factor,
            jitter=self.retry_jitter,
        )


class CacheSettings(BaseSettings):
    """Response cache settings. Durations in seconds."""

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = Field(default=True, description="Cache upstream responses")
    max_size: int = Field(default=1000, ge=1, description="Maximum number of cached responses")
    default_ttl: float = Field(default=300.0, gt=0, description="Default TTL")
    search_ttl: float = Field(default=600.0, gt=0, description="TTL of web search responses")
    news_ttl: float = Field(default=300.0, gt=0, description="TTL of news search responses")
    crawl_ttl: float = Field(default=1800.0, gt=0, description="TTL of crawl responses")
    cleanup_interval: float = Field(default=60.0, gt=0, description="Seconds between expiry sweeps")

    def cache_config(self) -> CacheConfig:
        return CacheConfig(
            default_ttl=self.default_ttl,
            max_size=self.max_size,
            search_ttl=self.search_ttl,
            news_ttl=self.news_ttl,
            crawl_ttl=self.crawl_ttl,
            cleanup_interval=self.cleanup_interval,
        )


class MonitoringSettings(BaseSettings):
    """Monitoring and observability settings."""

    model_config = SettingsConfigDict(
        env_prefix="MONITORING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    metrics_enabled: bool = Field(default=False, description="Expose a Prometheus metrics endpoint")
    metrics_port: int = Field(default=9464, description="Port for Prometheus metrics endpoint")
    metrics_host: str = Field(default="127.0.0.1", description="Address for Prometheus metrics endpoint")
    json_logs: bool = Field(default=True, description="Use JSON format for logs")
    log_level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    alerts_enabled: bool = Field(default=True, description="Evaluate performance alerts")
    response_time_threshold: float = Field(default=5000.0, gt=0, description="Average duration alert threshold in ms")
    error_rate_threshold: float = Field(default=0.1, ge=0, le=1, description="Error rate alert threshold")
    memory_threshold: float = Field(default=0.8, gt=0, le=1, description="Process memory ratio warning threshold")
    ops_threshold: float = Field(default=100.0, gt=0, description="Operations per second alert threshold")

    def alert_config(self) -> AlertConfig:
        return AlertConfig(
            enabled=self.alerts_enabled,
            response_time_threshold_ms=self.response_time_threshold,
            error_rate_threshold=self.error_rate_threshold,
            memory_threshold=self.memory_threshold,
            ops_threshold=self.ops_threshold,
        )


class HealthSettings(BaseSettings):
    """Health check settings. Durations in seconds."""

    model_config = SettingsConfigDict(
        env_prefix="HEALTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = Field(default=True, description="Run periodic health checks")
    check_interval: float = Field(default=30.0, gt=0, description="Seconds between health checks")
    component_timeout: float = Field(default=5.0, gt=0, description="Per-probe timeout")
    alert_retention: float = Field(default=86400.0, gt=0, description="Seconds alerts are kept")
    check_upstream: bool = Field(default=False, description="Probe the upstream API during health checks")

    def health_config(self) -> HealthCheckConfig:
        return HealthCheckConfig(
            enabled=self.enabled,
            check_interval=self.check_interval,
            component_timeout=self.component_timeout,
            alert_retention=self.alert_retention,
        )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    server_name: str = Field(default="tuningsearch-mcp", description="Name announced to MCP clients")

    # TuningSearch API settings (nested)
    api: ApiSettings = Field(default_factory=ApiSettings)

    # Cache settings (nested)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    # Monitoring settings (nested)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    # Health check settings (nested)
    health: HealthSettings = Field(default_factory=HealthSettings)


def validate_settings(settings: Settings) -> None:
    """Check settings that pydantic cannot check on its own.

    Raises:
        ConfigurationError: Listing every problem found.
    """
    problems = []
    if not settings.api.api_key.strip():
        problems.append("TUNINGSEARCH_API_KEY is required")
    if not settings.api.base_url.startswith(("http://", "https://")):
        problems.append(f"TUNINGSEARCH_BASE_URL must be an http(s) URL, got {settings.api.base_url!r}")
    if settings.monitoring.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        problems.append(f"Unknown log level {settings.monitoring.log_level!r}")
    if problems:
        raise ConfigurationError("Invalid configuration", problems)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
