"""
Gateway Settings
================
Environment-driven configuration, one pydantic-settings class per concern:
Redis, the model provider, admission quotas, the result cache, the retry
policy, request limits and logging. ``Settings`` nests them and is built
once per process through ``get_settings``.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, RedisDsn, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """Connection pool and optimistic-transaction settings for the backing Redis."""

    url: RedisDsn = Field(..., alias="REDIS_URL")
    max_connections: int = Field(default=50, ge=10, le=200, alias="REDIS_MAX_CONNECTIONS")
    socket_timeout: int = Field(default=5, ge=1, le=30, alias="REDIS_SOCKET_TIMEOUT")
    socket_connect_timeout: int = Field(
        default=5, ge=1, le=30, alias="REDIS_SOCKET_CONNECT_TIMEOUT"
    )
    key_prefix: str = Field(default="gateway", alias="REDIS_KEY_PREFIX")
    transaction_retries: int = Field(default=5, ge=1, le=50, alias="REDIS_TRANSACTION_RETRIES")

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")


class LLMSettings(BaseSettings):
    """Model provider configuration for the completion endpoint."""

    provider: Literal["openai", "anthropic"] = Field(default="openai", alias="LLM_PROVIDER")
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="LLM_OPENAI_API_KEY")
    openai_org_id: Optional[str] = Field(default=None, alias="LLM_OPENAI_ORG_ID")
    openai_model: str = Field(default="gpt-3.5-turbo", alias="LLM_OPENAI_MODEL")
    anthropic_api_key: Optional[SecretStr] = Field(default=None, alias="LLM_ANTHROPIC_API_KEY")
    anthropic_model: str = Field(default="claude-haiku-4-5-20251001", alias="LLM_ANTHROPIC_MODEL")

    # Sampling
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, alias="LLM_TEMPERATURE")
    max_tokens: int = Field(default=2000, ge=64, le=8192, alias="LLM_MAX_TOKENS")
    realtime_temperature: float = Field(
        default=0.1, ge=0.0, le=2.0, alias="LLM_REALTIME_TEMPERATURE"
    )
    realtime_max_tokens: int = Field(default=1000, ge=64, le=8192, alias="LLM_REALTIME_MAX_TOKENS")

    # Transport layer (independent of the gateway retry policy)
    request_timeout: float = Field(default=30.0, ge=1.0, le=300.0, alias="LLM_REQUEST_TIMEOUT")
    transport_max_retries: int = Field(default=2, ge=0, le=10, alias="LLM_TRANSPORT_MAX_RETRIES")

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    @model_validator(mode="after")
    def validate_api_keys(self) -> "LLMSettings":
        if not self.anthropic_api_key and not self.openai_api_key:
            raise ValueError("Provide at least one LLM API key via environment variables.")
        return self

    @property
    def model(self) -> str:
        return self.openai_model if self.provider == "openai" else self.anthropic_model


class RateLimitSettings(BaseSettings):
    """Per-user admission quotas over a fixed window."""

    max_requests: int = Field(default=100, ge=1)
    max_characters: int = Field(default=1_000_000, ge=1)
    window_seconds: int = Field(default=3600, ge=1)

    # Real-time requests trade character volume for request count
    realtime_request_multiplier: float = Field(default=1.5, gt=0.0)
    realtime_character_multiplier: float = Field(default=0.5, gt=0.0)

    cleanup_batch_size: int = Field(default=100, ge=1, le=1000)

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", case_sensitive=False, extra="ignore")

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000


class CacheSettings(BaseSettings):
    """Result cache configuration (durable store and in-process near cache)."""

    enabled: bool = Field(default=True)
    ttl_hours: int = Field(default=24, ge=1, le=24 * 30)
    min_cacheable_length: int = Field(default=500, ge=0)
    purge_batch_size: int = Field(default=100, ge=1, le=1000)

    # Near cache
    client_max_entries: int = Field(default=50, ge=1, le=10_000)
    client_eviction_fraction: float = Field(default=0.2, gt=0.0, le=1.0)

    # Redis keeps entries past their logical expiry so reads can ignore them lazily
    store_grace_seconds: int = Field(default=3600, ge=0)

    model_config = SettingsConfigDict(env_prefix="CACHE_", case_sensitive=False, extra="ignore")

    @property
    def ttl_ms(self) -> int:
        return self.ttl_hours * 3600 * 1000


class RetrySettings(BaseSettings):
    """Gateway-level retry policy for categorized failures."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=10_000, ge=0)
    jitter_ms: int = Field(default=1000, ge=0)

    model_config = SettingsConfigDict(env_prefix="RETRY_", case_sensitive=False, extra="ignore")


class AnalysisSettings(BaseSettings):
    """Request limits and response bounds for text analysis."""

    max_content_length: int = Field(default=10_000, ge=1)
    max_realtime_content_length: int = Field(default=5_000, ge=1)
    deadline_seconds: float = Field(default=60.0, gt=0.0)
    attempt_timeout_seconds: float = Field(default=30.0, gt=0.0)
    audit_write_timeout_seconds: float = Field(default=0.5, gt=0.0)
    max_suggestions_per_category: int = Field(default=20, ge=1, le=200)
    min_confidence: float = Field(default=0.1, ge=0.0, le=1.0)

    model_config = SettingsConfigDict(env_prefix="ANALYSIS_", case_sensitive=False, extra="ignore")


class MonitoringSettings(BaseSettings):
    """Structured request log verbosity."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="MONITORING_", case_sensitive=False, extra="ignore"
    )


class Settings(BaseSettings):
    """Top-level settings: environment, JWT verification and the nested concerns."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )
    debug: bool = Field(default=False, alias="DEBUG")

    # Application metadata
    app_name: str = Field(default="AI Analysis Gateway")
    app_version: str = Field(default="1.0.0")

    # Component configurations
    redis: RedisSettings = Field(default_factory=RedisSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    # Security
    secret_key: SecretStr = Field(..., alias="SECRET_KEY", description="Application secret key")
    cors_origins: list[str] = Field(default=["http://localhost:3000"])
    jwt_issuer: str = Field(default="analysis-gateway")
    jwt_audience: str = Field(default="api")
    jwt_algorithm: str = Field(default="HS256")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("debug")
    @classmethod
    def validate_debug_mode(cls, v: bool, info) -> bool:
        """Ensure debug mode is disabled in production."""
        if info.data.get("environment") == "production" and v:
            raise ValueError("Debug mode must be disabled in production")
        return v

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: SecretStr, info) -> SecretStr:
        """Require a strong, non-default secret key in production."""
        if info.data.get("environment") != "production":
            return v

        key = v.get_secret_value()
        weak_secrets = {"change_me_in_production", "secret", "password", "12345"}
        if key.lower() in weak_secrets or len(key) < 32:
            raise ValueError(
                "SECRET_KEY must be at least 32 characters and not a default value. "
                "Generate one with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
            )
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

__all__ = [
    "Settings",
    "RedisSettings",
    "LLMSettings",
    "RateLimitSettings",
    "CacheSettings",
    "RetrySettings",
    "AnalysisSettings",
    "MonitoringSettings",
    "get_settings",
    "settings",
]
