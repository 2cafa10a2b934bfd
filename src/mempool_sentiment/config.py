"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Mempool Sentiment Tracker, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class EthereumSettings(BaseSettings):
    """Ethereum node endpoints used for subscriptions and enrichment."""

    model_config = SettingsConfigDict(env_prefix="ETH_", extra="ignore")

    rpc_url: str = Field(
        default="https://eth.drpc.org",
        alias="ETH_RPC_URL",
        description="Primary HTTP JSON-RPC endpoint for transaction lookups",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="ETH_FALLBACK_RPC_URL",
        description="Fallback HTTP JSON-RPC endpoint",
    )
    ws_url: str = Field(
        default="wss://eth.drpc.org",
        alias="ETH_WS_URL",
        description="WebSocket endpoint for eth_subscribe feeds",
    )
    max_requests_per_second: float = Field(
        default=25.0,
        alias="ETH_MAX_REQUESTS_PER_SECOND",
        gt=0.0,
        le=10_000.0,
        description="Client-side cap on enrichment RPC calls",
    )

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("WebSocket URL must start with ws:// or wss://")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings (optional detail cache)."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; enables transaction detail caching",
    )
    detail_cache_ttl_seconds: int = Field(
        default=900,
        alias="REDIS_DETAIL_CACHE_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="TTL for cached transaction details",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v

    @property
    def enabled(self) -> bool:
        """Check if Redis caching is enabled."""
        return self.url is not None


class SchedulerSettings(BaseSettings):
    """Batch scheduler budget settings."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", extra="ignore")

    batch_size: int = Field(
        default=10,
        alias="SCHEDULER_BATCH_SIZE",
        ge=1,
        le=1000,
        description="Maximum transactions drained per cycle",
    )
    stagger_ms: int = Field(
        default=50,
        alias="SCHEDULER_STAGGER_MS",
        ge=0,
        le=10_000,
        description="Per-item issuance delay within a batch (milliseconds)",
    )
    cooldown_ms: int = Field(
        default=100,
        alias="SCHEDULER_COOLDOWN_MS",
        ge=0,
        le=60_000,
        description="Delay before the next cycle while work remains (milliseconds)",
    )

    @property
    def stagger_seconds(self) -> float:
        return self.stagger_ms / 1000.0

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_ms / 1000.0


class ReportingSettings(BaseSettings):
    """Reporting surface and block listener settings."""

    model_config = SettingsConfigDict(env_prefix="REPORT_", extra="ignore")

    recent_transactions_limit: int = Field(
        default=150,
        alias="REPORT_RECENT_TRANSACTIONS_LIMIT",
        ge=1,
        le=100_000,
        description="How many recently observed transaction hashes to keep",
    )
    block_history_limit: int = Field(
        default=100,
        alias="REPORT_BLOCK_HISTORY_LIMIT",
        ge=1,
        le=100_000,
        description="How many recent block summaries to keep",
    )
    interval_seconds: int = Field(
        default=10,
        alias="REPORT_INTERVAL_SECONDS",
        ge=1,
        le=3600,
        description="How often the pipeline logs a sentiment report",
    )
    blocks_enabled: bool = Field(
        default=True,
        alias="REPORT_BLOCKS_ENABLED",
        description="Run the new-block listener alongside the pending transaction listener",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from mempool_sentiment.config import get_settings

        settings = get_settings()
        print(settings.ethereum.ws_url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    ethereum: EthereumSettings = Field(
        default_factory=lambda: EthereumSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    scheduler: SchedulerSettings = Field(
        default_factory=lambda: SchedulerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    reporting: ReportingSettings = Field(
        default_factory=lambda: ReportingSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "ethereum": {
                "rpc_url": self._redact_url(self.ethereum.rpc_url),
                "fallback_rpc_url": (
                    self._redact_url(self.ethereum.fallback_rpc_url)
                    if self.ethereum.fallback_rpc_url
                    else "(not set)"
                ),
                "ws_url": self._redact_url(self.ethereum.ws_url),
                "max_requests_per_second": str(self.ethereum.max_requests_per_second),
            },
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "scheduler": {
                "batch_size": str(self.scheduler.batch_size),
                "stagger_ms": str(self.scheduler.stagger_ms),
                "cooldown_ms": str(self.scheduler.cooldown_ms),
            },
            "reporting": {
                "recent_transactions_limit": str(self.reporting.recent_transactions_limit),
                "block_history_limit": str(self.reporting.block_history_limit),
                "interval_seconds": str(self.reporting.interval_seconds),
                "blocks_enabled": str(self.reporting.blocks_enabled),
            },
            "log_level": self.log_level,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            # URL has credentials - redact the password
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
