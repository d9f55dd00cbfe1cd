"""
Centralized configuration with environment variable overrides.

Slot granularity, business hours, lookahead horizon, per-tier secrets and
retry limits all live here. Components never read the environment
themselves; they receive the relevant config group at construction.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import time
from typing import Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

TIER_SECRET_PREFIX = "NSTYLE_AGENT_TOKEN_"


def _safe_int(env: Mapping[str, str], env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = env.get(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env: Mapping[str, str], env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = env.get(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_time(
    env: Mapping[str, str], hour_var: str, minute_var: str, hour: str, minute: str
) -> time:
    """Build a wall-clock time from an hour/minute env var pair."""
    h = _safe_int(env, hour_var, hour)
    m = _safe_int(env, minute_var, minute)
    try:
        return time(h, m)
    except ValueError:
        raise ValueError(
            f"Invalid time for {hour_var}/{minute_var}: {h:02d}:{m:02d}"
        ) from None


@dataclass(frozen=True)
class SchedulingConfig:
    """Slot grid, business hours and lookahead for availability search."""

    slot_minutes: int = 30
    horizon_days: int = 30
    open_time: time = time(9, 30)
    close_time: time = time(18, 0)
    timezone: str = "UTC"

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "SchedulingConfig":
        return cls(
            slot_minutes=_safe_int(env, "NSTYLE_SLOT_MINUTES", "30"),
            horizon_days=_safe_int(env, "NSTYLE_LOOKAHEAD_DAYS", "30"),
            open_time=_safe_time(env, "NSTYLE_OPEN_HOUR", "NSTYLE_OPEN_MINUTE", "9", "30"),
            close_time=_safe_time(env, "NSTYLE_CLOSE_HOUR", "NSTYLE_CLOSE_MINUTE", "18", "0"),
            timezone=env.get("NSTYLE_TIMEZONE", "UTC"),
        )


@dataclass(frozen=True)
class SignatureConfig:
    """Shared secrets and freshness window for agent request signatures."""

    default_secret: Optional[str] = None
    tier_secrets: Mapping[str, str] = field(default_factory=dict)
    max_skew_ms: int = 5 * 60 * 1000

    def secret_for(self, tier: str) -> Optional[str]:
        """Resolve the tier-specific secret, falling back to the default."""
        return self.tier_secrets.get(str(tier).lower()) or self.default_secret

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "SignatureConfig":
        tier_secrets = {
            key[len(TIER_SECRET_PREFIX):].lower(): value
            for key, value in env.items()
            if key.startswith(TIER_SECRET_PREFIX) and value
        }
        return cls(
            default_secret=env.get("NSTYLE_AGENT_TOKEN") or None,
            tier_secrets=tier_secrets,
            max_skew_ms=_safe_int(env, "NSTYLE_MAX_SKEW_MS", "300000"),
        )


@dataclass(frozen=True)
class RetryConfig:
    """Bounded retry for idempotent reads and webhook delivery."""

    retries: int = 2
    base_delay_sec: float = 0.2
    max_delay_sec: float = 2.0

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "RetryConfig":
        return cls(
            retries=_safe_int(env, "NSTYLE_RETRIES", "2"),
            base_delay_sec=_safe_float(env, "NSTYLE_RETRY_DELAY", "0.2"),
            max_delay_sec=_safe_float(env, "NSTYLE_RETRY_MAX_DELAY", "2.0"),
        )


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL connection settings."""

    url: Optional[str] = None
    min_pool_size: int = 1
    max_pool_size: int = 10
    ssl: Optional[str] = None

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "DatabaseConfig":
        return cls(
            url=env.get("SUPABASE_DB_URL") or env.get("DATABASE_URL") or None,
            min_pool_size=_safe_int(env, "DB_POOL_MIN", "1"),
            max_pool_size=_safe_int(env, "DB_POOL_MAX", "10"),
            ssl=env.get("DB_SSL") or None,
        )


@dataclass(frozen=True)
class WebhookConfig:
    """Outbound confirmation webhook settings."""

    timeout_sec: float = 10.0
    source_header: str = "nstyle-sentinel"

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "WebhookConfig":
        return cls(
            timeout_sec=_safe_float(env, "NSTYLE_WEBHOOK_TIMEOUT", "10.0"),
            source_header=env.get("NSTYLE_WEBHOOK_SOURCE", "nstyle-sentinel"),
        )


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    signature: SignatureConfig = field(default_factory=SignatureConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    log_level: str = "INFO"
    max_body_bytes: int = 8 * 1024
    default_reviewer: str = "toney"

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "AppConfig":
        return cls(
            scheduling=SchedulingConfig.from_env(env),
            signature=SignatureConfig.from_env(env),
            retry=RetryConfig.from_env(env),
            database=DatabaseConfig.from_env(env),
            webhook=WebhookConfig.from_env(env),
            log_level=env.get("LOG_LEVEL", "INFO"),
            max_body_bytes=_safe_int(env, "NSTYLE_MAX_BODY_BYTES", "8192"),
            default_reviewer=env.get("NSTYLE_DEFAULT_REVIEWER", "toney"),
        )


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    scheduling = config.scheduling
    if not 5 <= scheduling.slot_minutes <= 240 or (24 * 60) % scheduling.slot_minutes:
        raise ValueError(
            "NSTYLE_SLOT_MINUTES must be between 5 and 240 and divide a day evenly, "
            f"got {scheduling.slot_minutes}"
        )
    if scheduling.horizon_days < 1:
        raise ValueError(
            f"NSTYLE_LOOKAHEAD_DAYS must be >= 1, got {scheduling.horizon_days}"
        )
    if scheduling.open_time >= scheduling.close_time:
        raise ValueError(
            "Business hours must open before they close, "
            f"got {scheduling.open_time:%H:%M}-{scheduling.close_time:%H:%M}"
        )
    try:
        ZoneInfo(scheduling.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown NSTYLE_TIMEZONE: {scheduling.timezone!r}") from None

    if config.signature.max_skew_ms <= 0:
        raise ValueError(
            f"NSTYLE_MAX_SKEW_MS must be > 0, got {config.signature.max_skew_ms}"
        )

    if config.retry.retries < 0:
        raise ValueError(f"NSTYLE_RETRIES must be >= 0, got {config.retry.retries}")
    if config.retry.base_delay_sec < 0 or config.retry.max_delay_sec < 0:
        raise ValueError("Retry delays must be >= 0")

    if config.database.min_pool_size < 1:
        raise ValueError(
            f"DB_POOL_MIN must be >= 1, got {config.database.min_pool_size}"
        )
    if config.database.max_pool_size < config.database.min_pool_size:
        raise ValueError(
            "DB_POOL_MAX must be >= DB_POOL_MIN, "
            f"got {config.database.max_pool_size} < {config.database.min_pool_size}"
        )

    if config.webhook.timeout_sec <= 0:
        raise ValueError(
            f"NSTYLE_WEBHOOK_TIMEOUT must be > 0, got {config.webhook.timeout_sec}"
        )
    if config.max_body_bytes < 1:
        raise ValueError(
            f"NSTYLE_MAX_BODY_BYTES must be >= 1, got {config.max_body_bytes}"
        )


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load and validate application configuration."""
    if environ is None:
        load_dotenv()
        environ = os.environ
    config = AppConfig.from_env(environ)
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    if not config.signature.default_secret and not config.signature.tier_secrets:
        logger.warning("No agent signing secrets configured; every request will be rejected")
    if not config.database.url:
        logger.warning("DATABASE_URL/SUPABASE_DB_URL is not set")
    logger.info(
        "Configuration loaded (slots=%dmin, horizon=%dd, tz=%s)",
        config.scheduling.slot_minutes,
        config.scheduling.horizon_days,
        config.scheduling.timezone,
    )
    return config
