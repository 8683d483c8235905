"""Process-wide settings for the autoscaler."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .exceptions import ConfigError
from .models import PolicyDefaults, parse_time_span

DEFAULT_CONFIG_TABLE_NAME = "autoscale-config"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}", field=name) from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}", field=name) from None


def defaults_from_environment() -> PolicyDefaults:
    """
    Build policy defaults from environment variables.

    Variables:
        THROUGHPUTS_MIN, THROUGHPUTS_MAX: capacity bounds
        THROUGHPUTS_INCREASE: scaling step
        THROUGHPUTS_THRESHOLD: activation threshold fraction
        ANALYZE_TIMESPAN_UP, ANALYZE_TIMESPAN_DOWN: windows ("5 minutes")
    """
    base = PolicyDefaults()
    up_raw = os.environ.get("ANALYZE_TIMESPAN_UP")
    down_raw = os.environ.get("ANALYZE_TIMESPAN_DOWN")
    defaults = PolicyDefaults(
        min_capacity=_env_int("THROUGHPUTS_MIN", base.min_capacity),
        max_capacity=_env_int("THROUGHPUTS_MAX", base.max_capacity),
        increase=_env_int("THROUGHPUTS_INCREASE", base.increase),
        threshold=_env_float("THROUGHPUTS_THRESHOLD", base.threshold),
        up_window=parse_time_span(up_raw, "ANALYZE_TIMESPAN_UP") if up_raw else base.up_window,
        down_window=(
            parse_time_span(down_raw, "ANALYZE_TIMESPAN_DOWN") if down_raw else base.down_window
        ),
    )
    if defaults.min_capacity < 0 or defaults.max_capacity < defaults.min_capacity:
        raise ConfigError("THROUGHPUTS_MIN must be >= 0 and <= THROUGHPUTS_MAX")
    if not 0 < defaults.threshold <= 1:
        raise ConfigError("THROUGHPUTS_THRESHOLD must be in (0, 1]")
    return defaults


@dataclass
class Settings:
    """
    Runtime settings for a batch run.

    Attributes:
        config_table_name: DynamoDB table holding scaling policies
        region: AWS region (None = boto3 default)
        endpoint_url: Custom AWS endpoint (e.g. LocalStack)
        max_concurrency: Tables evaluated at the same time
        batch_timeout_seconds: Deadline for a whole batch (0 = none)
        cache_ttl_seconds: Policy cache TTL (0 = disabled)
        defaults: Process-wide policy fallbacks
    """

    config_table_name: str = DEFAULT_CONFIG_TABLE_NAME
    region: str | None = None
    endpoint_url: str | None = None
    max_concurrency: int = 8
    batch_timeout_seconds: float = 240.0
    cache_ttl_seconds: int = 60
    defaults: PolicyDefaults = field(default_factory=PolicyDefaults)

    def __post_init__(self) -> None:
        if not self.config_table_name:
            raise ConfigError("Config table name is required", field="config_table_name")
        if self.max_concurrency < 1:
            raise ConfigError("max_concurrency must be >= 1", field="max_concurrency")
        if self.batch_timeout_seconds < 0:
            raise ConfigError("batch_timeout_seconds must be >= 0", field="batch_timeout_seconds")
        if self.cache_ttl_seconds < 0:
            raise ConfigError("cache_ttl_seconds must be >= 0", field="cache_ttl_seconds")

    @classmethod
    def from_environment(cls) -> Settings:
        """Create Settings from environment variables."""
        return cls(
            config_table_name=os.environ.get("CONFIG_TABLE_NAME") or DEFAULT_CONFIG_TABLE_NAME,
            region=os.environ.get("REGION") or os.environ.get("AWS_REGION") or None,
            endpoint_url=os.environ.get("AWS_ENDPOINT_URL") or None,
            max_concurrency=_env_int("MAX_CONCURRENCY", 8),
            batch_timeout_seconds=_env_float("BATCH_TIMEOUT_SECONDS", 240.0),
            cache_ttl_seconds=_env_int("CONFIG_CACHE_TTL_SECONDS", 60),
            defaults=defaults_from_environment(),
        )
