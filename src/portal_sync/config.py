"""Configuration for caches, bulk fetches, retries and event aggregation.

Values come from dataclass defaults, ``PORTAL_SYNC_*`` environment
variables, or a YAML document with one mapping per section::

    cache:
      metadata_ttl_ms: 300000
      max_size: 5000
    bulk:
      max_concurrency: 20
    events:
      max_pages_per_query: 10
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError, ValidationError

DEFAULT_EVENT_SOURCE = "quicksight.amazonaws.com"

# Event names tracked for user activity
DEFAULT_EVENT_NAMES: tuple[str, ...] = (
    "GetDashboard",
    "DescribeDashboard",
    "ListDashboards",
    "GetAnalysis",
    "DescribeAnalysis",
    "ListAnalyses",
    "DescribeDataSet",
    "ListDataSets",
    "CreateDashboard",
    "UpdateDashboard",
    "DeleteDashboard",
    "CreateAnalysis",
    "UpdateAnalysis",
    "DeleteAnalysis",
    "CreateDataSet",
    "UpdateDataSet",
    "DeleteDataSet",
)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}", source="environment") from e


def _require_positive(obj: Any, *names: str) -> None:
    for name in names:
        value = getattr(obj, name)
        if value < 1:
            raise ValidationError(name, value, "must be at least 1")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}", source="environment") from e


@dataclass
class CacheConfig:
    """TTLs (milliseconds) and capacity for the named result caches."""

    metadata_ttl_ms: int = 300_000  # 5 minutes
    permissions_ttl_ms: int = 600_000  # 10 minutes
    tags_ttl_ms: int = 600_000  # 10 minutes
    max_size: int = 5000

    @classmethod
    def from_environment(cls) -> CacheConfig:
        """Create CacheConfig from environment variables."""
        return cls(
            metadata_ttl_ms=_env_int("PORTAL_SYNC_CACHE_METADATA_TTL", 300_000),
            permissions_ttl_ms=_env_int("PORTAL_SYNC_CACHE_PERMISSIONS_TTL", 600_000),
            tags_ttl_ms=_env_int("PORTAL_SYNC_CACHE_TAGS_TTL", 600_000),
            max_size=_env_int("PORTAL_SYNC_CACHE_MAX_SIZE", 5000),
        )


@dataclass
class BulkConfig:
    """Defaults for bulk fetches."""

    max_concurrency: int = 20
    batch_size: int = 25

    def __post_init__(self) -> None:
        _require_positive(self, "max_concurrency", "batch_size")

    @classmethod
    def from_environment(cls) -> BulkConfig:
        """Create BulkConfig from environment variables."""
        return cls(
            max_concurrency=_env_int("PORTAL_SYNC_BULK_CONCURRENCY", 20),
            batch_size=_env_int("PORTAL_SYNC_BULK_BATCH_SIZE", 25),
        )


@dataclass
class RetryConfig:
    """Retry/backoff settings for remote calls."""

    max_retries: int = 5
    base_delay_ms: int = 500
    max_delay_ms: int = 10_000
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.3

    @classmethod
    def from_environment(cls) -> RetryConfig:
        """Create RetryConfig from environment variables."""
        return cls(
            max_retries=_env_int("PORTAL_SYNC_MAX_RETRIES", 5),
            base_delay_ms=_env_int("PORTAL_SYNC_RETRY_BASE_DELAY", 500),
            max_delay_ms=_env_int("PORTAL_SYNC_RETRY_MAX_DELAY", 10_000),
            backoff_multiplier=_env_float("PORTAL_SYNC_RETRY_MULTIPLIER", 2.0),
            jitter_factor=_env_float("PORTAL_SYNC_RETRY_JITTER", 0.3),
        )


@dataclass
class RateLimitConfig:
    """Token bucket settings for the audit-log lookup API (2 req/s)."""

    cloudtrail_burst: int = 2
    cloudtrail_per_second: int = 2

    @classmethod
    def from_environment(cls) -> RateLimitConfig:
        """Create RateLimitConfig from environment variables."""
        return cls(
            cloudtrail_burst=_env_int("PORTAL_SYNC_CLOUDTRAIL_BURST", 2),
            cloudtrail_per_second=_env_int("PORTAL_SYNC_CLOUDTRAIL_PER_SECOND", 2),
        )


@dataclass
class EventsConfig:
    """Safety limits for paginated event aggregation."""

    event_source: str = DEFAULT_EVENT_SOURCE
    max_results_per_page: int = 50
    max_pages_per_query: int = 10
    max_events_per_type: int = 1000
    max_activities_per_user: int = 100
    max_lookback_days: int = 90
    raw_page_multiplier: int = 10
    event_names: list[str] = field(default_factory=lambda: list(DEFAULT_EVENT_NAMES))

    def __post_init__(self) -> None:
        _require_positive(
            self,
            "max_results_per_page",
            "max_pages_per_query",
            "max_events_per_type",
            "max_activities_per_user",
            "max_lookback_days",
            "raw_page_multiplier",
        )

    @classmethod
    def from_environment(cls) -> EventsConfig:
        """Create EventsConfig from environment variables."""
        names = os.environ.get("PORTAL_SYNC_EVENT_NAMES", "")
        return cls(
            event_source=os.environ.get("PORTAL_SYNC_EVENT_SOURCE", DEFAULT_EVENT_SOURCE),
            max_results_per_page=_env_int("PORTAL_SYNC_MAX_RESULTS_PER_PAGE", 50),
            max_pages_per_query=_env_int("PORTAL_SYNC_MAX_PAGES_PER_QUERY", 10),
            max_events_per_type=_env_int("PORTAL_SYNC_MAX_EVENTS_PER_TYPE", 1000),
            max_activities_per_user=_env_int("PORTAL_SYNC_MAX_ACTIVITIES_PER_USER", 100),
            max_lookback_days=_env_int("PORTAL_SYNC_MAX_LOOKBACK_DAYS", 90),
            raw_page_multiplier=_env_int("PORTAL_SYNC_RAW_PAGE_MULTIPLIER", 10),
            event_names=(
                [n.strip() for n in names.split(",") if n.strip()]
                if names
                else list(DEFAULT_EVENT_NAMES)
            ),
        )


@dataclass
class SyncConfig:
    """Top-level configuration grouping every section."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    bulk: BulkConfig = field(default_factory=BulkConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    events: EventsConfig = field(default_factory=EventsConfig)

    @classmethod
    def from_environment(cls) -> SyncConfig:
        """Create SyncConfig from environment variables."""
        try:
            return cls(
                cache=CacheConfig.from_environment(),
                bulk=BulkConfig.from_environment(),
                retry=RetryConfig.from_environment(),
                rate_limit=RateLimitConfig.from_environment(),
                events=EventsConfig.from_environment(),
            )
        except ValidationError as e:
            raise ConfigError(str(e), source="environment") from e

    @classmethod
    def from_dict(cls, d: dict[str, Any], source: str | None = None) -> SyncConfig:
        """Build a SyncConfig from nested section mappings.

        Missing sections and keys keep their defaults; unknown ones raise
        ConfigError.
        """
        sections = {f.name: f for f in dataclasses.fields(cls)}
        unknown = set(d) - set(sections)
        if unknown:
            raise ConfigError(f"Unknown config sections: {sorted(unknown)}", source=source)

        kwargs: dict[str, Any] = {}
        for name, value in d.items():
            section_cls = _SECTION_TYPES[name]
            if value is None:
                continue
            if not isinstance(value, dict):
                raise ConfigError(f"Section '{name}' must be a mapping", source=source)
            known = {f.name for f in dataclasses.fields(section_cls)}
            bad = set(value) - known
            if bad:
                raise ConfigError(f"Unknown keys in '{name}': {sorted(bad)}", source=source)
            try:
                kwargs[name] = section_cls(**value)
            except (TypeError, ValidationError) as e:
                raise ConfigError(f"Invalid section '{name}': {e}", source=source) from e
        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, yaml_str: str, source: str | None = None) -> SyncConfig:
        """Parse a YAML document into a SyncConfig."""
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}", source=source) from e
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("Config document must be a mapping", source=source)
        return cls.from_dict(data, source=source)

    @classmethod
    def from_file(cls, path: str | Path) -> SyncConfig:
        """Load a YAML config file."""
        p = Path(path)
        try:
            text = p.read_text()
        except OSError as e:
            raise ConfigError(f"Cannot read config file: {e}", source=str(p)) from e
        return cls.from_yaml(text, source=str(p))

    def as_dict(self) -> dict[str, Any]:
        """Return the configuration as plain nested dictionaries."""
        return dataclasses.asdict(self)


_SECTION_TYPES: dict[str, type] = {
    "cache": CacheConfig,
    "bulk": BulkConfig,
    "retry": RetryConfig,
    "rate_limit": RateLimitConfig,
    "events": EventsConfig,
}
