"""
portal-sync: bulk metadata synchronization for a BI administration portal.

This library provides:
- Named result caches with TTL expiry and a capacity bound
- Bulk fetches with cache reuse, bounded concurrency and per-id failure
  isolation
- Paginated audit-log aggregation into per-user activity records
- A token bucket rate limiter and a backoff retry policy for remote calls

Example:
    from portal_sync import (
        BackoffRetryPolicy,
        BulkFetchOrchestrator,
        BulkFetchRequest,
        CacheRegistry,
        TokenBucketRateLimiter,
    )

    registry = CacheRegistry()
    orchestrator = BulkFetchOrchestrator(
        registry=registry,
        rate_limiter=TokenBucketRateLimiter.for_quicksight_permissions(),
        retry_policy=BackoffRetryPolicy(),
    )
    result = await orchestrator.bulk_fetch(
        BulkFetchRequest(
            ids=dashboard_ids,
            fetch_one=describe_dashboard_permissions,
            cache_prefix="permissions",
        )
    )
    print(f"fetched {result.fetched_count} of {result.total}; {result.error_count} failed")
"""

from .bulk import BulkFetchOrchestrator, BulkFetchRequest, BulkFetchResult
from .cache import CacheCategory, CacheEntry, CacheRegistry, CacheStats, ResultCache
from .config import (
    BulkConfig,
    CacheConfig,
    EventsConfig,
    RateLimitConfig,
    RetryConfig,
    SyncConfig,
)
from .events import ActivityReport, EventAggregator, UserActivityRecord
from .exceptions import (
    ConfigError,
    EventQueryError,
    PortalSyncError,
    RemoteError,
    ValidationError,
)
from .ratelimit import RateLimiterProtocol, TokenBucketRateLimiter
from .retry import BackoffRetryPolicy, RetryOptions, RetryPolicyProtocol

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Caching
    "CacheCategory",
    "CacheEntry",
    "CacheRegistry",
    "CacheStats",
    "ResultCache",
    # Bulk fetch
    "BulkFetchOrchestrator",
    "BulkFetchRequest",
    "BulkFetchResult",
    # Event aggregation
    "ActivityReport",
    "EventAggregator",
    "UserActivityRecord",
    # Collaborators
    "BackoffRetryPolicy",
    "RateLimiterProtocol",
    "RetryOptions",
    "RetryPolicyProtocol",
    "TokenBucketRateLimiter",
    # Config
    "BulkConfig",
    "CacheConfig",
    "EventsConfig",
    "RateLimitConfig",
    "RetryConfig",
    "SyncConfig",
    # Exceptions
    "PortalSyncError",
    "ConfigError",
    "EventQueryError",
    "RemoteError",
    "ValidationError",
]
