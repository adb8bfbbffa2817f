"""Bulk fetch of per-asset data with caching and bounded concurrency.

``BulkFetchOrchestrator.bulk_fetch`` resolves every requested id to exactly
one value:

1. Partition ids into cache hits and ids to fetch (no remote calls)
2. Fetch the rest in sequential chunks of ``batch_size``; inside a chunk a
   fixed pool of at most ``max_concurrency`` workers drains a queue
3. Each attempt acquires a rate limiter token, and the attempt as a whole is
   wrapped by the retry policy so that retries reacquire a token
4. Successes are cached under ``{cache_prefix}:{id}``; ids whose retries are
   exhausted get a default value and are never cached

Per-id failures are logged and counted, never raised.
"""

import asyncio
import inspect
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .cache import CacheCategory, CacheRegistry, ResultCache
from .config import BulkConfig
from .exceptions import ValidationError
from .ratelimit import RateLimiterProtocol
from .retry import RetryOptions, RetryPolicyProtocol

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Async or sync callable taking an id
FetchOne = Callable[[str], Any]

_MISSING: Any = object()


def default_for_prefix(cache_prefix: str) -> Any:
    """Fallback value for a failed fetch: list-shaped for permissions, dict otherwise."""
    if cache_prefix == CacheCategory.PERMISSIONS.value:
        return []
    return {}


@dataclass
class BulkFetchRequest(Generic[T]):
    """
    One bulk fetch call.

    ``ids`` are deduplicated on construction, keeping first-seen order.
    ``max_concurrency`` and ``batch_size`` default to the orchestrator's
    ``BulkConfig`` when left as None.
    """

    ids: Iterable[str]
    fetch_one: FetchOne
    cache_prefix: str = CacheCategory.METADATA.value
    max_concurrency: int | None = None
    batch_size: int | None = None
    operation_name: str | None = None
    asset_type: str = "asset"
    default_factory: Callable[[], T] | None = None

    def __post_init__(self) -> None:
        if isinstance(self.ids, str):
            raise ValidationError("ids", self.ids, "must be an iterable of ids, not a string")
        self.ids = list(dict.fromkeys(self.ids))
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValidationError("max_concurrency", self.max_concurrency, "must be at least 1")
        if self.batch_size is not None and self.batch_size < 1:
            raise ValidationError("batch_size", self.batch_size, "must be at least 1")
        if not self.cache_prefix:
            raise ValidationError("cache_prefix", self.cache_prefix, "must not be empty")

    @property
    def name(self) -> str:
        return self.operation_name or self.cache_prefix

    def cache_key(self, asset_id: str) -> str:
        return f"{self.cache_prefix}:{asset_id}"

    def default_value(self) -> T:
        if self.default_factory is not None:
            return self.default_factory()
        return default_for_prefix(self.cache_prefix)  # type: ignore[no-any-return]


@dataclass
class BulkFetchResult(Generic[T]):
    """
    Outcome of a bulk fetch: one entry in ``data`` per unique requested id.

    Attributes:
        data: Cached, fetched, or default value per id
        cached_count: Ids served from cache
        fetched_count: Ids fetched successfully
        error_count: Ids that fell back to the default value
        duration_ms: Wall time of the call
        failed_ids: Ids counted in error_count
    """

    data: dict[str, T] = field(default_factory=dict)
    cached_count: int = 0
    fetched_count: int = 0
    error_count: int = 0
    duration_ms: float = 0.0
    failed_ids: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.data)

    @property
    def cache_hit_rate(self) -> float:
        """Fraction of ids served from cache (0.0 for an empty request)."""
        return self.cached_count / self.total if self.total else 0.0

    def as_dict(self) -> dict[str, Any]:
        """Summary counts, suitable for partial-success messages."""
        return {
            "total": self.total,
            "cached": self.cached_count,
            "fetched": self.fetched_count,
            "errors": self.error_count,
            "duration_ms": round(self.duration_ms, 2),
            "cache_hit_rate": round(self.cache_hit_rate, 4),
            "failed_ids": list(self.failed_ids),
        }


class BulkFetchOrchestrator:
    """
    Resolves many ids through cache, rate limiter and retry policy.

    Args:
        registry: Cache registry shared by the process
        rate_limiter: Gate acquired before every remote call attempt
        retry_policy: Wraps each per-id fetch with bounded retries
        config: Default concurrency and batch size
        retry_options: Options passed to the retry policy
    """

    def __init__(
        self,
        registry: CacheRegistry,
        rate_limiter: RateLimiterProtocol,
        retry_policy: RetryPolicyProtocol,
        config: BulkConfig | None = None,
        retry_options: RetryOptions | None = None,
    ) -> None:
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy
        self.config = config or BulkConfig()
        self.retry_options = retry_options

    async def bulk_fetch(self, request: BulkFetchRequest[T]) -> BulkFetchResult[T]:
        """
        Fetch data for every id in the request.

        Returns:
            BulkFetchResult with exactly one entry per unique id
        """
        start = time.perf_counter()
        result: BulkFetchResult[T] = BulkFetchResult()
        ids: list[str] = list(request.ids)

        if not ids:
            result.duration_ms = (time.perf_counter() - start) * 1000
            return result

        cache = self.registry.cache_for_prefix(request.cache_prefix)

        to_fetch: list[str] = []
        for asset_id in ids:
            value = cache.get(request.cache_key(asset_id), _MISSING)
            if value is _MISSING:
                to_fetch.append(asset_id)
            else:
                result.data[asset_id] = value
                result.cached_count += 1

        if to_fetch:
            concurrency = request.max_concurrency or self.config.max_concurrency
            batch_size = request.batch_size or self.config.batch_size
            for i in range(0, len(to_fetch), batch_size):
                chunk = to_fetch[i : i + batch_size]
                await self._run_chunk(chunk, request, cache, result, concurrency)

        result.duration_ms = (time.perf_counter() - start) * 1000

        logger.info(
            "Bulk %s completed for %s: total=%d cached=%d fetched=%d errors=%d "
            "duration_ms=%.1f cache_hit_rate=%.1f%%",
            request.name,
            request.asset_type,
            result.total,
            result.cached_count,
            result.fetched_count,
            result.error_count,
            result.duration_ms,
            result.cache_hit_rate * 100,
            extra={"bulk_fetch": result.as_dict()},
        )
        return result

    async def _run_chunk(
        self,
        chunk: list[str],
        request: BulkFetchRequest[T],
        cache: ResultCache[Any],
        result: BulkFetchResult[T],
        concurrency: int,
    ) -> None:
        """Drain one chunk with a fixed pool of workers."""
        queue: asyncio.Queue[str] = asyncio.Queue()
        for asset_id in chunk:
            queue.put_nowait(asset_id)

        async def worker() -> None:
            while True:
                try:
                    asset_id = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                await self._fetch_into(asset_id, request, cache, result)

        pool_size = min(concurrency, len(chunk))
        await asyncio.gather(*(worker() for _ in range(pool_size)))

    async def _fetch_into(
        self,
        asset_id: str,
        request: BulkFetchRequest[T],
        cache: ResultCache[Any],
        result: BulkFetchResult[T],
    ) -> None:
        async def attempt() -> T:
            await self.rate_limiter.acquire()
            return await _call_fetch(request.fetch_one, asset_id)

        try:
            value = await self.retry_policy.run(
                attempt, f"{request.name}({asset_id})", self.retry_options
            )
        except Exception as e:
            logger.error(
                "Failed to fetch %s for %s: %s",
                request.name,
                asset_id,
                e,
                exc_info=True,
            )
            result.data[asset_id] = request.default_value()
            result.error_count += 1
            result.failed_ids.append(asset_id)
            return

        cache.set(request.cache_key(asset_id), value)
        result.data[asset_id] = value
        result.fetched_count += 1

    # -------------------------------------------------------------------------
    # Category helpers
    # -------------------------------------------------------------------------

    async def bulk_fetch_permissions(
        self,
        asset_ids: Iterable[str],
        asset_type: str,
        fetch_permissions: FetchOne,
    ) -> dict[str, list[Any]]:
        """Bulk fetch permissions (list-shaped, ``[]`` on failure)."""
        result = await self.bulk_fetch(
            BulkFetchRequest(
                ids=asset_ids,
                fetch_one=fetch_permissions,
                cache_prefix=CacheCategory.PERMISSIONS.value,
                operation_name="permissions",
                asset_type=asset_type,
            )
        )
        return result.data

    async def bulk_fetch_tags(
        self,
        asset_ids: Iterable[str],
        asset_type: str,
        fetch_tags: FetchOne,
    ) -> dict[str, dict[str, str]]:
        """Bulk fetch tags (dict-shaped, ``{}`` on failure)."""
        result = await self.bulk_fetch(
            BulkFetchRequest(
                ids=asset_ids,
                fetch_one=fetch_tags,
                cache_prefix=CacheCategory.TAGS.value,
                operation_name="tags",
                asset_type=asset_type,
            )
        )
        return result.data

    async def bulk_fetch_permissions_and_tags(
        self,
        asset_ids: Iterable[str],
        asset_type: str,
        fetch_permissions: FetchOne,
        fetch_tags: FetchOne,
    ) -> tuple[dict[str, list[Any]], dict[str, dict[str, str]]]:
        """Fetch permissions and tags for the same ids concurrently."""
        if isinstance(asset_ids, str):
            raise ValidationError("ids", asset_ids, "must be an iterable of ids, not a string")
        ids = list(asset_ids)
        permissions, tags = await asyncio.gather(
            self.bulk_fetch_permissions(ids, asset_type, fetch_permissions),
            self.bulk_fetch_tags(ids, asset_type, fetch_tags),
        )
        return permissions, tags


async def _call_fetch(fetch_one: FetchOne, asset_id: str) -> T:
    """Await async fetchers; run sync ones in a worker thread."""
    if inspect.iscoroutinefunction(fetch_one):
        return await fetch_one(asset_id)  # type: ignore[no-any-return]
    value = await asyncio.to_thread(fetch_one, asset_id)
    if inspect.isawaitable(value):
        return await value  # type: ignore[no-any-return]
    return value  # type: ignore[return-value]
