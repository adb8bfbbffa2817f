"""Unit test fixtures: fake clocks and collaborators."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from portal_sync.cache import CacheRegistry
from portal_sync.config import CacheConfig, EventsConfig
from portal_sync.events.engine import EventAggregator
from portal_sync.retry import BackoffRetryPolicy, RetryOptions
from tests.fixtures.fakes import CountingRateLimiter, FakeClock, FakeLookup


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> CacheRegistry:
    return CacheRegistry(
        config=CacheConfig(
            metadata_ttl_ms=1000,
            permissions_ttl_ms=2000,
            tags_ttl_ms=3000,
            max_size=100,
        ),
        clock=clock,
    )


@pytest.fixture
def rate_limiter() -> CountingRateLimiter:
    return CountingRateLimiter()


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def retry_policy(sleep: AsyncMock) -> BackoffRetryPolicy:
    """Real retry policy with two retries and no actual waiting."""
    return BackoffRetryPolicy(RetryOptions(max_retries=2, base_delay_ms=1), sleep=sleep)


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2025, 7, 21, 12, 0, tzinfo=UTC)


@pytest.fixture
def make_aggregator(rate_limiter, retry_policy, fixed_now):
    """Build an EventAggregator around a FakeLookup."""

    def _make(lookup: FakeLookup, **config_kwargs) -> EventAggregator:
        return EventAggregator(
            lookup=lookup,
            rate_limiter=rate_limiter,
            retry_policy=retry_policy,
            config=EventsConfig(**config_kwargs),
            clock=lambda: fixed_now,
        )

    return _make
