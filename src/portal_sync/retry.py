"""Bounded retries with exponential backoff for remote calls."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar, runtime_checkable

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .config import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

THROTTLING_CODES = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "RateLimitExceededException",
    }
)

RETRYABLE_CODES = frozenset(
    {
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "RequestTimeout",
        "RequestTimeoutException",
        "InternalServerError",
        "InternalFailure",
        "InternalError",
    }
)

RETRYABLE_STATUS_CODES = frozenset({500, 502, 503, 504})


@dataclass(frozen=True)
class RetryOptions:
    """
    Retry parameters for one remote call.

    Attributes:
        max_retries: Retries after the first attempt (0 = single attempt)
        base_delay_ms: Delay before the first retry
        max_delay_ms: Ceiling on the un-jittered delay
        backoff_multiplier: Growth factor per attempt
        jitter_factor: Extra random delay as a fraction of the delay
    """

    max_retries: int = 5
    base_delay_ms: int = 500
    max_delay_ms: int = 10_000
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.3

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryOptions":
        return cls(
            max_retries=config.max_retries,
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
            backoff_multiplier=config.backoff_multiplier,
            jitter_factor=config.jitter_factor,
        )

    def delay_ms(self, attempt: int) -> float:
        """Un-jittered delay after the given zero-based failed attempt."""
        return min(self.base_delay_ms * self.backoff_multiplier**attempt, self.max_delay_ms)


@runtime_checkable
class RetryPolicyProtocol(Protocol):
    """Runs an operation with bounded retries; re-raises once they are exhausted."""

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        options: RetryOptions | None = None,
    ) -> T: ...


def _client_error_parts(error: ClientError) -> tuple[str, int | None]:
    code = error.response.get("Error", {}).get("Code", "")
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code, status


def is_throttling_error(error: BaseException) -> bool:
    """Whether the error is an API throttling response."""
    if isinstance(error, ClientError):
        code, status = _client_error_parts(error)
        return code in THROTTLING_CODES or status == 429
    message = str(error)
    return "Rate exceeded" in message or "too many requests" in message.lower()


def is_retryable_error(error: BaseException) -> bool:
    """Whether a failed call is worth retrying (throttling, 5xx, network)."""
    if is_throttling_error(error):
        return True
    if isinstance(error, ClientError):
        code, status = _client_error_parts(error)
        return code in RETRYABLE_CODES or status in RETRYABLE_STATUS_CODES
    if isinstance(
        error,
        (
            EndpointConnectionError,
            ConnectionClosedError,
            ConnectTimeoutError,
            ReadTimeoutError,
            ConnectionError,
            TimeoutError,
            asyncio.TimeoutError,
        ),
    ):
        return True
    message = str(error).lower()
    return "socket hang up" in message or "timeout" in message


class BackoffRetryPolicy:
    """
    Default retry policy: exponential backoff with jitter.

    Only errors accepted by ``retryable`` are retried; anything else
    propagates from the first attempt.

    Args:
        default_options: Options used when ``run`` is called without any
        retryable: Classifier deciding whether an error is transient
        sleep: Coroutine used to wait (seconds)
    """

    def __init__(
        self,
        default_options: RetryOptions | None = None,
        retryable: Callable[[BaseException], bool] = is_retryable_error,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.default_options = default_options or RetryOptions()
        self._retryable = retryable
        self._sleep = sleep

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        options: RetryOptions | None = None,
    ) -> T:
        opts = options or self.default_options
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as e:
                if attempt >= opts.max_retries or not self._retryable(e):
                    raise

                base = opts.delay_ms(attempt)
                delay = int(base + random.random() * opts.jitter_factor * base)
                logger.warning(
                    "%s failed with %s, retrying in %dms (attempt %d/%d)",
                    operation_name,
                    type(e).__name__,
                    delay,
                    attempt + 1,
                    opts.max_retries,
                    extra={"error": str(e), "attempt": attempt + 1, "delay_ms": delay},
                )
                await self._sleep(delay / 1000)
                attempt += 1
