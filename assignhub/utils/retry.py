"""
Retry with exponential backoff for fallible async operations.

The coordinator re-invokes the whole operation on every attempt, so the
operation must be idempotent or otherwise safe to repeat. Delays follow
2^(attempt-1) seconds: 1s, 2s, 4s, ...

Usage:
    result = await retry_with_backoff(lambda: client.post(url, json=body))

    policy = RetryPolicy(max_retries=5)
    result = await policy.run(fetch_profile)
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from functools import wraps
from typing import Any, TypeVar

from assignhub.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
BASE_DELAY_SECONDS = 1.0
GATEWAY_TIMEOUT = 504
DEFAULT_RETRYABLE_STATUSES: frozenset[int] = frozenset({GATEWAY_TIMEOUT})

# Error kinds matched against every class name in the exception's MRO.
# The first three come from the Supabase JS client; the rest are the
# Python-native equivalents (builtins and httpx).
DEFAULT_RETRYABLE_ERRORS: tuple[str, ...] = (
    "AuthRetryableFetchError",
    "NetworkError",
    "TimeoutError",
    "TimeoutException",
    "ConnectionError",
)

RetryHook = Callable[[int, BaseException, float], None]


class RetryCancelledError(Exception):
    """Raised when a retry loop is cancelled through its CancellationToken."""

    def __init__(self, message: str, attempts: int, last_error: BaseException | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class CancellationToken:
    """Lets a caller abandon a retry loop that is waiting between attempts."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def backoff_delay(attempt: int, base_delay: float = BASE_DELAY_SECONDS) -> float:
    """Delay in seconds before the attempt following failed attempt number `attempt`."""
    return (2 ** (attempt - 1)) * base_delay


def _status_of(error: BaseException) -> int | None:
    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_retryable_error(
    error: BaseException,
    retryable_errors: Iterable[str],
    retryable_statuses: Iterable[int] = DEFAULT_RETRYABLE_STATUSES,
) -> bool:
    """
    Classify an error as transient.

    Retryable when any class in the error's MRO is named in `retryable_errors`,
    when its message mentions a timeout or the network, or when it carries an
    HTTP status in `retryable_statuses` (504 Gateway Timeout by default).
    """
    kinds = set(retryable_errors)
    if any(cls.__name__ in kinds for cls in type(error).__mro__):
        return True

    message = str(error).lower()
    if "timeout" in message or "network" in message:
        return True

    return _status_of(error) in set(retryable_statuses)


async def _sleep(delay: float, cancel_token: CancellationToken | None) -> None:
    if cancel_token is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel_token.wait(), timeout=delay)
    except TimeoutError:
        pass


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    retryable_errors: Iterable[str] = DEFAULT_RETRYABLE_ERRORS,
    on_retry: RetryHook | None = None,
    *,
    cancel_token: CancellationToken | None = None,
    base_delay: float = BASE_DELAY_SECONDS,
    retryable_statuses: Iterable[int] = DEFAULT_RETRYABLE_STATUSES,
) -> T:
    """
    Run `operation`, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument coroutine function, invoked once per attempt
        max_retries: Total number of invocations allowed
        retryable_errors: Error kind names treated as transient
        on_retry: Called as on_retry(attempt, error, delay_seconds) before each wait
        cancel_token: Optional token; cancelling it stops the loop with RetryCancelledError
        base_delay: Delay unit in seconds
        retryable_statuses: HTTP statuses treated as transient

    Returns:
        The operation's result

    Raises:
        The last error from `operation` once retries are exhausted or the error
        is not retryable, or RetryCancelledError when cancelled.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be a positive integer")

    retryable_errors = tuple(retryable_errors)
    retryable_statuses = frozenset(retryable_statuses)
    attempt = 0

    while True:
        if cancel_token is not None and cancel_token.cancelled:
            raise RetryCancelledError("Retry cancelled before attempt", attempts=attempt)

        try:
            return await operation()
        except Exception as error:
            attempt += 1

            transient = is_retryable_error(error, retryable_errors, retryable_statuses)
            if attempt >= max_retries or not transient:
                if transient:
                    logger.error(
                        "Operation failed after all retries",
                        attempts=attempt,
                        error=str(error),
                        error_type=type(error).__name__,
                    )
                raise

            if cancel_token is not None and cancel_token.cancelled:
                raise RetryCancelledError(
                    "Retry cancelled", attempts=attempt, last_error=error
                ) from error

            delay = backoff_delay(attempt, base_delay)

            if on_retry:
                on_retry(attempt, error, delay)

            logger.warning(
                "Operation failed, retrying",
                attempt=attempt,
                max_retries=max_retries,
                delay=delay,
                error=str(error),
                error_type=type(error).__name__,
            )

            await _sleep(delay, cancel_token)

            if cancel_token is not None and cancel_token.cancelled:
                raise RetryCancelledError(
                    "Retry cancelled during backoff", attempts=attempt, last_error=error
                ) from error


@dataclass(frozen=True)
class RetryPolicy:
    """Reusable retry settings. Holds no per-call state."""

    max_retries: int = DEFAULT_MAX_RETRIES
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS
    base_delay: float = BASE_DELAY_SECONDS
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be a positive integer")

    def backoff(self, attempt: int) -> float:
        return backoff_delay(attempt, self.base_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        on_retry: RetryHook | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> T:
        return await retry_with_backoff(
            operation,
            max_retries=self.max_retries,
            retryable_errors=self.retryable_errors,
            on_retry=on_retry,
            cancel_token=cancel_token,
            base_delay=self.base_delay,
            retryable_statuses=self.retryable_statuses,
        )


def retryable(policy: RetryPolicy | None = None):
    """
    Decorator applying a RetryPolicy to an async function.

    Args:
        policy: Policy to apply (defaults to RetryPolicy())
    """
    policy = policy or RetryPolicy()

    def decorator(func: Callable[..., Awaitable[Any]]):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await policy.run(lambda: func(*args, **kwargs))

        return wrapper

    return decorator
