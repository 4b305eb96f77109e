"""Backoff wrapper for transport calls.

ChatSession does not retry transport failures itself. Opening a stream goes
through ``retry_with_backoff``, which retries retryable ``TransportError``s with
exponential backoff and jitter, and hands persistent quota exhaustion to an
optional fallback hook (e.g. switch to a cheaper model).
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from agentic_chat.domain.exceptions import OperationCancelledError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

PersistentQuotaHandler = Callable[[TransportError], Awaitable[bool]]


@dataclass
class RetryOptions:
    """Configuration for transport retry with exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one
        initial_delay_ms: Delay before the first retry
        max_delay_ms: Maximum delay cap
        jitter: Fraction of the delay added or removed at random
        quota_fallback_after: Consecutive quota errors before the fallback hook is consulted
    """

    max_attempts: int = 5
    initial_delay_ms: int = 5000
    max_delay_ms: int = 30000
    jitter: float = 0.3
    quota_fallback_after: int = 2

    def calculate_delay_ms(self, attempt: int) -> float:
        """Delay before retrying after the given (0-indexed) failed attempt."""
        delay = min(self.initial_delay_ms * (2**attempt), self.max_delay_ms)
        if self.jitter:
            delay += delay * random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)


async def _sleep(delay_ms: float) -> None:
    await asyncio.sleep(delay_ms / 1000)


async def run_abortable(awaitable: Awaitable[T], abort_signal: asyncio.Event | None) -> T:
    """Await ``awaitable`` unless the abort signal fires first.

    When the signal wins, the pending work is cancelled and awaited so its
    cleanup (e.g. closing an HTTP response) has run before this returns.

    Raises:
        OperationCancelledError: When the abort signal is set before completion
    """
    if abort_signal is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    abort_waiter = asyncio.ensure_future(abort_signal.wait())
    try:
        done, _ = await asyncio.wait({task, abort_waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        abort_waiter.cancel()

    if task in done and not abort_signal.is_set():
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise OperationCancelledError("Operation aborted by caller")


def should_retry(error: Exception) -> bool:
    """Only transport failures flagged as transient, or quota errors, are retried."""
    return isinstance(error, TransportError) and (error.is_retryable or error.is_quota_error)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    on_persistent_quota: PersistentQuotaHandler | None = None,
    abort_signal: asyncio.Event | None = None,
) -> T:
    """Call ``fn`` until it succeeds or the retry budget is exhausted.

    Args:
        fn: Zero-argument coroutine factory, re-invoked on each attempt
        options: Retry configuration
        on_persistent_quota: Awaited after repeated quota errors. Returning True
            means the caller switched to a fallback and the budget starts over.
        abort_signal: Cancels a pending call or backoff wait when set

    Returns:
        The result of the first successful call

    Raises:
        TransportError: When the error is not retryable or attempts are exhausted
        OperationCancelledError: When the abort signal fires
    """
    options = options or RetryOptions()
    attempt = 0
    consecutive_quota_errors = 0

    while True:
        try:
            return await run_abortable(fn(), abort_signal)
        except TransportError as e:
            if not should_retry(e):
                raise

            consecutive_quota_errors = consecutive_quota_errors + 1 if e.is_quota_error else 0
            if on_persistent_quota is not None and consecutive_quota_errors >= options.quota_fallback_after:
                logger.warning(f"⚠️ {consecutive_quota_errors} consecutive quota errors, consulting fallback handler")
                if await on_persistent_quota(e):
                    logger.info("🔁 Fallback accepted, restarting retry budget")
                    attempt = 0
                    consecutive_quota_errors = 0
                    continue
                raise

            if attempt + 1 >= options.max_attempts:
                logger.error(f"❌ Transport call failed after {attempt + 1} attempt(s): {e}")
                raise

            delay_ms = options.calculate_delay_ms(attempt)
            logger.warning(f"Retry {attempt + 1}/{options.max_attempts - 1} after {delay_ms:.0f}ms due to: {e}")
            await run_abortable(_sleep(delay_ms), abort_signal)
            attempt += 1
