"""Unit tests for the transport backoff wrapper.

Tests cover:
- Delay calculation (exponential, capped, jittered)
- Which errors are retried
- Retry budget exhaustion
- Persistent quota fallback hook
- Abort signal interrupting pending calls and backoff waits
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from agentic_chat.application.services.retry import RetryOptions, retry_with_backoff, run_abortable, should_retry
from agentic_chat.domain.exceptions import InvalidStreamError, InvalidStreamErrorType, OperationCancelledError, TransportError
from tests.fixtures.factories import network_error, quota_error


@pytest.fixture
def mock_sleep():
    """Patch the backoff sleep."""
    with patch("agentic_chat.application.services.retry._sleep", new_callable=AsyncMock) as sleep:
        yield sleep


def failing_then(result, *errors):
    """Build a coroutine factory raising each error in turn, then returning result."""
    remaining = list(errors)
    fn = AsyncMock()

    async def side_effect():
        if remaining:
            raise remaining.pop(0)
        return result

    fn.side_effect = side_effect
    return fn


class TestRetryOptions:
    """Test delay calculation."""

    def test_exponential_growth_without_jitter(self):
        """Test that delays double per attempt."""
        options = RetryOptions(initial_delay_ms=100, max_delay_ms=10_000, jitter=0)
        assert [options.calculate_delay_ms(n) for n in range(4)] == [100, 200, 400, 800]

    def test_delay_is_capped(self):
        """Test that delays never exceed the cap."""
        options = RetryOptions(initial_delay_ms=5000, max_delay_ms=30_000, jitter=0)
        assert options.calculate_delay_ms(10) == 30_000

    def test_jitter_stays_within_bounds(self):
        """Test that jitter stays within the configured fraction."""
        options = RetryOptions(initial_delay_ms=1000, jitter=0.3)
        for _ in range(50):
            assert 700 <= options.calculate_delay_ms(0) <= 1300


class TestShouldRetry:
    """Test retry classification."""

    def test_retryable_and_quota_errors(self):
        """Test that transient and quota errors are retried."""
        assert should_retry(network_error()) is True
        assert should_retry(TransportError("q", error_code="x", status_code=429)) is True

    def test_fatal_errors(self):
        """Test that other errors are not retried."""
        assert should_retry(TransportError("missing", error_code="model_not_found", status_code=404)) is False
        assert should_retry(InvalidStreamError("empty", InvalidStreamErrorType.NO_RESPONSE_TEXT)) is False
        assert should_retry(ValueError("nope")) is False


class TestRetryWithBackoff:
    """Test retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, mock_sleep):
        """Test that no sleep happens when the call succeeds."""
        fn = failing_then("ok")

        assert await retry_with_backoff(fn) == "ok"
        assert fn.await_count == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self, mock_sleep):
        """Test that transient errors are retried with growing delays."""
        fn = failing_then("ok", network_error(), network_error())

        result = await retry_with_backoff(fn, RetryOptions(initial_delay_ms=100, jitter=0))

        assert result == "ok"
        assert fn.await_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [100, 200]

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self, mock_sleep):
        """Test that fatal errors are not retried."""
        fn = failing_then("ok", TransportError("missing", error_code="model_not_found", status_code=404))

        with pytest.raises(TransportError) as exc_info:
            await retry_with_backoff(fn)

        assert exc_info.value.error_code == "model_not_found"
        assert fn.await_count == 1
        mock_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_budget_raises_last_error(self, mock_sleep):
        """Test that the last error surfaces once attempts run out."""
        fn = failing_then("ok", *[network_error() for _ in range(5)])

        with pytest.raises(TransportError):
            await retry_with_backoff(fn, RetryOptions(max_attempts=3, jitter=0))

        assert fn.await_count == 3
        assert mock_sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_persistent_quota_fallback_restarts_budget(self, mock_sleep):
        """Test that an accepted fallback resets the attempt counter."""
        fallback = AsyncMock(return_value=True)
        fn = failing_then("ok", quota_error(), quota_error())

        result = await retry_with_backoff(fn, RetryOptions(max_attempts=2, quota_fallback_after=2, jitter=0), on_persistent_quota=fallback)

        assert result == "ok"
        fallback.assert_awaited_once()
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_declined_fallback_propagates_quota_error(self, mock_sleep):
        """Test that a declined fallback surfaces the quota error."""
        fallback = AsyncMock(return_value=False)
        fn = failing_then("ok", quota_error(), quota_error(), quota_error())

        with pytest.raises(TransportError) as exc_info:
            await retry_with_backoff(fn, RetryOptions(max_attempts=5, quota_fallback_after=2, jitter=0), on_persistent_quota=fallback)

        assert exc_info.value.is_quota_error is True
        assert fn.await_count == 2

    @pytest.mark.asyncio
    async def test_non_quota_error_resets_quota_streak(self, mock_sleep):
        """Test that only consecutive quota errors trigger the fallback."""
        fallback = AsyncMock(return_value=True)
        fn = failing_then("ok", quota_error(), network_error(), quota_error())

        assert await retry_with_backoff(fn, RetryOptions(max_attempts=5, quota_fallback_after=2, jitter=0), on_persistent_quota=fallback) == "ok"
        fallback.assert_not_awaited()


class TestAbort:
    """Test abort handling in run_abortable and retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_result_is_returned_without_abort(self):
        """Test that completed work returns its result."""
        assert await run_abortable(asyncio.sleep(0, result="done"), asyncio.Event()) == "done"

    @pytest.mark.asyncio
    async def test_no_signal_awaits_directly(self):
        """Test that a missing signal simply awaits the work."""
        assert await run_abortable(asyncio.sleep(0, result="done"), None) == "done"

    @pytest.mark.asyncio
    async def test_already_set_signal_aborts(self):
        """Test that a signal set beforehand wins over ready work."""
        abort = asyncio.Event()
        abort.set()

        with pytest.raises(OperationCancelledError):
            await run_abortable(asyncio.sleep(0, result="done"), abort)

    @pytest.mark.asyncio
    async def test_abort_cancels_pending_work(self):
        """Test that stalled work is cancelled, and its cleanup has run, when the signal fires."""
        started = asyncio.Event()
        cleaned_up = []

        async def stalled():
            started.set()
            try:
                await asyncio.Event().wait()
            finally:
                cleaned_up.append(True)

        abort = asyncio.Event()
        task = asyncio.create_task(run_abortable(stalled(), abort))
        await started.wait()
        abort.set()

        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(task, timeout=1.0)
        assert cleaned_up == [True]

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        """Test that failures of the awaited work surface unchanged."""
        with pytest.raises(TransportError):
            await run_abortable(failing_then("ok", network_error())(), asyncio.Event())

    @pytest.mark.asyncio
    async def test_abort_interrupts_backoff_sleep(self):
        """Test that a long backoff wait ends as soon as the signal fires."""
        fn = failing_then("ok", network_error())
        abort = asyncio.Event()

        task = asyncio.create_task(retry_with_backoff(fn, RetryOptions(initial_delay_ms=60_000, jitter=0), abort_signal=abort))
        await asyncio.sleep(0.05)
        abort.set()

        with pytest.raises(OperationCancelledError):
            await asyncio.wait_for(task, timeout=1.0)
        assert fn.await_count == 1
