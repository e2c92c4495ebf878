"""
Tests for the Retry Executor

Tests for error classification, retry policies, and the executor itself.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from marketplace_chain.core.recovery import (
    ErrorCategory,
    ErrorCode,
    RetryExecutor,
    RetryPolicy,
    ServiceError,
    classify_error,
    execute_with_retry,
    is_transient,
)
from marketplace_chain.core.recovery.strategies import (
    constant_backoff,
    exponential_backoff,
    linear_backoff,
)


class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def executor(sleep):
    return RetryExecutor(sleep=sleep)


# =============================================================================
# Error Classification Tests
# =============================================================================

class TestErrorClassification:
    """Tests for ServiceError and classify_error."""

    def test_service_error_fields(self):
        error = ServiceError("RPC URL not configured", code=ErrorCode.MISSING_RPC_URL)

        assert error.code == ErrorCode.MISSING_RPC_URL
        assert error.message == "RPC URL not configured"
        assert error.details == {}
        assert error.timestamp.tzinfo is not None
        assert str(error) == "[MISSING_RPC_URL] RPC URL not configured"

    def test_bootstrap_codes_are_not_retryable(self):
        assert ServiceError("x", code=ErrorCode.MISSING_RPC_URL).retryable is False
        assert ServiceError("x", code=ErrorCode.INITIALIZATION_ERROR).retryable is False
        assert ServiceError("x", code=ErrorCode.RPC_TRANSPORT_ERROR).retryable is True

    def test_string_code_is_coerced(self):
        assert ServiceError("x", code="RPC_ERROR").code is ErrorCode.RPC_ERROR
        assert ServiceError("x", code="CUSTOM").code == "CUSTOM"

    def test_wrap_keeps_original_text(self):
        cause = ConnectionError("connection refused")
        error = ServiceError.wrap(cause, "Failed to initialize provider", ErrorCode.INITIALIZATION_ERROR)

        assert error.details["original_error"] == "connection refused"
        assert error.category == ErrorCategory.NETWORK
        assert error.retryable is False

    def test_to_dict(self):
        error = ServiceError("boom", code=ErrorCode.RPC_ERROR, details={"rpc_code": -32000})
        payload = error.to_dict()

        assert payload["code"] == "RPC_ERROR"
        assert payload["details"] == {"rpc_code": -32000}
        assert "timestamp" in payload

    def test_classify_rate_limit(self):
        context = classify_error(Exception("429 Too Many Requests"))
        assert context.category == ErrorCategory.RATE_LIMIT
        assert context.recoverable is True

    def test_classify_timeout(self):
        assert classify_error(TimeoutError()).category == ErrorCategory.TIMEOUT
        assert classify_error(Exception("request timed out")).category == ErrorCategory.TIMEOUT

    def test_classify_revert_is_not_transient(self):
        error = Exception("execution reverted: listing sold")
        assert classify_error(error).category == ErrorCategory.TRANSACTION_REVERTED
        assert is_transient(error) is False

    def test_classify_insufficient_funds(self):
        error = Exception("insufficient funds for gas * price + value")
        assert classify_error(error).category == ErrorCategory.INSUFFICIENT_FUNDS
        assert is_transient(error) is False

    def test_classify_service_error_uses_its_own_flags(self):
        error = ServiceError("bad", code=ErrorCode.UNKNOWN_FUNCTION)
        assert classify_error(error).recoverable is False


# =============================================================================
# Retry Policy Tests
# =============================================================================

class TestRetryPolicy:
    """Tests for backoff schedules and policy validation."""

    def test_default_policy_is_linear(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]

    def test_linear_backoff(self):
        backoff = linear_backoff(0.5)
        assert backoff(1) == 0.5
        assert backoff(4) == 2.0

    def test_exponential_backoff_is_capped(self):
        backoff = exponential_backoff(1.0, factor=2.0, max_delay=5.0)
        assert [backoff(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

    def test_constant_backoff(self):
        policy = RetryPolicy(backoff_fn=constant_backoff(0.25))
        assert policy.delay_for(1) == policy.delay_for(7) == 0.25

    @pytest.mark.parametrize("max_attempts", [0, -1, 1.5])
    def test_invalid_max_attempts(self, max_attempts):
        with pytest.raises(ServiceError) as exc_info:
            RetryPolicy(max_attempts=max_attempts)
        assert exc_info.value.code == ErrorCode.INVALID_RETRY_POLICY

    def test_negative_base_delay(self):
        with pytest.raises(ServiceError):
            RetryPolicy(base_delay=-1)

    def test_retry_if(self):
        policy = RetryPolicy(retry_if=lambda e: isinstance(e, ConnectionError))
        assert policy.should_retry(ConnectionError()) is True
        assert policy.should_retry(ValueError()) is False


# =============================================================================
# Retry Executor Tests
# =============================================================================

class TestRetryExecutor:
    """Tests for RetryExecutor."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, executor, sleep):
        operation = AsyncMock(return_value="ok")

        result = await executor.execute(operation)

        assert result == "ok"
        assert operation.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_always_failing_is_invoked_max_attempts_times(self, executor, sleep):
        failure = ConnectionError("node unreachable")
        operation = AsyncMock(side_effect=failure)

        with pytest.raises(ConnectionError) as exc_info:
            await executor.execute(operation)

        assert exc_info.value is failure
        assert operation.call_count == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_returns_value_of_first_success(self, executor, sleep):
        operation = AsyncMock(side_effect=[ConnectionError("blip"), "second", "third"])

        result = await executor.execute(operation)

        assert result == "second"
        assert operation.call_count == 2
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_single_attempt_policy_never_sleeps(self, executor, sleep):
        operation = AsyncMock(side_effect=RuntimeError("nope"))

        with pytest.raises(RuntimeError):
            await executor.execute(operation, RetryPolicy(max_attempts=1))

        assert operation.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_sync_operation(self, executor):
        operation = MagicMock(side_effect=[ValueError("first"), 42])

        assert await executor.execute(operation) == 42

    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_immediately(self, executor, sleep):
        operation = AsyncMock(side_effect=ValueError("execution reverted"))
        policy = RetryPolicy(retry_if=is_transient)

        with pytest.raises(ValueError):
            await executor.execute(operation, policy)

        assert operation.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_wrap_errors_chains_original(self, executor):
        cause = RuntimeError("upstream 502")
        policy = RetryPolicy(max_attempts=2, base_delay=0, wrap_errors=True)

        with pytest.raises(ServiceError) as exc_info:
            await executor.execute(AsyncMock(side_effect=cause), policy, "getListing")

        error = exc_info.value
        assert error.code == ErrorCode.OPERATION_FAILED
        assert error.original_error is cause
        assert error.details["attempts"] == 2
        assert error.details["operation"] == "getListing"

    @pytest.mark.asyncio
    async def test_wrap_errors_leaves_service_errors_alone(self, executor):
        cause = ServiceError("rpc said no", code=ErrorCode.RPC_ERROR)
        policy = RetryPolicy(max_attempts=2, base_delay=0, wrap_errors=True)

        with pytest.raises(ServiceError) as exc_info:
            await executor.execute(AsyncMock(side_effect=cause), policy)

        assert exc_info.value is cause

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self, executor):
        operation = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await executor.execute(operation)

        assert operation.call_count == 1

    @pytest.mark.asyncio
    async def test_execute_read(self, executor):
        assert await executor.execute_read(AsyncMock(return_value=7)) == 7


class TestIdempotentWrites:
    """Tests for execute_write deduplication."""

    @pytest.mark.asyncio
    async def test_requires_key(self, executor):
        with pytest.raises(ServiceError) as exc_info:
            await executor.execute_write(AsyncMock(), "")
        assert exc_info.value.code == ErrorCode.INVALID_RETRY_POLICY

    @pytest.mark.asyncio
    async def test_completed_write_is_not_repeated(self, executor):
        operation = AsyncMock(return_value="0xhash")

        first = await executor.execute_write(operation, "purchase-7")
        second = await executor.execute_write(operation, "purchase-7")

        assert first == second == "0xhash"
        assert operation.call_count == 1
        assert executor.has_completed("purchase-7")

    @pytest.mark.asyncio
    async def test_concurrent_writes_share_one_submission(self, executor):
        started = asyncio.Event()

        async def submit():
            started.set()
            await asyncio.sleep(0)
            return "0xhash"

        operation = AsyncMock(side_effect=submit)

        results = await asyncio.gather(
            executor.execute_write(operation, "purchase-8"),
            executor.execute_write(operation, "purchase-8"),
        )

        assert results == ["0xhash", "0xhash"]
        assert operation.call_count == 1

    @pytest.mark.asyncio
    async def test_failed_write_is_not_recorded(self, executor):
        operation = AsyncMock(side_effect=ConnectionError("down"))

        with pytest.raises(ConnectionError):
            await executor.execute_write(operation, "purchase-9")

        assert not executor.has_completed("purchase-9")

    @pytest.mark.asyncio
    async def test_forget(self, executor):
        operation = AsyncMock(side_effect=["0xa", "0xb"])

        await executor.execute_write(operation, "k")
        executor.forget("k")

        assert await executor.execute_write(operation, "k") == "0xb"

    @pytest.mark.asyncio
    async def test_key_locks_are_dropped_when_idle(self, executor):
        for n in range(50):
            await executor.execute_write(AsyncMock(return_value=f"0x{n}"), f"order-{n}")

        with pytest.raises(ConnectionError):
            await executor.execute_write(AsyncMock(side_effect=ConnectionError("down")), "order-failed")

        assert executor._write_locks == {}

    @pytest.mark.asyncio
    async def test_recorded_writes_are_bounded(self, sleep):
        executor = RetryExecutor(sleep=sleep, max_recorded_writes=2)

        for key in ("a", "b", "c"):
            await executor.execute_write(AsyncMock(return_value=key), key)

        assert len(executor._write_results) == 2
        assert not executor.has_completed("a")
        assert executor.has_completed("b")
        assert executor.has_completed("c")

        # The evicted key is submitted again
        operation = AsyncMock(return_value="a2")
        assert await executor.execute_write(operation, "a") == "a2"
        assert operation.call_count == 1

    @pytest.mark.asyncio
    async def test_recorded_write_expires(self, sleep):
        now = [1000.0]
        executor = RetryExecutor(sleep=sleep, write_result_ttl=60, clock=lambda: now[0])
        operation = AsyncMock(side_effect=["0xa", "0xb"])

        assert await executor.execute_write(operation, "k") == "0xa"
        now[0] += 59
        assert await executor.execute_write(operation, "k") == "0xa"
        now[0] += 1

        assert executor.has_completed("k") is False
        assert await executor.execute_write(operation, "k") == "0xb"
        assert operation.call_count == 2


class TestConvenienceFunction:
    """Tests for execute_with_retry."""

    @pytest.mark.asyncio
    async def test_execute_with_retry(self):
        operation = AsyncMock(side_effect=[TimeoutError(), "done"])

        result = await execute_with_retry(operation, max_attempts=3, base_delay=0)

        assert result == "done"
        assert operation.call_count == 2
