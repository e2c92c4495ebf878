"""
Retry Executor

Runs any zero-argument remote operation (read or write) with a bounded
number of strictly sequential attempts and an increasing delay between them.
"""

import asyncio
import inspect
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from .errors import ErrorCode, ServiceError
from .strategies import DEFAULT_RETRY_POLICY, RetryPolicy

T = TypeVar("T")

Operation = Callable[[], Union[T, Awaitable[T]]]
SleepFn = Callable[[float], Awaitable[Any]]


@dataclass
class _KeyLock:
    lock: asyncio.Lock
    users: int = 0


@dataclass
class _WriteRecord:
    result: Any
    expires_at: float


class RetryExecutor:
    """
    Executes operations with retry and backoff.

    The backoff suspends only the task running the retry sequence. Whether
    re-invoking an operation is safe is the caller's concern; state-changing
    submissions go through ``execute_write`` with an idempotency key.

    Completed writes are remembered for ``write_result_ttl`` seconds, at most
    ``max_recorded_writes`` of them, oldest evicted first.
    """

    def __init__(
        self,
        default_policy: Optional[RetryPolicy] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Optional[SleepFn] = None,
        max_recorded_writes: int = 1024,
        write_result_ttl: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_policy = default_policy or DEFAULT_RETRY_POLICY
        self.logger = logger or logging.getLogger(__name__)
        self._sleep = sleep or asyncio.sleep
        self.max_recorded_writes = max(1, max_recorded_writes)
        self.write_result_ttl = write_result_ttl
        self._clock = clock

        self._write_locks: Dict[str, _KeyLock] = {}
        self._write_results: "OrderedDict[str, _WriteRecord]" = OrderedDict()

    async def execute(
        self,
        operation: Operation[T],
        policy: Optional[RetryPolicy] = None,
        operation_name: str = "operation",
    ) -> T:
        """
        Invoke ``operation`` until it succeeds or ``policy.max_attempts`` is reached.

        Returns the first successful result. On exhaustion the last failure is
        re-raised as-is, or as a chained ServiceError when the policy asks for
        uniform errors.
        """
        policy = policy or self.default_policy
        attempt = 1

        while True:
            try:
                return await _invoke(operation)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                retryable = policy.should_retry(e)
                if not retryable or attempt >= policy.max_attempts:
                    if retryable:
                        self.logger.error(f"{operation_name} failed after {attempt} attempts: {e}")
                    else:
                        self.logger.error(f"{operation_name} failed with non-retryable error: {e}")
                    if policy.wrap_errors and not isinstance(e, ServiceError):
                        raise self._wrap(e, operation_name, attempt) from e
                    raise

                delay = policy.delay_for(attempt)
                self.logger.warning(
                    f"{operation_name} attempt {attempt}/{policy.max_attempts} "
                    f"failed: {e}. Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
                attempt += 1

    async def execute_read(
        self,
        operation: Operation[T],
        policy: Optional[RetryPolicy] = None,
        operation_name: str = "read",
    ) -> T:
        """Retry a side-effect free query."""
        return await self.execute(operation, policy, operation_name)

    async def execute_write(
        self,
        operation: Operation[T],
        idempotency_key: str,
        policy: Optional[RetryPolicy] = None,
        operation_name: str = "write",
    ) -> T:
        """
        Retry a state-changing submission under a deduplication key.

        Calls sharing a key are serialized; once one succeeds its result is
        returned to every later call with that key and the operation is not
        invoked again.
        """
        if not idempotency_key:
            raise ServiceError(
                "Write operations require an idempotency key before they can be retried",
                code=ErrorCode.INVALID_RETRY_POLICY,
                details={"operation": operation_name},
            )

        entry = self._write_locks.get(idempotency_key)
        if entry is None:
            entry = self._write_locks[idempotency_key] = _KeyLock(asyncio.Lock())
        entry.users += 1
        try:
            async with entry.lock:
                record = self._recorded(idempotency_key)
                if record is not None:
                    self.logger.info(
                        f"{operation_name} already completed for key {idempotency_key}; returning recorded result"
                    )
                    return record.result

                result = await self.execute(operation, policy, operation_name)
                self._record(idempotency_key, result)
                return result
        finally:
            entry.users -= 1
            if entry.users == 0 and self._write_locks.get(idempotency_key) is entry:
                del self._write_locks[idempotency_key]

    def has_completed(self, idempotency_key: str) -> bool:
        return self._recorded(idempotency_key) is not None

    def forget(self, idempotency_key: str) -> None:
        """Drop a recorded write result so the key can be submitted again."""
        self._write_results.pop(idempotency_key, None)

    def _recorded(self, idempotency_key: str) -> Optional[_WriteRecord]:
        record = self._write_results.get(idempotency_key)
        if record is not None and self._clock() >= record.expires_at:
            del self._write_results[idempotency_key]
            return None
        return record

    def _record(self, idempotency_key: str, result: Any) -> None:
        self._write_results[idempotency_key] = _WriteRecord(result, self._clock() + self.write_result_ttl)
        self._write_results.move_to_end(idempotency_key)
        # Evict oldest if over max size
        while len(self._write_results) > self.max_recorded_writes:
            self._write_results.popitem(last=False)

    def _wrap(self, error: Exception, operation_name: str, attempts: int) -> ServiceError:
        return ServiceError.wrap(
            error,
            f"{operation_name} failed after {attempts} attempt(s)",
            ErrorCode.OPERATION_FAILED,
            attempts=attempts,
            operation=operation_name,
        )


async def _invoke(operation: Operation[T]) -> T:
    result = operation()
    if inspect.isawaitable(result):
        result = await result
    return result


async def execute_with_retry(
    operation: Operation[T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    operation_name: str = "operation",
) -> T:
    """
    Execute an operation with linear backoff.

    Simple wrapper for quick usage without configuring RetryExecutor.
    """
    executor = RetryExecutor()
    return await executor.execute(
        operation,
        RetryPolicy(max_attempts=max_attempts, base_delay=base_delay),
        operation_name,
    )
