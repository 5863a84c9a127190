"""
Copyright (c) 2025 Eric C. Mumford (@heymumford)
This file is part of TestRelay, licensed under the MIT License.
See LICENSE file for details.
"""

"""
Batch execution of independent asynchronous operations.

Operations are zero-argument coroutine factories. The executor splits them
into fixed-size chunks, runs them on the current event loop with a cap on how
many are in flight and a sliding-window cap on how many start per interval,
retries failures with a fixed delay and reports progress as each one settles.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any, Generic, TypeVar

from testrelay.core.config import BatchConfig
from testrelay.core.logging import get_logger
from testrelay.exceptions import BatchExecutionError, TestRelayError
from testrelay.rate_limiter import SlidingWindowRateLimiter

logger = get_logger("testrelay.batch_executor")

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
ProgressCallback = Callable[[int, int], None]


@dataclass(frozen=True)
class BatchPolicy:
    """Concurrency, throttling and retry settings for one batch."""

    concurrency_limit: int = 5
    throttle_limit: int = 2
    throttle_interval: float = 1.0
    batch_size: int = 10
    retry_attempts: int = 3
    retry_delay: float = 1.0

    def __post_init__(self):
        if self.concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.retry_attempts < 0:
            raise ValueError("retry_attempts cannot be negative")

    @classmethod
    def from_config(cls, config: BatchConfig, throttle_limit: int | None = None) -> "BatchPolicy":
        """Build a policy from settings, optionally overriding the throttle cap of an integration."""
        return cls(
            concurrency_limit=config.concurrency_limit,
            throttle_limit=throttle_limit or config.throttle_limit,
            throttle_interval=config.throttle_interval,
            batch_size=config.batch_size,
            retry_attempts=config.retry_attempts,
            retry_delay=config.retry_delay,
        )


@dataclass
class OperationResult(Generic[T]):
    """Outcome of one operation after all of its attempts."""

    index: int
    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0

    @property
    def success(self) -> bool:
        return self.error is None


def is_retryable(error: BaseException) -> bool:
    """TestRelay errors declare retryability; anything else is assumed transient."""
    if isinstance(error, TestRelayError):
        return error.retryable
    return True


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


class BatchExecutor:
    """
    Run operations under a concurrency cap, a rate limit and a retry policy.

    A fresh executor, with its own rate limiter, is created for every pull or
    push pass so passes never share throttle state.
    """

    def __init__(
        self,
        policy: BatchPolicy | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "batch",
    ):
        self.policy = policy or BatchPolicy()
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(
            self.policy.throttle_limit, self.policy.throttle_interval
        )
        self.name = name
        self._sleep = sleep
        self.chunks_processed = 0
        self.attempts_made = 0

    async def run(
        self,
        operations: Sequence[Operation[T]],
        progress_callback: ProgressCallback | None = None,
    ) -> list[T]:
        """
        Execute all operations and return their results in input order.

        Raises:
            BatchExecutionError: When any operation still fails after its retries.
                Every operation has settled by then; the error carries all
                failures and the partial results.
        """
        settled = await self.run_settled(operations, progress_callback)
        failures = {result.index: result.error for result in settled if not result.success}
        if failures:
            raise BatchExecutionError(
                failures, [result.value for result in settled], total=len(settled)
            )
        return [result.value for result in settled]

    async def run_settled(
        self,
        operations: Sequence[Operation[T]],
        progress_callback: ProgressCallback | None = None,
    ) -> list[OperationResult[T]]:
        """Execute all operations and return one OperationResult per operation, in input order."""
        total = len(operations)
        if total == 0:
            return []

        results: list[OperationResult[T] | None] = [None] * total
        semaphore = asyncio.Semaphore(self.policy.concurrency_limit)
        completed = 0

        def settle(result: OperationResult[T]) -> None:
            nonlocal completed
            results[result.index] = result
            completed += 1
            if progress_callback is not None:
                progress_callback(completed, total)

        async def run_one(index: int, operation: Operation[T]) -> None:
            async with semaphore:
                settle(await self._attempt(index, total, operation))

        chunks = chunk(list(operations), self.policy.batch_size)
        offsets = range(0, total, self.policy.batch_size)
        await asyncio.gather(
            *(
                self.process_chunk(offset, ops, run_one)
                for offset, ops in zip(offsets, chunks, strict=True)
            )
        )

        failed = sum(1 for result in results if result is not None and not result.success)
        logger.debug(
            f"{self.name}: {total - failed} of {total} operations succeeded",
            context={"chunks": len(chunks), "failed": failed},
        )
        return results  # type: ignore[return-value]

    async def process_chunk(
        self,
        offset: int,
        operations: list[Operation[T]],
        run_one: Callable[[int, Operation[T]], Awaitable[None]],
    ) -> None:
        """Run one chunk; `offset` is the input index of its first operation."""
        self.chunks_processed += 1
        await asyncio.gather(*(run_one(offset + i, op) for i, op in enumerate(operations)))

    async def _attempt(self, index: int, total: int, operation: Operation[T]) -> OperationResult[T]:
        max_attempts = self.policy.retry_attempts + 1
        attempt = 0
        while True:
            await self.rate_limiter.acquire()
            attempt += 1
            self.attempts_made += 1
            try:
                value = await operation()
            except Exception as e:
                if attempt >= max_attempts or not is_retryable(e):
                    return OperationResult(index=index, error=e, attempts=attempt)
                logger.warning(
                    f"{self.name}: operation {index + 1}/{total} failed, "
                    f"retrying (attempt {attempt + 1} of {max_attempts}): {e}",
                )
                await self._sleep(self.policy.retry_delay)
            else:
                return OperationResult(index=index, value=value, attempts=attempt)


def run_batch(
    operations: Sequence[Operation[Any]],
    policy: BatchPolicy | None = None,
    progress_callback: ProgressCallback | None = None,
) -> Awaitable[list[Any]]:
    """Convenience wrapper running operations through a fresh executor."""
    return BatchExecutor(policy).run(operations, progress_callback)


ExecutorFactory = Callable[[int | None], BatchExecutor]


def executor_factory(
    config: BatchConfig,
    throttle_cap: int | None = None,
    throttle_interval: float | None = None,
    name: str = "batch",
) -> ExecutorFactory:
    """
    Return a factory producing one fresh executor per pass.

    The factory takes an optional per-endpoint throttle limit that replaces
    ``throttle_cap`` for that pass.
    """

    def create(throttle_limit: int | None = None) -> BatchExecutor:
        policy = BatchPolicy.from_config(config, throttle_limit or throttle_cap)
        if throttle_interval is not None:
            policy = replace(policy, throttle_interval=throttle_interval)
        return BatchExecutor(policy, name=name)

    return create
