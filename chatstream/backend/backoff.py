"""
Retry with exponential backoff and an overall deadline.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..exceptions import OperationCancelled, TimeoutExceeded
from ..streaming.cancellation import CancellationToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BackoffExecutor:
    """
    Retries an async operation until it succeeds, attempts run out or the
    deadline passes.

    Any exception is retryable. The delay after failed attempt n (0-indexed)
    is min(initial_delay * 2**n, max_delay) seconds. Before each attempt the
    elapsed time since the first attempt is checked against max_duration
    and TimeoutExceeded is raised once it is exceeded.
    """

    def __init__(
        self,
        max_attempts: int = 10,
        max_duration: float = 120.0,
        initial_delay: float = 1.0,
        max_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if max_duration <= 0:
            raise ValueError("max_duration must be positive")
        if initial_delay < 0:
            raise ValueError("initial_delay must be non-negative")
        if max_delay < initial_delay:
            raise ValueError("max_delay must be >= initial_delay")

        self.max_attempts = max_attempts
        self.max_duration = max_duration
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_config(cls, retry_config: dict[str, Any], **kwargs: Any) -> BackoffExecutor:
        """Build an executor from the `retry` configuration section."""
        return cls(
            max_attempts=retry_config["max_attempts"],
            max_duration=retry_config["max_duration"],
            initial_delay=retry_config["initial_delay"],
            max_delay=retry_config["max_delay"],
            **kwargs,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds after failed attempt `attempt` (0-indexed)."""
        return min(self.initial_delay * (2 ** attempt), self.max_delay)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        token: CancellationToken | None = None,
        description: str = "operation",
    ) -> T:
        """
        Run `operation` with retries.

        Raises:
            TimeoutExceeded: If the deadline passed before an attempt.
            OperationCancelled: If `token` was cancelled.
            Exception: The last error once all attempts failed.
        """
        start_time = self._clock()
        last_error: Exception | None = None

        for attempt in range(self.max_attempts):
            elapsed = self._clock() - start_time
            if elapsed > self.max_duration:
                raise TimeoutExceeded(
                    f"Retry timeout after {self.max_duration}s "
                    f"({attempt} attempts): {last_error}",
                    max_duration=self.max_duration,
                    attempts=attempt,
                    operation=description,
                ) from last_error

            if token is not None:
                token.raise_if_cancelled()

            try:
                return await operation()
            except OperationCancelled:
                raise
            except Exception as e:
                last_error = e
                if attempt + 1 >= self.max_attempts:
                    logger.error(
                        f"{description} failed after {self.max_attempts} attempts: {e}"
                    )
                    raise

                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description}: attempt {attempt + 1} failed: {e}. "
                    f"Retrying in {delay}s..."
                )
                if token is not None:
                    await token.guard(self._sleep(delay))
                else:
                    await self._sleep(delay)

        # Unreachable: the loop either returns or raises
        raise RuntimeError("BackoffExecutor exhausted without result")
