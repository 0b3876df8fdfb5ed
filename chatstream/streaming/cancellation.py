"""
Cooperative cancellation for in-flight backend requests.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from ..exceptions import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    One-shot cancellation signal checked at every suspension point.

    `guard()` races an awaitable against the signal so that a pending
    network read or backoff sleep is interrupted as soon as `cancel()`
    is called.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "operation aborted") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "operation aborted")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await `awaitable` unless cancellation wins the race."""
        if self._event.is_set():
            # Close an unstarted coroutine so it is not reported as never awaited
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled()

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        done: set[asyncio.Future] = set()
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                # Whatever the interrupted work raises is superseded by cancellation
                await asyncio.gather(work, return_exceptions=True)

        if work in done:
            return work.result()
        raise OperationCancelled(self.reason or "operation aborted")


class CancellationController:
    """Holds the single live token of the current request."""

    def __init__(self) -> None:
        self._token: CancellationToken | None = None

    @property
    def active(self) -> bool:
        return self._token is not None

    def begin(self) -> CancellationToken:
        """Issue a fresh token for a new request."""
        if self._token is not None and not self._token.cancelled:
            logger.warning("Replacing live cancellation token of previous request")
        self._token = CancellationToken()
        return self._token

    def stop(self, reason: str = "stopped by user") -> bool:
        """Cancel the live request. Returns False when nothing was running."""
        token = self._token
        self._token = None
        if token is None:
            return False
        logger.info(f"Stopping in-flight request: {reason}")
        token.cancel(reason)
        return True

    def release(self, token: CancellationToken) -> None:
        """Forget `token` once its request has finished."""
        if self._token is token:
            self._token = None
