"""
Backend readiness probe.

The backend may be cold-starting when the client launches; the probe polls
a cheap endpoint a fixed number of times and then gives up for good until
a manual retry is requested.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

from ..exceptions import BackendUnavailable

logger = logging.getLogger(__name__)


class HealthChecker(Protocol):
    async def check_health(self) -> bool:
        ...


class ReadinessState(Enum):
    """Readiness of the backend as seen by the client."""
    IDLE = "idle"
    CHECKING = "checking"
    READY = "ready"
    UNAVAILABLE = "unavailable"


class ReadinessProbe:
    """Polls the backend until it answers or the attempts run out."""

    def __init__(
        self,
        checker: HealthChecker,
        max_attempts: int = 60,
        interval: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("health.max_attempts must be at least 1")
        if interval < 0:
            raise ValueError("health.interval must be non-negative")
        self.checker = checker
        self.max_attempts = max_attempts
        self.interval = interval
        self._sleep = sleep
        self.state = ReadinessState.IDLE
        self.attempts = 0

    @property
    def is_ready(self) -> bool:
        return self.state is ReadinessState.READY

    async def wait_until_ready(self) -> bool:
        """
        Poll until ready. Returns False once the backend is declared
        unavailable; no further polling happens after that.
        """
        if self.state is ReadinessState.READY:
            return True
        if self.state is ReadinessState.UNAVAILABLE:
            return False

        self.state = ReadinessState.CHECKING
        self.attempts = 0
        while self.attempts < self.max_attempts:
            if await self.checker.check_health():
                self.state = ReadinessState.READY
                logger.info(f"Backend ready after {self.attempts + 1} check(s)")
                return True

            self.attempts += 1
            if self.attempts < self.max_attempts:
                await self._sleep(self.interval)

        self.state = ReadinessState.UNAVAILABLE
        logger.error(
            f"Backend failed to start within "
            f"{self.max_attempts * self.interval:.0f}s ({self.max_attempts} checks)"
        )
        return False

    async def retry(self) -> bool:
        """Manual retry after the backend was declared unavailable."""
        self.state = ReadinessState.IDLE
        return await self.wait_until_ready()

    def require_ready(self) -> None:
        if self.state is ReadinessState.UNAVAILABLE:
            raise BackendUnavailable(
                "Backend is unavailable", operation="health_check"
            )
