"""
Error types for backend communication and stream ingestion.

This module provides the error hierarchy used across the client:
- HTTP status failures with response context
- Transport failures (connection refused, reset, read errors)
- Retry deadline exhaustion
- Backend readiness failure
- User cancellation, kept apart from failures
"""

from __future__ import annotations

from typing import Any


class ChatStreamError(Exception):
    """Base error for the chat client."""


class BackendError(ChatStreamError):
    """Base backend error with request context."""

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        status_code: int | None = None,
        response_data: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code
        self.response_data = response_data or {}


class BackendHTTPError(BackendError):
    """Backend answered with a non-success status."""


class BackendConnectionError(BackendError):
    """Transport-level failure talking to the backend."""


class TimeoutExceeded(BackendError):
    """Retry deadline passed before the operation succeeded."""

    def __init__(
        self,
        message: str,
        max_duration: float,
        attempts: int,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.max_duration = max_duration
        self.attempts = attempts


class BackendUnavailable(BackendError):
    """Readiness probe exhausted its attempts."""


class OperationCancelled(ChatStreamError):
    """The operation was aborted by the user. Not a failure."""

    def __init__(self, reason: str = "operation aborted"):
        super().__init__(reason)
        self.reason = reason
