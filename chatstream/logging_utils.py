"""
Centralized logging and error handling utilities for the chat client.

This module provides decorators and helper functions to standardize logging
and error handling around backend operations and stream processing.

Features:
- Structured logging with contextual information
- Conversion of transport errors into backend errors
- Error classification for log records and user-facing messages
- Performance timing
"""

from __future__ import annotations

import functools
import json
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, ParamSpec, TypeVar

import httpx
import structlog
from pydantic import ValidationError

from .exceptions import (
    BackendConnectionError,
    BackendError,
    BackendHTTPError,
    OperationCancelled,
    TimeoutExceeded,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Type variables for generic decorators
P = ParamSpec("P")
T = TypeVar("T")
AsyncCallable = Callable[P, Awaitable[T]]

logger = structlog.get_logger(__name__)


class ErrorHandler:
    """Error classification with structured logging."""

    @staticmethod
    def classify_error(error: BaseException) -> str:
        """
        Classify an error into a logging category.

        Args:
            error: The exception to classify

        Returns:
            Error category name
        """
        if isinstance(error, OperationCancelled):
            return "cancelled"
        if isinstance(error, TimeoutExceeded | TimeoutError | httpx.TimeoutException):
            return "timeout_error"
        if isinstance(error, BackendHTTPError | httpx.HTTPStatusError):
            return "http_error"
        if isinstance(
            error, BackendConnectionError | httpx.TransportError | ConnectionError | OSError
        ):
            return "connection_error"
        if isinstance(error, json.JSONDecodeError):
            return "parse_error"
        if isinstance(error, ValidationError):
            return "validation_error"
        return "unknown_error"

    @staticmethod
    def describe_error(error: BaseException) -> str:
        """Short human-readable reason for `error`."""
        message = str(error)
        return message or type(error).__name__

    @staticmethod
    def log_error(
        error: BaseException,
        operation: str,
        context: dict[str, Any] | None = None,
    ) -> str:
        """Log `error` with its category and return the category."""
        category = ErrorHandler.classify_error(error)
        logger.error(
            "Operation failed",
            operation=operation,
            error_type=type(error).__name__,
            error_category=category,
            error_message=str(error),
            **(context or {}),
        )
        return category


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def log_operation(
    operation: str,
    *,
    log_result: bool = False,
    context: dict[str, Any] | None = None,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Wrap a backend call with debug records for start and finish, and a
    warning carrying the error category when it raises.

    Args:
        operation: Name of the backend call, e.g. "create_session"
        log_result: Whether to include the return value in the finish record
        context: Extra fields bound to every record
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            call_logger = logger.bind(
                operation=operation, function=func.__name__, **(context or {})
            )
            call_logger.debug("Backend call started")
            start = time.perf_counter()

            try:
                result = await func(*args, **kwargs)
            except OperationCancelled:
                call_logger.debug(
                    "Backend call cancelled", duration_ms=_elapsed_ms(start)
                )
                raise
            except Exception as e:
                call_logger.warning(
                    "Backend call failed",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    error_category=ErrorHandler.classify_error(e),
                    duration_ms=_elapsed_ms(start),
                )
                raise

            finished = {"result": result} if log_result else {}
            call_logger.debug(
                "Backend call finished", duration_ms=_elapsed_ms(start), **finished
            )
            return result

        return wrapper
    return decorator


def wrap_backend_errors(
    operation: str,
) -> Callable[[AsyncCallable[P, T]], AsyncCallable[P, T]]:
    """
    Decorator converting httpx transport errors into BackendConnectionError.

    Backend errors and cancellation pass through untouched.
    """
    def decorator(func: AsyncCallable[P, T]) -> AsyncCallable[P, T]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except (BackendError, OperationCancelled):
                raise
            except httpx.HTTPError as e:
                raise BackendConnectionError(
                    f"{operation} failed: {e!s}", operation=operation
                ) from e

        return wrapper
    return decorator


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
):
    """
    Log one user-level operation (such as a submission) from start to end.

    Yields the bound structlog logger. A cancelled operation is recorded at
    info level with its reason; any other exception is recorded as an error
    with its category and re-raised.
    """
    operation_logger = logger.bind(operation=operation, **(context or {}))
    operation_logger.info("Operation started")
    start = time.perf_counter()

    try:
        yield operation_logger
    except OperationCancelled as e:
        operation_logger.info(
            "Operation cancelled", reason=e.reason, duration_ms=_elapsed_ms(start)
        )
        raise
    except Exception as e:
        ErrorHandler.log_error(
            e, operation, {**(context or {}), "duration_ms": _elapsed_ms(start)}
        )
        raise
    operation_logger.info("Operation finished", duration_ms=_elapsed_ms(start))


class ContextualLogger:
    """structlog logger pinned to a fixed context, e.g. one message id."""

    def __init__(self, base_context: dict[str, Any] | None = None):
        self.base_context = dict(base_context or {})
        self._logger = logger.bind(**self.base_context)

    def bind(self, **context: Any) -> ContextualLogger:
        return ContextualLogger({**self.base_context, **context})

    def _emit(self, level: str, event: str, **fields: Any) -> None:
        getattr(self._logger, level)(event, **fields)

    debug = functools.partialmethod(_emit, "debug")
    info = functools.partialmethod(_emit, "info")
    warning = functools.partialmethod(_emit, "warning")
    error = functools.partialmethod(_emit, "error")
