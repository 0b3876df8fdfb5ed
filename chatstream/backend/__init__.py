"""
Agent backend integration.

This package provides:
- HTTP client for session creation, run requests and readiness checks
- Exponential backoff executor with an overall deadline
- Readiness probe for cold-starting backends
"""

from __future__ import annotations

from .backoff import BackoffExecutor
from .client import BackendClient
from .health import ReadinessProbe, ReadinessState
from .models import RunRequest, SessionHandle

__all__ = [
    "BackendClient",
    "BackoffExecutor",
    "ReadinessProbe",
    "ReadinessState",
    "RunRequest",
    "SessionHandle",
]
