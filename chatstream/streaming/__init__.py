"""
Streaming response ingestion.

This package contains:
- SSE framing over arbitrarily chunked byte streams
- Tolerant event extraction for agent pipeline envelopes
- Per-message accumulation state machine
- Cooperative cancellation
"""

from __future__ import annotations

from .accumulator import MessageAccumulator, apply_event
from .agents import AGENT_TITLES, FINAL_REPORT_AGENT, agent_title
from .cancellation import CancellationController, CancellationToken
from .extractor import EventExtractor
from .models import (
    AccumulatorState,
    ImageRef,
    MessageSnapshot,
    NormalizedEvent,
    TimelineEvent,
    TimelineKind,
    Transition,
)
from .parser import SSEFrameReader

__all__ = [
    "AGENT_TITLES",
    "FINAL_REPORT_AGENT",
    "AccumulatorState",
    "CancellationController",
    "CancellationToken",
    "EventExtractor",
    "ImageRef",
    "MessageAccumulator",
    "MessageSnapshot",
    "NormalizedEvent",
    "SSEFrameReader",
    "TimelineEvent",
    "TimelineKind",
    "Transition",
    "agent_title",
    "apply_event",
]
