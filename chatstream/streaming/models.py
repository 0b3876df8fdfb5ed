"""
Streaming dataclasses for event extraction and per-message accumulation.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from chatstream.streaming.agents import INITIAL_AGENT_LABEL


class TimelineKind(Enum):
    """Kinds of auxiliary timeline entries."""
    TEXT = "text"
    FUNCTION_CALL = "functionCall"
    FUNCTION_RESPONSE = "functionResponse"
    SOURCES = "sources"


@dataclass(frozen=True)
class ImageRef:
    """Image attached to an AI message, either by URL or inline base64 data."""
    url: str | None = None
    inline_data: str | None = None
    mime_type: str | None = None

    @property
    def is_renderable(self) -> bool:
        return bool(self.url or self.inline_data)

    def decoded(self) -> bytes | None:
        """Return the inline payload as raw bytes."""
        if self.inline_data is None:
            return None
        return base64.b64decode(self.inline_data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "inline_data": self.inline_data,
            "mime_type": self.mime_type,
        }


@dataclass(frozen=True)
class FunctionCall:
    """Function call part emitted by an agent."""
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str | None = None


@dataclass(frozen=True)
class FunctionResponse:
    """Function response part emitted by an agent."""
    name: str
    response: Any = None
    id: str | None = None


@dataclass(frozen=True)
class NormalizedEvent:
    """Structural record extracted from one SSE event payload."""
    text_parts: tuple[str, ...] = ()
    image_parts: tuple[ImageRef, ...] = ()
    agent: str = ""
    function_call: FunctionCall | None = None
    function_response: FunctionResponse | None = None
    final_report_with_citations: str | None = None
    source_count: int = 0
    sources: Any = None

    @classmethod
    def empty(cls) -> NormalizedEvent:
        return cls()

    @property
    def is_empty(self) -> bool:
        return self == NormalizedEvent()


@dataclass(frozen=True)
class TimelineEvent:
    """Append-only side-channel entry shown next to an AI message."""
    title: str
    kind: TimelineKind
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageSnapshot:
    """Consistent view of an AI message published after a state transition."""
    message_id: str
    content: str
    agent: str
    images: tuple[ImageRef, ...]
    final_report: bool = False


@dataclass(frozen=True)
class AccumulatorState:
    """
    Fold state for one in-flight AI message.

    Replaced, never mutated: each event produces a new state.
    `accumulated_text` and `accumulated_images` only grow and
    `source_count` never decreases.
    """
    message_id: str
    current_agent: str = ""
    agent_label: str = INITIAL_AGENT_LABEL
    accumulated_text: str = ""
    accumulated_images: tuple[ImageRef, ...] = ()
    source_count: int = 0
    final_report: bool = False
    final_content: str | None = None

    @property
    def content(self) -> str:
        """Text shown for the message; a final report supersedes the draft."""
        if self.final_content is not None:
            return self.final_content
        return self.accumulated_text

    def snapshot(self) -> MessageSnapshot:
        return MessageSnapshot(
            message_id=self.message_id,
            content=self.content,
            agent=self.agent_label,
            images=self.accumulated_images,
            final_report=self.final_report,
        )


@dataclass(frozen=True)
class Transition:
    """Result of applying one event to an accumulator state."""
    state: AccumulatorState
    timeline: tuple[TimelineEvent, ...] = ()
    republish: bool = False
    agent_changed: bool = False

    @property
    def snapshot(self) -> MessageSnapshot | None:
        if not self.republish:
            return None
        return self.state.snapshot()


@dataclass(frozen=True)
class ReaderStats:
    """Counters collected by the SSE frame reader."""
    bytes_received: int
    lines: int
    events: int
    comments: int
