# chatstream/history/models.py
from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from chatstream.streaming.models import ImageRef

Role = Literal["human", "ai"]

DEFAULT_TITLE = "New Chat"
MAX_TITLE_LENGTH = 40


def generate_title(message: str) -> str:
    """Conversation title from the first human message."""
    cleaned = message.strip().replace("\n", " ")
    if len(cleaned) <= MAX_TITLE_LENGTH:
        return cleaned
    return cleaned[:MAX_TITLE_LENGTH - 3] + "..."


class Message(BaseModel):
    """
    One conversation message. Content, agent and images of an AI message
    change only while its response is streaming.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Role
    content: str = ""
    agent: str | None = None
    images: list[ImageRef] = Field(default_factory=list)
    final_report: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ChatSession(BaseModel):
    """
    Persisted conversation bound to one backend session.
    """
    id: str
    title: str = DEFAULT_TITLE
    messages: list[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    user_id: str
    app_name: str
