# chatstream/history/repositories/base.py
from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from chatstream.backend.models import SessionHandle
from chatstream.history.models import ChatSession, Message
from chatstream.streaming.models import ImageRef


class ChatSessionStore(Protocol):
    """
    Interface for storing and retrieving conversations.
    """

    async def create_session(self, handle: SessionHandle) -> ChatSession:
        """
        Register a conversation for a new backend session.
        """
        ...

    async def add_message(self, session_id: str, message: Message) -> None:
        """
        Append a message. The first human message names the conversation.
        """
        ...

    async def upsert_message(
        self,
        session_id: str,
        message_id: str,
        content: str,
        agent: str | None,
        images: Sequence[ImageRef],
        final_report: bool = False,
    ) -> None:
        """
        Overwrite content, agent and images of a message. Calling it again
        with the same values leaves the stored conversation unchanged.
        """
        ...

    async def get_session(self, session_id: str) -> ChatSession | None:
        ...

    async def list_sessions(self) -> list[ChatSession]:
        """
        Return all conversations, most recently updated first.
        """
        ...

    async def delete_session(self, session_id: str) -> bool:
        ...

    async def clear_all(self) -> None:
        ...

    async def close(self) -> None:
        ...
