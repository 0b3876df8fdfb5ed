# chatstream/history/repositories/sql_repo.py
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from chatstream.backend.models import SessionHandle
from chatstream.history.models import ChatSession, Message, generate_title
from chatstream.history.repositories.base import ChatSessionStore
from chatstream.streaming.models import ImageRef

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _serialize_images(images: Sequence[ImageRef]) -> str:
    return json.dumps([image.to_dict() for image in images])


def _deserialize_images(raw: str | None) -> list[ImageRef]:
    if not raw:
        return []
    return [ImageRef(**item) for item in json.loads(raw)]


class AsyncSqlSessionStore(ChatSessionStore):
    """
    SQLite implementation of ChatSessionStore.
    A single persistent connection is opened lazily and all access is
    serialized through one lock.
    """

    def __init__(
        self,
        db_path: str = "chat_sessions.db",
        clear_on_startup: bool = False,
    ):
        self.db_path = db_path
        self.clear_on_startup = clear_on_startup
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._connection_lock = asyncio.Lock()  # Serialize database access
        self._connection: aiosqlite.Connection | None = None

    @classmethod
    def from_config(cls, store_config: dict[str, Any]) -> AsyncSqlSessionStore:
        if "path" not in store_config:
            raise ValueError(
                "chat_store.path must be explicitly configured in config.yaml"
            )
        return cls(
            store_config["path"],
            clear_on_startup=store_config.get("clear_on_startup", False),
        )

    async def _initialize(self) -> None:
        """
        Create the schema the first time the store is touched.
        """
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return

            self._connection = await aiosqlite.connect(self.db_path)

            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute("PRAGMA foreign_keys=ON")
            # 30 second timeout
            await self._connection.execute("PRAGMA busy_timeout=30000")

            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS chat_sessions (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    app_name TEXT NOT NULL
                )
            """)
            await self._connection.execute("""
                CREATE TABLE IF NOT EXISTS chat_messages (
                    id TEXT NOT NULL,
                    session_id TEXT NOT NULL
                        REFERENCES chat_sessions(id) ON DELETE CASCADE,
                    seq INTEGER NOT NULL,
                    role TEXT NOT NULL,
                    content TEXT NOT NULL,
                    agent TEXT,
                    images TEXT NOT NULL,
                    final_report INTEGER NOT NULL DEFAULT 0,
                    timestamp TEXT NOT NULL,
                    PRIMARY KEY (session_id, id)
                )
            """)
            await self._connection.execute("""
                CREATE INDEX IF NOT EXISTS idx_messages_seq
                ON chat_messages(session_id, seq)
            """)
            await self._connection.commit()

            if self.clear_on_startup:
                logger.info("clear_on_startup=True, clearing all conversations")
                await self._connection.execute("DELETE FROM chat_messages")
                await self._connection.execute("DELETE FROM chat_sessions")
                await self._connection.commit()

            self._initialized = True

    def _require_connection(self) -> aiosqlite.Connection:
        if not self._connection:
            raise RuntimeError("Database connection not available")
        return self._connection

    async def close(self) -> None:
        """
        Close the persistent database connection.
        """
        if self._connection:
            await self._connection.close()
            self._connection = None
            self._initialized = False

    async def __aenter__(self) -> AsyncSqlSessionStore:
        """Open the store."""
        await self._initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the store."""
        await self.close()

    async def create_session(self, handle: SessionHandle) -> ChatSession:
        await self._initialize()
        conn = self._require_connection()

        session = ChatSession(
            id=handle.session_id,
            user_id=handle.user_id,
            app_name=handle.app_name,
        )
        async with self._connection_lock:
            await conn.execute("""
                INSERT OR IGNORE INTO chat_sessions (
                    id, title, created_at, updated_at, user_id, app_name
                ) VALUES (?, ?, ?, ?, ?, ?)
            """, (
                session.id,
                session.title,
                session.created_at.isoformat(),
                session.updated_at.isoformat(),
                session.user_id,
                session.app_name,
            ))
            await conn.commit()
        return session

    async def add_message(self, session_id: str, message: Message) -> None:
        await self._initialize()
        conn = self._require_connection()

        async with self._connection_lock:
            cursor = await conn.execute(
                "SELECT title FROM chat_sessions WHERE id = ?", (session_id,)
            )
            row = await cursor.fetchone()
            await cursor.close()
            if row is None:
                raise KeyError(f"Unknown chat session: {session_id}")

            cursor = await conn.execute("""
                SELECT COALESCE(MAX(seq), 0) + 1,
                       SUM(CASE WHEN role = 'human' THEN 1 ELSE 0 END)
                FROM chat_messages
                WHERE session_id = ?
            """, (session_id,))
            next_seq, human_count = await cursor.fetchone()
            await cursor.close()

            await conn.execute("""
                INSERT INTO chat_messages (
                    id, session_id, seq, role, content, agent, images,
                    final_report, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                message.id,
                session_id,
                next_seq,
                message.role,
                message.content,
                message.agent,
                _serialize_images(message.images),
                int(message.final_report),
                message.timestamp.isoformat(),
            ))

            title = row[0]
            if message.role == "human" and not human_count:
                title = generate_title(message.content)

            await conn.execute(
                "UPDATE chat_sessions SET title = ?, updated_at = ? WHERE id = ?",
                (title, _now(), session_id),
            )
            await conn.commit()

    async def upsert_message(
        self,
        session_id: str,
        message_id: str,
        content: str,
        agent: str | None,
        images: Sequence[ImageRef],
        final_report: bool = False,
    ) -> None:
        await self._initialize()
        conn = self._require_connection()

        images_str = _serialize_images(images)
        async with self._connection_lock:
            # Rows are only rewritten when a value differs, so redundant
            # calls leave both the message and updated_at untouched
            cursor = await conn.execute("""
                INSERT INTO chat_messages (
                    id, session_id, seq, role, content, agent, images,
                    final_report, timestamp
                )
                SELECT ?, ?, COALESCE(MAX(seq), 0) + 1, 'ai', ?, ?, ?, ?, ?
                FROM chat_messages WHERE session_id = ?
                ON CONFLICT(session_id, id) DO UPDATE SET
                    content = excluded.content,
                    agent = COALESCE(excluded.agent, chat_messages.agent),
                    images = excluded.images,
                    final_report = excluded.final_report
                WHERE chat_messages.content != excluded.content
                   OR chat_messages.agent IS NOT COALESCE(
                        excluded.agent, chat_messages.agent)
                   OR chat_messages.images != excluded.images
                   OR chat_messages.final_report != excluded.final_report
            """, (
                message_id,
                session_id,
                content,
                agent,
                images_str,
                int(final_report),
                _now(),
                session_id,
            ))
            changed = cursor.rowcount > 0
            await cursor.close()

            if changed:
                await conn.execute(
                    "UPDATE chat_sessions SET updated_at = ? WHERE id = ?",
                    (_now(), session_id),
                )
            await conn.commit()

    async def get_session(self, session_id: str) -> ChatSession | None:
        await self._initialize()
        conn = self._require_connection()

        async with self._connection_lock:
            cursor = await conn.execute("""
                SELECT id, title, created_at, updated_at, user_id, app_name
                FROM chat_sessions WHERE id = ?
            """, (session_id,))
            row = await cursor.fetchone()
            await cursor.close()
            if row is None:
                return None
            messages = await self._load_messages(conn, session_id)

        return self._row_to_session(row, messages)

    async def list_sessions(self) -> list[ChatSession]:
        await self._initialize()
        conn = self._require_connection()

        async with self._connection_lock:
            cursor = await conn.execute("""
                SELECT id, title, created_at, updated_at, user_id, app_name
                FROM chat_sessions
                ORDER BY updated_at DESC
            """)
            rows = list(await cursor.fetchall())
            await cursor.close()

            sessions = []
            for row in rows:
                messages = await self._load_messages(conn, row[0])
                sessions.append(self._row_to_session(row, messages))
        return sessions

    async def delete_session(self, session_id: str) -> bool:
        await self._initialize()
        conn = self._require_connection()

        async with self._connection_lock:
            await conn.execute(
                "DELETE FROM chat_messages WHERE session_id = ?", (session_id,)
            )
            cursor = await conn.execute(
                "DELETE FROM chat_sessions WHERE id = ?", (session_id,)
            )
            deleted = cursor.rowcount > 0
            await cursor.close()
            await conn.commit()
        return deleted

    async def clear_all(self) -> None:
        await self._initialize()
        conn = self._require_connection()

        async with self._connection_lock:
            await conn.execute("DELETE FROM chat_messages")
            await conn.execute("DELETE FROM chat_sessions")
            await conn.commit()
            logger.info("Removed every stored session")

    async def _load_messages(
        self, conn: aiosqlite.Connection, session_id: str
    ) -> list[Message]:
        cursor = await conn.execute("""
            SELECT id, role, content, agent, images, final_report, timestamp
            FROM chat_messages
            WHERE session_id = ?
            ORDER BY seq ASC
        """, (session_id,))
        rows = await cursor.fetchall()
        await cursor.close()

        return [
            Message(
                id=row[0],
                role=row[1],
                content=row[2],
                agent=row[3],
                images=_deserialize_images(row[4]),
                final_report=bool(row[5]),
                timestamp=datetime.fromisoformat(row[6]),
            )
            for row in rows
        ]

    @staticmethod
    def _row_to_session(row: Any, messages: list[Message]) -> ChatSession:
        return ChatSession(
            id=row[0],
            title=row[1],
            created_at=datetime.fromisoformat(row[2]),
            updated_at=datetime.fromisoformat(row[3]),
            user_id=row[4],
            app_name=row[5],
            messages=messages,
        )
