from chatstream.history.repositories.base import ChatSessionStore
from chatstream.history.repositories.sql_repo import AsyncSqlSessionStore

__all__ = ["AsyncSqlSessionStore", "ChatSessionStore"]
