"""
Wire models for the agent backend.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field


class SessionHandle(BaseModel):
    """Backend session identity, fixed for the lifetime of a conversation."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: str = Field(alias="userId")
    session_id: str = Field(alias="id")
    app_name: str = Field(alias="appName")


@dataclass(frozen=True)
class RunRequest:
    """Body of a run request for one user query."""
    session: SessionHandle
    query: str
    streaming: bool = False

    def to_payload(self) -> dict:
        return {
            "appName": self.session.app_name,
            "userId": self.session.user_id,
            "sessionId": self.session.session_id,
            "newMessage": {
                "parts": [{"text": self.query}],
                "role": "user",
            },
            "streaming": self.streaming,
        }
