"""
HTTP client for the agent backend: session creation, run dispatch and
readiness checks.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

import httpx
from pydantic import ValidationError

from ..exceptions import BackendHTTPError
from ..logging_utils import log_operation, wrap_backend_errors
from .models import RunRequest, SessionHandle

REQUIRED_KEYS = [
    "base_url", "app_name", "user_id", "session_path", "run_path",
    "connect_timeout", "read_timeout",
]

logger = logging.getLogger(__name__)


class BackendClient:
    """HTTP client for the agent backend with streaming run support."""

    def __init__(
        self,
        config: dict[str, Any],
        health_path: str = "/docs",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        for key in REQUIRED_KEYS:
            if key not in config:
                raise ValueError(
                    f"Required backend configuration parameter '{key}' not found. "
                    "All backend parameters must be explicitly configured."
                )

        self.config: dict[str, Any] = config
        self.health_path = health_path
        self.client: httpx.AsyncClient = httpx.AsyncClient(
            base_url=config["base_url"],
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(
                config["read_timeout"], connect=config["connect_timeout"]
            ),
            transport=transport,
        )

    def session_url(self, session_id: str) -> str:
        return self.config["session_path"].format(
            app_name=self.config["app_name"],
            user_id=self.config["user_id"],
            session_id=session_id,
        )

    @wrap_backend_errors("create_session")
    @log_operation("create_session")
    async def create_session(self) -> SessionHandle:
        """Create a backend session under a freshly generated id."""
        generated_id = str(uuid.uuid4())
        response = await self.client.post(self.session_url(generated_id))

        if not response.is_success:
            raise BackendHTTPError(
                f"Failed to create session: {response.status_code} "
                f"{response.reason_phrase}",
                operation="create_session",
                status_code=response.status_code,
                response_data={"body": response.text[:500]},
            )

        try:
            handle = SessionHandle.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise BackendHTTPError(
                f"Unexpected session response format: {e!s}",
                operation="create_session",
                status_code=response.status_code,
            ) from e

        logger.info(
            f"Session created: user={handle.user_id} session={handle.session_id} "
            f"app={handle.app_name}"
        )
        return handle

    @wrap_backend_errors("start_run")
    @log_operation("start_run")
    async def start_run(self, request: RunRequest) -> httpx.Response:
        """
        Send a run request and return the open streaming response.

        The caller owns the response and must close it.
        """
        http_request = self.client.build_request(
            "POST", self.config["run_path"], json=request.to_payload()
        )
        response = await self.client.send(http_request, stream=True)

        if not response.is_success:
            error_text = await response.aread()
            await response.aclose()
            raise BackendHTTPError(
                f"Failed to send message: {response.status_code} "
                f"{response.reason_phrase}",
                operation="start_run",
                status_code=response.status_code,
                response_data={"body": error_text[:500].decode(errors="replace")},
            )

        content_type = response.headers.get("content-type", "")
        if "event-stream" not in content_type:
            logger.debug(f"Run response content-type is {content_type!r}")
        return response

    async def check_health(self) -> bool:
        """Single readiness check; any failure counts as not ready."""
        try:
            response = await self.client.get(self.health_path)
            return response.is_success
        except httpx.HTTPError as e:
            logger.debug(f"Backend not ready yet: {e}")
            return False

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> BackendClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()
