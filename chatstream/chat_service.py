"""
Chat Service for the research chat client.

This module handles the business logic of one conversation:
- Lazy backend session bootstrap with retry/backoff
- Run dispatch and SSE ingestion into the in-flight AI message
- Republishing message snapshots to the conversation store and listeners
- User cancellation and error surfacing

Every event of a response stream goes through exactly one state
transition of the message accumulator; the store and the listeners only
read the snapshot that transition produced, in event order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from chatstream.backend.models import RunRequest, SessionHandle
from chatstream.exceptions import OperationCancelled
from chatstream.history.models import Message
from chatstream.logging_utils import ErrorHandler, operation_context
from chatstream.streaming.accumulator import MessageAccumulator
from chatstream.streaming.agents import INITIAL_AGENT_LABEL
from chatstream.streaming.cancellation import CancellationController, CancellationToken
from chatstream.streaming.extractor import EventExtractor
from chatstream.streaming.models import MessageSnapshot, TimelineEvent, Transition
from chatstream.streaming.parser import SSEFrameReader

logger = logging.getLogger(__name__)

ERROR_MESSAGE_PREFIX = "Sorry, there was an error processing your request: "


class SubmissionStatus(Enum):
    """Outcome of one submitted query."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SubmissionResult:
    status: SubmissionStatus
    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ConversationView:
    """Read-only projection handed to UI listeners."""
    messages: tuple[Message, ...]
    timelines: dict[str, tuple[TimelineEvent, ...]] = field(default_factory=dict)
    website_count: int = 0
    is_generating: bool = False
    session_id: str | None = None


ConversationListener = Callable[[ConversationView], None]


class ChatService:
    """
    Conversation orchestrator
    1. Takes your query
    2. Makes sure a backend session exists
    3. Streams the multi-agent response into one AI message
    4. Keeps the store and the UI in step with every event
    """

    class ChatServiceConfig(BaseModel):
        model_config = ConfigDict(arbitrary_types_allowed=True)

        client: Any  # BackendClient
        store: Any  # ChatSessionStore
        executor: Any  # BackoffExecutor
        extractor: Any = None  # EventExtractor
        probe: Any = None  # ReadinessProbe

    def __init__(self, service_config: ChatService.ChatServiceConfig):
        self.client = service_config.client
        self.store = service_config.store
        self.executor = service_config.executor
        self.extractor = service_config.extractor or EventExtractor()
        self.probe = service_config.probe

        self._session: SessionHandle | None = None
        self._messages: list[Message] = []
        self._timelines: dict[str, list[TimelineEvent]] = {}
        self._website_count = 0
        self._generating = False
        # Bumped whenever the current conversation is replaced
        self._generation = 0
        self._cancellation = CancellationController()
        self._listeners: list[ConversationListener] = []

    # ------------------------------------------------------------------ #
    # Read side                                                          #
    # ------------------------------------------------------------------ #

    @property
    def session(self) -> SessionHandle | None:
        return self._session

    @property
    def is_generating(self) -> bool:
        return self._generating

    def view(self) -> ConversationView:
        return ConversationView(
            messages=tuple(self._messages),
            timelines={
                message_id: tuple(events)
                for message_id, events in self._timelines.items()
            },
            website_count=self._website_count,
            is_generating=self._generating,
            session_id=self._session.session_id if self._session else None,
        )

    def add_listener(self, listener: ConversationListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.view()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                # A broken view must not abort the stream feeding it
                logger.exception("Conversation listener failed")

    # ------------------------------------------------------------------ #
    # Submission                                                         #
    # ------------------------------------------------------------------ #

    async def submit(self, query: str) -> SubmissionResult:
        """
        Send `query` and stream the response into a new AI message.

        Only one submission runs at a time; a query sent while another is
        generating is rejected.
        """
        if not query.strip():
            return SubmissionResult(SubmissionStatus.REJECTED, error="empty query")
        if self._generating:
            logger.warning("Rejecting submission while a response is generating")
            return SubmissionResult(
                SubmissionStatus.REJECTED, error="a response is already generating"
            )

        token = self._cancellation.begin()
        generation = self._generation
        self._generating = True

        user_message = Message(role="human", content=query)
        ai_message = Message(role="ai", content="", agent=INITIAL_AGENT_LABEL)
        self._messages.extend([user_message, ai_message])
        self._timelines[ai_message.id] = []
        self._notify()

        accumulator = MessageAccumulator(ai_message.id)
        context = {"message_id": ai_message.id}

        try:
            async with operation_context("submit", context=context):
                if self.probe is not None:
                    self.probe.require_ready()

                handle = await self._ensure_session(token)
                await self.store.add_message(handle.session_id, user_message)
                await self.store.add_message(handle.session_id, ai_message)

                await self._stream_response(handle, query, accumulator, token)
                await self._finalize(accumulator)

            return SubmissionResult(SubmissionStatus.COMPLETED, ai_message.id)

        except OperationCancelled:
            # Not an error: keep whatever was accumulated so far
            logger.info("Request aborted by user")
            return await self._cancelled(accumulator, ai_message.id, generation)

        except Exception as e:
            if token.cancelled or generation != self._generation:
                # Raised while a stop was unwinding the request
                logger.info(f"Request stopped; dropping {type(e).__name__}: {e}")
                return await self._cancelled(accumulator, ai_message.id, generation)

            reason = ErrorHandler.describe_error(e)
            try:
                await self._finalize(accumulator)
                await self._append_error_message(reason)
            except Exception:
                logger.exception("Failed to record submission error")
            return SubmissionResult(SubmissionStatus.FAILED, ai_message.id, reason)

        finally:
            self._cancellation.release(token)
            self._generating = False
            self._notify()

    async def _cancelled(
        self, accumulator: MessageAccumulator, message_id: str, generation: int
    ) -> SubmissionResult:
        # A replaced conversation no longer holds the message
        if generation == self._generation:
            await self._finalize(accumulator)
        return SubmissionResult(SubmissionStatus.CANCELLED, message_id)

    def stop(self) -> bool:
        """Stop the in-flight response. Returns False if nothing was running."""
        return self._cancellation.stop()

    async def _ensure_session(self, token: CancellationToken) -> SessionHandle:
        """Create the backend session on first use and cache it."""
        if self._session is not None:
            return self._session

        logger.info("Creating new backend session...")
        handle = await self.executor.execute(
            lambda: token.guard(self.client.create_session()),
            token=token,
            description="create session",
        )
        self._session = handle
        await self.store.create_session(handle)
        return handle

    async def _stream_response(
        self,
        handle: SessionHandle,
        query: str,
        accumulator: MessageAccumulator,
        token: CancellationToken,
    ) -> None:
        request = RunRequest(session=handle, query=query)
        response = await self.executor.execute(
            lambda: token.guard(self.client.start_run(request)),
            token=token,
            description="run request",
        )

        reader = SSEFrameReader()
        try:
            async for raw_event in reader.iter_events(
                response.aiter_bytes(), token
            ):
                event = self.extractor.extract(raw_event)
                transition = accumulator.process(event)
                await self._apply_transition(transition)
        finally:
            await response.aclose()
            logger.debug(f"SSE stream closed: {reader.get_stats()}")

    # ------------------------------------------------------------------ #
    # Republishing                                                       #
    # ------------------------------------------------------------------ #

    async def _apply_transition(self, transition: Transition) -> None:
        state = transition.state
        changed = False

        if state.source_count > self._website_count:
            self._website_count = state.source_count
            changed = True

        if transition.timeline:
            self._timelines.setdefault(state.message_id, []).extend(
                transition.timeline
            )
            changed = True

        if (snapshot := transition.snapshot) is not None:
            await self._republish(snapshot)
        elif changed:
            self._notify()

    async def _republish(self, snapshot: MessageSnapshot) -> None:
        """Write `snapshot` to the message list, the store and listeners."""
        for index, message in enumerate(self._messages):
            if message.id == snapshot.message_id:
                self._messages[index] = message.model_copy(update={
                    "content": snapshot.content,
                    "agent": snapshot.agent,
                    "images": list(snapshot.images),
                    "final_report": snapshot.final_report,
                })
                break
        else:
            logger.warning(f"Snapshot for unknown message {snapshot.message_id}")
            return

        if self._session is not None:
            await self.store.upsert_message(
                self._session.session_id,
                snapshot.message_id,
                snapshot.content,
                snapshot.agent,
                snapshot.images,
                final_report=snapshot.final_report,
            )
        self._notify()

    async def _finalize(self, accumulator: MessageAccumulator) -> None:
        if accumulator.finalized:
            return
        await self._republish(accumulator.finalize())

    async def _append_error_message(self, reason: str) -> None:
        message = Message(role="ai", content=f"{ERROR_MESSAGE_PREFIX}{reason}")
        self._messages.append(message)
        if self._session is not None:
            await self.store.add_message(self._session.session_id, message)
        self._notify()

    # ------------------------------------------------------------------ #
    # Conversation management                                            #
    # ------------------------------------------------------------------ #

    def new_chat(self) -> None:
        """Forget the current conversation; the next submit starts a new one."""
        self.stop()
        self._generation += 1
        self._session = None
        self._messages = []
        self._timelines = {}
        self._website_count = 0
        self._notify()

    async def load_conversation(self, session_id: str) -> bool:
        """Switch to a stored conversation."""
        if self._generating:
            raise RuntimeError("Cannot switch conversations while generating")

        session = await self.store.get_session(session_id)
        if session is None:
            logger.warning(f"Conversation {session_id} not found")
            return False

        self._session = SessionHandle(
            user_id=session.user_id,
            session_id=session.id,
            app_name=session.app_name,
        )
        self._generation += 1
        self._messages = list(session.messages)
        self._timelines = {}
        self._website_count = 0
        self._notify()
        return True

    async def delete_conversation(self, session_id: str) -> bool:
        deleted = await self.store.delete_session(session_id)
        if self._session is not None and self._session.session_id == session_id:
            self.new_chat()
        return deleted
