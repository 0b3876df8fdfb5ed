#!/usr/bin/env python3
"""
End-to-end tests for the chat service: session bootstrap, SSE ingestion,
republishing to the store and listeners, cancellation and error surfacing.

The backend is simulated with httpx.MockTransport; the store is a real
SQLite database in a temporary directory.
"""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from chatstream.backend.backoff import BackoffExecutor
from chatstream.backend.client import BackendClient
from chatstream.backend.health import ReadinessProbe
from chatstream.chat_service import (
    ERROR_MESSAGE_PREFIX,
    ChatService,
    SubmissionStatus,
)
from chatstream.history.repositories.sql_repo import AsyncSqlSessionStore
from chatstream.streaming.models import TimelineKind

BACKEND_CONFIG = {
    "base_url": "http://backend.test",
    "app_name": "app",
    "user_id": "u_999",
    "session_path": "/apps/{app_name}/users/{user_id}/sessions/{session_id}",
    "run_path": "/run_sse",
    "connect_timeout": 5.0,
    "read_timeout": 30.0,
}


def sse(payload: dict) -> bytes:
    return f"data: {json.dumps(payload)}\n\n".encode()


RESEARCH_STREAM = [
    sse({"author": "section_researcher", "content": {"parts": [{"text": "Hello "}]}}),
    sse({"author": "section_researcher", "content": {"parts": [{"text": "world"}]},
         "actions": {"stateDelta": {"url_to_short_id": {"u1": 1, "u2": 2}}}}),
    b"data: {not json\n\n",
    sse({"author": "report_composer_with_citations",
         "actions": {"stateDelta": {"final_report_with_citations": "FINAL"}}}),
]


class FakeBackend:
    """Routes session creation and run requests of the mock transport."""

    def __init__(self, stream=None, run_failures=0, run_status=503):
        self.stream = stream if stream is not None else RESEARCH_STREAM
        self.run_failures = run_failures
        self.run_status = run_status
        self.session_posts = 0
        self.run_bodies = []
        self.release = asyncio.Event()

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if "/sessions/" in request.url.path:
            self.session_posts += 1
            session_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(
                200, json={"userId": "u_999", "id": session_id, "appName": "app"}
            )

        if request.url.path == "/run_sse":
            self.run_bodies.append(json.loads(request.content))
            if self.run_failures:
                self.run_failures -= 1
                return httpx.Response(self.run_status, text="unavailable")
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=self._body(),
            )

        return httpx.Response(200)

    async def _body(self):
        for chunk in self.stream:
            if chunk is None:
                # Stall until released, like a long-running agent step
                await self.release.wait()
                continue
            yield chunk


async def _no_sleep(delay: float) -> None:
    return None


@pytest_asyncio.fixture
async def store(tmp_path):
    async with AsyncSqlSessionStore(str(tmp_path / "chat.db")) as session_store:
        yield session_store


def _service(backend: FakeBackend, store, max_attempts: int = 3, probe=None) -> ChatService:
    client = BackendClient(BACKEND_CONFIG, transport=httpx.MockTransport(backend.handler))
    return ChatService(ChatService.ChatServiceConfig(
        client=client,
        store=store,
        executor=BackoffExecutor(max_attempts=max_attempts, sleep=_no_sleep),
        probe=probe,
    ))


class TestStreaming:
    """Successful submissions."""

    @pytest.mark.asyncio
    async def test_research_stream_end_to_end(self, store):
        backend = FakeBackend()
        service = _service(backend, store)
        views = []
        service.add_listener(views.append)

        result = await service.submit("Tell me about SSE")

        assert result.status is SubmissionStatus.COMPLETED
        view = service.view()
        human, ai = view.messages
        assert human.content == "Tell me about SSE"
        assert ai.id == result.message_id
        assert ai.content == "FINAL"
        assert ai.agent == "Research Report"
        assert ai.final_report is True
        assert view.website_count == 2
        assert not view.is_generating

        kinds = [entry.kind for entry in view.timelines[ai.id]]
        assert kinds == [TimelineKind.TEXT, TimelineKind.TEXT]

        # Every republish reached the listeners in order
        contents = [v.messages[-1].content for v in views if len(v.messages) == 2]
        assert "Hello " in contents
        assert contents.index("Hello ") < contents.index("Hello world")
        assert contents.index("Hello world") < contents.index("FINAL")

        stored = await store.get_session(service.session.session_id)
        assert stored.title == "Tell me about SSE"
        assert [(m.role, m.content) for m in stored.messages] == [
            ("human", "Tell me about SSE"), ("ai", "FINAL"),
        ]
        assert stored.messages[1].agent == "Research Report"

        assert backend.run_bodies[0]["newMessage"] == {
            "parts": [{"text": "Tell me about SSE"}], "role": "user",
        }
        assert backend.run_bodies[0]["sessionId"] == service.session.session_id

    @pytest.mark.asyncio
    async def test_stream_without_final_report_is_flushed(self, store):
        backend = FakeBackend(stream=[
            sse({"author": "plan_generator", "content": {"parts": [{"text": "Plan A"}]}}),
            # No terminating blank line
            b'data: {"author": "plan_generator", "content": {"parts": [{"text": ", B"}]}}',
        ])
        service = _service(backend, store)

        result = await service.submit("plan")

        assert result.status is SubmissionStatus.COMPLETED
        stored = await store.get_session(service.session.session_id)
        assert stored.messages[-1].content == "Plan A, B"
        assert stored.messages[-1].agent == "📋 Strategy Planning"

    @pytest.mark.asyncio
    async def test_session_reused_across_submissions(self, store):
        backend = FakeBackend()
        service = _service(backend, store)

        await service.submit("first")
        session_id = service.session.session_id
        await service.submit("second")

        assert backend.session_posts == 1
        assert service.session.session_id == session_id
        assert len(service.view().messages) == 4

    @pytest.mark.asyncio
    async def test_new_chat_creates_new_session(self, store):
        backend = FakeBackend()
        service = _service(backend, store)

        await service.submit("first")
        first_session = service.session.session_id
        service.new_chat()
        assert service.view().messages == ()

        await service.submit("second")
        assert backend.session_posts == 2
        assert service.session.session_id != first_session
        assert len(await store.list_sessions()) == 2

    @pytest.mark.asyncio
    async def test_empty_query_rejected(self, store):
        service = _service(FakeBackend(), store)
        result = await service.submit("   ")
        assert result.status is SubmissionStatus.REJECTED
        assert service.view().messages == ()


class TestCancellation:
    """User stops a response mid-stream."""

    @pytest.mark.asyncio
    async def test_stop_keeps_partial_content(self, store):
        backend = FakeBackend(stream=[
            sse({"author": "section_researcher", "content": {"parts": [{"text": "Partial "}]}}),
            sse({"author": "section_researcher", "content": {"parts": [{"text": "answer"}]}}),
            None,
            sse({"author": "section_researcher", "content": {"parts": [{"text": " never"}]}}),
        ])
        service = _service(backend, store)
        streamed = asyncio.Event()

        def on_update(view):
            if view.messages and view.messages[-1].content == "Partial answer":
                streamed.set()

        service.add_listener(on_update)
        task = asyncio.create_task(service.submit("question"))
        await asyncio.wait_for(streamed.wait(), timeout=2.0)

        assert service.stop() is True
        result = await asyncio.wait_for(task, timeout=2.0)

        assert result.status is SubmissionStatus.CANCELLED
        messages = service.view().messages
        assert len(messages) == 2
        assert messages[-1].content == "Partial answer"
        assert not any(m.content.startswith(ERROR_MESSAGE_PREFIX) for m in messages)
        assert not service.is_generating

        stored = await store.get_session(service.session.session_id)
        assert stored.messages[-1].content == "Partial answer"

    @pytest.mark.asyncio
    async def test_concurrent_submit_rejected(self, store):
        backend = FakeBackend(stream=[
            sse({"author": "plan_generator", "content": {"parts": [{"text": "x"}]}}),
            None,
        ])
        service = _service(backend, store)
        started = asyncio.Event()
        service.add_listener(lambda view: view.messages[-1].content == "x" and started.set())

        task = asyncio.create_task(service.submit("first"))
        await asyncio.wait_for(started.wait(), timeout=2.0)

        result = await service.submit("second")
        assert result.status is SubmissionStatus.REJECTED

        backend.release.set()
        assert (await task).status is SubmissionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_deleting_active_conversation_stops_cleanly(self, store):
        chunks = [
            sse({"author": "section_researcher",
                 "content": {"parts": [{"text": f"part {i} "}]}})
            for i in range(20)
        ]
        backend = FakeBackend(stream=[*chunks, None])
        service = _service(backend, store)
        deletions = []

        def delete_on_first_text(view):
            if deletions or not view.messages or not view.session_id:
                return
            if view.messages[-1].content:
                deletions.append(asyncio.create_task(
                    service.delete_conversation(view.session_id)
                ))

        service.add_listener(delete_on_first_text)
        result = await asyncio.wait_for(service.submit("question"), timeout=2.0)
        assert await deletions[0] is True

        assert result.status is SubmissionStatus.CANCELLED
        assert result.error is None
        assert service.view().messages == ()
        assert await store.list_sessions() == []

        # The next conversation starts clean
        backend.stream = RESEARCH_STREAM
        assert (await service.submit("again")).status is SubmissionStatus.COMPLETED
        assert [m.content for m in service.view().messages] == ["again", "FINAL"]

    def test_stop_when_idle(self):
        assert _service(FakeBackend(), store=None).stop() is False


class TestFailures:
    """Errors surface as a single appended message."""

    @pytest.mark.asyncio
    async def test_run_failures_retried(self, store):
        backend = FakeBackend(run_failures=2)
        service = _service(backend, store, max_attempts=3)

        result = await service.submit("question")

        assert result.status is SubmissionStatus.COMPLETED
        assert len(backend.run_bodies) == 3
        assert service.view().messages[-1].content == "FINAL"

    @pytest.mark.asyncio
    async def test_error_message_after_retries_exhausted(self, store):
        backend = FakeBackend(run_failures=10, run_status=500)
        service = _service(backend, store, max_attempts=2)

        result = await service.submit("question")

        assert result.status is SubmissionStatus.FAILED
        messages = service.view().messages
        assert len(messages) == 3
        assert messages[-1].role == "ai"
        assert messages[-1].content.startswith(ERROR_MESSAGE_PREFIX)
        assert "500" in messages[-1].content

        stored = await store.get_session(service.session.session_id)
        assert stored.messages[-1].content == messages[-1].content

    @pytest.mark.asyncio
    async def test_unavailable_backend(self, store):
        async def never_ready() -> bool:
            return False

        checker = type("Checker", (), {"check_health": staticmethod(never_ready)})()
        probe = ReadinessProbe(checker, max_attempts=1, sleep=_no_sleep)
        await probe.wait_until_ready()

        backend = FakeBackend()
        service = _service(backend, store, probe=probe)
        result = await service.submit("question")

        assert result.status is SubmissionStatus.FAILED
        assert backend.session_posts == 0
        assert service.view().messages[-1].content == (
            f"{ERROR_MESSAGE_PREFIX}Backend is unavailable"
        )

    @pytest.mark.asyncio
    async def test_broken_listener_does_not_abort_stream(self, store):
        service = _service(FakeBackend(), store)

        def broken(view):
            raise RuntimeError("render failed")

        service.add_listener(broken)
        result = await service.submit("question")
        assert result.status is SubmissionStatus.COMPLETED


class TestConversations:
    """Loading and deleting stored conversations."""

    @pytest.mark.asyncio
    async def test_load_conversation(self, store):
        backend = FakeBackend()
        service = _service(backend, store)
        await service.submit("remember me")
        session_id = service.session.session_id

        service.new_chat()
        assert await service.load_conversation(session_id) is True
        assert [m.content for m in service.view().messages] == ["remember me", "FINAL"]

        # Continuing a loaded conversation reuses its backend session
        await service.submit("follow-up")
        assert backend.session_posts == 1
        assert backend.run_bodies[-1]["sessionId"] == session_id

    @pytest.mark.asyncio
    async def test_load_unknown_conversation(self, store):
        service = _service(FakeBackend(), store)
        assert await service.load_conversation("missing") is False

    @pytest.mark.asyncio
    async def test_delete_active_conversation(self, store):
        service = _service(FakeBackend(), store)
        await service.submit("to be deleted")
        session_id = service.session.session_id

        assert await service.delete_conversation(session_id) is True
        assert service.session is None
        assert service.view().messages == ()
        assert await store.get_session(session_id) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
