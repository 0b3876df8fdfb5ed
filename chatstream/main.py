"""
Terminal front end for the research chat client.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

from chatstream.backend import BackendClient, BackoffExecutor, ReadinessProbe
from chatstream.chat_service import (
    ChatService,
    ConversationView,
    SubmissionStatus,
)
from chatstream.config import Configuration
from chatstream.history.repositories.sql_repo import AsyncSqlSessionStore
from chatstream.streaming import EventExtractor

logger = logging.getLogger(__name__)

HELP_TEXT = "Commands: /new, /history, /load <id>, /quit. Ctrl+C stops a response."


class TerminalRenderer:
    """Prints the in-flight AI message as it grows."""

    def __init__(self, out=None) -> None:
        self.out = out or sys.stdout
        self._message_id: str | None = None
        self._printed = ""
        self._label: str | None = None
        self._timeline_seen = 0
        self._images_seen = 0

    def reset(self) -> None:
        self._message_id = None
        self._printed = ""
        self._label = None
        self._timeline_seen = 0
        self._images_seen = 0

    def __call__(self, view: ConversationView) -> None:
        if not view.is_generating or not view.messages:
            return
        message = view.messages[-1]
        if message.role != "ai":
            return

        if message.id != self._message_id:
            self.reset()
            self._message_id = message.id

        for event in view.timelines.get(message.id, ())[self._timeline_seen:]:
            self._write(f"\n  [{event.title}]\n")
            self._timeline_seen += 1

        if message.agent and message.agent != self._label:
            self._label = message.agent
            self._write(f"\n== {message.agent} ==\n")

        images = [image for image in message.images if image.is_renderable]
        for image in images[self._images_seen:]:
            self._write(f"\n  [image: {image.url or image.mime_type or 'inline'}]\n")
        self._images_seen = len(images)

        content = message.content
        if content.startswith(self._printed):
            self._write(content[len(self._printed):])
        else:
            # Content was replaced wholesale, e.g. by the final report
            self._write(f"\n{content}")
        self._printed = content

    def _write(self, text: str) -> None:
        if text:
            self.out.write(text)
            self.out.flush()


async def _stdin_reader() -> asyncio.StreamReader:
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
    )
    return reader


async def _unless_shutdown(awaitable, shutdown_event: asyncio.Event):
    """Result of `awaitable`, or None if shutdown is requested first."""
    work = asyncio.ensure_future(awaitable)
    stop_task = asyncio.create_task(shutdown_event.wait())
    done, pending = await asyncio.wait(
        {work, stop_task}, return_when=asyncio.FIRST_COMPLETED
    )
    for task in pending:
        task.cancel()
    if work not in done:
        return None
    return work.result()


async def _read_line(
    reader: asyncio.StreamReader, shutdown_event: asyncio.Event
) -> str | None:
    """Next stdin line, or None on EOF or shutdown."""
    raw = await _unless_shutdown(reader.readline(), shutdown_event)
    if not raw:
        return None
    return raw.decode("utf-8", errors="replace").strip()


async def _handle_command(
    command: str, service: ChatService, renderer: TerminalRenderer
) -> bool:
    """Run a slash command. Returns False when the front end should exit."""
    name, _, argument = command.partition(" ")
    if name == "/quit":
        return False
    if name == "/new":
        service.new_chat()
        renderer.reset()
        print("Started a new chat.")
    elif name == "/history":
        for session in await service.store.list_sessions():
            print(f"{session.id}  {session.title}  ({len(session.messages)} messages)")
    elif name == "/load":
        if await service.load_conversation(argument.strip()):
            for message in service.view().messages:
                speaker = "You" if message.role == "human" else message.agent or "AI"
                print(f"{speaker}: {message.content}\n")
        else:
            print(f"No conversation with id {argument.strip()!r}")
    else:
        print(HELP_TEXT)
    return True


async def run_chat(
    service: ChatService,
    probe: ReadinessProbe,
    shutdown_event: asyncio.Event,
) -> None:
    reader = await _stdin_reader()

    print("Waiting for backend...")
    ready = await _unless_shutdown(probe.wait_until_ready(), shutdown_event)
    while not ready:
        if ready is None:
            return
        print("Backend unavailable. Press Enter to retry, or type /quit.")
        answer = await _read_line(reader, shutdown_event)
        if answer is None or answer == "/quit":
            return
        ready = await _unless_shutdown(probe.retry(), shutdown_event)

    print(f"Backend ready. {HELP_TEXT}")
    renderer = TerminalRenderer()
    service.add_listener(renderer)

    while not shutdown_event.is_set():
        print("\n> ", end="", flush=True)
        query = await _read_line(reader, shutdown_event)
        if query is None:
            break
        if not query:
            continue
        if query.startswith("/"):
            if not await _handle_command(query, service, renderer):
                break
            continue

        result = await service.submit(query)
        if result.status is SubmissionStatus.CANCELLED:
            print("\n[stopped]")
        elif result.status is SubmissionStatus.FAILED:
            print(f"\n{service.view().messages[-1].content}")
        elif result.status is SubmissionStatus.REJECTED:
            print(f"[rejected: {result.error}]")
        else:
            print(f"\n[{service.view().website_count} websites consulted]")


async def main() -> None:
    """Main entry point with graceful shutdown handling."""
    config = Configuration()
    logging.basicConfig(
        level=config.get_logging_config()["level"],
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    backend_config = config.get_backend_config()
    health_config = config.get_health_config()
    streaming_config = config.get_streaming_config()

    shutdown_event = asyncio.Event()

    async with (
        BackendClient(backend_config, health_path=health_config["path"]) as client,
        AsyncSqlSessionStore.from_config(config.get_chat_store_config()) as store,
    ):
        probe = ReadinessProbe(
            client,
            max_attempts=health_config["max_attempts"],
            interval=health_config["interval"],
        )
        service = ChatService(
            ChatService.ChatServiceConfig(
                client=client,
                store=store,
                executor=BackoffExecutor.from_config(config.get_retry_config()),
                extractor=EventExtractor(streaming_config["log_preview_chars"]),
                probe=probe,
            )
        )

        def signal_handler() -> None:
            """Stop the running response, or shut down when idle."""
            if service.is_generating:
                service.stop()
                return
            logger.info("Received shutdown signal, initiating graceful shutdown...")
            shutdown_event.set()

        # Register signal handlers for graceful shutdown
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, signal_handler)

        try:
            await run_chat(service, probe, shutdown_event)
        finally:
            service.stop()
            logger.info("Chat client shut down")


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
