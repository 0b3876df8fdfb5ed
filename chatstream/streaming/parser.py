"""
SSE frame reader: reassembles an arbitrarily chunked byte stream into
complete event payloads.
"""

from __future__ import annotations

import codecs
import logging
from collections.abc import AsyncGenerator, AsyncIterable, AsyncIterator

from .cancellation import CancellationToken
from .models import ReaderStats

logger = logging.getLogger(__name__)

DATA_FIELD = "data:"
COMMENT_PREFIX = ":"


class SSEFrameReader:
    """
    Incremental SSE framer.

    Chunks may split lines, events and multi-byte UTF-8 sequences anywhere;
    the emitted payload sequence is the same for every split of a stream.

    Features:
    - Multi-line `data:` payloads joined with newlines
    - Comment lines ignored
    - Residual event flushed when the stream ends without a blank line
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._line_buffer = ""
        self._data_buffer: list[str] = []
        self._closed = False
        self.stats = {
            "bytes_received": 0,
            "lines": 0,
            "events": 0,
            "comments": 0,
        }

    def feed(self, chunk: bytes) -> list[str]:
        """Consume one chunk and return the event payloads it completed."""
        if self._closed:
            raise RuntimeError("SSE frame reader is closed")
        self.stats["bytes_received"] += len(chunk)
        self._line_buffer += self._decoder.decode(chunk)
        return self._drain_lines()

    def close(self) -> list[str]:
        """End of stream: flush the decoder, the last line and the last event."""
        if self._closed:
            return []
        self._closed = True

        self._line_buffer += self._decoder.decode(b"", final=True)
        events = self._drain_lines()

        if self._line_buffer:
            line, self._line_buffer = self._line_buffer, ""
            event = self._process_line(line)
            if event is not None:
                events.append(event)

        event = self._take_event()
        if event is not None:
            logger.debug("Flushing final SSE event without terminating blank line")
            events.append(event)
        return events

    async def iter_events(
        self,
        byte_stream: AsyncIterable[bytes],
        token: CancellationToken | None = None,
    ) -> AsyncGenerator[str]:
        """
        Yield event payloads as the byte stream delivers them.

        Each chunk read is a cancellation point: a cancelled token raises
        `OperationCancelled` from the pending read.
        """
        iterator: AsyncIterator[bytes] = aiter(byte_stream)
        try:
            while True:
                try:
                    if token is not None:
                        chunk = await token.guard(anext(iterator))
                    else:
                        chunk = await anext(iterator)
                except StopAsyncIteration:
                    break

                for event in self.feed(chunk):
                    yield event

            for event in self.close():
                yield event
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _drain_lines(self) -> list[str]:
        events: list[str] = []
        while (eol := self._line_buffer.find("\n")) >= 0:
            line = self._line_buffer[:eol]
            self._line_buffer = self._line_buffer[eol + 1:]
            event = self._process_line(line)
            if event is not None:
                events.append(event)
        return events

    def _process_line(self, line: str) -> str | None:
        self.stats["lines"] += 1
        if line.endswith("\r"):
            line = line[:-1]

        if not line.strip():
            return self._take_event()

        if line.startswith(DATA_FIELD):
            value = line[len(DATA_FIELD):]
            if value.startswith(" "):
                value = value[1:]
            self._data_buffer.append(value)
        elif line.startswith(COMMENT_PREFIX):
            self.stats["comments"] += 1
        # event:, id: and retry: fields carry nothing this client uses
        return None

    def _take_event(self) -> str | None:
        if not self._data_buffer:
            return None
        payload = "\n".join(self._data_buffer)
        self._data_buffer = []
        self.stats["events"] += 1
        return payload

    def get_stats(self) -> ReaderStats:
        """Get framing statistics for monitoring."""
        return ReaderStats(**self.stats)

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self.stats = {
            "bytes_received": 0,
            "lines": 0,
            "events": 0,
            "comments": 0,
        }
