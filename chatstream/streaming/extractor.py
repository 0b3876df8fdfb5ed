"""
Event extraction: turns one raw SSE payload into a NormalizedEvent.

Upstream agents emit differently shaped envelopes at each pipeline step,
so every field is derived from whatever is present and missing or
unexpected structure simply yields empty values.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .agents import SOURCE_COUNTING_AGENTS
from .models import FunctionCall, FunctionResponse, ImageRef, NormalizedEvent

logger = logging.getLogger(__name__)

# Raw payload characters kept in parse-failure logs
RAW_PREVIEW_CHARS = 200


def _truncate(data: str, limit: int = RAW_PREVIEW_CHARS) -> str:
    return data if len(data) <= limit else data[:limit] + "..."


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


class EventExtractor:
    """Tolerant parser for agent pipeline event envelopes."""

    def __init__(self, preview_chars: int = RAW_PREVIEW_CHARS):
        self.preview_chars = preview_chars
        self.stats = {"events": 0, "malformed": 0}

    def extract(self, raw: str) -> NormalizedEvent:
        """Parse `raw` into a NormalizedEvent. Never raises."""
        self.stats["events"] += 1
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            self.stats["malformed"] += 1
            logger.warning(
                f"Error parsing SSE data. Raw data (truncated): "
                f"{_truncate(str(raw), self.preview_chars)!r}. Error: {e}"
            )
            return NormalizedEvent.empty()

        if not isinstance(parsed, dict):
            self.stats["malformed"] += 1
            logger.warning(
                f"Ignoring SSE payload that is not a JSON object: "
                f"{_truncate(raw, self.preview_chars)!r}"
            )
            return NormalizedEvent.empty()

        try:
            return self._normalize(parsed)
        except Exception as e:
            self.stats["malformed"] += 1
            logger.warning(
                f"Unexpected SSE envelope shape: {e}. Raw data (truncated): "
                f"{_truncate(raw, self.preview_chars)!r}"
            )
            return NormalizedEvent.empty()

    def _normalize(self, envelope: dict[str, Any]) -> NormalizedEvent:
        parts = _as_dict(envelope.get("content")).get("parts")
        if not isinstance(parts, list):
            parts = []
        parts = [part for part in parts if isinstance(part, dict)]

        agent = envelope.get("author") or ""
        if not isinstance(agent, str):
            agent = str(agent)

        state_delta = _as_dict(_as_dict(envelope.get("actions")).get("stateDelta"))

        final_report = state_delta.get("final_report_with_citations")
        if final_report and not isinstance(final_report, str):
            final_report = json.dumps(final_report)

        event = NormalizedEvent(
            text_parts=tuple(str(part["text"]) for part in parts if part.get("text")),
            image_parts=self._extract_images(parts),
            agent=agent,
            function_call=self._extract_function_call(parts),
            function_response=self._extract_function_response(parts),
            final_report_with_citations=final_report or None,
            source_count=self._count_sources(agent, state_delta),
            sources=state_delta.get("sources"),
        )
        logger.debug(
            f"SSE event: agent={agent!r} texts={len(event.text_parts)} "
            f"images={len(event.image_parts)} "
            f"function_call={event.function_call is not None} "
            f"function_response={event.function_response is not None} "
            f"sources={event.source_count} "
            f"final_report={event.final_report_with_citations is not None}"
        )
        return event

    @staticmethod
    def _extract_images(parts: list[dict[str, Any]]) -> tuple[ImageRef, ...]:
        images: list[ImageRef] = []
        for part in parts:
            if file_data := _as_dict(part.get("fileData")):
                images.append(ImageRef(
                    url=file_data.get("fileUri"),
                    mime_type=file_data.get("mimeType"),
                ))
            elif inline_data := _as_dict(part.get("inlineData")):
                images.append(ImageRef(
                    inline_data=inline_data.get("data"),
                    mime_type=inline_data.get("mimeType"),
                ))
        return tuple(images)

    @staticmethod
    def _extract_function_call(parts: list[dict[str, Any]]) -> FunctionCall | None:
        for part in parts:
            if call := _as_dict(part.get("functionCall")):
                return FunctionCall(
                    name=str(call.get("name", "")),
                    args=_as_dict(call.get("args")),
                    id=call.get("id"),
                )
        return None

    @staticmethod
    def _extract_function_response(
        parts: list[dict[str, Any]],
    ) -> FunctionResponse | None:
        for part in parts:
            if response := _as_dict(part.get("functionResponse")):
                return FunctionResponse(
                    name=str(response.get("name", "")),
                    response=response.get("response"),
                    id=response.get("id"),
                )
        return None

    @staticmethod
    def _count_sources(agent: str, state_delta: dict[str, Any]) -> int:
        if agent not in SOURCE_COUNTING_AGENTS:
            return 0
        url_to_short_id = state_delta.get("url_to_short_id")
        if not isinstance(url_to_short_id, dict):
            return 0
        return len(url_to_short_id)

    def get_stats(self) -> dict[str, int]:
        return self.stats.copy()
