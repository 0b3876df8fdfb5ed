#!/usr/bin/env python3
"""
Tests for event extraction from agent pipeline envelopes.
"""

import base64
import json
import logging

from chatstream.streaming.extractor import EventExtractor
from chatstream.streaming.models import ImageRef, NormalizedEvent


def _extract(envelope) -> NormalizedEvent:
    return EventExtractor().extract(json.dumps(envelope))


class TestMalformedInput:
    """Payloads that cannot be interpreted yield an empty event."""

    def test_invalid_json(self, caplog):
        extractor = EventExtractor()
        with caplog.at_level(logging.WARNING):
            event = extractor.extract("{not json" + "x" * 500)

        assert event.is_empty
        assert extractor.get_stats() == {"events": 1, "malformed": 1}
        record = caplog.records[-1].getMessage()
        assert "Error parsing SSE data" in record
        # Raw payload is truncated in the log
        assert "x" * 300 not in record

    def test_non_object_payload(self):
        extractor = EventExtractor()
        assert extractor.extract("[1, 2, 3]").is_empty
        assert extractor.extract('"text"').is_empty
        assert extractor.get_stats()["malformed"] == 2

    def test_unexpected_shapes_are_ignored(self):
        event = _extract({
            "author": "plan_generator",
            "content": {"parts": "not a list"},
            "actions": {"stateDelta": ["wrong"]},
        })
        assert event.agent == "plan_generator"
        assert event.text_parts == ()
        assert event.source_count == 0

    def test_empty_object(self):
        assert _extract({}).is_empty


class TestFields:
    """Extraction of individual envelope fields."""

    def test_text_parts_in_order(self):
        event = _extract({
            "author": "section_planner",
            "content": {"parts": [{"text": "one"}, {"thought": True}, {"text": "two"}]},
        })
        assert event.text_parts == ("one", "two")
        assert event.agent == "section_planner"

    def test_images_from_file_and_inline_data(self):
        payload = base64.b64encode(b"\x89PNG").decode()
        event = _extract({
            "author": "IMAGE_GENERATOR",
            "content": {"parts": [
                {"fileData": {"fileUri": "https://cdn.example/a.png", "mimeType": "image/png"}},
                {"inlineData": {"data": payload, "mimeType": "image/png"}},
            ]},
        })
        assert event.image_parts == (
            ImageRef(url="https://cdn.example/a.png", mime_type="image/png"),
            ImageRef(inline_data=payload, mime_type="image/png"),
        )
        assert event.image_parts[1].decoded() == b"\x89PNG"

    def test_function_call_and_response(self):
        event = _extract({
            "author": "interactive_planner_agent",
            "content": {"parts": [
                {"functionCall": {"name": "plan_generator", "args": {"topic": "x"}, "id": "c1"}},
                {"functionResponse": {"name": "plan_generator", "response": {"ok": True}, "id": "c1"}},
            ]},
        })
        assert event.function_call.name == "plan_generator"
        assert event.function_call.args == {"topic": "x"}
        assert event.function_call.id == "c1"
        assert event.function_response.response == {"ok": True}

    def test_source_count_from_research_agents(self):
        delta = {"url_to_short_id": {f"https://s{i}.example": f"src-{i}" for i in range(3)}}
        researcher = _extract({"author": "section_researcher", "actions": {"stateDelta": delta}})
        assert researcher.source_count == 3

        other = _extract({"author": "plan_generator", "actions": {"stateDelta": delta}})
        assert other.source_count == 0

    def test_sources_and_final_report(self):
        event = _extract({
            "author": "report_composer_with_citations",
            "actions": {"stateDelta": {
                "final_report_with_citations": "# Report",
                "sources": {"src-1": {"title": "A"}},
            }},
        })
        assert event.final_report_with_citations == "# Report"
        assert event.sources == {"src-1": {"title": "A"}}

    def test_empty_sources_payload_kept(self):
        assert _extract({"actions": {"stateDelta": {"sources": {}}}}).sources == {}
        assert _extract({"actions": {"stateDelta": {"sources": []}}}).sources == []
        assert _extract({"actions": {"stateDelta": {}}}).sources is None

    def test_structured_final_report_serialized(self):
        event = _extract({
            "author": "report_composer_with_citations",
            "actions": {"stateDelta": {"final_report_with_citations": {"body": "x"}}},
        })
        assert json.loads(event.final_report_with_citations) == {"body": "x"}


class TestScenarioMixedEnvelope:
    """One envelope carrying text, a function call and a source map."""

    def test_all_fields_extracted(self):
        event = _extract({
            "author": "enhanced_search_executor",
            "content": {"parts": [
                {"text": "Searching deeper"},
                {"functionCall": {"name": "google_search", "args": {"q": "llm"}}},
            ]},
            "actions": {"stateDelta": {"url_to_short_id": {"a": "1", "b": "2"}}},
        })
        assert event.text_parts == ("Searching deeper",)
        assert event.function_call.name == "google_search"
        assert event.function_call.id is None
        assert event.source_count == 2
        assert event.function_response is None
