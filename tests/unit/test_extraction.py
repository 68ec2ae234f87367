"""Unit tests for the forced-tool extraction stage."""
import json

from voice_actions.services.extraction import (
    EXTRACTION_TOOL,
    EXTRACTION_TOOL_NAME,
    UNABLE_TO_EXTRACT,
    ContractParsed,
    ExtractionEngine,
    NoContract,
    build_extraction_prompt,
    parse_tool_payload,
)
from voice_actions.services.time_resolver import compute_anchors

from tests.fixtures.voice_fakes import ANCHOR, RecordingToolCall

ANCHORS = compute_anchors("UTC", now=ANCHOR)


def _engine(tool_call):
    return ExtractionEngine(tool_call=tool_call, model="test-extraction")


def _extract(engine, text="Buy milk tomorrow", language="en"):
    return engine.extract(text, context_document="# USER CONTEXT", anchors=ANCHORS, language=language)


class TestParseToolPayload:
    """The tool payload parses into exactly one of two shapes."""

    def test_camel_case_payload_is_accepted(self):
        payload = {
            "tasks": [{"title": "Buy milk", "priority": "High", "dueDate": "2025-03-13", "dueTime": "15:00", "tags": None}],
            "reminders": [{"title": "Call mom", "reminderTime": "2025-03-12T10:30:00+00:00", "isRecurring": False}],
            "healthNotes": [{"content": "Slept badly", "category": "Sleep"}],
            "generalNotes": [{"content": "Nice weather"}],
            "contentPredictions": [
                {"contentType": "linkedin_post", "description": "Post about the launch", "confidence": 0.9}
            ],
            "summary": "Errands and a call",
        }
        result = parse_tool_payload(json.dumps(payload))
        assert isinstance(result, ContractParsed)
        items = result.items
        assert items.tasks[0].priority == "high"
        assert items.tasks[0].due_time == "15:00"
        assert items.tasks[0].tags == []
        assert items.reminders[0].reminder_time == "2025-03-12T10:30:00+00:00"
        assert items.health_notes[0].category == "sleep"
        assert items.content_predictions[0].content_type == "linkedin_post"
        assert items.item_count() == 4

    def test_decoded_dict_is_accepted(self):
        result = parse_tool_payload({"tasks": [], "summary": "nothing"})
        assert isinstance(result, ContractParsed)
        assert result.items.summary == "nothing"

    def test_missing_tool_call(self):
        result = parse_tool_payload(None, raw_text="I could not find anything.")
        assert result == NoContract(reason="no_tool_call", raw_text="I could not find anything.")

    def test_malformed_json(self):
        result = parse_tool_payload('{"tasks": [', raw_text="partial")
        assert isinstance(result, NoContract)
        assert result.reason == "malformed_json"
        assert result.raw_text == "partial"

    def test_non_object_payload(self):
        result = parse_tool_payload("[1, 2, 3]")
        assert isinstance(result, NoContract)
        assert result.reason == "schema_mismatch"

    def test_schema_mismatch(self):
        result = parse_tool_payload({"tasks": [{"priority": "high"}]})
        assert isinstance(result, NoContract)
        assert result.reason == "schema_mismatch"
        assert "title" in result.detail


class TestExtractionEngine:
    def test_forces_the_extraction_tool(self):
        tool_call = RecordingToolCall({"tasks": [{"title": "Buy milk"}], "summary": "Buy milk"})
        outcome = _extract(_engine(tool_call))

        assert outcome.degraded is False
        assert [t.title for t in outcome.items.tasks] == ["Buy milk"]
        call = tool_call.calls[0]
        assert call["tool"] is EXTRACTION_TOOL
        assert call["model"] == "test-extraction"
        assert "# USER CONTEXT" in call["system"]

    def test_free_text_answer_degrades_to_raw_summary(self):
        tool_call = RecordingToolCall(None, text="You mentioned buying milk.")
        outcome = _extract(_engine(tool_call))

        assert outcome.degraded is True
        assert outcome.reason == "no_tool_call"
        assert outcome.items.summary == "You mentioned buying milk."
        assert outcome.items.item_count() == 0

    def test_malformed_arguments_without_text_use_fallback_summary(self):
        outcome = _extract(_engine(RecordingToolCall('{"tasks": [')))
        assert outcome.degraded is True
        assert outcome.reason == "malformed_json"
        assert outcome.items.summary == UNABLE_TO_EXTRACT

    def test_provider_error_is_a_degraded_outcome(self):
        outcome = _extract(_engine(RecordingToolCall(error=TimeoutError("slow"))))
        assert outcome.degraded is True
        assert outcome.reason == "call_failed"
        assert outcome.items.summary == UNABLE_TO_EXTRACT

    def test_single_attempt_only(self):
        tool_call = RecordingToolCall(None, text="")
        _extract(_engine(tool_call))
        assert len(tool_call.calls) == 1


class TestExtractionPrompt:
    def test_prompt_quotes_anchor_dates(self):
        prompt = build_extraction_prompt("Buy milk", context_document="ctx", anchors=ANCHORS, language="en")
        user = prompt["user"]
        assert "TODAY'S DATE: 2025-03-12 (Wednesday)" in user
        assert "2025-03-13" in user
        assert "15:00" in user
        assert EXTRACTION_TOOL_NAME in user
        assert '"Buy milk"' in user

    def test_prompt_names_the_output_language(self):
        prompt = build_extraction_prompt("Acheter du lait", context_document="", anchors=ANCHORS, language="fr-FR")
        assert "MUST be written in French" in prompt["user"]

    def test_tool_schema_uses_wire_names(self):
        properties = EXTRACTION_TOOL["function"]["parameters"]["properties"]
        assert {"tasks", "reminders", "healthNotes", "generalNotes", "contentPredictions", "summary"} <= set(properties)
        assert "dueTime" in properties["tasks"]["items"]["properties"]
