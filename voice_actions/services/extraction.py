"""
Structured extraction of tasks, reminders, notes and content predictions.

One forced function call per transcript. The tool arguments are parsed into a
tagged result: either the payload matches the contract, or the reason it does
not is kept next to the raw model text. There is no retry; a missing contract
degrades to an empty extraction whose summary is the model's own text.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError

from voice_actions.config import get_extraction_model_name, get_extraction_timeouts_ms
from voice_actions.models import ExtractedItems
from voice_actions.services.languages import get_language_name
from voice_actions.services.llm_client import ToolCallResponse, call_llm_tool
from voice_actions.services.time_resolver import TimeAnchors
from voice_actions.services.tracing import end_span, start_span, trace_error

logger = logging.getLogger("voice_actions.extraction")

EXTRACTION_TOOL_NAME = "save_extracted_items"
UNABLE_TO_EXTRACT = "Unable to extract items"

_PRIORITY = {"type": "string", "enum": ["urgent", "high", "medium", "low"]}
_TAGS = {"type": "array", "items": {"type": "string"}}

EXTRACTION_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": EXTRACTION_TOOL_NAME,
        "description": "Save every actionable item extracted from the voice transcription.",
        "parameters": {
            "type": "object",
            "properties": {
                "tasks": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "title": {"type": "string"},
                            "description": {"type": "string"},
                            "priority": _PRIORITY,
                            "dueDate": {"type": "string", "description": "YYYY-MM-DD"},
                            "dueTime": {"type": "string", "description": "HH:MM, 24-hour"},
                            "category": {"type": "string"},
                            "tags": _TAGS,
                        },
                        "required": ["title"],
                    },
                },
                "reminders": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "title": {"type": "string"},
                            "description": {"type": "string"},
                            "reminderTime": {"type": "string", "description": "ISO 8601 datetime"},
                            "isRecurring": {"type": "boolean"},
                            "recurrencePattern": {"type": "string"},
                            "tags": _TAGS,
                            "priority": _PRIORITY,
                            "type": {"type": "string", "enum": ["task", "todo", "reminder"]},
                        },
                        "required": ["title"],
                    },
                },
                "healthNotes": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "content": {"type": "string"},
                            "category": {
                                "type": "string",
                                "enum": ["symptom", "medication", "mood", "exercise", "diet", "sleep", "other"],
                            },
                            "tags": _TAGS,
                        },
                        "required": ["content"],
                    },
                },
                "generalNotes": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {"content": {"type": "string"}, "tags": _TAGS},
                        "required": ["content"],
                    },
                },
                "contentPredictions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "contentType": {"type": "string"},
                            "description": {"type": "string"},
                            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                            "reasoning": {"type": "string"},
                            "suggestedTitle": {"type": "string"},
                            "targetPlatform": {"type": "string"},
                            "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                        },
                        "required": ["contentType", "description", "confidence"],
                    },
                },
                "summary": {"type": "string"},
            },
            "required": ["tasks", "reminders", "healthNotes", "generalNotes", "summary"],
        },
    },
}

EXTRACTION_SYSTEM_PROMPT = """You turn voice notes into structured items for a personal assistant.

{context_document}

Rules:
- Tasks are things the user has to do; reminders are things to be alerted about at a moment in time.
- Health notes cover symptoms, medication, mood, exercise, diet and sleep.
- Anything worth keeping that is not actionable is a general note.
- Content predictions: documents, posts or drafts the user would benefit from, with a confidence between 0 and 1.
  Explicit requests ("write me a LinkedIn post") deserve a high confidence.
- Only extract what was actually said. Use the user context to pick categories and tags."""

EXTRACTION_USER_PROMPT = """Analyze this voice transcription and extract all actionable items.

## CURRENT DATE AND TIME
TODAY'S DATE: {current_date} ({weekday})
CURRENT TIME: {current_time} ({timezone})

Compute every relative date from the values above:
{worked_examples}
- "in 3 days" -> 3 days after {current_date}
- "Monday" -> the next Monday after {current_date}
Dates use YYYY-MM-DD, reminder times use ISO 8601 datetimes. Never output a date before {current_date}.

## TIME EXTRACTION
Whenever a specific time is mentioned, set dueTime in 24-hour HH:MM format
("3pm" -> "15:00", "9:30 AM" -> "09:30", "14:00" -> "14:00").

## LANGUAGE
Every title, note, tag and the summary MUST be written in {language_name}. Do not translate to English.
Tags must be {language_name} words too.

## SUMMARY FORMAT
- Start directly with the content: no preamble such as "Here is the summary".
- Use short section headers (Tasks, Reminders, Health Notes, Notes, Summary) and numbered lists.
- No closing sentence such as "Let me know if you need anything else".

Transcription:
"{transcript}"

Call the {tool_name} tool with the result. Do not answer in plain text."""


def build_extraction_prompt(
    transcript: str,
    *,
    context_document: str,
    anchors: TimeAnchors,
    language: str,
) -> Dict[str, str]:
    """Return the system and user messages for one extraction call."""
    return {
        "system": EXTRACTION_SYSTEM_PROMPT.format(context_document=context_document or ""),
        "user": EXTRACTION_USER_PROMPT.format(
            current_date=anchors.current_date,
            current_time=anchors.current_time,
            weekday=anchors.weekday,
            timezone=anchors.timezone,
            worked_examples=anchors.worked_examples(),
            language_name=get_language_name(language),
            transcript=transcript,
            tool_name=EXTRACTION_TOOL_NAME,
        ),
    }


@dataclass(frozen=True)
class ContractParsed:
    items: ExtractedItems


@dataclass(frozen=True)
class NoContract:
    reason: str
    raw_text: Optional[str] = None
    detail: Optional[str] = None


ParseResult = Union[ContractParsed, NoContract]


def parse_tool_payload(arguments: Any, raw_text: Optional[str] = None) -> ParseResult:
    """Validate tool-call arguments against the extraction contract.

    ``arguments`` may be the provider's JSON string or an already decoded dict.
    Anything else, malformed JSON included, yields :class:`NoContract`.
    """
    if arguments is None:
        return NoContract(reason="no_tool_call", raw_text=raw_text)
    payload = arguments
    if isinstance(arguments, (str, bytes)):
        try:
            payload = json.loads(arguments)
        except ValueError as exc:
            return NoContract(reason="malformed_json", raw_text=raw_text, detail=str(exc))
    if not isinstance(payload, dict):
        return NoContract(
            reason="schema_mismatch", raw_text=raw_text, detail=f"expected object, got {type(payload).__name__}"
        )
    try:
        return ContractParsed(items=ExtractedItems.model_validate(payload))
    except ValidationError as exc:
        return NoContract(reason="schema_mismatch", raw_text=raw_text, detail=str(exc))


@dataclass
class ExtractionOutcome:
    items: ExtractedItems
    degraded: bool = False
    reason: Optional[str] = None
    raw_text: Optional[str] = None


ToolCall = Callable[..., ToolCallResponse]


class ExtractionEngine:
    def __init__(self, *, tool_call: Optional[ToolCall] = None, model: Optional[str] = None) -> None:
        self._tool_call = tool_call or call_llm_tool
        self.model = model or get_extraction_model_name()

    def extract(
        self,
        cleaned_text: str,
        *,
        context_document: str,
        anchors: TimeAnchors,
        language: str,
    ) -> ExtractionOutcome:
        messages = build_extraction_prompt(
            cleaned_text, context_document=context_document, anchors=anchors, language=language
        )
        span = start_span(
            "extraction",
            metadata={"model": self.model, "language": language},
            input={"chars": len(cleaned_text), "context_chars": len(context_document or "")},
        )
        try:
            response = self._tool_call(
                messages["system"],
                messages["user"],
                tool=EXTRACTION_TOOL,
                model=self.model,
                timeout_s=max(1, get_extraction_timeouts_ms() // 1000),
            )
        except Exception as exc:
            logger.exception("[extraction.call_failed] model=%s", self.model)
            trace_error(exc, metadata={"stage": "extraction", "model": self.model})
            end_span(span, output={"reason": "call_failed"}, level="ERROR")
            return self._degraded(NoContract(reason="call_failed", detail=str(exc)))

        parsed = parse_tool_payload(response.arguments, raw_text=response.text)
        if isinstance(parsed, NoContract):
            logger.warning(
                "[extraction.no_contract] reason=%s detail=%s", parsed.reason, (parsed.detail or "")[:300]
            )
            end_span(span, output={"reason": parsed.reason}, level="WARNING")
            return self._degraded(parsed)

        items = parsed.items
        logger.info(
            "[extraction.ok] tasks=%s reminders=%s health_notes=%s general_notes=%s predictions=%s",
            len(items.tasks),
            len(items.reminders),
            len(items.health_notes),
            len(items.general_notes),
            len(items.content_predictions),
        )
        end_span(span, output={"items": items.item_count(), "predictions": len(items.content_predictions)})
        return ExtractionOutcome(items=items, raw_text=response.text)

    @staticmethod
    def _degraded(result: NoContract) -> ExtractionOutcome:
        summary = result.raw_text if result.raw_text and result.raw_text.strip() else UNABLE_TO_EXTRACT
        return ExtractionOutcome(
            items=ExtractedItems(summary=summary),
            degraded=True,
            reason=result.reason,
            raw_text=result.raw_text,
        )
