"""
Voice Note Processing LangGraph

A LangGraph over the whole voice note pipeline:
1. Audio loading & transcription (fatal on failure)
2. Transcript normalization
3. Voice history recording
4. Context rewrite + extraction, serialized per user
5. Summary post-processing & time resolution
6. Persistence (fatal only when every item fails to save)
7. Pattern learning & content drafting, detached

Reprocessing enters the same graph with a stored transcript instead of audio.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from langgraph.graph import StateGraph, END

from voice_actions.models import (
    ExtractedItems,
    GeneratedContentItem,
    UserContextProfile,
    VoiceTranscript,
)
from voice_actions.schemas import (
    ExtractedItemsOut,
    GeneralNoteOut,
    HealthNoteOut,
    ProcessVoiceRequest,
    ReminderOut,
    ReprocessedRecording,
    TaskOut,
    VoiceProcessingResult,
)
from voice_actions.services.background import BackgroundTaskQueue
from voice_actions.services.content_trigger import ContentPredictionTrigger
from voice_actions.services.context_document import ContextAssembler
from voice_actions.services.errors import TranscriptionFailure
from voice_actions.services.extraction import ExtractionEngine, ExtractionOutcome
from voice_actions.services.languages import normalize_language_code
from voice_actions.services.normalizer import TranscriptNormalizer
from voice_actions.services.pattern_learning import PatternLearner
from voice_actions.services.persistence import ItemRepositories, PersistenceReport, persist_items
from voice_actions.services.profile_store import ProfileStore
from voice_actions.services.summary_postprocess import postprocess_summary
from voice_actions.services.time_resolver import (
    TimeAnchors,
    compute_anchors,
    normalize_reminder_time,
    normalize_task_times,
    resolve_timezone,
)
from voice_actions.services.tracing import end_span, start_span, start_trace, trace_error, traced_span
from voice_actions.services.transcription import Transcriber, TranscriptionResult, load_audio
from voice_actions.services.voice_history import VoiceHistoryStore, get_full_voice_context

logger = logging.getLogger("voice_actions.pipeline")

SAVE_FAILED = "Failed to save extracted items"

AudioLoader = Callable[..., Awaitable[bytes]]

# state keys:
#   request, user_id, source_recording_id, skip_save_items, timezone, await_content,
#   reprocess, t_start, transcription, profile, language, anchors, cleaned,
#   outcome, items, report, generated, error, result
VoiceState = Dict[str, Any]


@dataclass
class _UserLock:
    lock: asyncio.Lock
    holders: int = 0


class VoiceProcessingPipeline:
    """Orchestrates one voice note end to end.

    Collaborators are injected so that tests can swap any of them. Context
    assembly and extraction for the same user never interleave: the context
    document read by an extraction is always the one written for that note.
    """

    def __init__(
        self,
        *,
        transcriber: Transcriber,
        normalizer: TranscriptNormalizer,
        extractor: ExtractionEngine,
        assembler: ContextAssembler,
        history: VoiceHistoryStore,
        profiles: ProfileStore,
        repositories: ItemRepositories,
        learner: PatternLearner,
        content_trigger: ContentPredictionTrigger,
        queue: BackgroundTaskQueue,
        audio_loader: Optional[AudioLoader] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.transcriber = transcriber
        self.normalizer = normalizer
        self.extractor = extractor
        self.assembler = assembler
        self.history = history
        self.profiles = profiles
        self.repositories = repositories
        self.learner = learner
        self.content_trigger = content_trigger
        self.queue = queue
        self._load_audio = audio_loader or load_audio
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._user_locks: Dict[str, _UserLock] = {}
        self._graph = build_voice_graph(self).compile()

    @asynccontextmanager
    async def _serialized(self, user_id: str) -> AsyncIterator[None]:
        """Hold the user's lock; the entry is dropped once nobody holds or awaits it."""
        entry = self._user_locks.get(user_id)
        if entry is None:
            entry = self._user_locks[user_id] = _UserLock(asyncio.Lock())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._user_locks.pop(user_id, None)

    async def process(self, request: ProcessVoiceRequest) -> VoiceProcessingResult:
        user_id = request.user_id
        # the trace must exist before the graph spawns node tasks so they inherit it
        start_trace(
            "process_voice_note",
            user_id,
            metadata={
                "mime_type": request.mime_type,
                "skip_save_items": request.skip_save_items,
                "source_recording_id": request.source_recording_id,
            },
        )
        logger.info(
            "[pipeline.start] user_id=%s mime=%s skip_save=%s source=%s",
            user_id,
            request.mime_type,
            request.skip_save_items,
            "url" if request.audio_url else "base64",
        )
        state = await self._graph.ainvoke(
            {
                "request": request,
                "user_id": user_id,
                "source_recording_id": request.source_recording_id,
                "skip_save_items": request.skip_save_items,
                "timezone": request.timezone,
                "await_content": request.await_content,
                "reprocess": False,
            }
        )
        return state["result"]

    async def reprocess(
        self,
        user_id: str,
        *,
        source_recording_id: Optional[str] = None,
        limit: int = 5,
        skip_save_items: bool = False,
        timezone: Optional[str] = None,
    ) -> List[ReprocessedRecording]:
        """Run extraction again over stored transcripts, newest first.

        Either one recording (``source_recording_id``) or the ``limit`` most
        recent ones. Saved items point back at their recording; the voice
        history is left as it was and no content is drafted.
        """
        transcripts = await asyncio.to_thread(
            self.history.list_recent, user_id, limit=limit, source_recording_id=source_recording_id
        )
        logger.info(
            "[pipeline.reprocess] user_id=%s recordings=%s recording_id=%s",
            user_id,
            len(transcripts),
            source_recording_id,
        )
        results: List[ReprocessedRecording] = []
        for transcript in transcripts:
            start_trace(
                "reprocess_voice_note",
                user_id,
                metadata={"source_recording_id": transcript.source_recording_id},
            )
            state = await self._graph.ainvoke(
                {
                    "request": None,
                    "user_id": user_id,
                    "source_recording_id": transcript.source_recording_id,
                    "skip_save_items": skip_save_items,
                    "timezone": timezone,
                    "await_content": False,
                    "reprocess": True,
                    "transcription": TranscriptionResult(
                        text=transcript.raw_text,
                        language=transcript.language,
                        duration_seconds=transcript.duration_seconds,
                    ),
                }
            )
            results.append(
                ReprocessedRecording(
                    source_recording_id=transcript.source_recording_id,
                    recorded_at=transcript.recorded_at,
                    result=state["result"],
                )
            )
        return results

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def node_init(self, state: VoiceState) -> VoiceState:
        state["t_start"] = time.perf_counter()
        state["error"] = None
        state["report"] = None
        state["generated"] = []
        return state

    async def node_transcribe(self, state: VoiceState) -> VoiceState:
        request: ProcessVoiceRequest = state["request"]
        span = start_span("transcription", input={"mime_type": request.mime_type})
        try:
            audio = await self._load_audio(audio_url=request.audio_url, audio_base64=request.audio_base64)
            transcription = await asyncio.to_thread(self.transcriber.transcribe, audio, request.mime_type)
        except TranscriptionFailure as exc:
            logger.warning(
                "[pipeline.transcribe.failed] user_id=%s stage=%s error=%s", state["user_id"], exc.stage, exc
            )
            trace_error(exc, metadata={"stage": exc.stage, "user_id": state["user_id"]})
            end_span(span, output={"error": str(exc)}, level="ERROR")
            state["error"] = str(exc)
            return state
        end_span(span, output={"chars": len(transcription.text), "language": transcription.language})
        state["transcription"] = transcription
        return state

    async def node_load_profile(self, state: VoiceState) -> VoiceState:
        user_id = state["user_id"]
        stored_profile = await asyncio.to_thread(self.profiles.get, user_id)
        profile = stored_profile or UserContextProfile(user_id=user_id)
        state["profile"] = profile
        state["language"] = normalize_language_code(
            stored_profile.language if stored_profile is not None else state["transcription"].language
        )
        state["anchors"] = compute_anchors(state["timezone"] or profile.timezone, now=self._clock())
        return state

    async def node_normalize(self, state: VoiceState) -> VoiceState:
        state["cleaned"] = await asyncio.to_thread(
            self.normalizer.normalize, state["transcription"].text, state["language"]
        )
        return state

    async def node_record_history(self, state: VoiceState) -> VoiceState:
        # a dry run leaves no trace beyond the context rewrite; reprocessing re-reads history
        if state["skip_save_items"] or state["reprocess"]:
            return state
        transcription: TranscriptionResult = state["transcription"]
        transcript = VoiceTranscript(
            raw_text=transcription.text,
            cleaned_text=state["cleaned"],
            language=state["language"],
            duration_seconds=transcription.duration_seconds,
            source_recording_id=state["source_recording_id"],
            recorded_at=state["anchors"].now,
        )
        try:
            await asyncio.to_thread(self.history.record, state["user_id"], transcript)
        except Exception:
            logger.exception("[pipeline.history.error] user_id=%s", state["user_id"])
        return state

    async def node_assemble_and_extract(self, state: VoiceState) -> VoiceState:
        user_id = state["user_id"]
        anchors: TimeAnchors = state["anchors"]
        async with self._serialized(user_id):
            context_text = await self._assemble_context(user_id, anchors)
            state["outcome"] = await asyncio.to_thread(
                self.extractor.extract,
                state["cleaned"],
                context_document=context_text,
                anchors=anchors,
                language=state["language"],
            )
        return state

    async def node_finalize_items(self, state: VoiceState) -> VoiceState:
        state["items"] = self._finalize_items(state["outcome"], state["anchors"], state["language"])
        return state

    async def node_persist(self, state: VoiceState) -> VoiceState:
        items: ExtractedItems = state["items"]
        if state["skip_save_items"] or items.item_count() == 0:
            return state
        report = await asyncio.to_thread(
            persist_items, self.repositories, state["user_id"], items, state["source_recording_id"]
        )
        state["report"] = report
        if report.total_failure:
            logger.error("[pipeline.persist.failed] user_id=%s failed=%s", state["user_id"], report.failed)
            state["error"] = SAVE_FAILED
        return state

    async def node_schedule_background(self, state: VoiceState) -> VoiceState:
        if state["skip_save_items"]:
            return state
        user_id = state["user_id"]
        if state["report"] is not None:
            self._schedule_learning(user_id, state["report"])
        items: ExtractedItems = state["items"]
        if not items.content_predictions or state["reprocess"]:
            return state
        args = (user_id, items, state["profile"], state["anchors"], state["language"], state["source_recording_id"])
        if state["await_content"]:
            state["generated"] = await self.generate_content(*args)
        else:
            self.queue.submit("content_trigger", self.generate_content, *args, user_id=user_id)
        return state

    async def node_finalize(self, state: VoiceState) -> VoiceState:
        items: ExtractedItems = state["items"]
        outcome: ExtractionOutcome = state["outcome"]
        logger.info(
            "[pipeline.done] user_id=%s items=%s degraded=%s language=%s total_ms=%s",
            state["user_id"],
            items.item_count(),
            outcome.degraded,
            state["language"],
            int((time.perf_counter() - state["t_start"]) * 1000),
        )
        state["result"] = VoiceProcessingResult(
            success=True,
            transcription=state["cleaned"],
            language=state["language"],
            extracted_items=self._items_out(items, state["report"]),
            generated_content=state["generated"],
            degraded=outcome.degraded,
        )
        return state

    async def node_finalize_early(self, state: VoiceState) -> VoiceState:
        """Unsuccessful run: transcription failed or nothing could be saved."""
        items: Optional[ExtractedItems] = state.get("items")
        outcome: Optional[ExtractionOutcome] = state.get("outcome")
        logger.info(
            "[graph.finalize_early] user_id=%s reason=%s total_ms=%s",
            state["user_id"],
            "save_failed" if items is not None else "transcription_failed",
            int((time.perf_counter() - state["t_start"]) * 1000),
        )
        state["result"] = VoiceProcessingResult(
            success=False,
            transcription=state.get("cleaned"),
            language=state.get("language"),
            extracted_items=self._items_out(items, None) if items is not None else None,
            degraded=outcome.degraded if outcome is not None else False,
            error=state["error"],
        )
        return state

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _assemble_context(self, user_id: str, anchors: TimeAnchors) -> str:
        with traced_span("context_assembly", metadata={"timezone": anchors.timezone}):
            try:
                document = await asyncio.to_thread(self.assembler.assemble, user_id, now=anchors.now)
                return document.content
            except Exception as exc:
                logger.exception("[pipeline.context.error] user_id=%s; extracting without context", user_id)
                trace_error(exc, metadata={"stage": "context", "user_id": user_id})
                return ""

    @staticmethod
    def _finalize_items(outcome: ExtractionOutcome, anchors: TimeAnchors, language: str) -> ExtractedItems:
        items = outcome.items
        # a degraded summary is the model's own text, returned untouched
        summary = items.summary if outcome.degraded else postprocess_summary(items.summary, language)
        return items.model_copy(
            update={
                "tasks": [normalize_task_times(t, anchors.now) for t in items.tasks],
                "reminders": [normalize_reminder_time(r, anchors.now) for r in items.reminders],
                "summary": summary,
            }
        )

    def _schedule_learning(self, user_id: str, report: PersistenceReport) -> None:
        for task in report.tasks:
            self.queue.submit("learn_from_task", self.learner.learn_from_task, user_id, task, item_id=task.id)
        for reminder in report.reminders:
            self.queue.submit(
                "learn_from_reminder", self.learner.learn_from_reminder, user_id, reminder, item_id=reminder.id
            )

    async def generate_content(
        self,
        user_id: str,
        items: ExtractedItems,
        profile: UserContextProfile,
        anchors: TimeAnchors,
        language: str,
        source_recording_id: Optional[str] = None,
    ) -> List[GeneratedContentItem]:
        snapshot = await asyncio.to_thread(self.history.snapshot, user_id, anchors.now)
        voice_context = get_full_voice_context(snapshot, resolve_timezone(anchors.timezone))
        return await self.content_trigger.run(
            user_id,
            items.content_predictions,
            profile=profile,
            voice_context=voice_context,
            language=language,
            source_recording_id=source_recording_id,
        )

    @staticmethod
    def _items_out(items: ExtractedItems, report: Optional[PersistenceReport]) -> ExtractedItemsOut:
        if report is not None:
            tasks: List[Any] = report.tasks
            reminders: List[Any] = report.reminders
            health_notes: List[Any] = report.health_notes
        else:
            tasks, reminders, health_notes = items.tasks, items.reminders, items.health_notes
        return ExtractedItemsOut(
            tasks=[
                TaskOut(
                    id=getattr(t, "id", None),
                    title=t.title,
                    priority=t.priority,
                    due_date=t.due_date,
                    due_time=t.due_time,
                    category=t.category,
                )
                for t in tasks
            ],
            reminders=[
                ReminderOut(
                    id=getattr(r, "id", None),
                    title=r.title,
                    reminder_time=r.reminder_time,
                    priority=r.priority,
                    type=r.type,
                    tags=list(r.tags),
                )
                for r in reminders
            ],
            health_notes=[
                HealthNoteOut(id=getattr(n, "id", None), content=n.content, category=n.category)
                for n in health_notes
            ],
            general_notes=[GeneralNoteOut(content=n.content) for n in items.general_notes],
            summary=items.summary,
        )


# ============================================================================
# Routing
# ============================================================================

def decide_entry(state: VoiceState) -> str:
    """Stored transcripts skip audio loading."""
    return "load_profile" if state.get("reprocess") else "transcribe"


def decide_after_transcription(state: VoiceState) -> str:
    return "finalize_early" if state.get("error") else "load_profile"


def decide_after_persist(state: VoiceState) -> str:
    report = state.get("report")
    if report is not None and report.total_failure:
        return "finalize_early"
    return "schedule_background"


# ============================================================================
# Graph Construction
# ============================================================================

def build_voice_graph(pipeline: VoiceProcessingPipeline) -> StateGraph:
    """Build the voice note graph over ``pipeline``'s collaborators."""
    graph = StateGraph(dict)

    graph.add_node("init", pipeline.node_init)
    graph.add_node("transcribe", pipeline.node_transcribe)
    graph.add_node("load_profile", pipeline.node_load_profile)
    graph.add_node("normalize", pipeline.node_normalize)
    graph.add_node("record_history", pipeline.node_record_history)
    graph.add_node("assemble_and_extract", pipeline.node_assemble_and_extract)
    graph.add_node("finalize_items", pipeline.node_finalize_items)
    graph.add_node("persist", pipeline.node_persist)
    graph.add_node("schedule_background", pipeline.node_schedule_background)
    graph.add_node("finalize", pipeline.node_finalize)
    graph.add_node("finalize_early", pipeline.node_finalize_early)

    graph.set_entry_point("init")

    graph.add_conditional_edges(
        "init",
        decide_entry,
        {"transcribe": "transcribe", "load_profile": "load_profile"},
    )
    graph.add_conditional_edges(
        "transcribe",
        decide_after_transcription,
        {"load_profile": "load_profile", "finalize_early": "finalize_early"},
    )
    graph.add_edge("load_profile", "normalize")
    graph.add_edge("normalize", "record_history")
    graph.add_edge("record_history", "assemble_and_extract")
    graph.add_edge("assemble_and_extract", "finalize_items")
    graph.add_edge("finalize_items", "persist")
    graph.add_conditional_edges(
        "persist",
        decide_after_persist,
        {"schedule_background": "schedule_background", "finalize_early": "finalize_early"},
    )
    graph.add_edge("schedule_background", "finalize")
    graph.add_edge("finalize", END)
    graph.add_edge("finalize_early", END)

    return graph
