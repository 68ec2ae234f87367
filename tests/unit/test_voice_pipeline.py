"""End-to-end pipeline runs against in-memory collaborators."""
import asyncio
import threading

from voice_actions.models import ExtractedItems, UserContextProfile, VoiceTranscript
from voice_actions.schemas import ProcessVoiceRequest
from voice_actions.services.extraction import ExtractionOutcome
from voice_actions.services.persistence import (
    HealthNoteRepository,
    ItemRepositories,
    ReminderRepository,
    TaskRepository,
)
from voice_actions.services.transcription import TranscriptionResult
from voice_actions.services.voice_pipeline import SAVE_FAILED

from tests.fixtures.voice_fakes import ANCHOR, FakeTranscriber, RecordingToolCall, build_pipeline

USER = "user-1"


class _FlakyTaskRepository(TaskRepository):
    def __init__(self, failing_titles):
        super().__init__(conn=None)
        self.failing_titles = set(failing_titles)

    def save(self, user_id, task, source_recording_id=None):
        if task.title in self.failing_titles:
            raise ConnectionError("tasks table unavailable")
        return super().save(user_id, task, source_recording_id)


def _repositories(tasks=None) -> ItemRepositories:
    return ItemRepositories(
        tasks=tasks or TaskRepository(conn=None),
        reminders=ReminderRepository(conn=None),
        health_notes=HealthNoteRepository(conn=None),
    )


def _request(**overrides) -> ProcessVoiceRequest:
    data = {"user_id": USER, "audio_base64": "ZmFrZQ==", "source_recording_id": "rec-1"}
    data.update(overrides)
    return ProcessVoiceRequest(**data)


def _run(pipeline, request=None, drain=True):
    async def scenario():
        result = await pipeline.process(request or _request())
        if drain:
            await pipeline.queue.drain(timeout=5)
        return result

    return asyncio.run(scenario())


class TestScenarios:
    """Worked scenarios with a fixed Wednesday 10:00 UTC clock."""

    def test_reminder_in_30_minutes(self):
        tool_call = RecordingToolCall(
            {
                "reminders": [{"title": "Call mom", "reminderTime": "in 30 minutes"}],
                "summary": "Reminder to call mom.",
            }
        )
        pipeline = build_pipeline(transcript="Remind me to call mom in 30 minutes.", tool_call=tool_call)

        result = _run(pipeline)

        assert result.success is True
        assert result.transcription == "Remind me to call mom in 30 minutes."
        reminder = result.extracted_items.reminders[0]
        assert reminder.title == "Call mom"
        assert reminder.reminder_time == "2025-03-12T10:30:00+00:00"
        assert reminder.id is not None
        assert result.extracted_items.summary == "Reminder to call mom."

    def test_relative_task_date_and_time(self):
        tool_call = RecordingToolCall(
            {"tasks": [{"title": "Football match", "dueDate": "tomorrow", "dueTime": "3pm"}], "summary": "Football."}
        )
        pipeline = build_pipeline(transcript="I have a football match tomorrow at 3pm.", tool_call=tool_call)

        result = _run(pipeline)

        task = result.extracted_items.tasks[0]
        assert (task.due_date, task.due_time) == ("2025-03-13", "15:00")
        saved = pipeline.repositories.tasks.list_for_user(USER)
        assert saved[0].due_date == "2025-03-13"
        assert saved[0].source_recording_id == "rec-1"

    def test_no_tool_call_returns_model_text_as_summary(self):
        tool_call = RecordingToolCall(None, text="I heard you talk about the weather.")
        pipeline = build_pipeline(transcript="What a nice day.", tool_call=tool_call)

        result = _run(pipeline)

        assert result.success is True
        assert result.degraded is True
        assert result.extracted_items.tasks == []
        assert result.extracted_items.summary == "I heard you talk about the weather."

    def test_one_failed_save_does_not_fail_the_run(self):
        tool_call = RecordingToolCall(
            {"tasks": [{"title": "Buy milk"}, {"title": "Broken"}, {"title": "Pay rent"}], "summary": "Chores."}
        )
        repos = _repositories(tasks=_FlakyTaskRepository({"Broken"}))
        pipeline = build_pipeline(tool_call=tool_call, repositories=repos)

        result = _run(pipeline)

        assert result.success is True
        assert [t.title for t in result.extracted_items.tasks] == ["Buy milk", "Pay rent"]
        assert len(repos.tasks.list_for_user(USER)) == 2


class TestFailures:
    def test_transcription_failure_is_fatal(self):
        pipeline = build_pipeline(transcriber=FakeTranscriber(""))

        result = _run(pipeline)

        assert result.success is False
        assert result.error == "transcription returned no text"
        assert result.extracted_items is None

    def test_every_save_failing_fails_the_run(self):
        tool_call = RecordingToolCall({"tasks": [{"title": "Broken"}], "summary": "One task."})
        pipeline = build_pipeline(tool_call=tool_call, repositories=_repositories(_FlakyTaskRepository({"Broken"})))

        result = _run(pipeline)

        assert result.success is False
        assert result.error == SAVE_FAILED
        assert result.extracted_items.tasks[0].title == "Broken"

    def test_context_failure_extracts_without_context(self):
        tool_call = RecordingToolCall({"tasks": [{"title": "Buy milk"}], "summary": "Milk."})
        pipeline = build_pipeline(tool_call=tool_call)

        def _broken(*_args, **_kwargs):
            raise RuntimeError("redis down")

        pipeline.assembler.assemble = _broken

        result = _run(pipeline)

        assert result.success is True
        assert "<user_context>" not in tool_call.calls[0]["system"]


class TestSideEffects:
    def test_history_and_context_document_are_updated(self):
        tool_call = RecordingToolCall({"summary": "Nothing to do."})
        pipeline = build_pipeline(transcript="Dentist appointment went well. Nothing else.", tool_call=tool_call)

        _run(pipeline)

        document = pipeline.assembler.documents.get(USER)
        assert "today_topics: Dentist appointment went well" in document.content
        assert document.content in tool_call.calls[0]["system"]

    def test_dry_run_leaves_no_trace(self):
        tool_call = RecordingToolCall(
            {
                "tasks": [{"title": "Buy milk"}],
                "contentPredictions": [{"contentType": "email", "description": "Email", "confidence": 0.9}],
                "summary": "Milk.",
            }
        )
        pipeline = build_pipeline(tool_call=tool_call)

        result = _run(pipeline, _request(skip_save_items=True, await_content=True))

        assert result.success is True
        assert result.extracted_items.tasks[0].id is None
        assert result.generated_content == []
        assert pipeline.repositories.tasks.list_for_user(USER) == []
        assert pipeline.history.list_since(USER, pipeline._clock().replace(hour=0)) == []
        assert pipeline.learner.store.list_patterns(USER) == []

    def test_saved_items_feed_pattern_learning(self):
        tool_call = RecordingToolCall(
            {"tasks": [{"title": "Gym", "category": "Health", "dueDate": "tomorrow", "dueTime": "07:00"}], "summary": "Gym."}
        )
        pipeline = build_pipeline(tool_call=tool_call)

        _run(pipeline)

        types = {p.pattern_type for p in pipeline.learner.store.list_patterns(USER)}
        assert {"timing", "category", "priority"} <= types
        assert pipeline.queue.stats()["succeeded"] >= 1

    def test_awaited_content_is_drafted_and_announced(self):
        tool_call = RecordingToolCall(
            {
                "generalNotes": [{"content": "Launch went well"}],
                "contentPredictions": [
                    {"contentType": "linkedin_post", "description": "Post about the launch", "confidence": 0.9},
                    {"contentType": "tweet", "description": "Low confidence idea", "confidence": 0.2},
                ],
                "summary": "Launch.",
            }
        )
        pipeline = build_pipeline(tool_call=tool_call)

        result = _run(pipeline, _request(await_content=True))

        assert [(c.content_type, c.status) for c in result.generated_content] == [("linkedin_post", "ready")]
        notifications = pipeline.content_trigger.dispatcher.store.list_for_user(USER)
        assert len(notifications) == 1
        assert notifications[0].message == 'I drafted a Linkedin Post: "Draft linkedin_post"'
        profile = pipeline.profiles.get(USER)
        assert profile.recent_documents == ["Draft linkedin_post"]

    def test_content_runs_in_background_by_default(self):
        tool_call = RecordingToolCall(
            {
                "contentPredictions": [{"contentType": "email", "description": "Follow-up email", "confidence": 0.7}],
                "summary": "Email.",
            }
        )
        pipeline = build_pipeline(tool_call=tool_call)

        result = _run(pipeline)

        assert result.generated_content == []
        documents = pipeline.content_trigger.store.list_for_user(USER)
        assert [d.generation_type for d in documents] == ["proactive"]

    def test_stored_profile_language_wins(self):
        tool_call = RecordingToolCall({"summary": "Rien."})
        pipeline = build_pipeline(
            transcript="Acheter du pain.", tool_call=tool_call, transcriber=FakeTranscriber("Acheter du pain.", "en")
        )
        pipeline.profiles.save(UserContextProfile(user_id=USER, language="fr"))

        result = _run(pipeline)

        assert result.language == "fr"
        assert "MUST be written in French" in tool_call.calls[0]["user"]

    def test_request_timezone_sets_the_anchor(self):
        tool_call = RecordingToolCall({"tasks": [{"title": "Call", "dueDate": "today"}], "summary": "Call."})
        pipeline = build_pipeline(tool_call=tool_call)

        result = _run(pipeline, _request(timezone="Pacific/Kiritimati"))

        # 10:00 UTC is already the next day at UTC+14
        assert result.extracted_items.tasks[0].due_date == "2025-03-13"


class _OrderedTranscriber:
    """Hands out notes in call order; every call after the first waits for ``gate``."""

    def __init__(self, notes, gate):
        self.notes = list(notes)
        self.gate = gate
        self._calls = 0
        self._lock = threading.Lock()

    def transcribe(self, audio, mime_type):
        with self._lock:
            index = self._calls
            self._calls += 1
        if index > 0:
            self.gate.wait(timeout=5)
        return TranscriptionResult(text=self.notes[index], language="en", duration_seconds=1.0)


class _GatedExtractor:
    """Records the context each extraction read and holds the first one until released."""

    def __init__(self):
        self.calls = []
        self.started = threading.Event()
        self.release = threading.Event()

    def extract(self, cleaned_text, *, context_document, anchors, language):
        self.calls.append((cleaned_text, context_document))
        if len(self.calls) == 1:
            self.started.set()
            self.release.wait(timeout=5)
        return ExtractionOutcome(items=ExtractedItems(summary="Noted."))


class TestPerUserSerialization:
    def test_context_is_not_rewritten_while_an_extraction_reads_it(self):
        extractor = _GatedExtractor()
        pipeline = build_pipeline(
            transcriber=_OrderedTranscriber(["Dentist went well.", "Bought new shoes."], gate=extractor.started)
        )
        pipeline.extractor = extractor
        stored_meanwhile = {}

        async def scenario():
            async def watch():
                await asyncio.to_thread(extractor.started.wait, 5)
                try:
                    # leaves the second note time to reach the context rewrite
                    await asyncio.sleep(0.2)
                    stored_meanwhile["content"] = pipeline.assembler.documents.get(USER).content
                finally:
                    extractor.release.set()

            results = await asyncio.gather(
                pipeline.process(_request(source_recording_id="rec-a")),
                pipeline.process(_request(source_recording_id="rec-b")),
                watch(),
            )
            await pipeline.queue.drain(timeout=5)
            return results[:2]

        results = asyncio.run(scenario())

        assert all(result.success for result in results)
        assert [text for text, _ in extractor.calls] == ["Dentist went well.", "Bought new shoes."]
        first_read, second_read = (document for _, document in extractor.calls)
        assert stored_meanwhile["content"] == first_read
        assert "Dentist went well" in first_read
        assert "Bought new shoes" not in first_read
        assert "Bought new shoes" in second_read
        assert pipeline._user_locks == {}

    def test_user_lock_is_dropped_after_the_run(self):
        pipeline = build_pipeline(tool_call=RecordingToolCall({"summary": "Ok."}))

        _run(pipeline)
        _run(pipeline, _request(user_id="user-2"))

        assert pipeline._user_locks == {}


def _transcript(recording_id, hour, text="Buy milk tomorrow."):
    return VoiceTranscript(
        raw_text=text,
        cleaned_text=text,
        language="en",
        source_recording_id=recording_id,
        recorded_at=ANCHOR.replace(hour=hour),
    )


def _reprocess(pipeline, **kwargs):
    async def scenario():
        results = await pipeline.reprocess(USER, **kwargs)
        await pipeline.queue.drain(timeout=5)
        return results

    return asyncio.run(scenario())


class TestReprocess:
    """Extraction re-run over transcripts already in the voice history."""

    def test_stored_transcript_is_extracted_again(self):
        tool_call = RecordingToolCall({"tasks": [{"title": "Buy milk", "dueDate": "tomorrow"}], "summary": "Milk."})
        pipeline = build_pipeline(transcript="Buy milk tomorrow.", tool_call=tool_call)
        _run(pipeline)

        results = _reprocess(pipeline)

        assert [r.source_recording_id for r in results] == ["rec-1"]
        result = results[0].result
        assert result.success is True
        assert result.transcription == "Buy milk tomorrow."
        assert [(t.title, t.due_date) for t in result.extracted_items.tasks] == [("Buy milk", "2025-03-13")]
        saved = pipeline.repositories.tasks.list_for_user(USER)
        assert [t.source_recording_id for t in saved] == ["rec-1", "rec-1"]
        assert "Buy milk tomorrow." in tool_call.calls[1]["user"]
        assert len(pipeline.history.list_recent(USER)) == 1
        assert {p.pattern_type for p in pipeline.learner.store.list_patterns(USER)} >= {"priority"}

    def test_newest_recordings_first_up_to_the_limit(self):
        pipeline = build_pipeline(tool_call=RecordingToolCall({"summary": "Ok."}))
        for recording_id, hour in (("rec-old", 7), ("rec-new", 9), ("rec-mid", 8)):
            pipeline.history.record(USER, _transcript(recording_id, hour))

        results = _reprocess(pipeline, limit=2)

        assert [r.source_recording_id for r in results] == ["rec-new", "rec-mid"]
        assert [r.recorded_at.hour for r in results] == [9, 8]

    def test_single_recording_by_id(self):
        pipeline = build_pipeline(tool_call=RecordingToolCall({"summary": "Ok."}))
        for recording_id, hour in (("rec-old", 7), ("rec-new", 9)):
            pipeline.history.record(USER, _transcript(recording_id, hour))

        assert [r.source_recording_id for r in _reprocess(pipeline, source_recording_id="rec-old")] == ["rec-old"]
        assert _reprocess(pipeline, source_recording_id="missing") == []

    def test_no_content_is_drafted(self):
        tool_call = RecordingToolCall(
            {
                "contentPredictions": [{"contentType": "email", "description": "Follow-up", "confidence": 0.9}],
                "summary": "Email.",
            }
        )
        pipeline = build_pipeline(tool_call=tool_call)
        pipeline.history.record(USER, _transcript("rec-1", 9, text="Send the follow-up email."))

        results = _reprocess(pipeline)

        assert results[0].result.success is True
        assert results[0].result.generated_content == []
        assert pipeline.content_trigger.store.list_for_user(USER) == []

    def test_dry_run_saves_nothing(self):
        tool_call = RecordingToolCall({"tasks": [{"title": "Buy milk"}], "summary": "Milk."})
        pipeline = build_pipeline(tool_call=tool_call)
        pipeline.history.record(USER, _transcript("rec-1", 9))

        results = _reprocess(pipeline, skip_save_items=True)

        assert results[0].result.extracted_items.tasks[0].id is None
        assert pipeline.repositories.tasks.list_for_user(USER) == []
