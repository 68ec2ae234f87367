import threading
from datetime import datetime, timedelta, timezone

from voice_actions.models import Reminder, SavedReminder, SavedTask, Task
from voice_actions.services.pattern_learning import (
    PatternAnalysis,
    PatternLearner,
    PatternObservation,
    analyze_reminder,
    analyze_task,
    time_bucket,
)
from voice_actions.services.pattern_storage import (
    PatternStore,
    format_patterns_for_context,
    pattern_confidence,
)
from voice_actions.services.persistence import (
    HealthNoteRepository,
    ItemRepositories,
    ReminderRepository,
    TaskRepository,
)

USER = "user-1"
CREATED = datetime(2025, 3, 12, 10, 0, tzinfo=timezone.utc)


def _task(**overrides) -> SavedTask:
    data = {
        "id": "task-1",
        "user_id": USER,
        "title": "Gym session",
        "category": "Health",
        "tags": ["Gym", "fitness"],
        "priority": "high",
        "due_date": "2025-03-13",
        "due_time": "07:00",
        "created_at": CREATED,
    }
    data.update(overrides)
    return SavedTask(**data)


class TestConfidence:
    """Frequency accumulates per signature and confidence saturates."""

    def test_ten_observations_saturate(self):
        store = PatternStore(conn=None)
        observation = PatternObservation("category", {"item": "task", "category": "health"})

        for _ in range(10):
            pattern = store.upsert(USER, observation)
        assert pattern.frequency == 10
        assert pattern.confidence_score == 1.0

        pattern = store.upsert(USER, observation)
        assert pattern.frequency == 11
        assert pattern.confidence_score == 1.0

    def test_confidence_never_decreases(self):
        store = PatternStore(conn=None)
        observation = PatternObservation("timing", {"item": "task", "preferred_time": "07:00"})
        scores = [store.upsert(USER, observation).confidence_score for _ in range(12)]
        assert scores == sorted(scores)
        assert scores[0] == 0.1

    def test_sparse_observations_are_halved(self):
        assert pattern_confidence(4) == 0.4
        assert pattern_confidence(4, sparse=True) == 0.2
        assert pattern_confidence(25, sparse=True) == 0.5

    def test_signature_ignores_key_order(self):
        first = PatternObservation("tags", {"tags": ["a"], "item": "task"})
        second = PatternObservation("tags", {"item": "task", "tags": ["a"]})
        assert first.signature == second.signature

    def test_users_are_isolated(self):
        store = PatternStore(conn=None)
        observation = PatternObservation("category", {"item": "task", "category": "work"})
        store.upsert(USER, observation)
        store.upsert("someone-else", observation)
        assert store.list_patterns(USER)[0].frequency == 1
        store.delete_user(USER)
        assert store.list_patterns(USER) == []
        assert len(store.list_patterns("someone-else")) == 1


class TestAnalysis:
    def test_task_observations(self):
        observations = {o.pattern_type: o for o in analyze_task(_task())}
        assert set(observations) == {"timing", "category", "priority", "tags"}
        assert observations["timing"].pattern_data == {
            "item": "task",
            "preferred_time": "07:00",
            "time_bucket": "morning",
            "due_weekday": "thursday",
        }
        assert observations["tags"].pattern_data["tags"] == ["fitness", "gym"]

    def test_task_without_category_has_sparse_priority(self):
        observations = {o.pattern_type: o for o in analyze_task(_task(category=None, tags=[], due_date=None))}
        assert set(observations) == {"priority"}
        assert observations["priority"].sparse is True

    def test_completed_task_reports_completion_speed(self):
        task = _task(completed_at=CREATED + timedelta(hours=30))
        completion = [o for o in analyze_task(task) if o.pattern_type == "completion"]
        assert completion[0].pattern_data["completed"] == "within_3_days"

    def test_recurring_reminder(self):
        reminder = SavedReminder(
            id="rem-1",
            user_id=USER,
            title="Take vitamins",
            reminder_time="2025-03-13T08:00:00+00:00",
            is_recurring=True,
            recurrence_pattern="Daily",
        )
        observations = {o.pattern_type: o for o in analyze_reminder(reminder)}
        assert observations["timing"].pattern_data["time_bucket"] == "morning"
        assert observations["recurring"].pattern_data["frequency"] == "daily"
        assert observations["recurring"].pattern_data["common_day"] == "thursday"

    def test_time_buckets(self):
        assert [time_bucket(t) for t in ("06:00", "13:00", "19:30", "23:00", None)] == [
            "morning",
            "afternoon",
            "evening",
            "night",
            None,
        ]


class TestSuggestions:
    def _learned_store(self) -> PatternStore:
        store = PatternStore(conn=None)
        learner = PatternLearner(store)
        for index in range(3):
            learner.learn_from_task(USER, _task(id=f"task-{index}"))
        learner.learn_from_reminder(
            USER,
            SavedReminder(
                id="rem-1",
                user_id=USER,
                title="Take vitamins",
                reminder_time="2025-03-13T08:00:00+00:00",
                is_recurring=True,
                recurrence_pattern="daily",
            ),
        )
        return store

    def test_suggestions_follow_learned_habits(self):
        suggestions = self._learned_store().suggestions(USER, "Morning gym run")

        assert suggestions.suggested_category == "health"
        assert suggestions.suggested_tags == ["fitness", "gym"]
        assert suggestions.suggested_priority == "high"
        assert suggestions.suggested_due_time in {"07:00", "08:00"}
        assert suggestions.confidence["category"] == 0.3

    def test_given_tags_are_not_suggested_again(self):
        suggestions = self._learned_store().suggestions(USER, "Morning gym run", tags=["gym"])
        assert "gym" not in suggestions.suggested_tags

    def test_recurrence_matches_title_words(self):
        suggestions = self._learned_store().suggestions(USER, "Buy vitamins")
        assert suggestions.suggested_recurrence == "daily"

    def test_no_patterns_no_suggestions(self):
        suggestions = PatternStore(conn=None).suggestions(USER, "Anything")
        assert suggestions.suggested_category is None
        assert suggestions.suggested_tags == []
        assert suggestions.confidence == {}

    def test_context_summary(self):
        store = self._learned_store()
        summary = format_patterns_for_context(store.list_patterns(USER))
        assert summary.common_categories == ["health"]
        assert summary.task_preferred_times == ["07:00"]
        assert summary.reminder_preferred_times == ["08:00"]
        assert summary.tag_combinations == ["fitness+gym"]


class TestConcurrency:
    def test_parallel_upserts_lose_no_updates(self):
        store = PatternStore(conn=None)
        observation = PatternObservation("category", {"item": "task", "category": "work"})
        workers, rounds = 8, 25
        start = threading.Barrier(workers)

        def _worker():
            start.wait()
            for _ in range(rounds):
                store.upsert(USER, observation)

        threads = [threading.Thread(target=_worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        pattern = store.list_patterns(USER)[0]
        assert pattern.frequency == workers * rounds
        assert pattern.confidence_score == 1.0


class _FailingTimingStore(PatternStore):
    def upsert(self, user_id, observation, seen_at=None):
        if observation.pattern_type == "timing":
            raise RuntimeError("pattern table unavailable")
        return super().upsert(user_id, observation, seen_at=seen_at)


class TestLearner:
    def test_one_failing_observation_keeps_the_rest(self):
        store = _FailingTimingStore(conn=None)
        applied = PatternLearner(store).learn_from_task(USER, _task())

        assert applied == 3
        assert {p.pattern_type for p in store.list_patterns(USER)} == {"category", "priority", "tags"}


def _repositories() -> ItemRepositories:
    return ItemRepositories(
        tasks=TaskRepository(conn=None),
        reminders=ReminderRepository(conn=None),
        health_notes=HealthNoteRepository(conn=None),
    )


class TestBatchAnalysis:
    """Re-deriving patterns from every saved item of a user."""

    def _gym(self) -> Task:
        return Task(
            title="Gym session",
            category="health",
            tags=["gym"],
            priority="high",
            due_date="2025-03-13",
            due_time="07:00",
        )

    def test_counts_every_saved_item(self):
        repos = _repositories()
        for _ in range(3):
            repos.tasks.save(USER, self._gym())
        repos.reminders.save(
            USER,
            Reminder(
                title="Take vitamins",
                reminder_time="2025-03-13T08:00:00+00:00",
                is_recurring=True,
                recurrence_pattern="daily",
            ),
        )
        store = PatternStore(conn=None)

        report = PatternLearner(store).analyze_user(USER, repos)

        assert isinstance(report, PatternAnalysis)
        assert (report.tasks_analyzed, report.reminders_analyzed) == (3, 1)
        assert report.by_type["category"] == 1
        assert report.by_type["recurring"] == 1
        category = store.list_patterns(USER, "category")[0]
        assert category.frequency == 3
        assert category.confidence_score == 0.3

    def test_rerunning_changes_nothing(self):
        repos = _repositories()
        for _ in range(2):
            repos.tasks.save(USER, self._gym())
        store = PatternStore(conn=None)
        learner = PatternLearner(store)

        learner.analyze_user(USER, repos)
        learner.analyze_user(USER, repos)

        assert {p.frequency for p in store.list_patterns(USER)} == {2}

    def test_never_lowers_learned_frequency(self):
        repos = _repositories()
        saved = repos.tasks.save(USER, self._gym())
        store = PatternStore(conn=None)
        learner = PatternLearner(store)
        for _ in range(5):
            learner.learn_from_task(USER, saved)

        learner.analyze_user(USER, repos)

        assert store.list_patterns(USER, "category")[0].frequency == 5

    def test_user_without_items(self):
        report = PatternLearner(PatternStore(conn=None)).analyze_user(USER, _repositories())
        assert report.patterns_updated == 0
        assert report.by_type == {}
