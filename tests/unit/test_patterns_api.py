from datetime import datetime, timezone

import pytest

from voice_actions.dependencies.services import get_item_repositories, get_pattern_learner
from voice_actions.models import SavedTask, Task

USER = "user-1"


@pytest.fixture
def learned(app_module):
    learner = get_pattern_learner()
    for index in range(4):
        learner.learn_from_task(
            USER,
            SavedTask(
                id=f"task-{index}",
                user_id=USER,
                title="Gym session",
                category="health",
                tags=["gym", "fitness"],
                priority="high",
                due_date="2025-03-13",
                due_time="07:00",
                created_at=datetime(2025, 3, 12, tzinfo=timezone.utc),
            ),
        )
    return learner.store


def test_suggestions_endpoint(api_client, learned):
    response = api_client.post("/v1/patterns/suggestions", json={"user_id": USER, "title": "Evening gym class"})
    assert response.status_code == 200
    body = response.json()
    assert body["suggested_category"] == "health"
    assert body["suggested_tags"] == ["fitness", "gym"]
    assert body["suggested_priority"] == "high"
    assert body["suggested_due_time"] == "07:00"
    assert body["confidence"]["category"] == 0.4


def test_suggestions_for_unknown_user_are_empty(api_client):
    body = api_client.post("/v1/patterns/suggestions", json={"user_id": "nobody", "title": "Anything"}).json()
    assert body["suggested_category"] is None
    assert body["suggested_tags"] == []
    assert body["confidence"] == {}


def test_list_patterns_filters(api_client, learned):
    body = api_client.get("/v1/patterns", params={"user_id": USER}).json()
    assert {p["pattern_type"] for p in body["patterns"]} == {"timing", "category", "priority", "tags"}
    assert all(p["frequency"] == 4 for p in body["patterns"])

    only_category = api_client.get("/v1/patterns", params={"user_id": USER, "pattern_type": "category"}).json()
    assert [p["pattern_data"]["category"] for p in only_category["patterns"]] == ["health"]

    confident = api_client.get("/v1/patterns", params={"user_id": USER, "min_confidence": 0.9}).json()
    assert confident["patterns"] == []


def test_analyze_relearns_from_saved_items(api_client):
    repositories = get_item_repositories()
    for _ in range(3):
        repositories.tasks.save(USER, Task(title="Gym session", category="health", priority="high"))

    response = api_client.post("/v1/patterns/analyze", json={"user_id": USER})
    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == USER
    assert body["tasks_analyzed"] == 3
    assert body["reminders_analyzed"] == 0
    assert body["by_type"] == {"category": 1, "priority": 1}

    category = api_client.get("/v1/patterns", params={"user_id": USER, "pattern_type": "category"}).json()
    assert [p["frequency"] for p in category["patterns"]] == [3]


def test_analyze_requires_a_user(api_client):
    assert api_client.post("/v1/patterns/analyze", json={"user_id": ""}).status_code == 422
