import pytest

from voice_actions.config import get_upload_max_bytes
from voice_actions.dependencies.services import get_pipeline

from tests.fixtures.voice_fakes import RecordingToolCall, build_pipeline

USER = "user-1"


@pytest.fixture
def fake_pipeline(app_module):
    pipeline = build_pipeline(
        tool_call=RecordingToolCall(
            {
                "tasks": [{"title": "Book dentist", "dueDate": "tomorrow", "dueTime": "9:30 am"}],
                "reminders": [{"title": "Call mom", "reminderTime": "in 30 minutes"}],
                "summary": "Here's a summary: Dentist and a call. Let me know if you need anything else.",
            }
        )
    )
    app_module.app.dependency_overrides[get_pipeline] = lambda: pipeline
    return pipeline


def _upload(client, content_type, data=b"fake-audio", **form):
    return client.post(
        "/v1/voice/upload",
        files={"file": ("note.bin", data, content_type)},
        data={"user_id": USER, **form},
    )


class TestProcessEndpoint:
    def test_process_returns_structured_items(self, api_client, fake_pipeline):
        response = api_client.post(
            "/v1/voice/process",
            json={"user_id": USER, "audio_base64": "ZmFrZQ==", "source_recording_id": "rec-9"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["language"] == "en"
        items = body["extracted_items"]
        assert items["tasks"][0]["due_date"] == "2025-03-13"
        assert items["tasks"][0]["due_time"] == "09:30"
        assert items["reminders"][0]["reminder_time"] == "2025-03-12T10:30:00+00:00"
        assert items["summary"] == "Dentist and a call."

    def test_process_requires_audio(self, api_client, fake_pipeline):
        response = api_client.post("/v1/voice/process", json={"user_id": USER})
        assert response.status_code == 422

    def test_process_rejects_unknown_mime_type(self, api_client, fake_pipeline):
        response = api_client.post(
            "/v1/voice/process", json={"user_id": USER, "audio_base64": "ZmFrZQ==", "mime_type": "video/mp4"}
        )
        assert response.status_code == 422

    def test_process_without_llm_is_rejected(self, api_client, fake_pipeline, monkeypatch):
        monkeypatch.setattr("voice_actions.routers.voice.is_llm_configured", lambda: False)
        response = api_client.post("/v1/voice/process", json={"user_id": USER, "audio_base64": "ZmFrZQ=="})
        assert response.status_code == 400
        assert response.json()["detail"] == "LLM is not configured"


class TestUploadEndpoint:
    def test_video_is_rejected(self, api_client, fake_pipeline):
        response = _upload(api_client, "video/mp4")
        assert response.status_code == 415
        assert "Video" in response.json()["detail"]

    def test_unknown_type_is_rejected(self, api_client, fake_pipeline):
        assert _upload(api_client, "application/pdf").status_code == 415

    def test_oversize_is_rejected(self, api_client, fake_pipeline, monkeypatch):
        monkeypatch.setenv("UPLOAD_MAX_BYTES", "10")
        get_upload_max_bytes.cache_clear()
        response = _upload(api_client, "audio/webm", data=b"x" * 11)
        assert response.status_code == 413

    def test_rejection_happens_before_llm_check(self, api_client, fake_pipeline, monkeypatch):
        monkeypatch.setattr("voice_actions.routers.voice.is_llm_configured", lambda: False)
        assert _upload(api_client, "video/webm").status_code == 415
        assert _upload(api_client, "audio/webm").status_code == 400

    def test_upload_is_stored_and_processed(self, api_client, fake_pipeline):
        response = _upload(api_client, "audio/webm;codecs=opus", timezone="UTC")
        assert response.status_code == 200
        body = response.json()
        upload = body["upload"]
        assert upload["mime_type"] == "audio/webm"
        assert upload["size_bytes"] == len(b"fake-audio")
        assert body["result"]["success"] is True

        saved = fake_pipeline.repositories.tasks.list_for_user(USER)
        assert saved[0].source_recording_id == upload["source_recording_id"]

        listed = api_client.get("/v1/voice/uploads", params={"user_id": USER}).json()
        assert [u["id"] for u in listed["uploads"]] == [upload["id"]]


class TestReprocessEndpoint:
    def test_reprocess_recent_recordings(self, api_client, fake_pipeline):
        api_client.post(
            "/v1/voice/process",
            json={"user_id": USER, "audio_base64": "ZmFrZQ==", "source_recording_id": "rec-9"},
        )

        response = api_client.post("/v1/voice/reprocess", json={"user_id": USER})
        assert response.status_code == 200
        body = response.json()
        assert body["processed"] == 1
        recording = body["results"][0]
        assert recording["source_recording_id"] == "rec-9"
        assert recording["result"]["success"] is True
        assert recording["result"]["extracted_items"]["tasks"][0]["title"] == "Book dentist"
        assert len(fake_pipeline.repositories.tasks.list_for_user(USER)) == 2

    def test_unknown_recording_is_not_found(self, api_client, fake_pipeline):
        response = api_client.post("/v1/voice/reprocess", json={"user_id": USER, "source_recording_id": "missing"})
        assert response.status_code == 404

    def test_limit_is_bounded(self, api_client, fake_pipeline):
        assert api_client.post("/v1/voice/reprocess", json={"user_id": USER, "limit": 0}).status_code == 422
