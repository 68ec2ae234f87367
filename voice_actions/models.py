from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


Priority = Literal["urgent", "high", "medium", "low"]
ReminderType = Literal["task", "todo", "reminder"]
HealthCategory = Literal[
    "symptom", "medication", "mood", "exercise", "diet", "sleep", "other"
]
GenerationType = Literal["explicit", "proactive"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Profession(BaseModel):
    id: str
    name: str


class ContentPreferences(BaseModel):
    preferred_content_types: List[str] = Field(default_factory=list)
    generation_preferences: str = ""


class UserContextProfile(BaseModel):
    user_id: str
    preferred_name: str = ""
    language: str = "en"
    timezone: Optional[str] = None
    profession: Optional[Profession] = None
    critical_artifacts: List[str] = Field(default_factory=list)
    social_platforms: List[str] = Field(default_factory=list)
    news_focus: List[str] = Field(default_factory=list)
    health_interests: List[str] = Field(default_factory=list)
    skincare_summary: Optional[str] = None
    health_summary: Optional[str] = None
    content_preferences: ContentPreferences = Field(default_factory=ContentPreferences)
    recent_documents: List[str] = Field(default_factory=list)
    last_topic: Optional[str] = None
    pending_actions: List[str] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=_utcnow)


class ContextDocument(BaseModel):
    user_id: str
    content: str
    updated_at: datetime = Field(default_factory=_utcnow)


class VoiceTranscript(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw_text: str
    cleaned_text: str
    language: str = "en"
    duration_seconds: Optional[float] = None
    source_recording_id: Optional[str] = None
    recorded_at: datetime = Field(default_factory=_utcnow)


class ContractModel(BaseModel):
    """Accepts both the camelCase wire names and snake_case field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("tags", mode="before", check_fields=False)
    @classmethod
    def _null_tags(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("priority", "type", "category", mode="before", check_fields=False)
    @classmethod
    def _lower_enums(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class Task(ContractModel):
    title: str
    description: Optional[str] = None
    priority: Priority = "medium"
    due_date: Optional[str] = None
    due_time: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class Reminder(ContractModel):
    title: str
    description: Optional[str] = None
    reminder_time: Optional[str] = None
    is_recurring: bool = False
    recurrence_pattern: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    priority: Priority = "medium"
    type: ReminderType = "reminder"


class HealthNote(ContractModel):
    content: str
    category: HealthCategory = "other"
    tags: List[str] = Field(default_factory=list)


class GeneralNote(ContractModel):
    content: str
    tags: List[str] = Field(default_factory=list)


class ContentPrediction(ContractModel):
    content_type: str
    description: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: Optional[str] = None
    suggested_title: Optional[str] = None
    target_platform: Optional[str] = None
    priority: Literal["high", "medium", "low"] = "medium"


class ExtractedItems(ContractModel):
    tasks: List[Task] = Field(default_factory=list)
    reminders: List[Reminder] = Field(default_factory=list)
    health_notes: List[HealthNote] = Field(default_factory=list)
    general_notes: List[GeneralNote] = Field(default_factory=list)
    content_predictions: List[ContentPrediction] = Field(default_factory=list)
    summary: str = ""

    def item_count(self) -> int:
        return (
            len(self.tasks)
            + len(self.reminders)
            + len(self.health_notes)
            + len(self.general_notes)
        )


class SavedTask(Task):
    id: str
    user_id: str
    source_recording_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None


class SavedReminder(Reminder):
    id: str
    user_id: str
    source_recording_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class SavedHealthNote(HealthNote):
    id: str
    user_id: str
    source: str = "voice"
    source_recording_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class GeneratedContent(BaseModel):
    document_id: str
    user_id: str
    title: str
    content_type: str
    content: str
    preview_text: str
    tags: List[str] = Field(default_factory=list)
    generation_type: GenerationType
    confidence: float
    source_recording_id: Optional[str] = None
    model_used: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class Notification(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    type: str = "ai_generated"
    related_document_id: Optional[str] = None
    deep_link: Optional[str] = None
    read: bool = False
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)


class UploadRecord(BaseModel):
    id: str
    user_id: str
    filename: str
    mime_type: str
    size_bytes: int
    path: str
    source_recording_id: str
    created_at: datetime = Field(default_factory=_utcnow)


class GeneratedContentItem(BaseModel):
    document_id: Optional[str] = None
    title: str
    content_type: str
    preview_text: str = ""
    status: Literal["ready", "failed"]
