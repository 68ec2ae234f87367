from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from voice_actions.models import GeneratedContentItem, Profession, ContentPreferences


AudioMimeType = Literal[
	"audio/webm",
	"audio/mpeg",
	"audio/mp3",
	"audio/mp4",
	"audio/wav",
	"audio/ogg",
	"audio/flac",
]


class ProcessVoiceRequest(BaseModel):
	user_id: str = Field(min_length=1)
	audio_url: Optional[str] = None
	audio_base64: Optional[str] = None
	mime_type: AudioMimeType = "audio/webm"
	source_recording_id: Optional[str] = None
	skip_save_items: bool = False
	timezone: Optional[str] = None
	await_content: bool = False

	@model_validator(mode="after")
	def _require_audio(self) -> "ProcessVoiceRequest":
		if not self.audio_url and not self.audio_base64:
			raise ValueError("either audio_url or audio_base64 is required")
		return self


class TaskOut(BaseModel):
	id: Optional[str] = None
	title: str
	priority: str
	due_date: Optional[str] = None
	due_time: Optional[str] = None
	category: Optional[str] = None


class ReminderOut(BaseModel):
	id: Optional[str] = None
	title: str
	reminder_time: Optional[str] = None
	priority: str
	type: str
	tags: List[str] = Field(default_factory=list)


class HealthNoteOut(BaseModel):
	id: Optional[str] = None
	content: str
	category: str


class GeneralNoteOut(BaseModel):
	content: str


class ExtractedItemsOut(BaseModel):
	tasks: List[TaskOut] = Field(default_factory=list)
	reminders: List[ReminderOut] = Field(default_factory=list)
	health_notes: List[HealthNoteOut] = Field(default_factory=list)
	general_notes: List[GeneralNoteOut] = Field(default_factory=list)
	summary: str = ""


class VoiceProcessingResult(BaseModel):
	success: bool
	transcription: Optional[str] = None
	language: Optional[str] = None
	extracted_items: Optional[ExtractedItemsOut] = None
	generated_content: List[GeneratedContentItem] = Field(default_factory=list)
	degraded: bool = False
	error: Optional[str] = None


class ReprocessRequest(BaseModel):
	user_id: str = Field(min_length=1)
	source_recording_id: Optional[str] = None
	limit: int = Field(default=5, ge=1, le=20)
	skip_save_items: bool = False
	timezone: Optional[str] = None


class ReprocessedRecording(BaseModel):
	source_recording_id: Optional[str] = None
	recorded_at: datetime
	result: VoiceProcessingResult


class ReprocessResponse(BaseModel):
	user_id: str
	processed: int
	results: List[ReprocessedRecording] = Field(default_factory=list)


class OnboardingRequest(BaseModel):
	user_id: str = Field(min_length=1)
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
	content_preferences: Optional[ContentPreferences] = None


class ContextDocumentResponse(BaseModel):
	user_id: str
	content: str
	updated_at: datetime


class PatternSuggestionRequest(BaseModel):
	user_id: str = Field(min_length=1)
	title: str = Field(min_length=1)
	category: Optional[str] = None
	tags: Optional[List[str]] = None


class PatternSuggestionResponse(BaseModel):
	suggested_category: Optional[str] = None
	suggested_tags: List[str] = Field(default_factory=list)
	suggested_priority: Optional[str] = None
	suggested_due_time: Optional[str] = None
	suggested_recurrence: Optional[str] = None
	confidence: Dict[str, float] = Field(default_factory=dict)


class PatternOut(BaseModel):
	id: Optional[str] = None
	pattern_type: str
	pattern_data: Dict[str, Any] = Field(default_factory=dict)
	frequency: int
	confidence_score: float
	last_seen_at: Optional[datetime] = None


class PatternListResponse(BaseModel):
	user_id: str
	patterns: List[PatternOut] = Field(default_factory=list)


class CompleteTaskResponse(BaseModel):
	task_id: str
	completed_at: datetime
	learning_scheduled: bool


class PatternAnalysisRequest(BaseModel):
	user_id: str = Field(min_length=1)


class PatternAnalysisResponse(BaseModel):
	user_id: str
	tasks_analyzed: int
	reminders_analyzed: int
	patterns_updated: int
	by_type: Dict[str, int] = Field(default_factory=dict)
