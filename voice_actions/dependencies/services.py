"""Process-wide service instances shared by the routers and the pipeline."""

from functools import lru_cache

from voice_actions.services.background import BackgroundTaskQueue
from voice_actions.services.content_trigger import (
	ContentDrafter,
	ContentPredictionTrigger,
	GeneratedContentStore,
)
from voice_actions.services.context_document import ContextAssembler, ContextDocumentStore
from voice_actions.services.extraction import ExtractionEngine
from voice_actions.services.normalizer import TranscriptNormalizer
from voice_actions.services.notifications import NotificationDispatcher, NotificationStore
from voice_actions.services.pattern_learning import PatternLearner
from voice_actions.services.pattern_storage import PatternStore
from voice_actions.services.persistence import ItemRepositories
from voice_actions.services.profile_store import ProfileStore
from voice_actions.services.transcription import OpenAITranscriber
from voice_actions.services.uploads import UploadStore
from voice_actions.services.voice_history import VoiceHistoryStore
from voice_actions.services.voice_pipeline import VoiceProcessingPipeline


@lru_cache(maxsize=1)
def get_profile_store() -> ProfileStore:
	return ProfileStore()


@lru_cache(maxsize=1)
def get_voice_history_store() -> VoiceHistoryStore:
	return VoiceHistoryStore()


@lru_cache(maxsize=1)
def get_pattern_store() -> PatternStore:
	return PatternStore()


@lru_cache(maxsize=1)
def get_context_document_store() -> ContextDocumentStore:
	return ContextDocumentStore()


@lru_cache(maxsize=1)
def get_context_assembler() -> ContextAssembler:
	return ContextAssembler(
		profiles=get_profile_store(),
		history=get_voice_history_store(),
		patterns=get_pattern_store(),
		documents=get_context_document_store(),
	)


@lru_cache(maxsize=1)
def get_item_repositories() -> ItemRepositories:
	return ItemRepositories()


@lru_cache(maxsize=1)
def get_notification_store() -> NotificationStore:
	return NotificationStore()


@lru_cache(maxsize=1)
def get_generated_content_store() -> GeneratedContentStore:
	return GeneratedContentStore()


@lru_cache(maxsize=1)
def get_upload_store() -> UploadStore:
	return UploadStore()


@lru_cache(maxsize=1)
def get_background_queue() -> BackgroundTaskQueue:
	return BackgroundTaskQueue()


@lru_cache(maxsize=1)
def get_pattern_learner() -> PatternLearner:
	return PatternLearner(get_pattern_store())


@lru_cache(maxsize=1)
def get_pipeline() -> VoiceProcessingPipeline:
	trigger = ContentPredictionTrigger(
		drafter=ContentDrafter(),
		store=get_generated_content_store(),
		dispatcher=NotificationDispatcher(get_notification_store()),
		profiles=get_profile_store(),
	)
	return VoiceProcessingPipeline(
		transcriber=OpenAITranscriber(),
		normalizer=TranscriptNormalizer(),
		extractor=ExtractionEngine(),
		assembler=get_context_assembler(),
		history=get_voice_history_store(),
		profiles=get_profile_store(),
		repositories=get_item_repositories(),
		learner=get_pattern_learner(),
		content_trigger=trigger,
		queue=get_background_queue(),
	)
