"""Transcript cleanup: grammar, spelling, accidental repetition."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from voice_actions.config import get_normalization_model_name, get_normalization_timeout_ms
from voice_actions.services.languages import get_language_name
from voice_actions.services.llm_client import call_llm_text

logger = logging.getLogger("voice_actions.normalizer")

NORMALIZATION_PROMPT = """You clean up raw speech-to-text transcripts.

The transcript is in {language}. Apply these rules:
1. Grammar and spelling: fix grammar, spelling and punctuation mistakes.
2. Repetition: merge words or phrases that were accidentally repeated while speaking
   (e.g. "ma tante, ma tante est venue" -> "ma tante est venue",
   "I need to I need to call" -> "I need to call"). Keep repetition that adds
   emphasis ("very, very important").
3. Formatting: use sentence case and proper sentence boundaries.
4. Preservation: keep every fact, name, number, date and time. Do not add,
   summarize or reinterpret anything.
5. Language: answer in {language}. Never translate.

Return ONLY the cleaned transcript text, with no quotes or commentary."""

TextCall = Callable[..., Optional[str]]


class TranscriptNormalizer:
    """Cleans a raw transcript; any failure returns the raw text unchanged."""

    def __init__(self, *, llm_call: Optional[TextCall] = None, model: Optional[str] = None) -> None:
        self._llm_call = llm_call or call_llm_text
        self.model = model or get_normalization_model_name()

    def normalize(self, raw_text: str, language: str) -> str:
        if not raw_text or not raw_text.strip():
            return raw_text
        prompt = NORMALIZATION_PROMPT.format(language=get_language_name(language))
        try:
            cleaned = self._llm_call(
                prompt,
                raw_text,
                model=self.model,
                timeout_s=max(1, get_normalization_timeout_ms() // 1000),
                temperature=0.1,
            )
        except Exception:
            logger.exception("[normalizer.error] falling back to raw transcript | chars=%s", len(raw_text))
            return raw_text
        if not cleaned or not cleaned.strip():
            logger.warning("[normalizer.fallback] empty normalization output; using raw transcript")
            return raw_text
        return cleaned.strip()
