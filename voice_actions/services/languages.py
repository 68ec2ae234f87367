"""Language code lookup shared by prompting and summary post-processing."""

from __future__ import annotations

from typing import Optional

DEFAULT_LANGUAGE_CODE = "en"
DEFAULT_LANGUAGE_NAME = "English"

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "ar": "Arabic",
    "zh": "Chinese",
    "ja": "Japanese",
    "pt": "Portuguese",
    "it": "Italian",
    "ru": "Russian",
    "ko": "Korean",
    "hi": "Hindi",
    "tr": "Turkish",
    "nl": "Dutch",
    "pl": "Polish",
    "sv": "Swedish",
}


def normalize_language_code(code: Optional[str]) -> str:
    """Reduce ``fr-FR`` / ``FR`` / ``french`` style inputs to a table key."""
    if not code:
        return DEFAULT_LANGUAGE_CODE
    value = code.strip().lower().replace("_", "-")
    base = value.split("-", 1)[0]
    if base in LANGUAGE_NAMES:
        return base
    # Transcription services sometimes report the language name instead of the code
    for key, name in LANGUAGE_NAMES.items():
        if name.lower() == value:
            return key
    return DEFAULT_LANGUAGE_CODE


def get_language_name(code: Optional[str]) -> str:
    return LANGUAGE_NAMES.get(normalize_language_code(code), DEFAULT_LANGUAGE_NAME)
