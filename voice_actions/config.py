import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

# Load .env once when module is imported. `override=True` ensures that local
# development values defined in .env always take precedence over environment
# variables populated by GitHub Actions secrets or the host system.
load_dotenv(override=True)


def _get_raw_env(name: str) -> Optional[str]:
    """Return the raw environment value for ``name``.

    The lookup order is:
    1. Regular environment variable (includes GitHub Secrets that map directly)
    2. ``GITHUB_SECRET_<NAME>`` – explicit prefix for secrets if a workflow
       exports them with that naming convention.
    """

    if name in os.environ:
        return os.environ[name]
    prefixed = f"GITHUB_SECRET_{name}"
    if prefixed in os.environ:
        return os.environ[prefixed]
    return None


def get_env_value(name: str, default: Optional[str] = None) -> Optional[str]:
    """Fetch an environment value honouring GitHub secrets and defaults."""

    value = _get_raw_env(name)
    if value is None:
        return default
    return value


def _get_bool_env(name: str, default: str = "false") -> bool:
    value = get_env_value(name)
    if value is None:
        value = default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: str) -> int:
    value = get_env_value(name)
    try:
        return int(value if value is not None else default)
    except (TypeError, ValueError):
        return int(default)


def _get_float_env(name: str, default: str) -> float:
    value = get_env_value(name)
    try:
        return float(value if value is not None else default)
    except (TypeError, ValueError):
        return float(default)


@lru_cache(maxsize=1)
def get_openai_api_key() -> Optional[str]:
    return get_env_value("OPENAI_API_KEY")


@lru_cache(maxsize=1)
def get_xai_api_key() -> Optional[str]:
    return get_env_value("XAI_API_KEY")


@lru_cache(maxsize=1)
def get_xai_base_url() -> str:
    # Default xAI API base URL; allow override for proxies/self-hosted gateways
    return get_env_value("XAI_BASE_URL", "https://api.x.ai/v1") or "https://api.x.ai/v1"


@lru_cache(maxsize=1)
def get_llm_provider() -> str:
    val = (get_env_value("LLM_PROVIDER", "openai") or "openai").strip().lower()
    # Normalize alias "grok" to canonical provider name "xai"
    if val == "grok":
        return "xai"
    return val


@lru_cache(maxsize=1)
def is_llm_configured() -> bool:
    provider = get_llm_provider()
    if provider == "openai":
        key = get_openai_api_key() or ""
        return key.strip() != ""
    if provider == "xai":
        key = get_xai_api_key() or ""
        return key.strip() != ""
    # Unknown provider → not configured
    return False


@lru_cache(maxsize=1)
def get_redis_url() -> Optional[str]:
    return get_env_value("REDIS_URL")


# =============================
# External databases (storage)
# =============================


@lru_cache(maxsize=1)
def get_timescale_dsn() -> Optional[str]:
    return get_env_value("TIMESCALE_DSN")


# =============================
# Model selection
# =============================


def _provider_model(env_name: str, openai_default: str, xai_default: str) -> str:
    env_val = get_env_value(env_name)
    if env_val and env_val.strip() != "":
        return env_val
    if get_llm_provider() == "xai":
        return xai_default
    return openai_default


@lru_cache(maxsize=1)
def get_extraction_model_name() -> str:
    return _provider_model("EXTRACTION_MODEL", "gpt-4o", "grok-4-fast-reasoning")


@lru_cache(maxsize=1)
def get_normalization_model_name() -> str:
    return _provider_model("NORMALIZATION_MODEL", "gpt-4o-mini", "grok-3-mini")


@lru_cache(maxsize=1)
def get_content_model_name() -> str:
    return _provider_model("CONTENT_MODEL", "gpt-4o", "grok-4-fast-reasoning")


@lru_cache(maxsize=1)
def get_transcription_model_name() -> str:
    # xAI exposes no transcription endpoint; transcription always goes to OpenAI
    return get_env_value("TRANSCRIPTION_MODEL", "whisper-1") or "whisper-1"


@lru_cache(maxsize=1)
def get_extraction_timeouts_ms() -> int:
    return _get_int_env("EXTRACTION_TIMEOUT_MS", "60000")


@lru_cache(maxsize=1)
def get_normalization_timeout_ms() -> int:
    return _get_int_env("NORMALIZATION_TIMEOUT_MS", "20000")


# =============================
# Pipeline behaviour
# =============================


@lru_cache(maxsize=1)
def get_default_timezone() -> str:
    return get_env_value("DEFAULT_TIMEZONE", "UTC") or "UTC"


@lru_cache(maxsize=1)
def get_today_topics_limit() -> int:
    return _get_int_env("TODAY_TOPICS_LIMIT", "10")


@lru_cache(maxsize=1)
def get_content_confidence_threshold() -> float:
    return _get_float_env("CONTENT_CONFIDENCE_THRESHOLD", "0.5")


@lru_cache(maxsize=1)
def get_content_explicit_threshold() -> float:
    return _get_float_env("CONTENT_EXPLICIT_THRESHOLD", "0.8")


@lru_cache(maxsize=1)
def get_content_max_predictions() -> int:
    return _get_int_env("CONTENT_MAX_PREDICTIONS", "3")


@lru_cache(maxsize=1)
def get_background_max_concurrency() -> int:
    return _get_int_env("BACKGROUND_MAX_CONCURRENCY", "4")


@lru_cache(maxsize=1)
def get_background_max_pending() -> int:
    return _get_int_env("BACKGROUND_MAX_PENDING", "100")


@lru_cache(maxsize=1)
def get_upload_max_bytes() -> int:
    return _get_int_env("UPLOAD_MAX_BYTES", str(20 * 1024 * 1024))


@lru_cache(maxsize=1)
def get_upload_dir() -> str:
    return get_env_value("UPLOAD_DIR", "./uploads") or "./uploads"


@lru_cache(maxsize=1)
def get_pipeline_timeout_seconds() -> float:
    return _get_float_env("PIPELINE_TIMEOUT_SECONDS", "55")


# Langfuse Configuration
def get_langfuse_public_key() -> str:
    """Get Langfuse public key from environment."""
    return get_env_value("LANGFUSE_PUBLIC_KEY", "") or ""


def get_langfuse_secret_key() -> str:
    """Get Langfuse secret key from environment."""
    return get_env_value("LANGFUSE_SECRET_KEY", "") or ""


def get_langfuse_host() -> str:
    """Get Langfuse host URL from environment."""
    return get_env_value("LANGFUSE_HOST", "https://us.cloud.langfuse.com") or "https://us.cloud.langfuse.com"


def is_langfuse_enabled() -> bool:
    """Check if Langfuse tracing is enabled."""
    return bool(get_langfuse_public_key() and get_langfuse_secret_key())
