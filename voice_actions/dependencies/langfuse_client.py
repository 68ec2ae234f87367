"""
Langfuse client singleton for tracing and observability.
"""

from typing import Optional, Any
import atexit
import logging

from voice_actions.config import (
    get_langfuse_public_key,
    get_langfuse_secret_key,
    get_langfuse_host,
    is_langfuse_enabled,
)

logger = logging.getLogger("voice_actions.langfuse")

_langfuse_client: Optional[Any] = None


def get_langfuse_client() -> Optional[Any]:
    """Get or create the singleton Langfuse client.

    Returns:
            Langfuse client if enabled and configured, None otherwise.
    """
    global _langfuse_client

    if not is_langfuse_enabled():
        return None

    if _langfuse_client is None:
        try:
            from langfuse import Langfuse

            _langfuse_client = Langfuse(
                public_key=get_langfuse_public_key(),
                secret_key=get_langfuse_secret_key(),
                host=get_langfuse_host(),
                flush_at=10,
                flush_interval=1.0,
            )

            # Ensure traces are flushed on app shutdown
            atexit.register(
                lambda: _langfuse_client.flush() if _langfuse_client else None
            )
        except Exception as e:
            logger.warning("[langfuse] failed to initialize client: %s", e)
            return None

    return _langfuse_client


def ping_langfuse() -> bool:
    """Check if Langfuse client is available."""
    return get_langfuse_client() is not None
