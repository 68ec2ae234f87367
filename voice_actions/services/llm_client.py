from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import json
import logging
import re

from voice_actions.config import (
    get_llm_provider,
    get_openai_api_key,
    get_xai_api_key,
    get_xai_base_url,
    is_langfuse_enabled,
)
from voice_actions.services.tracing import trace_error


logger = logging.getLogger("voice_actions.llm")


@dataclass
class ToolCallResponse:
    """Outcome of a forced function-call completion.

    ``arguments`` is the raw argument payload exactly as the provider returned
    it (normally a JSON string) or None when the model answered in free text.
    """

    tool_name: Optional[str]
    arguments: Any
    text: Optional[str]


def get_llm_client() -> Optional[Any]:
    """Return an OpenAI-compatible client for the configured provider.

    Uses the Langfuse OpenAI wrapper for auto-instrumentation when enabled.
    """
    provider = get_llm_provider()
    if is_langfuse_enabled():
        from langfuse.openai import OpenAI  # type: ignore
    else:
        from openai import OpenAI  # type: ignore

    if provider == "openai":
        api_key = (get_openai_api_key() or "").strip()
        if not api_key:
            return None
        return OpenAI(api_key=api_key)
    if provider == "xai":
        api_key = (get_xai_api_key() or "").strip()
        if not api_key:
            return None
        # xAI uses OpenAI-compatible API with custom base_url
        return OpenAI(api_key=api_key, base_url=get_xai_base_url())
    logger.error("Unknown LLM provider: %s", provider)
    return None


def _parse_json_from_text(text: str) -> Optional[Dict[str, Any]]:
    """Best-effort parse of a JSON object from LLM text.

    Handles code fences (```json ... ```) and leading/trailing prose. Returns
    None when no object can be recovered.
    """
    if not text or text.strip() == "":
        return None

    candidate = text.strip()

    code_block = re.search(r"```(?:json)?\s*([\s\S]+?)```", candidate, re.IGNORECASE)
    if code_block:
        candidate = code_block.group(1).strip()

    try:
        parsed = json.loads(candidate)
        return parsed if isinstance(parsed, dict) else None
    except ValueError:
        pass

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start != -1 and end > start:
        try:
            parsed = json.loads(candidate[start : end + 1])
            return parsed if isinstance(parsed, dict) else None
        except ValueError:
            pass
    return None


def call_llm_text(
    system_prompt: str,
    user_text: str,
    *,
    model: str,
    timeout_s: float,
    temperature: Optional[float] = None,
) -> Optional[str]:
    """Single chat completion returning plain text, or None on failure."""
    provider = get_llm_provider()
    client = get_llm_client()
    if client is None:
        return None
    kwargs: Dict[str, Any] = {}
    if temperature is not None:
        kwargs["temperature"] = temperature
    try:
        resp = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
            timeout=timeout_s,
            **kwargs,
        )
        text = resp.choices[0].message.content or ""
        logger.info(
            "LLM call ok | provider=%s model=%s | input=%s | output=%s",
            provider,
            model,
            user_text[:500],
            text[:500],
        )
        return text
    except Exception as exc:
        logger.exception("LLM call failed | provider=%s model=%s", provider, model)
        trace_error(exc, metadata={"provider": provider, "model": model, "context": "llm_text"})
        return None


def call_llm_json(
    system_prompt: str,
    user_payload: Dict[str, Any],
    *,
    model: str,
    timeout_s: float,
) -> Optional[Dict[str, Any]]:
    """Call the LLM in JSON mode and parse the object it returns."""
    provider = get_llm_provider()
    client = get_llm_client()
    if client is None:
        return None
    try:
        resp = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": json.dumps(user_payload)},
            ],
            response_format={"type": "json_object"},
            timeout=timeout_s,
        )
        text = resp.choices[0].message.content or "{}"
        logger.info(
            "LLM call ok | provider=%s model=%s | payload=%s | output=%s",
            provider,
            model,
            json.dumps(user_payload)[:1000],
            text[:1000],
        )
        return _parse_json_from_text(text)
    except Exception as exc:
        logger.exception(
            "LLM call failed | provider=%s model=%s | payload=%s",
            provider,
            model,
            json.dumps(user_payload)[:1000],
        )
        trace_error(exc, metadata={"provider": provider, "model": model, "context": "llm_json"})
        return None


def call_llm_tool(
    system_prompt: str,
    user_text: str,
    *,
    tool: Dict[str, Any],
    model: str,
    timeout_s: float,
) -> ToolCallResponse:
    """Single attempt at a forced function call.

    Raises whatever the provider raises; callers decide how to degrade.
    """
    provider = get_llm_provider()
    client = get_llm_client()
    if client is None:
        raise RuntimeError("LLM is not configured")
    tool_name = tool["function"]["name"]
    resp = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_text},
        ],
        tools=[tool],
        tool_choice={"type": "function", "function": {"name": tool_name}},
        timeout=timeout_s,
    )
    message = resp.choices[0].message
    calls = getattr(message, "tool_calls", None) or []
    for call in calls:
        fn = getattr(call, "function", None)
        if fn is not None and fn.name == tool_name:
            logger.info(
                "LLM tool call ok | provider=%s model=%s tool=%s | args=%s",
                provider,
                model,
                tool_name,
                str(fn.arguments)[:1000],
            )
            return ToolCallResponse(tool_name=fn.name, arguments=fn.arguments, text=message.content)
    logger.warning(
        "LLM answered without tool call | provider=%s model=%s tool=%s", provider, model, tool_name
    )
    return ToolCallResponse(tool_name=None, arguments=None, text=message.content)
