"""
Tracing utilities for Langfuse integration.

Provides request-scoped trace context using contextvars for async-safe operation.
"""
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional
import logging

from voice_actions.dependencies.langfuse_client import get_langfuse_client

logger = logging.getLogger("voice_actions.tracing")

_current_trace: ContextVar[Optional[Any]] = ContextVar('current_trace', default=None)
_current_span: ContextVar[Optional[Any]] = ContextVar('current_span', default=None)


def start_trace(name: str, user_id: str, metadata: Optional[Dict[str, Any]] = None) -> Optional[Any]:
	"""Start a new trace for a pipeline run.

	Args:
		name: Name of the trace (e.g., "process_voice_note")
		user_id: User ID for grouping traces
		metadata: Additional metadata to attach to the trace

	Returns:
		Trace object if Langfuse is enabled, None otherwise.
	"""
	client = get_langfuse_client()
	if not client:
		return None

	try:
		trace = client.trace(name=name, user_id=user_id, metadata=metadata or {})
		_current_trace.set(trace)
		logger.info("[tracing] Started trace: name=%s user_id=%s trace_id=%s", name, user_id, trace.id)
		return trace
	except Exception as e:
		logger.error("[tracing] Failed to start trace: %s", e, exc_info=True)
		return None


def get_current_trace() -> Optional[Any]:
	return _current_trace.get()


def start_span(name: str, metadata: Optional[Dict[str, Any]] = None, input: Optional[Dict[str, Any]] = None) -> Optional[Any]:
	"""Start a new span within the current trace or parent span.

	Returns:
		Span object if trace exists, None otherwise.
	"""
	trace = get_current_trace()
	if not trace:
		return None

	try:
		parent_span = _current_span.get()
		if parent_span:
			span = parent_span.span(name=name, metadata=metadata or {}, input=input)
		else:
			span = trace.span(name=name, metadata=metadata or {}, input=input)
		logger.debug("[tracing] Started span: %s", name)
		return span
	except Exception as e:
		logger.error("[tracing] Failed to start span: %s", e, exc_info=True)
		return None


def end_span(span: Optional[Any], output: Optional[Dict[str, Any]] = None, level: str = "DEFAULT") -> None:
	"""End ``span`` if one was started.

	Args:
		span: Span returned by :func:`start_span`
		output: Output data from the span
		level: Log level (DEFAULT, WARNING, ERROR)
	"""
	if span is None:
		return
	try:
		span.end(output=output, level=level)
	except Exception as e:
		logger.warning("[tracing] Failed to end span: %s", e)


@contextmanager
def traced_span(name: str, metadata: Optional[Dict[str, Any]] = None, input: Optional[Dict[str, Any]] = None) -> Iterator[Optional[Any]]:
	"""Context manager around :func:`start_span` that nests child spans."""
	span = start_span(name, metadata=metadata, input=input)
	token = _current_span.set(span) if span is not None else None
	try:
		yield span
	except Exception:
		end_span(span, level="ERROR")
		raise
	else:
		end_span(span)
	finally:
		if token is not None:
			_current_span.reset(token)


def trace_error(exception: Exception, metadata: Optional[Dict[str, Any]] = None) -> None:
	"""Record an error event in the current trace.

	Args:
		exception: The exception that occurred
		metadata: Additional context about the error
	"""
	trace = get_current_trace()
	if not trace:
		return

	try:
		trace.event(
			name="error",
			input={
				"exception_type": type(exception).__name__,
				"message": str(exception)
			},
			metadata=metadata or {},
			level="ERROR"
		)
	except Exception as e:
		logger.warning("[tracing] Failed to record error event: %s", e)
