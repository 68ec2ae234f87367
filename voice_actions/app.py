from datetime import datetime, timezone
import logging
import time as _time
from os import getenv

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from voice_actions.config import (
	get_content_model_name,
	get_extraction_model_name,
	get_llm_provider,
	get_normalization_model_name,
	get_transcription_model_name,
	get_xai_base_url,
	is_langfuse_enabled,
	is_llm_configured,
)
from voice_actions.dependencies.langfuse_client import ping_langfuse
from voice_actions.dependencies.redis_client import ping_redis
from voice_actions.dependencies.services import get_background_queue
from voice_actions.dependencies.timescale import ping_timescale
from voice_actions.routers import context as context_router
from voice_actions.routers import notifications as notifications_router
from voice_actions.routers import patterns as patterns_router
from voice_actions.routers import tasks as tasks_router
from voice_actions.routers import voice as voice_router

app = FastAPI(title="Voice Actions API", version="0.1.0")

logger = logging.getLogger("voice_actions.api")
if not logger.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    logger.addHandler(_handler)
_level_name = getenv("LOG_LEVEL", "INFO").upper()
_level = getattr(logging, _level_name, logging.INFO)
logger.setLevel(_level)
logger.propagate = False

# Root logger fallback (so module loggers without handlers still emit)
_root = logging.getLogger()
if not _root.handlers:
    _root_handler = logging.StreamHandler()
    _root_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    _root.addHandler(_root_handler)
    _root.setLevel(_level)


# Request/response logging middleware (minimal, no bodies)
@app.middleware("http")
async def _log_requests(request: Request, call_next):
    start = _time.perf_counter()
    path = request.url.path
    method = request.method
    client = request.client.host if request.client else "-"
    try:
        response = await call_next(request)
        status = getattr(response, "status_code", 200)
    except Exception as exc:  # pragma: no cover
        elapsed_ms = int(((_time.perf_counter() - start) * 1000))
        logger.exception("[http] %s %s error=%s client=%s latency_ms=%s", method, path, exc.__class__.__name__, client, elapsed_ms)
        raise
    elapsed_ms = int(((_time.perf_counter() - start) * 1000))
    logger.info("[http] %s %s status=%s client=%s latency_ms=%s", method, path, status, client, elapsed_ms)
    return response


_ui_origin = getenv("UI_ORIGIN")
allow_origins = [
	"http://localhost:3000",
	"http://127.0.0.1:3000",
	"http://localhost:5173",
	"http://127.0.0.1:5173",
]
if _ui_origin and _ui_origin not in allow_origins:
	allow_origins.append(_ui_origin)

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=False,
	allow_methods=["*"],
	allow_headers=["*"],
)

app.include_router(voice_router.router)
app.include_router(context_router.router)
app.include_router(patterns_router.router)
app.include_router(notifications_router.router)
app.include_router(tasks_router.router)


@app.on_event("startup")
def _log_configuration() -> None:
	if not is_llm_configured():
		# Endpoints that need the LLM answer 400 until a key is configured
		logger.warning("[startup] LLM not configured. Set LLM_PROVIDER and corresponding API key.")
	try:
		provider = get_llm_provider()
		logger.info(
			"[startup] LLM provider=%s extraction_model=%s normalization_model=%s content_model=%s transcription_model=%s",
			provider,
			get_extraction_model_name(),
			get_normalization_model_name(),
			get_content_model_name(),
			get_transcription_model_name(),
		)
		if provider == "xai":
			logger.info("[startup] xai_base=%s", get_xai_base_url())
		logger.info("[startup] langfuse_enabled=%s", is_langfuse_enabled())
	except Exception as _exc:  # pragma: no cover
		logger.info("[startup] config logging failed: %s", _exc)


@app.on_event("shutdown")
async def _drain_background() -> None:
	queue = get_background_queue()
	await queue.drain(timeout=10.0)
	logger.info("[shutdown] background queue stats=%s", queue.stats())


@app.get("/health")
def health() -> dict:
	return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/health/full")
def health_full() -> dict:
	checks: dict = {}

	redis_ok, redis_err = ping_redis()
	checks["redis"] = {"ok": redis_ok, "error": redis_err}

	pg_ok, pg_err = ping_timescale()
	checks["postgres"] = {"ok": pg_ok, "error": pg_err}

	checks["langfuse"] = {"ok": ping_langfuse() if is_langfuse_enabled() else None, "enabled": is_langfuse_enabled()}
	checks["llm"] = {"ok": is_llm_configured(), "provider": get_llm_provider()}
	checks["background"] = get_background_queue().stats()

	# Redis and PostgreSQL have in-memory fallbacks; only the LLM is required
	status = "ok" if is_llm_configured() else "degraded"
	return {"status": status, "time": datetime.now(timezone.utc).isoformat(), "checks": checks}
