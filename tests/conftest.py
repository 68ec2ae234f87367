from importlib import reload
import warnings

warnings.filterwarnings(
    "ignore",
    category=PendingDeprecationWarning,
    message=r"Please use `import python_multipart` instead\.",
)
warnings.filterwarnings(
    "ignore",
    category=DeprecationWarning,
    message=r".*on_event is deprecated.*",
)

import pytest
from fastapi.testclient import TestClient

from tests.fixtures.voice_fakes import InMemoryRedis


def _clear_cached_getters(module) -> None:
    for name in dir(module):
        getter = getattr(module, name)
        if callable(getter) and hasattr(getter, "cache_clear"):
            getter.cache_clear()


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Every test starts from in-memory stores and a fresh config cache."""
    for name in ("TIMESCALE_DSN", "REDIS_URL", "LANGFUSE_PUBLIC_KEY", "LANGFUSE_SECRET_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))

    import voice_actions.config as config
    import voice_actions.dependencies.services as services

    _clear_cached_getters(config)
    _clear_cached_getters(services)
    yield
    _clear_cached_getters(config)
    _clear_cached_getters(services)


@pytest.fixture
def redis_stub() -> InMemoryRedis:
    return InMemoryRedis()


def _prepare_app(monkeypatch: pytest.MonkeyPatch, redis_stub: InMemoryRedis):
    monkeypatch.setattr("voice_actions.storage.postgres.get_timescale_conn", lambda: None)
    monkeypatch.setattr("voice_actions.services.context_document.get_redis_client", lambda: redis_stub)

    import voice_actions.app as app_module
    reload(app_module)

    monkeypatch.setattr(app_module, "ping_timescale", lambda: (True, None))
    monkeypatch.setattr(app_module, "ping_redis", lambda: (True, None))
    return app_module


@pytest.fixture
def app_module(monkeypatch: pytest.MonkeyPatch, redis_stub: InMemoryRedis):
    return _prepare_app(monkeypatch, redis_stub)


@pytest.fixture
def api_client(app_module) -> TestClient:
    with TestClient(app_module.app) as client:
        yield client
    app_module.app.dependency_overrides.clear()
