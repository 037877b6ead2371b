"""Pytest configuration and shared fixtures."""

import os
import sys
import tempfile
from pathlib import Path
from typing import Any

import httpx
import pytest

# Ensure source tree is importable without editable install
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


def pytest_configure(config):
    """Configure pytest markers and environment for tests."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")

    # These MUST override any developer shell/.env values to keep the test run deterministic.
    os.environ["ENVIRONMENT"] = "test"
    os.environ["USE_FAKE_PROVIDERS"] = "false"
    os.environ["LLAMA_STACK_PROVIDER"] = "fake"
    os.environ["FAIL_FAST_ON_STARTUP"] = "false"
    os.environ["MEMORY_VECTOR_STORE_ID"] = ""
    # Do not write SQLite DB files into the repo root; use a per-run temp directory.
    test_artifacts_root = Path(
        os.environ.get("SOPHIA_TEST_ARTIFACTS_DIR") or (PROJECT_ROOT / ".tmp" / "pytest")
    )
    test_artifacts_root.mkdir(parents=True, exist_ok=True)
    run_dir = Path(tempfile.mkdtemp(prefix="run_", dir=str(test_artifacts_root)))
    os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{run_dir / 'test_default.db'}"


@pytest.fixture(autouse=True)
def block_external_http(monkeypatch):
    """Fail the fast lane if code tries to hit the public internet."""

    allowed_hosts = {"test", "testserver", "localhost", "127.0.0.1", "0.0.0.0"}

    async def _async_guard(self, method, url, *args, **kwargs):  # type: ignore[no-untyped-def]
        u = httpx.URL(url) if not isinstance(url, httpx.URL) else url
        if u.scheme in {"http", "https"} and (u.host or "") not in allowed_hosts:
            raise RuntimeError(f"External HTTP blocked in tests: {u!s}")
        return await _orig_async_request(self, method, url, *args, **kwargs)

    _orig_async_request = httpx.AsyncClient.request
    monkeypatch.setattr(httpx.AsyncClient, "request", _async_guard, raising=True)

    yield


def pytest_sessionfinish(session, exitstatus):  # noqa: ARG001
    """Best-effort teardown for global DB engines."""
    try:
        import asyncio

        from sophia.storage.database import shutdown_async_db, shutdown_db

        shutdown_db()
        asyncio.run(shutdown_async_db())
    except Exception:
        # Never fail the test run during teardown.
        return


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio tests on asyncio (SQLAlchemy/asyncio-based stack)."""
    return "asyncio"


# ---------------------------------------------------------------------------
# In-memory fakes for the brain's boundaries
# ---------------------------------------------------------------------------

CLASSIFIER_MARKER = "You extract routing signals"
SUMMARY_MARKER = "You maintain the short-term context"


class ScriptedGenerator:
    """TextGenerator that answers from scripts.

    Classifier and summary calls (recognized by their system prompt) read
    `classifications` and `summaries`, agent calls read `replies`. Each
    script is consumed front to back and its last entry repeats. An entry that is an exception instance is raised.
    """

    def __init__(
        self,
        classifications: list[Any] | None = None,
        replies: list[Any] | None = None,
        text: Any = "Appelle le 15 ou le 112, ou le 3114. Tu es seul ?",
        memories: list[Any] | None = None,
        summaries: list[Any] | None = None,
    ) -> None:
        self.classifications = list(classifications or [{}])
        self.replies = list(replies or [{"response": "Je t'écoute."}])
        self.text = text
        self.memories = list(memories or [])
        self.summaries = list(summaries or [{"short_term_context": "Résumé."}])
        self.calls: list[dict[str, Any]] = []

    @staticmethod
    def _next(script: list[Any]) -> Any:
        item = script[0] if len(script) == 1 else script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_json(self, *, system_prompt, user_prompt, temperature=0.2, model_id=None):
        if system_prompt.startswith(CLASSIFIER_MARKER):
            kind, script = "classify", self.classifications
        elif system_prompt.startswith(SUMMARY_MARKER):
            kind, script = "summary", self.summaries
        else:
            kind, script = "agent", self.replies
        self.calls.append({"kind": kind, "system": system_prompt, "user": user_prompt})
        return self._next(script)

    async def generate_text(self, *, system_prompt, user_prompt, temperature=0.7, model_id=None):
        self.calls.append({"kind": "text", "system": system_prompt, "user": user_prompt})
        if isinstance(self.text, BaseException):
            raise self.text
        return self.text

    async def search_memories(self, *, user_id, query, max_results=5):
        self.calls.append({"kind": "memory", "query": query, "max_results": max_results})
        return self.memories[:max_results]

    def agent_calls(self) -> list[dict[str, Any]]:
        return [c for c in self.calls if c["kind"] == "agent"]


class InMemoryStateStore:
    def __init__(self) -> None:
        self.states: dict[tuple[str, str], Any] = {}
        self.fail_writes = False
        self.fail_reads = False
        self.writes = 0

    async def get_state(self, user_id, scope):
        if self.fail_reads:
            raise ConnectionError("state store unreachable")
        stored = self.states.get((user_id, scope))
        return stored.model_copy(deep=True) if stored is not None else None

    async def update_state(self, user_id, scope, state):
        if self.fail_writes:
            raise ConnectionError("state store unreachable")
        self.writes += 1
        self.states[(user_id, scope)] = state.model_copy(deep=True)


class FakeContextSource:
    """ContextSource + ProgressTracker backed by plain attributes."""

    def __init__(self, plan=None, actions=None, vitals=None, facts=None, pillars=None) -> None:
        self.plan = plan
        self.actions = list(actions or [])
        self.vitals = list(vitals or [])
        self.facts = dict(facts or {})
        self.pillars = list(pillars or [])
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self.progress_calls: list[dict[str, Any]] = []

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.failing:
            raise ConnectionError(f"{name} unavailable")

    async def get_active_plan(self, user_id):
        self._enter("plan")
        return self.plan

    async def get_plan_actions(self, plan_id):
        self._enter("actions")
        return list(self.actions)

    async def get_vital_signs(self, user_id):
        self._enter("vitals")
        return list(self.vitals)

    async def get_profile_facts(self, user_id):
        self._enter("facts")
        return dict(self.facts)

    async def get_identity_pillars(self, user_id):
        self._enter("identity")
        return list(self.pillars)

    async def track_progress(self, user_id, *, target_name, value, operation):
        from sophia.brain.agents.base import ProgressResult
        from sophia.brain.deferred_topics import targets_match

        self._enter("track_progress")
        self.progress_calls.append(
            {"target_name": target_name, "value": value, "operation": operation}
        )
        for action in self.actions:
            if targets_match(action.title, target_name):
                base = action.current or 0.0
                new_value = base + value if operation == "add" else value
                return ProgressResult(
                    found=True, target_kind="action", target_name=action.title, new_value=new_value
                )
        return ProgressResult(found=False, target_name=target_name)


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def context_source() -> FakeContextSource:
    from sophia.brain.context import ActionSnapshot, PlanSnapshot, VitalSnapshot

    return FakeContextSource(
        plan=PlanSnapshot(
            plan_id="plan-1",
            title="Retrouver de l'énergie",
            status="active",
            deep_why="Être présent pour mes enfants",
            content={"phases": ["fondations"]},
        ),
        actions=[
            ActionSnapshot(
                action_id="a1",
                title="Lecture du soir",
                status="active",
                description="Lire avant de dormir",
                tracking_type="counter",
                target=20,
                current=5,
                unit="pages",
            ),
            ActionSnapshot(
                action_id="a2",
                title="Marche",
                status="active",
                description=None,
                tracking_type="boolean",
                target=None,
                current=None,
                unit=None,
            ),
        ],
        vitals=[VitalSnapshot(name="Sommeil", current=6, target=8, unit="h")],
        facts={"prénom": "Alex"},
        pillars=["Je prends soin de moi"],
    )


@pytest.fixture
def make_generator():
    return ScriptedGenerator


@pytest.fixture
def make_deps(state_store, context_source):
    """Build TurnDeps around the in-memory fakes."""
    from sophia.brain.engine import TurnDeps

    def _make(generator, **overrides):
        kwargs = {
            "generator": generator,
            "store": state_store,
            "context_source": context_source,
            "memory": generator,
            "tools": context_source,
        }
        kwargs.update(overrides)
        return TurnDeps(**kwargs)

    return _make


@pytest.fixture
def api_headers() -> dict[str, str]:
    """Default API headers for authenticated endpoints."""
    from sophia.config import settings

    return {"X-API-Key": settings.api_key}


@pytest.fixture
async def async_client():
    """httpx AsyncClient wired to the FastAPI app with lifespan enabled."""
    from httpx import ASGITransport, AsyncClient

    from sophia.api.server import app

    async with app.router.lifespan_context(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
