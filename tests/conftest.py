"""Shared pytest fixtures: in-memory MongoDB, fake backend and a Flask client."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import mongomock
import pytest

# Ensure the application package is importable during tests.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rezzy import database, storage  # noqa: E402
from rezzy.errors import GatewayTimeout  # noqa: E402


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InlineExecutor:
    """Executor stand-in that runs submitted work immediately."""

    def __init__(self):
        self.submitted: List[Any] = []

    def submit(self, fn, *args, **kwargs):
        self.submitted.append(fn)
        fn(*args, **kwargs)


def timing_out(clock: FakeClock):
    """Gateway behaviour that burns the whole timeout and then times out."""

    def _respond(timeout: Optional[float] = None, **_: Any):
        clock.advance(timeout or 0)
        raise GatewayTimeout()

    return _respond


class FakeGateway:
    """In-process stand-in for the Rezzy backend client.

    ``responses`` maps a method name (or a feature path) to a dict payload, an
    exception instance to raise, or a callable receiving the call's keyword
    arguments.
    """

    def __init__(self):
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.responses: Dict[str, Any] = {
            "health": {},
            "get_plan": {"plan": "free", "usage": {"scans_used": 0, "month": "2024-05"}},
            "get_profile": {"position_level": "senior", "job_category": "software_engineer"},
        }
        self.accounts: Dict[str, Dict[str, Any]] = {}

    def _respond(self, name: str, **kwargs: Any) -> Any:
        self.calls.append((name, kwargs))
        result = self.responses.get(name, {})
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(**kwargs)
        return result

    def called(self, name: str) -> List[Dict[str, Any]]:
        return [kwargs for called_name, kwargs in self.calls if called_name == name]

    def health(self, timeout=None):
        return self._respond("health", timeout=timeout)

    def create_account(self, user_id, email, first_name, last_name, timeout=None):
        result = self._respond("create_account", user_id=user_id, timeout=timeout)
        self.accounts.setdefault(user_id, {"user_id": user_id, "email": email})
        return result

    def get_plan(self, user_id, timeout=None):
        return self._respond("get_plan", user_id=user_id, timeout=timeout)

    def get_profile(self, user_id, timeout=None):
        return self._respond("get_profile", user_id=user_id, timeout=timeout)

    def update_profile(self, user_id, first_name, last_name, position_level, job_category, middle_name="", timeout=None):
        return self._respond(
            "update_profile",
            user_id=user_id,
            position_level=position_level,
            job_category=job_category,
        )

    def feature_action(self, path, user_id, fields=None, files=None, timeout=None):
        return self._respond(path, user_id=user_id, fields=fields, files=files, timeout=timeout)

    def download(self, path, user_id, timeout=None):
        return self._respond("download", path=path, user_id=user_id)

    def create_checkout(self, user_id, plan, success_url, cancel_url, timeout=None):
        return self._respond("create_checkout", user_id=user_id, plan=plan, success_url=success_url)

    def upgrade_subscription(self, user_id, plan, timeout=None):
        return self._respond("upgrade_subscription", user_id=user_id, plan=plan)

    def get_subscription(self, user_id, timeout=None):
        return self._respond("get_subscription", user_id=user_id)

    def cancel_subscription(self, user_id, timeout=None):
        return self._respond("cancel_subscription", user_id=user_id)

    def list_applications(self, user_id, timeout=None):
        return self._respond("list_applications", user_id=user_id)

    def add_application(self, user_id, fields, timeout=None):
        return self._respond("add_application", user_id=user_id, fields=fields)

    def update_application(self, application_id, user_id, fields, timeout=None):
        return self._respond("update_application", application_id=application_id, user_id=user_id, fields=fields)

    def job_recommendations(self, user_id, time_filter, timeout=None):
        return self._respond("job_recommendations", user_id=user_id, time_filter=time_filter)

    def list_optimized_resumes(self, user_id, timeout=None):
        return self._respond("list_optimized_resumes", user_id=user_id)

    def list_interview_preparations(self, user_id, timeout=None):
        return self._respond("list_interview_preparations", user_id=user_id)

    def update_application_status(self, application_id, status, timeout=None):
        return self._respond("update_application_status", application_id=application_id, status=status)

    def delete_application(self, application_id, timeout=None):
        return self._respond("delete_application", application_id=application_id)


class FakeResponse:
    """Minimal ``requests.Response`` lookalike for gateway tests."""

    def __init__(self, status_code: int = 200, payload: Any = None, text: Optional[str] = None, headers=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text
        self.content = text.encode("utf-8")
        self.headers = headers or {}

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FakeHttp:
    """Records requests and replays a queued response or exception."""

    def __init__(self, result: Any = None):
        self.result = result if result is not None else FakeResponse(200, {})
        self.requests: List[Tuple[str, str, Dict[str, Any]]] = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


@pytest.fixture(autouse=True)
def mongo_db(monkeypatch: pytest.MonkeyPatch):
    """Provide an isolated in-memory MongoDB database for each test."""
    test_db_name = "test_rezzy_dashboard"
    monkeypatch.setenv("ENABLE_MONGODB", "true")
    monkeypatch.setenv("MONGODB_DATABASE", test_db_name)

    client = mongomock.MongoClient()
    db = client[test_db_name]

    monkeypatch.setattr(database, "get_mongo_client", lambda: client)
    monkeypatch.setattr(database, "get_database", lambda: db)
    monkeypatch.setattr(database, "_enabled", None)

    yield db

    client.drop_database(test_db_name)


@pytest.fixture(autouse=True)
def clean_storage():
    """Start every test with empty in-memory stores."""
    for store in (storage.sessions, storage.bootstraps, storage.wizards, storage.onboarding_flags):
        store.clear()
    yield
    for store in (storage.sessions, storage.bootstraps, storage.wizards, storage.onboarding_flags):
        store.clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor() -> InlineExecutor:
    return InlineExecutor()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def app(gateway, executor):
    from rezzy.main import create_app
    from rezzy.utils.context import GATEWAY_EXTENSION, SYNC_EXECUTOR_EXTENSION

    flask_app = create_app(
        {
            "TESTING": True,
            "ENABLE_MONGODB": True,
            "APP_BASE_URL": "https://rezzy.test",
            "REZZY_API_URL": "https://api.rezzy.test",
        }
    )
    flask_app.extensions[GATEWAY_EXTENSION] = gateway
    flask_app.extensions[SYNC_EXECUTOR_EXTENSION] = executor
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(client) -> Dict[str, str]:
    response = client.post(
        "/api/auth/sign-in",
        json={"userId": "u1", "email": "ada@example.com", "firstName": "Ada", "lastName": "Lovelace"},
    )
    token = response.get_json()["token"]
    return {"Authorization": f"Bearer {token}"}
