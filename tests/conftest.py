"""
Shared pytest fixtures for the FaceGate test suite.

Strategy:
- Domain tests: pure functions, zero I/O.
- Tracker tests: injectable clock; the SQL tracker runs on a SQLite file in tmp_path.
- API tests: FastAPI TestClient around create_app() with injected services.
  DATABASE_URL / FAILURE_STORE are cleared so importing the app never touches a real database.
"""
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# ---------------------------------------------------------------------------
# Ensure no real database or log directory is touched during the test run
# ---------------------------------------------------------------------------
os.environ.pop("DATABASE_URL", None)
os.environ.pop("FAILURE_STORE", None)
os.environ.pop("CONFIG_FILE", None)
os.environ.setdefault("AUDIT_LOG_DIR", tempfile.mkdtemp(prefix="facegate_audit_"))

from facegate.domain.errors import FailureStoreError
from facegate.domain.recognition import RecognitionResult
from facegate.infrastructure.config import ConfigurationService
from facegate.infrastructure.database.connection import SessionFactory, build_engine, create_tables
from facegate.infrastructure.tracking.memory_tracker import InMemoryFailureTracker
from facegate.infrastructure.tracking.sql_tracker import SqlFailureTracker

JPEG_DATA = "data:image/jpeg;base64,/9j/4AAQSkZJRgABAQAAAQABAAD"
PNG_DATA = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAE"


# ---------------------------------------------------------------------------
# Helpers (reusable across many test modules)
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_config_service(environ: dict | None = None, **env) -> ConfigurationService:
    """ConfigurationService over a private environ dict (mutate it, then reload())."""
    environ = {} if environ is None else environ
    environ.update({k: str(v) for k, v in env.items()})
    return ConfigurationService(environ=environ)


def make_memory_tracker(config, clock=None) -> InMemoryFailureTracker:
    return InMemoryFailureTracker(config, clock=clock, start_sweep=False)


def make_sql_tracker(tmp_path, config, clock=None) -> SqlFailureTracker:
    engine = build_engine(f"sqlite:///{tmp_path / 'failures.db'}")
    create_tables(engine)
    return SqlFailureTracker(SessionFactory(engine), config, clock=clock, start_sweep=False)


class StubRecognition:
    """Recognition collaborator returning a fixed result or raising a fixed error."""

    def __init__(self, recognized=True, confidence=90, error=None):
        self.recognized = recognized
        self.confidence = confidence
        self.error = error
        self.calls = []

    def recognize(self, image_data, user_id, **kwargs):
        self.calls.append({"user_id": user_id, **kwargs})
        if self.error is not None:
            raise self.error
        return RecognitionResult(self.recognized, self.confidence, user_id)


class BrokenTracker:
    """Tracker whose writes always fail and whose reads report a clean slate."""

    backend = "broken"

    def record_failure(self, user_id):
        raise FailureStoreError(user_id, RuntimeError("disk full"))

    def is_user_locked(self, user_id):
        return False

    def get_remaining_attempts(self, user_id):
        return 5

    def reset_failures(self, user_id):
        pass

    def get_minutes_until_expiry(self, user_id):
        return 0

    def start(self):
        pass

    def close(self):
        pass


class StubFaceClient:
    """In-memory stand-in for FaceApiClient."""

    def __init__(self, users=None, credential_error=None, delete_error=None, find_error=None):
        self.users = dict(users or {})
        self.credential_error = credential_error
        self.delete_error = delete_error
        self.find_error = find_error
        self.deleted = []
        self.credentials = []
        self.closed = False

    def find_user(self, external_id):
        if self.find_error is not None:
            raise self.find_error
        internal = self.users.get(external_id)
        return {"id": internal, "external_id": external_id} if internal else None

    def create_user(self, external_id):
        internal = f"int-{external_id}"
        self.users[external_id] = internal
        return internal

    def add_credential(self, internal_id, image_data):
        if self.credential_error is not None:
            raise self.credential_error
        self.credentials.append(internal_id)
        return {"error_code": 0}

    def delete_user(self, internal_id):
        if self.delete_error is not None:
            raise self.delete_error
        self.deleted.append(internal_id)
        self.users = {k: v for k, v in self.users.items() if v != internal_id}
        return 1

    def close(self):
        self.closed = True


# ---------------------------------------------------------------------------
# pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def tmp_audit_log(monkeypatch, tmp_path):
    """Redirect the audit trail of every test into its tmp_path."""
    import facegate.infrastructure.audit as audit_mod
    log_dir = tmp_path / "audit"
    monkeypatch.setattr(audit_mod, "LOG_DIR", log_dir)
    monkeypatch.setattr(audit_mod, "LOG_FILE", log_dir / "audit.log")
    return log_dir


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config_env():
    """Mutable environ backing the `config` fixture."""
    return {"MAX_FAILURE_ATTEMPTS": "5", "FAILURE_RECORD_TTL": "2"}


@pytest.fixture
def config(config_env):
    return make_config_service(config_env)


@pytest.fixture
def memory_tracker(config, clock):
    tracker = make_memory_tracker(config, clock)
    yield tracker
    tracker.close()


@pytest.fixture
def sql_tracker(tmp_path, config, clock):
    tracker = make_sql_tracker(tmp_path, config, clock)
    yield tracker
    tracker.close()


@pytest.fixture(params=["memory", "sql"])
def tracker(request, tmp_path, config, clock):
    """Both tracker variants behind the same contract."""
    if request.param == "memory":
        t = make_memory_tracker(config, clock)
    else:
        t = make_sql_tracker(tmp_path, config, clock)
    yield t
    t.close()


@pytest.fixture
def recognition():
    return StubRecognition()


@pytest.fixture
def face_client():
    return StubFaceClient()


@pytest.fixture
def test_app(config, memory_tracker, recognition, face_client):
    """FastAPI app wired with an in-memory tracker and stub collaborators."""
    from facegate.main import create_app

    return create_app(
        config_service=config,
        tracker=memory_tracker,
        recognition=recognition,
        face_api_client_factory=lambda url, key: face_client,
        background_tasks=False,
    )


@pytest.fixture
def client(test_app):
    from fastapi.testclient import TestClient
    return TestClient(test_app)
