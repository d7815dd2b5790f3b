import time

import pytest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from tests.fakes import FakeFirestore
from todosync.auth import AuthGateway, SessionStore
from todosync.models.auth import Session
from todosync.services.tasks import TaskStore


# --- Canned Firebase Auth responses ---

SIGN_IN_RESPONSE = {
    "kind": "identitytoolkit#VerifyPasswordResponse",
    "localId": "user123",
    "email": "alice@example.com",
    "displayName": "",
    "idToken": "id-token-1",
    "registered": True,
    "refreshToken": "refresh-token-1",
    "expiresIn": "3600",
}

SIGN_UP_RESPONSE = {
    "kind": "identitytoolkit#SignupNewUserResponse",
    "localId": "user456",
    "email": "bob@example.com",
    "idToken": "id-token-2",
    "refreshToken": "refresh-token-2",
    "expiresIn": "3600",
}

REFRESH_RESPONSE = {
    "expires_in": "3600",
    "token_type": "Bearer",
    "refresh_token": "refresh-token-3",
    "id_token": "id-token-3",
    "user_id": "user123",
    "project_id": "123456",
}


def make_response(status: int, body: dict | None = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.json.return_value = body or {}
    resp.text = str(body)
    return resp


def identity_error(code: str, status: int = 400) -> MagicMock:
    return make_response(status, {"error": {"code": status, "message": code, "errors": []}})


def make_session(uid: str = "user123", expires_in: float = 3600) -> Session:
    return Session(
        uid=uid,
        email="alice@example.com",
        id_token="id-token-1",
        refresh_token="refresh-token-1",
        expires_at=time.time() + expires_in,
    )


# --- Firestore ---

@pytest.fixture
def fake_db():
    return FakeFirestore()


@pytest.fixture
def task_store(fake_db):
    """Task store wired to the in-memory Firestore, not yet subscribed."""
    return TaskStore(client_factory=lambda: fake_db)


@pytest.fixture
def subscribed_store(task_store):
    task_store.subscribe("user123")
    yield task_store
    task_store.unsubscribe()


# --- Firebase Auth ---

@pytest.fixture
def session_store(tmp_path):
    return SessionStore(tmp_path / "session.json")


@pytest.fixture
def mock_http(mocker):
    """Mocked requests.Session used for Identity Toolkit calls."""
    session = MagicMock()
    mocker.patch("todosync.auth.get_session", return_value=session)
    return session


@pytest.fixture
def gateway(session_store, mock_http):
    return AuthGateway(session_store, api_key="test-key")


@pytest.fixture
def api_client():
    """FastAPI TestClient for router tests."""
    from todosync.main import api
    return TestClient(api)
