"""Shared test fixtures and configuration for backend tests."""
from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState

from chatbox.auth.dependencies import set_token_service
from chatbox.chat.manager import set_chat_manager
from chatbox.config import AppConfig, AuthSettings, DatabaseSettings, JWTSecrets, Secrets, reset_config, set_config
from chatbox.main import app
from chatbox.store import ChatStore

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"


class FakeSocket:
    """Stands in for a WebSocket: records sent events, optionally fails."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail
        self.application_state = WebSocketState.CONNECTED

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.application_state = WebSocketState.DISCONNECTED

    def types(self) -> List[str]:
        return [e["type"] for e in self.sent]


@pytest.fixture
def app_config():
    """In-memory database and cheap password hashing for every test."""
    config = AppConfig(
        database=DatabaseSettings(path=":memory:", persist_timeout_seconds=5.0),
        auth=AuthSettings(password_hash_iterations=1000),
        secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
    )
    set_config(config)
    set_token_service(None)
    yield config
    set_token_service(None)
    reset_config()


@pytest.fixture
def store(app_config):
    """Fresh in-memory ChatStore registered as the process singleton."""
    ChatStore.reset_instance()
    instance = ChatStore.get_instance(db_path=":memory:")
    yield instance
    ChatStore.reset_instance()


@pytest.fixture
def api_client(store):
    """TestClient with the lifespan running.

    All WebSockets opened from one client share its event loop, so the chat
    manager's locks and queues are shared as in production.
    """
    set_chat_manager(None)
    with TestClient(app) as client:
        yield client
    set_chat_manager(None)


@pytest.fixture
def make_user(api_client):
    """Sign up and log in a user; returns ``(user_id, auth_headers)``."""

    def _make(username: str, password: str = "pw"):
        resp = api_client.post("/signup", json={"username": username, "password": password})
        assert resp.status_code == 201, resp.text
        resp = api_client.post("/login", json={"username": username, "password": password})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        return body["userId"], {"Authorization": f"Bearer {body['token']}"}

    return _make


@pytest.fixture
def fake_socket():
    """Factory for FakeSocket instances."""
    return FakeSocket
