import time
from pathlib import Path
from typing import Any, Dict, List

import jwt
import pytest
from fastapi.testclient import TestClient

JWT_SECRET = "test-jwt-secret-with-enough-bytes-for-hs256"
USER_ID = "11111111-2222-4333-8444-555555555555"
OTHER_USER_ID = "99999999-8888-4777-a666-555555555555"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path: Path):
    """Fresh SQLite file and known secrets for every test."""
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_DATABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_JWT_AUDIENCE", raising=False)
    monkeypatch.delenv("GATEWAY_AGENT_ID", raising=False)
    monkeypatch.delenv("RATE_LIMIT_BACKEND", raising=False)
    monkeypatch.setenv("DB_PATH", str(tmp_path / "webchat.db"))
    monkeypatch.setenv("SUPABASE_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("WEB_PUSH_API_TOKEN", "push-token")
    monkeypatch.setenv("AGENT_LEARN_API_KEY", "learn-key")
    monkeypatch.setenv("WEB_PUSH_PUBLIC_KEY", "public-vapid")
    monkeypatch.setenv("WEB_PUSH_PRIVATE_KEY", "private-vapid")
    yield


def make_token(user_id: str = USER_ID, **overrides: Any) -> str:
    claims: Dict[str, Any] = {
        "sub": user_id,
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
    }
    claims.update(overrides)
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")


def auth_headers(user_id: str = USER_ID) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


@pytest.fixture
def app():
    from webchat.main import app as fastapi_app
    from webchat.rate_limit import LEARN_RULE, InMemoryRateLimiter

    fastapi_app.dependency_overrides.clear()
    fastapi_app.state.rate_limiter = InMemoryRateLimiter(LEARN_RULE)
    fastapi_app.state.hint_engine_factory = None
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


class RecordingSender:
    """Push sender that records deliveries and fails for selected endpoints."""

    def __init__(self, failures: Dict[str, Exception] = None):
        self.failures = failures or {}
        self.sent: List[Dict[str, Any]] = []

    def send(self, subscription, payload):
        endpoint = subscription["endpoint"]
        if endpoint in self.failures:
            raise self.failures[endpoint]
        self.sent.append({"subscription": subscription, "payload": payload})


def assert_error_envelope(resp_json: Dict[str, Any], expected_code: str):
    assert "error" in resp_json, "Error responses must include 'error' envelope"
    assert "meta" in resp_json, "Error responses must include 'meta' envelope"
    assert resp_json["error"].get("code") == expected_code
    assert isinstance(resp_json["meta"].get("request_id"), str)
    assert resp_json["meta"].get("service") == "webchat"
