"""Tests for POST /api/classroom/token."""

import pytest
from fastapi.testclient import TestClient

from tests.conftest import FakeIdentityVerifier
from tutor_relay.api import dependencies
from tutor_relay.api.dependencies import get_identity_verifier, get_token_signer
from tutor_relay.app import app


class FakeTokenSigner:
    server_url = "wss://classroom.example.test"

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str | None]] = []

    def sign(self, identity: str, room: str, display_name: str | None = None) -> str:
        self.calls.append((identity, room, display_name))
        return f"token-for-{identity}-{room}"


@pytest.fixture
def signer():
    signer = FakeTokenSigner()
    app.dependency_overrides[get_identity_verifier] = lambda: FakeIdentityVerifier()
    app.dependency_overrides[get_token_signer] = lambda: signer
    dependencies._rate_limiter.reset()
    yield signer
    app.dependency_overrides.clear()
    dependencies._rate_limiter.reset()


@pytest.fixture
def http():
    return TestClient(app)


def post(http, body, token="good-token"):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return http.post("/api/classroom/token", json=body, headers=headers)


def test_token_issued_for_verified_user(signer, http):
    response = post(http, {"room_name": "maths-101", "display_name": "Sammy"})

    assert response.status_code == 200
    assert response.json() == {
        "token": "token-for-user-1-maths-101",
        "url": "wss://classroom.example.test",
        "identity": "user-1",
    }
    assert signer.calls == [("user-1", "maths-101", "Sammy")]


def test_display_name_defaults_to_first_name(signer, http):
    post(http, {"room_name": "maths-101"})

    assert signer.calls == [("user-1", "maths-101", "Sam")]


def test_missing_bearer_is_unauthorized(signer, http):
    response = post(http, {"room_name": "maths-101"}, token=None)

    assert response.status_code == 401
    assert response.json()["detail"]["error"]["code"] == "UNAUTHORIZED"
    assert signer.calls == []


def test_bad_token_is_unauthorized(signer, http):
    response = post(http, {"room_name": "maths-101"}, token="expired")

    assert response.status_code == 401


def test_invalid_room_name(signer, http):
    response = post(http, {"room_name": "../../admin"})

    assert response.status_code == 400
    assert response.json()["detail"]["error"]["code"] == "INVALID_ROOM_NAME"


def test_unconfigured_signer_returns_503(http):
    app.dependency_overrides[get_identity_verifier] = lambda: FakeIdentityVerifier()
    try:
        response = post(http, {"room_name": "maths-101"})
    finally:
        app.dependency_overrides.clear()
        dependencies._rate_limiter.reset()

    assert response.status_code == 503
    assert response.json()["detail"]["error"]["code"] == "CLASSROOM_NOT_CONFIGURED"


def test_rate_limited_after_thirty_requests(signer, http):
    for _ in range(30):
        assert post(http, {"room_name": "maths-101"}).status_code == 200

    response = post(http, {"room_name": "maths-101"})

    assert response.status_code == 429
    assert response.json()["detail"]["error"]["code"] == "RATE_LIMIT_EXCEEDED"
