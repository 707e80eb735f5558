"""HTTP endpoints: signature gate, challenge handshake, early acknowledgment, OAuth callback."""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from action_gate.infrastructure.signing import SIGNATURE_HEADER, sign
from action_gate.transport.http import create_app

SECRET = "whsecret"


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime)) as c:
        yield c


def _post(client: TestClient, body: dict, secret: str = SECRET):
    raw = json.dumps(body).encode()
    return client.post(
        "/messages",
        content=raw,
        headers={SIGNATURE_HEADER: sign(secret, raw), "Content-Type": "application/json"},
    )


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_bad_signature_is_rejected(client: TestClient, make_event, notifier) -> None:
    response = _post(client, make_event(), secret="wrong")
    assert response.status_code == 403
    assert notifier.sent == []


def test_challenge_is_answered_and_signed(client: TestClient) -> None:
    response = _post(client, {"type": "verification", "challenge": "ping"})
    assert response.status_code == 200
    assert response.json() == {"response": "ping"}
    assert response.headers[SIGNATURE_HEADER] == sign(SECRET, response.content)


def test_event_is_acknowledged_and_gated(client: TestClient, make_event, notifier, runtime) -> None:
    response = _post(client, make_event())
    assert response.status_code == 200
    # Background work has run by the time TestClient returns.
    assert [m.title for m in notifier.sent] == ["Please log in to Gmail"]


def test_invalid_json_is_rejected(client: TestClient) -> None:
    raw = b"{not json"
    response = client.post("/messages", content=raw, headers={SIGNATURE_HEADER: sign(SECRET, raw)})
    assert response.status_code == 400


def test_oauth_callback_resumes_pending_action(client: TestClient, make_event, notifier, provider) -> None:
    _post(client, make_event())
    response = client.get("/oauth2callback", params={"code": "abc", "state": "u1"})
    assert response.status_code == 200
    assert "Login successful" in response.text
    assert provider.exchanged_codes == ["abc"]
    assert [m.title for m in notifier.sent] == ["Please log in to Gmail", "Your Messages"]


def test_stale_oauth_callback_still_answers(client: TestClient, provider) -> None:
    response = client.get("/oauth2callback", params={"code": "abc", "state": "nobody"})
    assert response.status_code == 200
    assert provider.exchanged_codes == []
