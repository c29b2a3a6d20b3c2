"""
Tests for POST /api/email/send.

Authentication is replaced through FastAPI dependency overrides; delivery
goes to the in-process FakeSmtpRelay.
"""

import pytest
from fastapi.testclient import TestClient

from fake_smtp import FakeSmtpRelay, RelayBehaviour
from portal.auth import get_current_user


@pytest.fixture()
def app():
    from portal.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def authed_client(app):
    app.dependency_overrides[get_current_user] = lambda: "auth0|user-123"
    return TestClient(app)


class TestSendEmailEndpoint:
    def test_requires_authentication(self, client, monkeypatch):
        monkeypatch.setenv("AUTH0_DOMAIN", "portal-test.us.auth0.com")

        response = client.post("/api/email/send", json={"to": "a@example.com", "subject": "x", "text": "y"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Not authenticated"

    def test_sends_and_returns_envelope(self, authed_client, relay_env):
        response = authed_client.post(
            "/api/email/send",
            json={
                "to": "a@example.com, b@example.com",
                "cc": ["c@example.com"],
                "bcc": "d@example.com",
                "subject": "Reporte mensual",
                "text": "Hola",
                "html": "<p>Hola</p>",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert data["messageId"].startswith("<") and data["messageId"].endswith("@127.0.0.1>")
        assert data["envelope"] == {
            "from": "no-reply@portal.example.com",
            "to": ["a@example.com", "b@example.com", "c@example.com", "d@example.com"],
        }

        [message] = relay_env.messages
        assert "To: a@example.com, b@example.com\r\n" in message.data
        assert "d@example.com" not in message.data

    def test_explicit_sender(self, authed_client, relay_env):
        response = authed_client.post(
            "/api/email/send",
            json={"to": ["a@example.com"], "from": "reports@example.com", "subject": "x", "text": "y"},
        )

        assert response.status_code == 200
        assert response.json()["envelope"]["from"] == "reports@example.com"
        assert relay_env.messages[0].mail_from == "reports@example.com"

    def test_body_is_required(self, authed_client, relay_env):
        response = authed_client.post("/api/email/send", json={"to": "a@example.com", "subject": "x"})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "Invalid request payload"
        assert relay_env.messages == []

    @pytest.mark.parametrize(
        "field, value",
        [
            ("to", "a@example.com>\r\nRCPT TO:<victim@evil.test"),
            ("cc", ["c@example.com\nBcc: victim@evil.test"]),
            ("bcc", "<d@example.com>"),
            ("from", "reports@example.com>\r\nRCPT TO:<victim@evil.test"),
        ],
    )
    def test_addresses_with_line_breaks_or_brackets_are_rejected(self, authed_client, relay_env, field, value):
        payload = {"to": "a@example.com", "subject": "x", "text": "y"}
        payload[field] = value

        response = authed_client.post("/api/email/send", json=payload)

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "Invalid request payload"
        assert relay_env.commands == []
        assert relay_env.messages == []

    def test_blank_recipients(self, authed_client, relay_env):
        response = authed_client.post("/api/email/send", json={"to": " , ", "subject": "x", "text": "y"})

        assert response.status_code == 400
        assert response.json()["detail"] == "At least one recipient is required"

    def test_relay_failure_returns_502(self, authed_client, relay_env, monkeypatch):
        relay = FakeSmtpRelay(RelayBehaviour(replies={"MAIL": "451 4.3.0 Try again later"}))
        relay.start()
        try:
            monkeypatch.setenv("SMTP_PORT", str(relay.port))
            response = authed_client.post(
                "/api/email/send", json={"to": "a@example.com", "subject": "x", "text": "y"}
            )
        finally:
            relay.stop()

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to send email"

    def test_missing_smtp_configuration_returns_500(self, authed_client, monkeypatch):
        monkeypatch.delenv("SMTP_HOST", raising=False)

        response = authed_client.post("/api/email/send", json={"to": "a@example.com", "subject": "x", "text": "y"})

        assert response.status_code == 500
