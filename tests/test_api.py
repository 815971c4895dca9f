"""Tests for the FastAPI endpoints."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from appointment_assistant.errors import AssistantError, ErrorKind
from appointment_assistant.server import app, purge_expired_sessions
from appointment_assistant.services.session_store import SessionStore

TURN_RESULT = {
    "response": "Which branch would you prefer?",
    "appointmentDetails": {"Reason_for_Visit__c": "Open a new account"},
    "missingFields": ["Location__c"],
    "action": "book",
    "guidedFlow": {"reason": "Open a new account", "appointmentId": None},
    "guidedStep": "time",
}


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def mock_orchestrator():
    orchestrator = MagicMock()
    orchestrator.handle_chat.return_value = dict(TURN_RESULT)

    def _authenticate(username, password):
        if password != "secret":
            raise AssistantError("Invalid credentials", ErrorKind.UNAUTHORIZED)

    def _login(session, username, password):
        _authenticate(username, password)
        session.username = username
        return {
            "message": "Login successful",
            "username": username,
            "greeting": "Welcome back!",
            "chatHistory": [{"role": "assistant", "content": "Welcome back!"}],
            "guidedFlow": {},
        }

    orchestrator.authenticate.side_effect = _authenticate
    orchestrator.login.side_effect = _login
    return orchestrator


@pytest.fixture
def client(mock_orchestrator, clock):
    """Test client with state attached the same way the lifespan does."""
    app.state.orchestrator = mock_orchestrator
    app.state.sessions = SessionStore(ttl_seconds=60, clock=clock)
    yield TestClient(app)
    app.state.orchestrator = None
    app.state.sessions = None


def _login(client):
    response = client.post("/api/auth/login", json={"username": "Jack Rogers", "password": "secret"})
    assert response.status_code == 200
    return response


class TestHealthEndpoints:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "bank-appointment-assistant"}

    def test_session_health_opens_a_session(self, client):
        response = client.get("/api/session-health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert app.state.sessions.entry_count == 1

    def test_session_health_reports_expiry(self, client, clock):
        client.get("/api/session-health")
        clock.now += 120
        response = client.get("/api/session-health")
        assert response.status_code == 401
        assert response.json() == {"status": "unhealthy", "error": "SESSION_EXPIRED"}

    def test_root_lists_docs(self, client):
        assert client.get("/").json()["health"] == "/api/health"


class TestAuthEndpoints:
    def test_login_sets_session(self, client):
        data = _login(client).json()
        assert data["username"] == "Jack Rogers"
        assert data["chatHistory"] == [{"role": "assistant", "content": "Welcome back!"}]

        response = client.get("/api/auth/check-session")
        assert response.status_code == 200
        assert response.json() == {"username": "Jack Rogers"}

    def test_login_rejects_bad_password(self, client):
        response = client.post("/api/auth/login", json={"username": "Jack Rogers", "password": "nope"})
        assert response.status_code == 401
        assert response.json() == {"message": "Invalid credentials", "error": "UNAUTHORIZED"}

    def test_bad_password_keeps_existing_session(self, client, mock_orchestrator):
        _login(client)
        response = client.post("/api/auth/login", json={"username": "Jack Rogers", "password": "nope"})
        assert response.status_code == 401
        assert mock_orchestrator.login.call_count == 1

        response = client.get("/api/auth/check-session")
        assert response.status_code == 200
        assert response.json() == {"username": "Jack Rogers"}
        assert app.state.sessions.entry_count == 1
        assert app.state.sessions.entry_count == 0

    def test_check_session_requires_login(self, client):
        response = client.get("/api/auth/check-session")
        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    def test_logout_drops_session(self, client):
        _login(client)
        response = client.post("/api/auth/logout")
        assert response.json() == {"message": "Logged out successfully"}
        assert app.state.sessions.entry_count == 0
        assert client.get("/api/auth/check-session").status_code == 401


class TestChatEndpoint:
    def test_chat_returns_camel_case_turn(self, client, mock_orchestrator):
        response = client.post("/api/chat", json={"query": "New account", "customerType": "Guest"})
        assert response.status_code == 200
        data = response.json()
        assert data["missingFields"] == ["Location__c"]
        assert data["guidedStep"] == "time"
        assert "previousAppointments" not in data

        session, query, customer_type = mock_orchestrator.handle_chat.call_args[0]
        assert session.is_guest
        assert (query, customer_type) == ("New account", "Guest")

    def test_session_is_reused_across_turns(self, client, mock_orchestrator):
        client.post("/api/chat", json={"query": "one", "customerType": "Guest"})
        client.post("/api/chat", json={"query": "two", "customerType": "Guest"})
        first, second = (c.args[0] for c in mock_orchestrator.handle_chat.call_args_list)
        assert first is second
        assert app.state.sessions.entry_count == 1

    def test_assistant_error_is_rendered(self, client, mock_orchestrator):
        mock_orchestrator.handle_chat.side_effect = AssistantError(
            "Unable to create appointment due to invalid date or time format",
            ErrorKind.INVALID_DATETIME,
        )
        response = client.post("/api/chat", json={"query": "Yes", "customerType": "Guest"})
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_DATETIME"

    def test_oversized_query_is_a_validation_error(self, client):
        response = client.post("/api/chat", json={"query": "x" * 2001, "customerType": "Guest"})
        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "VALIDATION_ERROR"
        assert data["details"][0]["field"] == "query"

    def test_expired_session_asks_for_recovery(self, client, clock):
        client.post("/api/chat", json={"query": "hi", "customerType": "Guest"})
        clock.now += 120
        response = client.post("/api/chat", json={"query": "hi again", "customerType": "Guest"})
        assert response.status_code == 401
        assert response.json() == {
            "message": "Session expired or invalid",
            "error": "SESSION_EXPIRED",
            "recovery": True,
        }

        retry = client.post("/api/chat", json={"query": "hi again", "customerType": "Guest"})
        assert retry.status_code == 200

    def test_unexpected_error_is_generic(self, client, mock_orchestrator):
        mock_orchestrator.handle_chat.side_effect = RuntimeError("LLM exploded")
        response = client.post("/api/chat", json={"query": "hi", "customerType": "Guest"})
        assert response.status_code == 500
        assert response.json() == {
            "message": "An internal error occurred. Please try again.",
            "error": "UPSTREAM_FAILURE",
        }

    def test_orchestrator_not_ready(self, client):
        app.state.orchestrator = None
        response = client.post("/api/chat", json={"query": "hi", "customerType": "Guest"})
        assert response.status_code == 503

    def test_verify_confirmation_accepts_ui_messages(self, client, mock_orchestrator):
        mock_orchestrator.verify.return_value = True
        response = client.post(
            "/api/verify-confirmation",
            json={"text": "Yes", "chatHistory": [{"type": "bot", "text": "Shall I book it?"}]},
        )
        assert response.json() == {"isConfirmed": True}
        _, text, history = mock_orchestrator.verify.call_args[0]
        assert text == "Yes"
        assert history[0].role == "assistant"

    def test_suggested_replies(self, client, mock_orchestrator):
        mock_orchestrator.suggestions.return_value = ["Brooklyn", "Manhattan", "New York"]
        response = client.post("/api/suggestedReplies", json={"query": "hi", "missingFields": ["Location__c"]})
        assert response.json() == {"suggestions": ["Brooklyn", "Manhattan", "New York"]}
        assert mock_orchestrator.suggestions.call_args.kwargs["missing"] == ["Location__c"]


class TestCRMEndpoints:
    @pytest.mark.parametrize(
        "method, path",
        [
            ("get", "/api/salesforce/appointments"),
            ("get", "/api/salesforce/banker-notes"),
            ("post", "/api/salesforce/visit-history"),
        ],
    )
    def test_guests_are_rejected(self, client, method, path):
        response = getattr(client, method)(path)
        assert response.status_code == 401

    def test_list_appointments(self, client, mock_orchestrator):
        mock_orchestrator.appointments.return_value = [{"Id": "a01dM000001AbCdQAK"}]
        _login(client)
        response = client.get("/api/salesforce/appointments")
        assert response.json() == [{"Id": "a01dM000001AbCdQAK"}]

    def test_create_appointment(self, client, mock_orchestrator):
        mock_orchestrator.book_appointment.return_value = "a01dM000001AbCdQAK"
        _login(client)
        response = client.post(
            "/api/salesforce/appointments",
            json={
                "Reason_for_Visit__c": "Open a new account",
                "Appointment_Date__c": "2025-03-06",
                "Appointment_Time__c": "3:00 PM",
                "Location__c": "Brooklyn",
            },
        )
        assert response.json() == {"message": "Appointment created", "id": "a01dM000001AbCdQAK"}
        data = mock_orchestrator.book_appointment.call_args[0][1]
        assert "Banker__c" not in data

    def test_visit_history_ignores_body(self, client, mock_orchestrator):
        mock_orchestrator.visit_history.return_value = [{"Id": "v1"}, {"Id": "v2"}]
        _login(client)
        response = client.post("/api/salesforce/visit-history", json={"query": "SELECT Id FROM User"})
        assert response.json() == {"totalSize": 2, "records": [{"Id": "v1"}, {"Id": "v2"}]}
        mock_orchestrator.visit_history.assert_called_once_with()

    def test_recommendations(self, client, mock_orchestrator):
        mock_orchestrator.recommendations.return_value = {
            "recommendations": [{"name": "Personal Loan", "description": "Fixed rate.", "key": "personal_loan"}],
            "reason": "Debt consolidation",
            "nextAppointmentReason": "Build credit and reduce debt",
        }
        _login(client)
        response = client.post("/api/chat/recommendations", json={"visitReasons": ["Build credit"]})
        assert response.status_code == 200
        assert response.json()["nextAppointmentReason"] == "Build credit and reduce debt"


# ── Background session purge ─────────────────────────────────────────


def test_purge_task_drops_expired_sessions(clock):
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.create()
    clock.now += 120

    async def _run_once():
        task = asyncio.create_task(purge_expired_sessions(store, interval=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(_run_once())
    assert store.entry_count == 0


def test_purge_task_keeps_live_sessions(clock):
    store = SessionStore(ttl_seconds=60, clock=clock)
    sid, _ = store.create()

    async def _run_once():
        task = asyncio.create_task(purge_expired_sessions(store, interval=0.01))
        await asyncio.sleep(0.05)
        task.cancel()

    asyncio.run(_run_once())
    assert store.has(sid)
