"""FastAPI route definitions for the appointment assistant API.

The signed session cookie carries only a session id (``sid``); the
``ChatSession`` it refers to lives in the server-side ``SessionStore``.
A cookie whose ``sid`` is no longer in the store is an expired session.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, TypeVar

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from appointment_assistant.agent import ChatOrchestrator
from appointment_assistant.api.schemas import (
    AppointmentCreateRequest,
    AppointmentCreateResponse,
    BankerNotesResponse,
    ChatRequest,
    ChatResponse,
    ChatStateResponse,
    GreetingRequest,
    GreetingResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RecommendationRequest,
    RecommendationResponse,
    RescheduleRequest,
    RescheduleResponse,
    SessionHealthResponse,
    SuggestedRepliesRequest,
    SuggestedRepliesResponse,
    UsernameResponse,
    VerifyConfirmationRequest,
    VerifyConfirmationResponse,
    VisitHistoryResponse,
)
from appointment_assistant.errors import AssistantError, ErrorKind
from appointment_assistant.models import ChatSession
from appointment_assistant.services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()

T = TypeVar("T")

SID_KEY = "sid"


# ── Dependencies ─────────────────────────────────────────────────────


def _get_orchestrator(request: Request) -> ChatOrchestrator:
    """The orchestrator built during the FastAPI lifespan (see ``server.py``)."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return orchestrator


def _get_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def _open_session(request: Request) -> tuple[str, ChatSession]:
    """Resolve the caller's session, creating one for first-time visitors."""
    store = _get_store(request)
    sid = request.session.get(SID_KEY)
    if sid is None:
        sid, session = store.create()
        request.session[SID_KEY] = sid
        return sid, session

    session = store.get(sid)
    if session is None:
        # Drop the stale id so the client's retry gets a fresh session
        request.session.pop(SID_KEY, None)
        raise AssistantError("Session expired or invalid", ErrorKind.SESSION_EXPIRED)
    return sid, session


def _require_user(request: Request) -> tuple[str, ChatSession]:
    if request.session.get(SID_KEY) is None:
        raise AssistantError("Not logged in", ErrorKind.UNAUTHORIZED)
    sid, session = _open_session(request)
    if session.is_guest:
        raise AssistantError("Not logged in", ErrorKind.UNAUTHORIZED)
    return sid, session


async def _run(request: Request, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run blocking LLM/CRM work off the event loop.

    ``AssistantError`` passes through to its exception handler; anything
    else is logged with its traceback and reported as a generic failure.
    """
    request_id = getattr(request.state, "request_id", "?")
    try:
        return await asyncio.to_thread(fn, *args, **kwargs)
    except AssistantError:
        raise
    except Exception as exc:
        logger.exception("[%s] Unhandled error in %s", request_id, request.url.path)
        raise AssistantError(
            "An internal error occurred. Please try again.",
            ErrorKind.UPSTREAM,
        ) from exc


async def _run_locked(request: Request, sid: str, session: ChatSession, fn: Callable[[], T]) -> T:
    """Run *fn* holding the session's lock, then store the session."""
    store = _get_store(request)

    def _locked() -> T:
        with store.lock_for(sid):
            try:
                return fn()
            finally:
                store.save(sid, session)

    return await _run(request, _locked)


# ── Health ───────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse()


@router.get("/session-health", response_model=SessionHealthResponse)
async def session_health(request: Request):
    sid = request.session.get(SID_KEY)
    if sid is not None and not _get_store(request).has(sid):
        request.session.pop(SID_KEY, None)
        return JSONResponse(
            status_code=401,
            content={"status": "unhealthy", "error": ErrorKind.SESSION_EXPIRED.value},
        )
    if sid is None:
        _open_session(request)
    return SessionHealthResponse(status="healthy")


# ── Auth ─────────────────────────────────────────────────────────────


@router.post("/auth/login", response_model=LoginResponse)
async def login(body: LoginRequest, request: Request):
    orchestrator = _get_orchestrator(request)
    store = _get_store(request)

    # Bad credentials must leave an existing session untouched
    orchestrator.authenticate(body.username, body.password)

    # A login always starts from a fresh server-side session
    old_sid = request.session.pop(SID_KEY, None)
    if old_sid:
        store.delete(old_sid)
    sid, session = store.create()

    try:
        result = await _run_locked(
            request, sid, session, lambda: orchestrator.login(session, body.username, body.password)
        )
    except AssistantError:
        store.delete(sid)
        raise
    request.session[SID_KEY] = sid
    logger.info("User %s logged in", session.username)
    return LoginResponse.model_validate(result)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request):
    sid = request.session.pop(SID_KEY, None)
    if sid:
        _get_store(request).delete(sid)
    request.session.clear()
    return MessageResponse(message="Logged out successfully")


@router.get("/auth/check-session", response_model=UsernameResponse)
async def check_session(request: Request):
    _, session = _require_user(request)
    return UsernameResponse(username=session.username)


# ── Chat ─────────────────────────────────────────────────────────────


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(body: ChatRequest, request: Request):
    """Run one chat turn through the orchestrator.

    The blocking graph run is offloaded with ``asyncio.to_thread`` and
    serialised per session, so two tabs sharing a cookie cannot interleave
    their read-modify-write of the draft.
    """
    orchestrator = _get_orchestrator(request)
    sid, session = _open_session(request)
    result = await _run_locked(
        request, sid, session, lambda: orchestrator.handle_chat(session, body.query, body.customer_type)
    )
    return ChatResponse.model_validate(result)


@router.get("/chat/state", response_model=ChatStateResponse)
async def chat_state(request: Request):
    orchestrator = _get_orchestrator(request)
    _, session = _open_session(request)
    return ChatStateResponse.model_validate(orchestrator.chat_state(session))


@router.post("/verify-confirmation", response_model=VerifyConfirmationResponse)
async def verify_confirmation(body: VerifyConfirmationRequest, request: Request):
    orchestrator = _get_orchestrator(request)
    _, session = _open_session(request)
    history = [m.to_turn() for m in body.chat_history] if body.chat_history is not None else None
    confirmed = await _run(request, orchestrator.verify, session, body.text, history)
    return VerifyConfirmationResponse(is_confirmed=confirmed)


@router.post("/suggestedReplies", response_model=SuggestedRepliesResponse)
async def suggested_replies(body: SuggestedRepliesRequest, request: Request):
    orchestrator = _get_orchestrator(request)
    _, session = _open_session(request)
    suggestions = await _run(
        request,
        orchestrator.suggestions,
        session,
        body.query,
        body.customer_type,
        sf_data=body.sf_data,
        missing=body.missing_fields,
    )
    return SuggestedRepliesResponse(suggestions=suggestions)


@router.post("/generate-greeting", response_model=GreetingResponse)
async def generate_greeting(body: GreetingRequest, request: Request):
    orchestrator = _get_orchestrator(request)
    _, session = _open_session(request)
    greeting = await _run(request, orchestrator.greet, session, body.customer_type)
    return GreetingResponse(greeting=greeting)


@router.post("/chat/recommendations", response_model=RecommendationResponse)
async def recommendations(body: RecommendationRequest, request: Request):
    orchestrator = _get_orchestrator(request)
    _require_user(request)
    result = await _run(
        request,
        orchestrator.recommendations,
        body.visit_reasons,
        body.banker_notes,
        body.current_reason,
    )
    return RecommendationResponse.model_validate(result)


# ── Salesforce ───────────────────────────────────────────────────────


@router.get("/salesforce/appointments")
async def list_appointments(request: Request) -> list[dict[str, Any]]:
    orchestrator = _get_orchestrator(request)
    _require_user(request)
    return await _run(request, orchestrator.appointments)


@router.post("/salesforce/appointments", response_model=AppointmentCreateResponse)
async def create_appointment(body: AppointmentCreateRequest, request: Request):
    orchestrator = _get_orchestrator(request)
    sid, session = _require_user(request)
    record_id = await _run_locked(
        request,
        sid,
        session,
        lambda: orchestrator.book_appointment(session, body.model_dump(exclude_none=True)),
    )
    return AppointmentCreateResponse(id=record_id)


@router.post("/salesforce/appointments/reschedule", response_model=RescheduleResponse)
async def reschedule_appointment(body: RescheduleRequest, request: Request):
    orchestrator = _get_orchestrator(request)
    _require_user(request)
    details = await _run(
        request,
        orchestrator.reschedule,
        body.appointment_id,
        body.date,
        body.time,
        location=body.location,
        reason=body.reason,
    )
    return RescheduleResponse(appointment_details=details)


@router.get("/salesforce/banker-notes", response_model=BankerNotesResponse)
async def banker_notes(request: Request):
    orchestrator = _get_orchestrator(request)
    _require_user(request)
    notes = await _run(request, orchestrator.banker_notes)
    return BankerNotesResponse(banker_notes=notes)


@router.post("/salesforce/visit-history", response_model=VisitHistoryResponse)
async def visit_history(request: Request):
    """Visit history of the configured contact.

    The request body is ignored: query text is never accepted from clients.
    """
    orchestrator = _get_orchestrator(request)
    _require_user(request)
    records = await _run(request, orchestrator.visit_history)
    return VisitHistoryResponse(total_size=len(records), records=records)
