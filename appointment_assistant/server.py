"""FastAPI server for the bank appointment assistant.

Run with:
    uvicorn appointment_assistant.server:app --reload --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager, suppress

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from appointment_assistant.agent import ChatOrchestrator
from appointment_assistant.api.routes import router
from appointment_assistant.catalog import TenantContext
from appointment_assistant.config import (
    CORS_ORIGINS,
    CRM_CONTACT_ID,
    IS_PRODUCTION,
    SERVER_HOST,
    SERVER_PORT,
    SESSION_COOKIE_NAME,
    SESSION_MAX_AGE_SECONDS,
    SESSION_SECRET,
    STATIC_PASSWORD,
    STATIC_USERNAME,
)
from appointment_assistant.errors import AssistantError, ErrorKind
from appointment_assistant.services.crm_gateway import CRMGateway
from appointment_assistant.services.llm_gateway import LLMGateway
from appointment_assistant.services.session_store import SessionStore

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# How often expired sessions are swept out of the store
SESSION_PURGE_INTERVAL_SECONDS = 300


def build_orchestrator() -> ChatOrchestrator:
    tenant = TenantContext(contact_id=CRM_CONTACT_ID, static_username=STATIC_USERNAME)
    return ChatOrchestrator(LLMGateway(), CRMGateway(), tenant, static_password=STATIC_PASSWORD)


async def purge_expired_sessions(store: SessionStore, interval: float = SESSION_PURGE_INTERVAL_SECONDS) -> None:
    """Drop expired sessions every *interval* seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        removed = store.purge_expired()
        if removed:
            logger.info("Purged %d expired session(s); %d live", removed, store.entry_count)


# ── Lifespan: initialise shared resources ───────────────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the orchestrator and the session store once, in app state."""
    logger.info("Building chat orchestrator…")
    application.state.orchestrator = build_orchestrator()
    application.state.sessions = SessionStore(ttl_seconds=SESSION_MAX_AGE_SECONDS)
    purger = asyncio.create_task(purge_expired_sessions(application.state.sessions))
    logger.info("Assistant ready.")
    yield
    purger.cancel()
    with suppress(asyncio.CancelledError):
        await purger


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Bank Appointment Assistant",
    description="Chat assistant that books, reschedules and cancels branch appointments.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    session_cookie=SESSION_COOKIE_NAME,
    max_age=SESSION_MAX_AGE_SECONDS,
    same_site="lax",
    https_only=IS_PRODUCTION,
)

# ── CORS (credentialed requests from the chat UI) ───────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request logging ──────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next) -> Response:
    """Log one line per request, correlated by ``X-Request-ID``."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    request.state.request_id = request_id
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "[%s] %s %s -> %d (%.0f ms)",
        request_id,
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    response.headers["X-Request-ID"] = request_id
    return response


# ── Error rendering ──────────────────────────────────────────────────
@app.exception_handler(AssistantError)
async def assistant_error_handler(request: Request, exc: AssistantError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "?")
    logger.info("[%s] %s -> %s: %s", request_id, request.url.path, exc.kind.value, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = AssistantError(
        "Invalid request body",
        ErrorKind.VALIDATION,
        details=[
            {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": e.get("msg")}
            for e in exc.errors()
        ],
    )
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    return {
        "service": "Bank Appointment Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting appointment assistant on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "appointment_assistant.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=not IS_PRODUCTION,
    )
