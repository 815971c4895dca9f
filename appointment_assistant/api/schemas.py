"""Pydantic schemas for the FastAPI endpoints.

Wire names are camelCase (``customerType``, ``guidedFlow`` …) to match the
chat UI; Python attributes stay snake_case.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from appointment_assistant.models import ChatTurn


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Auth ─────────────────────────────────────────────────────────────


class LoginRequest(_CamelModel):
    # Presence is checked by the orchestrator so the error body stays uniform
    username: str | None = None
    password: str | None = None


class LoginResponse(_CamelModel):
    message: str
    username: str
    greeting: str
    chat_history: list[ChatTurn]
    guided_flow: dict[str, Any]


class UsernameResponse(BaseModel):
    username: str


class MessageResponse(BaseModel):
    message: str


class SessionHealthResponse(BaseModel):
    status: Literal["healthy", "unhealthy"]
    error: str | None = None


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "bank-appointment-assistant"


# ── Chat ─────────────────────────────────────────────────────────────


class ChatRequest(_CamelModel):
    query: str | None = Field(None, max_length=2000, description="The user's message")
    customer_type: str | None = Field(None, description='"Regular" or "Guest"')


class ChatResponse(_CamelModel):
    response: str
    appointment_details: dict[str, Any] | None = None
    missing_fields: list[str] = Field(default_factory=list)
    action: str | None = None
    previous_appointments: list[dict[str, Any]] | None = None
    guided_flow: dict[str, Any]
    guided_step: str


class ChatStateResponse(_CamelModel):
    messages: list[ChatTurn]
    appointment_details: dict[str, Any] | None = None
    guided_flow: dict[str, Any]
    guided_step: str


class ClientMessage(BaseModel):
    """A chat bubble as the UI holds it: ``{type, text}`` or ``{role, content}``."""

    type: str | None = None
    role: str | None = None
    text: str | None = None
    content: str | None = None

    def to_turn(self) -> ChatTurn:
        role = self.role or self.type
        return ChatTurn(
            role="user" if role == "user" else "assistant",
            content=self.text if self.text is not None else (self.content or ""),
        )


class VerifyConfirmationRequest(_CamelModel):
    text: str | None = None
    chat_history: list[ClientMessage] | None = None


class VerifyConfirmationResponse(_CamelModel):
    is_confirmed: bool


class SuggestedRepliesRequest(_CamelModel):
    query: str = ""
    customer_type: str = "Guest"
    sf_data: Any = None
    missing_fields: list[str] | None = None


class SuggestedRepliesResponse(BaseModel):
    suggestions: list[str]


class GreetingRequest(_CamelModel):
    customer_type: str = "Guest"


class GreetingResponse(BaseModel):
    greeting: str


# ── CRM ──────────────────────────────────────────────────────────────


class AppointmentCreateRequest(BaseModel):
    """Direct booking from the appointment form, in Salesforce field names."""

    Reason_for_Visit__c: str = Field(..., min_length=1)
    Appointment_Date__c: str | None = None
    Appointment_Time__c: str = Field(..., min_length=1)
    Location__c: str = Field(..., min_length=1)
    Banker__c: str | None = None


class AppointmentCreateResponse(BaseModel):
    message: str = "Appointment created"
    id: str


class RescheduleRequest(_CamelModel):
    appointment_id: str = Field(..., min_length=15, max_length=18)
    date: str
    time: str
    location: str | None = None
    reason: str | None = None


class RescheduleResponse(_CamelModel):
    message: str = "Appointment rescheduled"
    appointment_details: dict[str, Any]


class BankerNotesResponse(_CamelModel):
    banker_notes: list[str]


class VisitHistoryResponse(_CamelModel):
    total_size: int
    records: list[dict[str, Any]]


class RecommendationRequest(_CamelModel):
    visit_reasons: list[str]
    customer_type: str | None = None
    banker_notes: list[str] | None = None
    current_reason: str | None = None


class Recommendation(BaseModel):
    name: str
    description: str
    key: str


class RecommendationResponse(_CamelModel):
    recommendations: list[Recommendation]
    reason: str = ""
    next_appointment_reason: str = ""
