"""Domain models shared by the orchestrator, the gateways and the API.

Field aliases keep the camelCase wire names the frontend and the CRM
snapshot blob already use (``appointmentDetails``, ``guidedFlow`` …).
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ACTIONS = ("book", "reschedule", "cancel", "branch_info", "none")

ReferralState = Literal["in_progress", "completed"]


class ChatTurn(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str

    @property
    def text(self) -> str:
        """The human-readable text of the turn.

        Assistant turns store a JSON envelope; the ``response`` field is
        what was shown to the user.
        """
        if self.role != "assistant":
            return self.content
        try:
            data = json.loads(self.content)
        except ValueError:
            return self.content
        if isinstance(data, dict) and data.get("response"):
            return str(data["response"])
        return self.content


class GuidedFlow(BaseModel):
    """The in-flight appointment draft.

    ``appointment_id`` and ``pending_action`` are set together when the draft
    reschedules or cancels an existing appointment, and are both ``None`` for
    a new booking.
    """

    model_config = ConfigDict(populate_by_name=True)

    reason: str | None = None
    date: str | None = None
    time: str | None = None
    location: str | None = None
    appointment_id: str | None = Field(default=None, alias="appointmentId")
    pending_action: Literal["reschedule", "cancel"] | None = Field(default=None, alias="pendingAction")

    def is_empty(self) -> bool:
        return not any((self.reason, self.date, self.time, self.location))

    def target(self, appointment_id: str, action: Literal["reschedule", "cancel"]) -> None:
        self.appointment_id = appointment_id
        self.pending_action = action

    def clear_target(self) -> None:
        self.appointment_id = None
        self.pending_action = None

    def reset(self) -> None:
        self.reason = None
        self.date = None
        self.time = None
        self.location = None
        self.clear_target()


class ChatEnvelope(BaseModel):
    """Structured result of the slot-extraction LLM call."""

    model_config = ConfigDict(populate_by_name=True)

    response: str = ""
    appointment_details: dict[str, Any] | None = Field(default=None, alias="appointmentDetails")
    missing_fields: list[str] = Field(default_factory=list, alias="missingFields")
    action: str = "none"
    error: str | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _normalise_action(cls, value: Any) -> str:
        action = str(value or "none").strip().lower()
        return action if action in ACTIONS else "none"

    @field_validator("missing_fields", mode="before")
    @classmethod
    def _coerce_missing(cls, value: Any) -> list[str]:
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value]

    @field_validator("response", mode="before")
    @classmethod
    def _coerce_response(cls, value: Any) -> str:
        return "" if value is None else str(value)

    def to_turn_content(self) -> str:
        """Serialise the envelope the way assistant turns are stored."""
        return json.dumps({
            "response": self.response,
            "appointmentDetails": self.appointment_details,
            "missingFields": self.missing_fields,
        })


class ChatSession(BaseModel):
    """Per-browser session state, held in the server-side session store."""

    username: str | None = None
    chat_history: list[ChatTurn] = Field(default_factory=list)
    guided_flow: GuidedFlow = Field(default_factory=GuidedFlow)
    referral_state: ReferralState = "in_progress"
    sf_chat_id: str | None = None

    @property
    def is_guest(self) -> bool:
        return self.username is None

    def add_turn(self, role: Literal["user", "assistant"], content: str) -> None:
        self.chat_history.append(ChatTurn(role=role, content=content))

    def visible_history(self) -> list[ChatTurn]:
        return [t for t in self.chat_history if t.role != "system"]

    def snapshot_blob(self) -> dict[str, Any]:
        """The ``History__c`` payload persisted to the CRM."""
        return {
            "chatHistory": [t.model_dump() for t in self.chat_history],
            "guidedFlow": self.guided_flow.model_dump(by_alias=True),
        }

    def restore(self, blob: dict[str, Any] | None, status: str | None, record_id: str | None) -> None:
        """Load a CRM snapshot into this session.

        A ``completed`` snapshot keeps its history but never its draft.
        """
        blob = blob or {}
        self.chat_history = [
            ChatTurn.model_validate(t)
            for t in blob.get("chatHistory") or []
            if isinstance(t, dict) and t.get("role") in ("user", "assistant", "system")
        ]
        self.guided_flow = GuidedFlow.model_validate(blob.get("guidedFlow") or {})
        self.referral_state = "completed" if status == "completed" else "in_progress"
        if self.referral_state == "completed":
            self.guided_flow.reset()
        self.sf_chat_id = record_id
