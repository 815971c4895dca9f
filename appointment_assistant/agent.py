"""LangGraph chat orchestrator for the bank appointment assistant.

Architecture:
  One chat turn is a LangGraph ``StateGraph`` run over the caller's
  ``ChatSession``:

    1. **prepare**          matches quick-reply phrases against the draft and
                            spots the hard-coded branch-lookup request
    2. **branch_shortcut**  answers the branch lookup without any LLM call
    3. **gather_context**   loads prior appointments for regular customers
    4. **extract**          runs the slot-extraction LLM call
    5. **reconcile**        merges extracted fields with the draft and
                            re-checks the required fields itself, then saves
                            the snapshot (pending reschedule/cancel included)
    6. **confirm**          asks the LLM whether the user explicitly confirmed
    7. **commit**           books, reschedules or cancels in Salesforce

  Routing:
    prepare → (branch?)  → branch_shortcut → END
    prepare → (else)     → gather_context → extract → reconcile
    reconcile → (missing fields / no target) → END
    reconcile → (complete)                   → confirm
    confirm   → (not confirmed) → END
    confirm   → (confirmed)     → commit → END

  No checkpointer is used: the session store owns conversation state and
  Salesforce holds the durable snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from appointment_assistant.catalog import (
    DEFAULT_RECOMMENDATIONS,
    TenantContext,
    recommend_from_categories,
)
from appointment_assistant.datetimes import combine, most_frequent
from appointment_assistant.errors import AssistantError, ErrorKind
from appointment_assistant.flow import (
    CONFIRMATION_REQUEST,
    FIELD_TO_SLOT,
    REQUIRED_FIELDS,
    FlowStep,
    apply_quick_reply,
    current_step,
    follow_up_prompt,
    is_generic_response,
    merge_details,
    missing_fields,
    pad_suggestions,
    suggestion_candidates,
)
from appointment_assistant.lenient_json import loads_lenient
from appointment_assistant.models import ChatEnvelope, ChatSession, ChatTurn
from appointment_assistant.services.crm_gateway import (
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    CRMGateway,
    find_target_appointment,
)
from appointment_assistant.services.llm_gateway import LLMGateway

logger = logging.getLogger(__name__)

REGULAR_CUSTOMER_TYPES = ("regular", "customer")
NO_CANCEL_TARGET = "I couldn't find an appointment to cancel. Could you tell me which one you mean?"
INVALID_DATETIME_MESSAGE = "Unable to create appointment due to invalid date or time format"
_RESCHEDULE_INHERITED = ("Reason_for_Visit__c", "Location__c")


def is_regular_customer(customer_type: str) -> bool:
    return customer_type.strip().lower() in REGULAR_CUSTOMER_TYPES


def build_appointment_context(appointments: list[dict[str, Any]]) -> str:
    """Describe prior appointments and inferred preferences for the prompt."""
    if not appointments:
        return ""
    blocks = []
    for i, appt in enumerate(appointments, start=1):
        blocks.append(
            f"Appointment {i}:\n"
            f"Id: {appt.get('Id') or 'Not specified'}\n"
            f"Reason: {appt.get('Reason_for_Visit__c') or 'Not specified'}\n"
            f"Date: {appt.get('Appointment_Date__c') or 'Not specified'}\n"
            f"Time: {appt.get('Appointment_Time__c') or 'Not specified'}\n"
            f"Location: {appt.get('Location__c') or 'Not specified'}\n"
            f"Status: {appt.get('Status__c') or 'Confirmed'}\n"
            f"Banker ID: {appt.get('Banker__c') or 'Not specified'}"
        )
    context = "Previous Appointments:\n" + "\n\n".join(blocks)

    banker = most_frequent([a.get("Banker__c") for a in appointments])
    if banker:
        context += f"\nPreferred Banker ID: {banker}"
    location = most_frequent([a.get("Location__c") for a in appointments])
    if location:
        context += f"\nPreferred Location: {location}"
    return context


# ── State schema ─────────────────────────────────────────────────────


class TurnState(TypedDict, total=False):
    """Everything one chat turn reads and writes.

    ``session`` is mutated in place by the nodes; the remaining keys are the
    intermediate results the conditional edges route on.
    """

    session: ChatSession
    query: str
    customer_type: str
    shortcut: bool
    quick_reply_slot: str | None
    appointments: list[dict[str, Any]]
    context: str
    envelope: ChatEnvelope
    action: str
    details: dict[str, Any]
    missing: list[str]
    confirmed: bool
    final_step: str | None
    result: dict[str, Any] | None


# ── Graph assembly ───────────────────────────────────────────────────


def create_chat_graph(
    llm: LLMGateway,
    crm: CRMGateway,
    tenant: TenantContext,
    *,
    persist: Callable[[ChatSession], None],
    close_snapshot: Callable[[ChatSession], None],
):
    """Build and compile the per-turn graph.

    *persist* writes the session snapshot (best effort); *close_snapshot*
    marks it completed after a commit.  Both are supplied by the
    orchestrator so that the graph never decides persistence policy.
    """

    def prepare(state: TurnState) -> dict:
        session, query = state["session"], state["query"]
        if tenant.branch_lookup_phrase.lower() in query.lower():
            logger.debug("Branch lookup shortcut")
            return {"shortcut": True}
        slot = apply_quick_reply(session.guided_flow, query, tenant)
        if slot:
            logger.debug("Quick reply filled %s", slot)
        return {"shortcut": False, "quick_reply_slot": slot}

    def branch_shortcut(state: TurnState) -> dict:
        session = state["session"]
        envelope = ChatEnvelope(response=tenant.branch_lookup_response, action="branch_info")
        session.add_turn("user", state["query"])
        session.add_turn("assistant", envelope.to_turn_content())
        persist(session)
        return {
            "envelope": envelope,
            "action": "branch_info",
            "result": {
                "response": envelope.response,
                "appointmentDetails": None,
                "missingFields": [],
                "action": "branch_info",
            },
        }

    def gather_context(state: TurnState) -> dict:
        appointments: list[dict[str, Any]] = []
        if is_regular_customer(state["customer_type"]):
            try:
                appointments = crm.query_appointments(tenant.contact_id)
            except AssistantError as exc:
                logger.warning("Prior appointments unavailable: %s", exc)
        return {"appointments": appointments, "context": build_appointment_context(appointments)}

    def extract(state: TurnState) -> dict:
        session, query = state["session"], state["query"]
        prior = list(session.chat_history)
        session.add_turn("user", query)
        envelope = llm.chat(
            query,
            state["customer_type"],
            state.get("context", ""),
            prior,
            username=session.username,
            locations=tenant.locations,
        )
        session.add_turn("assistant", envelope.to_turn_content())
        logger.debug("Extraction action=%s details=%s", envelope.action, envelope.appointment_details)
        return {"envelope": envelope}

    def reconcile(state: TurnState) -> dict:
        session, envelope = state["session"], state["envelope"]
        flow = session.guided_flow
        details = dict(envelope.appointment_details or {})
        action = envelope.action

        if action == "book" and flow.appointment_id:
            logger.info("New booking requested; dropping %s of %s", flow.pending_action, flow.appointment_id)
            flow.clear_target()
        elif action not in ("book", "reschedule", "cancel") and flow.pending_action:
            # Follow-up turns ("yes", a new time) continue the pending change
            action = flow.pending_action

        if action in ("reschedule", "cancel"):
            appointments = state.get("appointments") or []
            target = find_target_appointment(appointments, details.get("Id"), flow.appointment_id)
            if target:
                flow.target(target, action)
                details["Id"] = target
                record = next((a for a in appointments if a.get("Id") == target), None)
                if record is not None:
                    # Cancelling keeps every stored value; rescheduling keeps reason and branch
                    inherited = REQUIRED_FIELDS if action == "cancel" else _RESCHEDULE_INHERITED
                    for field in inherited:
                        if not details.get(field) and not getattr(flow, FIELD_TO_SLOT[field]) and record.get(field):
                            details[field] = record[field]
            elif action == "cancel":
                persist(session)
                return {
                    "action": action,
                    "details": details,
                    "missing": [],
                    "result": {
                        "response": NO_CANCEL_TARGET,
                        "appointmentDetails": details or None,
                        "missingFields": [],
                        "action": action,
                    },
                }
            else:
                logger.info("No appointment to reschedule; treating request as a new booking")
                action = "book"

        merged = merge_details(flow, details)
        if flow.appointment_id:
            merged["Id"] = flow.appointment_id
        missing = missing_fields(merged)
        # Saved once the draft reflects this turn
        persist(session)
        if not missing:
            return {"action": action, "details": merged, "missing": [], "result": None}

        response = envelope.response
        if is_generic_response(response):
            response = follow_up_prompt(missing, tenant.locations)
        return {
            "action": action,
            "details": merged,
            "missing": missing,
            "result": {
                "response": response,
                "appointmentDetails": merged,
                "missingFields": missing,
                "action": action,
            },
        }

    def confirm(state: TurnState) -> dict:
        session = state["session"]
        # The current user and assistant turns are the last two entries
        confirmed = llm.verify_confirmation(state["query"], session.chat_history[:-2])
        if confirmed:
            return {"confirmed": True}

        response = state["envelope"].response.strip()
        if CONFIRMATION_REQUEST not in response:
            response = f"{response} {CONFIRMATION_REQUEST}".strip()
        return {
            "confirmed": False,
            "result": {
                "response": response,
                "appointmentDetails": state["details"],
                "missingFields": [],
                "action": state["action"],
            },
        }

    def commit(state: TurnState) -> dict:
        session = state["session"]
        details = dict(state["details"])
        action = state["action"]
        target = session.guided_flow.appointment_id

        if action == "cancel" and target:
            crm.cancel_appointment(target)
            final_step = FlowStep.CANCELLED
        else:
            instant = combine(details.get("Appointment_Date__c"), details.get("Appointment_Time__c"))
            if instant is None:
                raise AssistantError(INVALID_DATETIME_MESSAGE, ErrorKind.INVALID_DATETIME)
            details["Appointment_Time__c"] = instant
            if action == "reschedule" and target:
                crm.update_appointment(target, details)
            else:
                action = "book"
                details.pop("Id", None)
                details["Id"] = crm.create_appointment(tenant.contact_id, details)
            final_step = FlowStep.COMPLETED

        session.guided_flow.reset()
        close_snapshot(session)
        logger.info("Committed %s for appointment %s", action, details.get("Id"))
        return {
            "action": action,
            "final_step": final_step.value,
            "result": {
                "response": state["envelope"].response,
                "appointmentDetails": details,
                "missingFields": [],
                "action": action,
            },
        }

    # ── Conditional edges ────────────────────────────────────────────

    def route_after_prepare(state: TurnState) -> str:
        return "branch_shortcut" if state.get("shortcut") else "gather_context"

    def route_after_reconcile(state: TurnState) -> str:
        return END if state.get("result") else "confirm"

    def route_after_confirm(state: TurnState) -> str:
        return "commit" if state.get("confirmed") else END

    graph = StateGraph(TurnState)
    graph.add_node("prepare", prepare)
    graph.add_node("branch_shortcut", branch_shortcut)
    graph.add_node("gather_context", gather_context)
    graph.add_node("extract", extract)
    graph.add_node("reconcile", reconcile)
    graph.add_node("confirm", confirm)
    graph.add_node("commit", commit)

    graph.set_entry_point("prepare")
    graph.add_conditional_edges(
        "prepare",
        route_after_prepare,
        {"branch_shortcut": "branch_shortcut", "gather_context": "gather_context"},
    )
    graph.add_edge("branch_shortcut", END)
    graph.add_edge("gather_context", "extract")
    graph.add_edge("extract", "reconcile")
    graph.add_conditional_edges("reconcile", route_after_reconcile, {"confirm": "confirm", END: END})
    graph.add_conditional_edges("confirm", route_after_confirm, {"commit": "commit", END: END})
    graph.add_edge("commit", END)

    return graph.compile()


# ── Orchestrator ─────────────────────────────────────────────────────


class ChatOrchestrator:
    """Session-level operations behind the HTTP API.

    Methods take the caller's ``ChatSession`` and mutate it; the route layer
    owns loading and saving it in the session store.
    """

    def __init__(
        self,
        llm: LLMGateway,
        crm: CRMGateway,
        tenant: TenantContext,
        *,
        static_password: str,
    ):
        self._llm = llm
        self._crm = crm
        self._tenant = tenant
        self._static_password = static_password
        self._graph = create_chat_graph(
            llm,
            crm,
            tenant,
            persist=self._persist,
            close_snapshot=self._close_snapshot,
        )

    # ── Snapshot persistence ─────────────────────────────────────────

    def _persist(self, session: ChatSession) -> None:
        """Best-effort write of the session snapshot for logged-in users."""
        if session.is_guest:
            return
        try:
            session.sf_chat_id = self._crm.upsert_chat_session(
                self._tenant.contact_id,
                session.snapshot_blob(),
                session.referral_state,
                record_id=session.sf_chat_id,
            )
        except AssistantError as exc:
            logger.warning("Chat snapshot not saved: %s", exc)

    def _close_snapshot(self, session: ChatSession) -> None:
        """Mark the snapshot completed and detach it from the session.

        The next persisted turn starts a fresh ``in_progress`` snapshot.
        """
        session.referral_state = STATUS_COMPLETED
        self._persist(session)
        session.sf_chat_id = None
        session.referral_state = STATUS_IN_PROGRESS

    def _greeting_turn(self, session: ChatSession, customer_type: str) -> str:
        greeting = self._llm.generate_greeting(customer_type, [], session.username)
        session.chat_history = []
        session.add_turn("assistant", ChatEnvelope(response=greeting).to_turn_content())
        return greeting

    # ── Authentication ───────────────────────────────────────────────

    def authenticate(self, username: str | None, password: str | None) -> None:
        """Raise unless the credentials match the configured user."""
        if not username or not password:
            raise AssistantError("Missing username or password", ErrorKind.VALIDATION)
        if username != self._tenant.static_username or password != self._static_password:
            logger.info("Rejected login for %r", username)
            raise AssistantError("Invalid credentials", ErrorKind.UNAUTHORIZED)

    def login(self, session: ChatSession, username: str | None, password: str | None) -> dict[str, Any]:
        self.authenticate(username, password)
        session.username = username
        session.referral_state = STATUS_IN_PROGRESS
        session.sf_chat_id = None

        snapshot = None
        try:
            keep = self._crm.reconcile_in_progress_sessions(self._tenant.contact_id)
            if keep:
                snapshot = self._crm.load_chat_session(keep)
        except AssistantError as exc:
            logger.warning("Could not restore chat snapshot at login: %s", exc)

        if snapshot is not None:
            session.restore(snapshot.blob, snapshot.status, snapshot.id)
            incomplete = None if session.guided_flow.is_empty() else session.guided_flow
            greeting = self._llm.generate_greeting("Regular", session.chat_history, username, incomplete)
            logger.info("Resumed chat snapshot %s", snapshot.id)
        else:
            session.guided_flow.reset()
            greeting = self._greeting_turn(session, "Regular")
            self._persist(session)

        return {
            "message": "Login successful",
            "username": username,
            "greeting": greeting,
            "chatHistory": [t.model_dump() for t in session.visible_history()],
            "guidedFlow": session.guided_flow.model_dump(by_alias=True),
        }

    def greet(self, session: ChatSession, customer_type: str) -> str:
        incomplete = None if session.guided_flow.is_empty() else session.guided_flow
        return self._llm.generate_greeting(customer_type, session.chat_history, session.username, incomplete)

    # ── Chat ─────────────────────────────────────────────────────────

    def _start_conversation(self, session: ChatSession, customer_type: str) -> None:
        """Resume the user's in-progress snapshot or open with a greeting."""
        if not session.is_guest:
            try:
                snapshot = self._crm.load_latest_chat_session(self._tenant.contact_id)
            except AssistantError as exc:
                logger.warning("Could not load chat snapshot: %s", exc)
                snapshot = None
            if snapshot is not None and snapshot.status == STATUS_IN_PROGRESS:
                session.restore(snapshot.blob, snapshot.status, snapshot.id)
                if session.chat_history:
                    return

        self._greeting_turn(session, customer_type)
        self._persist(session)

    def handle_chat(self, session: ChatSession, query: str | None, customer_type: str | None) -> dict[str, Any]:
        if not query or not query.strip() or not customer_type:
            raise AssistantError("Missing query or customerType", ErrorKind.VALIDATION)

        if not session.chat_history:
            self._start_conversation(session, customer_type)

        state = self._graph.invoke({
            "session": session,
            "query": query.strip(),
            "customer_type": customer_type,
        })

        result = dict(state["result"])
        appointments = state.get("appointments") or []
        if appointments:
            result["previousAppointments"] = appointments
        result["guidedFlow"] = session.guided_flow.model_dump(by_alias=True)
        result["guidedStep"] = state.get("final_step") or current_step(session.guided_flow).value
        return result

    def chat_state(self, session: ChatSession) -> dict[str, Any]:
        details = None
        for turn in reversed(session.chat_history):
            if turn.role == "assistant":
                details = loads_lenient(turn.content).get("appointmentDetails")
                break
        return {
            "messages": [t.model_dump() for t in session.visible_history()],
            "appointmentDetails": details,
            "guidedFlow": session.guided_flow.model_dump(by_alias=True),
            "guidedStep": current_step(session.guided_flow).value,
        }

    def verify(self, session: ChatSession, text: str | None, history: list[ChatTurn] | None = None) -> bool:
        return self._llm.verify_confirmation(
            text or "No specific input provided by the user",
            history if history is not None else session.chat_history,
        )

    def suggestions(
        self,
        session: ChatSession,
        query: str,
        customer_type: str,
        sf_data: Any = None,
        missing: list[str] | None = None,
    ) -> list[str]:
        """Three quick replies: LLM suggestions topped up from local candidates."""
        suggested = self._llm.suggest_replies(
            session.chat_history,
            query,
            customer_type,
            sf_data=sf_data,
            missing_fields=missing,
            guided_flow=session.guided_flow,
        )
        return pad_suggestions(suggested, suggestion_candidates(session.guided_flow, self._tenant))

    # ── CRM-backed operations ────────────────────────────────────────

    def appointments(self) -> list[dict[str, Any]]:
        return self._crm.query_appointments(self._tenant.contact_id)

    def book_appointment(self, session: ChatSession, data: dict[str, Any]) -> str:
        """Direct booking from the appointment form; closes the conversation."""
        payload = dict(data)
        if payload.get("Appointment_Date__c") and payload.get("Appointment_Time__c"):
            instant = combine(payload["Appointment_Date__c"], payload["Appointment_Time__c"])
            if instant is None:
                raise AssistantError(INVALID_DATETIME_MESSAGE, ErrorKind.INVALID_DATETIME)
            payload["Appointment_Time__c"] = instant
        record_id = self._crm.create_appointment(self._tenant.contact_id, payload)

        if session.sf_chat_id:
            try:
                self._crm.update_chat_session_status(session.sf_chat_id, STATUS_COMPLETED)
            except AssistantError as exc:
                logger.warning("Chat snapshot %s not closed: %s", session.sf_chat_id, exc)
        session.chat_history = []
        session.guided_flow.reset()
        session.sf_chat_id = None
        session.referral_state = STATUS_IN_PROGRESS
        return record_id

    def reschedule(
        self,
        appointment_id: str,
        date: str,
        time: str,
        location: str | None = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        instant = combine(date, time)
        if instant is None:
            raise AssistantError(INVALID_DATETIME_MESSAGE, ErrorKind.INVALID_DATETIME)
        data: dict[str, Any] = {"Appointment_Date__c": date, "Appointment_Time__c": instant}
        if location:
            data["Location__c"] = location
        if reason:
            data["Reason_for_Visit__c"] = reason
        self._crm.update_appointment(appointment_id, data)
        return {"Id": appointment_id, **data}

    def banker_notes(self) -> list[str]:
        return self._crm.query_banker_notes(self._tenant.contact_id)

    def visit_history(self) -> list[dict[str, Any]]:
        return self._crm.query_visit_history(self._tenant.contact_id)

    def recommendations(
        self,
        visit_reasons: list[str],
        banker_notes: list[str] | None = None,
        current_reason: str | None = None,
    ) -> dict[str, Any]:
        notes = list(banker_notes or [])
        if not notes:
            try:
                notes = self._crm.query_banker_notes(self._tenant.contact_id)
            except AssistantError as exc:
                logger.warning("Banker notes unavailable: %s", exc)

        # Keep only the intent before any "reason: detail" suffix
        reasons = [r.split(":", 1)[0].strip() for r in visit_reasons]
        reasons = [r for r in reasons if r]

        raw = self._llm.recommend_products(reasons, notes, current_reason)
        products = recommend_from_categories(raw["recommendations"]) or list(DEFAULT_RECOMMENDATIONS)
        return {
            "recommendations": [p.to_dict() for p in products],
            "reason": raw["reason"],
            "nextAppointmentReason": raw["nextAppointmentReason"],
        }
