"""Salesforce operations used by the assistant.

Three record types are involved:

* ``Chat_Session__c``: one conversation snapshot per contact while a
  booking is ``in_progress``; marked ``completed`` after a commit.
* ``Appointment__c``: created on a confirmed booking, patched in place on
  reschedule, and soft-deleted with ``Status__c = 'Cancelled'``.
* ``Branch_Visit__c``: read-only visit history and banker notes.

Every Salesforce failure is logged here and re-raised as an
``AssistantError`` of kind ``UPSTREAM`` with a generic message; callers
decide whether the failure aborts their request.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, NamedTuple, TypeVar

from appointment_assistant.errors import AssistantError, ErrorKind
from appointment_assistant.services.crm_client import (
    CRMAPIError,
    CRMClient,
    bind_soql,
    get_crm_client,
    is_record_id,
    validate_record_id,
)
from appointment_assistant.services.metrics import metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")

CHAT_SESSION = "Chat_Session__c"
APPOINTMENT = "Appointment__c"
BRANCH_VISIT = "Branch_Visit__c"

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
APPOINTMENT_CONFIRMED = "Confirmed"
APPOINTMENT_CANCELLED = "Cancelled"

# Only user ids are valid lookup targets for Banker__c
BANKER_ID_PREFIX = "005"

_APPOINTMENT_FIELDS = (
    "Id, Reason_for_Visit__c, Appointment_Date__c, Appointment_Time__c, "
    "Location__c, Banker__c, Status__c, CreatedDate"
)
_WRITABLE_APPOINTMENT_FIELDS = (
    "Reason_for_Visit__c",
    "Appointment_Date__c",
    "Appointment_Time__c",
    "Location__c",
    "Banker__c",
)


class ChatSnapshot(NamedTuple):
    id: str
    blob: dict[str, Any]
    status: str


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_history(raw: Any) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Chat snapshot History__c is not valid JSON; starting empty")
        return {}
    return data if isinstance(data, dict) else {}


def _snapshot(record: dict[str, Any]) -> ChatSnapshot:
    return ChatSnapshot(
        id=record["Id"],
        blob=_parse_history(record.get("History__c")),
        status=record.get("Appointment_Status__c") or STATUS_IN_PROGRESS,
    )


class CRMGateway:
    """Typed Salesforce operations on top of ``CRMClient``.

    The client is resolved lazily so that a deployment without Salesforce
    credentials can still serve guest traffic; the first CRM call then
    raises ``ConfigurationError``.
    """

    def __init__(
        self,
        client: CRMClient | None = None,
        *,
        client_factory: Callable[[], CRMClient] = get_crm_client,
    ):
        self._client = client
        self._client_factory = client_factory

    @property
    def client(self) -> CRMClient:
        if self._client is None:
            self._client = self._client_factory()
        return self._client

    def _call(self, operation: str, fn: Callable[[CRMClient], T]) -> T:
        client = self.client
        try:
            with metrics.track("salesforce", operation):
                return fn(client)
        except CRMAPIError as exc:
            logger.error("Salesforce %s failed: %s", operation, exc)
            raise AssistantError(
                "The appointment system is unavailable. Please try again later.",
                ErrorKind.UPSTREAM,
            ) from exc

    # ── Chat-session snapshots ───────────────────────────────────────

    def query_in_progress_chat_sessions(self, contact_id: str) -> list[str]:
        """Ids of the contact's ``in_progress`` snapshots, newest first."""
        soql = bind_soql(
            "SELECT Id FROM Chat_Session__c WHERE Contact__c = :contact "
            "AND Appointment_Status__c = :status ORDER BY Last_Updated__c DESC",
            contact=validate_record_id(contact_id),
            status=STATUS_IN_PROGRESS,
        )
        records = self._call("query Chat_Session__c", lambda c: c.query(soql))
        return [r["Id"] for r in records if r.get("Id")]

    def load_latest_chat_session(self, contact_id: str) -> ChatSnapshot | None:
        """The most recently updated snapshot, whatever its status."""
        soql = bind_soql(
            "SELECT Id, History__c, Appointment_Status__c FROM Chat_Session__c "
            "WHERE Contact__c = :contact ORDER BY Last_Updated__c DESC LIMIT 1",
            contact=validate_record_id(contact_id),
        )
        records = self._call("query Chat_Session__c", lambda c: c.query(soql))
        return _snapshot(records[0]) if records else None

    def load_chat_session(self, record_id: str) -> ChatSnapshot | None:
        """One snapshot by id, or ``None`` when it no longer exists."""
        soql = bind_soql(
            "SELECT Id, History__c, Appointment_Status__c FROM Chat_Session__c WHERE Id = :record",
            record=validate_record_id(record_id),
        )
        records = self._call("query Chat_Session__c", lambda c: c.query(soql))
        return _snapshot(records[0]) if records else None

    def upsert_chat_session(
        self,
        contact_id: str,
        chat_history_blob: dict[str, Any],
        status: str,
        record_id: str | None = None,
    ) -> str:
        """Write the snapshot and return its id.

        With *record_id* the snapshot is patched directly; otherwise the
        contact's current ``in_progress`` snapshot is updated, or a new one is
        created when there is none.
        """
        data = {
            "Name": f"Chat History for {contact_id}",
            "Contact__c": contact_id,
            "History__c": json.dumps(chat_history_blob),
            "Appointment_Status__c": status,
            "Last_Updated__c": _now_iso(),
        }
        if record_id is None:
            existing = self.query_in_progress_chat_sessions(contact_id)
            record_id = existing[0] if existing else None

        if record_id:
            self._call("update Chat_Session__c", lambda c: c.update(CHAT_SESSION, record_id, data))
            logger.info("Updated chat snapshot %s (%s)", record_id, status)
            return record_id

        new_id = self._call("create Chat_Session__c", lambda c: c.create(CHAT_SESSION, data))
        logger.info("Created chat snapshot %s (%s)", new_id, status)
        return new_id

    def update_chat_session_status(self, record_id: str, status: str) -> None:
        data = {"Appointment_Status__c": status, "Last_Updated__c": _now_iso()}
        self._call("update Chat_Session__c", lambda c: c.update(CHAT_SESSION, record_id, data))

    def reconcile_in_progress_sessions(self, contact_id: str) -> str | None:
        """Keep the newest ``in_progress`` snapshot and complete the rest.

        Returns the id of the surviving snapshot, if any.  Strays keep their
        ``Last_Updated__c`` so they never outrank the survivor by recency.
        """
        ids = self.query_in_progress_chat_sessions(contact_id)
        if not ids:
            return None
        keep, strays = ids[0], ids[1:]
        for stray in strays:
            self._call(
                "update Chat_Session__c",
                lambda c, stray=stray: c.update(CHAT_SESSION, stray, {"Appointment_Status__c": STATUS_COMPLETED}),
            )
        if strays:
            logger.info("Completed %d stray chat snapshot(s) for %s", len(strays), contact_id)
        return keep

    # ── Appointments ─────────────────────────────────────────────────

    @staticmethod
    def _appointment_payload(data: dict[str, Any]) -> dict[str, Any]:
        payload = {
            k: data[k]
            for k in _WRITABLE_APPOINTMENT_FIELDS
            if data.get(k) not in (None, "")
        }
        banker = payload.get("Banker__c")
        if banker is not None and not str(banker).startswith(BANKER_ID_PREFIX):
            payload.pop("Banker__c")
        return payload

    def create_appointment(self, contact_id: str, data: dict[str, Any]) -> str:
        payload = self._appointment_payload(data)
        payload["Contact__c"] = contact_id
        payload["Status__c"] = APPOINTMENT_CONFIRMED
        record_id = self._call("create Appointment__c", lambda c: c.create(APPOINTMENT, payload))
        logger.info("Booked appointment %s", record_id)
        return record_id

    def update_appointment(self, record_id: str, data: dict[str, Any]) -> None:
        validate_record_id(record_id)
        payload = self._appointment_payload(data)
        self._call("update Appointment__c", lambda c: c.update(APPOINTMENT, record_id, payload))
        logger.info("Rescheduled appointment %s", record_id)

    def cancel_appointment(self, record_id: str) -> None:
        """Soft delete: only ``Status__c`` changes."""
        validate_record_id(record_id)
        self._call(
            "update Appointment__c",
            lambda c: c.update(APPOINTMENT, record_id, {"Status__c": APPOINTMENT_CANCELLED}),
        )
        logger.info("Cancelled appointment %s", record_id)

    def query_appointments(self, contact_id: str) -> list[dict[str, Any]]:
        """The contact's appointments, newest first."""
        soql = bind_soql(
            f"SELECT {_APPOINTMENT_FIELDS} FROM Appointment__c "
            "WHERE Contact__c = :contact ORDER BY CreatedDate DESC",
            contact=validate_record_id(contact_id),
        )
        return self._call("query Appointment__c", lambda c: c.query(soql))

    # ── Branch visits ────────────────────────────────────────────────

    def query_visit_history(self, contact_id: str) -> list[dict[str, Any]]:
        soql = bind_soql(
            "SELECT Branch_Name__c, Visit_Reason__c, Visit_Date__c FROM Branch_Visit__c "
            "WHERE Contact__c = :contact ORDER BY CreatedDate DESC",
            contact=validate_record_id(contact_id),
        )
        return self._call("query Branch_Visit__c", lambda c: c.query(soql))

    def query_banker_notes(self, contact_id: str) -> list[str]:
        soql = bind_soql(
            "SELECT Banker_Notes__c FROM Branch_Visit__c "
            "WHERE Contact__c = :contact ORDER BY CreatedDate DESC",
            contact=validate_record_id(contact_id),
        )
        records = self._call("query Branch_Visit__c", lambda c: c.query(soql))
        return [r["Banker_Notes__c"] for r in records if r.get("Banker_Notes__c")]


def find_target_appointment(
    appointments: list[dict[str, Any]],
    requested: str | None = None,
    current: str | None = None,
) -> str | None:
    """Pick the appointment a reschedule or cancel applies to.

    *requested* (the id the model extracted) is honoured only when it is one
    of the contact's *appointments* or the draft's *current* target, so a
    made-up id can never reach another contact's record.  Otherwise the
    draft's target wins, then the newest confirmed appointment.
    """
    owned = {a.get("Id") for a in appointments}
    if is_record_id(requested) and (requested in owned or requested == current):
        return requested
    if requested:
        logger.warning("Ignoring appointment id %r not owned by the contact", requested)
    if is_record_id(current):
        return current
    for appt in appointments:
        if appt.get("Status__c") in (None, APPOINTMENT_CONFIRMED) and is_record_id(appt.get("Id")):
            return appt["Id"]
    return None
