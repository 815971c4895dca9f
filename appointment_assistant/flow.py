"""Guided-flow slot filling: the one authoritative appointment state machine.

A draft moves ``reason → time → location → confirmation`` as its slots are
filled, either by a quick-reply phrase the client echoes back verbatim or by
the LLM extraction filling the matching Salesforce field.  After a commit the
draft is reset and the turn reports ``completed`` (or ``cancelled``).

The LLM's own ``missingFields`` claim is never trusted: ``missing_fields``
re-checks the four required fields on every turn.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Any

from appointment_assistant.catalog import DEFAULT_SUGGESTIONS, TenantContext
from appointment_assistant.datetimes import parse_display_string
from appointment_assistant.models import GuidedFlow

logger = logging.getLogger(__name__)

# Fixed order: the follow-up question asks in this order too
REQUIRED_FIELDS: tuple[str, ...] = (
    "Reason_for_Visit__c",
    "Appointment_Date__c",
    "Appointment_Time__c",
    "Location__c",
)

FIELD_TO_SLOT: dict[str, str] = {
    "Reason_for_Visit__c": "reason",
    "Appointment_Date__c": "date",
    "Appointment_Time__c": "time",
    "Location__c": "location",
}

FIELD_PROMPTS: dict[str, str] = {
    "Reason_for_Visit__c": "What is the reason for your visit?",
    "Appointment_Date__c": "What date would you like to come in?",
    "Appointment_Time__c": "What time works best for you?",
    "Location__c": "Which branch would you prefer: {locations}?",
}

CONFIRMATION_REQUEST = "Please confirm these details to book your appointment."

_GENERIC_RESPONSES = re.compile(
    r"^(\.\.\.|…|ok\.?|sorry[,.!]?.*|i'?m sorry[,.!]?.*|"
    r"how can i (help|assist) you( today)?\??|i didn'?t (quite )?understand.*)$",
    re.IGNORECASE,
)


class FlowStep(str, Enum):
    REASON = "reason"
    TIME = "time"
    LOCATION = "location"
    CONFIRMATION = "confirmation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def _is_blank(value: Any) -> bool:
    return value is None or not str(value).strip()


def current_step(flow: GuidedFlow) -> FlowStep:
    """Derive the step from whichever slot is the first one still empty."""
    if _is_blank(flow.reason):
        return FlowStep.REASON
    if _is_blank(flow.date) or _is_blank(flow.time):
        return FlowStep.TIME
    if _is_blank(flow.location):
        return FlowStep.LOCATION
    return FlowStep.CONFIRMATION


def missing_fields(details: dict[str, Any] | None) -> list[str]:
    """Required fields that are absent or blank, in fixed order."""
    details = details or {}
    return [f for f in REQUIRED_FIELDS if _is_blank(details.get(f))]


def merge_details(flow: GuidedFlow, details: dict[str, Any] | None) -> dict[str, Any]:
    """Reconcile extracted appointment fields with the session draft.

    Non-blank extracted values overwrite the draft; draft values fill the
    fields the model left blank.  Returns the merged details and mutates
    *flow* in place.
    """
    merged = dict(details or {})

    # A full instant in the time field carries the date as well
    time_value = merged.get("Appointment_Time__c")
    if _is_blank(merged.get("Appointment_Date__c")) and isinstance(time_value, str) and "T" in time_value:
        merged["Appointment_Date__c"] = time_value[:10]

    for field, slot in FIELD_TO_SLOT.items():
        value = merged.get(field)
        if not _is_blank(value):
            setattr(flow, slot, str(value).strip())
        elif getattr(flow, slot):
            merged[field] = getattr(flow, slot)
    return merged


def apply_quick_reply(flow: GuidedFlow, text: str, tenant: TenantContext) -> str | None:
    """Fill the current step's slot when *text* is one of its canned replies.

    Returns the name of the slot that was filled, or ``None``.
    """
    cleaned = text.strip()
    step = current_step(flow)

    if step is FlowStep.REASON:
        for reason in tenant.reasons:
            if cleaned.lower() == reason.lower():
                flow.reason = reason
                return "reason"

    elif step is FlowStep.TIME:
        parts = parse_display_string(cleaned)
        if parts.date and parts.time:
            flow.date, flow.time = parts.date, parts.time
            return "time"

    elif step is FlowStep.LOCATION:
        candidate = re.sub(r"^confirm:?\s*", "", cleaned, flags=re.IGNORECASE)
        for location in tenant.locations:
            if candidate.lower() == location.lower():
                flow.location = location
                return "location"

    return None


def is_generic_response(text: str | None) -> bool:
    """True when the model's reply is empty or a stock filler sentence."""
    if _is_blank(text):
        return True
    return bool(_GENERIC_RESPONSES.match(text.strip()))


def follow_up_prompt(missing: list[str], locations: tuple[str, ...] = ()) -> str:
    """Concatenate the canned question for each missing field."""
    location_text = ", ".join(locations[:-1]) + f", or {locations[-1]}" if len(locations) > 1 else "".join(locations)
    sentences = []
    for field in missing:
        template = FIELD_PROMPTS.get(field)
        if template:
            sentences.append(template.format(locations=location_text or "any branch"))
    return " ".join(sentences)


def suggestion_candidates(flow: GuidedFlow, tenant: TenantContext) -> list[str]:
    """Locally computed quick replies for the draft's current step."""
    if flow.is_empty():
        return list(DEFAULT_SUGGESTIONS)

    step = current_step(flow)
    if step is FlowStep.REASON:
        return list(tenant.reasons[:3])
    if step is FlowStep.TIME:
        return ["Tomorrow at 10:00 AM", "Next Monday at 2:00 PM", "Show me other times"]
    if step is FlowStep.LOCATION:
        return list(tenant.locations[:3])
    return ["Yes, confirm my appointment", "Change the time", "Change the location"]


def pad_suggestions(suggestions: list[str], candidates: list[str], limit: int = 3) -> list[str]:
    """Trim to *limit* unique entries, topping up from *candidates*."""
    result: list[str] = []
    for item in [*suggestions, *candidates, "I need help"]:
        if isinstance(item, str) and item.strip() and item not in result:
            result.append(item.strip())
        if len(result) == limit:
            break
    return result
