"""Anthropic-backed language operations.

Each operation is a single round trip with its own system prompt, model,
temperature and token budget:

  ============================  ==========  ===========  ==========
  operation                     model       temperature  max tokens
  ============================  ==========  ===========  ==========
  ``generate_greeting``         fast        0.7          100
  ``verify_confirmation``       fast        0.0          50
  ``chat``                      primary     0.5          500
  ``suggest_replies``           fast        0.7          150
  ``recommend_products``        fast        0.5          300
  ============================  ==========  ===========  ==========

Structured operations ask for schema-constrained output first
(``with_structured_output(..., include_raw=True)``); when the model's tool
call does not parse, the raw text goes through the lenient JSON extractor.

Only ``chat`` propagates a failed call.  Every other operation logs the
failure and returns its documented default.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from appointment_assistant.catalog import PRODUCT_CATALOG
from appointment_assistant.config import ANTHROPIC_API_KEY, FAST_MODEL_NAME, MODEL_NAME
from appointment_assistant.errors import AssistantError, ErrorKind
from appointment_assistant.lenient_json import loads_lenient
from appointment_assistant.models import ChatEnvelope, ChatTurn, GuidedFlow
from appointment_assistant.prompts import (
    CONFIRMATION_PROMPT,
    get_chat_prompt,
    get_greeting_prompt,
    get_recommendation_prompt,
    get_suggestions_prompt,
)
from appointment_assistant.services.metrics import metrics

logger = logging.getLogger(__name__)

LLMFactory = Callable[[str, float, int], BaseChatModel]

CONFIRMATION_WINDOW = 3
SUGGESTION_WINDOW = 6
MAX_SUGGESTIONS = 3

# ── Output schemas ───────────────────────────────────────────────────

_APPOINTMENT_FIELD_SCHEMA = {"type": ["string", "null"]}

CHAT_SCHEMA: dict[str, Any] = {
    "title": "appointment_reply",
    "description": "Reply to the customer and the appointment fields extracted so far.",
    "type": "object",
    "properties": {
        "response": {"type": "string", "description": "What to say to the customer."},
        "appointmentDetails": {
            "type": "object",
            "properties": {
                "Id": _APPOINTMENT_FIELD_SCHEMA,
                "Reason_for_Visit__c": _APPOINTMENT_FIELD_SCHEMA,
                "Appointment_Date__c": _APPOINTMENT_FIELD_SCHEMA,
                "Appointment_Time__c": _APPOINTMENT_FIELD_SCHEMA,
                "Location__c": _APPOINTMENT_FIELD_SCHEMA,
                "Banker__c": _APPOINTMENT_FIELD_SCHEMA,
            },
        },
        "missingFields": {"type": "array", "items": {"type": "string"}},
        "action": {
            "type": "string",
            "enum": ["book", "reschedule", "cancel", "branch_info", "none"],
        },
    },
    "required": ["response", "action"],
}

CONFIRMATION_SCHEMA: dict[str, Any] = {
    "title": "confirmation_check",
    "description": "Whether the user explicitly confirmed the appointment action.",
    "type": "object",
    "properties": {"isConfirmed": {"type": "boolean"}},
    "required": ["isConfirmed"],
}

SUGGESTIONS_SCHEMA: dict[str, Any] = {
    "title": "quick_replies",
    "description": "Up to three short suggested replies for the user.",
    "type": "object",
    "properties": {"suggestions": {"type": "array", "items": {"type": "string"}}},
    "required": ["suggestions"],
}

RECOMMENDATION_SCHEMA: dict[str, Any] = {
    "title": "product_recommendations",
    "description": "Product categories to recommend and a suggested next appointment.",
    "type": "object",
    "properties": {
        "recommendations": {
            "type": "array",
            "items": {"type": "string", "enum": list(PRODUCT_CATALOG)},
        },
        "reason": {"type": "string"},
        "nextAppointmentReason": {"type": "string"},
    },
    "required": ["recommendations"],
}


# ── LLM builders ────────────────────────────────────────────────────


def build_llm(model: str, temperature: float, max_tokens: int) -> ChatAnthropic:
    return ChatAnthropic(
        model=model,
        api_key=ANTHROPIC_API_KEY,
        temperature=temperature,
        max_tokens=max_tokens,
    )


def _message_text(message: Any) -> str:
    """Plain text of a model reply whose content may be a list of blocks."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return "" if content is None else str(content)


def _to_messages(history: list[ChatTurn]) -> list[BaseMessage]:
    """Map stored turns to chat messages, starting at the first user turn."""
    messages: list[BaseMessage] = []
    for turn in history:
        text = turn.text.strip()
        if turn.role == "system" or not text:
            continue
        if turn.role == "assistant":
            if not messages:
                continue
            messages.append(AIMessage(content=text))
        else:
            messages.append(HumanMessage(content=text))
    return messages


def _transcript(history: list[ChatTurn]) -> str:
    return "\n".join(
        f"{'User' if t.role == 'user' else 'Assistant'}: {t.text}"
        for t in history
        if t.role != "system"
    )


class LLMGateway:
    """The five language operations the orchestrator depends on."""

    def __init__(self, llm_factory: LLMFactory = build_llm):
        self._greeting_llm = llm_factory(FAST_MODEL_NAME, 0.7, 100)
        self._confirm_llm = llm_factory(FAST_MODEL_NAME, 0.0, 50)
        self._chat_llm = llm_factory(MODEL_NAME, 0.5, 500)
        self._suggest_llm = llm_factory(FAST_MODEL_NAME, 0.7, 150)
        self._recommend_llm = llm_factory(FAST_MODEL_NAME, 0.5, 300)

    def _structured(
        self,
        llm: BaseChatModel,
        schema: dict[str, Any],
        messages: list[BaseMessage],
        operation: str,
    ) -> dict[str, Any]:
        """Invoke with schema-constrained output, degrading to lenient parsing."""
        with metrics.track("anthropic", operation):
            result = llm.with_structured_output(schema, include_raw=True).invoke(messages)

        parsed = result.get("parsed")
        if isinstance(parsed, dict):
            return parsed
        logger.warning(
            "%s: structured parse failed (%s), falling back to text extraction",
            operation,
            result.get("parsing_error"),
        )
        return loads_lenient(_message_text(result.get("raw")))

    # ── Greeting ─────────────────────────────────────────────────────

    def generate_greeting(
        self,
        customer_type: str,
        chat_history: list[ChatTurn],
        username: str | None,
        incomplete_appointment: GuidedFlow | None = None,
    ) -> str:
        fallback = f"Welcome, {username}! How can I assist you today?" if username else (
            "Welcome! How can I assist you today?"
        )
        relevant = [
            t.content
            for t in chat_history
            if t.role == "user" and ("reason" in t.content.lower() or "appointment" in t.content.lower())
        ]
        appointment_block = ""
        if incomplete_appointment is not None and not incomplete_appointment.is_empty():
            flow = incomplete_appointment
            appointment_block = (
                "\nUnfinished Appointment: "
                f"Reason: {flow.reason or 'Not specified'}, "
                f"Date: {flow.date or 'Not specified'}, "
                f"Time: {flow.time or 'Not specified'}, "
                f"Location: {flow.location or 'Not specified'}\n"
            )
        prompt = get_greeting_prompt(
            customer_type=customer_type,
            username=username or "there",
            context="\n".join(relevant),
            appointment_block=appointment_block,
        )
        try:
            with metrics.track("anthropic", "greeting"):
                reply = self._greeting_llm.invoke([
                    SystemMessage(content=prompt),
                    HumanMessage(content="Generate the greeting."),
                ])
        except Exception as exc:
            logger.warning("Greeting generation failed, using default: %s", exc)
            return fallback
        text = _message_text(reply).strip()
        return text or fallback

    # ── Confirmation ─────────────────────────────────────────────────

    def verify_confirmation(self, text: str, recent_history: list[ChatTurn]) -> bool:
        """Did the user explicitly confirm?  Any failure counts as *no*."""
        window = [t for t in recent_history if t.role != "system"][-CONFIRMATION_WINDOW:]
        conversation = _transcript([*window, ChatTurn(role="user", content=text)])
        messages = [
            SystemMessage(content=CONFIRMATION_PROMPT),
            HumanMessage(content=f"Conversation:\n{conversation}"),
        ]
        try:
            data = self._structured(self._confirm_llm, CONFIRMATION_SCHEMA, messages, "verify_confirmation")
        except Exception as exc:
            logger.warning("Confirmation check failed, treating as unconfirmed: %s", exc)
            return False
        return data.get("isConfirmed") is True

    # ── Slot extraction ──────────────────────────────────────────────

    def chat(
        self,
        query: str,
        customer_type: str,
        context: str,
        history: list[ChatTurn],
        username: str | None = None,
        locations: tuple[str, ...] = (),
    ) -> ChatEnvelope:
        prompt = get_chat_prompt(
            customer_type=customer_type,
            context=context,
            locations=locations,
            username=username,
        )
        messages: list[BaseMessage] = [
            SystemMessage(content=prompt),
            *_to_messages(history),
            HumanMessage(content=query),
        ]
        try:
            data = self._structured(self._chat_llm, CHAT_SCHEMA, messages, "chat")
        except Exception as exc:
            logger.exception("Chat completion failed")
            raise AssistantError(
                "The assistant is temporarily unavailable. Please try again.",
                ErrorKind.UPSTREAM,
            ) from exc

        if not data:
            return ChatEnvelope(error="Could not parse the model reply")
        return ChatEnvelope.model_validate(data)

    # ── Quick replies ────────────────────────────────────────────────

    def suggest_replies(
        self,
        chat_history: list[ChatTurn],
        user_query: str,
        user_type: str,
        sf_data: Any = None,
        missing_fields: list[str] | None = None,
        guided_flow: GuidedFlow | None = None,
    ) -> list[str]:
        """Up to three suggestions, or ``[]`` when the call fails."""
        sf_context = f"\nCustomer Type: {user_type}"
        if sf_data:
            sf_context += f"\nSalesforce Data: {json.dumps(sf_data, default=str)}"
        flow_context = ""
        if guided_flow is not None and not guided_flow.is_empty():
            flow_context += f"\nCurrent Booking: {guided_flow.model_dump_json(by_alias=True)}"
        if missing_fields:
            flow_context += f"\nStill Missing: {', '.join(missing_fields)}"

        window = [t for t in chat_history if t.role != "system"][-SUGGESTION_WINDOW:]
        messages = [
            SystemMessage(content=get_suggestions_prompt(sf_context=sf_context, flow_context=flow_context)),
            HumanMessage(
                content=f"Conversation so far:\n{_transcript(window) or '(none)'}\n\nLatest query: {user_query}"
            ),
        ]
        try:
            data = self._structured(self._suggest_llm, SUGGESTIONS_SCHEMA, messages, "suggest_replies")
        except Exception as exc:
            logger.warning("Suggestion generation failed: %s", exc)
            return []

        suggestions = data.get("suggestions")
        if not isinstance(suggestions, list):
            return []
        return [s.strip() for s in suggestions if isinstance(s, str) and s.strip()][:MAX_SUGGESTIONS]

    # ── Product recommendations ──────────────────────────────────────

    def recommend_products(
        self,
        visit_reasons: list[str],
        banker_notes: list[str],
        current_reason: str | None = None,
    ) -> dict[str, Any]:
        empty: dict[str, Any] = {"recommendations": [], "reason": "", "nextAppointmentReason": ""}
        prompt = get_recommendation_prompt(
            visit_reasons=visit_reasons,
            banker_notes=banker_notes,
            current_reason=current_reason,
            categories=list(PRODUCT_CATALOG),
        )
        messages = [SystemMessage(content=prompt), HumanMessage(content="Recommend products.")]
        try:
            data = self._structured(self._recommend_llm, RECOMMENDATION_SCHEMA, messages, "recommend_products")
        except Exception as exc:
            logger.warning("Product recommendation failed: %s", exc)
            return empty

        categories = data.get("recommendations")
        if not isinstance(categories, list):
            return empty
        return {
            "recommendations": [c for c in categories if c in PRODUCT_CATALOG],
            "reason": str(data.get("reason") or ""),
            "nextAppointmentReason": str(data.get("nextAppointmentReason") or ""),
        }
