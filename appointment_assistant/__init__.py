"""Bank Appointment Assistant: a chat backend that books branch appointments.

Architecture Overview
=====================

Each chat turn runs through a **LangGraph** state machine (``agent.py``)
that fills an appointment draft across turns, reason → date/time →
location → confirmation, and only then writes to Salesforce.

1. **Quick replies** echoed back by the UI fill the current draft slot
   directly (``flow.apply_quick_reply``).
2. **Slot extraction** asks Claude for a structured envelope
   ``{response, appointmentDetails, missingFields, action}``.
3. **Reconciliation** merges the envelope with the draft and re-checks
   the four required fields itself; the model's own ``missingFields``
   list is never trusted.
4. **Confirmation** is a separate yes/no LLM call; only an explicit
   confirmation books, reschedules or cancels.

Key Design Decisions
--------------------
- **LLM**: Claude via ``langchain-anthropic``, schema-constrained output
  first with a lenient JSON extractor as the fallback.
- **CRM**: Salesforce REST through ``httpx``; SOQL values are always bound
  and escaped (``services/crm_client.bind_soql``).
- **Sessions**: the signed cookie holds only a session id; history and
  draft live in an in-memory store, with a Salesforce ``Chat_Session__c``
  snapshot as the durable copy.
- **Errors**: every client-facing failure is an ``AssistantError`` with an
  explicit ``ErrorKind``.
- **Dual Interface**: FastAPI server (production) + CLI chat loop.

Package Structure
-----------------
- ``agent.py``: LangGraph turn graph and the ``ChatOrchestrator``
- ``flow.py``: guided-flow state machine and required-field checks
- ``datetimes.py`` / ``lenient_json.py``: pure parsing helpers
- ``models.py`` / ``catalog.py`` / ``errors.py``: domain types and data
- ``prompts.py``: system prompts
- ``services/``: Salesforce, Anthropic, session store and metrics
- ``api/``: FastAPI routes and Pydantic schemas
- ``server.py`` / ``main.py``: HTTP server and CLI entry points
"""
