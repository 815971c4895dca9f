"""CLI entry point for the bank appointment assistant.

A terminal chat loop over the same orchestrator the API uses, for local
testing.  For production, run the FastAPI server (``server.py``).

Usage:
    python -m appointment_assistant.main            # guest session, quiet
    python -m appointment_assistant.main --login    # as the configured user
    python -m appointment_assistant.main --debug    # show HTTP and graph logs
"""

from __future__ import annotations

import argparse
import getpass
import logging
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv

from appointment_assistant.errors import AssistantError
from appointment_assistant.models import ChatSession

if TYPE_CHECKING:
    from appointment_assistant.agent import ChatOrchestrator

logger = logging.getLogger(__name__)

BANNER = """
  Bank Appointment Assistant (CLI)
  --------------------------------
  quit   leave the chat
  new    drop the conversation and start over
  state  show the current appointment draft
"""


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # httpx logs every Salesforce and Anthropic request at INFO
    for noisy in ("httpx", "httpcore", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.DEBUG if debug else logging.WARNING)
    logging.getLogger("appointment_assistant").setLevel(logging.DEBUG if debug else logging.INFO)


def _print_turn(result: dict[str, Any], suggestions: list[str]) -> None:
    print(f"\nAssistant: {result['response']}")
    if result.get("missingFields"):
        print(f"  still needed: {', '.join(result['missingFields'])}")
    print(f"  try: {' | '.join(suggestions)}\n")


def _login(orchestrator: ChatOrchestrator, session: ChatSession, username: str) -> bool:
    password = getpass.getpass(f"Password for {username}: ")
    try:
        result = orchestrator.login(session, username, password)
    except AssistantError as exc:
        print(f"Login failed: {exc.message}")
        return False
    print(f"\nAssistant: {result['greeting']}\n")
    return True


def chat_loop(orchestrator: ChatOrchestrator, session: ChatSession, customer_type: str) -> None:
    while True:
        try:
            text = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print()
            return

        command = text.lower()
        if not text:
            continue
        if command in ("quit", "exit", "q"):
            return
        if command == "new":
            session = ChatSession(username=session.username)
            print(">> conversation cleared\n")
            continue
        if command == "state":
            state = orchestrator.chat_state(session)
            print(f">> step={state['guidedStep']} draft={state['guidedFlow']}\n")
            continue

        try:
            result = orchestrator.handle_chat(session, text, customer_type)
            suggestions = orchestrator.suggestions(session, text, customer_type)
        except AssistantError as exc:
            print(f"\nAssistant: {exc.message}\n")
            continue
        except Exception:
            logger.exception("Chat turn failed")
            print("\nAssistant: Something went wrong, please try again.\n")
            continue
        _print_turn(result, suggestions)


def main():
    parser = argparse.ArgumentParser(description="Bank appointment assistant CLI")
    parser.add_argument("--debug", action="store_true", help="Show all log messages")
    parser.add_argument("--login", action="store_true", help="Log in as the configured user")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(args.debug)

    # Imported late so that .env is loaded before configuration is read
    from appointment_assistant.config import STATIC_USERNAME
    from appointment_assistant.server import build_orchestrator

    print(BANNER)
    orchestrator = build_orchestrator()
    session = ChatSession()
    customer_type = "Guest"

    if args.login:
        if not _login(orchestrator, session, STATIC_USERNAME):
            return
        customer_type = "Regular"

    chat_loop(orchestrator, session, customer_type)
    print("Goodbye!")


if __name__ == "__main__":
    main()
