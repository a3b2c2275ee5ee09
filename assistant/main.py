"""CLI entry point for the appointment assistant.

A terminal chat loop that runs the same conversation service as the AI
service (database + agent), for local testing and development.  For
production, run the gateway and AI service apps.

Usage:
    uv run python -m assistant.main --email you@example.com
    uv run python -m assistant.main --email you@example.com --init-db --debug
"""

from __future__ import annotations

import argparse
import getpass
import logging

from dotenv import load_dotenv

from assistant.agent import create_booking_agent
from assistant.db.session import init_db
from assistant.errors import AssistantError
from assistant.services.chat import ChatService
from assistant.services.conversation import ConversationService
from assistant.services.users import UserService

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("assistant").setLevel(logging.DEBUG if debug else logging.INFO)


def _resolve_user(users: UserService, email: str):
    """Load the user by email, offering to register them if unknown."""
    user = users.get_by_email(email)
    if user is not None:
        return user
    print(f"No account for {email}; creating one.")
    full_name = input("Full name: ").strip()
    password = getpass.getpass("Password (min 8 chars): ")
    return users.register(email, full_name, password)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Appointment assistant CLI")
    parser.add_argument("--email", required=True, help="Email of the user to chat as")
    parser.add_argument("--init-db", action="store_true", help="Create tables before starting")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    if args.init_db:
        init_db()

    users = UserService()
    chat = ChatService()
    try:
        user = _resolve_user(users, args.email)
    except AssistantError as e:
        print(f"Could not sign in: {e}")
        return

    print("\n" + "=" * 60)
    print("  Appointment Assistant - CLI Chat")
    print("=" * 60)
    print(f"  Signed in as {user.full_name} <{user.email}>")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    conversation = ConversationService(create_booking_agent(), chat=chat, users=users)
    session = chat.create_session(user.id, meta={"channel": "cli"})
    logger.info("Started new session: %s", session.id)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break

        if user_input.lower() == "new":
            chat.close_session(user.id, session.id)
            session = chat.create_session(user.id, meta={"channel": "cli"})
            print(f"\n>> New session started: {str(session.id)[:8]}...\n")
            continue

        try:
            result = conversation.process(session.id, user.id, user_input)
            print(f"\nAva: {result.reply}\n")
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\nAva: I'm sorry, something went wrong: {e}")
            print("     Please try again or type 'new' to start a fresh session.\n")


if __name__ == "__main__":
    main()
