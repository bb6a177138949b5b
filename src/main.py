"""
Console entry point for the meeting scheduler.

Reads lines from stdin, sends each one to the conversation engine as a turn
of a single session, and prints the replies.

Usage:
    python src/main.py [--session SESSION] [--user USER]

Commands:
    /token <value>   Deliver a bearer token (completes a sign-in prompt)
    /signed-in       Signal that sign-in completed elsewhere
    /quit            Exit
    logout           Sign out and cancel the current flow
"""
import argparse
import sys
from typing import Optional, TextIO

from dotenv import load_dotenv
from loguru import logger

from config import Settings, get_settings
from conversation import ConversationStateManager, TurnOutcome
from error_handling.logging_config import init_logging
from models.database import init_db_with_retry, get_session_factory
from models.schemas import TurnEvent
from services import (
    FlowCheckpointStore,
    GraphCalendarService,
    InMemoryTokenBroker,
    MeetingRequestStore,
)


QUIT_COMMAND = "/quit"
TOKEN_COMMAND = "/token"
SIGNED_IN_COMMAND = "/signed-in"


def build_state_manager(settings: Settings) -> ConversationStateManager:
    """
    Wire the database, token broker and Graph adapters into an engine.

    Args:
        settings: Application settings

    Returns:
        Ready-to-use ConversationStateManager
    """
    init_db_with_retry(settings.database_url)
    session_factory = get_session_factory()

    graph = GraphCalendarService(
        base_url=settings.graph_base_url,
        timezone_name=settings.meeting_timezone,
        timeout=settings.graph_timeout_seconds,
    )
    broker = InMemoryTokenBroker(
        default_token=settings.graph_access_token,
        signin_timeout_seconds=settings.signin_timeout_seconds,
    )

    return ConversationStateManager(
        store=MeetingRequestStore(session_factory),
        checkpoints=FlowCheckpointStore(session_factory),
        broker=broker,
        resolver=graph,
        finder=graph,
        dispatcher=graph,
        signin_timeout_seconds=settings.signin_timeout_seconds,
    )


def parse_line(line: str, session_key: str, user_id: str) -> Optional[TurnEvent]:
    """
    Convert one console line into a turn event.

    Returns:
        TurnEvent, or None for a blank line
    """
    stripped = line.strip()
    if not stripped:
        return None

    if stripped == SIGNED_IN_COMMAND:
        return TurnEvent(session_key=session_key, user_id=user_id, signin_completed=True)

    if stripped.startswith(TOKEN_COMMAND + " "):
        token = stripped[len(TOKEN_COMMAND):].strip()
        return TurnEvent(session_key=session_key, user_id=user_id, token=token)

    return TurnEvent(session_key=session_key, user_id=user_id, text=stripped)


def print_outcome(outcome: TurnOutcome, out: TextIO) -> None:
    for message in outcome.messages:
        print(f"bot> {message.render()}", file=out)


def run_console(
    manager: ConversationStateManager,
    session_key: str,
    user_id: str,
    source: TextIO = sys.stdin,
    out: TextIO = sys.stdout,
) -> None:
    """
    Drive one session from a line-oriented source until /quit or EOF.

    Args:
        manager: Conversation engine
        session_key: Conversation identity for every turn
        user_id: Channel user identity for every turn
        source: Input lines
        out: Where replies are printed
    """
    print("Type anything to start scheduling a meeting. /quit exits.", file=out)

    for line in source:
        if line.strip() == QUIT_COMMAND:
            break

        event = parse_line(line, session_key, user_id)
        if event is None:
            continue

        outcome = manager.handle_turn(event)
        print_outcome(outcome, out)


def main():
    """
    Main entry point for the console host.
    """
    parser = argparse.ArgumentParser(description="Schedule a meeting from the console")
    parser.add_argument("--session", default="console", help="Conversation identity")
    parser.add_argument("--user", default="console-user", help="Channel user identity")
    args = parser.parse_args()

    load_dotenv()
    settings = get_settings()
    init_logging(settings.environment, settings.log_level)

    logger.info("=" * 60)
    logger.info("Meeting Scheduler console")
    logger.info("=" * 60)

    try:
        manager = build_state_manager(settings)
        run_console(manager, args.session, args.user)
        return 0

    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
        return 130

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 3

    finally:
        logger.info("Application shutting down...")


if __name__ == "__main__":
    sys.exit(main())
