"""
Pytest configuration and shared fixtures.
"""
import sys
from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import Dict, List
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from models.database import Base
from models.schemas import TimeSlotCandidate, TurnEvent
from services.collaborators import classify_matches
from services.session_store import MeetingRequestStore, FlowCheckpointStore
from services.token_broker import InMemoryTokenBroker
from conversation.state_manager import ConversationStateManager


SESSION_KEY = "19:session@thread.v2"
USER_ID = "29:user"
OWNER = "organizer@x.com"
DEFAULT_TOKEN = "tok-default"

DIRECTORY: Dict[str, List[str]] = {
    "carol@x.com": ["carol@x.com"],
    "alice": ["alice@x.com"],
    "bob": [],
    "ann": ["ann.lee@x.com", "ann.kim@x.com"],
    "dave@x.com": ["dave@x.com"],
}


class FixedClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture(scope="function")
def db_engine():
    """
    Create an in-memory SQLite engine shared by every session of one test.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="function")
def meeting_store(session_factory) -> MeetingRequestStore:
    return MeetingRequestStore(session_factory)


@pytest.fixture(scope="function")
def checkpoint_store(session_factory) -> FlowCheckpointStore:
    return FlowCheckpointStore(session_factory)


@pytest.fixture(scope="function")
def slots() -> List[TimeSlotCandidate]:
    """
    Three consecutive one-and-a-half hour candidate slots.
    """
    base = datetime(2024, 12, 2, 9, 0)
    return [
        TimeSlotCandidate(start=base + timedelta(hours=2 * i), end=base + timedelta(hours=2 * i, minutes=90))
        for i in range(3)
    ]


@pytest.fixture(scope="function")
def broker() -> InMemoryTokenBroker:
    """
    Token broker pre-seeded with a token, so no sign-in prompt is needed.
    """
    return InMemoryTokenBroker(default_token=DEFAULT_TOKEN, signin_timeout_seconds=300)


@pytest.fixture(scope="function")
def resolver() -> Mock:
    """
    Fake directory: lookups go through DIRECTORY.
    """
    resolver = Mock()
    resolver.current_user.return_value = OWNER
    resolver.resolve.side_effect = lambda query, token: classify_matches(query, DIRECTORY.get(query, []))
    return resolver


@pytest.fixture(scope="function")
def finder(slots) -> Mock:
    finder = Mock()
    finder.find_slots.return_value = slots[:2]
    return finder


@pytest.fixture(scope="function")
def dispatcher() -> Mock:
    return Mock()


@pytest.fixture(scope="function")
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 12, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="function")
def manager(
    meeting_store,
    checkpoint_store,
    broker,
    resolver,
    finder,
    dispatcher,
    clock,
) -> ConversationStateManager:
    """
    Engine wired to the SQLite stores and fake collaborators.
    """
    return ConversationStateManager(
        store=meeting_store,
        checkpoints=checkpoint_store,
        broker=broker,
        resolver=resolver,
        finder=finder,
        dispatcher=dispatcher,
        signin_timeout_seconds=300,
        clock=clock,
    )


@pytest.fixture(scope="function")
def turn():
    """
    Factory for turn events of the default session.

    Example:
        turn(text="hi"), turn(choice_index=1), turn(token="abc")
    """
    def _turn(**payload) -> TurnEvent:
        return TurnEvent(session_key=SESSION_KEY, user_id=USER_ID, **payload)
    return _turn
