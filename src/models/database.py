"""
SQLAlchemy database models and session management for the meeting scheduler.
"""
from datetime import datetime, timezone
from typing import Optional
from loguru import logger

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    Text,
    Float,
    DateTime,
    Index,
    text,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, DisconnectionError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

# Create declarative base
Base = declarative_base()

# Database engine and session factory (initialized by init_db)
engine: Engine | None = None
SessionLocal: sessionmaker | None = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MeetingRequestRecord(Base):
    """
    Persisted meeting request, one row per (owner, session).
    """
    __tablename__ = "meeting_requests"

    owner_key = Column(String(320), primary_key=True)
    session_key = Column(String(255), primary_key=True)
    # Comma-joined resolved identities
    attendees = Column(Text, nullable=True)
    duration_hours = Column(Float, nullable=True)
    selected_slot_index = Column(Integer, nullable=True)
    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return (
            f"<MeetingRequestRecord(owner_key='{self.owner_key}', session_key='{self.session_key}', "
            f"attendees='{self.attendees}', duration_hours={self.duration_hours}, "
            f"selected_slot_index={self.selected_slot_index})>"
        )


class FlowCheckpointRecord(Base):
    """
    The step a session is waiting in, and the input kind it expects.

    At most one row per session; deleted when the flow instance terminates.
    """
    __tablename__ = "flow_checkpoints"

    session_key = Column(String(255), primary_key=True)
    flow_id = Column(String(36), nullable=False)
    owner_key = Column(String(320), nullable=True)
    step = Column(String(64), nullable=False)
    expects = Column(String(16), nullable=False)
    suspended_at = Column(DateTime(timezone=True), nullable=False)
    timeout_seconds = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_flow_checkpoint_owner", "owner_key"),
    )

    def __repr__(self) -> str:
        return (
            f"<FlowCheckpointRecord(session_key='{self.session_key}', flow_id='{self.flow_id}', "
            f"step='{self.step}', expects='{self.expects}')>"
        )


def init_db(database_url: str) -> Engine:
    """
    Initialize database engine and session factory.

    Args:
        database_url: SQLAlchemy connection string

    Returns:
        SQLAlchemy Engine instance
    """
    global engine, SessionLocal

    connect_args = {}
    if database_url.startswith("sqlite"):
        # Sessions for different conversations may be driven from different threads
        connect_args["check_same_thread"] = False

    engine = create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
    )

    SessionLocal = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )

    return engine


def create_tables() -> None:
    """
    Create all tables in the database.

    Raises:
        RuntimeError: If database engine is not initialized
    """
    if engine is None:
        raise RuntimeError("Database engine not initialized. Call init_db() first.")

    Base.metadata.create_all(bind=engine)


# ============================================================================
# Startup Connection Retry
# ============================================================================

def _log_retry(retry_state) -> None:
    logger.warning(
        f"Database connection failed (attempt {retry_state.attempt_number}): "
        f"{retry_state.outcome.exception()}. Retrying..."
    )


@retry(
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type((OperationalError, DisconnectionError)),
    before_sleep=_log_retry,
    reraise=True,
)
def _connect_and_ping(database_url: str) -> Engine:
    new_engine = init_db(database_url)
    with new_engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return new_engine


def init_db_with_retry(database_url: str, create: bool = True) -> Engine:
    """
    Initialize the database at host startup, retrying the first connection.

    Per-turn store operations are never retried; only startup is.

    Args:
        database_url: SQLAlchemy connection string
        create: Whether to create missing tables

    Returns:
        SQLAlchemy Engine instance

    Raises:
        OperationalError: If the database is still unreachable after retries
    """
    new_engine = _connect_and_ping(database_url)
    if create:
        create_tables()
    logger.info("Database initialized successfully")
    return new_engine


def get_session_factory() -> Optional[sessionmaker]:
    """Return the session factory created by init_db (None before init)."""
    return SessionLocal
