"""
Session state persistence for the meeting scheduler.

This module provides:
- MeetingRequestStore: merge-upsert and lookup of MeetingRequest records
- FlowCheckpointStore: save/load/clear of the step a session is waiting in

Any SQLAlchemy error rolls back the unit of work and surfaces as
StorageFailure. Nothing here retries; the conversation engine decides what
a failure means for the flow.
"""
from contextlib import contextmanager
from datetime import timezone
from typing import Generator, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from models.database import MeetingRequestRecord, FlowCheckpointRecord
from models.schemas import MeetingRequest, FlowCheckpoint, InputKind
from error_handling.exceptions import (
    StorageFailure,
    NullRecordError,
    MeetingRequestNotFoundError,
)


@contextmanager
def _unit_of_work(session_factory: sessionmaker, operation: str) -> Generator[Session, None, None]:
    """Open a session, commit on success, and wrap storage errors."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Storage operation '{operation}' failed: {e}")
        raise StorageFailure(
            f"Storage operation '{operation}' failed",
            operation=operation,
            original_error=e,
        ) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def _to_meeting_request(record: MeetingRequestRecord) -> MeetingRequest:
    attendees = record.attendees.split(",") if record.attendees else None
    return MeetingRequest(
        owner_key=record.owner_key,
        session_key=record.session_key,
        attendees=attendees,
        duration_hours=record.duration_hours,
        selected_slot_index=record.selected_slot_index,
        title=record.title,
        description=record.description,
    )


class MeetingRequestStore:
    """
    Durable per-(owner, session) meeting request with merge-upsert semantics.

    Last writer wins; there is no optimistic concurrency check. The engine
    guarantees a single in-flight step per session.
    """

    def __init__(self, session_factory: sessionmaker):
        """
        Initialize the store.

        Args:
            session_factory: SQLAlchemy sessionmaker bound to the database
        """
        self.session_factory = session_factory

    def upsert_merge(self, record: Optional[MeetingRequest]) -> MeetingRequest:
        """
        Merge the fields set on record into the stored entity.

        Fields not set on record are left untouched. The entity is created
        if it does not exist. Keys are never rewritten.

        Args:
            record: Partial meeting request; keys are required

        Returns:
            The merged entity

        Raises:
            NullRecordError: If record is None
            StorageFailure: If the database operation fails
        """
        if record is None:
            raise NullRecordError()

        updates = record.updated_fields()
        if "attendees" in updates:
            updates["attendees"] = record.attendees_joined()

        with _unit_of_work(self.session_factory, "upsert_merge") as session:
            entity = session.get(
                MeetingRequestRecord,
                {"owner_key": record.owner_key, "session_key": record.session_key},
            )
            if entity is None:
                entity = MeetingRequestRecord(
                    owner_key=record.owner_key,
                    session_key=record.session_key,
                )
                session.add(entity)
                logger.info(
                    f"Creating meeting request | owner={record.owner_key} | session={record.session_key}"
                )

            for field_name, value in updates.items():
                setattr(entity, field_name, value)

            session.flush()
            merged = _to_meeting_request(entity)

        logger.debug(f"Merged fields {sorted(updates)} into meeting request {record.session_key}")
        return merged

    def get(self, owner_key: str, session_key: str) -> MeetingRequest:
        """
        Load the meeting request for the given keys.

        Raises:
            MeetingRequestNotFoundError: If no record exists
            StorageFailure: If the database operation fails
        """
        with _unit_of_work(self.session_factory, "get") as session:
            entity = session.get(
                MeetingRequestRecord,
                {"owner_key": owner_key, "session_key": session_key},
            )
            if entity is None:
                raise MeetingRequestNotFoundError(owner_key, session_key)
            return _to_meeting_request(entity)


class FlowCheckpointStore:
    """Persistence for the single waiting step of each session."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def save(self, checkpoint: FlowCheckpoint) -> None:
        """Create or replace the checkpoint for checkpoint.session_key."""
        with _unit_of_work(self.session_factory, "save_checkpoint") as session:
            entity = session.get(FlowCheckpointRecord, checkpoint.session_key)
            if entity is None:
                entity = FlowCheckpointRecord(session_key=checkpoint.session_key)
                session.add(entity)
            entity.flow_id = checkpoint.flow_id
            entity.owner_key = checkpoint.owner_key
            entity.step = checkpoint.step
            entity.expects = checkpoint.expects.value
            entity.suspended_at = checkpoint.suspended_at
            entity.timeout_seconds = checkpoint.timeout_seconds

    def load(self, session_key: str) -> Optional[FlowCheckpoint]:
        """Return the checkpoint for session_key, or None when no flow is active."""
        with _unit_of_work(self.session_factory, "load_checkpoint") as session:
            entity = session.get(FlowCheckpointRecord, session_key)
            if entity is None:
                return None
            suspended_at = entity.suspended_at
            # SQLite drops tzinfo on the way back
            if suspended_at.tzinfo is None:
                suspended_at = suspended_at.replace(tzinfo=timezone.utc)
            return FlowCheckpoint(
                session_key=entity.session_key,
                flow_id=entity.flow_id,
                owner_key=entity.owner_key,
                step=entity.step,
                expects=InputKind(entity.expects),
                suspended_at=suspended_at,
                timeout_seconds=entity.timeout_seconds,
            )

    def clear(self, session_key: str) -> None:
        """Delete the checkpoint for session_key if present."""
        with _unit_of_work(self.session_factory, "clear_checkpoint") as session:
            entity = session.get(FlowCheckpointRecord, session_key)
            if entity is not None:
                session.delete(entity)
