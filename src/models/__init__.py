"""
Models package - SQLAlchemy ORM models and Pydantic schemas.
"""
from .database import (
    Base,
    MeetingRequestRecord,
    FlowCheckpointRecord,
    init_db,
    init_db_with_retry,
    create_tables,
    get_session_factory,
)

from .schemas import (
    MAX_DURATION_HOURS,
    validate_duration_hours,
    MeetingRequest,
    TimeSlotCandidate,
    InputKind,
    TextInput,
    NumberInput,
    ChoiceInput,
    TokenInput,
    StepInput,
    FlowCheckpoint,
    TurnEvent,
)

__all__ = [
    # Database models
    "Base",
    "MeetingRequestRecord",
    "FlowCheckpointRecord",
    # Database utilities
    "init_db",
    "init_db_with_retry",
    "create_tables",
    "get_session_factory",
    # Pydantic schemas
    "MAX_DURATION_HOURS",
    "validate_duration_hours",
    "MeetingRequest",
    "TimeSlotCandidate",
    "InputKind",
    "TextInput",
    "NumberInput",
    "ChoiceInput",
    "TokenInput",
    "StepInput",
    "FlowCheckpoint",
    "TurnEvent",
]
