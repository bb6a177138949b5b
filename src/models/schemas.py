"""
Pydantic models for data validation and serialization.
"""
import math
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union, Literal

from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict


# Duration must lie in the open interval (0, MAX_DURATION_HOURS)
MAX_DURATION_HOURS = 8.0


def validate_duration_hours(value: float) -> float:
    """
    Validate a meeting duration in hours.

    Args:
        value: Candidate duration

    Returns:
        The duration as a float

    Raises:
        ValueError: If the value is not finite or not within (0, 8)
    """
    value = float(value)
    if not math.isfinite(value):
        raise ValueError("Duration must be a finite number")
    if not 0 < value < MAX_DURATION_HOURS:
        raise ValueError(f"Duration must be greater than 0 and less than {MAX_DURATION_HOURS:g} hours")
    return value


class MeetingRequest(BaseModel):
    """
    Session-scoped meeting request, keyed by (owner_key, session_key).

    Only the fields explicitly set on an instance are written by a
    merge-upsert; unset fields are left untouched in storage.
    """
    owner_key: str = Field(..., min_length=1, frozen=True, description="Requesting user identity")
    session_key: str = Field(..., min_length=1, frozen=True, description="Conversation identity")
    attendees: Optional[List[str]] = Field(None, description="Resolved attendee identities, in order")
    duration_hours: Optional[float] = Field(None, description="Meeting duration in hours, (0, 8)")
    selected_slot_index: Optional[int] = Field(None, ge=0, description="Index into the candidate list")
    title: Optional[str] = Field(None, description="Meeting title")
    description: Optional[str] = Field(None, description="Meeting description")

    @field_validator("duration_hours")
    @classmethod
    def validate_duration(cls, v: Optional[float]) -> Optional[float]:
        """Validate that the duration is finite and within (0, 8)."""
        if v is None:
            return None
        return validate_duration_hours(v)

    @field_validator("attendees")
    @classmethod
    def validate_attendees(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        """Reject blank identities; they cannot be comma-joined back."""
        if v is None:
            return None
        for identity in v:
            if not identity.strip() or "," in identity:
                raise ValueError(f"Invalid attendee identity: {identity!r}")
        return v

    def updated_fields(self) -> dict:
        """Return the non-key fields explicitly set on this instance."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name not in ("owner_key", "session_key")
        }

    def attendees_joined(self) -> Optional[str]:
        """Comma-joined attendee identities, as persisted."""
        if self.attendees is None:
            return None
        return ",".join(self.attendees)

    model_config = ConfigDict(
        validate_assignment=True,
        json_schema_extra={
            "example": {
                "owner_key": "organizer@contoso.com",
                "session_key": "19:meeting_abc@thread.v2",
                "attendees": ["carol@contoso.com"],
                "duration_hours": 1.5,
                "selected_slot_index": 0,
                "title": "Sync",
                "description": "Weekly sync"
            }
        }
    )


class TimeSlotCandidate(BaseModel):
    """
    A proposed meeting window returned by the availability finder.

    Candidates are selected by position in the in-memory list that produced
    them; they carry no durable identifier.
    """
    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_order(self) -> "TimeSlotCandidate":
        if self.end <= self.start:
            raise ValueError("Slot end must be after its start")
        return self

    def label(self) -> str:
        """Display form used in the choice set."""
        return f"{self.start.strftime('%Y-%m-%d %H:%M')} – {self.end.strftime('%Y-%m-%d %H:%M')}"

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "start": "2024-12-02T10:00:00",
                "end": "2024-12-02T11:30:00"
            }
        }
    )


# ============================================================================
# Inter-step values
# ============================================================================

class InputKind(str, Enum):
    """Kind of value a suspended step expects from the next turn."""

    TEXT = "text"
    NUMBER = "number"
    CHOICE = "choice"
    TOKEN = "token"

    def __str__(self) -> str:
        return self.value


class TextInput(BaseModel):
    kind: Literal[InputKind.TEXT] = InputKind.TEXT
    text: str

    model_config = ConfigDict(frozen=True)


class NumberInput(BaseModel):
    kind: Literal[InputKind.NUMBER] = InputKind.NUMBER
    value: float

    model_config = ConfigDict(frozen=True)


class ChoiceInput(BaseModel):
    kind: Literal[InputKind.CHOICE] = InputKind.CHOICE
    index: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)


class TokenInput(BaseModel):
    kind: Literal[InputKind.TOKEN] = InputKind.TOKEN
    token: str = Field(..., min_length=1)

    model_config = ConfigDict(frozen=True)


# Tagged union handed from one step to the next within a turn
StepInput = Union[TextInput, NumberInput, ChoiceInput, TokenInput]


class FlowCheckpoint(BaseModel):
    """
    Persisted pointer to the step a session is suspended in.
    """
    session_key: str = Field(..., min_length=1)
    flow_id: str = Field(..., min_length=1)
    owner_key: Optional[str] = None
    step: str = Field(..., min_length=1)
    expects: InputKind
    suspended_at: datetime
    timeout_seconds: Optional[int] = Field(
        default=None,
        gt=0,
        description="Bound on the wait, as named by the broker when the step suspended for sign-in"
    )

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Inbound turn events
# ============================================================================

class TurnEvent(BaseModel):
    """
    One inbound conversation turn.

    Carries exactly one payload: free text, a number, a chosen option index,
    a bearer token, or the sign-in completion signal.
    """
    session_key: str = Field(..., min_length=1, description="Conversation identity")
    user_id: str = Field(..., min_length=1, description="Channel user identity")
    text: Optional[str] = None
    number: Optional[float] = None
    choice_index: Optional[int] = Field(None, ge=0)
    token: Optional[str] = None
    signin_completed: bool = False

    @model_validator(mode="after")
    def validate_single_payload(self) -> "TurnEvent":
        payloads = [
            self.text is not None,
            self.number is not None,
            self.choice_index is not None,
            self.token is not None,
            self.signin_completed,
        ]
        if sum(payloads) != 1:
            raise ValueError("A turn event must carry exactly one payload")
        return self

    @property
    def payload_kind(self) -> str:
        if self.text is not None:
            return "text"
        if self.number is not None:
            return "number"
        if self.choice_index is not None:
            return "choice"
        if self.token is not None:
            return "token"
        return "signin_completed"

    model_config = ConfigDict(frozen=True)
