"""
Session context and turn outcome models.

This module defines:
- SessionContext: in-memory state of one flow instance, passed to every step
- OutboundMessage: a single reply sent back to the conversation
- TurnOutcome: everything the engine produced for one inbound turn
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict

from models.schemas import (
    FlowCheckpoint,
    InputKind,
    StepInput,
    TimeSlotCandidate,
    TurnEvent,
)


class SessionContext(BaseModel):
    """
    In-memory state of one flow instance.

    The token, candidate list and carried value are never persisted. A
    context rebuilt from a checkpoint after a restart has them unset; steps
    that need them treat that as lost state.

    Attributes:
        session_key: Conversation identity
        flow_id: Identifier of this flow instance
        owner_key: Signed-in user identity, set on the first token acquisition
        token: Bearer token for the current turn
        candidates: Slots presented by the last availability search
        carried: Value passed through a token step that had to suspend
        turn: Inbound turn currently being processed
    """

    session_key: str = Field(..., min_length=1, description="Conversation identity")
    flow_id: str = Field(..., min_length=1, description="Flow instance identifier")
    owner_key: Optional[str] = Field(default=None, description="Requesting user identity")
    token: Optional[str] = Field(default=None, description="Bearer token for this turn")
    candidates: Optional[List[TimeSlotCandidate]] = Field(
        default=None,
        description="Candidate slots, in the order presented"
    )
    carried: Optional[StepInput] = Field(
        default=None,
        description="Value held across a token suspension"
    )
    turn: Optional[TurnEvent] = Field(default=None, description="Current inbound turn")

    @classmethod
    def from_checkpoint(cls, checkpoint: FlowCheckpoint) -> "SessionContext":
        """
        Rebuild a context for a suspended flow whose in-memory state is gone.

        Args:
            checkpoint: Persisted checkpoint of the flow

        Returns:
            Context carrying only the persisted identities
        """
        return cls(
            session_key=checkpoint.session_key,
            flow_id=checkpoint.flow_id,
            owner_key=checkpoint.owner_key,
        )

    def to_checkpoint(
        self,
        step: str,
        expects: InputKind,
        suspended_at: datetime,
        timeout_seconds: Optional[int] = None,
    ) -> FlowCheckpoint:
        """Build the checkpoint recording that this flow waits at step."""
        return FlowCheckpoint(
            session_key=self.session_key,
            flow_id=self.flow_id,
            owner_key=self.owner_key,
            step=step,
            expects=expects,
            suspended_at=suspended_at,
            timeout_seconds=timeout_seconds,
        )

    def log_fields(self) -> dict:
        """Identifiers attached to log lines about this flow."""
        return {
            "session_key": self.session_key,
            "flow_id": self.flow_id,
            "owner_key": self.owner_key,
        }


class TurnStatus(str, Enum):
    """Where the flow stands after a turn."""

    WAITING = "waiting"
    COMPLETED = "completed"
    ABORTED = "aborted"
    SIGNED_OUT = "signed_out"

    def __str__(self) -> str:
        return self.value


class OutboundMessage(BaseModel):
    """
    One reply to the user.

    Attributes:
        text: Message text
        choices: Option labels to render as a 1-based choice set
    """

    text: str
    choices: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    def render(self) -> str:
        """Plain-text rendering with numbered choices."""
        if not self.choices:
            return self.text
        lines = [self.text]
        lines.extend(f"  {position}. {label}" for position, label in enumerate(self.choices, start=1))
        return "\n".join(lines)


class TurnOutcome(BaseModel):
    """
    Result of processing one inbound turn.

    Attributes:
        messages: Replies to send, in order
        status: Flow status after the turn
        waiting_step: Step the flow is suspended in (None unless waiting)
    """

    messages: List[OutboundMessage] = Field(default_factory=list)
    status: TurnStatus
    waiting_step: Optional[str] = None

    @property
    def texts(self) -> List[str]:
        """Message texts only."""
        return [message.text for message in self.messages]
