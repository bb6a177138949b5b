"""
Step definitions for the meeting scheduling flow.

This module defines every step in the scheduling pipeline and the declarative
table the interpreter walks: which policy runs at each step, which input kind
the step waits for when it suspends, and which step follows it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from models.schemas import InputKind


class FlowStep(str, Enum):
    """
    Enum representing all steps in a scheduling flow.

    The flow runs linearly through these steps:
    sign_in -> collect_attendees -> token_for_directory -> resolve_attendees
    -> collect_duration -> token_for_availability -> find_candidate_slots
    -> collect_title -> collect_description -> token_for_invite -> dispatch_invite

    Any abort ends the flow; there are no backwards transitions.
    """

    SIGN_IN = "sign_in"
    """Acquire the first token and record the owner of the request."""

    COLLECT_ATTENDEES = "collect_attendees"
    """Ask who should attend."""

    TOKEN_FOR_DIRECTORY = "token_for_directory"
    """Re-acquire the token before searching the directory."""

    RESOLVE_ATTENDEES = "resolve_attendees"
    """Resolve every attendee query to exactly one identity."""

    COLLECT_DURATION = "collect_duration"
    """Ask for the meeting duration in hours."""

    TOKEN_FOR_AVAILABILITY = "token_for_availability"
    """Re-acquire the token before asking for meeting times."""

    FIND_CANDIDATE_SLOTS = "find_candidate_slots"
    """Fetch candidate slots and present them as a choice set."""

    COLLECT_TITLE = "collect_title"
    """Store the chosen slot and ask for the meeting title."""

    COLLECT_DESCRIPTION = "collect_description"
    """Ask for the meeting description."""

    TOKEN_FOR_INVITE = "token_for_invite"
    """Re-acquire the token before creating the event."""

    DISPATCH_INVITE = "dispatch_invite"
    """Create the calendar event and finish the flow."""

    def __str__(self) -> str:
        """Return the string value of the step."""
        return self.value


class StepPolicy(str, Enum):
    """Behaviour a step runs. Several steps may share one policy."""

    ACQUIRE_TOKEN = "acquire_token"
    COLLECT_ATTENDEES = "collect_attendees"
    RESOLVE_ATTENDEES = "resolve_attendees"
    COLLECT_DURATION = "collect_duration"
    FIND_CANDIDATE_SLOTS = "find_candidate_slots"
    COLLECT_TITLE = "collect_title"
    COLLECT_DESCRIPTION = "collect_description"
    DISPATCH_INVITE = "dispatch_invite"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StepSpec:
    """
    One row of the flow table.

    Attributes:
        step: Step name
        policy: Behaviour run at this step
        expects: Input kind the step waits for when it suspends (None if it never suspends)
        next_step: Step that follows (None for the last step)
    """
    step: FlowStep
    policy: StepPolicy
    expects: Optional[InputKind]
    next_step: Optional[FlowStep]


FLOW_TABLE = (
    StepSpec(FlowStep.SIGN_IN, StepPolicy.ACQUIRE_TOKEN, InputKind.TOKEN, FlowStep.COLLECT_ATTENDEES),
    StepSpec(FlowStep.COLLECT_ATTENDEES, StepPolicy.COLLECT_ATTENDEES, InputKind.TEXT, FlowStep.TOKEN_FOR_DIRECTORY),
    StepSpec(FlowStep.TOKEN_FOR_DIRECTORY, StepPolicy.ACQUIRE_TOKEN, InputKind.TOKEN, FlowStep.RESOLVE_ATTENDEES),
    StepSpec(FlowStep.RESOLVE_ATTENDEES, StepPolicy.RESOLVE_ATTENDEES, None, FlowStep.COLLECT_DURATION),
    StepSpec(FlowStep.COLLECT_DURATION, StepPolicy.COLLECT_DURATION, InputKind.NUMBER, FlowStep.TOKEN_FOR_AVAILABILITY),
    StepSpec(FlowStep.TOKEN_FOR_AVAILABILITY, StepPolicy.ACQUIRE_TOKEN, InputKind.TOKEN, FlowStep.FIND_CANDIDATE_SLOTS),
    StepSpec(FlowStep.FIND_CANDIDATE_SLOTS, StepPolicy.FIND_CANDIDATE_SLOTS, InputKind.CHOICE, FlowStep.COLLECT_TITLE),
    StepSpec(FlowStep.COLLECT_TITLE, StepPolicy.COLLECT_TITLE, InputKind.TEXT, FlowStep.COLLECT_DESCRIPTION),
    StepSpec(FlowStep.COLLECT_DESCRIPTION, StepPolicy.COLLECT_DESCRIPTION, InputKind.TEXT, FlowStep.TOKEN_FOR_INVITE),
    StepSpec(FlowStep.TOKEN_FOR_INVITE, StepPolicy.ACQUIRE_TOKEN, InputKind.TOKEN, FlowStep.DISPATCH_INVITE),
    StepSpec(FlowStep.DISPATCH_INVITE, StepPolicy.DISPATCH_INVITE, None, None),
)

_SPECS_BY_STEP: Dict[FlowStep, StepSpec] = {spec.step: spec for spec in FLOW_TABLE}


def first_step() -> FlowStep:
    """Return the step every new flow starts at."""
    return FLOW_TABLE[0].step


def get_step_spec(step) -> StepSpec:
    """
    Look up the table row for a step.

    Args:
        step: FlowStep or its string value (as stored in a checkpoint)

    Returns:
        The StepSpec for the step

    Raises:
        ValueError: If the step is not part of the flow
    """
    return _SPECS_BY_STEP[FlowStep(step)]


def next_step(step) -> Optional[FlowStep]:
    """Return the step that follows step, or None at the end of the flow."""
    return get_step_spec(step).next_step
