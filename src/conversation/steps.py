"""
Step policies of the scheduling flow.

Each policy is a small object with two entry points:
- run(ctx, scratch): called when the interpreter reaches the step, with the
  value produced by the previous step
- resume(ctx, value): called on a later turn when the step had suspended,
  with the recognized input of the kind the step expects

Both return a StepOutcome telling the interpreter what to do next. Errors
from collaborators and storage are raised as SchedulingError subclasses and
turned into aborts by the interpreter.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from loguru import logger

from models.schemas import (
    InputKind,
    MeetingRequest,
    NumberInput,
    StepInput,
    validate_duration_hours,
)
from services.collaborators import (
    Ambiguous,
    AttendeeResolver,
    AvailabilityFinder,
    InviteDispatcher,
    NotFound,
    SignInRequired,
    TokenBroker,
)
from services.session_store import MeetingRequestStore
from error_handling.exceptions import (
    AttendeeAmbiguous,
    AttendeeNotFound,
    FlowStateLostError,
    InputKindMismatchError,
    NoCandidateSlots,
    SchedulingError,
    TokenUnavailable,
    UserInputInvalid,
)
from error_handling.error_messages import (
    INVALID_CHOICE_MESSAGE,
    INVALID_DURATION_MESSAGE,
)

from .context import OutboundMessage, SessionContext
from .states import FlowStep, StepPolicy


SIGN_IN_PROMPT = "Please Sign In"
ATTENDEES_PROMPT = "With whom would you like to set up a meeting?"
DURATION_PROMPT = "What will be duration of the meeting? (in hours)"
SLOTS_PROMPT = (
    "These are the time suggestions. "
    "Click on the time slot for when you want the meeting to be set."
)
TITLE_PROMPT = "Please enter title of the meeting"
DESCRIPTION_PROMPT = "Please enter description of the meeting"
SCHEDULED_MESSAGE = "Meeting has been scheduled. Thank you!"


# ============================================================================
# Step outcomes
# ============================================================================

@dataclass
class Advance:
    """Move to the next step, handing it scratch."""
    scratch: Optional[StepInput] = None


@dataclass
class Suspend:
    """Send message and wait for an input of kind expects, for at most timeout_seconds if set."""
    message: OutboundMessage
    expects: InputKind
    timeout_seconds: Optional[int] = None


@dataclass
class Abort:
    """End the flow instance because of error."""
    error: SchedulingError


@dataclass
class Complete:
    """End the flow instance normally."""
    message: str


StepOutcome = Union[Advance, Suspend, Abort, Complete]


@dataclass
class StepServices:
    """Collaborators shared by every step."""
    store: MeetingRequestStore
    broker: TokenBroker
    resolver: AttendeeResolver
    finder: AvailabilityFinder
    dispatcher: InviteDispatcher


# ============================================================================
# Base policy
# ============================================================================

class Step:
    """
    Base class for step policies.

    Attributes:
        name: Step the policy instance is bound to (for logging and errors)
        prompt: Message re-sent when a resuming turn is unusable
    """

    prompt: str = ""

    def __init__(self, services: StepServices):
        self.services = services
        self.name = "unbound"

    def bind(self, step: FlowStep) -> "Step":
        self.name = str(step)
        return self

    def run(self, ctx: SessionContext, scratch: Optional[StepInput]) -> StepOutcome:
        raise NotImplementedError

    def resume(self, ctx: SessionContext, value: StepInput) -> StepOutcome:
        raise InputKindMismatchError(self.name, "no", value.kind.value)

    def retry_message(self, ctx: SessionContext, error: UserInputInvalid) -> OutboundMessage:
        """Message sent when a resuming turn is rejected and the step waits again."""
        return OutboundMessage(text=error.retry_prompt or self.prompt)

    def _expect(self, value: StepInput, kind: InputKind) -> None:
        if value is None or value.kind != kind:
            received = "none" if value is None else value.kind.value
            raise InputKindMismatchError(self.name, kind.value, received)

    def _request(self, ctx: SessionContext, **fields) -> MeetingRequest:
        """Build a partial MeetingRequest for the flow's keys."""
        if ctx.owner_key is None:
            raise FlowStateLostError(self.name, "owner key")
        return MeetingRequest(owner_key=ctx.owner_key, session_key=ctx.session_key, **fields)


# ============================================================================
# Policies
# ============================================================================

class AcquireTokenStep(Step):
    """
    Obtain a bearer token, suspending for sign-in when none is cached.

    The scratch value handed to this step is passed through unchanged to the
    next one, across a suspension if needed.
    """

    prompt = SIGN_IN_PROMPT

    def run(self, ctx: SessionContext, scratch: Optional[StepInput]) -> StepOutcome:
        result = self.services.broker.obtain_token(ctx.turn)

        if isinstance(result, SignInRequired):
            ctx.carried = scratch
            return Suspend(OutboundMessage(text=result.prompt), InputKind.TOKEN, result.timeout_seconds)

        self._accept(ctx, result.token)
        return Advance(scratch)

    def resume(self, ctx: SessionContext, value: StepInput) -> StepOutcome:
        self._expect(value, InputKind.TOKEN)
        self._accept(ctx, value.token)
        scratch, ctx.carried = ctx.carried, None
        return Advance(scratch)

    def _accept(self, ctx: SessionContext, token: str) -> None:
        ctx.token = token
        if ctx.owner_key is not None:
            return

        ctx.owner_key = self.services.resolver.current_user(token)
        self.services.store.upsert_merge(self._request(ctx))
        logger.info(f"Flow {ctx.flow_id} owned by {ctx.owner_key}")


class CollectAttendeesStep(Step):
    """Ask for the attendees as free text."""

    prompt = ATTENDEES_PROMPT

    def run(self, ctx: SessionContext, scratch: Optional[StepInput]) -> StepOutcome:
        return Suspend(OutboundMessage(text=self.prompt), InputKind.TEXT)

    def resume(self, ctx: SessionContext, value: StepInput) -> StepOutcome:
        self._expect(value, InputKind.TEXT)
        return Advance(value)


def split_attendee_queries(text: str) -> List[str]:
    """
    Split free text into attendee queries.

    Examples:
        >>> split_attendee_queries(" alice , bob@x.com,, ")
        ['alice', 'bob@x.com']
    """
    return [part.strip() for part in text.split(",") if part.strip()]


class ResolveAttendeesStep(Step):
    """
    Resolve every query to exactly one directory identity.

    The first query that matches nobody, or more than one entry, aborts the
    flow. Attendees are stored only when every query resolved.
    """

    def run(self, ctx: SessionContext, scratch: Optional[StepInput]) -> StepOutcome:
        if scratch is None:
            raise FlowStateLostError(self.name, "attendee text")
        self._expect(scratch, InputKind.TEXT)
        if ctx.token is None:
            raise TokenUnavailable(step=self.name)

        queries = split_attendee_queries(scratch.text)
        if not queries:
            return Abort(AttendeeNotFound(scratch.text))

        identities = []
        for query in queries:
            result = self.services.resolver.resolve(query, ctx.token)
            if isinstance(result, NotFound):
                return Abort(AttendeeNotFound(query))
            if isinstance(result, Ambiguous):
                return Abort(AttendeeAmbiguous(query, result.count, result.candidates))
            identities.append(result.identity)

        self.services.store.upsert_merge(self._request(ctx, attendees=identities))
        logger.info(f"Resolved {len(identities)} attendees for flow {ctx.flow_id}")
        return Advance()


class CollectDurationStep(Step):
    """Ask for the duration in hours; re-prompts until a valid value arrives."""

    prompt = DURATION_PROMPT

    def run(self, ctx: SessionContext, scratch: Optional[StepInput]) -> StepOutcome:
        return Suspend(OutboundMessage(text=self.prompt), InputKind.NUMBER)

    def resume(self, ctx: SessionContext, value: StepInput) -> StepOutcome:
        self._expect(value, InputKind.NUMBER)
        try:
            hours = validate_duration_hours(value.value)
        except ValueError as e:
            raise UserInputInvalid(
                str(e),
                field="duration_hours",
                value=value.value,
                retry_prompt=INVALID_DURATION_MESSAGE,
            ) from e

        self.services.store.upsert_merge(self._request(ctx, duration_hours=hours))
        return Advance(NumberInput(value=hours))


class FindCandidateSlotsStep(Step):
    """
    Fetch candidate slots for the stored attendees and duration, then suspend
    for the user's selection.
    """

    prompt = SLOTS_PROMPT

    def run(self, ctx: SessionContext, scratch: Optional[StepInput]) -> StepOutcome:
        if ctx.token is None:
            raise TokenUnavailable(step=self.name)

        request = self.services.store.get(ctx.owner_key, ctx.session_key)
        if not request.attendees or request.duration_hours is None:
            raise FlowStateLostError(self.name, "attendees or duration")

        candidates = self.services.finder.find_slots(request.attendees, request.duration_hours, ctx.token)
        if not candidates:
            return Abort(NoCandidateSlots(request.attendees, request.duration_hours))

        ctx.candidates = list(candidates)
        return Suspend(self._choice_set(ctx), InputKind.CHOICE)

    def resume(self, ctx: SessionContext, value: StepInput) -> StepOutcome:
        self._expect(value, InputKind.CHOICE)
        if ctx.candidates is None:
            raise FlowStateLostError(self.name, "candidate slots")
        if value.index >= len(ctx.candidates):
            raise UserInputInvalid(
                f"Choice {value.index} out of range",
                field="selected_slot_index",
                value=value.index,
                retry_prompt=INVALID_CHOICE_MESSAGE,
            )
        return Advance(value)

    def retry_message(self, ctx: SessionContext, error: UserInputInvalid) -> OutboundMessage:
        choices = [slot.label() for slot in ctx.candidates or []]
        return OutboundMessage(text=error.retry_prompt or self.prompt, choices=choices)

    def _choice_set(self, ctx: SessionContext) -> OutboundMessage:
        return OutboundMessage(text=self.prompt, choices=[slot.label() for slot in ctx.candidates])


class CollectTitleStep(Step):
    """Store the selected slot, then ask for the title."""

    prompt = TITLE_PROMPT

    def run(self, ctx: SessionContext, scratch: Optional[StepInput]) -> StepOutcome:
        self._expect(scratch, InputKind.CHOICE)
        self.services.store.upsert_merge(self._request(ctx, selected_slot_index=scratch.index))
        return Suspend(OutboundMessage(text=self.prompt), InputKind.TEXT)

    def resume(self, ctx: SessionContext, value: StepInput) -> StepOutcome:
        self._expect(value, InputKind.TEXT)
        self.services.store.upsert_merge(self._request(ctx, title=value.text))
        return Advance()


class CollectDescriptionStep(Step):
    prompt = DESCRIPTION_PROMPT

    def run(self, ctx: SessionContext, scratch: Optional[StepInput]) -> StepOutcome:
        return Suspend(OutboundMessage(text=self.prompt), InputKind.TEXT)

    def resume(self, ctx: SessionContext, value: StepInput) -> StepOutcome:
        self._expect(value, InputKind.TEXT)
        self.services.store.upsert_merge(self._request(ctx, description=value.text))
        return Advance()


class DispatchInviteStep(Step):
    """
    Create the calendar event for the selected slot.

    The slot comes from the in-memory candidate list presented earlier; it is
    not fetched again.
    """

    def run(self, ctx: SessionContext, scratch: Optional[StepInput]) -> StepOutcome:
        if not ctx.token:
            return Abort(TokenUnavailable(step=self.name))

        request = self.services.store.get(ctx.owner_key, ctx.session_key)
        index = request.selected_slot_index
        if ctx.candidates is None or index is None or index >= len(ctx.candidates):
            raise FlowStateLostError(self.name, "candidate slots")

        slot = ctx.candidates[index]
        self.services.dispatcher.create_event(
            slot,
            request.attendees or [],
            request.title,
            request.description,
            ctx.token,
        )
        return Complete(SCHEDULED_MESSAGE)


_POLICY_CLASSES = {
    StepPolicy.ACQUIRE_TOKEN: AcquireTokenStep,
    StepPolicy.COLLECT_ATTENDEES: CollectAttendeesStep,
    StepPolicy.RESOLVE_ATTENDEES: ResolveAttendeesStep,
    StepPolicy.COLLECT_DURATION: CollectDurationStep,
    StepPolicy.FIND_CANDIDATE_SLOTS: FindCandidateSlotsStep,
    StepPolicy.COLLECT_TITLE: CollectTitleStep,
    StepPolicy.COLLECT_DESCRIPTION: CollectDescriptionStep,
    StepPolicy.DISPATCH_INVITE: DispatchInviteStep,
}


def build_steps(services: StepServices, table) -> Dict[FlowStep, Step]:
    """
    Instantiate one policy object per row of the flow table.

    Args:
        services: Collaborators handed to every policy
        table: Iterable of StepSpec rows

    Returns:
        Mapping of step to its bound policy
    """
    return {spec.step: _POLICY_CLASSES[spec.policy](services).bind(spec.step) for spec in table}
