"""
Conversation state manager for the meeting scheduling flow.

This module provides the ConversationStateManager class that:
- Starts a new flow instance when a session has none
- Resumes the waiting step with the recognized input of the next turn
- Runs steps from the flow table until the next suspension or the end
- Persists the waiting step on every suspension
- Turns every abort into exactly one user-facing message
- Handles the logout interruption before any step runs
"""

import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from loguru import logger

from models.schemas import FlowCheckpoint, InputKind, StepInput, TurnEvent
from services.collaborators import (
    AttendeeResolver,
    AvailabilityFinder,
    InviteDispatcher,
    TokenBroker,
)
from services.session_store import FlowCheckpointStore, MeetingRequestStore
from error_handling.exceptions import (
    ExternalServiceError,
    InputKindMismatchError,
    SchedulingError,
    TokenTimeout,
    UserInputInvalid,
)
from error_handling.handlers import handle_flow_error
from error_handling.logging_config import LogContext, log_conversation_event

from .context import OutboundMessage, SessionContext, TurnOutcome, TurnStatus
from .recognizers import recognize
from .states import FLOW_TABLE, FlowStep, StepSpec, first_step, get_step_spec
from .steps import (
    Abort,
    Advance,
    Complete,
    Step,
    StepOutcome,
    StepServices,
    Suspend,
    build_steps,
)


LOGOUT_COMMAND = "logout"
SIGNED_OUT_MESSAGE = "You have been signed out."
DEFAULT_SIGNIN_TIMEOUT_SECONDS = 300


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_logout(event: TurnEvent) -> bool:
    """Whether the turn is the logout interruption."""
    return event.text is not None and event.text.strip().lower() == LOGOUT_COMMAND


class ConversationStateManager:
    """
    Interpreter for the scheduling flow table.

    One flow instance at most is active per session. Turns for the same
    session are serialized by a per-session lock; different sessions run
    concurrently and share only the stores and the context registry.

    Attributes:
        store: Meeting request store
        checkpoints: Flow checkpoint store
        broker: Identity/token broker
        signin_timeout_seconds: Bound on a sign-in wait when the broker names none
    """

    def __init__(
        self,
        store: MeetingRequestStore,
        checkpoints: FlowCheckpointStore,
        broker: TokenBroker,
        resolver: AttendeeResolver,
        finder: AvailabilityFinder,
        dispatcher: InviteDispatcher,
        signin_timeout_seconds: int = DEFAULT_SIGNIN_TIMEOUT_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the state manager.

        Args:
            store: Meeting request store (merge-upsert)
            checkpoints: Store for the waiting step of each session
            broker: Identity/token broker
            resolver: Attendee resolver
            finder: Availability finder
            dispatcher: Invite dispatcher
            signin_timeout_seconds: Seconds a sign-in wait may last when the
                broker's SignInRequired carries no timeout
            clock: Returns the current UTC time (defaults to the system clock)
        """
        self.store = store
        self.checkpoints = checkpoints
        self.broker = broker
        self.signin_timeout_seconds = signin_timeout_seconds
        self.clock = clock or _utcnow

        services = StepServices(
            store=store,
            broker=broker,
            resolver=resolver,
            finder=finder,
            dispatcher=dispatcher,
        )
        self.steps: Dict[FlowStep, Step] = build_steps(services, FLOW_TABLE)

        self._contexts: Dict[str, SessionContext] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

        logger.info(
            f"ConversationStateManager initialized with {len(self.steps)} steps, "
            f"signin_timeout={signin_timeout_seconds}s"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def handle_turn(self, event: TurnEvent) -> TurnOutcome:
        """
        Process one inbound turn.

        Args:
            event: Inbound turn event

        Returns:
            TurnOutcome with the replies and where the flow now stands

        Raises:
            InputKindMismatchError: If a step is resumed with the wrong input kind
            RuntimeError: If a step suspends for an input kind its table row does not name
        """
        with self._session_lock(event.session_key), LogContext(session_key=event.session_key):
            logger.debug(f"Turn received with {event.payload_kind} payload")

            if is_logout(event):
                return self._sign_out(event)

            try:
                checkpoint = self.checkpoints.load(event.session_key)
            except SchedulingError as e:
                return self._abort_without_context(event, e)

            if checkpoint is None:
                return self._start_flow(event)
            return self._resume_flow(event, checkpoint)

    def get_context(self, session_key: str) -> Optional[SessionContext]:
        """Return the in-memory context of the session's active flow, if any."""
        with self._registry_lock:
            return self._contexts.get(session_key)

    def get_waiting_step(self, session_key: str) -> Optional[FlowCheckpoint]:
        """Return the persisted checkpoint of the session, if any."""
        return self.checkpoints.load(session_key)

    # ------------------------------------------------------------------
    # Flow lifecycle
    # ------------------------------------------------------------------

    def _start_flow(self, event: TurnEvent) -> TurnOutcome:
        ctx = SessionContext(session_key=event.session_key, flow_id=uuid.uuid4().hex)
        ctx.turn = event
        self._register(ctx)

        step = first_step()
        log_conversation_event("STARTED", ctx.session_key, str(step), {"flow_id": ctx.flow_id})

        spec = get_step_spec(step)
        outcome = self._invoke(spec, self.steps[spec.step].run, ctx, None)
        return self._drive(ctx, spec, outcome, [])

    def _resume_flow(self, event: TurnEvent, checkpoint: FlowCheckpoint) -> TurnOutcome:
        ctx = self._context_for(checkpoint)
        ctx.turn = event
        spec = get_step_spec(checkpoint.step)
        step = self.steps[spec.step]

        if checkpoint.expects == InputKind.TOKEN:
            limit = checkpoint.timeout_seconds or self.signin_timeout_seconds
            elapsed = (self.clock() - checkpoint.suspended_at).total_seconds()
            if elapsed > limit:
                error = TokenTimeout(limit, elapsed, step=checkpoint.step)
                return self._abort(ctx, spec, error, [])

        try:
            value = recognize(
                checkpoint.expects,
                event,
                checkpoint.step,
                self.broker,
                candidates=ctx.candidates,
            )
        except UserInputInvalid as e:
            return self._reprompt(ctx, spec, step, e)
        except SchedulingError as e:
            return self._abort(ctx, spec, e, [])
        except Exception as e:
            return self._abort(ctx, spec, self._unexpected(spec, e), [])

        return self._resume_with(ctx, spec, checkpoint, value)

    def _resume_with(
        self,
        ctx: SessionContext,
        spec: StepSpec,
        checkpoint: FlowCheckpoint,
        value: StepInput,
    ) -> TurnOutcome:
        if value.kind != checkpoint.expects:
            raise InputKindMismatchError(checkpoint.step, checkpoint.expects.value, value.kind.value)

        step = self.steps[spec.step]
        try:
            outcome = self._invoke(spec, step.resume, ctx, value)
        except UserInputInvalid as e:
            return self._reprompt(ctx, spec, step, e)

        log_conversation_event("RESUMED", ctx.session_key, str(spec.step), {"input": value.kind.value})
        return self._drive(ctx, spec, outcome, [])

    def _drive(
        self,
        ctx: SessionContext,
        spec: StepSpec,
        outcome: StepOutcome,
        messages: List[OutboundMessage],
    ) -> TurnOutcome:
        """Apply outcomes and run following steps until the flow suspends or ends."""
        while True:
            if isinstance(outcome, Suspend):
                return self._suspend(ctx, spec, outcome, messages)

            if isinstance(outcome, Abort):
                return self._abort(ctx, spec, outcome.error, messages)

            if isinstance(outcome, Complete):
                return self._complete(ctx, spec, outcome, messages)

            if not isinstance(outcome, Advance):
                raise TypeError(f"Step {spec.step} returned {type(outcome).__name__}")

            if spec.next_step is None:
                raise RuntimeError(f"Flow ended at {spec.step} without completing")

            scratch = outcome.scratch
            spec = get_step_spec(spec.next_step)
            logger.debug(f"Advancing to {spec.step}")
            outcome = self._invoke(spec, self.steps[spec.step].run, ctx, scratch)

    def _suspend(
        self,
        ctx: SessionContext,
        spec: StepSpec,
        outcome: Suspend,
        messages: List[OutboundMessage],
    ) -> TurnOutcome:
        if outcome.expects != spec.expects:
            raise RuntimeError(
                f"Step {spec.step} suspended for {outcome.expects} input "
                f"but the flow table expects {spec.expects}"
            )

        checkpoint = ctx.to_checkpoint(
            str(spec.step),
            outcome.expects,
            self.clock(),
            timeout_seconds=outcome.timeout_seconds,
        )
        try:
            self.checkpoints.save(checkpoint)
        except SchedulingError as e:
            return self._abort(ctx, spec, e, messages)

        messages.append(outcome.message)
        log_conversation_event(
            "SUSPENDED",
            ctx.session_key,
            str(spec.step),
            {"flow_id": ctx.flow_id, "expects": outcome.expects.value},
        )
        return TurnOutcome(messages=messages, status=TurnStatus.WAITING, waiting_step=str(spec.step))

    def _reprompt(self, ctx: SessionContext, spec: StepSpec, step: Step, error: UserInputInvalid) -> TurnOutcome:
        """Re-send the step's prompt; the checkpoint is left untouched."""
        handle_flow_error(error, {**ctx.log_fields(), "step": str(spec.step)})
        log_conversation_event("REPROMPTED", ctx.session_key, str(spec.step), {"field": error.field})
        return TurnOutcome(
            messages=[step.retry_message(ctx, error)],
            status=TurnStatus.WAITING,
            waiting_step=str(spec.step),
        )

    def _complete(
        self,
        ctx: SessionContext,
        spec: StepSpec,
        outcome: Complete,
        messages: List[OutboundMessage],
    ) -> TurnOutcome:
        self._end_flow(ctx.session_key)
        messages.append(OutboundMessage(text=outcome.message))
        log_conversation_event("COMPLETED", ctx.session_key, str(spec.step), {"flow_id": ctx.flow_id})
        return TurnOutcome(messages=messages, status=TurnStatus.COMPLETED)

    def _abort(
        self,
        ctx: SessionContext,
        spec: StepSpec,
        error: SchedulingError,
        messages: List[OutboundMessage],
    ) -> TurnOutcome:
        response = handle_flow_error(error, {**ctx.log_fields(), "step": str(spec.step)})
        self._end_flow(ctx.session_key)
        messages.append(OutboundMessage(text=response["user_message"]))
        log_conversation_event(
            "ABORTED",
            ctx.session_key,
            str(spec.step),
            {"flow_id": ctx.flow_id, "error_type": response["error_type"]},
        )
        return TurnOutcome(messages=messages, status=TurnStatus.ABORTED)

    def _abort_without_context(self, event: TurnEvent, error: SchedulingError) -> TurnOutcome:
        response = handle_flow_error(error, {"session_key": event.session_key})
        with self._registry_lock:
            self._contexts.pop(event.session_key, None)
        log_conversation_event("ABORTED", event.session_key, None, {"error_type": response["error_type"]})
        return TurnOutcome(messages=[OutboundMessage(text=response["user_message"])], status=TurnStatus.ABORTED)

    def _sign_out(self, event: TurnEvent) -> TurnOutcome:
        self.broker.sign_out(event)
        try:
            self._end_flow(event.session_key)
        except SchedulingError as e:
            return self._abort_without_context(event, e)

        log_conversation_event("SIGNED_OUT", event.session_key, None)
        return TurnOutcome(
            messages=[OutboundMessage(text=SIGNED_OUT_MESSAGE)],
            status=TurnStatus.SIGNED_OUT,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _invoke(
        self,
        spec: StepSpec,
        call: Callable,
        ctx: SessionContext,
        value: Optional[StepInput],
    ) -> StepOutcome:
        """
        Call a step entry point, converting any failure into an Abort.

        UserInputInvalid is re-raised for the caller to re-prompt, and
        InputKindMismatchError because it is a wiring defect, not a flow error.
        """
        try:
            return call(ctx, value)
        except (UserInputInvalid, InputKindMismatchError):
            raise
        except SchedulingError as e:
            return Abort(e)
        except Exception as e:
            return Abort(self._unexpected(spec, e))

    @staticmethod
    def _unexpected(spec: StepSpec, error: Exception) -> ExternalServiceError:
        """Wrap an error no collaborator contract names, so it aborts like any other."""
        logger.opt(exception=error).error(f"Unexpected {type(error).__name__} in step {spec.step}")
        return ExternalServiceError(
            f"Step {spec.step} failed: {error}",
            service="collaborator",
            operation=str(spec.step),
            original_error=error,
            step=str(spec.step),
        )

    def _context_for(self, checkpoint: FlowCheckpoint) -> SessionContext:
        """Return the live context for the checkpoint's flow, rebuilding it if lost."""
        with self._registry_lock:
            ctx = self._contexts.get(checkpoint.session_key)
            if ctx is not None and ctx.flow_id == checkpoint.flow_id:
                return ctx

            logger.warning(
                f"No in-memory context for flow {checkpoint.flow_id}; "
                f"rebuilding from checkpoint at {checkpoint.step}"
            )
            ctx = SessionContext.from_checkpoint(checkpoint)
            self._contexts[checkpoint.session_key] = ctx
            return ctx

    def _register(self, ctx: SessionContext) -> None:
        with self._registry_lock:
            self._contexts[ctx.session_key] = ctx

    def _end_flow(self, session_key: str) -> None:
        """Drop the checkpoint and the in-memory context."""
        with self._registry_lock:
            self._contexts.pop(session_key, None)
        self.checkpoints.clear(session_key)

    def _session_lock(self, session_key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(session_key)
            if lock is None:
                lock = threading.Lock()
                self._locks[session_key] = lock
            return lock
