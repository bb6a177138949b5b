"""
Turn input recognition.

Converts an inbound TurnEvent into the StepInput variant a suspended step
expects. An unusable turn raises UserInputInvalid, which re-prompts the
same step; it never advances the flow.

Choice selection accepts, in order of precedence:
- choice_index on the event (0-based, as sent by a rendered choice set)
- the option's 1-based number typed as text
- the option's label typed as text (case-insensitive)
"""

from typing import List, Optional

from loguru import logger

from models.schemas import (
    ChoiceInput,
    InputKind,
    NumberInput,
    StepInput,
    TextInput,
    TimeSlotCandidate,
    TokenInput,
    TurnEvent,
)
from services.collaborators import SignInRequired, TokenBroker
from error_handling.exceptions import (
    FlowStateLostError,
    TokenUnavailable,
    UserInputInvalid,
)
from error_handling.error_messages import INVALID_CHOICE_MESSAGE, INVALID_DURATION_MESSAGE


def recognize_text(event: TurnEvent) -> TextInput:
    """
    Recognize free text.

    Raises:
        UserInputInvalid: If the turn carries no non-blank text
    """
    if event.text is None or not event.text.strip():
        raise UserInputInvalid("Expected free text", field="text", value=event.payload_kind)
    return TextInput(text=event.text.strip())


def recognize_number(event: TurnEvent) -> NumberInput:
    """
    Recognize a number from a numeric payload or from text.

    Range checks are left to the step; this only rejects turns that carry
    nothing parseable.

    Raises:
        UserInputInvalid: If no number can be read from the turn
    """
    if event.number is not None:
        return NumberInput(value=event.number)

    if event.text is not None:
        try:
            return NumberInput(value=float(event.text.strip()))
        except ValueError:
            pass

    raise UserInputInvalid(
        "Expected a number",
        field="duration_hours",
        value=event.text if event.text is not None else event.payload_kind,
        retry_prompt=INVALID_DURATION_MESSAGE,
    )


def _match_choice_text(text: str, candidates: List[TimeSlotCandidate]) -> Optional[int]:
    cleaned = text.strip()
    if cleaned.isdigit():
        position = int(cleaned)
        if 1 <= position <= len(candidates):
            return position - 1
        return None

    for index, slot in enumerate(candidates):
        if slot.label().casefold() == cleaned.casefold():
            return index
    return None


def recognize_choice(event: TurnEvent, candidates: Optional[List[TimeSlotCandidate]], step: str) -> ChoiceInput:
    """
    Recognize a selection from the presented candidate list.

    Args:
        event: Inbound turn
        candidates: Candidate list presented when the step suspended
        step: Waiting step name (for error context)

    Raises:
        FlowStateLostError: If the candidate list is no longer held in memory
        UserInputInvalid: If the turn does not select one of the candidates
    """
    if candidates is None:
        raise FlowStateLostError(step, "candidate slots")

    index = None
    if event.choice_index is not None:
        if event.choice_index < len(candidates):
            index = event.choice_index
    elif event.text is not None:
        index = _match_choice_text(event.text, candidates)

    if index is None:
        raise UserInputInvalid(
            "Selection does not match any candidate slot",
            field="selected_slot_index",
            value=event.choice_index if event.choice_index is not None else event.text,
            retry_prompt=INVALID_CHOICE_MESSAGE,
        )
    return ChoiceInput(index=index)


def recognize_token(event: TurnEvent, broker: TokenBroker) -> TokenInput:
    """
    Recognize a token delivery or a sign-in completion signal.

    A delivered token is handed to the broker so later turns can reuse it.
    A completion signal asks the broker again.

    Raises:
        TokenUnavailable: If sign-in completed but the broker still has no token
        UserInputInvalid: If the turn carries neither, or a blank token
            (the sign-in prompt is re-sent)
    """
    if event.token is not None:
        token = event.token.strip()
        if not token:
            raise UserInputInvalid("Delivered token is blank", field="token", value="")
        broker.accept_token(event, token)
        return TokenInput(token=token)

    if event.signin_completed:
        result = broker.obtain_token(event)
        if isinstance(result, SignInRequired):
            raise TokenUnavailable("Sign-in reported complete but no token is available")
        return TokenInput(token=result.token)

    logger.debug(f"Turn with {event.payload_kind} payload while waiting for sign-in")
    raise UserInputInvalid("Expected a token", field="token", value=event.payload_kind)


def recognize(
    expects: InputKind,
    event: TurnEvent,
    step: str,
    broker: TokenBroker,
    candidates: Optional[List[TimeSlotCandidate]] = None,
) -> StepInput:
    """
    Recognize the input a waiting step expects.

    Args:
        expects: Input kind recorded in the checkpoint
        event: Inbound turn
        step: Waiting step name
        broker: Token broker (token steps only)
        candidates: In-memory candidate list (choice steps only)

    Returns:
        StepInput of kind expects
    """
    if expects == InputKind.TEXT:
        return recognize_text(event)
    if expects == InputKind.NUMBER:
        return recognize_number(event)
    if expects == InputKind.CHOICE:
        return recognize_choice(event, candidates, step)
    if expects == InputKind.TOKEN:
        return recognize_token(event, broker)
    raise ValueError(f"Unknown input kind: {expects}")
