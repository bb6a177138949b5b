"""
User-facing error messages for the meeting scheduler conversation.

Every abort produces exactly one plain-language message that tells the user
how to start over. Wording follows the prompts the bot sends elsewhere in
the flow.
"""
from loguru import logger

from .exceptions import (
    SchedulingError,
    UserInputInvalid,
    AttendeeNotFound,
    AttendeeAmbiguous,
    TokenUnavailable,
    TokenTimeout,
    NoCandidateSlots,
    DispatchFailure,
    StorageFailure,
    ExternalServiceError,
    FlowStateLostError,
)


GENERIC_RETRY_MESSAGE = "Something went wrong. Please type anything to get started again."
INVALID_DURATION_MESSAGE = "Invalid value, please enter a proper value"
INVALID_CHOICE_MESSAGE = "Sorry, please choose one of the listed time slots."


def get_attendee_not_found_message(error: AttendeeNotFound) -> str:
    """Generate message naming the attendee that could not be resolved."""
    return f"Attendee '{error.query}' not found, please type anything to start again."


def get_attendee_ambiguous_message(error: AttendeeAmbiguous) -> str:
    """Generate message citing the match count for an ambiguous attendee."""
    return (
        f"There are {error.count} people whose name start with {error.query}. "
        "Please type hi to start again, and instead of first name, "
        "enter email to avoid ambiguity."
    )


def get_no_slots_message(error: NoCandidateSlots) -> str:
    return (
        "No appropriate meeting slot found. "
        "Please try again by typing 'hi' and change date this time."
    )


def get_token_timeout_message(error: TokenTimeout) -> str:
    return "Sign-in timed out. Please type anything to start again."


def get_error_message(error: Exception) -> str:
    """
    Get the user-facing message for any error raised inside the flow.

    Args:
        error: Exception that ended (or paused) the current step

    Returns:
        Message suitable for sending back to the conversation
    """
    if isinstance(error, UserInputInvalid):
        return error.retry_prompt or INVALID_DURATION_MESSAGE

    if isinstance(error, AttendeeNotFound):
        return get_attendee_not_found_message(error)

    if isinstance(error, AttendeeAmbiguous):
        return get_attendee_ambiguous_message(error)

    if isinstance(error, NoCandidateSlots):
        return get_no_slots_message(error)

    if isinstance(error, TokenTimeout):
        return get_token_timeout_message(error)

    if isinstance(error, (TokenUnavailable, DispatchFailure, StorageFailure,
                          ExternalServiceError, FlowStateLostError)):
        return GENERIC_RETRY_MESSAGE

    if isinstance(error, SchedulingError) and error.user_message:
        return error.user_message

    logger.warning(f"No specific message for {type(error).__name__}, using generic message")
    return GENERIC_RETRY_MESSAGE
