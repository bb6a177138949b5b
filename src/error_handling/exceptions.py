"""
Custom Exception Classes for the Meeting Scheduler conversation engine.

This module defines exception classes for the categories the flow can hit:
- User Input Errors (same-step re-prompt)
- Flow Abort Errors (attendee resolution, sign-in, availability, dispatch)
- Technical Errors (storage, external services, lost in-memory state)
- Programming Defects (resumption with the wrong input kind)

Each exception carries context for logging and a user-facing message.
"""

from typing import Optional, Any, Dict


class SchedulingError(Exception):
    """Base exception for all meeting scheduler errors."""

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = False
    ):
        """
        Initialize scheduling error.

        Args:
            message: Technical error message for logging
            user_message: User-friendly message sent back to the conversation
            context: Additional context for logging
            recoverable: Whether the flow can continue at the same step
        """
        super().__init__(message)
        self.message = message
        self.user_message = user_message
        self.context = context or {}
        self.recoverable = recoverable


# ============================================================================
# User Input Errors
# ============================================================================

class UserInputInvalid(SchedulingError):
    """
    Raised when a resuming turn does not carry an acceptable value.

    Examples:
    - Non-numeric text while waiting for the duration
    - Duration outside (0, 8)
    - Choice outside the presented option list
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        retry_prompt: Optional[str] = None,
        **kwargs
    ):
        context = {
            "field": field,
            "value": value,
            **kwargs
        }
        super().__init__(message, user_message=retry_prompt, context=context, recoverable=True)
        self.field = field
        self.value = value
        self.retry_prompt = retry_prompt


# ============================================================================
# Flow Abort Errors
# ============================================================================

class AttendeeNotFound(SchedulingError):
    """Raised when an attendee query matches nobody in the directory."""

    def __init__(self, query: str, **kwargs):
        super().__init__(
            message=f"No directory match for attendee query '{query}'",
            context={"query": query, **kwargs},
        )
        self.query = query


class AttendeeAmbiguous(SchedulingError):
    """Raised when an attendee query matches more than one directory entry."""

    def __init__(self, query: str, count: int, candidates: Optional[list] = None, **kwargs):
        super().__init__(
            message=f"Attendee query '{query}' matched {count} directory entries",
            context={"query": query, "count": count, "candidates": candidates or [], **kwargs},
        )
        self.query = query
        self.count = count
        self.candidates = candidates or []


class TokenUnavailable(SchedulingError):
    """Raised when no bearer token could be obtained for the turn."""

    def __init__(self, message: str = "No token available for this turn", **kwargs):
        super().__init__(message, context=kwargs)


class TokenTimeout(SchedulingError):
    """Raised when the sign-in wait exceeded its bounded timeout."""

    def __init__(self, timeout_seconds: int, elapsed_seconds: Optional[float] = None, **kwargs):
        message = f"Sign-in not completed within {timeout_seconds} seconds"
        context = {
            "timeout_seconds": timeout_seconds,
            "elapsed_seconds": elapsed_seconds,
            **kwargs
        }
        super().__init__(message, context=context)
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds


class NoCandidateSlots(SchedulingError):
    """Raised when the availability finder returns no candidate slots."""

    def __init__(self, attendees: Optional[list] = None, duration_hours: Optional[float] = None, **kwargs):
        super().__init__(
            message=f"No candidate slots for attendees={attendees}, duration={duration_hours}h",
            context={"attendees": attendees or [], "duration_hours": duration_hours, **kwargs},
        )


class DispatchFailure(SchedulingError):
    """Raised when the calendar event could not be created."""

    def __init__(self, message: str, original_error: Optional[Exception] = None, **kwargs):
        context = {
            "original_error": str(original_error) if original_error else None,
            **kwargs
        }
        super().__init__(message, context=context)
        self.original_error = original_error


# ============================================================================
# Technical Errors
# ============================================================================

class StorageFailure(SchedulingError):
    """
    Raised when the session state store fails.

    Storage errors are fatal for the current turn and are never retried.
    """

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        original_error: Optional[Exception] = None,
        **kwargs
    ):
        context = {
            "operation": operation,
            "original_error": str(original_error) if original_error else None,
            **kwargs
        }
        super().__init__(message, context=context)
        self.operation = operation
        self.original_error = original_error


class NullRecordError(StorageFailure):
    """Raised when upsert_merge is called without a record."""

    def __init__(self, **kwargs):
        super().__init__("Cannot upsert a null record", operation="upsert_merge", **kwargs)


class MeetingRequestNotFoundError(StorageFailure):
    """Raised when no meeting request is stored for the given keys."""

    def __init__(self, owner_key: str, session_key: str, **kwargs):
        super().__init__(
            f"No meeting request for owner={owner_key}, session={session_key}",
            operation="get",
            owner_key=owner_key,
            session_key=session_key,
            **kwargs
        )
        self.owner_key = owner_key
        self.session_key = session_key


class ExternalServiceError(SchedulingError):
    """Raised when the directory or availability service call fails."""

    def __init__(
        self,
        message: str,
        service: str,
        operation: str,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
        **kwargs
    ):
        context = {
            "service": service,
            "operation": operation,
            "status_code": status_code,
            "original_error": str(original_error) if original_error else None,
            **kwargs
        }
        super().__init__(message, context=context)
        self.service = service
        self.operation = operation
        self.status_code = status_code
        self.original_error = original_error


class FlowStateLostError(SchedulingError):
    """
    Raised when a suspended flow resumes but its in-memory state is gone.

    The candidate slot list and any value carried across a sign-in are not
    persisted, so a process restart mid-flow leaves the checkpoint without them.
    """

    def __init__(self, step: str, missing: str, **kwargs):
        super().__init__(
            message=f"In-memory {missing} unavailable when resuming step {step}",
            context={"step": step, "missing": missing, **kwargs},
        )
        self.step = step
        self.missing = missing


# ============================================================================
# Programming Defects
# ============================================================================

class InputKindMismatchError(TypeError):
    """
    Raised when a step is resumed with an input of the wrong kind.

    This is a defect in the caller, never a user-facing condition.
    """

    def __init__(self, step: str, expected: str, received: str):
        super().__init__(f"Step {step} expects {expected} input, received {received}")
        self.step = step
        self.expected = expected
        self.received = received
