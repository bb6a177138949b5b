"""
Error handling module for the meeting scheduler.

This module provides the error handling infrastructure including:
- Custom exception hierarchy for every abort and re-prompt condition
- User-facing message generation
- Centralized handlers and logging utilities

Main Components:
    - exceptions: Custom exception classes for all error scenarios
    - error_messages: User-friendly message generation
    - handlers: Logging and response helpers for flow errors
    - logging_config: loguru setup and structured event logging
"""

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
    NullRecordError,
    MeetingRequestNotFoundError,
    ExternalServiceError,
    FlowStateLostError,
    InputKindMismatchError,
)

from .error_messages import (
    GENERIC_RETRY_MESSAGE,
    INVALID_DURATION_MESSAGE,
    INVALID_CHOICE_MESSAGE,
    get_error_message,
)

from .handlers import (
    classify_severity,
    log_error_with_context,
    handle_flow_error,
)

from .logging_config import (
    configure_logging,
    init_logging,
    log_conversation_event,
    log_api_call,
    LogContext,
)

__all__ = [
    # Exceptions
    "SchedulingError",
    "UserInputInvalid",
    "AttendeeNotFound",
    "AttendeeAmbiguous",
    "TokenUnavailable",
    "TokenTimeout",
    "NoCandidateSlots",
    "DispatchFailure",
    "StorageFailure",
    "NullRecordError",
    "MeetingRequestNotFoundError",
    "ExternalServiceError",
    "FlowStateLostError",
    "InputKindMismatchError",

    # Error Messages
    "GENERIC_RETRY_MESSAGE",
    "INVALID_DURATION_MESSAGE",
    "INVALID_CHOICE_MESSAGE",
    "get_error_message",

    # Handlers
    "classify_severity",
    "log_error_with_context",
    "handle_flow_error",

    # Logging
    "configure_logging",
    "init_logging",
    "log_conversation_event",
    "log_api_call",
    "LogContext",
]
