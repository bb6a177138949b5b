"""
Centralized error handling utilities for the conversation engine.

This module provides utilities for:
- Error logging with conversation context
- Severity classification
- Turning a raised error into the single user-facing response
"""
from typing import Optional, Any, Dict
from loguru import logger

from .exceptions import (
    SchedulingError,
    UserInputInvalid,
    AttendeeNotFound,
    AttendeeAmbiguous,
    NoCandidateSlots,
    TokenTimeout,
    StorageFailure,
    ExternalServiceError,
    DispatchFailure,
    FlowStateLostError,
)
from .error_messages import get_error_message


def classify_severity(error: Exception) -> str:
    """
    Map an error to a log level.

    User-caused outcomes are informational; infrastructure failures are errors.
    """
    if isinstance(error, UserInputInvalid):
        return "INFO"
    if isinstance(error, (AttendeeNotFound, AttendeeAmbiguous, NoCandidateSlots, TokenTimeout)):
        return "WARNING"
    if isinstance(error, (StorageFailure, ExternalServiceError, DispatchFailure, FlowStateLostError)):
        return "ERROR"
    return "ERROR"


def log_error_with_context(
    error: Exception,
    context: Dict[str, Any],
    severity: Optional[str] = None
) -> None:
    """
    Log an error with full context information.

    Args:
        error: Exception that occurred
        context: Context dictionary (session, step, flow id, ...)
        severity: Log severity; derived from the error type when omitted
    """
    severity = severity or classify_severity(error)
    error_context = error.context if isinstance(error, SchedulingError) else {}

    logger.bind(category="ERROR", **context).log(
        severity,
        f"{type(error).__name__}: {error} | context={context} | error_context={error_context}"
    )

    original = getattr(error, "original_error", None)
    if severity == "ERROR" and original is not None:
        logger.opt(exception=original).debug("Original error traceback")


def handle_flow_error(
    error: SchedulingError,
    context: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Log a flow error and build the response for it.

    Args:
        error: Error raised by a step or by input recognition
        context: Conversation context for logging

    Returns:
        Dictionary with:
        - user_message: Message to send to the user
        - recoverable: Whether the same step should re-prompt
        - error_type: Name of the error class
    """
    log_error_with_context(error, context or {})

    return {
        "user_message": get_error_message(error),
        "recoverable": error.recoverable,
        "error_type": type(error).__name__,
    }
