"""
Centralized logging configuration for the meeting scheduler.

This module configures loguru for structured logging with different
levels and formats for development vs production.
"""
import sys
from pathlib import Path
from typing import Optional
from loguru import logger


def configure_logging(
    log_level: str = "INFO",
    log_to_file: bool = True,
    log_dir: str = "logs",
    rotation: str = "100 MB",
    retention: str = "30 days",
    format_type: str = "detailed"
) -> None:
    """
    Configure loguru logging for the application.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Whether to log to files in addition to console
        log_dir: Directory for log files
        rotation: When to rotate log files (e.g., "100 MB", "1 day")
        retention: How long to keep old log files
        format_type: Format style ("simple" or "detailed")
    """
    logger.remove()

    if format_type == "simple":
        format_string = "<level>{level: <8}</level> | <level>{message}</level>"
    else:
        format_string = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "{extra[session_key]} | "
            "<level>{message}</level>"
        )

    # session_key is bound per turn by LogContext; default keeps the format valid outside turns
    logger.configure(extra={"session_key": "-"})

    logger.add(
        sys.stderr,
        format=format_string,
        level=log_level,
        colorize=True,
        backtrace=True,
        diagnose=False
    )

    if log_to_file:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path / "scheduler_{time:YYYY-MM-DD}.log",
            format=format_string,
            level=log_level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False
        )

        logger.add(
            log_path / "errors_{time:YYYY-MM-DD}.log",
            format=format_string,
            level="ERROR",
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False
        )

        # Audit trail of flow lifecycle events
        logger.add(
            log_path / "conversations_{time:YYYY-MM-DD}.log",
            format=format_string,
            level="INFO",
            rotation="1 day",
            retention="1 year",
            compression="zip",
            filter=lambda record: record["extra"].get("category") == "CONVERSATION"
        )

    logger.info(
        f"Logging configured: level={log_level}, "
        f"file_logging={log_to_file}, "
        f"format={format_type}"
    )


def log_conversation_event(
    event_type: str,
    session_key: Optional[str] = None,
    step: Optional[str] = None,
    details: Optional[dict] = None
) -> None:
    """
    Log a flow lifecycle event.

    Args:
        event_type: Type of event (STARTED, SUSPENDED, RESUMED, REPROMPTED,
            ABORTED, COMPLETED, SIGNED_OUT)
        session_key: Conversation identifier
        step: Step the event relates to
        details: Additional event details
    """
    details = details or {}

    logger.bind(category="CONVERSATION").info(
        f"CONVERSATION {event_type} | "
        f"session={session_key} | "
        f"step={step} | "
        f"details={details}"
    )


def log_api_call(
    service: str,
    operation: str,
    success: bool,
    duration: float,
    details: Optional[dict] = None
) -> None:
    """
    Log an external API call.

    Args:
        service: Service name (e.g., "graph")
        operation: Operation performed (e.g., "find_meeting_times")
        success: Whether the call succeeded
        duration: Duration in seconds
        details: Additional call details
    """
    details = details or {}
    level = "INFO" if success else "WARNING"

    logger.bind(category="API").log(
        level,
        f"API {service}.{operation} | "
        f"success={success} | "
        f"duration={duration:.3f}s | "
        f"details={details}"
    )


class LogContext:
    """
    Context manager for adding context to all logs within a block.

    Example:
        with LogContext(session_key="19:abc@thread.v2"):
            logger.info("Processing turn")
    """

    def __init__(self, **context):
        self.context = context
        self.token = None

    def __enter__(self):
        self.token = logger.contextualize(**self.context)
        self.token.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token:
            self.token.__exit__(exc_type, exc_val, exc_tb)


def init_logging(environment: str = "development", log_level: Optional[str] = None) -> None:
    """
    Initialize logging with environment-specific settings.

    Args:
        environment: Environment name ("development", "production", "test")
        log_level: Overrides the environment's default level when given
    """
    if environment == "production":
        configure_logging(
            log_level=log_level or "INFO",
            log_to_file=True,
            format_type="detailed",
            rotation="100 MB",
            retention="90 days"
        )
    elif environment == "test":
        configure_logging(
            log_level=log_level or "WARNING",
            log_to_file=False,
            format_type="simple"
        )
    else:
        configure_logging(
            log_level=log_level or "DEBUG",
            log_to_file=True,
            format_type="detailed",
            rotation="50 MB",
            retention="7 days"
        )

    logger.info(f"Logging initialized for {environment} environment")
