"""
Services package - Persistence and external integrations.
"""
from .collaborators import (
    TokenResponse,
    SignInRequired,
    TokenResult,
    TokenBroker,
    NotFound,
    Unique,
    Ambiguous,
    ResolveResult,
    classify_matches,
    AttendeeResolver,
    AvailabilityFinder,
    InviteDispatcher,
)
from .session_store import MeetingRequestStore, FlowCheckpointStore
from .token_broker import InMemoryTokenBroker
from .graph_calendar import GraphCalendarService, format_iso_duration, parse_graph_datetime

__all__ = [
    "TokenResponse",
    "SignInRequired",
    "TokenResult",
    "TokenBroker",
    "NotFound",
    "Unique",
    "Ambiguous",
    "ResolveResult",
    "classify_matches",
    "AttendeeResolver",
    "AvailabilityFinder",
    "InviteDispatcher",
    "MeetingRequestStore",
    "FlowCheckpointStore",
    "InMemoryTokenBroker",
    "GraphCalendarService",
    "format_iso_duration",
    "parse_graph_datetime",
]
