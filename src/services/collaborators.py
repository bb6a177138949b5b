"""
Interfaces of the external collaborators the conversation engine drives.

The engine only depends on these shapes; concrete implementations live in
token_broker.py (sign-in) and graph_calendar.py (directory, availability,
calendar).
"""
from dataclasses import dataclass, field
from typing import List, Optional, Protocol, Union

from models.schemas import TimeSlotCandidate, TurnEvent


# ============================================================================
# Identity / token broker
# ============================================================================

@dataclass(frozen=True)
class TokenResponse:
    """A bearer token usable for the current turn."""
    token: str


@dataclass(frozen=True)
class SignInRequired:
    """No cached token; the user must sign in within timeout_seconds (the engine default when None)."""
    prompt: str = "Please Sign In"
    title: str = "Sign In"
    timeout_seconds: Optional[int] = 300


TokenResult = Union[TokenResponse, SignInRequired]


class TokenBroker(Protocol):
    def obtain_token(self, turn: TurnEvent) -> TokenResult: ...

    def accept_token(self, turn: TurnEvent, token: str) -> None: ...

    def sign_out(self, turn: TurnEvent) -> None: ...


# ============================================================================
# Attendee resolver
# ============================================================================

@dataclass(frozen=True)
class NotFound:
    query: str


@dataclass(frozen=True)
class Unique:
    query: str
    identity: str


@dataclass(frozen=True)
class Ambiguous:
    query: str
    count: int
    candidates: List[str] = field(default_factory=list)


ResolveResult = Union[NotFound, Unique, Ambiguous]


def classify_matches(query: str, identities: List[str]) -> ResolveResult:
    """Classify directory matches for a query as NotFound, Unique or Ambiguous."""
    if not identities:
        return NotFound(query=query)
    if len(identities) == 1:
        return Unique(query=query, identity=identities[0])
    return Ambiguous(query=query, count=len(identities), candidates=list(identities))


class AttendeeResolver(Protocol):
    def resolve(self, query: str, token: str) -> ResolveResult: ...

    def current_user(self, token: str) -> str: ...


# ============================================================================
# Availability finder and invite dispatcher
# ============================================================================

class AvailabilityFinder(Protocol):
    def find_slots(
        self,
        attendees: List[str],
        duration_hours: float,
        token: str,
    ) -> List[TimeSlotCandidate]: ...


class InviteDispatcher(Protocol):
    def create_event(
        self,
        slot: TimeSlotCandidate,
        attendees: List[str],
        title: Optional[str],
        description: Optional[str],
        token: str,
    ) -> None: ...
