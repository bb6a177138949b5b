"""
In-memory identity/token broker.

Caches one bearer token per conversation. When no token is cached the broker
asks for sign-in; the host delivers the token on a later turn and the engine
hands it back through accept_token().
"""
import threading
from typing import Dict, Optional

from loguru import logger

from models.schemas import TurnEvent
from .collaborators import TokenResponse, SignInRequired, TokenResult


class InMemoryTokenBroker:
    """
    Token cache keyed by session.

    Attributes:
        default_token: Token returned for any session with nothing cached
            (e.g. a GRAPH_ACCESS_TOKEN configured for a console run)
        signin_timeout_seconds: Timeout attached to sign-in prompts
    """

    def __init__(self, default_token: Optional[str] = None, signin_timeout_seconds: int = 300):
        self.default_token = default_token
        self.signin_timeout_seconds = signin_timeout_seconds
        self._tokens: Dict[str, str] = {}
        self._signed_out: set = set()
        self._lock = threading.Lock()

    def obtain_token(self, turn: TurnEvent) -> TokenResult:
        with self._lock:
            token = self._tokens.get(turn.session_key)
            if token is None and turn.session_key not in self._signed_out:
                token = self.default_token

        if token:
            return TokenResponse(token=token)

        logger.info(f"No cached token for session {turn.session_key}, sign-in required")
        return SignInRequired(timeout_seconds=self.signin_timeout_seconds)

    def accept_token(self, turn: TurnEvent, token: str) -> None:
        with self._lock:
            self._tokens[turn.session_key] = token
            self._signed_out.discard(turn.session_key)
        logger.debug(f"Token cached for session {turn.session_key}")

    def sign_out(self, turn: TurnEvent) -> None:
        with self._lock:
            self._tokens.pop(turn.session_key, None)
            # Pre-seeded token no longer applies after an explicit sign-out
            self._signed_out.add(turn.session_key)
        logger.info(f"Signed out session {turn.session_key}")
