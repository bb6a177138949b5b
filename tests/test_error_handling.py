"""
Tests for error messages, configuration, the token broker and the console host.
"""
import io
import pytest
from unittest.mock import Mock

from config import Settings, get_settings, reset_settings
from error_handling.error_messages import GENERIC_RETRY_MESSAGE, get_error_message
from error_handling.exceptions import (
    AttendeeAmbiguous,
    AttendeeNotFound,
    DispatchFailure,
    InputKindMismatchError,
    NoCandidateSlots,
    SchedulingError,
    StorageFailure,
    TokenTimeout,
    UserInputInvalid,
)
from error_handling.handlers import classify_severity, handle_flow_error
from models.schemas import TurnEvent
from services.collaborators import SignInRequired, TokenResponse
from services.token_broker import InMemoryTokenBroker
from conversation.context import OutboundMessage, TurnOutcome, TurnStatus
from main import parse_line, run_console


class TestErrorMessages:
    """Test user-facing wording."""

    def test_not_found_names_query(self):
        assert get_error_message(AttendeeNotFound("bob")) == (
            "Attendee 'bob' not found, please type anything to start again."
        )

    def test_ambiguous_cites_count(self):
        message = get_error_message(AttendeeAmbiguous("ann", 2))
        assert message.startswith("There are 2 people whose name start with ann.")
        assert "enter email" in message

    @pytest.mark.parametrize("error", [
        StorageFailure("db down"),
        DispatchFailure("graph 500"),
    ])
    def test_technical_errors_use_generic_message(self, error):
        assert get_error_message(error) == GENERIC_RETRY_MESSAGE

    def test_timeout_message(self):
        assert "timed out" in get_error_message(TokenTimeout(300, 301.0))

    def test_user_input_invalid_uses_retry_prompt(self):
        assert get_error_message(UserInputInvalid("bad", retry_prompt="Try again")) == "Try again"

    def test_handle_flow_error(self):
        response = handle_flow_error(NoCandidateSlots(["a@x.com"], 1.0), {"session_key": "s-1"})

        assert response["recoverable"] is False
        assert response["error_type"] == "NoCandidateSlots"
        assert "No appropriate meeting slot found" in response["user_message"]

    def test_severity(self):
        assert classify_severity(UserInputInvalid("x")) == "INFO"
        assert classify_severity(AttendeeNotFound("x")) == "WARNING"
        assert classify_severity(StorageFailure("x")) == "ERROR"

    def test_kind_mismatch_is_not_a_flow_error(self):
        error = InputKindMismatchError("collect_duration", "number", "text")

        assert isinstance(error, TypeError)
        assert not isinstance(error, SchedulingError)


class TestSettings:
    """Test configuration loading."""

    @pytest.fixture(autouse=True)
    def fresh_settings(self):
        reset_settings()
        yield
        reset_settings()

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("SIGNIN_TIMEOUT_SECONDS", raising=False)
        settings = Settings(_env_file=None)

        assert settings.database_url == "sqlite:///meeting_scheduler.db"
        assert settings.signin_timeout_seconds == 300
        assert settings.meeting_timezone == "Pacific Standard Time"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///:memory:")
        monkeypatch.setenv("SIGNIN_TIMEOUT_SECONDS", "60")
        monkeypatch.setenv("GRAPH_ACCESS_TOKEN", "tok")

        settings = get_settings()

        assert settings.database_url == "sqlite:///:memory:"
        assert settings.signin_timeout_seconds == 60
        assert settings.graph_access_token == "tok"
        assert get_settings() is settings


class TestInMemoryTokenBroker:
    """Test the shipped token broker."""

    def turn(self, session="s-1") -> TurnEvent:
        return TurnEvent(session_key=session, user_id="u-1", text="hi")

    def test_sign_in_required_without_token(self):
        result = InMemoryTokenBroker(signin_timeout_seconds=120).obtain_token(self.turn())

        assert result == SignInRequired(timeout_seconds=120)

    def test_accepted_token_is_per_session(self):
        broker = InMemoryTokenBroker()
        broker.accept_token(self.turn("s-1"), "abc")

        assert broker.obtain_token(self.turn("s-1")) == TokenResponse(token="abc")
        assert isinstance(broker.obtain_token(self.turn("s-2")), SignInRequired)

    def test_sign_out_drops_default_token(self):
        broker = InMemoryTokenBroker(default_token="seed")
        assert broker.obtain_token(self.turn()) == TokenResponse(token="seed")

        broker.sign_out(self.turn())

        assert isinstance(broker.obtain_token(self.turn()), SignInRequired)


class TestConsoleHost:
    """Test the console driver."""

    def test_parse_line(self):
        assert parse_line("  ", "s", "u") is None
        assert parse_line("/token abc", "s", "u").token == "abc"
        assert parse_line("/signed-in", "s", "u").signin_completed is True
        assert parse_line(" carol@x.com ", "s", "u").text == "carol@x.com"

    def test_run_console_stops_at_quit(self):
        manager = Mock()
        manager.handle_turn.return_value = TurnOutcome(
            messages=[OutboundMessage(text="Pick one", choices=["a", "b"])],
            status=TurnStatus.WAITING,
        )
        out = io.StringIO()

        run_console(manager, "s", "u", source=io.StringIO("hi\n\n/quit\nignored\n"), out=out)

        assert manager.handle_turn.call_count == 1
        assert "bot> Pick one\n  1. a\n  2. b" in out.getvalue()
