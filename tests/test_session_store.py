"""
Tests for the session state stores.

Tests cover:
- Merge-upsert creating and updating meeting requests
- Preservation of fields absent from an update
- Key immutability
- Lookup errors
- Flow checkpoint save/load/clear
- Wrapping of SQLAlchemy errors
"""
import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock

from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from models.database import MeetingRequestRecord
from models.schemas import FlowCheckpoint, InputKind, MeetingRequest
from services.session_store import MeetingRequestStore, FlowCheckpointStore
from error_handling.exceptions import (
    MeetingRequestNotFoundError,
    NullRecordError,
    StorageFailure,
)


OWNER = "organizer@x.com"
SESSION = "19:abc@thread.v2"


def partial(**fields) -> MeetingRequest:
    return MeetingRequest(owner_key=OWNER, session_key=SESSION, **fields)


class TestMeetingRequestStore:
    """Test merge-upsert semantics."""

    def test_upsert_creates_record(self, meeting_store):
        merged = meeting_store.upsert_merge(partial())

        assert merged.owner_key == OWNER
        assert merged.session_key == SESSION
        assert merged.attendees is None

    def test_upsert_preserves_untouched_fields(self, meeting_store):
        meeting_store.upsert_merge(partial(attendees=["a@x.com"], duration_hours=1.0))

        merged = meeting_store.upsert_merge(partial(duration_hours=2.0))

        assert merged.attendees == ["a@x.com"]
        assert merged.duration_hours == 2.0

    def test_explicit_none_overwrites(self, meeting_store):
        meeting_store.upsert_merge(partial(title="Sync"))

        merged = meeting_store.upsert_merge(partial(title=None))

        assert merged.title is None

    def test_attendees_are_stored_comma_joined(self, meeting_store, db_session_factory_check):
        meeting_store.upsert_merge(partial(attendees=["a@x.com", "b@x.com"]))

        assert db_session_factory_check(OWNER, SESSION).attendees == "a@x.com,b@x.com"
        assert meeting_store.get(OWNER, SESSION).attendees == ["a@x.com", "b@x.com"]

    def test_null_record_rejected(self, meeting_store):
        with pytest.raises(NullRecordError):
            meeting_store.upsert_merge(None)

    def test_get_missing_record(self, meeting_store):
        with pytest.raises(MeetingRequestNotFoundError) as exc_info:
            meeting_store.get(OWNER, "unknown")

        assert exc_info.value.session_key == "unknown"

    def test_records_are_scoped_by_both_keys(self, meeting_store):
        meeting_store.upsert_merge(partial(title="mine"))
        meeting_store.upsert_merge(MeetingRequest(owner_key="other@x.com", session_key=SESSION, title="theirs"))

        assert meeting_store.get(OWNER, SESSION).title == "mine"
        assert meeting_store.get("other@x.com", SESSION).title == "theirs"

    def test_database_error_raised_as_storage_failure(self):
        session = MagicMock()
        session.get.side_effect = OperationalError("SELECT", {}, Exception("locked"))
        store = MeetingRequestStore(lambda: session)

        with pytest.raises(StorageFailure) as exc_info:
            store.upsert_merge(partial(title="x"))

        assert exc_info.value.operation == "upsert_merge"
        session.rollback.assert_called_once()
        session.close.assert_called_once()


class TestMeetingRequestModel:
    """Test the pydantic model guarding the record."""

    def test_keys_are_immutable(self):
        request = partial(title="Sync")

        with pytest.raises(ValidationError):
            request.owner_key = "someone@x.com"

    def test_updated_fields_excludes_keys(self):
        assert partial(duration_hours=1.5).updated_fields() == {"duration_hours": 1.5}

    @pytest.mark.parametrize("hours", [0, 8, -1, float("inf"), float("nan")])
    def test_invalid_duration_rejected(self, hours):
        with pytest.raises(ValidationError):
            partial(duration_hours=hours)

    def test_attendee_with_comma_rejected(self):
        with pytest.raises(ValidationError):
            partial(attendees=["a@x.com,b@x.com"])


class TestFlowCheckpointStore:
    """Test checkpoint persistence."""

    def make_checkpoint(self, step="collect_duration", expects=InputKind.NUMBER) -> FlowCheckpoint:
        return FlowCheckpoint(
            session_key=SESSION,
            flow_id="flow-1",
            owner_key=OWNER,
            step=step,
            expects=expects,
            suspended_at=datetime(2024, 12, 1, 12, 0, tzinfo=timezone.utc),
        )

    def test_load_without_checkpoint(self, checkpoint_store):
        assert checkpoint_store.load(SESSION) is None

    def test_save_and_load(self, checkpoint_store):
        checkpoint_store.save(self.make_checkpoint())

        loaded = checkpoint_store.load(SESSION)

        assert loaded == self.make_checkpoint()
        assert loaded.suspended_at.tzinfo is not None

    def test_save_replaces_previous_step(self, checkpoint_store):
        checkpoint_store.save(self.make_checkpoint())
        checkpoint_store.save(self.make_checkpoint(step="find_candidate_slots", expects=InputKind.CHOICE))

        loaded = checkpoint_store.load(SESSION)

        assert loaded.step == "find_candidate_slots"
        assert loaded.expects == InputKind.CHOICE

    def test_sign_in_timeout_is_kept(self, checkpoint_store):
        checkpoint = self.make_checkpoint(step="sign_in", expects=InputKind.TOKEN).model_copy(
            update={"timeout_seconds": 60}
        )
        checkpoint_store.save(checkpoint)

        assert checkpoint_store.load(SESSION).timeout_seconds == 60

    def test_clear(self, checkpoint_store):
        checkpoint_store.save(self.make_checkpoint())

        checkpoint_store.clear(SESSION)
        checkpoint_store.clear(SESSION)

        assert checkpoint_store.load(SESSION) is None


@pytest.fixture
def db_session_factory_check(session_factory):
    """
    Read a raw MeetingRequestRecord row, bypassing the store.
    """
    def _read(owner_key, session_key) -> MeetingRequestRecord:
        session = session_factory()
        try:
            return session.get(MeetingRequestRecord, {"owner_key": owner_key, "session_key": session_key})
        finally:
            session.close()
    return _read
