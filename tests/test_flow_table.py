"""
Tests for the flow table and step policies in isolation.
"""
import pytest
from unittest.mock import Mock

from conversation.context import SessionContext
from conversation.states import (
    FLOW_TABLE,
    FlowStep,
    StepPolicy,
    first_step,
    get_step_spec,
    next_step,
)
from conversation.steps import (
    Abort,
    Advance,
    AcquireTokenStep,
    CollectDurationStep,
    DispatchInviteStep,
    ResolveAttendeesStep,
    StepServices,
    Suspend,
    build_steps,
    split_attendee_queries,
)
from models.schemas import ChoiceInput, InputKind, NumberInput, TextInput, TokenInput
from services.collaborators import Ambiguous, NotFound, SignInRequired, TokenResponse, Unique
from error_handling.exceptions import (
    AttendeeAmbiguous,
    AttendeeNotFound,
    FlowStateLostError,
    InputKindMismatchError,
    TokenUnavailable,
    UserInputInvalid,
)


@pytest.fixture
def services():
    return StepServices(store=Mock(), broker=Mock(), resolver=Mock(), finder=Mock(), dispatcher=Mock())


@pytest.fixture
def ctx():
    return SessionContext(session_key="s-1", flow_id="f-1", owner_key="owner@x.com", token="tok")


class TestFlowTable:
    """Test the declarative step sequence."""

    def test_sequence_order(self):
        assert [spec.step for spec in FLOW_TABLE] == [
            FlowStep.SIGN_IN,
            FlowStep.COLLECT_ATTENDEES,
            FlowStep.TOKEN_FOR_DIRECTORY,
            FlowStep.RESOLVE_ATTENDEES,
            FlowStep.COLLECT_DURATION,
            FlowStep.TOKEN_FOR_AVAILABILITY,
            FlowStep.FIND_CANDIDATE_SLOTS,
            FlowStep.COLLECT_TITLE,
            FlowStep.COLLECT_DESCRIPTION,
            FlowStep.TOKEN_FOR_INVITE,
            FlowStep.DISPATCH_INVITE,
        ]

    def test_each_row_points_to_following_row(self):
        for current, following in zip(FLOW_TABLE, FLOW_TABLE[1:]):
            assert current.next_step == following.step
        assert FLOW_TABLE[-1].next_step is None

    def test_token_steps_share_policy(self):
        token_steps = [spec.step for spec in FLOW_TABLE if spec.policy == StepPolicy.ACQUIRE_TOKEN]
        assert token_steps == [
            FlowStep.SIGN_IN,
            FlowStep.TOKEN_FOR_DIRECTORY,
            FlowStep.TOKEN_FOR_AVAILABILITY,
            FlowStep.TOKEN_FOR_INVITE,
        ]
        assert all(get_step_spec(step).expects == InputKind.TOKEN for step in token_steps)

    def test_lookup_by_stored_string(self):
        assert get_step_spec("collect_duration").expects == InputKind.NUMBER
        assert next_step("find_candidate_slots") == FlowStep.COLLECT_TITLE
        assert first_step() == FlowStep.SIGN_IN

    def test_unknown_step_rejected(self):
        with pytest.raises(ValueError):
            get_step_spec("confirm_order")

    def test_every_step_has_a_policy(self, services):
        steps = build_steps(services, FLOW_TABLE)

        assert set(steps) == set(FlowStep)
        assert isinstance(steps[FlowStep.TOKEN_FOR_INVITE], AcquireTokenStep)
        assert steps[FlowStep.TOKEN_FOR_INVITE].name == "token_for_invite"


class TestAcquireToken:
    """Test the acquire-token policy."""

    def test_cached_token_passes_scratch_through(self, services, ctx):
        services.broker.obtain_token.return_value = TokenResponse(token="fresh")
        scratch = TextInput(text="carol@x.com")

        outcome = AcquireTokenStep(services).run(ctx, scratch)

        assert outcome == Advance(scratch)
        assert ctx.token == "fresh"
        services.store.upsert_merge.assert_not_called()

    def test_sign_in_required_holds_scratch(self, services, ctx):
        services.broker.obtain_token.return_value = SignInRequired(timeout_seconds=90)
        scratch = TextInput(text="carol@x.com")
        step = AcquireTokenStep(services)

        outcome = step.run(ctx, scratch)
        assert isinstance(outcome, Suspend)
        assert outcome.expects == InputKind.TOKEN
        assert outcome.message.text == "Please Sign In"
        assert outcome.timeout_seconds == 90

        resumed = step.resume(ctx, TokenInput(token="late"))
        assert resumed == Advance(scratch)
        assert ctx.carried is None

    def test_first_acquisition_records_owner(self, services):
        services.broker.obtain_token.return_value = TokenResponse(token="tok")
        services.resolver.current_user.return_value = "me@x.com"
        fresh = SessionContext(session_key="s-1", flow_id="f-1")

        AcquireTokenStep(services).run(fresh, None)

        assert fresh.owner_key == "me@x.com"
        written = services.store.upsert_merge.call_args.args[0]
        assert written.owner_key == "me@x.com"
        assert written.updated_fields() == {}

    def test_resume_with_wrong_kind(self, services, ctx):
        with pytest.raises(InputKindMismatchError):
            AcquireTokenStep(services).bind(FlowStep.SIGN_IN).resume(ctx, NumberInput(value=1))


class TestResolveAttendees:
    """Test the resolve-attendees policy."""

    def test_split_attendee_queries(self):
        assert split_attendee_queries(" alice , bob@x.com,, ") == ["alice", "bob@x.com"]
        assert split_attendee_queries(",") == []

    def test_all_unique_are_stored(self, services, ctx):
        services.resolver.resolve.side_effect = [Unique("a", "a@x.com"), Unique("b", "b@x.com")]

        outcome = ResolveAttendeesStep(services).run(ctx, TextInput(text="a, b"))

        assert outcome == Advance()
        written = services.store.upsert_merge.call_args.args[0]
        assert written.attendees == ["a@x.com", "b@x.com"]

    def test_not_found_names_query(self, services, ctx):
        services.resolver.resolve.side_effect = [Unique("a", "a@x.com"), NotFound("zed")]

        outcome = ResolveAttendeesStep(services).run(ctx, TextInput(text="a,zed"))

        assert isinstance(outcome, Abort)
        assert isinstance(outcome.error, AttendeeNotFound)
        assert outcome.error.query == "zed"
        services.store.upsert_merge.assert_not_called()

    def test_ambiguous_reports_count(self, services, ctx):
        services.resolver.resolve.return_value = Ambiguous("ann", 3, ["1", "2", "3"])

        outcome = ResolveAttendeesStep(services).run(ctx, TextInput(text="ann"))

        assert isinstance(outcome.error, AttendeeAmbiguous)
        assert outcome.error.count == 3

    def test_missing_carried_text_is_lost_state(self, services, ctx):
        with pytest.raises(FlowStateLostError):
            ResolveAttendeesStep(services).run(ctx, None)

    def test_no_token(self, services, ctx):
        ctx.token = None

        with pytest.raises(TokenUnavailable):
            ResolveAttendeesStep(services).run(ctx, TextInput(text="a"))


class TestCollectDuration:
    """Test the collect-duration policy."""

    def test_out_of_range_raises_user_input_invalid(self, services, ctx):
        with pytest.raises(UserInputInvalid) as exc_info:
            CollectDurationStep(services).resume(ctx, NumberInput(value=8))

        assert exc_info.value.retry_prompt == "Invalid value, please enter a proper value"
        services.store.upsert_merge.assert_not_called()

    def test_valid_value_is_stored(self, services, ctx):
        outcome = CollectDurationStep(services).resume(ctx, NumberInput(value=0.5))

        assert outcome == Advance(NumberInput(value=0.5))
        assert services.store.upsert_merge.call_args.args[0].duration_hours == 0.5


class TestDispatchInvite:
    """Test the dispatch-invite policy."""

    def test_no_token_aborts(self, services, ctx):
        ctx.token = None

        outcome = DispatchInviteStep(services).run(ctx, None)

        assert isinstance(outcome.error, TokenUnavailable)
        services.dispatcher.create_event.assert_not_called()

    def test_missing_candidates_is_lost_state(self, services, ctx):
        services.store.get.return_value = Mock(selected_slot_index=0)

        with pytest.raises(FlowStateLostError):
            DispatchInviteStep(services).run(ctx, None)

    def test_choice_scratch_not_needed(self, services, ctx, slots):
        ctx.candidates = slots
        services.store.get.return_value = Mock(
            selected_slot_index=1, attendees=["c@x.com"], title="T", description="D"
        )

        DispatchInviteStep(services).run(ctx, ChoiceInput(index=0))

        services.dispatcher.create_event.assert_called_once_with(slots[1], ["c@x.com"], "T", "D", "tok")
