"""
Tests for the Confirmation Coordinator.

These tests verify:
1. AGREEMENT: every required respondent must agree on the slot
2. EXACTLY ONCE: concurrent confirmations produce a single winner
3. BEST EFFORT VIDEO: provider failures never undo a confirmation
4. CANCEL: only while open, and never alongside a confirmation
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from slot_negotiation.integrations.video import (
    VideoConferenceProvider,
    VideoConferenceRegistry,
    VideoMeetingResult,
    VideoProviderError,
)
from slot_negotiation.models import (
    Meeting,
    ProposalStatus,
    RespondentSide,
    VideoProvider,
    utc_now,
)
from slot_negotiation.services import (
    ConfirmationCoordinator,
    ConfirmationResult,
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    ProposalStore,
    ResponseCollector,
    ResponseInput,
)


# =============================================================================
# FIXTURES
# =============================================================================


class FakeVideoProvider(VideoConferenceProvider):
    name = VideoProvider.ZOOM

    def __init__(self, configured: bool = True, fail: bool = False):
        self.configured = configured
        self.fail = fail
        self.calls = []

    def is_configured(self) -> bool:
        return self.configured

    async def create_meeting(self, params):
        self.calls.append(params)
        if self.fail:
            raise VideoProviderError("Zoom API error (503)")
        return VideoMeetingResult(
            meeting_url="https://zoom.example.com/j/98765",
            external_meeting_id="98765",
        )

    async def cancel_meeting(self, external_meeting_id):
        pass


def registry_with(*providers) -> VideoConferenceRegistry:
    registry = VideoConferenceRegistry()
    for provider in providers:
        registry.register(provider)
    return registry


def coordinator_for(session, *providers) -> ConfirmationCoordinator:
    return ConfirmationCoordinator(session, video_registry=registry_with(*providers))


async def answer(session, proposal, user_id, answers: dict[int, str]) -> None:
    """Submit ``{slot_index: value}`` for one respondent and commit."""
    await ResponseCollector(session).submit_responses(
        proposal.id,
        user_id,
        [
            ResponseInput(slot_id=proposal.slots[index].id, response=value)
            for index, value in answers.items()
        ],
    )
    await session.commit()


async def count_meetings(session) -> int:
    result = await session.execute(select(func.count()).select_from(Meeting))
    return result.scalar_one()


# =============================================================================
# TEST: AUTHORIZATION
# =============================================================================


class TestAuthorization:
    async def test_creator_can_confirm(self, session, world, make_proposal):
        proposal = await make_proposal()
        await answer(session, proposal, world.internal_id, {0: "available"})
        await answer(session, proposal, world.client_id, {0: "available"})

        result = await coordinator_for(session).confirm(
            proposal.id, proposal.slots[0].id, world.creator_id
        )

        assert isinstance(result, ConfirmationResult)

    async def test_space_admin_can_confirm(self, session, world, make_proposal):
        proposal = await make_proposal()
        await answer(session, proposal, world.internal_id, {0: "available"})
        await answer(session, proposal, world.client_id, {0: "available"})

        await coordinator_for(session).confirm(
            proposal.id, proposal.slots[0].id, world.admin_id
        )

    @pytest.mark.parametrize("who", ["internal_id", "client_id", "outsider_id"])
    async def test_others_cannot_confirm(self, session, world, make_proposal, who):
        proposal = await make_proposal()

        with pytest.raises(ForbiddenError) as exc:
            await coordinator_for(session).confirm(
                proposal.id, proposal.slots[0].id, getattr(world, who)
            )
        assert exc.value.code == "not_creator_or_admin"


# =============================================================================
# TEST: AGREEMENT GATE
# =============================================================================


class TestAgreementGate:
    async def test_two_of_three_required_is_not_enough(self, session, world, make_proposal):
        proposal = await make_proposal(respondents=[
            (world.internal_id, RespondentSide.INTERNAL, True),
            (world.admin_id, RespondentSide.INTERNAL, True),
            (world.client_id, RespondentSide.CLIENT, True),
        ])
        await answer(session, proposal, world.internal_id, {0: "available"})
        await answer(session, proposal, world.client_id, {0: "available"})

        with pytest.raises(InvalidArgumentError) as exc:
            await coordinator_for(session).confirm(
                proposal.id, proposal.slots[0].id, world.creator_id
            )

        assert exc.value.code == "not_all_agreed"
        assert exc.value.details == {"required": 3, "eligible": 2}

        stored = await ProposalStore(session).get_proposal(proposal.id)
        assert stored.status == ProposalStatus.OPEN
        assert stored.confirmed_slot_id is None
        assert await count_meetings(session) == 0

    async def test_unavailable_blocks(self, session, world, make_proposal):
        proposal = await make_proposal()
        await answer(session, proposal, world.internal_id, {0: "available"})
        await answer(session, proposal, world.client_id, {0: "unavailable"})

        with pytest.raises(InvalidArgumentError):
            await coordinator_for(session).confirm(
                proposal.id, proposal.slots[0].id, world.creator_id
            )

    async def test_optional_respondent_does_not_block(self, session, world, make_proposal):
        proposal = await make_proposal(respondents=[
            (world.internal_id, RespondentSide.INTERNAL, False),
            (world.client_id, RespondentSide.CLIENT, True),
        ])
        await answer(session, proposal, world.client_id, {1: "unavailable_but_proceed"})

        result = await coordinator_for(session).confirm(
            proposal.id, proposal.slots[1].id, world.creator_id
        )

        assert result.slot_start is not None

    async def test_answer_withdrawn_before_status_flip(
        self, session, session_factory, world, make_proposal, monkeypatch
    ):
        """A respondent turning 'unavailable' after the first read still blocks."""
        proposal = await make_proposal()
        slot_id = proposal.slots[0].id
        await answer(session, proposal, world.internal_id, {0: "available"})
        await answer(session, proposal, world.client_id, {0: "available"})

        coordinator = coordinator_for(session)
        transition = coordinator._store.transition_status

        async def withdraw_then_transition(*args, **kwargs):
            async with session_factory() as other:
                await ResponseCollector(other).submit_responses(
                    proposal.id,
                    world.client_id,
                    [ResponseInput(slot_id=slot_id, response="unavailable")],
                )
                await other.commit()
            return await transition(*args, **kwargs)

        monkeypatch.setattr(coordinator._store, "transition_status", withdraw_then_transition)

        with pytest.raises(InvalidArgumentError) as exc:
            await coordinator.confirm(proposal.id, slot_id, world.creator_id)

        assert exc.value.code == "not_all_agreed"
        assert exc.value.details == {"required": 2, "eligible": 1}
        stored = await ProposalStore(session).get_proposal(proposal.id)
        assert stored.status == ProposalStatus.OPEN
        assert stored.confirmed_slot_id is None
        assert await count_meetings(session) == 0


# =============================================================================
# TEST: CONFIRM
# =============================================================================


class TestConfirm:
    async def test_confirm_records_slot_and_meeting(self, session, world, make_proposal):
        proposal = await make_proposal()
        slot = proposal.slots[2]
        await answer(session, proposal, world.internal_id, {2: "available"})
        await answer(session, proposal, world.client_id, {2: "available"})

        result = await coordinator_for(session).confirm(proposal.id, slot.id, world.creator_id)

        stored = await ProposalStore(session).get_proposal(proposal.id)
        assert stored.status == ProposalStatus.CONFIRMED
        assert stored.confirmed_slot_id == slot.id
        assert stored.confirmed_meeting_id == result.meeting_id
        assert stored.confirmed_by == world.creator_id
        assert stored.version == 2

        meeting = await session.get(Meeting, result.meeting_id)
        assert meeting.proposal_id == proposal.id
        assert meeting.title == proposal.title
        assert result.meeting_url is None
        assert result.external_meeting_id is None

    async def test_unknown_slot(self, session, world, make_proposal):
        proposal = await make_proposal()

        with pytest.raises(NotFoundError) as exc:
            await coordinator_for(session).confirm(proposal.id, uuid4(), world.creator_id)
        assert exc.value.code == "slot_not_found"

    async def test_slot_of_another_proposal(self, session, world, make_proposal):
        proposal = await make_proposal()
        other = await make_proposal(title="Other meeting")

        with pytest.raises(InvalidArgumentError) as exc:
            await coordinator_for(session).confirm(
                proposal.id, other.slots[0].id, world.creator_id
            )
        assert exc.value.code == "slot_not_in_proposal"

    async def test_unknown_proposal(self, session, world):
        with pytest.raises(NotFoundError):
            await coordinator_for(session).confirm(uuid4(), uuid4(), world.creator_id)

    async def test_second_confirm_conflicts(self, session, world, make_proposal):
        proposal = await make_proposal()
        await answer(session, proposal, world.internal_id, {0: "available", 1: "available"})
        await answer(session, proposal, world.client_id, {0: "available", 1: "available"})
        coordinator = coordinator_for(session)

        await coordinator.confirm(proposal.id, proposal.slots[0].id, world.creator_id)
        with pytest.raises(ConflictError) as exc:
            await coordinator.confirm(proposal.id, proposal.slots[1].id, world.creator_id)

        assert exc.value.code == "proposal_not_open"
        assert exc.value.details["current_status"] == "confirmed"

    async def test_expired_proposal_cannot_be_confirmed(self, session, world, make_proposal):
        expires_at = utc_now() + timedelta(days=1)
        proposal = await make_proposal(expires_at=expires_at)
        await answer(session, proposal, world.internal_id, {0: "available"})
        await answer(session, proposal, world.client_id, {0: "available"})

        coordinator = ConfirmationCoordinator(
            session,
            video_registry=registry_with(),
            clock=lambda: expires_at + timedelta(minutes=1),
        )
        with pytest.raises(ConflictError) as exc:
            await coordinator.confirm(proposal.id, proposal.slots[0].id, world.creator_id)

        assert exc.value.code == "expired"
        stored = await ProposalStore(session).get_proposal(proposal.id)
        assert stored.status == ProposalStatus.OPEN


# =============================================================================
# TEST: EXACTLY-ONCE CONFIRMATION
# =============================================================================


class TestExactlyOnce:
    async def test_concurrent_confirms_have_one_winner(
        self, session, session_factory, world, make_proposal
    ):
        """Two sessions confirm different slots at once; one wins, one conflicts."""
        proposal = await make_proposal()
        await answer(session, proposal, world.internal_id, {0: "available", 1: "available"})
        await answer(session, proposal, world.client_id, {0: "available", 1: "available"})

        async def attempt(slot_index: int):
            async with session_factory() as s:
                try:
                    return await coordinator_for(s).confirm(
                        proposal.id, proposal.slots[slot_index].id, world.creator_id
                    )
                except ConflictError:
                    await s.rollback()
                    raise

        outcomes = await asyncio.gather(attempt(0), attempt(1), return_exceptions=True)

        wins = [o for o in outcomes if isinstance(o, ConfirmationResult)]
        conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
        assert len(wins) == 1
        assert len(conflicts) == 1
        assert conflicts[0].code == "proposal_not_open"

        stored = await ProposalStore(session).get_proposal(proposal.id)
        assert stored.status == ProposalStatus.CONFIRMED
        assert stored.confirmed_meeting_id == wins[0].meeting_id
        assert await count_meetings(session) == 1

    async def test_conditioned_transition_rejects_stale_reader(
        self, session_factory, world, make_proposal
    ):
        """A writer that read 'open' before another commit cannot flip the status."""
        proposal = await make_proposal()

        async with session_factory() as first, session_factory() as second:
            stale = await ProposalStore(second).get_proposal(proposal.id)
            assert stale.status == ProposalStatus.OPEN

            assert await ProposalStore(first).transition_status(
                proposal.id, expected=ProposalStatus.OPEN, new=ProposalStatus.CANCELLED
            )
            await first.commit()

            assert not await ProposalStore(second).transition_status(
                proposal.id,
                expected=ProposalStatus.OPEN,
                new=ProposalStatus.CONFIRMED,
                confirmed_slot_id=proposal.slots[0].id,
            )
            await second.rollback()

    async def test_confirm_racing_cancel(self, session, session_factory, world, make_proposal):
        proposal = await make_proposal()
        await answer(session, proposal, world.internal_id, {0: "available"})
        await answer(session, proposal, world.client_id, {0: "available"})

        async def confirm():
            async with session_factory() as s:
                return await coordinator_for(s).confirm(
                    proposal.id, proposal.slots[0].id, world.creator_id
                )

        async def cancel():
            async with session_factory() as s:
                return await coordinator_for(s).cancel(proposal.id, world.admin_id)

        outcomes = await asyncio.gather(confirm(), cancel(), return_exceptions=True)

        conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
        assert len(conflicts) == 1

        stored = await ProposalStore(session).get_proposal(proposal.id)
        if isinstance(outcomes[0], ConfirmationResult):
            assert stored.status == ProposalStatus.CONFIRMED
        else:
            assert stored.status == ProposalStatus.CANCELLED
            assert stored.confirmed_slot_id is None


# =============================================================================
# TEST: VIDEO PROVISIONING
# =============================================================================


class TestVideoProvisioning:
    async def _agreed_proposal(self, session, world, make_proposal, **kwargs):
        proposal = await make_proposal(**kwargs)
        await answer(session, proposal, world.internal_id, {0: "available"})
        await answer(session, proposal, world.client_id, {0: "available"})
        return proposal

    async def test_room_is_stored_on_proposal_and_meeting(self, session, world, make_proposal):
        proposal = await self._agreed_proposal(
            session, world, make_proposal, video_provider=VideoProvider.ZOOM
        )
        slot_id = proposal.slots[0].id
        provider = FakeVideoProvider()

        result = await coordinator_for(session, provider).confirm(
            proposal.id, slot_id, world.creator_id
        )

        assert result.meeting_url == "https://zoom.example.com/j/98765"
        assert result.external_meeting_id == "98765"

        params = provider.calls[0]
        assert params.idempotency_key == f"proposal-{proposal.id}-slot-{slot_id}"
        assert sorted(p.email for p in params.participants) == [
            "client@example.com",
            "internal@example.com",
        ]
        assert params.duration_minutes == 60

        stored = await ProposalStore(session).get_proposal(proposal.id)
        assert stored.meeting_url == result.meeting_url
        assert stored.external_meeting_id == "98765"
        meeting = await session.get(Meeting, result.meeting_id, populate_existing=True)
        assert meeting.meeting_url == result.meeting_url
        assert meeting.video_provider == VideoProvider.ZOOM

    async def test_provider_failure_does_not_undo_confirmation(
        self, session, world, make_proposal
    ):
        proposal = await self._agreed_proposal(
            session, world, make_proposal, video_provider=VideoProvider.ZOOM
        )
        provider = FakeVideoProvider(fail=True)

        result = await coordinator_for(session, provider).confirm(
            proposal.id, proposal.slots[0].id, world.creator_id
        )

        assert len(provider.calls) == 1
        assert result.meeting_url is None
        assert result.external_meeting_id is None
        stored = await ProposalStore(session).get_proposal(proposal.id)
        assert stored.status == ProposalStatus.CONFIRMED
        assert stored.meeting_url is None
        assert await count_meetings(session) == 1

    async def test_unconfigured_provider_is_skipped(self, session, world, make_proposal):
        proposal = await self._agreed_proposal(
            session, world, make_proposal, video_provider=VideoProvider.ZOOM
        )
        provider = FakeVideoProvider(configured=False)

        result = await coordinator_for(session, provider).confirm(
            proposal.id, proposal.slots[0].id, world.creator_id
        )

        assert provider.calls == []
        assert result.meeting_url is None

    async def test_unregistered_provider_is_skipped(self, session, world, make_proposal):
        proposal = await self._agreed_proposal(
            session, world, make_proposal, video_provider=VideoProvider.GOOGLE_MEET
        )
        provider = FakeVideoProvider()

        result = await coordinator_for(session, provider).confirm(
            proposal.id, proposal.slots[0].id, world.creator_id
        )

        assert provider.calls == []
        assert result.meeting_url is None
        stored = await ProposalStore(session).get_proposal(proposal.id)
        assert stored.status == ProposalStatus.CONFIRMED

    async def test_no_provider_selected(self, session, world, make_proposal):
        proposal = await self._agreed_proposal(session, world, make_proposal)
        provider = FakeVideoProvider()

        await coordinator_for(session, provider).confirm(
            proposal.id, proposal.slots[0].id, world.creator_id
        )

        assert provider.calls == []


# =============================================================================
# TEST: END-TO-END SCENARIO
# =============================================================================


class TestEndToEnd:
    async def test_internal_and_client_agree_on_second_slot(
        self, session, world, make_proposal
    ):
        """
        A (internal) answers only slot 2. B (client) accepts slot 1 and
        reluctantly slot 2. Slot 1 cannot be confirmed, slot 2 can.
        """
        proposal = await make_proposal(slot_count=3)
        slot1, slot2 = proposal.slots[0], proposal.slots[1]

        await answer(session, proposal, world.internal_id, {1: "available"})
        await answer(
            session, proposal, world.client_id,
            {0: "available", 1: "unavailable_but_proceed"},
        )
        coordinator = coordinator_for(session)

        with pytest.raises(InvalidArgumentError) as exc:
            await coordinator.confirm(proposal.id, slot1.id, world.creator_id)
        assert exc.value.code == "not_all_agreed"
        assert exc.value.details == {"required": 2, "eligible": 1}

        result = await coordinator.confirm(proposal.id, slot2.id, world.creator_id)

        assert result.slot_start == slot2.start_at
        assert result.slot_end == slot2.end_at
        stored = await ProposalStore(session).get_proposal(proposal.id)
        assert stored.status == ProposalStatus.CONFIRMED
        assert stored.confirmed_slot_id == slot2.id


# =============================================================================
# TEST: CANCEL
# =============================================================================


class TestCancel:
    async def test_creator_cancels_open_proposal(self, session, world, make_proposal):
        proposal = await make_proposal()

        await coordinator_for(session).cancel(proposal.id, world.creator_id)

        stored = await ProposalStore(session).get_proposal(proposal.id)
        assert stored.status == ProposalStatus.CANCELLED
        assert stored.version == 2

    async def test_cancel_after_confirm_conflicts(self, session, world, make_proposal):
        proposal = await make_proposal()
        await answer(session, proposal, world.internal_id, {0: "available"})
        await answer(session, proposal, world.client_id, {0: "available"})
        coordinator = coordinator_for(session)
        await coordinator.confirm(proposal.id, proposal.slots[0].id, world.creator_id)

        with pytest.raises(ConflictError) as exc:
            await coordinator.cancel(proposal.id, world.admin_id)
        assert exc.value.code == "proposal_not_open"

    async def test_confirm_after_cancel_conflicts(self, session, world, make_proposal):
        proposal = await make_proposal()
        await answer(session, proposal, world.internal_id, {0: "available"})
        await answer(session, proposal, world.client_id, {0: "available"})
        coordinator = coordinator_for(session)
        await coordinator.cancel(proposal.id, world.creator_id)

        with pytest.raises(ConflictError):
            await coordinator.confirm(proposal.id, proposal.slots[0].id, world.creator_id)

    async def test_respondent_cannot_cancel(self, session, world, make_proposal):
        proposal = await make_proposal()

        with pytest.raises(ForbiddenError):
            await coordinator_for(session).cancel(proposal.id, world.client_id)
