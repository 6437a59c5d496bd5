"""
Confirmation Coordinator: closes a negotiation on exactly one slot.

The status flip is a conditioned UPDATE (``WHERE status = 'open'``), so of
several concurrent confirm or cancel calls on one proposal exactly one
wins and the rest observe ``proposal_not_open``.

Video-room provisioning runs after the confirmation has been committed. It
is best effort: any failure is logged and the confirmation stands.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations.video import (
    CreateMeetingParams,
    Participant,
    VideoConferenceRegistry,
    get_video_registry,
)
from ..models import (
    Meeting,
    MeetingStatus,
    ProposalStatus,
    SchedulingProposal,
    SpaceRole,
    utc_now,
)
from .errors import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
)
from .proposal_store import ProposalStore, as_aware, evaluate_agreement, is_expired

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationResult:
    meeting_id: UUID
    slot_start: datetime
    slot_end: datetime
    meeting_url: str | None = None
    external_meeting_id: str | None = None


def idempotency_key(proposal_id: UUID, slot_id: UUID) -> str:
    """Provider-side key; one room per (proposal, slot) however often we retry."""
    return f"proposal-{proposal_id}-slot-{slot_id}"


class ConfirmationCoordinator:
    """Confirms or cancels proposals and provisions the video room."""

    def __init__(
        self,
        session: AsyncSession,
        video_registry: VideoConferenceRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session = session
        self._store = ProposalStore(session)
        self._registry = video_registry if video_registry is not None else get_video_registry()
        self._clock = clock

    # =========================================================================
    # CONFIRM
    # =========================================================================

    async def confirm(
        self,
        proposal_id: UUID,
        slot_id: UUID,
        user_id: UUID,
    ) -> ConfirmationResult:
        proposal = await self._store.get_proposal_or_raise(proposal_id)
        await self._authorize_manage(proposal, user_id)

        self._ensure_open(proposal)
        if is_expired(proposal, self._clock()):
            raise ConflictError("Proposal has expired", code="expired")

        slot = await self._store.get_slot(slot_id)
        if not slot:
            raise NotFoundError(f"Slot {slot_id} not found", code="slot_not_found")
        if slot.proposal_id != proposal.id:
            raise InvalidArgumentError(
                "Slot does not belong to this proposal",
                code="slot_not_in_proposal",
            )

        respondents = await self._store.get_respondents(proposal_id)
        await self._require_agreement(respondents, slot_id)

        now = self._clock()
        won = await self._store.transition_status(
            proposal_id,
            expected=ProposalStatus.OPEN,
            new=ProposalStatus.CONFIRMED,
            confirmed_slot_id=slot_id,
            confirmed_at=now,
            confirmed_by=user_id,
        )
        if not won:
            await self._session.rollback()
            logger.warning(f"Lost confirmation race on proposal {proposal_id}")
            current = await self._store.get_proposal(proposal_id)
            raise ConflictError(
                "Proposal is not open",
                code="proposal_not_open",
                details={"current_status": current.status.value if current else None},
            )

        # Answers may have changed since the first read. Response writers lock
        # the proposal row this transaction now holds, so this read is final.
        try:
            await self._require_agreement(respondents, slot_id)
        except InvalidArgumentError:
            await self._session.rollback()
            logger.warning(
                f"Agreement on slot {slot_id} withdrawn while confirming proposal {proposal_id}"
            )
            raise

        meeting = await self._store.add_meeting(
            Meeting(
                organization_id=proposal.organization_id,
                space_id=proposal.space_id,
                proposal_id=proposal.id,
                title=proposal.title,
                status=MeetingStatus.SCHEDULED,
                starts_at=slot.start_at,
                ends_at=slot.end_at,
                video_provider=proposal.video_provider,
                created_by=user_id,
            )
        )
        await self._store.link_meeting(proposal_id, meeting.id)
        await self._session.commit()

        result = ConfirmationResult(
            meeting_id=meeting.id,
            slot_start=as_aware(slot.start_at),
            slot_end=as_aware(slot.end_at),
        )
        logger.info(
            f"Proposal {proposal_id} confirmed on slot {slot_id} "
            f"by {user_id}; meeting {meeting.id}"
        )

        await self._provision_video(proposal, slot_id, result)
        return result

    async def _provision_video(
        self,
        proposal: SchedulingProposal,
        slot_id: UUID,
        result: ConfirmationResult,
    ) -> None:
        """Create the online room and store its URL. Never raises."""
        if not proposal.video_provider:
            return
        if proposal.external_meeting_id:
            logger.info(f"Proposal {proposal.id} already has a video room; skipping")
            return

        provider = self._registry.get(proposal.video_provider)
        if provider is None or not provider.is_configured():
            logger.warning(
                f"Video provider {proposal.video_provider.value} unavailable; "
                f"proposal {proposal.id} confirmed without a room"
            )
            return

        try:
            respondents = await self._store.get_respondents(proposal.id)
            users = await self._store.get_users(r.user_id for r in respondents)
            participants = [
                Participant(email=u.email, name=u.display_name)
                for u in users.values()
                if u.email
            ]

            room = await provider.create_meeting(
                CreateMeetingParams(
                    title=proposal.title,
                    start_at=result.slot_start,
                    end_at=result.slot_end,
                    idempotency_key=idempotency_key(proposal.id, slot_id),
                    participants=participants,
                    description=proposal.description,
                    created_by_user_id=str(proposal.created_by),
                )
            )

            await self._store.save_video_details(
                proposal.id,
                result.meeting_id,
                video_provider=proposal.video_provider,
                meeting_url=room.meeting_url,
                external_meeting_id=room.external_meeting_id,
            )
            await self._session.commit()
        except Exception:
            logger.exception(f"Video provisioning failed for proposal {proposal.id}")
            await self._session.rollback()
            return

        result.meeting_url = room.meeting_url
        result.external_meeting_id = room.external_meeting_id
        logger.info(
            f"Provisioned {proposal.video_provider.value} room "
            f"{room.external_meeting_id} for proposal {proposal.id}"
        )

    # =========================================================================
    # CANCEL
    # =========================================================================

    async def cancel(self, proposal_id: UUID, user_id: UUID) -> None:
        proposal = await self._store.get_proposal_or_raise(proposal_id)
        await self._authorize_manage(proposal, user_id)
        self._ensure_open(proposal)

        won = await self._store.transition_status(
            proposal_id,
            expected=ProposalStatus.OPEN,
            new=ProposalStatus.CANCELLED,
        )
        if not won:
            await self._session.rollback()
            logger.warning(f"Lost cancellation race on proposal {proposal_id}")
            raise ConflictError("Proposal is not open", code="proposal_not_open")

        await self._session.commit()
        logger.info(f"Proposal {proposal_id} cancelled by {user_id}")

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _authorize_manage(self, proposal: SchedulingProposal, user_id: UUID) -> None:
        """Creator, or an admin of the owning space."""
        if proposal.created_by == user_id:
            return
        membership = await self._store.get_membership(proposal.space_id, user_id)
        if membership and membership.role == SpaceRole.ADMIN:
            return
        raise ForbiddenError(
            "Only the creator or a space admin can do this",
            code="not_creator_or_admin",
        )

    @staticmethod
    def _ensure_open(proposal: SchedulingProposal) -> None:
        if proposal.status != ProposalStatus.OPEN:
            raise ConflictError(
                "Proposal is not open",
                code="proposal_not_open",
                details={"current_status": proposal.status.value},
            )

    async def _require_agreement(self, respondents, slot_id: UUID) -> None:
        slot_responses = await self._store.get_slot_responses(slot_id)
        agreement = evaluate_agreement(respondents, slot_responses)
        if not agreement.agreed:
            raise InvalidArgumentError(
                "Not all required respondents have agreed to this slot",
                code="not_all_agreed",
                details={"required": agreement.required, "eligible": agreement.eligible},
            )
