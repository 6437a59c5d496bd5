"""
Proposal Service: creation and read paths for scheduling proposals.

Creation writes the proposal, its slots and its respondents in one unit.
Reads authorize against the proposal's own space on every call.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    ProposalRespondent,
    ProposalSlot,
    ProposalStatus,
    RespondentSide,
    ResponseValue,
    SchedulingProposal,
    SpaceRole,
    VideoProvider,
    utc_now,
)
from .errors import ForbiddenError, InvalidArgumentError, NotFoundError
from .proposal_store import ProposalStore, as_aware, is_expired

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000
MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 480
MIN_SLOTS = 2
MAX_SLOTS = 5
MIN_RESPONDENTS = 1
MAX_RESPONDENTS = 50

# Roles allowed to open a negotiation; clients only answer
PROPOSER_ROLES = frozenset({SpaceRole.ADMIN, SpaceRole.EDITOR, SpaceRole.MEMBER})


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class SlotInput:
    start_at: datetime
    end_at: datetime


@dataclass
class RespondentInput:
    user_id: UUID
    side: RespondentSide | str
    is_required: bool = True


@dataclass
class CreateProposalInput:
    """Input for opening a negotiation."""
    space_id: UUID
    title: str
    duration_minutes: int
    slots: list[SlotInput]
    respondents: list[RespondentInput]
    description: str | None = None
    expires_at: datetime | None = None
    video_provider: VideoProvider | str | None = None


@dataclass
class ProposalSummary:
    proposal: SchedulingProposal
    respondent_count: int
    response_count: int


@dataclass
class PortalProposalSummary:
    proposal: SchedulingProposal
    my_respondent_id: UUID
    answered_slots: int
    total_slots: int

    @property
    def has_responded(self) -> bool:
        return self.answered_slots > 0


@dataclass
class RespondentView:
    respondent: ProposalRespondent
    display_name: str
    email: str | None = None
    avatar_url: str | None = None


@dataclass
class ResponseView:
    respondent_id: UUID
    user_id: UUID
    display_name: str
    side: RespondentSide
    response: ResponseValue
    responded_at: datetime


@dataclass
class SlotView:
    slot: ProposalSlot
    responses: list[ResponseView] = field(default_factory=list)


@dataclass
class ProposalDetail:
    """A proposal with every slot's answers and display names resolved."""
    proposal: SchedulingProposal
    slots: list[SlotView]
    respondents: list[RespondentView]
    is_expired: bool


# =============================================================================
# SERVICE
# =============================================================================


class ProposalService:
    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session = session
        self._store = ProposalStore(session)
        self._clock = clock

    async def create_proposal(
        self,
        input: CreateProposalInput,
        user_id: UUID,
    ) -> SchedulingProposal:
        space = await self._store.get_space(input.space_id)
        if not space:
            raise NotFoundError(f"Space {input.space_id} not found", code="space_not_found")

        membership = await self._store.get_membership(input.space_id, user_id)
        if not membership or membership.role not in PROPOSER_ROLES:
            raise ForbiddenError(
                "Only internal space members can propose meetings",
                code="not_a_proposer",
            )

        title = (input.title or "").strip()
        if not 1 <= len(title) <= TITLE_MAX_LENGTH:
            raise InvalidArgumentError(
                f"Title must be 1-{TITLE_MAX_LENGTH} characters", code="invalid_title"
            )
        if input.description and len(input.description) > DESCRIPTION_MAX_LENGTH:
            raise InvalidArgumentError(
                f"Description must be at most {DESCRIPTION_MAX_LENGTH} characters",
                code="invalid_description",
            )
        if not MIN_DURATION_MINUTES <= input.duration_minutes <= MAX_DURATION_MINUTES:
            raise InvalidArgumentError(
                f"Duration must be between {MIN_DURATION_MINUTES} and "
                f"{MAX_DURATION_MINUTES} minutes",
                code="invalid_duration",
            )

        now = self._clock()
        self._validate_slots(input.slots, now)
        sides = self._validate_respondents(input.respondents)
        video_provider = self._parse_video_provider(input.video_provider)

        proposal = SchedulingProposal(
            organization_id=space.organization_id,
            space_id=space.id,
            title=title,
            description=input.description or None,
            duration_minutes=input.duration_minutes,
            status=ProposalStatus.OPEN,
            version=1,
            video_provider=video_provider,
            expires_at=input.expires_at,
            created_by=user_id,
            slots=[
                ProposalSlot(start_at=s.start_at, end_at=s.end_at, slot_order=i)
                for i, s in enumerate(input.slots)
            ],
            respondents=[
                ProposalRespondent(user_id=r.user_id, side=side, is_required=r.is_required)
                for r, side in zip(input.respondents, sides)
            ],
        )
        await self._store.add_proposal(proposal)

        logger.info(
            f"Proposal {proposal.id} created in space {space.id} by {user_id} "
            f"({len(input.slots)} slots, {len(input.respondents)} respondents)"
        )
        return proposal

    def _validate_slots(self, slots: list[SlotInput], now: datetime) -> None:
        if not MIN_SLOTS <= len(slots) <= MAX_SLOTS:
            raise InvalidArgumentError(
                f"Must propose between {MIN_SLOTS} and {MAX_SLOTS} slots",
                code="invalid_slot_count",
                details={"received": len(slots)},
            )
        for index, slot in enumerate(slots):
            if as_aware(slot.end_at) <= as_aware(slot.start_at):
                raise InvalidArgumentError(
                    "Slot end must be after its start",
                    code="invalid_slot_range",
                    details={"index": index},
                )
            if as_aware(slot.start_at) <= as_aware(now):
                raise InvalidArgumentError(
                    "Slots must start in the future",
                    code="slot_in_past",
                    details={"index": index},
                )

    def _validate_respondents(self, respondents: list[RespondentInput]) -> list[RespondentSide]:
        if not MIN_RESPONDENTS <= len(respondents) <= MAX_RESPONDENTS:
            raise InvalidArgumentError(
                f"Must invite between {MIN_RESPONDENTS} and {MAX_RESPONDENTS} respondents",
                code="invalid_respondent_count",
                details={"received": len(respondents)},
            )

        sides = []
        for r in respondents:
            try:
                sides.append(RespondentSide(r.side))
            except ValueError:
                raise InvalidArgumentError(
                    "Respondent side must be internal or client",
                    code="invalid_side",
                    details={"user_id": str(r.user_id), "side": str(r.side)},
                )

        user_ids = [r.user_id for r in respondents]
        if len(set(user_ids)) != len(user_ids):
            raise InvalidArgumentError("Duplicate respondent", code="duplicate_respondent")

        if RespondentSide.CLIENT not in sides:
            raise InvalidArgumentError(
                "At least one client-side respondent is required",
                code="client_respondent_required",
            )
        return sides

    @staticmethod
    def _parse_video_provider(value: VideoProvider | str | None) -> VideoProvider | None:
        if not value:
            return None
        try:
            return VideoProvider(value)
        except ValueError:
            raise InvalidArgumentError(
                f"Unknown video provider: {value}", code="invalid_video_provider"
            )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_proposals(
        self,
        space_id: UUID,
        user_id: UUID,
        status: ProposalStatus | None = None,
        limit: int = 50,
    ) -> list[ProposalSummary]:
        await self._require_member(space_id, user_id)

        proposals = await self._store.list_proposals(space_id, status=status, limit=limit)
        counts = await self._store.count_responding_respondents([p.id for p in proposals])
        return [
            ProposalSummary(
                proposal=p,
                respondent_count=len(p.respondents),
                response_count=counts.get(p.id, 0),
            )
            for p in proposals
        ]

    async def list_portal_proposals(
        self,
        user_id: UUID,
        space_id: UUID | None = None,
    ) -> list[PortalProposalSummary]:
        """Proposals a client-side member has been asked to answer."""
        memberships = await self._store.get_client_memberships(user_id, space_id)
        if not memberships:
            raise ForbiddenError(
                "Client portal access requires a client membership",
                code="not_client_member",
            )
        client_spaces = {m.space_id for m in memberships}

        proposals = [
            p for p in await self._store.list_proposals_for_respondent(user_id, space_id)
            if p.space_id in client_spaces
        ]
        mine = {
            p.id: next(r for r in p.respondents if r.user_id == user_id)
            for p in proposals
        }
        answered = await self._store.get_answered_slot_ids([r.id for r in mine.values()])

        items = []
        for p in proposals:
            slot_ids = {s.id for s in p.slots}
            items.append(
                PortalProposalSummary(
                    proposal=p,
                    my_respondent_id=mine[p.id].id,
                    answered_slots=len(slot_ids & answered),
                    total_slots=len(slot_ids),
                )
            )
        return items

    async def get_detail(self, proposal_id: UUID, user_id: UUID) -> ProposalDetail:
        proposal = await self._store.get_proposal_or_raise(proposal_id, with_details=True)
        await self._require_member(proposal.space_id, user_id)

        # One lookup for every participant's profile
        users = await self._store.get_users(r.user_id for r in proposal.respondents)
        respondents = {r.id: r for r in proposal.respondents}

        def name_of(user_id: UUID) -> str:
            user = users.get(user_id)
            return user.display_name if user else ""

        slots = []
        for slot in proposal.slots:
            views = []
            for resp in slot.responses:
                respondent = respondents.get(resp.respondent_id)
                if respondent is None:
                    continue
                views.append(
                    ResponseView(
                        respondent_id=respondent.id,
                        user_id=respondent.user_id,
                        display_name=name_of(respondent.user_id),
                        side=respondent.side,
                        response=resp.response,
                        responded_at=resp.responded_at,
                    )
                )
            slots.append(SlotView(slot=slot, responses=views))

        return ProposalDetail(
            proposal=proposal,
            slots=slots,
            respondents=[
                RespondentView(
                    respondent=r,
                    display_name=name_of(r.user_id),
                    email=users[r.user_id].email if r.user_id in users else None,
                    avatar_url=users[r.user_id].avatar_url if r.user_id in users else None,
                )
                for r in proposal.respondents
            ],
            is_expired=is_expired(proposal, self._clock()),
        )

    async def _require_member(self, space_id: UUID, user_id: UUID) -> None:
        if not await self._store.get_membership(space_id, user_id):
            raise ForbiddenError("Not a member of this space", code="not_a_member")
