"""
Proposal Store: persistence primitives for the negotiation aggregate.

A proposal, its slots, its respondents and their responses always change
scoped by proposal id. Callers re-read through this store at the start of
every operation; nothing here caches rows between requests.

Two write primitives carry the concurrency guarantees:
- ``upsert_responses`` writes a whole batch in one statement keyed by
  (slot_id, respondent_id), so resubmission overwrites instead of duplicating
- ``transition_status`` is a conditioned UPDATE that only succeeds while the
  stored status still equals the expected one
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Sequence
from uuid import UUID, uuid4

from sqlalchemy import distinct, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import (
    Meeting,
    ProposalRespondent,
    ProposalSlot,
    ProposalStatus,
    ResponseValue,
    SchedulingProposal,
    SlotResponse,
    Space,
    SpaceMembership,
    SpaceRole,
    User,
)
from .errors import InternalError, NotFoundError

# Values that count as agreeing to a slot
AGREEING_RESPONSES = frozenset({
    ResponseValue.AVAILABLE,
    ResponseValue.UNAVAILABLE_BUT_PROCEED,
})


# =============================================================================
# VALIDATION PRIMITIVES
# =============================================================================


def as_aware(moment: datetime) -> datetime:
    """Treat naive timestamps read back from the store as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def is_expired(proposal: SchedulingProposal, now: datetime) -> bool:
    """Expiry is derived from ``expires_at``, never stored as a status."""
    if proposal.expires_at is None:
        return False
    return as_aware(proposal.expires_at) < as_aware(now)


@dataclass
class AgreementResult:
    """Outcome of checking a slot against the required respondents."""
    required: int
    eligible: int
    missing_respondent_ids: list[UUID] = field(default_factory=list)

    @property
    def agreed(self) -> bool:
        return not self.missing_respondent_ids


def evaluate_agreement(
    respondents: Iterable[ProposalRespondent],
    slot_responses: Iterable[SlotResponse],
) -> AgreementResult:
    """
    Every required respondent needs an agreeing response for the slot.

    A missing response counts the same as ``unavailable``. Optional
    respondents never block.
    """
    answers = {r.respondent_id: r.response for r in slot_responses}
    required = [r for r in respondents if r.is_required]
    missing = [
        r.id for r in required
        if answers.get(r.id) not in AGREEING_RESPONSES
    ]
    return AgreementResult(
        required=len(required),
        eligible=len(required) - len(missing),
        missing_respondent_ids=missing,
    )


# =============================================================================
# STORE
# =============================================================================


@dataclass
class ResponseWrite:
    """One (slot, value) pair of a submission batch."""
    slot_id: UUID
    response: ResponseValue


class ProposalStore:
    """Data access for proposals, slots, respondents, responses and meetings."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_proposal(
        self,
        proposal_id: UUID,
        *,
        with_details: bool = False,
        for_update: bool = False,
    ) -> SchedulingProposal | None:
        """Fetch a proposal fresh from the database.

        ``populate_existing`` overwrites any stale copy held in the session,
        so state read here reflects the store at call time.

        ``for_update`` locks the row until the transaction ends, which
        orders the caller after any in-flight status transition.
        """
        query = (
            select(SchedulingProposal)
            .where(SchedulingProposal.id == proposal_id)
            .execution_options(populate_existing=True)
        )
        if with_details:
            query = query.options(
                selectinload(SchedulingProposal.slots).selectinload(ProposalSlot.responses),
                selectinload(SchedulingProposal.respondents),
            )
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def get_proposal_or_raise(
        self,
        proposal_id: UUID,
        *,
        with_details: bool = False,
        for_update: bool = False,
    ) -> SchedulingProposal:
        proposal = await self.get_proposal(
            proposal_id, with_details=with_details, for_update=for_update
        )
        if not proposal:
            raise NotFoundError(
                f"Proposal {proposal_id} not found", code="proposal_not_found"
            )
        return proposal

    async def get_slot(self, slot_id: UUID) -> ProposalSlot | None:
        result = await self._session.execute(
            select(ProposalSlot).where(ProposalSlot.id == slot_id)
        )
        return result.scalar_one_or_none()

    async def get_slot_ids(self, proposal_id: UUID) -> set[UUID]:
        """Full set of slot ids owned by a proposal."""
        result = await self._session.execute(
            select(ProposalSlot.id).where(ProposalSlot.proposal_id == proposal_id)
        )
        return set(result.scalars().all())

    async def get_respondents(self, proposal_id: UUID) -> Sequence[ProposalRespondent]:
        result = await self._session.execute(
            select(ProposalRespondent).where(
                ProposalRespondent.proposal_id == proposal_id
            )
        )
        return result.scalars().all()

    async def find_respondent(
        self,
        proposal_id: UUID,
        user_id: UUID,
    ) -> ProposalRespondent | None:
        result = await self._session.execute(
            select(ProposalRespondent).where(
                ProposalRespondent.proposal_id == proposal_id,
                ProposalRespondent.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_slot_responses(self, slot_id: UUID) -> Sequence[SlotResponse]:
        result = await self._session.execute(
            select(SlotResponse)
            .where(SlotResponse.slot_id == slot_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_space(self, space_id: UUID) -> Space | None:
        result = await self._session.execute(select(Space).where(Space.id == space_id))
        return result.scalar_one_or_none()

    async def get_membership(
        self,
        space_id: UUID,
        user_id: UUID,
    ) -> SpaceMembership | None:
        result = await self._session.execute(
            select(SpaceMembership).where(
                SpaceMembership.space_id == space_id,
                SpaceMembership.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_client_memberships(
        self,
        user_id: UUID,
        space_id: UUID | None = None,
    ) -> Sequence[SpaceMembership]:
        query = select(SpaceMembership).where(
            SpaceMembership.user_id == user_id,
            SpaceMembership.role == SpaceRole.CLIENT,
        )
        if space_id:
            query = query.where(SpaceMembership.space_id == space_id)
        result = await self._session.execute(query)
        return result.scalars().all()

    async def get_users(self, user_ids: Iterable[UUID]) -> dict[UUID, User]:
        """Batch profile lookup, keyed by user id."""
        ids = set(user_ids)
        if not ids:
            return {}
        result = await self._session.execute(select(User).where(User.id.in_(ids)))
        return {u.id: u for u in result.scalars().all()}

    async def list_proposals(
        self,
        space_id: UUID,
        status: ProposalStatus | None = None,
        limit: int = 50,
    ) -> Sequence[SchedulingProposal]:
        query = (
            select(SchedulingProposal)
            .where(SchedulingProposal.space_id == space_id)
            .options(
                selectinload(SchedulingProposal.slots),
                selectinload(SchedulingProposal.respondents),
            )
            .order_by(SchedulingProposal.created_at.desc())
            .limit(limit)
        )
        if status:
            query = query.where(SchedulingProposal.status == status)
        result = await self._session.execute(query)
        return result.scalars().all()

    async def list_proposals_for_respondent(
        self,
        user_id: UUID,
        space_id: UUID | None = None,
    ) -> Sequence[SchedulingProposal]:
        query = (
            select(SchedulingProposal)
            .join(
                ProposalRespondent,
                ProposalRespondent.proposal_id == SchedulingProposal.id,
            )
            .where(ProposalRespondent.user_id == user_id)
            .options(
                selectinload(SchedulingProposal.slots),
                selectinload(SchedulingProposal.respondents),
            )
            .order_by(SchedulingProposal.created_at.desc())
        )
        if space_id:
            query = query.where(SchedulingProposal.space_id == space_id)
        result = await self._session.execute(query)
        return result.scalars().all()

    async def count_responding_respondents(
        self,
        proposal_ids: Sequence[UUID],
    ) -> dict[UUID, int]:
        """Distinct respondents with at least one response, per proposal."""
        if not proposal_ids:
            return {}
        result = await self._session.execute(
            select(
                ProposalRespondent.proposal_id,
                func.count(distinct(SlotResponse.respondent_id)),
            )
            .join(SlotResponse, SlotResponse.respondent_id == ProposalRespondent.id)
            .where(ProposalRespondent.proposal_id.in_(proposal_ids))
            .group_by(ProposalRespondent.proposal_id)
        )
        return {proposal_id: count for proposal_id, count in result.all()}

    async def get_answered_slot_ids(self, respondent_ids: Sequence[UUID]) -> set[UUID]:
        if not respondent_ids:
            return set()
        result = await self._session.execute(
            select(SlotResponse.slot_id).where(
                SlotResponse.respondent_id.in_(respondent_ids)
            )
        )
        return set(result.scalars().all())

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def add_proposal(self, proposal: SchedulingProposal) -> SchedulingProposal:
        """Insert a proposal together with the slots and respondents attached to it."""
        self._session.add(proposal)
        await self._session.flush()
        return proposal

    async def upsert_responses(
        self,
        respondent_id: UUID,
        writes: Sequence[ResponseWrite],
        responded_at: datetime,
    ) -> int:
        """Insert or overwrite one response per slot in a single statement."""
        rows = [
            {
                "id": uuid4(),
                "slot_id": w.slot_id,
                "respondent_id": respondent_id,
                "response": w.response,
                "responded_at": responded_at,
            }
            for w in writes
        ]
        insert = self._insert_construct()
        stmt = insert(SlotResponse).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slot_id", "respondent_id"],
            set_={
                "response": stmt.excluded.response,
                "responded_at": stmt.excluded.responded_at,
            },
        )
        await self._session.execute(stmt)
        return len(rows)

    async def transition_status(
        self,
        proposal_id: UUID,
        *,
        expected: ProposalStatus,
        new: ProposalStatus,
        **values,
    ) -> bool:
        """
        Conditioned status change: ``UPDATE ... WHERE id = ? AND status = ?``.

        Returns False when the row no longer has the expected status, which
        means a concurrent transition already won.
        """
        result = await self._session.execute(
            update(SchedulingProposal)
            .where(
                SchedulingProposal.id == proposal_id,
                SchedulingProposal.status == expected,
            )
            .values(
                status=new,
                version=SchedulingProposal.version + 1,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def add_meeting(self, meeting: Meeting) -> Meeting:
        self._session.add(meeting)
        await self._session.flush()
        return meeting

    async def link_meeting(self, proposal_id: UUID, meeting_id: UUID) -> None:
        await self._session.execute(
            update(SchedulingProposal)
            .where(SchedulingProposal.id == proposal_id)
            .values(confirmed_meeting_id=meeting_id)
            .execution_options(synchronize_session=False)
        )

    async def save_video_details(
        self,
        proposal_id: UUID,
        meeting_id: UUID,
        *,
        video_provider,
        meeting_url: str,
        external_meeting_id: str,
    ) -> None:
        """Persist a provisioned room on both the proposal and its meeting."""
        await self._session.execute(
            update(SchedulingProposal)
            .where(SchedulingProposal.id == proposal_id)
            .values(meeting_url=meeting_url, external_meeting_id=external_meeting_id)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(
            update(Meeting)
            .where(Meeting.id == meeting_id)
            .values(
                meeting_url=meeting_url,
                external_meeting_id=external_meeting_id,
                video_provider=video_provider,
            )
            .execution_options(synchronize_session=False)
        )

    def _insert_construct(self):
        """Dialect-specific ``insert`` that supports ON CONFLICT."""
        dialect = self._session.bind.dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise InternalError(
            f"Upsert is not supported on dialect {dialect}",
            code="unsupported_store",
        )
