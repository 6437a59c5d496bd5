"""
Response Collector: records respondents' availability answers.

Preconditions are checked in a fixed order and each failure is distinct:

1. proposal exists                        -> NotFoundError
2. batch holds 1..5 responses             -> InvalidArgumentError
3. slot ids are well-formed and unique    -> InvalidArgumentError
4. every value is a known response value  -> InvalidArgumentError
5. proposal is open                       -> ConflictError (current status)
6. proposal has not expired               -> ConflictError
7. caller passes the path's membership
   check and is a registered respondent   -> ForbiddenError
8. every slot belongs to the proposal     -> InvalidArgumentError

The write is a single batched upsert, so a resubmission of the same batch
leaves the same stored state and reports the same count.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Sequence
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ProposalStatus, ResponseValue, SpaceRole, utc_now
from .errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidArgumentError,
)
from .proposal_store import ProposalStore, ResponseWrite, is_expired

logger = logging.getLogger(__name__)

MIN_RESPONSES_PER_SUBMISSION = 1
MAX_RESPONSES_PER_SUBMISSION = 5

VALID_RESPONSES = tuple(v.value for v in ResponseValue)


class SubmissionPath(str, Enum):
    """How the caller's identity was resolved upstream."""
    INTERNAL = "internal"  # any member of the proposal's space
    CLIENT_PORTAL = "client_portal"  # membership role must be exactly "client"


@dataclass
class ResponseInput:
    """Raw (slot, value) pair as received from a caller."""
    slot_id: str | UUID
    response: str


@dataclass
class SubmissionResult:
    updated_count: int


class ResponseCollector:
    """Validates and records availability answers against open proposals."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = ProposalStore(session)
        self._clock = clock

    async def submit_responses(
        self,
        proposal_id: UUID,
        user_id: UUID,
        responses: Sequence[ResponseInput],
        path: SubmissionPath = SubmissionPath.INTERNAL,
    ) -> SubmissionResult:
        # 1. Proposal exists; the row lock holds off a concurrent confirmation
        proposal = await self._store.get_proposal_or_raise(proposal_id, for_update=True)

        # 2. Batch size
        if not MIN_RESPONSES_PER_SUBMISSION <= len(responses) <= MAX_RESPONSES_PER_SUBMISSION:
            raise InvalidArgumentError(
                f"Must provide between {MIN_RESPONSES_PER_SUBMISSION} and "
                f"{MAX_RESPONSES_PER_SUBMISSION} responses per submission",
                code="invalid_batch_size",
                details={"received": len(responses)},
            )

        # 3. Well-formed, unique slot ids
        slot_ids = [_parse_slot_id(r.slot_id) for r in responses]
        if len(set(slot_ids)) != len(slot_ids):
            raise InvalidArgumentError(
                "Duplicate slotId in responses", code="duplicate_slot_id"
            )

        # 4. Known response values
        writes: list[ResponseWrite] = []
        for slot_id, r in zip(slot_ids, responses):
            try:
                value = ResponseValue(r.response)
            except ValueError:
                raise InvalidArgumentError(
                    f"Invalid response value. Must be one of: {', '.join(VALID_RESPONSES)}",
                    code="invalid_response",
                    details={"slot_id": str(slot_id), "response": r.response},
                )
            writes.append(ResponseWrite(slot_id=slot_id, response=value))

        # 5. Open
        if proposal.status != ProposalStatus.OPEN:
            raise ConflictError(
                "Proposal is not open",
                code="proposal_not_open",
                details={"current_status": proposal.status.value},
            )

        # 6. Not expired
        now = self._clock()
        if is_expired(proposal, now):
            raise ConflictError("Proposal has expired", code="expired")

        # 7. Identity resolves to a respondent
        await self._authorize(proposal.space_id, user_id, path)
        respondent = await self._store.find_respondent(proposal_id, user_id)
        if not respondent:
            raise ForbiddenError(
                "You are not a respondent for this proposal",
                code="not_a_respondent",
            )

        # 8. Slots belong to this proposal (checked against the full set)
        own_slot_ids = await self._store.get_slot_ids(proposal_id)
        foreign = [s for s in slot_ids if s not in own_slot_ids]
        if foreign:
            raise InvalidArgumentError(
                "One or more slotIds do not belong to this proposal",
                code="slot_not_in_proposal",
                details={"slot_ids": [str(s) for s in foreign]},
            )

        try:
            updated = await self._store.upsert_responses(respondent.id, writes, now)
            await self._store.session.flush()
        except SQLAlchemyError as e:
            await self._store.session.rollback()
            logger.error(f"Failed to save responses for proposal {proposal_id}: {e}")
            raise InternalError("Failed to save responses", code="store_write_failed")

        logger.info(
            f"Recorded {updated} responses for proposal {proposal_id} "
            f"(respondent {respondent.id}, path={path.value})"
        )
        return SubmissionResult(updated_count=updated)

    async def _authorize(self, space_id: UUID, user_id: UUID, path: SubmissionPath) -> None:
        membership = await self._store.get_membership(space_id, user_id)
        if path == SubmissionPath.CLIENT_PORTAL:
            if not membership or membership.role != SpaceRole.CLIENT:
                raise ForbiddenError(
                    "Client portal access requires a client membership",
                    code="not_client_member",
                )
        elif not membership:
            raise ForbiddenError("Not a member of this space", code="not_a_member")


def _parse_slot_id(value: str | UUID) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise InvalidArgumentError(
            "Invalid slotId in responses",
            code="invalid_slot_id",
            details={"slot_id": str(value)},
        )
