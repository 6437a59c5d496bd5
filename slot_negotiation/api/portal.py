"""Client portal routes: client-side respondents answer proposals here."""

from uuid import UUID

from fastapi import APIRouter, Query

from ..core import CurrentUserDep
from ..schemas import (
    PortalProposalListResponse,
    PortalProposalResponse,
    SubmitResponsesRequest,
    SubmitResponsesResponse,
)
from ..services import ResponseInput, SchedulingError, SubmissionPath
from .deps import ProposalServiceDep, ResponseCollectorDep, to_http_exception

router = APIRouter(prefix="/portal/scheduling", tags=["portal"])


@router.get(
    "/proposals",
    response_model=PortalProposalListResponse,
    summary="Proposals awaiting the caller's answers",
)
async def list_portal_proposals(
    current_user: CurrentUserDep,
    service: ProposalServiceDep,
    space_id: UUID | None = Query(default=None),
):
    try:
        summaries = await service.list_portal_proposals(current_user.id, space_id)
    except SchedulingError as e:
        raise to_http_exception(e)

    return PortalProposalListResponse(
        items=[
            PortalProposalResponse(
                id=s.proposal.id,
                space_id=s.proposal.space_id,
                title=s.proposal.title,
                description=s.proposal.description,
                duration_minutes=s.proposal.duration_minutes,
                status=s.proposal.status.value,
                expires_at=s.proposal.expires_at,
                my_respondent_id=s.my_respondent_id,
                answered_slots=s.answered_slots,
                total_slots=s.total_slots,
                has_responded=s.has_responded,
            )
            for s in summaries
        ]
    )


@router.post(
    "/responses",
    response_model=SubmitResponsesResponse,
    summary="Submit availability answers (client portal)",
)
async def submit_portal_responses(
    request: SubmitResponsesRequest,
    current_user: CurrentUserDep,
    collector: ResponseCollectorDep,
):
    """Same contract as the internal endpoint, but requires a client membership."""
    try:
        result = await collector.submit_responses(
            request.proposal_id,
            current_user.id,
            [ResponseInput(slot_id=r.slot_id, response=r.response) for r in request.responses],
            path=SubmissionPath.CLIENT_PORTAL,
        )
    except SchedulingError as e:
        raise to_http_exception(e)

    return SubmitResponsesResponse(updated_count=result.updated_count)
