"""
Scheduling API Routes: internal-team side of slot negotiation.

1. POST /scheduling/available-slots - Candidate slots from busy data
2. POST /scheduling/proposals - Open a negotiation
3. GET /scheduling/proposals/{id} - Full aggregate with answers
4. PATCH /scheduling/proposals/{id} - Cancel
5. POST /scheduling/proposals/{id}/confirm - Close on one slot
6. POST /scheduling/responses - Record availability answers
"""

import logging
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse

from ..core import CurrentUserDep, get_settings
from ..models import ProposalStatus
from ..schemas import (
    AvailableSlotsRequest,
    AvailableSlotsResponse,
    ConfirmRequest,
    ConfirmResponse,
    CreateProposalRequest,
    OkResponse,
    ProposalDetailResponse,
    ProposalListResponse,
    ProposalSlotResponse,
    ProposalSummaryResponse,
    RespondentResponse,
    SlotAnswerResponse,
    SlotCandidateResponse,
    SubmitResponsesRequest,
    SubmitResponsesResponse,
    UpdateProposalRequest,
)
from ..services import (
    BusyPeriod,
    CreateProposalInput,
    ProposalDetail,
    RespondentInput,
    ResponseInput,
    SchedulingError,
    SlotGenerationOptions,
    SlotInput,
    SubmissionPath,
    generate_slots,
)
from .deps import (
    ConfirmationCoordinatorDep,
    ProposalServiceDep,
    ResponseCollectorDep,
    status_for,
    to_http_exception,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scheduling", tags=["scheduling"])

# Confirm failures the UI handles inline rather than as errors
STRUCTURED_CONFIRM_FAILURES = {"proposal_not_open", "not_all_agreed"}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def build_detail_response(detail: ProposalDetail) -> ProposalDetailResponse:
    proposal = detail.proposal
    return ProposalDetailResponse(
        id=proposal.id,
        organization_id=proposal.organization_id,
        space_id=proposal.space_id,
        title=proposal.title,
        description=proposal.description,
        duration_minutes=proposal.duration_minutes,
        status=proposal.status.value,
        version=proposal.version,
        is_expired=detail.is_expired,
        expires_at=proposal.expires_at,
        video_provider=proposal.video_provider.value if proposal.video_provider else None,
        meeting_url=proposal.meeting_url,
        external_meeting_id=proposal.external_meeting_id,
        confirmed_slot_id=proposal.confirmed_slot_id,
        confirmed_meeting_id=proposal.confirmed_meeting_id,
        confirmed_at=proposal.confirmed_at,
        created_by=proposal.created_by,
        created_at=proposal.created_at,
        slots=[
            ProposalSlotResponse(
                id=view.slot.id,
                start_at=view.slot.start_at,
                end_at=view.slot.end_at,
                slot_order=view.slot.slot_order,
                responses=[
                    SlotAnswerResponse(
                        respondent_id=r.respondent_id,
                        user_id=r.user_id,
                        display_name=r.display_name,
                        side=r.side.value,
                        response=r.response.value,
                        responded_at=r.responded_at,
                    )
                    for r in view.responses
                ],
            )
            for view in detail.slots
        ],
        respondents=[
            RespondentResponse(
                id=view.respondent.id,
                user_id=view.respondent.user_id,
                display_name=view.display_name,
                email=view.email,
                avatar_url=view.avatar_url,
                side=view.respondent.side.value,
                is_required=view.respondent.is_required,
            )
            for view in detail.respondents
        ],
    )


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post(
    "/available-slots",
    response_model=AvailableSlotsResponse,
    summary="Generate candidate slots",
    description="""
    Compute free slots on weekdays inside business hours, avoiding the
    supplied busy intervals. Unparsable busy intervals are ignored.
    """,
)
async def available_slots(
    request: AvailableSlotsRequest,
    current_user: CurrentUserDep,
):
    settings = get_settings()
    zone_name = request.timezone or settings.business_timezone
    try:
        tz = ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_timezone", "message": f"Unknown timezone: {zone_name}"},
        )

    busy = [BusyPeriod.parse(b.start, b.end) for b in request.busy_periods]
    options = SlotGenerationOptions(
        start_date=request.start_date,
        end_date=request.end_date,
        duration_minutes=request.duration_minutes,
        business_hour_start=(
            request.business_hour_start
            if request.business_hour_start is not None
            else settings.business_hour_start
        ),
        business_hour_end=(
            request.business_hour_end
            if request.business_hour_end is not None
            else settings.business_hour_end
        ),
        step_minutes=(
            request.step_minutes
            if request.step_minutes is not None
            else settings.slot_step_minutes
        ),
        max_results=(
            request.max_results
            if request.max_results is not None
            else settings.slot_max_results
        ),
        tz=tz,
    )
    candidates = generate_slots([b for b in busy if b], options)

    return AvailableSlotsResponse(
        slots=[
            SlotCandidateResponse(
                start_at=c.start_at,
                end_at=c.end_at,
                day_of_week=c.day_of_week,
                date_key=c.date_key,
            )
            for c in candidates
        ],
        count=len(candidates),
    )


@router.post(
    "/proposals",
    response_model=ProposalDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a scheduling proposal",
)
async def create_proposal(
    request: CreateProposalRequest,
    current_user: CurrentUserDep,
    service: ProposalServiceDep,
):
    try:
        proposal = await service.create_proposal(
            CreateProposalInput(
                space_id=request.space_id,
                title=request.title,
                description=request.description,
                duration_minutes=request.duration_minutes,
                slots=[SlotInput(start_at=s.start_at, end_at=s.end_at) for s in request.slots],
                respondents=[
                    RespondentInput(user_id=r.user_id, side=r.side, is_required=r.is_required)
                    for r in request.respondents
                ],
                expires_at=request.expires_at,
                video_provider=request.video_provider,
            ),
            user_id=current_user.id,
        )
        detail = await service.get_detail(proposal.id, current_user.id)
    except SchedulingError as e:
        raise to_http_exception(e)

    return build_detail_response(detail)


@router.get(
    "/proposals",
    response_model=ProposalListResponse,
    summary="List proposals in a space",
)
async def list_proposals(
    current_user: CurrentUserDep,
    service: ProposalServiceDep,
    space_id: UUID = Query(..., description="Space to list"),
    status_filter: ProposalStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=100),
):
    try:
        summaries = await service.list_proposals(
            space_id, current_user.id, status=status_filter, limit=limit
        )
    except SchedulingError as e:
        raise to_http_exception(e)

    return ProposalListResponse(
        items=[
            ProposalSummaryResponse(
                id=s.proposal.id,
                space_id=s.proposal.space_id,
                title=s.proposal.title,
                status=s.proposal.status.value,
                duration_minutes=s.proposal.duration_minutes,
                video_provider=(
                    s.proposal.video_provider.value if s.proposal.video_provider else None
                ),
                expires_at=s.proposal.expires_at,
                created_by=s.proposal.created_by,
                created_at=s.proposal.created_at,
                slot_count=len(s.proposal.slots),
                respondent_count=s.respondent_count,
                response_count=s.response_count,
            )
            for s in summaries
        ]
    )


@router.get(
    "/proposals/{proposal_id}",
    response_model=ProposalDetailResponse,
    summary="Get a proposal with all answers",
)
async def get_proposal(
    proposal_id: UUID,
    current_user: CurrentUserDep,
    service: ProposalServiceDep,
):
    try:
        detail = await service.get_detail(proposal_id, current_user.id)
    except SchedulingError as e:
        raise to_http_exception(e)

    return build_detail_response(detail)


@router.patch(
    "/proposals/{proposal_id}",
    response_model=OkResponse,
    summary="Cancel a proposal",
    description="""
    Only `{"status": "cancelled"}` is accepted. Fails with 409 when the
    proposal was confirmed or cancelled in the meantime.
    """,
)
async def update_proposal(
    proposal_id: UUID,
    request: UpdateProposalRequest,
    current_user: CurrentUserDep,
    coordinator: ConfirmationCoordinatorDep,
):
    try:
        await coordinator.cancel(proposal_id, current_user.id)
    except SchedulingError as e:
        raise to_http_exception(e)

    return OkResponse()


@router.post(
    "/proposals/{proposal_id}/confirm",
    response_model=ConfirmResponse,
    summary="Confirm one slot",
    description="""
    Succeeds only when every required respondent answered `available` or
    `unavailable_but_proceed` for the slot. Exactly one of several
    concurrent confirmations wins.

    `meeting_url` is absent when no video room could be provisioned.
    """,
)
async def confirm_proposal(
    proposal_id: UUID,
    request: ConfirmRequest,
    current_user: CurrentUserDep,
    coordinator: ConfirmationCoordinatorDep,
):
    try:
        result = await coordinator.confirm(proposal_id, request.slot_id, current_user.id)
    except SchedulingError as e:
        if e.code in STRUCTURED_CONFIRM_FAILURES:
            return JSONResponse(
                status_code=status_for(e),
                content={"ok": False, "error": e.code, **e.details},
            )
        raise to_http_exception(e)

    return ConfirmResponse(
        meeting_id=result.meeting_id,
        slot_start=result.slot_start,
        slot_end=result.slot_end,
        meeting_url=result.meeting_url,
        external_meeting_id=result.external_meeting_id,
    )


@router.post(
    "/responses",
    response_model=SubmitResponsesResponse,
    summary="Submit availability answers (internal team)",
)
async def submit_responses(
    request: SubmitResponsesRequest,
    current_user: CurrentUserDep,
    collector: ResponseCollectorDep,
):
    try:
        result = await collector.submit_responses(
            request.proposal_id,
            current_user.id,
            [ResponseInput(slot_id=r.slot_id, response=r.response) for r in request.responses],
            path=SubmissionPath.INTERNAL,
        )
    except SchedulingError as e:
        raise to_http_exception(e)

    return SubmitResponsesResponse(updated_count=result.updated_count)
