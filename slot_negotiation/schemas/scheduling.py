"""Request and response schemas for slot negotiation endpoints."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import Field

from ..models import RespondentSide, VideoProvider
from .base import SchedulingBaseModel


# =============================================================================
# CANDIDATE GENERATION
# =============================================================================


class BusyPeriodSchema(SchedulingBaseModel):
    """A busy interval as returned by a calendar free/busy query."""
    start: str
    end: str


class AvailableSlotsRequest(SchedulingBaseModel):
    """Out-of-range constraints produce an empty list rather than an error."""
    busy_periods: list[BusyPeriodSchema] = Field(default_factory=list)
    # YYYY-MM-DD; an unparsable day gives an empty list
    start_date: str
    end_date: str
    duration_minutes: int = Field(..., description="Meeting length in minutes")
    business_hour_start: int | None = None
    business_hour_end: int | None = None
    step_minutes: int | None = None
    max_results: int | None = None
    timezone: str | None = Field(
        default=None,
        description="IANA zone for business hours; defaults to the server's business zone",
    )


class SlotCandidateResponse(SchedulingBaseModel):
    start_at: datetime
    end_at: datetime
    day_of_week: int
    date_key: str


class AvailableSlotsResponse(SchedulingBaseModel):
    slots: list[SlotCandidateResponse]
    count: int


# =============================================================================
# PROPOSALS
# =============================================================================


class SlotCreate(SchedulingBaseModel):
    start_at: datetime
    end_at: datetime


class RespondentCreate(SchedulingBaseModel):
    user_id: UUID
    side: RespondentSide
    is_required: bool = True


class CreateProposalRequest(SchedulingBaseModel):
    """Request to open a scheduling negotiation."""
    space_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    duration_minutes: int = Field(..., ge=15, le=480)
    slots: list[SlotCreate] = Field(..., min_length=2, max_length=5)
    respondents: list[RespondentCreate] = Field(..., min_length=1, max_length=50)
    expires_at: datetime | None = None
    video_provider: VideoProvider | None = None


class UpdateProposalRequest(SchedulingBaseModel):
    """Only cancellation is supported."""
    status: Literal["cancelled"]


class ProposalSummaryResponse(SchedulingBaseModel):
    id: UUID
    space_id: UUID
    title: str
    status: str
    duration_minutes: int
    video_provider: str | None = None
    expires_at: datetime | None = None
    created_by: UUID
    created_at: datetime
    slot_count: int
    respondent_count: int
    response_count: int


class ProposalListResponse(SchedulingBaseModel):
    items: list[ProposalSummaryResponse]


class SlotAnswerResponse(SchedulingBaseModel):
    """One respondent's answer, with the respondent's display name."""
    respondent_id: UUID
    user_id: UUID
    display_name: str
    side: str
    response: str
    responded_at: datetime


class ProposalSlotResponse(SchedulingBaseModel):
    id: UUID
    start_at: datetime
    end_at: datetime
    slot_order: int
    responses: list[SlotAnswerResponse]


class RespondentResponse(SchedulingBaseModel):
    id: UUID
    user_id: UUID
    display_name: str
    email: str | None = None
    avatar_url: str | None = None
    side: str
    is_required: bool


class ProposalDetailResponse(SchedulingBaseModel):
    """Full proposal aggregate."""
    id: UUID
    organization_id: UUID
    space_id: UUID
    title: str
    description: str | None
    duration_minutes: int
    status: str
    version: int
    is_expired: bool
    expires_at: datetime | None
    video_provider: str | None
    meeting_url: str | None
    external_meeting_id: str | None
    confirmed_slot_id: UUID | None
    confirmed_meeting_id: UUID | None
    confirmed_at: datetime | None
    created_by: UUID
    created_at: datetime
    slots: list[ProposalSlotResponse]
    respondents: list[RespondentResponse]


# =============================================================================
# CONFIRMATION
# =============================================================================


class ConfirmRequest(SchedulingBaseModel):
    slot_id: UUID


class ConfirmResponse(SchedulingBaseModel):
    ok: bool = True
    meeting_id: UUID
    slot_start: datetime
    slot_end: datetime
    meeting_url: str | None = None
    external_meeting_id: str | None = None


# =============================================================================
# RESPONSES
# =============================================================================


class ResponseItemRequest(SchedulingBaseModel):
    # Kept as plain strings; the collector reports malformed values itself
    slot_id: str
    response: str


class SubmitResponsesRequest(SchedulingBaseModel):
    proposal_id: UUID
    responses: list[ResponseItemRequest]


class SubmitResponsesResponse(SchedulingBaseModel):
    ok: bool = True
    updated_count: int


class PortalProposalResponse(SchedulingBaseModel):
    """A proposal as seen by a client-side respondent."""
    id: UUID
    space_id: UUID
    title: str
    description: str | None
    duration_minutes: int
    status: str
    expires_at: datetime | None
    my_respondent_id: UUID
    answered_slots: int
    total_slots: int
    has_responded: bool


class PortalProposalListResponse(SchedulingBaseModel):
    items: list[PortalProposalResponse]
