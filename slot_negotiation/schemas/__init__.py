"""Slot Negotiation API Schemas.

- base: common configuration and error types
- scheduling: proposals, responses, confirmation, candidate generation
"""

from .base import ErrorResponse, OkResponse, SchedulingBaseModel
from .scheduling import (
    AvailableSlotsRequest,
    AvailableSlotsResponse,
    BusyPeriodSchema,
    ConfirmRequest,
    ConfirmResponse,
    CreateProposalRequest,
    PortalProposalListResponse,
    PortalProposalResponse,
    ProposalDetailResponse,
    ProposalListResponse,
    ProposalSlotResponse,
    ProposalSummaryResponse,
    RespondentCreate,
    RespondentResponse,
    ResponseItemRequest,
    SlotAnswerResponse,
    SlotCandidateResponse,
    SlotCreate,
    SubmitResponsesRequest,
    SubmitResponsesResponse,
    UpdateProposalRequest,
)

__all__ = [
    # Base
    "SchedulingBaseModel",
    "ErrorResponse",
    "OkResponse",
    # Candidate generation
    "BusyPeriodSchema",
    "AvailableSlotsRequest",
    "AvailableSlotsResponse",
    "SlotCandidateResponse",
    # Proposals
    "SlotCreate",
    "RespondentCreate",
    "CreateProposalRequest",
    "UpdateProposalRequest",
    "ProposalSummaryResponse",
    "ProposalListResponse",
    "SlotAnswerResponse",
    "ProposalSlotResponse",
    "RespondentResponse",
    "ProposalDetailResponse",
    # Confirmation
    "ConfirmRequest",
    "ConfirmResponse",
    # Responses
    "ResponseItemRequest",
    "SubmitResponsesRequest",
    "SubmitResponsesResponse",
    "PortalProposalResponse",
    "PortalProposalListResponse",
]
