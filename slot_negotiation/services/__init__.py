"""Business logic services for slot negotiation."""

from .confirmation import ConfirmationCoordinator, ConfirmationResult, idempotency_key
from .errors import (
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    SchedulingError,
)
from .proposal_store import (
    AgreementResult,
    ProposalStore,
    ResponseWrite,
    evaluate_agreement,
    is_expired,
)
from .proposals import (
    CreateProposalInput,
    PortalProposalSummary,
    ProposalDetail,
    ProposalService,
    ProposalSummary,
    RespondentInput,
    RespondentView,
    ResponseView,
    SlotInput,
    SlotView,
)
from .response_collector import (
    ResponseCollector,
    ResponseInput,
    SubmissionPath,
    SubmissionResult,
)
from .slot_generator import (
    BusyPeriod,
    SlotCandidate,
    SlotGenerationOptions,
    generate_slots,
)

__all__ = [
    # Errors
    "SchedulingError",
    "InvalidArgumentError",
    "NotFoundError",
    "ForbiddenError",
    "ConflictError",
    "InternalError",
    # Slot generation
    "BusyPeriod",
    "SlotCandidate",
    "SlotGenerationOptions",
    "generate_slots",
    # Store
    "ProposalStore",
    "ResponseWrite",
    "AgreementResult",
    "evaluate_agreement",
    "is_expired",
    # Proposals
    "ProposalService",
    "CreateProposalInput",
    "SlotInput",
    "RespondentInput",
    "ProposalSummary",
    "PortalProposalSummary",
    "ProposalDetail",
    "SlotView",
    "ResponseView",
    "RespondentView",
    # Responses
    "ResponseCollector",
    "ResponseInput",
    "SubmissionPath",
    "SubmissionResult",
    # Confirmation
    "ConfirmationCoordinator",
    "ConfirmationResult",
    "idempotency_key",
]
