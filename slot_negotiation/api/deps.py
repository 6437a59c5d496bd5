"""Service dependencies and error translation shared by the scheduling routers."""

from typing import Annotated

from fastapi import Depends, HTTPException, status

from ..core import SessionDep
from ..integrations.video import VideoConferenceRegistry, get_video_registry
from ..services import (
    ConfirmationCoordinator,
    ConflictError,
    ForbiddenError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    ProposalService,
    ResponseCollector,
    SchedulingError,
)

ERROR_STATUS = {
    InvalidArgumentError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    ConflictError: status.HTTP_409_CONFLICT,
    InternalError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error: SchedulingError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(error: SchedulingError) -> HTTPException:
    """Render a service error as ``{error, message, details}``."""
    return HTTPException(
        status_code=status_for(error),
        detail={
            "error": error.code,
            "message": error.message,
            "details": error.details,
        },
    )


# =============================================================================
# SERVICES
# =============================================================================


def get_proposal_service(session: SessionDep) -> ProposalService:
    return ProposalService(session)


def get_response_collector(session: SessionDep) -> ResponseCollector:
    return ResponseCollector(session)


def get_confirmation_coordinator(
    session: SessionDep,
    registry: Annotated[VideoConferenceRegistry, Depends(get_video_registry)],
) -> ConfirmationCoordinator:
    return ConfirmationCoordinator(session, video_registry=registry)


ProposalServiceDep = Annotated[ProposalService, Depends(get_proposal_service)]
ResponseCollectorDep = Annotated[ResponseCollector, Depends(get_response_collector)]
ConfirmationCoordinatorDep = Annotated[
    ConfirmationCoordinator, Depends(get_confirmation_coordinator)
]
