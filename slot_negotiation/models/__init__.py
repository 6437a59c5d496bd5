"""SQLAlchemy ORM Models for the slot negotiation engine."""

from .base import Base, TimestampMixin, UUIDMixin, utc_now
from .models import (
    # Enums
    MeetingStatus,
    ProposalStatus,
    RespondentSide,
    ResponseValue,
    SpaceRole,
    VideoProvider,
    # Tenancy
    Organization,
    Space,
    SpaceMembership,
    User,
    # Scheduling
    Meeting,
    ProposalRespondent,
    ProposalSlot,
    SchedulingProposal,
    SlotResponse,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "utc_now",
    # Enums
    "SpaceRole",
    "ProposalStatus",
    "RespondentSide",
    "ResponseValue",
    "VideoProvider",
    "MeetingStatus",
    # Tenancy
    "Organization",
    "User",
    "Space",
    "SpaceMembership",
    # Scheduling
    "SchedulingProposal",
    "ProposalSlot",
    "ProposalRespondent",
    "SlotResponse",
    "Meeting",
]
