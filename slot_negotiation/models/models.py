"""SQLAlchemy ORM Models for the slot negotiation engine.

Tenancy tables (organizations, users, spaces, memberships) are owned by
upstream services; only the columns this engine reads are mapped here.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, utc_now


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


# =============================================================================
# ENUMS
# =============================================================================


class SpaceRole(str, PyEnum):
    ADMIN = "admin"
    EDITOR = "editor"
    MEMBER = "member"
    CLIENT = "client"


class ProposalStatus(str, PyEnum):
    OPEN = "open"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class RespondentSide(str, PyEnum):
    INTERNAL = "internal"
    CLIENT = "client"


class ResponseValue(str, PyEnum):
    AVAILABLE = "available"
    UNAVAILABLE_BUT_PROCEED = "unavailable_but_proceed"
    UNAVAILABLE = "unavailable"


class VideoProvider(str, PyEnum):
    GOOGLE_MEET = "google_meet"
    ZOOM = "zoom"
    TEAMS = "teams"


class MeetingStatus(str, PyEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    ENDED = "ended"


# =============================================================================
# ORGANIZATION, USER & SPACE MODELS
# =============================================================================


class Organization(Base, UUIDMixin):
    """Multi-tenant organization."""

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    spaces: Mapped[list["Space"]] = relationship(back_populates="organization")


class User(Base, UUIDMixin):
    """Application user (profile)."""

    __tablename__ = "users"

    email: Mapped[str | None] = mapped_column(String(255), unique=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    avatar_url: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


class Space(Base, UUIDMixin):
    """Project workspace inside an organization."""

    __tablename__ = "spaces"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    organization: Mapped["Organization"] = relationship(back_populates="spaces")
    memberships: Mapped[list["SpaceMembership"]] = relationship(
        back_populates="space"
    )

    __table_args__ = (
        Index("idx_spaces_org", "organization_id"),
    )


class SpaceMembership(Base, UUIDMixin):
    """Membership linking users to spaces, with their role in the space."""

    __tablename__ = "space_memberships"

    space_id: Mapped[UUID] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    role: Mapped[SpaceRole] = mapped_column(
        Enum(SpaceRole, name="space_role", values_callable=_enum_values),
        default=SpaceRole.MEMBER,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    space: Mapped["Space"] = relationship(back_populates="memberships")
    user: Mapped["User"] = relationship()

    __table_args__ = (
        UniqueConstraint("space_id", "user_id"),
        Index("idx_space_memberships_user", "user_id"),
    )


# =============================================================================
# SCHEDULING MODELS (Core)
# =============================================================================


class SchedulingProposal(Base, UUIDMixin, TimestampMixin):
    """A meeting-time negotiation: candidate slots plus the people who answer.

    ``confirmed_slot_id`` is set exactly when status is ``confirmed``; the
    check constraint enforces it at the row level.
    """

    __tablename__ = "scheduling_proposals"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    space_id: Mapped[UUID] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    status: Mapped[ProposalStatus] = mapped_column(
        Enum(ProposalStatus, name="proposal_status", values_callable=_enum_values),
        default=ProposalStatus.OPEN,
        nullable=False,
    )
    # Bumped on every status transition
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    confirmed_slot_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("proposal_slots.id", use_alter=True)
    )
    confirmed_meeting_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("meetings.id", use_alter=True)
    )
    confirmed_at: Mapped[datetime | None] = mapped_column()
    confirmed_by: Mapped[UUID | None] = mapped_column(ForeignKey("users.id"))

    video_provider: Mapped[VideoProvider | None] = mapped_column(
        Enum(VideoProvider, name="video_provider", values_callable=_enum_values),
        nullable=True,
    )
    meeting_url: Mapped[str | None] = mapped_column(Text)
    external_meeting_id: Mapped[str | None] = mapped_column(String(255))

    expires_at: Mapped[datetime | None] = mapped_column()
    created_by: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)

    slots: Mapped[list["ProposalSlot"]] = relationship(
        back_populates="proposal",
        foreign_keys="ProposalSlot.proposal_id",
        order_by="ProposalSlot.slot_order",
    )
    respondents: Mapped[list["ProposalRespondent"]] = relationship(
        back_populates="proposal",
    )

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="duration_positive"),
        CheckConstraint(
            "(status = 'confirmed') = (confirmed_slot_id IS NOT NULL)",
            name="confirmed_slot_matches_status",
        ),
        Index("idx_scheduling_proposals_space", "space_id", "created_at"),
    )


class ProposalSlot(Base, UUIDMixin):
    """One candidate time window of a proposal."""

    __tablename__ = "proposal_slots"

    proposal_id: Mapped[UUID] = mapped_column(
        ForeignKey("scheduling_proposals.id", ondelete="CASCADE"), nullable=False
    )
    start_at: Mapped[datetime] = mapped_column(nullable=False)
    end_at: Mapped[datetime] = mapped_column(nullable=False)
    slot_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    proposal: Mapped["SchedulingProposal"] = relationship(
        back_populates="slots", foreign_keys=[proposal_id]
    )
    responses: Mapped[list["SlotResponse"]] = relationship(back_populates="slot")

    __table_args__ = (
        CheckConstraint("end_at > start_at", name="end_after_start"),
        Index("idx_proposal_slots_proposal", "proposal_id"),
    )


class ProposalRespondent(Base, UUIDMixin):
    """A participant who must (or may) answer a proposal."""

    __tablename__ = "proposal_respondents"

    proposal_id: Mapped[UUID] = mapped_column(
        ForeignKey("scheduling_proposals.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    side: Mapped[RespondentSide] = mapped_column(
        Enum(RespondentSide, name="respondent_side", values_callable=_enum_values),
        nullable=False,
    )
    is_required: Mapped[bool] = mapped_column(default=True, nullable=False)

    proposal: Mapped["SchedulingProposal"] = relationship(back_populates="respondents")
    responses: Mapped[list["SlotResponse"]] = relationship(back_populates="respondent")

    __table_args__ = (
        UniqueConstraint("proposal_id", "user_id"),
    )


class SlotResponse(Base, UUIDMixin):
    """A respondent's availability for one slot. One row per (slot, respondent)."""

    __tablename__ = "slot_responses"

    slot_id: Mapped[UUID] = mapped_column(
        ForeignKey("proposal_slots.id", ondelete="CASCADE"), nullable=False
    )
    respondent_id: Mapped[UUID] = mapped_column(
        ForeignKey("proposal_respondents.id", ondelete="CASCADE"), nullable=False
    )
    response: Mapped[ResponseValue] = mapped_column(
        Enum(ResponseValue, name="slot_response_value", values_callable=_enum_values),
        nullable=False,
    )
    responded_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    slot: Mapped["ProposalSlot"] = relationship(back_populates="responses")
    respondent: Mapped["ProposalRespondent"] = relationship(back_populates="responses")

    __table_args__ = (
        UniqueConstraint("slot_id", "respondent_id"),
        Index("idx_slot_responses_respondent", "respondent_id"),
    )


class Meeting(Base, UUIDMixin, TimestampMixin):
    """Meeting record materialized when a proposal is confirmed."""

    __tablename__ = "meetings"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    space_id: Mapped[UUID] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    proposal_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("scheduling_proposals.id")
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[MeetingStatus] = mapped_column(
        Enum(MeetingStatus, name="meeting_status", values_callable=_enum_values),
        default=MeetingStatus.SCHEDULED,
        nullable=False,
    )
    starts_at: Mapped[datetime] = mapped_column(nullable=False)
    ends_at: Mapped[datetime] = mapped_column(nullable=False)
    video_provider: Mapped[VideoProvider | None] = mapped_column(
        Enum(VideoProvider, name="video_provider", values_callable=_enum_values),
        nullable=True,
    )
    meeting_url: Mapped[str | None] = mapped_column(Text)
    external_meeting_id: Mapped[str | None] = mapped_column(String(255))
    created_by: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)

    __table_args__ = (
        Index("idx_meetings_space", "space_id", "starts_at"),
    )
