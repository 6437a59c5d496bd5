"""
Shared fixtures: a file-backed SQLite database per test and a seeded space.

A file (not ``:memory:``) lets several sessions hold their own connections,
which the concurrent confirmation tests rely on.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from slot_negotiation.models import (
    Base,
    Organization,
    ProposalRespondent,
    ProposalSlot,
    ProposalStatus,
    RespondentSide,
    SchedulingProposal,
    Space,
    SpaceMembership,
    SpaceRole,
    User,
)


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# SEED DATA
# =============================================================================


@dataclass
class World:
    """One organization with one space and a user per role."""
    org_id: UUID
    space_id: UUID
    creator_id: UUID  # member, opens proposals
    admin_id: UUID
    internal_id: UUID  # editor, internal-side respondent
    client_id: UUID  # client, client-side respondent
    outsider_id: UUID  # no membership


@pytest.fixture
async def world(session: AsyncSession) -> World:
    org = Organization(name="Acme Consulting")
    session.add(org)
    await session.flush()

    space = Space(organization_id=org.id, name="Website Renewal")
    session.add(space)

    users = {
        key: User(email=f"{key}@example.com", display_name=name)
        for key, name in [
            ("creator", "Carol Creator"),
            ("admin", "Ada Admin"),
            ("internal", "Ivan Internal"),
            ("client", "Chloe Client"),
            ("outsider", "Oscar Outsider"),
        ]
    }
    session.add_all(users.values())
    await session.flush()

    for key, role in [
        ("creator", SpaceRole.MEMBER),
        ("admin", SpaceRole.ADMIN),
        ("internal", SpaceRole.EDITOR),
        ("client", SpaceRole.CLIENT),
    ]:
        session.add(SpaceMembership(space_id=space.id, user_id=users[key].id, role=role))
    await session.commit()

    return World(
        org_id=org.id,
        space_id=space.id,
        creator_id=users["creator"].id,
        admin_id=users["admin"].id,
        internal_id=users["internal"].id,
        client_id=users["client"].id,
        outsider_id=users["outsider"].id,
    )


def future_start(days: int = 7) -> datetime:
    """A weekday-agnostic UTC instant on the hour, ``days`` from now."""
    now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    return now + timedelta(days=days)


@dataclass(frozen=True)
class SlotRow:
    id: UUID
    start_at: datetime
    end_at: datetime


@dataclass(frozen=True)
class ProposalRow:
    """Ids and times of a created proposal, detached from any session.

    Services re-read proposals with ``populate_existing``, which resets
    loaded relationships on ORM instances; tests hold this copy instead.
    """
    id: UUID
    title: str
    slots: list[SlotRow]


async def create_proposal_rows(
    session: AsyncSession,
    world: World,
    *,
    slot_count: int = 3,
    respondents: list[tuple[UUID, RespondentSide, bool]] | None = None,
    expires_at: datetime | None = None,
    video_provider=None,
    title: str = "Kickoff meeting",
) -> ProposalRow:
    """Insert an open proposal directly, bypassing creation-time validation."""
    base = future_start()
    if respondents is None:
        respondents = [
            (world.internal_id, RespondentSide.INTERNAL, True),
            (world.client_id, RespondentSide.CLIENT, True),
        ]

    proposal = SchedulingProposal(
        organization_id=world.org_id,
        space_id=world.space_id,
        title=title,
        duration_minutes=60,
        status=ProposalStatus.OPEN,
        version=1,
        video_provider=video_provider,
        expires_at=expires_at,
        created_by=world.creator_id,
        slots=[
            ProposalSlot(
                start_at=base + timedelta(days=i),
                end_at=base + timedelta(days=i, hours=1),
                slot_order=i,
            )
            for i in range(slot_count)
        ],
        respondents=[
            ProposalRespondent(user_id=user_id, side=side, is_required=required)
            for user_id, side, required in respondents
        ],
    )
    session.add(proposal)
    await session.commit()
    return ProposalRow(
        id=proposal.id,
        title=proposal.title,
        slots=[SlotRow(id=s.id, start_at=s.start_at, end_at=s.end_at) for s in proposal.slots],
    )


@pytest.fixture
def make_proposal(session: AsyncSession, world: World):
    async def _make(**kwargs) -> ProposalRow:
        return await create_proposal_rows(session, world, **kwargs)
    return _make
