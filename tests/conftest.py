"""Shared test fixtures."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from fundflow.config import Settings
from fundflow.db.engine import create_engine, create_tables, get_session
from fundflow.db.repository import Repository
from fundflow.models.funding import WINDOW_ORDER, FundingRound, PhaseWindow

WEEK = timedelta(days=7)


def phase_windows(now: datetime, active: str) -> tuple[datetime, datetime, dict[str, PhaseWindow]]:
    """Four contiguous one-week windows arranged so that ``active`` contains ``now``.

    ``active="completed"`` puts the whole round in the past, ``"upcoming"`` in the future.
    """
    if active == "completed":
        start = now - 5 * WEEK
    elif active == "upcoming":
        start = now + WEEK
    else:
        start = now - WEEK * WINDOW_ORDER.index(active) - timedelta(days=1)
    windows = {
        name: PhaseWindow(start_date=start + WEEK * i, end_date=start + WEEK * (i + 1))
        for i, name in enumerate(WINDOW_ORDER)
    }
    return start, start + 4 * WEEK, windows


@dataclass
class Community:
    """A topic with one reviewer group of four reviewers, plus one outsider."""

    topic_id: str
    reviewer_ids: list[str]
    outsider_id: str
    owner_id: str


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(
        fundflow_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        ocv_api_base_url="https://ocv.test",
    )


@pytest.fixture
async def engine() -> AsyncEngine:
    """Create an in-memory SQLite engine with all tables."""
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
async def repo(engine: AsyncEngine) -> Repository:
    """Yield a repository with a session bound to the in-memory database."""
    async with get_session(engine) as session:
        yield Repository(session)


async def seed_community(repo: Repository) -> Community:
    topic = await repo.create_topic("Infrastructure")
    group = await repo.create_reviewer_group("Infra reviewers")
    await repo.attach_reviewer_group(topic.id, group.id)
    reviewer_ids = []
    for i in range(4):
        user = await repo.create_user(username=f"reviewer-{i}", auth_id=f"r{i}")
        await repo.add_reviewer_group_member(group.id, user.id)
        reviewer_ids.append(user.id)
    outsider = await repo.create_user(username="outsider", auth_type="wallet", auth_id="B62q")
    owner = await repo.create_user(username="alice", auth_type="telegram", auth_id="42")
    return Community(
        topic_id=topic.id,
        reviewer_ids=reviewer_ids,
        outsider_id=outsider.id,
        owner_id=owner.id,
    )


async def seed_round(
    repo: Repository,
    community: Community,
    active: str = "consideration",
    total_budget: Decimal = Decimal("1000"),
    mef_id: int = 7,
) -> FundingRound:
    start, end, windows = phase_windows(datetime.now(UTC), active)
    return await repo.create_funding_round(
        name=f"Round ({active})",
        total_budget=total_budget,
        start_date=start,
        end_date=end,
        windows=windows,
        mef_id=mef_id,
        topic_id=community.topic_id,
    )


@pytest.fixture
async def community(repo: Repository) -> Community:
    return await seed_community(repo)


@pytest.fixture
def make_round(
    repo: Repository, community: Community
) -> Callable[..., Awaitable[FundingRound]]:
    """Factory for rounds whose ``active`` window contains the current time."""

    async def _make(
        active: str = "consideration",
        total_budget: Decimal = Decimal("1000"),
        mef_id: int = 7,
    ) -> FundingRound:
        return await seed_round(repo, community, active, total_budget, mef_id)

    return _make


@pytest.fixture
def make_proposal(
    repo: Repository, community: Community
) -> Callable[..., Awaitable[int]]:
    """Factory for proposals submitted to a round (status CONSIDERATION)."""

    async def _make(
        funding_round: FundingRound,
        amount: Decimal = Decimal("100"),
        title: str = "Block explorer",
    ) -> int:
        proposal = await repo.create_proposal(community.owner_id, title, amount)
        assert await repo.submit_proposal_to_round(proposal.id, funding_round.id)
        return proposal.id

    return _make
