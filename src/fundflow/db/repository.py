"""Repository pattern for database access.

Wraps SQLAlchemy async sessions and hands the engines flat pydantic structs,
never ORM graphs. Votes are upserted on their (proposal, voter) unique keys, and
proposal status only moves through a compare-and-swap update.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fundflow.core.phases import validate_phase_windows
from fundflow.db.models import (
    CommunityDeliberationVoteRow,
    ConsiderationVoteRow,
    FundingRoundRow,
    OCVConsiderationVoteRow,
    OCVRankedVoteRow,
    PhaseWindowRow,
    ProposalRow,
    ReviewerDeliberationVoteRow,
    ReviewerGroupMemberRow,
    ReviewerGroupRow,
    TopicReviewerGroupRow,
    TopicRow,
    UserRow,
    _uuid,
)
from fundflow.models.funding import (
    WINDOW_ORDER,
    FundingRound,
    PhaseWindow,
    ProposalRecord,
    ProposalStatus,
    ReviewerEligibility,
    UserMetadata,
)
from fundflow.models.votes import (
    CommunityDeliberationVote,
    ConsiderationDecision,
    ConsiderationVote,
    OCVVoteSnapshot,
    RankedVoteSnapshot,
    ReviewerDeliberationVote,
)

logger = logging.getLogger(__name__)


def _round_from_row(row: FundingRoundRow, windows: Iterable[PhaseWindowRow]) -> FundingRound:
    by_phase = {
        w.phase: PhaseWindow(start_date=w.start_date, end_date=w.end_date) for w in windows
    }
    return FundingRound(
        id=row.id,
        name=row.name,
        mef_id=row.mef_id,
        topic_id=row.topic_id,
        total_budget=row.total_budget,
        start_date=row.start_date,
        end_date=row.end_date,
        **{name: by_phase.get(name) for name in WINDOW_ORDER},
    )


def _proposal_from_row(row: ProposalRow, owner_metadata: object = None) -> ProposalRecord:
    return ProposalRecord(
        id=row.id,
        funding_round_id=row.funding_round_id,
        title=row.title,
        status=ProposalStatus(row.status),
        total_funding_required=row.total_funding_required,
        owner_id=row.owner_id,
        proposer=UserMetadata.parse(owner_metadata).username,
        created_at=row.created_at,
    )


class Repository:
    """Async repository for all database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # --- Users / Reviewers ---

    async def create_user(
        self,
        username: str = "",
        auth_type: str = "discord",
        auth_id: str = "",
        link_id: str | None = None,
    ) -> UserRow:
        row = UserRow(
            link_id=link_id,
            metadata_json={
                "username": username,
                "authSource": {"type": auth_type, "id": auth_id, "username": username},
            },
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def get_user_metadata(self, user_id: str) -> UserMetadata:
        """Parsed metadata for a user; unknown users get the anonymous default."""
        row = await self.session.get(UserRow, user_id)
        return UserMetadata.parse(row.metadata_json if row else None)

    async def create_topic(self, name: str, description: str = "") -> TopicRow:
        row = TopicRow(name=name, description=description)
        self.session.add(row)
        await self.session.flush()
        return row

    async def create_reviewer_group(self, name: str) -> ReviewerGroupRow:
        row = ReviewerGroupRow(name=name)
        self.session.add(row)
        await self.session.flush()
        return row

    async def add_reviewer_group_member(self, reviewer_group_id: str, user_id: str) -> None:
        stmt = (
            sqlite_insert(ReviewerGroupMemberRow)
            .values(id=_uuid(), reviewer_group_id=reviewer_group_id, user_id=user_id)
            .on_conflict_do_nothing(index_elements=["reviewer_group_id", "user_id"])
        )
        await self.session.execute(stmt)

    async def attach_reviewer_group(self, topic_id: str, reviewer_group_id: str) -> None:
        stmt = (
            sqlite_insert(TopicReviewerGroupRow)
            .values(id=_uuid(), topic_id=topic_id, reviewer_group_id=reviewer_group_id)
            .on_conflict_do_nothing(index_elements=["topic_id", "reviewer_group_id"])
        )
        await self.session.execute(stmt)

    async def get_reviewer_ids_for_round(self, funding_round_id: str) -> set[str]:
        """Members of any reviewer group attached to the round's topic."""
        stmt = (
            select(ReviewerGroupMemberRow.user_id)
            .join(
                TopicReviewerGroupRow,
                TopicReviewerGroupRow.reviewer_group_id
                == ReviewerGroupMemberRow.reviewer_group_id,
            )
            .join(FundingRoundRow, FundingRoundRow.topic_id == TopicReviewerGroupRow.topic_id)
            .where(FundingRoundRow.id == funding_round_id)
            .distinct()
        )
        result = await self.session.execute(stmt)
        return set(result.scalars().all())

    async def get_reviewer_eligibility(self, user_id: str, proposal_id: int) -> ReviewerEligibility:
        """Whether *user_id* reviews the round that *proposal_id* belongs to."""
        proposal = await self.session.get(ProposalRow, proposal_id)
        if proposal is None or proposal.funding_round_id is None:
            return ReviewerEligibility(user_id=user_id)
        reviewers = await self.get_reviewer_ids_for_round(proposal.funding_round_id)
        return ReviewerEligibility(
            user_id=user_id,
            funding_round_id=proposal.funding_round_id,
            is_reviewer=user_id in reviewers,
        )

    # --- Funding Rounds ---

    async def create_funding_round(
        self,
        name: str,
        total_budget: Decimal,
        start_date: datetime,
        end_date: datetime,
        windows: Mapping[str, PhaseWindow | None],
        mef_id: int = 0,
        topic_id: str | None = None,
        description: str = "",
    ) -> FundingRound:
        """Persist a round and its windows. Raises ConfigurationError on malformed dates."""
        validate_phase_windows(start_date, end_date, windows)
        row = FundingRoundRow(
            name=name,
            description=description,
            mef_id=mef_id,
            topic_id=topic_id,
            total_budget=Decimal(total_budget),
            start_date=start_date,
            end_date=end_date,
        )
        self.session.add(row)
        await self.session.flush()

        window_rows = [
            PhaseWindowRow(
                funding_round_id=row.id,
                phase=phase,
                start_date=window.start_date,
                end_date=window.end_date,
            )
            for phase, window in windows.items()
            if window is not None
        ]
        self.session.add_all(window_rows)
        await self.session.flush()
        logger.info(
            "funding_round_created id=%s name=%s windows=%d", row.id, name, len(window_rows)
        )
        return _round_from_row(row, window_rows)

    async def get_funding_round(self, funding_round_id: str) -> FundingRound | None:
        stmt = (
            select(FundingRoundRow)
            .where(FundingRoundRow.id == funding_round_id)
            .options(selectinload(FundingRoundRow.windows))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return _round_from_row(row, row.windows)

    async def get_all_funding_rounds(self) -> list[FundingRound]:
        """Return every round, oldest start first."""
        stmt = (
            select(FundingRoundRow)
            .order_by(FundingRoundRow.start_date)
            .options(selectinload(FundingRoundRow.windows))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return [_round_from_row(row, row.windows) for row in result.scalars().all()]

    # --- Proposals ---

    async def create_proposal(
        self,
        owner_id: str,
        title: str,
        total_funding_required: Decimal,
        summary: str = "",
    ) -> ProposalRecord:
        """Create a DRAFT proposal."""
        row = ProposalRow(
            owner_id=owner_id,
            title=title,
            summary=summary,
            status=ProposalStatus.DRAFT,
            total_funding_required=Decimal(total_funding_required),
        )
        self.session.add(row)
        await self.session.flush()
        owner = await self.session.get(UserRow, owner_id)
        return _proposal_from_row(row, owner.metadata_json if owner else None)

    async def get_proposal(self, proposal_id: int) -> ProposalRecord | None:
        stmt = (
            select(ProposalRow, UserRow.metadata_json)
            .join(UserRow, UserRow.id == ProposalRow.owner_id)
            .where(ProposalRow.id == proposal_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        found = result.one_or_none()
        if found is None:
            return None
        row, metadata = found
        return _proposal_from_row(row, metadata)

    async def get_proposals_for_round(
        self,
        funding_round_id: str,
        statuses: Iterable[ProposalStatus] | None = None,
    ) -> list[ProposalRecord]:
        """Proposals in a round, in id order, optionally filtered by status."""
        stmt = (
            select(ProposalRow, UserRow.metadata_json)
            .join(UserRow, UserRow.id == ProposalRow.owner_id)
            .where(ProposalRow.funding_round_id == funding_round_id)
            .order_by(ProposalRow.id)
            .execution_options(populate_existing=True)
        )
        if statuses is not None:
            stmt = stmt.where(ProposalRow.status.in_([str(s) for s in statuses]))
        result = await self.session.execute(stmt)
        return [_proposal_from_row(row, metadata) for row, metadata in result.all()]

    async def submit_proposal_to_round(self, proposal_id: int, funding_round_id: str) -> bool:
        """Move a DRAFT proposal into a round's CONSIDERATION phase. False if not a draft."""
        stmt = (
            update(ProposalRow)
            .where(
                ProposalRow.id == proposal_id,
                ProposalRow.status == ProposalStatus.DRAFT,
            )
            .values(funding_round_id=funding_round_id, status=ProposalStatus.CONSIDERATION)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def transition_status(
        self,
        proposal_id: int,
        expected: ProposalStatus,
        new: ProposalStatus,
    ) -> bool:
        """Compare-and-swap the status. Returns False when the status was not *expected*.

        ``UPDATE proposals SET status=:new WHERE id=:id AND status=:expected``.
        All status changes go through here. Concurrent callers cannot both win.
        """
        stmt = (
            update(ProposalRow)
            .where(ProposalRow.id == proposal_id, ProposalRow.status == expected)
            .values(status=new)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    # --- Consideration Votes ---

    async def upsert_consideration_vote(
        self,
        proposal_id: int,
        voter_id: str,
        decision: ConsiderationDecision,
        feedback: str,
    ) -> ConsiderationVote:
        """Insert or overwrite the voter's decision. Last write wins, never a second row."""
        now = datetime.now(UTC)
        stmt = sqlite_insert(ConsiderationVoteRow).values(
            id=_uuid(),
            proposal_id=proposal_id,
            voter_id=voter_id,
            decision=str(decision),
            feedback=feedback,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["proposal_id", "voter_id"],
            set_={
                "decision": stmt.excluded.decision,
                "feedback": stmt.excluded.feedback,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        row = await self.session.scalar(
            stmt.returning(ConsiderationVoteRow), execution_options={"populate_existing": True}
        )
        return self._consideration_vote(row)

    async def get_consideration_votes(self, proposal_id: int) -> list[ConsiderationVote]:
        stmt = (
            select(ConsiderationVoteRow)
            .where(ConsiderationVoteRow.proposal_id == proposal_id)
            .order_by(ConsiderationVoteRow.created_at)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return [self._consideration_vote(row) for row in result.scalars().all()]

    @staticmethod
    def _consideration_vote(row: ConsiderationVoteRow) -> ConsiderationVote:
        return ConsiderationVote(
            proposal_id=row.proposal_id,
            voter_id=row.voter_id,
            decision=ConsiderationDecision(row.decision),
            feedback=row.feedback,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    # --- Oracle Snapshots ---

    async def get_ocv_snapshot(self, proposal_id: int) -> OCVVoteSnapshot | None:
        """Cached consideration tally, or None if the proposal has never been synced."""
        stmt = (
            select(OCVConsiderationVoteRow.vote_data)
            .where(OCVConsiderationVoteRow.proposal_id == proposal_id)
        )
        result = await self.session.execute(stmt)
        data = result.scalar_one_or_none()
        if data is None:
            return None
        return OCVVoteSnapshot.from_payload(data)

    async def save_ocv_snapshot(self, proposal_id: int, snapshot: OCVVoteSnapshot) -> None:
        """Replace the cached consideration tally for a proposal."""
        stmt = sqlite_insert(OCVConsiderationVoteRow).values(
            proposal_id=proposal_id,
            vote_data=snapshot.to_payload(),
            updated_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["proposal_id"],
            set_={"vote_data": stmt.excluded.vote_data, "updated_at": stmt.excluded.updated_at},
        )
        await self.session.execute(stmt)

    async def get_ranked_snapshot(self, funding_round_id: str) -> RankedVoteSnapshot | None:
        stmt = (
            select(OCVRankedVoteRow.vote_data)
            .where(OCVRankedVoteRow.funding_round_id == funding_round_id)
        )
        result = await self.session.execute(stmt)
        data = result.scalar_one_or_none()
        if data is None:
            return None
        return RankedVoteSnapshot.from_payload(data)

    async def save_ranked_snapshot(
        self, funding_round_id: str, snapshot: RankedVoteSnapshot
    ) -> None:
        stmt = sqlite_insert(OCVRankedVoteRow).values(
            funding_round_id=funding_round_id,
            vote_data=snapshot.to_payload(),
            updated_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["funding_round_id"],
            set_={"vote_data": stmt.excluded.vote_data, "updated_at": stmt.excluded.updated_at},
        )
        await self.session.execute(stmt)

    # --- Deliberation Votes ---

    async def upsert_reviewer_deliberation_vote(
        self,
        proposal_id: int,
        user_id: str,
        feedback: str,
        recommendation: bool,
    ) -> ReviewerDeliberationVote:
        stmt = sqlite_insert(ReviewerDeliberationVoteRow).values(
            id=_uuid(),
            proposal_id=proposal_id,
            user_id=user_id,
            feedback=feedback,
            recommendation=recommendation,
            created_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["proposal_id", "user_id"],
            set_={
                "feedback": stmt.excluded.feedback,
                "recommendation": stmt.excluded.recommendation,
            },
        )
        row = await self.session.scalar(
            stmt.returning(ReviewerDeliberationVoteRow),
            execution_options={"populate_existing": True},
        )
        return self._reviewer_deliberation_vote(row)

    async def upsert_community_deliberation_vote(
        self,
        proposal_id: int,
        user_id: str,
        feedback: str,
    ) -> CommunityDeliberationVote:
        stmt = sqlite_insert(CommunityDeliberationVoteRow).values(
            id=_uuid(),
            proposal_id=proposal_id,
            user_id=user_id,
            feedback=feedback,
            created_at=datetime.now(UTC),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["proposal_id", "user_id"],
            set_={"feedback": stmt.excluded.feedback},
        )
        row = await self.session.scalar(
            stmt.returning(CommunityDeliberationVoteRow),
            execution_options={"populate_existing": True},
        )
        return self._community_deliberation_vote(row)

    async def get_reviewer_deliberation_votes(
        self, proposal_id: int
    ) -> list[ReviewerDeliberationVote]:
        stmt = (
            select(ReviewerDeliberationVoteRow)
            .where(ReviewerDeliberationVoteRow.proposal_id == proposal_id)
            .order_by(ReviewerDeliberationVoteRow.created_at)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return [self._reviewer_deliberation_vote(row) for row in result.scalars().all()]

    async def get_community_deliberation_votes(
        self, proposal_id: int
    ) -> list[CommunityDeliberationVote]:
        stmt = (
            select(CommunityDeliberationVoteRow)
            .where(CommunityDeliberationVoteRow.proposal_id == proposal_id)
            .order_by(CommunityDeliberationVoteRow.created_at)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return [self._community_deliberation_vote(row) for row in result.scalars().all()]

    @staticmethod
    def _reviewer_deliberation_vote(row: ReviewerDeliberationVoteRow) -> ReviewerDeliberationVote:
        return ReviewerDeliberationVote(
            proposal_id=row.proposal_id,
            user_id=row.user_id,
            feedback=row.feedback,
            recommendation=row.recommendation,
            created_at=row.created_at,
        )

    @staticmethod
    def _community_deliberation_vote(
        row: CommunityDeliberationVoteRow,
    ) -> CommunityDeliberationVote:
        return CommunityDeliberationVote(
            proposal_id=row.proposal_id,
            user_id=row.user_id,
            feedback=row.feedback,
            created_at=row.created_at,
        )
