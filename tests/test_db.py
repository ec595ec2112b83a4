"""Tests for database layer: engine, ORM models, repository round-trips."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine

from fundflow.core.errors import ConfigurationError
from fundflow.db.models import ConsiderationVoteRow
from fundflow.db.repository import Repository
from fundflow.models.funding import PhaseWindow, ProposalStatus
from fundflow.models.votes import ConsiderationDecision, OCVVoteSnapshot, RankedVoteSnapshot


class TestTableCreation:
    async def test_all_tables_created(self, engine: AsyncEngine):
        async with engine.connect() as conn:
            tables = await conn.run_sync(
                lambda sync_conn: sync_conn.dialect.get_table_names(sync_conn)
            )
        expected = {
            "users",
            "topics",
            "reviewer_groups",
            "reviewer_group_members",
            "topic_reviewer_groups",
            "funding_rounds",
            "phase_windows",
            "proposals",
            "consideration_votes",
            "ocv_consideration_votes",
            "ocv_ranked_votes",
            "reviewer_deliberation_votes",
            "community_deliberation_votes",
        }
        assert expected.issubset(set(tables))


class TestFundingRounds:
    async def test_round_trip_with_partial_windows(self, repo: Repository):
        start = datetime(2025, 1, 1, tzinfo=UTC)
        created = await repo.create_funding_round(
            name="Q1",
            total_budget=Decimal("150000.75"),
            start_date=start,
            end_date=start + timedelta(days=60),
            windows={
                "submission": PhaseWindow(start_date=start, end_date=start + timedelta(days=10)),
                "voting": None,
            },
            mef_id=11,
        )
        loaded = await repo.get_funding_round(created.id)
        assert loaded is not None
        assert loaded.total_budget == Decimal("150000.75")
        assert loaded.mef_id == 11
        assert loaded.submission is not None
        assert loaded.submission.end_date == start + timedelta(days=10)
        assert loaded.consideration is None
        assert loaded.voting is None
        assert not loaded.is_fully_configured()

    async def test_datetimes_come_back_utc(self, repo: Repository):
        start = datetime(2025, 1, 1, 12, tzinfo=UTC)
        created = await repo.create_funding_round(
            "R", Decimal("1"), start, start + timedelta(days=1), {}
        )
        loaded = await repo.get_funding_round(created.id)
        assert loaded.start_date.tzinfo is not None
        assert loaded.start_date == start

    async def test_malformed_window_rejected_at_creation(self, repo: Repository):
        start = datetime(2025, 1, 1, tzinfo=UTC)
        with pytest.raises(ConfigurationError):
            await repo.create_funding_round(
                "Bad",
                Decimal("1"),
                start,
                start + timedelta(days=30),
                {"voting": PhaseWindow(start_date=start + timedelta(days=5), end_date=start)},
            )
        assert await repo.get_all_funding_rounds() == []

    async def test_unknown_round(self, repo: Repository):
        assert await repo.get_funding_round("nope") is None


class TestProposals:
    async def test_create_is_draft_with_proposer_name(self, repo, community):
        proposal = await repo.create_proposal(community.owner_id, "Indexer", Decimal("2500.50"))
        assert proposal.status == ProposalStatus.DRAFT
        assert proposal.proposer == "alice"
        assert proposal.funding_round_id is None
        loaded = await repo.get_proposal(proposal.id)
        assert loaded.total_funding_required == Decimal("2500.50")

    async def test_proposer_defaults_to_anonymous(self, repo):
        user = await repo.create_user()
        proposal = await repo.create_proposal(user.id, "Docs", Decimal("10"))
        assert proposal.proposer == "Anonymous"

    async def test_submit_only_from_draft(self, repo, make_round, community):
        funding_round = await make_round()
        proposal = await repo.create_proposal(community.owner_id, "Wallet", Decimal("10"))
        assert await repo.submit_proposal_to_round(proposal.id, funding_round.id)
        assert not await repo.submit_proposal_to_round(proposal.id, funding_round.id)
        loaded = await repo.get_proposal(proposal.id)
        assert loaded.status == ProposalStatus.CONSIDERATION
        assert loaded.funding_round_id == funding_round.id

    async def test_compare_and_swap_transition(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round())
        assert await repo.transition_status(
            proposal_id, ProposalStatus.CONSIDERATION, ProposalStatus.DELIBERATION
        )
        # second caller expected CONSIDERATION too and loses
        assert not await repo.transition_status(
            proposal_id, ProposalStatus.CONSIDERATION, ProposalStatus.REJECTED
        )
        assert (await repo.get_proposal(proposal_id)).status == ProposalStatus.DELIBERATION

    async def test_filter_by_status(self, repo, make_round, make_proposal):
        funding_round = await make_round()
        first = await make_proposal(funding_round, title="one")
        second = await make_proposal(funding_round, title="two")
        await repo.transition_status(
            second, ProposalStatus.CONSIDERATION, ProposalStatus.DELIBERATION
        )
        everything = await repo.get_proposals_for_round(funding_round.id)
        assert [p.id for p in everything] == [first, second]
        only_deliberation = await repo.get_proposals_for_round(
            funding_round.id, [ProposalStatus.DELIBERATION]
        )
        assert [p.id for p in only_deliberation] == [second]


class TestReviewers:
    async def test_reviewer_ids_follow_topic(self, repo, make_round, community):
        funding_round = await make_round()
        reviewers = await repo.get_reviewer_ids_for_round(funding_round.id)
        assert reviewers == set(community.reviewer_ids)

    async def test_round_without_topic_has_no_reviewers(self, repo):
        start = datetime(2025, 1, 1, tzinfo=UTC)
        created = await repo.create_funding_round(
            "No topic", Decimal("1"), start, start + timedelta(days=1), {}
        )
        assert await repo.get_reviewer_ids_for_round(created.id) == set()

    async def test_eligibility(self, repo, make_round, make_proposal, community):
        proposal_id = await make_proposal(await make_round())
        reviewer = await repo.get_reviewer_eligibility(community.reviewer_ids[0], proposal_id)
        outsider = await repo.get_reviewer_eligibility(community.outsider_id, proposal_id)
        assert reviewer.is_reviewer
        assert not outsider.is_reviewer
        assert outsider.funding_round_id == reviewer.funding_round_id

    async def test_membership_is_idempotent(self, repo, community):
        group = await repo.create_reviewer_group("Second")
        await repo.add_reviewer_group_member(group.id, community.outsider_id)
        await repo.add_reviewer_group_member(group.id, community.outsider_id)


class TestConsiderationVoteUpsert:
    async def test_revote_overwrites_in_place(self, repo, make_round, make_proposal, community):
        proposal_id = await make_proposal(await make_round())
        voter = community.reviewer_ids[0]
        await repo.upsert_consideration_vote(
            proposal_id, voter, ConsiderationDecision.APPROVED, "solid"
        )
        second = await repo.upsert_consideration_vote(
            proposal_id, voter, ConsiderationDecision.REJECTED, "changed my mind"
        )
        assert second.decision == ConsiderationDecision.REJECTED
        assert second.feedback == "changed my mind"
        assert second.created_at.tzinfo is not None
        assert second.updated_at >= second.created_at

        votes = await repo.get_consideration_votes(proposal_id)
        assert len(votes) == 1
        count = await repo.session.scalar(
            select(func.count()).select_from(ConsiderationVoteRow)
        )
        assert count == 1


class TestSnapshots:
    async def test_missing_snapshot_is_none(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round())
        assert await repo.get_ocv_snapshot(proposal_id) is None

    async def test_snapshot_replaced(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round())
        await repo.save_ocv_snapshot(
            proposal_id, OCVVoteSnapshot(total_community_votes=1, positive_stake_weight="0.5")
        )
        await repo.save_ocv_snapshot(
            proposal_id,
            OCVVoteSnapshot(
                total_community_votes=9,
                positive_stake_weight="98765432109876543210.123456789",
                eligible=True,
            ),
        )
        snapshot = await repo.get_ocv_snapshot(proposal_id)
        assert snapshot.total_community_votes == 9
        assert snapshot.eligible is True
        assert snapshot.positive_stake == Decimal("98765432109876543210.123456789")

    async def test_ranked_snapshot(self, repo, make_round):
        funding_round = await make_round("voting")
        assert await repo.get_ranked_snapshot(funding_round.id) is None
        await repo.save_ranked_snapshot(funding_round.id, RankedVoteSnapshot(winners=[3, 1]))
        await repo.save_ranked_snapshot(funding_round.id, RankedVoteSnapshot(winners=[1, 3, 2]))
        snapshot = await repo.get_ranked_snapshot(funding_round.id)
        assert snapshot.winners == [1, 3, 2]


class TestDeliberationUpsert:
    async def test_reviewer_vote_overwrites(self, repo, make_round, make_proposal, community):
        proposal_id = await make_proposal(await make_round())
        user = community.reviewer_ids[1]
        await repo.upsert_reviewer_deliberation_vote(proposal_id, user, "yes", True)
        stored = await repo.upsert_reviewer_deliberation_vote(proposal_id, user, "no", False)
        assert stored.recommendation is False
        assert stored.feedback == "no"
        assert stored.user_id == user
        assert len(await repo.get_reviewer_deliberation_votes(proposal_id)) == 1

    async def test_community_vote_overwrites(self, repo, make_round, make_proposal, community):
        proposal_id = await make_proposal(await make_round())
        await repo.upsert_community_deliberation_vote(proposal_id, community.outsider_id, "a")
        stored = await repo.upsert_community_deliberation_vote(
            proposal_id, community.outsider_id, "b"
        )
        assert stored.feedback == "b"
        votes = await repo.get_community_deliberation_votes(proposal_id)
        assert [v.feedback for v in votes] == ["b"]

    async def test_upsert_returns_row_for_its_own_voter(
        self, repo, make_round, make_proposal, community
    ):
        proposal_id = await make_proposal(await make_round())
        first, second = community.reviewer_ids[:2]
        await repo.upsert_reviewer_deliberation_vote(proposal_id, first, "first", True)
        stored = await repo.upsert_reviewer_deliberation_vote(proposal_id, second, "second", False)
        assert (stored.user_id, stored.feedback) == (second, "second")

        again = await repo.upsert_reviewer_deliberation_vote(proposal_id, first, "revised", False)
        assert (again.user_id, again.feedback, again.recommendation) == (first, "revised", False)
        assert len(await repo.get_reviewer_deliberation_votes(proposal_id)) == 2
