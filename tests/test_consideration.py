"""Tests for the consideration eligibility engine."""

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import httpx
import pytest

from fundflow.core.consideration import (
    ConsiderationEligibilityEngine,
    consideration_verdict,
    count_reviewer_votes,
)
from fundflow.core.errors import NotFoundError, VoteNotAllowed
from fundflow.models.funding import PhaseWindow, ProposalStatus
from fundflow.models.votes import (
    ConsiderationDecision,
    ConsiderationVerdict,
    ConsiderationVote,
    OCVVoteSnapshot,
)
from fundflow.oracle.client import VoteOracleClient

APPROVED = ConsiderationDecision.APPROVED
REJECTED = ConsiderationDecision.REJECTED


def _timeout_oracle() -> VoteOracleClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    return VoteOracleClient("https://ocv.test", transport=httpx.MockTransport(handler))


def _eligible_oracle() -> VoteOracleClient:
    return VoteOracleClient(
        "https://ocv.test",
        transport=httpx.MockTransport(
            lambda request: httpx.Response(
                200,
                json={
                    "total_community_votes": 12,
                    "total_positive_community_votes": 10,
                    "positive_stake_weight": "5000000.25",
                    "elegible": True,
                    "votes": [],
                },
            )
        ),
    )


class TestVerdict:
    @pytest.mark.parametrize(
        ("approved", "rejected", "community", "expected"),
        [
            (3, 0, False, ConsiderationVerdict.APPROVED),
            (0, 0, True, ConsiderationVerdict.APPROVED),
            (3, 3, False, ConsiderationVerdict.APPROVED),
            (0, 3, True, ConsiderationVerdict.APPROVED),
            (0, 3, False, ConsiderationVerdict.REJECTED),
            (2, 2, False, ConsiderationVerdict.PENDING),
            (0, 0, False, ConsiderationVerdict.PENDING),
        ],
    )
    def test_verdict_table(self, approved, rejected, community, expected):
        assert consideration_verdict(approved, rejected, community, 3) == expected

    def test_threshold_is_configurable(self):
        assert consideration_verdict(1, 0, False, 1) == ConsiderationVerdict.APPROVED

    def test_only_reviewers_counted(self):
        votes = [
            ConsiderationVote(proposal_id=1, voter_id="r1", decision=APPROVED, feedback="x"),
            ConsiderationVote(proposal_id=1, voter_id="r2", decision=REJECTED, feedback="x"),
            ConsiderationVote(proposal_id=1, voter_id="c1", decision=APPROVED, feedback="x"),
        ]
        assert count_reviewer_votes(votes, {"r1", "r2"}) == (1, 1)


class TestEvaluate:
    async def test_reviewer_approvals_reach_threshold(
        self, repo, make_round, make_proposal, community
    ):
        proposal_id = await make_proposal(await make_round())
        engine = ConsiderationEligibilityEngine(repo, min_reviewer_approvals=3)
        for reviewer in community.reviewer_ids[:2]:
            await repo.upsert_consideration_vote(proposal_id, reviewer, APPROVED, "ok")
        assert (await engine.evaluate(proposal_id)).verdict == ConsiderationVerdict.PENDING

        await repo.upsert_consideration_vote(proposal_id, community.reviewer_ids[2], APPROVED, "ok")
        evaluation = await engine.evaluate(proposal_id)
        assert evaluation.verdict == ConsiderationVerdict.APPROVED
        assert evaluation.reviewer.approved == 3
        assert evaluation.reviewer.is_eligible

    async def test_same_vote_twice_counts_once(self, repo, make_round, make_proposal, community):
        proposal_id = await make_proposal(await make_round())
        engine = ConsiderationEligibilityEngine(repo)
        reviewer = community.reviewer_ids[0]

        await repo.upsert_consideration_vote(proposal_id, reviewer, APPROVED, "ok")
        once = await engine.evaluate(proposal_id)
        await repo.upsert_consideration_vote(proposal_id, reviewer, APPROVED, "ok")
        twice = await engine.evaluate(proposal_id)

        assert once.reviewer.approved == twice.reviewer.approved == 1

    async def test_changed_vote_counts_under_latest_decision(
        self, repo, make_round, make_proposal, community
    ):
        proposal_id = await make_proposal(await make_round())
        engine = ConsiderationEligibilityEngine(repo)
        reviewer = community.reviewer_ids[0]
        await repo.upsert_consideration_vote(proposal_id, reviewer, APPROVED, "ok")
        await repo.upsert_consideration_vote(proposal_id, reviewer, REJECTED, "no")
        evaluation = await engine.evaluate(proposal_id)
        assert (evaluation.reviewer.approved, evaluation.reviewer.rejected) == (0, 1)

    async def test_non_reviewer_votes_not_counted(
        self, repo, make_round, make_proposal, community
    ):
        proposal_id = await make_proposal(await make_round())
        engine = ConsiderationEligibilityEngine(repo, min_reviewer_approvals=1)
        await repo.upsert_consideration_vote(proposal_id, community.outsider_id, APPROVED, "yay")
        evaluation = await engine.evaluate(proposal_id)
        assert evaluation.reviewer.approved == 0
        assert evaluation.verdict == ConsiderationVerdict.PENDING

    async def test_community_eligibility_approves(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round())
        await repo.save_ocv_snapshot(
            proposal_id, OCVVoteSnapshot(total_community_votes=40, eligible=True)
        )
        evaluation = await ConsiderationEligibilityEngine(repo).evaluate(proposal_id)
        assert evaluation.verdict == ConsiderationVerdict.APPROVED
        assert evaluation.reviewer.approved == 0
        assert evaluation.community.is_eligible
        assert evaluation.community.total == 40

    async def test_unsynced_proposal_defaults(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round())
        evaluation = await ConsiderationEligibilityEngine(repo).evaluate(proposal_id)
        assert evaluation.community.is_eligible is False
        assert evaluation.community.total == 0
        assert evaluation.community.positive_stake_weight == "0"

    async def test_unknown_proposal(self, repo):
        with pytest.raises(NotFoundError):
            await ConsiderationEligibilityEngine(repo).evaluate(424242)

    async def test_evaluate_never_changes_status(self, repo, make_round, make_proposal, community):
        proposal_id = await make_proposal(await make_round())
        for reviewer in community.reviewer_ids[:3]:
            await repo.upsert_consideration_vote(proposal_id, reviewer, APPROVED, "ok")
        await ConsiderationEligibilityEngine(repo).evaluate(proposal_id)
        assert (await repo.get_proposal(proposal_id)).status == ProposalStatus.CONSIDERATION


class TestOracleRefresh:
    async def test_refresh_caches_oracle_tally(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round())
        oracle = _eligible_oracle()
        engine = ConsiderationEligibilityEngine(repo, oracle=oracle)
        evaluation = await engine.evaluate(proposal_id, refresh=True)
        await oracle.aclose()

        assert evaluation.verdict == ConsiderationVerdict.APPROVED
        cached = await repo.get_ocv_snapshot(proposal_id)
        assert cached.positive_stake_weight == "5000000.25"

    async def test_timeout_falls_back_to_empty_default(
        self, repo, make_round, make_proposal, caplog
    ):
        proposal_id = await make_proposal(await make_round())
        oracle = _timeout_oracle()
        engine = ConsiderationEligibilityEngine(repo, oracle=oracle)
        with caplog.at_level(logging.WARNING, logger="fundflow.core.consideration"):
            evaluation = await engine.evaluate(proposal_id, refresh=True)
        await oracle.aclose()

        assert evaluation.verdict == ConsiderationVerdict.PENDING
        assert evaluation.community.is_eligible is False
        assert evaluation.community.total == 0
        assert "ocv_consideration_fallback" in caplog.text

    async def test_timeout_falls_back_to_cached_snapshot(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round())
        await repo.save_ocv_snapshot(
            proposal_id, OCVVoteSnapshot(total_community_votes=7, eligible=True)
        )
        oracle = _timeout_oracle()
        evaluation = await ConsiderationEligibilityEngine(repo, oracle=oracle).evaluate(
            proposal_id, refresh=True
        )
        await oracle.aclose()
        assert evaluation.verdict == ConsiderationVerdict.APPROVED
        assert evaluation.community.total == 7


class TestRoundCounts:
    async def test_counts(self, repo, make_round, make_proposal, community):
        funding_round = await make_round()
        approved = await make_proposal(funding_round, title="approved")
        rejected = await make_proposal(funding_round, title="rejected")
        await make_proposal(funding_round, title="pending")
        draft = await repo.create_proposal(community.owner_id, "draft", 5)

        for reviewer in community.reviewer_ids[:3]:
            await repo.upsert_consideration_vote(approved, reviewer, APPROVED, "ok")
            await repo.upsert_consideration_vote(rejected, reviewer, REJECTED, "no")

        counts = await ConsiderationEligibilityEngine(repo).round_counts(funding_round.id)
        assert (counts.total, counts.approved, counts.rejected, counts.pending) == (3, 1, 1, 1)
        assert draft.status == ProposalStatus.DRAFT

    async def test_unknown_round(self, repo):
        with pytest.raises(NotFoundError):
            await ConsiderationEligibilityEngine(repo).round_counts("missing")


class TestSummary:
    async def test_outcome_per_proposal(self, repo, make_round, make_proposal, community):
        funding_round = await make_round("deliberation")
        forward = await make_proposal(funding_round, amount=Decimal("900"), title="forward")
        dropped = await make_proposal(funding_round, title="dropped")
        community_pick = await make_proposal(funding_round, title="community pick")

        for reviewer in community.reviewer_ids[:3]:
            await repo.upsert_consideration_vote(forward, reviewer, APPROVED, "ok")
            await repo.upsert_consideration_vote(dropped, reviewer, REJECTED, "no")
        await repo.upsert_consideration_vote(forward, community.outsider_id, REJECTED, "meh")
        await repo.save_ocv_snapshot(
            community_pick,
            OCVVoteSnapshot(total_community_votes=4, total_positive_votes=3, eligible=True),
        )
        await repo.transition_status(
            forward, ProposalStatus.CONSIDERATION, ProposalStatus.DELIBERATION
        )

        summary = await ConsiderationEligibilityEngine(repo).summary(funding_round.id)
        assert summary.funding_round_name == funding_round.name
        assert summary.start_date == funding_round.consideration.start_date
        assert summary.total_proposals == 3
        assert (summary.moved_forward_proposals, summary.not_moved_forward_proposals) == (1, 2)
        assert summary.budget_breakdown.model_dump() == {"small": 2, "medium": 1, "large": 0}

        by_title = {e.title: e for e in summary.proposal_votes}
        assert [e.id for e in summary.proposal_votes] == [forward, dropped, community_pick]
        assert by_title["forward"].status == ProposalStatus.DELIBERATION
        assert by_title["forward"].verdict == ConsiderationVerdict.APPROVED
        assert by_title["forward"].reviewer.approved == 3
        assert by_title["forward"].reviewer.rejected == 0
        assert by_title["dropped"].verdict == ConsiderationVerdict.REJECTED
        assert by_title["dropped"].status == ProposalStatus.CONSIDERATION
        assert by_title["community pick"].verdict == ConsiderationVerdict.APPROVED
        assert by_title["community pick"].community.is_eligible is True
        assert by_title["community pick"].community.positive == 3
        assert by_title["forward"].proposer == "alice"

    async def test_unknown_round(self, repo):
        with pytest.raises(NotFoundError, match="funding round"):
            await ConsiderationEligibilityEngine(repo).summary("missing")

    async def test_missing_consideration_window(self, repo, community):
        now = datetime.now(UTC)
        funding_round = await repo.create_funding_round(
            "No consideration",
            Decimal("10"),
            now,
            now + timedelta(days=7),
            {"submission": PhaseWindow(start_date=now, end_date=now + timedelta(days=7))},
            topic_id=community.topic_id,
        )
        with pytest.raises(NotFoundError, match="consideration phase"):
            await ConsiderationEligibilityEngine(repo).summary(funding_round.id)


class TestBallotMemo:
    async def test_memo_keeps_ballot_order(self, repo, make_round, make_proposal):
        funding_round = await make_round()
        first = await make_proposal(funding_round)
        second = await make_proposal(funding_round)
        memo = await ConsiderationEligibilityEngine(repo).ballot_memo(
            funding_round.id, [second, first]
        )
        assert memo.memo == f"YES {second} {first}"
        assert memo.proposal_ids == [second, first]

    async def test_repeated_proposal(self, repo, make_round, make_proposal):
        funding_round = await make_round()
        pid = await make_proposal(funding_round)
        with pytest.raises(VoteNotAllowed, match="appears twice"):
            await ConsiderationEligibilityEngine(repo).ballot_memo(funding_round.id, [pid, pid])

    async def test_closed_proposal(self, repo, make_round, make_proposal):
        funding_round = await make_round()
        pid = await make_proposal(funding_round)
        await repo.transition_status(pid, ProposalStatus.CONSIDERATION, ProposalStatus.REJECTED)
        with pytest.raises(VoteNotAllowed, match="not on this ballot"):
            await ConsiderationEligibilityEngine(repo).ballot_memo(funding_round.id, [pid])

    async def test_proposal_from_another_round(self, repo, make_round, make_proposal):
        funding_round = await make_round()
        other = await make_proposal(await make_round())
        with pytest.raises(VoteNotAllowed):
            await ConsiderationEligibilityEngine(repo).ballot_memo(funding_round.id, [other])

    async def test_unknown_round(self, repo):
        with pytest.raises(NotFoundError):
            await ConsiderationEligibilityEngine(repo).ballot_memo("missing", [1])


class TestVotingEligibility:
    async def test_open_during_consideration(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round("consideration"))
        check = await ConsiderationEligibilityEngine(repo).check_voting_eligibility(proposal_id)
        assert check.eligible

    async def test_closed_outside_consideration(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round("deliberation"))
        check = await ConsiderationEligibilityEngine(repo).check_voting_eligibility(proposal_id)
        assert not check.eligible
        assert "DELIBERATION" in check.message

    async def test_closed_for_rejected_proposal(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round())
        await repo.transition_status(
            proposal_id, ProposalStatus.CONSIDERATION, ProposalStatus.REJECTED
        )
        check = await ConsiderationEligibilityEngine(repo).check_voting_eligibility(proposal_id)
        assert not check.eligible

    async def test_open_for_deliberation_proposal(self, repo, make_round, make_proposal):
        proposal_id = await make_proposal(await make_round())
        await repo.transition_status(
            proposal_id, ProposalStatus.CONSIDERATION, ProposalStatus.DELIBERATION
        )
        check = await ConsiderationEligibilityEngine(repo).check_voting_eligibility(proposal_id)
        assert check.eligible

    async def test_closed_when_round_partially_configured(self, repo, community):
        now = datetime.now(UTC)
        funding_round = await repo.create_funding_round(
            "Partial",
            5000,
            now - timedelta(days=1),
            now + timedelta(days=30),
            {
                "consideration": PhaseWindow(
                    start_date=now - timedelta(days=1), end_date=now + timedelta(days=1)
                )
            },
            topic_id=community.topic_id,
        )
        proposal = await repo.create_proposal(community.owner_id, "P", 10)
        await repo.submit_proposal_to_round(proposal.id, funding_round.id)
        check = await ConsiderationEligibilityEngine(repo).check_voting_eligibility(proposal.id)
        assert not check.eligible
        assert "not fully configured" in check.message
