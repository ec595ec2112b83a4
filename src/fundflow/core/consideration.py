"""Consideration eligibility — merges reviewer votes with the oracle's community tally.

Read-only: this module never changes proposal status. ``ProposalStatusMachine``
acts on the verdicts it produces.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from fundflow.core.allocation import budget_breakdown, check_ballot, format_consideration_memo
from fundflow.core.deliberation import DELIBERATED_STATUSES
from fundflow.core.errors import NotFoundError, OracleUnavailable
from fundflow.core.phases import resolve_round
from fundflow.models.allocation import ConsiderationSummary, ConsiderationSummaryEntry
from fundflow.models.funding import FundingRound, FundingRoundPhase, ProposalRecord, ProposalStatus
from fundflow.models.votes import (
    BallotMemo,
    CommunityVoteStats,
    ConsiderationCounts,
    ConsiderationDecision,
    ConsiderationEvaluation,
    ConsiderationVerdict,
    ConsiderationVote,
    OCVVoteSnapshot,
    ReviewerVoteStats,
    VoteEligibility,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fundflow.db.repository import Repository
    from fundflow.oracle.client import VoteOracleClient

logger = logging.getLogger(__name__)

DEFAULT_MIN_REVIEWER_APPROVALS = 3

# Proposals still visible to consideration voters.
VOTABLE_STATUSES: frozenset[ProposalStatus] = frozenset(
    {ProposalStatus.CONSIDERATION, ProposalStatus.DELIBERATION}
)


def count_reviewer_votes(
    votes: Iterable[ConsiderationVote],
    reviewer_ids: set[str],
) -> tuple[int, int]:
    """(approved, rejected) among reviewers only. One stored vote per voter, so no dedup needed."""
    approved = rejected = 0
    for vote in votes:
        if vote.voter_id not in reviewer_ids:
            continue
        if vote.decision == ConsiderationDecision.APPROVED:
            approved += 1
        else:
            rejected += 1
    return approved, rejected


def consideration_verdict(
    approved: int,
    rejected: int,
    community_eligible: bool,
    min_reviewer_approvals: int = DEFAULT_MIN_REVIEWER_APPROVALS,
) -> ConsiderationVerdict:
    """Approved beats rejected: either source can approve, only reviewers can reject."""
    if approved >= min_reviewer_approvals or community_eligible:
        return ConsiderationVerdict.APPROVED
    if rejected >= min_reviewer_approvals:
        return ConsiderationVerdict.REJECTED
    return ConsiderationVerdict.PENDING


class ConsiderationEligibilityEngine:
    """Evaluate consideration verdicts for proposals.

    Args:
        repo: Storage access.
        min_reviewer_approvals: Reviewer votes needed to approve (or reject).
        oracle: Optional oracle client. Without one, only cached snapshots are read.
    """

    def __init__(
        self,
        repo: Repository,
        min_reviewer_approvals: int = DEFAULT_MIN_REVIEWER_APPROVALS,
        oracle: VoteOracleClient | None = None,
    ) -> None:
        self.repo = repo
        self.min_reviewer_approvals = min_reviewer_approvals
        self.oracle = oracle

    async def community_snapshot(
        self,
        proposal: ProposalRecord,
        funding_round: FundingRound | None = None,
        refresh: bool = False,
    ) -> OCVVoteSnapshot:
        """Cached community tally, optionally refreshed from the oracle first.

        Never raises on oracle failure: logs a warning and serves the last cached
        snapshot, or the empty "not eligible, zero votes" default.
        """
        if refresh and self.oracle is not None:
            if funding_round is None and proposal.funding_round_id is not None:
                funding_round = await self.repo.get_funding_round(proposal.funding_round_id)
            window = funding_round.consideration if funding_round else None
            if funding_round is not None and window is not None:
                try:
                    snapshot = await self.oracle.get_consideration_votes(
                        proposal.id, funding_round.mef_id, window.start_date, window.end_date
                    )
                except OracleUnavailable as exc:
                    logger.warning(
                        "ocv_consideration_fallback proposal=%s error=%s", proposal.id, exc
                    )
                else:
                    await self.repo.save_ocv_snapshot(proposal.id, snapshot)
                    return snapshot

        cached = await self.repo.get_ocv_snapshot(proposal.id)
        return cached if cached is not None else OCVVoteSnapshot.empty()

    async def evaluate(self, proposal_id: int, refresh: bool = False) -> ConsiderationEvaluation:
        """Merged reviewer + community verdict. Raises NotFoundError for unknown proposals."""
        proposal = await self.repo.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("proposal", proposal_id)
        return await self._evaluate(proposal, refresh=refresh)

    async def _evaluate(
        self,
        proposal: ProposalRecord,
        funding_round: FundingRound | None = None,
        reviewer_ids: set[str] | None = None,
        refresh: bool = False,
    ) -> ConsiderationEvaluation:
        if reviewer_ids is None:
            reviewer_ids = (
                await self.repo.get_reviewer_ids_for_round(proposal.funding_round_id)
                if proposal.funding_round_id
                else set()
            )
        votes = await self.repo.get_consideration_votes(proposal.id)
        approved, rejected = count_reviewer_votes(votes, reviewer_ids)
        snapshot = await self.community_snapshot(proposal, funding_round, refresh=refresh)

        return ConsiderationEvaluation(
            proposal_id=proposal.id,
            verdict=consideration_verdict(
                approved, rejected, snapshot.eligible, self.min_reviewer_approvals
            ),
            reviewer=ReviewerVoteStats(
                approved=approved,
                rejected=rejected,
                required_reviewer_approvals=self.min_reviewer_approvals,
            ),
            community=CommunityVoteStats.from_snapshot(snapshot),
        )

    async def round_counts(self, funding_round_id: str) -> ConsiderationCounts:
        """Verdict tallies over the round's CONSIDERATION and DELIBERATION proposals."""
        funding_round = await self.repo.get_funding_round(funding_round_id)
        if funding_round is None:
            raise NotFoundError("funding round", funding_round_id)
        reviewer_ids = await self.repo.get_reviewer_ids_for_round(funding_round_id)
        proposals = await self.repo.get_proposals_for_round(funding_round_id, VOTABLE_STATUSES)

        counts = ConsiderationCounts()
        for proposal in proposals:
            evaluation = await self._evaluate(proposal, funding_round, reviewer_ids)
            if evaluation.verdict == ConsiderationVerdict.APPROVED:
                counts.approved += 1
            elif evaluation.verdict == ConsiderationVerdict.REJECTED:
                counts.rejected += 1
            else:
                counts.pending += 1
            counts.total += 1
        return counts

    async def summary(self, funding_round_id: str) -> ConsiderationSummary:
        """Consideration phase summary over every proposal submitted to the round.

        Community stats come from the cached snapshots; nothing is fetched here.
        """
        funding_round = await self.repo.get_funding_round(funding_round_id)
        if funding_round is None:
            raise NotFoundError("funding round", funding_round_id)
        window = funding_round.consideration
        if window is None:
            raise NotFoundError("consideration phase", funding_round_id)

        reviewer_ids = await self.repo.get_reviewer_ids_for_round(funding_round_id)
        proposals = await self.repo.get_proposals_for_round(funding_round_id)
        entries: list[ConsiderationSummaryEntry] = []
        for proposal in proposals:
            evaluation = await self._evaluate(proposal, funding_round, reviewer_ids)
            entries.append(
                ConsiderationSummaryEntry(
                    id=proposal.id,
                    title=proposal.title,
                    proposer=proposal.proposer,
                    status=proposal.status,
                    total_funding_required=proposal.total_funding_required,
                    verdict=evaluation.verdict,
                    reviewer=evaluation.reviewer,
                    community=evaluation.community,
                )
            )

        moved_forward = sum(1 for p in proposals if p.status in DELIBERATED_STATUSES)
        return ConsiderationSummary(
            funding_round_name=funding_round.name,
            start_date=window.start_date,
            end_date=window.end_date,
            total_proposals=len(entries),
            moved_forward_proposals=moved_forward,
            not_moved_forward_proposals=len(entries) - moved_forward,
            budget_breakdown=budget_breakdown(p.total_funding_required for p in proposals),
            proposal_votes=entries,
        )

    async def ballot_memo(self, funding_round_id: str, proposal_ids: list[int]) -> BallotMemo:
        """On-chain memo approving ``proposal_ids``, which must all be open for consideration."""
        if await self.repo.get_funding_round(funding_round_id) is None:
            raise NotFoundError("funding round", funding_round_id)
        proposals = await self.repo.get_proposals_for_round(funding_round_id, VOTABLE_STATUSES)
        check_ballot(proposal_ids, (p.id for p in proposals))
        return BallotMemo(
            memo=format_consideration_memo(proposal_ids), proposal_ids=list(proposal_ids)
        )

    async def check_voting_eligibility(
        self, proposal_id: int, now: datetime | None = None
    ) -> VoteEligibility:
        """Whether consideration votes are accepted for a proposal right now."""
        now = now or datetime.now(UTC)
        proposal = await self.repo.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("proposal", proposal_id)
        if proposal.funding_round_id is None:
            return VoteEligibility(
                eligible=False, message="Proposal is not part of a funding round"
            )

        funding_round = await self.repo.get_funding_round(proposal.funding_round_id)
        if funding_round is None:
            raise NotFoundError("funding round", proposal.funding_round_id)
        if not funding_round.is_fully_configured():
            return VoteEligibility(
                eligible=False, message="Funding round phases are not fully configured"
            )

        phase = resolve_round(funding_round, now).phase
        if phase != FundingRoundPhase.CONSIDERATION:
            return VoteEligibility(
                eligible=False,
                message=f"Funding round is in {phase} phase, not CONSIDERATION",
            )
        if proposal.status not in VOTABLE_STATUSES:
            return VoteEligibility(
                eligible=False,
                message=f"Proposal is in {proposal.status} status and cannot receive votes",
            )
        return VoteEligibility(eligible=True)
