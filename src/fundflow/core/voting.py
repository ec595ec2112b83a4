"""Voting phase results — ranked summary and funds distribution.

The allocation is recomputed from the latest ranked snapshot on every read.
While the voting window is open the distribution is advisory. Once the window
has ended it is final, and it is what ``finalize_round`` settles proposals from.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from fundflow.core.allocation import allocate, budget_breakdown, check_ballot, format_voting_memo
from fundflow.core.errors import NotFoundError, OracleUnavailable
from fundflow.models.allocation import (
    AllocationResult,
    FundsDistributionEntry,
    FundsDistributionSummary,
    ProposalFunding,
    RankedEntry,
    RankedSummary,
)
from fundflow.models.funding import FundingRound, PhaseWindow, ProposalRecord, ProposalStatus
from fundflow.models.votes import BallotMemo, RankedVoteSnapshot

if TYPE_CHECKING:
    from fundflow.db.repository import Repository
    from fundflow.oracle.client import VoteOracleClient

logger = logging.getLogger(__name__)

# Proposals that can receive funds.
FUNDABLE_STATUSES: tuple[ProposalStatus, ...] = (
    ProposalStatus.DELIBERATION,
    ProposalStatus.VOTING,
    ProposalStatus.APPROVED,
    ProposalStatus.REJECTED,
)

# Proposals a ranked ballot may list. DELIBERATION covers rounds the job has not swept yet.
BALLOT_STATUSES: tuple[ProposalStatus, ...] = (ProposalStatus.DELIBERATION, ProposalStatus.VOTING)

RANKED_STATUS = "VOTING"
UNRANKED_STATUS = "NO_VOTES"


@dataclass
class VotingState:
    """Everything one voting-phase read works from."""

    funding_round: FundingRound
    window: PhaseWindow
    proposals: list[ProposalRecord]
    ranked: RankedVoteSnapshot
    oracle_available: bool


class VotingResults:
    """Read-side service for the voting phase.

    Args:
        repo: Storage access.
        oracle: Optional oracle client. Without one, only the cached ranked snapshot is read.
    """

    def __init__(self, repo: Repository, oracle: VoteOracleClient | None = None) -> None:
        self.repo = repo
        self.oracle = oracle

    async def ranked_snapshot(
        self, funding_round: FundingRound, refresh: bool = True
    ) -> tuple[RankedVoteSnapshot, bool]:
        """Latest ranked tabulation and whether the oracle answered.

        Falls back to the cached snapshot (or no winners at all) when the oracle fails.
        """
        window = funding_round.voting
        if refresh and self.oracle is not None and window is not None:
            try:
                snapshot = await self.oracle.get_ranked_votes(
                    funding_round.mef_id, window.start_date, window.end_date
                )
            except OracleUnavailable as exc:
                logger.warning(
                    "ocv_ranked_fallback round=%s mef=%s error=%s",
                    funding_round.id,
                    funding_round.mef_id,
                    exc,
                )
            else:
                await self.repo.save_ranked_snapshot(funding_round.id, snapshot)
                return snapshot, True

        cached = await self.repo.get_ranked_snapshot(funding_round.id)
        available = self.oracle is None or not refresh
        return (cached if cached is not None else RankedVoteSnapshot()), available

    async def load(self, funding_round_id: str, refresh: bool = True) -> VotingState:
        funding_round = await self.repo.get_funding_round(funding_round_id)
        if funding_round is None:
            raise NotFoundError("funding round", funding_round_id)
        if funding_round.voting is None:
            raise NotFoundError("voting phase", funding_round_id)
        proposals = await self.repo.get_proposals_for_round(funding_round_id, FUNDABLE_STATUSES)
        ranked, available = await self.ranked_snapshot(funding_round, refresh=refresh)
        return VotingState(
            funding_round=funding_round,
            window=funding_round.voting,
            proposals=proposals,
            ranked=ranked,
            oracle_available=available,
        )

    @staticmethod
    def allocation_for(state: VotingState) -> AllocationResult:
        return allocate(
            state.funding_round.total_budget,
            state.ranked.winners,
            [
                ProposalFunding(id=p.id, total_funding_required=p.total_funding_required)
                for p in state.proposals
            ],
        )

    async def allocation(self, funding_round_id: str, refresh: bool = True) -> AllocationResult:
        return self.allocation_for(await self.load(funding_round_id, refresh=refresh))

    async def distribution_summary(
        self,
        funding_round_id: str,
        now: datetime | None = None,
        refresh: bool = True,
    ) -> FundsDistributionSummary:
        """Funded / not-funded partition of the round's budget. Final once voting has ended."""
        now = now or datetime.now(UTC)
        state = await self.load(funding_round_id, refresh=refresh)
        result = self.allocation_for(state)
        by_id = {p.id: p for p in state.proposals}

        entries = [
            FundsDistributionEntry(
                id=a.id,
                title=by_id[a.id].title,
                proposer=by_id[a.id].proposer,
                status=by_id[a.id].status,
                total_funding_required=a.total_funding_required,
                is_funded=a.funded,
                missing_amount=a.missing_amount,
            )
            for a in result.allocations
        ]
        end = state.window.end_date
        if end.tzinfo is None:
            end = end.replace(tzinfo=UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)

        return FundsDistributionSummary(
            funding_round_name=state.funding_round.name,
            voting_start=state.window.start_date,
            voting_end=state.window.end_date,
            is_final=now >= end,
            oracle_available=state.oracle_available,
            total_proposals=len(state.proposals),
            funded_proposals=result.funded_count,
            not_funded_proposals=result.not_funded_count,
            total_budget=result.total_budget,
            remaining_budget=result.remaining_budget,
            budget_breakdown=budget_breakdown(p.total_funding_required for p in state.proposals),
            proposal_votes=entries,
            votes=list(state.ranked.votes),
        )

    async def ranked_summary(self, funding_round_id: str, refresh: bool = True) -> RankedSummary:
        """Proposals in oracle rank order, then the unranked ones."""
        state = await self.load(funding_round_id, refresh=refresh)
        by_id = {p.id: p for p in state.proposals}
        seen: set[int] = set()
        entries: list[RankedEntry] = []

        def _entry(proposal: ProposalRecord, has_votes: bool) -> RankedEntry:
            return RankedEntry(
                id=proposal.id,
                title=proposal.title,
                proposer=proposal.proposer,
                status=RANKED_STATUS if has_votes else UNRANKED_STATUS,
                total_funding_required=proposal.total_funding_required,
                has_votes=has_votes,
            )

        for winner_id in state.ranked.winners:
            proposal = by_id.get(winner_id)
            if winner_id in seen or proposal is None:
                continue
            seen.add(winner_id)
            entries.append(_entry(proposal, has_votes=True))
        for proposal in state.proposals:
            if proposal.id not in seen:
                seen.add(proposal.id)
                entries.append(_entry(proposal, has_votes=False))

        return RankedSummary(
            funding_round_name=state.funding_round.name,
            voting_start=state.window.start_date,
            voting_end=state.window.end_date,
            total_proposals=len(state.proposals),
            total_votes=state.ranked.total_votes,
            budget_breakdown=budget_breakdown(p.total_funding_required for p in state.proposals),
            proposal_votes=entries,
            votes=list(state.ranked.votes),
        )

    async def ballot_memo(self, funding_round_id: str, proposal_ids: list[int]) -> BallotMemo:
        """On-chain memo for a ranked ballot, first preference first."""
        funding_round = await self.repo.get_funding_round(funding_round_id)
        if funding_round is None:
            raise NotFoundError("funding round", funding_round_id)
        proposals = await self.repo.get_proposals_for_round(funding_round_id, BALLOT_STATUSES)
        check_ballot(proposal_ids, (p.id for p in proposals))
        return BallotMemo(
            memo=format_voting_memo(funding_round.mef_id, proposal_ids),
            proposal_ids=list(proposal_ids),
        )
