"""Ranked-choice funds allocation — greedy, rank-order, non-backtracking.

Walks the oracle's winners list once, funding each proposal that still fits the
remaining budget. A later, cheaper proposal can be funded after an earlier,
costlier one was skipped; the algorithm never reorders or backtracks, so the
result is first-fit-by-rank, not an optimal packing. Proposals the oracle did
not rank are appended unfunded, in id order.

Pure over its inputs: the budget counter is local to each call, and the
allocation is recomputed on every read because oracle tallies move underneath it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from decimal import Decimal

from fundflow.core.errors import VoteNotAllowed
from fundflow.models.allocation import (
    AllocationResult,
    BudgetBreakdown,
    ProposalAllocation,
    ProposalFunding,
)

logger = logging.getLogger(__name__)

SMALL_BUDGET_LIMIT = Decimal("500")
MEDIUM_BUDGET_LIMIT = Decimal("1000")


def allocate(
    total_budget: Decimal,
    winner_ids: Sequence[int],
    proposals: Iterable[ProposalFunding],
) -> AllocationResult:
    """Distribute ``total_budget`` across ``proposals`` in ``winner_ids`` rank order.

    Args:
        total_budget: Fixed budget of the round.
        winner_ids: Proposal ids, most-preferred first. Duplicates and ids not in
            ``proposals`` are skipped.
        proposals: Every proposal in the round that can receive funds.

    Returns:
        One allocation per proposal (ranked ones first, in rank order), plus the
        unspent budget. ``missing_amount`` for a skipped ranked proposal is the
        shortfall at the moment it was evaluated; it is diagnostic only.
    """
    by_id = {p.id: p for p in proposals}
    remaining = total_budget
    processed: set[int] = set()
    allocations: list[ProposalAllocation] = []

    for winner_id in winner_ids:
        if winner_id in processed:
            continue
        proposal = by_id.get(winner_id)
        if proposal is None:
            logger.warning("allocation_unknown_winner proposal_id=%s", winner_id)
            continue
        processed.add(winner_id)

        cost = proposal.total_funding_required
        if cost <= remaining:
            remaining -= cost
            allocations.append(
                ProposalAllocation(
                    id=proposal.id,
                    funded=True,
                    total_funding_required=cost,
                    ranked=True,
                )
            )
        else:
            allocations.append(
                ProposalAllocation(
                    id=proposal.id,
                    funded=False,
                    total_funding_required=cost,
                    missing_amount=cost - remaining,
                    ranked=True,
                )
            )

    for proposal_id in sorted(by_id):
        if proposal_id in processed:
            continue
        processed.add(proposal_id)
        cost = by_id[proposal_id].total_funding_required
        allocations.append(
            ProposalAllocation(
                id=proposal_id,
                funded=False,
                total_funding_required=cost,
                missing_amount=cost,
            )
        )

    return AllocationResult(
        total_budget=total_budget,
        allocations=allocations,
        remaining_budget=remaining,
    )


def budget_breakdown(amounts: Iterable[Decimal]) -> BudgetBreakdown:
    """Bucket funding requests into small/medium/large."""
    breakdown = BudgetBreakdown()
    for amount in amounts:
        if amount <= SMALL_BUDGET_LIMIT:
            breakdown.small += 1
        elif amount <= MEDIUM_BUDGET_LIMIT:
            breakdown.medium += 1
        else:
            breakdown.large += 1
    return breakdown


def format_consideration_memo(proposal_ids: Sequence[int]) -> str:
    """On-chain memo for a community consideration vote: ``YES <id> <id> ...``."""
    return " ".join(["YES", *(str(pid) for pid in proposal_ids)])


def format_voting_memo(mef_id: int, proposal_ids: Sequence[int]) -> str:
    """On-chain memo for a ranked ballot: ``MEF <round> <id1> ... <idn>``."""
    return " ".join(["MEF", str(mef_id), *(str(pid) for pid in proposal_ids)])


def check_ballot(proposal_ids: Sequence[int], eligible_ids: Iterable[int]) -> None:
    """Reject ballots with repeated ids or ids that cannot be voted on."""
    eligible = set(eligible_ids)
    seen: set[int] = set()
    for proposal_id in proposal_ids:
        if proposal_id in seen:
            raise VoteNotAllowed(f"Proposal {proposal_id} appears twice on the ballot")
        if proposal_id not in eligible:
            raise VoteNotAllowed(f"Proposal {proposal_id} is not on this ballot")
        seen.add(proposal_id)
