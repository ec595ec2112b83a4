"""Periodic vote processing — refreshes oracle snapshots and applies phase-clock transitions.

Invoked by the APScheduler job in ``fundflow.main`` (when enabled) or on demand via
the admin endpoint. Each round is processed in its own session; a failing round is
logged and skipped so the scheduler is never interrupted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from fundflow.core.consideration import (
    DEFAULT_MIN_REVIEWER_APPROVALS,
    ConsiderationEligibilityEngine,
)
from fundflow.core.phases import resolve_round
from fundflow.core.status import ProposalStatusMachine
from fundflow.core.voting import VotingResults
from fundflow.db.engine import get_session
from fundflow.db.repository import Repository
from fundflow.models.funding import FundingRound, FundingRoundPhase, ProposalStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from fundflow.oracle.client import VoteOracleClient

logger = logging.getLogger(__name__)


@dataclass
class RoundProcessingResult:
    funding_round_id: str
    phase: FundingRoundPhase
    checked: int = 0
    moved_to_voting: list[int] = field(default_factory=list)
    approved: list[int] = field(default_factory=list)
    rejected: list[int] = field(default_factory=list)
    finalize_deferred: bool = False


async def process_round_votes(
    repo: Repository,
    funding_round: FundingRound,
    oracle: VoteOracleClient | None = None,
    min_reviewer_approvals: int = DEFAULT_MIN_REVIEWER_APPROVALS,
    now: datetime | None = None,
) -> RoundProcessingResult:
    """Bring one round's proposals in line with its current phase.

    * CONSIDERATION: refresh each CONSIDERATION proposal's community tally and run
      ``check_and_move`` on it.
    * VOTING or later: move DELIBERATION proposals to VOTING.
    * COMPLETED: settle VOTING proposals from the final allocation. Deferred when
      the oracle is unreachable, so a transient outage cannot reject everything.
    """
    now = now or datetime.now(UTC)
    phase = resolve_round(funding_round, now).phase
    result = RoundProcessingResult(funding_round_id=funding_round.id, phase=phase)

    eligibility = ConsiderationEligibilityEngine(repo, min_reviewer_approvals, oracle)
    machine = ProposalStatusMachine(repo, eligibility)

    if phase == FundingRoundPhase.CONSIDERATION:
        proposals = await repo.get_proposals_for_round(
            funding_round.id, [ProposalStatus.CONSIDERATION]
        )
        for proposal in proposals:
            await machine.check_and_move(proposal.id, refresh=True)
            result.checked += 1

    if phase in (FundingRoundPhase.VOTING, FundingRoundPhase.COMPLETED):
        result.moved_to_voting = await machine.advance_round_to_voting(funding_round.id)

    if phase == FundingRoundPhase.COMPLETED and funding_round.voting is not None:
        results = VotingResults(repo, oracle)
        state = await results.load(funding_round.id)
        if not state.oracle_available:
            logger.warning(
                "round_finalize_deferred round=%s reason=oracle_unavailable", funding_round.id
            )
            result.finalize_deferred = True
        else:
            outcome = await machine.finalize_round(
                funding_round.id, results.allocation_for(state)
            )
            result.approved = outcome["approved"]
            result.rejected = outcome["rejected"]

    logger.info(
        "round_votes_processed round=%s phase=%s checked=%d to_voting=%d approved=%d rejected=%d",
        funding_round.id,
        phase.value,
        result.checked,
        len(result.moved_to_voting),
        len(result.approved),
        len(result.rejected),
    )
    return result


async def process_all_rounds(
    engine: AsyncEngine,
    oracle: VoteOracleClient | None = None,
    min_reviewer_approvals: int = DEFAULT_MIN_REVIEWER_APPROVALS,
    now: datetime | None = None,
) -> list[RoundProcessingResult]:
    """Process every round that is not UPCOMING. Never raises."""
    now = now or datetime.now(UTC)
    try:
        async with get_session(engine) as session:
            rounds = await Repository(session).get_all_funding_rounds()
    except Exception:  # Last-resort handler: the scheduler must keep running
        logger.exception("vote_processing_list_rounds_error")
        return []

    results: list[RoundProcessingResult] = []
    for funding_round in rounds:
        if resolve_round(funding_round, now).phase == FundingRoundPhase.UPCOMING:
            continue
        try:
            async with get_session(engine) as session:
                results.append(
                    await process_round_votes(
                        Repository(session),
                        funding_round,
                        oracle=oracle,
                        min_reviewer_approvals=min_reviewer_approvals,
                        now=now,
                    )
                )
        except Exception:  # Last-resort handler: one bad round must not stop the rest
            logger.exception("vote_processing_round_error round=%s", funding_round.id)

    logger.info("vote_processing_done rounds=%d processed=%d", len(rounds), len(results))
    return results
