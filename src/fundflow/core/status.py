"""Proposal status state machine.

Transitions:
    DRAFT -> CONSIDERATION          (submission to a round)
    CONSIDERATION -> DELIBERATION   (consideration verdict approved)
    CONSIDERATION -> REJECTED       (consideration verdict rejected)
    DELIBERATION -> VOTING          (round enters its voting window)
    VOTING -> APPROVED | REJECTED   (round completed, from the final allocation)

Every change goes through ``Repository.transition_status``, a compare-and-swap on
the expected current status. Losing that race is an idempotent no-op.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fundflow.core.errors import NotFoundError
from fundflow.models.funding import ProposalStatus
from fundflow.models.votes import ConsiderationVerdict

if TYPE_CHECKING:
    from fundflow.core.consideration import ConsiderationEligibilityEngine
    from fundflow.db.repository import Repository
    from fundflow.models.allocation import AllocationResult

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ProposalStatus, set[ProposalStatus]] = {
    ProposalStatus.DRAFT: {ProposalStatus.CONSIDERATION},
    ProposalStatus.CONSIDERATION: {ProposalStatus.DELIBERATION, ProposalStatus.REJECTED},
    ProposalStatus.DELIBERATION: {ProposalStatus.VOTING},
    ProposalStatus.VOTING: {ProposalStatus.APPROVED, ProposalStatus.REJECTED},
    ProposalStatus.APPROVED: set(),  # terminal
    ProposalStatus.REJECTED: set(),  # terminal
}

VERDICT_TARGETS: dict[ConsiderationVerdict, ProposalStatus] = {
    ConsiderationVerdict.APPROVED: ProposalStatus.DELIBERATION,
    ConsiderationVerdict.REJECTED: ProposalStatus.REJECTED,
}


class ProposalStatusMachine:
    """Applies status transitions driven by votes, the phase clock, and allocation."""

    def __init__(self, repo: Repository, eligibility: ConsiderationEligibilityEngine) -> None:
        self.repo = repo
        self.eligibility = eligibility

    async def transition(
        self,
        proposal_id: int,
        expected: ProposalStatus,
        new: ProposalStatus,
    ) -> bool:
        """Move ``expected -> new`` atomically. False if the proposal was not in ``expected``.

        Raises:
            ValueError: if ``expected -> new`` is not an allowed transition.
        """
        allowed = ALLOWED_TRANSITIONS.get(expected, set())
        if new not in allowed:
            msg = (
                f"Invalid proposal transition: {expected.value} -> {new.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
            raise ValueError(msg)

        moved = await self.repo.transition_status(proposal_id, expected, new)
        if moved:
            logger.info(
                "proposal_status_changed proposal=%s from=%s to=%s",
                proposal_id,
                expected.value,
                new.value,
            )
        else:
            logger.debug(
                "proposal_transition_noop proposal=%s expected=%s to=%s",
                proposal_id,
                expected.value,
                new.value,
            )
        return moved

    async def submit_to_round(self, proposal_id: int, funding_round_id: str) -> bool:
        """Enter a DRAFT proposal into a round's consideration phase."""
        if await self.repo.get_funding_round(funding_round_id) is None:
            raise NotFoundError("funding round", funding_round_id)
        moved = await self.repo.submit_proposal_to_round(proposal_id, funding_round_id)
        if moved:
            logger.info(
                "proposal_submitted proposal=%s round=%s", proposal_id, funding_round_id
            )
        elif await self.repo.get_proposal(proposal_id) is None:
            raise NotFoundError("proposal", proposal_id)
        return moved

    async def check_and_move(self, proposal_id: int, refresh: bool = False) -> ProposalStatus:
        """Advance or reject a CONSIDERATION proposal from its current verdict.

        Safe to call any number of times, concurrently included. Proposals that
        already left CONSIDERATION are never moved back. Returns the status after the call.
        """
        proposal = await self.repo.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError("proposal", proposal_id)
        if proposal.status != ProposalStatus.CONSIDERATION:
            return proposal.status

        evaluation = await self.eligibility.evaluate(proposal_id, refresh=refresh)
        target = VERDICT_TARGETS.get(evaluation.verdict)
        if target is None:
            return proposal.status

        if await self.transition(proposal_id, ProposalStatus.CONSIDERATION, target):
            return target
        # Lost the race; report whatever the winner wrote.
        current = await self.repo.get_proposal(proposal_id)
        return current.status if current is not None else proposal.status

    async def advance_round_to_voting(self, funding_round_id: str) -> list[int]:
        """Move every DELIBERATION proposal in the round to VOTING. Returns the moved ids."""
        proposals = await self.repo.get_proposals_for_round(
            funding_round_id, [ProposalStatus.DELIBERATION]
        )
        moved: list[int] = []
        for proposal in proposals:
            if await self.transition(
                proposal.id, ProposalStatus.DELIBERATION, ProposalStatus.VOTING
            ):
                moved.append(proposal.id)
        if moved:
            logger.info(
                "round_advanced_to_voting round=%s proposals=%d", funding_round_id, len(moved)
            )
        return moved

    async def finalize_round(
        self, funding_round_id: str, allocation: AllocationResult
    ) -> dict[str, list[int]]:
        """Settle VOTING proposals: funded ones become APPROVED, the rest REJECTED."""
        funded = set(allocation.funded_ids())
        proposals = await self.repo.get_proposals_for_round(
            funding_round_id, [ProposalStatus.VOTING]
        )
        outcome: dict[str, list[int]] = {"approved": [], "rejected": []}
        for proposal in proposals:
            target = ProposalStatus.APPROVED if proposal.id in funded else ProposalStatus.REJECTED
            if await self.transition(proposal.id, ProposalStatus.VOTING, target):
                outcome["approved" if target == ProposalStatus.APPROVED else "rejected"].append(
                    proposal.id
                )
        logger.info(
            "round_finalized round=%s approved=%d rejected=%d",
            funding_round_id,
            len(outcome["approved"]),
            len(outcome["rejected"]),
        )
        return outcome
