"""Vote submission — the write paths for consideration and deliberation votes.

Inputs arrive as validated pydantic models. State checks happen here and raise
``VoteNotAllowed``; database access goes through Repository.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from fundflow.core.errors import NotFoundError, VoteNotAllowed
from fundflow.models.funding import ProposalStatus
from fundflow.models.votes import (
    CommunityDeliberationVote,
    ConsiderationVoteInput,
    ConsiderationVoteReceipt,
    DeliberationInput,
    ReviewerDeliberationVote,
)

if TYPE_CHECKING:
    from fundflow.core.status import ProposalStatusMachine
    from fundflow.db.repository import Repository

logger = logging.getLogger(__name__)


async def submit_consideration_vote(
    machine: ProposalStatusMachine,
    proposal_id: int,
    vote: ConsiderationVoteInput,
    now: datetime | None = None,
) -> ConsiderationVoteReceipt:
    """Record a consideration vote, then run exactly one ``check_and_move``.

    Votes from users outside the round's reviewer groups are stored but do not
    count toward the reviewer thresholds; the receipt says which it was.
    """
    repo = machine.repo
    eligibility = await machine.eligibility.check_voting_eligibility(proposal_id, now)
    if not eligibility.eligible:
        raise VoteNotAllowed(eligibility.message)

    stored = await repo.upsert_consideration_vote(
        proposal_id, vote.voter_id, vote.decision, vote.feedback
    )
    reviewer = await repo.get_reviewer_eligibility(vote.voter_id, proposal_id)
    status = await machine.check_and_move(proposal_id)

    logger.info(
        "consideration_vote_recorded proposal=%s voter=%s decision=%s reviewer=%s status=%s",
        proposal_id,
        vote.voter_id,
        vote.decision.value,
        reviewer.is_reviewer,
        status.value,
    )
    return ConsiderationVoteReceipt(
        vote=stored,
        counted_as_reviewer=reviewer.is_reviewer,
        proposal_status=status,
    )


async def submit_deliberation(
    repo: Repository,
    proposal_id: int,
    body: DeliberationInput,
) -> ReviewerDeliberationVote | CommunityDeliberationVote:
    """Store deliberation feedback. Reviewers recommend; everyone else only comments."""
    proposal = await repo.get_proposal(proposal_id)
    if proposal is None:
        raise NotFoundError("proposal", proposal_id)
    if proposal.status != ProposalStatus.DELIBERATION:
        raise VoteNotAllowed("Proposal is not in deliberation phase")

    eligibility = await repo.get_reviewer_eligibility(body.user_id, proposal_id)
    if eligibility.is_reviewer:
        if body.recommendation is None:
            raise VoteNotAllowed("Reviewers must provide a recommendation")
        stored = await repo.upsert_reviewer_deliberation_vote(
            proposal_id, body.user_id, body.feedback, body.recommendation
        )
        logger.info(
            "deliberation_reviewer_vote proposal=%s user=%s recommendation=%s",
            proposal_id,
            body.user_id,
            body.recommendation,
        )
        return stored

    if body.recommendation is not None:
        raise VoteNotAllowed("Only reviewers can make recommendations", status_code=403)
    community = await repo.upsert_community_deliberation_vote(
        proposal_id, body.user_id, body.feedback
    )
    logger.info("deliberation_community_feedback proposal=%s user=%s", proposal_id, body.user_id)
    return community
