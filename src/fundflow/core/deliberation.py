"""Deliberation recommendations — read-time aggregation of reviewer recommendations.

Informational only: recommendations never gate the move to VOTING. Community
deliberation feedback is stored alongside but never counted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fundflow.core.allocation import budget_breakdown
from fundflow.core.errors import NotFoundError
from fundflow.models.allocation import (
    DeliberationComment,
    DeliberationProposal,
    DeliberationProposalList,
    DeliberationSummary,
    DeliberationSummaryEntry,
    OwnDeliberation,
)
from fundflow.models.funding import ProposalStatus
from fundflow.models.votes import (
    CommunityDeliberationVote,
    DeliberationRecommendation,
    ReviewerDeliberationVote,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from fundflow.db.repository import Repository

# Proposals that made it past consideration.
DELIBERATED_STATUSES: tuple[ProposalStatus, ...] = (
    ProposalStatus.DELIBERATION,
    ProposalStatus.VOTING,
    ProposalStatus.APPROVED,
    ProposalStatus.REJECTED,
)


def recommendation_for(
    proposal_id: int, votes: Iterable[ReviewerDeliberationVote]
) -> DeliberationRecommendation:
    """Count yes/no recommendations. Ties with votes on both sides are not recommended."""
    yes = no = 0
    for vote in votes:
        if vote.recommendation:
            yes += 1
        else:
            no += 1
    return DeliberationRecommendation(proposal_id=proposal_id, yes_votes=yes, no_votes=no)


class DeliberationRecommendationEngine:
    def __init__(self, repo: Repository) -> None:
        self.repo = repo

    async def evaluate(self, proposal_id: int) -> DeliberationRecommendation:
        if await self.repo.get_proposal(proposal_id) is None:
            raise NotFoundError("proposal", proposal_id)
        votes = await self.repo.get_reviewer_deliberation_votes(proposal_id)
        return recommendation_for(proposal_id, votes)

    async def summary(self, funding_round_id: str) -> DeliberationSummary:
        """Deliberation phase summary, proposals sorted by yes votes (most first)."""
        funding_round = await self.repo.get_funding_round(funding_round_id)
        if funding_round is None:
            raise NotFoundError("funding round", funding_round_id)
        window = funding_round.deliberation
        if window is None:
            raise NotFoundError("deliberation phase", funding_round_id)

        proposals = await self.repo.get_proposals_for_round(
            funding_round_id, DELIBERATED_STATUSES
        )
        entries: list[DeliberationSummaryEntry] = []
        for proposal in proposals:
            votes = await self.repo.get_reviewer_deliberation_votes(proposal.id)
            entries.append(
                DeliberationSummaryEntry(
                    id=proposal.id,
                    title=proposal.title,
                    proposer=proposal.proposer,
                    status=proposal.status,
                    total_funding_required=proposal.total_funding_required,
                    recommendation=recommendation_for(proposal.id, votes),
                )
            )
        # Stable sort keeps id order among equal yes counts.
        entries.sort(key=lambda e: e.recommendation.yes_votes, reverse=True)

        return DeliberationSummary(
            funding_round_name=funding_round.name,
            start_date=window.start_date,
            end_date=window.end_date,
            total_proposals=len(entries),
            recommended_proposals=sum(1 for e in entries if e.recommendation.is_recommended),
            not_recommended_proposals=sum(
                1 for e in entries if e.recommendation.is_not_recommended
            ),
            pending_proposals=sum(
                1 for e in entries if e.recommendation.is_pending_recommendation
            ),
            budget_breakdown=budget_breakdown(p.total_funding_required for p in proposals),
            proposal_votes=entries,
        )

    async def proposals(
        self, funding_round_id: str, user_id: str | None = None
    ) -> DeliberationProposalList:
        """DELIBERATION proposals with their comment threads, newest comment first.

        Reviewer and community feedback share one thread. When ``user_id`` is
        given, each proposal also carries that user's own entry, if any.
        """
        if await self.repo.get_funding_round(funding_round_id) is None:
            raise NotFoundError("funding round", funding_round_id)
        proposals = await self.repo.get_proposals_for_round(
            funding_round_id, (ProposalStatus.DELIBERATION,)
        )

        usernames: dict[str, str] = {}
        items: list[DeliberationProposal] = []
        for proposal in proposals:
            reviewer_votes = await self.repo.get_reviewer_deliberation_votes(proposal.id)
            community_votes = await self.repo.get_community_deliberation_votes(proposal.id)

            comments: list[DeliberationComment] = []
            for vote in reviewer_votes:
                if vote.user_id not in usernames:
                    metadata = await self.repo.get_user_metadata(vote.user_id)
                    usernames[vote.user_id] = metadata.username
                comments.append(
                    DeliberationComment(
                        feedback=vote.feedback,
                        created_at=vote.created_at,
                        is_reviewer_comment=True,
                        reviewer=usernames[vote.user_id],
                        recommendation=vote.recommendation,
                    )
                )
            comments.extend(
                DeliberationComment(
                    feedback=vote.feedback, created_at=vote.created_at, is_reviewer_comment=False
                )
                for vote in community_votes
            )
            comments.sort(key=lambda c: c.created_at, reverse=True)

            items.append(
                DeliberationProposal(
                    id=proposal.id,
                    title=proposal.title,
                    proposer=proposal.proposer,
                    total_funding_required=proposal.total_funding_required,
                    recommendation=recommendation_for(proposal.id, reviewer_votes),
                    comments=comments,
                    user_deliberation=_own_entry(user_id, reviewer_votes, community_votes),
                )
            )
        return DeliberationProposalList(proposals=items)


def _own_entry(
    user_id: str | None,
    reviewer_votes: Iterable[ReviewerDeliberationVote],
    community_votes: Iterable[CommunityDeliberationVote],
) -> OwnDeliberation | None:
    if user_id is None:
        return None
    for vote in reviewer_votes:
        if vote.user_id == user_id:
            return OwnDeliberation(
                feedback=vote.feedback,
                created_at=vote.created_at,
                is_reviewer_vote=True,
                recommendation=vote.recommendation,
            )
    for vote in community_votes:
        if vote.user_id == user_id:
            return OwnDeliberation(
                feedback=vote.feedback, created_at=vote.created_at, is_reviewer_vote=False
            )
    return None
