"""Funds allocation models. Derived on every read, never persisted."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, computed_field

from fundflow.models.votes import (
    CommunityVoteStats,
    ConsiderationVerdict,
    DeliberationRecommendation,
    OCVVote,
    ReviewerVoteStats,
)


class ProposalFunding(BaseModel):
    """The only facts the allocator needs about a proposal."""

    id: int
    total_funding_required: Decimal = Field(gt=0)


class ProposalAllocation(BaseModel):
    """Outcome for one proposal. ``missing_amount`` is set only when unfunded."""

    id: int
    funded: bool
    total_funding_required: Decimal
    missing_amount: Decimal | None = None
    ranked: bool = False


class AllocationResult(BaseModel):
    total_budget: Decimal
    allocations: list[ProposalAllocation] = Field(default_factory=list)
    remaining_budget: Decimal

    @computed_field  # type: ignore[prop-decorator]
    @property
    def funded_count(self) -> int:
        return sum(1 for a in self.allocations if a.funded)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def not_funded_count(self) -> int:
        return sum(1 for a in self.allocations if not a.funded)

    def funded_ids(self) -> list[int]:
        return [a.id for a in self.allocations if a.funded]


class BudgetBreakdown(BaseModel):
    """Funding requests bucketed: small (<= 500), medium (<= 1000), large (> 1000)."""

    small: int = 0
    medium: int = 0
    large: int = 0


# --- Phase summaries ---


class FundsDistributionEntry(BaseModel):
    id: int
    title: str
    proposer: str
    status: str
    total_funding_required: Decimal
    is_funded: bool
    missing_amount: Decimal | None = None


class FundsDistributionSummary(BaseModel):
    """Live (advisory) or final funding distribution for a round's voting phase."""

    funding_round_name: str
    voting_start: datetime
    voting_end: datetime
    is_final: bool
    oracle_available: bool = True
    total_proposals: int
    funded_proposals: int
    not_funded_proposals: int
    total_budget: Decimal
    remaining_budget: Decimal
    budget_breakdown: BudgetBreakdown
    proposal_votes: list[FundsDistributionEntry] = Field(default_factory=list)
    votes: list[OCVVote] = Field(default_factory=list)


class RankedEntry(BaseModel):
    id: int
    title: str
    proposer: str
    status: str
    total_funding_required: Decimal
    has_votes: bool


class RankedSummary(BaseModel):
    funding_round_name: str
    voting_start: datetime
    voting_end: datetime
    total_proposals: int
    total_votes: int
    budget_breakdown: BudgetBreakdown
    proposal_votes: list[RankedEntry] = Field(default_factory=list)
    votes: list[OCVVote] = Field(default_factory=list)


class DeliberationSummaryEntry(BaseModel):
    id: int
    title: str
    proposer: str
    status: str
    total_funding_required: Decimal
    recommendation: DeliberationRecommendation


class DeliberationSummary(BaseModel):
    funding_round_name: str
    start_date: datetime
    end_date: datetime
    total_proposals: int
    recommended_proposals: int
    not_recommended_proposals: int
    pending_proposals: int
    budget_breakdown: BudgetBreakdown
    proposal_votes: list[DeliberationSummaryEntry] = Field(default_factory=list)


class ConsiderationSummaryEntry(BaseModel):
    id: int
    title: str
    proposer: str
    status: str
    total_funding_required: Decimal
    verdict: ConsiderationVerdict
    reviewer: ReviewerVoteStats
    community: CommunityVoteStats


class ConsiderationSummary(BaseModel):
    """Consideration phase outcome. Moved forward: DELIBERATION, VOTING, APPROVED or REJECTED."""

    funding_round_name: str
    start_date: datetime
    end_date: datetime
    total_proposals: int
    moved_forward_proposals: int
    not_moved_forward_proposals: int
    budget_breakdown: BudgetBreakdown
    proposal_votes: list[ConsiderationSummaryEntry] = Field(default_factory=list)


# --- Deliberation thread ---


class DeliberationComment(BaseModel):
    """One entry in a proposal's comment thread. Reviewer entries carry the recommendation."""

    feedback: str
    created_at: datetime
    is_reviewer_comment: bool
    reviewer: str | None = None
    recommendation: bool | None = None


class OwnDeliberation(BaseModel):
    feedback: str
    created_at: datetime
    is_reviewer_vote: bool
    recommendation: bool | None = None


class DeliberationProposal(BaseModel):
    id: int
    title: str
    proposer: str
    total_funding_required: Decimal
    recommendation: DeliberationRecommendation
    comments: list[DeliberationComment] = Field(default_factory=list)
    user_deliberation: OwnDeliberation | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_voted(self) -> bool:
        return self.user_deliberation is not None


class DeliberationProposalList(BaseModel):
    proposals: list[DeliberationProposal] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_count(self) -> int:
        return len(self.proposals)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def pending_count(self) -> int:
        return sum(1 for p in self.proposals if not p.has_voted)
