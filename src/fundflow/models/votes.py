"""Vote models — reviewer votes, oracle snapshots, and the verdicts derived from them.

Oracle payloads use the external field names (``total_positive_community_votes``,
``elegible``). Parsing is tolerant: any missing or mistyped field falls back to the
zero value, so an unsynced proposal always reads as "not eligible, zero votes".
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, computed_field, field_validator


class ConsiderationDecision(StrEnum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ConsiderationVerdict(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING = "pending"


def _require_feedback(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("feedback must not be empty")
    return stripped


# --- Inputs ---


class ConsiderationVoteInput(BaseModel):
    """A reviewer's consideration vote as submitted. Validated before any engine sees it."""

    voter_id: str = Field(min_length=1)
    decision: ConsiderationDecision
    feedback: str

    @field_validator("feedback")
    @classmethod
    def _non_empty_feedback(cls, value: str) -> str:
        return _require_feedback(value)


class DeliberationInput(BaseModel):
    """Deliberation feedback. ``recommendation`` is reviewer-only."""

    user_id: str = Field(min_length=1)
    feedback: str
    recommendation: bool | None = None

    @field_validator("feedback")
    @classmethod
    def _non_empty_feedback(cls, value: str) -> str:
        return _require_feedback(value)


# --- Stored votes ---


class ConsiderationVote(BaseModel):
    """Latest consideration decision of one voter on one proposal."""

    proposal_id: int
    voter_id: str
    decision: ConsiderationDecision
    feedback: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ReviewerDeliberationVote(BaseModel):
    proposal_id: int
    user_id: str
    feedback: str
    recommendation: bool
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class CommunityDeliberationVote(BaseModel):
    """Advisory feedback only, never counted toward a recommendation."""

    proposal_id: int
    user_id: str
    feedback: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# --- Oracle snapshots ---


def _int_or_zero(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def _decimal_string(value: Any) -> str:
    """Keep stake weights as exact decimal strings. Anything unparseable becomes ``"0"``."""
    if not isinstance(value, str):
        return "0"
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        return "0"
    return value if parsed.is_finite() else "0"


class OCVVote(BaseModel):
    """One on-chain vote transaction as reported by the oracle."""

    account: str
    hash: str
    timestamp: int = 0
    height: int = 0
    status: str = "Pending"
    memo: str = ""
    nonce: int = 0

    @classmethod
    def parse_many(cls, raw: Any) -> list[OCVVote]:
        if not isinstance(raw, list):
            return []
        votes: list[OCVVote] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            account = item.get("account")
            tx_hash = item.get("hash")
            if not isinstance(account, str) or not isinstance(tx_hash, str):
                continue
            votes.append(
                cls(
                    account=account,
                    hash=tx_hash,
                    timestamp=_int_or_zero(item.get("timestamp")),
                    height=_int_or_zero(item.get("height")),
                    status=str(item.get("status") or "Pending"),
                    memo=str(item.get("memo") or ""),
                    nonce=_int_or_zero(item.get("nonce")),
                )
            )
        return votes


class OCVVoteSnapshot(BaseModel):
    """Cached community tally for one proposal's consideration phase."""

    total_community_votes: int = 0
    total_positive_votes: int = 0
    positive_stake_weight: str = "0"
    eligible: bool = False
    votes: list[OCVVote] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> OCVVoteSnapshot:
        return cls()

    @classmethod
    def from_payload(cls, data: Any) -> OCVVoteSnapshot:
        """Parse an oracle response or a cached JSON row into a snapshot."""
        if not isinstance(data, dict):
            return cls.empty()
        eligible = data.get("elegible", data.get("eligible", False))
        return cls(
            total_community_votes=_int_or_zero(data.get("total_community_votes")),
            total_positive_votes=_int_or_zero(data.get("total_positive_community_votes")),
            positive_stake_weight=_decimal_string(data.get("positive_stake_weight")),
            eligible=eligible is True,
            votes=OCVVote.parse_many(data.get("votes")),
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize using the oracle's field names so cached rows round-trip exactly."""
        return {
            "total_community_votes": self.total_community_votes,
            "total_positive_community_votes": self.total_positive_votes,
            "positive_stake_weight": self.positive_stake_weight,
            "elegible": self.eligible,
            "votes": [v.model_dump(mode="json") for v in self.votes],
        }

    @property
    def positive_stake(self) -> Decimal:
        return Decimal(self.positive_stake_weight)


class RankedVoteSnapshot(BaseModel):
    """Ranked-vote tabulation for a whole round. ``winners`` is most-preferred first."""

    winners: list[int] = Field(default_factory=list)
    votes: list[OCVVote] = Field(default_factory=list)
    stats: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Any) -> RankedVoteSnapshot:
        if not isinstance(data, dict):
            return cls()
        raw_winners = data.get("winners")
        winners: list[int] = []
        if isinstance(raw_winners, list):
            for winner in raw_winners:
                if isinstance(winner, bool):
                    continue
                if isinstance(winner, int):
                    winners.append(winner)
                elif isinstance(winner, str) and winner.strip().isdigit():
                    winners.append(int(winner))
        stats = data.get("stats")
        return cls(
            winners=winners,
            votes=OCVVote.parse_many(data.get("votes")),
            stats=stats if isinstance(stats, dict) else {},
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "winners": list(self.winners),
            "votes": [v.model_dump(mode="json") for v in self.votes],
            "stats": dict(self.stats),
        }

    @property
    def total_votes(self) -> int:
        return len(self.votes)


# --- Derived verdicts ---


class ReviewerVoteStats(BaseModel):
    approved: int = 0
    rejected: int = 0
    required_reviewer_approvals: int = 3

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        return self.approved + self.rejected

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_eligible(self) -> bool:
        return self.approved >= self.required_reviewer_approvals


class CommunityVoteStats(BaseModel):
    total: int = 0
    positive: int = 0
    positive_stake_weight: str = "0"
    is_eligible: bool = False
    voters: list[OCVVote] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: OCVVoteSnapshot) -> CommunityVoteStats:
        return cls(
            total=snapshot.total_community_votes,
            positive=snapshot.total_positive_votes,
            positive_stake_weight=snapshot.positive_stake_weight,
            is_eligible=snapshot.eligible,
            voters=list(snapshot.votes),
        )


class ConsiderationEvaluation(BaseModel):
    """Merged reviewer + community verdict for one proposal."""

    proposal_id: int
    verdict: ConsiderationVerdict
    reviewer: ReviewerVoteStats
    community: CommunityVoteStats


class ConsiderationCounts(BaseModel):
    total: int = 0
    approved: int = 0
    rejected: int = 0
    pending: int = 0


class VoteEligibility(BaseModel):
    eligible: bool
    message: str = ""


class ConsiderationVoteReceipt(BaseModel):
    """What a voter gets back: their stored vote, whether it counts, and the resulting status."""

    vote: ConsiderationVote
    counted_as_reviewer: bool
    proposal_status: str


class DeliberationRecommendation(BaseModel):
    """Reviewer recommendation tri-state for one proposal.

    A tie with at least one vote on each side is *not recommended*: only a
    strict yes majority recommends.
    """

    proposal_id: int
    yes_votes: int = 0
    no_votes: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_recommended(self) -> bool:
        return self.yes_votes > self.no_votes

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_pending_recommendation(self) -> bool:
        return self.yes_votes == 0 and self.no_votes == 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_not_recommended(self) -> bool:
        return not self.is_recommended and not self.is_pending_recommendation


# --- On-chain ballots ---


class BallotInput(BaseModel):
    """Proposals a community voter wants on their ballot, most preferred first."""

    proposal_ids: list[int] = Field(min_length=1)


class BallotMemo(BaseModel):
    """Transaction memo a voter sends on-chain to cast the ballot."""

    memo: str
    proposal_ids: list[int]
