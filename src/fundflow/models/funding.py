"""Funding round models — rounds, phase windows, proposals, and the users behind them.

A funding round carries four optional phase windows. Proposal status mirrors the
phase names, plus DRAFT/APPROVED/REJECTED.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field


class FundingRoundPhase(StrEnum):
    """Every phase a funding round can be "in" at a given instant.

    The str mixin allows direct comparison with raw strings coming from the
    API layer (e.g. ``phase == "VOTING"``).
    """

    UPCOMING = "UPCOMING"
    SUBMISSION = "SUBMISSION"
    CONSIDERATION = "CONSIDERATION"
    DELIBERATION = "DELIBERATION"
    VOTING = "VOTING"
    COMPLETED = "COMPLETED"
    BETWEEN_PHASES = "BETWEEN_PHASES"


class ProposalStatus(StrEnum):
    DRAFT = "DRAFT"
    CONSIDERATION = "CONSIDERATION"
    DELIBERATION = "DELIBERATION"
    VOTING = "VOTING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# Phase windows in temporal order. Resolution and previous/next lookups walk this order.
WindowName = Literal["submission", "consideration", "deliberation", "voting"]

WINDOW_ORDER: tuple[WindowName, ...] = ("submission", "consideration", "deliberation", "voting")

WINDOW_PHASES: dict[str, FundingRoundPhase] = {
    "submission": FundingRoundPhase.SUBMISSION,
    "consideration": FundingRoundPhase.CONSIDERATION,
    "deliberation": FundingRoundPhase.DELIBERATION,
    "voting": FundingRoundPhase.VOTING,
}


class PhaseWindow(BaseModel):
    """A half-open ``[start_date, end_date)`` window for one phase."""

    start_date: datetime
    end_date: datetime

    def contains(self, now: datetime) -> bool:
        return self.start_date <= now < self.end_date


class NamedPhaseWindow(BaseModel):
    """A configured window tagged with the phase it belongs to."""

    phase: FundingRoundPhase
    start_date: datetime
    end_date: datetime


class FundingRound(BaseModel):
    """A funding round and its four (possibly unconfigured) phase windows."""

    id: str
    name: str
    mef_id: int = 0
    topic_id: str | None = None
    total_budget: Decimal = Field(ge=0)
    start_date: datetime
    end_date: datetime
    submission: PhaseWindow | None = None
    consideration: PhaseWindow | None = None
    deliberation: PhaseWindow | None = None
    voting: PhaseWindow | None = None

    def windows(self) -> dict[str, PhaseWindow | None]:
        """Return the phase windows keyed by name, in temporal order."""
        return {name: getattr(self, name) for name in WINDOW_ORDER}

    def is_fully_configured(self) -> bool:
        return all(window is not None for window in self.windows().values())


class PhaseResolution(BaseModel):
    """Where a round is at ``now``, plus neighbours for between-phase messaging."""

    phase: FundingRoundPhase
    previous_phase: NamedPhaseWindow | None = None
    next_phase: NamedPhaseWindow | None = None


class AuthSource(BaseModel):
    type: Literal["discord", "telegram", "wallet", ""] = ""
    id: str = ""
    username: str = ""


class UserMetadata(BaseModel):
    """User metadata, parsed once at the repository boundary.

    Missing or malformed metadata defaults to an empty auth source and the
    ``"Anonymous"`` username.
    """

    auth_source: AuthSource = Field(default_factory=AuthSource)
    username: str = "Anonymous"

    @classmethod
    def parse(cls, raw: object) -> UserMetadata:
        if not isinstance(raw, dict):
            return cls()
        source = raw.get("authSource") or raw.get("auth_source")
        username = raw.get("username")
        auth_source = AuthSource()
        if isinstance(source, dict):
            source_type = source.get("type")
            auth_source = AuthSource(
                type=source_type if source_type in ("discord", "telegram", "wallet") else "",
                id=str(source.get("id") or ""),
                username=str(source.get("username") or ""),
            )
        return cls(
            auth_source=auth_source,
            username=username if isinstance(username, str) and username else "Anonymous",
        )


class ReviewerEligibility(BaseModel):
    """Whether a user sits in a reviewer group attached to a round's topic."""

    user_id: str
    funding_round_id: str | None = None
    is_reviewer: bool = False


class ProposalRecord(BaseModel):
    """A grant proposal as seen by the governance engines."""

    id: int
    funding_round_id: str | None = None
    title: str = ""
    status: ProposalStatus = ProposalStatus.DRAFT
    total_funding_required: Decimal = Field(gt=0)
    owner_id: str
    proposer: str = "Anonymous"
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
