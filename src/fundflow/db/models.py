"""SQLAlchemy ORM models for the fundflow database.

Tables: users, topics, reviewer groups (+ members, + topic links), funding rounds,
phase windows, proposals, consideration votes, cached oracle snapshots, and the
two deliberation vote tables.

Money and stake weights are stored as decimal strings, never binary floats.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(UTC)


class DecimalString(TypeDecorator[Decimal]):
    """Arbitrary-precision decimal persisted as its exact string form."""

    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value: Decimal | None, dialect: object) -> str | None:
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value: str | None, dialect: object) -> Decimal | None:
        if value is None:
            return None
        return Decimal(value)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC datetimes. SQLite stores them naive; we re-attach UTC on read."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: object) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: object) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    link_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now)


class TopicRow(Base):
    __tablename__ = "topics"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now)


class ReviewerGroupRow(Base):
    __tablename__ = "reviewer_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now)


class ReviewerGroupMemberRow(Base):
    __tablename__ = "reviewer_group_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    reviewer_group_id: Mapped[str] = mapped_column(
        ForeignKey("reviewer_groups.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)

    __table_args__ = (
        UniqueConstraint("reviewer_group_id", "user_id", name="uq_reviewer_group_member"),
        Index("ix_reviewer_group_members_user", "user_id"),
    )


class TopicReviewerGroupRow(Base):
    __tablename__ = "topic_reviewer_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    topic_id: Mapped[str] = mapped_column(ForeignKey("topics.id"), nullable=False)
    reviewer_group_id: Mapped[str] = mapped_column(
        ForeignKey("reviewer_groups.id"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("topic_id", "reviewer_group_id", name="uq_topic_reviewer_group"),
    )


class FundingRoundRow(Base):
    __tablename__ = "funding_rounds"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    mef_id: Mapped[int] = mapped_column(Integer, default=0)
    topic_id: Mapped[str | None] = mapped_column(ForeignKey("topics.id"), nullable=True)
    total_budget: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now)

    windows: Mapped[list[PhaseWindowRow]] = relationship(back_populates="funding_round")


class PhaseWindowRow(Base):
    """One configured phase window. A round has at most one row per phase."""

    __tablename__ = "phase_windows"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    funding_round_id: Mapped[str] = mapped_column(
        ForeignKey("funding_rounds.id"), nullable=False
    )
    phase: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    funding_round: Mapped[FundingRoundRow] = relationship(back_populates="windows")

    __table_args__ = (
        UniqueConstraint("funding_round_id", "phase", name="uq_phase_window"),
    )


class ProposalRow(Base):
    __tablename__ = "proposals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    funding_round_id: Mapped[str | None] = mapped_column(
        ForeignKey("funding_rounds.id"), nullable=True
    )
    owner_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    summary: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), default="DRAFT")
    total_funding_required: Mapped[Decimal] = mapped_column(DecimalString, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now, onupdate=_now)

    __table_args__ = (
        Index("ix_proposals_round_status", "funding_round_id", "status"),
    )


class ConsiderationVoteRow(Base):
    __tablename__ = "consideration_votes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    proposal_id: Mapped[int] = mapped_column(ForeignKey("proposals.id"), nullable=False)
    voter_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    decision: Mapped[str] = mapped_column(String(10), nullable=False)
    feedback: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("proposal_id", "voter_id", name="uq_consideration_vote"),
    )


class OCVConsiderationVoteRow(Base):
    """Replaceable cache of the oracle's consideration tally for one proposal."""

    __tablename__ = "ocv_consideration_votes"

    proposal_id: Mapped[int] = mapped_column(ForeignKey("proposals.id"), primary_key=True)
    vote_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now, onupdate=_now)


class OCVRankedVoteRow(Base):
    """Replaceable cache of the oracle's ranked tabulation for one round."""

    __tablename__ = "ocv_ranked_votes"

    funding_round_id: Mapped[str] = mapped_column(
        ForeignKey("funding_rounds.id"), primary_key=True
    )
    vote_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now, onupdate=_now)


class ReviewerDeliberationVoteRow(Base):
    __tablename__ = "reviewer_deliberation_votes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    proposal_id: Mapped[int] = mapped_column(ForeignKey("proposals.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    feedback: Mapped[str] = mapped_column(Text, nullable=False)
    recommendation: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now)

    __table_args__ = (
        UniqueConstraint("proposal_id", "user_id", name="uq_reviewer_deliberation_vote"),
    )


class CommunityDeliberationVoteRow(Base):
    __tablename__ = "community_deliberation_votes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    proposal_id: Mapped[int] = mapped_column(ForeignKey("proposals.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    feedback: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_now)

    __table_args__ = (
        UniqueConstraint("proposal_id", "user_id", name="uq_community_deliberation_vote"),
    )
