"""Funding round API endpoints — current phase, per-phase summaries and ballot memos."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException

from fundflow.api.deps import EligibilityDep, RepoDep, VotingResultsDep, http_error
from fundflow.core.deliberation import DeliberationRecommendationEngine
from fundflow.core.errors import FundflowError
from fundflow.core.phases import resolve_round
from fundflow.models.votes import BallotInput

router = APIRouter(prefix="/api/funding-rounds", tags=["funding-rounds"])


@router.get("/{funding_round_id}/phase")
async def get_phase(funding_round_id: str, repo: RepoDep) -> dict:
    """Which phase the round is in right now, with neighbours when between phases."""
    funding_round = await repo.get_funding_round(funding_round_id)
    if funding_round is None:
        raise HTTPException(status_code=404, detail="Funding round not found")
    resolution = resolve_round(funding_round, datetime.now(UTC))
    return {"data": resolution.model_dump(mode="json")}


@router.get("/{funding_round_id}/consideration/counts")
async def get_consideration_counts(funding_round_id: str, eligibility: EligibilityDep) -> dict:
    try:
        counts = await eligibility.round_counts(funding_round_id)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {"data": counts.model_dump(mode="json")}


@router.get("/{funding_round_id}/consideration/summary")
async def get_consideration_summary(funding_round_id: str, eligibility: EligibilityDep) -> dict:
    """Per-proposal consideration outcome, from the cached community tallies."""
    try:
        summary = await eligibility.summary(funding_round_id)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {"data": summary.model_dump(mode="json")}


@router.post("/{funding_round_id}/consideration/ballot-memo")
async def build_consideration_memo(
    funding_round_id: str, ballot: BallotInput, eligibility: EligibilityDep
) -> dict:
    try:
        memo = await eligibility.ballot_memo(funding_round_id, ballot.proposal_ids)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {"data": memo.model_dump(mode="json")}


@router.get("/{funding_round_id}/deliberation/summary")
async def get_deliberation_summary(funding_round_id: str, repo: RepoDep) -> dict:
    try:
        summary = await DeliberationRecommendationEngine(repo).summary(funding_round_id)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {"data": summary.model_dump(mode="json")}


@router.get("/{funding_round_id}/deliberation/proposals")
async def list_deliberation_proposals(
    funding_round_id: str, repo: RepoDep, user_id: str | None = None
) -> dict:
    """Proposals under deliberation with their comment threads.

    Pass ``user_id`` to get that user's own entry on each proposal.
    """
    try:
        listing = await DeliberationRecommendationEngine(repo).proposals(funding_round_id, user_id)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {"data": listing.model_dump(mode="json")}


@router.get("/{funding_round_id}/voting/distribution")
async def get_funds_distribution(funding_round_id: str, results: VotingResultsDep) -> dict:
    """Funds distribution from the latest ranked votes. Advisory until voting ends."""
    try:
        summary = await results.distribution_summary(funding_round_id)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {"data": summary.model_dump(mode="json")}


@router.get("/{funding_round_id}/voting/ranked")
async def get_ranked_summary(funding_round_id: str, results: VotingResultsDep) -> dict:
    try:
        summary = await results.ranked_summary(funding_round_id)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {"data": summary.model_dump(mode="json")}


@router.post("/{funding_round_id}/voting/ballot-memo")
async def build_voting_memo(
    funding_round_id: str, ballot: BallotInput, results: VotingResultsDep
) -> dict:
    """Memo for a ranked ballot. ``proposal_ids`` is in preference order."""
    try:
        memo = await results.ballot_memo(funding_round_id, ballot.proposal_ids)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {"data": memo.model_dump(mode="json")}
