"""Proposal API endpoints — consideration votes and deliberation feedback."""

from __future__ import annotations

from fastapi import APIRouter

from fundflow.api.deps import EligibilityDep, RepoDep, StatusMachineDep, http_error
from fundflow.core.errors import FundflowError
from fundflow.core.governance import submit_consideration_vote, submit_deliberation
from fundflow.models.votes import (
    ConsiderationVoteInput,
    DeliberationInput,
    ReviewerDeliberationVote,
)

router = APIRouter(prefix="/api/proposals", tags=["proposals"])


@router.post("/{proposal_id}/consideration-votes")
async def api_submit_consideration_vote(
    proposal_id: int,
    body: ConsiderationVoteInput,
    machine: StatusMachineDep,
) -> dict:
    """Cast or change a consideration vote. The proposal may advance as a side effect."""
    try:
        receipt = await submit_consideration_vote(machine, proposal_id, body)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {"data": receipt.model_dump(mode="json")}


@router.get("/{proposal_id}/consideration")
async def api_consideration_stats(proposal_id: int, eligibility: EligibilityDep) -> dict:
    """Reviewer and community vote stats plus the merged verdict."""
    try:
        evaluation = await eligibility.evaluate(proposal_id)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {"data": evaluation.model_dump(mode="json")}


@router.post("/{proposal_id}/deliberation")
async def api_submit_deliberation(
    proposal_id: int,
    body: DeliberationInput,
    repo: RepoDep,
) -> dict:
    try:
        vote = await submit_deliberation(repo, proposal_id, body)
    except FundflowError as exc:
        raise http_error(exc) from exc
    return {
        "data": {
            **vote.model_dump(mode="json"),
            "is_reviewer_vote": isinstance(vote, ReviewerDeliberationVote),
        }
    }
