"""Admin endpoint — run vote processing on demand."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Request

from fundflow.api.deps import OracleDep, SettingsDep
from fundflow.core.vote_processing import process_all_rounds

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/process-proposals")
async def api_process_proposals(
    request: Request,
    settings: SettingsDep,
    oracle: OracleDep,
) -> dict:
    """Same work as the scheduled job, for every started round."""
    results = await process_all_rounds(
        request.app.state.engine,
        oracle=oracle,
        min_reviewer_approvals=settings.min_reviewer_approvals,
    )
    return {"data": {"rounds": [asdict(r) for r in results]}}
