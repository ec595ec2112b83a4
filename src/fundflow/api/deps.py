"""FastAPI dependency injection for sessions, repository, settings and engines."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from fundflow.config import Settings
from fundflow.core.consideration import ConsiderationEligibilityEngine
from fundflow.core.errors import ConfigurationError, FundflowError, NotFoundError, VoteNotAllowed
from fundflow.core.status import ProposalStatusMachine
from fundflow.core.voting import VotingResults
from fundflow.db.engine import create_session_factory
from fundflow.db.repository import Repository
from fundflow.oracle.client import VoteOracleClient


async def get_engine(request: Request) -> AsyncEngine:
    """Get the database engine from app state."""
    return request.app.state.engine


async def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_oracle(request: Request) -> VoteOracleClient | None:
    """The shared oracle client, or None when the app runs without one."""
    return getattr(request.app.state, "oracle", None)


async def get_session(
    engine: Annotated[AsyncEngine, Depends(get_engine)],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session."""
    factory = create_session_factory(engine)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:  # Re-raise pattern: must catch all to ensure rollback on any error
            await session.rollback()
            raise


async def get_repo(session: Annotated[AsyncSession, Depends(get_session)]) -> Repository:
    """Get a repository instance bound to the current session."""
    return Repository(session)


RepoDep = Annotated[Repository, Depends(get_repo)]
SettingsDep = Annotated[Settings, Depends(get_settings)]
OracleDep = Annotated[VoteOracleClient | None, Depends(get_oracle)]


async def get_eligibility(
    repo: RepoDep, settings: SettingsDep, oracle: OracleDep
) -> ConsiderationEligibilityEngine:
    return ConsiderationEligibilityEngine(repo, settings.min_reviewer_approvals, oracle)


EligibilityDep = Annotated[ConsiderationEligibilityEngine, Depends(get_eligibility)]


async def get_status_machine(
    repo: RepoDep, eligibility: EligibilityDep
) -> ProposalStatusMachine:
    return ProposalStatusMachine(repo, eligibility)


StatusMachineDep = Annotated[ProposalStatusMachine, Depends(get_status_machine)]


async def get_voting_results(repo: RepoDep, oracle: OracleDep) -> VotingResults:
    return VotingResults(repo, oracle)


VotingResultsDep = Annotated[VotingResults, Depends(get_voting_results)]


def http_error(exc: FundflowError) -> HTTPException:
    """Map a domain error onto the matching HTTP status."""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, VoteNotAllowed):
        return HTTPException(status_code=exc.status_code, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=400, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
