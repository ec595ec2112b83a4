"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from fundflow.api.admin import router as admin_router
from fundflow.api.funding_rounds import router as funding_rounds_router
from fundflow.api.proposals import router as proposals_router
from fundflow.config import Settings
from fundflow.db.engine import create_engine, create_tables
from fundflow.oracle.client import VoteOracleClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: create engine/tables and the oracle client, optionally start the scheduler."""
    settings: Settings = app.state.settings
    engine = create_engine(settings.database_url)
    await create_tables(engine)
    app.state.engine = engine

    oracle = VoteOracleClient(
        settings.ocv_api_base_url,
        timeout=settings.ocv_timeout_seconds,
    )
    app.state.oracle = oracle
    logger.info("ocv_client_ready base_url=%s", settings.ocv_api_base_url)

    # Start APScheduler for periodic vote processing
    scheduler = None
    if settings.vote_processing_enabled:
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.interval import IntervalTrigger

        from fundflow.core.vote_processing import process_all_rounds

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            process_all_rounds,
            trigger=IntervalTrigger(seconds=settings.vote_processing_interval_seconds),
            kwargs={
                "engine": engine,
                "oracle": oracle,
                "min_reviewer_approvals": settings.min_reviewer_approvals,
            },
            id="process_all_rounds",
            name="Process funding round votes",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info(
            "scheduler_started interval_seconds=%d",
            settings.vote_processing_interval_seconds,
        )
    else:
        app.state.scheduler = None
        logger.info("scheduler_disabled")

    yield

    # Shutdown scheduler
    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    await oracle.aclose()
    await engine.dispose()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the fundflow FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.fundflow_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="fundflow",
        version="0.1.0",
        description="Grant funding rounds: consideration, deliberation and ranked-choice funding",
        docs_url="/docs" if settings.fundflow_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.include_router(funding_rounds_router)
    app.include_router(proposals_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.fundflow_env}

    return app


app = create_app()
