"""
Tracker Sync Service - FastAPI application.

Mirrors Jira / Azure DevOps projects, issues and sprints into the local
database, applies pushed Jira webhooks, and generates LLM-backed insights
through a durable job outbox.
"""

import asyncio
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

from tracker_sync.api.configurations import router as configurations_router
from tracker_sync.api.health import router as health_router
from tracker_sync.api.insight_routes import router as insight_router
from tracker_sync.api.sync_routes import router as sync_router
from tracker_sync.api.webhook_routes import router as webhook_router
from tracker_sync.core.config import AppConfig, get_settings
from tracker_sync.core.database import get_database
from tracker_sync.core.errors import ConfigurationError, TrackerSyncError
from tracker_sync.core.logging_config import get_logger, setup_logging
from tracker_sync.core.middleware import ErrorHandlingMiddleware, SecurityMiddleware, tracker_sync_error_handler
from tracker_sync.jobs.orchestrator import sync_all
from tracker_sync.workers.insight_worker import drain_insight_jobs

settings = get_settings()
logger = get_logger(__name__)

scheduler = AsyncIOScheduler()


async def scheduled_sync_all():
    """Periodic sync of every enabled configuration."""
    try:
        await run_in_threadpool(sync_all, get_database())
    except Exception as e:
        logger.error(f"Scheduled sync failed: {e}")


async def scheduled_insight_drain():
    """Periodic drain of the insight job outbox, off the event loop."""
    try:
        await run_in_threadpool(drain_insight_jobs, get_database())
    except Exception as e:
        logger.error(f"Scheduled insight job drain failed: {e}")


def initialize_scheduler():
    """Registers the periodic sync and outbox drain jobs and starts the scheduler."""
    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled - sync and insight jobs run on demand only")
        return

    scheduler.configure(timezone=settings.SCHEDULER_TIMEZONE)
    scheduler.add_job(
        func=scheduled_sync_all,
        trigger=IntervalTrigger(minutes=settings.SYNC_INTERVAL_MINUTES),
        id="sync_all",
        name="Sync all enabled configurations",
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )
    scheduler.add_job(
        func=scheduled_insight_drain,
        trigger=IntervalTrigger(seconds=settings.INSIGHT_JOB_INTERVAL_SECONDS),
        id="insight_jobs",
        name="Drain insight job outbox",
        max_instances=1,
        coalesce=True,
        replace_existing=True
    )
    scheduler.start()
    logger.info(
        f"Scheduler started: sync every {settings.SYNC_INTERVAL_MINUTES}min, "
        f"insight jobs every {settings.INSIGHT_JOB_INTERVAL_SECONDS}s"
    )


def check_encryption_key():
    """Fails startup when no usable ENCRYPTION_KEY is configured."""
    if not settings.ENCRYPTION_KEY and settings.DEBUG:
        logger.warning("ENCRYPTION_KEY not set - using a throwaway key, stored tokens will not survive a restart")
    try:
        AppConfig.load_key()
    except ConfigurationError as e:
        logger.error(f"Refusing to start: {e.message}")
        raise


def initialize_database() -> bool:
    """Creates missing tables. Returns False when the database is unreachable."""
    try:
        database = get_database()
        if not database.is_connection_alive():
            logger.warning("Database connection not available - will retry on first use")
            return False
        database.create_tables()
        return True
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        return False


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Manages the application lifecycle."""
    setup_logging(force_reconfigure=True)
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    check_encryption_key()

    if initialize_database():
        logger.info("Database initialized successfully")
    else:
        logger.warning("Service started with limited functionality - database connection failed")

    initialize_scheduler()

    try:
        yield
    finally:
        try:
            if scheduler.running:
                scheduler.shutdown(wait=False)
                logger.info("Scheduler shutdown complete")
        except (Exception, asyncio.CancelledError) as e:
            logger.debug(f"Scheduler shutdown raised {type(e).__name__}")

        get_database().close_connections()
        logger.info(f"{settings.APP_NAME} shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    ## Tracker Sync Service

    Mirrors issue tracker data and derives AI insights from it.

    ### Main Features

    - **Pull sync**: Jira Cloud and Azure DevOps projects, issues and sprints/iterations
    - **Push sync**: Jira webhooks for issue and sprint events
    - **Insights**: delivery risk, team and sentiment analysis, and cost, productivity and budget economics
    - **Job outbox**: webhook-triggered insight regeneration, retried until it succeeds

    ### Authentication

    Tracker API tokens are stored encrypted and are never returned by the API.
    """,
    lifespan=lifespan,
    tags_metadata=[
        {"name": "Health", "description": "Service and database health."},
        {"name": "Configurations", "description": "Tracker connection settings."},
        {"name": "Sync", "description": "Connection tests and pull sync."},
        {"name": "Webhooks", "description": "Tracker push events."},
        {"name": "Insights", "description": "LLM-generated insights and the insight job outbox."},
    ]
)

# Middleware configuration (last added runs first)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(SecurityMiddleware)

app.add_exception_handler(TrackerSyncError, tracker_sync_error_handler)

app.include_router(health_router, tags=["Health"])
app.include_router(configurations_router, prefix=settings.API_V1_STR, tags=["Configurations"])
app.include_router(sync_router, prefix=settings.API_V1_STR, tags=["Sync"])
app.include_router(webhook_router, prefix=settings.API_V1_STR, tags=["Webhooks"])
app.include_router(insight_router, prefix=settings.API_V1_STR, tags=["Insights"])
