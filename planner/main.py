"""FastAPI application entry point."""

import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import sqlalchemy
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from planner import database
from planner.config import Settings, settings as default_settings
from planner.routes import jobs, users
from planner.services.generation_client import GenerationClient
from planner.services.job_store import JobStore
from planner.services.retry import RetryController, RetryPolicy
from planner.worker import JobDispatcher, PlanWorker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def run_migrations(engine, database_url: str) -> None:
    """Upgrade the schema to head unless the jobs table already exists."""
    if sqlalchemy.inspect(engine).has_table("jobs"):
        logger.info("Database tables already exist, skipping migrations")
        return

    logger.info("Running database migrations...")
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(os.path.join(os.path.dirname(os.path.dirname(__file__)), "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    alembic_cfg.attributes["configure_logger"] = False
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed successfully")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Prepare the database and bind the dispatcher to the running loop."""
    logger.info("Starting application...")

    if app.state.settings.RUN_MIGRATIONS:
        try:
            run_migrations(app.state.engine, app.state.settings.DATABASE_URL)
        except Exception as e:
            logger.error(f"Startup database check/migration error: {e}")
            logger.info("Continuing startup - assuming database is ready")

    app.state.dispatcher.start()

    yield

    logger.info("Shutting down application...")
    await app.state.dispatcher.stop()
    await app.state.generation_client.aclose()


def create_app(
    settings: Optional[Settings] = None,
    engine=None,
    generation_client: Optional[GenerationClient] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> FastAPI:
    """
    Build the application and its process-wide collaborators.

    Args:
        settings: Application settings (defaults to the environment)
        engine: SQLAlchemy engine (defaults to the configured one)
        generation_client: Client for the generation service
        retry_policy: Retry budget for generation calls

    Returns:
        Configured FastAPI app
    """
    settings = settings or default_settings
    if engine is None:
        engine = database.engine

    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    generation_client = generation_client or GenerationClient.from_settings(settings)

    store = JobStore(session_factory)
    controller = RetryController(
        generation_client,
        retry_policy or RetryPolicy.from_settings(settings),
    )
    worker = PlanWorker(store, controller)
    dispatcher = JobDispatcher(worker, settings.WORKER_WALL_CLOCK_BUDGET)
    store.subscribe(dispatcher.dispatch)

    app = FastAPI(
        title="Outing Planner",
        description="Asynchronous weekly outing plan generator",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.generation_client = generation_client
    app.state.job_store = store
    app.state.dispatcher = dispatcher

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(jobs.router)
    app.include_router(users.router)

    @app.get("/health")
    def health(request: Request):
        """Health check endpoint reporting jobs stuck before a terminal state."""
        stale = request.app.state.job_store.list_stale(
            timedelta(seconds=request.app.state.settings.STALE_JOB_SECONDS)
        )
        if stale:
            logger.warning(f"{len(stale)} job(s) stuck before a terminal state")
        return {
            "status": "healthy" if not stale else "degraded",
            "stale_jobs": len(stale),
        }

    return app


app = create_app()
