"""
app/main.py

FastAPI application factory. Run with:

    uvicorn app.main:create_app --factory
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.logging_utils import configure_logging
from app.runtime import PipelineRuntime

logger = logging.getLogger(__name__)


def _validate_env() -> None:
    """
    Validate all required environment variables at startup.

    Runs before any service or database connection is initialised.
    Raises RuntimeError listing every missing or invalid variable so the
    operator can fix all problems in one restart cycle.

    Rules:
    - No empty-string values are accepted.
    - LLM API key check is skipped only when LLM_ADAPTER=mock.
    - The places API key is required unless PLACES_API_OPTIONAL is true.
    - SMTP_HOST and MAIL_FROM are required for notifications.
    """

    from db.config import load_env_files, resolve_database_url

    load_env_files()

    errors: list[str] = []

    # --- Database URL ---------------------------------------------------
    try:
        resolve_database_url()
    except RuntimeError as exc:
        errors.append(str(exc))

    # --- LLM API key ----------------------------------------------------
    adapter = os.getenv("LLM_ADAPTER", "openai").strip().lower()
    if adapter != "mock":
        llm_api_key = os.getenv("LLM_API_KEY", "").strip()
        openai_api_key = os.getenv("OPENAI_API_KEY", "").strip()
        if not llm_api_key and not openai_api_key:
            errors.append(
                "LLM API key is not set. Provide LLM_API_KEY or OPENAI_API_KEY, "
                "or set LLM_ADAPTER=mock."
            )

    # --- Places API key -------------------------------------------------
    places_optional = os.getenv("PLACES_API_OPTIONAL", "false").strip().lower() in {"1", "true", "yes", "on"}
    if not places_optional and not os.getenv("GOOGLE_PLACES_API_KEY", "").strip():
        errors.append(
            "GOOGLE_PLACES_API_KEY is not set. Set it or allow enrichment without "
            "maps data with PLACES_API_OPTIONAL=true."
        )

    # --- Mail -----------------------------------------------------------
    for name in ("SMTP_HOST", "MAIL_FROM"):
        if not os.getenv(name, "").strip():
            errors.append(f"{name} is not set.")

    if errors:
        raise RuntimeError(
            "Startup validation failed: missing or invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _check_db() -> None:
    """Open a session and run SELECT 1. Raises RuntimeError if the DB is unreachable."""
    from sqlalchemy import text

    from db.session import SessionLocal

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
    except Exception as exc:
        raise RuntimeError("Database unavailable.") from exc


def _check_schema() -> None:
    """
    Compare Base.metadata table names against the live DB schema.

    Every table registered on Base.metadata must exist in the database.
    Does NOT auto-migrate.
    """
    from sqlalchemy import inspect as sa_inspect

    import db.models  # noqa: F401  registers all ORM models on Base.metadata
    from db.base import Base
    from db.session import get_engine

    inspector = sa_inspect(get_engine())
    actual: set[str] = set(inspector.get_table_names())
    expected: set[str] = set(Base.metadata.tables.keys())
    missing = expected - actual

    if missing:
        logger.critical(
            "Schema mismatch: %d table(s) defined in ORM metadata are absent from "
            "the database: %s. Create the schema and restart.",
            len(missing),
            ", ".join(sorted(missing)),
        )
        raise RuntimeError(
            f"Schema mismatch: {len(missing)} table(s) missing from the database "
            f"({', '.join(sorted(missing))}). Run migrations and restart."
        )


def _default_runtime() -> PipelineRuntime:
    from db.session import SessionLocal

    _check_db()
    logger.info("Database connectivity confirmed")
    _check_schema()
    logger.info("Database schema validated")
    return PipelineRuntime.build(SessionLocal)


def create_app(
    *,
    runtime_factory: Callable[[], PipelineRuntime] | None = None,
    check_environment: bool = True,
    start_background: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    ``runtime_factory`` replaces the database-backed runtime (tests pass one
    built on SQLite with fake clients). With ``start_background`` off, no
    workers or scheduler threads are started.
    """

    if check_environment:
        _validate_env()
    configure_logging()

    factory = runtime_factory or _default_runtime

    @asynccontextmanager
    async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
        """Build the runtime, start workers and scheduler on boot; stop them on exit."""
        runtime = factory()
        application.state.runtime = runtime
        if start_background:
            runtime.start()
        try:
            yield
        finally:
            if start_background:
                runtime.stop()
            application.state.runtime = None

    application = FastAPI(
        title="POI Audit Pipeline API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import (
        costs_router,
        failed_jobs_router,
        metrics_router,
        pipeline_router,
        schedules_router,
    )

    application.include_router(pipeline_router)
    application.include_router(failed_jobs_router)
    application.include_router(costs_router)
    application.include_router(schedules_router)
    application.include_router(metrics_router)

    @application.get("/health")
    def healthcheck() -> dict[str, object]:
        runtime: PipelineRuntime | None = getattr(application.state, "runtime", None)
        return {
            "status": "ok" if runtime is not None else "starting",
            "scheduler_running": bool(runtime and runtime.scheduler and runtime.scheduler.running),
            "workers": {
                queue.value: worker.running for queue, worker in (runtime.workers.workers.items() if runtime else [])
            },
        }

    return application
