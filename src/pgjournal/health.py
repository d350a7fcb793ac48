"""Health, liveness and readiness endpoints."""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from pgjournal.config import ServiceConfig
from pgjournal.connection import check_connection
from pgjournal.exceptions import JournalError
from pgjournal.journal import JournalStore
from pgjournal.migrations import discover_migrations
from pgjournal.runner import pending_migrations

logger = logging.getLogger(__name__)

health_router = APIRouter(prefix="/health", tags=["health"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _pending_migrations(request: Request) -> list[str]:
    config = getattr(request.app.state, "db_config", None)
    if config is None:
        return []

    journal = JournalStore(config.resolved_journal_path()).read()
    files = discover_migrations(config.migrations_dir)
    return [m.tag for m in pending_migrations(files, journal)]


@health_router.get("")
async def health(request: Request) -> dict:
    """Basic service health."""
    service: ServiceConfig = getattr(
        request.app.state, "service_config", None
    ) or ServiceConfig()
    started_at = getattr(request.app.state, "started_at", None)
    uptime = int(time.monotonic() - started_at) if started_at is not None else 0

    return {
        "status": "healthy",
        "service": service.name,
        "version": service.version,
        "timestamp": _now(),
        "uptime": uptime,
    }


@health_router.get("/live")
async def live() -> dict:
    return {"status": "alive", "timestamp": _now()}


@health_router.get("/ready")
async def ready(request: Request) -> JSONResponse:
    """Ready when the database answers and no migrations are pending."""
    pool = getattr(request.app.state, "db_pool", None)
    database_ok = pool is not None and await check_connection(pool)

    try:
        pending = await run_in_threadpool(_pending_migrations, request)
        migrations = {"status": "ok" if not pending else "pending", "pending": pending}
    except JournalError as e:
        logger.error(f"Readiness check could not read the journal: {e}")
        migrations = {"status": "error", "pending": [], "error": str(e)}

    is_ready = database_ok and migrations["status"] == "ok"

    return JSONResponse(
        status_code=200 if is_ready else 503,
        content={
            "status": "ready" if is_ready else "not_ready",
            "timestamp": _now(),
            "checks": {
                "database": {"status": "ok" if database_ok else "error"},
                "migrations": migrations,
            },
        },
    )
