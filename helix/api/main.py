"""
FastAPI application for triple-helix.

Provides REST API for:
- Content manifest and stitch retrieval
- Authenticated progress writes and session results
- Anonymous -> authenticated progress migration
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from config import get_settings
from helix.api.auth import get_catalog
from helix.api.routers import content_router, progress_router
from helix.log_setup import configure_logging
from helix.persistence.database import async_session_scope, init_db


async def _check_database_health() -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok" or "error".
    """
    try:
        async with async_session_scope() as session:
            await session.execute(text("SELECT 1"))
        return "ok", None
    except SQLAlchemyError as e:
        return "error", str(e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    configure_logging(settings)
    logger.info("Starting triple-helix service...")
    await init_db()
    logger.info("Content catalogue ready ({} stitches)", len(get_catalog()))
    logger.info("Service started on {}:{}", settings.api_host, settings.api_port)

    yield

    logger.info("Shutting down triple-helix service...")


app = FastAPI(
    title="Triple Helix",
    description="""
    Spaced-repetition stitch sequencing service.

    - **Content**: manifest, batch and single-stitch retrieval
    - **Progress**: idempotent position upserts keyed by (user, thread, stitch)
    - **Sessions**: session results and profile totals
    - **Migration**: anonymous progress re-keyed onto a signed-in user
    """,
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ========================================
# Health Endpoints
# ========================================


@app.get("/", tags=["Health"])
def root() -> dict[str, str]:
    """Root endpoint returning service info."""
    return {
        "service": "triple-helix",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, Any]:
    """Health check with an actual database round trip."""
    db_status, db_error = await _check_database_health()

    result: dict[str, Any] = {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "database": db_status,
            "content": f"{len(get_catalog())} stitches",
        },
    }
    if db_error:
        result["errors"] = {"database": db_error}
    return result


# ========================================
# Routers
# ========================================

app.include_router(content_router.router, prefix="/api/content", tags=["Content"])
app.include_router(progress_router.router, prefix="/api", tags=["Progress"])
