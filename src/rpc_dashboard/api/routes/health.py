"""Service health check."""

from __future__ import annotations

from datetime import UTC, datetime

import aiosqlite
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ... import __version__
from ...backend import BackendClient
from ...config import Settings
from ...logging_config import get_logger
from ...store import AsyncStore
from ..deps import get_backend, get_settings, get_store

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health_check(
    settings: Settings = Depends(get_settings),
    backend: BackendClient = Depends(get_backend),
    store: AsyncStore = Depends(get_store),
):
    timestamp = datetime.now(UTC).isoformat()
    missing = settings.missing_required()
    if missing:
        return JSONResponse(
            {
                "status": "unhealthy",
                "error": "Missing environment variables",
                "missing": missing,
                "timestamp": timestamp,
            },
            status_code=503,
        )

    backend_healthy = await backend.ping()
    try:
        database_healthy = await store.ping()
    except aiosqlite.Error as e:
        logger.warning("database_health_check_failed", error=str(e))
        database_healthy = False

    return {
        "status": "healthy",
        "timestamp": timestamp,
        "version": __version__,
        "services": {
            "backend": "healthy" if backend_healthy else "degraded",
            "database": "healthy" if database_healthy else "degraded",
        },
        "environment": settings.environment,
    }
