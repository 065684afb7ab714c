"""Health check endpoints for Tumaini API v1.

Provides liveness and readiness probes for container deployments.  The
readiness check verifies the state store round-trips and that the
reminder engine is ticking when it is meant to.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float
    timezone: str


class ReadinessResponse(BaseModel):
    """Per-dependency readiness; ``status`` is ``ready`` only if every check passed."""

    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.  Answers as long as the event loop is serving requests;
    the store and reminder engine are covered by ``/health/ready``."""
    cfg = getattr(request.app.state, "settings", None)
    uptime = time.time() - getattr(request.app.state, "start_time", time.time())

    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(uptime, 2),
        timezone=getattr(cfg, "timezone", "unknown"),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe."""
    checks: dict[str, str] = {}
    all_ok = True

    # -- Check store round-trip ----------------------------------------------
    store = getattr(request.app.state, "store", None)
    if store is not None:
        try:
            await store.set_json("_health_check", "ok")
            if await store.get_json("_health_check") == "ok":
                checks["store"] = "ok"
            else:
                checks["store"] = "degraded"
                all_ok = False
        except Exception as exc:
            checks["store"] = f"error: {exc!s}"
            all_ok = False
    else:
        checks["store"] = "not_configured"
        all_ok = False

    # -- Check provider directory --------------------------------------------
    directory = getattr(request.app.state, "directory", None)
    if directory is not None:
        try:
            overview = await directory.capacity_overview()
            checks["directory"] = (
                f"ok ({overview['available_providers']}/{overview['total_providers']} available)"
            )
        except Exception as exc:
            checks["directory"] = f"error: {exc!s}"
            all_ok = False
    else:
        checks["directory"] = "not_initialised"
        all_ok = False

    # -- Check reminder engine -----------------------------------------------
    engine = getattr(request.app.state, "reminder_engine", None)
    cfg = getattr(request.app.state, "settings", None)
    if engine is None:
        checks["reminder_engine"] = "not_initialised"
        all_ok = False
    elif engine.is_running:
        last = engine.last_tick_at
        checks["reminder_engine"] = f"running (last tick {last:%H:%M:%S})" if last else "running"
    elif cfg is not None and not cfg.enable_reminder_engine:
        checks["reminder_engine"] = "disabled"
    else:
        checks["reminder_engine"] = "stopped"
        all_ok = False

    status = "ready" if all_ok else "degraded"

    logger.info("health.readiness_check", status=status, checks=checks)

    return ReadinessResponse(status=status, checks=checks)
