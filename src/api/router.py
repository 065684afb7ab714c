"""Main API router combining all v1 route modules.

Aggregates all routers under the ``/api/v1`` prefix so the
FastAPI application only needs to include a single router.

Includes:
    * Core: health, providers, incidents, assignments
    * Scheduling: appointments, reminders
    * Sync: offline outbox for the remote case API
"""

from __future__ import annotations

from fastapi import APIRouter

from src.api.v1 import (
    appointments,
    assignments,
    health,
    incidents,
    outbox,
    providers,
    reminders,
)

api_router = APIRouter(prefix="/api/v1")

# -- Core sub-routers ------------------------------------------------------
api_router.include_router(health.router)
api_router.include_router(providers.router)
api_router.include_router(incidents.router)
api_router.include_router(assignments.router)

# -- Scheduling sub-routers ------------------------------------------------
api_router.include_router(appointments.router)
api_router.include_router(reminders.router)

# -- Sync sub-routers ------------------------------------------------------
api_router.include_router(outbox.router)
