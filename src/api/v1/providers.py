"""Provider directory API endpoints for Tumaini."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

from src.api.deps import require_service
from src.models.provider import ProviderProfile

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/providers", tags=["providers"])


class AvailabilityRequest(BaseModel):
    is_available: bool


@router.get("")
async def list_providers(request: Request, available_only: bool = False) -> list[ProviderProfile]:
    """List registered providers in directory order."""
    directory = require_service(request, "directory")
    if available_only:
        return await directory.available_providers()
    return await directory.list_providers()


@router.get("/capacity")
async def capacity_overview(request: Request) -> dict[str, int]:
    directory = require_service(request, "directory")
    return await directory.capacity_overview()


@router.post("", status_code=201)
async def register_provider(body: ProviderProfile, request: Request) -> ProviderProfile:
    """Register a provider, replacing any profile with the same id."""
    directory = require_service(request, "directory")
    return await directory.register(body)


@router.get("/{provider_id}")
async def get_provider(provider_id: str, request: Request) -> ProviderProfile:
    directory = require_service(request, "directory")
    return await directory.require(provider_id)


@router.patch("/{provider_id}/availability")
async def set_availability(
    provider_id: str, body: AvailabilityRequest, request: Request
) -> ProviderProfile:
    directory = require_service(request, "directory")
    return await directory.set_availability(provider_id, body.is_available)


@router.post("/{provider_id}/release")
async def release_case(provider_id: str, request: Request) -> ProviderProfile:
    """Free one case slot when a case closes."""
    directory = require_service(request, "directory")
    return await directory.release_case(provider_id)
