"""Provider directory backed by the durable key-value store.

Holds every registered provider profile (type, capacity, location,
specialisations, working hours, rating) and answers availability
questions for the routing engine.

Capacity invariant: ``current_case_load <= max_case_load`` at all times.
Case-load increments go through :meth:`ProviderDirectory.increment_case_load`,
an atomic compare-and-increment under a per-provider lock, so two
concurrent acceptances can never push a provider past its maximum.
"""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

import structlog

from src.models.provider import ProviderProfile
from src.services.clock import Clock, SystemClock
from src.services.errors import NotFoundError, ProviderAtCapacityError
from src.services.locks import KeyedLocks
from src.services.store import JsonStateStore

logger = structlog.get_logger(__name__)

_INDEX_KEY = "providers:index"


def _provider_key(provider_id: str) -> str:
    return f"provider:{provider_id}"


def is_within_working_hours(profile: ProviderProfile, local_now: datetime) -> bool:
    """Whether *profile* is reachable at the wall-clock time *local_now*."""
    minute_of_day = local_now.hour * 60 + local_now.minute
    return profile.working_hours.covers(minute_of_day)


def is_eligible(profile: ProviderProfile, local_now: datetime) -> bool:
    """Availability filter: flagged available, below capacity, on shift.

    A provider failing any one check is excluded entirely.
    """
    if not profile.is_available:
        return False
    if not profile.has_capacity:
        return False
    return is_within_working_hours(profile, local_now)


class ProviderDirectory:
    """Registry of provider profiles.

    Parameters
    ----------
    store:
        State store holding ``provider:{id}`` records and the ordered
        ``providers:index``.  Index order is registration order, which the
        routing engine uses to break score ties.
    clock:
        Time source for ``last_active_at`` stamps and availability checks.
    timezone:
        IANA zone that working-hour windows are expressed in.
    """

    __slots__ = ("_clock", "_locks", "_store", "_tz")

    def __init__(
        self,
        store: JsonStateStore,
        clock: Clock | None = None,
        timezone: str = "Africa/Nairobi",
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._tz = ZoneInfo(timezone)
        self._locks = KeyedLocks()

    @property
    def timezone(self) -> ZoneInfo:
        return self._tz

    def local_time(self, now: datetime | None = None) -> datetime:
        return (now or self._clock.now()).astimezone(self._tz)

    # ------------------------------------------------------------------
    # Registration and lookup
    # ------------------------------------------------------------------

    async def register(self, profile: ProviderProfile) -> ProviderProfile:
        """Insert or replace a provider profile."""
        async with self._locks(profile.provider_id):
            await self._store.set_model(_provider_key(profile.provider_id), profile)
            await self._store.add_to_index(_INDEX_KEY, profile.provider_id)

        logger.info(
            "directory.provider_registered",
            provider_id=profile.provider_id,
            provider_type=profile.provider_type,
        )
        return profile

    async def get(self, provider_id: str) -> ProviderProfile | None:
        return await self._store.get_model(_provider_key(provider_id), ProviderProfile)

    async def require(self, provider_id: str) -> ProviderProfile:
        profile = await self.get(provider_id)
        if profile is None:
            raise NotFoundError(f"unknown provider {provider_id!r}")
        return profile

    async def list_providers(self) -> list[ProviderProfile]:
        """All providers in directory (registration) order."""
        providers: list[ProviderProfile] = []
        for provider_id in await self._store.get_index(_INDEX_KEY):
            profile = await self.get(provider_id)
            if profile is not None:
                providers.append(profile)
        return providers

    async def available_providers(self, now: datetime | None = None) -> list[ProviderProfile]:
        """Providers passing the availability filter at *now*, in directory order."""
        local_now = self.local_time(now)
        return [p for p in await self.list_providers() if is_eligible(p, local_now)]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def set_availability(self, provider_id: str, is_available: bool) -> ProviderProfile:
        """External availability toggle."""
        async with self._locks(provider_id):
            profile = await self.require(provider_id)
            updated = profile.model_copy(
                update={"is_available": is_available, "last_active_at": self._clock.now()}
            )
            await self._store.set_model(_provider_key(provider_id), updated)

        logger.info(
            "directory.availability_changed",
            provider_id=provider_id,
            is_available=is_available,
        )
        return updated

    async def increment_case_load(self, provider_id: str) -> ProviderProfile:
        """Atomically take one more case, or raise if the provider is full.

        Raises
        ------
        ProviderAtCapacityError
            ``current_case_load`` already equals ``max_case_load``.
        """
        async with self._locks(provider_id):
            profile = await self.require(provider_id)
            if not profile.has_capacity:
                logger.warning(
                    "directory.capacity_exhausted",
                    provider_id=provider_id,
                    case_load=profile.current_case_load,
                    max_case_load=profile.max_case_load,
                )
                raise ProviderAtCapacityError(
                    f"provider {provider_id!r} is at capacity "
                    f"({profile.current_case_load}/{profile.max_case_load})"
                )
            updated = profile.model_copy(
                update={"current_case_load": profile.current_case_load + 1}
            )
            await self._store.set_model(_provider_key(provider_id), updated)

        logger.info(
            "directory.case_load_incremented",
            provider_id=provider_id,
            case_load=updated.current_case_load,
            max_case_load=updated.max_case_load,
        )
        return updated

    async def release_case(self, provider_id: str) -> ProviderProfile:
        """Give back one case slot when a case closes (floor 0)."""
        async with self._locks(provider_id):
            profile = await self.require(provider_id)
            updated = profile.model_copy(
                update={"current_case_load": max(0, profile.current_case_load - 1)}
            )
            await self._store.set_model(_provider_key(provider_id), updated)
        return updated

    # ------------------------------------------------------------------
    # Dashboard helpers
    # ------------------------------------------------------------------

    async def capacity_overview(self, now: datetime | None = None) -> dict[str, int]:
        local_now = self.local_time(now)
        providers = await self.list_providers()
        return {
            "total_providers": len(providers),
            "available_providers": sum(1 for p in providers if is_eligible(p, local_now)),
            "providers_at_capacity": sum(1 for p in providers if not p.has_capacity),
        }
