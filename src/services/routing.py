"""Provider routing: match an incident to a ranked set of providers.

Pipeline (all steps pure over a directory snapshot):

1. **Availability filter** -- available flag, spare capacity, on shift.
2. **Service-type filter** -- requested service tags map to provider types
   through :data:`SERVICE_PROVIDER_TYPES`; a provider is kept if its type is
   in the union.
3. **Scoring** -- a cost (lower is better) built from urgency/type affinity,
   distance, load, response time, rating and a 24h discount, rounded to the
   nearest integer.  Stable sort, so ties keep directory order.
4. **Cap** -- keep the best ``max_per_type`` assignments per provider type.

The weights live in :class:`RoutingPolicy` so a deployment can tune them;
the defaults reproduce the field-tested behaviour.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import TYPE_CHECKING, Final
from zoneinfo import ZoneInfo

import structlog
from pydantic import BaseModel, Field

from src.models.assignment import ProviderAssignment
from src.models.enums import ProviderType, ServiceTag, UrgencyLevel
from src.models.provider import ContactInfo
from src.services.clock import Clock, SystemClock
from src.services.errors import InvalidInputError
from src.services.geo import haversine_distance
from src.services.provider_directory import is_eligible

if TYPE_CHECKING:
    from src.models.incident import Incident
    from src.models.provider import ProviderProfile
    from src.services.provider_directory import ProviderDirectory

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Service tag -> provider type lookup
# ---------------------------------------------------------------------------

SERVICE_PROVIDER_TYPES: Final[dict[ServiceTag, tuple[ProviderType, ...]]] = {
    ServiceTag.MEDICAL: (ProviderType.HEALTHCARE,),
    ServiceTag.EMERGENCY: (ProviderType.GBV_RESCUE, ProviderType.HEALTHCARE),
    ServiceTag.POLICE: (ProviderType.POLICE,),
    ServiceTag.LEGAL: (ProviderType.LEGAL,),
    ServiceTag.COUNSELING: (ProviderType.COUNSELING,),
    ServiceTag.SHELTER: (ProviderType.SOCIAL,),
    ServiceTag.FINANCIAL: (ProviderType.SOCIAL,),
}


def provider_types_for(services: tuple[str, ...] | list[str]) -> set[ProviderType]:
    """Union of provider types implied by the requested service tags.

    Unknown tags contribute nothing.
    """
    needed: set[ProviderType] = set()
    for raw in services:
        try:
            tag = ServiceTag(raw.strip().lower())
        except ValueError:
            continue
        needed.update(SERVICE_PROVIDER_TYPES[tag])
    return needed


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class RoutingPolicy(BaseModel):
    """Weights of the routing cost function."""

    model_config = {"frozen": True}

    immediate_costs: dict[ProviderType, float] = Field(
        default_factory=lambda: {ProviderType.GBV_RESCUE: 1.0, ProviderType.HEALTHCARE: 2.0}
    )
    immediate_default_cost: float = 5.0
    urgent_costs: dict[ProviderType, float] = Field(
        default_factory=lambda: {ProviderType.HEALTHCARE: 1.0, ProviderType.GBV_RESCUE: 2.0}
    )
    urgent_default_cost: float = 3.0
    routine_cost: float = 3.0

    distance_divisor_km: float = Field(default=5.0, gt=0)
    distance_cost_cap: float = 10.0
    capacity_weight: float = 5.0
    response_time_divisor: float = Field(default=10.0, gt=0)
    rating_baseline: float = 3.0
    rating_weight: float = 2.0
    always_on_discount: float = 2.0

    max_per_type: int = Field(default=2, ge=1)
    travel_minutes_per_km: float = 2.0

    def affinity_cost(self, urgency: UrgencyLevel, provider_type: ProviderType) -> float:
        match urgency:
            case UrgencyLevel.IMMEDIATE:
                return self.immediate_costs.get(provider_type, self.immediate_default_cost)
            case UrgencyLevel.URGENT:
                return self.urgent_costs.get(provider_type, self.urgent_default_cost)
            case _:
                return self.routine_cost


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


# ---------------------------------------------------------------------------
# Routing engine
# ---------------------------------------------------------------------------


class RoutingEngine:
    """Pure ranking of providers for an incident.

    Given the same incident, directory snapshot and instant, :meth:`route`
    returns the same providers in the same order with the same scores.
    """

    __slots__ = ("_policy", "_tz")

    def __init__(
        self,
        policy: RoutingPolicy | None = None,
        timezone: str = "Africa/Nairobi",
    ) -> None:
        self._policy = policy or RoutingPolicy()
        self._tz = ZoneInfo(timezone)

    @property
    def policy(self) -> RoutingPolicy:
        return self._policy

    def score(self, incident: Incident, provider: ProviderProfile, distance_km: float) -> float:
        """Unrounded routing cost of *provider* for *incident*."""
        policy = self._policy
        cost = policy.affinity_cost(incident.urgency, provider.provider_type)
        cost += min(distance_km / policy.distance_divisor_km, policy.distance_cost_cap)
        cost += provider.load_ratio * policy.capacity_weight
        cost += provider.response_time_minutes / policy.response_time_divisor
        cost -= (provider.rating - policy.rating_baseline) * policy.rating_weight
        if (
            incident.urgency in (UrgencyLevel.IMMEDIATE, UrgencyLevel.URGENT)
            and provider.working_hours.is_24_hours
        ):
            cost -= policy.always_on_discount
        return cost

    def route(
        self,
        incident: Incident,
        providers: list[ProviderProfile],
        now: datetime,
    ) -> list[ProviderAssignment]:
        """Rank *providers* for *incident* at instant *now*.

        Raises
        ------
        InvalidInputError
            The incident names no support service.
        """
        services = [s for s in incident.support_services if s and s.strip()]
        if not services:
            raise InvalidInputError("incident has no requested support services")

        local_now = now.astimezone(self._tz)
        needed_types = provider_types_for(services)

        candidates = [
            p for p in providers
            if is_eligible(p, local_now) and p.provider_type in needed_types
        ]

        origin = incident.coordinates
        assignments: list[ProviderAssignment] = []
        for provider in candidates:
            distance = 0.0
            if origin is not None:
                distance = haversine_distance(
                    origin.latitude,
                    origin.longitude,
                    provider.location.latitude,
                    provider.location.longitude,
                )
            assignments.append(
                ProviderAssignment(
                    incident_id=incident.incident_id,
                    provider_id=provider.provider_id,
                    provider_type=provider.provider_type,
                    priority=_round_half_up(self.score(incident, provider, distance)),
                    estimated_response_minutes=provider.response_time_minutes
                    + _round_half_up(distance * self._policy.travel_minutes_per_km),
                    distance_km=distance,
                    specializations=list(provider.specializations),
                    contact=ContactInfo(
                        phone=provider.contact.phone,
                        email=provider.contact.email,
                        facility_name=provider.location.facility_name,
                    ),
                    created_at=now,
                )
            )

        # sorted() is stable: equal priorities keep directory order
        ranked = sorted(assignments, key=lambda a: a.priority)
        final = self._cap_per_type(ranked)

        logger.info(
            "routing.complete",
            incident_id=incident.incident_id,
            urgency=incident.urgency,
            eligible=len(candidates),
            assigned=len(final),
        )
        return final

    def _cap_per_type(self, ranked: list[ProviderAssignment]) -> list[ProviderAssignment]:
        """Keep the best ``max_per_type`` per provider type, preserving rank order."""
        kept: dict[ProviderType, int] = {}
        result: list[ProviderAssignment] = []
        for assignment in ranked:
            count = kept.get(assignment.provider_type, 0)
            if count >= self._policy.max_per_type:
                continue
            kept[assignment.provider_type] = count + 1
            result.append(assignment)
        return result


class ProviderRoutingService:
    """Routes incidents against the live provider directory."""

    __slots__ = ("_clock", "_directory", "_engine")

    def __init__(
        self,
        directory: ProviderDirectory,
        engine: RoutingEngine | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._directory = directory
        self._engine = engine or RoutingEngine()
        self._clock = clock or SystemClock()

    @property
    def engine(self) -> RoutingEngine:
        return self._engine

    async def route_incident(self, incident: Incident) -> list[ProviderAssignment]:
        snapshot = await self._directory.list_providers()
        return self._engine.route(incident, snapshot, self._clock.now())
