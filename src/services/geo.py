"""Great-circle distance between two coordinates."""

from __future__ import annotations

import math
from typing import Final

_EARTH_RADIUS_KM: Final[float] = 6371.0


def haversine_distance(
    lat1: float, lon1: float, lat2: float, lon2: float
) -> float:
    """Calculate the great-circle distance between two points on Earth.

    Uses the Haversine formula. Returns distance in kilometres.

    Parameters
    ----------
    lat1, lon1:
        Latitude and longitude of point 1 in decimal degrees.
    lat2, lon2:
        Latitude and longitude of point 2 in decimal degrees.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return _EARTH_RADIUS_KM * c
