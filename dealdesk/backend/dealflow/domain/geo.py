# dealflow/domain/geo.py
from __future__ import annotations

import math
import re
from typing import Mapping

from .types import Coordinates

EARTH_RADIUS_MILES = 3959.0

_ZIP_RE = re.compile(r"\b(\d{5})(?:-\d{4})?\b")

# (name, max miles) checked in order; anything beyond the last is "far"
PROXIMITY_TIERS: tuple[tuple[str, float], ...] = (
    ("exact", 0.0),
    ("nearby", 10.0),
    ("close", 25.0),
    ("moderate", 50.0),
)


def _haversine(a: Coordinates, b: Coordinates) -> float:
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_miles(a: Coordinates | None, b: Coordinates | None) -> float | None:
    """
    Great-circle distance in miles, or None if either point is unknown.

    Points are put in a canonical order first so distance(a, b) and
    distance(b, a) are bit-for-bit identical.
    """
    if a is None or b is None:
        return None
    first, second = sorted((a, b), key=lambda c: (c.lat, c.lng))
    return _haversine(first, second)


def zip_distance_miles(zip_a: str | None, zip_b: str | None, lookup: Mapping[str, Coordinates]) -> float | None:
    """Degraded mode: resolve both zips through a centroid lookup."""
    za = normalize_zip(zip_a)
    zb = normalize_zip(zip_b)
    if not za or not zb:
        return None
    return distance_miles(lookup.get(za), lookup.get(zb))


def is_within_radius(a: Coordinates | None, b: Coordinates | None, radius_miles: float) -> bool:
    d = distance_miles(a, b)
    return d is not None and d <= radius_miles


def proximity_tier(distance: float | None) -> str | None:
    if distance is None:
        return None
    for name, max_miles in PROXIMITY_TIERS:
        if distance <= max_miles:
            return name
    return "far"


def normalize_zip(raw: str | int | None) -> str | None:
    """'85001-1234' / ' 85001 ' / 85001 -> '85001'. None when not a US zip."""
    if raw is None:
        return None
    s = re.sub(r"[\s-]", "", str(raw))[:5]
    if is_valid_zip(s):
        return s
    return None


def is_valid_zip(s: str | None) -> bool:
    return bool(s) and len(s) == 5 and s.isdigit()


def extract_zip_from_address(address: str | None) -> str | None:
    if not address:
        return None
    # last match wins: "12345 Main St, Phoenix, AZ 85001" -> 85001
    matches = _ZIP_RE.findall(address)
    return matches[-1] if matches else None
