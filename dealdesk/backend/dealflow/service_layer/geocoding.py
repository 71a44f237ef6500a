# dealflow/service_layer/geocoding.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..adapters.clients.mapbox import GeocodeResult
from ..config import settings
from ..domain.geo import normalize_zip
from ..domain.types import Coordinates
from ..models import GeoCacheEntry

log = logging.getLogger(__name__)


class Geocoder(Protocol):
    async def geocode(self, query: str) -> GeocodeResult | None:
        ...


@dataclass
class GeocodeStats:
    """
    Per-request counters (returned in matching responses)
    """
    hits: int = 0
    misses: int = 0
    resolved: int = 0
    unresolved: int = 0

    def snapshot(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "resolved": self.resolved,
            "unresolved": self.unresolved,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_aware_utc(dt: datetime) -> datetime:
    """
    SQLite hands back naive datetimes even for timezone=True columns.
    If naive, assume UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def cache_key(query: str) -> str:
    z = normalize_zip(query)
    if z and len(query.strip()) <= 10:
        return f"zip:{z}"
    return "loc:" + " ".join(query.lower().split())


def _is_fresh(row: GeoCacheEntry, ttl_hours: float) -> bool:
    if not row.geocoded_at:
        return False
    return _ensure_aware_utc(row.geocoded_at) >= (_utcnow() - timedelta(hours=ttl_hours))


def _coords(row: GeoCacheEntry) -> Coordinates | None:
    if row.lat is None or row.lng is None:
        return None
    return Coordinates(lat=row.lat, lng=row.lng)


async def get_or_geocode(
    session: AsyncSession,
    query: str | None,
    *,
    geocoder: Geocoder,
    ttl_hours: float | None = None,
    stats: GeocodeStats | None = None,
) -> Coordinates | None:
    """
    Cached forward geocode. Negative results are cached too so an unknown
    place isn't looked up again until its entry expires.
    """
    if not query or not query.strip():
        return None
    ttl = float(settings.GEOCACHE_TTL_HOURS if ttl_hours is None else ttl_hours)
    key = cache_key(query)

    row = (await session.execute(select(GeoCacheEntry).where(GeoCacheEntry.query_key == key))).scalars().first()
    if row and _is_fresh(row, ttl):
        if stats:
            stats.hits += 1
        return _coords(row)

    if stats:
        stats.misses += 1

    result = await geocoder.geocode(query)
    coords = result.coords if result else None
    if stats:
        if coords:
            stats.resolved += 1
        else:
            stats.unresolved += 1

    now = _utcnow()
    if row:
        row.lat = coords.lat if coords else None
        row.lng = coords.lng if coords else None
        row.geocoded_at = now
    else:
        session.add(
            GeoCacheEntry(
                query_key=key,
                lat=coords.lat if coords else None,
                lng=coords.lng if coords else None,
                geocoded_at=now,
            )
        )
    await session.flush()
    return coords


async def prune_geocache(session: AsyncSession, *, ttl_hours: float | None = None) -> int:
    """Deletes expired entries; returns how many went."""
    ttl = float(settings.GEOCACHE_TTL_HOURS if ttl_hours is None else ttl_hours)
    cutoff = _utcnow() - timedelta(hours=ttl)
    res = await session.execute(delete(GeoCacheEntry).where(GeoCacheEntry.geocoded_at < cutoff))
    await session.flush()
    return int(res.rowcount or 0)


async def clear_geocache(session: AsyncSession) -> int:
    res = await session.execute(delete(GeoCacheEntry))
    await session.flush()
    return int(res.rowcount or 0)


async def geocache_stats(session: AsyncSession) -> dict[str, int]:
    total = (await session.execute(select(func.count(GeoCacheEntry.id)))).scalar_one()
    negative = (
        await session.execute(select(func.count(GeoCacheEntry.id)).where(GeoCacheEntry.lat.is_(None)))
    ).scalar_one()
    return {"entries": int(total), "negative": int(negative), "resolved": int(total) - int(negative)}
