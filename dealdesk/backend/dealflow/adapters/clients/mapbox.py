# dealflow/adapters/clients/mapbox.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from ...config import settings
from ...domain.types import Coordinates
from .http_resilience import resilient_request

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeocodeResult:
    coords: Coordinates
    place_name: str = ""
    relevance: float | None = None


def _first_feature(data: Any) -> dict[str, Any] | None:
    if not isinstance(data, dict):
        return None
    feats = data.get("features")
    if not isinstance(feats, list) or not feats:
        return None
    f = feats[0]
    return f if isinstance(f, dict) else None


class MapboxGeocoder:
    """
    Forward geocoding (mapbox.places). US only, first feature wins.
    Returns None for no token / no match / any HTTP failure; never raises.
    """

    def __init__(self, *, access_token: str | None = None, base_url: str | None = None, client: httpx.AsyncClient | None = None) -> None:
        self._token = access_token if access_token is not None else settings.MAPBOX_ACCESS_TOKEN
        self._base_url = (base_url or settings.MAPBOX_BASE_URL).rstrip("/")
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    async def geocode(self, query: str) -> GeocodeResult | None:
        q = (query or "").strip()
        if not q or not self._token:
            return None

        url = f"{self._base_url}/geocoding/v5/mapbox.places/{quote(q, safe='')}.json"
        params = {"access_token": self._token, "limit": 1, "country": "US"}
        try:
            resp = await resilient_request("GET", url, params=params, client=self._client)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("mapbox geocode failed for %r: %s", q, type(e).__name__)
            return None

        feat = _first_feature(data)
        if feat is None:
            log.info("mapbox: no match for %r", q)
            return None

        center = feat.get("center")
        if not isinstance(center, (list, tuple)) or len(center) != 2:
            return None
        lng, lat = center  # mapbox order is [lng, lat]
        try:
            coords = Coordinates(lat=float(lat), lng=float(lng))
        except (TypeError, ValueError):
            return None

        return GeocodeResult(
            coords=coords,
            place_name=str(feat.get("place_name") or ""),
            relevance=feat.get("relevance"),
        )
