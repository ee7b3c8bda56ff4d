"""Google Maps geocoding for taxi destinations."""

from __future__ import annotations

from typing import Protocol

import httpx
from loguru import logger

from mreverything.geo.primitives import GeoPoint

_GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class Geocoder(Protocol):
    async def geocode(self, address: str) -> GeoPoint | None: ...


class GoogleGeocoder:
    """Resolves free-text places, biased to the service region by an address suffix."""

    def __init__(
        self,
        api_key: str,
        region_suffix: str = ",Johannesburg,South Africa",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._suffix = region_suffix
        self._timeout = timeout
        self._transport = transport

    async def geocode(self, address: str) -> GeoPoint | None:
        query = address.strip()
        if not query:
            return None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(_GEOCODE_URL, params={"address": f"{query}{self._suffix}", "key": self._api_key})
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"Geocode: lookup for {query!r} failed: {exc}")
            return None

        results = data.get("results") or []
        if not results:
            logger.info(f"Geocode: no match for {query!r} ({data.get('status', 'unknown')})")
            return None
        loc = results[0]["geometry"]["location"]
        return GeoPoint(float(loc["lat"]), float(loc["lng"]))
