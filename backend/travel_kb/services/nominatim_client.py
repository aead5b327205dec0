"""OpenStreetMap Nominatim geocoding adapter."""

import logging
from dataclasses import dataclass, field

import httpx

from travel_kb.config import settings

logger = logging.getLogger(__name__)


@dataclass
class GeocodeResult:
    display_name: str
    latitude: float
    longitude: float
    place_type: str = ""
    bounding_box: list[float] = field(default_factory=list)
    address: dict[str, str] = field(default_factory=dict)

    @property
    def country(self) -> str | None:
        return self.address.get("country")

    @property
    def region(self) -> str | None:
        return self.address.get("state") or self.address.get("region")


class NominatimClient:
    """Nominatim requires an identifying User-Agent on every request."""

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=settings.nominatim_base_url,
                timeout=settings.source_timeout_seconds,
                headers={"User-Agent": settings.nominatim_user_agent},
            )
        return self._client

    async def geocode(self, city: str, country: str | None = None) -> GeocodeResult | None:
        term = f"{city}, {country}" if country else city
        try:
            client = await self._get_client()
            resp = await client.get(
                "/search",
                params={"format": "json", "q": term, "limit": 1, "addressdetails": 1, "accept-language": "en"},
            )
            if resp.status_code != 200:
                return None
            results = resp.json()
            if not results:
                return None

            r = results[0]
            return GeocodeResult(
                display_name=r.get("display_name", term),
                latitude=float(r["lat"]),
                longitude=float(r["lon"]),
                place_type=r.get("type", ""),
                bounding_box=[float(v) for v in r.get("boundingbox", [])],
                address=r.get("address", {}),
            )
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error(f"Nominatim geocoding failed for {term}: {e}")
            return None

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
