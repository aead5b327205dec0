"""Wikipedia adapter: REST page summary with a search-API fallback."""

import logging
from dataclasses import dataclass, field
from urllib.parse import quote

import httpx

from travel_kb.config import settings

logger = logging.getLogger(__name__)


@dataclass
class WikipediaSummary:
    """Lean page summary mapped from the REST API."""
    title: str
    extract: str
    page_url: str = ""
    latitude: float | None = None
    longitude: float | None = None
    thumbnail: str | None = None
    categories: list[str] = field(default_factory=list)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class WikipediaClient:
    """Adapter for the English Wikipedia REST and Action APIs."""

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=settings.wikipedia_base_url,
                timeout=settings.source_timeout_seconds,
                headers={"User-Agent": settings.nominatim_user_agent},
            )
        return self._client

    async def fetch_summary(self, city: str, country: str | None = None) -> WikipediaSummary | None:
        """Summary for "City, Country"; falls back to the best search hit."""
        term = f"{city}, {country}" if country else city
        try:
            summary = await self._summary(term)
            if summary is not None:
                return summary

            client = await self._get_client()
            resp = await client.get(
                "/w/api.php",
                params={"action": "query", "format": "json", "list": "search", "srsearch": term},
            )
            if resp.status_code != 200:
                return None
            hits = resp.json().get("query", {}).get("search", [])
            if not hits:
                return None
            summary = await self._summary(hits[0]["title"])
            if summary is not None and not summary.extract:
                summary.extract = hits[0].get("snippet", "")
            return summary
        except httpx.HTTPError as e:
            logger.error(f"Wikipedia request failed for {term}: {e}")
            return None

    async def _summary(self, title: str) -> WikipediaSummary | None:
        client = await self._get_client()
        resp = await client.get(f"/api/rest_v1/page/summary/{quote(title, safe='')}")
        if resp.status_code != 200:
            return None
        data = resp.json()
        coords = data.get("coordinates") or {}
        return WikipediaSummary(
            title=data.get("title", title),
            extract=data.get("extract", ""),
            page_url=data.get("content_urls", {}).get("desktop", {}).get("page", ""),
            latitude=coords.get("lat"),
            longitude=coords.get("lon"),
            thumbnail=(data.get("thumbnail") or {}).get("source"),
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
