"""Data acquisition: gather raw source data, enrich it with the LLM chain, store it."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from travel_kb.config import settings
from travel_kb.errors import EmbeddingError
from travel_kb.schemas.destination import (
    Attraction,
    Climate,
    Coordinates,
    CulturalNorms,
    DataSource,
    EnhancedDestination,
    LanguageGuide,
    QualityMetrics,
    TravelLaws,
    freshness_score,
    utcnow,
)
from travel_kb.schemas.knowledge import ContentRecord
from travel_kb.services.embedding_service import EmbeddingService
from travel_kb.services.llm_client import GenerationTask, LLMChain
from travel_kb.services.nominatim_client import GeocodeResult, NominatimClient
from travel_kb.services.vector_store import VectorStore
from travel_kb.services.wikipedia_client import WikipediaClient, WikipediaSummary

logger = logging.getLogger(__name__)

ENHANCED_CITY_TYPE = "enhanced_city"
LEGACY_CONTENT_TYPES = ("destination", "city")

SOURCE_RELIABILITY = {
    "wikipedia": 0.8,
    "osm": 0.9,
    "government": 0.95,
    "weather": 0.85,
    "currency": 0.9,
    "events": 0.7,
}

SOURCE_NAMES = {
    "wikipedia": "Wikipedia",
    "osm": "OpenStreetMap",
    "government": "Government travel advisories",
    "weather": "Climate normals",
    "currency": "Currency rates",
    "events": "Events calendar",
}

ENRICH_SYSTEM = (
    "You are a travel intelligence analyst. You produce accurate, practical destination "
    "data for travellers, including specific laws, penalties and cultural norms. "
    "Respond with a single JSON object only."
)


def slugify(*parts: str | None) -> str:
    text = "-".join(p for p in parts if p)
    return re.sub(r"[^\w]+", "-", text.lower()).strip("-")


DESTINATION_KEYS = frozenset(
    key
    for name, info in EnhancedDestination.model_fields.items()
    for key in (name, info.validation_alias)
    if isinstance(key, str)
)


def looks_like_destination(data: Any) -> bool:
    """True for a JSON object carrying at least one destination field."""
    return isinstance(data, dict) and any(key in DESTINATION_KEYS for key in data)


@dataclass
class GovernmentAdvisory:
    travel_advisories: list[str] = field(default_factory=list)
    visa_requirements: list[str] = field(default_factory=list)
    health_requirements: list[str] = field(default_factory=list)
    safety_warnings: list[str] = field(default_factory=list)


@dataclass
class WeatherNormals:
    average_temperatures: dict[str, dict[str, float]] = field(default_factory=dict)
    rainy_seasons: list[str] = field(default_factory=list)
    best_visit_times: list[str] = field(default_factory=list)


@dataclass
class CurrencyInfo:
    currency: str | None = None
    exchange_rate: float | None = None


@dataclass
class EventListing:
    events: list[dict[str, str]] = field(default_factory=list)


@dataclass
class RawSources:
    """Per-source results; None means the source failed or timed out."""
    wikipedia: WikipediaSummary | None = None
    osm: GeocodeResult | None = None
    government: GovernmentAdvisory | None = None
    weather: WeatherNormals | None = None
    currency: CurrencyInfo | None = None
    events: EventListing | None = None

    def present(self) -> list[str]:
        return [name for name in SOURCE_RELIABILITY if getattr(self, name) is not None]


def initial_quality(raw: RawSources) -> QualityMetrics:
    present = raw.present()
    reliability = sum(SOURCE_RELIABILITY[name] for name in present) / len(present) if present else 0.0
    return QualityMetrics(
        freshness=1.0,
        source_reliability=reliability,
        user_validation=0.0,
        expert_review=0.0,
        cross_reference_accuracy=0.8 if len(present) > 1 else 0.5,
    )


def data_sources(raw: RawSources) -> list[DataSource]:
    sources = []
    for name in raw.present():
        url = raw.wikipedia.page_url if name == "wikipedia" and raw.wikipedia.page_url else None
        sources.append(
            DataSource(name=SOURCE_NAMES[name], type=name, url=url, reliability=SOURCE_RELIABILITY[name])
        )
    return sources


def build_search_content(d: EnhancedDestination) -> str:
    """Prose rendering of a destination used for embedding."""
    laws = d.travel_laws
    norms = d.cultural_norms
    econ = d.economic_data
    phrases = ", ".join(f"{p.english}: {p.local}" for p in d.language_guide.essential_phrases)
    violations = "; ".join(f"{v.violation} ({v.severity}): {v.penalty}" for v in laws.penalties.common_violations)
    lines = [
        f"{d.name}, {d.country} - Complete Travel Guide",
        "",
        f"Location: {d.name}, {d.region}, {d.country}",
        f"Population: {d.population:,}",
        f"Languages: {', '.join(d.languages)}",
        f"Currency: {d.currency}",
        f"Safety Rating: {d.safety_rating}/10",
        f"Cost Level: {d.cost_level}",
    ]
    if d.summary:
        lines += ["", d.summary]
    lines += [
        "",
        "Travel Laws and Regulations:",
        f"Immigration: {', '.join(laws.immigration.entry_restrictions + laws.immigration.customs_regulations)}",
        f"Transportation: {', '.join(laws.transportation.driving_laws + laws.transportation.public_transport_rules)}",
        f"Public Behavior: {', '.join(laws.public_behavior.alcohol_restrictions + laws.public_behavior.dress_codes)}",
        f"Photography: {', '.join(laws.photography.restricted_areas)}",
        f"Penalties: {violations}",
        "",
        "Cultural Norms:",
        f"Etiquette: {', '.join(norms.etiquette)}",
        f"Taboos: {', '.join(norms.taboos)}",
        f"Religious Considerations: {', '.join(norms.religious_considerations)}",
        "",
        f"Attractions: {', '.join(a.name for a in d.attractions)}",
        "",
        "Economic Information:",
        f"Average Daily Cost: ${econ.average_daily_cost:g}",
        f"Accommodation: Budget ${econ.accommodation_costs.budget:g}, "
        f"Mid-range ${econ.accommodation_costs.mid_range:g}, Luxury ${econ.accommodation_costs.luxury:g}",
        f"Meals: Street food ${econ.meal_costs.street_food:g}, Restaurant ${econ.meal_costs.restaurant:g}, "
        f"Fine dining ${econ.meal_costs.fine_dining:g}",
        "",
        f"Best Time to Visit: {', '.join(d.best_time_to_visit)}",
        f"Essential Phrases: {phrases}",
    ]
    return "\n".join(lines).strip()


def upgrade_legacy(payload: dict[str, Any], record: ContentRecord) -> EnhancedDestination:
    """Lift a legacy destination/city record into the full shape with conservative defaults."""
    destination = EnhancedDestination.from_payload(payload)

    def _has(*keys: str) -> bool:
        return any(payload.get(k) for k in keys)

    if not _has("travel_laws", "travelLaws"):
        destination.travel_laws = TravelLaws.minimal()
    if not _has("cultural_norms", "culturalNorms"):
        destination.cultural_norms = CulturalNorms.minimal()
    if not _has("climate"):
        destination.climate = Climate.minimal()

    # Legacy field names
    if not _has("coordinates") and _has("latitude") and _has("longitude"):
        destination.coordinates = Coordinates.from_payload(
            {"latitude": payload["latitude"], "longitude": payload["longitude"]}
        )
    if not _has("languages") and isinstance(payload.get("language"), list):
        destination.languages = [str(lang) for lang in payload["language"]] or destination.languages
    if not _has("attractions") and isinstance(payload.get("mainAttractions"), list):
        destination.attractions = [
            Attraction(
                id=slugify(str(name)),
                name=str(name),
                description=f"Popular attraction in {destination.name or record.title}",
                cultural_significance="Locally significant",
            )
            for name in payload["mainAttractions"]
        ]
    if not _has("language_guide", "languageGuide"):
        destination.language_guide = LanguageGuide.minimal(destination.languages[0] if destination.languages else "English")

    if not destination.name:
        destination.name = record.title.split(",")[0].split(" - ")[0].strip()
    if destination.country == "Unknown" and record.metadata.get("country"):
        destination.country = str(record.metadata["country"])
    if not destination.summary:
        destination.summary = str(payload.get("description") or "")
    if not _has("metadata"):
        destination.metadata.last_updated = record.updated_at
        destination.metadata.update_frequency = "weekly"
        destination.metadata.data_quality = QualityMetrics(
            freshness=0.5, source_reliability=0.6, cross_reference_accuracy=0.5
        )
    return destination


def destination_from_record(record: ContentRecord) -> EnhancedDestination | None:
    """Decode a stored record into a destination; None if it cannot be read."""
    try:
        payload = json.loads(record.content)
    except json.JSONDecodeError:
        payload = None

    if record.content_type == ENHANCED_CITY_TYPE:
        if not isinstance(payload, dict):
            logger.warning(f"Unreadable destination record {record.id}")
            return None
        destination = EnhancedDestination.from_payload(payload)
    else:
        if not isinstance(payload, dict):
            payload = {"description": record.content[:500]}
        destination = upgrade_legacy(payload, record)

    if not destination.id:
        destination.id = record.content_id
    # Stored freshness is a snapshot; age it from the record timestamp
    destination.metadata.data_quality.freshness = freshness_score(record.updated_at)
    return destination


class DataAcquisitionEngine:
    def __init__(
        self,
        store: VectorStore,
        embeddings: EmbeddingService,
        llm: LLMChain,
        wikipedia: WikipediaClient | None = None,
        nominatim: NominatimClient | None = None,
        source_timeout: float | None = None,
    ):
        self.store = store
        self.embeddings = embeddings
        self.llm = llm
        self.wikipedia = wikipedia or WikipediaClient()
        self.nominatim = nominatim or NominatimClient()
        self.source_timeout = source_timeout or settings.source_timeout_seconds

    # ---------- Sources ----------

    async def fetch_sources(self, city: str, country: str | None = None) -> RawSources:
        """Query every source concurrently; each one fails in isolation."""
        logger.info(f"Fetching source data for {city}{', ' + country if country else ''}")
        names = ["wikipedia", "osm", "government", "weather", "currency", "events"]
        calls = [
            self.wikipedia.fetch_summary(city, country),
            self.nominatim.geocode(city, country),
            self._fetch_government_advisories(country),
            self._fetch_weather(city),
            self._fetch_currency(country),
            self._fetch_events(city, country),
        ]
        results = await asyncio.gather(
            *(asyncio.wait_for(call, timeout=self.source_timeout) for call in calls),
            return_exceptions=True,
        )

        raw = RawSources()
        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                kind = "timed out" if isinstance(result, asyncio.TimeoutError) else f"failed: {result}"
                logger.warning(f"Source {name} {kind} for {city}")
                continue
            setattr(raw, name, result)
        logger.info(f"Sources for {city}: {', '.join(raw.present()) or 'none'}")
        return raw

    # Structured placeholders for sources without a live integration yet

    async def _fetch_government_advisories(self, country: str | None) -> GovernmentAdvisory:
        return GovernmentAdvisory()

    async def _fetch_weather(self, city: str) -> WeatherNormals:
        return WeatherNormals()

    async def _fetch_currency(self, country: str | None) -> CurrencyInfo:
        return CurrencyInfo()

    async def _fetch_events(self, city: str, country: str | None) -> EventListing:
        return EventListing()

    # ---------- Enrichment ----------

    def _build_prompt(self, raw: RawSources, city: str, country: str | None) -> tuple[str, str]:
        facts: dict[str, Any] = {}
        if raw.wikipedia:
            facts["encyclopedia"] = {"title": raw.wikipedia.title, "extract": raw.wikipedia.extract}
        if raw.osm:
            facts["geocoding"] = {
                "display_name": raw.osm.display_name,
                "latitude": raw.osm.latitude,
                "longitude": raw.osm.longitude,
                "address": raw.osm.address,
            }
        skeleton = EnhancedDestination().model_dump(
            mode="json", exclude={"id", "metadata", "coordinates", "summary"}
        )
        place = f"{city}, {country}" if country else city

        prompt = (
            f"Based on the following source data for {place}, generate comprehensive travel "
            f"intelligence.\n\nSource data:\n{json.dumps(facts, indent=2, default=str)}\n\n"
            "Include:\n"
            "1. Legal requirements and regulations for tourists, with specific penalties and their severity "
            "(minor, moderate or severe)\n"
            "2. Cultural norms and etiquette guidelines\n"
            "3. Top attractions, restaurants, seasonal events and transport options\n"
            "4. Economic data and typical costs in USD\n"
            "5. Climate and seasonal information\n"
            "6. Language essentials\n\n"
            "Use exactly this JSON structure (snake_case keys), replacing the example values:\n"
            f"{json.dumps(skeleton)}\n\nRespond with valid JSON only."
        )
        reshaped = (
            f"Return ONLY a JSON object describing {place} for travellers, with the keys "
            f"{', '.join(skeleton)}. Follow this example structure exactly:\n{json.dumps(skeleton)}"
        )
        return prompt, reshaped

    async def enrich(self, raw: RawSources, city: str, country: str | None = None) -> EnhancedDestination:
        """Build a full destination record. Never raises; degrades to defaults plus raw facts."""
        prompt, reshaped = self._build_prompt(raw, city, country)
        task = GenerationTask(
            name=f"enrich:{city}",
            system=ENRICH_SYSTEM,
            prompt=prompt,
            reshaped_prompt=reshaped,
            fallback="{}",
            expect_json=True,
            max_tokens=4000,
            temperature=0.3,
            validate=looks_like_destination,
        )
        try:
            result = await self.llm.generate(task)
            payload = result.data if isinstance(result.data, dict) else {}
            destination = EnhancedDestination.from_payload(payload)
            if result.used_fallback:
                logger.warning(f"Enrichment for {city} used defaults (no provider succeeded)")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Enrichment failed for {city}, using fallback record: {e}")
            destination = EnhancedDestination()

        return self._merge(destination, raw, city, country)

    def _merge(
        self, destination: EnhancedDestination, raw: RawSources, city: str, country: str | None
    ) -> EnhancedDestination:
        geo_country = raw.osm.country if raw.osm else None
        destination.name = city
        destination.country = geo_country or country or destination.country or "Unknown"
        if raw.osm and raw.osm.region:
            destination.region = raw.osm.region

        if raw.osm:
            destination.coordinates = Coordinates(latitude=raw.osm.latitude, longitude=raw.osm.longitude)
        elif raw.wikipedia and raw.wikipedia.has_coordinates:
            destination.coordinates = Coordinates(
                latitude=raw.wikipedia.latitude, longitude=raw.wikipedia.longitude
            )

        if raw.currency and raw.currency.currency:
            destination.currency = raw.currency.currency
        if raw.wikipedia and raw.wikipedia.extract:
            destination.summary = raw.wikipedia.extract

        destination.id = slugify(city, destination.country)
        for kind, items in (("attraction", destination.attractions), ("restaurant", destination.restaurants),
                            ("event", destination.events)):
            for i, item in enumerate(items, start=1):
                if not item.id:
                    item.id = f"{destination.id}-{kind}-{i}"

        destination.metadata.last_updated = utcnow()
        destination.metadata.data_quality = initial_quality(raw)
        destination.metadata.sources = data_sources(raw)
        destination.metadata.update_frequency = "daily"
        return destination

    async def acquire(self, city: str, country: str | None = None) -> EnhancedDestination:
        raw = await self.fetch_sources(city, country)
        return await self.enrich(raw, city, country)

    # ---------- Storage ----------

    async def store_in_knowledge_base(self, destination: EnhancedDestination) -> str:
        """Persist a destination as an ``enhanced_city`` record.

        Raises:
            PersistenceError if the store rejects the write.
        """
        prose = build_search_content(destination)
        try:
            embedding = await self.embeddings.embed(prose, "retrieval_document")
        except EmbeddingError as e:
            logger.warning(f"Embedding failed for {destination.display_name}: {e}")
            embedding = None

        record = ContentRecord(
            content_id=destination.id,
            content_type=ENHANCED_CITY_TYPE,
            title=f"{destination.display_name} - Complete Travel Guide",
            content=destination.model_dump_json(),
            metadata={
                "country": destination.country,
                "region": destination.region,
                "cost_level": destination.cost_level,
                "safety_rating": destination.safety_rating,
                "languages": destination.languages,
                "coordinates": destination.coordinates.model_dump(),
                "last_updated": destination.metadata.last_updated.isoformat(),
                "data_quality": destination.metadata.data_quality.overall_score,
                "generated": True,
            },
            embedding=embedding,
        )
        record_id = await self.store.store(record)
        logger.info(f"Stored {destination.display_name} in knowledge base")
        return record_id

    async def close(self) -> None:
        await self.wikipedia.close()
        await self.nominatim.close()
