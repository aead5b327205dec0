import asyncio
import json

import httpx
import pytest

from conftest import ScriptedProvider, days_ago, make_destination, wiki_nominatim_transport
from travel_kb.schemas.knowledge import ContentRecord
from travel_kb.services.data_acquisition import (
    ENHANCED_CITY_TYPE,
    RawSources,
    build_search_content,
    destination_from_record,
    initial_quality,
    looks_like_destination,
    slugify,
)

PUSHKAR_JSON = json.dumps({
    "population": 21626,
    "languages": ["Hindi", "Rajasthani"],
    "currency": "INR",
    "cost_level": "cheap",
    "coordinates": {"latitude": 0, "longitude": 0},
    "travel_laws": {
        "penalties": {
            "common_violations": [
                {"violation": "Consuming beef or alcohol in the holy town", "penalty": "Arrest", "severity": "severe"},
                {"violation": "Wearing shoes near the ghats", "penalty": "Removal", "severity": "minor"},
            ]
        }
    },
    "attractions": [{"name": "Brahma Temple"}, {"name": "Pushkar Lake"}],
})


def test_slugify():
    assert slugify("New York", "USA") == "new-york-usa"
    assert slugify("Pushkar", None) == "pushkar"


def test_initial_quality_without_sources():
    quality = initial_quality(RawSources())
    assert quality.freshness == 1.0
    assert quality.source_reliability == 0.0
    assert quality.cross_reference_accuracy == 0.5


@pytest.mark.asyncio
async def test_fetch_sources_collects_every_source(memory_store, acquisition_factory):
    store, _ = memory_store
    engine = acquisition_factory(store)

    raw = await engine.fetch_sources("Pushkar", "India")

    assert raw.present() == ["wikipedia", "osm", "government", "weather", "currency", "events"]
    assert raw.wikipedia.page_url == "https://en.wikipedia.org/wiki/Pushkar"
    assert raw.osm.country == "India"
    assert raw.osm.region == "Rajasthan"


@pytest.mark.asyncio
async def test_failed_sources_are_isolated(memory_store, acquisition_factory):
    store, _ = memory_store
    engine = acquisition_factory(store, transport=wiki_nominatim_transport(wiki_status=503, nominatim_results=[]))

    async def broken_weather(city):
        raise RuntimeError("weather feed down")

    async def slow_events(city, country):
        await asyncio.sleep(1)

    engine._fetch_weather = broken_weather
    engine._fetch_events = slow_events
    engine.source_timeout = 0.05

    raw = await engine.fetch_sources("Pushkar", "India")

    assert raw.present() == ["government", "currency"]


@pytest.mark.asyncio
async def test_network_errors_degrade_to_missing_source(memory_store, acquisition_factory):
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    store, _ = memory_store
    engine = acquisition_factory(store, transport=httpx.MockTransport(refuse))

    raw = await engine.fetch_sources("Pushkar", "India")

    assert raw.wikipedia is None
    assert raw.osm is None


@pytest.mark.asyncio
async def test_acquire_merges_ai_output_with_sources(memory_store, acquisition_factory):
    store, _ = memory_store
    engine = acquisition_factory(store, providers=[ScriptedProvider("openai", [PUSHKAR_JSON])])

    d = await engine.acquire("Pushkar", "India")

    assert d.id == "pushkar-india"
    assert d.display_name == "Pushkar, India"
    assert d.region == "Rajasthan"
    assert d.cost_level == "budget"
    assert d.currency == "INR"
    assert d.coordinates.latitude == pytest.approx(26.4898)
    assert d.summary.startswith("Pushkar is a town")
    assert [a.id for a in d.attractions] == ["pushkar-india-attraction-1", "pushkar-india-attraction-2"]
    assert [v.violation for v in d.severe_violations()] == ["Consuming beef or alcohol in the holy town"]

    quality = d.metadata.data_quality
    assert quality.freshness == 1.0
    assert quality.source_reliability == pytest.approx((0.8 + 0.9 + 0.95 + 0.85 + 0.9 + 0.7) / 6)
    assert quality.cross_reference_accuracy == 0.8
    assert len(d.metadata.sources) == 6


@pytest.mark.asyncio
async def test_acquire_without_ai_returns_fallback_record(memory_store, acquisition_factory):
    store, _ = memory_store
    failing = [ScriptedProvider("openai", ["not json at all"]), ScriptedProvider("anthropic", [RuntimeError("down")])]
    engine = acquisition_factory(store, providers=failing)

    d = await engine.acquire("Pushkar", "India")

    assert d.name == "Pushkar"
    assert d.country == "India"
    assert d.cost_level == "moderate"
    assert d.attractions == []
    assert [v.violation for v in d.severe_violations()] == ["Overstaying visa"]
    assert "Follow local laws and regulations" in d.travel_laws.penalties.emergency_procedures


@pytest.mark.asyncio
async def test_off_schema_ai_output_falls_through_to_secondary(memory_store, acquisition_factory):
    store, _ = memory_store
    primary = ScriptedProvider("openai", ['{"unexpected": true}'])
    secondary = ScriptedProvider("anthropic", [PUSHKAR_JSON])
    engine = acquisition_factory(store, providers=[primary, secondary])

    d = await engine.acquire("Pushkar", "India")

    assert len(secondary.prompts) == 1
    assert d.cost_level == "budget"
    assert [v.violation for v in d.severe_violations()] == ["Consuming beef or alcohol in the holy town"]


def test_looks_like_destination():
    assert looks_like_destination({"travelLaws": {}})
    assert looks_like_destination({"cost_level": "budget"})
    assert not looks_like_destination({"unexpected": True})
    assert not looks_like_destination(["name"])

@pytest.mark.asyncio
async def test_store_in_knowledge_base(memory_store, acquisition_factory):
    store, api = memory_store
    engine = acquisition_factory(store)
    destination = make_destination()

    record_id = await engine.store_in_knowledge_base(destination)

    record = await store.get(record_id)
    assert record.content_type == ENHANCED_CITY_TYPE
    assert record.content_id == "kyoto-japan"
    assert record.title == "Kyoto, Japan - Complete Travel Guide"
    assert record.metadata["country"] == "Japan"
    assert record.metadata["coordinates"] == {"latitude": 35.0116, "longitude": 135.7681}
    assert record.embedding is not None
    assert "Kyoto, Japan - Complete Travel Guide" in api.calls[0]

    decoded = destination_from_record(record)
    assert decoded.name == "Kyoto"
    assert decoded.attractions[0].name == "Fushimi Inari"


def test_search_content_mentions_penalties_and_phrases():
    prose = build_search_content(make_destination())
    assert "Kyoto, Japan - Complete Travel Guide" in prose
    assert "Overstaying visa (severe): Fines and deportation" in prose
    assert "Hello: Hello" in prose


def test_legacy_record_is_upgraded():
    record = ContentRecord(
        content_id="goa",
        content_type="destination",
        title="Goa",
        content=json.dumps({
            "name": "Goa",
            "latitude": 15.2993,
            "longitude": 74.124,
            "language": ["Konkani", "English"],
            "mainAttractions": ["Baga Beach", "Basilica of Bom Jesus"],
            "description": "Beaches and Portuguese heritage",
        }),
        metadata={"country": "India"},
    )

    d = destination_from_record(record)

    assert d.id == "goa"
    assert d.country == "India"
    assert d.coordinates.is_valid()
    assert d.languages == ["Konkani", "English"]
    assert d.language_guide.primary_language == "Konkani"
    assert [a.name for a in d.attractions] == ["Baga Beach", "Basilica of Bom Jesus"]
    assert d.summary == "Beaches and Portuguese heritage"
    assert d.travel_laws.penalties.common_violations == []
    assert d.metadata.data_quality.freshness == pytest.approx(1.0, abs=1e-3)
    assert d.metadata.data_quality.source_reliability == 0.6


def test_legacy_plain_text_record():
    record = ContentRecord(content_id="lima", content_type="city", title="Lima, Peru", content="Coastal capital")
    d = destination_from_record(record)
    assert d.name == "Lima"
    assert d.summary == "Coastal capital"


def test_unreadable_enhanced_record():
    record = ContentRecord(content_id="x", content_type=ENHANCED_CITY_TYPE, title="X", content="{broken")
    assert destination_from_record(record) is None


def test_stored_freshness_ages_with_the_record():
    destination = make_destination("Pushkar", "India")
    record = ContentRecord(
        content_id=destination.id,
        content_type=ENHANCED_CITY_TYPE,
        title="Pushkar, India - Complete Travel Guide",
        content=destination.model_dump_json(),
        updated_at=days_ago(45),
    )

    quality = destination_from_record(record).metadata.data_quality

    assert quality.freshness == pytest.approx(0.5, abs=1e-3)
    assert quality.overall_score == pytest.approx((0.5 + 0.85 + 0.6 + 0.5 + 0.8) / 5, abs=1e-3)
