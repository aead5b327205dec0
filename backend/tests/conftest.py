"""Shared fakes and builders for the knowledge base tests."""

from datetime import timedelta
from types import SimpleNamespace

import httpx
import pytest

from travel_kb.config import Settings
from travel_kb.schemas.destination import (
    Attraction,
    Coordinates,
    DestinationMetadata,
    EnhancedDestination,
    QualityMetrics,
    TravelLaws,
    utcnow,
)
from travel_kb.schemas.knowledge import ContentRecord
from travel_kb.services.container import ServiceContainer
from travel_kb.services.data_acquisition import DataAcquisitionEngine
from travel_kb.services.embedding_service import EmbeddingService
from travel_kb.services.feedback_store import InMemoryFeedbackStore
from travel_kb.services.llm_client import LLMChain
from travel_kb.services.nominatim_client import NominatimClient
from travel_kb.services.pipeline import PipelineConfig
from travel_kb.services.vector_backends import InMemoryVectorBackend
from travel_kb.services.vector_store import VectorStore
from travel_kb.services.wikipedia_client import WikipediaClient


class FakeEmbeddingsAPI:
    """Stands in for ``AsyncOpenAI().embeddings``.

    ``vectors`` maps a lowercase keyword to a vector; the first keyword found
    in the input wins, otherwise ``default`` is returned.
    """

    def __init__(self, vectors=None, default=None, fail=False, fail_on=None):
        self.vectors = vectors or {}
        self.default = default if default is not None else [0.0, 0.0, 0.0, 1.0]
        self.fail = fail
        self.fail_on = fail_on
        self.calls: list[str] = []

    async def create(self, model, input, dimensions=None):
        self.calls.append(input)
        if self.fail or (self.fail_on and self.fail_on in input):
            raise RuntimeError("embedding backend down")
        text = input.lower()
        vector = self.default
        for keyword, candidate in self.vectors.items():
            if keyword in text:
                vector = candidate
                break
        return SimpleNamespace(data=[SimpleNamespace(embedding=list(vector))])


def make_embeddings(**kwargs) -> tuple[EmbeddingService, FakeEmbeddingsAPI]:
    api = FakeEmbeddingsAPI(**kwargs)
    service = EmbeddingService(api_key="", client=SimpleNamespace(embeddings=api), batch_delay=0)
    return service, api


def unconfigured_embeddings() -> EmbeddingService:
    return EmbeddingService(api_key="", batch_delay=0)


class ScriptedProvider:
    """LLM provider returning canned responses (or raising) in order."""

    def __init__(self, name, responses=None, configured=True):
        self.name = name
        self.responses = list(responses or [])
        self.configured = configured
        self.prompts: list[str] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def complete(self, system, prompt, *, max_tokens=1000, temperature=0, json_mode=False):
        self.prompts.append(prompt)
        if not self.responses:
            raise RuntimeError(f"{self.name} has no scripted response")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_destination(name="Kyoto", country="Japan", **overrides) -> EnhancedDestination:
    destination = EnhancedDestination(
        id=f"{name.lower()}-{country.lower()}",
        name=name,
        country=country,
        region="Kansai",
        coordinates=Coordinates(latitude=35.0116, longitude=135.7681),
        attractions=[Attraction(name="Fushimi Inari", description="Thousands of torii gates")],
        metadata=DestinationMetadata(
            data_quality=QualityMetrics(
                freshness=1.0,
                source_reliability=0.85,
                user_validation=0.6,
                expert_review=0.5,
                cross_reference_accuracy=0.8,
            ),
        ),
    )
    for key, value in overrides.items():
        setattr(destination, key, value)
    return destination


def blank_travel_laws() -> TravelLaws:
    """A law block with every list emptied."""
    laws = TravelLaws()
    for block_name in TravelLaws.model_fields:
        block = getattr(laws, block_name)
        for field_name, value in list(block.__dict__.items()):
            if isinstance(value, list):
                setattr(block, field_name, [])
    return laws


def days_ago(days: float):
    return utcnow() - timedelta(days=days)


def wiki_nominatim_transport(wiki_status=200, nominatim_results=None):
    """MockTransport answering both Wikipedia and Nominatim routes."""
    if nominatim_results is None:
        nominatim_results = [
            {
                "display_name": "Pushkar, Ajmer, Rajasthan, India",
                "lat": "26.4898",
                "lon": "74.5511",
                "type": "town",
                "boundingbox": ["26.47", "26.51", "74.53", "74.57"],
                "address": {"town": "Pushkar", "state": "Rajasthan", "country": "India"},
            }
        ]

    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/api/rest_v1/page/summary/"):
            if wiki_status != 200:
                return httpx.Response(wiki_status)
            return httpx.Response(200, json={
                "title": "Pushkar",
                "extract": "Pushkar is a town in Rajasthan known for its lake and temples.",
                "content_urls": {"desktop": {"page": "https://en.wikipedia.org/wiki/Pushkar"}},
                "coordinates": {"lat": 26.49, "lon": 74.55},
            })
        if path == "/w/api.php":
            return httpx.Response(200, json={"query": {"search": []}})
        if path == "/search":
            return httpx.Response(200, json=nominatim_results)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def make_source_clients(transport: httpx.MockTransport):
    wikipedia = WikipediaClient(httpx.AsyncClient(transport=transport, base_url="https://en.wikipedia.org"))
    nominatim = NominatimClient(httpx.AsyncClient(transport=transport, base_url="https://nominatim.openstreetmap.org"))
    return wikipedia, nominatim


def make_services(embeddings=None, providers=None, transport=None, pipeline_config=None) -> ServiceContainer:
    """Full service graph over in-memory storage, mocked HTTP and scripted LLMs."""
    wikipedia, nominatim = make_source_clients(transport or wiki_nominatim_transport())
    if embeddings is None:
        embeddings, _ = make_embeddings()
    return ServiceContainer.build(
        Settings(_env_file=None, vector_backend="memory", openai_api_key="", anthropic_api_key=""),
        embeddings=embeddings,
        llm=LLMChain(providers or [ScriptedProvider("openai", configured=False)], timeout=5),
        backend=InMemoryVectorBackend(),
        feedback=InMemoryFeedbackStore(),
        wikipedia=wikipedia,
        nominatim=nominatim,
        pipeline_config=pipeline_config or PipelineConfig(
            item_delay_seconds=0,
            expansion_delay_seconds=0,
            priority_destinations=[("Pushkar", "India"), ("Hampi", "India")],
            max_new_destinations=2,
        ),
    )


async def put_destination(store: VectorStore, destination: EnhancedDestination, updated_at) -> ContentRecord:
    """Write a destination record straight to the backend with a chosen age."""
    return await store.backend.upsert(
        ContentRecord(
            content_id=destination.id,
            content_type="enhanced_city",
            title=f"{destination.display_name} - Complete Travel Guide",
            content=destination.model_dump_json(),
            metadata={"country": destination.country, "cost_level": destination.cost_level},
            embedding=[0.0, 0.0, 0.0, 1.0],
            created_at=updated_at,
            updated_at=updated_at,
        )
    )


@pytest.fixture
def memory_store():
    embeddings, api = make_embeddings()
    store = VectorStore(InMemoryVectorBackend(), embeddings, chunk_delay=0)
    return store, api


@pytest.fixture
def feedback_store():
    return InMemoryFeedbackStore()


@pytest.fixture
def acquisition_factory():
    """Build a DataAcquisitionEngine over a store with scripted LLM providers."""

    def _build(store: VectorStore, providers=None, transport=None):
        wikipedia, nominatim = make_source_clients(transport or wiki_nominatim_transport())
        llm = LLMChain(providers or [ScriptedProvider("openai", configured=False)], timeout=5)
        return DataAcquisitionEngine(store, store.embeddings, llm, wikipedia=wikipedia, nominatim=nominatim)

    return _build
