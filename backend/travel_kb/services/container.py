"""Explicit construction of the service graph.

Every collaborator is passed in through a constructor, so tests build the same
graph with fakes by overriding individual pieces.
"""

import logging
from dataclasses import dataclass

from travel_kb.config import Settings, settings as default_settings
from travel_kb.errors import ConfigurationError
from travel_kb.services.data_acquisition import DataAcquisitionEngine
from travel_kb.services.embedding_service import EmbeddingService
from travel_kb.services.feedback_store import FeedbackStore, InMemoryFeedbackStore, SqlFeedbackStore
from travel_kb.services.intelligent_search import IntelligentSearchEngine
from travel_kb.services.knowledge_base import TravelKnowledgeBase
from travel_kb.services.llm_client import AnthropicProvider, LLMChain, OpenAIProvider
from travel_kb.services.nominatim_client import NominatimClient
from travel_kb.services.pipeline import PipelineConfig, PipelineOrchestrator
from travel_kb.services.quality_assurance import QualityAssuranceSystem
from travel_kb.services.vector_backends import InMemoryVectorBackend, PgVectorBackend, VectorBackend
from travel_kb.services.vector_store import VectorStore
from travel_kb.services.wikipedia_client import WikipediaClient

logger = logging.getLogger(__name__)

VECTOR_BACKENDS = ("memory", "pgvector")


@dataclass
class ServiceContainer:
    embeddings: EmbeddingService
    llm: LLMChain
    store: VectorStore
    acquisition: DataAcquisitionEngine
    quality: QualityAssuranceSystem
    pipeline: PipelineOrchestrator
    search_engine: IntelligentSearchEngine
    knowledge_base: TravelKnowledgeBase

    @classmethod
    def build(
        cls,
        config: Settings | None = None,
        *,
        embeddings: EmbeddingService | None = None,
        llm: LLMChain | None = None,
        backend: VectorBackend | None = None,
        feedback: FeedbackStore | None = None,
        wikipedia: WikipediaClient | None = None,
        nominatim: NominatimClient | None = None,
        pipeline_config: PipelineConfig | None = None,
    ) -> "ServiceContainer":
        config = config or default_settings
        if config.vector_backend not in VECTOR_BACKENDS:
            raise ConfigurationError(
                f"Unknown vector backend {config.vector_backend!r}, expected one of {', '.join(VECTOR_BACKENDS)}",
                setting_name="vector_backend",
            )

        if config.vector_backend == "pgvector" and (backend is None or feedback is None):
            from travel_kb.database import async_session_factory

            backend = backend or PgVectorBackend(async_session_factory)
            feedback = feedback or SqlFeedbackStore(async_session_factory)
        backend = backend or InMemoryVectorBackend()
        feedback = feedback or InMemoryFeedbackStore()
        # pgvector columns are fixed-width; the in-memory store locks to the first vector seen
        dimensions = config.embedding_dimensions if isinstance(backend, PgVectorBackend) else None

        embeddings = embeddings or EmbeddingService(
            api_key=config.openai_api_key,
            model=config.embedding_model,
            dimensions=config.embedding_dimensions,
            batch_size=config.embedding_batch_size,
            batch_delay=config.embedding_batch_delay_seconds,
        )
        llm = llm or LLMChain(
            [
                OpenAIProvider(config.openai_api_key, config.openai_model),
                AnthropicProvider(config.anthropic_api_key, config.anthropic_model),
            ],
            timeout=config.llm_timeout_seconds,
        )
        store = VectorStore(backend, embeddings, dimensions=dimensions)
        acquisition = DataAcquisitionEngine(store, embeddings, llm, wikipedia=wikipedia, nominatim=nominatim)
        quality = QualityAssuranceSystem(store, feedback, threshold=config.quality_threshold)
        pipeline = PipelineOrchestrator(acquisition, quality, store, config=pipeline_config)
        search_engine = IntelligentSearchEngine(store, llm)
        knowledge_base = TravelKnowledgeBase(store, embeddings, llm, acquisition, quality, pipeline, search_engine)

        logger.info(
            f"Services built: backend={type(backend).__name__} "
            f"embeddings={'on' if embeddings.is_configured else 'demo'} "
            f"llm={'on' if llm.is_configured else 'demo'}"
        )
        return cls(embeddings, llm, store, acquisition, quality, pipeline, search_engine, knowledge_base)

    async def close(self) -> None:
        self.pipeline.stop_schedule()
        await self.acquisition.close()
        await self.embeddings.close()
