"""TravelKnowledgeBase: the query and mutation surface over the pipeline services."""

import logging

from travel_kb.errors import DestinationNotFoundError
from travel_kb.schemas.destination import EnhancedDestination, FeedbackCategory, UserRating
from travel_kb.schemas.knowledge import FeedbackSummary, PipelineRunStats, QualityReport, SystemStatus
from travel_kb.schemas.search import SearchRequest, SearchResponse
from travel_kb.services.data_acquisition import ENHANCED_CITY_TYPE, DataAcquisitionEngine, destination_from_record
from travel_kb.services.embedding_service import EmbeddingService
from travel_kb.services.intelligent_search import IntelligentSearchEngine
from travel_kb.services.llm_client import LLMChain
from travel_kb.services.pipeline import PipelineOrchestrator
from travel_kb.services.quality_assurance import QualityAssuranceSystem
from travel_kb.services.vector_store import VectorStore

logger = logging.getLogger(__name__)


class TravelKnowledgeBase:
    def __init__(
        self,
        store: VectorStore,
        embeddings: EmbeddingService,
        llm: LLMChain,
        acquisition: DataAcquisitionEngine,
        quality: QualityAssuranceSystem,
        pipeline: PipelineOrchestrator,
        search_engine: IntelligentSearchEngine,
    ):
        self.store = store
        self.embeddings = embeddings
        self.llm = llm
        self.acquisition = acquisition
        self.quality = quality
        self.pipeline = pipeline
        self.search_engine = search_engine

    async def search(self, request: SearchRequest) -> SearchResponse:
        return await self.search_engine.search(request)

    async def add_destination(self, name: str, country: str | None = None) -> EnhancedDestination:
        """Acquire, score and store a destination.

        A record below the quality gate is still stored, flagged for audit.
        """
        logger.info(f"Adding destination: {name}{', ' + country if country else ''}")
        destination = await self.acquisition.acquire(name, country)

        validation = self.quality.score(destination)
        if not self.quality.passes_gate(validation):
            logger.warning(
                f"{destination.display_name} quality {validation.score:.2f} below threshold: "
                f"{'; '.join(validation.issues)}"
            )
            self.quality.schedule_audit(destination.id)

        await self.acquisition.store_in_knowledge_base(destination)
        return destination

    async def get_destination(self, destination_id: str) -> EnhancedDestination | None:
        record = await self.store.get_by_content_id(destination_id, ENHANCED_CITY_TYPE)
        if record is None:
            record = await self.store.get(destination_id)
        if record is None:
            return None
        return destination_from_record(record)

    async def update_destination(self, destination_id: str) -> EnhancedDestination:
        existing = await self.get_destination(destination_id)
        if existing is None:
            raise DestinationNotFoundError(
                f"Destination {destination_id} not found", destination_id=destination_id
            )
        logger.info(f"Refreshing destination: {existing.display_name}")
        return await self.pipeline.refresh(existing)

    async def get_system_status(self) -> SystemStatus:
        stats = await self.store.get_stats()
        report = await self.quality.generate_report()
        pipeline_status = self.pipeline.status()
        return SystemStatus(
            total_records=stats.total_content,
            data_quality=report.quality_metrics.overall_score,
            pipeline_status=pipeline_status,
            last_updated=pipeline_status.last_run,
            embeddings=self.embeddings.status(),
            ai=self.llm.status(),
        )

    async def run_manual_update(self) -> PipelineRunStats:
        return await self.pipeline.run()

    async def submit_feedback(
        self,
        destination_id: str,
        rating: int,
        category: FeedbackCategory,
        comment: str | None = None,
        user_id: str | None = None,
    ) -> UserRating:
        return await self.quality.submit_feedback(destination_id, rating, category, comment, user_id)

    async def feedback_summary(self, destination_id: str) -> FeedbackSummary:
        return await self.quality.feedback_summary(destination_id)

    async def quality_report(self) -> QualityReport:
        return await self.quality.generate_report()
