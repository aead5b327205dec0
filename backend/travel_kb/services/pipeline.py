"""Pipeline orchestrator: UPDATE -> EXPAND -> VALIDATE -> OPTIMIZE on a schedule."""

import asyncio
import logging
from dataclasses import dataclass, field, fields, replace
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from travel_kb.config import settings
from travel_kb.schemas.destination import EnhancedDestination, QualityMetrics, utcnow
from travel_kb.schemas.knowledge import PipelineRunStats
from travel_kb.services.data_acquisition import (
    ENHANCED_CITY_TYPE,
    DataAcquisitionEngine,
    destination_from_record,
    slugify,
)
from travel_kb.services.quality_assurance import QualityAssuranceSystem
from travel_kb.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

JOB_ID = "knowledge_pipeline"
MAX_REFRESHED_RELIABILITY = 0.95
OPTIMIZE_BATCH = 50


@dataclass
class PipelineConfig:
    update_interval_hours: int = 24
    batch_size: int = 10
    quality_threshold: float = 0.6
    enable_auto_expansion: bool = True
    enable_quality_validation: bool = True
    max_new_destinations: int = 3
    stale_after_hours: int = 24
    item_delay_seconds: float = 1.0
    expansion_delay_seconds: float = 2.0
    priority_destinations: list[tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_settings(cls) -> "PipelineConfig":
        return cls(
            update_interval_hours=settings.update_interval_hours,
            batch_size=settings.pipeline_batch_size,
            quality_threshold=settings.quality_threshold,
            enable_auto_expansion=settings.enable_auto_expansion,
            enable_quality_validation=settings.enable_quality_validation,
            max_new_destinations=settings.max_new_destinations,
            stale_after_hours=settings.stale_after_hours,
            item_delay_seconds=settings.item_delay_seconds,
            expansion_delay_seconds=settings.expansion_delay_seconds,
            priority_destinations=settings.priority_destination_list,
        )


def refreshed_quality(previous: QualityMetrics, user_validation: float) -> QualityMetrics:
    return QualityMetrics(
        freshness=1.0,
        source_reliability=min(previous.source_reliability + 0.05, MAX_REFRESHED_RELIABILITY),
        user_validation=user_validation,
        expert_review=previous.expert_review,
        cross_reference_accuracy=previous.cross_reference_accuracy,
    )


class PipelineOrchestrator:
    """Owns the only process-wide mutable state: the running flag and run stats."""

    def __init__(
        self,
        acquisition: DataAcquisitionEngine,
        quality: QualityAssuranceSystem,
        store: VectorStore,
        config: PipelineConfig | None = None,
    ):
        self.acquisition = acquisition
        self.quality = quality
        self.store = store
        self.config = config or PipelineConfig.from_settings()
        self._stats = PipelineRunStats()
        self._scheduler: AsyncIOScheduler | None = None
        self._owns_scheduler = False

    # ---------- Status / config ----------

    def status(self) -> PipelineRunStats:
        stats = self._stats.model_copy()
        if stats.last_run is not None:
            stats.next_run = stats.last_run + timedelta(hours=self.config.update_interval_hours)
        return stats

    def update_config(self, **changes) -> PipelineConfig:
        known = {f.name for f in fields(PipelineConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown pipeline settings: {', '.join(sorted(unknown))}")
        self.config = replace(self.config, **changes)
        logger.info(f"Pipeline configuration updated: {changes}")
        if self._scheduler is not None and "update_interval_hours" in changes:
            self._scheduler.reschedule_job(JOB_ID, trigger=IntervalTrigger(hours=self.config.update_interval_hours))
        return self.config

    # ---------- Run ----------

    async def run(self) -> PipelineRunStats:
        if self._stats.is_running:
            logger.info("Pipeline already running, skipping")
            return self.status()

        self._stats = PipelineRunStats(is_running=True, last_run=self._stats.last_run)
        logger.info("Starting knowledge pipeline run")
        try:
            await self._phase("update", self._update_existing)
            if self.config.enable_auto_expansion:
                await self._phase("expand", self._expand)
            if self.config.enable_quality_validation:
                await self._phase("validate", self._validate)
            await self._phase("optimize", self._optimize)
            self._stats.last_run = utcnow()
            logger.info(
                f"Pipeline completed: processed={self._stats.processed} added={self._stats.added} "
                f"updated={self._stats.updated} skipped={self._stats.skipped} errors={self._stats.errors}"
            )
        finally:
            self._stats.is_running = False
            self._stats.current_phase = "idle"
        return self.status()

    async def _phase(self, name: str, step) -> None:
        self._stats.current_phase = name
        try:
            await step()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Pipeline phase {name} failed: {e}")
            self._stats.errors += 1

    async def refresh(self, destination: EnhancedDestination) -> EnhancedDestination:
        """Re-acquire one destination, keeping its id, and store it."""
        fresh = await self.acquisition.acquire(destination.name, destination.country)
        fresh.id = destination.id
        fresh.metadata.data_quality = refreshed_quality(
            destination.metadata.data_quality,
            await self.quality.user_validation_for(destination.id),
        )
        fresh.metadata.user_feedback = destination.metadata.user_feedback
        fresh.metadata.expert_reviewed = destination.metadata.expert_reviewed
        await self.acquisition.store_in_knowledge_base(fresh)
        return fresh

    async def _update_existing(self) -> None:
        cutoff = utcnow() - timedelta(hours=self.config.stale_after_hours)
        records = await self.store.list_records(
            content_types=[ENHANCED_CITY_TYPE], updated_before=cutoff, limit=self.config.batch_size
        )
        logger.info(f"Updating {len(records)} stale destinations")

        for record in records:
            try:
                destination = destination_from_record(record)
                if destination is None:
                    raise ValueError(f"record {record.id} is unreadable")
                await self.refresh(destination)
                self._stats.updated += 1
                logger.info(f"Updated {destination.display_name}")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to update {record.title}: {e}")
                self._stats.errors += 1
            self._stats.processed += 1
            await asyncio.sleep(self.config.item_delay_seconds)

    async def _exists(self, city: str, country: str) -> bool:
        if await self.store.get_by_content_id(slugify(city, country), ENHANCED_CITY_TYPE):
            return True
        prefix = f"{city.lower()},"
        for record in await self.store.list_records(content_types=[ENHANCED_CITY_TYPE]):
            if record.title.lower().startswith(prefix):
                return True
        return False

    async def _expand(self) -> None:
        for city, country in self.config.priority_destinations[: self.config.max_new_destinations]:
            try:
                if await self._exists(city, country):
                    logger.info(f"Skipping {city} - already exists")
                    continue

                destination = await self.acquisition.acquire(city, country)
                validation = self.quality.score(destination)
                if self.quality.passes_gate(validation):
                    await self.acquisition.store_in_knowledge_base(destination)
                    self._stats.added += 1
                    logger.info(f"Added {destination.display_name}")
                else:
                    logger.warning(
                        f"Skipped {city} - quality score {validation.score:.2f} below "
                        f"threshold {self.quality.threshold}: {'; '.join(validation.issues)}"
                    )
                    self._stats.skipped += 1
                    self.quality.schedule_audit(destination.id)
                await asyncio.sleep(self.config.expansion_delay_seconds)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Failed to add {city}: {e}")
                self._stats.errors += 1
            self._stats.processed += 1

    async def _validate(self) -> None:
        report = await self.quality.generate_report()
        for issue in report.critical_issues:
            logger.warning(f"Quality issue: {issue}")
        if report.quality_metrics.overall_score < self.config.quality_threshold:
            logger.warning(
                f"Overall quality score {report.quality_metrics.overall_score:.2f} "
                f"below threshold {self.config.quality_threshold}"
            )
        for rec in report.recommendations:
            logger.info(f"Quality recommendation: {rec}")

    async def _optimize(self) -> None:
        filled = await self.store.backfill_embeddings(limit=OPTIMIZE_BATCH)
        logger.info(f"Optimization completed ({filled} embeddings backfilled)")

    # ---------- Scheduling ----------

    def start_schedule(self, scheduler: AsyncIOScheduler | None = None) -> None:
        if self._scheduler is not None:
            return
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or AsyncIOScheduler()
        self._scheduler.add_job(
            self.run,
            IntervalTrigger(hours=self.config.update_interval_hours),
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if self._owns_scheduler:
            self._scheduler.start()
        logger.info(f"Pipeline scheduled every {self.config.update_interval_hours} hours")

    def stop_schedule(self) -> None:
        if self._scheduler is None:
            return
        if self._owns_scheduler:
            self._scheduler.shutdown(wait=False)
        else:
            self._scheduler.remove_job(JOB_ID)
        self._scheduler = None
        logger.info("Pipeline schedule stopped")
