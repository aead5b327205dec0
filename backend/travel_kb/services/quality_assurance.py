"""Quality scoring, reporting and user feedback for destination records."""

import logging
import statistics
from collections import defaultdict
from datetime import datetime, timedelta

from travel_kb.config import settings
from travel_kb.schemas.destination import (
    EnhancedDestination,
    FeedbackCategory,
    UserRating,
    age_in_days,
    freshness_score,
    utcnow,
)
from travel_kb.schemas.knowledge import (
    CategoryBreakdown,
    FeedbackSummary,
    FreshnessBuckets,
    QualityAverages,
    QualityReport,
    UserSatisfaction,
    ValidationResult,
)
from travel_kb.services.data_acquisition import ENHANCED_CITY_TYPE, destination_from_record
from travel_kb.services.feedback_store import FeedbackStore
from travel_kb.services.vector_store import VectorStore

logger = logging.getLogger(__name__)

# Score deductions
MISSING_NAME_PENALTY = 0.2
MISSING_COUNTRY_PENALTY = 0.2
INVALID_COORDINATES_PENALTY = 0.1
MISSING_LAWS_PENALTY = 0.3
MISSING_PENALTIES_PENALTY = 0.1
MISSING_ETIQUETTE_PENALTY = 0.1
MAX_AGE_PENALTY = 0.2
LOW_QUALITY_PENALTY = 0.2

STALE_AFTER_DAYS = 30
LOW_QUALITY_SCORE = 0.5
SATISFACTION_WINDOW_DAYS = 30
MAX_RECENT_COMMENTS = 10


class QualityAssuranceSystem:
    def __init__(self, store: VectorStore, feedback: FeedbackStore, threshold: float | None = None):
        self.store = store
        self.feedback = feedback
        self.threshold = settings.quality_threshold if threshold is None else threshold
        self._pending_audits: list[str] = []

    # ---------- Scoring ----------

    def score(self, destination: EnhancedDestination, now: datetime | None = None) -> ValidationResult:
        now = now or utcnow()
        issues: list[str] = []
        score = 1.0

        if not destination.name.strip():
            issues.append("City name is missing or empty")
            score -= MISSING_NAME_PENALTY

        if not destination.country.strip() or destination.country == "Unknown":
            issues.append("Country is missing or empty")
            score -= MISSING_COUNTRY_PENALTY

        if not destination.coordinates.is_valid():
            issues.append("Invalid or missing coordinates")
            score -= INVALID_COORDINATES_PENALTY

        if destination.travel_laws.is_empty():
            issues.append("Travel laws information is missing")
            score -= MISSING_LAWS_PENALTY
        elif not destination.travel_laws.penalties.common_violations:
            issues.append("Penalty information is incomplete")
            score -= MISSING_PENALTIES_PENALTY

        if not destination.cultural_norms.etiquette:
            issues.append("Cultural etiquette information is missing")
            score -= MISSING_ETIQUETTE_PENALTY

        age = age_in_days(destination.metadata.last_updated, now)
        if age > STALE_AFTER_DAYS:
            issues.append(f"Data is {round(age)} days old")
            score -= min(age / 100, MAX_AGE_PENALTY)

        if destination.metadata.data_quality.overall_score < LOW_QUALITY_SCORE:
            issues.append("Overall data quality score is below acceptable threshold")
            score -= LOW_QUALITY_PENALTY

        return ValidationResult(is_valid=not issues, issues=issues, score=max(0.0, score))

    def passes_gate(self, result: ValidationResult) -> bool:
        return result.score >= self.threshold

    # ---------- Reporting ----------

    async def generate_report(self, now: datetime | None = None) -> QualityReport:
        now = now or utcnow()
        try:
            records = await self.store.list_records(content_types=[ENHANCED_CITY_TYPE])
            ratings = await self.feedback.list_ratings(since=now - timedelta(days=SATISFACTION_WINDOW_DAYS))
        except Exception as e:
            logger.error(f"Error generating quality report: {e}")
            return self._default_report()

        freshness = FreshnessBuckets()
        for record in records:
            age = age_in_days(record.updated_at, now)
            if age < 7:
                freshness.recent += 1
            elif age < 30:
                freshness.current += 1
            else:
                freshness.stale += 1

        satisfaction = UserSatisfaction()
        if ratings:
            distribution: dict[int, int] = defaultdict(int)
            for r in ratings:
                distribution[r.rating] += 1
            satisfaction = UserSatisfaction(
                average_rating=statistics.mean(r.rating for r in ratings),
                total_ratings=len(ratings),
                distribution=dict(distribution),
            )

        averages = self._average_metrics(records, now)
        report = QualityReport(
            total_destinations=len(records),
            quality_metrics=averages,
            data_freshness=freshness,
            user_satisfaction=satisfaction,
            recommendations=self._recommendations(freshness, satisfaction, averages),
            critical_issues=self._critical_issues(freshness, satisfaction, averages, bool(records)),
            pending_audits=list(self._pending_audits),
            generated_at=now,
        )
        logger.info(
            f"Quality report: {report.total_destinations} destinations, "
            f"overall {averages.overall_score:.2f}, {len(report.critical_issues)} critical issues"
        )
        return report

    def _average_metrics(self, records, now: datetime) -> QualityAverages:
        dims = defaultdict(list)
        for record in records:
            destination = destination_from_record(record)
            if destination is None:
                continue
            q = destination.metadata.data_quality
            dims["freshness"].append(freshness_score(record.updated_at, now))
            dims["source_reliability"].append(q.source_reliability)
            dims["user_validation"].append(q.user_validation)
            dims["expert_review"].append(q.expert_review)
            dims["cross_reference_accuracy"].append(q.cross_reference_accuracy)

        if not dims:
            return QualityAverages()

        means = {name: statistics.mean(values) for name, values in dims.items()}
        return QualityAverages(overall_score=statistics.mean(means.values()), **means)

    def _recommendations(self, freshness: FreshnessBuckets, satisfaction: UserSatisfaction,
                         metrics: QualityAverages) -> list[str]:
        recs = []
        if freshness.stale > freshness.recent:
            recs.append("Increase frequency of data updates - significant portion of data is stale")
        if satisfaction.total_ratings and satisfaction.average_rating < 4.0:
            recs.append("Focus on improving user satisfaction - ratings below acceptable threshold")
        if metrics.source_reliability < 0.7:
            recs.append("Improve source reliability by adding more authoritative data sources")
        if metrics.expert_review < 0.3:
            recs.append("Implement expert review process to validate critical information")
        if metrics.user_validation < 0.5:
            recs.append("Encourage more user feedback and validation of information")
        if not recs:
            recs.append("Quality metrics are within acceptable ranges - continue monitoring")
        return recs

    def _critical_issues(self, freshness: FreshnessBuckets, satisfaction: UserSatisfaction,
                         metrics: QualityAverages, has_records: bool) -> list[str]:
        issues = []
        if has_records and metrics.overall_score < 0.5:
            issues.append("CRITICAL: Overall quality score below acceptable threshold")
        if satisfaction.total_ratings and satisfaction.average_rating < 3.0:
            issues.append("CRITICAL: User satisfaction critically low")
        if freshness.stale > (freshness.recent + freshness.current) * 2:
            issues.append("CRITICAL: Majority of data is stale and needs immediate update")
        if has_records and metrics.source_reliability < 0.5:
            issues.append("HIGH: Source reliability critically low")
        return issues

    def _default_report(self) -> QualityReport:
        return QualityReport(
            quality_metrics=QualityAverages(
                overall_score=0.5, source_reliability=0.5, cross_reference_accuracy=0.5
            ),
            recommendations=["System unable to generate recommendations at this time"],
            critical_issues=["Quality assessment system temporarily unavailable"],
            pending_audits=list(self._pending_audits),
        )

    # ---------- Feedback ----------

    async def submit_feedback(
        self,
        destination_id: str,
        rating: int,
        category: FeedbackCategory,
        comment: str | None = None,
        user_id: str | None = None,
    ) -> UserRating:
        entry = UserRating(
            destination_id=destination_id,
            user_id=user_id or "anonymous",
            rating=rating,
            category=category,
            comment=comment,
        )
        await self.feedback.add(entry)
        logger.info(f"User feedback submitted for {destination_id}: {rating}/5 ({category})")
        return entry

    async def feedback_summary(self, destination_id: str) -> FeedbackSummary:
        ratings = await self.feedback.list_ratings(destination_id=destination_id)
        if not ratings:
            return FeedbackSummary(destination_id=destination_id)

        by_category: dict[str, list[int]] = defaultdict(list)
        for r in ratings:
            by_category[r.category].append(r.rating)

        return FeedbackSummary(
            destination_id=destination_id,
            average_rating=statistics.mean(r.rating for r in ratings),
            total_ratings=len(ratings),
            category_breakdown={
                cat: CategoryBreakdown(average=statistics.mean(values), count=len(values))
                for cat, values in by_category.items()
            },
            recent_comments=[r.comment for r in ratings if r.comment and r.comment.strip()][:MAX_RECENT_COMMENTS],
        )

    async def user_validation_for(self, destination_id: str) -> float:
        ratings = await self.feedback.list_ratings(destination_id=destination_id)
        if not ratings:
            return 0.0
        return statistics.mean(r.rating for r in ratings) / 5

    def schedule_audit(self, destination_id: str) -> None:
        if destination_id not in self._pending_audits:
            self._pending_audits.append(destination_id)
            logger.info(f"Scheduled quality audit for {destination_id}")
