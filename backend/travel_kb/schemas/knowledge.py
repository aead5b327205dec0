from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from travel_kb.schemas.destination import FeedbackCategory, utcnow

ServiceStatus = Literal["success", "partial", "demo", "error"]
MatchType = Literal["vector", "text"]


# ---------- Vector store ----------


class ContentRecord(BaseModel):
    """One stored knowledge unit. ``embedding`` is None until embedded."""

    id: str = ""
    content_id: str
    content_type: str
    title: str
    content: str
    metadata: dict[str, Any] = {}
    embedding: list[float] | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ContentUpdate(BaseModel):
    title: str | None = None
    content: str | None = None
    metadata: dict[str, Any] | None = None


class SimilarityResult(BaseModel):
    record: ContentRecord
    similarity: float
    match_type: MatchType = "vector"


class ContentStats(BaseModel):
    total_content: int = 0
    content_types: dict[str, int] = {}
    recent_content: int = 0


class VectorSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    content_types: list[str] | None = None
    metadata: dict[str, Any] | None = None
    limit: int = Field(default=10, ge=1, le=100)
    threshold: float = Field(default=0.5, ge=0, le=1)


# ---------- Pipeline ----------


class PipelineRunStats(BaseModel):
    is_running: bool = False
    current_phase: str = "idle"
    last_run: datetime | None = None
    next_run: datetime | None = None
    processed: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


# ---------- Quality ----------


class ValidationResult(BaseModel):
    is_valid: bool
    issues: list[str] = []
    score: float


class FreshnessBuckets(BaseModel):
    recent: int = 0
    current: int = 0
    stale: int = 0


class UserSatisfaction(BaseModel):
    average_rating: float = 0.0
    total_ratings: int = 0
    distribution: dict[int, int] = {}


class QualityAverages(BaseModel):
    overall_score: float = 0.0
    freshness: float = 0.0
    source_reliability: float = 0.0
    user_validation: float = 0.0
    expert_review: float = 0.0
    cross_reference_accuracy: float = 0.0


class QualityReport(BaseModel):
    total_destinations: int = 0
    quality_metrics: QualityAverages = Field(default_factory=QualityAverages)
    data_freshness: FreshnessBuckets = Field(default_factory=FreshnessBuckets)
    user_satisfaction: UserSatisfaction = Field(default_factory=UserSatisfaction)
    recommendations: list[str] = []
    critical_issues: list[str] = []
    pending_audits: list[str] = []
    generated_at: datetime = Field(default_factory=utcnow)


class CategoryBreakdown(BaseModel):
    average: float = 0.0
    count: int = 0


class FeedbackSummary(BaseModel):
    destination_id: str
    average_rating: float = 0.0
    total_ratings: int = 0
    category_breakdown: dict[str, CategoryBreakdown] = {}
    recent_comments: list[str] = []


# ---------- Requests ----------


class FeedbackRequest(BaseModel):
    destination_id: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    category: FeedbackCategory
    comment: str | None = None
    user_id: str | None = None


class AddDestinationRequest(BaseModel):
    name: str = Field(min_length=1)
    country: str | None = None


class SystemStatus(BaseModel):
    total_records: int = 0
    data_quality: float = 0.0
    pipeline_status: PipelineRunStats = Field(default_factory=PipelineRunStats)
    last_updated: datetime | None = None
    embeddings: dict[str, Any] = {}
    ai: dict[str, Any] = {}
