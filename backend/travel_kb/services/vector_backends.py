"""Storage backends for content records.

Both backends honour the same contract: similarity is ``1 - cosine distance``,
results are ordered by similarity desc, then ``updated_at`` desc, then id, and
metadata filters use the same small language:

    {"country": "India"}                 equality
    {"cost_level": ["budget", "moderate"]}  membership
    {"country": {"ne": "India"}}         inequality (missing key matches)
    {"safety_rating": {"gte": 6}}        numeric lower bound
    {"safety_rating": {"lte": 9}}        numeric upper bound
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import Float, Text, case, delete, func, not_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from travel_kb.errors import PersistenceError
from travel_kb.models.knowledge import VectorContent
from travel_kb.schemas.knowledge import ContentRecord, ContentStats, SimilarityResult
from travel_kb.services.embedding_service import cosine_similarity

logger = logging.getLogger(__name__)

# Similarity of a text match on every query term
TEXT_MATCH_SIMILARITY = 0.5


def sort_key(result: SimilarityResult):
    return (-result.similarity, -result.record.updated_at.timestamp(), result.record.id)


def text_similarity(matched: int, total: int) -> float:
    return TEXT_MATCH_SIMILARITY * matched / total


def _matches_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict):
        if "ne" in condition and value == condition["ne"]:
            return False
        if "gte" in condition:
            if not isinstance(value, (int, float)) or value < condition["gte"]:
                return False
        if "lte" in condition:
            if not isinstance(value, (int, float)) or value > condition["lte"]:
                return False
        return True
    if isinstance(condition, (list, tuple, set)):
        return value in condition
    return value == condition


def matches_filters(metadata: dict, filters: dict | None) -> bool:
    if not filters:
        return True
    return all(_matches_condition(metadata.get(key), cond) for key, cond in filters.items())


class VectorBackend(Protocol):
    async def upsert(self, record: ContentRecord) -> ContentRecord: ...
    async def get(self, record_id: str) -> ContentRecord | None: ...
    async def get_by_content_id(self, content_id: str, content_type: str) -> ContentRecord | None: ...
    async def delete(self, record_id: str) -> bool: ...
    async def vector_search(
        self,
        embedding: list[float],
        content_types: list[str] | None,
        metadata: dict | None,
        limit: int,
        threshold: float,
    ) -> list[SimilarityResult]: ...
    async def text_search(
        self, terms: list[str], content_types: list[str] | None, metadata: dict | None, limit: int
    ) -> list[SimilarityResult]: ...
    async def list_records(
        self,
        content_types: list[str] | None = None,
        updated_before: datetime | None = None,
        missing_embedding: bool = False,
        limit: int | None = None,
    ) -> list[ContentRecord]: ...
    async def stats(self, recent_since: datetime) -> ContentStats: ...


class InMemoryVectorBackend:
    """Dict-backed store for demo mode and tests."""

    def __init__(self):
        self._records: dict[str, ContentRecord] = {}

    async def upsert(self, record: ContentRecord) -> ContentRecord:
        record = record.model_copy(deep=True)
        if not record.id:
            existing = await self.get_by_content_id(record.content_id, record.content_type)
            record.id = existing.id if existing else str(uuid.uuid4())
        self._records[record.id] = record
        return record.model_copy(deep=True)

    async def get(self, record_id: str) -> ContentRecord | None:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    async def get_by_content_id(self, content_id: str, content_type: str) -> ContentRecord | None:
        for record in self._records.values():
            if record.content_id == content_id and record.content_type == content_type:
                return record.model_copy(deep=True)
        return None

    async def delete(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def _filtered(self, content_types, metadata):
        for record in self._records.values():
            if content_types and record.content_type not in content_types:
                continue
            if not matches_filters(record.metadata, metadata):
                continue
            yield record

    async def vector_search(self, embedding, content_types, metadata, limit, threshold):
        results = []
        for record in self._filtered(content_types, metadata):
            if record.embedding is None or len(record.embedding) != len(embedding):
                continue
            similarity = cosine_similarity(embedding, record.embedding)
            if similarity > threshold:
                results.append(SimilarityResult(record=record.model_copy(deep=True), similarity=similarity))
        results.sort(key=sort_key)
        return results[:limit]

    async def text_search(self, terms, content_types, metadata, limit):
        results = []
        for record in self._filtered(content_types, metadata):
            haystack = f"{record.title}\n{record.content}".lower()
            matched = sum(1 for term in terms if term in haystack)
            if matched:
                results.append(SimilarityResult(
                    record=record.model_copy(deep=True),
                    similarity=text_similarity(matched, len(terms)),
                    match_type="text",
                ))
        results.sort(key=sort_key)
        return results[:limit]

    async def list_records(self, content_types=None, updated_before=None, missing_embedding=False, limit=None):
        records = [
            r for r in self._filtered(content_types, None)
            if (updated_before is None or r.updated_at < updated_before)
            and (not missing_embedding or r.embedding is None)
        ]
        records.sort(key=lambda r: (r.updated_at, r.id))
        if limit is not None:
            records = records[:limit]
        return [r.model_copy(deep=True) for r in records]

    async def stats(self, recent_since: datetime) -> ContentStats:
        types: dict[str, int] = {}
        recent = 0
        for record in self._records.values():
            types[record.content_type] = types.get(record.content_type, 0) + 1
            if record.created_at >= recent_since:
                recent += 1
        return ContentStats(total_content=len(self._records), content_types=types, recent_content=recent)


def _to_record(row: VectorContent) -> ContentRecord:
    return ContentRecord(
        id=str(row.id),
        content_id=row.content_id,
        content_type=row.content_type,
        title=row.title,
        content=row.content,
        metadata=row.meta or {},
        embedding=list(row.embedding) if row.embedding is not None else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _filter_clauses(content_types: list[str] | None, metadata: dict | None) -> list:
    clauses = []
    if content_types:
        clauses.append(VectorContent.content_type.in_(content_types))
    for key, cond in (metadata or {}).items():
        if isinstance(cond, dict):
            if "ne" in cond:
                clauses.append(not_(VectorContent.meta.contains({key: cond["ne"]})))
            if "gte" in cond:
                clauses.append(VectorContent.meta[key].astext.cast(Float) >= cond["gte"])
            if "lte" in cond:
                clauses.append(VectorContent.meta[key].astext.cast(Float) <= cond["lte"])
        elif isinstance(cond, (list, tuple, set)):
            clauses.append(or_(*[VectorContent.meta.contains({key: v}) for v in cond]))
        else:
            clauses.append(VectorContent.meta.contains({key: cond}))
    return clauses


def _vector_search_statement(embedding, content_types, metadata, limit, threshold):
    distance = VectorContent.embedding.cosine_distance(embedding)
    return (
        select(VectorContent, (1 - distance).label("similarity"))
        .where(VectorContent.embedding.is_not(None), distance < 1 - threshold, *_filter_clauses(content_types, metadata))
        .order_by(distance, VectorContent.updated_at.desc(), VectorContent.id)
        .limit(limit)
    )


def _text_search_statement(terms, content_types, metadata, limit):
    # Terms are already lowercase; autoescape keeps "_" and "%" literal
    title = func.lower(VectorContent.title, type_=Text)
    content = func.lower(VectorContent.content, type_=Text)
    matched = sum(
        case((or_(title.contains(term, autoescape=True), content.contains(term, autoescape=True)), 1), else_=0)
        for term in terms
    )
    return (
        select(VectorContent, matched.label("matched"))
        .where(matched > 0, *_filter_clauses(content_types, metadata))
        .order_by(matched.desc(), VectorContent.updated_at.desc(), VectorContent.id)
        .limit(limit)
    )


class PgVectorBackend:
    """PostgreSQL + pgvector storage via SQLAlchemy async sessions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert(self, record: ContentRecord) -> ContentRecord:
        try:
            async with self._session_factory() as db:
                row = None
                if record.id:
                    row = await db.get(VectorContent, uuid.UUID(record.id))
                if row is None:
                    result = await db.execute(
                        select(VectorContent).where(
                            VectorContent.content_id == record.content_id,
                            VectorContent.content_type == record.content_type,
                        )
                    )
                    row = result.scalar_one_or_none()
                if row is None:
                    row = VectorContent(
                        id=uuid.UUID(record.id) if record.id else uuid.uuid4(),
                        content_id=record.content_id,
                        content_type=record.content_type,
                        created_at=record.created_at,
                    )
                    db.add(row)
                row.title = record.title
                row.content = record.content
                row.meta = record.metadata
                row.embedding = record.embedding
                row.updated_at = record.updated_at
                await db.commit()
                await db.refresh(row)
                return _to_record(row)
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to store content", cause=e, operation="upsert") from e

    async def get(self, record_id: str) -> ContentRecord | None:
        try:
            key = uuid.UUID(record_id)
        except ValueError:
            return None
        try:
            async with self._session_factory() as db:
                row = await db.get(VectorContent, key)
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load content", cause=e, operation="get") from e

    async def get_by_content_id(self, content_id: str, content_type: str) -> ContentRecord | None:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(VectorContent).where(
                        VectorContent.content_id == content_id,
                        VectorContent.content_type == content_type,
                    )
                )
                row = result.scalar_one_or_none()
                return _to_record(row) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load content", cause=e, operation="get_by_content_id") from e

    async def delete(self, record_id: str) -> bool:
        try:
            key = uuid.UUID(record_id)
        except ValueError:
            return False
        try:
            async with self._session_factory() as db:
                result = await db.execute(delete(VectorContent).where(VectorContent.id == key))
                await db.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to delete content", cause=e, operation="delete") from e

    async def vector_search(self, embedding, content_types, metadata, limit, threshold):
        stmt = _vector_search_statement(embedding, content_types, metadata, limit, threshold)
        async with self._session_factory() as db:
            result = await db.execute(stmt)
            return [
                SimilarityResult(record=_to_record(row), similarity=float(similarity))
                for row, similarity in result.all()
            ]

    async def text_search(self, terms, content_types, metadata, limit):
        async with self._session_factory() as db:
            result = await db.execute(_text_search_statement(terms, content_types, metadata, limit))
            return [
                SimilarityResult(
                    record=_to_record(row), similarity=text_similarity(matched, len(terms)), match_type="text"
                )
                for row, matched in result.all()
            ]

    async def list_records(self, content_types=None, updated_before=None, missing_embedding=False, limit=None):
        stmt = select(VectorContent).where(*_filter_clauses(content_types, None))
        if updated_before is not None:
            stmt = stmt.where(VectorContent.updated_at < updated_before)
        if missing_embedding:
            stmt = stmt.where(VectorContent.embedding.is_(None))
        stmt = stmt.order_by(VectorContent.updated_at, VectorContent.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                return [_to_record(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to list content", cause=e, operation="list_records") from e

    async def stats(self, recent_since: datetime) -> ContentStats:
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(VectorContent.content_type, func.count()).group_by(VectorContent.content_type)
                )
                types = {content_type: count for content_type, count in result.all()}
                recent = await db.scalar(
                    select(func.count()).select_from(VectorContent).where(VectorContent.created_at >= recent_since)
                )
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to compute content stats", cause=e, operation="stats") from e
        return ContentStats(total_content=sum(types.values()), content_types=types, recent_content=recent or 0)
