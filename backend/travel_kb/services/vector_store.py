"""Vector store: embeds, upserts and retrieves content records.

Retrieval degrades to lexical matching whenever vectors are unavailable, so
``search_similar`` always returns a list.
"""

import asyncio
import logging
import re
import uuid
import weakref
from datetime import datetime, timedelta

from travel_kb.errors import EmbeddingError, RecordNotFoundError
from travel_kb.schemas.destination import utcnow
from travel_kb.schemas.knowledge import (
    ContentRecord,
    ContentStats,
    ContentUpdate,
    SimilarityResult,
)
from travel_kb.services.embedding_service import EmbeddingService
from travel_kb.services.vector_backends import VectorBackend

logger = logging.getLogger(__name__)

BATCH_CHUNK_SIZE = 3
BATCH_CHUNK_DELAY_SECONDS = 0.2
MIN_TERM_LENGTH = 3

_TERM_RE = re.compile(r"\w+", re.UNICODE)


def query_terms(query: str) -> list[str]:
    seen: list[str] = []
    for term in _TERM_RE.findall(query.lower()):
        if len(term) >= MIN_TERM_LENGTH and term not in seen:
            seen.append(term)
    return seen


class VectorStore:
    def __init__(
        self,
        backend: VectorBackend,
        embeddings: EmbeddingService,
        dimensions: int | None = None,
        chunk_delay: float = BATCH_CHUNK_DELAY_SECONDS,
    ):
        self.backend = backend
        self.embeddings = embeddings
        # None locks to the first dimension seen
        self.dimensions = dimensions
        self.chunk_delay = chunk_delay
        # One writer per content_id + content_type; entries vanish once no store holds them
        self._write_locks = weakref.WeakValueDictionary()

    @property
    def vectors_enabled(self) -> bool:
        return self.embeddings.is_configured

    def _accept_dimension(self, embedding: list[float] | None) -> list[float] | None:
        if embedding is None:
            return None
        if self.dimensions is None:
            self.dimensions = len(embedding)
        if len(embedding) != self.dimensions:
            logger.error(f"Rejected embedding with {len(embedding)} dims (store uses {self.dimensions})")
            return None
        return embedding

    async def _embed_document(self, title: str, content: str) -> list[float] | None:
        try:
            embedding = await self.embeddings.embed(f"{title}\n\n{content}", "retrieval_document")
        except (ValueError, EmbeddingError) as e:
            logger.warning(f"Embedding failed for '{title}', storing without vector: {e}")
            return None
        return self._accept_dimension(embedding)

    async def store(self, record: ContentRecord) -> str:
        """Upsert a record on content_id + content_type and return its id.

        Raises:
            PersistenceError if the backend rejects the write.
        """
        key = (record.content_id, record.content_type)
        lock = self._write_locks.get(key)
        if lock is None:
            lock = self._write_locks[key] = asyncio.Lock()
        async with lock:
            return await self._store(record)

    async def _store(self, record: ContentRecord) -> str:
        existing = await self.backend.get_by_content_id(record.content_id, record.content_type)
        text_unchanged = existing is not None and (
            existing.title == record.title and existing.content == record.content
        )
        if text_unchanged and existing.metadata == record.metadata:
            return existing.id

        if record.embedding is not None:
            embedding = self._accept_dimension(record.embedding)
        elif text_unchanged and existing.embedding is not None:
            embedding = existing.embedding
        else:
            embedding = await self._embed_document(record.title, record.content)

        now = utcnow()
        saved = await self.backend.upsert(
            record.model_copy(
                update={
                    "id": existing.id if existing else (record.id or str(uuid.uuid4())),
                    "embedding": embedding,
                    "created_at": existing.created_at if existing else record.created_at,
                    "updated_at": now,
                }
            )
        )
        logger.info(f"Stored {saved.content_type} '{saved.title}' ({'vector' if embedding else 'no vector'})")
        return saved.id

    async def batch_store(self, records: list[ContentRecord]) -> list[str]:
        """Store records in small chunks; a failed item leaves "" in its slot."""

        async def _safe_store(record: ContentRecord) -> str:
            try:
                return await self.store(record)
            except Exception as e:
                logger.error(f"Batch store failed for {record.content_type}:{record.content_id}: {e}")
                return ""

        ids: list[str] = []
        for start in range(0, len(records), BATCH_CHUNK_SIZE):
            chunk = records[start:start + BATCH_CHUNK_SIZE]
            ids.extend(await asyncio.gather(*(_safe_store(r) for r in chunk)))
            if start + BATCH_CHUNK_SIZE < len(records):
                await asyncio.sleep(self.chunk_delay)
        return ids

    async def search_similar(
        self,
        query: str,
        content_types: list[str] | None = None,
        metadata: dict | None = None,
        limit: int = 10,
        threshold: float = 0.5,
    ) -> list[SimilarityResult]:
        """Rank records by semantic similarity, falling back to text matching."""
        try:
            embedding = await self.embeddings.embed(query, "retrieval_query")
            if embedding is not None:
                return await self.backend.vector_search(embedding, content_types, metadata, limit, threshold)
            logger.info("Embeddings not configured, using text search")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Vector search failed, falling back to text search: {e}")

        try:
            return await self._text_search(query, content_types, metadata, limit)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Text search fallback failed: {e}")
            return []

    async def _text_search(self, query, content_types, metadata, limit) -> list[SimilarityResult]:
        terms = query_terms(query)
        if not terms:
            return []
        return await self.backend.text_search(terms, content_types, metadata, limit)

    async def update(self, record_id: str, changes: ContentUpdate) -> ContentRecord:
        existing = await self.backend.get(record_id)
        if existing is None:
            raise RecordNotFoundError(f"Content record {record_id} not found", record_id=record_id)

        title = changes.title if changes.title is not None else existing.title
        content = changes.content if changes.content is not None else existing.content
        metadata = changes.metadata if changes.metadata is not None else existing.metadata

        embedding = existing.embedding
        if title != existing.title or content != existing.content:
            embedding = await self._embed_document(title, content)

        return await self.backend.upsert(
            existing.model_copy(
                update={
                    "title": title,
                    "content": content,
                    "metadata": metadata,
                    "embedding": embedding,
                    "updated_at": utcnow(),
                }
            )
        )

    async def get(self, record_id: str) -> ContentRecord | None:
        return await self.backend.get(record_id)

    async def get_by_content_id(self, content_id: str, content_type: str) -> ContentRecord | None:
        return await self.backend.get_by_content_id(content_id, content_type)

    async def delete(self, record_id: str) -> bool:
        return await self.backend.delete(record_id)

    async def list_records(
        self,
        content_types: list[str] | None = None,
        updated_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[ContentRecord]:
        """Records oldest-updated first."""
        return await self.backend.list_records(content_types, updated_before, limit=limit)

    async def backfill_embeddings(self, limit: int = 50) -> int:
        """Embed records stored without a vector. Returns how many were filled."""
        if not self.vectors_enabled:
            return 0
        records = await self.backend.list_records(missing_embedding=True, limit=limit)
        if not records:
            return 0
        embeddings = await self.embeddings.embed_batch(
            [f"{r.title}\n\n{r.content}" for r in records], "retrieval_document"
        )
        filled = 0
        for record, embedding in zip(records, embeddings):
            embedding = self._accept_dimension(embedding)
            if embedding is None:
                continue
            await self.backend.upsert(record.model_copy(update={"embedding": embedding}))
            filled += 1
        if filled:
            logger.info(f"Backfilled {filled} embeddings")
        return filled

    async def get_stats(self) -> ContentStats:
        return await self.backend.stats(utcnow() - timedelta(days=7))
