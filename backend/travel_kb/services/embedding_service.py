"""Text embeddings via the OpenAI embeddings API.

An empty API key puts the service in demo mode: ``embed`` returns None and
callers fall back to lexical matching.
"""

import asyncio
import logging
import math

from openai import AsyncOpenAI

from travel_kb.config import settings
from travel_kb.errors import EmbeddingError

logger = logging.getLogger(__name__)

TASK_TYPES = ("retrieval_document", "retrieval_query", "semantic_similarity")

# text-embedding-3 models accept ~8k tokens; characters are a cheap proxy
MAX_INPUT_CHARS = 24000


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Embedding dimensions must match ({len(a)} != {len(b)})")

    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


class EmbeddingService:
    """Async embedding provider with bounded batch concurrency."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        dimensions: int | None = None,
        batch_size: int | None = None,
        batch_delay: float | None = None,
        client=None,
    ):
        key = settings.openai_api_key if api_key is None else api_key
        self.model = model or settings.embedding_model
        self.dimensions = dimensions or settings.embedding_dimensions
        self.batch_size = batch_size or settings.embedding_batch_size
        self.batch_delay = settings.embedding_batch_delay_seconds if batch_delay is None else batch_delay

        self._client = client
        if self._client is None and key:
            self._client = AsyncOpenAI(api_key=key)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def embed(self, text: str, task_type: str = "retrieval_document") -> list[float] | None:
        """Embed one text.

        Returns:
            The vector, or None when no provider is configured.

        Raises:
            ValueError: empty text or unknown task type.
            EmbeddingError: the provider failed or returned an empty vector.
        """
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        if task_type not in TASK_TYPES:
            raise ValueError(f"Unknown embedding task type: {task_type}")
        if not self.is_configured:
            return None

        try:
            response = await self._client.embeddings.create(
                model=self.model,
                input=text[:MAX_INPUT_CHARS],
                dimensions=self.dimensions,
            )
        except Exception as e:
            raise EmbeddingError("Failed to generate embedding", cause=e, model=self.model) from e

        vector = list(response.data[0].embedding) if response.data else []
        if not vector:
            raise EmbeddingError("Empty embedding received", model=self.model)
        return vector

    async def embed_batch(
        self, texts: list[str], task_type: str = "retrieval_document"
    ) -> list[list[float] | None]:
        """Embed many texts. A failed item yields None in its slot."""
        semaphore = asyncio.Semaphore(self.batch_size)

        async def _one(text: str) -> list[float] | None:
            async with semaphore:
                try:
                    return await self.embed(text, task_type)
                except (ValueError, EmbeddingError) as e:
                    logger.warning(f"Batch embedding item failed: {e}")
                    return None

        results: list[list[float] | None] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            results.extend(await asyncio.gather(*(_one(t) for t in batch)))
            if start + self.batch_size < len(texts):
                await asyncio.sleep(self.batch_delay)
        return results

    def status(self) -> dict:
        if not self.is_configured:
            return {
                "status": "demo",
                "message": "Embeddings service not configured - vector search disabled",
                "model": self.model,
            }
        return {"status": "configured", "message": "Embeddings provider configured", "model": self.model}

    async def test_connection(self) -> dict:
        if not self.is_configured:
            return self.status()
        try:
            await self.embed("Test embedding generation")
            return {"status": "success", "message": "Embeddings service connected successfully", "model": self.model}
        except EmbeddingError as e:
            return {"status": "error", "message": str(e), "model": self.model}

    async def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            await self._client.close()
