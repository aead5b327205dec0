import asyncio
from datetime import timedelta
from types import SimpleNamespace

import pytest

from conftest import FakeEmbeddingsAPI, make_embeddings, unconfigured_embeddings
from travel_kb.errors import PersistenceError, RecordNotFoundError
from travel_kb.schemas.destination import utcnow
from travel_kb.schemas.knowledge import ContentRecord, ContentUpdate
from travel_kb.services.embedding_service import EmbeddingService
from travel_kb.services.vector_backends import InMemoryVectorBackend, matches_filters
from travel_kb.services.vector_store import VectorStore, query_terms


def _record(content_id, title, content="", metadata=None, embedding=None, content_type="enhanced_city"):
    return ContentRecord(
        content_id=content_id,
        content_type=content_type,
        title=title,
        content=content or title,
        metadata=metadata or {},
        embedding=embedding,
    )


class BrokenBackend(InMemoryVectorBackend):
    async def vector_search(self, *args, **kwargs):
        raise PersistenceError("connection lost", operation="vector_search")

    async def text_search(self, *args, **kwargs):
        raise PersistenceError("connection lost", operation="text_search")


class RejectingBackend(InMemoryVectorBackend):
    async def upsert(self, record):
        if record.content_id == "bad":
            raise PersistenceError("constraint violated", operation="upsert")
        return await super().upsert(record)


def test_query_terms_drops_short_and_duplicate_terms():
    assert query_terms("Yoga in Rishikesh, yoga!") == ["yoga", "rishikesh"]


@pytest.mark.parametrize(
    "metadata, filters, expected",
    [
        ({"country": "India"}, {"country": "India"}, True),
        ({"country": "India"}, {"country": ["Nepal", "India"]}, True),
        ({"country": "India"}, {"country": {"ne": "India"}}, False),
        ({}, {"country": {"ne": "India"}}, True),
        ({"safety_rating": 7.5}, {"safety_rating": {"gte": 7}}, True),
        ({"safety_rating": 5}, {"safety_rating": {"gte": 7}}, False),
        ({"safety_rating": "high"}, {"safety_rating": {"lte": 9}}, False),
        ({"country": "India"}, None, True),
    ],
)
def test_matches_filters(metadata, filters, expected):
    assert matches_filters(metadata, filters) is expected


@pytest.mark.asyncio
async def test_store_is_idempotent(memory_store):
    store, api = memory_store
    record = _record("kyoto-japan", "Kyoto, Japan", metadata={"country": "Japan"})

    first = await store.store(record)
    second = await store.store(record)

    assert first == second
    assert len(api.calls) == 1
    assert (await store.get_stats()).total_content == 1


@pytest.mark.asyncio
async def test_metadata_change_keeps_vector_and_id(memory_store):
    store, api = memory_store
    record_id = await store.store(_record("kyoto-japan", "Kyoto, Japan", metadata={"country": "Japan"}))

    again = await store.store(_record("kyoto-japan", "Kyoto, Japan", metadata={"country": "Japan", "cost": 3}))

    assert again == record_id
    assert len(api.calls) == 1
    assert (await store.get(record_id)).metadata["cost"] == 3


@pytest.mark.asyncio
async def test_content_change_re_embeds_in_place(memory_store):
    store, api = memory_store
    record_id = await store.store(_record("kyoto-japan", "Kyoto, Japan"))
    created = (await store.get(record_id)).created_at

    await store.store(_record("kyoto-japan", "Kyoto, Japan", content="Updated guide"))

    saved = await store.get(record_id)
    assert saved.content == "Updated guide"
    assert saved.created_at == created
    assert len(api.calls) == 2


@pytest.mark.asyncio
async def test_rishikesh_ranks_above_threshold_and_weak_match_is_excluded():
    embeddings, _ = make_embeddings(vectors={"yoga": [1.0, 0.0, 0.0]})
    store = VectorStore(InMemoryVectorBackend(), embeddings, chunk_delay=0)
    await store.store(_record("rishikesh-india", "Rishikesh, India", embedding=[0.82, 0.5724, 0.0]))
    await store.store(_record("goa-india", "Goa, India", embedding=[0.25, 0.9682, 0.0]))

    results = await store.search_similar("yoga retreat", threshold=0.3)

    assert [r.record.content_id for r in results] == ["rishikesh-india"]
    assert results[0].similarity == pytest.approx(0.82, abs=1e-3)
    assert results[0].match_type == "vector"
    assert results[0].record.embedding is not None


@pytest.mark.asyncio
async def test_results_order_by_similarity_then_recency():
    embeddings, _ = make_embeddings(vectors={"beach": [1.0, 0.0]})
    backend = InMemoryVectorBackend()
    now = utcnow()
    for content_id, vector, age in [("a", [1.0, 0.0], 3), ("b", [1.0, 0.0], 1), ("c", [0.8, 0.6], 0)]:
        record = _record(content_id, content_id.upper(), embedding=vector)
        record.updated_at = now - timedelta(days=age)
        await backend.upsert(record)

    results = await VectorStore(backend, embeddings).search_similar("beach", threshold=0.1)

    assert [r.record.content_id for r in results] == ["b", "a", "c"]


@pytest.mark.asyncio
async def test_search_applies_content_type_and_metadata_filters(memory_store):
    store, _ = memory_store
    await store.store(_record("pushkar-india", "Pushkar", metadata={"country": "India"}))
    await store.store(_record("kyoto-japan", "Kyoto", metadata={"country": "Japan"}))
    await store.store(_record("pushkar-guide", "Pushkar guide", content_type="article", metadata={"country": "India"}))

    results = await store.search_similar(
        "anything", content_types=["enhanced_city"], metadata={"country": {"ne": "India"}}, threshold=0.1
    )

    assert [r.record.content_id for r in results] == ["kyoto-japan"]


@pytest.mark.asyncio
async def test_text_fallback_when_embeddings_fail():
    embeddings, _ = make_embeddings(fail=True)
    store = VectorStore(InMemoryVectorBackend(), embeddings)
    await store.store(_record("pushkar-india", "Pushkar, India", content="Holy lake and temples"))
    await store.store(_record("kyoto-japan", "Kyoto, Japan", content="Zen temples and gardens"))

    assert (await store.get_by_content_id("pushkar-india", "enhanced_city")).embedding is None

    results = await store.search_similar("pushkar temples camel", threshold=0.9)

    assert [r.record.content_id for r in results] == ["pushkar-india", "kyoto-japan"]
    assert all(r.match_type == "text" for r in results)
    assert results[0].similarity == pytest.approx(0.5 * 2 / 3)
    assert results[1].similarity == pytest.approx(0.5 * 1 / 3)


@pytest.mark.asyncio
async def test_demo_mode_uses_text_search():
    store = VectorStore(InMemoryVectorBackend(), unconfigured_embeddings())
    await store.store(_record("pushkar-india", "Pushkar, India"))

    assert not store.vectors_enabled
    results = await store.search_similar("Pushkar")
    assert [r.match_type for r in results] == ["text"]


@pytest.mark.asyncio
async def test_search_never_raises_when_backend_is_down():
    embeddings, _ = make_embeddings()
    store = VectorStore(BrokenBackend(), embeddings)

    assert await store.search_similar("Pushkar") == []


@pytest.mark.asyncio
async def test_update_re_embeds_only_when_text_changes(memory_store):
    store, api = memory_store
    record_id = await store.store(_record("kyoto-japan", "Kyoto, Japan"))

    updated = await store.update(record_id, ContentUpdate(metadata={"country": "Japan"}))
    assert updated.metadata == {"country": "Japan"}
    assert len(api.calls) == 1

    updated = await store.update(record_id, ContentUpdate(title="Kyoto"))
    assert updated.title == "Kyoto"
    assert len(api.calls) == 2


@pytest.mark.asyncio
async def test_update_unknown_record_raises(memory_store):
    store, _ = memory_store
    with pytest.raises(RecordNotFoundError) as exc:
        await store.update("missing", ContentUpdate(title="x"))
    assert exc.value.record_id == "missing"


@pytest.mark.asyncio
async def test_batch_store_marks_failed_items():
    embeddings, _ = make_embeddings()
    store = VectorStore(RejectingBackend(), embeddings, chunk_delay=0)
    records = [_record(cid, cid) for cid in ("one", "bad", "three", "four")]

    ids = await store.batch_store(records)

    assert len(ids) == 4
    assert ids[1] == ""
    assert all(ids[i] for i in (0, 2, 3))


@pytest.mark.asyncio
async def test_mismatched_dimension_is_stored_without_vector():
    embeddings, _ = make_embeddings()
    store = VectorStore(InMemoryVectorBackend(), embeddings, dimensions=3)

    record_id = await store.store(_record("kyoto-japan", "Kyoto, Japan"))

    assert (await store.get(record_id)).embedding is None


@pytest.mark.asyncio
async def test_backfill_embeds_records_missing_vectors(memory_store):
    store, _ = memory_store
    await store.backend.upsert(_record("lima-peru", "Lima, Peru"))

    assert await store.backfill_embeddings() == 1
    assert (await store.get_by_content_id("lima-peru", "enhanced_city")).embedding is not None
    assert await store.backfill_embeddings() == 0


@pytest.mark.asyncio
async def test_stats_and_delete(memory_store):
    store, _ = memory_store
    keep = await store.store(_record("kyoto-japan", "Kyoto"))
    drop = await store.store(_record("lima-guide", "Lima", content_type="article"))

    stats = await store.get_stats()
    assert stats.total_content == 2
    assert stats.content_types == {"enhanced_city": 1, "article": 1}
    assert stats.recent_content == 2

    assert await store.delete(drop)
    assert not await store.delete(drop)
    assert [r.id for r in await store.list_records()] == [keep]


@pytest.mark.asyncio
async def test_text_fallback_scores_every_candidate_before_limiting():
    store = VectorStore(InMemoryVectorBackend(), unconfigured_embeddings())
    for i in range(6):
        await store.store(_record(f"city-{i}", f"City {i}", content="A town in India"))
    await store.store(_record("rishikesh-india", "Rishikesh", content="Yoga capital of India"))

    results = await store.search_similar("yoga india", limit=1)

    assert [r.record.content_id for r in results] == ["rishikesh-india"]
    assert results[0].similarity == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_concurrent_stores_of_one_record_do_not_duplicate():
    class SlowEmbeddingsAPI(FakeEmbeddingsAPI):
        async def create(self, model, input, dimensions=None):
            await asyncio.sleep(0.01)
            return await super().create(model, input, dimensions)

    api = SlowEmbeddingsAPI()
    embeddings = EmbeddingService(api_key="", client=SimpleNamespace(embeddings=api), batch_delay=0)
    store = VectorStore(InMemoryVectorBackend(), embeddings, chunk_delay=0)
    record = _record("kyoto-japan", "Kyoto, Japan")

    ids = await store.batch_store([record, record])

    assert ids[0] == ids[1] != ""
    assert (await store.get_stats()).total_content == 1
    assert len(api.calls) == 1


@pytest.mark.asyncio
async def test_backfill_isolates_failed_items():
    embeddings, api = make_embeddings(fail_on="Quito")
    store = VectorStore(InMemoryVectorBackend(), embeddings)
    await store.backend.upsert(_record("lima-peru", "Lima, Peru"))
    await store.backend.upsert(_record("quito-ecuador", "Quito, Ecuador"))

    assert await store.backfill_embeddings() == 1
    assert (await store.get_by_content_id("quito-ecuador", "enhanced_city")).embedding is None
    assert len(api.calls) == 2
