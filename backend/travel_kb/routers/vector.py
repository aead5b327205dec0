"""Vector store router: provider status, raw similarity search, corpus stats."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from travel_kb.dependencies import get_services
from travel_kb.errors import PersistenceError
from travel_kb.schemas.knowledge import ContentStats, VectorSearchRequest
from travel_kb.services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/status")
async def vector_status(services: ServiceContainer = Depends(get_services)):
    """Embedding provider connectivity plus store reachability.

    Overall is "demo" when embeddings are not configured, "partial" when only
    one side works, "error" when neither does.
    Generation providers are checked too and reported under "ai".
    """
    embeddings = await services.embeddings.test_connection()
    ai = await services.llm.test_services()
    try:
        stats = await services.store.get_stats()
        store = {"status": "success", "total_content": stats.total_content}
    except PersistenceError as e:
        store = {"status": "error", "message": str(e)}

    if embeddings["status"] == "demo":
        overall = "demo"
    elif embeddings["status"] == "success" and store["status"] == "success":
        overall = "success"
    elif embeddings["status"] == "success" or store["status"] == "success":
        overall = "partial"
    else:
        overall = "error"
    return {"status": overall, "embeddings": embeddings, "store": store, "ai": ai}


@router.post("/search")
async def vector_search(req: VectorSearchRequest, services: ServiceContainer = Depends(get_services)):
    results = await services.store.search_similar(
        req.query,
        content_types=req.content_types,
        metadata=req.metadata,
        limit=req.limit,
        threshold=req.threshold,
    )
    mode = "live" if services.store.vectors_enabled else "demo"
    return {
        "status": mode,
        "count": len(results),
        "results": [
            {
                "id": r.record.id,
                "content_id": r.record.content_id,
                "content_type": r.record.content_type,
                "title": r.record.title,
                "similarity": round(r.similarity, 4),
                "match_type": r.match_type,
                "metadata": r.record.metadata,
            }
            for r in results
        ],
    }


@router.get("/stats", response_model=ContentStats)
async def vector_stats(services: ServiceContainer = Depends(get_services)):
    try:
        return await services.store.get_stats()
    except PersistenceError as e:
        logger.error(f"Stats query failed: {e}")
        raise HTTPException(status_code=503, detail="Vector store unavailable")
