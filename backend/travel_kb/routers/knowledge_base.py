"""Knowledge base router: search, destinations, pipeline, feedback and quality."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from travel_kb.dependencies import get_knowledge_base
from travel_kb.errors import DestinationNotFoundError, PersistenceError
from travel_kb.schemas.destination import EnhancedDestination
from travel_kb.schemas.knowledge import (
    AddDestinationRequest,
    FeedbackRequest,
    FeedbackSummary,
    PipelineRunStats,
    QualityReport,
    SystemStatus,
)
from travel_kb.schemas.search import SearchRequest, SearchResponse
from travel_kb.services.knowledge_base import TravelKnowledgeBase

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/search", response_model=SearchResponse)
async def search(req: SearchRequest, kb: TravelKnowledgeBase = Depends(get_knowledge_base)):
    """Search destinations with traveller context. Errors come back in the response status."""
    return await kb.search(req)


@router.post("/destinations", response_model=EnhancedDestination, status_code=201)
async def add_destination(req: AddDestinationRequest, kb: TravelKnowledgeBase = Depends(get_knowledge_base)):
    try:
        return await kb.add_destination(req.name, req.country)
    except PersistenceError as e:
        logger.error(f"Failed to add {req.name}: {e}")
        raise HTTPException(status_code=503, detail="Knowledge base storage unavailable")


@router.get("/destinations/{destination_id}", response_model=EnhancedDestination)
async def get_destination(destination_id: str, kb: TravelKnowledgeBase = Depends(get_knowledge_base)):
    try:
        destination = await kb.get_destination(destination_id)
    except PersistenceError as e:
        logger.error(f"Failed to load {destination_id}: {e}")
        raise HTTPException(status_code=503, detail="Knowledge base storage unavailable")
    if destination is None:
        raise HTTPException(status_code=404, detail="Destination not found")
    return destination


@router.post("/destinations/{destination_id}/refresh", response_model=EnhancedDestination)
async def refresh_destination(destination_id: str, kb: TravelKnowledgeBase = Depends(get_knowledge_base)):
    try:
        return await kb.update_destination(destination_id)
    except DestinationNotFoundError:
        raise HTTPException(status_code=404, detail="Destination not found")
    except PersistenceError as e:
        logger.error(f"Failed to refresh {destination_id}: {e}")
        raise HTTPException(status_code=503, detail="Knowledge base storage unavailable")


@router.get("/status", response_model=SystemStatus)
async def system_status(kb: TravelKnowledgeBase = Depends(get_knowledge_base)):
    try:
        return await kb.get_system_status()
    except PersistenceError as e:
        logger.error(f"Status check failed: {e}")
        raise HTTPException(status_code=503, detail="Knowledge base storage unavailable")


@router.post("/pipeline/run", response_model=PipelineRunStats)
async def run_pipeline(kb: TravelKnowledgeBase = Depends(get_knowledge_base)):
    """Run the pipeline now; returns the in-progress status if a run is active."""
    return await kb.run_manual_update()


@router.get("/pipeline", response_model=PipelineRunStats)
async def pipeline_status(kb: TravelKnowledgeBase = Depends(get_knowledge_base)):
    return kb.pipeline.status()


@router.post("/feedback", status_code=201)
async def submit_feedback(req: FeedbackRequest, kb: TravelKnowledgeBase = Depends(get_knowledge_base)):
    try:
        rating = await kb.submit_feedback(req.destination_id, req.rating, req.category, req.comment, req.user_id)
    except PersistenceError as e:
        logger.error(f"Failed to store feedback for {req.destination_id}: {e}")
        raise HTTPException(status_code=503, detail="Feedback storage unavailable")
    return {"status": "recorded", "destination_id": rating.destination_id, "timestamp": rating.timestamp}


@router.get("/feedback/{destination_id}", response_model=FeedbackSummary)
async def feedback_summary(destination_id: str, kb: TravelKnowledgeBase = Depends(get_knowledge_base)):
    try:
        return await kb.feedback_summary(destination_id)
    except PersistenceError as e:
        logger.error(f"Failed to load feedback for {destination_id}: {e}")
        raise HTTPException(status_code=503, detail="Feedback storage unavailable")


@router.get("/quality-report", response_model=QualityReport)
async def quality_report(kb: TravelKnowledgeBase = Depends(get_knowledge_base)):
    return await kb.quality_report()
