from fastapi import Request

from travel_kb.services.container import ServiceContainer
from travel_kb.services.knowledge_base import TravelKnowledgeBase


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_knowledge_base(request: Request) -> TravelKnowledgeBase:
    return request.app.state.services.knowledge_base
