from travel_kb.models.knowledge import UserRating, VectorContent

__all__ = [
    "UserRating",
    "VectorContent",
]
