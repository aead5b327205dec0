"""Append-only storage for user ratings."""

import logging
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from travel_kb.errors import PersistenceError
from travel_kb.models.knowledge import UserRating as UserRatingRow
from travel_kb.schemas.destination import UserRating

logger = logging.getLogger(__name__)


class FeedbackStore(Protocol):
    async def add(self, rating: UserRating) -> None: ...

    async def list_ratings(self, destination_id: str | None = None, since: datetime | None = None) -> list[UserRating]:
        """Ratings newest first."""
        ...


class InMemoryFeedbackStore:
    def __init__(self):
        self._ratings: list[UserRating] = []

    async def add(self, rating: UserRating) -> None:
        self._ratings.append(rating.model_copy())

    async def list_ratings(self, destination_id=None, since=None) -> list[UserRating]:
        ratings = [
            r for r in self._ratings
            if (destination_id is None or r.destination_id == destination_id)
            and (since is None or r.timestamp >= since)
        ]
        return sorted(ratings, key=lambda r: r.timestamp, reverse=True)


class SqlFeedbackStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def add(self, rating: UserRating) -> None:
        try:
            async with self._session_factory() as db:
                db.add(UserRatingRow(
                    destination_id=rating.destination_id,
                    user_id=rating.user_id,
                    rating=rating.rating,
                    category=rating.category,
                    comment=rating.comment,
                    created_at=rating.timestamp,
                ))
                await db.commit()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to store feedback", cause=e, operation="add_feedback") from e

    async def list_ratings(self, destination_id=None, since=None) -> list[UserRating]:
        stmt = select(UserRatingRow).order_by(UserRatingRow.created_at.desc())
        if destination_id is not None:
            stmt = stmt.where(UserRatingRow.destination_id == destination_id)
        if since is not None:
            stmt = stmt.where(UserRatingRow.created_at >= since)
        try:
            async with self._session_factory() as db:
                result = await db.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to load feedback", cause=e, operation="list_feedback") from e
        return [
            UserRating(
                destination_id=row.destination_id,
                user_id=row.user_id,
                rating=row.rating,
                category=row.category,
                comment=row.comment,
                timestamp=row.created_at,
            )
            for row in rows
        ]
