"""Repository for season digest operations."""

import uuid
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.season_digest import SeasonDigest

SEASON_CONSTRAINT = "uq_season_digests_season"


class DigestRepository:
    """Repository for season digest database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_existing_seasons(self, tmdb_id: int, season_numbers: list[int]) -> set[int]:
        """Return which of the given seasons already have a digest."""
        if not season_numbers:
            return set()
        result = await self.session.execute(
            select(SeasonDigest.season_number)
            .where(SeasonDigest.tmdb_id == tmdb_id)
            .where(SeasonDigest.season_number.in_(season_numbers))
        )
        return set(result.scalars().all())

    async def get_digest(self, tmdb_id: int, season_number: int) -> SeasonDigest | None:
        result = await self.session.execute(
            select(SeasonDigest)
            .where(SeasonDigest.tmdb_id == tmdb_id)
            .where(SeasonDigest.season_number == season_number)
        )
        return result.scalar_one_or_none()

    async def insert_digest(self, values: dict[str, Any]) -> bool:
        """Insert a digest unless one exists for the same season.

        Returns:
            True if a row was inserted
        """
        stmt = (
            insert(SeasonDigest)
            .values(**values)
            .on_conflict_do_nothing(constraint=SEASON_CONSTRAINT)
            .returning(SeasonDigest.id)
        )
        result = await self.session.execute(stmt)
        inserted = result.scalar_one_or_none() is not None
        await self.session.flush()
        return inserted

    async def get_digests_without_embeddings(self, limit: int) -> list[SeasonDigest]:
        result = await self.session.execute(
            select(SeasonDigest)
            .where(SeasonDigest.embedding.is_(None))
            .order_by(
                SeasonDigest.embedding_attempts,
                SeasonDigest.tmdb_id,
                SeasonDigest.season_number,
            )
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_digests_without_embeddings(self) -> int:
        result = await self.session.execute(
            select(func.count(SeasonDigest.id)).where(SeasonDigest.embedding.is_(None))
        )
        return int(result.scalar_one())

    async def update_embedding(self, digest_id: uuid.UUID, embedding: list[float]) -> bool:
        result = await self.session.execute(
            update(SeasonDigest)
            .where(SeasonDigest.id == digest_id)
            .values(embedding=embedding)
        )
        await self.session.flush()
        return bool(getattr(result, "rowcount", 0))

    async def record_embedding_failure(self, digest_id: uuid.UUID) -> None:
        await self.session.execute(
            update(SeasonDigest)
            .where(SeasonDigest.id == digest_id)
            .values(embedding_attempts=SeasonDigest.embedding_attempts + 1)
        )
        await self.session.flush()
