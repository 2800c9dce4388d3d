"""Repository for subtitle chunk operations."""

import uuid
from typing import Any

from sqlalchemy import ColumnElement, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.subtitle_chunk import SubtitleChunk
from src.models.domain.media import MediaUnit

UNIT_CHUNK_CONSTRAINT = "uq_subtitle_chunks_unit_chunk"


def unit_filter(unit: MediaUnit) -> list[ColumnElement[bool]]:
    """WHERE clauses selecting exactly one media unit's chunks."""
    conditions: list[ColumnElement[bool]] = [
        SubtitleChunk.tmdb_id == unit.tmdb_id,
        SubtitleChunk.media_type == unit.media_type.value,
    ]
    if unit.is_tv:
        conditions.append(SubtitleChunk.season_number == unit.season_number)
        conditions.append(SubtitleChunk.episode_number == unit.episode_number)
    else:
        conditions.append(SubtitleChunk.season_number.is_(None))
        conditions.append(SubtitleChunk.episode_number.is_(None))
    return conditions


class ChunkRepository:
    """Repository for subtitle chunk database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_chunks(self, rows: list[dict[str, Any]]) -> int:
        """Insert chunk rows, ignoring any that already exist.

        Rows colliding on (unit, chunk_index) are skipped, so concurrent or
        repeated ingestion of the same unit converges without duplicates.

        Args:
            rows: Column values for SubtitleChunk

        Returns:
            Number of rows actually inserted
        """
        if not rows:
            return 0

        stmt = (
            insert(SubtitleChunk)
            .values(rows)
            .on_conflict_do_nothing(constraint=UNIT_CHUNK_CONSTRAINT)
            .returning(SubtitleChunk.id)
        )
        result = await self.session.execute(stmt)
        inserted = len(result.scalars().all())
        await self.session.flush()
        return inserted

    async def is_fully_ingested(self, unit: MediaUnit) -> bool:
        """Check whether every chunk of the unit's ingestion has been stored.

        A unit whose ingestion failed part-way has fewer rows than the chunk
        total recorded on them, and is ingested again.
        """
        result = await self.session.execute(
            select(
                func.count(SubtitleChunk.id),
                func.max(SubtitleChunk.unit_chunk_count),
            ).where(*unit_filter(unit))
        )
        stored, expected = result.one()
        return expected is not None and stored >= expected

    async def get_chunk_indexes(self, unit: MediaUnit) -> set[int]:
        """Get the chunk_index values already stored for a unit."""
        result = await self.session.execute(
            select(SubtitleChunk.chunk_index).where(*unit_filter(unit))
        )
        return set(result.scalars().all())

    async def get_time_bounds(self, unit: MediaUnit) -> tuple[float | None, float | None]:
        """Get (min start, max end) over a unit's chunks.

        Returns:
            (None, None) when the unit has no chunks
        """
        result = await self.session.execute(
            select(
                func.min(SubtitleChunk.start_seconds),
                func.max(SubtitleChunk.end_seconds),
            ).where(*unit_filter(unit))
        )
        min_start, max_end = result.one()
        if min_start is None or max_end is None:
            return None, None
        return float(min_start), float(max_end)

    async def get_anchor_window(
        self,
        unit: MediaUnit,
        cursor_seconds: float,
        window_seconds: float,
        limit: int,
    ) -> list[SubtitleChunk]:
        """Get chunks overlapping the trailing window before the cursor.

        Args:
            unit: The media unit
            cursor_seconds: Story cursor; chunks must start at or before it
            window_seconds: Chunks must end at or after cursor - window
            limit: Maximum number of chunks

        Returns:
            The `limit` chunks nearest the cursor, ordered by ascending start time
        """
        result = await self.session.execute(
            select(SubtitleChunk)
            .where(*unit_filter(unit))
            .where(SubtitleChunk.start_seconds <= cursor_seconds)
            .where(SubtitleChunk.end_seconds >= cursor_seconds - window_seconds)
            .order_by(SubtitleChunk.start_seconds.desc(), SubtitleChunk.chunk_index.desc())
            .limit(limit)
        )
        chunks = list(result.scalars().all())
        chunks.reverse()
        return chunks

    async def get_latest_chunks(
        self,
        unit: MediaUnit,
        limit: int,
        starting_before: float | None = None,
    ) -> list[SubtitleChunk]:
        """Get the latest-ending chunks of a unit, in chronological order.

        Args:
            unit: The media unit
            limit: Maximum number of chunks
            starting_before: If given, only chunks starting at or before this second
        """
        stmt = select(SubtitleChunk).where(*unit_filter(unit))
        if starting_before is not None:
            stmt = stmt.where(SubtitleChunk.start_seconds <= starting_before)
        result = await self.session.execute(
            stmt
            .order_by(SubtitleChunk.end_seconds.desc(), SubtitleChunk.chunk_index.desc())
            .limit(limit)
        )
        chunks = list(result.scalars().all())
        chunks.sort(key=lambda c: (c.start_seconds, c.chunk_index))
        return chunks

    async def get_chunks_by_unit(self, unit: MediaUnit) -> list[SubtitleChunk]:
        """Get all chunks for a unit ordered by chunk_index."""
        result = await self.session.execute(
            select(SubtitleChunk)
            .where(*unit_filter(unit))
            .order_by(SubtitleChunk.chunk_index)
        )
        return list(result.scalars().all())

    async def count_chunks_by_unit(self, unit: MediaUnit) -> int:
        result = await self.session.execute(
            select(func.count(SubtitleChunk.id)).where(*unit_filter(unit))
        )
        return int(result.scalar_one())

    async def update_content(self, chunk_id: uuid.UUID, content: str) -> bool:
        """Replace a chunk's text (speaker annotation).

        Returns:
            True if updated, False if not found
        """
        result = await self.session.execute(
            update(SubtitleChunk)
            .where(SubtitleChunk.id == chunk_id)
            .values(content=content)
        )
        await self.session.flush()
        return bool(getattr(result, "rowcount", 0))

    async def get_chunks_without_embeddings(self, limit: int) -> list[SubtitleChunk]:
        """Get chunks still waiting for a content-space embedding.

        Chunks that failed fewer times come first, so a chunk that keeps
        failing cannot hold back the rest.
        """
        result = await self.session.execute(
            select(SubtitleChunk)
            .where(SubtitleChunk.embedding.is_(None))
            .order_by(
                SubtitleChunk.embedding_attempts,
                SubtitleChunk.created_at,
                SubtitleChunk.chunk_index,
            )
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_chunks_without_embeddings(self) -> int:
        result = await self.session.execute(
            select(func.count(SubtitleChunk.id)).where(SubtitleChunk.embedding.is_(None))
        )
        return int(result.scalar_one())

    async def update_embedding(self, chunk_id: uuid.UUID, embedding: list[float]) -> bool:
        """Set the embedding for a chunk.

        Returns:
            True if updated, False if not found
        """
        result = await self.session.execute(
            update(SubtitleChunk)
            .where(SubtitleChunk.id == chunk_id)
            .values(embedding=embedding)
        )
        await self.session.flush()
        return bool(getattr(result, "rowcount", 0))

    async def record_embedding_failure(self, chunk_id: uuid.UUID) -> None:
        """Count a failed backfill attempt against a chunk."""
        await self.session.execute(
            update(SubtitleChunk)
            .where(SubtitleChunk.id == chunk_id)
            .values(embedding_attempts=SubtitleChunk.embedding_attempts + 1)
        )
        await self.session.flush()
