"""Repository for vector similarity search over chunks and season digests."""

from dataclasses import dataclass

from sqlalchemy import ColumnElement, and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.db.season_digest import SeasonDigest
from src.models.db.subtitle_chunk import SubtitleChunk
from src.models.domain.media import MediaUnit


@dataclass
class ChunkSearchResult:
    """Result from a chunk similarity search."""

    chunk: SubtitleChunk
    score: float  # Cosine similarity (1 - cosine distance)


@dataclass
class DigestSearchResult:
    """Result from a season digest similarity search."""

    digest: SeasonDigest
    score: float


def spoiler_scope(unit: MediaUnit, cursor_seconds: float) -> ColumnElement[bool]:
    """Chunks a viewer at (unit, cursor) has already seen.

    For TV this is every earlier episode of the show plus the current episode
    up to the cursor. For a movie it is the movie up to the cursor.
    """
    same_title = and_(
        SubtitleChunk.tmdb_id == unit.tmdb_id,
        SubtitleChunk.media_type == unit.media_type.value,
    )
    if not unit.is_tv:
        return and_(same_title, SubtitleChunk.end_seconds <= cursor_seconds)

    return and_(
        same_title,
        or_(
            SubtitleChunk.season_number < unit.season_number,
            and_(
                SubtitleChunk.season_number == unit.season_number,
                SubtitleChunk.episode_number < unit.episode_number,
            ),
            and_(
                SubtitleChunk.season_number == unit.season_number,
                SubtitleChunk.episode_number == unit.episode_number,
                SubtitleChunk.end_seconds <= cursor_seconds,
            ),
        ),
    )


class VectorSearchRepository:
    """Repository for semantic search using pgvector's cosine distance.

    Every query is restricted to content the viewer has already reached;
    nothing past the cursor can be returned.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def search_chunks(
        self,
        query_embedding: list[float],
        unit: MediaUnit,
        cursor_seconds: float,
        top_k: int = 60,
    ) -> list[ChunkSearchResult]:
        """Search for subtitle chunks similar to a content-space embedding.

        Args:
            query_embedding: 1536-dim question embedding
            unit: The media unit the viewer is watching
            cursor_seconds: Safe story cursor
            top_k: Maximum number of results

        Returns:
            Results ordered by similarity (highest first)
        """
        distance = SubtitleChunk.embedding.cosine_distance(query_embedding)
        query = (
            select(SubtitleChunk, (1 - distance).label("similarity"))
            .where(spoiler_scope(unit, cursor_seconds))
            .where(SubtitleChunk.embedding.isnot(None))
            .order_by(distance)
            .limit(top_k)
        )

        result = await self.session.execute(query)
        return [ChunkSearchResult(chunk=row[0], score=float(row[1])) for row in result.all()]

    async def search_digests(
        self,
        query_embedding: list[float],
        tmdb_id: int,
        before_season: int,
        top_k: int = 3,
    ) -> list[DigestSearchResult]:
        """Search season digests of seasons strictly before `before_season`.

        Args:
            query_embedding: 384-dim question embedding
            tmdb_id: The show
            before_season: Current season; it and later seasons are excluded
            top_k: Maximum number of results

        Returns:
            Results ordered by similarity (highest first)
        """
        distance = SeasonDigest.embedding.cosine_distance(query_embedding)
        query = (
            select(SeasonDigest, (1 - distance).label("similarity"))
            .where(SeasonDigest.tmdb_id == tmdb_id)
            .where(SeasonDigest.season_number < before_season)
            .where(SeasonDigest.embedding.isnot(None))
            .order_by(distance)
            .limit(top_k)
        )

        result = await self.session.execute(query)
        return [DigestSearchResult(digest=row[0], score=float(row[1])) for row in result.all()]
