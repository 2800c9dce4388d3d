"""Season digests: caching prior-season summaries and retrieving them for a question."""

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.models.db.season_digest import SeasonDigest
from src.models.domain.media import MediaUnit
from src.repositories.digest_repo import DigestRepository
from src.repositories.vector_search_repo import VectorSearchRepository
from src.services.compact_embedding_client import CompactEmbeddingClient
from src.services.embedding_client import EmbeddingError
from src.services.tmdb_client import SeasonDetails, TMDbClient

logger = logging.getLogger(__name__)

SEASON_OVERVIEW_CHARS = 300
EPISODE_OVERVIEW_CHARS = 100
EPISODES_PER_DIGEST = 3

CacheOutcome = Literal["cached", "created", "missing"]


@dataclass
class DigestCacheResult:
    """Per-season outcome of a caching pass."""

    cached: list[int] = field(default_factory=list)
    created: list[int] = field(default_factory=list)
    missing: list[int] = field(default_factory=list)


def digest_embedding_text(
    season_name: str,
    overview: str,
    episode_summaries: list[dict[str, Any]],
) -> str:
    lines = [f"{season_name}: {overview}"]
    lines.extend(
        f"Episode {ep['episode']}: {ep['name']} - {ep['overview']}" for ep in episode_summaries
    )
    return "\n".join(lines)


def _truncate(text: str, limit: int) -> str:
    text = text.strip()
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


def format_digests(digests: list[SeasonDigest]) -> str:
    """Render digests as a prompt block, in season order."""
    sections: list[str] = []
    for digest in sorted(digests, key=lambda d: d.season_number):
        header = f"Season {digest.season_number} ({digest.season_name})"
        lines = [f"{header}: {_truncate(digest.overview or '', SEASON_OVERVIEW_CHARS)}"]
        for ep in (digest.episode_summaries or [])[:EPISODES_PER_DIGEST]:
            lines.append(
                f"  Episode {ep.get('episode')}: {ep.get('name', '')} - "
                f"{_truncate(ep.get('overview', ''), EPISODE_OVERVIEW_CHARS)}"
            )
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


class SeasonDigestService:
    """Builds and stores season digests from TMDB season details."""

    def __init__(
        self,
        db_session: AsyncSession,
        settings: Settings | None = None,
        tmdb_client: TMDbClient | None = None,
        compact_client: CompactEmbeddingClient | None = None,
    ) -> None:
        self.db_session = db_session
        self.settings = settings or get_settings()
        self.digest_repo = DigestRepository(db_session)
        self._tmdb_client = tmdb_client
        self._compact_client = compact_client

    @property
    def tmdb_client(self) -> TMDbClient:
        """Get or create TMDB client (lazy initialization)."""
        if self._tmdb_client is None:
            self._tmdb_client = TMDbClient(settings=self.settings)
        return self._tmdb_client

    @property
    def compact_client(self) -> CompactEmbeddingClient:
        """Get or create compact embedding client (lazy initialization)."""
        if self._compact_client is None:
            self._compact_client = CompactEmbeddingClient(settings=self.settings)
        return self._compact_client

    async def cache_seasons(self, tmdb_id: int, season_numbers: list[int]) -> DigestCacheResult:
        """Ensure a digest exists for each season.

        Raises:
            TMDbError: If TMDB fails for a season
        """
        result = DigestCacheResult()
        existing = await self.digest_repo.get_existing_seasons(tmdb_id, season_numbers)
        for season_number in sorted(set(season_numbers)):
            if season_number in existing:
                result.cached.append(season_number)
                continue
            outcome = await self.cache_season(tmdb_id, season_number)
            getattr(result, outcome).append(season_number)
        return result

    async def cache_season(self, tmdb_id: int, season_number: int) -> CacheOutcome:
        """Build, embed and store one season's digest."""
        if await self.digest_repo.get_digest(tmdb_id, season_number) is not None:
            return "cached"

        season = await self.tmdb_client.get_season(tmdb_id, season_number)
        if season is None:
            logger.info(f"TMDB has no season {season_number} for show {tmdb_id}")
            return "missing"

        values = await self._build_values(tmdb_id, season)
        inserted = await self.digest_repo.insert_digest(values)
        await self.db_session.commit()
        logger.info(
            f"Cached season {season_number} digest for show {tmdb_id} "
            f"({len(season.episodes)} episodes, embedded={values['embedding'] is not None})"
        )
        return "created" if inserted else "cached"

    async def _build_values(self, tmdb_id: int, season: SeasonDetails) -> dict[str, Any]:
        episode_summaries = [
            {"episode": ep.episode_number, "name": ep.name, "overview": ep.overview}
            for ep in season.episodes
        ]
        text = digest_embedding_text(season.name, season.overview, episode_summaries)
        embedding: list[float] | None
        try:
            embedding = await self.compact_client.embed_text(text)
        except EmbeddingError as e:
            logger.warning(
                f"Digest embedding failed for show {tmdb_id} season "
                f"{season.season_number}, storing without embedding: {e}"
            )
            embedding = None

        return {
            "tmdb_id": tmdb_id,
            "season_number": season.season_number,
            "season_name": season.name,
            "overview": season.overview,
            "episode_summaries": episode_summaries,
            "embedding": embedding,
        }


class SeasonDigestRetriever:
    """Finds prior-season digests relevant to a question.

    Best effort: any failure yields an empty block so the main answer is
    never held up by digests.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        settings: Settings | None = None,
        compact_client: CompactEmbeddingClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.vector_search_repo = VectorSearchRepository(db_session)
        self._compact_client = compact_client

    @property
    def compact_client(self) -> CompactEmbeddingClient:
        """Get or create compact embedding client (lazy initialization)."""
        if self._compact_client is None:
            self._compact_client = CompactEmbeddingClient(settings=self.settings)
        return self._compact_client

    async def retrieve(self, unit: MediaUnit, question: str, references_past: bool) -> str:
        """Return a formatted block of prior-season digests, or "".

        Args:
            unit: The episode being watched
            question: Raw question text, embedded in the compact space
            references_past: Widen the candidate pool when True
        """
        if not unit.is_tv or unit.season_number is None or unit.season_number <= 1:
            return ""

        candidates = (
            self.settings.digest_candidates_cross_season
            if references_past
            else self.settings.digest_candidates_default
        )
        try:
            embedding = await self.compact_client.embed_text(question)
            matches = await self.vector_search_repo.search_digests(
                query_embedding=embedding,
                tmdb_id=unit.tmdb_id,
                before_season=unit.season_number,
                top_k=candidates,
            )
        except Exception as e:
            logger.warning(f"Season digest search failed for show {unit.tmdb_id}: {e}")
            return ""

        best = [match.digest for match in matches[: self.settings.digest_max_seasons]]
        return format_digests(best)
