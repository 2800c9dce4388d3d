"""Two-stage evidence retrieval: anchor chunks at the cursor plus re-ranked semantic chunks."""

import logging
from dataclasses import dataclass, field
from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.models.db.subtitle_chunk import SubtitleChunk
from src.models.domain.media import MediaUnit, format_timestamp
from src.repositories.chunk_repo import ChunkRepository
from src.repositories.vector_search_repo import VectorSearchRepository
from src.services.query_heuristics import extract_keywords

logger = logging.getLogger(__name__)


@dataclass
class RetrievalCandidate:
    """A chunk scored for one retrieval call. Never persisted."""

    chunk: SubtitleChunk
    stage: Literal["anchor", "semantic"]
    similarity: float = 0.0
    timestamp_proximity: float = 0.0
    recency_score: float = 0.0
    keyword_overlap: float = 0.0
    final_score: float = 0.0

    def citation_label(self) -> str:
        """Bracket body for citations, e.g. "S1E2 3:05-4:40" or "3:05-4:40"."""
        span = (
            f"{format_timestamp(self.chunk.start_seconds)}-"
            f"{format_timestamp(self.chunk.end_seconds)}"
        )
        if self.chunk.season_number is None or self.chunk.episode_number is None:
            return span
        return f"S{self.chunk.season_number}E{self.chunk.episode_number} {span}"


@dataclass
class RetrievalResult:
    """Evidence for the prompt: anchor chunks first, then semantic chunks."""

    anchor: list[RetrievalCandidate] = field(default_factory=list)
    semantic: list[RetrievalCandidate] = field(default_factory=list)
    degraded: bool = False

    @property
    def evidence(self) -> list[RetrievalCandidate]:
        return self.anchor + self.semantic


@dataclass(frozen=True)
class ScoringConfig:
    """Stage B re-ranking constants."""

    weight_similarity: float = 0.25
    weight_proximity: float = 0.45
    weight_recency: float = 0.20
    weight_keyword: float = 0.10
    proximity_boost_window: float = 300.0
    proximity_boost: float = 0.3
    keyword_hit_score: float = 0.15
    keyword_cap: float = 0.4
    keyword_min_length: int = 3
    same_season_base: float = 0.7
    other_season_base: float = 0.3
    past_reference_recency: float = 0.5
    gap_decay: float = 0.1

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringConfig":
        return cls(
            weight_similarity=settings.retrieval_weight_similarity,
            weight_proximity=settings.retrieval_weight_proximity,
            weight_recency=settings.retrieval_weight_recency,
            weight_keyword=settings.retrieval_weight_keyword,
            proximity_boost_window=settings.retrieval_proximity_boost_window_seconds,
            proximity_boost=settings.retrieval_proximity_boost,
            keyword_hit_score=settings.retrieval_keyword_hit_score,
            keyword_cap=settings.retrieval_keyword_cap,
            keyword_min_length=settings.retrieval_keyword_min_length,
            same_season_base=settings.retrieval_recency_same_season_base,
            other_season_base=settings.retrieval_recency_other_season_base,
            past_reference_recency=settings.retrieval_recency_past_reference,
            gap_decay=settings.retrieval_recency_gap_decay,
        )


def is_same_unit(chunk: SubtitleChunk, unit: MediaUnit) -> bool:
    return (
        chunk.tmdb_id == unit.tmdb_id
        and chunk.media_type == unit.media_type.value
        and chunk.season_number == unit.season_number
        and chunk.episode_number == unit.episode_number
    )


def timestamp_proximity(
    chunk: SubtitleChunk,
    unit: MediaUnit,
    cursor_seconds: float,
    config: ScoringConfig,
) -> float:
    """Closeness of a chunk's end to the cursor, 0 for other units."""
    if not is_same_unit(chunk, unit):
        return 0.0
    distance = abs(cursor_seconds - chunk.end_seconds)
    if cursor_seconds > 0:
        score = 1.0 - min(distance / cursor_seconds, 1.0)
    else:
        score = 1.0 if distance == 0 else 0.0
    if distance <= config.proximity_boost_window:
        score = min(score + config.proximity_boost, 1.0)
    return score


def episode_recency(
    chunk: SubtitleChunk,
    unit: MediaUnit,
    proximity: float,
    references_past: bool,
    config: ScoringConfig,
) -> float:
    """How recent a chunk's episode is relative to the viewer's episode."""
    if not unit.is_tv:
        return proximity
    if is_same_unit(chunk, unit):
        return 1.0

    current_season = unit.season_number or 0
    current_episode = unit.episode_number or 0
    chunk_season = chunk.season_number or 0
    chunk_episode = chunk.episode_number or 0

    if chunk_season == current_season:
        gap = abs(current_episode - chunk_episode)
        return max(0.0, config.same_season_base - config.gap_decay * gap)
    if references_past:
        return config.past_reference_recency
    gap = abs(current_season - chunk_season)
    return max(0.0, config.other_season_base - config.gap_decay * gap)


def keyword_overlap(content: str, keywords: list[str], config: ScoringConfig) -> float:
    lowered = content.lower()
    hits = sum(1 for word in keywords if word in lowered)
    return min(hits * config.keyword_hit_score, config.keyword_cap)


def score_candidate(
    chunk: SubtitleChunk,
    similarity: float,
    unit: MediaUnit,
    cursor_seconds: float,
    keywords: list[str],
    references_past: bool,
    config: ScoringConfig,
) -> RetrievalCandidate:
    """Blend similarity, proximity, recency and keyword overlap into one score."""
    proximity = timestamp_proximity(chunk, unit, cursor_seconds, config)
    recency = episode_recency(chunk, unit, proximity, references_past, config)
    keywords_score = keyword_overlap(chunk.content, keywords, config)
    final = (
        config.weight_similarity * similarity
        + config.weight_proximity * proximity
        + config.weight_recency * recency
        + config.weight_keyword * keywords_score
    )
    return RetrievalCandidate(
        chunk=chunk,
        stage="semantic",
        similarity=similarity,
        timestamp_proximity=proximity,
        recency_score=recency,
        keyword_overlap=keywords_score,
        final_score=final,
    )


class HybridRetriever:
    """Retrieves spoiler-safe evidence for a question at a story cursor.

    Stage A takes the chunks around the cursor in chronological order, which
    answers "what just happened" questions. Stage B takes vector-similar
    chunks the viewer has already seen and re-ranks them. If the similarity
    search fails, Stage A is returned alone.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.chunk_repo = ChunkRepository(db_session)
        self.vector_search_repo = VectorSearchRepository(db_session)
        self.scoring = ScoringConfig.from_settings(self.settings)

    async def retrieve(
        self,
        unit: MediaUnit,
        cursor_seconds: float,
        question: str,
        question_embedding: list[float],
        references_past: bool = False,
    ) -> RetrievalResult:
        """Retrieve anchor and semantic evidence.

        Args:
            unit: The media unit being watched
            cursor_seconds: Safe (already clamped) story cursor
            question: Raw question text, used for keyword overlap
            question_embedding: Content-space embedding of the question
            references_past: Result of the cross-season heuristic

        Returns:
            RetrievalResult with anchor chunks (chronological) then semantic
            chunks (by descending final score)
        """
        anchor = await self.get_anchor_chunks(unit, cursor_seconds)
        result = RetrievalResult(anchor=anchor)

        try:
            matches = await self.vector_search_repo.search_chunks(
                query_embedding=question_embedding,
                unit=unit,
                cursor_seconds=cursor_seconds,
                top_k=self.settings.retrieval_semantic_candidates,
            )
        except Exception as e:
            logger.warning(
                f"Similarity search failed for {unit.label}, using anchor chunks only: {e}"
            )
            result.degraded = True
            return result

        seen_ids = {candidate.chunk.id for candidate in anchor}
        keywords = extract_keywords(question, self.scoring.keyword_min_length)
        scored = [
            score_candidate(
                chunk=match.chunk,
                similarity=match.score,
                unit=unit,
                cursor_seconds=cursor_seconds,
                keywords=keywords,
                references_past=references_past,
                config=self.scoring,
            )
            for match in matches
            if match.chunk.id not in seen_ids
        ]
        scored.sort(key=lambda c: (-c.final_score, c.chunk.start_seconds))
        result.semantic = scored[: self.settings.retrieval_semantic_top_k]

        logger.debug(
            f"Retrieved {len(result.anchor)} anchor and {len(result.semantic)} semantic "
            f"chunks for {unit.label} at {cursor_seconds:.0f}s"
        )
        return result

    async def get_anchor_chunks(
        self, unit: MediaUnit, cursor_seconds: float
    ) -> list[RetrievalCandidate]:
        """Chunks in the trailing window before the cursor, oldest first.

        When the window is empty, falls back to the latest-ending chunks that
        start by the cursor, then to the unit's latest-ending chunks, so the
        result is non-empty whenever the unit has any chunk.
        """
        chunks = await self.chunk_repo.get_anchor_window(
            unit,
            cursor_seconds=cursor_seconds,
            window_seconds=self.settings.retrieval_anchor_window_seconds,
            limit=self.settings.retrieval_anchor_query_limit,
        )
        if chunks:
            # Keep the ones nearest the cursor
            chunks = chunks[-self.settings.retrieval_anchor_evidence_limit :]
        else:
            fallback_limit = self.settings.retrieval_anchor_fallback_limit
            chunks = await self.chunk_repo.get_latest_chunks(
                unit, limit=fallback_limit, starting_before=cursor_seconds
            )
            if not chunks:
                chunks = await self.chunk_repo.get_latest_chunks(unit, limit=fallback_limit)

        return [
            RetrievalCandidate(chunk=chunk, stage="anchor")
            for chunk in chunks
        ]
