"""Tests for the two-stage hybrid retriever."""

from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.config import Settings, get_settings
from src.models.domain.media import MediaUnit
from src.repositories.vector_search_repo import ChunkSearchResult
from src.services.hybrid_retriever import (
    HybridRetriever,
    RetrievalCandidate,
    ScoringConfig,
    episode_recency,
    keyword_overlap,
    score_candidate,
    timestamp_proximity,
)

UNIT = MediaUnit.episode(1396, 1, 3)
EMBEDDING = [0.1] * 1536


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def retriever(settings: Settings) -> HybridRetriever:
    """Retriever with mocked repositories."""
    retriever = HybridRetriever(MagicMock(), settings=settings)
    retriever.chunk_repo = MagicMock()
    retriever.chunk_repo.get_anchor_window = AsyncMock(return_value=[])
    retriever.chunk_repo.get_latest_chunks = AsyncMock(return_value=[])
    retriever.vector_search_repo = MagicMock()
    retriever.vector_search_repo.search_chunks = AsyncMock(return_value=[])
    return retriever


class TestAnchorStage:
    """Tests for Stage A."""

    async def test_window_query_uses_trailing_five_minutes(
        self, retriever: HybridRetriever, make_chunk: Callable
    ) -> None:
        """What-just-happened at 20:00 asks for chunks overlapping 15:00-20:00."""
        window = [make_chunk(900 + 60 * i, 960 + 60 * i, chunk_index=i) for i in range(5)]
        retriever.chunk_repo.get_anchor_window.return_value = window

        anchors = await retriever.get_anchor_chunks(UNIT, 1200.0)

        retriever.chunk_repo.get_anchor_window.assert_awaited_once_with(
            UNIT, cursor_seconds=1200.0, window_seconds=300.0, limit=15
        )
        assert [a.chunk for a in anchors] == window
        assert all(a.stage == "anchor" for a in anchors)
        starts = [a.chunk.start_seconds for a in anchors]
        assert starts == sorted(starts)
        assert all(a.chunk.start_seconds <= 1200 and a.chunk.end_seconds >= 900 for a in anchors)

    async def test_keeps_ten_nearest_cursor(
        self, retriever: HybridRetriever, make_chunk: Callable
    ) -> None:
        window = [make_chunk(900 + 20 * i, 930 + 20 * i, chunk_index=i) for i in range(15)]
        retriever.chunk_repo.get_anchor_window.return_value = window

        anchors = await retriever.get_anchor_chunks(UNIT, 1200.0)

        assert [a.chunk for a in anchors] == window[5:]

    async def test_falls_back_to_latest_chunks_before_cursor(
        self, retriever: HybridRetriever, make_chunk: Callable
    ) -> None:
        earlier = [make_chunk(100.0, 160.0), make_chunk(160.0, 220.0, chunk_index=1)]
        retriever.chunk_repo.get_latest_chunks.return_value = earlier

        anchors = await retriever.get_anchor_chunks(UNIT, 1200.0)

        retriever.chunk_repo.get_latest_chunks.assert_awaited_once_with(
            UNIT, limit=10, starting_before=1200.0
        )
        assert [a.chunk for a in anchors] == earlier

    async def test_never_empty_when_unit_has_chunks(
        self, retriever: HybridRetriever, make_chunk: Callable
    ) -> None:
        """A cursor before all indexed content still gets anchor evidence."""
        later = [make_chunk(30.0, 90.0)]
        retriever.chunk_repo.get_latest_chunks.side_effect = [[], later]

        anchors = await retriever.get_anchor_chunks(UNIT, 5.0)

        assert [a.chunk for a in anchors] == later
        assert retriever.chunk_repo.get_latest_chunks.await_count == 2


class TestRetrieve:
    """Tests for the combined retrieval."""

    async def test_no_chunks_and_search_error_returns_empty(
        self, retriever: HybridRetriever
    ) -> None:
        """Zero chunks plus a failing similarity search is an empty, degraded result."""
        retriever.vector_search_repo.search_chunks.side_effect = RuntimeError("ivfflat gone")

        result = await retriever.retrieve(UNIT, 600.0, "what just happened", EMBEDDING)

        assert result.evidence == []
        assert result.degraded is True

    async def test_search_error_keeps_anchor_evidence(
        self, retriever: HybridRetriever, make_chunk: Callable
    ) -> None:
        anchor = [make_chunk(500.0, 590.0)]
        retriever.chunk_repo.get_anchor_window.return_value = anchor
        retriever.vector_search_repo.search_chunks.side_effect = RuntimeError("timeout")

        result = await retriever.retrieve(UNIT, 600.0, "who is that", EMBEDDING)

        assert [c.chunk for c in result.evidence] == anchor
        assert result.semantic == []

    async def test_semantic_stage_dedupes_and_ranks(
        self, retriever: HybridRetriever, make_chunk: Callable
    ) -> None:
        anchor_chunk = make_chunk(500.0, 590.0, content="Walt cooks")
        near = make_chunk(400.0, 480.0, content="Jesse meets Walt", chunk_index=1)
        far = make_chunk(10.0, 60.0, content="opening titles", chunk_index=2)
        retriever.chunk_repo.get_anchor_window.return_value = [anchor_chunk]
        retriever.vector_search_repo.search_chunks.return_value = [
            ChunkSearchResult(chunk=anchor_chunk, score=0.99),
            ChunkSearchResult(chunk=far, score=0.8),
            ChunkSearchResult(chunk=near, score=0.7),
        ]

        result = await retriever.retrieve(UNIT, 600.0, "Why did Jesse show up?", EMBEDDING)

        assert [c.chunk for c in result.anchor] == [anchor_chunk]
        assert [c.chunk for c in result.semantic] == [near, far]
        assert all(c.stage == "semantic" for c in result.semantic)
        assert result.evidence[0].chunk is anchor_chunk
        call = retriever.vector_search_repo.search_chunks.call_args.kwargs
        assert call["cursor_seconds"] == 600.0
        assert call["top_k"] == 60

    async def test_semantic_capped_at_ten(
        self, retriever: HybridRetriever, make_chunk: Callable
    ) -> None:
        matches = [
            ChunkSearchResult(chunk=make_chunk(10.0 * i, 10.0 * i + 9, chunk_index=i), score=0.5)
            for i in range(30)
        ]
        retriever.vector_search_repo.search_chunks.return_value = matches

        result = await retriever.retrieve(UNIT, 600.0, "anything", EMBEDDING)

        assert len(result.semantic) == 10
        scores = [c.final_score for c in result.semantic]
        assert scores == sorted(scores, reverse=True)


class TestScoring:
    """Tests for the Stage B scoring functions."""

    config = ScoringConfig()

    def test_proximity_is_zero_for_other_units(self, make_chunk: Callable) -> None:
        chunk = make_chunk(100.0, 200.0, episode=2)
        assert timestamp_proximity(chunk, UNIT, 600.0, self.config) == 0.0

    def test_proximity_boost_near_cursor(self, make_chunk: Callable) -> None:
        chunk = make_chunk(500.0, 540.0)
        # 1 - 60/600 = 0.9, +0.3 boost, capped at 1.0
        assert timestamp_proximity(chunk, UNIT, 600.0, self.config) == 1.0

    def test_proximity_without_boost(self, make_chunk: Callable) -> None:
        chunk = make_chunk(0.0, 300.0)
        # distance 900 > boost window; 1 - 900/1200
        assert timestamp_proximity(chunk, UNIT, 1200.0, self.config) == pytest.approx(0.25)

    def test_proximity_at_cursor_zero(self, make_chunk: Callable) -> None:
        assert timestamp_proximity(make_chunk(0.0, 0.0), UNIT, 0.0, self.config) == 1.0
        # distance 400 > boost window and no division by zero
        assert timestamp_proximity(make_chunk(0.0, 400.0), UNIT, 0.0, self.config) == 0.0

    def test_recency_same_unit(self, make_chunk: Callable) -> None:
        assert episode_recency(make_chunk(0.0, 10.0), UNIT, 0.2, False, self.config) == 1.0

    def test_recency_same_season_decays_by_gap(self, make_chunk: Callable) -> None:
        chunk = make_chunk(0.0, 10.0, episode=1)
        assert episode_recency(chunk, UNIT, 0.0, False, self.config) == pytest.approx(0.5)

    def test_recency_other_season(self, make_chunk: Callable) -> None:
        unit = MediaUnit.episode(1396, 3, 1)
        chunk = make_chunk(0.0, 10.0, season=1, episode=5)
        assert episode_recency(chunk, unit, 0.0, False, self.config) == pytest.approx(0.1)
        assert episode_recency(chunk, unit, 0.0, True, self.config) == 0.5

    def test_recency_for_movies_is_proximity(self, make_chunk: Callable) -> None:
        movie = MediaUnit.movie(603)
        chunk = make_chunk(0.0, 10.0, tmdb_id=603, season=None, episode=None)
        assert episode_recency(chunk, movie, 0.42, False, self.config) == 0.42

    def test_keyword_overlap_capped(self) -> None:
        content = "walter jesse skyler hank marie"
        assert keyword_overlap(content, ["walter"], self.config) == pytest.approx(0.15)
        assert keyword_overlap(
            content, ["walter", "jesse", "skyler", "hank"], self.config
        ) == pytest.approx(0.4)
        assert keyword_overlap(content, ["saul"], self.config) == 0.0

    def test_final_score_weights(self, make_chunk: Callable) -> None:
        chunk = make_chunk(0.0, 300.0, content="walter")

        candidate = score_candidate(
            chunk, 0.8, UNIT, 1200.0, ["walter"], False, self.config
        )

        expected = 0.25 * 0.8 + 0.45 * 0.25 + 0.20 * 1.0 + 0.10 * 0.15
        assert candidate.final_score == pytest.approx(expected)
        assert candidate.similarity == 0.8


class TestCitationLabel:
    """Tests for RetrievalCandidate.citation_label."""

    def test_episode_label(self, make_chunk: Callable) -> None:
        candidate = RetrievalCandidate(chunk=make_chunk(185.0, 280.0, season=1, episode=2),
                                       stage="anchor")
        assert candidate.citation_label() == "S1E2 3:05-4:40"

    def test_movie_label(self, make_chunk: Callable) -> None:
        chunk = make_chunk(185.0, 280.0, tmdb_id=603, season=None, episode=None)
        assert RetrievalCandidate(chunk=chunk, stage="anchor").citation_label() == "3:05-4:40"
