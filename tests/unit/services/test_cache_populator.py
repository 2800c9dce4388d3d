"""Tests for the lazy cache populator."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.models.domain.media import MediaUnit
from src.services.cache_populator import CachePopulator
from src.services.digest_service import DigestCacheResult
from src.services.ingestion_service import IngestionError, IngestResult


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("src.services.cache_populator.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture
def mock_settings() -> MagicMock:
    settings = MagicMock()
    settings.populator_episode_delay_seconds = 1.0
    settings.populator_max_digest_seasons = 3
    settings.speaker_annotation_enabled = True
    return settings


@pytest.fixture
def ingestion_service() -> MagicMock:
    service = MagicMock()
    service.ingest = AsyncMock(return_value=IngestResult(found=True, chunks_created=4))
    return service


@pytest.fixture
def digest_service() -> MagicMock:
    service = MagicMock()
    service.cache_seasons = AsyncMock(return_value=DigestCacheResult(created=[1, 2]))
    return service


@pytest.fixture
def enqueue() -> MagicMock:
    return MagicMock(return_value="job-123")


@pytest.fixture
def populator(
    mock_settings: MagicMock,
    ingestion_service: MagicMock,
    digest_service: MagicMock,
    enqueue: MagicMock,
) -> CachePopulator:
    session = MagicMock()
    session.rollback = AsyncMock()
    populator = CachePopulator(
        session,
        settings=mock_settings,
        ingestion_service=ingestion_service,
        digest_service=digest_service,
        enqueue_annotation=enqueue,
    )
    populator.chunk_repo = MagicMock()
    populator.chunk_repo.is_fully_ingested = AsyncMock(return_value=False)
    return populator


class TestPopulate:
    """Tests for CachePopulator.populate."""

    async def test_ingests_missing_episodes_in_order(
        self, populator: CachePopulator, ingestion_service: MagicMock, no_sleep: AsyncMock
    ) -> None:
        result = await populator.populate(MediaUnit.episode(1396, 1, 3))

        ingested = [c.args[0].episode_number for c in ingestion_service.ingest.call_args_list]
        assert ingested == [1, 2, 3]
        assert result.ingested == ["S1E1", "S1E2", "S1E3"]
        assert no_sleep.await_count == 2

    async def test_skips_cached_episodes(
        self, populator: CachePopulator, ingestion_service: MagicMock
    ) -> None:
        populator.chunk_repo.is_fully_ingested.side_effect = lambda unit: unit.episode_number != 2

        result = await populator.populate(MediaUnit.episode(1396, 1, 3))

        assert result.ingested == ["S1E2"]
        ingestion_service.ingest.assert_awaited_once()

    async def test_movie_ingests_itself(
        self, populator: CachePopulator, ingestion_service: MagicMock, digest_service: MagicMock
    ) -> None:
        result = await populator.populate(MediaUnit.movie(603))

        assert result.ingested == ["movie 603"]
        digest_service.cache_seasons.assert_not_called()
        assert ingestion_service.ingest.call_args.args[0] == MediaUnit.movie(603)

    async def test_failures_are_recorded_not_raised(
        self, populator: CachePopulator, ingestion_service: MagicMock
    ) -> None:
        ingestion_service.ingest.side_effect = [
            IngestionError("download failed"),
            IngestResult(found=False),
        ]

        result = await populator.populate(MediaUnit.episode(1396, 1, 2))

        assert result.ingested == []
        assert result.unavailable == ["S1E1", "S1E2"]

    async def test_unexpected_ingestion_error_is_recorded(
        self, populator: CachePopulator, ingestion_service: MagicMock
    ) -> None:
        """A provider fault outside IngestionError still never reaches the caller."""
        ingestion_service.ingest.side_effect = [
            ValueError("Expecting value: line 1 column 1 (char 0)"),
            IngestResult(found=True, chunks_created=2),
        ]

        result = await populator.populate(MediaUnit.episode(1396, 1, 2))

        assert result.unavailable == ["S1E1"]
        assert result.ingested == ["S1E2"]
        populator.db_session.rollback.assert_awaited_once()

    async def test_caches_prior_season_digests(
        self, populator: CachePopulator, digest_service: MagicMock
    ) -> None:
        populator.chunk_repo.is_fully_ingested.return_value = True

        result = await populator.populate(MediaUnit.episode(1396, 5, 1))

        digest_service.cache_seasons.assert_awaited_once_with(1396, [2, 3, 4])
        assert result.digests_created == [1, 2]

    async def test_digest_failure_rolls_back(
        self, populator: CachePopulator, digest_service: MagicMock
    ) -> None:
        digest_service.cache_seasons.side_effect = RuntimeError("tmdb down")

        result = await populator.populate(MediaUnit.episode(1396, 2, 1))

        assert result.digests_created == []
        populator.db_session.rollback.assert_awaited_once()

    async def test_queues_annotation_for_cached_unit(
        self, populator: CachePopulator, enqueue: MagicMock
    ) -> None:
        populator.chunk_repo.is_fully_ingested.return_value = True
        unit = MediaUnit.episode(1396, 1, 3)

        with patch("src.services.cache_populator.SpeakerAnnotationService") as annotation_cls:
            annotation_cls.return_value.needs_annotation = AsyncMock(return_value=True)
            result = await populator.populate(unit, title="Breaking Bad")

        enqueue.assert_called_once_with(unit, "Breaking Bad")
        assert result.enrichment_job_id == "job-123"

    async def test_queue_failure_is_ignored(
        self, populator: CachePopulator, enqueue: MagicMock
    ) -> None:
        populator.chunk_repo.is_fully_ingested.return_value = True
        enqueue.side_effect = ConnectionError("redis down")

        with patch("src.services.cache_populator.SpeakerAnnotationService") as annotation_cls:
            annotation_cls.return_value.needs_annotation = AsyncMock(return_value=True)
            result = await populator.populate(MediaUnit.episode(1396, 1, 3))

        assert result.enrichment_job_id is None

    async def test_fresh_unit_is_not_queued(
        self, populator: CachePopulator, enqueue: MagicMock
    ) -> None:
        await populator.populate(MediaUnit.episode(1396, 1, 1))

        enqueue.assert_not_called()
