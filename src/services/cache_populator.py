"""Makes sure chunks and season digests exist before retrieval runs."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.models.domain.media import MediaUnit
from src.repositories.chunk_repo import ChunkRepository
from src.services.digest_service import SeasonDigestService
from src.services.ingestion_service import IngestionError, IngestionService
from src.services.speaker_annotation_service import SpeakerAnnotationService
from src.workers.enrichment_worker import queue_annotation

logger = logging.getLogger(__name__)

AnnotationEnqueuer = Callable[..., str]


@dataclass
class PopulationResult:
    """What a populate pass did."""

    ingested: list[str] = field(default_factory=list)
    unavailable: list[str] = field(default_factory=list)
    digests_created: list[int] = field(default_factory=list)
    enrichment_job_id: str | None = None


class CachePopulator:
    """Lazily fills the chunk and digest stores for a question's unit.

    Missing episodes up to the current one are ingested in order, with a
    short pause between ingestions. Missing digests for earlier seasons are
    built. Speaker annotation of the current unit is queued, not awaited.
    No failure here propagates to the caller.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        settings: Settings | None = None,
        ingestion_service: IngestionService | None = None,
        digest_service: SeasonDigestService | None = None,
        enqueue_annotation: AnnotationEnqueuer | None = None,
    ) -> None:
        self.db_session = db_session
        self.settings = settings or get_settings()
        self.chunk_repo = ChunkRepository(db_session)
        self.ingestion_service = ingestion_service or IngestionService(
            db_session, settings=self.settings
        )
        self.digest_service = digest_service or SeasonDigestService(
            db_session, settings=self.settings
        )
        self.enqueue_annotation = enqueue_annotation or queue_annotation

    async def populate(self, unit: MediaUnit, title: str | None = None) -> PopulationResult:
        """Ensure evidence exists for `unit` and everything before it."""
        result = PopulationResult()

        units = [unit]
        if unit.is_tv and unit.episode_number is not None:
            units = [unit.with_episode(n) for n in range(1, unit.episode_number + 1)]

        current_had_chunks = False
        ingested_any = False
        for target in units:
            if await self.chunk_repo.is_fully_ingested(target):
                if target == unit:
                    current_had_chunks = True
                continue
            if ingested_any:
                await asyncio.sleep(self.settings.populator_episode_delay_seconds)
            ingested_any = True
            await self._ingest(target, result)

        if current_had_chunks and self.settings.speaker_annotation_enabled:
            result.enrichment_job_id = await self._queue_enrichment(unit, title)

        if unit.is_tv and unit.season_number is not None and unit.season_number > 1:
            await self._ensure_digests(unit, result)

        return result

    async def _ingest(self, target: MediaUnit, result: PopulationResult) -> None:
        try:
            outcome = await self.ingestion_service.ingest(target)
        except IngestionError as e:
            logger.warning(f"Ingestion failed for {target.tmdb_id} {target.label}: {e}")
            result.unavailable.append(target.label)
            return
        except Exception as e:
            logger.exception(
                f"Unexpected ingestion error for {target.tmdb_id} {target.label}: {e}"
            )
            await self.db_session.rollback()
            result.unavailable.append(target.label)
            return
        if outcome.found:
            result.ingested.append(target.label)
        else:
            result.unavailable.append(target.label)

    async def _queue_enrichment(self, unit: MediaUnit, title: str | None) -> str | None:
        """Queue speaker annotation if the unit has no markers yet; never raises."""
        try:
            annotation = SpeakerAnnotationService(self.db_session, settings=self.settings)
            if not await annotation.needs_annotation(unit):
                return None
            job_id = await asyncio.to_thread(self.enqueue_annotation, unit, title)
        except Exception as e:
            logger.warning(f"Could not queue speaker annotation for {unit.label}: {e}")
            return None
        return str(job_id)

    async def _ensure_digests(self, unit: MediaUnit, result: PopulationResult) -> None:
        current = unit.season_number or 0
        first = max(1, current - self.settings.populator_max_digest_seasons)
        try:
            cached = await self.digest_service.cache_seasons(
                unit.tmdb_id, list(range(first, current))
            )
        except Exception as e:
            logger.warning(f"Season digest caching failed for show {unit.tmdb_id}: {e}")
            await self.db_session.rollback()
            return
        result.digests_created = cached.created
