"""Cache-population endpoints: subtitles, season digests, speaker annotation, backfill."""

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, status

from src.core.database import DbSession
from src.core.exceptions import ServiceUnavailableError
from src.models.domain.companion import (
    BackfillRequest,
    BackfillResponse,
    JobQueuedResponse,
    SeasonDigestRequest,
    SeasonDigestResponse,
    SpeakerAnnotationRequest,
    SubtitleCacheRequest,
    SubtitleCacheResponse,
)
from src.services.backfill_service import BackfillService
from src.services.digest_service import SeasonDigestService
from src.services.ingestion_service import IngestionError, IngestionService
from src.services.tmdb_client import TMDbError
from src.workers.enrichment_worker import queue_annotation

router = APIRouter()


def get_ingestion_service(session: DbSession) -> IngestionService:
    """Get ingestion service instance."""
    return IngestionService(session)


def get_digest_service(session: DbSession) -> SeasonDigestService:
    """Get season digest service instance."""
    return SeasonDigestService(session)


def get_backfill_service(session: DbSession) -> BackfillService:
    """Get backfill service instance."""
    return BackfillService(session)


IngestionSvc = Annotated[IngestionService, Depends(get_ingestion_service)]
DigestSvc = Annotated[SeasonDigestService, Depends(get_digest_service)]
BackfillSvc = Annotated[BackfillService, Depends(get_backfill_service)]


@router.post("/subtitles", response_model=SubtitleCacheResponse)
async def cache_subtitles(
    request: SubtitleCacheRequest,
    service: IngestionSvc,
) -> SubtitleCacheResponse:
    """Fetch, chunk and embed subtitles for one movie or episode.

    Idempotent: a unit that is already cached is reported with cached=true.
    found=false means no subtitles exist for the unit.
    """
    try:
        result = await service.ingest(request.to_media_unit())
    except IngestionError as e:
        raise ServiceUnavailableError(detail=str(e)) from e

    return SubtitleCacheResponse(
        found=result.found,
        cached=result.cached,
        chunks_created=result.chunks_created,
        chunks_stored=result.chunks_stored,
        chunks_embedded=result.chunks_embedded,
    )


@router.post("/season-digests", response_model=SeasonDigestResponse)
async def cache_season_digests(
    request: SeasonDigestRequest,
    service: DigestSvc,
) -> SeasonDigestResponse:
    """Build and store digests for the given seasons of a show."""
    try:
        result = await service.cache_seasons(request.tmdb_id, request.season_numbers)
    except TMDbError as e:
        raise ServiceUnavailableError(detail=f"TMDB request failed: {e}") from e

    return SeasonDigestResponse(
        cached=result.cached,
        created=result.created,
        missing=result.missing,
    )


@router.post(
    "/speaker-annotations",
    response_model=JobQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def queue_speaker_annotation(request: SpeakerAnnotationRequest) -> JobQueuedResponse:
    """Queue a background pass that labels speakers in a unit's chunks."""
    try:
        job_id = await asyncio.to_thread(
            queue_annotation,
            request.to_media_unit(),
            None,
            request.force,
        )
    except Exception as e:
        raise ServiceUnavailableError(detail=f"Could not queue annotation job: {e}") from e

    return JobQueuedResponse(job_id=job_id)


@router.post("/embeddings/backfill", response_model=BackfillResponse)
async def backfill_embeddings(
    request: BackfillRequest,
    service: BackfillSvc,
) -> BackfillResponse:
    """Embed one batch of chunks and digests that are missing embeddings."""
    result = await service.run(batch_size=request.batch_size)
    return BackfillResponse(
        chunks_processed=result.chunks_processed,
        chunks_failed=result.chunks_failed,
        chunks_remaining=result.chunks_remaining,
        digests_processed=result.digests_processed,
        digests_failed=result.digests_failed,
        digests_remaining=result.digests_remaining,
    )
