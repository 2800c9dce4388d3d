"""Background speaker-annotation jobs on an RQ queue."""

import asyncio
import logging
from typing import Any

from redis import Redis
from rq import Queue
from rq.job import JobStatus

from src.core.config import Settings, get_settings
from src.core.database import close_database, init_database, session_scope
from src.models.domain.media import MediaType, MediaUnit
from src.services.speaker_annotation_service import SpeakerAnnotationService

logger = logging.getLogger(__name__)

ENRICHMENT_QUEUE = "enrichment"

PENDING_STATUSES = frozenset(
    {JobStatus.QUEUED, JobStatus.STARTED, JobStatus.DEFERRED, JobStatus.SCHEDULED}
)


def get_redis_connection(settings: Settings | None = None) -> Redis:  # type: ignore[type-arg]
    """Get Redis connection."""
    settings = settings or get_settings()
    return Redis.from_url(str(settings.redis_url))


def get_enrichment_queue(
    settings: Settings | None = None,
    queue_name: str = ENRICHMENT_QUEUE,
) -> Queue:
    """Get the enrichment job queue."""
    conn = get_redis_connection(settings)
    return Queue(queue_name, connection=conn)


def annotation_job_id(unit: MediaUnit) -> str:
    """RQ job id for a unit's annotation; one unit has at most one pending job."""
    if unit.is_tv:
        return f"annotate-{unit.tmdb_id}-s{unit.season_number}e{unit.episode_number}"
    return f"annotate-{unit.tmdb_id}-movie"


def _unit_from_job(
    tmdb_id: int,
    media_type: str,
    season_number: int | None,
    episode_number: int | None,
) -> MediaUnit:
    return MediaUnit(
        tmdb_id=tmdb_id,
        media_type=MediaType(media_type),
        season_number=season_number,
        episode_number=episode_number,
    )


async def process_annotation_job(
    tmdb_id: int,
    media_type: str,
    season_number: int | None = None,
    episode_number: int | None = None,
    title: str | None = None,
    force: bool = False,
) -> dict[str, Any]:
    """Annotate speakers for one unit.

    Failures are logged and reported in the result, never retried.

    Returns:
        Dict with job result information
    """
    unit = _unit_from_job(tmdb_id, media_type, season_number, episode_number)
    logger.info(f"Starting speaker annotation for {tmdb_id} {unit.label}")

    init_database()
    try:
        async with session_scope() as db_session:
            service = SpeakerAnnotationService(db_session)
            result = await service.annotate(unit, title=title, force=force)
    except Exception as e:
        logger.exception(f"Speaker annotation failed for {tmdb_id} {unit.label}: {e}")
        return {"tmdb_id": tmdb_id, "unit": unit.label, "status": "failed", "error": str(e)}
    finally:
        await close_database()

    return {
        "tmdb_id": tmdb_id,
        "unit": unit.label,
        "status": "skipped" if result.already_annotated else "completed",
        "chunks_found": result.chunks_found,
        "chunks_updated": result.chunks_updated,
        "chunks_skipped": result.chunks_skipped,
        "characters_found": result.characters_found,
    }


def queue_annotation(
    unit: MediaUnit,
    title: str | None = None,
    force: bool = False,
    settings: Settings | None = None,
    queue_name: str = ENRICHMENT_QUEUE,
) -> str:
    """Queue a speaker-annotation job unless one is already pending for the unit.

    Returns:
        RQ job ID of the new or the pending job
    """
    queue = get_enrichment_queue(settings, queue_name)
    job_id = annotation_job_id(unit)

    existing = queue.fetch_job(job_id)
    if existing is not None and existing.get_status() in PENDING_STATUSES:
        logger.info(f"Speaker annotation for {unit.tmdb_id} {unit.label} already pending")
        return str(existing.id)

    rq_job = queue.enqueue(
        "src.workers.enrichment_worker.process_annotation_job_sync",
        unit.tmdb_id,
        unit.media_type.value,
        unit.season_number,
        unit.episode_number,
        title,
        force,
        job_id=job_id,
        job_timeout="30m",  # one Claude call per chunk
        result_ttl=86400,
        failure_ttl=86400,
    )

    logger.info(
        f"Queued speaker annotation for {unit.tmdb_id} {unit.label} as RQ job {rq_job.id}"
    )

    return str(rq_job.id)


def process_annotation_job_sync(
    tmdb_id: int,
    media_type: str,
    season_number: int | None = None,
    episode_number: int | None = None,
    title: str | None = None,
    force: bool = False,
) -> dict[str, Any]:
    """Synchronous wrapper for process_annotation_job.

    RQ doesn't natively support async functions, so this wrapper
    runs the async function in an event loop.
    """
    return asyncio.run(
        process_annotation_job(tmdb_id, media_type, season_number, episode_number, title, force)
    )
