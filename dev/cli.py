"""Dev CLI for warming caches and asking questions against a local database."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.database import close_database, init_database, session_scope
from src.models.domain.media import MediaUnit, parse_timestamp

T = TypeVar("T")


def _setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(message)s",
        stream=sys.stderr,
    )
    # Quiet noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("anthropic").setLevel(logging.WARNING)
    logging.getLogger("sentence_transformers").setLevel(logging.WARNING)


def _build_unit(tmdb_id: int, season: int | None, episode: int | None) -> MediaUnit:
    if season is None and episode is None:
        return MediaUnit.movie(tmdb_id)
    if season is None or episode is None:
        raise click.UsageError("--season and --episode must be given together")
    return MediaUnit.episode(tmdb_id, season, episode)


def _run(work: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run one unit of work inside a committed session."""

    async def _go() -> T:
        init_database()
        try:
            async with session_scope() as session:
                return await work(session)
        finally:
            await close_database()

    return asyncio.run(_go())


unit_options = [
    click.argument("tmdb_id", type=int),
    click.option("--season", type=int, default=None, help="Season number (TV only)"),
    click.option("--episode", type=int, default=None, help="Episode number (TV only)"),
]


def with_unit_options(func: Callable[..., None]) -> Callable[..., None]:
    for option in reversed(unit_options):
        func = option(func)
    return func


@click.group()
def cli() -> None:
    """Dev tools for the spoiler-safe companion."""
    _setup_logging()


@cli.command()
@with_unit_options
def ingest(tmdb_id: int, season: int | None, episode: int | None) -> None:
    """Fetch and index subtitles for a movie or episode."""
    from src.services.ingestion_service import IngestionError, IngestionService

    unit = _build_unit(tmdb_id, season, episode)

    async def _work(session: AsyncSession) -> None:
        result = await IngestionService(session).ingest(unit)
        if not result.found:
            click.echo(f"No subtitles found for {unit.label}")
        elif result.cached:
            click.echo(f"{unit.label}: already cached")
        else:
            click.echo(
                f"{unit.label}: chunks={result.chunks_created} "
                f"stored={result.chunks_stored} embedded={result.chunks_embedded}"
            )

    try:
        _run(_work)
    except IngestionError as e:
        raise click.ClickException(str(e)) from e


@cli.command("ingest-file")
@click.argument("srt_file", type=click.Path(exists=True, path_type=Path))
@with_unit_options
def ingest_file(
    srt_file: Path, tmdb_id: int, season: int | None, episode: int | None
) -> None:
    """Index a local .srt file as the subtitles for a movie or episode."""
    from src.services.ingestion_service import IngestionError, IngestionService

    unit = _build_unit(tmdb_id, season, episode)
    document = srt_file.read_text(encoding="utf-8", errors="replace")

    async def _work(session: AsyncSession) -> None:
        result = await IngestionService(session).ingest_document(unit, document)
        click.echo(
            f"{unit.label}: chunks={result.chunks_created} "
            f"stored={result.chunks_stored} embedded={result.chunks_embedded}"
        )

    try:
        _run(_work)
    except IngestionError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.argument("tmdb_id", type=int)
@click.argument("seasons", type=int, nargs=-1, required=True)
def digest(tmdb_id: int, seasons: tuple[int, ...]) -> None:
    """Build season digests for a show."""
    from src.services.digest_service import SeasonDigestService

    async def _work(session: AsyncSession) -> None:
        result = await SeasonDigestService(session).cache_seasons(tmdb_id, list(seasons))
        click.echo(
            f"cached={result.cached} created={result.created} missing={result.missing}"
        )

    _run(_work)


@cli.command()
@click.option("--batch-size", default=10, show_default=True, type=click.IntRange(1, 100))
@click.option("--until-done", is_flag=True, help="Repeat until nothing is left")
def backfill(batch_size: int, until_done: bool) -> None:
    """Embed chunks and digests that were stored without embeddings."""
    from src.services.backfill_service import BackfillResult, BackfillService

    async def _work(session: AsyncSession) -> BackfillResult:
        return await BackfillService(session).run(batch_size=batch_size)

    # Stop once every item still left has failed since the last success
    failed_since_progress = 0
    while True:
        result = _run(_work)
        click.echo(
            f"chunks: {result.chunks_processed} done, {result.chunks_failed} failed, "
            f"{result.chunks_remaining} left | digests: {result.digests_processed} done, "
            f"{result.digests_failed} failed, {result.digests_remaining} left"
        )
        processed = result.chunks_processed + result.digests_processed
        failed = result.chunks_failed + result.digests_failed
        remaining = result.chunks_remaining + result.digests_remaining
        if processed:
            failed_since_progress = 0
        failed_since_progress += failed
        if not until_done or remaining == 0 or (processed == 0 and failed == 0):
            break
        if failed_since_progress >= remaining:
            break


@cli.command()
@with_unit_options
@click.option("--at", "timestamp", required=True, help="Playback position, MM:SS or HH:MM:SS")
@click.option("--title", default=None, help="Display title")
@click.argument("question")
def ask(
    tmdb_id: int,
    season: int | None,
    episode: int | None,
    timestamp: str,
    title: str | None,
    question: str,
) -> None:
    """Ask a spoiler-safe question at a playback position."""
    from src.services.companion_service import CompanionError, CompanionService

    unit = _build_unit(tmdb_id, season, episode)
    try:
        cursor = parse_timestamp(timestamp)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="--at") from e

    async def _work(session: AsyncSession) -> None:
        answer = await CompanionService(session).ask(
            unit, cursor_seconds=cursor, question=question, title=title
        )
        click.echo(f"\n{answer.answer}")
        click.echo(f"\n--- {answer.evidence_count} evidence chunks ---")
        if not answer.coverage_complete:
            click.echo(
                f"(cursor clamped to {answer.adjusted_cursor_seconds:.0f}s; "
                f"subtitles end at {answer.max_available_seconds:.0f}s)"
            )

    try:
        _run(_work)
    except CompanionError as e:
        raise click.ClickException(e.reason) from e


@cli.command()
def worker() -> None:
    """Run an RQ worker for the enrichment queue."""
    from rq import Worker

    from src.workers.enrichment_worker import ENRICHMENT_QUEUE, get_redis_connection

    Worker([ENRICHMENT_QUEUE], connection=get_redis_connection()).work()


if __name__ == "__main__":
    cli()
