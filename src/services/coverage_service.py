"""Coverage tracking: how far into a unit the stored subtitles reach."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.domain.media import MediaUnit, format_timestamp
from src.repositories.chunk_repo import ChunkRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoverageResult:
    """Stored-evidence coverage for one request.

    adjusted_cursor_seconds is the cursor every retrieval step must use: the
    requested cursor, clamped down to the latest indexed moment.
    """

    requested_cursor_seconds: float
    adjusted_cursor_seconds: float
    has_data: bool
    coverage_complete: bool
    max_available_seconds: float | None = None
    min_available_seconds: float | None = None

    def disclosure(self) -> str | None:
        """Sentence telling the model the cursor was clamped, if it was."""
        if not self.has_data or self.coverage_complete or self.max_available_seconds is None:
            return None
        return (
            f"Subtitle data for this episode is only available up to "
            f"{format_timestamp(self.max_available_seconds)}, so answer as if the viewer "
            f"is at {format_timestamp(self.max_available_seconds)} rather than "
            f"{format_timestamp(self.requested_cursor_seconds)}, and say so briefly."
        )


def compute_coverage(
    requested_cursor_seconds: float,
    min_start: float | None,
    max_end: float | None,
) -> CoverageResult:
    """Clamp a requested cursor to the stored time range."""
    if min_start is None or max_end is None:
        return CoverageResult(
            requested_cursor_seconds=requested_cursor_seconds,
            adjusted_cursor_seconds=requested_cursor_seconds,
            has_data=False,
            coverage_complete=False,
        )

    complete = requested_cursor_seconds <= max_end
    return CoverageResult(
        requested_cursor_seconds=requested_cursor_seconds,
        adjusted_cursor_seconds=requested_cursor_seconds if complete else max_end,
        has_data=True,
        coverage_complete=complete,
        max_available_seconds=max_end,
        min_available_seconds=min_start,
    )


class CoverageTracker:
    """Computes CoverageResult for a unit from its stored chunk time ranges."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.chunk_repo = ChunkRepository(db_session)

    async def check(self, unit: MediaUnit, requested_cursor_seconds: float) -> CoverageResult:
        min_start, max_end = await self.chunk_repo.get_time_bounds(unit)
        coverage = compute_coverage(requested_cursor_seconds, min_start, max_end)
        if coverage.has_data and not coverage.coverage_complete:
            logger.info(
                f"Cursor {requested_cursor_seconds:.0f}s beyond indexed data for "
                f"{unit.label}; clamped to {coverage.adjusted_cursor_seconds:.0f}s"
            )
        return coverage
