"""Tests for coverage tracking."""

from unittest.mock import AsyncMock, MagicMock

from src.models.domain.media import MediaUnit
from src.services.coverage_service import CoverageTracker, compute_coverage


class TestComputeCoverage:
    """Tests for compute_coverage."""

    def test_cursor_past_indexed_data_is_clamped(self) -> None:
        """A 45:00 cursor against data ending at 40:00 clamps to 2400s."""
        coverage = compute_coverage(2700.0, min_start=0.0, max_end=2400.0)

        assert coverage.has_data is True
        assert coverage.coverage_complete is False
        assert coverage.adjusted_cursor_seconds == 2400.0
        assert coverage.requested_cursor_seconds == 2700.0
        assert coverage.max_available_seconds == 2400.0

        disclosure = coverage.disclosure()
        assert disclosure is not None
        assert "40:00" in disclosure
        assert "45:00" in disclosure

    def test_cursor_within_data(self) -> None:
        coverage = compute_coverage(1200.0, min_start=2.0, max_end=2400.0)

        assert coverage.coverage_complete is True
        assert coverage.adjusted_cursor_seconds == 1200.0
        assert coverage.disclosure() is None

    def test_cursor_exactly_at_end_is_complete(self) -> None:
        coverage = compute_coverage(2400.0, min_start=0.0, max_end=2400.0)

        assert coverage.coverage_complete is True

    def test_no_data(self) -> None:
        coverage = compute_coverage(600.0, min_start=None, max_end=None)

        assert coverage.has_data is False
        assert coverage.coverage_complete is False
        assert coverage.adjusted_cursor_seconds == 600.0
        assert coverage.max_available_seconds is None
        assert coverage.disclosure() is None

    def test_adjusted_never_exceeds_requested(self) -> None:
        for requested in (0.0, 10.0, 2399.0, 2401.0, 99999.0):
            coverage = compute_coverage(requested, min_start=0.0, max_end=2400.0)
            assert coverage.adjusted_cursor_seconds <= requested
            assert coverage.adjusted_cursor_seconds <= 2400.0


class TestCoverageTracker:
    """Tests for CoverageTracker."""

    async def test_reads_bounds_from_repository(self) -> None:
        tracker = CoverageTracker(MagicMock())
        tracker.chunk_repo = MagicMock()
        tracker.chunk_repo.get_time_bounds = AsyncMock(return_value=(0.0, 2400.0))
        unit = MediaUnit.episode(1396, 1, 3)

        coverage = await tracker.check(unit, 2700.0)

        tracker.chunk_repo.get_time_bounds.assert_awaited_once_with(unit)
        assert coverage.adjusted_cursor_seconds == 2400.0
