"""Pydantic schemas for the companion question-answering API."""

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from src.models.domain.media import (
    MediaType,
    MediaUnit,
    parse_timestamp,
    validate_episode_fields,
)


class HistoryTurn(BaseModel):
    """A prior question or answer in the same companion conversation."""

    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1, max_length=4000)


class AskRequest(BaseModel):
    """Request schema for asking a spoiler-safe question."""

    tmdb_id: int = Field(..., gt=0)
    media_type: MediaType
    season_number: int | None = Field(None, ge=0)
    episode_number: int | None = Field(None, ge=1)
    timestamp: str | None = Field(
        None, description="Viewer position as MM:SS or HH:MM:SS"
    )
    cursor_seconds: float | None = Field(
        None, ge=0, description="Viewer position in seconds (overrides timestamp)"
    )
    question: str = Field(..., min_length=1, max_length=2000)
    title: str | None = Field(None, max_length=500)
    history: list[HistoryTurn] = Field(default_factory=list, max_length=20)
    remaining_free_questions: int = Field(
        0, ge=0, description="Free questions left, metered by the caller"
    )
    coins_consumed: int = Field(0, ge=0, description="Coins charged by the caller")

    @model_validator(mode="after")
    def check_cursor(self) -> "AskRequest":
        validate_episode_fields(self.media_type, self.season_number, self.episode_number)
        if self.cursor_seconds is None and self.timestamp is None:
            raise ValueError("Either timestamp or cursor_seconds is required")
        if self.cursor_seconds is None:
            # Raises ValueError, which pydantic reports as a 422
            parse_timestamp(self.timestamp or "")
        return self

    def to_media_unit(self) -> MediaUnit:
        return MediaUnit(
            tmdb_id=self.tmdb_id,
            media_type=self.media_type,
            season_number=self.season_number,
            episode_number=self.episode_number,
        )

    def resolved_cursor_seconds(self) -> float:
        if self.cursor_seconds is not None:
            return self.cursor_seconds
        return parse_timestamp(self.timestamp or "")


class AskResponse(BaseModel):
    """Response schema for a companion answer."""

    answer: str
    remaining_free_questions: int
    coins_consumed: int
    evidence_count: int = Field(..., ge=0, description="Chunks placed in the prompt")
    max_available_seconds: float | None = Field(
        None, description="Latest indexed subtitle time for the unit"
    )
    coverage_complete: bool
    adjusted_cursor_seconds: float


class SubtitleCacheRequest(BaseModel):
    """Request schema for ingesting one unit's subtitles."""

    tmdb_id: int = Field(..., gt=0)
    media_type: MediaType
    season_number: int | None = Field(None, ge=0)
    episode_number: int | None = Field(None, ge=1)

    @model_validator(mode="after")
    def check_unit(self) -> "SubtitleCacheRequest":
        validate_episode_fields(self.media_type, self.season_number, self.episode_number)
        return self

    def to_media_unit(self) -> MediaUnit:
        return MediaUnit(
            tmdb_id=self.tmdb_id,
            media_type=self.media_type,
            season_number=self.season_number,
            episode_number=self.episode_number,
        )


class SubtitleCacheResponse(BaseModel):
    """Outcome of a subtitle ingestion."""

    found: bool
    cached: bool = Field(..., description="True if chunks already existed")
    chunks_created: int = 0
    chunks_stored: int = 0
    chunks_embedded: int = 0


class SeasonDigestRequest(BaseModel):
    """Request schema for caching season digests."""

    tmdb_id: int = Field(..., gt=0)
    season_numbers: list[int] = Field(..., min_length=1, max_length=50)


class SeasonDigestResponse(BaseModel):
    """Which seasons were newly cached and which already existed."""

    cached: list[int] = Field(default_factory=list)
    created: list[int] = Field(default_factory=list)
    missing: list[int] = Field(
        default_factory=list, description="Seasons the metadata provider lacks"
    )


class SpeakerAnnotationRequest(SubtitleCacheRequest):
    """Request schema for queueing a speaker-annotation pass."""

    force: bool = Field(False, description="Re-annotate even if markers exist")


class JobQueuedResponse(BaseModel):
    """Acknowledgement for a queued background job."""

    job_id: str
    status: str = "queued"


class BackfillRequest(BaseModel):
    """Request schema for filling missing embeddings."""

    batch_size: int = Field(10, ge=1, le=100)


class BackfillResponse(BaseModel):
    """Counts from one backfill pass."""

    chunks_processed: int
    chunks_failed: int
    chunks_remaining: int
    digests_processed: int
    digests_failed: int
    digests_remaining: int
