"""Media identity and story-cursor helpers."""

import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

_TIMESTAMP_PATTERN = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{2})(?:\.\d+)?$")


class MediaType(StrEnum):
    """Kind of narrative media."""

    MOVIE = "movie"
    TV = "tv"


def validate_episode_fields(
    media_type: MediaType,
    season_number: int | None,
    episode_number: int | None,
) -> None:
    """Raise ValueError unless season/episode presence matches the media type."""
    if media_type == MediaType.TV:
        if season_number is None or episode_number is None:
            raise ValueError("TV units require season_number and episode_number")
    elif season_number is not None or episode_number is not None:
        raise ValueError("Movies cannot have season_number or episode_number")


class MediaUnit(BaseModel):
    """A movie, or one episode of a TV season.

    Identity is immutable; movies carry no season/episode numbers and TV
    units must carry both.
    """

    model_config = ConfigDict(frozen=True)

    tmdb_id: int = Field(..., gt=0, description="TMDB identifier of the movie or show")
    media_type: MediaType
    season_number: int | None = Field(None, ge=0)
    episode_number: int | None = Field(None, ge=1)

    @model_validator(mode="after")
    def check_episode_fields(self) -> "MediaUnit":
        validate_episode_fields(self.media_type, self.season_number, self.episode_number)
        return self

    @classmethod
    def movie(cls, tmdb_id: int) -> "MediaUnit":
        return cls(tmdb_id=tmdb_id, media_type=MediaType.MOVIE)

    @classmethod
    def episode(cls, tmdb_id: int, season_number: int, episode_number: int) -> "MediaUnit":
        return cls(
            tmdb_id=tmdb_id,
            media_type=MediaType.TV,
            season_number=season_number,
            episode_number=episode_number,
        )

    @property
    def is_tv(self) -> bool:
        return self.media_type == MediaType.TV

    def with_episode(self, episode_number: int) -> "MediaUnit":
        """Same show and season, different episode."""
        return self.model_copy(update={"episode_number": episode_number})

    @property
    def label(self) -> str:
        """Short human label such as "S2E5" or "movie 603"."""
        if self.is_tv:
            return f"S{self.season_number}E{self.episode_number}"
        return f"movie {self.tmdb_id}"


def format_timestamp(seconds: float) -> str:
    """Format seconds as m:ss, or h:mm:ss once past the first hour."""
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def parse_timestamp(value: str) -> float:
    """Parse an MM:SS or HH:MM:SS cursor into seconds.

    Raises:
        ValueError: If the value is not a recognised timestamp
    """
    match = _TIMESTAMP_PATTERN.match(value.strip())
    if match is None:
        raise ValueError(f"Invalid timestamp '{value}', expected MM:SS or HH:MM:SS")
    hours, minutes, seconds = match.groups()
    if int(seconds) >= 60 or (hours is not None and int(minutes) >= 60):
        raise ValueError(f"Invalid timestamp '{value}', expected MM:SS or HH:MM:SS")
    return float(int(hours or 0) * 3600 + int(minutes) * 60 + int(seconds))
