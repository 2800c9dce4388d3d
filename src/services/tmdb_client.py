"""TMDB v3 client for title metadata, cast lists and season details."""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Annotated, Any, Union

import httpx
from pydantic import BaseModel, Discriminator, Tag, TypeAdapter

from src.core.config import Settings, get_settings
from src.models.domain.media import MediaUnit
from src.services.embedding_client import parse_retry_after

logger = logging.getLogger(__name__)

MAX_CAST_MEMBERS = 25

_CREDIT_NOTE_PATTERN = re.compile(r"\((?:voice|uncredited)\)", re.IGNORECASE)


class TMDbError(Exception):
    """Error from TMDB API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# TMDB returns two cast shapes: per-title/per-episode credits carry
# `character`, aggregate TV credits carry a `roles` list instead.


class CreditedRole(BaseModel):
    character: str | None = None


class EpisodeCastEntry(BaseModel):
    name: str | None = None
    original_name: str | None = None
    character: str | None = None

    def character_name(self) -> str | None:
        return self.character


class AggregateCastEntry(BaseModel):
    name: str | None = None
    original_name: str | None = None
    roles: list[CreditedRole] = []

    def character_name(self) -> str | None:
        return self.roles[0].character if self.roles else None


def _cast_shape(value: Any) -> str:
    if isinstance(value, dict):
        return "aggregate" if "roles" in value else "episode"
    return "aggregate" if hasattr(value, "roles") else "episode"


RawCastEntry = Annotated[
    Union[  # noqa: UP007
        Annotated[AggregateCastEntry, Tag("aggregate")],
        Annotated[EpisodeCastEntry, Tag("episode")],
    ],
    Discriminator(_cast_shape),
]

_cast_adapter: TypeAdapter[list[RawCastEntry]] = TypeAdapter(list[RawCastEntry])


@dataclass(frozen=True)
class CastMember:
    """A character and the actor who plays them."""

    character: str
    actor: str

    def describe(self) -> str:
        return f"{self.character} (played by {self.actor})"


def normalize_cast(
    raw_cast: list[dict[str, Any]],
    limit: int = MAX_CAST_MEMBERS,
) -> list[CastMember]:
    """Normalize either TMDB cast shape into CastMember records.

    Credit notes like "(voice)" are stripped, characters are deduplicated
    case-insensitively and only the first `limit` billed entries are read.
    """
    members: list[CastMember] = []
    seen: set[str] = set()
    for entry in _cast_adapter.validate_python(raw_cast[:limit]):
        character = entry.character_name()
        if not character:
            continue
        character = _CREDIT_NOTE_PATTERN.sub("", character).strip()
        key = character.lower()
        if not character or key in seen:
            continue
        seen.add(key)
        actor = entry.name or entry.original_name or "Unknown"
        members.append(CastMember(character=character, actor=actor))
    return members


@dataclass
class TitleMetadata:
    """Background facts about a title; never used as plot evidence."""

    title: str
    year: str | None = None
    genres: list[str] = field(default_factory=list)
    tagline: str | None = None
    runtime_minutes: int | None = None
    cast: list[CastMember] = field(default_factory=list)


@dataclass
class EpisodeSummary:
    episode_number: int
    name: str
    overview: str


@dataclass
class SeasonDetails:
    """One season as described by TMDB."""

    season_number: int
    name: str
    overview: str
    episodes: list[EpisodeSummary] = field(default_factory=list)


class TMDbClient:
    """Client for TMDB v3 endpoints used by the companion."""

    BASE_URL = "https://api.themoviedb.org/3"
    MAX_RETRIES = 3
    RETRY_DELAY = 1.0  # seconds

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client (lazy initialization)."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.BASE_URL,
                params={"api_key": self.settings.tmdb_api_key},
                headers={"Accept": "application/json"},
                timeout=15.0,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_title_metadata(self, unit: MediaUnit) -> TitleMetadata | None:
        """Fetch title, year, genres, tagline, runtime and cast.

        Returns:
            TitleMetadata, or None if TMDB does not know the title
        """
        path = f"/{'tv' if unit.is_tv else 'movie'}/{unit.tmdb_id}"
        data = await self._get_json(path)
        if data is None:
            return None

        date = data.get("release_date") or data.get("first_air_date") or ""
        runtime = data.get("runtime")
        if runtime is None and data.get("episode_run_time"):
            runtime = data["episode_run_time"][0]

        return TitleMetadata(
            title=data.get("title") or data.get("name") or "Unknown title",
            year=date.split("-")[0] or None,
            genres=[g["name"] for g in data.get("genres") or [] if g.get("name")],
            tagline=data.get("tagline") or None,
            runtime_minutes=runtime,
            cast=await self.get_cast(unit),
        )

    async def get_cast(self, unit: MediaUnit) -> list[CastMember]:
        """Fetch the cast for a unit.

        Episodes use the episode's own credits, falling back to the show's
        aggregate credits when the episode lists nobody.
        """
        if not unit.is_tv:
            data = await self._get_json(f"/movie/{unit.tmdb_id}/credits")
            return normalize_cast((data or {}).get("cast") or [])

        data = await self._get_json(
            f"/tv/{unit.tmdb_id}/season/{unit.season_number}"
            f"/episode/{unit.episode_number}/credits"
        )
        cast = normalize_cast((data or {}).get("cast") or [])
        if cast:
            return cast

        data = await self._get_json(f"/tv/{unit.tmdb_id}/aggregate_credits")
        return normalize_cast((data or {}).get("cast") or [])

    async def get_season(self, tmdb_id: int, season_number: int) -> SeasonDetails | None:
        """Fetch a season's name, overview and per-episode summaries.

        Returns:
            SeasonDetails, or None if the season does not exist
        """
        data = await self._get_json(f"/tv/{tmdb_id}/season/{season_number}")
        if data is None:
            return None

        episodes = [
            EpisodeSummary(
                episode_number=int(ep["episode_number"]),
                name=ep.get("name") or f"Episode {ep['episode_number']}",
                overview=ep.get("overview") or "",
            )
            for ep in data.get("episodes") or []
            if ep.get("episode_number") is not None
        ]
        episodes.sort(key=lambda e: e.episode_number)

        return SeasonDetails(
            season_number=season_number,
            name=data.get("name") or f"Season {season_number}",
            overview=data.get("overview") or "",
            episodes=episodes,
        )

    async def _get_json(self, path: str, **params: Any) -> dict[str, Any] | None:
        """GET a TMDB resource, returning None on 404.

        Raises:
            TMDbError: On other failures after retries
        """
        last_error: Exception | None = None

        for attempt in range(self.MAX_RETRIES):
            try:
                response = await self.client.get(path, params=params or None)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = e
                delay = self.RETRY_DELAY * (2**attempt)
                logger.warning(
                    f"TMDB request error, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES}): {e}"
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code == 404:
                return None

            if response.status_code == 429 or response.status_code >= 500:
                last_error = TMDbError(
                    f"TMDB returned {response.status_code}",
                    status_code=response.status_code,
                )
                hint = parse_retry_after(response.headers.get("Retry-After"))
                delay = hint if hint is not None else self.RETRY_DELAY * (2**attempt)
                logger.warning(
                    f"TMDB status {response.status_code}, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code != 200:
                raise TMDbError(
                    f"TMDB request failed: {response.text[:200]}",
                    status_code=response.status_code,
                )
            data: dict[str, Any] = response.json()
            return data

        raise TMDbError(f"TMDB request failed after {self.MAX_RETRIES} attempts: {last_error}")
