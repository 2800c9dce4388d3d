"""OpenSubtitles REST client: find, download and return SRT text."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from src.core.config import Settings, get_settings
from src.models.domain.media import MediaUnit
from src.services.embedding_client import parse_retry_after

logger = logging.getLogger(__name__)


class OpenSubtitlesError(Exception):
    """Error from OpenSubtitles API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class SubtitleFile:
    """A downloadable subtitle file picked from search results."""

    file_id: int
    download_count: int
    release: str | None = None


class OpenSubtitlesClient:
    """Client for the OpenSubtitles v1 API.

    Subtitles are looked up by TMDB id; the most-downloaded English file is
    used. A missing transcript is reported as None, not an error.
    """

    BASE_URL = "https://api.opensubtitles.com/api/v1"
    MAX_RETRIES = 3
    RETRY_DELAY = 2.0  # seconds
    DOWNLOAD_PAUSE = 0.5  # seconds between search and download

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._client: httpx.AsyncClient | None = None
        self._download_client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create HTTP client (lazy initialization)."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.BASE_URL,
                headers={
                    "Api-Key": self.settings.opensubtitles_api_key,
                    "User-Agent": self.settings.opensubtitles_user_agent,
                    "Accept": "application/json",
                },
                timeout=30.0,
                follow_redirects=True,
            )
        return self._client

    @property
    def download_client(self) -> httpx.AsyncClient:
        """HTTP client for temporary file links; the API key stays off the file host."""
        if self._download_client is None:
            self._download_client = httpx.AsyncClient(
                headers={"User-Agent": self.settings.opensubtitles_user_agent},
                timeout=30.0,
                follow_redirects=True,
            )
        return self._download_client

    async def close(self) -> None:
        """Close the HTTP clients."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._download_client is not None:
            await self._download_client.aclose()
            self._download_client = None

    async def fetch_subtitles(self, unit: MediaUnit) -> str | None:
        """Fetch the SRT document for a media unit.

        Args:
            unit: Movie or episode to look up

        Returns:
            Raw SRT text, or None if no subtitles exist

        Raises:
            OpenSubtitlesError: If the API fails after retries
        """
        subtitle_file = await self.search(unit)
        if subtitle_file is None:
            logger.info(f"No subtitles found for {unit.tmdb_id} {unit.label}")
            return None

        await asyncio.sleep(self.DOWNLOAD_PAUSE)
        link = await self.get_download_link(subtitle_file.file_id)
        if link is None:
            logger.warning(f"No download link returned for file {subtitle_file.file_id}")
            return None

        response = await self._request("GET", link, client=self.download_client)
        return response.text

    async def search(self, unit: MediaUnit) -> SubtitleFile | None:
        """Find the most-downloaded English subtitle file for a unit."""
        params: dict[str, Any] = {
            "tmdb_id": unit.tmdb_id,
            "languages": "en",
            "type": "episode" if unit.is_tv else "movie",
            "order_by": "download_count",
            "order_direction": "desc",
        }
        if unit.is_tv:
            params["season_number"] = unit.season_number
            params["episode_number"] = unit.episode_number

        response = await self._request("GET", "/subtitles", params=params)
        return self._pick_best_file(self._json(response).get("data") or [])

    def _pick_best_file(self, results: list[dict[str, Any]]) -> SubtitleFile | None:
        ranked = sorted(
            results,
            key=lambda r: (r.get("attributes") or {}).get("download_count") or 0,
            reverse=True,
        )
        for result in ranked:
            attributes = result.get("attributes") or {}
            files = attributes.get("files") or []
            if files and files[0].get("file_id"):
                return SubtitleFile(
                    file_id=int(files[0]["file_id"]),
                    download_count=attributes.get("download_count") or 0,
                    release=attributes.get("release"),
                )
        return None

    async def get_download_link(self, file_id: int) -> str | None:
        """Exchange a file id for a temporary download URL."""
        response = await self._request("POST", "/download", json={"file_id": file_id})
        link: str | None = self._json(response).get("link")
        return link

    def _json(self, response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body.

        Raises:
            OpenSubtitlesError: If the body is not a JSON object
        """
        try:
            body = response.json()
        except ValueError as e:
            raise OpenSubtitlesError(
                f"OpenSubtitles returned a non-JSON body: {response.text[:200]}",
                status_code=response.status_code,
            ) from e
        if not isinstance(body, dict):
            raise OpenSubtitlesError(
                f"OpenSubtitles returned unexpected JSON: {type(body).__name__}",
                status_code=response.status_code,
            )
        return body

    async def _request(
        self,
        method: str,
        url: str,
        client: httpx.AsyncClient | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying on 429, 5xx and timeouts.

        Uses the API client unless another client is given.

        Raises:
            OpenSubtitlesError: On a non-retryable status or exhausted retries
        """
        last_error: Exception | None = None

        for attempt in range(self.MAX_RETRIES):
            try:
                response = await (client or self.client).request(method, url, **kwargs)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = e
                delay = self.RETRY_DELAY * (2**attempt)
                logger.warning(
                    f"OpenSubtitles request error, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES}): {e}"
                )
                await asyncio.sleep(delay)
                continue
            except httpx.HTTPError as e:
                raise OpenSubtitlesError(f"OpenSubtitles request failed: {e}") from e

            if response.status_code == 429 or response.status_code >= 500:
                last_error = OpenSubtitlesError(
                    f"OpenSubtitles returned {response.status_code}",
                    status_code=response.status_code,
                )
                hint = parse_retry_after(response.headers.get("Retry-After"))
                delay = hint if hint is not None else self.RETRY_DELAY * (2**attempt)
                logger.warning(
                    f"OpenSubtitles status {response.status_code}, retrying in {delay}s "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code != 200:
                raise OpenSubtitlesError(
                    f"OpenSubtitles request failed: {response.text[:200]}",
                    status_code=response.status_code,
                )
            return response

        raise OpenSubtitlesError(
            f"OpenSubtitles request failed after {self.MAX_RETRIES} attempts: {last_error}"
        )
