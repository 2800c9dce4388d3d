"""Speaker attribution: rewrite a unit's chunks with **NAME:** markers via Claude."""

import asyncio
import logging
import re
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.models.domain.media import MediaUnit
from src.repositories.chunk_repo import ChunkRepository
from src.services.claude_client import ClaudeClient, ClaudeError, Message
from src.services.tmdb_client import CastMember, TMDbClient, TMDbError

logger = logging.getLogger(__name__)

_ANNOTATED_PATTERN = re.compile(r"\*\*[A-Z][A-Za-z\s]+:\*\*")
_SPEAKER_MARKER = re.compile(r"\*\*[A-Z]")

PROMPT_CAST_LIMIT = 15

ANNOTATION_SYSTEM_PROMPT = """You annotate subtitles with speaker names. Add **SPEAKER:** before each line of dialogue.

{characters}

Rules:
1. Format: [timestamp] **SPEAKER:** dialogue
2. If unsure of speaker, use **UNKNOWN:**
3. Split multi-speaker lines: "-Come on. -Wait!" becomes **PERSON_A:** Come on. **PERSON_B:** Wait!
4. Keep ALL timestamps and dialogue exactly as given
5. Return the COMPLETE annotated text; do not summarize or shorten"""


def is_annotated(content: str) -> bool:
    """Whether chunk text already carries **NAME:** speaker markers."""
    return _ANNOTATED_PATTERN.search(content) is not None


@dataclass
class AnnotationResult:
    """Outcome of one annotation pass."""

    chunks_found: int
    chunks_updated: int = 0
    chunks_skipped: int = 0
    already_annotated: bool = False
    characters_found: int = 0


class SpeakerAnnotationService:
    """Adds speaker names to a unit's subtitle chunks.

    Runs in the background worker. Each chunk's text is rewritten at most
    once: chunks that already carry markers are left alone unless forced,
    and an annotation that comes back without markers is discarded.
    """

    CHUNK_DELAY = 0.5  # seconds between Claude calls
    MAX_TOKENS = 4000

    def __init__(
        self,
        db_session: AsyncSession,
        settings: Settings | None = None,
        claude_client: ClaudeClient | None = None,
        tmdb_client: TMDbClient | None = None,
    ) -> None:
        self.db_session = db_session
        self.settings = settings or get_settings()
        self.chunk_repo = ChunkRepository(db_session)
        self._claude_client = claude_client
        self._tmdb_client = tmdb_client

    @property
    def claude_client(self) -> ClaudeClient:
        """Get or create Claude client (lazy initialization)."""
        if self._claude_client is None:
            self._claude_client = ClaudeClient(settings=self.settings)
        return self._claude_client

    @property
    def tmdb_client(self) -> TMDbClient:
        """Get or create TMDB client (lazy initialization)."""
        if self._tmdb_client is None:
            self._tmdb_client = TMDbClient(settings=self.settings)
        return self._tmdb_client

    async def needs_annotation(self, unit: MediaUnit) -> bool:
        """True if the unit has chunks and its middle chunk lacks markers."""
        chunks = await self.chunk_repo.get_chunks_by_unit(unit)
        if not chunks:
            return False
        return not is_annotated(chunks[len(chunks) // 2].content)

    async def annotate(
        self,
        unit: MediaUnit,
        title: str | None = None,
        force: bool = False,
    ) -> AnnotationResult:
        """Annotate a unit's unmarked chunks, one Claude call per chunk.

        Args:
            unit: The movie or episode
            title: Display title for the prompt
            force: Re-annotate chunks even if markers are already present

        Returns:
            AnnotationResult with update counts
        """
        chunks = await self.chunk_repo.get_chunks_by_unit(unit)
        result = AnnotationResult(chunks_found=len(chunks))
        if not chunks:
            logger.info(f"No chunks to annotate for {unit.tmdb_id} {unit.label}")
            return result

        if not force and is_annotated(chunks[len(chunks) // 2].content):
            result.already_annotated = True
            return result

        cast = await self._get_cast(unit)
        result.characters_found = len(cast)
        system_prompt = self._build_system_prompt(cast)
        display_title = title or f"title {unit.tmdb_id}"

        calls = 0
        for chunk in chunks:
            if not force and is_annotated(chunk.content):
                result.chunks_skipped += 1
                continue
            if calls > 0:
                await asyncio.sleep(self.CHUNK_DELAY)
            calls += 1
            annotated = await self._annotate_chunk(
                chunk.content, system_prompt, display_title, unit
            )
            if annotated is None:
                continue
            await self.chunk_repo.update_content(chunk.id, annotated)
            await self.db_session.commit()
            result.chunks_updated += 1

        logger.info(
            f"Annotated {result.chunks_updated}/{result.chunks_found} chunks for "
            f"{unit.tmdb_id} {unit.label}"
        )
        return result

    async def _get_cast(self, unit: MediaUnit) -> list[CastMember]:
        try:
            return await self.tmdb_client.get_cast(unit)
        except TMDbError as e:
            logger.warning(f"Cast lookup failed for {unit.tmdb_id}, annotating without it: {e}")
            return []

    def _build_system_prompt(self, cast: list[CastMember]) -> str:
        characters = ""
        if cast:
            listed = ", ".join(member.describe() for member in cast[:PROMPT_CAST_LIMIT])
            characters = f"CHARACTERS: {listed}"
        return ANNOTATION_SYSTEM_PROMPT.format(characters=characters)

    async def _annotate_chunk(
        self,
        content: str,
        system_prompt: str,
        title: str,
        unit: MediaUnit,
    ) -> str | None:
        """Annotated text, or None to keep the original."""
        try:
            response = await self.claude_client.chat(
                messages=[
                    Message(
                        role="user",
                        content=(
                            f"Annotate this {title} ({unit.label}) subtitle chunk "
                            f"with speaker names:\n\n{content}"
                        ),
                    )
                ],
                system_prompt=system_prompt,
                max_tokens=self.MAX_TOKENS,
                temperature=0.0,
            )
        except ClaudeError as e:
            if e.quota_exhausted:
                raise
            logger.warning(f"Speaker annotation call failed for {unit.label}: {e}")
            return None

        annotated = response.content.strip()
        if not annotated or _SPEAKER_MARKER.search(annotated) is None:
            logger.warning(f"Annotation for {unit.label} lacks speaker markers, keeping original")
            return None
        return annotated
