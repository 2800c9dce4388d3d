"""Service for fetching, chunking, embedding and storing a unit's subtitles."""

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.models.domain.media import MediaUnit
from src.repositories.chunk_repo import ChunkRepository
from src.services.embedding_client import EmbeddingClient, EmbeddingError
from src.services.opensubtitles_client import OpenSubtitlesClient, OpenSubtitlesError
from src.services.subtitle_chunker import ChunkData, chunk_srt

logger = logging.getLogger(__name__)


class IngestionError(Exception):
    """Error while ingesting subtitles for a unit."""

    pass


@dataclass
class IngestResult:
    """Outcome of ingesting one media unit."""

    found: bool
    cached: bool = False
    chunks_created: int = 0
    chunks_stored: int = 0
    chunks_embedded: int = 0


class IngestionService:
    """Turns a unit's subtitles into stored, embedded chunks.

    Ingestion is idempotent: a unit whose chunks are all stored is skipped
    and inserts ignore rows that already exist, so concurrent runs converge.
    Chunks are written in small committed batches. A failure part-way keeps
    the batches already stored, and the next run fills in the rest.
    """

    INSERT_BATCH_SIZE = 5

    def __init__(
        self,
        db_session: AsyncSession,
        settings: Settings | None = None,
        subtitles_client: OpenSubtitlesClient | None = None,
        embedding_client: EmbeddingClient | None = None,
    ) -> None:
        self.db_session = db_session
        self.settings = settings or get_settings()
        self.chunk_repo = ChunkRepository(db_session)
        self._subtitles_client = subtitles_client
        self._embedding_client = embedding_client

    @property
    def subtitles_client(self) -> OpenSubtitlesClient:
        """Get or create OpenSubtitles client (lazy initialization)."""
        if self._subtitles_client is None:
            self._subtitles_client = OpenSubtitlesClient(settings=self.settings)
        return self._subtitles_client

    @property
    def embedding_client(self) -> EmbeddingClient:
        """Get or create embedding client (lazy initialization)."""
        if self._embedding_client is None:
            self._embedding_client = EmbeddingClient(settings=self.settings)
        return self._embedding_client

    async def ingest(self, unit: MediaUnit) -> IngestResult:
        """Fetch and store subtitles for a unit unless fully cached.

        A unit left partial by an earlier failure is fetched again and only
        its missing chunks are stored.

        Args:
            unit: The movie or episode

        Returns:
            IngestResult; found=False when no transcript exists

        Raises:
            IngestionError: If the transcript provider or database fails
        """
        if await self.chunk_repo.is_fully_ingested(unit):
            logger.info(f"Subtitles already cached for {unit.tmdb_id} {unit.label}")
            return IngestResult(found=True, cached=True)

        try:
            document = await self.subtitles_client.fetch_subtitles(unit)
        except OpenSubtitlesError as e:
            raise IngestionError(f"Subtitle download failed for {unit.label}: {e}") from e

        if document is None:
            return IngestResult(found=False)

        return await self.ingest_document(unit, document)

    async def ingest_document(self, unit: MediaUnit, document: str) -> IngestResult:
        """Chunk, embed and store an SRT document for a unit.

        Chunks whose index is already stored are neither embedded nor
        inserted again.

        Raises:
            IngestionError: If storing a batch fails
        """
        chunks = chunk_srt(document)
        if not chunks:
            logger.warning(f"No subtitle lines parsed for {unit.tmdb_id} {unit.label}")
            return IngestResult(found=False)

        result = IngestResult(found=True, chunks_created=len(chunks))
        stored_indexes = await self.chunk_repo.get_chunk_indexes(unit)
        pending = [chunk for chunk in chunks if chunk.chunk_index not in stored_indexes]
        if stored_indexes:
            logger.info(
                f"Resuming {unit.tmdb_id} {unit.label}: {len(pending)} of "
                f"{len(chunks)} chunks missing"
            )

        for i in range(0, len(pending), self.INSERT_BATCH_SIZE):
            batch = pending[i : i + self.INSERT_BATCH_SIZE]
            embeddings = await self._embed(batch, unit)
            rows = [
                self._to_row(unit, chunk, embedding, unit_chunk_count=len(chunks))
                for chunk, embedding in zip(batch, embeddings, strict=True)
            ]
            try:
                result.chunks_stored += await self.chunk_repo.insert_chunks(rows)
                await self.db_session.commit()
            except Exception as e:
                await self.db_session.rollback()
                raise IngestionError(
                    f"Failed to store chunks {batch[0].chunk_index}-{batch[-1].chunk_index} "
                    f"for {unit.label}: {e}"
                ) from e
            result.chunks_embedded += sum(1 for emb in embeddings if emb is not None)

        logger.info(
            f"Ingested {unit.tmdb_id} {unit.label}: {result.chunks_created} chunks, "
            f"{result.chunks_stored} stored, {result.chunks_embedded} embedded"
        )
        return result

    async def _embed(self, batch: list[ChunkData], unit: MediaUnit) -> list[list[float] | None]:
        """Embed a batch; on failure the chunks are stored unembedded for backfill."""
        try:
            results = await self.embedding_client.embed_batch([c.content for c in batch])
        except EmbeddingError as e:
            logger.warning(
                f"Embedding failed for {len(batch)} chunks of {unit.label}, "
                f"storing without embeddings: {e}"
            )
            return [None] * len(batch)
        return [r.embedding for r in results]

    def _to_row(
        self,
        unit: MediaUnit,
        chunk: ChunkData,
        embedding: list[float] | None,
        unit_chunk_count: int,
    ) -> dict[str, Any]:
        return {
            "tmdb_id": unit.tmdb_id,
            "media_type": unit.media_type.value,
            "season_number": unit.season_number,
            "episode_number": unit.episode_number,
            "chunk_index": chunk.chunk_index,
            "start_seconds": chunk.start_seconds,
            "end_seconds": chunk.end_seconds,
            "content": chunk.content,
            "unit_chunk_count": unit_chunk_count,
            "embedding": embedding,
        }
