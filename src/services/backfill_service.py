"""Fills in embeddings that failed or were skipped at write time."""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import Settings, get_settings
from src.repositories.chunk_repo import ChunkRepository
from src.repositories.digest_repo import DigestRepository
from src.services.compact_embedding_client import CompactEmbeddingClient
from src.services.digest_service import digest_embedding_text
from src.services.embedding_client import EmbeddingClient, EmbeddingError

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    chunks_processed: int = 0
    chunks_failed: int = 0
    chunks_remaining: int = 0
    digests_processed: int = 0
    digests_failed: int = 0
    digests_remaining: int = 0


class BackfillService:
    """Embeds one bounded batch of unembedded chunks and digests per run."""

    ITEM_DELAY = 0.1  # seconds between embedding calls

    def __init__(
        self,
        db_session: AsyncSession,
        settings: Settings | None = None,
        embedding_client: EmbeddingClient | None = None,
        compact_client: CompactEmbeddingClient | None = None,
    ) -> None:
        self.db_session = db_session
        self.settings = settings or get_settings()
        self.chunk_repo = ChunkRepository(db_session)
        self.digest_repo = DigestRepository(db_session)
        self._embedding_client = embedding_client
        self._compact_client = compact_client

    @property
    def embedding_client(self) -> EmbeddingClient:
        """Get or create embedding client (lazy initialization)."""
        if self._embedding_client is None:
            self._embedding_client = EmbeddingClient(settings=self.settings)
        return self._embedding_client

    @property
    def compact_client(self) -> CompactEmbeddingClient:
        """Get or create compact embedding client (lazy initialization)."""
        if self._compact_client is None:
            self._compact_client = CompactEmbeddingClient(settings=self.settings)
        return self._compact_client

    async def run(self, batch_size: int = 10) -> BackfillResult:
        """Embed up to `batch_size` chunks and `batch_size` digests.

        Each item is committed as soon as it is embedded. A failed item is
        left for the next run with its attempt count raised, which moves it
        behind items that have not failed as often.
        """
        result = BackfillResult()

        chunks = await self.chunk_repo.get_chunks_without_embeddings(batch_size)
        for i, chunk in enumerate(chunks):
            if i > 0:
                await asyncio.sleep(self.ITEM_DELAY)
            try:
                embedded = await self.embedding_client.embed_text(chunk.content)
            except EmbeddingError as e:
                logger.warning(f"Backfill embedding failed for chunk {chunk.id}: {e}")
                result.chunks_failed += 1
                await self.chunk_repo.record_embedding_failure(chunk.id)
                await self.db_session.commit()
                continue
            await self.chunk_repo.update_embedding(chunk.id, embedded.embedding)
            await self.db_session.commit()
            result.chunks_processed += 1

        digests = await self.digest_repo.get_digests_without_embeddings(batch_size)
        for digest in digests:
            text = digest_embedding_text(
                digest.season_name, digest.overview or "", digest.episode_summaries or []
            )
            try:
                embedding = await self.compact_client.embed_text(text)
            except EmbeddingError as e:
                logger.warning(f"Backfill embedding failed for digest {digest.id}: {e}")
                result.digests_failed += 1
                await self.digest_repo.record_embedding_failure(digest.id)
                await self.db_session.commit()
                continue
            await self.digest_repo.update_embedding(digest.id, embedding)
            await self.db_session.commit()
            result.digests_processed += 1

        result.chunks_remaining = await self.chunk_repo.count_chunks_without_embeddings()
        result.digests_remaining = await self.digest_repo.count_digests_without_embeddings()

        logger.info(
            f"Backfill: {result.chunks_processed} chunks and {result.digests_processed} digests "
            f"embedded; {result.chunks_remaining} chunks and {result.digests_remaining} "
            f"digests remaining"
        )
        return result
