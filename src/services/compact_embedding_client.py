"""sentence-transformers client for the 384-dim compact space (season digests)."""

import asyncio
import logging
from functools import lru_cache

from sentence_transformers import SentenceTransformer

from src.core.config import Settings, get_settings
from src.models.db.season_digest import COMPACT_EMBEDDING_DIMENSION
from src.services.embedding_client import EmbeddingError

logger = logging.getLogger(__name__)


@lru_cache(maxsize=2)
def load_model(model_name: str, device: str) -> SentenceTransformer:
    """Load a model once per process; weights are read-only after load."""
    logger.info(f"Loading compact embedding model: {model_name} on {device}")
    return SentenceTransformer(model_name, device=device)


class CompactEmbeddingClient:
    """Local embedding model for season digests and the questions that search them.

    Inference is CPU-bound, so it runs in a worker thread to keep the event
    loop free.
    """

    EMBEDDING_DIMENSION = COMPACT_EMBEDDING_DIMENSION
    MAX_INPUT_CHARS = 500
    BATCH_SIZE = 32

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.model_name = self.settings.compact_embedding_model
        self.device = self.settings.compact_embedding_device
        self._model: SentenceTransformer | None = None

    async def _get_model(self) -> SentenceTransformer:
        if self._model is None:
            try:
                self._model = await asyncio.to_thread(load_model, self.model_name, self.device)
            except Exception as e:
                raise EmbeddingError(
                    f"Failed to load compact embedding model {self.model_name}: {e}"
                ) from e
        return self._model

    async def embed_text(self, text: str) -> list[float]:
        """Embed one text in the compact space.

        Raises:
            EmbeddingError: If the model fails or yields a wrong-sized vector
        """
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts as normalized mean-pooled vectors.

        Raises:
            EmbeddingError: If the model fails or yields a wrong-sized vector
        """
        if not texts:
            return []

        model = await self._get_model()
        truncated = [text[: self.MAX_INPUT_CHARS] for text in texts]
        try:
            vectors = await asyncio.to_thread(
                model.encode,
                truncated,
                batch_size=self.BATCH_SIZE,
                normalize_embeddings=True,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as e:
            raise EmbeddingError(f"Compact embedding failed: {e}", is_retryable=True) from e

        embeddings: list[list[float]] = [vector.tolist() for vector in vectors]
        for embedding in embeddings:
            if len(embedding) != self.EMBEDDING_DIMENSION:
                raise EmbeddingError(
                    f"Expected {self.EMBEDDING_DIMENSION}-dim embedding, got {len(embedding)}"
                )
        return embeddings
