"""OpenAI embeddings client for the 1536-dim content space."""

import asyncio
import logging
import random
from dataclasses import dataclass

from openai import APIStatusError, AsyncOpenAI, RateLimitError

from src.core.config import Settings, get_settings
from src.models.db.subtitle_chunk import CONTENT_EMBEDDING_DIMENSION

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Error from an embedding backend (either vector space)."""

    def __init__(self, message: str, is_retryable: bool = False) -> None:
        super().__init__(message)
        self.is_retryable = is_retryable


@dataclass
class EmbeddingResult:
    """Result from embedding generation."""

    text: str
    embedding: list[float]
    model: str
    token_count: int


def parse_retry_after(value: str | None) -> float | None:
    """Seconds from a Retry-After header, if it holds a number."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class EmbeddingClient:
    """Client for OpenAI embeddings used by subtitle chunks and questions.

    Both sides of every chunk/question comparison go through this client so
    they share one model and one vector space.
    """

    EMBEDDING_DIMENSION = CONTENT_EMBEDDING_DIMENSION
    MAX_INPUT_CHARS = 8000
    MAX_RETRIES = 3
    BASE_DELAY = 2.0  # seconds
    MAX_BATCH_SIZE = 100  # OpenAI limit

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        """Initialize embedding client.

        Args:
            settings: Application settings. If None, loads from environment.
            model: Embedding model; defaults to the configured content model.
        """
        self.settings = settings or get_settings()
        self.model = model or self.settings.openai_embedding_model
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        """Get or create OpenAI client (lazy initialization)."""
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def close(self) -> None:
        """Close the client."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def embed_text(self, text: str) -> EmbeddingResult:
        """Generate embedding for a single text.

        Raises:
            EmbeddingError: If embedding generation fails
        """
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(self, texts: list[str]) -> list[EmbeddingResult]:
        """Generate embeddings for multiple texts.

        Inputs are truncated to MAX_INPUT_CHARS and split into API-sized
        batches.

        Args:
            texts: List of texts to embed

        Returns:
            List of EmbeddingResult, one per input text

        Raises:
            EmbeddingError: If any batch fails or returns a malformed vector
        """
        if not texts:
            return []

        truncated = [self.truncate(text) for text in texts]
        results: list[EmbeddingResult] = []
        for i in range(0, len(truncated), self.MAX_BATCH_SIZE):
            batch = truncated[i : i + self.MAX_BATCH_SIZE]
            results.extend(await self._embed_batch_with_retry(batch))
        return results

    def truncate(self, text: str) -> str:
        return text[: self.MAX_INPUT_CHARS]

    async def _embed_batch_with_retry(self, texts: list[str]) -> list[EmbeddingResult]:
        """Embed a batch, backing off on rate limits and server errors.

        Raises:
            EmbeddingError: If all retries fail
        """
        last_error: Exception | None = None

        for attempt in range(self.MAX_RETRIES):
            try:
                response = await self.client.embeddings.create(
                    input=texts,
                    model=self.model,
                )
            except RateLimitError as e:
                last_error = e
                if attempt == self.MAX_RETRIES - 1:
                    break
                hint = parse_retry_after(e.response.headers.get("retry-after"))
                delay = self._calculate_backoff(attempt, hint)
                logger.warning(
                    f"Rate limited by OpenAI, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                await asyncio.sleep(delay)
                continue
            except APIStatusError as e:
                if e.status_code >= 500 and attempt < self.MAX_RETRIES - 1:
                    last_error = e
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        f"Server error, retrying in {delay:.1f}s "
                        f"(attempt {attempt + 1}/{self.MAX_RETRIES}): {e}"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise EmbeddingError(
                    f"Failed to generate embeddings: {e}",
                    is_retryable=e.status_code >= 500,
                ) from e
            except Exception as e:
                raise EmbeddingError(
                    f"Failed to generate embeddings: {e}",
                    is_retryable=False,
                ) from e

            return self._parse_response(
                texts, response.data, response.model, response.usage.total_tokens
            )

        raise EmbeddingError(
            f"Failed to generate embeddings after {self.MAX_RETRIES} attempts: {last_error}",
            is_retryable=True,
        )

    def _parse_response(
        self,
        texts: list[str],
        data: list,  # type: ignore[type-arg]
        model: str,
        total_tokens: int,
    ) -> list[EmbeddingResult]:
        if len(data) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(data)}",
                is_retryable=True,
            )

        results: list[EmbeddingResult] = []
        for text, item in zip(texts, sorted(data, key=lambda d: d.index), strict=True):
            if len(item.embedding) != self.EMBEDDING_DIMENSION:
                raise EmbeddingError(
                    f"Expected {self.EMBEDDING_DIMENSION}-dim embedding, "
                    f"got {len(item.embedding)}",
                )
            results.append(
                EmbeddingResult(
                    text=text,
                    embedding=item.embedding,
                    model=model,
                    token_count=total_tokens // len(texts),
                )
            )
        return results

    def _calculate_backoff(self, attempt: int, retry_after: float | None = None) -> float:
        """Exponential backoff with ±25% jitter, seeded by a server hint if given."""
        if retry_after is not None:
            return retry_after
        delay: float = self.BASE_DELAY * (2**attempt)
        jitter: float = delay * 0.25 * (random.random() * 2 - 1)
        return delay + jitter
