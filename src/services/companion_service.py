"""Answers a viewer's question using only evidence up to their story cursor."""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.config import Settings, get_settings
from src.core.database import get_session_factory
from src.models.domain.companion import HistoryTurn
from src.models.domain.media import MediaUnit
from src.services.answer_synthesizer import (
    NOT_ENOUGH_CONTEXT,
    AnswerSynthesizer,
    SynthesisInput,
)
from src.services.cache_populator import CachePopulator
from src.services.claude_client import ClaudeError, Message
from src.services.coverage_service import CoverageResult, CoverageTracker
from src.services.digest_service import SeasonDigestRetriever
from src.services.embedding_client import EmbeddingClient, EmbeddingError
from src.services.hybrid_retriever import HybridRetriever, RetrievalResult
from src.services.query_heuristics import references_past_content
from src.services.tmdb_client import TitleMetadata, TMDbClient

logger = logging.getLogger(__name__)


class CompanionError(Exception):
    """A required step of answering failed.

    Attributes:
        is_retryable: The viewer can try again shortly
        retry_after: Suggested wait in seconds, when known
        quota_exhausted: The language-model account is out of credit
        rate_limited: An upstream backend is throttling requests
    """

    def __init__(
        self,
        reason: str,
        is_retryable: bool = False,
        retry_after: float | None = None,
        quota_exhausted: bool = False,
        rate_limited: bool = False,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.is_retryable = is_retryable
        self.retry_after = retry_after
        self.quota_exhausted = quota_exhausted
        self.rate_limited = rate_limited


@dataclass
class CompanionAnswer:
    """An answer plus the coverage facts the client displays."""

    answer: str
    evidence_count: int
    coverage_complete: bool
    adjusted_cursor_seconds: float
    max_available_seconds: float | None = None
    cited: bool = False


def history_messages(history: list[HistoryTurn] | None) -> list[Message]:
    """Prior turns as alternating user/assistant messages, ending on an answer."""
    messages: list[Message] = []
    for turn in history or []:
        if not messages and turn.role != "user":
            continue
        if messages and messages[-1].role == turn.role:
            continue
        messages.append(Message(role=turn.role, content=turn.content))
    if messages and messages[-1].role == "user":
        messages.pop()
    return messages


class CompanionService:
    """Runs the question pipeline.

    populate caches -> clamp cursor -> embed question -> retrieve evidence,
    digests and metadata concurrently -> synthesize.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        settings: Settings | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        populator: CachePopulator | None = None,
        embedding_client: EmbeddingClient | None = None,
        tmdb_client: TMDbClient | None = None,
        synthesizer: AnswerSynthesizer | None = None,
    ) -> None:
        self.db_session = db_session
        self.settings = settings or get_settings()
        self._session_factory = session_factory
        self.populator = populator or CachePopulator(db_session, settings=self.settings)
        self.coverage_tracker = CoverageTracker(db_session)
        self._embedding_client = embedding_client
        self._tmdb_client = tmdb_client
        self.synthesizer = synthesizer or AnswerSynthesizer(settings=self.settings)

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        # Concurrent reads need their own sessions
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    @property
    def embedding_client(self) -> EmbeddingClient:
        """Get or create embedding client (lazy initialization)."""
        if self._embedding_client is None:
            self._embedding_client = EmbeddingClient(settings=self.settings)
        return self._embedding_client

    @property
    def tmdb_client(self) -> TMDbClient:
        """Get or create TMDB client (lazy initialization)."""
        if self._tmdb_client is None:
            self._tmdb_client = TMDbClient(settings=self.settings)
        return self._tmdb_client

    async def ask(
        self,
        unit: MediaUnit,
        cursor_seconds: float,
        question: str,
        title: str | None = None,
        history: list[HistoryTurn] | None = None,
    ) -> CompanionAnswer:
        """Answer a question without spoiling anything past the cursor.

        Args:
            unit: Movie or episode being watched
            cursor_seconds: Viewer position in seconds
            question: Free-text question
            title: Display title, if the caller knows it
            history: Prior turns of this conversation

        Returns:
            CompanionAnswer

        Raises:
            CompanionError: If embedding, retrieval or synthesis fails
        """
        await self.populator.populate(unit, title=title)

        coverage = await self.coverage_tracker.check(unit, cursor_seconds)
        if not coverage.has_data:
            logger.info(f"No subtitle data for {unit.tmdb_id} {unit.label}")
            return self._not_enough_context(coverage)

        try:
            embedded = await self.embedding_client.embed_text(question)
        except EmbeddingError as e:
            logger.error(f"Question embedding failed for {unit.label}: {e}")
            raise CompanionError(
                "Couldn't process your question right now. Please try again in a moment.",
                is_retryable=True,
            ) from e

        references_past = references_past_content(question)
        retrieval, digest_block, metadata = await asyncio.gather(
            self._retrieve_evidence(
                unit, coverage, question, embedded.embedding, references_past
            ),
            self._retrieve_digests(unit, question, references_past),
            self._fetch_metadata(unit),
        )

        if not retrieval.evidence:
            return self._not_enough_context(coverage)

        try:
            result = await self.synthesizer.synthesize(
                SynthesisInput(
                    unit=unit,
                    question=question,
                    coverage=coverage,
                    retrieval=retrieval,
                    digest_block=digest_block,
                    metadata=metadata,
                    title=title,
                    history=history_messages(history),
                )
            )
        except ClaudeError as e:
            logger.error(f"Answer synthesis failed for {unit.label}: {e}")
            raise self._synthesis_error(e) from e

        return CompanionAnswer(
            answer=result.answer,
            evidence_count=result.evidence_count,
            coverage_complete=coverage.coverage_complete,
            adjusted_cursor_seconds=coverage.adjusted_cursor_seconds,
            max_available_seconds=coverage.max_available_seconds,
            cited=result.cited,
        )

    async def _retrieve_evidence(
        self,
        unit: MediaUnit,
        coverage: CoverageResult,
        question: str,
        question_embedding: list[float],
        references_past: bool,
    ) -> RetrievalResult:
        try:
            async with self.session_factory() as session:
                retriever = HybridRetriever(session, settings=self.settings)
                return await retriever.retrieve(
                    unit,
                    cursor_seconds=coverage.adjusted_cursor_seconds,
                    question=question,
                    question_embedding=question_embedding,
                    references_past=references_past,
                )
        except Exception as e:
            logger.error(f"Evidence retrieval failed for {unit.label}: {e}")
            raise CompanionError(
                "Couldn't look up the story so far. Please try again in a moment.",
                is_retryable=True,
            ) from e

    async def _retrieve_digests(
        self, unit: MediaUnit, question: str, references_past: bool
    ) -> str:
        try:
            async with self.session_factory() as session:
                retriever = SeasonDigestRetriever(session, settings=self.settings)
                return await retriever.retrieve(unit, question, references_past)
        except Exception as e:
            logger.warning(f"Season digests unavailable for {unit.label}: {e}")
            return ""

    async def _fetch_metadata(self, unit: MediaUnit) -> TitleMetadata | None:
        try:
            return await self.tmdb_client.get_title_metadata(unit)
        except Exception as e:
            logger.warning(f"Title metadata unavailable for {unit.tmdb_id}: {e}")
            return None

    def _not_enough_context(self, coverage: CoverageResult) -> CompanionAnswer:
        return CompanionAnswer(
            answer=NOT_ENOUGH_CONTEXT,
            evidence_count=0,
            coverage_complete=coverage.coverage_complete,
            adjusted_cursor_seconds=coverage.adjusted_cursor_seconds,
            max_available_seconds=coverage.max_available_seconds,
        )

    def _synthesis_error(self, error: ClaudeError) -> CompanionError:
        if error.quota_exhausted:
            return CompanionError(
                "AI credits depleted. Please add credits to continue.",
                quota_exhausted=True,
            )
        if error.rate_limited:
            return CompanionError(
                "Rate limit exceeded. Please try again in a moment.",
                is_retryable=True,
                retry_after=error.retry_after,
                rate_limited=True,
            )
        if error.is_retryable:
            return CompanionError(
                "The answer service is temporarily unavailable. Please try again shortly.",
                is_retryable=True,
            )
        return CompanionError("Couldn't generate an answer. Please try again.")
