"""Tests for the companion question pipeline."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.models.domain.companion import HistoryTurn
from src.models.domain.media import MediaUnit
from src.services.answer_synthesizer import NOT_ENOUGH_CONTEXT, SynthesisResult
from src.services.claude_client import ClaudeError, Message
from src.services.companion_service import CompanionError, CompanionService, history_messages
from src.services.coverage_service import compute_coverage
from src.services.embedding_client import EmbeddingError, EmbeddingResult
from src.services.hybrid_retriever import RetrievalCandidate, RetrievalResult

UNIT = MediaUnit.episode(1396, 1, 3)


@pytest.fixture
def retrieval(make_chunk) -> RetrievalResult:
    return RetrievalResult(
        anchor=[RetrievalCandidate(chunk=make_chunk(2290, 2360, "Tuco: Who?"), stage="anchor")]
    )


@pytest.fixture
def service(retrieval: RetrievalResult):
    populator = MagicMock()
    populator.populate = AsyncMock()
    embedding_client = MagicMock()
    embedding_client.embed_text = AsyncMock(
        return_value=EmbeddingResult(text="q", embedding=[0.1] * 1536, model="m", token_count=1)
    )
    tmdb_client = MagicMock()
    tmdb_client.get_title_metadata = AsyncMock(return_value=None)
    synthesizer = MagicMock()
    synthesizer.synthesize = AsyncMock(
        return_value=SynthesisResult(
            answer="Tuco [S1E3 38:10-39:20].", evidence_count=1, cited=True, synthesized=True
        )
    )
    service = CompanionService(
        MagicMock(),
        settings=MagicMock(),
        session_factory=MagicMock(),
        populator=populator,
        embedding_client=embedding_client,
        tmdb_client=tmdb_client,
        synthesizer=synthesizer,
    )
    service.coverage_tracker = MagicMock()
    service.coverage_tracker.check = AsyncMock(return_value=compute_coverage(2400.0, 0.0, 2700.0))

    with (
        patch("src.services.companion_service.HybridRetriever") as hybrid_cls,
        patch("src.services.companion_service.SeasonDigestRetriever") as digest_cls,
    ):
        hybrid_cls.return_value.retrieve = AsyncMock(return_value=retrieval)
        digest_cls.return_value.retrieve = AsyncMock(return_value="")
        service.hybrid_retriever = hybrid_cls.return_value
        service.digest_retriever = digest_cls.return_value
        yield service


class TestHistoryMessages:
    """Tests for history_messages."""

    def test_alternates_and_ends_on_answer(self) -> None:
        history = [
            HistoryTurn(role="assistant", content="Welcome!"),
            HistoryTurn(role="user", content="Who is Walt?"),
            HistoryTurn(role="user", content="Hello?"),
            HistoryTurn(role="assistant", content="A teacher."),
            HistoryTurn(role="user", content="Unanswered"),
        ]

        assert history_messages(history) == [
            Message(role="user", content="Who is Walt?"),
            Message(role="assistant", content="A teacher."),
        ]

    def test_empty(self) -> None:
        assert history_messages(None) == []


class TestAsk:
    """Tests for CompanionService.ask."""

    async def test_answers_with_clamped_cursor(self, service: CompanionService) -> None:
        service.coverage_tracker.check.return_value = compute_coverage(3000.0, 0.0, 2400.0)

        answer = await service.ask(UNIT, 3000.0, "Who is that?", title="Breaking Bad")

        assert answer.answer == "Tuco [S1E3 38:10-39:20]."
        assert answer.coverage_complete is False
        assert answer.adjusted_cursor_seconds == 2400.0
        assert answer.max_available_seconds == 2400.0
        service.populator.populate.assert_awaited_once_with(UNIT, title="Breaking Bad")
        kwargs = service.hybrid_retriever.retrieve.call_args.kwargs
        assert kwargs["cursor_seconds"] == 2400.0
        data = service.synthesizer.synthesize.call_args.args[0]
        assert data.coverage.adjusted_cursor_seconds == 2400.0
        assert data.title == "Breaking Bad"

    async def test_cross_season_question_flags_past(self, service: CompanionService) -> None:
        await service.ask(MediaUnit.episode(1396, 3, 2), 600.0, "what happened in season 1")

        service.digest_retriever.retrieve.assert_awaited_once_with(
            MediaUnit.episode(1396, 3, 2), "what happened in season 1", True
        )
        assert service.hybrid_retriever.retrieve.call_args.kwargs["references_past"] is True

    async def test_no_data_returns_canned_reply(self, service: CompanionService) -> None:
        service.coverage_tracker.check.return_value = compute_coverage(600.0, None, None)

        answer = await service.ask(UNIT, 600.0, "Who is that?")

        assert answer.answer == NOT_ENOUGH_CONTEXT
        assert answer.evidence_count == 0
        service.embedding_client.embed_text.assert_not_called()

    async def test_no_evidence_returns_canned_reply(self, service: CompanionService) -> None:
        service.hybrid_retriever.retrieve.return_value = RetrievalResult()

        answer = await service.ask(UNIT, 600.0, "Who is that?")

        assert answer.answer == NOT_ENOUGH_CONTEXT
        service.synthesizer.synthesize.assert_not_called()

    async def test_embedding_failure_is_retryable(self, service: CompanionService) -> None:
        service.embedding_client.embed_text.side_effect = EmbeddingError("down")

        with pytest.raises(CompanionError) as exc_info:
            await service.ask(UNIT, 600.0, "Who is that?")

        assert exc_info.value.is_retryable is True

    async def test_retrieval_failure_is_retryable(self, service: CompanionService) -> None:
        service.hybrid_retriever.retrieve.side_effect = RuntimeError("db gone")

        with pytest.raises(CompanionError) as exc_info:
            await service.ask(UNIT, 600.0, "Who is that?")

        assert exc_info.value.is_retryable is True

    async def test_digest_and_metadata_failures_are_ignored(
        self, service: CompanionService
    ) -> None:
        service.digest_retriever.retrieve.side_effect = RuntimeError("no model")
        service.tmdb_client.get_title_metadata.side_effect = RuntimeError("tmdb down")

        answer = await service.ask(MediaUnit.episode(1396, 2, 1), 600.0, "Who is that?")

        assert answer.answer == "Tuco [S1E3 38:10-39:20]."
        data = service.synthesizer.synthesize.call_args.args[0]
        assert data.digest_block == ""
        assert data.metadata is None

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (
                ClaudeError("no credit", quota_exhausted=True),
                {"quota_exhausted": True, "is_retryable": False},
            ),
            (
                ClaudeError("slow down", is_retryable=True, retry_after=12.0, rate_limited=True),
                {"rate_limited": True, "is_retryable": True, "retry_after": 12.0},
            ),
            (
                ClaudeError("overloaded", is_retryable=True),
                {"rate_limited": False, "is_retryable": True},
            ),
            (
                ClaudeError("bad request"),
                {"quota_exhausted": False, "is_retryable": False},
            ),
        ],
    )
    async def test_synthesis_errors_are_mapped(
        self, service: CompanionService, error: ClaudeError, expected: dict
    ) -> None:
        service.synthesizer.synthesize.side_effect = error

        with pytest.raises(CompanionError) as exc_info:
            await service.ask(UNIT, 600.0, "Who is that?")

        for attr, value in expected.items():
            assert getattr(exc_info.value, attr) == value
