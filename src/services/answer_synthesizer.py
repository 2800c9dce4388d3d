"""Builds the evidence-only prompt and gets the answer from Claude."""

import logging
import re
from dataclasses import dataclass

from src.core.config import Settings, get_settings
from src.models.domain.media import MediaUnit, format_timestamp
from src.services.claude_client import ClaudeClient, Message
from src.services.coverage_service import CoverageResult
from src.services.hybrid_retriever import RetrievalCandidate, RetrievalResult
from src.services.tmdb_client import TitleMetadata

logger = logging.getLogger(__name__)

NOT_ENOUGH_CONTEXT = (
    "I don't have enough subtitle context up to this point to answer without "
    "risking spoilers yet. Please try again in a moment."
)

CITATION_PATTERN = re.compile(
    r"\[(?:S\d+E\d+\s+)?\d{1,2}:\d{2}(?::\d{2})?\s*-\s*\d{1,2}:\d{2}(?::\d{2})?\]"
)

PROMPT_CAST_LIMIT = 15


def has_citation(answer: str) -> bool:
    """Whether an answer carries at least one bracketed timestamp citation."""
    return CITATION_PATTERN.search(answer) is not None


@dataclass
class SynthesisInput:
    """Everything the prompt is built from."""

    unit: MediaUnit
    question: str
    coverage: CoverageResult
    retrieval: RetrievalResult
    digest_block: str = ""
    metadata: TitleMetadata | None = None
    title: str | None = None
    history: list[Message] | None = None


@dataclass
class SynthesisResult:
    answer: str
    evidence_count: int
    cited: bool
    synthesized: bool


def _format_evidence(candidates: list[RetrievalCandidate]) -> str:
    return "\n".join(f"[{c.citation_label()}] {c.chunk.content}" for c in candidates)


class AnswerSynthesizer:
    """Composes the spoiler-safe prompt and calls Claude.

    With no evidence at all the canned "not enough context" reply is
    returned without calling the model.
    """

    MAX_TOKENS = 1024
    TEMPERATURE = 0.3

    def __init__(
        self,
        settings: Settings | None = None,
        claude_client: ClaudeClient | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._claude_client = claude_client

    @property
    def claude_client(self) -> ClaudeClient:
        """Get or create Claude client (lazy initialization)."""
        if self._claude_client is None:
            self._claude_client = ClaudeClient(settings=self.settings)
        return self._claude_client

    async def synthesize(self, data: SynthesisInput) -> SynthesisResult:
        """Answer the question from the retrieved evidence.

        Raises:
            ClaudeError: If the model call fails
        """
        evidence = data.retrieval.evidence
        if not evidence:
            return SynthesisResult(
                answer=NOT_ENOUGH_CONTEXT, evidence_count=0, cited=False, synthesized=False
            )

        system_prompt = self.build_system_prompt(data)
        messages = list(data.history or [])
        messages.append(Message(role="user", content=self.build_user_prompt(data)))

        response = await self.claude_client.chat(
            messages=messages,
            system_prompt=system_prompt,
            max_tokens=self.MAX_TOKENS,
            temperature=self.TEMPERATURE,
        )

        answer = response.content.strip()
        cited = has_citation(answer)
        if not cited:
            logger.warning(
                f"Answer for {data.unit.tmdb_id} {data.unit.label} has no timestamp citation"
            )
        return SynthesisResult(
            answer=answer, evidence_count=len(evidence), cited=cited, synthesized=True
        )

    def build_system_prompt(self, data: SynthesisInput) -> str:
        unit = data.unit
        cursor = format_timestamp(data.coverage.adjusted_cursor_seconds)
        title = data.title or (data.metadata.title if data.metadata else None) or "this title"
        if unit.is_tv:
            position = f"Season {unit.season_number}, Episode {unit.episode_number} at {cursor}"
            citation = "[S{season}E{episode} {start}-{end}], for example [S1E3 12:05-13:40]"
        else:
            position = f"{cursor} into the movie"
            citation = "[{start}-{end}], for example [12:05-13:40]"

        sections = [
            f'You are a spoiler-free viewing companion. The viewer is watching "{title}" '
            f"and has reached {position}. This is the safe cursor.",
            "RULES:\n"
            f"1. Never reveal, hint at or speculate about anything after {position}.\n"
            "2. Use ONLY the evidence below. If it does not answer the question, say so.\n"
            f"3. Every factual claim must carry a citation in the form {citation}, "
            "copied from the evidence labels.\n"
            "4. Never invent timestamps, names or plot facts.\n"
            "5. If asked about the future, reply that you can't answer without spoiling "
            "what happens next.\n"
            "6. Keep answers concise and narrative; don't quote long stretches of dialogue.",
            "EVIDENCE ORDER: RECENT CONTEXT lists the moments just before the cursor in "
            "chronological order; it is the most certain and most relevant to "
            "\"what just happened\" questions. RELATED CONTEXT lists earlier moments chosen "
            "for topical relevance, most relevant first; use it for background.",
        ]

        disclosure = data.coverage.disclosure()
        if disclosure:
            sections.append(f"COVERAGE: {disclosure}")

        background = self._format_metadata(data.metadata)
        if background:
            sections.append(
                "BACKGROUND (title facts only; NOT evidence, never use it to infer plot):\n"
                + background
            )

        return "\n\n".join(sections)

    def build_user_prompt(self, data: SynthesisInput) -> str:
        parts = [f'Question: "{data.question}"']
        if data.retrieval.anchor:
            parts.append("RECENT CONTEXT:\n" + _format_evidence(data.retrieval.anchor))
        if data.retrieval.semantic:
            parts.append("RELATED CONTEXT:\n" + _format_evidence(data.retrieval.semantic))
        if data.digest_block:
            parts.append("PREVIOUS SEASONS (summaries):\n" + data.digest_block)
        parts.append("Answer using only the context above, with citations.")
        return "\n\n".join(parts)

    def _format_metadata(self, metadata: TitleMetadata | None) -> str:
        if metadata is None:
            return ""
        lines = [f"Title: {metadata.title}"]
        if metadata.year:
            lines.append(f"Year: {metadata.year}")
        if metadata.genres:
            lines.append(f"Genres: {', '.join(metadata.genres)}")
        if metadata.tagline:
            lines.append(f"Tagline: {metadata.tagline}")
        if metadata.cast:
            cast = ", ".join(m.describe() for m in metadata.cast[:PROMPT_CAST_LIMIT])
            lines.append(f"Characters: {cast}")
        return "\n".join(lines)
