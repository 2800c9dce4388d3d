"""SRT parsing and token-bounded, overlapping chunking of subtitle lines."""

import math
import re
from dataclasses import dataclass

from src.models.domain.media import format_timestamp

TARGET_CHUNK_TOKENS = 500
MAX_CHUNK_TOKENS = 800
OVERLAP_TOKENS = 75
CHARS_PER_TOKEN = 4

_TIME_RANGE_PATTERN = re.compile(
    r"(\d+):(\d{2}):(\d{2})(?:[,.](\d{1,3}))?\s*-->\s*(\d+):(\d{2}):(\d{2})(?:[,.](\d{1,3}))?"
)
_BLOCK_SEPARATOR = re.compile(r"\n\s*\n")
_MARKUP = re.compile(r"<[^>]*>|\{\\[^}]*\}")
_STAGE_DIRECTION = re.compile(r"\[[^\]]*\]")
_ASIDE = re.compile(r"\([^)]*\)")
_WHITESPACE = re.compile(r"\s+")
_NATURAL_BREAK = re.compile(r"[.!?][\"'”’]?$")


@dataclass
class TimedLine:
    """One subtitle cue, cleaned of markup."""

    start_seconds: float
    end_seconds: float
    text: str


@dataclass
class ChunkData:
    """A chunk ready to persist (embedding is added by the caller)."""

    chunk_index: int
    start_seconds: float
    end_seconds: float
    content: str
    token_estimate: int


def estimate_tokens(text: str) -> int:
    """Approximate token count at ~4 characters per token."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def is_natural_break(text: str) -> bool:
    """Whether a line ends a sentence (., ! or ?, optionally before a closing quote)."""
    return _NATURAL_BREAK.search(text.strip()) is not None


def _to_seconds(hours: str, minutes: str, seconds: str, millis: str | None) -> float:
    value = int(hours) * 3600 + int(minutes) * 60 + int(seconds)
    if millis:
        value += int(millis.ljust(3, "0")) / 1000
    return float(value)


def clean_text(text: str) -> str:
    """Strip style tags, [stage directions] and (asides), then collapse whitespace."""
    text = _MARKUP.sub("", text)
    text = _STAGE_DIRECTION.sub("", text)
    text = _ASIDE.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def parse_srt(document: str) -> list[TimedLine]:
    """Parse an SRT document into timed lines.

    Blocks without a time range, or whose text is empty after cleaning,
    are skipped.
    """
    normalized = document.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    lines: list[TimedLine] = []

    for block in _BLOCK_SEPARATOR.split(normalized.strip()):
        block_lines = block.strip().split("\n")
        for i, block_line in enumerate(block_lines):
            match = _TIME_RANGE_PATTERN.search(block_line)
            if match is None:
                continue
            groups = match.groups()
            text = clean_text(" ".join(block_lines[i + 1 :]))
            if text:
                lines.append(
                    TimedLine(
                        start_seconds=_to_seconds(*groups[:4]),
                        end_seconds=_to_seconds(*groups[4:]),
                        text=text,
                    )
                )
            break

    return lines


def _render(lines: list[TimedLine]) -> str:
    return " ".join(f"[{format_timestamp(line.start_seconds)}] {line.text}" for line in lines)


def _overlap_tail(lines: list[TimedLine]) -> list[TimedLine]:
    """Trailing lines whose combined size stays within OVERLAP_TOKENS."""
    tokens = 0
    start = len(lines)
    for i in range(len(lines) - 1, -1, -1):
        line_tokens = estimate_tokens(lines[i].text)
        if tokens + line_tokens > OVERLAP_TOKENS:
            break
        tokens += line_tokens
        start = i
    return lines[start:]


def chunk_lines(lines: list[TimedLine]) -> list[ChunkData]:
    """Group timed lines into overlapping chunks.

    A chunk closes when the next line would push it past MAX_CHUNK_TOKENS,
    or once it holds TARGET_CHUNK_TOKENS and the latest line ends a sentence.
    Each new chunk starts with the previous chunk's last ~OVERLAP_TOKENS of
    lines. Lines are never split, so one oversized line forms its own chunk.
    """
    chunks: list[ChunkData] = []
    current: list[TimedLine] = []
    current_tokens = 0
    new_lines = 0  # lines added since the last close, excluding carried overlap

    def close() -> None:
        nonlocal current, current_tokens, new_lines
        chunks.append(
            ChunkData(
                chunk_index=len(chunks),
                start_seconds=current[0].start_seconds,
                end_seconds=current[-1].end_seconds,
                content=_render(current),
                token_estimate=current_tokens,
            )
        )
        current = _overlap_tail(current)
        current_tokens = sum(estimate_tokens(line.text) for line in current)
        new_lines = 0

    for line in lines:
        line_tokens = estimate_tokens(line.text)

        if current and new_lines and current_tokens + line_tokens > MAX_CHUNK_TOKENS:
            close()

        current.append(line)
        current_tokens += line_tokens
        new_lines += 1

        if current_tokens >= TARGET_CHUNK_TOKENS and is_natural_break(line.text):
            close()

    if new_lines:
        close()

    return chunks


def chunk_srt(document: str) -> list[ChunkData]:
    """Parse and chunk an SRT document; empty when nothing parses."""
    return chunk_lines(parse_srt(document))
