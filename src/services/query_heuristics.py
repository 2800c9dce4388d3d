"""String heuristics over the viewer's question."""

import re

_EXPLICIT_REFERENCE = re.compile(r"\b(?:season|episode)\s+\d+\b", re.IGNORECASE)

RETROSPECTIVE_PHRASES = (
    "before",
    "earlier",
    "previously",
    "remember when",
    "last season",
    "last episode",
    "in the past",
    "happened to",
    "what happened with",
)

_WORD_PUNCTUATION = re.compile(r"[^\w\s]")


def references_past_content(question: str) -> bool:
    """Whether a question looks back at earlier episodes or seasons.

    Matches an explicit "season N" / "episode N" or a retrospective phrase.
    Approximate by nature; keep callers dependent only on the boolean.
    """
    if _EXPLICIT_REFERENCE.search(question):
        return True
    lowered = question.lower()
    return any(phrase in lowered for phrase in RETROSPECTIVE_PHRASES)


def extract_keywords(question: str, min_length: int = 3) -> list[str]:
    """Lowercased question words longer than `min_length`, punctuation removed."""
    words = _WORD_PUNCTUATION.sub(" ", question.lower()).split()
    seen: set[str] = set()
    keywords: list[str] = []
    for word in words:
        if len(word) > min_length and word not in seen:
            seen.add(word)
            keywords.append(word)
    return keywords
