"""Database models package."""

from src.models.db.base import Base, TimestampMixin
from src.models.db.season_digest import COMPACT_EMBEDDING_DIMENSION, SeasonDigest
from src.models.db.subtitle_chunk import CONTENT_EMBEDDING_DIMENSION, SubtitleChunk

__all__ = [
    "Base",
    "COMPACT_EMBEDDING_DIMENSION",
    "CONTENT_EMBEDDING_DIMENSION",
    "SeasonDigest",
    "SubtitleChunk",
    "TimestampMixin",
]
