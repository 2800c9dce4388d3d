"""Season digest database model: compressed prior-season summaries."""

from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from src.models.db.base import Base, TimestampMixin

# thenlper/gte-small produces 384-dimensional vectors
COMPACT_EMBEDDING_DIMENSION = 384


class SeasonDigest(Base, TimestampMixin):
    """Summary of one TV season built from the metadata provider.

    episode_summaries holds {"episode", "name", "overview"} dicts ordered by
    episode number.
    """

    __tablename__ = "season_digests"

    tmdb_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    season_number: Mapped[int] = mapped_column(Integer, nullable=False)
    season_name: Mapped[str] = mapped_column(String(255), nullable=False)
    overview: Mapped[str | None] = mapped_column(Text, nullable=True)
    episode_summaries: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
    )
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(COMPACT_EMBEDDING_DIMENSION),  # type: ignore[no-untyped-call]
        nullable=True,
    )
    embedding_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    __table_args__ = (
        UniqueConstraint("tmdb_id", "season_number", name="uq_season_digests_season"),
    )
