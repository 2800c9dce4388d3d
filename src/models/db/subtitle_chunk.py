"""Subtitle chunk database model: timed transcript spans with content-space embeddings."""

from pgvector.sqlalchemy import Vector
from sqlalchemy import Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.models.db.base import Base, TimestampMixin

# OpenAI text-embedding-3-small produces 1536-dimensional vectors
CONTENT_EMBEDDING_DIMENSION = 1536


class SubtitleChunk(Base, TimestampMixin):
    """A token-bounded span of one media unit's subtitles.

    A unit is a movie (no season/episode) or one TV episode. Chunks of a unit
    may overlap in time; chunk_index grows with start_seconds. Only content
    (speaker annotation), embedding and embedding_attempts (backfill) change
    after insert.
    """

    __tablename__ = "subtitle_chunks"

    tmdb_id: Mapped[int] = mapped_column(Integer, nullable=False)
    media_type: Mapped[str] = mapped_column(String(10), nullable=False)
    season_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episode_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    start_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    end_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # Chunk total of the ingestion that wrote the row; fewer stored rows means a partial unit
    unit_chunk_count: Mapped[int] = mapped_column(Integer, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(
        Vector(CONTENT_EMBEDDING_DIMENSION),  # type: ignore[no-untyped-call]
        nullable=True,
    )
    embedding_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    __table_args__ = (
        # Movies have NULL season/episode; they must still collide on re-ingest
        UniqueConstraint(
            "tmdb_id",
            "media_type",
            "season_number",
            "episode_number",
            "chunk_index",
            name="uq_subtitle_chunks_unit_chunk",
            postgresql_nulls_not_distinct=True,
        ),
        Index(
            "ix_subtitle_chunks_embedding_cosine",
            embedding,
            postgresql_using="ivfflat",
            postgresql_with={"lists": 100},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
        Index(
            "ix_subtitle_chunks_unit_time",
            "tmdb_id",
            "media_type",
            "season_number",
            "episode_number",
            "start_seconds",
        ),
    )
