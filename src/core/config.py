"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, PostgresDsn, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: PostgresDsn = Field(
        default=...,
        description="PostgreSQL connection URL with asyncpg driver",
    )

    # Redis (RQ background jobs)
    redis_url: RedisDsn = Field(
        default=...,
        description="Redis connection URL",
    )

    # OpenAI (content-space embeddings)
    openai_api_key: str = Field(
        default=...,
        description="OpenAI API key for embeddings",
    )
    openai_embedding_model: str = Field(
        default="text-embedding-3-small",
        description="OpenAI embedding model for subtitle chunks and questions",
    )

    # Compact-space embeddings (season digests)
    compact_embedding_model: str = Field(
        default="thenlper/gte-small",
        description="sentence-transformers model producing 384-dim vectors",
    )
    compact_embedding_device: Literal["cpu", "cuda", "mps"] = Field(
        default="cpu",
        description="Device for the compact embedding model",
    )

    # Anthropic (answer synthesis and speaker annotation)
    anthropic_api_key: str = Field(
        default=...,
        description="Anthropic API key for Claude",
    )
    anthropic_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Claude model to use for answers",
    )

    # Transcript and metadata providers
    opensubtitles_api_key: str = Field(
        default=...,
        description="OpenSubtitles REST API key",
    )
    opensubtitles_user_agent: str = Field(
        default="SpoilerSafeCompanion v0.1.0",
        description="User-Agent sent to OpenSubtitles",
    )
    tmdb_api_key: str = Field(
        default=...,
        description="TMDB v3 API key",
    )

    # Application
    app_env: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment",
    )
    app_debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    app_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # CORS
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins",
    )

    # Retrieval: anchor stage
    retrieval_anchor_window_seconds: float = Field(
        default=300.0,
        description="Trailing window before the cursor for anchor chunks",
    )
    retrieval_anchor_query_limit: int = Field(
        default=15,
        description="Maximum anchor chunks fetched from the window",
    )
    retrieval_anchor_evidence_limit: int = Field(
        default=10,
        description="Maximum anchor chunks passed to the prompt",
    )
    retrieval_anchor_fallback_limit: int = Field(
        default=10,
        description="Latest-ending chunks used when the anchor window is empty",
    )

    # Retrieval: semantic stage
    retrieval_semantic_candidates: int = Field(
        default=60,
        description="Candidates requested from the vector search",
    )
    retrieval_semantic_top_k: int = Field(
        default=10,
        description="Re-ranked semantic chunks passed to the prompt",
    )
    retrieval_weight_similarity: float = Field(default=0.25)
    retrieval_weight_proximity: float = Field(default=0.45)
    retrieval_weight_recency: float = Field(default=0.20)
    retrieval_weight_keyword: float = Field(default=0.10)
    retrieval_proximity_boost_window_seconds: float = Field(default=300.0)
    retrieval_proximity_boost: float = Field(default=0.3)
    retrieval_keyword_hit_score: float = Field(default=0.15)
    retrieval_keyword_cap: float = Field(default=0.4)
    retrieval_keyword_min_length: int = Field(
        default=3,
        description="Question words must be longer than this to count",
    )
    retrieval_recency_same_season_base: float = Field(default=0.7)
    retrieval_recency_other_season_base: float = Field(default=0.3)
    retrieval_recency_past_reference: float = Field(default=0.5)
    retrieval_recency_gap_decay: float = Field(default=0.1)

    # Season digests
    digest_candidates_default: int = Field(default=3)
    digest_candidates_cross_season: int = Field(default=5)
    digest_max_seasons: int = Field(
        default=2,
        description="Prior seasons included in the prompt",
    )

    # Cache population
    populator_episode_delay_seconds: float = Field(
        default=0.5,
        description="Pause between per-episode ingestions",
    )
    populator_max_digest_seasons: int = Field(
        default=10,
        description="Upper bound on prior seasons digested per request",
    )
    speaker_annotation_enabled: bool = Field(
        default=True,
        description="Queue speaker annotation for unannotated episodes",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance (singleton pattern)."""
    return Settings()
