"""create_subtitle_chunks_and_season_digests

Revision ID: 5b1e7c3a9d20
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5b1e7c3a9d20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the chunk store and the season digest store."""
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    op.create_table(
        'subtitle_chunks',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tmdb_id', sa.Integer(), nullable=False),
        sa.Column('media_type', sa.String(length=10), nullable=False),
        sa.Column('season_number', sa.Integer(), nullable=True),
        sa.Column('episode_number', sa.Integer(), nullable=True),
        sa.Column('chunk_index', sa.Integer(), nullable=False),
        sa.Column('start_seconds', sa.Float(), nullable=False),
        sa.Column('end_seconds', sa.Float(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('unit_chunk_count', sa.Integer(), nullable=False),
        sa.Column('embedding', Vector(1536), nullable=True),
        sa.Column('embedding_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint(
            'tmdb_id', 'media_type', 'season_number', 'episode_number', 'chunk_index',
            name='uq_subtitle_chunks_unit_chunk',
            postgresql_nulls_not_distinct=True,
        ),
    )
    op.create_index(
        'ix_subtitle_chunks_unit_time',
        'subtitle_chunks',
        ['tmdb_id', 'media_type', 'season_number', 'episode_number', 'start_seconds'],
    )
    op.create_index(
        'ix_subtitle_chunks_embedding_cosine',
        'subtitle_chunks',
        ['embedding'],
        postgresql_using='ivfflat',
        postgresql_with={'lists': 100},
        postgresql_ops={'embedding': 'vector_cosine_ops'},
    )

    op.create_table(
        'season_digests',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tmdb_id', sa.Integer(), nullable=False),
        sa.Column('season_number', sa.Integer(), nullable=False),
        sa.Column('season_name', sa.String(length=255), nullable=False),
        sa.Column('overview', sa.Text(), nullable=True),
        sa.Column('episode_summaries', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('embedding', Vector(384), nullable=True),
        sa.Column('embedding_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('tmdb_id', 'season_number', name='uq_season_digests_season'),
    )
    op.create_index('ix_season_digests_tmdb_id', 'season_digests', ['tmdb_id'])


def downgrade() -> None:
    """Drop both stores. The vector extension is left installed."""
    op.drop_index('ix_season_digests_tmdb_id', table_name='season_digests')
    op.drop_table('season_digests')
    op.drop_index('ix_subtitle_chunks_embedding_cosine', table_name='subtitle_chunks')
    op.drop_index('ix_subtitle_chunks_unit_time', table_name='subtitle_chunks')
    op.drop_table('subtitle_chunks')
