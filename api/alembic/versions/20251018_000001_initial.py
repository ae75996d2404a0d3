"""initial schema: users, taste profiles, AI usage, catalog mirror

Revision ID: 20251018_000001
Revises: 
Create Date: 2025-10-18 00:00:01.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20251018_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("subscription_type", sa.String(length=32), nullable=False, server_default="free"),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "user_taste_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("genre_scores", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("sub_genre_scores", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("total_interactions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_decay_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", name="uq_user_taste_profile"),
    )
    op.create_index("ix_user_taste_profiles_user_id", "user_taste_profiles", ["user_id"])

    op.create_table(
        "ai_query_usage",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("top_k", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_ai_query_usage_user_id", "ai_query_usage", ["user_id"])
    op.create_index("ix_ai_query_usage_created_at", "ai_query_usage", ["created_at"])

    op.create_table(
        "genres",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
    )
    op.create_table(
        "sub_genres",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("genre_id", sa.String(length=64), sa.ForeignKey("genres.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_table(
        "moods",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
    )
    op.create_table(
        "instruments",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
    )

    op.create_table(
        "songs",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("title", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("audio_url", sa.String(length=1024), nullable=True),
        sa.Column("collection_type", sa.String(length=16), nullable=False, server_default="free"),
        sa.Column("bpm", sa.Float(), nullable=True),
        sa.Column("key", sa.String(length=64), nullable=True),
        sa.Column("has_vocals", sa.Boolean(), nullable=True),
        sa.Column("genres", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("sub_genres", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("moods", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("instruments", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("trending_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("total_plays", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_songs_created_at", "songs", ["created_at"])
    op.create_index("ix_songs_trending", "songs", ["trending_score", "total_plays"])


def downgrade() -> None:
    op.drop_index("ix_songs_trending", table_name="songs")
    op.drop_index("ix_songs_created_at", table_name="songs")
    op.drop_table("songs")
    op.drop_table("instruments")
    op.drop_table("moods")
    op.drop_table("sub_genres")
    op.drop_table("genres")
    op.drop_index("ix_ai_query_usage_created_at", table_name="ai_query_usage")
    op.drop_index("ix_ai_query_usage_user_id", table_name="ai_query_usage")
    op.drop_table("ai_query_usage")
    op.drop_index("ix_user_taste_profiles_user_id", table_name="user_taste_profiles")
    op.drop_table("user_taste_profiles")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
