"""Knowledge base: vector content + user ratings tables

Revision ID: kb_001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "kb_001"
down_revision = None
branch_labels = None
depends_on = None

EMBEDDING_DIMENSIONS = 1536


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    # --- vector_content ---
    op.create_table(
        "vector_content",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("content_id", sa.String(200), nullable=False),
        sa.Column("content_type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("metadata", JSONB, server_default="{}"),
        sa.Column("embedding", Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("content_id", "content_type", name="uq_vector_content_entity"),
    )
    op.create_index("ix_vector_content_content_type", "vector_content", ["content_type"])
    op.create_index("idx_vector_content_updated", "vector_content", ["updated_at"])
    op.create_index("idx_vector_content_metadata", "vector_content", ["metadata"], postgresql_using="gin")
    op.execute(
        "CREATE INDEX idx_vector_content_embedding ON vector_content "
        "USING hnsw (embedding vector_cosine_ops)"
    )

    # --- user_ratings ---
    op.create_table(
        "user_ratings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("destination_id", sa.String(200), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False, server_default="anonymous"),
        sa.Column("rating", sa.Integer, nullable=False),
        sa.Column("category", sa.String(30), nullable=False),
        sa.Column("comment", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_user_ratings_rating"),
    )
    op.create_index("ix_user_ratings_destination_id", "user_ratings", ["destination_id"])
    op.create_index("idx_user_ratings_created", "user_ratings", ["created_at"])


def downgrade() -> None:
    op.drop_table("user_ratings")
    op.execute("DROP INDEX IF EXISTS idx_vector_content_embedding")
    op.drop_table("vector_content")
