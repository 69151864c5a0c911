"""initial travel schema: destinations, properties, categories, amenities, preferences

Revision ID: a1c3e5f7b9d0
Revises:
Branch Labels: None
Depends on: None

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector


# revision identifiers, used by Alembic.
revision = 'a1c3e5f7b9d0'
down_revision = None
branch_labels = None
depends_on = None

# Must match EMBEDDING_DIM. Changing it later needs an ALTER + embed-all.
EMBEDDING_DIM = 1024

_EMBEDDED_TABLES = ("destinations", "property_categories", "properties", "amenities")


def _embedding_columns():
    return [
        sa.Column("embedding", Vector(EMBEDDING_DIM), nullable=True),
        sa.Column("embedding_model", sa.String(120), nullable=True),
        sa.Column("embedding_updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("budget_per_day", sa.Float, nullable=True),
        sa.Column("interests", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("climate_preferences", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "destinations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False, index=True),
        sa.Column("country", sa.String(120), nullable=False, index=True),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("tags", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("climate", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("activities", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("best_months_to_visit", postgresql.JSONB, nullable=False, server_default="[]"),
        sa.Column("average_cost_per_day", sa.Float, nullable=True),
        sa.Column("popularity_score", sa.Integer, nullable=True),
        sa.Column("lat", sa.Float, nullable=True),
        sa.Column("lng", sa.Float, nullable=True),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        *_embedding_columns(),
    )

    op.create_table(
        "property_categories",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        *_embedding_columns(),
    )

    op.create_table(
        "amenities",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False, index=True),
        sa.Column("type", sa.String(60), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        *_embedding_columns(),
    )

    op.create_table(
        "properties",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False, index=True),
        sa.Column(
            "destination_id", sa.Integer,
            sa.ForeignKey("destinations.id", ondelete="SET NULL"),
            nullable=True, index=True,
        ),
        sa.Column(
            "category_id", sa.Integer,
            sa.ForeignKey("property_categories.id", ondelete="SET NULL"),
            nullable=True, index=True,
        ),
        sa.Column("star_rating", sa.SmallInteger, nullable=True),
        sa.Column("total_rooms", sa.Integer, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        *_embedding_columns(),
    )

    op.create_table(
        "property_amenities",
        sa.Column("property_id", sa.Integer, sa.ForeignKey("properties.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("amenity_id", sa.Integer, sa.ForeignKey("amenities.id", ondelete="CASCADE"), primary_key=True),
    )

    op.create_table(
        "preference_profiles",
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("data", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "query_embeddings",
        sa.Column("id", sa.Integer, primary_key=True, index=True),
        sa.Column("user_id", sa.Integer, nullable=True, index=True),
        sa.Column("query_text", sa.Text, nullable=False),
        sa.Column("embedding", Vector(EMBEDDING_DIM), nullable=False),
        sa.Column("model_name", sa.String(120), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # HNSW cosine indexes; NULL embeddings are simply not indexed
    for table in _EMBEDDED_TABLES:
        op.execute(
            f"CREATE INDEX ix_{table}_embedding_hnsw ON {table} "
            "USING hnsw (embedding vector_cosine_ops)"
        )


def downgrade() -> None:
    for table in _EMBEDDED_TABLES:
        op.execute(f"DROP INDEX IF EXISTS ix_{table}_embedding_hnsw")
    op.drop_table("query_embeddings")
    op.drop_table("preference_profiles")
    op.drop_table("property_amenities")
    op.drop_table("properties")
    op.drop_table("amenities")
    op.drop_table("property_categories")
    op.drop_table("destinations")
    op.drop_table("users")
