"""Job queue, sources, and articles."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision = "20261019000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "job_queue",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("general_id", sa.String(length=512), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column(
            "payload",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "not_before",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("general_id", name="uq_job_queue_general_id"),
    )
    op.create_index("ix_job_queue_not_before_id", "job_queue", ["not_before", "id"])
    op.create_index("ix_job_queue_locked_at", "job_queue", ["locked_at"])

    op.create_table(
        "sources",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("home_url", sa.String(length=2048), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("last_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_success", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "recent_failures",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column(
            "recent_failure_details",
            sa.Text(),
            nullable=False,
            server_default=sa.text("''"),
        ),
        sa.Column("last_failure_kind", sa.String(length=32), nullable=True),
        sa.Column("strategy_type", sa.String(length=32), nullable=True),
    )
    op.create_index("ix_sources_last_attempt", "sources", ["last_attempt"])
    op.create_index("ix_sources_recent_failures", "sources", ["recent_failures"])
    op.create_index("ix_sources_url", "sources", ["url"])

    op.create_table(
        "articles",
        sa.Column("id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("guid", sa.String(length=1024), nullable=False),
        sa.Column(
            "source_id",
            sa.Integer(),
            sa.ForeignKey("sources.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("author", sa.String(length=512), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "last_seen_in_feed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("guid", name="uq_articles_guid"),
    )
    op.create_index("ix_articles_source_id", "articles", ["source_id"])
    op.create_index("ix_articles_last_seen_in_feed_at", "articles", ["last_seen_in_feed_at"])


def downgrade() -> None:
    op.drop_index("ix_articles_last_seen_in_feed_at", table_name="articles")
    op.drop_index("ix_articles_source_id", table_name="articles")
    op.drop_table("articles")

    op.drop_index("ix_sources_url", table_name="sources")
    op.drop_index("ix_sources_recent_failures", table_name="sources")
    op.drop_index("ix_sources_last_attempt", table_name="sources")
    op.drop_table("sources")

    op.drop_index("ix_job_queue_locked_at", table_name="job_queue")
    op.drop_index("ix_job_queue_not_before_id", table_name="job_queue")
    op.drop_table("job_queue")
