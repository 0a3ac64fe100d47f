"""Initial schema: scrape_requests, scrape_results and scrape_cache.

The UNIQUE constraints on ``normalized_url`` in ``scrape_results`` and
``scrape_cache`` are the conflict targets of the result/cache upsert.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the three scraping tables with their constraints and indexes."""
    op.create_table(
        "scrape_requests",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("source_service", sa.Text(), nullable=False),
        sa.Column("source_org_id", sa.Text(), nullable=False),
        sa.Column("source_ref_id", sa.Text(), nullable=True),
        sa.Column("run_id", sa.Text(), nullable=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("options", postgresql.JSONB(), nullable=True),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_scrape_requests_source",
        "scrape_requests",
        ["source_service", "source_org_id"],
    )
    op.create_index("idx_scrape_requests_url", "scrape_requests", ["url"])
    op.create_index("idx_scrape_requests_status", "scrape_requests", ["status"])

    op.create_table(
        "scrape_results",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "request_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("scrape_requests.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("normalized_url", sa.Text(), nullable=False),
        # Company profile
        sa.Column("company_name", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("industry", sa.Text(), nullable=True),
        sa.Column("employee_count", sa.Text(), nullable=True),
        sa.Column("founded_year", sa.Integer(), nullable=True),
        sa.Column("headquarters", sa.Text(), nullable=True),
        sa.Column("website", sa.Text(), nullable=True),
        # Contact
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("linkedin_url", sa.Text(), nullable=True),
        sa.Column("twitter_url", sa.Text(), nullable=True),
        # Offerings
        sa.Column("products", postgresql.JSONB(), nullable=True),
        sa.Column("services", postgresql.JSONB(), nullable=True),
        # Raw provider output
        sa.Column("raw_markdown", sa.Text(), nullable=True),
        sa.Column("raw_metadata", postgresql.JSONB(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.UniqueConstraint("normalized_url", name="uq_scrape_results_normalized_url"),
    )
    op.create_index("idx_scrape_results_request", "scrape_results", ["request_id"])
    op.create_index("idx_scrape_results_expires", "scrape_results", ["expires_at"])

    op.create_table(
        "scrape_cache",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("normalized_url", sa.Text(), nullable=False),
        sa.Column(
            "result_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("scrape_results.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("company_name", sa.Text(), nullable=True),
        sa.Column("industry", sa.Text(), nullable=True),
        sa.Column(
            "is_valid",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.UniqueConstraint("normalized_url", name="uq_scrape_cache_normalized_url"),
    )
    op.create_index("idx_cache_expires", "scrape_cache", ["expires_at"])


def downgrade() -> None:
    """Drop the scraping tables in dependency order."""
    op.drop_index("idx_cache_expires", table_name="scrape_cache")
    op.drop_table("scrape_cache")
    op.drop_index("idx_scrape_results_expires", table_name="scrape_results")
    op.drop_index("idx_scrape_results_request", table_name="scrape_results")
    op.drop_table("scrape_results")
    op.drop_index("idx_scrape_requests_status", table_name="scrape_requests")
    op.drop_index("idx_scrape_requests_url", table_name="scrape_requests")
    op.drop_index("idx_scrape_requests_source", table_name="scrape_requests")
    op.drop_table("scrape_requests")
