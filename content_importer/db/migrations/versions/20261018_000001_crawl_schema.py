"""Crawl pipeline and catalog schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Crawl sources (full config as JSON)
    op.create_table(
        "crawl_sources",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("base_url", sa.String(500), nullable=False),
        sa.Column("domain", sa.String(255), default=""),
        sa.Column("kind", sa.String(20), default="article"),
        sa.Column("is_active", sa.Boolean(), default=True),
        sa.Column("config_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_crawl_sources_domain", "crawl_sources", ["domain"])

    op.create_table(
        "crawl_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("url", sa.String(2000), nullable=False),
        sa.Column("kind", sa.String(20), default="article"),
        sa.Column("status", sa.String(20), default="queued"),
        sa.Column(
            "source_id",
            sa.String(36),
            sa.ForeignKey("crawl_sources.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("category_id", sa.String(36), nullable=True),
        sa.Column("target_status", sa.String(20), default="pending_review"),
        sa.Column("extracted_json", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_item_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_crawl_jobs_kind", "crawl_jobs", ["kind"])
    op.create_index("ix_crawl_jobs_status", "crawl_jobs", ["status"])
    op.create_index("ix_crawl_jobs_source_id", "crawl_jobs", ["source_id"])
    op.create_index("ix_crawl_jobs_created_at", "crawl_jobs", ["created_at"])

    op.create_table(
        "selector_presets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("domain", sa.String(255), nullable=False, unique=True),
        sa.Column("preset_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    # Catalog
    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("kind", sa.String(20), default="article"),
        sa.Column("parent_id", sa.String(36), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("sort_order", sa.Integer(), default=0),
    )
    op.create_index("ix_categories_kind", "categories", ["kind"])
    op.create_index("ix_categories_parent_id", "categories", ["parent_id"])

    op.create_table(
        "articles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("excerpt", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), default=""),
        sa.Column("featured_image", sa.String(2000), nullable=True),
        sa.Column("author", sa.String(255), nullable=True),
        sa.Column("category_id", sa.String(36), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("status", sa.String(20), default="draft"),
        sa.Column("meta_title", sa.String(255), nullable=True),
        sa.Column("meta_description", sa.String(500), nullable=True),
        sa.Column("source_url", sa.String(2000), nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_articles_category_id", "articles", ["category_id"])
    op.create_index("ix_articles_source_url", "articles", ["source_url"])
    op.create_index("ix_articles_content_hash", "articles", ["content_hash"])

    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("short_description", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("images_json", sa.Text(), default="[]"),
        sa.Column("category_id", sa.String(36), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("status", sa.String(20), default="draft"),
        sa.Column("meta_title", sa.String(255), nullable=True),
        sa.Column("meta_description", sa.String(500), nullable=True),
        sa.Column("source_url", sa.String(2000), nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_products_category_id", "products", ["category_id"])
    op.create_index("ix_products_source_url", "products", ["source_url"])
    op.create_index("ix_products_content_hash", "products", ["content_hash"])

    op.create_table(
        "product_variants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("product_id", sa.String(36), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("sale_price", sa.Float(), nullable=True),
        sa.Column("stock_quantity", sa.Integer(), default=0),
        sa.UniqueConstraint("product_id", "sku", name="uq_product_variant_sku"),
    )
    op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"])


def downgrade() -> None:
    op.drop_table("product_variants")
    op.drop_table("products")
    op.drop_table("articles")
    op.drop_table("categories")
    op.drop_table("selector_presets")
    op.drop_table("crawl_jobs")
    op.drop_table("crawl_sources")
