"""slot market initial schema

Revision ID: 9c1e2a7b4d10
Revises:
Create Date: 2026-10-19 09:00:00

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "9c1e2a7b4d10"
down_revision = None
branch_labels = None
depends_on = None

JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")
LISTING_TABLES = ("servers", "advertisements", "premium_text_servers", "premium_banners", "rotating_promos")


def _ts(name, nullable=False, default=True):
    kwargs = {"server_default": sa.func.now()} if default else {}
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, **kwargs)


def _listing_columns():
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("slot_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        _ts("expires_at", nullable=True, default=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
    ]


def _listing_indexes(table):
    for col in ("user_id", "slot_id", "status", "expires_at"):
        op.create_index(f"ix_{table}_{col}", table, [col])


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "servers",
        *_listing_columns(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("website", sa.String(length=255), nullable=True),
        sa.Column("banner_url", sa.String(length=512), nullable=True),
        sa.Column("season", sa.String(length=40), nullable=True),
        sa.Column("part", sa.String(length=40), nullable=True),
        sa.Column("exp_rate", sa.String(length=40), nullable=True),
        _ts("open_date", nullable=True, default=False),
        sa.Column("features", JSON, nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_table(
        "advertisements",
        *_listing_columns(),
        sa.Column("title", sa.String(length=160), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("website", sa.String(length=255), nullable=True),
        sa.Column("banner_url", sa.String(length=512), nullable=True),
        sa.Column("ad_type", sa.String(length=20), nullable=True),
        sa.Column("vip_level", sa.String(length=20), nullable=False, server_default="none"),
    )
    op.create_table(
        "premium_text_servers",
        *_listing_columns(),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("website", sa.String(length=255), nullable=True),
        sa.Column("exp_rate", sa.String(length=40), nullable=True),
        sa.Column("version", sa.String(length=40), nullable=True),
        _ts("open_date", nullable=True, default=False),
    )
    op.create_table(
        "premium_banners",
        *_listing_columns(),
        sa.Column("title", sa.String(length=160), nullable=False),
        sa.Column("image_url", sa.String(length=512), nullable=False),
        sa.Column("link_url", sa.String(length=512), nullable=True),
    )
    op.create_table(
        "rotating_promos",
        *_listing_columns(),
        sa.Column("text", sa.String(length=280), nullable=False),
        sa.Column("link", sa.String(length=512), nullable=True),
        sa.Column("highlight", sa.String(length=80), nullable=True),
        sa.Column("promo_type", sa.String(length=20), nullable=True),
    )
    for table in LISTING_TABLES:
        _listing_indexes(table)

    op.create_table(
        "pricing_packages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("slot_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("product_type", sa.String(length=40), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("features", JSON, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("price_cents >= 0", name="ck_pricing_packages_price_non_negative"),
        sa.CheckConstraint("duration_days > 0", name="ck_pricing_packages_duration_positive"),
    )
    op.create_index("ix_pricing_packages_slot_id", "pricing_packages", ["slot_id"])

    op.create_table(
        "slot_purchases",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("slot_id", sa.Integer(), nullable=False),
        sa.Column("package_id", sa.Integer(), sa.ForeignKey("pricing_packages.id", ondelete="RESTRICT"), nullable=True),
        sa.Column("product_type", sa.String(length=40), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False, server_default="pending"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("provider_reference", sa.String(length=255), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("draft_kind", sa.String(length=20), nullable=True),
        sa.Column("draft_id", sa.Integer(), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("completed_at", nullable=True, default=False),
        _ts("expires_at", nullable=True, default=False),
        _ts("created_at"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider_reference"),
    )
    for col in ("user_id", "slot_id", "package_id", "status", "expires_at"):
        op.create_index(f"ix_slot_purchases_{col}", "slot_purchases", [col])
    op.create_index("ix_slot_purchases_user_slot_status", "slot_purchases", ["user_id", "slot_id", "status"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("provider_event_id", sa.String(length=255), nullable=True),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="usd"),
        sa.Column("product_type", sa.String(length=40), nullable=False, server_default="unknown"),
        sa.Column("duration_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("platform_fee_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("seller_earnings_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("slot_purchase_id", sa.Integer(), sa.ForeignKey("slot_purchases.id", ondelete="SET NULL"), nullable=True),
        sa.Column("meta", JSON, nullable=False),
        _ts("completed_at", nullable=True, default=False),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    for col in ("user_id", "provider", "provider_event_id", "status", "slot_purchase_id"):
        op.create_index(f"ix_payments_{col}", "payments", [col])

    op.create_table(
        "payment_config",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("config_key", sa.String(length=32), nullable=False),
        sa.Column("config_value", JSON, nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _ts("created_at"),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("config_key"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("title", sa.String(length=160), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", JSON, nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("dedup_key", sa.String(length=160), nullable=True),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dedup_key"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])

    op.create_table(
        "webhook_event_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider", sa.String(length=16), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("type", sa.String(length=80), nullable=False),
        sa.Column("signature_valid", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("payload", JSON, nullable=False),
        sa.Column("retries", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.String(length=255), nullable=True),
        _ts("processed_at", nullable=True, default=False),
        _ts("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider", "event_id", name="uq_webhook_event_logs_provider_event"),
    )
    for col in ("provider", "event_id", "type"):
        op.create_index(f"ix_webhook_event_logs_{col}", "webhook_event_logs", [col])

    op.create_table(
        "slot_locks",
        sa.Column("slot_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _ts("updated_at"),
        sa.PrimaryKeyConstraint("slot_id"),
    )


def downgrade():
    op.drop_table("slot_locks")
    op.drop_table("webhook_event_logs")
    op.drop_table("notifications")
    op.drop_table("payment_config")
    op.drop_table("payments")
    op.drop_table("slot_purchases")
    op.drop_table("pricing_packages")
    for table in reversed(LISTING_TABLES):
        op.drop_table(table)
    op.drop_table("users")
