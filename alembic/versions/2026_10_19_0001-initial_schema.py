"""Initial storefront schema: accounts, products, game codes, orders, credit requests.

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def upgrade() -> None:
    """Create all storefront tables."""
    # ========================================================================
    # accounts (customer profiles; id = identity provider subject)
    # ========================================================================
    op.create_table(
        "accounts",
        _id_column(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="customer"),
        sa.Column("credit_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("is_banned", sa.Boolean, nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("role IN ('customer', 'admin', 'super_admin')", name="ck_account_role"),
        sa.UniqueConstraint("email", name="uq_accounts_email"),
    )
    op.create_index("idx_accounts_role", "accounts", ["role"])

    # ========================================================================
    # products
    # ========================================================================
    op.create_table(
        "products",
        _id_column(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("platform", sa.String(50), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("image_url", sa.String(1024), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("price > 0", name="ck_product_price_positive"),
    )
    op.create_index("idx_products_is_active", "products", ["is_active"])
    op.create_index("idx_products_platform", "products", ["platform"])

    # ========================================================================
    # orders
    # ========================================================================
    op.create_table(
        "orders",
        _id_column(),
        sa.Column(
            "account_id",
            UUID(as_uuid=True),
            sa.ForeignKey("accounts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("total_amount >= 0", name="ck_order_total_non_negative"),
        sa.CheckConstraint(
            "payment_method IN ('credit', 'external')", name="ck_order_payment_method"
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled')", name="ck_order_status"
        ),
    )
    op.create_index("idx_orders_account_created", "orders", ["account_id", "created_at"])

    # ========================================================================
    # game_codes (inventory units)
    # ========================================================================
    op.create_table(
        "game_codes",
        _id_column(),
        sa.Column(
            "product_id",
            UUID(as_uuid=True),
            sa.ForeignKey("products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("encrypted_code", sa.Text, nullable=False),
        sa.Column("code_digest", sa.String(64), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="available"),
        sa.Column(
            "order_id",
            UUID(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("allocated_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint("status IN ('available', 'allocated')", name="ck_game_code_status"),
        sa.CheckConstraint(
            "(status = 'available' AND order_id IS NULL) "
            "OR (status = 'allocated' AND order_id IS NOT NULL)",
            name="ck_game_code_allocation_consistency",
        ),
        sa.UniqueConstraint("product_id", "code_digest", name="uq_game_code_product_digest"),
    )
    op.create_index(
        "idx_game_codes_product_status_created",
        "game_codes",
        ["product_id", "status", "created_at"],
    )
    op.create_index("idx_game_codes_order_id", "game_codes", ["order_id"])

    # ========================================================================
    # order_items (one row per allocated unit, price snapshot)
    # ========================================================================
    op.create_table(
        "order_items",
        _id_column(),
        sa.Column(
            "order_id",
            UUID(as_uuid=True),
            sa.ForeignKey("orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "product_id",
            UUID(as_uuid=True),
            sa.ForeignKey("products.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "inventory_unit_id",
            UUID(as_uuid=True),
            sa.ForeignKey("game_codes.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        _created_at(),
        sa.CheckConstraint("quantity = 1", name="ck_order_item_single_unit"),
        sa.CheckConstraint("unit_price > 0", name="ck_order_item_price_positive"),
        sa.UniqueConstraint("inventory_unit_id", name="uq_order_items_inventory_unit"),
    )
    op.create_index("idx_order_items_order_id", "order_items", ["order_id"])
    op.create_index("idx_order_items_product_id", "order_items", ["product_id"])

    # ========================================================================
    # credit_requests
    # ========================================================================
    op.create_table(
        "credit_requests",
        _id_column(),
        sa.Column(
            "account_id",
            UUID(as_uuid=True),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("admin_notes", sa.Text, nullable=True),
        sa.Column(
            "reviewed_by",
            UUID(as_uuid=True),
            sa.ForeignKey("accounts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.CheckConstraint("amount > 0", name="ck_credit_request_amount_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_credit_request_status"
        ),
    )
    op.create_index("idx_credit_requests_account_id", "credit_requests", ["account_id"])
    op.create_index("idx_credit_requests_status", "credit_requests", ["status"])


def downgrade() -> None:
    """Drop all storefront tables."""
    op.drop_index("idx_credit_requests_status", table_name="credit_requests")
    op.drop_index("idx_credit_requests_account_id", table_name="credit_requests")
    op.drop_table("credit_requests")

    op.drop_index("idx_order_items_product_id", table_name="order_items")
    op.drop_index("idx_order_items_order_id", table_name="order_items")
    op.drop_table("order_items")

    op.drop_index("idx_game_codes_order_id", table_name="game_codes")
    op.drop_index("idx_game_codes_product_status_created", table_name="game_codes")
    op.drop_table("game_codes")

    op.drop_index("idx_orders_account_created", table_name="orders")
    op.drop_table("orders")

    op.drop_index("idx_products_platform", table_name="products")
    op.drop_index("idx_products_is_active", table_name="products")
    op.drop_table("products")

    op.drop_index("idx_accounts_role", table_name="accounts")
    op.drop_table("accounts")
