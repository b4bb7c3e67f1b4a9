"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from storefront.models.api import (
    CreditRequestStatus,
    InventoryUnitStatus,
    OrderStatus,
    Role,
)

MONEY = Numeric(12, 2)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Account(Base):
    """
    ORM model for accounts table (customer profile).

    The id is the identity provider's subject. credit_balance is kept
    non-negative by the order engine's guarded decrement.
    """

    __tablename__ = "accounts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.CUSTOMER.value)
    credit_balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    is_banned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    orders: Mapped[list["Order"]] = relationship(back_populates="account")

    __table_args__ = (
        CheckConstraint("role IN ('customer', 'admin', 'super_admin')", name="ck_account_role"),
        Index("idx_accounts_role", "role"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Account(id={self.id}, email={self.email}, balance={self.credit_balance})>"


class Product(Base):
    """ORM model for products table."""

    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    platform: Mapped[str] = mapped_column(String(50), nullable=False)
    price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    units: Mapped[list["InventoryUnit"]] = relationship(back_populates="product")

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_product_price_positive"),
        Index("idx_products_is_active", "is_active"),
        Index("idx_products_platform", "platform"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Product(id={self.id}, name={self.name}, price={self.price})>"


class InventoryUnit(Base):
    """
    ORM model for game_codes table.

    One redeemable code. encrypted_code is never cleartext; code_digest is a
    keyed hash used only for duplicate detection. Allocated rows are final.
    """

    __tablename__ = "game_codes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    product_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    encrypted_code: Mapped[str] = mapped_column(Text, nullable=False)
    code_digest: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InventoryUnitStatus.AVAILABLE.value
    )
    order_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=True
    )
    allocated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    product: Mapped[Product] = relationship(back_populates="units")

    __table_args__ = (
        CheckConstraint("status IN ('available', 'allocated')", name="ck_game_code_status"),
        CheckConstraint(
            "(status = 'available' AND order_id IS NULL) "
            "OR (status = 'allocated' AND order_id IS NOT NULL)",
            name="ck_game_code_allocation_consistency",
        ),
        UniqueConstraint("product_id", "code_digest", name="uq_game_code_product_digest"),
        Index("idx_game_codes_product_status_created", "product_id", "status", "created_at"),
        Index("idx_game_codes_order_id", "order_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<InventoryUnit(id={self.id}, product_id={self.product_id}, status={self.status})>"


class Order(Base):
    """ORM model for orders table."""

    __tablename__ = "orders"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING.value
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    account: Mapped[Account] = relationship(back_populates="orders")
    lines: Mapped[list["OrderLine"]] = relationship(
        back_populates="order", order_by="OrderLine.created_at"
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_order_total_non_negative"),
        CheckConstraint("payment_method IN ('credit', 'external')", name="ck_order_payment_method"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'cancelled')", name="ck_order_status"
        ),
        Index("idx_orders_account_created", "account_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Order(id={self.id}, account_id={self.account_id}, total={self.total_amount})>"


class OrderLine(Base):
    """
    ORM model for order_items table.

    One line per allocated unit; unit_price is a snapshot taken at purchase.
    """

    __tablename__ = "order_items"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    order_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    inventory_unit_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("game_codes.id", ondelete="RESTRICT"), nullable=True, unique=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    order: Mapped[Order] = relationship(back_populates="lines")
    product: Mapped[Product] = relationship()
    inventory_unit: Mapped[InventoryUnit | None] = relationship()

    __table_args__ = (
        CheckConstraint("quantity = 1", name="ck_order_item_single_unit"),
        CheckConstraint("unit_price > 0", name="ck_order_item_price_positive"),
        Index("idx_order_items_order_id", "order_id"),
        Index("idx_order_items_product_id", "product_id"),
    )


class CreditRequest(Base):
    """ORM model for credit_requests table (manual top-ups reviewed by admins)."""

    __tablename__ = "credit_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CreditRequestStatus.PENDING.value
    )
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_credit_request_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_credit_request_status"
        ),
        Index("idx_credit_requests_account_id", "account_id"),
        Index("idx_credit_requests_status", "status"),
    )
