"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from storefront.config import settings
from storefront.exceptions import InputValidationError, OrderValidationError
from storefront.models.api import (
    CreditRequestStatus,
    InventoryUnitStatus,
    OrderStatus,
    PaymentMethod,
    Role,
)

# ============================================================================
# Identity and authorization
# ============================================================================


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, passed explicitly into services."""

    account_id: UUID
    email: str | None
    role: Role

    @property
    def is_admin(self) -> bool:
        return can_manage_inventory(self.role)


def can_manage_inventory(role: Role) -> bool:
    """Admins and super admins manage products, codes, orders and credit requests."""
    return role in (Role.ADMIN, Role.SUPER_ADMIN)


def can_ban_account(actor_role: Role, target_role: Role) -> bool:
    """
    Ban/unban authorization.

    Super admins may ban anyone, admins only customers, customers no one.
    Self-ban is checked separately by the caller since it depends on identity.
    """
    if actor_role == Role.SUPER_ADMIN:
        return True
    if actor_role == Role.ADMIN:
        return target_role == Role.CUSTOMER
    return False


# ============================================================================
# Order placement
# ============================================================================


@dataclass(frozen=True)
class OrderLineRequest:
    """One requested cart line."""

    product_id: UUID
    quantity: int


@dataclass(frozen=True)
class OrderIntent:
    """Domain model for an order before persistence - immutable intent."""

    account_id: UUID
    lines: tuple[OrderLineRequest, ...]
    payment_method: PaymentMethod

    def __post_init__(self) -> None:
        """Validate order input. Raises OrderValidationError."""
        if not isinstance(self.account_id, UUID):
            raise OrderValidationError("account_id", "must be a UUID")
        if not self.lines:
            raise OrderValidationError("items", "at least one item is required")
        if len(self.lines) > settings.order_max_lines:
            raise OrderValidationError(
                "items", f"at most {settings.order_max_lines} items are allowed"
            )
        for index, line in enumerate(self.lines):
            if not isinstance(line.product_id, UUID):
                raise OrderValidationError(f"items[{index}].product_id", "must be a UUID")
            if isinstance(line.quantity, bool) or not isinstance(line.quantity, int):
                raise OrderValidationError(f"items[{index}].quantity", "must be an integer")
            if not 1 <= line.quantity <= settings.order_max_quantity_per_line:
                raise OrderValidationError(
                    f"items[{index}].quantity",
                    f"must be between 1 and {settings.order_max_quantity_per_line}",
                )
        # The cap holds per product, not just per submitted line
        for merged in self.merged_lines():
            if merged.quantity > settings.order_max_quantity_per_line:
                raise OrderValidationError(
                    "items",
                    f"total quantity for product {merged.product_id} must not exceed "
                    f"{settings.order_max_quantity_per_line}",
                )
        try:
            method = PaymentMethod(self.payment_method)
        except ValueError as exc:
            raise OrderValidationError("payment_method", "must be credit or external") from exc
        object.__setattr__(self, "payment_method", method)

    def merged_lines(self) -> tuple[OrderLineRequest, ...]:
        """Lines with repeated products merged, in first-seen order."""
        quantities: dict[UUID, int] = {}
        for line in self.lines:
            quantities[line.product_id] = quantities.get(line.product_id, 0) + line.quantity
        return tuple(OrderLineRequest(pid, qty) for pid, qty in quantities.items())


@dataclass(frozen=True)
class PricedLine:
    """A merged cart line priced from a fresh product read."""

    product_id: UUID
    product_name: str
    platform: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class DeliveredItem:
    """
    Order lines for one product, with decrypted codes.

    undelivered counts units whose payload could not be decrypted.
    """

    product_id: UUID
    product_name: str
    platform: str
    quantity: int
    unit_price: Decimal
    codes: tuple[str, ...] = ()
    undelivered: int = 0


@dataclass(frozen=True)
class OrderView:
    """Immutable order snapshot returned by placement and queries."""

    order_id: UUID
    account_id: UUID
    total_amount: Decimal
    payment_method: PaymentMethod
    status: OrderStatus
    created_at: datetime
    items: tuple[DeliveredItem, ...]
    balance_after: Decimal | None = None

    @property
    def fully_delivered(self) -> bool:
        return all(item.undelivered == 0 for item in self.items)


@dataclass(frozen=True)
class OrderExportRow:
    """One order flattened for the admin CSV export."""

    order_id: UUID
    customer_name: str | None
    customer_email: str | None
    items_count: int
    total_amount: Decimal
    payment_method: str
    status: str
    created_at: datetime


@dataclass(frozen=True)
class OrderExportFilter:
    """Admin export filters. date_to includes the whole day."""

    status: OrderStatus | None = None
    payment_method: PaymentMethod | None = None
    date_from: date | None = None
    date_to: date | None = None
    search: str | None = None

    def __post_init__(self) -> None:
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise InputValidationError("dateFrom", "must not be after dateTo")


@dataclass(frozen=True)
class OrderPage:
    """One page of orders."""

    orders: tuple[OrderView, ...]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


# ============================================================================
# Inventory
# ============================================================================


@dataclass(frozen=True)
class ProductData:
    """Catalogue entry with current available stock."""

    product_id: UUID
    name: str
    description: str | None
    platform: str
    price: Decimal
    image_url: str | None
    is_active: bool
    available_stock: int
    created_at: datetime


@dataclass(frozen=True)
class ProductChanges:
    """Partial product update. None leaves a field unchanged."""

    name: str | None = None
    description: str | None = None
    platform: str | None = None
    price: Decimal | None = None
    image_url: str | None = None
    is_active: bool | None = None

    def __post_init__(self) -> None:
        if self.price is not None and self.price <= 0:
            raise InputValidationError("price", "must be greater than 0")
        if self.name is not None and not self.name.strip():
            raise InputValidationError("name", "must not be empty")


@dataclass(frozen=True)
class StoredCode:
    """One inventory unit as an admin sees it. code is None if it can't be decrypted."""

    unit_id: UUID
    code: str | None
    status: str
    order_id: UUID | None
    allocated_at: datetime | None
    created_at: datetime

    @property
    def is_sold(self) -> bool:
        return self.status == InventoryUnitStatus.ALLOCATED.value


@dataclass(frozen=True)
class CodeInventory:
    """All codes of a product, newest first."""

    product_id: UUID
    product_name: str
    codes: tuple[StoredCode, ...]

    @property
    def total(self) -> int:
        return len(self.codes)

    @property
    def sold(self) -> int:
        return sum(1 for code in self.codes if code.is_sold)

    @property
    def available(self) -> int:
        return self.total - self.sold


@dataclass(frozen=True)
class CodeUploadResult:
    """Outcome of a bulk code upload."""

    product_id: UUID
    product_name: str
    added: int
    duplicates: int
    total_processed: int
    errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def success(self) -> bool:
        return self.added > 0 and not self.errors


# ============================================================================
# Accounts and credit requests
# ============================================================================


@dataclass(frozen=True)
class AccountData:
    """Immutable account data snapshot."""

    account_id: UUID
    email: str
    full_name: str | None
    role: Role
    credit_balance: Decimal
    is_banned: bool
    created_at: datetime


@dataclass(frozen=True)
class CreditRequestData:
    """Immutable credit request snapshot."""

    request_id: UUID
    account_id: UUID
    amount: Decimal
    payment_method: str
    payment_reference: str | None
    notes: str | None
    status: CreditRequestStatus
    admin_notes: str | None
    reviewed_by: UUID | None
    reviewed_at: datetime | None
    created_at: datetime
