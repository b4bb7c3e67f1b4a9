"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
Wire format uses camelCase field names; Python code uses snake_case.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    """Account role enumeration."""

    CUSTOMER = "customer"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class PaymentMethod(str, Enum):
    """Order payment method."""

    CREDIT = "credit"
    EXTERNAL = "external"


class OrderStatus(str, Enum):
    """Order lifecycle status."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class InventoryUnitStatus(str, Enum):
    """Game code state. available -> allocated happens at most once."""

    AVAILABLE = "available"
    ALLOCATED = "allocated"


class CreditRequestStatus(str, Enum):
    """Credit top-up request status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewAction(str, Enum):
    """Admin decision on a credit request."""

    APPROVE = "approve"
    REJECT = "reject"


# Decimal in Python, JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(CamelModel):
    """Error body for every non-2xx response."""

    error: str


# ============================================================================
# Order Models
# ============================================================================


class OrderItemRequest(CamelModel):
    """One cart line."""

    product_id: UUID
    quantity: int = Field(..., ge=1, le=10)


class CreateOrderRequest(CamelModel):
    """POST /orders request body."""

    items: list[OrderItemRequest] = Field(..., min_length=1, max_length=20)
    payment_method: PaymentMethod = PaymentMethod.CREDIT


class OrderItemResponse(CamelModel):
    """Order line grouped by product, with delivered codes."""

    product_id: UUID
    product_name: str
    platform: str
    quantity: int
    unit_price: Money
    codes: list[str] = Field(default_factory=list)
    undelivered_count: int = 0


class OrderResponse(CamelModel):
    """POST /orders and GET /orders/{id} response."""

    order_id: UUID
    total_amount: Money
    payment_method: PaymentMethod
    status: OrderStatus
    created_at: datetime
    items: list[OrderItemResponse]
    delivery_complete: bool = True


class PaginationInfo(CamelModel):
    """Pagination block for list responses."""

    page: int
    limit: int
    total: int
    total_pages: int


class OrderListResponse(CamelModel):
    """GET /orders response."""

    orders: list[OrderResponse]
    pagination: PaginationInfo


# ============================================================================
# Product Models
# ============================================================================


class ProductResponse(CamelModel):
    """Catalogue entry."""

    id: UUID
    name: str
    description: str | None = None
    platform: str
    price: Money
    image_url: str | None = None
    is_active: bool
    available_stock: int = 0
    created_at: datetime


class ProductListResponse(CamelModel):
    """GET /products response."""

    products: list[ProductResponse]


class CreateProductRequest(CamelModel):
    """POST /admin/products request body."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    platform: str = Field(..., min_length=1, max_length=50)
    price: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    image_url: str | None = Field(None, max_length=1024)
    is_active: bool = True


class UpdateProductRequest(CamelModel):
    """PATCH /admin/products/{id} request body. Only provided fields change."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    platform: str | None = Field(None, min_length=1, max_length=50)
    price: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)
    image_url: str | None = Field(None, max_length=1024)
    is_active: bool | None = None


class BulkCodeUploadRequest(CamelModel):
    """POST /admin/products/{id}/codes/bulk request body."""

    codes: list[str] = Field(..., min_length=1)
    method: Literal["textarea", "csv"] = "textarea"


class BulkCodeUploadResponse(CamelModel):
    """Bulk upload outcome, with per-line errors."""

    message: str
    success: bool
    added: int
    duplicates: int
    errors: list[str]
    total_processed: int
    method: str
    product_name: str


class GameCodeResponse(CamelModel):
    """One stored code. code is null when the payload can't be decrypted."""

    id: UUID
    code: str | None = None
    is_sold: bool
    order_id: UUID | None = None
    sold_at: datetime | None = None
    created_at: datetime


class GameCodeListResponse(CamelModel):
    """GET /admin/products/{id}/codes response."""

    product_id: UUID
    product_name: str
    codes: list[GameCodeResponse]
    total: int
    available: int
    sold: int


class DeleteCodeResponse(CamelModel):
    message: str
    code_id: UUID


# ============================================================================
# Credit Request Models
# ============================================================================


class CreateCreditRequest(CamelModel):
    """POST /credit-requests request body."""

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payment_method: str = Field(..., min_length=1, max_length=50)
    payment_reference: str | None = Field(None, max_length=255)
    notes: str | None = Field(None, max_length=1000)


class CreditRequestResponse(CamelModel):
    """Credit request as seen by its owner or an admin."""

    id: UUID
    account_id: UUID
    amount: Money
    payment_method: str
    payment_reference: str | None = None
    notes: str | None = None
    status: CreditRequestStatus
    admin_notes: str | None = None
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    created_at: datetime


class CreditRequestListResponse(CamelModel):
    """List of credit requests."""

    requests: list[CreditRequestResponse]


class ReviewCreditRequest(CamelModel):
    """PATCH /admin/credit-requests/{id} request body."""

    action: ReviewAction
    admin_notes: str | None = Field(None, max_length=1000)


# ============================================================================
# Account Models
# ============================================================================


class ProfileResponse(CamelModel):
    """GET /user/profile response and admin user listing entry."""

    id: UUID
    email: str
    full_name: str | None = None
    role: Role
    credit_balance: Money
    is_banned: bool
    created_at: datetime


class AccountListResponse(CamelModel):
    """GET /admin/users response."""

    users: list[ProfileResponse]


class BanRequest(CamelModel):
    """PATCH /admin/users/{id}/ban request body."""

    action: Literal["ban", "unban"]


class HealthResponse(CamelModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        """Only healthy/unhealthy are reported."""
        if v not in ("healthy", "unhealthy"):
            raise ValueError("status must be healthy or unhealthy")
        return v
