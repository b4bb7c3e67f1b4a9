"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from decimal import Decimal
from uuid import UUID


class StoreError(Exception):
    """Base exception for all storefront errors."""

    pass


# ============================================================================
# Input validation
# ============================================================================


class InputValidationError(StoreError):
    """Raised when caller input is malformed."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class OrderValidationError(InputValidationError):
    """Raised when an order request is malformed (before any transaction opens)."""

    pass


# ============================================================================
# Order placement - business rule violations
# ============================================================================


class ProductNotFoundError(StoreError):
    """Raised when a requested product doesn't exist."""

    def __init__(self, product_id: UUID) -> None:
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class ProductInactiveError(StoreError):
    """Raised when a requested product is disabled."""

    def __init__(self, product_id: UUID, product_name: str) -> None:
        self.product_id = product_id
        self.product_name = product_name
        super().__init__(f"Product {product_name} is not available")


class InsufficientStockError(StoreError):
    """Raised when fewer units are available than requested."""

    def __init__(self, product_id: UUID, requested: int, available: int) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Available: {available}, Requested: {requested}"
        )


class InsufficientCreditError(StoreError):
    """Raised when account has insufficient credit balance for the order total."""

    def __init__(self, required: Decimal, available: Decimal) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credit balance. Required: {required}, Available: {available}"
        )


class AccountNotFoundError(StoreError):
    """Raised when account doesn't exist."""

    def __init__(self, account_id: UUID) -> None:
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class AccountBannedError(StoreError):
    """Raised when a banned account attempts an operation."""

    def __init__(self, account_id: UUID) -> None:
        self.account_id = account_id
        super().__init__(f"Account {account_id} is banned")


# ============================================================================
# Order placement - contention and infrastructure
# ============================================================================


class AllocationRaceLostError(StoreError):
    """Raised when a concurrent order consumed the units selected for this order.

    Transient: the caller may retry once.
    """

    def __init__(self, product_id: UUID) -> None:
        self.product_id = product_id
        super().__init__(f"Inventory for product {product_id} was taken by a concurrent order")


class ConcurrencyError(StoreError):
    """Raised when the store aborts a transaction due to a conflict or deadlock."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")


class OrderTimeoutError(StoreError):
    """Raised when the order transaction exceeds its wall-clock time limit."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Order transaction exceeded {timeout_seconds}s and was rolled back")


class DataIntegrityError(StoreError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class DatabaseError(StoreError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")


class CodeDecryptionError(StoreError):
    """Raised when a stored game code payload can't be decrypted."""

    def __init__(self, unit_id: UUID | None = None) -> None:
        self.unit_id = unit_id
        super().__init__("Failed to decrypt game code")


# ============================================================================
# Read path / administration
# ============================================================================


class OrderNotFoundError(StoreError):
    """Raised when an order doesn't exist or isn't visible to the requester."""

    def __init__(self, order_id: UUID) -> None:
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class ResourceNotFoundError(StoreError):
    """Raised when a requested resource doesn't exist."""

    pass


class ProductHasSalesError(StoreError):
    """Raised when deleting a product whose codes have been sold."""

    def __init__(self, product_id: UUID, sold_units: int) -> None:
        self.product_id = product_id
        self.sold_units = sold_units
        super().__init__(
            "Cannot delete product with sold game codes. This would break order history."
        )


class CodeAlreadySoldError(StoreError):
    """Raised when deleting a code that has been allocated to an order."""

    def __init__(self, unit_id: UUID) -> None:
        self.unit_id = unit_id
        super().__init__("Cannot delete sold game codes. This would break order history.")


class CreditRequestAlreadyProcessedError(StoreError):
    """Raised when reviewing a credit request that is no longer pending."""

    def __init__(self, request_id: UUID, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(f"Credit request is already {status}")


class AuthenticationError(StoreError):
    """Raised when authentication fails (missing or invalid token)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(StoreError):
    """Raised when the caller lacks the role required for an action."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authorization failed: {message}")
