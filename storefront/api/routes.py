"""
API Routes - Customer-facing FastAPI endpoints.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.api.dependencies import get_code_cipher, get_current_principal
from storefront.db.session import get_read_db, get_write_db
from storefront.exceptions import (
    AccountNotFoundError,
    AllocationRaceLostError,
    ConcurrencyError,
    DatabaseError,
    DataIntegrityError,
    InputValidationError,
    InsufficientCreditError,
    InsufficientStockError,
    OrderNotFoundError,
    OrderTimeoutError,
    ProductInactiveError,
    ProductNotFoundError,
    ResourceNotFoundError,
)
from storefront.models.api import (
    CreateCreditRequest,
    CreateOrderRequest,
    CreditRequestListResponse,
    CreditRequestResponse,
    HealthResponse,
    OrderItemResponse,
    OrderListResponse,
    OrderResponse,
    PaginationInfo,
    ProductListResponse,
    ProductResponse,
    ProfileResponse,
)
from storefront.models.domain import (
    AccountData,
    CreditRequestData,
    OrderIntent,
    OrderLineRequest,
    OrderPage,
    OrderView,
    Principal,
    ProductData,
)
from storefront.services.accounts import AccountService
from storefront.services.cipher import CodeCipher
from storefront.services.credit_requests import CreditRequestService
from storefront.services.inventory import InventoryService
from storefront.services.orders import OrderQueryService, OrderService

logger = get_logger(__name__)

router = APIRouter()


# ============================================================================
# Response builders (shared with admin routes)
# ============================================================================


def order_response(view: OrderView) -> OrderResponse:
    return OrderResponse(
        order_id=view.order_id,
        total_amount=view.total_amount,
        payment_method=view.payment_method,
        status=view.status,
        created_at=view.created_at,
        items=[
            OrderItemResponse(
                product_id=item.product_id,
                product_name=item.product_name,
                platform=item.platform,
                quantity=item.quantity,
                unit_price=item.unit_price,
                codes=list(item.codes),
                undelivered_count=item.undelivered,
            )
            for item in view.items
        ],
        delivery_complete=view.fully_delivered,
    )


def order_list_response(order_page: OrderPage) -> OrderListResponse:
    return OrderListResponse(
        orders=[order_response(view) for view in order_page.orders],
        pagination=PaginationInfo(
            page=order_page.page,
            limit=order_page.limit,
            total=order_page.total,
            total_pages=order_page.total_pages,
        ),
    )


def product_response(product: ProductData) -> ProductResponse:
    return ProductResponse(
        id=product.product_id,
        name=product.name,
        description=product.description,
        platform=product.platform,
        price=product.price,
        image_url=product.image_url,
        is_active=product.is_active,
        available_stock=product.available_stock,
        created_at=product.created_at,
    )


def credit_request_response(request: CreditRequestData) -> CreditRequestResponse:
    return CreditRequestResponse(
        id=request.request_id,
        account_id=request.account_id,
        amount=request.amount,
        payment_method=request.payment_method,
        payment_reference=request.payment_reference,
        notes=request.notes,
        status=request.status,
        admin_notes=request.admin_notes,
        reviewed_by=request.reviewed_by,
        reviewed_at=request.reviewed_at,
        created_at=request.created_at,
    )


def profile_response(account: AccountData) -> ProfileResponse:
    return ProfileResponse(
        id=account.account_id,
        email=account.email,
        full_name=account.full_name,
        role=account.role,
        credit_balance=account.credit_balance,
        is_banned=account.is_banned,
        created_at=account.created_at,
    )


# ============================================================================
# Orders
# ============================================================================


@router.post(
    "/orders",
    response_model=OrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    request: CreateOrderRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_write_db),
    cipher: CodeCipher = Depends(get_code_cipher),
) -> OrderResponse:
    """
    Place an order and deliver its codes.

    Write operation - requires primary database.
    409 responses are safe to retry once; 503 responses carry Retry-After.
    """
    try:
        intent = OrderIntent(
            account_id=principal.account_id,
            lines=tuple(
                OrderLineRequest(product_id=item.product_id, quantity=item.quantity)
                for item in request.items
            ),
            payment_method=request.payment_method,
        )
        view = await OrderService(db, cipher).place_order(intent)
        return order_response(view)

    except (
        InputValidationError,
        ProductNotFoundError,
        ProductInactiveError,
        InsufficientStockError,
        InsufficientCreditError,
    ) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    except AccountNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User profile not found",
        ) from exc

    except (AllocationRaceLostError, ConcurrencyError) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{exc}. Please retry.",
        ) from exc

    except OrderTimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Order processing timed out. Please retry.",
            headers={"Retry-After": "1"},
        ) from exc

    except (DataIntegrityError, DatabaseError) as exc:
        logger.error("order_request_failed", error_type=type(exc).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_read_db),
    cipher: CodeCipher = Depends(get_code_cipher),
) -> OrderListResponse:
    """The caller's orders, newest first."""
    order_page = await OrderQueryService(db, cipher).list_orders(principal, page, limit)
    return order_list_response(order_page)


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_read_db),
    cipher: CodeCipher = Depends(get_code_cipher),
) -> OrderResponse:
    """One order; 404 when it doesn't exist or belongs to someone else."""
    try:
        view = await OrderQueryService(db, cipher).get_order(order_id, principal)
        return order_response(view)

    except OrderNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found",
        ) from exc


# ============================================================================
# Catalogue and profile
# ============================================================================


@router.get("/products", response_model=ProductListResponse)
async def list_products(
    platform: str | None = Query(None, max_length=50),
    db: AsyncSession = Depends(get_read_db),
) -> ProductListResponse:
    """Active products with available stock. Public."""
    products = await InventoryService(db).list_products(active_only=True, platform=platform)
    return ProductListResponse(products=[product_response(p) for p in products])


@router.get("/user/profile", response_model=ProfileResponse)
async def get_profile(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_read_db),
) -> ProfileResponse:
    """The caller's profile including credit balance."""
    try:
        account = await AccountService(db).get_profile(principal.account_id)
    except AccountNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found",
        ) from exc
    return profile_response(account)


# ============================================================================
# Credit requests
# ============================================================================


@router.post(
    "/credit-requests",
    response_model=CreditRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_credit_request(
    request: CreateCreditRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_write_db),
) -> CreditRequestResponse:
    """Submit a manual credit top-up request for admin review."""
    try:
        created = await CreditRequestService(db).create_request(
            account_id=principal.account_id,
            amount=request.amount,
            payment_method=request.payment_method,
            payment_reference=request.payment_reference,
            notes=request.notes,
        )
        return credit_request_response(created)

    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    except AccountNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User profile not found",
        ) from exc


@router.get("/credit-requests", response_model=CreditRequestListResponse)
async def list_credit_requests(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_read_db),
) -> CreditRequestListResponse:
    """The caller's credit requests, newest first."""
    requests = await CreditRequestService(db).list_requests(account_id=principal.account_id)
    return CreditRequestListResponse(requests=[credit_request_response(r) for r in requests])


@router.get("/credit-requests/{request_id}", response_model=CreditRequestResponse)
async def get_credit_request(
    request_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_read_db),
) -> CreditRequestResponse:
    """One of the caller's own credit requests."""
    try:
        request = await CreditRequestService(db).get_request(
            request_id, account_id=principal.account_id
        )
        return credit_request_response(request)

    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Credit request not found",
        ) from exc


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )
