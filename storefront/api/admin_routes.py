"""
Admin API Routes - Order, product, code, credit request and user management.

All endpoints require an admin or super_admin account.
"""

from datetime import UTC, date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.api.dependencies import get_code_cipher, require_admin
from storefront.api.routes import (
    credit_request_response,
    order_list_response,
    order_response,
    product_response,
    profile_response,
)
from storefront.db.session import get_read_db, get_write_db
from storefront.exceptions import (
    AccountNotFoundError,
    AuthorizationError,
    CodeAlreadySoldError,
    ConcurrencyError,
    CreditRequestAlreadyProcessedError,
    InputValidationError,
    OrderNotFoundError,
    ProductHasSalesError,
    ResourceNotFoundError,
)
from storefront.models.api import (
    AccountListResponse,
    BanRequest,
    BulkCodeUploadRequest,
    BulkCodeUploadResponse,
    CreateProductRequest,
    CreditRequestListResponse,
    CreditRequestResponse,
    CreditRequestStatus,
    DeleteCodeResponse,
    GameCodeListResponse,
    GameCodeResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatus,
    PaymentMethod,
    ProductResponse,
    ProfileResponse,
    ReviewCreditRequest,
    Role,
    UpdateProductRequest,
)
from storefront.models.domain import OrderExportFilter, Principal, ProductChanges
from storefront.services.accounts import AccountService
from storefront.services.cipher import CodeCipher
from storefront.services.credit_requests import CreditRequestService
from storefront.services.exports import export_filename, orders_csv
from storefront.services.inventory import InventoryService
from storefront.services.orders import OrderQueryService

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ============================================================================
# Orders
# ============================================================================


@router.get("/orders", response_model=OrderListResponse)
async def list_all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    order_status: OrderStatus | None = Query(None, alias="status"),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
    cipher: CodeCipher = Depends(get_code_cipher),
) -> OrderListResponse:
    """All orders, newest first."""
    order_page = await OrderQueryService(db, cipher).list_all_orders(
        page=page, limit=limit, status=order_status
    )
    return order_list_response(order_page)


@router.get("/orders/export")
async def export_orders(
    order_status: OrderStatus | None = Query(None, alias="status"),
    payment_method: PaymentMethod | None = Query(None, alias="paymentMethod"),
    date_from: date | None = Query(None, alias="dateFrom"),
    date_to: date | None = Query(None, alias="dateTo"),
    search: str | None = Query(None, max_length=255),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
    cipher: CodeCipher = Depends(get_code_cipher),
) -> Response:
    """Matching orders as a CSV attachment, newest first."""
    try:
        filters = OrderExportFilter(
            status=order_status,
            payment_method=payment_method,
            date_from=date_from,
            date_to=date_to,
            search=search,
        )
    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    rows = await OrderQueryService(db, cipher).export_orders(filters)
    logger.info("admin_orders_exported", admin_id=str(admin.account_id), rows=len(rows))
    return Response(
        content=orders_csv(rows),
        media_type="text/csv",
        headers={
            "Content-Disposition": (
                f'attachment; filename="{export_filename(datetime.now(UTC).date())}"'
            ),
            "Cache-Control": "no-cache, no-store, must-revalidate",
        },
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_any_order(
    order_id: UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
    cipher: CodeCipher = Depends(get_code_cipher),
) -> OrderResponse:
    try:
        view = await OrderQueryService(db, cipher).get_order(order_id, admin)
        return order_response(view)
    except OrderNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found",
        ) from exc


# ============================================================================
# Products and codes
# ============================================================================


@router.get("/products", response_model=list[ProductResponse])
async def list_all_products(
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
) -> list[ProductResponse]:
    """All products including disabled ones."""
    products = await InventoryService(db).list_products(active_only=False)
    return [product_response(p) for p in products]


@router.get("/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
) -> ProductResponse:
    try:
        product = await InventoryService(db).get_product(product_id)
        return product_response(product)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found",
        ) from exc


@router.post(
    "/products",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_product(
    request: CreateProductRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> ProductResponse:
    try:
        product = await InventoryService(db).create_product(
            name=request.name,
            platform=request.platform,
            price=request.price,
            description=request.description,
            image_url=request.image_url,
            is_active=request.is_active,
        )
    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    logger.info(
        "admin_product_created",
        admin_id=str(admin.account_id),
        product_id=str(product.product_id),
    )
    return product_response(product)


@router.patch("/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: UUID,
    request: UpdateProductRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> ProductResponse:
    """Partial update; omitted fields are unchanged."""
    try:
        changes = ProductChanges(
            name=request.name,
            description=request.description,
            platform=request.platform,
            price=request.price,
            image_url=request.image_url,
            is_active=request.is_active,
        )
        product = await InventoryService(db).update_product(product_id, changes)
        return product_response(product)

    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found",
        ) from exc


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> Response:
    """Delete a product with no sales; its unsold codes go with it."""
    try:
        await InventoryService(db).delete_product(product_id)

    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found",
        ) from exc

    except ProductHasSalesError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    logger.info(
        "admin_product_deleted",
        admin_id=str(admin.account_id),
        product_id=str(product_id),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/products/{product_id}/codes/bulk",
    response_model=BulkCodeUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def bulk_upload_codes(
    product_id: UUID,
    request: BulkCodeUploadRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
    cipher: CodeCipher = Depends(get_code_cipher),
) -> BulkCodeUploadResponse:
    """Upload up to 1000 codes; per-line problems are reported, not fatal."""
    try:
        result = await InventoryService(db, cipher).upload_codes(product_id, request.codes)

    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found",
        ) from exc

    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.reason,
        ) from exc

    except ConcurrencyError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Codes were uploaded concurrently. Please retry.",
        ) from exc

    return BulkCodeUploadResponse(
        message=f"Bulk upload completed. Added {result.added} codes.",
        success=result.success,
        added=result.added,
        duplicates=result.duplicates,
        errors=list(result.errors),
        total_processed=result.total_processed,
        method=request.method,
        product_name=result.product_name,
    )


@router.get("/products/{product_id}/codes", response_model=GameCodeListResponse)
async def list_codes(
    product_id: UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
    cipher: CodeCipher = Depends(get_code_cipher),
) -> GameCodeListResponse:
    """Every code of a product in cleartext, newest first, with stock counts."""
    try:
        inventory = await InventoryService(db, cipher).list_codes(product_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product not found",
        ) from exc

    logger.info(
        "admin_codes_viewed",
        admin_id=str(admin.account_id),
        product_id=str(product_id),
        total=inventory.total,
    )
    return GameCodeListResponse(
        product_id=inventory.product_id,
        product_name=inventory.product_name,
        codes=[
            GameCodeResponse(
                id=code.unit_id,
                code=code.code,
                is_sold=code.is_sold,
                order_id=code.order_id,
                sold_at=code.allocated_at,
                created_at=code.created_at,
            )
            for code in inventory.codes
        ],
        total=inventory.total,
        available=inventory.available,
        sold=inventory.sold,
    )


@router.delete("/products/{product_id}/codes", response_model=DeleteCodeResponse)
async def delete_code(
    product_id: UUID,
    code_id: UUID | None = Query(None, alias="codeId"),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> DeleteCodeResponse:
    """Delete one unsold code. Sold codes stay as part of order history."""
    if code_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Code ID is required",
        )

    try:
        await InventoryService(db).delete_code(product_id, code_id)

    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Game code not found",
        ) from exc

    except CodeAlreadySoldError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    logger.info(
        "admin_code_deleted",
        admin_id=str(admin.account_id),
        product_id=str(product_id),
        code_id=str(code_id),
    )
    return DeleteCodeResponse(message="Game code deleted successfully", code_id=code_id)


# ============================================================================
# Credit requests
# ============================================================================


@router.get("/credit-requests", response_model=CreditRequestListResponse)
async def list_credit_requests(
    request_status: CreditRequestStatus | None = Query(None, alias="status"),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
) -> CreditRequestListResponse:
    requests = await CreditRequestService(db).list_requests(status=request_status)
    return CreditRequestListResponse(requests=[credit_request_response(r) for r in requests])


@router.get("/credit-requests/{request_id}", response_model=CreditRequestResponse)
async def get_credit_request(
    request_id: UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
) -> CreditRequestResponse:
    try:
        request = await CreditRequestService(db).get_request(request_id)
        return credit_request_response(request)
    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Credit request not found",
        ) from exc


@router.patch("/credit-requests/{request_id}", response_model=CreditRequestResponse)
async def review_credit_request(
    request_id: UUID,
    request: ReviewCreditRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> CreditRequestResponse:
    """Approve (credits the account) or reject a pending request."""
    try:
        reviewed = await CreditRequestService(db).review_request(
            request_id=request_id,
            reviewer=admin,
            action=request.action,
            admin_notes=request.admin_notes,
        )
        return credit_request_response(reviewed)

    except ResourceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Credit request not found",
        ) from exc

    except CreditRequestAlreadyProcessedError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    except AccountNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Requesting account not found",
        ) from exc


# ============================================================================
# Users
# ============================================================================


@router.get("/users", response_model=AccountListResponse)
async def list_users(
    role: Role | None = Query(None),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
) -> AccountListResponse:
    accounts = await AccountService(db).list_accounts(role=role)
    return AccountListResponse(users=[profile_response(a) for a in accounts])


@router.patch("/users/{user_id}/ban", response_model=ProfileResponse)
async def set_user_ban(
    user_id: UUID,
    request: BanRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> ProfileResponse:
    """Ban or unban a user. Admins may only ban customers; nobody may ban themselves."""
    try:
        account = await AccountService(db).set_banned(
            actor=admin, target_id=user_id, banned=request.action == "ban"
        )
        return profile_response(account)

    except AccountNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        ) from exc

    except AuthorizationError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc

    except InputValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.reason,
        ) from exc
