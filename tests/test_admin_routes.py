"""
Tests for admin API routes.

Covers the admin role gate plus status mapping for product, code, credit
request and user management.
"""

from datetime import UTC, date, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from conftest import (
    make_account_data,
    make_credit_request_data,
    make_order_view,
    make_product_data,
)
from storefront.exceptions import (
    AuthorizationError,
    CodeAlreadySoldError,
    ConcurrencyError,
    CreditRequestAlreadyProcessedError,
    InputValidationError,
    ProductHasSalesError,
    ResourceNotFoundError,
)
from storefront.models.api import (
    CreditRequestStatus,
    InventoryUnitStatus,
    OrderStatus,
    PaymentMethod,
    ReviewAction,
)
from storefront.models.domain import (
    CodeInventory,
    CodeUploadResult,
    OrderExportFilter,
    OrderExportRow,
    OrderPage,
    Principal,
    StoredCode,
)


class TestAdminGate:
    """Every admin route rejects customers."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("get", "/admin/orders"),
            ("get", "/admin/products"),
            ("get", "/admin/credit-requests"),
            ("get", "/admin/users"),
            ("delete", f"/admin/products/{uuid4()}"),
            ("get", "/admin/orders/export"),
            ("get", f"/admin/products/{uuid4()}/codes"),
            ("delete", f"/admin/products/{uuid4()}/codes?codeId={uuid4()}"),
            ("get", f"/admin/credit-requests/{uuid4()}"),
        ],
    )
    def test_customer_forbidden(
        self, client: TestClient, login_as, customer_principal: Principal, method, path
    ):
        login_as(customer_principal)

        response = getattr(client, method)(path)

        assert response.status_code == 403
        assert response.json() == {"error": "Forbidden: Admin access required"}

    def test_anonymous_unauthorized(self, client: TestClient, override_db: AsyncMock):
        response = client.get("/admin/orders")

        assert response.status_code == 401


class TestAdminOrders:
    """Admins read every order."""

    def test_list_with_status_filter(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)
        page = OrderPage(orders=(make_order_view(),), page=1, limit=10, total=1)

        with patch("storefront.api.admin_routes.OrderQueryService") as service_cls:
            service_cls.return_value.list_all_orders = AsyncMock(return_value=page)
            response = client.get("/admin/orders?status=completed")

        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 1
        service_cls.return_value.list_all_orders.assert_awaited_once_with(
            page=1, limit=10, status=OrderStatus.COMPLETED
        )

    def test_get_any_order(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)
        view = make_order_view()

        with patch("storefront.api.admin_routes.OrderQueryService") as service_cls:
            service_cls.return_value.get_order = AsyncMock(return_value=view)
            response = client.get(f"/admin/orders/{view.order_id}")

        assert response.status_code == 200
        assert response.json()["orderId"] == str(view.order_id)


class TestAdminProducts:
    """Product CRUD and bulk code upload."""

    def test_list_includes_disabled(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.list_products = AsyncMock(
                return_value=[make_product_data(is_active=False)]
            )
            response = client.get("/admin/products")

        assert response.status_code == 200
        assert response.json()[0]["isActive"] is False
        service_cls.return_value.list_products.assert_awaited_once_with(active_only=False)

    def test_create(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)
        product = make_product_data(stock=0)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.create_product = AsyncMock(return_value=product)
            response = client.post(
                "/admin/products",
                json={"name": "Elden Ring", "platform": "Steam", "price": 20.00},
            )

        assert response.status_code == 201
        assert response.json()["id"] == str(product.product_id)
        assert service_cls.return_value.create_product.await_args.kwargs["price"] == Decimal(
            "20.00"
        )

    def test_create_rejects_zero_price(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)

        response = client.post(
            "/admin/products", json={"name": "Free", "platform": "Steam", "price": 0}
        )

        assert response.status_code == 400

    def test_update_passes_only_given_fields(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)
        product = make_product_data()

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.update_product = AsyncMock(return_value=product)
            response = client.patch(
                f"/admin/products/{product.product_id}", json={"isActive": False}
            )

        assert response.status_code == 200
        changes = service_cls.return_value.update_product.await_args.args[1]
        assert changes.is_active is False
        assert changes.price is None
        assert changes.name is None

    def test_update_missing_product(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.update_product = AsyncMock(
                side_effect=ResourceNotFoundError("gone")
            )
            response = client.patch(f"/admin/products/{uuid4()}", json={"name": "New"})

        assert response.status_code == 404
        assert response.json() == {"error": "Product not found"}

    def test_delete(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.delete_product = AsyncMock(return_value=None)
            response = client.delete(f"/admin/products/{uuid4()}")

        assert response.status_code == 204

    def test_delete_with_sales_refused(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)
        product_id = uuid4()

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.delete_product = AsyncMock(
                side_effect=ProductHasSalesError(product_id, 2)
            )
            response = client.delete(f"/admin/products/{product_id}")

        assert response.status_code == 400
        assert "order history" in response.json()["error"]

    def test_bulk_upload(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)
        product_id = uuid4()
        result = CodeUploadResult(
            product_id=product_id,
            product_name="Elden Ring",
            added=2,
            duplicates=1,
            total_processed=3,
            errors=('Line 3: Duplicate code in upload: "AAA-111"',),
        )

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.upload_codes = AsyncMock(return_value=result)
            response = client.post(
                f"/admin/products/{product_id}/codes/bulk",
                json={"codes": ["AAA-111", "BBB-222", "AAA-111"], "method": "csv"},
            )

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Bulk upload completed. Added 2 codes."
        assert data["success"] is False
        assert data["duplicates"] == 1
        assert data["totalProcessed"] == 3
        assert data["method"] == "csv"
        assert data["productName"] == "Elden Ring"

    def test_bulk_upload_over_limit(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.upload_codes = AsyncMock(
                side_effect=InputValidationError(
                    "codes", "maximum 1000 codes allowed per upload"
                )
            )
            response = client.post(
                f"/admin/products/{uuid4()}/codes/bulk", json={"codes": ["AAA-111"]}
            )

        assert response.status_code == 400
        assert response.json() == {"error": "maximum 1000 codes allowed per upload"}

    @pytest.mark.parametrize(
        "error,status_code",
        [(ResourceNotFoundError("gone"), 404), (ConcurrencyError("game_codes"), 409)],
    )
    def test_bulk_upload_errors(
        self,
        client: TestClient,
        login_as,
        admin_principal: Principal,
        error: Exception,
        status_code: int,
    ):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.upload_codes = AsyncMock(side_effect=error)
            response = client.post(
                f"/admin/products/{uuid4()}/codes/bulk", json={"codes": ["AAA-111"]}
            )

        assert response.status_code == status_code


class TestAdminCreditRequests:
    """Review workflow over HTTP."""

    def test_list_pending(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.CreditRequestService") as service_cls:
            service_cls.return_value.list_requests = AsyncMock(
                return_value=[make_credit_request_data()]
            )
            response = client.get("/admin/credit-requests?status=pending")

        assert response.status_code == 200
        service_cls.return_value.list_requests.assert_awaited_once_with(
            status=CreditRequestStatus.PENDING
        )

    def test_approve(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)
        reviewed = make_credit_request_data(status=CreditRequestStatus.APPROVED)

        with patch("storefront.api.admin_routes.CreditRequestService") as service_cls:
            service_cls.return_value.review_request = AsyncMock(return_value=reviewed)
            response = client.patch(
                f"/admin/credit-requests/{reviewed.request_id}",
                json={"action": "approve", "adminNotes": "received"},
            )

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        kwargs = service_cls.return_value.review_request.await_args.kwargs
        assert kwargs["reviewer"] == admin_principal
        assert kwargs["action"] == ReviewAction.APPROVE
        assert kwargs["admin_notes"] == "received"

    def test_already_processed(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)
        request_id = uuid4()

        with patch("storefront.api.admin_routes.CreditRequestService") as service_cls:
            service_cls.return_value.review_request = AsyncMock(
                side_effect=CreditRequestAlreadyProcessedError(request_id, "approved")
            )
            response = client.patch(
                f"/admin/credit-requests/{request_id}", json={"action": "reject"}
            )

        assert response.status_code == 400
        assert response.json() == {"error": "Credit request is already approved"}

    def test_unknown_action(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)

        response = client.patch(f"/admin/credit-requests/{uuid4()}", json={"action": "maybe"})

        assert response.status_code == 400


class TestAdminUsers:
    """User listing and ban management."""

    def test_list_users(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.AccountService") as service_cls:
            service_cls.return_value.list_accounts = AsyncMock(return_value=[make_account_data()])
            response = client.get("/admin/users?role=customer")

        assert response.status_code == 200
        assert response.json()["users"][0]["email"] == "player@example.com"

    def test_ban(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)
        banned = make_account_data(is_banned=True)

        with patch("storefront.api.admin_routes.AccountService") as service_cls:
            service_cls.return_value.set_banned = AsyncMock(return_value=banned)
            response = client.patch(
                f"/admin/users/{banned.account_id}/ban", json={"action": "ban"}
            )

        assert response.status_code == 200
        assert response.json()["isBanned"] is True
        service_cls.return_value.set_banned.assert_awaited_once_with(
            actor=admin_principal, target_id=banned.account_id, banned=True
        )

    def test_ban_not_allowed(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.AccountService") as service_cls:
            service_cls.return_value.set_banned = AsyncMock(
                side_effect=AuthorizationError("admin cannot ban admin accounts")
            )
            response = client.patch(f"/admin/users/{uuid4()}/ban", json={"action": "ban"})

        assert response.status_code == 403
        assert response.json() == {"error": "admin cannot ban admin accounts"}

    def test_already_banned(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.AccountService") as service_cls:
            service_cls.return_value.set_banned = AsyncMock(
                side_effect=InputValidationError("action", "user is already banned")
            )
            response = client.patch(f"/admin/users/{uuid4()}/ban", json={"action": "ban"})

        assert response.status_code == 400
        assert response.json() == {"error": "user is already banned"}


class TestAdminOrderExport:
    """Filtered CSV export of all orders."""

    def test_csv_attachment(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)
        row = OrderExportRow(
            order_id=uuid4(),
            customer_name="Ada Lovelace",
            customer_email="ada@example.com",
            items_count=2,
            total_amount=Decimal("40.00"),
            payment_method="credit",
            status="completed",
            created_at=datetime(2026, 3, 14, 9, 30, tzinfo=UTC),
        )

        with patch("storefront.api.admin_routes.OrderQueryService") as service_cls:
            service_cls.return_value.export_orders = AsyncMock(return_value=[row])
            response = client.get(
                "/admin/orders/export?status=completed&paymentMethod=credit"
                "&dateFrom=2026-03-01&dateTo=2026-03-31&search=ada"
            )

        assert response.status_code == 200
        assert response.headers["content-type"] == "text/csv; charset=utf-8"
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        disposition = response.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="orders-export-')
        assert disposition.endswith('.csv"')

        lines = response.text.splitlines()
        assert lines[0].startswith("Order ID,Customer Name,Customer Email")
        assert lines[1].startswith(f"{row.order_id},Ada Lovelace,ada@example.com,2,40.00")

        filters = service_cls.return_value.export_orders.await_args.args[0]
        assert filters == OrderExportFilter(
            status=OrderStatus.COMPLETED,
            payment_method=PaymentMethod.CREDIT,
            date_from=date(2026, 3, 1),
            date_to=date(2026, 3, 31),
            search="ada",
        )

    def test_reversed_date_range(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.OrderQueryService") as service_cls:
            response = client.get("/admin/orders/export?dateFrom=2026-03-31&dateTo=2026-03-01")

        assert response.status_code == 400
        service_cls.return_value.export_orders.assert_not_called()

    def test_export_path_is_not_an_order_id(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.OrderQueryService") as service_cls:
            service_cls.return_value.export_orders = AsyncMock(return_value=[])
            response = client.get("/admin/orders/export")

        assert response.status_code == 200
        service_cls.return_value.get_order.assert_not_called()


class TestAdminCodes:
    """Per-code listing and deletion."""

    def test_list_codes(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)
        product_id = uuid4()
        created = datetime(2026, 1, 1, tzinfo=UTC)
        sold = StoredCode(
            uuid4(), "SOLD-0001", InventoryUnitStatus.ALLOCATED.value, uuid4(), created, created
        )
        unreadable = StoredCode(
            uuid4(), None, InventoryUnitStatus.AVAILABLE.value, None, None, created
        )
        inventory = CodeInventory(product_id, "Elden Ring", (unreadable, sold))

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.list_codes = AsyncMock(return_value=inventory)
            response = client.get(f"/admin/products/{product_id}/codes")

        assert response.status_code == 200
        data = response.json()
        assert (data["total"], data["available"], data["sold"]) == (2, 1, 1)
        assert data["productName"] == "Elden Ring"
        assert data["codes"][0]["code"] is None
        assert data["codes"][0]["isSold"] is False
        assert data["codes"][1]["code"] == "SOLD-0001"
        assert data["codes"][1]["isSold"] is True
        assert data["codes"][1]["orderId"] == str(sold.order_id)

    def test_list_codes_unknown_product(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.list_codes = AsyncMock(
                side_effect=ResourceNotFoundError("Product not found")
            )
            response = client.get(f"/admin/products/{uuid4()}/codes")

        assert response.status_code == 404
        assert response.json() == {"error": "Product not found"}

    def test_delete_code(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)
        product_id, code_id = uuid4(), uuid4()

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.delete_code = AsyncMock(return_value=None)
            response = client.delete(f"/admin/products/{product_id}/codes?codeId={code_id}")

        assert response.status_code == 200
        assert response.json() == {
            "message": "Game code deleted successfully",
            "codeId": str(code_id),
        }
        service_cls.return_value.delete_code.assert_awaited_once_with(product_id, code_id)

    def test_delete_code_requires_id(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            response = client.delete(f"/admin/products/{uuid4()}/codes")

        assert response.status_code == 400
        assert response.json() == {"error": "Code ID is required"}
        service_cls.assert_not_called()

    def test_delete_sold_code_refused(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)
        code_id = uuid4()

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.delete_code = AsyncMock(
                side_effect=CodeAlreadySoldError(code_id)
            )
            response = client.delete(f"/admin/products/{uuid4()}/codes?codeId={code_id}")

        assert response.status_code == 400
        assert response.json() == {
            "error": "Cannot delete sold game codes. This would break order history."
        }

    def test_delete_unknown_code(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.delete_code = AsyncMock(
                side_effect=ResourceNotFoundError("missing")
            )
            response = client.delete(f"/admin/products/{uuid4()}/codes?codeId={uuid4()}")

        assert response.status_code == 404
        assert response.json() == {"error": "Game code not found"}


class TestAdminLookups:
    """Single product and credit request reads."""

    def test_get_product(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)
        product = make_product_data(is_active=False)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.get_product = AsyncMock(return_value=product)
            response = client.get(f"/admin/products/{product.product_id}")

        assert response.status_code == 200
        assert response.json()["id"] == str(product.product_id)
        assert response.json()["isActive"] is False

    def test_get_missing_product(self, client: TestClient, login_as, admin_principal: Principal):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.InventoryService") as service_cls:
            service_cls.return_value.get_product = AsyncMock(
                side_effect=ResourceNotFoundError("missing")
            )
            response = client.get(f"/admin/products/{uuid4()}")

        assert response.status_code == 404
        assert response.json() == {"error": "Product not found"}

    def test_get_any_credit_request(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)
        request = make_credit_request_data()

        with patch("storefront.api.admin_routes.CreditRequestService") as service_cls:
            service_cls.return_value.get_request = AsyncMock(return_value=request)
            response = client.get(f"/admin/credit-requests/{request.request_id}")

        assert response.status_code == 200
        assert response.json()["id"] == str(request.request_id)
        service_cls.return_value.get_request.assert_awaited_once_with(request.request_id)

    def test_missing_credit_request(
        self, client: TestClient, login_as, admin_principal: Principal
    ):
        login_as(admin_principal)

        with patch("storefront.api.admin_routes.CreditRequestService") as service_cls:
            service_cls.return_value.get_request = AsyncMock(
                side_effect=ResourceNotFoundError("missing")
            )
            response = client.get(f"/admin/credit-requests/{uuid4()}")

        assert response.status_code == 404
        assert response.json() == {"error": "Credit request not found"}
