"""
Order Service - Order placement engine and order read path.

NO DICTIONARIES - All operations use strongly typed domain models.

Placement runs as one transaction bounded by a wall-clock time limit:
products and stock are re-read, the order is priced from fresh prices,
units are row-locked oldest-first and claimed with a conditional update,
and the credit balance is debited with a guarded store-side decrement.
Codes are decrypted only after the commit is durable.
"""

import asyncio
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from datetime import time as dt_time
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ColumnElement, Select, func, or_, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from structlog import get_logger

from storefront.config import settings
from storefront.db.models import Account, InventoryUnit, Order, OrderLine, Product, utc_now
from storefront.exceptions import (
    AccountNotFoundError,
    AllocationRaceLostError,
    CodeDecryptionError,
    ConcurrencyError,
    DatabaseError,
    DataIntegrityError,
    InsufficientCreditError,
    InsufficientStockError,
    OrderNotFoundError,
    OrderTimeoutError,
    ProductInactiveError,
    ProductNotFoundError,
    StoreError,
)
from storefront.models.api import InventoryUnitStatus, OrderStatus, PaymentMethod
from storefront.models.domain import (
    DeliveredItem,
    OrderExportFilter,
    OrderExportRow,
    OrderIntent,
    OrderLineRequest,
    OrderPage,
    OrderView,
    PricedLine,
    Principal,
)
from storefront.observability.metrics import metrics
from storefront.observability.tracing import add_span_attributes, get_tracer, set_span_error
from storefront.services.cipher import CodeCipher

logger = get_logger(__name__)
tracer = get_tracer(__name__)

# PostgreSQL SQLSTATE codes
LOCK_NOT_AVAILABLE = "55P03"
QUERY_CANCELED = "57014"
SERIALIZATION_FAILURE = "40001"
DEADLOCK_DETECTED = "40P01"


@dataclass(frozen=True)
class AllocatedUnit:
    """A unit claimed inside the placement transaction (payload still encrypted)."""

    unit_id: UUID
    product_id: UUID
    encrypted_code: str


# ============================================================================
# Pricing
# ============================================================================


def price_lines(
    lines: Sequence[OrderLineRequest], products: dict[UUID, Product]
) -> tuple[PricedLine, ...]:
    """Price merged lines from freshly read products."""
    return tuple(
        PricedLine(
            product_id=line.product_id,
            product_name=products[line.product_id].name,
            platform=products[line.product_id].platform,
            quantity=line.quantity,
            unit_price=Decimal(products[line.product_id].price),
        )
        for line in lines
    )


def order_total(priced: Iterable[PricedLine]) -> Decimal:
    """Sum of line totals, exact decimal arithmetic."""
    return sum((line.line_total for line in priced), Decimal("0"))


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def day_start(day: date) -> datetime:
    return datetime.combine(day, dt_time.min, UTC)


def open_codes(
    cipher: CodeCipher, order_id: UUID, units: Iterable[AllocatedUnit]
) -> tuple[dict[UUID, list[str]], dict[UUID, int]]:
    """
    Decrypt the payloads of an order's units, grouped by product.

    A payload that fails to decrypt is counted as undelivered instead of
    raised: the order it belongs to is already durable.
    """
    codes: dict[UUID, list[str]] = {}
    undelivered: dict[UUID, int] = {}
    for unit in units:
        try:
            codes.setdefault(unit.product_id, []).append(cipher.decrypt(unit.encrypted_code))
        except CodeDecryptionError:
            undelivered[unit.product_id] = undelivered.get(unit.product_id, 0) + 1
            metrics.record_error("CodeDecryptionError", "deliver_codes")
            logger.error(
                "code_decryption_failed",
                order_id=str(order_id),
                unit_id=str(unit.unit_id),
            )
    return codes, undelivered


# ============================================================================
# Placement engine
# ============================================================================


class OrderService:
    """
    Order placement engine.

    Every failure before commit rolls the whole transaction back: no order
    row, no allocated unit, and no balance change survive a failed attempt.
    The engine never retries; AllocationRaceLostError and OrderTimeoutError
    are the transient outcomes a caller may retry.
    """

    def __init__(self, session: AsyncSession, cipher: CodeCipher) -> None:
        """Initialize order service with database session and code cipher."""
        self.session = session
        self.cipher = cipher

    async def place_order(self, intent: OrderIntent) -> OrderView:
        """
        Place an order atomically.

        Raises:
            ProductNotFoundError: A requested product doesn't exist
            ProductInactiveError: A requested product is disabled
            InsufficientStockError: Fewer available units than requested
            AccountNotFoundError: Buyer account doesn't exist
            InsufficientCreditError: Credit balance below the order total
            AllocationRaceLostError: A concurrent order claimed the units first
            ConcurrencyError: The store aborted the transaction (deadlock/serialization)
            OrderTimeoutError: Transaction exceeded its time limit
            DataIntegrityError: Persisted totals don't match line prices
            DatabaseError: Unexpected database failure

        Once committed the order is returned even if a payload fails to
        decrypt; affected items report their undelivered count.
        """
        lines = intent.merged_lines()
        payment_method = PaymentMethod(intent.payment_method).value
        started = time.perf_counter()

        with tracer.start_as_current_span("place_order") as span:
            add_span_attributes(
                span,
                account_id=intent.account_id,
                payment_method=payment_method,
                line_count=len(lines),
            )
            try:
                async with asyncio.timeout(settings.order_transaction_timeout_seconds):
                    view, allocated = await self._run_transaction(intent, lines)
                # COMMIT stays outside the wall-clock scope; lock and statement
                # timeouts still bound it on the store side
                await self.session.commit()
            except Exception as exc:
                await self.session.rollback()
                error = self._classify_failure(exc)
                set_span_error(span, error)
                self._record_failure(intent, error, started)
                if error is exc:
                    raise
                raise error from exc

        duration = time.perf_counter() - started
        metrics.record_order(
            "completed",
            payment_method,
            duration,
            units=len(allocated),
            amount=float(view.total_amount),
        )
        logger.info(
            "order_completed",
            order_id=str(view.order_id),
            account_id=str(view.account_id),
            total_amount=str(view.total_amount),
            payment_method=payment_method,
            units=len(allocated),
            duration_ms=round(duration * 1000, 2),
        )

        return self._deliver(view, allocated)

    async def _run_transaction(
        self, intent: OrderIntent, lines: tuple[OrderLineRequest, ...]
    ) -> tuple[OrderView, list[AllocatedUnit]]:
        await self._apply_store_timeouts()

        # Step 1: resolve products and check stock
        products = await self._load_products(lines)
        available = await self._count_available([line.product_id for line in lines])
        for line in lines:
            in_stock = available.get(line.product_id, 0)
            if in_stock < line.quantity:
                raise InsufficientStockError(line.product_id, line.quantity, in_stock)

        # Step 2: price from fresh reads
        priced = price_lines(lines, products)
        total = order_total(priced)

        # Step 3: funds check
        account = await self.session.get(Account, intent.account_id)
        if account is None:
            raise AccountNotFoundError(intent.account_id)
        if intent.payment_method == PaymentMethod.CREDIT and account.credit_balance < total:
            raise InsufficientCreditError(total, Decimal(account.credit_balance))

        # Step 4: order shell
        order = Order(
            account_id=account.id,
            total_amount=total,
            payment_method=PaymentMethod(intent.payment_method).value,
            status=OrderStatus.PENDING.value,
        )
        self.session.add(order)
        await self.session.flush()

        # Step 5: allocate in ascending product id order
        claimed: dict[UUID, list[AllocatedUnit]] = {}
        for line in sorted(priced, key=lambda p: p.product_id):
            claimed[line.product_id] = await self._allocate_units(
                order.id, line.product_id, line.quantity
            )

        # Step 6: one line per unit, price snapshot
        allocated: list[AllocatedUnit] = []
        for line in priced:
            for unit in claimed[line.product_id]:
                self.session.add(
                    OrderLine(
                        order_id=order.id,
                        product_id=line.product_id,
                        inventory_unit_id=unit.unit_id,
                        quantity=1,
                        unit_price=line.unit_price,
                    )
                )
                allocated.append(unit)
        await self.session.flush()

        # Step 7: debit
        balance_after: Decimal | None = None
        if intent.payment_method == PaymentMethod.CREDIT:
            balance_after = await self._debit_balance(account.id, total)

        # Step 8: complete and verify
        order.status = OrderStatus.COMPLETED.value
        await self.session.flush()
        await self._verify_order_total(order.id, total)

        view = OrderView(
            order_id=order.id,
            account_id=order.account_id,
            total_amount=total,
            payment_method=PaymentMethod(order.payment_method),
            status=OrderStatus.COMPLETED,
            created_at=order.created_at,
            items=tuple(
                DeliveredItem(
                    product_id=line.product_id,
                    product_name=line.product_name,
                    platform=line.platform,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for line in priced
            ),
            balance_after=balance_after,
        )

        return view, allocated

    def _deliver(self, view: OrderView, allocated: list[AllocatedUnit]) -> OrderView:
        """Attach decrypted codes to a committed order, once per unit."""
        codes, undelivered = open_codes(self.cipher, view.order_id, allocated)
        if undelivered:
            logger.warning(
                "order_delivery_incomplete",
                order_id=str(view.order_id),
                undelivered_units=sum(undelivered.values()),
            )

        return OrderView(
            order_id=view.order_id,
            account_id=view.account_id,
            total_amount=view.total_amount,
            payment_method=view.payment_method,
            status=view.status,
            created_at=view.created_at,
            items=tuple(
                DeliveredItem(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    platform=item.platform,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    codes=tuple(codes.get(item.product_id, ())),
                    undelivered=undelivered.get(item.product_id, 0),
                )
                for item in view.items
            ),
            balance_after=view.balance_after,
        )

    # ========================================================================
    # Transaction steps
    # ========================================================================

    async def _apply_store_timeouts(self) -> None:
        """Bound lock waits and statement time for this transaction (PostgreSQL only)."""
        bind = self.session.bind
        if bind is None or bind.dialect.name != "postgresql":
            return
        lock_ms = int(settings.order_lock_timeout_seconds * 1000)
        statement_ms = int(settings.order_transaction_timeout_seconds * 1000)
        await self.session.execute(text(f"SET LOCAL lock_timeout = {lock_ms}"))
        await self.session.execute(text(f"SET LOCAL statement_timeout = {statement_ms}"))

    async def _load_products(self, lines: Sequence[OrderLineRequest]) -> dict[UUID, Product]:
        """Load requested products; missing or disabled products fail in request order."""
        stmt = select(Product).where(Product.id.in_([line.product_id for line in lines]))
        result = await self.session.execute(stmt)
        products = {product.id: product for product in result.scalars().all()}

        for line in lines:
            product = products.get(line.product_id)
            if product is None:
                raise ProductNotFoundError(line.product_id)
            if not product.is_active:
                raise ProductInactiveError(product.id, product.name)
        return products

    async def _count_available(self, product_ids: Sequence[UUID]) -> dict[UUID, int]:
        """Available unit counts per product."""
        stmt = (
            select(InventoryUnit.product_id, func.count(InventoryUnit.id))
            .where(
                InventoryUnit.product_id.in_(product_ids),
                InventoryUnit.status == InventoryUnitStatus.AVAILABLE.value,
            )
            .group_by(InventoryUnit.product_id)
        )
        result = await self.session.execute(stmt)
        return {product_id: count for product_id, count in result.all()}

    async def _allocate_units(
        self, order_id: UUID, product_id: UUID, quantity: int
    ) -> list[AllocatedUnit]:
        """
        Claim the `quantity` oldest available units of a product.

        Rows are locked FOR UPDATE, then flipped with a conditional update
        that only matches rows still available. Either fewer lockable rows
        or a short affected-row count means a concurrent order won.
        """
        stmt = (
            select(InventoryUnit.id, InventoryUnit.encrypted_code)
            .where(
                InventoryUnit.product_id == product_id,
                InventoryUnit.status == InventoryUnitStatus.AVAILABLE.value,
            )
            .order_by(InventoryUnit.created_at, InventoryUnit.id)
            .limit(quantity)
            .with_for_update()
        )
        rows = (await self.session.execute(stmt)).all()
        if len(rows) < quantity:
            logger.warning(
                "allocation_race_lost",
                product_id=str(product_id),
                requested=quantity,
                locked=len(rows),
            )
            raise AllocationRaceLostError(product_id)

        unit_ids = [row.id for row in rows]
        result = await self.session.execute(
            update(InventoryUnit)
            .where(
                InventoryUnit.id.in_(unit_ids),
                InventoryUnit.status == InventoryUnitStatus.AVAILABLE.value,
            )
            .values(
                status=InventoryUnitStatus.ALLOCATED.value,
                order_id=order_id,
                allocated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != quantity:
            logger.warning(
                "allocation_race_lost",
                product_id=str(product_id),
                requested=quantity,
                updated=result.rowcount,
            )
            raise AllocationRaceLostError(product_id)

        return [AllocatedUnit(row.id, product_id, row.encrypted_code) for row in rows]

    async def _debit_balance(self, account_id: UUID, total: Decimal) -> Decimal:
        """Guarded store-side decrement; returns the balance after the debit."""
        result = await self.session.execute(
            update(Account)
            .where(Account.id == account_id, Account.credit_balance >= total)
            .values(credit_balance=Account.credit_balance - total, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        balance = await self.session.scalar(
            select(Account.credit_balance).where(Account.id == account_id)
        )
        if result.rowcount != 1:
            raise InsufficientCreditError(total, Decimal(balance or 0))
        return Decimal(balance)

    async def _verify_order_total(self, order_id: UUID, expected: Decimal) -> None:
        """Read back line prices and check they add up to the captured total."""
        persisted = await self.session.scalar(
            select(func.coalesce(func.sum(OrderLine.unit_price), 0)).where(
                OrderLine.order_id == order_id
            )
        )
        if Decimal(persisted) != expected:
            raise DataIntegrityError(
                f"Order {order_id} total mismatch: expected {expected}, lines sum to {persisted}"
            )

    # ========================================================================
    # Failure handling
    # ========================================================================

    def _classify_failure(self, exc: Exception) -> Exception:
        """Map infrastructure failures onto the order error taxonomy."""
        if isinstance(exc, StoreError):
            return exc
        if isinstance(exc, TimeoutError):
            return OrderTimeoutError(settings.order_transaction_timeout_seconds)
        if isinstance(exc, DBAPIError):
            state = _sqlstate(exc)
            if state in (LOCK_NOT_AVAILABLE, QUERY_CANCELED):
                return OrderTimeoutError(settings.order_transaction_timeout_seconds)
            if state in (SERIALIZATION_FAILURE, DEADLOCK_DETECTED):
                return ConcurrencyError("order")
            if isinstance(exc, IntegrityError):
                return DataIntegrityError(str(exc.orig))
            return DatabaseError(str(exc.orig))
        return exc

    def _record_failure(self, intent: OrderIntent, error: Exception, started: float) -> None:
        outcome = type(error).__name__
        payment_method = PaymentMethod(intent.payment_method).value
        metrics.record_order(outcome, payment_method, time.perf_counter() - started)

        if isinstance(error, (DatabaseError, DataIntegrityError)) or not isinstance(
            error, StoreError
        ):
            metrics.record_error(outcome, "place_order")
            logger.error(
                "order_failed",
                account_id=str(intent.account_id),
                error_type=outcome,
                error=str(error),
            )
        else:
            logger.info(
                "order_rejected",
                account_id=str(intent.account_id),
                error_type=outcome,
                reason=str(error),
            )


# ============================================================================
# Read path
# ============================================================================


class OrderQueryService:
    """Reassembles persisted orders, scoped to the requesting principal."""

    def __init__(self, session: AsyncSession, cipher: CodeCipher) -> None:
        self.session = session
        self.cipher = cipher

    async def get_order(self, order_id: UUID, principal: Principal) -> OrderView:
        """
        Get one order.

        Non-admins only match their own orders; the ownership predicate is
        part of the query, so a foreign order is indistinguishable from a
        missing one.
        """
        stmt = self._order_query().where(Order.id == order_id)
        if not principal.is_admin:
            stmt = stmt.where(Order.account_id == principal.account_id)

        result = await self.session.execute(stmt)
        order = result.scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        return self._to_view(order)

    async def list_orders(self, principal: Principal, page: int = 1, limit: int = 10) -> OrderPage:
        """The principal's own orders, newest first."""
        return await self._page(Order.account_id == principal.account_id, page, limit)

    async def list_all_orders(
        self, page: int = 1, limit: int = 10, status: OrderStatus | None = None
    ) -> OrderPage:
        """All orders (admin), optionally filtered by status."""
        condition = Order.status == status.value if status is not None else None
        return await self._page(condition, page, limit)

    async def export_orders(self, filters: OrderExportFilter) -> list[OrderExportRow]:
        """Orders matching the filters with their buyer, newest first. No codes are read."""
        items_count = (
            select(func.coalesce(func.sum(OrderLine.quantity), 0))
            .where(OrderLine.order_id == Order.id)
            .correlate(Order)
            .scalar_subquery()
        )
        stmt = select(Order, Account.full_name, Account.email, items_count).join(
            Account, Account.id == Order.account_id
        )
        if filters.status is not None:
            stmt = stmt.where(Order.status == filters.status.value)
        if filters.payment_method is not None:
            stmt = stmt.where(Order.payment_method == filters.payment_method.value)
        if filters.date_from is not None:
            stmt = stmt.where(Order.created_at >= day_start(filters.date_from))
        if filters.date_to is not None:
            stmt = stmt.where(Order.created_at < day_start(filters.date_to + timedelta(days=1)))
        if filters.search:
            term = filters.search.strip()
            stmt = stmt.where(
                or_(
                    Account.email.icontains(term, autoescape=True),
                    Account.full_name.icontains(term, autoescape=True),
                )
            )

        result = await self.session.execute(
            stmt.order_by(Order.created_at.desc(), Order.id.desc())
        )
        rows = [
            OrderExportRow(
                order_id=order.id,
                customer_name=full_name,
                customer_email=email,
                items_count=int(count or 0),
                total_amount=Decimal(order.total_amount),
                payment_method=order.payment_method,
                status=order.status,
                created_at=order.created_at,
            )
            for order, full_name, email, count in result.all()
        ]
        logger.info("orders_exported", rows=len(rows))
        return rows

    async def _page(
        self, condition: ColumnElement[bool] | None, page: int, limit: int
    ) -> OrderPage:
        page = max(page, 1)
        limit = min(max(limit, 1), settings.order_list_max_limit)

        count_stmt = select(func.count(Order.id))
        stmt = self._order_query()
        if condition is not None:
            count_stmt = count_stmt.where(condition)
            stmt = stmt.where(condition)

        total = await self.session.scalar(count_stmt) or 0
        stmt = (
            stmt.order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        orders = tuple(self._to_view(order) for order in result.scalars().unique().all())
        return OrderPage(orders=orders, page=page, limit=limit, total=total)

    @staticmethod
    def _order_query() -> Select[tuple[Order]]:
        return select(Order).options(
            selectinload(Order.lines).selectinload(OrderLine.product),
            selectinload(Order.lines).selectinload(OrderLine.inventory_unit),
        )

    def _to_view(self, order: Order) -> OrderView:
        """Group lines by product in first-appearance order and decrypt codes."""
        grouped: dict[UUID, list[OrderLine]] = {}
        for line in order.lines:
            grouped.setdefault(line.product_id, []).append(line)

        codes, undelivered = open_codes(
            self.cipher,
            order.id,
            (
                AllocatedUnit(
                    line.inventory_unit.id, line.product_id, line.inventory_unit.encrypted_code
                )
                for line in order.lines
                if line.inventory_unit is not None
            ),
        )

        items = []
        for product_id, product_lines in grouped.items():
            first = product_lines[0]
            items.append(
                DeliveredItem(
                    product_id=product_id,
                    product_name=first.product.name,
                    platform=first.product.platform,
                    quantity=sum(line.quantity for line in product_lines),
                    unit_price=Decimal(first.unit_price),
                    codes=tuple(codes.get(product_id, ())),
                    undelivered=undelivered.get(product_id, 0),
                )
            )

        return OrderView(
            order_id=order.id,
            account_id=order.account_id,
            total_amount=Decimal(order.total_amount),
            payment_method=PaymentMethod(order.payment_method),
            status=OrderStatus(order.status),
            created_at=order.created_at,
            items=tuple(items),
        )
