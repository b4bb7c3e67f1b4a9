"""
Tests for CreditRequestService: submission bounds and admin review.
"""

from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import StoreSeeder, create_mock_credit_request, make_result
from storefront.db.models import Account
from storefront.exceptions import (
    AccountNotFoundError,
    CreditRequestAlreadyProcessedError,
    InputValidationError,
    ResourceNotFoundError,
)
from storefront.models.api import CreditRequestStatus, ReviewAction, Role
from storefront.models.domain import Principal
from storefront.services.credit_requests import CreditRequestService

SessionFactory = async_sessionmaker[AsyncSession]


async def balance_of(factory: SessionFactory, account_id) -> Decimal:
    async with factory() as session:
        return await session.scalar(
            select(Account.credit_balance).where(Account.id == account_id)
        )


@pytest.fixture
async def reviewer(seeder: StoreSeeder) -> Principal:
    admin_id = await seeder.account(balance="0.00", role=Role.ADMIN)
    return Principal(account_id=admin_id, email=None, role=Role.ADMIN)


# ============================================================================
# Submission
# ============================================================================


class TestCreateRequest:
    """Amounts are bounded and the requester must exist."""

    @pytest.mark.parametrize("amount", ["4.99", "1000.01", "0.00"])
    async def test_amount_out_of_bounds(self, db_session: AsyncMock, amount: str):
        with pytest.raises(InputValidationError) as exc_info:
            await CreditRequestService(db_session).create_request(
                account_id=uuid4(), amount=Decimal(amount), payment_method="bank_transfer"
            )

        assert exc_info.value.field == "amount"
        db_session.add.assert_not_called()

    async def test_blank_payment_method(self, db_session: AsyncMock):
        with pytest.raises(InputValidationError) as exc_info:
            await CreditRequestService(db_session).create_request(
                account_id=uuid4(), amount=Decimal("20.00"), payment_method="  "
            )

        assert exc_info.value.field == "payment_method"

    async def test_unknown_account(self, db_session: AsyncMock):
        with pytest.raises(AccountNotFoundError):
            await CreditRequestService(db_session).create_request(
                account_id=uuid4(), amount=Decimal("20.00"), payment_method="bank_transfer"
            )

    async def test_created_pending(self, session_factory: SessionFactory, seeder: StoreSeeder):
        account = await seeder.account()

        async with session_factory() as session:
            created = await CreditRequestService(session).create_request(
                account_id=account,
                amount=Decimal("25.00"),
                payment_method="bank_transfer",
                payment_reference="TX-42",
            )

        assert created.status == CreditRequestStatus.PENDING
        assert created.amount == Decimal("25.00")
        assert created.reviewed_by is None


# ============================================================================
# Review
# ============================================================================


class TestReviewRequest:
    """Approval credits the balance once; reviewed requests are final."""

    async def test_approve_credits_balance(
        self, session_factory: SessionFactory, seeder: StoreSeeder, reviewer: Principal
    ):
        account = await seeder.account(balance="10.00")
        async with session_factory() as session:
            created = await CreditRequestService(session).create_request(
                account_id=account, amount=Decimal("40.00"), payment_method="bank_transfer"
            )

        async with session_factory() as session:
            reviewed = await CreditRequestService(session).review_request(
                created.request_id, reviewer, ReviewAction.APPROVE, admin_notes="paid"
            )

        assert reviewed.status == CreditRequestStatus.APPROVED
        assert reviewed.reviewed_by == reviewer.account_id
        assert reviewed.reviewed_at is not None
        assert reviewed.admin_notes == "paid"
        assert await balance_of(session_factory, account) == Decimal("50.00")

    async def test_reject_leaves_balance(
        self, session_factory: SessionFactory, seeder: StoreSeeder, reviewer: Principal
    ):
        account = await seeder.account(balance="10.00")
        async with session_factory() as session:
            created = await CreditRequestService(session).create_request(
                account_id=account, amount=Decimal("40.00"), payment_method="bank_transfer"
            )

        async with session_factory() as session:
            reviewed = await CreditRequestService(session).review_request(
                created.request_id, reviewer, ReviewAction.REJECT
            )

        assert reviewed.status == CreditRequestStatus.REJECTED
        assert await balance_of(session_factory, account) == Decimal("10.00")

    async def test_second_review_refused(
        self, session_factory: SessionFactory, seeder: StoreSeeder, reviewer: Principal
    ):
        account = await seeder.account(balance="0.00")
        async with session_factory() as session:
            created = await CreditRequestService(session).create_request(
                account_id=account, amount=Decimal("15.00"), payment_method="bank_transfer"
            )
        async with session_factory() as session:
            await CreditRequestService(session).review_request(
                created.request_id, reviewer, ReviewAction.APPROVE
            )

        async with session_factory() as session:
            with pytest.raises(CreditRequestAlreadyProcessedError) as exc_info:
                await CreditRequestService(session).review_request(
                    created.request_id, reviewer, ReviewAction.APPROVE
                )

        assert exc_info.value.status == "approved"
        assert await balance_of(session_factory, account) == Decimal("15.00")

    async def test_missing_request(self, db_session: AsyncMock, admin_principal: Principal):
        with pytest.raises(ResourceNotFoundError):
            await CreditRequestService(db_session).review_request(
                uuid4(), admin_principal, ReviewAction.APPROVE
            )

    async def test_approval_for_removed_account(
        self, db_session: AsyncMock, admin_principal: Principal
    ):
        request = create_mock_credit_request()
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalar_one_or_none=request), make_result(rowcount=0)]
        )

        with pytest.raises(AccountNotFoundError):
            await CreditRequestService(db_session).review_request(
                request.id, admin_principal, ReviewAction.APPROVE
            )

        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()


class TestListRequests:
    """Owners see their own requests; admins can filter by status."""

    async def test_scoped_and_filtered(
        self, session_factory: SessionFactory, seeder: StoreSeeder, reviewer: Principal
    ):
        alice = await seeder.account()
        bob = await seeder.account()
        async with session_factory() as session:
            service = CreditRequestService(session)
            first = await service.create_request(alice, Decimal("10.00"), "bank_transfer")
            await service.create_request(alice, Decimal("20.00"), "bank_transfer")
            await service.create_request(bob, Decimal("30.00"), "bank_transfer")

        async with session_factory() as session:
            await CreditRequestService(session).review_request(
                first.request_id, reviewer, ReviewAction.REJECT
            )

        async with session_factory() as session:
            service = CreditRequestService(session)
            mine = await service.list_requests(account_id=alice)
            pending = await service.list_requests(status=CreditRequestStatus.PENDING)

        assert {r.account_id for r in mine} == {alice}
        assert len(mine) == 2
        assert sorted(r.amount for r in pending) == [Decimal("20.00"), Decimal("30.00")]


class TestGetRequest:
    """A single request is visible to its owner and to admins."""

    async def test_owner_and_admin_lookup(
        self, session_factory: SessionFactory, seeder: StoreSeeder
    ):
        alice = await seeder.account()
        bob = await seeder.account()
        async with session_factory() as session:
            created = await CreditRequestService(session).create_request(
                alice, Decimal("25.00"), "bank_transfer", payment_reference="TX-1"
            )

        async with session_factory() as session:
            service = CreditRequestService(session)
            own = await service.get_request(created.request_id, account_id=alice)
            any_account = await service.get_request(created.request_id)
            with pytest.raises(ResourceNotFoundError):
                await service.get_request(created.request_id, account_id=bob)

        assert own.amount == Decimal("25.00")
        assert own.payment_reference == "TX-1"
        assert any_account.account_id == alice

    async def test_missing_request(self, db_session: AsyncMock):
        with pytest.raises(ResourceNotFoundError):
            await CreditRequestService(db_session).get_request(uuid4())
