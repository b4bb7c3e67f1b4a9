"""
Credit Request Service - Manual credit top-ups reviewed by administrators.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.config import settings
from storefront.db.models import Account, CreditRequest, utc_now
from storefront.exceptions import (
    AccountNotFoundError,
    CreditRequestAlreadyProcessedError,
    DataIntegrityError,
    InputValidationError,
    ResourceNotFoundError,
)
from storefront.models.api import CreditRequestStatus, ReviewAction
from storefront.models.domain import CreditRequestData, Principal
from storefront.observability.metrics import metrics

logger = get_logger(__name__)


class CreditRequestService:
    """
    Credit request workflow.

    Approval follows the same balance discipline as order placement: the
    request row is locked, and the account is credited with a store-side
    increment inside the same transaction, so it composes with concurrent
    debits without lost updates.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize credit request service with database session."""
        self.session = session

    async def create_request(
        self,
        account_id: UUID,
        amount: Decimal,
        payment_method: str,
        payment_reference: str | None = None,
        notes: str | None = None,
    ) -> CreditRequestData:
        """
        Submit a top-up request in pending status.

        Raises:
            InputValidationError: Amount outside the configured bounds
            AccountNotFoundError: Requesting account doesn't exist
        """
        if not (
            settings.credit_request_min_amount <= amount <= settings.credit_request_max_amount
        ):
            raise InputValidationError(
                "amount",
                f"must be between {settings.credit_request_min_amount} "
                f"and {settings.credit_request_max_amount}",
            )
        if not payment_method.strip():
            raise InputValidationError("payment_method", "must not be empty")

        account = await self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)

        request = CreditRequest(
            account_id=account_id,
            amount=amount,
            payment_method=payment_method.strip(),
            payment_reference=payment_reference,
            notes=notes,
            status=CreditRequestStatus.PENDING.value,
        )
        self.session.add(request)
        await self.session.flush()

        verified = await self.session.get(CreditRequest, request.id)
        if verified is None:
            raise DataIntegrityError(f"Credit request {request.id} not found after insert")

        await self.session.commit()

        logger.info(
            "credit_request_created",
            request_id=str(request.id),
            account_id=str(account_id),
            amount=str(amount),
        )
        return self._to_domain(verified)

    async def list_requests(
        self,
        account_id: UUID | None = None,
        status: CreditRequestStatus | None = None,
    ) -> list[CreditRequestData]:
        """Requests newest first; account_id=None lists every account (admin)."""
        stmt = select(CreditRequest).order_by(CreditRequest.created_at.desc())
        if account_id is not None:
            stmt = stmt.where(CreditRequest.account_id == account_id)
        if status is not None:
            stmt = stmt.where(CreditRequest.status == status.value)

        result = await self.session.execute(stmt)
        return [self._to_domain(request) for request in result.scalars().all()]

    async def get_request(
        self, request_id: UUID, account_id: UUID | None = None
    ) -> CreditRequestData:
        """
        One request; account_id=None matches any account (admin).

        Another account's request is reported as missing.

        Raises:
            ResourceNotFoundError: Request doesn't exist or isn't visible
        """
        stmt = select(CreditRequest).where(CreditRequest.id == request_id)
        if account_id is not None:
            stmt = stmt.where(CreditRequest.account_id == account_id)

        request = (await self.session.execute(stmt)).scalar_one_or_none()
        if request is None:
            raise ResourceNotFoundError(f"Credit request {request_id} not found")
        return self._to_domain(request)

    async def review_request(
        self,
        request_id: UUID,
        reviewer: Principal,
        action: ReviewAction,
        admin_notes: str | None = None,
    ) -> CreditRequestData:
        """
        Approve or reject a pending request.

        Raises:
            ResourceNotFoundError: Request doesn't exist
            CreditRequestAlreadyProcessedError: Request is no longer pending
            AccountNotFoundError: Requesting account was removed
        """
        request = await self._lock_request_for_update(request_id)
        if request is None:
            raise ResourceNotFoundError(f"Credit request {request_id} not found")
        if request.status != CreditRequestStatus.PENDING.value:
            raise CreditRequestAlreadyProcessedError(request_id, request.status)

        if action == ReviewAction.APPROVE:
            result = await self.session.execute(
                update(Account)
                .where(Account.id == request.account_id)
                .values(
                    credit_balance=Account.credit_balance + request.amount,
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.session.rollback()
                raise AccountNotFoundError(request.account_id)
            request.status = CreditRequestStatus.APPROVED.value
        else:
            request.status = CreditRequestStatus.REJECTED.value

        request.admin_notes = admin_notes
        request.reviewed_by = reviewer.account_id
        request.reviewed_at = utc_now()
        await self.session.flush()
        await self.session.commit()

        metrics.record_credit_review(action.value)
        logger.info(
            "credit_request_reviewed",
            request_id=str(request_id),
            account_id=str(request.account_id),
            reviewer_id=str(reviewer.account_id),
            action=action.value,
            amount=str(request.amount),
        )
        return self._to_domain(request)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _lock_request_for_update(self, request_id: UUID) -> CreditRequest | None:
        """Lock credit request row for update (SELECT FOR UPDATE)."""
        stmt = select(CreditRequest).where(CreditRequest.id == request_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _to_domain(request: CreditRequest) -> CreditRequestData:
        return CreditRequestData(
            request_id=request.id,
            account_id=request.account_id,
            amount=Decimal(request.amount),
            payment_method=request.payment_method,
            payment_reference=request.payment_reference,
            notes=request.notes,
            status=CreditRequestStatus(request.status),
            admin_notes=request.admin_notes,
            reviewed_by=request.reviewed_by,
            reviewed_at=request.reviewed_at,
            created_at=request.created_at,
        )
