"""
Account Service - Profiles and account administration.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.db.models import Account
from storefront.exceptions import (
    AccountNotFoundError,
    AuthorizationError,
    InputValidationError,
)
from storefront.models.api import Role
from storefront.models.domain import AccountData, Principal, can_ban_account

logger = get_logger(__name__)


class AccountService:
    """Account lookups and ban management."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_profile(self, account_id: UUID) -> AccountData:
        """Raises AccountNotFoundError when no profile exists for the id."""
        account = await self.session.get(Account, account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return self._to_domain(account)

    async def list_accounts(self, role: Role | None = None) -> list[AccountData]:
        stmt = select(Account).order_by(Account.created_at.desc())
        if role is not None:
            stmt = stmt.where(Account.role == role.value)
        result = await self.session.execute(stmt)
        return [self._to_domain(account) for account in result.scalars().all()]

    async def set_banned(self, actor: Principal, target_id: UUID, banned: bool) -> AccountData:
        """
        Ban or unban an account.

        Raises:
            AccountNotFoundError: Target doesn't exist
            AuthorizationError: Self-ban, or actor's role can't ban the target's role
            InputValidationError: Target is already in the requested state
        """
        if actor.account_id == target_id:
            raise AuthorizationError("cannot ban or unban your own account")

        account = await self.session.get(Account, target_id, with_for_update=True)
        if account is None:
            raise AccountNotFoundError(target_id)

        if not can_ban_account(actor.role, Role(account.role)):
            raise AuthorizationError(f"{actor.role.value} cannot ban {account.role} accounts")

        if account.is_banned == banned:
            state = "banned" if banned else "not banned"
            raise InputValidationError("action", f"user is already {state}")

        account.is_banned = banned
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "account_ban_changed",
            actor_id=str(actor.account_id),
            target_id=str(target_id),
            banned=banned,
        )
        return self._to_domain(account)

    @staticmethod
    def _to_domain(account: Account) -> AccountData:
        return AccountData(
            account_id=account.id,
            email=account.email,
            full_name=account.full_name,
            role=Role(account.role),
            credit_balance=Decimal(account.credit_balance),
            is_banned=account.is_banned,
            created_at=account.created_at,
        )
