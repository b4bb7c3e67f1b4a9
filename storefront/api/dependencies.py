"""
API Dependencies - Caller identity and shared collaborators.

Bearer tokens are HS256 JWTs issued by the identity provider; `sub` is the
account id. The account row supplies role and ban state.
"""

from uuid import UUID

import jwt
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.config import settings
from storefront.db.session import get_read_db
from storefront.exceptions import AccountNotFoundError, AuthenticationError
from storefront.models.domain import Principal, can_manage_inventory
from storefront.services.accounts import AccountService
from storefront.services.cipher import CodeCipher, get_cipher

logger = get_logger(__name__)

JWT_ALGORITHM = "HS256"


def decode_access_token(token: str) -> UUID:
    """
    Verify a bearer token and return the account id it names.

    Raises:
        AuthenticationError: Bad signature, expired, wrong audience, or bad subject
    """
    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[JWT_ALGORITHM],
            audience=settings.auth_jwt_audience,
            options={
                "require": ["sub", "exp"],
                "verify_aud": settings.auth_jwt_audience is not None,
            },
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("invalid token") from exc

    try:
        return UUID(str(payload["sub"]))
    except ValueError as exc:
        raise AuthenticationError("invalid subject") from exc


def _extract_bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_principal(
    authorization: str | None = Header(None),
    db: AsyncSession = Depends(get_read_db),
) -> Principal:
    """
    Resolve the authenticated caller.

    Raises:
        HTTPException(401): Missing/invalid token or no profile for the subject
        HTTPException(403): Account is banned
    """
    token = _extract_bearer(authorization)
    if token is None:
        logger.warning("auth_no_token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        account_id = decode_access_token(token)
    except AuthenticationError as exc:
        logger.warning("auth_invalid_token", reason=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    try:
        account = await AccountService(db).get_profile(account_id)
    except AccountNotFoundError as exc:
        logger.warning("auth_profile_not_found", account_id=str(account_id))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User profile not found",
        ) from exc

    if account.is_banned:
        logger.warning("auth_account_banned", account_id=str(account_id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is banned",
        )

    return Principal(account_id=account.account_id, email=account.email, role=account.role)


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Require a role allowed to manage inventory, orders and credit requests."""
    if not can_manage_inventory(principal.role):
        logger.warning(
            "admin_access_denied",
            account_id=str(principal.account_id),
            role=principal.role.value,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Forbidden: Admin access required",
        )
    return principal


def get_code_cipher() -> CodeCipher:
    """FastAPI dependency for the process-wide code cipher."""
    return get_cipher()
