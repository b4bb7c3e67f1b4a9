"""
Inventory Service - Product catalogue and game code uploads.

Codes are encrypted before they reach the database and fingerprinted with
a keyed digest so duplicates can be detected without decrypting stock.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from storefront.config import settings
from storefront.db.models import InventoryUnit, Product, utc_now
from storefront.exceptions import (
    CodeAlreadySoldError,
    CodeDecryptionError,
    ConcurrencyError,
    InputValidationError,
    ProductHasSalesError,
    ResourceNotFoundError,
)
from storefront.models.api import InventoryUnitStatus
from storefront.models.domain import (
    CodeInventory,
    CodeUploadResult,
    ProductChanges,
    ProductData,
    StoredCode,
)
from storefront.observability.metrics import metrics
from storefront.services.cipher import CodeCipher

logger = get_logger(__name__)


class InventoryService:
    """Catalogue reads for customers; product and code management for admins."""

    def __init__(self, session: AsyncSession, cipher: CodeCipher | None = None) -> None:
        self.session = session
        self.cipher = cipher

    # ========================================================================
    # Catalogue
    # ========================================================================

    async def list_products(
        self, active_only: bool = True, platform: str | None = None
    ) -> list[ProductData]:
        """Products with their current available stock, newest first."""
        stock = (
            select(
                InventoryUnit.product_id.label("product_id"),
                func.count(InventoryUnit.id).label("available"),
            )
            .where(InventoryUnit.status == InventoryUnitStatus.AVAILABLE.value)
            .group_by(InventoryUnit.product_id)
            .subquery()
        )
        stmt = (
            select(Product, func.coalesce(stock.c.available, 0))
            .outerjoin(stock, stock.c.product_id == Product.id)
            .order_by(Product.created_at.desc())
        )
        if active_only:
            stmt = stmt.where(Product.is_active.is_(True))
        if platform:
            stmt = stmt.where(Product.platform == platform)

        result = await self.session.execute(stmt)
        return [self._to_domain(product, available) for product, available in result.all()]

    async def get_product(self, product_id: UUID) -> ProductData:
        product = await self._get_or_raise(product_id)
        return self._to_domain(product, await self._available_count(product_id))

    # ========================================================================
    # Product management (admin)
    # ========================================================================

    async def create_product(
        self,
        name: str,
        platform: str,
        price: Decimal,
        description: str | None = None,
        image_url: str | None = None,
        is_active: bool = True,
    ) -> ProductData:
        """Create a product. Raises InputValidationError for a non-positive price."""
        if price <= 0:
            raise InputValidationError("price", "must be greater than 0")
        if not name.strip():
            raise InputValidationError("name", "must not be empty")

        product = Product(
            name=name.strip(),
            description=description,
            platform=platform,
            price=price,
            image_url=image_url,
            is_active=is_active,
        )
        self.session.add(product)
        await self.session.flush()
        await self.session.commit()

        logger.info("product_created", product_id=str(product.id), platform=platform)
        return self._to_domain(product, 0)

    async def update_product(self, product_id: UUID, changes: ProductChanges) -> ProductData:
        """Apply a partial update. Prices of past orders are unaffected (lines hold snapshots)."""
        product = await self._get_or_raise(product_id)

        if changes.name is not None:
            product.name = changes.name.strip()
        if changes.description is not None:
            product.description = changes.description
        if changes.platform is not None:
            product.platform = changes.platform
        if changes.price is not None:
            product.price = changes.price
        if changes.image_url is not None:
            product.image_url = changes.image_url
        if changes.is_active is not None:
            product.is_active = changes.is_active

        await self.session.flush()
        await self.session.commit()

        logger.info("product_updated", product_id=str(product_id))
        return self._to_domain(product, await self._available_count(product_id))

    async def delete_product(self, product_id: UUID) -> None:
        """
        Hard-delete a product and its unsold codes.

        Raises:
            ResourceNotFoundError: Product doesn't exist
            ProductHasSalesError: At least one code was ever allocated
        """
        product = await self._get_or_raise(product_id)

        sold = await self.session.scalar(
            select(func.count(InventoryUnit.id)).where(
                InventoryUnit.product_id == product_id,
                InventoryUnit.status == InventoryUnitStatus.ALLOCATED.value,
            )
        )
        if sold:
            raise ProductHasSalesError(product_id, sold)

        await self.session.execute(
            delete(InventoryUnit)
            .where(
                InventoryUnit.product_id == product_id,
                InventoryUnit.status == InventoryUnitStatus.AVAILABLE.value,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(
            delete(Product)
            .where(Product.id == product.id)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        logger.info("product_deleted", product_id=str(product_id))

    # ========================================================================
    # Code upload (admin)
    # ========================================================================

    async def upload_codes(self, product_id: UUID, codes: list[str]) -> CodeUploadResult:
        """
        Encrypt and store a batch of codes for a product.

        Each line is trimmed and validated on its own; rejected lines are
        reported with their 1-based line number and don't block the rest.
        Valid codes get strictly increasing created_at values so allocation
        follows upload order.

        Raises:
            ResourceNotFoundError: Product doesn't exist
            InputValidationError: Empty batch or more than the upload limit
            ConcurrencyError: A concurrent upload stored one of the same codes
        """
        if self.cipher is None:
            raise RuntimeError("InventoryService needs a CodeCipher to upload codes")
        if not codes:
            raise InputValidationError("codes", "no codes provided")
        if len(codes) > settings.code_upload_max_batch:
            raise InputValidationError(
                "codes", f"maximum {settings.code_upload_max_batch} codes allowed per upload"
            )

        product = await self._get_or_raise(product_id)

        errors: list[str] = []
        duplicates = 0
        accepted: list[tuple[str, str]] = []
        seen: set[str] = set()

        candidates = [
            (line_no, code.strip(), self.cipher.digest(code))
            for line_no, code in enumerate(codes, 1)
        ]
        existing = await self._existing_digests(
            product_id, [digest for _, clean, digest in candidates if clean]
        )

        for line_no, clean, digest in candidates:
            if not clean:
                errors.append(f"Line {line_no}: Empty code")
                continue
            if len(clean) < settings.code_min_length:
                errors.append(f'Line {line_no}: Code too short: "{clean}"')
                continue
            if digest in seen:
                duplicates += 1
                errors.append(f'Line {line_no}: Duplicate code in upload: "{clean}"')
                continue
            if digest in existing:
                duplicates += 1
                errors.append(f'Line {line_no}: Code already exists: "{clean}"')
                continue
            seen.add(digest)
            accepted.append((clean, digest))

        base_time = utc_now()
        for offset, (clean, digest) in enumerate(accepted):
            self.session.add(
                InventoryUnit(
                    product_id=product_id,
                    encrypted_code=self.cipher.encrypt(clean),
                    code_digest=digest,
                    status=InventoryUnitStatus.AVAILABLE.value,
                    created_at=base_time + timedelta(microseconds=offset),
                )
            )

        try:
            await self.session.flush()
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            logger.warning("code_upload_conflict", product_id=str(product_id))
            raise ConcurrencyError("game_codes") from exc

        metrics.record_code_upload(len(accepted), duplicates, len(errors) - duplicates)
        logger.info(
            "codes_uploaded",
            product_id=str(product_id),
            added=len(accepted),
            duplicates=duplicates,
            rejected=len(errors),
            total_processed=len(codes),
        )

        return CodeUploadResult(
            product_id=product_id,
            product_name=product.name,
            added=len(accepted),
            duplicates=duplicates,
            total_processed=len(codes),
            errors=tuple(errors),
        )

    # ========================================================================
    # Code management (admin)
    # ========================================================================

    async def list_codes(self, product_id: UUID) -> CodeInventory:
        """
        Every code of a product, decrypted, newest upload first.

        A payload that fails to decrypt is listed with code=None so one bad
        row doesn't hide the rest of the stock.

        Raises:
            ResourceNotFoundError: Product doesn't exist
        """
        if self.cipher is None:
            raise RuntimeError("InventoryService needs a CodeCipher to read codes")

        product = await self._get_or_raise(product_id)
        result = await self.session.execute(
            select(InventoryUnit)
            .where(InventoryUnit.product_id == product_id)
            .order_by(InventoryUnit.created_at.desc())
        )

        codes = []
        for unit in result.scalars().all():
            try:
                code = self.cipher.decrypt(unit.encrypted_code)
            except CodeDecryptionError:
                code = None
                metrics.record_error("CodeDecryptionError", "list_codes")
                logger.error("code_decryption_failed", unit_id=str(unit.id))
            codes.append(
                StoredCode(
                    unit_id=unit.id,
                    code=code,
                    status=unit.status,
                    order_id=unit.order_id,
                    allocated_at=unit.allocated_at,
                    created_at=unit.created_at,
                )
            )

        return CodeInventory(product_id=product.id, product_name=product.name, codes=tuple(codes))

    async def delete_code(self, product_id: UUID, unit_id: UUID) -> None:
        """
        Delete one unsold code.

        The delete is conditional on the unit still being available, so a
        code allocated by a concurrent order is never removed.

        Raises:
            ResourceNotFoundError: No such code for this product
            CodeAlreadySoldError: The code has been allocated to an order
        """
        result = await self.session.execute(
            delete(InventoryUnit)
            .where(
                InventoryUnit.id == unit_id,
                InventoryUnit.product_id == product_id,
                InventoryUnit.status == InventoryUnitStatus.AVAILABLE.value,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            unit_status = await self.session.scalar(
                select(InventoryUnit.status).where(
                    InventoryUnit.id == unit_id,
                    InventoryUnit.product_id == product_id,
                )
            )
            if unit_status is None:
                raise ResourceNotFoundError(f"Game code {unit_id} not found")
            raise CodeAlreadySoldError(unit_id)

        await self.session.commit()
        logger.info("code_deleted", product_id=str(product_id), unit_id=str(unit_id))

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _get_or_raise(self, product_id: UUID) -> Product:
        product = await self.session.get(Product, product_id)
        if product is None:
            raise ResourceNotFoundError(f"Product {product_id} not found")
        return product

    async def _available_count(self, product_id: UUID) -> int:
        count = await self.session.scalar(
            select(func.count(InventoryUnit.id)).where(
                InventoryUnit.product_id == product_id,
                InventoryUnit.status == InventoryUnitStatus.AVAILABLE.value,
            )
        )
        return int(count or 0)

    async def _existing_digests(self, product_id: UUID, digests: list[str]) -> set[str]:
        if not digests:
            return set()
        result = await self.session.execute(
            select(InventoryUnit.code_digest).where(
                InventoryUnit.product_id == product_id,
                InventoryUnit.code_digest.in_(digests),
            )
        )
        return set(result.scalars().all())

    @staticmethod
    def _to_domain(product: Product, available: int) -> ProductData:
        return ProductData(
            product_id=product.id,
            name=product.name,
            description=product.description,
            platform=product.platform,
            price=Decimal(product.price),
            image_url=product.image_url,
            is_active=product.is_active,
            available_stock=int(available),
            created_at=product.created_at,
        )
