"""
Persistence operations used by checkout, reconciliation and feature activation.

Repositories wrap a session owned by the caller; they flush but never commit.
"""
from datetime import datetime
from typing import Dict, Iterable, Optional

import structlog
from sqlalchemy import Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import (
    ActiveFeature,
    AdPackage,
    PremiumPackage,
    Transaction,
    TransactionStatus,
    User,
)

logger = structlog.get_logger(__name__)


class TransactionRepository:
    """Load and conditionally update checkout transactions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, transaction: Transaction) -> Transaction:
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def load_by_invoice(
        self, invoice_number: str, for_update: bool = False
    ) -> Optional[Transaction]:
        """
        Load a transaction by invoice number.

        Args:
            invoice_number: Invoice number the gateway echoes back
            for_update: Take a row lock for the rest of the database transaction

        Returns:
            Optional[Transaction]: The transaction, or None if unknown
        """
        stmt = select(Transaction).where(Transaction.invoice_number == invoice_number)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def load_for_owner(self, invoice_number: str, user_id: int) -> Optional[Transaction]:
        stmt = select(Transaction).where(
            Transaction.invoice_number == invoice_number,
            Transaction.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def update_if_pending(
        self,
        invoice_number: str,
        status: TransactionStatus,
        paid_at: Optional[datetime] = None,
    ) -> bool:
        """
        Move a pending transaction to a terminal status.

        The status check is part of the UPDATE statement, so of two concurrent
        writers only one can match the row.

        Returns:
            bool: True if this call performed the transition
        """
        values: Dict[str, object] = {"status": status.value}
        if paid_at is not None:
            values["paid_at"] = paid_at

        stmt = (
            update(Transaction)
            .where(
                Transaction.invoice_number == invoice_number,
                Transaction.status == TransactionStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        applied = result.rowcount == 1

        logger.debug(
            "transaction_conditional_update",
            invoice_number=invoice_number,
            status=status.value,
            applied=applied,
        )
        return applied


class FeatureRepository:
    """Active feature rows, unique per (product, feature type)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def active_feature_query(product_id: int, feature_type: str) -> Select:
        """Row-locked lookup; concurrent grants for one pair queue on the row."""
        return (
            select(ActiveFeature)
            .where(
                ActiveFeature.product_id == product_id,
                ActiveFeature.feature_type == feature_type,
            )
            .with_for_update()
        )

    async def load_active_feature(
        self, product_id: int, feature_type: str
    ) -> Optional[ActiveFeature]:
        result = await self.session.execute(self.active_feature_query(product_id, feature_type))
        return result.scalar_one_or_none()

    async def upsert_active_feature(self, feature: ActiveFeature) -> ActiveFeature:
        """
        Persist a new or modified feature row.

        New rows are flushed immediately so a second grant for the same pair
        within one transaction finds the row instead of inserting a duplicate.
        """
        if feature not in self.session:
            self.session.add(feature)
        await self.session.flush()
        return feature


class CatalogRepository:
    """Read access to users and purchasable packages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def locked_user_query(user_id: int) -> Select:
        return (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    async def get_user(self, user_id: int, for_update: bool = False) -> Optional[User]:
        """
        Load a user.

        Args:
            user_id: User id
            for_update: Lock the row, reloading it if the session already holds it
        """
        if not for_update:
            return await self.session.get(User, user_id)
        result = await self.session.execute(self.locked_user_query(user_id))
        return result.scalar_one_or_none()

    async def get_premium_package(self, package_id: int) -> Optional[PremiumPackage]:
        return await self.session.get(PremiumPackage, package_id)

    async def get_ad_packages(self, package_ids: Iterable[int]) -> Dict[int, AdPackage]:
        """Load ad packages with their feature grants, keyed by id."""
        ids = sorted(set(package_ids))
        if not ids:
            return {}
        stmt = (
            select(AdPackage)
            .where(AdPackage.id.in_(ids))
            .options(selectinload(AdPackage.features))
        )
        result = await self.session.execute(stmt)
        return {package.id: package for package in result.scalars()}
