"""
Feature activation for paid transactions.

Merge rules:
- Time-bounded features (highlight, spotlight) and premium status stack by
  extending the current expiry while it is still in the future, otherwise
  they restart from now.
- Counted features (boost) stack by adding to the remaining quantity.

Grants are merged into the single row per (product, feature type), however
many purchased lines target that pair.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_payments.database.models import (
    ActiveFeature,
    AdFeatureType,
    AdPackageFeature,
    FeatureKind,
    ProfileType,
    Transaction,
    TransactionType,
)
from marketplace_payments.database.repository import CatalogRepository, FeatureRepository
from marketplace_payments.monitoring import metrics

from .schemas import load_transaction_details

logger = structlog.get_logger(__name__)


def as_utc(moment: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from databases without time zones."""
    if moment is None:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def extend_expiry(current: Optional[datetime], days: int, now: datetime) -> datetime:
    """
    Stack a time-bounded grant.

    Args:
        current: Existing expiry, if any
        days: Grant length in days
        now: Current UTC time

    Returns:
        datetime: New expiry
    """
    current = as_utc(current)
    start = current if current is not None and current > now else now
    return start + timedelta(days=days)


@dataclass
class ActivationSummary:
    """What one activation run changed."""

    features_applied: int = 0
    premium_until: Optional[datetime] = None
    skipped_packages: List[int] = field(default_factory=list)


class FeatureActivationEngine:
    """Applies purchased benefits inside the caller's database transaction."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize activation engine.

        Args:
            clock: Optional UTC clock (tests pin it)
        """
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return as_utc(self._clock())

    async def activate(self, session: AsyncSession, transaction: Transaction) -> ActivationSummary:
        """
        Apply the benefits bought by a successful transaction.

        Args:
            session: Session whose transaction also holds the status update
            transaction: Transaction that just settled

        Returns:
            ActivationSummary: Applied changes
        """
        if transaction.type == TransactionType.PREMIUM_SUBSCRIPTION.value:
            return await self._activate_premium(session, transaction)
        if transaction.type == TransactionType.AD_PACKAGE_PURCHASE.value:
            return await self._activate_ad_packages(session, transaction)

        logger.warning(
            "activation_unknown_transaction_type",
            invoice_number=transaction.invoice_number,
            transaction_type=transaction.type,
        )
        return ActivationSummary()

    async def _activate_premium(
        self, session: AsyncSession, transaction: Transaction
    ) -> ActivationSummary:
        catalog = CatalogRepository(session)
        summary = ActivationSummary()

        try:
            package_id = int(transaction.reference_id or "")
        except ValueError:
            logger.error(
                "premium_reference_invalid",
                invoice_number=transaction.invoice_number,
                reference_id=transaction.reference_id,
            )
            return summary

        package = await catalog.get_premium_package(package_id)
        user = await catalog.get_user(transaction.user_id, for_update=True)
        if package is None or user is None:
            logger.warning(
                "premium_activation_skipped",
                invoice_number=transaction.invoice_number,
                package_found=package is not None,
                user_found=user is not None,
            )
            summary.skipped_packages.append(package_id)
            return summary

        user.profile_type = ProfileType.PREMIUM.value
        user.premium_until = extend_expiry(user.premium_until, package.duration_days, self.now())
        await session.flush()

        metrics.premium_extensions_total.inc()
        logger.info(
            "premium_extended",
            user_id=user.id,
            premium_until=user.premium_until.isoformat(),
        )
        summary.premium_until = user.premium_until
        return summary

    async def _activate_ad_packages(
        self, session: AsyncSession, transaction: Transaction
    ) -> ActivationSummary:
        catalog = CatalogRepository(session)
        features = FeatureRepository(session)
        summary = ActivationSummary()

        try:
            items = load_transaction_details(transaction.details)
        except ValidationError as e:
            logger.error(
                "transaction_details_invalid",
                invoice_number=transaction.invoice_number,
                error_count=e.error_count(),
            )
            return summary

        packages = await catalog.get_ad_packages(item.ad_package_id for item in items)
        now = self.now()

        for item in items:
            package = packages.get(item.ad_package_id)
            if package is None:
                logger.warning(
                    "ad_package_not_found",
                    invoice_number=transaction.invoice_number,
                    ad_package_id=item.ad_package_id,
                )
                summary.skipped_packages.append(item.ad_package_id)
                continue

            for _ in range(item.quantity):
                for grant in package.features:
                    await self._apply_grant(features, item.product_id, grant, now)
                    summary.features_applied += 1

        logger.info(
            "ad_package_features_activated",
            invoice_number=transaction.invoice_number,
            features_applied=summary.features_applied,
        )
        return summary

    async def _apply_grant(
        self,
        features: FeatureRepository,
        product_id: int,
        grant: AdPackageFeature,
        now: datetime,
    ) -> ActiveFeature:
        feature_type = AdFeatureType(grant.feature_type)
        active = await features.load_active_feature(product_id, feature_type.value)
        if active is None:
            active = ActiveFeature(
                product_id=product_id,
                feature_type=feature_type.value,
                remaining_quantity=0,
            )

        if feature_type.kind is FeatureKind.TIME_BOUNDED:
            active.expiry_date = extend_expiry(active.expiry_date, grant.duration_days, now)
        else:
            active.remaining_quantity = (active.remaining_quantity or 0) + grant.quantity

        await features.upsert_active_feature(active)
        metrics.features_activated_total.labels(feature_type=feature_type.value).inc()
        return active
