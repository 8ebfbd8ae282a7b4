"""
Unit tests for notification reconciliation.
"""
from datetime import timedelta
from typing import Any, Dict

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_payments.config import Settings
from marketplace_payments.core.activation import as_utc
from marketplace_payments.core.exceptions import MalformedNotificationError
from marketplace_payments.core.reconciliation import (
    PaymentNotification,
    ReconciliationEngine,
    ReconciliationOutcome,
    StatusMapping,
)
from marketplace_payments.core.schemas import TransactionItemDetail
from marketplace_payments.database.models import (
    ActiveFeature,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from marketplace_payments.database.repository import TransactionRepository

from tests.conftest import FIXED_NOW

PRODUCT_ID = 777


async def load(
    session_factory: async_sessionmaker[AsyncSession], invoice_number: str
) -> Transaction:
    async with session_factory() as session:
        return await TransactionRepository(session).load_by_invoice(invoice_number)


async def feature_rows(session_factory: async_sessionmaker[AsyncSession]) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(ActiveFeature))


@pytest.fixture
def engine(
    session_factory: async_sessionmaker[AsyncSession], test_settings: Settings, clock: Any
) -> ReconciliationEngine:
    return ReconciliationEngine(session_factory, test_settings, clock=clock)


class TestPaymentNotification:
    """Field extraction from both notification shapes."""

    @pytest.mark.unit
    def test_flat_shape(self) -> None:
        notification = PaymentNotification.from_payload(
            {"order_id": "INV-1", "transaction_status": "settlement", "gross_amount": "50000.00"}
        )

        assert notification == PaymentNotification("INV-1", "settlement")

    @pytest.mark.unit
    def test_nested_shape(self) -> None:
        notification = PaymentNotification.from_payload(
            {"order": {"invoice_number": "INV-1"}, "transaction": {"status": "SUCCESS"}}
        )

        assert notification == PaymentNotification("INV-1", "SUCCESS")

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "payload",
        [
            {"transaction_status": "settlement"},
            {"order_id": "INV-1"},
            {"order": {}, "transaction": {"status": "SUCCESS"}},
            ["INV-1", "settlement"],
            "settlement",
        ],
    )
    def test_malformed_payloads(self, payload: Any) -> None:
        with pytest.raises(MalformedNotificationError):
            PaymentNotification.from_payload(payload)


class TestStatusMapping:
    """Gateway status vocabulary."""

    @pytest.mark.unit
    @pytest.mark.parametrize("gateway_status", ["settlement", "capture", "SUCCESS", " Success "])
    def test_settlement_statuses(self, gateway_status: str) -> None:
        mapping = StatusMapping(["settlement", "capture", "success"])

        assert mapping.resolve(gateway_status) is TransactionStatus.SUCCESS

    @pytest.mark.unit
    @pytest.mark.parametrize("gateway_status", ["expire", "deny", "cancel", "FAILED", "pending"])
    def test_everything_else_fails(self, gateway_status: str) -> None:
        mapping = StatusMapping(["settlement", "capture", "success"])

        assert mapping.resolve(gateway_status) is TransactionStatus.FAILED

    @pytest.mark.unit
    def test_empty_vocabulary_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            StatusMapping([])


class TestReconciliationEngine:
    """Test suite for ReconciliationEngine."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_settlement_marks_success_and_activates(
        self,
        engine: ReconciliationEngine,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Dict[str, int],
        make_transaction: Any,
    ) -> None:
        await make_transaction(
            "INV-OK",
            [TransactionItemDetail(ad_package_id=catalog["boost_3"], product_id=PRODUCT_ID, price=9000)],
        )

        result = await engine.reconcile({"order_id": "INV-OK", "transaction_status": "settlement"})

        assert result.outcome is ReconciliationOutcome.SUCCESS
        assert result.applied is True
        assert result.activation.features_applied == 1

        transaction = await load(session_factory, "INV-OK")
        assert transaction.status == TransactionStatus.SUCCESS.value
        assert as_utc(transaction.paid_at) == FIXED_NOW
        assert await feature_rows(session_factory) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expire_marks_failed_without_benefits(
        self,
        engine: ReconciliationEngine,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Dict[str, int],
        make_transaction: Any,
    ) -> None:
        await make_transaction(
            "INV-EXP",
            [TransactionItemDetail(ad_package_id=catalog["boost_3"], product_id=PRODUCT_ID, price=9000)],
        )

        result = await engine.reconcile({"order_id": "INV-EXP", "transaction_status": "expire"})

        assert result.outcome is ReconciliationOutcome.FAILED
        assert result.activation is None

        transaction = await load(session_factory, "INV-EXP")
        assert transaction.status == TransactionStatus.FAILED.value
        assert transaction.paid_at is None
        assert await feature_rows(session_factory) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nested_notification_settles_premium(
        self,
        engine: ReconciliationEngine,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Dict[str, int],
        make_transaction: Any,
    ) -> None:
        await make_transaction(
            "INV-PREM",
            [TransactionItemDetail(price=50000)],
            transaction_type=TransactionType.PREMIUM_SUBSCRIPTION,
            reference_id=str(catalog["premium"]),
        )

        result = await engine.reconcile(
            {"order": {"invoice_number": "INV-PREM"}, "transaction": {"status": "SUCCESS"}}
        )

        assert result.outcome is ReconciliationOutcome.SUCCESS
        async with session_factory() as session:
            user = await session.get(User, catalog["user"])
        assert as_utc(user.premium_until) == FIXED_NOW + timedelta(days=30)

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [TransactionStatus.SUCCESS, TransactionStatus.FAILED]
    )
    async def test_resolved_transaction_is_left_alone(
        self,
        engine: ReconciliationEngine,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Dict[str, int],
        make_transaction: Any,
        status: TransactionStatus,
    ) -> None:
        await make_transaction(
            "INV-DONE",
            [TransactionItemDetail(ad_package_id=catalog["boost_3"], product_id=PRODUCT_ID, price=9000)],
            status=status,
        )

        result = await engine.reconcile({"order_id": "INV-DONE", "transaction_status": "settlement"})

        assert result.outcome is ReconciliationOutcome.SKIPPED_RESOLVED
        assert result.applied is False
        transaction = await load(session_factory, "INV-DONE")
        assert transaction.status == status.value
        assert transaction.paid_at is None
        assert await feature_rows(session_factory) == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redelivery_applies_once(
        self,
        engine: ReconciliationEngine,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: Dict[str, int],
        make_transaction: Any,
        clock: Any,
    ) -> None:
        await make_transaction(
            "INV-TWICE",
            [TransactionItemDetail(ad_package_id=catalog["boost_3"], product_id=PRODUCT_ID, price=9000)],
        )
        payload = {"order_id": "INV-TWICE", "transaction_status": "settlement"}

        first = await engine.reconcile(payload)
        clock.advance(minutes=5)
        second = await engine.reconcile(payload)
        third = await engine.reconcile({"order_id": "INV-TWICE", "transaction_status": "expire"})

        assert first.outcome is ReconciliationOutcome.SUCCESS
        assert second.outcome is ReconciliationOutcome.SKIPPED_RESOLVED
        assert third.outcome is ReconciliationOutcome.SKIPPED_RESOLVED

        transaction = await load(session_factory, "INV-TWICE")
        assert transaction.status == TransactionStatus.SUCCESS.value
        assert as_utc(transaction.paid_at) == FIXED_NOW
        async with session_factory() as session:
            boost = await session.scalar(select(ActiveFeature))
        assert boost.remaining_quantity == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_invoice_is_skipped(
        self, engine: ReconciliationEngine, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        result = await engine.reconcile({"order_id": "INV-NOPE", "transaction_status": "settlement"})

        assert result.outcome is ReconciliationOutcome.SKIPPED_UNKNOWN
        assert await load(session_factory, "INV-NOPE") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_malformed_notification_changes_nothing(
        self,
        engine: ReconciliationEngine,
        session_factory: async_sessionmaker[AsyncSession],
        make_transaction: Any,
    ) -> None:
        await make_transaction("INV-MAL")

        with pytest.raises(MalformedNotificationError):
            await engine.reconcile({"order_id": "INV-MAL"})

        transaction = await load(session_factory, "INV-MAL")
        assert transaction.status == TransactionStatus.PENDING.value

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_settlement_vocabulary_is_configurable(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        test_settings: Settings,
        make_transaction: Any,
        clock: Any,
    ) -> None:
        settings = test_settings.model_copy(update={"settlement_statuses": ["settlement"]})
        engine = ReconciliationEngine(session_factory, settings, clock=clock)
        await make_transaction("INV-CAP")

        result = await engine.reconcile({"order_id": "INV-CAP", "transaction_status": "capture"})

        assert result.outcome is ReconciliationOutcome.FAILED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unreadable_details_still_settle(
        self,
        engine: ReconciliationEngine,
        session_factory: async_sessionmaker[AsyncSession],
        make_transaction: Any,
    ) -> None:
        """A corrupt item list must not turn every redelivery into a server error."""
        await make_transaction("INV-CORRUPT")
        async with session_factory() as session:
            async with session.begin():
                await session.execute(
                    update(Transaction)
                    .where(Transaction.invoice_number == "INV-CORRUPT")
                    .values(details="{not json")
                )

        result = await engine.reconcile({"order_id": "INV-CORRUPT", "transaction_status": "settlement"})
        again = await engine.reconcile({"order_id": "INV-CORRUPT", "transaction_status": "settlement"})

        assert result.outcome is ReconciliationOutcome.SUCCESS
        assert result.activation.features_applied == 0
        assert again.outcome is ReconciliationOutcome.SKIPPED_RESOLVED
        assert await feature_rows(session_factory) == 0


class TestConditionalUpdate:
    """Status guard in the UPDATE statement itself."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_only_first_writer_applies(
        self, session_factory: async_sessionmaker[AsyncSession], make_transaction: Any
    ) -> None:
        await make_transaction("INV-GUARD")

        outcomes = []
        for status in (TransactionStatus.SUCCESS, TransactionStatus.FAILED):
            async with session_factory() as session:
                async with session.begin():
                    outcomes.append(
                        await TransactionRepository(session).update_if_pending(
                            "INV-GUARD", status, paid_at=FIXED_NOW
                        )
                    )

        assert outcomes == [True, False]
        transaction = await load(session_factory, "INV-GUARD")
        assert transaction.status == TransactionStatus.SUCCESS.value
