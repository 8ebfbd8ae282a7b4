"""
Reconciliation of payment notifications into transaction state.

A transaction moves from pending to success or failed exactly once. Each
notification runs load, check, update and activation in one database
transaction while holding the invoice's lock. The status change itself is
a conditional UPDATE, so a duplicate delivery handled by another process
cannot apply it a second time either. Notifications for unknown or
already resolved invoices are acknowledged without changes.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_payments.config import Settings
from marketplace_payments.database.models import TransactionStatus
from marketplace_payments.database.repository import TransactionRepository
from marketplace_payments.monitoring import metrics

from .activation import ActivationSummary, FeatureActivationEngine
from .exceptions import MalformedNotificationError
from .locks import KeyedLock
from .paths import JsonPath, first_present

logger = structlog.get_logger(__name__)

# Token gateways send flat notifications, the signed gateway nests them
INVOICE_PATHS: Tuple[JsonPath, ...] = (
    ("order_id",),
    ("order", "invoice_number"),
)
STATUS_PATHS: Tuple[JsonPath, ...] = (
    ("transaction_status",),
    ("transaction", "status"),
)


class ReconciliationOutcome(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED_UNKNOWN = "skipped_unknown"  # No transaction with this invoice
    SKIPPED_RESOLVED = "skipped_resolved"  # Transaction already terminal


@dataclass(frozen=True)
class PaymentNotification:
    """Invoice id and gateway status extracted from a webhook body."""

    invoice_number: str
    gateway_status: str

    @classmethod
    def from_payload(cls, payload: Any) -> "PaymentNotification":
        """
        Extract the fields reconciliation needs.

        Raises:
            MalformedNotificationError: If the payload is not an object or lacks either field
        """
        if not isinstance(payload, Mapping):
            raise MalformedNotificationError("Notification body must be a JSON object")

        invoice_number = first_present(payload, INVOICE_PATHS)
        if invoice_number is None:
            raise MalformedNotificationError("Notification has no order id")

        gateway_status = first_present(payload, STATUS_PATHS)
        if gateway_status is None:
            raise MalformedNotificationError("Notification has no transaction status")

        return cls(invoice_number=invoice_number, gateway_status=gateway_status)


@dataclass(frozen=True)
class ReconciliationResult:
    invoice_number: str
    outcome: ReconciliationOutcome
    gateway_status: str
    activation: Optional[ActivationSummary] = None

    @property
    def applied(self) -> bool:
        return self.outcome in (ReconciliationOutcome.SUCCESS, ReconciliationOutcome.FAILED)


class StatusMapping:
    """
    Maps gateway status strings onto terminal transaction statuses.

    Statuses in the settlement set mean the funds were captured; every other
    status fails the transaction.
    """

    def __init__(self, settlement_statuses: Iterable[str]):
        self.settlement_statuses = frozenset(s.strip().lower() for s in settlement_statuses)
        if not self.settlement_statuses:
            raise ValueError("At least one settlement status must be configured")

    def resolve(self, gateway_status: str) -> TransactionStatus:
        if gateway_status.strip().lower() in self.settlement_statuses:
            return TransactionStatus.SUCCESS
        return TransactionStatus.FAILED


class ReconciliationEngine:
    """
    Applies payment notifications to stored transactions.

    Deliveries for different invoices run in parallel; deliveries for the
    same invoice are serialized.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        activation_engine: Optional[FeatureActivationEngine] = None,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[KeyedLock] = None,
    ):
        """
        Initialize reconciliation engine.

        Args:
            session_factory: Factory for sessions, one per notification
            settings: Application settings (settlement vocabulary)
            activation_engine: Optional feature activation engine
            clock: Optional UTC clock for paid-at stamps
            locks: Optional keyed lock shared with other engines in this process
        """
        self.session_factory = session_factory
        self.status_mapping = StatusMapping(settings.settlement_statuses)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.activation_engine = activation_engine or FeatureActivationEngine(clock=self._clock)
        self._locks = locks or KeyedLock()

        logger.info(
            "reconciliation_engine_initialized",
            settlement_statuses=sorted(self.status_mapping.settlement_statuses),
        )

    async def reconcile(self, payload: Any) -> ReconciliationResult:
        """
        Apply one notification.

        Args:
            payload: Decoded webhook JSON body

        Returns:
            ReconciliationResult: Applied transition or the reason it was skipped

        Raises:
            MalformedNotificationError: If the payload cannot be interpreted
        """
        try:
            notification = PaymentNotification.from_payload(payload)
        except MalformedNotificationError as e:
            logger.warning("notification_malformed", error=str(e))
            metrics.webhook_notifications_total.labels(outcome="malformed").inc()
            raise

        log = logger.bind(
            invoice_number=notification.invoice_number,
            gateway_status=notification.gateway_status,
        )
        log.info("reconciliation_started")

        async with self._locks.hold(notification.invoice_number):
            async with self.session_factory() as session:
                async with session.begin():
                    result = await self._apply(session, notification)

        metrics.webhook_notifications_total.labels(outcome=result.outcome.value).inc()
        if result.applied:
            log.info("reconciliation_applied", outcome=result.outcome.value)
        else:
            log.info("reconciliation_skipped", reason=result.outcome.value)
        return result

    async def _apply(
        self, session: AsyncSession, notification: PaymentNotification
    ) -> ReconciliationResult:
        transactions = TransactionRepository(session)
        invoice_number = notification.invoice_number

        transaction = await transactions.load_by_invoice(invoice_number, for_update=True)
        if transaction is None:
            return ReconciliationResult(
                invoice_number, ReconciliationOutcome.SKIPPED_UNKNOWN, notification.gateway_status
            )
        if transaction.status != TransactionStatus.PENDING.value:
            return ReconciliationResult(
                invoice_number, ReconciliationOutcome.SKIPPED_RESOLVED, notification.gateway_status
            )

        target = self.status_mapping.resolve(notification.gateway_status)
        paid_at = self._clock() if target is TransactionStatus.SUCCESS else None

        applied = await transactions.update_if_pending(invoice_number, target, paid_at=paid_at)
        if not applied:
            return ReconciliationResult(
                invoice_number, ReconciliationOutcome.SKIPPED_RESOLVED, notification.gateway_status
            )
        await session.refresh(transaction)

        if target is TransactionStatus.FAILED:
            return ReconciliationResult(
                invoice_number, ReconciliationOutcome.FAILED, notification.gateway_status
            )

        activation = await self.activation_engine.activate(session, transaction)
        return ReconciliationResult(
            invoice_number,
            ReconciliationOutcome.SUCCESS,
            notification.gateway_status,
            activation=activation,
        )
