"""
Checkout initiation.

Flow:
1. Load buyer and packages, validate the purchase
2. Build a PaymentRequest with a fresh invoice number
3. Ask the configured gateway for a payment URL
4. Persist the pending transaction, only once the URL is known
"""
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace_payments.database.models import (
    Transaction,
    TransactionStatus,
    TransactionType,
)
from marketplace_payments.database.repository import CatalogRepository, TransactionRepository

from .exceptions import CheckoutError
from .schemas import (
    LineItem,
    PaymentRequest,
    TransactionItemDetail,
    dump_transaction_details,
)

if TYPE_CHECKING:
    from marketplace_payments.integrations.gateway_client import GatewayClient

logger = structlog.get_logger(__name__)

DEFAULT_CUSTOMER_NAME = "Pengguna"


def new_invoice_number(prefix: str) -> str:
    return f"INV-{prefix}-{uuid.uuid4().hex[:16].upper()}"


@dataclass(frozen=True)
class CartItem:
    """Ad package bought for one product listing."""

    ad_package_id: int
    product_id: int
    quantity: int = 1


@dataclass(frozen=True)
class CheckoutResult:
    success: bool
    invoice_number: str
    payment_url: Optional[str] = None
    error_message: Optional[str] = None


class CheckoutService:
    """Starts checkouts for premium subscriptions and ad packages."""

    def __init__(
        self,
        gateway: "GatewayClient",
        session_factory: async_sessionmaker[AsyncSession],
    ):
        """
        Initialize checkout service.

        Args:
            gateway: Configured gateway strategy
            session_factory: Factory for database sessions
        """
        self.gateway = gateway
        self.session_factory = session_factory

    async def checkout_premium(self, user_id: int, premium_package_id: int) -> CheckoutResult:
        """
        Start a premium subscription checkout.

        Raises:
            CheckoutError: If the user or an active package cannot be found
        """
        async with self.session_factory() as session:
            catalog = CatalogRepository(session)
            user = await catalog.get_user(user_id)
            if user is None:
                raise CheckoutError("User not found")
            package = await catalog.get_premium_package(premium_package_id)
            if package is None or not package.is_active:
                raise CheckoutError("Premium package not found")

            invoice_number = new_invoice_number("PREMIUM")
            request = PaymentRequest(
                invoice_number=invoice_number,
                amount=package.price,
                customer_name=user.name or DEFAULT_CUSTOMER_NAME,
                customer_email=user.email,
                line_items=(
                    LineItem(
                        id=str(package.id),
                        name=package.description or f"Premium {package.duration_days} Hari",
                        price=package.price,
                        quantity=1,
                    ),
                ),
            )
            transaction = Transaction(
                user_id=user.id,
                invoice_number=invoice_number,
                amount=package.price,
                status=TransactionStatus.PENDING.value,
                type=TransactionType.PREMIUM_SUBSCRIPTION.value,
                reference_id=str(package.id),
                details=dump_transaction_details(
                    [TransactionItemDetail(price=package.price, quantity=1)]
                ),
            )

        return await self._start(request, transaction)

    async def checkout_ad_packages(
        self, user_id: int, items: Sequence[CartItem]
    ) -> CheckoutResult:
        """
        Start a checkout for ad packages applied to product listings.

        Raises:
            CheckoutError: If the cart is empty or references unknown packages
        """
        if not items:
            raise CheckoutError("Cart is empty")
        if any(item.quantity < 1 for item in items):
            raise CheckoutError("Item quantity must be at least 1")

        async with self.session_factory() as session:
            catalog = CatalogRepository(session)
            user = await catalog.get_user(user_id)
            if user is None:
                raise CheckoutError("User not found")

            packages = await catalog.get_ad_packages(item.ad_package_id for item in items)
            line_items: List[LineItem] = []
            details: List[TransactionItemDetail] = []
            for item in items:
                package = packages.get(item.ad_package_id)
                if package is None or not package.is_active:
                    raise CheckoutError(f"Ad package {item.ad_package_id} not found")
                line_items.append(
                    LineItem(
                        id=str(package.id),
                        name=f"Iklan '{package.name}' untuk produk #{item.product_id}",
                        price=package.price,
                        quantity=item.quantity,
                    )
                )
                details.append(
                    TransactionItemDetail(
                        ad_package_id=package.id,
                        product_id=item.product_id,
                        price=package.price,
                        quantity=item.quantity,
                    )
                )

            total_amount = sum(line.price * line.quantity for line in line_items)
            invoice_number = new_invoice_number("CART")
            request = PaymentRequest(
                invoice_number=invoice_number,
                amount=total_amount,
                customer_name=user.name or DEFAULT_CUSTOMER_NAME,
                customer_email=user.email,
                line_items=tuple(line_items),
            )
            transaction = Transaction(
                user_id=user.id,
                invoice_number=invoice_number,
                amount=total_amount,
                status=TransactionStatus.PENDING.value,
                type=TransactionType.AD_PACKAGE_PURCHASE.value,
                reference_id=str(uuid.uuid4()),
                details=dump_transaction_details(details),
            )

        return await self._start(request, transaction)

    async def get_transaction(self, invoice_number: str, user_id: int) -> Optional[Transaction]:
        """Return the caller's own transaction, or None."""
        async with self.session_factory() as session:
            return await TransactionRepository(session).load_for_owner(invoice_number, user_id)

    async def _start(self, request: PaymentRequest, transaction: Transaction) -> CheckoutResult:
        log = logger.bind(
            invoice_number=request.invoice_number,
            transaction_type=transaction.type,
            amount=request.amount,
        )
        log.info("checkout_started")

        result = await self.gateway.create_payment(request)
        if not result.success:
            log.warning("checkout_gateway_failed", error=result.error_message)
            return CheckoutResult(
                success=False,
                invoice_number=request.invoice_number,
                error_message=result.error_message,
            )

        transaction.payment_url = result.payment_url
        async with self.session_factory() as session:
            async with session.begin():
                await TransactionRepository(session).add(transaction)

        log.info("checkout_transaction_created")
        return CheckoutResult(
            success=True,
            invoice_number=request.invoice_number,
            payment_url=result.payment_url,
        )
