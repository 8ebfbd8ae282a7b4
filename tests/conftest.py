"""
Pytest configuration and fixtures.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from marketplace_payments.config import GatewayKind, Settings
from marketplace_payments.core.schemas import (
    LineItem,
    PaymentRequest,
    TransactionItemDetail,
    dump_transaction_details,
)
from marketplace_payments.database.models import (
    AdPackage,
    AdPackageFeature,
    Base,
    PremiumPackage,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)

FIXED_NOW = datetime(2024, 5, 1, 8, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: Any) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings for the signed gateway."""
    return Settings(
        payment_gateway=GatewayKind.SIGNED,
        gateway_base_url="https://gateway.test",
        gateway_client_id="MCH-0001",
        gateway_secret_key="SK-test-secret",
        gateway_callback_url="https://shop.test/payments/finished",
        gateway_timeout_seconds=5.0,
        database_url=f"sqlite+aiosqlite:///{tmp_path}/payments_test.db",
        app_name="marketplace-payments-test",
        app_env="test",
        log_level="DEBUG",
    )


@pytest.fixture
def token_settings(test_settings: Settings) -> Settings:
    """Create test settings for the token gateway."""
    return test_settings.model_copy(
        update={
            "payment_gateway": GatewayKind.TOKEN,
            "gateway_base_url": None,
            "gateway_secret_key": "SB-Mid-server-abc",
            "gateway_client_key": "SB-Mid-client-xyz",
        }
    )


@pytest_asyncio.fixture
async def session_factory(
    test_settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """Create a file-backed SQLite database with all tables."""
    engine = create_async_engine(test_settings.database_url, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def catalog(session_factory: async_sessionmaker[AsyncSession]) -> Dict[str, int]:
    """Seed one user, one premium package and a set of ad packages; return their ids."""
    async with session_factory() as session:
        async with session.begin():
            user = User(name="Siti", email="siti@example.com")
            other_user = User(name=None, email="budi@example.com")
            premium = PremiumPackage(description="Premium 30 Hari", price=50000, duration_days=30)
            retired = PremiumPackage(price=20000, duration_days=7, is_active=False)
            highlight_7 = AdPackage(
                name="Highlight 7",
                price=15000,
                features=[AdPackageFeature(feature_type="highlight", duration_days=7)],
            )
            highlight_5 = AdPackage(
                name="Highlight 5",
                price=10000,
                features=[AdPackageFeature(feature_type="highlight", duration_days=5)],
            )
            boost_3 = AdPackage(
                name="Boost 3",
                price=9000,
                features=[AdPackageFeature(feature_type="boost", quantity=3)],
            )
            boost_2 = AdPackage(
                name="Boost 2",
                price=6000,
                features=[AdPackageFeature(feature_type="boost", quantity=2)],
            )
            combo = AdPackage(
                name="Spotlight Combo",
                price=25000,
                features=[
                    AdPackageFeature(feature_type="spotlight", duration_days=3),
                    AdPackageFeature(feature_type="boost", quantity=1),
                ],
            )
            session.add_all(
                [user, other_user, premium, retired, highlight_7, highlight_5, boost_3, boost_2, combo]
            )
            await session.flush()
            return {
                "user": user.id,
                "other_user": other_user.id,
                "premium": premium.id,
                "retired_premium": retired.id,
                "highlight_7": highlight_7.id,
                "highlight_5": highlight_5.id,
                "boost_3": boost_3.id,
                "boost_2": boost_2.id,
                "combo": combo.id,
            }


@pytest.fixture
def make_transaction(
    session_factory: async_sessionmaker[AsyncSession], catalog: Dict[str, int]
) -> Callable[..., Any]:
    """Factory persisting a pending transaction."""

    async def _make(
        invoice_number: str,
        items: Optional[List[TransactionItemDetail]] = None,
        transaction_type: TransactionType = TransactionType.AD_PACKAGE_PURCHASE,
        reference_id: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.PENDING,
        amount: int = 50000,
    ) -> Transaction:
        async with session_factory() as session:
            async with session.begin():
                transaction = Transaction(
                    user_id=catalog["user"],
                    invoice_number=invoice_number,
                    amount=amount,
                    status=status.value,
                    type=transaction_type.value,
                    reference_id=reference_id,
                    details=dump_transaction_details(items or []),
                    payment_url=f"https://pay.test/{invoice_number}",
                )
                session.add(transaction)
            return transaction

    return _make


@pytest.fixture
def payment_request() -> PaymentRequest:
    """Single line checkout of 50,000."""
    return PaymentRequest(
        invoice_number="INV-1",
        amount=50000,
        customer_name="Siti",
        customer_email="siti@example.com",
        line_items=(LineItem(id="1", name="Premium 30 Hari", price=50000, quantity=1),),
    )


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def gateway_transport() -> Callable[..., RecordingTransport]:
    def _build(handler: Callable[[httpx.Request], httpx.Response]) -> RecordingTransport:
        return RecordingTransport(handler)

    return _build
