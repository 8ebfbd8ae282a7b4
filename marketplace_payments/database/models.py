"""SQLAlchemy database models for checkout transactions and marketplace features."""
from datetime import datetime
from enum import Enum
from typing import List

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class TransactionStatus(str, Enum):
    """Lifecycle of a checkout transaction."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TransactionType(str, Enum):
    """What a transaction pays for."""

    PREMIUM_SUBSCRIPTION = "premium_subscription"
    AD_PACKAGE_PURCHASE = "ad_package_purchase"


class ProfileType(str, Enum):
    REGULAR = "regular"
    PREMIUM = "premium"


class FeatureKind(str, Enum):
    """How a feature accumulates when granted again."""

    TIME_BOUNDED = "time_bounded"  # Stacks by extending expiry
    COUNTED = "counted"  # Stacks by summing quantity


class AdFeatureType(str, Enum):
    """Benefits an ad package can grant to a product listing."""

    HIGHLIGHT = "highlight"
    SPOTLIGHT = "spotlight"
    BOOST = "boost"

    @property
    def kind(self) -> FeatureKind:
        if self is AdFeatureType.BOOST:
            return FeatureKind.COUNTED
        return FeatureKind.TIME_BOUNDED


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class User(Base):
    """Marketplace user, owner of transactions and premium status."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    profile_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProfileType.REGULAR.value
    )
    premium_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, profile_type={self.profile_type})>"


class PremiumPackage(Base):
    """Premium subscription offer."""

    __tablename__ = "premium_packages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("price > 0", name="premium_positive_price"),
        CheckConstraint("duration_days > 0", name="premium_positive_duration"),
    )


class AdPackage(Base):
    """Purchasable bundle of listing features."""

    __tablename__ = "ad_packages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    features: Mapped[List["AdPackageFeature"]] = relationship(
        back_populates="ad_package",
        cascade="all, delete-orphan",
        order_by="AdPackageFeature.id",
    )

    __table_args__ = (CheckConstraint("price > 0", name="ad_package_positive_price"),)


class AdPackageFeature(Base):
    """
    One benefit granted by an ad package.

    Time-bounded features use ``duration_days``; counted features use
    ``quantity``.
    """

    __tablename__ = "ad_package_features"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ad_package_id: Mapped[int] = mapped_column(
        ForeignKey("ad_packages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    feature_type: Mapped[str] = mapped_column(String(20), nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    ad_package: Mapped[AdPackage] = relationship(back_populates="features")

    __table_args__ = (
        CheckConstraint(
            "feature_type IN ('highlight', 'spotlight', 'boost')",
            name="valid_package_feature_type",
        ),
        CheckConstraint("duration_days >= 0 AND quantity >= 0", name="non_negative_grant"),
    )


class Transaction(Base):
    """
    Checkout transaction.

    Created pending once the gateway returns a payment URL, resolved exactly
    once by a payment notification and never deleted.
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    invoice_number: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TransactionStatus.PENDING.value, index=True
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    user: Mapped[User] = relationship()

    __table_args__ = (
        CheckConstraint("amount > 0", name="transaction_positive_amount"),
        CheckConstraint(
            "status IN ('pending', 'success', 'failed')",
            name="valid_transaction_status",
        ),
        CheckConstraint(
            "type IN ('premium_subscription', 'ad_package_purchase')",
            name="valid_transaction_type",
        ),
        Index("idx_transactions_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction(invoice={self.invoice_number}, type={self.type}, "
            f"status={self.status})>"
        )


class ActiveFeature(Base):
    """Feature currently applied to a product. One row per (product, feature type)."""

    __tablename__ = "active_features"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    feature_type: Mapped[str] = mapped_column(String(20), nullable=False)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    remaining_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("product_id", "feature_type", name="uq_active_feature_product_type"),
        CheckConstraint(
            "feature_type IN ('highlight', 'spotlight', 'boost')",
            name="valid_active_feature_type",
        ),
        CheckConstraint("remaining_quantity >= 0", name="non_negative_remaining"),
    )

    def __repr__(self) -> str:
        return (
            f"<ActiveFeature(product_id={self.product_id}, type={self.feature_type}, "
            f"expiry={self.expiry_date}, remaining={self.remaining_quantity})>"
        )
