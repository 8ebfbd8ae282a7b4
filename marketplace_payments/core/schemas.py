"""
Pydantic value types shared by the gateway client, checkout and reconciliation.
"""
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

from .exceptions import GatewayErrorType


class LineItem(BaseModel):
    """One purchased line of a payment request."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Line item label shown by the gateway")
    price: int = Field(..., gt=0, description="Unit price in the smallest currency unit")
    quantity: int = Field(default=1, ge=1, description="Number of units")
    id: Optional[str] = Field(default=None, description="Catalog reference, when the gateway takes one")


class PaymentRequest(BaseModel):
    """Gateway-independent description of a checkout. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    invoice_number: str = Field(..., min_length=1, description="Caller-generated unique invoice id")
    amount: int = Field(..., gt=0, description="Total in the smallest currency unit")
    customer_name: str = Field(..., description="Buyer display name")
    customer_email: str = Field(..., description="Buyer email address")
    line_items: Tuple[LineItem, ...] = Field(..., min_length=1, description="Ordered line items")


class PaymentResult(BaseModel):
    """Outcome of a payment creation call: a payment URL or a single error message."""

    model_config = ConfigDict(frozen=True)

    success: bool
    payment_url: Optional[str] = None
    error_message: Optional[str] = None
    error_type: Optional[GatewayErrorType] = None

    @model_validator(mode="after")
    def check_consistency(self) -> "PaymentResult":
        """A result is either a URL or an error, never both or neither."""
        if self.success and not self.payment_url:
            raise ValueError("Successful payment result requires a payment URL")
        if not self.success and not self.error_message:
            raise ValueError("Failed payment result requires an error message")
        return self

    @classmethod
    def succeeded(cls, payment_url: str) -> "PaymentResult":
        return cls(success=True, payment_url=payment_url)

    @classmethod
    def failed(cls, message: str, error_type: GatewayErrorType) -> "PaymentResult":
        return cls(success=False, error_message=message, error_type=error_type)


class TransactionItemDetail(BaseModel):
    """Purchased line stored on a transaction for later feature activation."""

    ad_package_id: int = Field(default=0, description="Ad package id, 0 for premium purchases")
    product_id: int = Field(default=0, description="Target product id, 0 for premium purchases")
    price: int = Field(..., ge=0, description="Unit price")
    quantity: int = Field(default=1, ge=1, description="Number of units")


_details_adapter = TypeAdapter(List[TransactionItemDetail])


def dump_transaction_details(items: List[TransactionItemDetail]) -> str:
    """Serialize purchased lines into a transaction's reference payload."""
    return _details_adapter.dump_json(items).decode("utf-8")


def load_transaction_details(raw: Optional[str]) -> List[TransactionItemDetail]:
    """Parse a transaction's reference payload; empty payloads yield no items."""
    if not raw:
        return []
    return _details_adapter.validate_json(raw)
