"""
Wire bodies for the supported gateways.

Field declaration order is the rendered member order, so do not reorder
fields on the signed gateway models.
"""
from typing import List, Optional

from pydantic import BaseModel

from marketplace_payments.core.schemas import PaymentRequest


# Signed checkout gateway


class SignedLineItem(BaseModel):
    name: str
    price: int
    quantity: int


class SignedOrder(BaseModel):
    amount: int
    invoice_number: str
    currency: str
    callback_url: Optional[str] = None
    line_items: List[SignedLineItem]


class SignedPaymentTerms(BaseModel):
    payment_due_date: int


class SignedCustomer(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class SignedCheckoutBody(BaseModel):
    order: SignedOrder
    payment: SignedPaymentTerms
    customer: SignedCustomer

    @classmethod
    def from_request(
        cls,
        request: PaymentRequest,
        currency: str,
        callback_url: Optional[str],
        payment_due_minutes: int,
    ) -> "SignedCheckoutBody":
        return cls(
            order=SignedOrder(
                amount=request.amount,
                invoice_number=request.invoice_number,
                currency=currency,
                callback_url=callback_url or None,
                line_items=[
                    SignedLineItem(name=item.name, price=item.price, quantity=item.quantity)
                    for item in request.line_items
                ],
            ),
            payment=SignedPaymentTerms(payment_due_date=payment_due_minutes),
            customer=SignedCustomer(
                name=request.customer_name or None,
                email=request.customer_email or None,
            ),
        )


# Token (hosted snap) gateway


class TransactionDetails(BaseModel):
    order_id: str
    gross_amount: int


class CustomerDetails(BaseModel):
    first_name: Optional[str] = None
    email: Optional[str] = None


class ItemDetails(BaseModel):
    id: Optional[str] = None
    name: str
    price: int
    quantity: int


class Callbacks(BaseModel):
    finish: Optional[str] = None


class SnapTransactionBody(BaseModel):
    transaction_details: TransactionDetails
    customer_details: CustomerDetails
    item_details: List[ItemDetails]
    callbacks: Optional[Callbacks] = None

    @classmethod
    def from_request(
        cls, request: PaymentRequest, callback_url: Optional[str]
    ) -> "SnapTransactionBody":
        return cls(
            transaction_details=TransactionDetails(
                order_id=request.invoice_number,
                gross_amount=request.amount,
            ),
            customer_details=CustomerDetails(
                first_name=request.customer_name or None,
                email=request.customer_email or None,
            ),
            item_details=[
                ItemDetails(id=item.id, name=item.name, price=item.price, quantity=item.quantity)
                for item in request.line_items
            ],
            callbacks=Callbacks(finish=callback_url) if callback_url else None,
        )
