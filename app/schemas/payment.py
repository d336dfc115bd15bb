# File: app/schemas/payment.py
"""
Payment and refund schemas for the Receets API.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.db.models.enums import PaymentMethod
from app.schemas.sale import PaymentResponse, SaleResponse


class PaymentCreate(BaseModel):
    """
    Schema for applying a payment to a sale.

    ``amount_tendered`` is only used for cash; ``payment_method_id`` and
    ``customer_id`` only for Receets Pay.
    """

    method: PaymentMethod = Field(..., description="Tender type")
    amount: Decimal = Field(..., gt=0, description="Amount to apply")
    transaction_id: Optional[str] = Field(None, description="External transaction reference")
    card_brand: Optional[str] = None
    last4: Optional[str] = Field(None, description="Last four card digits")
    amount_tendered: Optional[Decimal] = Field(None, gt=0, description="Cash handed over")
    payment_method_id: Optional[str] = Field(None, description="Gateway payment method")
    customer_id: Optional[int] = Field(None, description="Paying customer for Receets Pay")


class GatewayPaymentRequest(BaseModel):
    sale_id: int
    amount: Decimal = Field(..., gt=0)
    payment_method_id: Optional[str] = None
    customer_id: Optional[int] = None


class CashPaymentRequest(BaseModel):
    sale_id: int
    amount: Decimal = Field(..., gt=0)
    amount_tendered: Optional[Decimal] = Field(None, gt=0)


class CardPaymentRequest(BaseModel):
    sale_id: int
    amount: Decimal = Field(..., gt=0)
    transaction_id: Optional[str] = None
    card_brand: Optional[str] = None
    last4: Optional[str] = None


class GatewayConfirmRequest(BaseModel):
    """Outcome of a gateway payment that was left pending."""

    sale_id: int
    transaction_id: str = Field(..., min_length=1)
    succeeded: bool = True


class RefundRequest(BaseModel):
    sale_id: int = Field(..., description="Completed return sale to refund")
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = None


class PaymentResult(BaseModel):
    """Sale after a payment, the payment written and any change due."""

    success: bool = True
    sale: SaleResponse
    payment: PaymentResponse
    change_due: Optional[Decimal] = None


class RefundInfo(BaseModel):
    id: str
    amount: Decimal
    status: str
    method: PaymentMethod
    payment_intent_id: Optional[str] = None
    reason: Optional[str] = None


class RefundResult(BaseModel):
    success: bool = True
    refund: RefundInfo
    sale: SaleResponse
    original_sale: Optional[SaleResponse] = None
