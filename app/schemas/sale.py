# File: app/schemas/sale.py
"""
Sale schemas for the Receets API.

This module contains Pydantic models for sales, line items and returns,
providing validation and serialization for the point-of-sale flow. Totals
are never accepted from clients; they are calculated server-side.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.db.models.enums import (
    PaymentMethod,
    PaymentStatus,
    PromoType,
    SaleStatus,
    SaleType,
)


class LineItemCreate(BaseModel):
    """
    Schema for one line item sent by the POS.

    Return sales accept the quantities as positive numbers; they are negated
    server-side.
    """

    product_id: str = Field(..., min_length=1, description="Product identifier")
    product_name: str = Field(..., min_length=1, description="Product name as shown on the receipt")
    quantity: int = Field(..., description="Number of units")
    unit_price: Decimal = Field(..., description="Price per unit")
    discount: Decimal = Field(Decimal("0"), description="Discount on the whole line")
    tax: Decimal = Field(Decimal("0"), description="Tax on the whole line")

    @field_validator("product_id", mode="before")
    @classmethod
    def coerce_product_id(cls, v: Any) -> Any:
        """Accept numeric product IDs from POS systems that send them as numbers."""
        if isinstance(v, int):
            return str(v)
        return v


class PromoCode(BaseModel):
    """Schema for a promo code applied to a sale."""

    code: str = Field(..., min_length=1, description="Promo code")
    discount: Decimal = Field(..., ge=0, description="Percentage (0-100) or fixed amount")
    type: PromoType = Field(PromoType.FIXED, description="percentage or fixed")

    model_config = ConfigDict(from_attributes=True)


class SaleInitiate(BaseModel):
    """
    Schema for initiating a sale at the POS.

    ``merchant_id`` defaults to the authenticated merchant.
    """

    merchant_id: Optional[int] = Field(None, description="Merchant ringing up the sale")
    location_id: int = Field(..., description="Store location")
    customer_id: Optional[int] = Field(None, description="Linked customer ID")
    customer_code: Optional[str] = Field(None, description="Linked customer code")
    type: SaleType = Field(SaleType.PURCHASE, description="purchase or exchange")
    line_items: List[LineItemCreate] = Field(default_factory=list)
    promo_code: Optional[PromoCode] = None
    notes: Optional[str] = None
    cashier_id: Optional[str] = None
    cashier_name: Optional[str] = None


class SaleUpdate(BaseModel):
    """
    Schema for updating a sale.

    Only fields present in the request are applied.
    """

    line_items: Optional[List[LineItemCreate]] = None
    promo_code: Optional[PromoCode] = None
    notes: Optional[str] = None
    customer_id: Optional[int] = None
    customer_code: Optional[str] = None
    status: Optional[SaleStatus] = None


class ReturnCreate(BaseModel):
    """Schema for processing a return against an original purchase."""

    original_sale_id: int = Field(..., description="Purchase being returned")
    merchant_id: Optional[int] = None
    location_id: Optional[int] = None
    customer_id: Optional[int] = None
    customer_code: Optional[str] = None
    line_items: List[LineItemCreate] = Field(..., description="Returned items")
    notes: Optional[str] = None
    cashier_id: Optional[str] = None
    cashier_name: Optional[str] = None


class SaleVoid(BaseModel):
    reason: Optional[str] = Field(None, description="Why the sale was voided")


class LineItemResponse(BaseModel):
    id: int
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal

    model_config = ConfigDict(from_attributes=True)


class PaymentResponse(BaseModel):
    """Schema for a payment as stored on a sale."""

    id: int
    method: PaymentMethod
    amount: Decimal
    status: PaymentStatus
    transaction_id: Optional[str] = None
    card_brand: Optional[str] = None
    last4: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_reason: Optional[str] = None
    refund_date: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SaleResponse(BaseModel):
    """
    Schema for a sale returned by the API.

    Includes line items, payments and the derived ``amount_paid``.
    """

    id: int
    uuid: str
    sale_number: str
    merchant_id: int
    location_id: int
    customer_id: Optional[int] = None
    customer_code: Optional[str] = None
    type: SaleType
    status: SaleStatus
    subtotal: Decimal
    tax_total: Decimal
    discount_total: Decimal
    total: Decimal
    amount_paid: Decimal
    promo: Optional[PromoCode] = None
    original_sale_id: Optional[int] = None
    notes: Optional[str] = None
    receipt_url: Optional[str] = None
    cashier_id: Optional[str] = None
    cashier_name: Optional[str] = None
    version: int
    line_items: List[LineItemResponse] = Field(default_factory=list)
    payments: List[PaymentResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class SaleListResponse(BaseModel):
    items: List[SaleResponse]
    pagination: Pagination


class EligibleReturnsResponse(BaseModel):
    return_period: int = Field(..., description="Merchant return period in days")
    sales: List[SaleResponse]


class ReceiptResponse(BaseModel):
    """Receipt data plus the receipt URL assigned to the sale."""

    receipt: Dict[str, Any]
    receipt_url: str


class SalesAnalytics(BaseModel):
    """Totals for a merchant's completed purchases and returns over a period."""

    total_sales: int = Field(..., description="Number of purchases")
    total_returns: int = Field(..., description="Number of completed returns")
    sales_revenue: Decimal = Field(..., description="Sum of purchase totals")
    returns_amount: Decimal = Field(..., description="Magnitude of return totals")
    net_revenue: Decimal
    payment_methods: Dict[str, Decimal] = Field(
        default_factory=dict, description="Settled amount per payment method, refunds subtracted"
    )
