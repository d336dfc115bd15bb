# File: app/db/models/sales.py
"""
Sale ledger models for Receets.

This module defines the Sale, LineItem and Payment models. A Sale is the
aggregate root: line items and payments are only written through it, and
every write bumps the sale's ``version`` so concurrent writers are detected.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    ForeignKey,
    DateTime,
    UniqueConstraint,
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import relationship, validates

from app.db.models.base import (
    AbstractBase,
    ModelValidationError,
    TimestampMixin,
    enum_column,
    money_column,
)
from app.db.models.enums import (
    SaleType,
    SaleStatus,
    PaymentMethod,
    PaymentStatus,
    PromoType,
)

# Payments whose amount counts towards what has been paid on a sale
SETTLED_PAYMENT_STATUSES = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.REFUNDED,
        PaymentStatus.PARTIALLY_REFUNDED,
    }
)


class Sale(AbstractBase, TimestampMixin):
    """
    Sale model representing a purchase, return or exchange rung up at a POS.

    Attributes:
        sale_number: Human-facing unique number (SALE-... / RET-...)
        merchant_id: Owning merchant
        location_id: Store location the sale was rung up at
        customer_id / customer_code: Optional linked customer
        type: purchase, return or exchange
        status: Lifecycle status (see app.services.sale_state_machine)
        subtotal, tax_total, discount_total, total: Signed money totals
        promo_code, promo_discount, promo_type: Optional promotion
        original_sale_id: Purchase a return sale refers to
        receipt_url: Assigned once, on first receipt generation
        cashier_id, cashier_name: Who rang the sale up
        version: Optimistic concurrency counter
    """

    __tablename__ = "sales"

    sale_number = Column(String(64), nullable=False, unique=True, index=True)

    merchant_id = Column(Integer, ForeignKey("merchants.id"), nullable=False, index=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=False)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True, index=True)
    customer_code = Column(String(32), nullable=True, index=True)

    type = enum_column(SaleType, nullable=False, default=SaleType.PURCHASE)
    status = enum_column(SaleStatus, nullable=False, default=SaleStatus.DRAFT)

    subtotal = money_column()
    tax_total = money_column()
    discount_total = money_column()
    total = money_column()

    promo_code = Column(String(64), nullable=True)
    promo_discount = money_column(nullable=True, default=None)
    promo_type = enum_column(PromoType, nullable=True)

    original_sale_id = Column(Integer, ForeignKey("sales.id"), nullable=True, index=True)

    notes = Column(Text)
    receipt_url = Column(String(255), nullable=True)
    cashier_id = Column(String(100), nullable=True)
    cashier_name = Column(String(255), nullable=True)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    merchant = relationship("Merchant")
    location = relationship("Location")
    customer = relationship("Customer")
    original_sale = relationship(
        "Sale", remote_side="Sale.id", foreign_keys=[original_sale_id]
    )
    line_items = relationship(
        "LineItem",
        back_populates="sale",
        order_by="LineItem.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
    )
    payments = relationship(
        "Payment",
        back_populates="sale",
        order_by="Payment.position",
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
    )

    @property
    def promo(self) -> Optional[Dict[str, Any]]:
        """Promo code as the calculator expects it, or None."""
        if not self.promo_code:
            return None
        return {
            "code": self.promo_code,
            "discount": self.promo_discount or Decimal("0"),
            "type": self.promo_type or PromoType.FIXED,
        }

    @property
    def amount_paid(self) -> Decimal:
        """Sum of settled payment amounts (pending and failed payments excluded)."""
        return sum(
            (Decimal(p.amount) for p in self.payments if p.status in SETTLED_PAYMENT_STATUSES),
            Decimal("0"),
        )

    @property
    def refunded_total(self) -> Decimal:
        """Magnitude of refund payments recorded on this (return) sale."""
        return sum(
            (-Decimal(p.amount) for p in self.payments if Decimal(p.amount) < 0),
            Decimal("0"),
        )

    @property
    def is_settled(self) -> bool:
        return self.amount_paid >= Decimal(self.total or 0)

    def pending_gateway_payments(self) -> List["Payment"]:
        return [
            p
            for p in self.payments
            if p.method == PaymentMethod.RECEETS_PAY
            and p.status == PaymentStatus.PENDING
        ]

    def __repr__(self) -> str:
        """Return string representation of the Sale."""
        return (
            f"<Sale(id={self.id}, sale_number='{self.sale_number}', type={self.type}, "
            f"status={self.status}, total={self.total})>"
        )


class LineItem(AbstractBase):
    """
    LineItem model representing one product line on a sale.

    Quantity, discount and tax are stored signed; on return sales they are
    negative. ``total`` is ``quantity * unit_price - discount``.
    """

    __tablename__ = "line_items"

    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    product_id = Column(String(100), nullable=False)
    product_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = money_column()
    discount = money_column()
    tax = money_column()
    total = money_column()

    sale = relationship("Sale", back_populates="line_items")

    def __repr__(self) -> str:
        return (
            f"<LineItem(id={self.id}, sale_id={self.sale_id}, product='{self.product_name}', "
            f"quantity={self.quantity}, unit_price={self.unit_price})>"
        )


class Payment(AbstractBase, TimestampMixin):
    """
    Payment model representing one tender (or refund, when negative) on a sale.

    Attributes:
        method: Tender type
        amount: Signed amount; negative amounts are refunds
        status: Settlement status
        transaction_id: Gateway intent/refund ID or generated local ID
        card_brand, last4: Card details when known
        refund_amount: Cumulative amount refunded against this payment
        refund_reason, refund_date: Last refund annotation
    """

    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("sale_id", "transaction_id", name="uq_payments_sale_transaction"),
    )

    sale_id = Column(Integer, ForeignKey("sales.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    method = enum_column(PaymentMethod, nullable=False)
    amount = money_column()
    status = enum_column(PaymentStatus, nullable=False, default=PaymentStatus.PENDING)
    transaction_id = Column(String(255), nullable=True)
    card_brand = Column(String(50), nullable=True)
    last4 = Column(String(4), nullable=True)

    refund_amount = money_column()
    refund_reason = Column(Text, nullable=True)
    refund_date = Column(DateTime(timezone=True), nullable=True)

    sale = relationship("Sale", back_populates="payments")

    @validates("refund_amount")
    def validate_refund_amount(self, key: str, refund_amount: Decimal) -> Decimal:
        if refund_amount is not None and self.amount is not None and Decimal(self.amount) > 0:
            if Decimal(refund_amount) > Decimal(self.amount):
                raise ModelValidationError(self, key, "Refunded amount cannot exceed the payment amount")
        return refund_amount

    @property
    def refundable_amount(self) -> Decimal:
        return Decimal(self.amount or 0) - Decimal(self.refund_amount or 0)

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, sale_id={self.sale_id}, method={self.method}, "
            f"amount={self.amount}, status={self.status})>"
        )
