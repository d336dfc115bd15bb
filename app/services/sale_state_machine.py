# File: app/services/sale_state_machine.py
"""
Sale lifecycle rules.

    draft -> in_progress -> completed
    draft | in_progress -> voided
    completed | partially_refunded -> partially_refunded | refunded

Refund statuses are only ever derived from the refund annotations on a
purchase's payments; callers cannot request them.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Union

from app.core.exceptions import InvalidStateException, ValidationException
from app.db.models.enums import SaleStatus, PaymentMethod, PaymentStatus
from app.db.models.sales import Sale, Payment, SETTLED_PAYMENT_STATUSES

logger = logging.getLogger(__name__)

EDITABLE_STATUSES = frozenset({SaleStatus.DRAFT, SaleStatus.IN_PROGRESS})
VOIDABLE_STATUSES = frozenset({SaleStatus.DRAFT, SaleStatus.IN_PROGRESS})
CLOSED_STATUSES = frozenset(
    {
        SaleStatus.COMPLETED,
        SaleStatus.VOIDED,
        SaleStatus.REFUNDED,
        SaleStatus.PARTIALLY_REFUNDED,
    }
)
RETURNABLE_STATUSES = frozenset({SaleStatus.COMPLETED, SaleStatus.PARTIALLY_REFUNDED})

# Transitions a caller may request through update-sale
ALLOWED_TRANSITIONS: Dict[SaleStatus, List[SaleStatus]] = {
    SaleStatus.DRAFT: [SaleStatus.IN_PROGRESS, SaleStatus.COMPLETED],
    SaleStatus.IN_PROGRESS: [SaleStatus.COMPLETED],
    SaleStatus.COMPLETED: [],
    SaleStatus.VOIDED: [],
    SaleStatus.REFUNDED: [],
    SaleStatus.PARTIALLY_REFUNDED: [],
}


def _status(value: Union[SaleStatus, str]) -> SaleStatus:
    return value if isinstance(value, SaleStatus) else SaleStatus(value)


def ensure_editable(sale: Sale) -> None:
    """Line items, promo and notes may only change before the sale is closed."""
    if sale.status not in EDITABLE_STATUSES:
        raise InvalidStateException(
            f"Cannot modify a sale with status {sale.status.value}",
            current_status=sale.status.value,
        )


def ensure_payable(sale: Sale) -> None:
    if sale.status in CLOSED_STATUSES:
        raise InvalidStateException(
            f"Cannot add payment to a sale with status {sale.status.value}",
            current_status=sale.status.value,
        )


def ensure_voidable(sale: Sale) -> None:
    if sale.status in VOIDABLE_STATUSES:
        if sale.pending_gateway_payments():
            raise InvalidStateException(
                "Cannot void a sale while a gateway payment is in progress",
                current_status=sale.status.value,
            )
        return
    if sale.status == SaleStatus.COMPLETED and sale.payments:
        raise InvalidStateException(
            "Cannot void a completed sale with payments. Process a return instead.",
            current_status=sale.status.value,
        )
    raise InvalidStateException(
        f"Cannot void a sale with status {sale.status.value}",
        current_status=sale.status.value,
    )


def validate_status_transition(sale: Sale, new_status: Union[SaleStatus, str]) -> SaleStatus:
    """
    Validate a caller-requested status change.

    Raises:
        ValidationException: If the status value is unknown
        InvalidStateException: If the transition is not allowed
    """
    try:
        target = _status(new_status)
    except ValueError as e:
        raise ValidationException(
            f"Unknown sale status: {new_status}",
            {"status": [f"Must be one of {[s.value for s in SaleStatus]}"]},
        ) from e

    current = sale.status
    # Allow transition to same status
    if target == current:
        return target

    if target == SaleStatus.VOIDED:
        raise InvalidStateException(
            "Use the void operation to void a sale", current_status=current.value
        )
    if target in (SaleStatus.REFUNDED, SaleStatus.PARTIALLY_REFUNDED):
        raise InvalidStateException(
            "Refund statuses are set by processing refunds", current_status=current.value
        )

    allowed = ALLOWED_TRANSITIONS.get(current, [])
    if target not in allowed:
        raise InvalidStateException(
            f"Cannot transition from {current.value} to {target.value}",
            current_status=current.value,
            allowed_transitions=[s.value for s in allowed],
        )

    if target == SaleStatus.COMPLETED and not sale.is_settled:
        raise InvalidStateException(
            "Cannot complete a sale that is not fully paid",
            current_status=current.value,
        )
    return target


def status_after_payment(sale: Sale) -> SaleStatus:
    """Completed once settled payments cover the total, otherwise in progress."""
    return SaleStatus.COMPLETED if sale.is_settled else SaleStatus.IN_PROGRESS


def payment_refund_status(payment: Payment) -> PaymentStatus:
    """Status of a payment from its cumulative refund amount."""
    refunded = Decimal(payment.refund_amount or 0)
    if refunded <= 0:
        return PaymentStatus.COMPLETED
    if refunded >= Decimal(payment.amount):
        return PaymentStatus.REFUNDED
    return PaymentStatus.PARTIALLY_REFUNDED


def derive_refund_status(payments: Iterable[Payment]) -> Optional[SaleStatus]:
    """
    Sale status implied by refund annotations on its forward payments.

    Returns refunded when every settled forward payment is fully refunded,
    partially_refunded when anything has been refunded, None otherwise.
    """
    forward = [
        p for p in payments
        if p.status in SETTLED_PAYMENT_STATUSES and Decimal(p.amount) > 0
    ]
    refunded_any = any(Decimal(p.refund_amount or 0) > 0 for p in forward)
    if not refunded_any:
        return None
    if all(Decimal(p.refund_amount or 0) >= Decimal(p.amount) for p in forward):
        return SaleStatus.REFUNDED
    return SaleStatus.PARTIALLY_REFUNDED


def settled_gateway_payments(sale: Sale) -> List[Payment]:
    """Forward gateway payments on ``sale`` that were captured by the gateway."""
    return [
        p for p in sale.payments
        if p.method == PaymentMethod.RECEETS_PAY
        and p.transaction_id
        and p.status in SETTLED_PAYMENT_STATUSES
        and Decimal(p.amount) > 0
    ]


def find_refundable_gateway_payment(
    sale: Sale, amount: Optional[Decimal] = None
) -> Optional[Payment]:
    """
    First captured gateway payment on ``sale`` that still has refund headroom.

    With ``amount``, the payment must be able to absorb all of it.
    """
    for payment in settled_gateway_payments(sale):
        headroom = payment.refundable_amount
        if headroom > 0 and (amount is None or headroom >= amount):
            return payment
    return None
