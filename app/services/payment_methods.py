# File: app/services/payment_methods.py
"""
Per-method payment settlement.

Each tender type has a handler whose ``settle`` turns a payment request into
a ``SettlementOutcome``. Local tenders (cash, card, wallets) settle
immediately; the gateway handler only marks the payment as needing the
reserve / charge / settle flow in ``PaymentService``.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Union

from app.core.exceptions import ValidationException
from app.core.utils import generate_reference
from app.db.models.enums import PaymentMethod, PaymentStatus
from app.services.totals_calculator import to_money

logger = logging.getLogger(__name__)

LAST4_PATTERN = re.compile(r"^\d{4}$")


@dataclass
class PaymentContext:
    """Everything a handler needs to settle one payment request."""

    method: PaymentMethod
    amount: Decimal
    transaction_id: Optional[str] = None
    card_brand: Optional[str] = None
    last4: Optional[str] = None
    amount_tendered: Optional[Decimal] = None
    payment_method_id: Optional[str] = None


@dataclass
class SettlementOutcome:
    status: PaymentStatus
    transaction_id: Optional[str] = None
    card_brand: Optional[str] = None
    last4: Optional[str] = None
    change_due: Optional[Decimal] = None
    requires_gateway: bool = False


class PaymentMethodHandler(ABC):
    """Settles payments for one family of tender types."""

    @abstractmethod
    def settle(self, context: PaymentContext) -> SettlementOutcome:
        """Settle ``context`` or raise ValidationException."""

    @staticmethod
    def _validate_last4(last4: Optional[str]) -> Optional[str]:
        if last4 is not None and not LAST4_PATTERN.match(last4):
            raise ValidationException(
                "Invalid card details", {"last4": ["Must be exactly 4 digits"]}
            )
        return last4


class CashPaymentHandler(PaymentMethodHandler):
    """Cash settles at once; change is computed from the amount tendered."""

    def settle(self, context: PaymentContext) -> SettlementOutcome:
        change_due = None
        if context.amount_tendered is not None:
            tendered = to_money(context.amount_tendered)
            if tendered < context.amount:
                raise ValidationException(
                    "Amount tendered is less than the payment amount",
                    {"amount_tendered": [f"Must be at least {context.amount}"]},
                )
            change_due = to_money(tendered - context.amount)

        return SettlementOutcome(
            status=PaymentStatus.COMPLETED,
            transaction_id=context.transaction_id or generate_reference("CASH"),
            change_due=change_due,
        )


class CardPaymentHandler(PaymentMethodHandler):
    """Card payments taken on a standalone terminal; the POS records the result."""

    def settle(self, context: PaymentContext) -> SettlementOutcome:
        return SettlementOutcome(
            status=PaymentStatus.COMPLETED,
            transaction_id=context.transaction_id or generate_reference("CARD"),
            card_brand=context.card_brand,
            last4=self._validate_last4(context.last4),
        )


class WalletPaymentHandler(PaymentMethodHandler):
    """Apple Pay, Google Pay and other externally settled tenders."""

    PREFIXES = {
        PaymentMethod.APPLE_PAY: "APPLE",
        PaymentMethod.GOOGLE_PAY: "GOOGLE",
        PaymentMethod.OTHER: "OTHER",
    }

    def settle(self, context: PaymentContext) -> SettlementOutcome:
        prefix = self.PREFIXES.get(context.method, "PAY")
        return SettlementOutcome(
            status=PaymentStatus.COMPLETED,
            transaction_id=context.transaction_id or generate_reference(prefix),
            card_brand=context.card_brand,
            last4=self._validate_last4(context.last4),
        )


class GatewayPaymentHandler(PaymentMethodHandler):
    """Gateway payments start pending and are charged outside the write transaction."""

    def settle(self, context: PaymentContext) -> SettlementOutcome:
        if context.transaction_id:
            raise ValidationException(
                "Gateway payments are assigned their transaction ID by the gateway",
                {"transaction_id": ["Must not be supplied for receets_pay"]},
            )
        return SettlementOutcome(status=PaymentStatus.PENDING, requires_gateway=True)


_wallet_handler = WalletPaymentHandler()

PAYMENT_HANDLERS: Dict[PaymentMethod, PaymentMethodHandler] = {
    PaymentMethod.CASH: CashPaymentHandler(),
    PaymentMethod.CARD: CardPaymentHandler(),
    PaymentMethod.APPLE_PAY: _wallet_handler,
    PaymentMethod.GOOGLE_PAY: _wallet_handler,
    PaymentMethod.OTHER: _wallet_handler,
    PaymentMethod.RECEETS_PAY: GatewayPaymentHandler(),
}


def get_payment_handler(method: Union[PaymentMethod, str]) -> PaymentMethodHandler:
    """
    Handler for a payment method.

    Raises:
        ValidationException: If the method is unknown
    """
    try:
        return PAYMENT_HANDLERS[PaymentMethod(method)]
    except (ValueError, KeyError) as e:
        raise ValidationException(
            f"Unsupported payment method: {method}",
            {"method": [f"Must be one of {[m.value for m in PaymentMethod]}"]},
        ) from e
