# File: app/services/refund_service.py
"""
Service linking return sales to their original purchases and issuing refunds.

A return is its own Sale (type=return, negative lines) pointing at the
original purchase through ``original_sale_id``. Refunding a completed return
either goes back through the gateway against the original's Receets Pay
payment, annotating that payment and the original sale's status, or is paid
out in cash, recorded only on the return sale. Returns never take back more
than the original sold, less its earlier returns.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from app.core.events import ReturnInitiated, RefundProcessed
from app.core.exceptions import (
    CustomerNotFoundException,
    InvalidStateException,
    LocationNotFoundException,
    MerchantNotFoundException,
    RefundGatewayException,
    SaleNotFoundException,
    ValidationException,
)
from app.core.utils import generate_reference
from app.db.models.base import as_utc
from app.db.models.enums import PaymentMethod, PaymentStatus, SaleStatus, SaleType
from app.db.models.sales import Sale, LineItem, Payment
from app.repositories.customer_repository import CustomerRepository
from app.repositories.merchant_repository import MerchantRepository, LocationRepository
from app.repositories.sale_repository import SaleRepository
from app.services.base_service import BaseService
from app.services.gateway import GatewayError, PaymentGateway
from app.services.sale_state_machine import (
    RETURNABLE_STATUSES,
    derive_refund_status,
    find_refundable_gateway_payment,
    payment_refund_status,
    settled_gateway_payments,
)
from app.services.totals_calculator import SaleTotals, calculate_totals, to_money, to_minor_units

logger = logging.getLogger(__name__)


@dataclass
class RefundResult:
    refund: Dict[str, Any]
    sale: Sale
    original_sale: Optional[Sale] = None


@dataclass
class _RefundReservation:
    return_sale_id: int
    refund_payment_id: int
    original_sale_id: int
    payment_id: int
    payment_intent_id: str
    amount: Decimal


class RefundService(BaseService[Sale]):
    """
    Service for returns and refunds.

    Provides functionality for:
    - Creating return sales against completed purchases
    - Gateway refunds annotated on the original payment
    - Cash refunds recorded on the return sale
    """

    def __init__(
        self,
        session: Session,
        repository: Optional[SaleRepository] = None,
        merchant_repository: Optional[MerchantRepository] = None,
        location_repository: Optional[LocationRepository] = None,
        customer_repository: Optional[CustomerRepository] = None,
        gateway: Optional[PaymentGateway] = None,
        security_context=None,
        event_bus=None,
        max_retries: Optional[int] = None,
    ):
        super().__init__(
            session,
            repository=repository or SaleRepository(session),
            security_context=security_context,
            event_bus=event_bus,
            max_retries=max_retries,
        )
        self.merchant_repository = merchant_repository or MerchantRepository(session)
        self.location_repository = location_repository or LocationRepository(session)
        self.customer_repository = customer_repository or CustomerRepository(session)
        self.gateway = gateway

    def process_return(self, original_sale_id: int, return_data: Dict[str, Any]) -> Sale:
        """
        Create a draft return sale against a completed purchase.

        Args:
            original_sale_id: ID of the purchase being returned
            return_data: line_items plus optional merchant_id, location_id,
                customer_id, customer_code, cashier_id, cashier_name, notes

        Returns:
            The created return sale

        Raises:
            SaleNotFoundException: If the original sale does not exist
            ValidationException: If the original is not a returnable purchase,
                is outside the return window, no line items were given or
                more would be returned than the original sold
            InvalidStateException: If the original is not completed
            PermissionDeniedException: If the caller does not own the original
        """
        original = self.repository.get_by_id(original_sale_id)
        if not original:
            raise SaleNotFoundException(original_sale_id)

        self._require_merchant(original.merchant_id, "Sale", original.id)

        if original.type != SaleType.PURCHASE:
            raise ValidationException(
                "Only purchases can be returned",
                {"original_sale_id": [f"Sale type is {original.type.value}"]},
            )
        if original.status not in RETURNABLE_STATUSES:
            raise InvalidStateException(
                f"Cannot return a sale with status {original.status.value}",
                current_status=original.status.value,
            )

        merchant_id = return_data.get("merchant_id") or original.merchant_id
        if merchant_id != original.merchant_id:
            raise ValidationException(
                "Returns must be processed by the merchant of the original sale",
                {"merchant_id": ["Does not match the original sale"]},
            )
        merchant = self.merchant_repository.get_by_id(merchant_id)
        if not merchant:
            raise MerchantNotFoundException(merchant_id)

        return_deadline = as_utc(original.created_at) + timedelta(days=merchant.return_period)
        if datetime.now(timezone.utc) > return_deadline:
            raise ValidationException(
                f"Sale is outside the {merchant.return_period}-day return period",
                {"original_sale_id": ["Return period has expired"]},
            )

        line_items = return_data.get("line_items") or []
        if not line_items:
            raise ValidationException(
                "At least one line item is required for a return",
                {"line_items": ["Must not be empty"]},
            )

        location_id = return_data.get("location_id") or original.location_id
        if not self.location_repository.get_for_merchant(location_id, merchant_id):
            raise LocationNotFoundException(location_id, merchant_id)

        customer_id, customer_code = self._resolve_customer(return_data, original)
        totals = calculate_totals(line_items, SaleType.RETURN)
        self._ensure_within_original(original, totals)

        return_sale = Sale(
            merchant_id=merchant_id,
            location_id=location_id,
            customer_id=customer_id,
            customer_code=customer_code,
            type=SaleType.RETURN,
            status=SaleStatus.DRAFT,
            original_sale_id=original.id,
            notes=return_data.get("notes"),
            cashier_id=return_data.get("cashier_id"),
            cashier_name=return_data.get("cashier_name"),
            **totals.as_columns(),
        )
        for line in totals.line_items:
            return_sale.line_items.append(LineItem(**line.to_dict()))

        self._insert_with_reference(return_sale, "sale_number", "RET")

        self._log_operation(
            "return",
            "Sale",
            return_sale.id,
            {"original_sale_id": original.id, "total": str(return_sale.total)},
        )
        self._publish(
            ReturnInitiated(
                return_sale_id=return_sale.id,
                original_sale_id=original.id,
                total=Decimal(return_sale.total),
                principal_id=self._current_principal_id(),
            )
        )
        return return_sale

    def process_refund(
        self, return_sale_id: int, amount: Any, reason: Optional[str] = None
    ) -> RefundResult:
        """
        Refund money for a completed return sale.

        The refund goes back through the gateway when a captured gateway
        payment on the original can absorb the whole amount, otherwise it is
        paid out in cash. Gateway refunds are reserved first: a pending
        negative payment on the return sale and the amount added to the
        original payment's refund total, so concurrent refunds see each other
        before any money moves.

        Args:
            return_sale_id: ID of the completed return sale
            amount: Positive amount to refund
            reason: Optional refund reason

        Returns:
            RefundResult with the refund record, the return sale and, for
            gateway refunds, the original sale

        Raises:
            SaleNotFoundException: If the return sale does not exist
            InvalidStateException: If the sale is not a completed return
            ValidationException: If the amount is invalid or exceeds what is refundable
            RefundGatewayException: If the gateway refund fails
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationException(
                "Refund amount must be positive", {"amount": ["Must be greater than 0"]}
            )

        def reserve():
            return_sale, original = self._load_refund_targets(return_sale_id, amount)
            payment = self._gateway_payment_for(original, amount)
            if payment is None:
                return self._record_cash_refund(return_sale, amount, reason)
            return self._reserve_gateway_refund(return_sale, original, payment, amount)

        outcome = self.run_versioned(reserve, f"Refund on sale {return_sale_id}")
        if isinstance(outcome, _RefundReservation):
            result = self._gateway_refund(outcome, reason)
        else:
            result = outcome

        self._record_refund(result, reason)
        self._publish(
            RefundProcessed(
                return_sale_id=result.sale.id,
                original_sale_id=result.sale.original_sale_id,
                amount=amount,
                refund_id=result.refund["id"],
                via_gateway=result.original_sale is not None,
                principal_id=self._current_principal_id(),
            )
        )
        return result

    # --- Refund paths ---

    def _reserve_gateway_refund(
        self, return_sale: Sale, original: Sale, payment: Payment, amount: Decimal
    ) -> _RefundReservation:
        if self.gateway is None:
            raise RefundGatewayException("Payment gateway is not available", sale_id=return_sale.id)

        pending = Payment(
            method=PaymentMethod.RECEETS_PAY,
            amount=-amount,
            status=PaymentStatus.PENDING,
            card_brand=payment.card_brand,
            last4=payment.last4,
        )
        return_sale.payments.append(pending)
        payment.refund_amount = to_money(Decimal(payment.refund_amount or 0) + amount)
        self._touch(return_sale)
        self._touch(original)
        self.session.flush()

        return _RefundReservation(
            return_sale_id=return_sale.id,
            refund_payment_id=pending.id,
            original_sale_id=original.id,
            payment_id=payment.id,
            payment_intent_id=payment.transaction_id,
            amount=amount,
        )

    def _gateway_refund(self, reservation: _RefundReservation, reason: Optional[str]) -> RefundResult:
        return_sale_id = reservation.return_sale_id
        try:
            gateway_refund = self.gateway.create_refund(
                payment_intent_id=reservation.payment_intent_id,
                amount_minor_units=to_minor_units(reservation.amount),
                reason=reason,
                metadata={
                    "saleId": str(return_sale_id),
                    "originalSaleId": str(reservation.original_sale_id),
                },
            )
        except Exception as e:
            self._release_refund(reservation)
            if isinstance(e, GatewayError):
                logger.warning(
                    f"Gateway refund failed for return {return_sale_id}: {e.message}",
                    extra={"sale_id": return_sale_id, "gateway_code": e.code},
                )
                raise RefundGatewayException(
                    e.message, sale_id=return_sale_id, original_error=e.code
                ) from e
            raise

        def settle() -> RefundResult:
            return_sale, pending, original, target = self._reserved_rows(reservation)
            if pending is None or target is None:
                raise InvalidStateException(
                    f"Reserved refund on sale {return_sale_id} no longer exists"
                )

            pending.status = PaymentStatus.COMPLETED
            pending.transaction_id = gateway_refund.id
            self._touch(return_sale)

            target.refund_reason = reason
            target.refund_date = datetime.now(timezone.utc)
            target.status = payment_refund_status(target)
            derived = derive_refund_status(original.payments)
            if derived is not None:
                original.status = derived
            self._touch(original)
            self.session.flush()

            refund = {
                "id": gateway_refund.id,
                "amount": reservation.amount,
                "status": gateway_refund.status,
                "method": PaymentMethod.RECEETS_PAY.value,
                "payment_intent_id": reservation.payment_intent_id,
                "reason": reason,
            }
            return RefundResult(refund=refund, sale=return_sale, original_sale=original)

        try:
            return self.run_versioned(settle, f"Gateway refund settlement on sale {return_sale_id}")
        except Exception:
            logger.error(
                f"Gateway refund {gateway_refund.id} was issued but not settled on sale {return_sale_id}",
                extra={
                    "sale_id": return_sale_id,
                    "refund_id": gateway_refund.id,
                    "payment_id": reservation.payment_id,
                    "amount": str(reservation.amount),
                },
                exc_info=True,
            )
            raise

    def _release_refund(self, reservation: _RefundReservation) -> None:
        """Undo a refund reservation after the gateway refused the refund."""

        def write():
            return_sale, pending, original, target = self._reserved_rows(reservation)
            if pending is not None and pending.status == PaymentStatus.PENDING:
                return_sale.payments.remove(pending)
                self._touch(return_sale)
            if target is not None:
                remaining = Decimal(target.refund_amount or 0) - reservation.amount
                target.refund_amount = to_money(max(remaining, Decimal("0")))
                target.status = payment_refund_status(target)
                derived = derive_refund_status(original.payments)
                if derived is not None:
                    original.status = derived
                elif original.status in (SaleStatus.REFUNDED, SaleStatus.PARTIALLY_REFUNDED):
                    original.status = SaleStatus.COMPLETED
                self._touch(original)
            self.session.flush()

        self.run_versioned(write, f"Refund reservation release on sale {reservation.return_sale_id}")
        logger.info(
            f"Released refund reservation {reservation.refund_payment_id} on sale {reservation.return_sale_id}"
        )

    def _record_cash_refund(
        self, return_sale: Sale, amount: Decimal, reason: Optional[str]
    ) -> RefundResult:
        transaction_id = generate_reference("REFUND")
        return_sale.payments.append(
            Payment(
                method=PaymentMethod.CASH,
                amount=-amount,
                status=PaymentStatus.COMPLETED,
                transaction_id=transaction_id,
            )
        )
        self._touch(return_sale)
        self.session.flush()

        refund = {
            "id": transaction_id,
            "amount": amount,
            "status": PaymentStatus.COMPLETED.value,
            "method": PaymentMethod.CASH.value,
            "payment_intent_id": None,
            "reason": reason,
        }
        return RefundResult(refund=refund, sale=return_sale)

    # --- Helpers ---

    def _load_refund_targets(self, return_sale_id: int, amount: Decimal) -> Tuple[Sale, Optional[Sale]]:
        """
        Load and validate the return sale (and its original) for a refund of ``amount``.

        Pending gateway refunds on the return count against what is left.
        """
        return_sale = self.repository.get_by_id(return_sale_id)
        if not return_sale:
            raise SaleNotFoundException(return_sale_id)

        self._require_merchant(return_sale.merchant_id, "Sale", return_sale.id)

        if return_sale.type != SaleType.RETURN:
            raise InvalidStateException(
                "Refunds can only be processed for return sales",
                current_status=return_sale.status.value,
            )
        if return_sale.status != SaleStatus.COMPLETED:
            raise InvalidStateException(
                f"Cannot refund a return with status {return_sale.status.value}",
                current_status=return_sale.status.value,
            )

        remaining = abs(Decimal(return_sale.total)) - return_sale.refunded_total
        if amount > remaining:
            raise ValidationException(
                f"Refund amount exceeds the remaining refundable amount of {to_money(remaining)}",
                {"amount": [f"Must not exceed {to_money(remaining)}"]},
            )

        original = None
        if return_sale.original_sale_id is not None:
            original = self.repository.get_by_id(return_sale.original_sale_id)
        return return_sale, original

    @staticmethod
    def _gateway_payment_for(original: Optional[Sale], amount: Decimal) -> Optional[Payment]:
        """
        Gateway payment on the original that takes the whole refund.

        None means the refund is paid out in cash: the original has no
        captured gateway payment, or its gateway payments are fully refunded.

        Raises:
            ValidationException: If gateway headroom remains but no single
                payment can absorb ``amount``
        """
        if original is None:
            return None
        payment = find_refundable_gateway_payment(original, amount)
        if payment is not None:
            return payment

        available = max(
            (p.refundable_amount for p in settled_gateway_payments(original)),
            default=Decimal("0"),
        )
        if available > 0:
            raise ValidationException(
                f"Refund amount exceeds the refundable amount of {to_money(available)} on the original payment",
                {"amount": [f"Must not exceed {to_money(available)}"]},
            )
        return None

    def _reserved_rows(
        self, reservation: _RefundReservation
    ) -> Tuple[Sale, Optional[Payment], Sale, Optional[Payment]]:
        return_sale = self.repository.get_by_id(reservation.return_sale_id)
        original = self.repository.get_by_id(reservation.original_sale_id)
        pending = next(
            (p for p in return_sale.payments if p.id == reservation.refund_payment_id), None
        )
        target = next((p for p in original.payments if p.id == reservation.payment_id), None)
        return return_sale, pending, original, target

    def _ensure_within_original(self, original: Sale, totals: SaleTotals) -> None:
        """
        Keep a return within what the original sold, less its earlier returns.

        Quantities are bounded per product and the returned amount by the
        original's total. Voided returns do not count.

        Raises:
            ValidationException: If a product or the amount would be over-returned
        """
        sold: Dict[str, int] = defaultdict(int)
        for line in original.line_items:
            sold[line.product_id] += line.quantity

        returned: Dict[str, int] = defaultdict(int)
        returned_amount = Decimal("0")
        for earlier in self.repository.find_returns_for(original.id):
            if earlier.status == SaleStatus.VOIDED:
                continue
            for line in earlier.line_items:
                returned[line.product_id] += abs(line.quantity)
            returned_amount += abs(Decimal(earlier.total))

        requested: Dict[str, int] = defaultdict(int)
        for line in totals.line_items:
            requested[line.product_id] += abs(line.quantity)

        errors: Dict[str, List[str]] = {}
        for product_id, quantity in requested.items():
            available = sold.get(product_id, 0) - returned[product_id]
            if quantity > available:
                errors.setdefault("line_items", []).append(
                    f"Product {product_id}: {quantity} returned, {max(available, 0)} returnable"
                )
        if errors:
            raise ValidationException("Returned quantities exceed the original sale", errors)

        returnable_amount = to_money(Decimal(original.total) - returned_amount)
        if abs(totals.total) > returnable_amount:
            raise ValidationException(
                f"Return total exceeds the returnable amount of {returnable_amount}",
                {"line_items": [f"Return total must not exceed {returnable_amount}"]},
            )

    def _resolve_customer(
        self, return_data: Dict[str, Any], original: Sale
    ) -> Tuple[Optional[int], Optional[str]]:
        customer_id = return_data.get("customer_id")
        customer_code = return_data.get("customer_code")
        if customer_id is None and not customer_code:
            return original.customer_id, original.customer_code

        customer = self.customer_repository.resolve(customer_id, customer_code)
        if customer is None:
            raise CustomerNotFoundException(customer_id or customer_code)
        return customer.id, customer.customer_code

    def _record_refund(self, result: RefundResult, reason: Optional[str]) -> None:
        logger.info(
            f"Refund {result.refund['id']} of {result.refund['amount']} on sale {result.sale.id} via {result.refund['method']}",
            extra={
                "sale_id": result.sale.id,
                "original_sale_id": result.original_sale.id if result.original_sale else None,
                "refund_id": result.refund["id"],
                "amount": str(result.refund["amount"]),
                "payment_method": result.refund["method"],
                "reason": reason,
                "principal_id": self._current_principal_id(),
            },
        )
