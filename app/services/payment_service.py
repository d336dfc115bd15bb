# File: app/services/payment_service.py
"""
Payment accumulation on sales.

Local tenders are written in one versioned transaction. Gateway payments run
in three steps so the gateway is never called inside an open write
transaction:

1. reserve: append a pending payment under a versioned write
2. charge: ensure the customer's gateway profile, create the payment intent
3. settle: record the intent on the reserved payment and recompute status

A failed charge removes the reservation, leaving the sale as it was. A
charge that cannot be settled keeps its intent ID on the pending payment,
to be settled through ``confirm_gateway_payment``.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.events import PaymentApplied, SaleCompleted
from app.core.exceptions import (
    CustomerNotFoundException,
    DuplicateEntityException,
    InvalidStateException,
    PaymentGatewayException,
    SaleNotFoundException,
    ValidationException,
    PermissionDeniedException,
)
from app.db.models.enums import PaymentMethod, PaymentStatus, SaleStatus
from app.db.models.sales import Sale, Payment
from app.repositories.customer_repository import CustomerRepository
from app.repositories.merchant_repository import MerchantRepository
from app.repositories.sale_repository import SaleRepository
from app.services.base_service import BaseService
from app.services.gateway import GatewayError, GatewayIntent, PaymentGateway
from app.services.payment_methods import PaymentContext, get_payment_handler
from app.services.sale_state_machine import ensure_payable, status_after_payment, CLOSED_STATUSES
from app.services.totals_calculator import to_money, to_minor_units

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    sale: Sale
    payment: Payment
    change_due: Optional[Decimal] = None


@dataclass
class _Reservation:
    sale_id: int
    payment_id: int
    customer_id: int
    merchant_id: int
    sale_number: str
    customer_code: Optional[str]
    destination_account: Optional[str]


class PaymentService(BaseService[Sale]):
    """
    Service applying payments to sales.

    Provides functionality for:
    - Cash, card and wallet payments settled at the till
    - Gateway (Receets Pay) payments with reservation and compensation
    - Later confirmation of pending gateway payments
    """

    def __init__(
        self,
        session: Session,
        repository: Optional[SaleRepository] = None,
        customer_repository: Optional[CustomerRepository] = None,
        merchant_repository: Optional[MerchantRepository] = None,
        gateway: Optional[PaymentGateway] = None,
        security_context=None,
        event_bus=None,
        currency: Optional[str] = None,
        max_retries: Optional[int] = None,
    ):
        """
        Initialize PaymentService with dependencies.

        Args:
            session: Database session for persistence operations
            repository: Optional repository for sales (defaults to SaleRepository)
            customer_repository: Optional customer repository
            merchant_repository: Optional merchant repository
            gateway: Payment gateway used for receets_pay payments
            security_context: Security context carrying the current principal
            event_bus: Optional event bus for publishing domain events
            currency: Gateway currency (defaults to settings.GATEWAY_CURRENCY)
            max_retries: Attempts for versioned writes
        """
        super().__init__(
            session,
            repository=repository or SaleRepository(session),
            security_context=security_context,
            event_bus=event_bus,
            max_retries=max_retries,
        )
        self.customer_repository = customer_repository or CustomerRepository(session)
        self.merchant_repository = merchant_repository or MerchantRepository(session)
        self.gateway = gateway
        self.currency = currency or settings.GATEWAY_CURRENCY

    def apply_payment(self, sale_id: int, payment_data: Dict[str, Any]) -> PaymentResult:
        """
        Apply a payment to a sale.

        Args:
            sale_id: ID of the sale
            payment_data: method, amount and optional transaction_id, card_brand,
                last4, amount_tendered, payment_method_id, customer_id

        Returns:
            PaymentResult with the updated sale, the new payment and change due

        Raises:
            SaleNotFoundException: If the sale does not exist
            ValidationException: If the amount or method is invalid
            InvalidStateException: If the sale cannot take payments
            DuplicateEntityException: If the transaction ID was already recorded
            PaymentGatewayException: If a gateway charge fails
        """
        handler = get_payment_handler(payment_data.get("method"))
        method = PaymentMethod(payment_data.get("method"))
        amount = to_money(payment_data.get("amount"))
        if amount <= 0:
            raise ValidationException(
                "Payment amount must be positive", {"amount": ["Must be greater than 0"]}
            )

        context = PaymentContext(
            method=method,
            amount=amount,
            transaction_id=payment_data.get("transaction_id"),
            card_brand=payment_data.get("card_brand"),
            last4=payment_data.get("last4"),
            amount_tendered=payment_data.get("amount_tendered"),
            payment_method_id=payment_data.get("payment_method_id"),
        )
        outcome = handler.settle(context)

        if outcome.requires_gateway:
            return self._apply_gateway_payment(sale_id, context, payment_data.get("customer_id"))

        def write():
            sale = self._get_sale(sale_id)
            self._require_sale_access(sale, allow_customer=False)
            ensure_payable(sale)
            self._ensure_unique_transaction(sale, outcome.transaction_id)

            previous_status = sale.status
            payment = Payment(
                method=method,
                amount=amount,
                status=outcome.status,
                transaction_id=outcome.transaction_id,
                card_brand=outcome.card_brand,
                last4=outcome.last4,
            )
            sale.payments.append(payment)
            sale.status = status_after_payment(sale)
            self._touch(sale)
            self.session.flush()
            return sale, payment, previous_status

        sale, payment, previous_status = self.run_versioned(write, f"Payment on sale {sale_id}")
        self._after_payment(sale, payment, previous_status)
        return PaymentResult(sale=sale, payment=payment, change_due=outcome.change_due)

    def confirm_gateway_payment(
        self, sale_id: int, transaction_id: str, succeeded: bool
    ) -> PaymentResult:
        """
        Settle a pending gateway payment once the gateway reports its outcome.

        Raises:
            SaleNotFoundException: If the sale does not exist
            InvalidStateException: If no pending gateway payment has this transaction ID
        """

        def write():
            sale = self._get_sale(sale_id)
            self._require_sale_access(sale, allow_customer=False)
            payment = next(
                (p for p in sale.payments if p.transaction_id == transaction_id), None
            )
            if payment is None or payment.method != PaymentMethod.RECEETS_PAY:
                raise InvalidStateException(
                    f"No gateway payment {transaction_id} on sale {sale_id}"
                )
            if payment.status != PaymentStatus.PENDING:
                raise InvalidStateException(
                    f"Gateway payment {transaction_id} is already {payment.status.value}"
                )

            previous_status = sale.status
            payment.status = PaymentStatus.COMPLETED if succeeded else PaymentStatus.FAILED
            if sale.status not in CLOSED_STATUSES:
                sale.status = status_after_payment(sale)
            self._touch(sale)
            self.session.flush()
            return sale, payment, previous_status

        sale, payment, previous_status = self.run_versioned(
            write, f"Gateway confirmation on sale {sale_id}"
        )
        self._after_payment(sale, payment, previous_status)
        return PaymentResult(sale=sale, payment=payment)

    # --- Gateway flow ---

    def _apply_gateway_payment(
        self, sale_id: int, context: PaymentContext, customer_id: Optional[int]
    ) -> PaymentResult:
        if self.gateway is None:
            raise PaymentGatewayException("Payment gateway is not available", sale_id=sale_id)

        reservation = self.run_versioned(
            lambda: self._reserve(sale_id, context.amount, customer_id),
            f"Gateway reservation on sale {sale_id}",
        )

        try:
            intent = self._charge(reservation, context)
        except Exception as e:
            self._release(reservation)
            if isinstance(e, GatewayError):
                logger.warning(
                    f"Gateway charge failed for sale {sale_id}: {e.message}",
                    extra={"sale_id": sale_id, "gateway_code": e.code},
                )
                raise PaymentGatewayException(
                    e.message, sale_id=sale_id, original_error=e.code
                ) from e
            raise

        def settle():
            sale = self._get_sale(sale_id)
            payment = next((p for p in sale.payments if p.id == reservation.payment_id), None)
            if payment is None:
                raise InvalidStateException(
                    f"Reserved gateway payment on sale {sale_id} no longer exists"
                )
            previous_status = sale.status
            payment.transaction_id = intent.id
            payment.card_brand = intent.card_brand
            payment.last4 = intent.last4
            if intent.succeeded:
                payment.status = PaymentStatus.COMPLETED
            if sale.status not in CLOSED_STATUSES:
                sale.status = status_after_payment(sale)
            self._touch(sale)
            self.session.flush()
            return sale, payment, previous_status

        try:
            sale, payment, previous_status = self.run_versioned(
                settle, f"Gateway settlement on sale {sale_id}"
            )
        except Exception:
            logger.error(
                f"Gateway intent {intent.id} was created but not settled on sale {sale_id}",
                extra={
                    "sale_id": sale_id,
                    "payment_id": reservation.payment_id,
                    "transaction_id": intent.id,
                },
                exc_info=True,
            )
            self._record_intent(reservation, intent)
            raise
        self._after_payment(sale, payment, previous_status)
        return PaymentResult(sale=sale, payment=payment)

    def _reserve(self, sale_id: int, amount: Decimal, customer_id: Optional[int]) -> _Reservation:
        sale = self._get_sale(sale_id)
        ensure_payable(sale)
        if sale.pending_gateway_payments():
            raise InvalidStateException(
                "A gateway payment is already in progress for this sale",
                current_status=sale.status.value,
            )

        customer = self._resolve_payer(sale, customer_id)
        if sale.customer_id is None:
            sale.customer_id = customer.id
            sale.customer_code = customer.customer_code

        merchant = self.merchant_repository.get_by_id(sale.merchant_id)
        payment = Payment(
            method=PaymentMethod.RECEETS_PAY,
            amount=amount,
            status=PaymentStatus.PENDING,
        )
        sale.payments.append(payment)
        self._touch(sale)
        self.session.flush()

        return _Reservation(
            sale_id=sale.id,
            payment_id=payment.id,
            customer_id=customer.id,
            merchant_id=sale.merchant_id,
            sale_number=sale.sale_number,
            customer_code=customer.customer_code,
            destination_account=merchant.gateway_account_id if merchant else None,
        )

    def _charge(self, reservation: _Reservation, context: PaymentContext) -> GatewayIntent:
        profile_id = self._ensure_gateway_profile(reservation.customer_id)
        metadata = {
            "saleId": str(reservation.sale_id),
            "merchantId": str(reservation.merchant_id),
            "customerCode": reservation.customer_code or "",
        }
        return self.gateway.create_payment_intent(
            amount_minor_units=to_minor_units(context.amount),
            currency=self.currency,
            customer_profile_id=profile_id,
            payment_method_id=context.payment_method_id,
            metadata=metadata,
            description=f"Payment for sale {reservation.sale_number}",
            destination_account=reservation.destination_account,
        )

    def _release(self, reservation: _Reservation) -> None:
        """Remove a pending reservation after a failed charge."""

        def write():
            sale = self._get_sale(reservation.sale_id)
            payment = next(
                (p for p in sale.payments if p.id == reservation.payment_id), None
            )
            if payment is not None and payment.status == PaymentStatus.PENDING:
                sale.payments.remove(payment)
                self._touch(sale)
                self.session.flush()

        self.run_versioned(write, f"Gateway reservation release on sale {reservation.sale_id}")
        logger.info(
            f"Released gateway reservation {reservation.payment_id} on sale {reservation.sale_id}"
        )

    def _record_intent(self, reservation: _Reservation, intent: GatewayIntent) -> None:
        """
        Keep the intent ID on a reservation whose settlement failed.

        The payment stays pending and can be settled through
        ``confirm_gateway_payment`` once the charge is reconciled.
        """

        def write():
            sale = self._get_sale(reservation.sale_id)
            payment = next(
                (p for p in sale.payments if p.id == reservation.payment_id), None
            )
            if payment is not None and not payment.transaction_id:
                payment.transaction_id = intent.id
                self._touch(sale)
                self.session.flush()

        try:
            self.run_versioned(write, f"Gateway intent record on sale {reservation.sale_id}")
        except Exception:
            logger.error(
                f"Could not record gateway intent {intent.id} on sale {reservation.sale_id}",
                extra={"sale_id": reservation.sale_id, "transaction_id": intent.id},
                exc_info=True,
            )

    def _ensure_gateway_profile(self, customer_id: int) -> str:
        """Gateway customer profile ID, created lazily and cached on the customer."""
        customer = self.customer_repository.get_by_id(customer_id)
        if customer is None:
            raise CustomerNotFoundException(customer_id)
        if customer.gateway_customer_id:
            return customer.gateway_customer_id

        profile_id = self.gateway.create_or_get_customer_profile(
            email=customer.email,
            name=customer.full_name,
            phone=customer.phone,
            metadata={"customerId": str(customer.id), "customerCode": customer.customer_code},
        )
        # The read above opened a transaction; end it before the versioned write
        self.session.rollback()

        def cache():
            fresh = self.customer_repository.get_by_id(customer_id)
            if not fresh.gateway_customer_id:
                fresh.gateway_customer_id = profile_id
                self.session.flush()
            return fresh.gateway_customer_id

        return self.run_versioned(cache, f"Gateway profile for customer {customer_id}")

    def _resolve_payer(self, sale: Sale, customer_id: Optional[int]):
        """
        Customer paying through the gateway, with authorization.

        Merchants may charge the sale's customer; a customer may only pay a
        sale linked to them (or an unlinked sale, which gets linked).
        """
        principal = self.security_context.current_user if self.security_context else None

        if sale.customer_id is not None:
            if customer_id is not None and customer_id != sale.customer_id:
                raise ValidationException(
                    "Sale is linked to a different customer",
                    {"customer_id": ["Does not match the sale's customer"]},
                )
            payer_id = sale.customer_id
        elif customer_id is not None:
            payer_id = customer_id
        elif principal is not None and principal.is_customer:
            payer_id = principal.id
        else:
            raise ValidationException(
                "A customer is required for Receets Pay payments",
                {"customer_id": ["Required when the sale has no customer"]},
            )

        if principal is not None:
            allowed = self.security_context.is_merchant(sale.merchant_id) or (
                principal.is_customer and principal.id == payer_id
            )
            if not allowed:
                raise PermissionDeniedException(
                    "Not authorized to pay for this sale", resource_type="Sale", resource_id=sale.id
                )

        customer = self.customer_repository.get_by_id(payer_id)
        if customer is None or not customer.is_active:
            raise CustomerNotFoundException(payer_id)
        return customer

    # --- Helpers ---

    def _get_sale(self, sale_id: int) -> Sale:
        sale = self.repository.get_by_id(sale_id)
        if not sale:
            raise SaleNotFoundException(sale_id)
        return sale

    @staticmethod
    def _ensure_unique_transaction(sale: Sale, transaction_id: Optional[str]) -> None:
        if transaction_id and any(p.transaction_id == transaction_id for p in sale.payments):
            raise DuplicateEntityException(
                f"Transaction {transaction_id} was already recorded on this sale",
                {"sale_id": sale.id, "transaction_id": transaction_id},
            )

    def _after_payment(self, sale: Sale, payment: Payment, previous_status: SaleStatus) -> None:
        self._record_payment_transaction(sale, payment)
        if previous_status != sale.status:
            self._record_status_change(sale.id, previous_status, sale.status)

        self._publish(
            PaymentApplied(
                sale_id=sale.id,
                payment_id=payment.id,
                method=payment.method.value,
                amount=Decimal(payment.amount),
                status=payment.status.value,
                principal_id=self._current_principal_id(),
            )
        )
        if sale.status == SaleStatus.COMPLETED and previous_status != SaleStatus.COMPLETED:
            self._publish(
                SaleCompleted(
                    sale_id=sale.id,
                    total=Decimal(sale.total),
                    amount_paid=sale.amount_paid,
                )
            )

    def _record_status_change(
        self, sale_id: int, previous_status: SaleStatus, new_status: SaleStatus
    ) -> None:
        user_id = self._current_principal_id()
        logger.info(
            f"Sale {sale_id} status changed from {previous_status.value} to {new_status.value} by principal {user_id}",
            extra={
                "sale_id": sale_id,
                "previous_status": previous_status.value,
                "new_status": new_status.value,
                "principal_id": user_id,
            },
        )

    def _record_payment_transaction(self, sale: Sale, payment: Payment) -> None:
        """
        Log a payment transaction for a sale.

        Args:
            sale: The sale the payment belongs to
            payment: The payment written
        """
        user_id = self._current_principal_id()
        logger.info(
            f"Sale {sale.id} payment of {payment.amount} via {payment.method.value} ({payment.status.value})",
            extra={
                "sale_id": sale.id,
                "amount": str(payment.amount),
                "transaction_id": payment.transaction_id,
                "payment_method": payment.method.value,
                "payment_status": payment.status.value,
                "principal_id": user_id,
            },
        )
