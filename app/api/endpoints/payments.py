# File: app/api/endpoints/payments.py
"""
Payment API endpoints for Receets.

Method-specific shortcuts for applying payments, confirmation of pending
gateway payments, and refunds of completed returns.
"""

from fastapi import APIRouter, Depends

from app.api.deps import get_current_merchant, get_payment_service, get_refund_service
from app.core.security import Principal
from app.db.models.enums import PaymentMethod
from app.schemas.payment import (
    CardPaymentRequest,
    CashPaymentRequest,
    GatewayConfirmRequest,
    GatewayPaymentRequest,
    PaymentResult,
    RefundInfo,
    RefundRequest,
    RefundResult,
)
from app.schemas.sale import PaymentResponse, SaleResponse
from app.services.payment_service import PaymentService, PaymentResult as ServicePaymentResult
from app.services.refund_service import RefundService

router = APIRouter()


def _payment_response(result: ServicePaymentResult) -> PaymentResult:
    return PaymentResult(
        sale=SaleResponse.model_validate(result.sale),
        payment=PaymentResponse.model_validate(result.payment),
        change_due=result.change_due,
    )


@router.post("/gateway", response_model=PaymentResult)
def pay_with_gateway(
    *,
    payment_in: GatewayPaymentRequest,
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResult:
    """
    Charge a sale through Receets Pay.

    Callable by the sale's merchant or by the paying customer.
    """
    data = payment_in.model_dump(exclude={"sale_id"}, exclude_none=True)
    data["method"] = PaymentMethod.RECEETS_PAY
    return _payment_response(payment_service.apply_payment(payment_in.sale_id, data))


@router.post("/cash", response_model=PaymentResult)
def pay_with_cash(
    *,
    payment_in: CashPaymentRequest,
    merchant: Principal = Depends(get_current_merchant),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResult:
    """Record a cash payment; reports change due when ``amount_tendered`` is given."""
    data = payment_in.model_dump(exclude={"sale_id"}, exclude_none=True)
    data["method"] = PaymentMethod.CASH
    return _payment_response(payment_service.apply_payment(payment_in.sale_id, data))


@router.post("/card", response_model=PaymentResult)
def pay_with_card(
    *,
    payment_in: CardPaymentRequest,
    merchant: Principal = Depends(get_current_merchant),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResult:
    """Record a card payment taken on a standalone terminal."""
    data = payment_in.model_dump(exclude={"sale_id"}, exclude_none=True)
    data["method"] = PaymentMethod.CARD
    return _payment_response(payment_service.apply_payment(payment_in.sale_id, data))


@router.post("/gateway/confirm", response_model=PaymentResult)
def confirm_gateway_payment(
    *,
    confirm_in: GatewayConfirmRequest,
    merchant: Principal = Depends(get_current_merchant),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResult:
    """Settle a pending gateway payment once the gateway reports its outcome."""
    result = payment_service.confirm_gateway_payment(
        confirm_in.sale_id, confirm_in.transaction_id, confirm_in.succeeded
    )
    return _payment_response(result)


@router.post("/refund", response_model=RefundResult)
def process_refund(
    *,
    refund_in: RefundRequest,
    merchant: Principal = Depends(get_current_merchant),
    refund_service: RefundService = Depends(get_refund_service),
) -> RefundResult:
    """
    Refund a completed return sale.

    Goes back through the gateway when the original purchase was paid with
    Receets Pay, otherwise records a cash refund.
    """
    result = refund_service.process_refund(refund_in.sale_id, refund_in.amount, refund_in.reason)
    return RefundResult(
        refund=RefundInfo(**result.refund),
        sale=SaleResponse.model_validate(result.sale),
        original_sale=SaleResponse.model_validate(result.original_sale)
        if result.original_sale is not None
        else None,
    )
