# File: app/api/endpoints/pos.py
"""
Point-of-sale API endpoints for Receets.

This module provides the endpoints a POS terminal calls while ringing up a
sale: initiating and updating sales, taking payments and processing returns.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from app.api.deps import (
    get_current_merchant,
    get_payment_service,
    get_refund_service,
    get_sale_service,
)
from app.core.security import Principal
from app.schemas.payment import PaymentCreate, PaymentResult
from app.schemas.sale import (
    EligibleReturnsResponse,
    PaymentResponse,
    ReturnCreate,
    SaleInitiate,
    SaleResponse,
    SaleUpdate,
)
from app.services.payment_service import PaymentService
from app.services.refund_service import RefundService
from app.services.sale_service import SaleService

router = APIRouter()


@router.post("/sales", response_model=SaleResponse, status_code=status.HTTP_201_CREATED)
def initiate_sale(
    *,
    sale_in: SaleInitiate,
    merchant: Principal = Depends(get_current_merchant),
    sale_service: SaleService = Depends(get_sale_service),
) -> SaleResponse:
    """
    Initiate a new draft sale.

    Args:
        sale_in: Sale data; totals are calculated server-side
        merchant: Authenticated merchant
        sale_service: Sale service

    Returns:
        Created sale
    """
    data = sale_in.model_dump()
    if data.get("merchant_id") is None:
        data["merchant_id"] = merchant.id
    sale = sale_service.initiate_sale(data)
    return SaleResponse.model_validate(sale)


@router.put("/sales/{sale_id}", response_model=SaleResponse)
def update_sale(
    *,
    sale_id: int = Path(..., ge=1, description="The ID of the sale to update"),
    sale_in: SaleUpdate,
    merchant: Principal = Depends(get_current_merchant),
    sale_service: SaleService = Depends(get_sale_service),
) -> SaleResponse:
    """
    Update line items, promo code, notes, customer or status of a sale.

    Only fields present in the request body are applied.
    """
    sale = sale_service.update_sale(sale_id, sale_in.model_dump(exclude_unset=True))
    return SaleResponse.model_validate(sale)


@router.post("/sales/{sale_id}/payment", response_model=PaymentResult)
def apply_payment(
    *,
    sale_id: int = Path(..., ge=1, description="The ID of the sale being paid"),
    payment_in: PaymentCreate,
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentResult:
    """
    Apply a payment to a sale.

    Merchants may record any tender; customers may pay with Receets Pay.
    The sale completes once settled payments cover its total.
    """
    result = payment_service.apply_payment(sale_id, payment_in.model_dump(exclude_none=True))
    return PaymentResult(
        sale=SaleResponse.model_validate(result.sale),
        payment=PaymentResponse.model_validate(result.payment),
        change_due=result.change_due,
    )


@router.get("/returns/eligible", response_model=EligibleReturnsResponse)
def get_eligible_returns(
    *,
    merchant_id: Optional[int] = Query(None, ge=1, description="Defaults to the authenticated merchant"),
    customer_id: Optional[int] = Query(None, ge=1, description="Customer ID"),
    customer_code: Optional[str] = Query(None, description="Customer code"),
    merchant: Principal = Depends(get_current_merchant),
    sale_service: SaleService = Depends(get_sale_service),
) -> EligibleReturnsResponse:
    """
    List a customer's completed purchases still inside the return period.
    """
    result = sale_service.get_eligible_returns(
        merchant_id or merchant.id, customer_id=customer_id, customer_code=customer_code
    )
    return EligibleReturnsResponse(
        return_period=result["return_period"],
        sales=[SaleResponse.model_validate(sale) for sale in result["sales"]],
    )


@router.post("/returns", response_model=SaleResponse, status_code=status.HTTP_201_CREATED)
def process_return(
    *,
    return_in: ReturnCreate = Body(...),
    merchant: Principal = Depends(get_current_merchant),
    refund_service: RefundService = Depends(get_refund_service),
) -> SaleResponse:
    """
    Create a draft return sale against a completed purchase.

    The return is paid out later with ``POST /payments/refund`` once it has
    been completed.
    """
    data = return_in.model_dump(exclude={"original_sale_id"})
    return_sale = refund_service.process_return(return_in.original_sale_id, data)
    return SaleResponse.model_validate(return_sale)
