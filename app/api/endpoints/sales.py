# File: app/api/endpoints/sales.py
"""
Sales API endpoints for Receets.

This module provides endpoints for browsing sales as a merchant or a
customer, merchant analytics, fetching single sales and receipts, and
voiding unpaid sales.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query

from app.api.deps import get_current_customer, get_current_merchant, get_sale_service
from app.core.security import Principal
from app.db.models.enums import SaleStatus, SaleType
from app.schemas.sale import (
    ReceiptResponse,
    SaleListResponse,
    SaleResponse,
    SalesAnalytics,
    SaleVoid,
)
from app.services.sale_service import SaleService

router = APIRouter()


def _list_response(result) -> SaleListResponse:
    return SaleListResponse(
        items=[SaleResponse.model_validate(sale) for sale in result["items"]],
        pagination=result["pagination"],
    )


@router.get("/merchant", response_model=SaleListResponse)
def list_merchant_sales(
    *,
    merchant: Principal = Depends(get_current_merchant),
    sale_service: SaleService = Depends(get_sale_service),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Page size"),
    start_date: Optional[datetime] = Query(None, description="Created on or after"),
    end_date: Optional[datetime] = Query(None, description="Created on or before"),
    type: Optional[SaleType] = Query(None, description="Filter by sale type"),
    status: Optional[SaleStatus] = Query(None, description="Filter by sale status"),
    location_id: Optional[int] = Query(None, ge=1, description="Filter by location"),
    customer_id: Optional[int] = Query(None, ge=1, description="Filter by customer ID"),
    customer_code: Optional[str] = Query(None, description="Filter by customer code"),
    sort_by: str = Query("created_at", description="Sort column"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$", description="asc or desc"),
) -> SaleListResponse:
    """
    Retrieve the authenticated merchant's sales with filtering and pagination.
    """
    filters = {
        "merchant_id": merchant.id,
        "start_date": start_date,
        "end_date": end_date,
        "type": type,
        "status": status,
        "location_id": location_id,
        "customer_id": customer_id,
        "customer_code": customer_code,
    }
    result = sale_service.list_merchant_sales(
        filters, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
    )
    return _list_response(result)


@router.get("/customer", response_model=SaleListResponse)
def list_customer_sales(
    *,
    customer: Principal = Depends(get_current_customer),
    sale_service: SaleService = Depends(get_sale_service),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Page size"),
    start_date: Optional[datetime] = Query(None, description="Created on or after"),
    end_date: Optional[datetime] = Query(None, description="Created on or before"),
    type: Optional[SaleType] = Query(None, description="Filter by sale type"),
    status: Optional[SaleStatus] = Query(None, description="Filter by sale status"),
    merchant_id: Optional[int] = Query(None, ge=1, description="Filter by merchant"),
    sort_by: str = Query("created_at", description="Sort column"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$", description="asc or desc"),
) -> SaleListResponse:
    """
    Retrieve the authenticated customer's sales with filtering and pagination.
    """
    filters = {
        "customer_id": customer.id,
        "start_date": start_date,
        "end_date": end_date,
        "type": type,
        "status": status,
        "merchant_id": merchant_id,
    }
    result = sale_service.list_customer_sales(
        filters, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order
    )
    return _list_response(result)


@router.get("/analytics", response_model=SalesAnalytics)
def get_sales_analytics(
    *,
    merchant: Principal = Depends(get_current_merchant),
    sale_service: SaleService = Depends(get_sale_service),
    start_date: Optional[datetime] = Query(None, description="Created on or after"),
    end_date: Optional[datetime] = Query(None, description="Created on or before"),
    location_id: Optional[int] = Query(None, ge=1, description="Restrict to a location"),
) -> SalesAnalytics:
    """
    Summarize the authenticated merchant's sales, returns and tenders.
    """
    return SalesAnalytics(
        **sale_service.get_sales_analytics(
            merchant.id, start_date=start_date, end_date=end_date, location_id=location_id
        )
    )


@router.get("/{sale_id}", response_model=SaleResponse)
def get_sale(
    *,
    sale_id: int = Path(..., ge=1, description="The ID of the sale to retrieve"),
    sale_service: SaleService = Depends(get_sale_service),
) -> SaleResponse:
    """
    Get a sale with its line items and payments.

    Visible to the owning merchant and the linked customer.
    """
    return SaleResponse.model_validate(sale_service.get_sale(sale_id))


@router.get("/{sale_id}/receipt", response_model=ReceiptResponse)
def get_receipt(
    *,
    sale_id: int = Path(..., ge=1, description="The ID of the sale"),
    sale_service: SaleService = Depends(get_sale_service),
) -> ReceiptResponse:
    """
    Generate receipt data for a sale.

    The receipt URL is assigned on the first request and reused afterwards.
    """
    return ReceiptResponse(**sale_service.generate_receipt(sale_id))


@router.put("/{sale_id}/void", response_model=SaleResponse)
def void_sale(
    *,
    sale_id: int = Path(..., ge=1, description="The ID of the sale to void"),
    void_in: Optional[SaleVoid] = Body(None),
    merchant: Principal = Depends(get_current_merchant),
    sale_service: SaleService = Depends(get_sale_service),
) -> SaleResponse:
    """
    Void a sale that has not been completed.

    Completed sales with payments must be returned instead.
    """
    reason = void_in.reason if void_in else None
    return SaleResponse.model_validate(sale_service.void_sale(sale_id, reason))
