# File: app/api/endpoints/qrcode.py
"""
Location QR code API endpoints for Receets.

Merchants issue and look up the code shown at each location; anyone who
scans a code can validate it.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path

from app.api.deps import get_current_merchant, get_location_service, get_public_location_service
from app.core.security import Principal
from app.db.models.enums import SaleType
from app.schemas.location import QRCodeIssue, QRCodeResponse, QRCodeValidate, QRCodeValidation
from app.services.location_service import LocationService

router = APIRouter()


@router.post("/locations/{location_id}", response_model=QRCodeResponse)
def issue_qr_code(
    *,
    location_id: int = Path(..., ge=1, description="The merchant's location"),
    issue_in: Optional[QRCodeIssue] = Body(None),
    merchant: Principal = Depends(get_current_merchant),
    location_service: LocationService = Depends(get_location_service),
) -> QRCodeResponse:
    """
    Issue a new QR code for a location; the previous code stops resolving.
    """
    sale_type = issue_in.type if issue_in else SaleType.PURCHASE
    return QRCodeResponse(
        **location_service.issue_qr_code(location_id, merchant.id, sale_type=sale_type)
    )


@router.get("/locations/{location_id}", response_model=QRCodeResponse)
def get_qr_code(
    *,
    location_id: int = Path(..., ge=1, description="The merchant's location"),
    merchant: Principal = Depends(get_current_merchant),
    location_service: LocationService = Depends(get_location_service),
) -> QRCodeResponse:
    """
    Get the QR code currently issued for a location.
    """
    return QRCodeResponse(**location_service.get_qr_code(location_id, merchant.id))


@router.post("/validate", response_model=QRCodeValidation)
def validate_qr_code(
    *,
    validate_in: QRCodeValidate,
    location_service: LocationService = Depends(get_public_location_service),
) -> QRCodeValidation:
    """
    Resolve a scanned code to its location and merchant. No login required.
    """
    return QRCodeValidation(**location_service.validate_qr_code(validate_in.code))
