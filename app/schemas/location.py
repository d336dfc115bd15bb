# File: app/schemas/location.py
"""
Location QR code schemas for the Receets API.
"""

from typing import Optional

from pydantic import BaseModel, Field

from app.db.models.enums import SaleType


class QRCodeIssue(BaseModel):
    type: SaleType = Field(SaleType.PURCHASE, description="Workflow started by the scan")


class QRCodeData(BaseModel):
    """Payload encoded in the QR image."""

    merchant_id: int
    location_id: int
    type: Optional[SaleType] = None
    code: str


class QRCodeResponse(BaseModel):
    qr_code_id: str
    data: QRCodeData


class QRCodeValidate(BaseModel):
    code: Optional[str] = Field(None, description="Code read from the scanned QR")


class QRCodeValidation(BaseModel):
    """Location and merchant a scanned code belongs to."""

    merchant_id: int
    merchant_name: str
    location_id: int
    location_name: str
