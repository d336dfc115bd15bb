# File: app/services/location_service.py
"""
Checkout QR codes for merchant locations.

A merchant issues a code for each store location; the QR shown at the till
carries that code. Scanning it resolves the location and merchant so a
customer can be linked to the sale rung up there. Rendering the QR image
belongs to the clients.
"""

from typing import Any, Dict, Optional
import logging
import uuid

from sqlalchemy.orm import Session

from app.core.exceptions import (
    EntityNotFoundException,
    LocationNotFoundException,
    PermissionDeniedException,
    QRCodeNotFoundException,
    ValidationException,
)
from app.db.models.enums import SaleType
from app.db.models.merchant import Location
from app.repositories.merchant_repository import LocationRepository
from app.services.base_service import BaseService

logger = logging.getLogger(__name__)


class LocationService(BaseService[Location]):
    """
    Service for issuing and validating location QR codes.

    Issuing requires the owning merchant; validation is open to anyone who
    scanned a code.
    """

    def __init__(
        self,
        session: Session,
        repository: Optional[LocationRepository] = None,
        security_context=None,
        event_bus=None,
    ):
        super().__init__(
            session,
            repository=repository or LocationRepository(session),
            security_context=security_context,
            event_bus=event_bus,
        )

    def issue_qr_code(
        self,
        location_id: int,
        merchant_id: Optional[int] = None,
        sale_type: SaleType = SaleType.PURCHASE,
    ) -> Dict[str, Any]:
        """
        Assign a new QR code to a location, replacing any earlier one.

        Args:
            location_id: Location to issue the code for
            merchant_id: Owning merchant (defaults to the current merchant)
            sale_type: Workflow the scan starts, echoed in the QR payload

        Returns:
            Dictionary with ``qr_code_id`` and the ``data`` encoded in the QR

        Raises:
            LocationNotFoundException: If the location is not the merchant's
            PermissionDeniedException: If the principal is not the merchant
        """
        merchant_id = self._merchant_id(merchant_id)

        with self.transaction():
            location = self._get_location(location_id, merchant_id)
            previous = location.qr_code
            location.qr_code = str(uuid.uuid4())
            self.session.flush()

        logger.info(
            f"Issued QR code for location {location_id}",
            extra={
                "merchant_id": merchant_id,
                "location_id": location_id,
                "replaced": previous is not None,
            },
        )
        return {
            "qr_code_id": location.qr_code,
            "data": {
                "merchant_id": merchant_id,
                "location_id": location_id,
                "type": SaleType(sale_type).value,
                "code": location.qr_code,
            },
        }

    def get_qr_code(self, location_id: int, merchant_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Return the QR code currently issued for a location.

        Raises:
            EntityNotFoundException: If no code has been issued yet
        """
        merchant_id = self._merchant_id(merchant_id)
        location = self._get_location(location_id, merchant_id)
        if not location.qr_code:
            raise EntityNotFoundException("Location QR code", location_id)
        return {
            "qr_code_id": location.qr_code,
            "data": {
                "merchant_id": merchant_id,
                "location_id": location_id,
                "code": location.qr_code,
            },
        }

    def validate_qr_code(self, code: Optional[str]) -> Dict[str, Any]:
        """
        Resolve a scanned QR code to its location and merchant.

        Raises:
            ValidationException: If no code was given
            QRCodeNotFoundException: If the code matches no location
            PermissionDeniedException: If the location or its merchant is inactive
        """
        code = (code or "").strip()
        if not code:
            raise ValidationException("QR code is required", {"code": ["Field required"]})

        location = self.repository.get_by_qr_code(code)
        if location is None:
            logger.info("Scan of unknown QR code")
            raise QRCodeNotFoundException(code)
        if not location.is_active or not location.merchant.is_active:
            raise PermissionDeniedException(
                "This location is inactive", resource_type="Location", resource_id=location.id
            )

        return {
            "merchant_id": location.merchant_id,
            "merchant_name": location.merchant.business_name,
            "location_id": location.id,
            "location_name": location.name,
        }

    def _merchant_id(self, merchant_id: Optional[int]) -> int:
        principal = self.security_context.current_user if self.security_context else None
        if merchant_id is None and principal is not None and principal.is_merchant:
            merchant_id = principal.id
        if merchant_id is None:
            raise ValidationException("Merchant is required", {"merchant_id": ["Field required"]})
        self._require_merchant(merchant_id, resource_type="Location")
        return merchant_id

    def _get_location(self, location_id: int, merchant_id: int) -> Location:
        location = self.repository.get_for_merchant(location_id, merchant_id)
        if not location:
            raise LocationNotFoundException(location_id, merchant_id)
        return location
