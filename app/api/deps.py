# app/api/deps.py
"""
FastAPI dependencies for Receets.

Provides dependency functions for database sessions, principal
authentication/authorization, and service injection for API routes. The
gateway and event bus are read from ``app.state``, where ``create_app``
put them.
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core import security
from app.core.config import settings
from app.core.events import EventBus
from app.core.exceptions import PermissionDeniedException, UnauthorizedException
from app.core.security import Principal, SecurityContext
from app.db.session import get_db
from app.services.gateway import PaymentGateway
from app.services.location_service import LocationService
from app.services.payment_service import PaymentService
from app.services.refund_service import RefundService
from app.services.sale_service import SaleService

logger = logging.getLogger(__name__)

# --- Authentication ---
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_principal(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    """Get the authenticated merchant or customer from the bearer token."""
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException("Not authenticated")
    principal = security.decode_access_token(credentials.credentials)
    logger.debug(f"Authenticated {principal.type} {principal.id}")
    return principal


def get_current_merchant(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Require a merchant principal."""
    if not principal.is_merchant:
        logger.warning(f"{principal.type} {principal.id} attempted a merchant-only operation")
        raise PermissionDeniedException("Merchant access required")
    return principal


def get_current_customer(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Require a customer principal."""
    if not principal.is_customer:
        raise PermissionDeniedException("Customer access required")
    return principal


# --- Security Context ---
def get_security_context(principal: Principal = Depends(get_current_principal)) -> SecurityContext:
    """
    Provides a security context for services that need principal information.
    """
    return SecurityContext(principal)


# --- Application-scoped collaborators ---
def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


# --- Services ---
def get_sale_service(
        db: Session = Depends(get_db),
        security_context: SecurityContext = Depends(get_security_context),
        event_bus: EventBus = Depends(get_event_bus),
) -> SaleService:
    return SaleService(
        session=db,
        security_context=security_context,
        event_bus=event_bus,
        receipt_url_prefix=settings.RECEIPT_URL_PREFIX,
    )


def get_payment_service(
        db: Session = Depends(get_db),
        security_context: SecurityContext = Depends(get_security_context),
        gateway: PaymentGateway = Depends(get_gateway),
        event_bus: EventBus = Depends(get_event_bus),
) -> PaymentService:
    return PaymentService(
        session=db,
        gateway=gateway,
        security_context=security_context,
        event_bus=event_bus,
        currency=settings.GATEWAY_CURRENCY,
    )


def get_refund_service(
        db: Session = Depends(get_db),
        security_context: SecurityContext = Depends(get_security_context),
        gateway: PaymentGateway = Depends(get_gateway),
        event_bus: EventBus = Depends(get_event_bus),
) -> RefundService:
    return RefundService(
        session=db,
        gateway=gateway,
        security_context=security_context,
        event_bus=event_bus,
    )


def get_location_service(
        db: Session = Depends(get_db),
        security_context: SecurityContext = Depends(get_security_context),
        event_bus: EventBus = Depends(get_event_bus),
) -> LocationService:
    return LocationService(session=db, security_context=security_context, event_bus=event_bus)


def get_public_location_service(
        db: Session = Depends(get_db),
        event_bus: EventBus = Depends(get_event_bus),
) -> LocationService:
    """Location service for unauthenticated callers, such as a QR scan."""
    return LocationService(session=db, security_context=SecurityContext(), event_bus=event_bus)
