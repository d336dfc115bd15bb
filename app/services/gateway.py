# File: app/services/gateway.py
"""
Payment gateway adapter.

Services talk to the gateway through the ``PaymentGateway`` interface; the
Stripe implementation uses a per-instance ``stripe.StripeClient`` so no
global API key is set. Amounts cross this boundary in minor units (cents).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe

from app.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayIntent:
    id: str
    status: str
    card_brand: Optional[str] = None
    last4: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class GatewayRefund:
    id: str
    status: str
    amount_minor_units: int


class GatewayError(Exception):
    """Raised by gateway adapters for network errors, declines and timeouts."""

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(message)


class PaymentGateway(ABC):
    """Capability interface the payment and refund services depend on."""

    @abstractmethod
    def create_or_get_customer_profile(
        self,
        email: str,
        name: str,
        phone: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Return the gateway customer profile ID for ``email``, creating it if needed."""

    @abstractmethod
    def create_payment_intent(
        self,
        amount_minor_units: int,
        currency: str,
        customer_profile_id: str,
        payment_method_id: Optional[str],
        metadata: Dict[str, str],
        description: Optional[str] = None,
        destination_account: Optional[str] = None,
    ) -> GatewayIntent:
        """Create and confirm a payment intent."""

    @abstractmethod
    def create_refund(
        self,
        payment_intent_id: str,
        amount_minor_units: int,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> GatewayRefund:
        """Refund part or all of a captured payment intent."""


class UnconfiguredGateway(PaymentGateway):
    """Used when no gateway credentials are configured; every call fails cleanly."""

    def _fail(self):
        raise GatewayError("Payment gateway is not configured", code="gateway_unconfigured")

    def create_or_get_customer_profile(self, email, name, phone=None, metadata=None) -> str:
        self._fail()

    def create_payment_intent(
        self,
        amount_minor_units,
        currency,
        customer_profile_id,
        payment_method_id,
        metadata,
        description=None,
        destination_account=None,
    ) -> GatewayIntent:
        self._fail()

    def create_refund(self, payment_intent_id, amount_minor_units, reason=None, metadata=None) -> GatewayRefund:
        self._fail()


class StripeGateway(PaymentGateway):
    """
    Stripe implementation of the payment gateway.

    Args:
        api_key: Stripe secret key
        timeout_seconds: Network timeout for each Stripe request
        client: Pre-built StripeClient (tests inject a mock here)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: int = 30,
        client: Optional[Any] = None,
    ):
        if client is None:
            if not api_key:
                raise ValueError("A Stripe API key is required")
            client = stripe.StripeClient(
                api_key,
                http_client=stripe.new_default_http_client(timeout=timeout_seconds),
                max_network_retries=0,
            )
        self.client = client

    def create_or_get_customer_profile(
        self,
        email: str,
        name: str,
        phone: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        try:
            existing = self.client.customers.list(params={"email": email, "limit": 1})
            if existing.data:
                customer_id = existing.data[0].id
                logger.info(f"Reusing Stripe customer {customer_id}")
                return customer_id

            params: Dict[str, Any] = {"email": email, "name": name}
            if phone:
                params["phone"] = phone
            if metadata:
                params["metadata"] = metadata
            customer = self.client.customers.create(params=params)
            logger.info(f"Created Stripe customer {customer.id}")
            return customer.id
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer: {str(e)}")
            raise GatewayError(e.user_message or str(e), code=e.code) from e

    def create_payment_intent(
        self,
        amount_minor_units: int,
        currency: str,
        customer_profile_id: str,
        payment_method_id: Optional[str],
        metadata: Dict[str, str],
        description: Optional[str] = None,
        destination_account: Optional[str] = None,
    ) -> GatewayIntent:
        params: Dict[str, Any] = {
            "amount": amount_minor_units,
            "currency": currency,
            "customer": customer_profile_id,
            "confirm": True,
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
            "expand": ["latest_charge"],
        }
        if payment_method_id:
            params["payment_method"] = payment_method_id
        if description:
            params["description"] = description
        if destination_account:
            params["transfer_data"] = {"destination": destination_account}

        try:
            intent = self.client.payment_intents.create(params=params)
        except stripe.StripeError as e:
            logger.error(f"Stripe payment intent failed: {str(e)}")
            raise GatewayError(e.user_message or str(e), code=e.code) from e

        card_brand, last4 = self._card_details(intent)
        logger.info(f"Created Stripe payment intent {intent.id} with status {intent.status}")
        return GatewayIntent(id=intent.id, status=intent.status, card_brand=card_brand, last4=last4)

    def create_refund(
        self,
        payment_intent_id: str,
        amount_minor_units: int,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> GatewayRefund:
        params: Dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "amount": amount_minor_units,
            "reason": "requested_by_customer",
            "metadata": dict(metadata or {}),
        }
        if reason:
            params["metadata"]["reason"] = reason

        try:
            refund = self.client.refunds.create(params=params)
        except stripe.StripeError as e:
            logger.error(f"Stripe refund failed for {payment_intent_id}: {str(e)}")
            raise GatewayError(e.user_message or str(e), code=e.code) from e

        logger.info(f"Created Stripe refund {refund.id} for {payment_intent_id}")
        return GatewayRefund(id=refund.id, status=refund.status, amount_minor_units=refund.amount)

    @staticmethod
    def _card_details(intent: Any):
        """Card brand and last4 from the expanded latest charge, when present."""
        charge = getattr(intent, "latest_charge", None)
        details = getattr(charge, "payment_method_details", None)
        card = getattr(details, "card", None)
        if card is None:
            return None, None
        return getattr(card, "brand", None), getattr(card, "last4", None)


def build_gateway(app_settings: Settings) -> PaymentGateway:
    """Gateway for the configured credentials."""
    if app_settings.STRIPE_SECRET_KEY:
        return StripeGateway(
            api_key=app_settings.STRIPE_SECRET_KEY,
            timeout_seconds=app_settings.GATEWAY_TIMEOUT_SECONDS,
        )
    logger.warning("STRIPE_SECRET_KEY is not set; gateway payments are disabled")
    return UnconfiguredGateway()
