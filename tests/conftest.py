# tests/conftest.py
"""
Shared fixtures: an in-memory database per test, seeded merchants and
customers, a recording fake gateway, services and an API client.
"""

from types import SimpleNamespace
from typing import Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from app.core.events import EventBus
from app.core.security import (
    CUSTOMER,
    MERCHANT,
    Principal,
    SecurityContext,
    create_access_token,
)
from app.db.models import Customer, Location, Merchant
from app.db.session import Database
from app.main import create_app
from app.services.gateway import GatewayError, GatewayIntent, GatewayRefund, PaymentGateway
from app.services.payment_service import PaymentService
from app.services.refund_service import RefundService
from app.services.sale_service import SaleService


class FakeGateway(PaymentGateway):
    """Gateway double that records every call and can be told to fail."""

    def __init__(self):
        self.profiles: List[Dict] = []
        self.intents: List[Dict] = []
        self.refunds: List[Dict] = []
        self.fail_intent: Optional[str] = None
        self.fail_refund: Optional[str] = None
        self.intent_status = "succeeded"
        # Called inside create_refund, before the refund is issued
        self.before_refund: Optional[Callable[[], None]] = None

    def create_or_get_customer_profile(self, email, name, phone=None, metadata=None) -> str:
        self.profiles.append({"email": email, "name": name, "metadata": metadata})
        return f"cus_{len(self.profiles)}"

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
        if self.fail_intent:
            raise GatewayError(self.fail_intent, code="card_declined")
        self.intents.append(
            {
                "amount": amount_minor_units,
                "currency": currency,
                "customer": customer_profile_id,
                "payment_method": payment_method_id,
                "metadata": metadata,
                "destination": destination_account,
            }
        )
        return GatewayIntent(
            id=f"pi_test_{len(self.intents)}",
            status=self.intent_status,
            card_brand="visa",
            last4="4242",
        )

    def create_refund(self, payment_intent_id, amount_minor_units, reason=None, metadata=None) -> GatewayRefund:
        if self.before_refund is not None:
            hook, self.before_refund = self.before_refund, None
            hook()
        if self.fail_refund:
            raise GatewayError(self.fail_refund, code="refund_failed")
        self.refunds.append(
            {
                "payment_intent": payment_intent_id,
                "amount": amount_minor_units,
                "reason": reason,
                "metadata": metadata,
            }
        )
        return GatewayRefund(
            id=f"re_test_{len(self.refunds)}",
            status="succeeded",
            amount_minor_units=amount_minor_units,
        )


@pytest.fixture()
def database():
    db = Database("sqlite:///:memory:")
    db.create_all()
    yield db
    db.drop_all()
    db.dispose()


@pytest.fixture()
def session(database):
    db = database.new_session()
    yield db
    db.close()


@pytest.fixture()
def seed(session):
    merchant = Merchant(
        business_name="Corner Coffee",
        email="owner@cornercoffee.example",
        phone="555-010-2000",
        return_period=7,
        gateway_account_id="acct_123",
    )
    location = Location(merchant=merchant, name="Main Street", street="1 Main St", city="Springfield")
    other_merchant = Merchant(business_name="Book Nook", email="hello@booknook.example")
    other_location = Location(merchant=other_merchant, name="Downtown")
    customer = Customer(
        first_name="Ada",
        last_name="Lovelace",
        email="ada@example.com",
        customer_code="CUST001",
    )
    other_customer = Customer(
        first_name="Alan",
        last_name="Turing",
        email="alan@example.com",
        customer_code="CUST002",
    )
    session.add_all([merchant, location, other_merchant, other_location, customer, other_customer])
    session.flush()

    ids = SimpleNamespace(
        merchant_id=merchant.id,
        location_id=location.id,
        other_merchant_id=other_merchant.id,
        other_location_id=other_location.id,
        customer_id=customer.id,
        other_customer_id=other_customer.id,
    )
    session.commit()
    return ids


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def event_bus():
    return EventBus()


@pytest.fixture()
def published(event_bus):
    """Every event published on the bus, in order."""
    events = []
    for name in (
        "SaleInitiated",
        "SaleUpdated",
        "PaymentApplied",
        "SaleCompleted",
        "SaleVoided",
        "ReturnInitiated",
        "RefundProcessed",
    ):
        event_bus.subscribe(name, events.append)
    return events


@pytest.fixture()
def merchant_context(seed):
    return SecurityContext(Principal(type=MERCHANT, id=seed.merchant_id))


@pytest.fixture()
def customer_context(seed):
    return SecurityContext(Principal(type=CUSTOMER, id=seed.customer_id))


@pytest.fixture()
def sale_service(session, merchant_context, event_bus):
    return SaleService(session, security_context=merchant_context, event_bus=event_bus)


@pytest.fixture()
def payment_service(session, merchant_context, gateway, event_bus):
    return PaymentService(
        session, gateway=gateway, security_context=merchant_context, event_bus=event_bus
    )


@pytest.fixture()
def refund_service(session, merchant_context, gateway, event_bus):
    return RefundService(
        session, gateway=gateway, security_context=merchant_context, event_bus=event_bus
    )


@pytest.fixture()
def new_sale(seed, sale_service):
    """Factory for draft purchases at the seeded merchant's location."""

    def factory(line_items=None, **data):
        payload = {
            "merchant_id": seed.merchant_id,
            "location_id": seed.location_id,
            "customer_id": seed.customer_id,
            "line_items": line_items
            if line_items is not None
            else [
                {
                    "product_id": "P1",
                    "product_name": "Latte",
                    "quantity": 2,
                    "unit_price": "10.00",
                    "tax": "1.00",
                }
            ],
        }
        payload.update(data)
        return sale_service.initiate_sale(payload)

    return factory


@pytest.fixture()
def app(database, gateway, event_bus):
    return create_app(database=database, gateway=gateway, event_bus=event_bus)


@pytest.fixture()
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def merchant_headers(seed):
    token = create_access_token(MERCHANT, seed.merchant_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def other_merchant_headers(seed):
    token = create_access_token(MERCHANT, seed.other_merchant_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def customer_headers(seed):
    token = create_access_token(CUSTOMER, seed.customer_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def create_sale(client, seed, merchant_headers):
    """POST a draft sale through the API and return its JSON."""

    def factory(line_items=None, **data):
        payload = {
            "location_id": seed.location_id,
            "customer_id": seed.customer_id,
            "line_items": line_items
            if line_items is not None
            else [
                {
                    "product_id": "P1",
                    "product_name": "Latte",
                    "quantity": 2,
                    "unit_price": "10.00",
                    "tax": "1.00",
                }
            ],
        }
        payload.update(data)
        response = client.post("/api/v1/pos/sales", json=payload, headers=merchant_headers)
        assert response.status_code == 201, response.text
        return response.json()

    return factory
