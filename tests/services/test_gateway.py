# tests/services/test_gateway.py
"""
Unit tests for the Stripe gateway adapter.

The StripeClient is replaced with a mock, so no real API calls are made.
"""

from types import SimpleNamespace
from unittest.mock import Mock

import pytest
import stripe

from app.core.config import Settings
from app.services.gateway import (
    GatewayError,
    StripeGateway,
    UnconfiguredGateway,
    build_gateway,
)


@pytest.fixture
def client():
    return Mock()


@pytest.fixture
def stripe_gateway(client):
    return StripeGateway(client=client)


def test_existing_customer_profile_is_reused(stripe_gateway, client):
    client.customers.list.return_value = SimpleNamespace(data=[SimpleNamespace(id="cus_existing")])

    profile_id = stripe_gateway.create_or_get_customer_profile("ada@example.com", "Ada Lovelace")

    assert profile_id == "cus_existing"
    client.customers.list.assert_called_once_with(params={"email": "ada@example.com", "limit": 1})
    client.customers.create.assert_not_called()


def test_customer_profile_is_created(stripe_gateway, client):
    client.customers.list.return_value = SimpleNamespace(data=[])
    client.customers.create.return_value = SimpleNamespace(id="cus_new")

    profile_id = stripe_gateway.create_or_get_customer_profile(
        "ada@example.com", "Ada Lovelace", phone="555-010-2000", metadata={"customerCode": "CUST001"}
    )

    assert profile_id == "cus_new"
    params = client.customers.create.call_args.kwargs["params"]
    assert params == {
        "email": "ada@example.com",
        "name": "Ada Lovelace",
        "phone": "555-010-2000",
        "metadata": {"customerCode": "CUST001"},
    }


def test_payment_intent_parameters_and_card_details(stripe_gateway, client):
    card = SimpleNamespace(brand="visa", last4="4242")
    client.payment_intents.create.return_value = SimpleNamespace(
        id="pi_123",
        status="succeeded",
        latest_charge=SimpleNamespace(payment_method_details=SimpleNamespace(card=card)),
    )

    intent = stripe_gateway.create_payment_intent(
        amount_minor_units=2100,
        currency="usd",
        customer_profile_id="cus_1",
        payment_method_id="pm_card_visa",
        metadata={"saleId": "7"},
        description="Payment for sale SALE-1",
        destination_account="acct_123",
    )

    assert intent.id == "pi_123"
    assert intent.succeeded
    assert (intent.card_brand, intent.last4) == ("visa", "4242")

    params = client.payment_intents.create.call_args.kwargs["params"]
    assert params["amount"] == 2100
    assert params["customer"] == "cus_1"
    assert params["confirm"] is True
    assert params["payment_method"] == "pm_card_visa"
    assert params["transfer_data"] == {"destination": "acct_123"}
    assert params["metadata"] == {"saleId": "7"}


def test_payment_intent_without_charge_details(stripe_gateway, client):
    client.payment_intents.create.return_value = SimpleNamespace(
        id="pi_456", status="processing", latest_charge=None
    )

    intent = stripe_gateway.create_payment_intent(2100, "usd", "cus_1", None, {})

    assert not intent.succeeded
    assert intent.card_brand is None
    params = client.payment_intents.create.call_args.kwargs["params"]
    assert "payment_method" not in params
    assert "transfer_data" not in params


def test_declined_card_becomes_gateway_error(stripe_gateway, client):
    client.payment_intents.create.side_effect = stripe.CardError(
        "Your card was declined.", None, "card_declined"
    )

    with pytest.raises(GatewayError) as exc_info:
        stripe_gateway.create_payment_intent(2100, "usd", "cus_1", None, {})

    assert exc_info.value.message == "Your card was declined."
    assert exc_info.value.code == "card_declined"


def test_refund_parameters(stripe_gateway, client):
    client.refunds.create.return_value = SimpleNamespace(id="re_1", status="succeeded", amount=2000)

    refund = stripe_gateway.create_refund(
        "pi_123", 2000, reason="Damaged", metadata={"saleId": "9"}
    )

    assert (refund.id, refund.status, refund.amount_minor_units) == ("re_1", "succeeded", 2000)
    params = client.refunds.create.call_args.kwargs["params"]
    assert params == {
        "payment_intent": "pi_123",
        "amount": 2000,
        "reason": "requested_by_customer",
        "metadata": {"saleId": "9", "reason": "Damaged"},
    }


def test_refund_error_becomes_gateway_error(stripe_gateway, client):
    client.refunds.create.side_effect = stripe.InvalidRequestError(
        "Charge pi_123 has already been refunded.", "payment_intent", code="charge_already_refunded"
    )

    with pytest.raises(GatewayError) as exc_info:
        stripe_gateway.create_refund("pi_123", 2000)

    assert exc_info.value.code == "charge_already_refunded"


def test_stripe_gateway_requires_a_key():
    with pytest.raises(ValueError):
        StripeGateway()


def test_build_gateway_without_key_is_unconfigured():
    gateway = build_gateway(Settings(STRIPE_SECRET_KEY=None))

    assert isinstance(gateway, UnconfiguredGateway)
    with pytest.raises(GatewayError) as exc_info:
        gateway.create_refund("pi_123", 100)
    assert exc_info.value.code == "gateway_unconfigured"


def test_build_gateway_with_key_uses_stripe():
    gateway = build_gateway(Settings(STRIPE_SECRET_KEY="sk_test_123"))

    assert isinstance(gateway, StripeGateway)
