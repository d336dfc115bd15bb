# tests/test_db_models.py
from decimal import Decimal

import pytest
from sqlalchemy import inspect

from app.db.models import (
    Customer,
    Location,
    Merchant,
    ModelValidationError,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Sale,
    SaleStatus,
)


def test_tables_are_created(database):
    tables = set(inspect(database.engine).get_table_names())

    assert {"merchants", "locations", "customers", "sales", "line_items", "payments"} <= tables


def test_contact_validation():
    assert Customer(first_name="A", last_name="B", email="Ada@Example.COM").email == "ada@example.com"

    with pytest.raises(ModelValidationError):
        Customer(first_name="A", last_name="B", email="not-an-email")
    with pytest.raises(ModelValidationError):
        Merchant(business_name="X", email="x@example.com", phone="12")


@pytest.mark.parametrize("days", [0, 91])
def test_return_period_bounds(days):
    with pytest.raises(ModelValidationError):
        Merchant(business_name="X", email="x@example.com", return_period=days)


def test_location_address_line():
    location = Location(name="Main", street="1 Main St", city="Springfield", zip_code="12345")

    assert location.address_line == "1 Main St, Springfield, 12345"


def test_amount_paid_counts_settled_payments_only():
    sale = Sale(total=Decimal("30.00"))
    sale.payments.append(Payment(method=PaymentMethod.CASH, amount=Decimal("10.00"), status=PaymentStatus.COMPLETED))
    sale.payments.append(
        Payment(method=PaymentMethod.RECEETS_PAY, amount=Decimal("15.00"), status=PaymentStatus.PARTIALLY_REFUNDED)
    )
    sale.payments.append(Payment(method=PaymentMethod.RECEETS_PAY, amount=Decimal("5.00"), status=PaymentStatus.PENDING))
    sale.payments.append(Payment(method=PaymentMethod.CARD, amount=Decimal("5.00"), status=PaymentStatus.FAILED))

    assert sale.amount_paid == Decimal("25.00")
    assert not sale.is_settled
    assert len(sale.pending_gateway_payments()) == 1
    assert [p.position for p in sale.payments] == [0, 1, 2, 3]


def test_refunded_total_sums_negative_payments():
    sale = Sale(total=Decimal("-20.00"))
    sale.payments.append(Payment(method=PaymentMethod.CASH, amount=Decimal("-15.00"), status=PaymentStatus.COMPLETED))
    sale.payments.append(Payment(method=PaymentMethod.CASH, amount=Decimal("-5.00"), status=PaymentStatus.COMPLETED))

    assert sale.refunded_total == Decimal("20.00")
    assert sale.is_settled


def test_payment_refund_amount_cannot_exceed_amount():
    payment = Payment(method=PaymentMethod.RECEETS_PAY, amount=Decimal("10.00"))
    payment.refund_amount = Decimal("4.00")

    assert payment.refundable_amount == Decimal("6.00")
    with pytest.raises(ModelValidationError):
        payment.refund_amount = Decimal("10.01")


def test_sale_version_starts_at_one(session, seed):
    sale = Sale(
        sale_number="SALE-TEST",
        merchant_id=seed.merchant_id,
        location_id=seed.location_id,
    )
    session.add(sale)
    session.commit()

    assert sale.version == 1
    assert sale.status == SaleStatus.DRAFT
    assert sale.to_dict()["status"] == "draft"
    assert sale.promo is None
