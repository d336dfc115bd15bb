# tests/services/test_refund_service.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.core.events import RefundProcessed, ReturnInitiated
from app.core.exceptions import (
    InvalidStateException,
    PermissionDeniedException,
    RefundGatewayException,
    SaleNotFoundException,
    ValidationException,
)
from app.core.security import MERCHANT, Principal, SecurityContext
from app.db.models import Sale
from app.db.models.enums import PaymentMethod, PaymentStatus, SaleStatus, SaleType
from app.services.refund_service import RefundService

JACKET = {"product_id": "J1", "product_name": "Jacket", "quantity": 2, "unit_price": "25.00"}


def return_line(price="20.00", quantity=1):
    return {"product_id": "J1", "product_name": "Jacket", "quantity": quantity, "unit_price": price}


@pytest.fixture()
def paid_purchase(new_sale, payment_service):
    """A 50.00 purchase settled with the given method."""

    def factory(method="receets_pay"):
        sale = new_sale(line_items=[JACKET])
        payment_service.apply_payment(sale.id, {"method": method, "amount": "50.00"})
        return sale.id

    return factory


@pytest.fixture()
def mixed_purchase(new_sale, payment_service):
    """A 50.00 purchase paid 30.00 through the gateway and 20.00 in cash."""

    def factory():
        sale = new_sale(line_items=[JACKET])
        payment_service.apply_payment(sale.id, {"method": "receets_pay", "amount": "30.00"})
        payment_service.apply_payment(sale.id, {"method": "cash", "amount": "20.00"})
        return sale.id

    return factory


@pytest.fixture()
def completed_return(refund_service, sale_service):
    """A completed return sale for ``quantity`` jackets at ``price`` against ``original_id``."""

    def factory(original_id, price="20.00", quantity=1):
        return_sale = refund_service.process_return(
            original_id, {"line_items": [return_line(price, quantity)]}
        )
        sale_service.update_sale(return_sale.id, {"status": "completed"})
        return return_sale.id

    return factory


def test_process_return_creates_negative_draft_sale(paid_purchase, refund_service, published, seed):
    original_id = paid_purchase()

    return_sale = refund_service.process_return(
        original_id,
        {"line_items": [return_line()], "notes": "Wrong size"},
    )

    assert return_sale.type == SaleType.RETURN
    assert return_sale.status == SaleStatus.DRAFT
    assert return_sale.sale_number.startswith("RET-")
    assert return_sale.original_sale_id == original_id
    assert return_sale.customer_id == seed.customer_id
    assert return_sale.location_id == seed.location_id
    assert return_sale.total == Decimal("-20.00")
    assert return_sale.line_items[0].quantity == -1
    assert return_sale.notes == "Wrong size"

    events = [e for e in published if isinstance(e, ReturnInitiated)]
    assert events[0].original_sale_id == original_id


def test_gateway_refund_annotates_original_payment(
    paid_purchase, completed_return, refund_service, gateway, session, published
):
    original_id = paid_purchase()
    return_id = completed_return(original_id)

    result = refund_service.process_refund(return_id, Decimal("20.00"), "Damaged")

    assert result.refund["id"] == "re_test_1"
    assert result.refund["amount"] == Decimal("20.00")
    assert result.refund["method"] == PaymentMethod.RECEETS_PAY.value
    assert result.refund["payment_intent_id"] == "pi_test_1"

    refund_call = gateway.refunds[0]
    assert refund_call["payment_intent"] == "pi_test_1"
    assert refund_call["amount"] == 2000
    assert refund_call["reason"] == "Damaged"
    assert refund_call["metadata"] == {"saleId": str(return_id), "originalSaleId": str(original_id)}

    session.expire_all()
    original = session.get(Sale, original_id)
    payment = original.payments[0]
    assert payment.refund_amount == Decimal("20.00")
    assert payment.refund_reason == "Damaged"
    assert payment.refund_date is not None
    assert payment.status == PaymentStatus.PARTIALLY_REFUNDED
    assert original.status == SaleStatus.PARTIALLY_REFUNDED

    return_sale = session.get(Sale, return_id)
    assert [(p.method, p.amount, p.transaction_id) for p in return_sale.payments] == [
        (PaymentMethod.RECEETS_PAY, Decimal("-20.00"), "re_test_1")
    ]
    assert return_sale.refunded_total == Decimal("20.00")

    events = [e for e in published if isinstance(e, RefundProcessed)]
    assert events[0].via_gateway is True
    assert events[0].original_sale_id == original_id


def test_full_gateway_refund_marks_original_refunded(paid_purchase, completed_return, refund_service, session):
    original_id = paid_purchase()
    return_id = completed_return(original_id, price="50.00")

    refund_service.process_refund(return_id, "50.00")

    session.expire_all()
    original = session.get(Sale, original_id)
    assert original.payments[0].status == PaymentStatus.REFUNDED
    assert original.status == SaleStatus.REFUNDED


def test_refunds_accumulate_up_to_the_return_total(paid_purchase, completed_return, refund_service, gateway):
    original_id = paid_purchase()
    return_id = completed_return(original_id)

    refund_service.process_refund(return_id, "15.00")
    refund_service.process_refund(return_id, "5.00")

    with pytest.raises(ValidationException):
        refund_service.process_refund(return_id, "0.01")
    assert [r["amount"] for r in gateway.refunds] == [1500, 500]


def test_second_return_of_partially_refunded_purchase(paid_purchase, completed_return, refund_service, session):
    original_id = paid_purchase()
    refund_service.process_refund(completed_return(original_id), "20.00")

    second_return_id = completed_return(original_id, price="30.00")
    refund_service.process_refund(second_return_id, "30.00")

    session.expire_all()
    original = session.get(Sale, original_id)
    assert original.payments[0].refund_amount == Decimal("50.00")
    assert original.status == SaleStatus.REFUNDED


def test_gateway_refund_cannot_exceed_original_payment(
    mixed_purchase, completed_return, refund_service, gateway
):
    return_id = completed_return(mixed_purchase(), price="25.00", quantity=2)

    with pytest.raises(ValidationException) as exc_info:
        refund_service.process_refund(return_id, "50.00")

    assert "30.00" in exc_info.value.message
    assert gateway.refunds == []


def test_refund_is_paid_in_cash_once_gateway_payment_is_exhausted(
    mixed_purchase, completed_return, refund_service, gateway, session
):
    original_id = mixed_purchase()
    return_id = completed_return(original_id, price="25.00", quantity=2)

    first = refund_service.process_refund(return_id, "30.00")
    second = refund_service.process_refund(return_id, "20.00")

    assert first.refund["method"] == PaymentMethod.RECEETS_PAY.value
    assert second.refund["method"] == PaymentMethod.CASH.value
    assert second.original_sale is None
    assert [r["amount"] for r in gateway.refunds] == [3000]

    session.expire_all()
    original = session.get(Sale, original_id)
    gateway_payment, cash_payment = original.payments
    assert gateway_payment.refund_amount == Decimal("30.00")
    assert gateway_payment.status == PaymentStatus.REFUNDED
    assert cash_payment.refund_amount == Decimal("0.00")
    assert original.status == SaleStatus.PARTIALLY_REFUNDED
    assert session.get(Sale, return_id).refunded_total == Decimal("50.00")


def test_gateway_refund_failure_changes_nothing(
    paid_purchase, completed_return, refund_service, gateway, session
):
    original_id = paid_purchase()
    return_id = completed_return(original_id)
    gateway.fail_refund = "Charge already refunded"

    with pytest.raises(RefundGatewayException) as exc_info:
        refund_service.process_refund(return_id, "20.00")

    assert exc_info.value.details["original_error"] == "refund_failed"
    session.expire_all()
    original = session.get(Sale, original_id)
    assert original.status == SaleStatus.COMPLETED
    assert original.payments[0].refund_amount == Decimal("0.00")
    assert session.get(Sale, return_id).payments == []


def test_cash_refund_is_recorded_on_return_only(
    paid_purchase, completed_return, refund_service, gateway, session, published
):
    original_id = paid_purchase(method="cash")
    return_id = completed_return(original_id)

    result = refund_service.process_refund(return_id, "20.00", "Changed mind")

    assert result.refund["id"].startswith("REFUND-")
    assert result.refund["method"] == PaymentMethod.CASH.value
    assert result.refund["payment_intent_id"] is None
    assert result.original_sale is None
    assert gateway.refunds == []

    session.expire_all()
    original = session.get(Sale, original_id)
    assert original.status == SaleStatus.COMPLETED
    assert original.payments[0].refund_amount == Decimal("0.00")

    return_sale = session.get(Sale, return_id)
    assert return_sale.payments[0].method == PaymentMethod.CASH
    assert return_sale.payments[0].amount == Decimal("-20.00")

    events = [e for e in published if isinstance(e, RefundProcessed)]
    assert events[0].via_gateway is False
    assert events[0].original_sale_id == original_id


def test_return_requires_completed_original(new_sale, refund_service):
    draft = new_sale(line_items=[JACKET])

    with pytest.raises(InvalidStateException):
        refund_service.process_return(draft.id, {"line_items": [return_line()]})


def test_return_of_a_return_is_rejected(paid_purchase, completed_return, refund_service):
    return_id = completed_return(paid_purchase(method="cash"))

    with pytest.raises(ValidationException):
        refund_service.process_return(return_id, {"line_items": [return_line()]})


def test_return_outside_return_period(paid_purchase, refund_service, session):
    original_id = paid_purchase(method="cash")
    original = session.get(Sale, original_id)
    original.created_at = datetime.now(timezone.utc) - timedelta(days=8)
    session.commit()

    with pytest.raises(ValidationException) as exc_info:
        refund_service.process_return(original_id, {"line_items": [return_line()]})

    assert "7-day" in exc_info.value.message


def test_return_needs_line_items(paid_purchase, refund_service):
    original_id = paid_purchase(method="cash")

    with pytest.raises(ValidationException):
        refund_service.process_return(original_id, {"line_items": []})


def test_return_of_missing_sale(refund_service):
    with pytest.raises(SaleNotFoundException):
        refund_service.process_return(4242, {"line_items": [return_line()]})


def test_return_by_another_merchant(paid_purchase, session, seed, gateway):
    original_id = paid_purchase(method="cash")
    service = RefundService(
        session,
        gateway=gateway,
        security_context=SecurityContext(Principal(type=MERCHANT, id=seed.other_merchant_id)),
    )

    with pytest.raises(PermissionDeniedException):
        service.process_return(original_id, {"line_items": [return_line()]})


def test_return_for_a_mismatched_merchant_id(paid_purchase, refund_service, seed):
    original_id = paid_purchase(method="cash")

    with pytest.raises(ValidationException):
        refund_service.process_return(
            original_id, {"merchant_id": seed.other_merchant_id, "line_items": [return_line()]}
        )


def test_refund_requires_completed_return(paid_purchase, refund_service):
    original_id = paid_purchase(method="cash")
    draft_return = refund_service.process_return(original_id, {"line_items": [return_line()]})

    with pytest.raises(InvalidStateException):
        refund_service.process_refund(draft_return.id, "20.00")


def test_refund_of_a_purchase_is_rejected(paid_purchase, refund_service):
    with pytest.raises(InvalidStateException):
        refund_service.process_refund(paid_purchase(method="cash"), "20.00")


@pytest.mark.parametrize("amount", ["0", "-5.00", "20.01"])
def test_refund_amount_bounds(paid_purchase, completed_return, refund_service, amount):
    return_id = completed_return(paid_purchase(method="cash"))

    with pytest.raises(ValidationException):
        refund_service.process_refund(return_id, amount)


def test_return_cannot_exceed_purchased_quantity(paid_purchase, refund_service):
    original_id = paid_purchase(method="cash")

    with pytest.raises(ValidationException) as exc_info:
        refund_service.process_return(original_id, {"line_items": [return_line("25.00", quantity=3)]})

    assert exc_info.value.message == "Returned quantities exceed the original sale"
    assert exc_info.value.details["validation_errors"]["line_items"] == [
        "Product J1: 3 returned, 2 returnable"
    ]


def test_return_of_a_product_not_on_the_original(paid_purchase, refund_service):
    original_id = paid_purchase(method="cash")
    scarf = {"product_id": "S1", "product_name": "Scarf", "quantity": 1, "unit_price": "5.00"}

    with pytest.raises(ValidationException):
        refund_service.process_return(original_id, {"line_items": [scarf]})


def test_return_total_is_bounded_by_the_original_total(paid_purchase, refund_service):
    original_id = paid_purchase(method="cash")

    with pytest.raises(ValidationException) as exc_info:
        refund_service.process_return(original_id, {"line_items": [return_line("60.00")]})

    assert "50.00" in exc_info.value.message


def test_earlier_returns_reduce_what_can_be_returned(
    paid_purchase, completed_return, refund_service, sale_service
):
    original_id = paid_purchase(method="cash")
    completed_return(original_id, price="25.00")
    keyed_twice = refund_service.process_return(original_id, {"line_items": [return_line("25.00")]})
    sale_service.void_sale(keyed_twice.id, "Keyed twice")

    refund_service.process_return(original_id, {"line_items": [return_line("25.00")]})

    with pytest.raises(ValidationException):
        refund_service.process_return(original_id, {"line_items": [return_line("1.00")]})
