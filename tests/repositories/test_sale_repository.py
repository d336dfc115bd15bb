# tests/repositories/test_sale_repository.py
from datetime import datetime, timedelta, timezone

from app.db.models.enums import SaleStatus
from app.repositories.customer_repository import CustomerRepository
from app.repositories.merchant_repository import LocationRepository
from app.repositories.sale_repository import SaleRepository


def test_get_by_sale_number_loads_children(new_sale, session):
    sale = new_sale()

    found = SaleRepository(session).get_by_sale_number(sale.sale_number)

    assert found.id == sale.id
    assert len(found.line_items) == 1
    assert SaleRepository(session).get_by_sale_number("SALE-missing") is None


def test_search_matches_customer_id_or_code(new_sale, session, seed):
    by_id = new_sale()
    new_sale(customer_id=seed.other_customer_id)

    items, total = SaleRepository(session).search(
        {"customer_id": seed.customer_id, "customer_code": "CUST001"}
    )

    assert total == 1
    assert [s.id for s in items] == [by_id.id]


def test_search_ignores_unknown_sort_column(new_sale, session):
    first = new_sale()
    second = new_sale()

    items, _ = SaleRepository(session).search({}, sort_by="password", sort_order="desc")

    assert [s.id for s in items] == [second.id, first.id]


def test_find_eligible_returns_requires_completed_purchase(new_sale, session, seed, payment_service):
    paid = new_sale()
    payment_service.apply_payment(paid.id, {"method": "cash", "amount": "21.00"})
    new_sale()

    since = datetime.now(timezone.utc) - timedelta(days=1)
    sales = SaleRepository(session).find_eligible_returns(seed.merchant_id, since, customer_code="CUST001")

    assert [s.id for s in sales] == [paid.id]
    assert sales[0].status == SaleStatus.COMPLETED


def test_find_returns_for(new_sale, session, payment_service, refund_service):
    sale = new_sale()
    payment_service.apply_payment(sale.id, {"method": "cash", "amount": "21.00"})
    line = {"product_id": "P1", "product_name": "Latte", "quantity": 1, "unit_price": "10.00"}
    first = refund_service.process_return(sale.id, {"line_items": [line]})
    second = refund_service.process_return(sale.id, {"line_items": [line]})

    returns = SaleRepository(session).find_returns_for(sale.id)

    assert [r.id for r in returns] == [first.id, second.id]


def test_customer_resolution(session, seed):
    repository = CustomerRepository(session)

    assert repository.resolve(seed.customer_id).customer_code == "CUST001"
    assert repository.resolve(None, "CUST002").id == seed.other_customer_id
    assert repository.resolve(9999, "CUST001").id == seed.customer_id
    assert repository.resolve() is None


def test_location_belongs_to_merchant(session, seed):
    repository = LocationRepository(session)

    assert repository.get_for_merchant(seed.location_id, seed.merchant_id) is not None
    assert repository.get_for_merchant(seed.other_location_id, seed.merchant_id) is None
