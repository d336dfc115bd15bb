# tests/api/endpoints/test_pos.py
from fastapi.testclient import TestClient

from app.core.security import create_access_token

API = "/api/v1/pos"


def test_initiate_sale(create_sale, seed):
    sale = create_sale(cashier_name="Sam")

    assert sale["sale_number"].startswith("SALE-")
    assert sale["merchant_id"] == seed.merchant_id
    assert sale["status"] == "draft"
    assert sale["type"] == "purchase"
    assert sale["subtotal"] == "20.00"
    assert sale["tax_total"] == "1.00"
    assert sale["total"] == "21.00"
    assert sale["amount_paid"] == "0"
    assert sale["customer_code"] == "CUST001"
    assert sale["line_items"][0]["total"] == "20.00"
    assert sale["payments"] == []
    assert sale["version"] == 1


def test_initiate_sale_requires_authentication(client: TestClient, seed):
    response = client.post(f"{API}/sales", json={"location_id": seed.location_id})

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    assert response.json()["kind"] == "unauthorized"


def test_initiate_sale_with_invalid_token(client: TestClient, seed):
    response = client.post(
        f"{API}/sales",
        json={"location_id": seed.location_id},
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert response.status_code == 401


def test_customer_cannot_initiate_sale(client: TestClient, seed, customer_headers):
    response = client.post(f"{API}/sales", json={"location_id": seed.location_id}, headers=customer_headers)

    assert response.status_code == 403
    assert response.json()["kind"] == "permission"


def test_initiate_sale_malformed_body(client: TestClient, merchant_headers):
    response = client.post(f"{API}/sales", json={"line_items": "nope"}, headers=merchant_headers)

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["kind"] == "validation"


def test_initiate_sale_invalid_line_item(client: TestClient, seed, merchant_headers):
    response = client.post(
        f"{API}/sales",
        json={
            "location_id": seed.location_id,
            "line_items": [{"product_id": "P1", "product_name": "Latte", "quantity": 0, "unit_price": "4.00"}],
        },
        headers=merchant_headers,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["kind"] == "validation"
    assert "line_items[0].quantity" in body["details"]["validation_errors"]


def test_initiate_sale_at_foreign_location(client: TestClient, seed, merchant_headers):
    response = client.post(
        f"{API}/sales", json={"location_id": seed.other_location_id}, headers=merchant_headers
    )

    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


def test_update_sale_recalculates(client: TestClient, create_sale, merchant_headers):
    sale = create_sale()

    response = client.put(
        f"{API}/sales/{sale['id']}",
        json={
            "line_items": [{"product_id": 7, "product_name": "Mocha", "quantity": 1, "unit_price": 5}],
            "promo_code": {"code": "ONEOFF", "discount": "1"},
            "notes": "No sugar",
        },
        headers=merchant_headers,
    )

    assert response.status_code == 200
    updated = response.json()
    assert updated["total"] == "4.00"
    assert updated["discount_total"] == "1.00"
    assert updated["promo"] == {"code": "ONEOFF", "discount": "1.00", "type": "fixed"}
    assert updated["line_items"][0]["product_id"] == "7"
    assert updated["notes"] == "No sugar"
    assert updated["version"] == 2


def test_update_sale_cannot_complete_unpaid(client: TestClient, create_sale, merchant_headers):
    sale = create_sale()

    response = client.put(f"{API}/sales/{sale['id']}", json={"status": "completed"}, headers=merchant_headers)

    assert response.status_code == 409
    assert response.json()["kind"] == "invalid_state"


def test_update_sale_by_other_merchant(client: TestClient, create_sale, other_merchant_headers):
    sale = create_sale()

    response = client.put(f"{API}/sales/{sale['id']}", json={"notes": "x"}, headers=other_merchant_headers)

    assert response.status_code == 403


def test_apply_cash_payment_with_change(client: TestClient, create_sale, merchant_headers):
    sale = create_sale()

    response = client.post(
        f"{API}/sales/{sale['id']}/payment",
        json={"method": "cash", "amount": "21.00", "amount_tendered": "30.00"},
        headers=merchant_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["change_due"] == "9.00"
    assert body["payment"]["method"] == "cash"
    assert body["sale"]["status"] == "completed"
    assert body["sale"]["amount_paid"] == "21.00"


def test_apply_payment_rejects_non_positive_amount(client: TestClient, create_sale, merchant_headers):
    sale = create_sale()

    response = client.post(
        f"{API}/sales/{sale['id']}/payment",
        json={"method": "cash", "amount": "0"},
        headers=merchant_headers,
    )

    assert response.status_code == 422


def test_customer_pays_with_receets_pay(client: TestClient, create_sale, customer_headers, gateway):
    sale = create_sale()

    response = client.post(
        f"{API}/sales/{sale['id']}/payment",
        json={"method": "receets_pay", "amount": "21.00", "payment_method_id": "pm_card_visa"},
        headers=customer_headers,
    )

    assert response.status_code == 200
    payment = response.json()["payment"]
    assert payment["transaction_id"] == "pi_test_1"
    assert payment["last4"] == "4242"
    assert response.json()["sale"]["status"] == "completed"
    assert gateway.intents[0]["amount"] == 2100


def test_gateway_decline_is_bad_gateway(client: TestClient, create_sale, merchant_headers, gateway):
    sale = create_sale()
    gateway.fail_intent = "Your card was declined."

    response = client.post(
        f"{API}/sales/{sale['id']}/payment",
        json={"method": "receets_pay", "amount": "21.00"},
        headers=merchant_headers,
    )

    assert response.status_code == 502
    body = response.json()
    assert body["kind"] == "payment_gateway"
    assert "declined" in body["message"]


def test_payment_on_missing_sale(client: TestClient, merchant_headers):
    response = client.post(
        f"{API}/sales/999/payment", json={"method": "cash", "amount": "1.00"}, headers=merchant_headers
    )

    assert response.status_code == 404


def test_returns_flow(client: TestClient, create_sale, merchant_headers, seed):
    sale = create_sale()
    client.post(
        f"{API}/sales/{sale['id']}/payment",
        json={"method": "cash", "amount": "21.00"},
        headers=merchant_headers,
    )

    eligible = client.get(
        f"{API}/returns/eligible", params={"customer_code": "CUST001"}, headers=merchant_headers
    )
    assert eligible.status_code == 200
    assert eligible.json()["return_period"] == 7
    assert [s["id"] for s in eligible.json()["sales"]] == [sale["id"]]

    response = client.post(
        f"{API}/returns",
        json={
            "original_sale_id": sale["id"],
            "line_items": [{"product_id": "P1", "product_name": "Latte", "quantity": 1, "unit_price": "10.00"}],
            "notes": "Too cold",
        },
        headers=merchant_headers,
    )

    assert response.status_code == 201
    return_sale = response.json()
    assert return_sale["type"] == "return"
    assert return_sale["status"] == "draft"
    assert return_sale["sale_number"].startswith("RET-")
    assert return_sale["original_sale_id"] == sale["id"]
    assert return_sale["total"] == "-10.00"
    assert return_sale["line_items"][0]["quantity"] == -1
    assert return_sale["customer_id"] == seed.customer_id


def test_eligible_returns_requires_customer(client: TestClient, merchant_headers):
    response = client.get(f"{API}/returns/eligible", headers=merchant_headers)

    assert response.status_code == 400


def test_return_of_unpaid_sale(client: TestClient, create_sale, merchant_headers):
    sale = create_sale()

    response = client.post(
        f"{API}/returns",
        json={
            "original_sale_id": sale["id"],
            "line_items": [{"product_id": "P1", "product_name": "Latte", "quantity": 1, "unit_price": "10.00"}],
        },
        headers=merchant_headers,
    )

    assert response.status_code == 409


def test_expired_token_is_rejected(client: TestClient, seed):
    from datetime import timedelta

    token = create_access_token("merchant", seed.merchant_id, expires_delta=timedelta(minutes=-5))

    response = client.get(f"{API}/returns/eligible", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
