# tests/api/endpoints/test_sales.py
from fastapi.testclient import TestClient

API = "/api/v1/sales"


def test_list_merchant_sales(client: TestClient, create_sale, merchant_headers):
    for _ in range(3):
        create_sale()

    response = client.get(f"{API}/merchant", params={"page": 2, "limit": 2}, headers=merchant_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["pagination"] == {"total": 3, "page": 2, "limit": 2, "pages": 2}
    assert len(body["items"]) == 1


def test_list_merchant_sales_filters_by_status(client: TestClient, create_sale, merchant_headers):
    paid = create_sale()
    create_sale()
    client.post(
        "/api/v1/payments/cash", json={"sale_id": paid["id"], "amount": "21.00"}, headers=merchant_headers
    )

    response = client.get(f"{API}/merchant", params={"status": "completed"}, headers=merchant_headers)

    assert [s["id"] for s in response.json()["items"]] == [paid["id"]]


def test_list_merchant_sales_is_scoped(client: TestClient, create_sale, other_merchant_headers):
    create_sale()

    response = client.get(f"{API}/merchant", headers=other_merchant_headers)

    assert response.json()["pagination"]["total"] == 0


def test_list_limit_is_bounded(client: TestClient, merchant_headers):
    response = client.get(f"{API}/merchant", params={"limit": 101}, headers=merchant_headers)

    assert response.status_code == 422


def test_list_rejects_unknown_sort_order(client: TestClient, merchant_headers):
    response = client.get(f"{API}/merchant", params={"sort_order": "sideways"}, headers=merchant_headers)

    assert response.status_code == 422


def test_list_customer_sales(client: TestClient, create_sale, customer_headers, merchant_headers, seed):
    mine = create_sale()
    create_sale(customer_id=seed.other_customer_id)

    response = client.get(f"{API}/customer", headers=customer_headers)

    assert response.status_code == 200
    assert [s["id"] for s in response.json()["items"]] == [mine["id"]]
    assert client.get(f"{API}/customer", headers=merchant_headers).status_code == 403


def test_get_sale(client: TestClient, create_sale, merchant_headers, customer_headers):
    sale = create_sale()

    by_merchant = client.get(f"{API}/{sale['id']}", headers=merchant_headers)
    by_customer = client.get(f"{API}/{sale['id']}", headers=customer_headers)

    assert by_merchant.status_code == 200
    assert by_merchant.json()["sale_number"] == sale["sale_number"]
    assert by_customer.status_code == 200


def test_get_sale_of_other_merchant(client: TestClient, create_sale, other_merchant_headers):
    sale = create_sale()

    response = client.get(f"{API}/{sale['id']}", headers=other_merchant_headers)

    assert response.status_code == 403


def test_get_missing_sale(client: TestClient, merchant_headers):
    response = client.get(f"{API}/4242", headers=merchant_headers)

    assert response.status_code == 404
    assert response.json()["kind"] == "not_found"


def test_get_receipt(client: TestClient, create_sale, merchant_headers):
    sale = create_sale()

    response = client.get(f"{API}/{sale['id']}/receipt", headers=merchant_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["receipt_url"] == f"/receipts/{sale['uuid']}"
    assert body["receipt"]["display"]["total"] == "$21.00"
    assert client.get(f"{API}/{sale['id']}", headers=merchant_headers).json()["receipt_url"] == body["receipt_url"]


def test_void_sale(client: TestClient, create_sale, merchant_headers):
    sale = create_sale()

    response = client.put(f"{API}/{sale['id']}/void", json={"reason": "Duplicate ring-up"}, headers=merchant_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "voided"
    assert response.json()["notes"] == "Voided: Duplicate ring-up"


def test_void_sale_without_body(client: TestClient, create_sale, merchant_headers):
    sale = create_sale()

    response = client.put(f"{API}/{sale['id']}/void", headers=merchant_headers)

    assert response.status_code == 200
    assert response.json()["notes"] == "Voided: no reason given"


def test_void_completed_sale(client: TestClient, create_sale, merchant_headers):
    sale = create_sale()
    client.post(
        "/api/v1/payments/cash", json={"sale_id": sale["id"], "amount": "21.00"}, headers=merchant_headers
    )

    response = client.put(f"{API}/{sale['id']}/void", headers=merchant_headers)

    assert response.status_code == 409
    assert response.json()["kind"] == "invalid_state"


def test_root_and_health(client: TestClient):
    root = client.get("/")
    health = client.get("/health")

    assert root.status_code == 200
    assert root.json()["message"] == "Welcome to Receets API"
    assert health.json()["status"] == "ok"


def test_sales_analytics(client: TestClient, create_sale, merchant_headers, other_merchant_headers):
    paid = create_sale()
    create_sale()
    client.post(
        "/api/v1/payments/cash", json={"sale_id": paid["id"], "amount": "21.00"}, headers=merchant_headers
    )

    response = client.get(f"{API}/analytics", headers=merchant_headers)

    assert response.status_code == 200
    assert response.json() == {
        "total_sales": 1,
        "total_returns": 0,
        "sales_revenue": "21.00",
        "returns_amount": "0.00",
        "net_revenue": "21.00",
        "payment_methods": {"cash": "21.00"},
    }
    assert client.get(f"{API}/analytics", headers=other_merchant_headers).json()["total_sales"] == 0


def test_sales_analytics_is_merchant_only(client: TestClient, customer_headers):
    response = client.get(f"{API}/analytics", headers=customer_headers)

    assert response.status_code == 403
