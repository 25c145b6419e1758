"""
HTTP-level tests for auth, sales and stock routes.

Verifies status codes, the {success, data|error} envelope and role checks.
"""

import pytest

from pharmapos.models import Sale


@pytest.fixture
def cashier_headers(cashier, auth_headers):
    return auth_headers(cashier)


@pytest.fixture
def admin_headers(admin, auth_headers):
    return auth_headers(admin)


@pytest.fixture
def manager_headers(manager, auth_headers):
    return auth_headers(manager)


@pytest.fixture
def pharmacist_headers(make_user, auth_headers):
    return auth_headers(make_user("pharmacist", role="PHARMACIST"))


def _post_sale(client, headers, medicine, quantity=1, **body):
    payload = {"items": [{"medicine_id": medicine.id, "quantity": quantity}]}
    payload.update(body)
    return client.post("/api/sales", json=payload, headers=headers)


class TestAuth:
    def test_login_me_logout(self, client, cashier):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "Password123!"})
        assert resp.status_code == 200
        token = resp.get_json()["data"]["token"]
        headers = {"Authorization": f"Bearer {token}"}

        me = client.get("/api/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.get_json()["data"]["username"] == "cashier"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_bad_credentials(self, client, cashier):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "wrong"})
        assert resp.status_code == 401
        assert resp.get_json()["success"] is False

    def test_login_requires_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "cashier"})
        assert resp.status_code == 400


class TestCreateSaleRoute:
    def test_requires_authentication(self, client, db_session, make_medicine):
        med = make_medicine()
        assert _post_sale(client, {}, med).status_code == 401

    def test_creates_sale(self, client, cashier_headers, make_medicine, stock_of):
        med = make_medicine(stock=50, price=20, cost=12)

        resp = _post_sale(client, cashier_headers, med, quantity=5, payment_method="cash")

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        data = body["data"]
        assert data["final_amount_cents"] == 100
        assert data["profit_cents"] == 40
        assert data["payment_method"] == "CASH"
        assert data["cashier_name"] == "Casey Cashier"
        assert len(data["items"]) == 1
        assert stock_of(med.id) == 45

    def test_duplicate_submission_is_409(self, client, cashier_headers, make_medicine, stock_of):
        med = make_medicine(stock=10)

        assert _post_sale(client, cashier_headers, med, quantity=2, idempotency_key="till-1-7").status_code == 201
        resp = _post_sale(client, cashier_headers, med, quantity=2, idempotency_key="till-1-7")

        assert resp.status_code == 409
        assert resp.get_json() == {
            "success": False,
            "error": "Duplicate request - sale may have already been processed",
        }
        assert stock_of(med.id) == 8

    def test_repeated_cart_without_key_is_a_new_sale(self, client, cashier_headers, make_medicine, stock_of):
        med = make_medicine(stock=10)

        assert _post_sale(client, cashier_headers, med, quantity=2).status_code == 201
        assert _post_sale(client, cashier_headers, med, quantity=2).status_code == 201
        assert stock_of(med.id) == 6

    def test_idempotency_header(self, client, cashier_headers, make_medicine):
        med = make_medicine(stock=10)
        headers = dict(cashier_headers, **{"Idempotency-Key": "till-3-42"})

        assert _post_sale(client, headers, med, quantity=1).status_code == 201
        assert _post_sale(client, headers, med, quantity=3).status_code == 409

    def test_insufficient_stock_is_409(self, client, cashier_headers, make_medicine):
        med = make_medicine("Ibuprofen", stock=2)

        resp = _post_sale(client, cashier_headers, med, quantity=3)

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["error"] == "Insufficient stock for Ibuprofen. Available: 2, Needed: 3"
        assert body["available"] == 2
        assert body["needed"] == 3

    def test_credit_without_phone_is_400(self, client, cashier_headers, make_medicine):
        med = make_medicine()
        resp = _post_sale(client, cashier_headers, med, payment_method="CREDIT", customer_name="Jane")
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Customer name and phone are required for credit sales"

    @pytest.mark.parametrize("payload, message", [
        ({}, "Sale items are required"),
        ({"items": []}, "Sale items are required"),
        ({"items": [{"quantity": 1}]}, "Medicine ID is required for each item"),
    ])
    def test_invalid_payload_is_400(self, client, cashier_headers, payload, message):
        resp = client.post("/api/sales", json=payload, headers=cashier_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == message

    def test_unknown_payment_method_is_400(self, client, cashier_headers, make_medicine):
        med = make_medicine()
        assert _post_sale(client, cashier_headers, med, payment_method="BARTER").status_code == 400

    def test_unknown_medicine_is_404(self, client, cashier_headers):
        resp = client.post("/api/sales", json={"items": [{"medicine_id": 999999}]}, headers=cashier_headers)
        assert resp.status_code == 404


class TestSaleLifecycleRoutes:
    def test_get_sale(self, client, cashier_headers, make_medicine):
        med = make_medicine()
        sale_id = _post_sale(client, cashier_headers, med).get_json()["data"]["id"]

        resp = client.get(f"/api/sales/{sale_id}", headers=cashier_headers)

        assert resp.status_code == 200
        assert resp.get_json()["data"]["items"][0]["medicine_id"] == med.id

    def test_get_missing_sale_is_404(self, client, cashier_headers):
        resp = client.get("/api/sales/999999", headers=cashier_headers)
        assert resp.status_code == 404
        assert resp.get_json()["success"] is False

    def test_void_requires_admin(self, client, db_session, cashier_headers, admin_headers, make_medicine, stock_of):
        med = make_medicine(stock=10)
        sale_id = _post_sale(client, cashier_headers, med, quantity=4).get_json()["data"]["id"]

        assert client.delete(f"/api/sales/{sale_id}", headers=cashier_headers).status_code == 403

        resp = client.delete(f"/api/sales/{sale_id}", headers=admin_headers)
        assert resp.status_code == 200
        assert stock_of(med.id) == 10
        assert db_session.query(Sale).count() == 0

    def test_credit_sale_and_payment(self, client, cashier_headers, make_medicine):
        med = make_medicine(price=20, stock=10)
        sale = _post_sale(
            client, cashier_headers, med, quantity=5,
            payment_method="CREDIT", customer_name="Jane Doe", customer_phone="0700000000",
        ).get_json()["data"]
        credit_id = sale["credit_sale_id"]

        resp = client.post(
            "/api/sales/credit/payment",
            json={"credit_sale_id": credit_id, "amount_cents": 30},
            headers=cashier_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["data"]["status"] == "PARTIAL"

        resp = client.post(
            "/api/sales/credit/payment",
            json={"credit_sale_id": credit_id, "amount_cents": 500},
            headers=cashier_headers,
        )
        assert resp.status_code == 400

        credit = client.get(f"/api/sales/credit/{credit_id}", headers=cashier_headers).get_json()["data"]
        assert credit["balance_amount_cents"] == 70
        assert len(credit["payments"]) == 1

    def test_pharmacist_cannot_handle_receivables(self, client, cashier_headers, pharmacist_headers, make_medicine):
        med = make_medicine(stock=10)
        sale = _post_sale(
            client, cashier_headers, med,
            payment_method="CREDIT", customer_name="Jane Doe", customer_phone="0700000000",
        ).get_json()["data"]
        credit_id = sale["credit_sale_id"]

        assert client.get(f"/api/sales/credit/{credit_id}", headers=pharmacist_headers).status_code == 403
        resp = client.post(
            "/api/sales/credit/payment",
            json={"credit_sale_id": credit_id, "amount_cents": 5},
            headers=pharmacist_headers,
        )
        assert resp.status_code == 403
        assert resp.get_json()["required_roles"] == ["ADMIN", "MANAGER", "CASHIER"]


class TestStockRoutes:
    def test_movements_for_medicine(self, client, cashier_headers, manager_headers, make_medicine):
        med = make_medicine(stock=10)
        _post_sale(client, cashier_headers, med, quantity=2)

        resp = client.get(f"/api/stock/movements/medicine/{med.id}?page=0&size=5", headers=manager_headers)

        assert resp.status_code == 200
        page = resp.get_json()["data"]
        assert page["totalElements"] == 1
        assert page["content"][0]["type"] == "SALE"

    @pytest.mark.parametrize("headers_fixture", ["cashier_headers", "pharmacist_headers"])
    def test_only_managers_view_movements(self, request, client, make_medicine, headers_fixture):
        headers = request.getfixturevalue(headers_fixture)
        med = make_medicine()
        assert client.get(f"/api/stock/movements/medicine/{med.id}", headers=headers).status_code == 403
        assert client.get("/api/stock/movements/reference/1", headers=headers).status_code == 403

    def test_manual_stock_changes(self, client, manager_headers, make_medicine, stock_of):
        med = make_medicine(stock=10)

        resp = client.post("/api/stock/addition", json={"medicine_id": med.id, "quantity": 15}, headers=manager_headers)
        assert resp.status_code == 201
        resp = client.post(
            "/api/stock/loss",
            json={"medicine_id": med.id, "quantity": 5, "reason": "Expired"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        resp = client.post(
            "/api/stock/adjustment",
            json={"medicine_id": med.id, "quantity": 18, "reason": "Physical count"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        assert resp.get_json()["data"]["quantity"] == -2
        assert stock_of(med.id) == 18

    def test_movements_by_reference(self, client, cashier_headers, manager_headers, make_medicine):
        med = make_medicine(stock=10)
        sale_id = _post_sale(client, cashier_headers, med, quantity=1).get_json()["data"]["id"]

        resp = client.get(f"/api/stock/movements/reference/{sale_id}", headers=manager_headers)

        assert resp.status_code == 200
        assert [m["type"] for m in resp.get_json()["data"]] == ["SALE"]


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["checks"]["database"]["status"] == "healthy"
