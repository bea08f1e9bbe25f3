# Overview: Pytest coverage for the JSON API (identity headers, roles, error mapping).

"""
API tests.

Identity comes from the X-Actor-Id / X-Actor-Role headers set by the
gateway. Business errors map to their HTTP status with an
{"error", "details"} body.
"""

from datetime import timedelta

from backoffice.models import Customer, Product
from backoffice.services import account_service
from backoffice.time_utils import to_utc_z, utcnow

from conftest import CASHIER_ID, actor_headers


def _sale_payload(product, quantity=1, **overrides):
    payload = {
        "document_type": "sale",
        "lines": [{"product_id": product.id, "quantity": quantity}],
        "payments": [{"method": "cash", "amount_cents": product.price_cents * quantity}],
    }
    payload.update(overrides)
    return payload


class TestIdentity:
    def test_missing_headers_is_401(self, client, db_session):
        response = client.get('/api/documents')
        assert response.status_code == 401

    def test_malformed_identity_is_401(self, client, db_session):
        response = client.get('/api/documents', headers={'X-Actor-Id': 'abc', 'X-Actor-Role': 'admin'})
        assert response.status_code == 401
        response = client.get('/api/documents', headers={'X-Actor-Id': '1', 'X-Actor-Role': 'owner'})
        assert response.status_code == 401

    def test_cashier_cannot_cancel(self, client, db_session, make_product):
        product = make_product(stock=5, price_cents=100)
        created = client.post('/api/documents', json=_sale_payload(product), headers=actor_headers("cashier", CASHIER_ID))
        doc_id = created.get_json()["id"]

        response = client.post(f'/api/documents/{doc_id}/cancel', json={}, headers=actor_headers("cashier", CASHIER_ID))

        assert response.status_code == 403
        assert response.get_json()["required_roles"] == ["admin", "manager"]

    def test_cashier_cannot_adjust_accounts(self, client, db_session, make_customer):
        customer = make_customer()
        response = client.post(
            f'/api/accounts/{customer.id}/adjustments',
            json={"direction": "DEBIT", "amount_cents": 100, "concept": "x"},
            headers=actor_headers("cashier", CASHIER_ID),
        )
        assert response.status_code == 403


class TestDocumentRoutes:
    def test_create_sale(self, client, db_session, make_product):
        product = make_product(stock=10, price_cents=100)

        response = client.post('/api/documents', json=_sale_payload(product, 4), headers=actor_headers("cashier", CASHIER_ID))

        assert response.status_code == 201
        body = response.get_json()
        assert body["number"] == "FAC-000001"
        assert body["total_cents"] == 400
        assert body["status"] == "COMPLETED"
        assert body["document"]["actor_id"] == CASHIER_ID
        assert body["document"]["lines"][0]["delivered_quantity"] == 4
        db_session.expire_all()
        assert db_session.get(Product, product.id).stock == 6

    def test_insufficient_stock_is_409_with_details(self, client, db_session, make_product):
        product = make_product(stock=10, price_cents=100)

        response = client.post('/api/documents', json=_sale_payload(product, 12), headers=actor_headers())

        assert response.status_code == 409
        body = response.get_json()
        assert body["details"]["available"] == 10
        assert body["details"]["requested_quantity"] == 12

    def test_payment_mismatch_is_400(self, client, db_session, make_product):
        product = make_product(stock=10, price_cents=100)
        payload = _sale_payload(product, 2, payments=[{"method": "CASH", "amount_cents": 150}])

        response = client.post('/api/documents', json=payload, headers=actor_headers())

        assert response.status_code == 400
        assert response.get_json()["details"]["difference_cents"] == -50

    def test_credit_limit_is_409(self, client, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=1500)
        customer = make_customer(credit_limit_cents=1000)
        payload = _sale_payload(
            product, 1, customer_id=customer.id, payments=[{"method": "ACCOUNT_CREDIT", "amount_cents": 1500}],
        )

        response = client.post('/api/documents', json=payload, headers=actor_headers())

        assert response.status_code == 409
        assert response.get_json()["details"]["limit_cents"] == 1000

    def test_strict_integer_input(self, client, db_session, make_product):
        product = make_product(stock=10, price_cents=100)
        payload = _sale_payload(product, 1)
        payload["lines"][0]["quantity"] = 1.5

        response = client.post('/api/documents', json=payload, headers=actor_headers())

        assert response.status_code == 400
        assert response.get_json()["details"]["field"] == "lines[0].quantity"

    def test_missing_document(self, client, db_session):
        response = client.get('/api/documents/999', headers=actor_headers())
        assert response.status_code == 404

    def test_cancel_and_cancel_again(self, client, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=600)
        customer = make_customer(credit_limit_cents=1000)
        payload = _sale_payload(
            product, 1, customer_id=customer.id, payments=[{"method": "ACCOUNT_CREDIT", "amount_cents": 600}],
        )
        doc_id = client.post('/api/documents', json=payload, headers=actor_headers()).get_json()["id"]

        first = client.post(f'/api/documents/{doc_id}/cancel', json={"reason": "Wrong customer"}, headers=actor_headers("manager", 3))
        second = client.post(f'/api/documents/{doc_id}/cancel', json={}, headers=actor_headers("manager", 3))

        assert first.status_code == 200
        assert first.get_json()["status"] == "CANCELLED"
        assert second.status_code == 409
        db_session.expire_all()
        assert db_session.get(Customer, customer.id).balance_cents == 0
        assert db_session.get(Product, product.id).stock == 10

        events = client.get(f'/api/documents/{doc_id}/events', headers=actor_headers()).get_json()
        assert [ev["event_type"] for ev in events["items"]] == ["DOCUMENT_ISSUED", "DOCUMENT_CANCELLED"]

    def test_purchase_reception_flow(self, client, db_session, make_product, supplier):
        product = make_product(cost_cents=25)
        created = client.post('/api/documents', json={
            "document_type": "purchase",
            "supplier_id": supplier.id,
            "lines": [{"product_id": product.id, "quantity": 4}],
            "payments": [{"method": "TRANSFER", "amount_cents": 100}],
        }, headers=actor_headers())
        assert created.status_code == 201
        body = created.get_json()
        line_id = body["document"]["lines"][0]["id"]

        response = client.post(
            f'/api/documents/{body["id"]}/deliveries',
            json={"deliveries": [{"line_id": line_id, "quantity": 4}]},
            headers=actor_headers(),
        )

        assert response.status_code == 200
        assert response.get_json()["status"] == "COMPLETED"

    def test_quote_accept_and_convert(self, client, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=250)
        customer = make_customer()
        quote = client.post('/api/documents', json={
            "document_type": "quote",
            "customer_id": customer.id,
            "lines": [{"product_id": product.id, "quantity": 2}],
        }, headers=actor_headers()).get_json()
        assert quote["number"] == "COT-000001"

        accepted = client.post(f'/api/documents/{quote["id"]}/status', json={"status": "ACCEPTED"}, headers=actor_headers())
        assert accepted.get_json()["status"] == "ACCEPTED"

        no_payments = client.post(f'/api/documents/{quote["id"]}/convert', json={}, headers=actor_headers())
        assert no_payments.status_code == 400

        converted = client.post(
            f'/api/documents/{quote["id"]}/convert',
            json={"payments": [{"method": "CASH", "amount_cents": 500}]},
            headers=actor_headers(),
        )
        assert converted.status_code == 201
        assert converted.get_json()["document"]["source_document_id"] == quote["id"]

    def test_list_documents(self, client, db_session, make_product):
        product = make_product(stock=10, price_cents=100)
        for _ in range(3):
            client.post('/api/documents', json=_sale_payload(product), headers=actor_headers())

        response = client.get('/api/documents?document_type=sale&limit=2', headers=actor_headers())

        body = response.get_json()
        assert body["count"] == 3
        assert len(body["items"]) == 2
        assert body["items"][0]["number"] == "FAC-000003"


class TestAccountRoutes:
    def test_adjustment_receipt_and_void(self, client, db_session, make_customer):
        customer = make_customer(credit_limit_cents=10_000)

        adjusted = client.post(
            f'/api/accounts/{customer.id}/adjustments',
            json={"direction": "debit", "amount_cents": 2000, "concept": "Opening debt"},
            headers=actor_headers(),
        )
        assert adjusted.status_code == 201
        assert adjusted.get_json()["new_balance_cents"] == 2000

        receipt = client.post(
            f'/api/accounts/{customer.id}/receipts',
            json={"amount_cents": 500, "method": "cash"},
            headers=actor_headers("cashier", CASHIER_ID),
        )
        assert receipt.status_code == 201
        receipt_id = receipt.get_json()["receipt"]["id"]

        summary = client.get(f'/api/accounts/{customer.id}', headers=actor_headers()).get_json()["account"]
        assert summary["balance_cents"] == 1500
        assert summary["available_credit_cents"] == 8500

        voided = client.post(f'/api/accounts/receipts/{receipt_id}/void', json={"reason": "Bounced"}, headers=actor_headers())
        assert voided.status_code == 200
        assert voided.get_json()["receipt"]["status"] == "VOIDED"

        receipts = client.get(f'/api/accounts/{customer.id}/receipts?status=voided', headers=actor_headers()).get_json()
        assert receipts["count"] == 1

        movements = client.get(f'/api/accounts/{customer.id}/movements', headers=actor_headers()).get_json()
        assert movements["count"] == 3
        assert movements["items"][0]["concept"] == "RECEIPT_VOID"

    def test_receipt_without_running_account_is_409(self, client, db_session, make_customer):
        customer = make_customer(has_credit_account=False)
        response = client.post(
            f'/api/accounts/{customer.id}/receipts',
            json={"amount_cents": 500, "method": "CASH"},
            headers=actor_headers(),
        )
        assert response.status_code == 409

    def test_unknown_customer_summary(self, client, db_session):
        response = client.get('/api/accounts/999', headers=actor_headers())
        assert response.status_code == 404

    def test_unexpected_summary_failure_is_a_500(self, client, db_session, make_customer, monkeypatch):
        customer = make_customer()

        def _boom(customer_id):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(account_service, "get_account_summary", _boom)
        response = client.get(f'/api/accounts/{customer.id}', headers=actor_headers())
        assert response.status_code == 500
        assert response.get_json() == {"error": "Internal server error"}


class TestStockRoutes:
    def test_manual_movement_and_listing(self, client, db_session, make_product):
        product = make_product(stock=5)

        posted = client.post('/api/stock/movements', json={
            "product_id": product.id, "kind": "adjust", "quantity": 2, "reason": "Stocktake",
        }, headers=actor_headers())
        assert posted.status_code == 201
        assert posted.get_json()["movement"]["quantity_after"] == 2

        listed = client.get(f'/api/stock/movements?product_id={product.id}', headers=actor_headers()).get_json()
        assert listed["count"] == 2
        assert listed["items"][0]["kind"] == "ADJUST"

    def test_out_beyond_stock_is_409(self, client, db_session, make_product):
        product = make_product(stock=1)
        response = client.post('/api/stock/movements', json={
            "product_id": product.id, "kind": "OUT", "quantity": 2,
        }, headers=actor_headers())
        assert response.status_code == 409


class TestCashClosingRoutes:
    def test_preview_then_close(self, client, db_session, make_product):
        product = make_product(stock=10, price_cents=100)
        client.post('/api/documents', json=_sale_payload(product, 3), headers=actor_headers())
        start = to_utc_z(utcnow() - timedelta(hours=1))
        end = to_utc_z(utcnow() + timedelta(hours=1))

        preview = client.get(f'/api/cash-closings/preview?from={start}&to={end}', headers=actor_headers())
        assert preview.status_code == 200
        assert preview.get_json()["preview"]["cash_in_cents"] == 300

        closed = client.post('/api/cash-closings', json={
            "window_start": start,
            "window_end": end,
            "opening_cash_cents": 1000,
            "counted_cash_cents": 1290,
            "line_items": [{"kind": "ADJUSTMENT_IN", "amount_cents": 10}],
        }, headers=actor_headers("cashier", CASHIER_ID))
        assert closed.status_code == 201
        body = closed.get_json()
        assert body["closing"]["expected_cash_cents"] == 1310
        assert body["discrepancy_cents"] == -20

        again = client.post('/api/cash-closings', json={
            "window_start": start, "window_end": end, "counted_cash_cents": 0,
        }, headers=actor_headers())
        assert again.status_code == 409

        fetched = client.get(f'/api/cash-closings/{body["id"]}', headers=actor_headers()).get_json()["closing"]
        assert len(fetched["lines"]) == 2

    def test_preview_requires_window(self, client, db_session):
        response = client.get('/api/cash-closings/preview', headers=actor_headers())
        assert response.status_code == 400


class TestHealth:
    def test_healthy(self, client, db_session):
        response = client.get('/api/system/health')
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"
