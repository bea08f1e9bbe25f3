# Overview: Pytest coverage for ledger verification and the maintenance CLI.

"""
Tests for integrity_service and the `ledger` / `sequences` CLI groups.

Snapshots (Product.stock, Customer.balance_cents) must always equal the tail
of their ledger; verification reports any drift without fixing it.
"""

from sqlalchemy import update

from backoffice.models import Customer, DocumentSequence, Product
from backoffice.services import document_service, integrity_service, reversal_service
from backoffice.services.document_service import LineRequest, PaymentRequest

from conftest import ADMIN_ID


class TestVerifyLedgers:
    def test_consistent_after_business_activity(self, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=100)
        customer = make_customer(credit_limit_cents=5000, balance_cents=200)
        doc = document_service.create_document(
            document_type="sale",
            party_id=customer.id,
            lines=[LineRequest(product_id=product.id, quantity=3)],
            payments=[PaymentRequest("ACCOUNT_CREDIT", 300)],
            actor_id=ADMIN_ID,
        )
        reversal_service.cancel_document(document_id=doc.id, reason=None, actor_id=ADMIN_ID)

        assert integrity_service.verify_ledgers() == []

    def test_fresh_entities_are_consistent(self, db_session, make_product, make_customer):
        make_product()
        make_customer()
        assert integrity_service.verify_ledgers() == []

    def test_stock_drift_reported(self, db_session, make_product):
        product = make_product(stock=10)
        db_session.execute(update(Product).where(Product.id == product.id).values(stock=7))
        db_session.commit()

        problems = integrity_service.verify_stock_ledger()

        assert problems == [{
            "ledger": "stock",
            "entity_id": product.id,
            "problem": "snapshot differs from latest movement",
            "snapshot": 7,
            "ledger_value": 10,
        }]

    def test_stock_without_movements_reported(self, db_session):
        product = Product(code="GHOST", name="Ghost", stock=4)
        db_session.add(product)
        db_session.commit()

        problems = integrity_service.verify_stock_ledger()
        assert [p["problem"] for p in problems] == ["stock without movements"]

    def test_balance_drift_reported(self, db_session, make_customer):
        customer = make_customer(balance_cents=500)
        db_session.execute(update(Customer).where(Customer.id == customer.id).values(balance_cents=0))
        db_session.commit()

        problems = integrity_service.verify_account_ledger()
        assert len(problems) == 1
        assert problems[0]["snapshot"] == 0
        assert problems[0]["ledger_value"] == 500


class TestCli:
    def test_ledger_verify_passes(self, app, db_session, make_product):
        make_product(stock=3)
        result = app.test_cli_runner().invoke(args=["ledger", "verify"])
        assert result.exit_code == 0
        assert "PASS Ledgers consistent" in result.output

    def test_ledger_verify_fails_on_drift(self, app, db_session, make_product):
        product = make_product(stock=3)
        db_session.execute(update(Product).where(Product.id == product.id).values(stock=1))
        db_session.commit()

        result = app.test_cli_runner().invoke(args=["ledger", "verify"])
        assert result.exit_code != 0
        assert "1 ledger discrepancies found" in result.output

    def test_sequences_list_and_set_prefix(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["sequences", "set-prefix", "sale", "FAC-B-"])
        assert result.exit_code == 0
        assert "FAC-B-000001" in result.output

        result = runner.invoke(args=["sequences", "list"])
        assert "FAC-B-" in result.output
        assert db_session.query(DocumentSequence).filter_by(document_type="sale").one().prefix == "FAC-B-"

    def test_system_init_is_idempotent(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init"])
        assert result.exit_code == 0
        assert "already present" in result.output
        guards = {"cash_closing:SALES", "cash_closing:FULL"}
        assert {s.document_type for s in db_session.query(DocumentSequence).all()} >= guards
