# Overview: Pytest coverage for document issuance, deliveries and the quote lifecycle.

"""
Tests for document_service.

A document is one atomic unit of work: totals, payments, stock, running
account and number either all commit or none of them do.
"""

from datetime import timedelta

import pytest

from backoffice.errors import (
    CreditLimitExceeded,
    InsufficientStock,
    NotFound,
    PaymentMismatch,
    ValidationFailed,
)
from backoffice.models import AccountMovement, Customer, Document, DocumentSequence, Product, StockMovement
from backoffice.services import document_service
from backoffice.services.document_service import (
    DeliveryRequest,
    DocumentPolicy,
    LineRequest,
    PaymentRequest,
    Totals,
)

from conftest import ADMIN_ID


def _create(document_type, party_id=None, lines=None, payments=None, **kwargs):
    return document_service.create_document(
        document_type=document_type,
        party_id=party_id,
        lines=lines or [],
        payments=payments or [],
        actor_id=ADMIN_ID,
        **kwargs,
    )


def _next_number(db_session, document_type):
    return db_session.query(DocumentSequence).filter_by(document_type=document_type).one().next_number


class TestPureCalculations:
    def test_totals(self):
        totals = document_service.compute_totals([(2, 150), (1, 700)], 100, 30, DocumentPolicy())
        assert totals == Totals(subtotal_cents=1000, discount_cents=100, surcharge_cents=30, total_cents=930)

    def test_negative_discount_rejected(self):
        with pytest.raises(ValidationFailed):
            document_service.compute_totals([(1, 100)], -1, 0, DocumentPolicy())

    def test_discount_larger_than_subtotal_rejected(self):
        with pytest.raises(ValidationFailed):
            document_service.compute_totals([(1, 100)], 101, 0, DocumentPolicy())

    def test_reconcile_within_tolerance(self):
        totals = Totals(1000, 0, 0, 1000)
        paid = document_service.reconcile_payments(
            [PaymentRequest("CASH", 600), PaymentRequest("CARD", 399)], totals, DocumentPolicy(payment_tolerance_cents=1),
        )
        assert paid == 999

    def test_reconcile_mismatch_details(self):
        totals = Totals(1000, 100, 0, 900)
        with pytest.raises(PaymentMismatch) as exc:
            document_service.reconcile_payments([PaymentRequest("CASH", 800)], totals, DocumentPolicy())
        details = exc.value.details
        assert details["total_cents"] == 900
        assert details["payments_cents"] == 800
        assert details["difference_cents"] == -100
        assert details["discount_cents"] == 100

    def test_aggregate_status(self):
        class L:
            def __init__(self, quantity, delivered_quantity):
                self.quantity = quantity
                self.delivered_quantity = delivered_quantity

        assert document_service.aggregate_status([L(2, 0), L(3, 0)]) == "PENDING"
        assert document_service.aggregate_status([L(2, 2), L(3, 0)]) == "PARTIAL"
        assert document_service.aggregate_status([L(2, 2), L(3, 3)]) == "COMPLETED"


class TestSales:
    def test_cash_sale_moves_stock(self, db_session, make_product):
        product = make_product(stock=10, price_cents=100)

        doc = _create(
            "sale",
            lines=[LineRequest(product_id=product.id, quantity=4)],
            payments=[PaymentRequest("CASH", 400)],
        )

        assert doc.number == "FAC-000001"
        assert doc.status == "COMPLETED"
        assert doc.total_cents == 400
        assert doc.completed_at is not None
        assert db_session.get(Product, product.id).stock == 6

        movement = db_session.query(StockMovement).filter_by(document_id=doc.id).one()
        assert movement.kind == "OUT"
        assert movement.quantity == 4
        assert movement.document_line_id == doc.lines[0].id
        assert movement.reason == f"sale {doc.number}"
        assert doc.lines[0].delivered_quantity == 4

    def test_insufficient_stock_rolls_back_everything(self, db_session, make_product):
        product = make_product(stock=10, price_cents=100)

        with pytest.raises(InsufficientStock) as exc:
            _create(
                "sale",
                lines=[LineRequest(product_id=product.id, quantity=12)],
                payments=[PaymentRequest("CASH", 1200)],
            )

        assert exc.value.details["available"] == 10
        assert db_session.get(Product, product.id).stock == 10
        assert db_session.query(Document).count() == 0
        assert _next_number(db_session, "sale") == 1

    def test_second_line_shortage_undoes_first_line(self, db_session, make_product):
        plenty = make_product(stock=10, price_cents=100)
        scarce = make_product(stock=1, price_cents=100)

        with pytest.raises(InsufficientStock):
            _create(
                "sale",
                lines=[
                    LineRequest(product_id=plenty.id, quantity=3),
                    LineRequest(product_id=scarce.id, quantity=2),
                ],
                payments=[PaymentRequest("CASH", 500)],
            )

        assert db_session.get(Product, plenty.id).stock == 10
        assert db_session.query(StockMovement).filter(StockMovement.document_id.isnot(None)).count() == 0

    def test_same_product_on_two_lines_counts_cumulatively(self, db_session, make_product):
        product = make_product(stock=5, price_cents=100)

        with pytest.raises(InsufficientStock):
            _create(
                "sale",
                lines=[LineRequest(product_id=product.id, quantity=3), LineRequest(product_id=product.id, quantity=3)],
                payments=[PaymentRequest("CASH", 600)],
            )
        assert db_session.get(Product, product.id).stock == 5

    def test_discount_and_surcharge(self, db_session, make_product):
        product = make_product(stock=10, price_cents=1000)

        doc = _create(
            "sale",
            lines=[LineRequest(product_id=product.id, quantity=2, unit_price_cents=900)],
            payments=[PaymentRequest("CASH", 1000), PaymentRequest("CARD", 750)],
            discount_cents=100,
            surcharge_cents=50,
        )

        assert doc.subtotal_cents == 1800
        assert doc.total_cents == 1750
        assert doc.lines[0].unit_price_cents == 900
        assert {p.method for p in doc.payments} == {"CASH", "CARD"}

    def test_payment_mismatch_rejected(self, db_session, make_product):
        product = make_product(stock=10, price_cents=100)

        with pytest.raises(PaymentMismatch):
            _create(
                "sale",
                lines=[LineRequest(product_id=product.id, quantity=4)],
                payments=[PaymentRequest("CASH", 390)],
            )
        assert db_session.get(Product, product.id).stock == 10

    def test_one_cent_tolerance(self, db_session, make_product):
        product = make_product(stock=10, price_cents=100)
        doc = _create(
            "sale",
            lines=[LineRequest(product_id=product.id, quantity=4)],
            payments=[PaymentRequest("cash", 401)],
        )
        assert doc.payments[0].method == "CASH"

    def test_sale_requires_a_payment(self, db_session, make_product):
        product = make_product(stock=10, price_cents=100)
        with pytest.raises(ValidationFailed):
            _create("sale", lines=[LineRequest(product_id=product.id, quantity=1)], payments=[])

    def test_unknown_payment_method(self, db_session, make_product):
        product = make_product(stock=10, price_cents=100)
        with pytest.raises(ValidationFailed):
            _create(
                "sale",
                lines=[LineRequest(product_id=product.id, quantity=1)],
                payments=[PaymentRequest("BITCOIN", 100)],
            )

    def test_inactive_product_rejected(self, db_session, make_product):
        product = make_product(stock=10, price_cents=100, is_active=False)
        with pytest.raises(NotFound):
            _create(
                "sale",
                lines=[LineRequest(product_id=product.id, quantity=1)],
                payments=[PaymentRequest("CASH", 100)],
            )

    def test_walk_in_sale_cannot_use_account_credit(self, db_session, make_product):
        product = make_product(stock=10, price_cents=100)
        with pytest.raises(ValidationFailed):
            _create(
                "sale",
                lines=[LineRequest(product_id=product.id, quantity=1)],
                payments=[PaymentRequest("ACCOUNT_CREDIT", 100)],
            )


class TestAccountCreditSales:
    def test_credit_limit_exceeded_rolls_back_stock(self, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=1500)
        customer = make_customer(credit_limit_cents=1000)

        with pytest.raises(CreditLimitExceeded):
            _create(
                "sale",
                party_id=customer.id,
                lines=[LineRequest(product_id=product.id, quantity=1)],
                payments=[PaymentRequest("ACCOUNT_CREDIT", 1500)],
            )

        assert db_session.get(Customer, customer.id).balance_cents == 0
        assert db_session.get(Product, product.id).stock == 10
        assert _next_number(db_session, "sale") == 1

    def test_account_credit_debits_balance_and_links_payment(self, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=600)
        customer = make_customer(credit_limit_cents=1000)

        doc = _create(
            "sale",
            party_id=customer.id,
            lines=[LineRequest(product_id=product.id, quantity=1)],
            payments=[PaymentRequest("ACCOUNT_CREDIT", 600)],
        )

        assert db_session.get(Customer, customer.id).balance_cents == 600
        payment = doc.payments[0]
        movement = db_session.get(AccountMovement, payment.account_movement_id)
        assert movement.direction == "DEBIT"
        assert movement.concept == "SALE"
        assert movement.reference_type == "DOCUMENT"
        assert movement.reference_document_id == doc.id
        assert movement.reference_number == doc.number

    def test_mixed_payment_only_debits_account_part(self, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=1000)
        customer = make_customer()

        doc = _create(
            "sale",
            party_id=customer.id,
            lines=[LineRequest(product_id=product.id, quantity=1)],
            payments=[PaymentRequest("CASH", 300), PaymentRequest("ACCOUNT_CREDIT", 700)],
        )

        assert db_session.get(Customer, customer.id).balance_cents == 700
        assert [p.account_movement_id is not None for p in doc.payments] == [False, True]

    def test_purchase_cannot_use_account_credit(self, db_session, make_product, supplier):
        product = make_product(cost_cents=50)
        with pytest.raises(ValidationFailed):
            _create(
                "purchase",
                party_id=supplier.id,
                lines=[LineRequest(product_id=product.id, quantity=2)],
                payments=[PaymentRequest("ACCOUNT_CREDIT", 100)],
            )


class TestPurchases:
    def test_purchase_defaults_to_no_delivery(self, db_session, make_product, supplier):
        product = make_product(cost_cents=60)

        doc = _create(
            "purchase",
            party_id=supplier.id,
            lines=[LineRequest(product_id=product.id, quantity=10)],
            payments=[PaymentRequest("TRANSFER", 600)],
        )

        assert doc.number == "COMP-000001"
        assert doc.status == "PENDING"
        assert doc.lines[0].unit_price_cents == 60
        assert db_session.get(Product, product.id).stock == 0

    def test_purchase_full_reception(self, db_session, make_product, supplier):
        product = make_product(stock=2, cost_cents=60)

        doc = _create(
            "purchase",
            party_id=supplier.id,
            lines=[LineRequest(product_id=product.id, quantity=10)],
            payments=[PaymentRequest("CASH", 600)],
            delivery="FULL",
        )

        assert doc.status == "COMPLETED"
        assert db_session.get(Product, product.id).stock == 12
        movement = db_session.query(StockMovement).filter_by(document_id=doc.id).one()
        assert movement.kind == "IN"

    def test_purchase_requires_supplier(self, db_session, make_product):
        product = make_product(cost_cents=60)
        with pytest.raises(ValidationFailed):
            _create("purchase", lines=[LineRequest(product_id=product.id, quantity=1)], payments=[PaymentRequest("CASH", 60)])

    def test_partial_delivery_not_allowed_on_purchase(self, db_session, make_product, supplier):
        product = make_product(cost_cents=60)
        with pytest.raises(ValidationFailed):
            _create(
                "purchase",
                party_id=supplier.id,
                lines=[LineRequest(product_id=product.id, quantity=1)],
                payments=[PaymentRequest("CASH", 60)],
                delivery="PARTIAL",
            )

    def test_reception_batches(self, db_session, make_product, supplier):
        product = make_product(cost_cents=10)
        doc = _create(
            "purchase",
            party_id=supplier.id,
            lines=[LineRequest(product_id=product.id, quantity=10)],
            payments=[PaymentRequest("CASH", 100)],
        )
        line_id = doc.lines[0].id

        doc = document_service.deliver_partial(
            document_id=doc.id, deliveries=[DeliveryRequest(line_id, 4)], actor_id=ADMIN_ID,
        )
        assert doc.status == "PARTIAL"
        assert db_session.get(Product, product.id).stock == 4

        doc = document_service.deliver_partial(
            document_id=doc.id, deliveries=[DeliveryRequest(line_id, 6)], actor_id=ADMIN_ID,
        )
        assert doc.status == "COMPLETED"
        assert doc.lines[0].delivered_quantity == 10
        assert db_session.get(Product, product.id).stock == 10


class TestBudgets:
    def test_budget_requires_customer(self, db_session, make_product):
        product = make_product(stock=5)
        with pytest.raises(ValidationFailed):
            _create("budget", lines=[LineRequest(product_id=product.id, quantity=1)], payments=[PaymentRequest("CASH", 100)])

    def test_budget_partial_delivers_what_is_on_hand(self, db_session, make_product, make_customer):
        product = make_product(stock=3, price_cents=100)
        customer = make_customer()

        doc = _create(
            "budget",
            party_id=customer.id,
            lines=[LineRequest(product_id=product.id, quantity=5)],
            payments=[PaymentRequest("CASH", 500)],
            delivery="PARTIAL",
        )

        assert doc.number == "PRES-000001"
        assert doc.status == "PARTIAL"
        assert doc.lines[0].delivered_quantity == 3
        assert doc.lines[0].pending_quantity == 2
        assert db_session.get(Product, product.id).stock == 0

    def test_budget_partial_with_empty_shelf_stays_pending(self, db_session, make_product, make_customer):
        product = make_product(stock=0, price_cents=100)
        customer = make_customer()

        doc = _create(
            "budget",
            party_id=customer.id,
            lines=[LineRequest(product_id=product.id, quantity=2)],
            payments=[PaymentRequest("CASH", 200)],
            delivery="PARTIAL",
        )
        assert doc.status == "PENDING"
        assert db_session.query(StockMovement).filter_by(document_id=doc.id).count() == 0

    def test_budget_validity(self, db_session, make_product, make_customer):
        product = make_product(stock=3, price_cents=100)
        customer = make_customer()

        doc = _create(
            "budget",
            party_id=customer.id,
            lines=[LineRequest(product_id=product.id, quantity=1)],
            payments=[PaymentRequest("CASH", 100)],
            validity_days=15,
        )
        assert doc.valid_until - doc.issued_at == timedelta(days=15)

    def test_negative_validity_rejected_before_anything_is_posted(self, db_session, make_product, make_customer):
        product = make_product(stock=3, price_cents=100)
        customer = make_customer()

        with pytest.raises(ValidationFailed) as exc:
            _create(
                "budget",
                party_id=customer.id,
                lines=[LineRequest(product_id=product.id, quantity=1)],
                payments=[PaymentRequest("CASH", 100)],
                validity_days=-1,
            )
        assert exc.value.details == {"validity_days": -1}
        assert _next_number(db_session, "budget") == 1
        assert db_session.query(StockMovement).filter_by(product_id=product.id).count() == 1
        assert db_session.get(Product, product.id).stock == 3

    def test_budget_account_credit_uses_budget_concept(self, db_session, make_product, make_customer):
        product = make_product(stock=3, price_cents=100)
        customer = make_customer()

        doc = _create(
            "budget",
            party_id=customer.id,
            lines=[LineRequest(product_id=product.id, quantity=2)],
            payments=[PaymentRequest("ACCOUNT_CREDIT", 200)],
        )
        movement = db_session.get(AccountMovement, doc.payments[0].account_movement_id)
        assert movement.concept == "BUDGET"

    def test_delivery_beyond_pending_rejected(self, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=100)
        customer = make_customer()
        doc = _create(
            "budget",
            party_id=customer.id,
            lines=[LineRequest(product_id=product.id, quantity=3)],
            payments=[PaymentRequest("CASH", 300)],
        )

        with pytest.raises(ValidationFailed) as exc:
            document_service.deliver_partial(
                document_id=doc.id, deliveries=[DeliveryRequest(doc.lines[0].id, 4)], actor_id=ADMIN_ID,
            )
        assert exc.value.details["pending_quantity"] == 3
        assert db_session.get(Product, product.id).stock == 10

    def test_delivery_short_on_stock_rejected(self, db_session, make_product, make_customer):
        product = make_product(stock=1, price_cents=100)
        customer = make_customer()
        doc = _create(
            "budget",
            party_id=customer.id,
            lines=[LineRequest(product_id=product.id, quantity=3)],
            payments=[PaymentRequest("CASH", 300)],
        )

        with pytest.raises(InsufficientStock):
            document_service.deliver_partial(
                document_id=doc.id, deliveries=[DeliveryRequest(doc.lines[0].id, 2)], actor_id=ADMIN_ID,
            )
        assert db_session.get(Document, doc.id).lines[0].delivered_quantity == 0

    def test_delivery_on_foreign_line(self, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=100)
        customer = make_customer()
        docs = [
            _create(
                "budget",
                party_id=customer.id,
                lines=[LineRequest(product_id=product.id, quantity=1)],
                payments=[PaymentRequest("CASH", 100)],
            )
            for _ in range(2)
        ]

        with pytest.raises(NotFound):
            document_service.deliver_partial(
                document_id=docs[0].id, deliveries=[DeliveryRequest(docs[1].lines[0].id, 1)], actor_id=ADMIN_ID,
            )

    def test_sales_do_not_take_deliveries(self, db_session, make_product):
        product = make_product(stock=10, price_cents=100)
        doc = _create(
            "sale", lines=[LineRequest(product_id=product.id, quantity=1)], payments=[PaymentRequest("CASH", 100)],
        )
        with pytest.raises(ValidationFailed):
            document_service.deliver_partial(
                document_id=doc.id, deliveries=[DeliveryRequest(doc.lines[0].id, 1)], actor_id=ADMIN_ID,
            )


class TestQuotes:
    def _quote(self, product, customer, quantity=2):
        return _create(
            "quote",
            party_id=customer.id,
            lines=[LineRequest(product_id=product.id, quantity=quantity)],
            discount_cents=20,
        )

    def test_quote_touches_no_ledger(self, db_session, make_product, make_customer):
        product = make_product(stock=0, price_cents=100)
        customer = make_customer()

        quote = self._quote(product, customer, quantity=50)

        assert quote.number == "COT-000001"
        assert quote.status == "PENDING"
        assert quote.total_cents == 4980
        assert quote.valid_until is not None
        assert db_session.query(StockMovement).filter_by(document_id=quote.id).count() == 0
        assert db_session.query(AccountMovement).count() == 0

    def test_quote_rejects_payments(self, db_session, make_product, make_customer):
        product = make_product(price_cents=100)
        customer = make_customer()
        with pytest.raises(ValidationFailed):
            _create(
                "quote",
                party_id=customer.id,
                lines=[LineRequest(product_id=product.id, quantity=1)],
                payments=[PaymentRequest("CASH", 100)],
            )

    def test_status_change_appends_note(self, db_session, make_product, make_customer):
        quote = self._quote(make_product(price_cents=100), make_customer())

        quote = document_service.update_quote_status(
            document_id=quote.id, status="rejected", reason="Too expensive", actor_id=ADMIN_ID,
        )

        assert quote.status == "REJECTED"
        assert quote.notes.endswith("STATUS REJECTED: Too expensive")

    def test_only_pending_quotes_change_status(self, db_session, make_product, make_customer):
        quote = self._quote(make_product(price_cents=100), make_customer())
        document_service.update_quote_status(document_id=quote.id, status="ACCEPTED", reason=None, actor_id=ADMIN_ID)

        with pytest.raises(ValidationFailed):
            document_service.update_quote_status(document_id=quote.id, status="EXPIRED", reason=None, actor_id=ADMIN_ID)

    def test_status_change_on_non_quote(self, db_session, make_product):
        product = make_product(stock=5, price_cents=100)
        sale = _create(
            "sale", lines=[LineRequest(product_id=product.id, quantity=1)], payments=[PaymentRequest("CASH", 100)],
        )
        with pytest.raises(ValidationFailed):
            document_service.update_quote_status(document_id=sale.id, status="ACCEPTED", reason=None, actor_id=ADMIN_ID)

    def test_convert_accepted_quote(self, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=100)
        customer = make_customer()
        quote = self._quote(product, customer)
        document_service.update_quote_status(document_id=quote.id, status="ACCEPTED", reason=None, actor_id=ADMIN_ID)

        budget = document_service.convert_quote_to_budget(
            quote_id=quote.id, payments=[PaymentRequest("CASH", 180)], actor_id=ADMIN_ID, delivery="FULL",
        )

        assert budget.document_type == "budget"
        assert budget.number == "PRES-000001"
        assert budget.source_document_id == quote.id
        assert budget.total_cents == 180
        assert budget.status == "COMPLETED"
        assert db_session.get(Product, product.id).stock == 8
        assert f"Converted to budget {budget.number}" in db_session.get(Document, quote.id).notes

    def test_convert_requires_accepted(self, db_session, make_product, make_customer):
        quote = self._quote(make_product(stock=10, price_cents=100), make_customer())
        with pytest.raises(ValidationFailed):
            document_service.convert_quote_to_budget(
                quote_id=quote.id, payments=[PaymentRequest("CASH", 180)], actor_id=ADMIN_ID,
            )

    def test_convert_only_once(self, db_session, make_product, make_customer):
        quote = self._quote(make_product(stock=10, price_cents=100), make_customer())
        document_service.update_quote_status(document_id=quote.id, status="ACCEPTED", reason=None, actor_id=ADMIN_ID)
        document_service.convert_quote_to_budget(
            quote_id=quote.id, payments=[PaymentRequest("CASH", 180)], actor_id=ADMIN_ID,
        )

        with pytest.raises(ValidationFailed):
            document_service.convert_quote_to_budget(
                quote_id=quote.id, payments=[PaymentRequest("CASH", 180)], actor_id=ADMIN_ID,
            )
        assert _next_number(db_session, "budget") == 2

    def test_failed_conversion_leaves_quote_untouched(self, db_session, make_product, make_customer):
        quote = self._quote(make_product(stock=10, price_cents=100), make_customer())
        document_service.update_quote_status(document_id=quote.id, status="ACCEPTED", reason=None, actor_id=ADMIN_ID)

        with pytest.raises(PaymentMismatch):
            document_service.convert_quote_to_budget(
                quote_id=quote.id, payments=[PaymentRequest("CASH", 100)], actor_id=ADMIN_ID,
            )

        assert "Converted" not in (db_session.get(Document, quote.id).notes or "")
        assert db_session.query(Document).filter_by(document_type="budget").count() == 0


class TestQueries:
    def test_list_documents_filters(self, db_session, make_product, make_customer):
        product = make_product(stock=10, price_cents=100)
        customer = make_customer()
        _create("sale", lines=[LineRequest(product_id=product.id, quantity=1)], payments=[PaymentRequest("CASH", 100)])
        _create("quote", party_id=customer.id, lines=[LineRequest(product_id=product.id, quantity=1)])

        rows, total = document_service.list_documents(document_type="sale")
        assert total == 1
        assert rows[0].document_type == "sale"

        rows, total = document_service.list_documents(customer_id=customer.id)
        assert total == 1
        assert rows[0].document_type == "quote"

    def test_get_missing_document(self, db_session):
        with pytest.raises(NotFound):
            document_service.get_document(12345)
