# Overview: Pytest coverage for document numbering.

"""
Tests for sequence_service.

- Numbers are prefix + zero-padded counter and strictly increase per type.
- A missing counter row fails with ConfigurationMissing and rolls back the
  whole unit of work.
- A rejected document never consumes a number.
"""

import pytest

from backoffice.errors import ConfigurationMissing, InsufficientStock
from backoffice.models import DocumentSequence, Product
from backoffice.services import document_service, sequence_service
from backoffice.services.document_service import LineRequest, PaymentRequest

from conftest import ADMIN_ID


def _cash_sale(product, quantity=1):
    return document_service.create_document(
        document_type="sale",
        party_id=None,
        lines=[LineRequest(product_id=product.id, quantity=quantity)],
        payments=[PaymentRequest(method="CASH", amount_cents=product.price_cents * quantity)],
        actor_id=ADMIN_ID,
    )


class TestFormatting:
    def test_zero_padded_with_prefix(self):
        assert sequence_service.format_document_number("FAC-", 1, 6) == "FAC-000001"
        assert sequence_service.format_document_number("", 42, 4) == "0042"

    def test_number_wider_than_pad_is_not_truncated(self):
        assert sequence_service.format_document_number("X", 1234567, 6) == "X1234567"


class TestNextDocumentNumber:
    def test_consecutive_numbers(self, db_session):
        first = sequence_service.next_document_number("sale")
        second = sequence_service.next_document_number("sale")
        db_session.commit()

        assert first == "FAC-000001"
        assert second == "FAC-000002"
        seq = db_session.query(DocumentSequence).filter_by(document_type="sale").one()
        assert seq.next_number == 3

    def test_types_are_independent(self, db_session):
        assert sequence_service.next_document_number("sale") == "FAC-000001"
        assert sequence_service.next_document_number("purchase") == "COMP-000001"
        assert sequence_service.next_document_number("receipt") == "REC-000001"
        db_session.rollback()

    def test_missing_counter_raises(self, db_session):
        with pytest.raises(ConfigurationMissing) as exc:
            sequence_service.next_document_number("delivery_note")
        assert exc.value.details["document_type"] == "delivery_note"
        assert exc.value.status_code == 500

    def test_rolled_back_increment_is_not_persisted(self, db_session):
        sequence_service.next_document_number("sale")
        db_session.rollback()
        assert sequence_service.next_document_number("sale") == "FAC-000001"
        db_session.rollback()


class TestNumbersThroughDocuments:
    def test_rejected_document_consumes_no_number(self, db_session, make_product):
        product = make_product(stock=1, price_cents=500)

        with pytest.raises(InsufficientStock):
            _cash_sale(product, quantity=2)

        doc = _cash_sale(product, quantity=1)
        assert doc.number == "FAC-000001"

    def test_missing_counter_aborts_document(self, db_session, make_product):
        product = make_product(stock=5, price_cents=500)
        db_session.query(DocumentSequence).filter_by(document_type="sale").delete()
        db_session.commit()

        with pytest.raises(ConfigurationMissing):
            _cash_sale(product, quantity=2)

        # Stock was posted before the number was requested; it rolled back too
        assert db_session.get(Product, product.id).stock == 5
        assert product.stock_movements.count() == 1


class TestPrefixConfiguration:
    def test_set_prefix_applies_to_future_numbers(self, db_session, make_product):
        product = make_product(stock=5, price_cents=100)
        first = _cash_sale(product)

        sequence_service.set_prefix("sale", "FAC-B-")
        second = _cash_sale(product)

        assert first.number == "FAC-000001"
        assert second.number == "FAC-B-000002"

    def test_set_prefix_unknown_type(self, db_session):
        with pytest.raises(ConfigurationMissing):
            sequence_service.set_prefix("nothing", "N-")

    def test_ensure_sequences_keeps_existing_position(self, db_session):
        sequence_service.next_document_number("quote")
        db_session.commit()

        created = sequence_service.ensure_sequences({"quote": "Q-", "credit_note": "NC-"})
        db_session.commit()

        assert [s.document_type for s in created] == ["credit_note"]
        quote = db_session.query(DocumentSequence).filter_by(document_type="quote").one()
        assert quote.prefix == "COT-"
        assert quote.next_number == 2
