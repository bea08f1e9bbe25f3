# Overview: Service-layer operations for cancellations and voids; posts compensating entries, never edits history.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import AlreadyCancelled, InsufficientStock, NotFound, ReversalRejected, ValidationFailed
from ..models import AccountMovement, AccountReceipt, Document, StockMovement
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from . import account_service, audit_service, document_service, stock_service

"""
Reversal invariants

- Nothing is deleted or rewritten. Every effect a document had on stock or on
  the running account is undone by a new movement pointing at the original
  through reverses_movement_id.
- The AlreadyCancelled guard, the compensating entries and the status flip
  share one transaction, so two concurrent cancels cannot both succeed.
- If any compensating entry is rejected, the document stays as it was.
"""

# Quotes that reached these states are closed and cannot be cancelled
_QUOTE_CLOSED = (document_service.STATUS_REJECTED, document_service.STATUS_EXPIRED)


def _movements_to_reverse(doc: Document) -> list[StockMovement]:
    """Original IN/OUT rows of doc that do not yet have a compensating row."""
    originals = (
        db.session.query(StockMovement)
        .filter(
            StockMovement.document_id == doc.id,
            StockMovement.reverses_movement_id.is_(None),
            StockMovement.kind.in_((stock_service.KIND_IN, stock_service.KIND_OUT)),
        )
        .order_by(StockMovement.id.asc())
        .all()
    )
    reversed_ids = {
        row.reverses_movement_id
        for row in db.session.query(StockMovement.reverses_movement_id)
        .filter(
            StockMovement.document_id == doc.id,
            StockMovement.reverses_movement_id.isnot(None),
        )
        .all()
    }
    return [m for m in originals if m.id not in reversed_ids]


def cancel_document(*, document_id: int, reason: str | None, actor_id: int) -> Document:
    """
    Cancel a document by compensating its stock and running-account effects.

    - Delivered OUT quantities are restocked with IN movements (sale, budget).
    - Received IN quantities are taken back out with OUT movements
      (purchase); if the goods are no longer on hand this fails with
      ReversalRejected.
    - Each account-credit payment gets a compensating CREDIT.
    - Status becomes CANCELLED and the reason is appended to notes.

    Raises:
        NotFound, AlreadyCancelled, ReversalRejected, ValidationFailed
    """
    def _op():
        doc = document_service.get_document_for_update(document_id)
        if doc.status == document_service.STATUS_CANCELLED:
            raise AlreadyCancelled(
                f"Document {doc.number} is already cancelled",
                {"document_id": doc.id, "number": doc.number},
            )
        if doc.document_type == document_service.TYPE_QUOTE and doc.status in _QUOTE_CLOSED:
            raise ValidationFailed(
                f"Quote {doc.number} is {doc.status} and cannot be cancelled",
                {"document_id": doc.id, "status": doc.status},
            )

        note = f"Cancellation of {doc.document_type} {doc.number}"

        stock_reversals = []
        for original in _movements_to_reverse(doc):
            try:
                reversal = stock_service.reverse_stock_movement(original, actor_id=actor_id, reason=note)
            except InsufficientStock as exc:
                raise ReversalRejected(
                    f"Cannot cancel {doc.number}: received goods are no longer in stock",
                    {"document_id": doc.id, "movement_id": original.id, **exc.details},
                ) from exc
            stock_reversals.append(reversal)

        account_reversals = []
        for payment in doc.payments:
            if payment.account_movement_id is None:
                continue
            original = db.session.get(AccountMovement, payment.account_movement_id)
            reversal = account_service.reverse_account_movement(
                original,
                actor_id=actor_id,
                concept=account_service.CONCEPT_CANCELLATION,
                description=note,
            )
            account_reversals.append(reversal)

        now = utcnow()
        previous = doc.status
        doc.status = document_service.STATUS_CANCELLED
        doc.cancelled_at = now
        doc.cancelled_by_actor_id = actor_id
        doc.append_note(f"CANCELLED: {reason}" if reason else "CANCELLED")

        audit_service.append_audit_event(
            event_type=audit_service.EVENT_DOCUMENT_CANCELLED,
            entity_type=doc.document_type,
            entity_id=doc.id,
            actor_id=actor_id,
            document_id=doc.id,
            note=reason,
            payload={
                "previous_status": previous,
                "stock_movement_ids": [m.id for m in stock_reversals],
                "account_movement_ids": [m.id for m in account_reversals],
            },
            occurred_at=now,
        )
        return doc

    try:
        doc = run_in_transaction(_op)
    except ReversalRejected as exc:
        current_app.logger.warning("Cancellation of document %s rejected: %s", document_id, exc.message)
        raise
    current_app.logger.info("Cancelled %s %s by actor %s", doc.document_type, doc.number, actor_id)
    return doc


def void_receipt(*, receipt_id: int, reason: str | None, actor_id: int) -> AccountReceipt:
    """
    Undo a single customer payment without touching any document.

    The compensating DEBIT is subject to the credit limit; when the limit no
    longer allows it the void fails with ReversalRejected.
    """
    def _op():
        receipt = lock_for_update(db.session.query(AccountReceipt).filter_by(id=receipt_id)).first()
        if not receipt:
            raise NotFound(f"Receipt {receipt_id} not found", {"receipt_id": receipt_id})
        if receipt.status == account_service.RECEIPT_VOIDED:
            raise AlreadyCancelled(
                f"Receipt {receipt.number} is already voided",
                {"receipt_id": receipt.id, "number": receipt.number},
            )

        original = db.session.get(AccountMovement, receipt.account_movement_id)
        reversal = account_service.reverse_account_movement(
            original,
            actor_id=actor_id,
            concept=account_service.CONCEPT_RECEIPT_VOID,
            description=f"Void of payment {receipt.number}",
        )

        now = utcnow()
        receipt.status = account_service.RECEIPT_VOIDED
        receipt.voided_at = now
        receipt.voided_by_actor_id = actor_id
        receipt.void_movement_id = reversal.id
        receipt.append_note(f"VOIDED: {reason}" if reason else "VOIDED")

        audit_service.append_audit_event(
            event_type=audit_service.EVENT_RECEIPT_VOIDED,
            entity_type="receipt",
            entity_id=receipt.id,
            actor_id=actor_id,
            note=reason,
            payload={"reversal_movement_id": reversal.id, "amount_cents": reversal.amount_cents},
            occurred_at=now,
        )
        return receipt

    receipt = run_in_transaction(_op)
    current_app.logger.info("Receipt %s voided by actor %s", receipt.number, actor_id)
    return receipt
