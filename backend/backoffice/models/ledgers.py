from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    KINDS:
    - IN: quantity_after = quantity_before + quantity
    - OUT: quantity_after = quantity_before - quantity (never below zero)
    - ADJUST: quantity_after = quantity (stocktake correction)

    REVERSAL: a compensating row of the opposite kind with
    reverses_movement_id pointing at the original. Rows are never updated
    or deleted once committed.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_id_desc", "product_id", "id"),
        db.Index("ix_stock_movements_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    actor_id = db.Column(db.Integer, nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True, index=True)
    document_line_id = db.Column(db.Integer, db.ForeignKey("document_lines.id"), nullable=True)
    reverses_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True, index=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_movements", lazy="dynamic"))

    @property
    def is_reversal(self) -> bool:
        return self.reverses_movement_id is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "actor_id": self.actor_id,
            "kind": self.kind,
            "quantity": self.quantity,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "reason": self.reason,
            "document_id": self.document_id,
            "document_line_id": self.document_line_id,
            "reverses_movement_id": self.reverses_movement_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class AccountMovement(db.Model):
    """
    Append-only running-account ledger.

    DEBIT increases what the customer owes, CREDIT decreases it (floored at
    zero). balance_before/balance_after are captured at posting time under the
    customer row lock.

    reference_type tags the origin: DOCUMENT, RECEIPT, ADJUSTMENT, or REVERSAL
    (with reverses_movement_id set).
    """
    __tablename__ = "account_movements"
    __table_args__ = (
        db.Index("ix_account_movements_customer_id_desc", "customer_id", "id"),
        db.Index("ix_account_movements_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    actor_id = db.Column(db.Integer, nullable=False, index=True)

    direction = db.Column(db.String(8), nullable=False, index=True)
    concept = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_before_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(16), nullable=False)
    reference_document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True, index=True)
    reference_number = db.Column(db.String(64), nullable=True)
    reverses_movement_id = db.Column(db.Integer, db.ForeignKey("account_movements.id"), nullable=True, index=True)
    description = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("account_movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "actor_id": self.actor_id,
            "direction": self.direction,
            "concept": self.concept,
            "amount_cents": self.amount_cents,
            "balance_before_cents": self.balance_before_cents,
            "balance_after_cents": self.balance_after_cents,
            "reference_type": self.reference_type,
            "reference_document_id": self.reference_document_id,
            "reference_number": self.reference_number,
            "reverses_movement_id": self.reverses_movement_id,
            "description": self.description,
            "occurred_at": to_utc_z(self.occurred_at),
        }
