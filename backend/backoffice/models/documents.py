from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    One counter row per document type.

    WHY: Document numbers are issued by locking this row for the whole
    enclosing transaction, so concurrent issuers serialize on it. A rolled
    back transaction also rolls back its increment; numbers are never reused.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_document_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    prefix = db.Column(db.String(16), nullable=False, default="")
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "prefix": self.prefix,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class Document(db.Model):
    """
    Business document: sale, purchase, budget or quote.

    LIFECYCLE (sale/purchase/budget):
        PENDING -> {COMPLETED | PARTIAL} -> COMPLETED, CANCELLED from any
        non-terminal state. Sales are created COMPLETED.
    LIFECYCLE (quote):
        PENDING -> {ACCEPTED | REJECTED | EXPIRED}, CANCELLED from any
        non-terminal state.

    INVARIANT: total_cents = subtotal_cents - discount_cents + surcharge_cents,
    fixed at creation and never recomputed.
    """
    __tablename__ = "documents"
    __table_args__ = (
        db.UniqueConstraint("document_type", "number", name="uq_documents_type_number"),
        db.Index("ix_documents_type_status_created", "document_type", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(16), nullable=False, index=True)
    number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, index=True)
    delivery_policy = db.Column(db.String(16), nullable=False, default="NONE")

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    actor_id = db.Column(db.Integer, nullable=False, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    surcharge_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # Append-only audit note field
    notes = db.Column(db.Text, nullable=True)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_actor_id = db.Column(db.Integer, nullable=True)

    source_document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("documents", lazy="dynamic"))
    supplier = db.relationship("Supplier", backref=db.backref("documents", lazy="dynamic"))
    lines = db.relationship(
        "DocumentLine",
        backref="document",
        lazy=True,
        order_by="DocumentLine.id",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "DocumentPayment",
        backref="document",
        lazy=True,
        order_by="DocumentPayment.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def append_note(self, note: str) -> None:
        """Append to the audit note field; earlier notes are never overwritten."""
        note = (note or "").strip()
        if not note:
            return
        self.notes = f"{self.notes} | {note}" if self.notes else note

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "document_type": self.document_type,
            "number": self.number,
            "status": self.status,
            "delivery_policy": self.delivery_policy,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "actor_id": self.actor_id,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "surcharge_cents": self.surcharge_cents,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "issued_at": to_utc_z(self.issued_at),
            "valid_until": to_utc_z(self.valid_until) if self.valid_until else None,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by_actor_id": self.cancelled_by_actor_id,
            "source_document_id": self.source_document_id,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class DocumentLine(db.Model):
    """
    Line item. delivered_quantity tracks stock actually moved for the line
    (delivered for sales/budgets, received for purchases).
    """
    __tablename__ = "document_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    delivered_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    product = db.relationship("Product")

    @property
    def pending_quantity(self) -> int:
        return self.quantity - (self.delivered_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "delivered_quantity": self.delivered_quantity,
            "pending_quantity": self.pending_quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "description": self.description,
        }


class DocumentPayment(db.Model):
    """
    Payment line of a document.

    account_movement_id is set only for ACCOUNT_CREDIT payments and links the
    payment to the debit it produced on the customer's running account.
    """
    __tablename__ = "document_payments"
    __table_args__ = (
        db.Index("ix_document_payments_method_created", "method", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)
    method = db.Column(db.String(32), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)
    account_movement_id = db.Column(db.Integer, db.ForeignKey("account_movements.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    account_movement = db.relationship("AccountMovement", foreign_keys=[account_movement_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "account_movement_id": self.account_movement_id,
            "created_at": to_utc_z(self.created_at),
        }
