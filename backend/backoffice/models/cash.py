from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class CashClosing(db.Model):
    """
    Immutable cash-closing snapshot over the half-open window
    [window_start, window_end).

    expected_cash_cents = opening_cash_cents + cash_in_cents - cash_out_cents
    discrepancy_cents = counted_cash_cents - expected_cash_cents

    The computed line items are copied into CashClosingLine so an audit never
    has to re-derive them from the live ledgers.
    """
    __tablename__ = "cash_closings"
    __table_args__ = (
        db.Index("ix_cash_closings_scope_window", "scope", "window_start", "window_end"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, nullable=False, index=True)
    scope = db.Column(db.String(16), nullable=False)

    window_start = db.Column(db.DateTime(timezone=True), nullable=False)
    window_end = db.Column(db.DateTime(timezone=True), nullable=False)

    opening_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_cents = db.Column(db.Integer, nullable=False)
    counted_cash_cents = db.Column(db.Integer, nullable=False)
    discrepancy_cents = db.Column(db.Integer, nullable=False)

    total_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_in_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_out_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    lines = db.relationship(
        "CashClosingLine",
        backref="closing",
        lazy=True,
        order_by="CashClosingLine.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "actor_id": self.actor_id,
            "scope": self.scope,
            "window_start": to_utc_z(self.window_start),
            "window_end": to_utc_z(self.window_end),
            "opening_cash_cents": self.opening_cash_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "discrepancy_cents": self.discrepancy_cents,
            "total_sales_cents": self.total_sales_cents,
            "total_purchases_cents": self.total_purchases_cents,
            "cash_in_cents": self.cash_in_cents,
            "cash_out_cents": self.cash_out_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class CashClosingLine(db.Model):
    __tablename__ = "cash_closing_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    closing_id = db.Column(db.Integer, db.ForeignKey("cash_closings.id"), nullable=False, index=True)

    # SALE, CUSTOMER_PAYMENT, PURCHASE, ADJUSTMENT_IN, ADJUSTMENT_OUT
    kind = db.Column(db.String(32), nullable=False)
    method = db.Column(db.String(32), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    transaction_count = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "closing_id": self.closing_id,
            "kind": self.kind,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "transaction_count": self.transaction_count,
            "description": self.description,
        }
