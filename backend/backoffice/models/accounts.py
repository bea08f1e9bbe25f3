from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class AccountReceipt(db.Model):
    """
    Customer payment received against the running account.

    Each receipt owns exactly one CREDIT AccountMovement. Voiding never deletes
    the receipt: status flips to VOIDED and a compensating DEBIT is posted.
    """
    __tablename__ = "account_receipts"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_account_receipts_number"),
        db.Index("ix_account_receipts_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    actor_id = db.Column(db.Integer, nullable=False)

    number = db.Column(db.String(64), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)
    notes = db.Column(db.Text, nullable=True)

    account_movement_id = db.Column(db.Integer, db.ForeignKey("account_movements.id"), nullable=False)
    void_movement_id = db.Column(db.Integer, db.ForeignKey("account_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_actor_id = db.Column(db.Integer, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("receipts", lazy="dynamic"))
    account_movement = db.relationship("AccountMovement", foreign_keys=[account_movement_id])
    void_movement = db.relationship("AccountMovement", foreign_keys=[void_movement_id])

    __mapper_args__ = {"version_id_col": version_id}

    def append_note(self, note: str) -> None:
        note = (note or "").strip()
        if not note:
            return
        self.notes = f"{self.notes} | {note}" if self.notes else note

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "actor_id": self.actor_id,
            "number": self.number,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "status": self.status,
            "notes": self.notes,
            "account_movement_id": self.account_movement_id,
            "void_movement_id": self.void_movement_id,
            "created_at": to_utc_z(self.created_at),
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "voided_by_actor_id": self.voided_by_actor_id,
        }
