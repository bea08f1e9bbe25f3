# Overview: Service-layer operations for cash closings; read-only against the ledgers, persists a snapshot.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import Conflict, NotFound, ValidationFailed
from ..models import AccountReceipt, CashClosing, CashClosingLine, Document, DocumentPayment
from ..time_utils import to_utc_z, utcnow
from .concurrency import run_in_transaction
from . import account_service, audit_service, document_service, sequence_service

"""
Cash closing invariants

- Windows are half-open: [window_start, window_end).
- Aggregation never writes to the stock or account ledgers.
- Cancelled documents and voided receipts are left out.
- Two closings of the same scope never overlap.
- The persisted lines are a snapshot; later ledger activity never changes a
  closing.
"""

SCOPE_SALES = "SALES"
SCOPE_FULL = "FULL"
SCOPES = (SCOPE_SALES, SCOPE_FULL)

# Per-scope guard row; close_cash holds its lock across the overlap check
GUARD_KEY_PREFIX = "cash_closing:"

LINE_SALE = "SALE"
LINE_CUSTOMER_PAYMENT = "CUSTOMER_PAYMENT"
LINE_PURCHASE = "PURCHASE"
LINE_ADJUSTMENT_IN = "ADJUSTMENT_IN"
LINE_ADJUSTMENT_OUT = "ADJUSTMENT_OUT"
MANUAL_LINE_KINDS = (LINE_ADJUSTMENT_IN, LINE_ADJUSTMENT_OUT)

# Customer-facing documents whose payments are income
INCOME_DOCUMENT_TYPES = (document_service.TYPE_SALE, document_service.TYPE_BUDGET)


@dataclass(frozen=True)
class ClosingLineRequest:
    kind: str
    amount_cents: int
    method: str = document_service.METHOD_CASH
    description: Optional[str] = None


@dataclass
class ClosingLine:
    kind: str
    method: Optional[str]
    amount_cents: int
    transaction_count: int = 0
    description: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "transaction_count": self.transaction_count,
            "description": self.description,
        }


@dataclass
class ClosingAggregate:
    scope: str
    window_start: datetime
    window_end: datetime
    lines: list[ClosingLine] = field(default_factory=list)
    total_sales_cents: int = 0
    total_purchases_cents: int = 0
    cash_in_cents: int = 0
    cash_out_cents: int = 0

    def to_dict(self) -> dict:
        return {
            "scope": self.scope,
            "window_start": to_utc_z(self.window_start),
            "window_end": to_utc_z(self.window_end),
            "lines": [line.to_dict() for line in self.lines],
            "total_sales_cents": self.total_sales_cents,
            "total_purchases_cents": self.total_purchases_cents,
            "cash_in_cents": self.cash_in_cents,
            "cash_out_cents": self.cash_out_cents,
        }


def _normalize_scope(scope: str | None) -> str:
    value = (scope or SCOPE_SALES).strip().upper()
    if value not in SCOPES:
        raise ValidationFailed(f"Invalid closing scope: {scope}", {"scope": scope, "allowed": list(SCOPES)})
    return value


def _validate_window(window_start: datetime | None, window_end: datetime | None) -> None:
    if window_start is None or window_end is None:
        raise ValidationFailed("window_start and window_end are required")
    if window_end <= window_start:
        raise ValidationFailed(
            "window_end must be after window_start",
            {"window_start": to_utc_z(window_start), "window_end": to_utc_z(window_end)},
        )


def _document_payments_by_method(doc_types, window_start, window_end):
    return (
        db.session.query(
            DocumentPayment.method,
            func.coalesce(func.sum(DocumentPayment.amount_cents), 0),
            func.count(DocumentPayment.id),
        )
        .join(Document, Document.id == DocumentPayment.document_id)
        .filter(
            Document.document_type.in_(doc_types),
            Document.status != document_service.STATUS_CANCELLED,
            DocumentPayment.created_at >= window_start,
            DocumentPayment.created_at < window_end,
        )
        .group_by(DocumentPayment.method)
        .order_by(DocumentPayment.method.asc())
        .all()
    )


def _receipts_by_method(window_start, window_end):
    return (
        db.session.query(
            AccountReceipt.method,
            func.coalesce(func.sum(AccountReceipt.amount_cents), 0),
            func.count(AccountReceipt.id),
        )
        .filter(
            AccountReceipt.status == account_service.RECEIPT_ACTIVE,
            AccountReceipt.created_at >= window_start,
            AccountReceipt.created_at < window_end,
        )
        .group_by(AccountReceipt.method)
        .order_by(AccountReceipt.method.asc())
        .all()
    )


def aggregate_window(window_start: datetime, window_end: datetime, scope: str) -> ClosingAggregate:
    """
    Read-only aggregation of payment records in [window_start, window_end).

    SALES scope counts sale/budget payments and customer receipts; FULL also
    counts purchase payments as cash out.
    """
    agg = ClosingAggregate(scope=scope, window_start=window_start, window_end=window_end)
    cash = document_service.METHOD_CASH

    for method, amount, count in _document_payments_by_method(INCOME_DOCUMENT_TYPES, window_start, window_end):
        amount = int(amount)
        agg.lines.append(ClosingLine(LINE_SALE, method, amount, int(count), "Sales payments"))
        agg.total_sales_cents += amount
        if method == cash:
            agg.cash_in_cents += amount

    for method, amount, count in _receipts_by_method(window_start, window_end):
        amount = int(amount)
        agg.lines.append(ClosingLine(LINE_CUSTOMER_PAYMENT, method, amount, int(count), "Running account payments"))
        if method == cash:
            agg.cash_in_cents += amount

    if scope == SCOPE_FULL:
        purchase_rows = _document_payments_by_method((document_service.TYPE_PURCHASE,), window_start, window_end)
        for method, amount, count in purchase_rows:
            amount = int(amount)
            agg.lines.append(ClosingLine(LINE_PURCHASE, method, amount, int(count), "Purchase payments"))
            agg.total_purchases_cents += amount
            if method == cash:
                agg.cash_out_cents += amount

    return agg


def preview_cash_closing(*, window_start: datetime, window_end: datetime, scope: str | None = None) -> dict:
    """Pending closing data for a window; nothing is persisted."""
    scope = _normalize_scope(scope)
    _validate_window(window_start, window_end)
    agg = aggregate_window(window_start, window_end, scope)
    data = agg.to_dict()
    data["net_cash_cents"] = agg.cash_in_cents - agg.cash_out_cents
    data["overlapping_closing_id"] = getattr(_find_overlap(window_start, window_end, scope), "id", None)
    return data


def guard_key(scope: str) -> str:
    return f"{GUARD_KEY_PREFIX}{scope}"


def ensure_scope_guards() -> None:
    """Seed one guard row per scope. Caller owns the transaction."""
    sequence_service.ensure_sequences({guard_key(scope): "" for scope in SCOPES})


def _find_overlap(window_start: datetime, window_end: datetime, scope: str) -> CashClosing | None:
    return (
        db.session.query(CashClosing)
        .filter(
            CashClosing.scope == scope,
            CashClosing.window_start < window_end,
            CashClosing.window_end > window_start,
        )
        .order_by(CashClosing.id.asc())
        .first()
    )


def _manual_lines(line_items: list[ClosingLineRequest]) -> list[ClosingLine]:
    lines = []
    for idx, item in enumerate(line_items or []):
        kind = (item.kind or "").strip().upper()
        if kind not in MANUAL_LINE_KINDS:
            raise ValidationFailed(
                f"Invalid closing line kind: {item.kind}",
                {"index": idx, "kind": item.kind, "allowed": list(MANUAL_LINE_KINDS)},
            )
        if not isinstance(item.amount_cents, int) or isinstance(item.amount_cents, bool) or item.amount_cents <= 0:
            raise ValidationFailed(
                "Closing line amount must be a positive integer",
                {"index": idx, "amount_cents": item.amount_cents},
            )
        method = (item.method or document_service.METHOD_CASH).strip().upper()
        if method not in document_service.PAYMENT_METHODS:
            raise ValidationFailed(
                f"Invalid closing line method: {item.method}",
                {"index": idx, "method": item.method},
            )
        lines.append(ClosingLine(kind, method, item.amount_cents, 1, item.description))
    return lines


def close_cash(
    *,
    window_start: datetime,
    window_end: datetime,
    counted_cash_cents: int,
    actor_id: int,
    opening_cash_cents: int = 0,
    line_items: list[ClosingLineRequest] | None = None,
    scope: str | None = None,
    notes: str | None = None,
) -> CashClosing:
    """
    Persist a closing for [window_start, window_end).

    expected = opening + cash in - cash out (manual CASH adjustments included)
    discrepancy = counted - expected
    """
    scope = _normalize_scope(scope)
    _validate_window(window_start, window_end)
    for name, value in (("counted_cash_cents", counted_cash_cents), ("opening_cash_cents", opening_cash_cents)):
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise ValidationFailed(f"{name} must be a non-negative integer", {name: value})
    manual = _manual_lines(line_items or [])

    def _op():
        sequence_service.lock_guard_row(guard_key(scope))
        existing = _find_overlap(window_start, window_end, scope)
        if existing:
            raise Conflict(
                "A cash closing already covers part of this window",
                {
                    "closing_id": existing.id,
                    "scope": existing.scope,
                    "window_start": to_utc_z(existing.window_start),
                    "window_end": to_utc_z(existing.window_end),
                },
            )

        agg = aggregate_window(window_start, window_end, scope)
        cash_in = agg.cash_in_cents
        cash_out = agg.cash_out_cents
        for line in manual:
            if line.method != document_service.METHOD_CASH:
                continue
            if line.kind == LINE_ADJUSTMENT_IN:
                cash_in += line.amount_cents
            else:
                cash_out += line.amount_cents

        expected = opening_cash_cents + cash_in - cash_out
        closing = CashClosing(
            actor_id=actor_id,
            scope=scope,
            window_start=window_start,
            window_end=window_end,
            opening_cash_cents=opening_cash_cents,
            expected_cash_cents=expected,
            counted_cash_cents=counted_cash_cents,
            discrepancy_cents=counted_cash_cents - expected,
            total_sales_cents=agg.total_sales_cents,
            total_purchases_cents=agg.total_purchases_cents,
            cash_in_cents=cash_in,
            cash_out_cents=cash_out,
            notes=(notes or "").strip() or None,
            created_at=utcnow(),
        )
        for line in agg.lines + manual:
            closing.lines.append(
                CashClosingLine(
                    kind=line.kind,
                    method=line.method,
                    amount_cents=line.amount_cents,
                    transaction_count=line.transaction_count,
                    description=line.description,
                )
            )
        db.session.add(closing)
        db.session.flush()

        audit_service.append_audit_event(
            event_type=audit_service.EVENT_CASH_CLOSED,
            entity_type="cash_closing",
            entity_id=closing.id,
            actor_id=actor_id,
            note=notes,
            payload={
                "scope": scope,
                "expected_cash_cents": expected,
                "counted_cash_cents": counted_cash_cents,
                "discrepancy_cents": closing.discrepancy_cents,
            },
        )
        return closing

    closing = run_in_transaction(_op)
    log = current_app.logger.warning if closing.discrepancy_cents else current_app.logger.info
    log(
        "Cash closing %s (%s) expected=%s counted=%s discrepancy=%s",
        closing.id, closing.scope, closing.expected_cash_cents,
        closing.counted_cash_cents, closing.discrepancy_cents,
    )
    return closing


def get_cash_closing(closing_id: int) -> CashClosing:
    closing = db.session.get(CashClosing, closing_id)
    if not closing:
        raise NotFound(f"Cash closing {closing_id} not found", {"closing_id": closing_id})
    return closing


def list_cash_closings(
    *,
    scope: str | None = None,
    actor_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[CashClosing], int]:
    q = db.session.query(CashClosing)
    if scope:
        q = q.filter(CashClosing.scope == _normalize_scope(scope))
    if actor_id is not None:
        q = q.filter(CashClosing.actor_id == actor_id)
    if date_from is not None:
        q = q.filter(CashClosing.window_end > date_from)
    if date_to is not None:
        q = q.filter(CashClosing.window_start < date_to)

    total = q.count()
    limit = max(1, min(int(limit), 500))
    offset = max(0, int(offset))
    rows = q.order_by(CashClosing.window_start.desc(), CashClosing.id.desc()).offset(offset).limit(limit).all()
    return rows, total
