# Overview: Read-only checks of the derived-value invariants between ledgers and snapshots.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import AccountMovement, Customer, Product, StockMovement


def _latest_by(model, key_col):
    """Subquery: latest movement id per key."""
    return (
        db.session.query(key_col.label("key"), func.max(model.id).label("latest_id"))
        .group_by(key_col)
        .subquery()
    )


def verify_stock_ledger() -> list[dict]:
    latest = _latest_by(StockMovement, StockMovement.product_id)
    rows = (
        db.session.query(Product, StockMovement)
        .outerjoin(latest, latest.c.key == Product.id)
        .outerjoin(StockMovement, StockMovement.id == latest.c.latest_id)
        .order_by(Product.id.asc())
        .all()
    )
    problems = []
    for product, movement in rows:
        if movement is None:
            # No ledger history: the snapshot must still be the initial zero
            if product.stock:
                problems.append({
                    "ledger": "stock",
                    "entity_id": product.id,
                    "problem": "stock without movements",
                    "snapshot": product.stock,
                    "ledger_value": None,
                })
            continue
        if movement.quantity_after != product.stock:
            problems.append({
                "ledger": "stock",
                "entity_id": product.id,
                "problem": "snapshot differs from latest movement",
                "snapshot": product.stock,
                "ledger_value": movement.quantity_after,
            })
        if product.stock < 0:
            problems.append({
                "ledger": "stock",
                "entity_id": product.id,
                "problem": "negative stock",
                "snapshot": product.stock,
                "ledger_value": movement.quantity_after,
            })
    return problems


def verify_account_ledger() -> list[dict]:
    latest = _latest_by(AccountMovement, AccountMovement.customer_id)
    rows = (
        db.session.query(Customer, AccountMovement)
        .outerjoin(latest, latest.c.key == Customer.id)
        .outerjoin(AccountMovement, AccountMovement.id == latest.c.latest_id)
        .order_by(Customer.id.asc())
        .all()
    )
    problems = []
    for customer, movement in rows:
        expected = movement.balance_after_cents if movement is not None else 0
        if customer.balance_cents != expected:
            problems.append({
                "ledger": "account",
                "entity_id": customer.id,
                "problem": "snapshot differs from latest movement",
                "snapshot": customer.balance_cents,
                "ledger_value": movement.balance_after_cents if movement is not None else None,
            })
        limit = customer.credit_limit_cents
        if limit is not None and customer.balance_cents > limit:
            problems.append({
                "ledger": "account",
                "entity_id": customer.id,
                "problem": "balance above credit limit",
                "snapshot": customer.balance_cents,
                "ledger_value": limit,
            })
    return problems


def verify_ledgers() -> list[dict]:
    """All discrepancies between ledger tails and snapshot fields (empty when consistent)."""
    return verify_stock_ledger() + verify_account_ledger()
