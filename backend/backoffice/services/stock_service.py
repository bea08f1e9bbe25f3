# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import InsufficientStock, NotFound, ValidationFailed
from ..models import Product, StockMovement
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from . import audit_service

"""
Stock ledger invariants

- StockMovement rows are append-only; a mistake is undone by a compensating
  movement of the opposite kind (reverses_movement_id set), never by an edit.
- Product.stock always equals quantity_after of the product's latest movement.
  Both are written in the same transaction under the product row lock.
- IN/OUT never persist negative stock.
"""

KIND_IN = "IN"
KIND_OUT = "OUT"
KIND_ADJUST = "ADJUST"
STOCK_KINDS = (KIND_IN, KIND_OUT, KIND_ADJUST)

_OPPOSITE_KIND = {KIND_IN: KIND_OUT, KIND_OUT: KIND_IN}


def get_product_for_update(product_id: int, *, require_active: bool = True) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if not product or (require_active and not product.is_active):
        raise NotFound(f"Product {product_id} not found or inactive", {"product_id": product_id})
    return product


def ensure_available(product: Product, quantity: int) -> None:
    """Pre-check used by callers that report stock shortages before posting."""
    available = product.stock or 0
    if quantity > available:
        raise InsufficientStock(
            f"Insufficient stock for product {product.code or product.id}",
            {
                "product_id": product.id,
                "product_code": product.code,
                "requested_quantity": quantity,
                "available": available,
            },
        )


def post_stock_movement(
    *,
    product_id: int,
    kind: str,
    quantity: int,
    actor_id: int,
    reason: str | None = None,
    document_id: int | None = None,
    document_line_id: int | None = None,
    reverses_movement_id: int | None = None,
    occurred_at: datetime | None = None,
    require_active: bool = True,
) -> StockMovement:
    """
    Append a stock movement and update the product's stock snapshot.

    Caller owns the transaction (see run_in_transaction). The product row is
    locked before it is read so concurrent posts cannot lose an update.

    Raises:
        ValidationFailed: unknown kind or non-positive IN/OUT quantity
        NotFound: product missing or inactive
        InsufficientStock: OUT larger than current stock
    """
    if kind not in STOCK_KINDS:
        raise ValidationFailed(f"Invalid stock movement kind: {kind}", {"kind": kind})
    if not isinstance(quantity, int) or isinstance(quantity, bool):
        raise ValidationFailed("quantity must be an integer", {"quantity": quantity})
    if kind == KIND_ADJUST:
        if quantity < 0:
            raise ValidationFailed("Adjusted stock cannot be negative", {"quantity": quantity})
    elif quantity <= 0:
        raise ValidationFailed("quantity must be positive", {"quantity": quantity})

    product = get_product_for_update(product_id, require_active=require_active)
    before = product.stock or 0

    if kind == KIND_IN:
        after = before + quantity
    elif kind == KIND_OUT:
        ensure_available(product, quantity)
        after = before - quantity
    else:
        after = quantity

    movement = StockMovement(
        product_id=product.id,
        actor_id=actor_id,
        kind=kind,
        quantity=quantity,
        quantity_before=before,
        quantity_after=after,
        reason=reason,
        document_id=document_id,
        document_line_id=document_line_id,
        reverses_movement_id=reverses_movement_id,
        occurred_at=occurred_at or utcnow(),
    )
    product.stock = after
    db.session.add(movement)
    db.session.flush()
    return movement


def reverse_stock_movement(
    original: StockMovement,
    *,
    actor_id: int,
    reason: str | None = None,
) -> StockMovement:
    """
    Post the compensating movement for an IN or OUT.

    ADJUST rows have no opposite and cannot be reversed this way. Reversing an
    IN that was already consumed raises InsufficientStock like any other OUT.
    """
    opposite = _OPPOSITE_KIND.get(original.kind)
    if opposite is None:
        raise ValidationFailed(
            f"Stock movement {original.id} of kind {original.kind} cannot be reversed",
            {"movement_id": original.id, "kind": original.kind},
        )
    return post_stock_movement(
        product_id=original.product_id,
        kind=opposite,
        quantity=original.quantity,
        actor_id=actor_id,
        reason=reason or f"Reversal of movement {original.id}",
        document_id=original.document_id,
        document_line_id=original.document_line_id,
        reverses_movement_id=original.id,
        require_active=False,
    )


def post_manual_movement(
    *,
    product_id: int,
    kind: str,
    quantity: int,
    reason: str | None,
    actor_id: int,
) -> StockMovement:
    """Stock-taking / manual entry screen: one movement in its own transaction."""
    def _op():
        movement = post_stock_movement(
            product_id=product_id,
            kind=kind,
            quantity=quantity,
            actor_id=actor_id,
            reason=reason or "Manual movement",
        )
        audit_service.append_audit_event(
            event_type=audit_service.EVENT_STOCK_ADJUSTED,
            entity_type="product",
            entity_id=product_id,
            actor_id=actor_id,
            note=reason,
            payload={
                "movement_id": movement.id,
                "kind": kind,
                "quantity": quantity,
                "quantity_before": movement.quantity_before,
                "quantity_after": movement.quantity_after,
            },
        )
        return movement

    movement = run_in_transaction(_op)
    current_app.logger.info(
        "Manual stock %s on product %s: %s -> %s",
        movement.kind, movement.product_id, movement.quantity_before, movement.quantity_after,
    )
    return movement


def list_stock_movements(
    *,
    product_id: int | None = None,
    kind: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[StockMovement], int]:
    """Newest first. Returns (rows, total_count)."""
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if kind:
        q = q.filter(StockMovement.kind == kind)
    if date_from is not None:
        q = q.filter(StockMovement.occurred_at >= date_from)
    if date_to is not None:
        q = q.filter(StockMovement.occurred_at < date_to)

    total = q.count()
    limit = max(1, min(int(limit), 500))
    offset = max(0, int(offset))
    rows = q.order_by(StockMovement.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def latest_movement(product_id: int) -> StockMovement | None:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id)
        .order_by(StockMovement.id.desc())
        .first()
    )
