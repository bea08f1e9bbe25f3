# Overview: Service-layer operations for business documents; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from flask import current_app

from ..extensions import db
from ..errors import NotFound, PaymentMismatch, ValidationFailed
from ..models import (
    Customer,
    Document,
    DocumentLine,
    DocumentPayment,
    Product,
    Supplier,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from . import account_service, audit_service, sequence_service, stock_service

"""
Document issuance invariants

- A document is created in ONE transaction: stock movements, running-account
  debits, the sequence number, and the document rows commit together or not
  at all.
- The number is taken after every check that could still abort, so a
  rejected document never consumes one.
- total = subtotal - discount + surcharge is fixed at creation.
- Payments must add up to total within the configured tolerance (quotes
  carry no payments).
- delivered_quantity on a line only ever grows, one StockMovement per batch.
"""

TYPE_SALE = "sale"
TYPE_PURCHASE = "purchase"
TYPE_BUDGET = "budget"
TYPE_QUOTE = "quote"
DOCUMENT_TYPES = (TYPE_SALE, TYPE_PURCHASE, TYPE_BUDGET, TYPE_QUOTE)

STATUS_PENDING = "PENDING"
STATUS_PARTIAL = "PARTIAL"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"
STATUS_ACCEPTED = "ACCEPTED"
STATUS_REJECTED = "REJECTED"
STATUS_EXPIRED = "EXPIRED"

QUOTE_TARGET_STATUSES = (STATUS_ACCEPTED, STATUS_REJECTED, STATUS_EXPIRED)
TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_CANCELLED, STATUS_REJECTED, STATUS_EXPIRED)

METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_TRANSFER = "TRANSFER"
METHOD_CHECK = "CHECK"
METHOD_ACCOUNT_CREDIT = "ACCOUNT_CREDIT"
PAYMENT_METHODS = (METHOD_CASH, METHOD_CARD, METHOD_TRANSFER, METHOD_CHECK, METHOD_ACCOUNT_CREDIT)

DELIVERY_FULL = "FULL"
DELIVERY_PARTIAL = "PARTIAL"
DELIVERY_NONE = "NONE"

# document_type -> (default delivery, allowed deliveries)
DELIVERY_RULES = {
    TYPE_SALE: (DELIVERY_FULL, (DELIVERY_FULL,)),
    TYPE_PURCHASE: (DELIVERY_NONE, (DELIVERY_NONE, DELIVERY_FULL)),
    TYPE_BUDGET: (DELIVERY_NONE, (DELIVERY_NONE, DELIVERY_PARTIAL, DELIVERY_FULL)),
    TYPE_QUOTE: (DELIVERY_NONE, (DELIVERY_NONE,)),
}

# Stock direction when a line is delivered/received
STOCK_KIND_BY_TYPE = {
    TYPE_SALE: stock_service.KIND_OUT,
    TYPE_BUDGET: stock_service.KIND_OUT,
    TYPE_PURCHASE: stock_service.KIND_IN,
}

ACCOUNT_CREDIT_TYPES = (TYPE_SALE, TYPE_BUDGET)
DEFERRED_DELIVERY_TYPES = (TYPE_BUDGET, TYPE_PURCHASE)


@dataclass(frozen=True)
class DocumentPolicy:
    """Per-operation configuration, built from app config at the start of each operation."""
    payment_tolerance_cents: int = 1
    number_pad: int = 6
    validity_days: int = 30

    @classmethod
    def from_config(cls, config) -> "DocumentPolicy":
        return cls(
            payment_tolerance_cents=int(config.get("PAYMENT_TOLERANCE_CENTS", 1)),
            number_pad=int(config.get("DOCUMENT_NUMBER_PAD", 6)),
            validity_days=int(config.get("DOCUMENT_VALIDITY_DAYS", 30)),
        )


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int
    unit_price_cents: Optional[int] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class PaymentRequest:
    method: str
    amount_cents: int
    description: Optional[str] = None


@dataclass(frozen=True)
class DeliveryRequest:
    line_id: int
    quantity: int


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    discount_cents: int
    surcharge_cents: int
    total_cents: int


def compute_totals(
    priced_lines: list[tuple[int, int]],
    discount_cents: int,
    surcharge_cents: int,
    policy: DocumentPolicy,
) -> Totals:
    """
    Pure total calculation over (quantity, unit_price_cents) pairs.

    total = subtotal - discount + surcharge
    """
    if discount_cents < 0 or surcharge_cents < 0:
        raise ValidationFailed(
            "discount and surcharge cannot be negative",
            {"discount_cents": discount_cents, "surcharge_cents": surcharge_cents},
        )
    subtotal = sum(quantity * unit_price for quantity, unit_price in priced_lines)
    total = subtotal - discount_cents + surcharge_cents
    if total < 0:
        raise ValidationFailed(
            "Discount exceeds the document amount",
            {
                "subtotal_cents": subtotal,
                "discount_cents": discount_cents,
                "surcharge_cents": surcharge_cents,
            },
        )
    return Totals(
        subtotal_cents=subtotal,
        discount_cents=discount_cents,
        surcharge_cents=surcharge_cents,
        total_cents=total,
    )


def reconcile_payments(payments: list[PaymentRequest], totals: Totals, policy: DocumentPolicy) -> int:
    """
    Check that payments add up to the document total.

    Returns the payment sum. Raises PaymentMismatch when
    |sum - total| > policy.payment_tolerance_cents.
    """
    paid = sum(p.amount_cents for p in payments)
    difference = paid - totals.total_cents
    if abs(difference) > policy.payment_tolerance_cents:
        raise PaymentMismatch(
            "Payment total does not match the document total",
            {
                "subtotal_cents": totals.subtotal_cents,
                "discount_cents": totals.discount_cents,
                "surcharge_cents": totals.surcharge_cents,
                "total_cents": totals.total_cents,
                "payments_cents": paid,
                "difference_cents": difference,
            },
        )
    return paid


def aggregate_status(lines) -> str:
    """Fulfilment status from per-line delivered/requested quantities."""
    delivered_lines = [line for line in lines if (line.delivered_quantity or 0) > 0]
    if lines and all((line.delivered_quantity or 0) >= line.quantity for line in lines):
        return STATUS_COMPLETED
    if delivered_lines:
        return STATUS_PARTIAL
    return STATUS_PENDING


def _normalize_type(document_type: str) -> str:
    doc_type = (document_type or "").strip().lower()
    if doc_type not in DOCUMENT_TYPES:
        raise ValidationFailed(
            f"Invalid document type: {document_type}",
            {"document_type": document_type, "allowed": list(DOCUMENT_TYPES)},
        )
    return doc_type


def _resolve_delivery(doc_type: str, delivery: str | None) -> str:
    default, allowed = DELIVERY_RULES[doc_type]
    if delivery is None or delivery == "":
        return default
    value = delivery.strip().upper()
    if value not in allowed:
        raise ValidationFailed(
            f"Delivery policy {delivery} is not allowed for {doc_type}",
            {"delivery": delivery, "allowed": list(allowed)},
        )
    return value


def _resolve_party(doc_type: str, party_id: int | None):
    """Returns (customer, supplier); at most one is set."""
    if doc_type == TYPE_PURCHASE:
        if party_id is None:
            raise ValidationFailed("supplier_id is required for purchases")
        supplier = db.session.get(Supplier, party_id)
        if not supplier or not supplier.is_active:
            raise NotFound(f"Supplier {party_id} not found or inactive", {"supplier_id": party_id})
        return None, supplier

    if party_id is None:
        if doc_type == TYPE_SALE:
            # Walk-in sale
            return None, None
        raise ValidationFailed(f"customer_id is required for {doc_type}")
    customer = db.session.get(Customer, party_id)
    if not customer or not customer.is_active:
        raise NotFound(f"Customer {party_id} not found or inactive", {"customer_id": party_id})
    return customer, None


def _validate_payments(doc_type: str, payments: list[PaymentRequest], customer) -> list[PaymentRequest]:
    if doc_type == TYPE_QUOTE:
        if payments:
            raise ValidationFailed("Quotes do not carry payments")
        return []

    if not payments:
        raise ValidationFailed(f"At least one payment is required for {doc_type}")

    normalized = []
    for idx, p in enumerate(payments):
        method = (p.method or "").strip().upper()
        if method not in PAYMENT_METHODS:
            raise ValidationFailed(
                f"Invalid payment method: {p.method}",
                {"index": idx, "method": p.method, "allowed": list(PAYMENT_METHODS)},
            )
        if not isinstance(p.amount_cents, int) or isinstance(p.amount_cents, bool) or p.amount_cents <= 0:
            raise ValidationFailed(
                "Payment amount must be a positive integer",
                {"index": idx, "amount_cents": p.amount_cents},
            )
        if method == METHOD_ACCOUNT_CREDIT:
            if doc_type not in ACCOUNT_CREDIT_TYPES:
                raise ValidationFailed(
                    f"account credit is not accepted on {doc_type}",
                    {"index": idx, "method": method},
                )
            if customer is None:
                raise ValidationFailed(
                    "account credit requires a customer",
                    {"index": idx, "method": method},
                )
        normalized.append(PaymentRequest(method=method, amount_cents=p.amount_cents, description=p.description))
    return normalized


def _price_lines(doc_type: str, lines: list[LineRequest]) -> list[tuple[LineRequest, Product, int]]:
    if not lines:
        raise ValidationFailed("At least one line is required")

    priced = []
    for idx, line in enumerate(lines):
        if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity <= 0:
            raise ValidationFailed(
                "Line quantity must be a positive integer",
                {"index": idx, "quantity": line.quantity},
            )
        product = db.session.get(Product, line.product_id)
        if not product or not product.is_active:
            raise NotFound(
                f"Product {line.product_id} not found or inactive",
                {"index": idx, "product_id": line.product_id},
            )

        unit_price = line.unit_price_cents
        if unit_price is None:
            unit_price = product.cost_cents if doc_type == TYPE_PURCHASE else product.price_cents
        if unit_price is None:
            raise ValidationFailed(
                f"No unit price given and product {product.code} has none",
                {"index": idx, "product_id": product.id},
            )
        if unit_price < 0:
            raise ValidationFailed(
                "Unit price cannot be negative",
                {"index": idx, "unit_price_cents": unit_price},
            )
        priced.append((line, product, unit_price))
    return priced


def _quantities_to_move(doc_type: str, delivery: str, priced) -> list[int]:
    """Quantity each line moves at creation time."""
    if delivery == DELIVERY_NONE or doc_type == TYPE_QUOTE:
        return [0 for _ in priced]
    if delivery == DELIVERY_FULL:
        return [line.quantity for line, _, _ in priced]

    # PARTIAL: deliver what the shelf holds right now, line by line
    reserved: dict[int, int] = {}
    quantities = []
    for line, product, _ in priced:
        locked = stock_service.get_product_for_update(product.id)
        available = (locked.stock or 0) - reserved.get(product.id, 0)
        qty = max(0, min(line.quantity, available))
        reserved[product.id] = reserved.get(product.id, 0) + qty
        quantities.append(qty)
    return quantities


def _issue_document(
    *,
    doc_type: str,
    party_id: int | None,
    lines: list[LineRequest],
    payments: list[PaymentRequest],
    actor_id: int,
    policy: DocumentPolicy,
    discount_cents: int = 0,
    surcharge_cents: int = 0,
    delivery: str | None = None,
    notes: str | None = None,
    issued_at: datetime | None = None,
    validity_days: int | None = None,
    source_document_id: int | None = None,
) -> Document:
    """
    Create-document orchestration. Caller owns the transaction.

    Order: validate -> totals -> reconcile payments -> stock -> running
    account -> number -> persist and link.
    """
    # 1. Referenced entities
    customer, supplier = _resolve_party(doc_type, party_id)
    delivery_policy = _resolve_delivery(doc_type, delivery)
    payments = _validate_payments(doc_type, payments, customer)
    priced = _price_lines(doc_type, lines)
    valid_days = None
    if doc_type in (TYPE_BUDGET, TYPE_QUOTE):
        valid_days = policy.validity_days if validity_days is None else validity_days
        if valid_days < 0:
            raise ValidationFailed("validity_days cannot be negative", {"validity_days": valid_days})

    # 2-3. Totals
    totals = compute_totals(
        [(line.quantity, unit_price) for line, _, unit_price in priced],
        discount_cents or 0,
        surcharge_cents or 0,
        policy,
    )

    # 4. Payment reconciliation
    if doc_type != TYPE_QUOTE:
        reconcile_payments(payments, totals, policy)

    now = utcnow()
    issued = issued_at or now

    # 5. Stock; any shortage aborts the whole document
    move_quantities = _quantities_to_move(doc_type, delivery_policy, priced)
    stock_movements = []
    for idx, ((line, product, _), qty) in enumerate(zip(priced, move_quantities)):
        if qty <= 0:
            continue
        movement = stock_service.post_stock_movement(
            product_id=product.id,
            kind=STOCK_KIND_BY_TYPE[doc_type],
            quantity=qty,
            actor_id=actor_id,
            occurred_at=now,
        )
        stock_movements.append((idx, movement))

    # 6. Running account debits for account-credit payments
    account_movements = []
    for idx, payment in enumerate(payments):
        if payment.method != METHOD_ACCOUNT_CREDIT:
            continue
        movement = account_service.post_account_movement(
            customer_id=customer.id,
            direction=account_service.DIRECTION_DEBIT,
            amount_cents=payment.amount_cents,
            concept=account_service.CONCEPT_SALE if doc_type == TYPE_SALE else account_service.CONCEPT_BUDGET,
            actor_id=actor_id,
            reference_type=account_service.REF_DOCUMENT,
            occurred_at=now,
        )
        account_movements.append((idx, movement))

    # 7. Number, only once nothing else can fail validation
    number = sequence_service.next_document_number(doc_type, pad=policy.number_pad)

    # 8. Persist and link
    doc = Document(
        document_type=doc_type,
        number=number,
        status=STATUS_PENDING,
        delivery_policy=delivery_policy,
        customer_id=customer.id if customer else None,
        supplier_id=supplier.id if supplier else None,
        actor_id=actor_id,
        subtotal_cents=totals.subtotal_cents,
        discount_cents=totals.discount_cents,
        surcharge_cents=totals.surcharge_cents,
        total_cents=totals.total_cents,
        notes=(notes or "").strip() or None,
        issued_at=issued,
        created_at=now,
        source_document_id=source_document_id,
    )
    if valid_days is not None:
        doc.valid_until = issued + timedelta(days=valid_days)

    line_rows = []
    for (line, product, unit_price), qty in zip(priced, move_quantities):
        row = DocumentLine(
            product_id=product.id,
            quantity=line.quantity,
            delivered_quantity=qty,
            unit_price_cents=unit_price,
            line_total_cents=line.quantity * unit_price,
            description=line.description or product.name,
        )
        doc.lines.append(row)
        line_rows.append(row)

    payment_rows = []
    for payment in payments:
        row = DocumentPayment(
            method=payment.method,
            amount_cents=payment.amount_cents,
            description=payment.description,
            created_at=now,
        )
        doc.payments.append(row)
        payment_rows.append(row)

    if doc_type == TYPE_SALE:
        doc.status = STATUS_COMPLETED
    elif doc_type in DEFERRED_DELIVERY_TYPES:
        doc.status = aggregate_status(line_rows)
    if doc.status == STATUS_COMPLETED:
        doc.completed_at = now

    db.session.add(doc)
    db.session.flush()

    for idx, movement in stock_movements:
        movement.document_id = doc.id
        movement.document_line_id = line_rows[idx].id
        movement.reason = f"{doc_type} {number}"
    for idx, movement in account_movements:
        movement.reference_document_id = doc.id
        movement.reference_number = number
        movement.description = f"{doc_type} {number}"
        payment_rows[idx].account_movement_id = movement.id
    db.session.flush()

    audit_service.append_audit_event(
        event_type=audit_service.EVENT_DOCUMENT_ISSUED,
        entity_type=doc_type,
        entity_id=doc.id,
        actor_id=actor_id,
        document_id=doc.id,
        note=number,
        payload={
            "total_cents": doc.total_cents,
            "status": doc.status,
            "stock_movement_ids": [m.id for _, m in stock_movements],
            "account_movement_ids": [m.id for _, m in account_movements],
        },
        occurred_at=now,
    )
    return doc


def create_document(
    *,
    document_type: str,
    party_id: int | None,
    lines: list[LineRequest],
    payments: list[PaymentRequest],
    actor_id: int,
    discount_cents: int = 0,
    surcharge_cents: int = 0,
    delivery: str | None = None,
    notes: str | None = None,
    issued_at: datetime | None = None,
    validity_days: int | None = None,
) -> Document:
    """
    Create a sale, purchase, budget or quote as one atomic unit of work.

    party_id is the customer for sale/budget/quote and the supplier for
    purchases.

    Raises:
        ValidationFailed, NotFound, PaymentMismatch, InsufficientStock,
        CreditAccountDisabled, CreditLimitExceeded, ConfigurationMissing,
        Conflict
    """
    doc_type = _normalize_type(document_type)
    policy = DocumentPolicy.from_config(current_app.config)

    def _op():
        return _issue_document(
            doc_type=doc_type,
            party_id=party_id,
            lines=lines,
            payments=payments,
            actor_id=actor_id,
            policy=policy,
            discount_cents=discount_cents,
            surcharge_cents=surcharge_cents,
            delivery=delivery,
            notes=notes,
            issued_at=issued_at,
            validity_days=validity_days,
        )

    doc = run_in_transaction(_op)
    current_app.logger.info(
        "Issued %s %s (id=%s, total=%s, status=%s)",
        doc.document_type, doc.number, doc.id, doc.total_cents, doc.status,
    )
    return doc


def get_document_for_update(document_id: int) -> Document:
    doc = lock_for_update(db.session.query(Document).filter_by(id=document_id)).first()
    if not doc:
        raise NotFound(f"Document {document_id} not found", {"document_id": document_id})
    return doc


def deliver_partial(
    *,
    document_id: int,
    deliveries: list[DeliveryRequest],
    actor_id: int,
) -> Document:
    """
    Record a delivery (budget) or reception (purchase) batch.

    Each batch re-checks the remaining quantity per line, posts one stock
    movement per line, bumps delivered_quantity and recomputes the document
    status. The whole batch is one transaction.
    """
    if not deliveries:
        raise ValidationFailed("At least one delivery line is required")

    def _op():
        doc = get_document_for_update(document_id)
        if doc.document_type not in DEFERRED_DELIVERY_TYPES:
            raise ValidationFailed(
                f"Deliveries are not recorded on {doc.document_type} documents",
                {"document_id": doc.id, "document_type": doc.document_type},
            )
        if doc.status not in (STATUS_PENDING, STATUS_PARTIAL):
            raise ValidationFailed(
                f"Document {doc.number} is {doc.status} and cannot receive deliveries",
                {"document_id": doc.id, "status": doc.status},
            )

        lines_by_id = {line.id: line for line in doc.lines}
        requested: dict[int, int] = {}
        for d in deliveries:
            line = lines_by_id.get(d.line_id)
            if line is None:
                raise NotFound(
                    f"Line {d.line_id} does not belong to document {doc.number}",
                    {"document_id": doc.id, "line_id": d.line_id},
                )
            if not isinstance(d.quantity, int) or isinstance(d.quantity, bool) or d.quantity <= 0:
                raise ValidationFailed(
                    "Delivery quantity must be a positive integer",
                    {"line_id": d.line_id, "quantity": d.quantity},
                )
            requested[line.id] = requested.get(line.id, 0) + d.quantity

        for line_id, qty in requested.items():
            line = lines_by_id[line_id]
            if qty > line.pending_quantity:
                raise ValidationFailed(
                    "Delivery exceeds the quantity still pending",
                    {
                        "line_id": line.id,
                        "requested_quantity": qty,
                        "pending_quantity": line.pending_quantity,
                    },
                )

        now = utcnow()
        kind = STOCK_KIND_BY_TYPE[doc.document_type]
        movement_ids = []
        for line_id, qty in requested.items():
            line = lines_by_id[line_id]
            movement = stock_service.post_stock_movement(
                product_id=line.product_id,
                kind=kind,
                quantity=qty,
                actor_id=actor_id,
                reason=f"delivery {doc.document_type} {doc.number}",
                document_id=doc.id,
                document_line_id=line.id,
                occurred_at=now,
                require_active=False,
            )
            line.delivered_quantity = (line.delivered_quantity or 0) + qty
            movement_ids.append(movement.id)

        doc.status = aggregate_status(doc.lines)
        if doc.status == STATUS_COMPLETED:
            doc.completed_at = now

        audit_service.append_audit_event(
            event_type=audit_service.EVENT_DELIVERY_RECORDED,
            entity_type=doc.document_type,
            entity_id=doc.id,
            actor_id=actor_id,
            document_id=doc.id,
            note=doc.number,
            payload={"deliveries": requested, "stock_movement_ids": movement_ids, "status": doc.status},
            occurred_at=now,
        )
        return doc

    doc = run_in_transaction(_op)
    current_app.logger.info("Delivery recorded on %s %s, status %s", doc.document_type, doc.number, doc.status)
    return doc


def update_quote_status(*, document_id: int, status: str, reason: str | None, actor_id: int) -> Document:
    """Move a pending quote to ACCEPTED, REJECTED or EXPIRED."""
    target = (status or "").strip().upper()
    if target not in QUOTE_TARGET_STATUSES:
        raise ValidationFailed(
            f"Invalid quote status: {status}",
            {"status": status, "allowed": list(QUOTE_TARGET_STATUSES)},
        )

    def _op():
        doc = get_document_for_update(document_id)
        if doc.document_type != TYPE_QUOTE:
            raise ValidationFailed(
                f"Document {doc.number} is not a quote",
                {"document_id": doc.id, "document_type": doc.document_type},
            )
        if doc.status != STATUS_PENDING:
            raise ValidationFailed(
                f"Quote {doc.number} is {doc.status}; only pending quotes change status",
                {"document_id": doc.id, "status": doc.status},
            )

        previous = doc.status
        doc.status = target
        doc.append_note(f"STATUS {target}: {reason}" if reason else f"STATUS {target}")
        audit_service.append_audit_event(
            event_type=audit_service.EVENT_QUOTE_STATUS_CHANGED,
            entity_type=TYPE_QUOTE,
            entity_id=doc.id,
            actor_id=actor_id,
            document_id=doc.id,
            note=reason,
            payload={"from": previous, "to": target},
        )
        return doc

    return run_in_transaction(_op)


def convert_quote_to_budget(
    *,
    quote_id: int,
    payments: list[PaymentRequest],
    actor_id: int,
    delivery: str | None = None,
    validity_days: int | None = None,
) -> Document:
    """
    Turn an accepted quote into a new budget (with its own number).

    The budget copies lines, prices, discount and surcharge, and goes through
    the normal issuance path in the same transaction that annotates the quote.
    """
    policy = DocumentPolicy.from_config(current_app.config)

    def _op():
        quote = get_document_for_update(quote_id)
        if quote.document_type != TYPE_QUOTE:
            raise ValidationFailed(
                f"Document {quote.number} is not a quote",
                {"document_id": quote.id, "document_type": quote.document_type},
            )
        if quote.status != STATUS_ACCEPTED:
            raise ValidationFailed(
                f"Quote {quote.number} is {quote.status}; only accepted quotes can be converted",
                {"document_id": quote.id, "status": quote.status},
            )
        existing = (
            db.session.query(Document)
            .filter(
                Document.source_document_id == quote.id,
                Document.status != STATUS_CANCELLED,
            )
            .first()
        )
        if existing:
            raise ValidationFailed(
                f"Quote {quote.number} was already converted to {existing.number}",
                {"document_id": quote.id, "budget_id": existing.id},
            )

        lines = [
            LineRequest(
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                description=line.description,
            )
            for line in quote.lines
        ]
        budget = _issue_document(
            doc_type=TYPE_BUDGET,
            party_id=quote.customer_id,
            lines=lines,
            payments=payments,
            actor_id=actor_id,
            policy=policy,
            discount_cents=quote.discount_cents,
            surcharge_cents=quote.surcharge_cents,
            delivery=delivery,
            notes=f"From quote {quote.number}",
            validity_days=validity_days,
            source_document_id=quote.id,
        )
        quote.append_note(f"Converted to budget {budget.number}")
        audit_service.append_audit_event(
            event_type=audit_service.EVENT_QUOTE_CONVERTED,
            entity_type=TYPE_QUOTE,
            entity_id=quote.id,
            actor_id=actor_id,
            document_id=quote.id,
            note=budget.number,
            payload={"budget_id": budget.id},
        )
        return budget

    budget = run_in_transaction(_op)
    current_app.logger.info("Quote %s converted to budget %s", quote_id, budget.number)
    return budget


def get_document(document_id: int) -> Document:
    doc = db.session.get(Document, document_id)
    if not doc:
        raise NotFound(f"Document {document_id} not found", {"document_id": document_id})
    return doc


def list_documents(
    *,
    document_type: str | None = None,
    status: str | None = None,
    customer_id: int | None = None,
    supplier_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Document], int]:
    """Newest first. Returns (rows, total_count)."""
    q = db.session.query(Document)
    if document_type:
        q = q.filter(Document.document_type == _normalize_type(document_type))
    if status:
        q = q.filter(Document.status == status.strip().upper())
    if customer_id is not None:
        q = q.filter(Document.customer_id == customer_id)
    if supplier_id is not None:
        q = q.filter(Document.supplier_id == supplier_id)
    if date_from is not None:
        q = q.filter(Document.issued_at >= date_from)
    if date_to is not None:
        q = q.filter(Document.issued_at < date_to)

    total = q.count()
    limit = max(1, min(int(limit), 500))
    offset = max(0, int(offset))
    rows = q.order_by(Document.id.desc()).offset(offset).limit(limit).all()
    return rows, total
