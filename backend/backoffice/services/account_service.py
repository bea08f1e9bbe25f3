# Overview: Service-layer operations for the customer running account; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..errors import (
    CreditAccountDisabled,
    CreditLimitExceeded,
    NotFound,
    ReversalRejected,
    ValidationFailed,
)
from ..models import AccountMovement, AccountReceipt, Customer
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction
from . import audit_service, sequence_service

"""
Running account invariants

- AccountMovement rows are append-only. Corrections are compensating movements
  in the opposite direction tagged REVERSAL with reverses_movement_id set.
- Customer.balance_cents equals balance_after_cents of the customer's latest
  movement; both are written together under the customer row lock.
- DEBIT: balance_after = before + amount, rejected when it would exceed
  credit_limit_cents (when set). This also applies to reversal debits.
- CREDIT: balance_after = max(0, before - amount). The ledger tracks debt only.
- No movement is ever posted for a customer without a credit account.
"""

DIRECTION_DEBIT = "DEBIT"
DIRECTION_CREDIT = "CREDIT"
DIRECTIONS = (DIRECTION_DEBIT, DIRECTION_CREDIT)

REF_DOCUMENT = "DOCUMENT"
REF_RECEIPT = "RECEIPT"
REF_ADJUSTMENT = "ADJUSTMENT"
REF_REVERSAL = "REVERSAL"

CONCEPT_SALE = "SALE"
CONCEPT_BUDGET = "BUDGET"
CONCEPT_PAYMENT = "PAYMENT"
CONCEPT_ADJUSTMENT = "ADJUSTMENT"
CONCEPT_CANCELLATION = "CANCELLATION"
CONCEPT_RECEIPT_VOID = "RECEIPT_VOID"

RECEIPT_ACTIVE = "ACTIVE"
RECEIPT_VOIDED = "VOIDED"

# A receipt is money actually handed over, so never ACCOUNT_CREDIT
RECEIPT_METHODS = ("CASH", "CARD", "TRANSFER", "CHECK")


def get_customer_for_update(customer_id: int, *, require_active: bool = True) -> Customer:
    customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
    if not customer or (require_active and not customer.is_active):
        raise NotFound(f"Customer {customer_id} not found or inactive", {"customer_id": customer_id})
    return customer


def _validate_amount(amount_cents) -> None:
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool):
        raise ValidationFailed("amount_cents must be an integer", {"amount_cents": amount_cents})
    if amount_cents <= 0:
        raise ValidationFailed("amount_cents must be positive", {"amount_cents": amount_cents})


def post_account_movement(
    *,
    customer_id: int,
    direction: str,
    amount_cents: int,
    concept: str,
    actor_id: int,
    reference_type: str,
    reference_document_id: int | None = None,
    reference_number: str | None = None,
    reverses_movement_id: int | None = None,
    description: str | None = None,
    occurred_at: datetime | None = None,
    require_active: bool = True,
) -> AccountMovement:
    """
    Append a running-account movement and update the customer's balance.

    Caller owns the transaction. The customer row is locked before the
    balance is read.

    Raises:
        ValidationFailed: bad direction or non-positive amount
        NotFound: customer missing or inactive
        CreditAccountDisabled: customer has no running account
        CreditLimitExceeded: a DEBIT would leave balance above the limit
    """
    if direction not in DIRECTIONS:
        raise ValidationFailed(f"Invalid direction: {direction}", {"direction": direction})
    _validate_amount(amount_cents)

    customer = get_customer_for_update(customer_id, require_active=require_active)
    if not customer.has_credit_account:
        raise CreditAccountDisabled(
            f"Customer {customer.name} does not have a running account enabled",
            {"customer_id": customer.id},
        )

    before = customer.balance_cents or 0
    if direction == DIRECTION_DEBIT:
        after = before + amount_cents
        limit = customer.credit_limit_cents
        if limit is not None and after > limit:
            current_app.logger.info(
                "Credit limit rejected debit of %s for customer %s (balance %s, limit %s)",
                amount_cents, customer.id, before, limit,
            )
            raise CreditLimitExceeded(
                "Debit exceeds the customer's credit limit",
                {
                    "customer_id": customer.id,
                    "limit_cents": limit,
                    "balance_before_cents": before,
                    "requested_amount_cents": amount_cents,
                    "available_cents": max(0, limit - before),
                },
            )
    else:
        after = max(0, before - amount_cents)

    movement = AccountMovement(
        customer_id=customer.id,
        actor_id=actor_id,
        direction=direction,
        concept=concept,
        amount_cents=amount_cents,
        balance_before_cents=before,
        balance_after_cents=after,
        reference_type=reference_type,
        reference_document_id=reference_document_id,
        reference_number=reference_number,
        reverses_movement_id=reverses_movement_id,
        description=description,
        occurred_at=occurred_at or utcnow(),
    )
    customer.balance_cents = after
    db.session.add(movement)
    db.session.flush()
    return movement


def reverse_account_movement(
    original: AccountMovement,
    *,
    actor_id: int,
    concept: str,
    description: str | None = None,
) -> AccountMovement:
    """
    Post the compensating movement for original.

    - A DEBIT is undone by a CREDIT of the same amount.
    - A CREDIT is undone by a DEBIT of the amount it actually took off the
      balance (it may have been floored at zero), so the pre-credit balance
      is restored exactly.
    - The credit limit still applies to the compensating DEBIT; a violation
      surfaces as ReversalRejected and nothing is posted.
    """
    if original.direction == DIRECTION_DEBIT:
        direction = DIRECTION_CREDIT
        amount = original.amount_cents
    else:
        direction = DIRECTION_DEBIT
        amount = original.balance_before_cents - original.balance_after_cents

    if amount <= 0:
        raise ReversalRejected(
            f"Account movement {original.id} had no effect on the balance to reverse",
            {"movement_id": original.id},
        )

    try:
        return post_account_movement(
            customer_id=original.customer_id,
            direction=direction,
            amount_cents=amount,
            concept=concept,
            actor_id=actor_id,
            reference_type=REF_REVERSAL,
            reference_document_id=original.reference_document_id,
            reference_number=original.reference_number,
            reverses_movement_id=original.id,
            description=description or f"Reversal of movement {original.id}",
            require_active=False,
        )
    except (CreditLimitExceeded, CreditAccountDisabled) as exc:
        raise ReversalRejected(
            f"Reversal of account movement {original.id} rejected: {exc.message}",
            {"movement_id": original.id, **exc.details},
        ) from exc


def post_adjustment(
    *,
    customer_id: int,
    direction: str,
    amount_cents: int,
    concept: str | None,
    actor_id: int,
    notes: str | None = None,
) -> AccountMovement:
    """
    Manual ledger correction with the same invariants as any other posting.

    DEBIT raises what the customer owes, CREDIT lowers it.
    """
    concept_text = (concept or "").strip()
    if not concept_text:
        raise ValidationFailed("concept is required")

    def _op():
        description = concept_text if not notes else f"{concept_text} - {notes}"
        movement = post_account_movement(
            customer_id=customer_id,
            direction=direction,
            amount_cents=amount_cents,
            concept=CONCEPT_ADJUSTMENT,
            actor_id=actor_id,
            reference_type=REF_ADJUSTMENT,
            description=description[:255],
        )
        audit_service.append_audit_event(
            event_type=audit_service.EVENT_ACCOUNT_ADJUSTED,
            entity_type="customer",
            entity_id=customer_id,
            actor_id=actor_id,
            note=description,
            payload={
                "movement_id": movement.id,
                "direction": direction,
                "amount_cents": amount_cents,
                "balance_before_cents": movement.balance_before_cents,
                "balance_after_cents": movement.balance_after_cents,
            },
        )
        return movement

    movement = run_in_transaction(_op)
    current_app.logger.info(
        "Account adjustment %s %s on customer %s (balance %s -> %s)",
        movement.direction, movement.amount_cents, movement.customer_id,
        movement.balance_before_cents, movement.balance_after_cents,
    )
    return movement


def register_receipt(
    *,
    customer_id: int,
    amount_cents: int,
    method: str,
    actor_id: int,
    notes: str | None = None,
) -> AccountReceipt:
    """
    Record a customer payment against the running account.

    Issues a receipt number, posts a CREDIT and stores the receipt in one
    transaction.
    """
    _validate_amount(amount_cents)
    if method not in RECEIPT_METHODS:
        raise ValidationFailed(
            f"Invalid receipt method: {method}",
            {"method": method, "allowed": list(RECEIPT_METHODS)},
        )

    def _op():
        # Lock and validate the customer before a number is taken
        customer = get_customer_for_update(customer_id)
        if not customer.has_credit_account:
            raise CreditAccountDisabled(
                f"Customer {customer.name} does not have a running account enabled",
                {"customer_id": customer.id},
            )

        number = sequence_service.next_document_number("receipt")
        movement = post_account_movement(
            customer_id=customer_id,
            direction=DIRECTION_CREDIT,
            amount_cents=amount_cents,
            concept=CONCEPT_PAYMENT,
            actor_id=actor_id,
            reference_type=REF_RECEIPT,
            reference_number=number,
            description=f"Payment {number} ({method})",
        )
        receipt = AccountReceipt(
            customer_id=customer_id,
            actor_id=actor_id,
            number=number,
            amount_cents=amount_cents,
            method=method,
            status=RECEIPT_ACTIVE,
            notes=(notes or "").strip() or None,
            account_movement_id=movement.id,
            created_at=movement.occurred_at,
        )
        db.session.add(receipt)
        db.session.flush()

        audit_service.append_audit_event(
            event_type=audit_service.EVENT_RECEIPT_REGISTERED,
            entity_type="receipt",
            entity_id=receipt.id,
            actor_id=actor_id,
            note=number,
            payload={
                "customer_id": customer_id,
                "amount_cents": amount_cents,
                "method": method,
                "movement_id": movement.id,
            },
        )
        return receipt

    receipt = run_in_transaction(_op)
    current_app.logger.info(
        "Receipt %s registered for customer %s: %s cents", receipt.number, customer_id, amount_cents
    )
    return receipt


def get_account_summary(customer_id: int) -> dict:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFound(f"Customer {customer_id} not found", {"customer_id": customer_id})

    last = (
        db.session.query(AccountMovement)
        .filter(AccountMovement.customer_id == customer_id)
        .order_by(AccountMovement.id.desc())
        .first()
    )
    limit = customer.credit_limit_cents
    return {
        "customer_id": customer.id,
        "name": customer.name,
        "has_credit_account": customer.has_credit_account,
        "balance_cents": customer.balance_cents,
        "credit_limit_cents": limit,
        # None means unlimited
        "available_credit_cents": None if limit is None else max(0, limit - customer.balance_cents),
        "last_movement": last.to_dict() if last else None,
    }


def list_account_movements(
    *,
    customer_id: int,
    direction: str | None = None,
    concept: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AccountMovement], int]:
    """Newest first. Returns (rows, total_count)."""
    q = db.session.query(AccountMovement).filter(AccountMovement.customer_id == customer_id)
    if direction:
        q = q.filter(AccountMovement.direction == direction)
    if concept:
        q = q.filter(AccountMovement.concept == concept)
    if date_from is not None:
        q = q.filter(AccountMovement.occurred_at >= date_from)
    if date_to is not None:
        q = q.filter(AccountMovement.occurred_at < date_to)

    total = q.count()
    limit = max(1, min(int(limit), 500))
    offset = max(0, int(offset))
    rows = q.order_by(AccountMovement.id.desc()).offset(offset).limit(limit).all()
    return rows, total


def list_receipts(
    *,
    customer_id: int | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AccountReceipt], int]:
    q = db.session.query(AccountReceipt)
    if customer_id is not None:
        q = q.filter(AccountReceipt.customer_id == customer_id)
    if status:
        q = q.filter(AccountReceipt.status == status)
    if date_from is not None:
        q = q.filter(AccountReceipt.created_at >= date_from)
    if date_to is not None:
        q = q.filter(AccountReceipt.created_at < date_to)

    total = q.count()
    limit = max(1, min(int(limit), 500))
    offset = max(0, int(offset))
    rows = q.order_by(AccountReceipt.id.desc()).offset(offset).limit(limit).all()
    return rows, total
