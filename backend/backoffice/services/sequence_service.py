# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import ConfigurationMissing, ValidationFailed
from ..models import DocumentSequence
from .concurrency import lock_for_update, run_in_transaction

"""
Document numbering invariants

- One DocumentSequence row per document type; the row is the persisted
  configuration for that type's prefix.
- next_number only ever increases and a committed number is never reused.
  Gaps are tolerated; the increment rolls back together with its transaction.
- The caller owns the transaction; the row lock is held until it commits.
"""

SEQUENCE_TYPES = ("sale", "purchase", "budget", "quote", "receipt")


def format_document_number(prefix: str, number: int, pad: int = 6) -> str:
    return f"{prefix}{number:0{pad}d}"


def next_document_number(document_type: str, *, pad: int | None = None) -> str:
    """
    Allocate the next number for document_type inside the caller's transaction.

    Must be called at most once per document, after every validation that
    could still abort the unit of work.

    Raises:
        ConfigurationMissing: no counter row for document_type
    """
    if not document_type:
        raise ValidationFailed("document_type is required")
    if pad is None:
        pad = current_app.config.get("DOCUMENT_NUMBER_PAD", 6)

    seq = lock_for_update(
        db.session.query(DocumentSequence).filter_by(document_type=document_type)
    ).first()
    if not seq:
        raise ConfigurationMissing(
            f"No sequence counter configured for '{document_type}'",
            {"document_type": document_type},
        )

    number = seq.next_number
    seq.next_number = number + 1
    db.session.flush()
    return format_document_number(seq.prefix or "", number, pad)


def lock_guard_row(key: str) -> DocumentSequence:
    """
    Lock the counter row named key for the rest of the caller's transaction,
    creating it on first use.

    Used to serialize writers that have no natural row to lock. Guard keys
    contain ':' so they never collide with a document type; `system init`
    seeds them ahead of time.
    """
    seq = lock_for_update(
        db.session.query(DocumentSequence).filter_by(document_type=key)
    ).first()
    if seq is None:
        seq = DocumentSequence(document_type=key, prefix="", next_number=1)
        db.session.add(seq)
        db.session.flush()
    seq.next_number = seq.next_number + 1
    db.session.flush()
    return seq


def list_sequences() -> list[DocumentSequence]:
    return (
        db.session.query(DocumentSequence)
        .filter(~DocumentSequence.document_type.contains(":"))
        .order_by(DocumentSequence.document_type.asc())
        .all()
    )


def ensure_sequences(prefixes: dict[str, str]) -> list[DocumentSequence]:
    """
    Seed missing counter rows. Existing rows keep their prefix and position.

    Caller owns the transaction.
    """
    created = []
    for document_type, prefix in prefixes.items():
        existing = db.session.query(DocumentSequence).filter_by(document_type=document_type).first()
        if existing:
            continue
        seq = DocumentSequence(document_type=document_type, prefix=prefix, next_number=1)
        db.session.add(seq)
        created.append(seq)
    db.session.flush()
    return created


def set_prefix(document_type: str, prefix: str) -> DocumentSequence:
    """Change the prefix used for future numbers of document_type."""
    def _op():
        seq = lock_for_update(
            db.session.query(DocumentSequence).filter_by(document_type=document_type)
        ).first()
        if not seq:
            raise ConfigurationMissing(
                f"No sequence counter configured for '{document_type}'",
                {"document_type": document_type},
            )
        seq.prefix = (prefix or "").strip()
        return seq

    return run_in_transaction(_op)
