# Overview: Service-layer operations for the audit trail; append-only, no domain logic.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..extensions import db
from ..models import AuditEvent
from ..time_utils import utcnow

"""
Audit trail invariants

- Append-only log for cross-cutting domain events.
- No domain/business logic here.
- Events are written inside the same DB transaction as the domain event they record.
- occurred_at is business time; created_at is system time (DB default).
"""

EVENT_DOCUMENT_ISSUED = "DOCUMENT_ISSUED"
EVENT_DELIVERY_RECORDED = "DELIVERY_RECORDED"
EVENT_DOCUMENT_CANCELLED = "DOCUMENT_CANCELLED"
EVENT_QUOTE_STATUS_CHANGED = "QUOTE_STATUS_CHANGED"
EVENT_QUOTE_CONVERTED = "QUOTE_CONVERTED"
EVENT_RECEIPT_REGISTERED = "RECEIPT_REGISTERED"
EVENT_RECEIPT_VOIDED = "RECEIPT_VOIDED"
EVENT_ACCOUNT_ADJUSTED = "ACCOUNT_ADJUSTED"
EVENT_STOCK_ADJUSTED = "STOCK_ADJUSTED"
EVENT_CASH_CLOSED = "CASH_CLOSED"


def append_audit_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_id: int | None = None,
    document_id: int | None = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
    occurred_at: Optional[datetime] = None,
) -> AuditEvent:
    """
    Append-only audit event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - Caller owns the transaction; this only flushes.
    """
    ev = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        document_id=document_id,
        note=note[:500] if note else None,
        payload=json.dumps(payload, sort_keys=True) if payload is not None else None,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_audit_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    document_id: int | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    q = db.session.query(AuditEvent)
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if document_id is not None:
        q = q.filter(AuditEvent.document_id == document_id)
    limit = max(1, min(int(limit), 500))
    return q.order_by(AuditEvent.id.asc()).limit(limit).all()
