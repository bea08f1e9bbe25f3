# Overview: Flask API routes for business documents; parses input and returns JSON responses.

# backend/backoffice/routes/documents.py
"""Document API routes: issuance, deliveries, quote lifecycle, cancellation."""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BackofficeError, ValidationFailed
from ..services import audit_service, document_service, reversal_service
from ..decorators import require_actor, require_role, ROLE_ADMIN, ROLE_MANAGER
from ..validation import (
    coerce_amount,
    coerce_datetime,
    coerce_int,
    coerce_str,
    parse_deliveries,
    parse_lines,
    parse_pagination,
    parse_payments,
)


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")


def _party_id(data: dict, document_type: str):
    if (document_type or "").strip().lower() == document_service.TYPE_PURCHASE:
        return coerce_int(data.get("supplier_id"), "supplier_id", required=False, minimum=1)
    return coerce_int(data.get("customer_id"), "customer_id", required=False, minimum=1)


@documents_bp.post("")
@require_actor
def create_document_route():
    """
    Create a sale, purchase, budget or quote.

    Body: document_type, customer_id | supplier_id, lines[], payments[],
    discount_cents, surcharge_cents, delivery, notes, issued_at, validity_days.
    Available to: admin, manager, cashier
    """
    try:
        data = request.get_json(silent=True) or {}
        document_type = coerce_str(data.get("document_type"), "document_type", required=True)

        doc = document_service.create_document(
            document_type=document_type,
            party_id=_party_id(data, document_type),
            lines=parse_lines(data),
            payments=parse_payments(data),
            actor_id=g.actor.id,
            discount_cents=coerce_amount(data.get("discount_cents"), "discount_cents", required=False) or 0,
            surcharge_cents=coerce_amount(data.get("surcharge_cents"), "surcharge_cents", required=False) or 0,
            delivery=coerce_str(data.get("delivery"), "delivery"),
            notes=coerce_str(data.get("notes"), "notes", max_length=2000),
            issued_at=coerce_datetime(data.get("issued_at"), "issued_at"),
            validity_days=coerce_int(data.get("validity_days"), "validity_days", required=False, minimum=0),
        )

        return jsonify({
            "id": doc.id,
            "number": doc.number,
            "total_cents": doc.total_cents,
            "status": doc.status,
            "document": doc.to_dict(include_lines=True),
        }), 201

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.get("")
@require_actor
def list_documents_route():
    try:
        args = request.args
        limit, offset = parse_pagination(args)
        rows, total = document_service.list_documents(
            document_type=args.get("document_type"),
            status=args.get("status"),
            customer_id=coerce_int(args.get("customer_id"), "customer_id", required=False),
            supplier_id=coerce_int(args.get("supplier_id"), "supplier_id", required=False),
            date_from=coerce_datetime(args.get("from"), "from"),
            date_to=coerce_datetime(args.get("to"), "to"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [doc.to_dict() for doc in rows],
            "count": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list documents")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.get("/<int:document_id>")
@require_actor
def get_document_route(document_id: int):
    try:
        doc = document_service.get_document(document_id)
        return jsonify({"document": doc.to_dict(include_lines=True)}), 200
    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/cancel")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def cancel_document_route(document_id: int):
    """
    Cancel a document with compensating stock/account entries.

    Available to: admin, manager
    """
    try:
        data = request.get_json(silent=True) or {}
        reason = coerce_str(data.get("reason"), "reason", max_length=500)

        doc = reversal_service.cancel_document(document_id=document_id, reason=reason, actor_id=g.actor.id)
        return jsonify({"id": doc.id, "status": doc.status, "document": doc.to_dict()}), 200

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel document")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/deliveries")
@require_actor
def deliver_route(document_id: int):
    """
    Record a delivery (budget) or reception (purchase) batch.

    Body: deliveries: [{line_id, quantity}]
    """
    try:
        data = request.get_json(silent=True) or {}
        doc = document_service.deliver_partial(
            document_id=document_id,
            deliveries=parse_deliveries(data),
            actor_id=g.actor.id,
        )
        return jsonify({"id": doc.id, "status": doc.status, "document": doc.to_dict(include_lines=True)}), 200

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record delivery")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/status")
@require_actor
def quote_status_route(document_id: int):
    """Body: status (ACCEPTED | REJECTED | EXPIRED), reason."""
    try:
        data = request.get_json(silent=True) or {}
        status = coerce_str(data.get("status"), "status", required=True)
        doc = document_service.update_quote_status(
            document_id=document_id,
            status=status,
            reason=coerce_str(data.get("reason"), "reason", max_length=500),
            actor_id=g.actor.id,
        )
        return jsonify({"id": doc.id, "status": doc.status}), 200

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update quote status")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.post("/<int:document_id>/convert")
@require_actor
def convert_quote_route(document_id: int):
    """Convert an accepted quote into a budget. Body: payments[], delivery."""
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("payments"):
            raise ValidationFailed("payments are required to convert a quote into a budget")

        budget = document_service.convert_quote_to_budget(
            quote_id=document_id,
            payments=parse_payments(data),
            actor_id=g.actor.id,
            delivery=coerce_str(data.get("delivery"), "delivery"),
            validity_days=coerce_int(data.get("validity_days"), "validity_days", required=False, minimum=0),
        )
        return jsonify({
            "id": budget.id,
            "number": budget.number,
            "total_cents": budget.total_cents,
            "status": budget.status,
            "document": budget.to_dict(include_lines=True),
        }), 201

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to convert quote")
        return jsonify({"error": "Internal server error"}), 500


@documents_bp.get("/<int:document_id>/events")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def document_events_route(document_id: int):
    """Audit trail of a document, oldest first."""
    try:
        doc = document_service.get_document(document_id)
        events = audit_service.list_audit_events(document_id=doc.id)
        return jsonify({"items": [ev.to_dict() for ev in events], "count": len(events)}), 200
    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load document events")
        return jsonify({"error": "Internal server error"}), 500
