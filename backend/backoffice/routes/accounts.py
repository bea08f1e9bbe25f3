# Overview: Flask API routes for customer running accounts; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BackofficeError
from ..services import account_service, reversal_service
from ..decorators import require_actor, require_role, ROLE_ADMIN, ROLE_MANAGER
from ..validation import coerce_amount, coerce_datetime, coerce_str, parse_pagination


accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/accounts")


@accounts_bp.get("/<int:customer_id>")
@require_actor
def account_summary_route(customer_id: int):
    try:
        return jsonify({"account": account_service.get_account_summary(customer_id)}), 200
    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load account summary")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/<int:customer_id>/movements")
@require_actor
def list_movements_route(customer_id: int):
    try:
        args = request.args
        limit, offset = parse_pagination(args)
        direction = args.get("direction")
        concept = args.get("concept")
        rows, total = account_service.list_account_movements(
            customer_id=customer_id,
            direction=direction.upper() if direction else None,
            concept=concept.upper() if concept else None,
            date_from=coerce_datetime(args.get("from"), "from"),
            date_to=coerce_datetime(args.get("to"), "to"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [m.to_dict() for m in rows],
            "count": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list account movements")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.post("/<int:customer_id>/adjustments")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def post_adjustment_route(customer_id: int):
    """
    Manual running-account correction.

    Body: direction (DEBIT | CREDIT), amount_cents, concept, notes
    Available to: admin, manager
    """
    try:
        data = request.get_json(silent=True) or {}
        direction = coerce_str(data.get("direction"), "direction", required=True).upper()

        movement = account_service.post_adjustment(
            customer_id=customer_id,
            direction=direction,
            amount_cents=coerce_amount(data.get("amount_cents"), "amount_cents", minimum=1),
            concept=coerce_str(data.get("concept"), "concept", required=True, max_length=200),
            actor_id=g.actor.id,
            notes=coerce_str(data.get("notes"), "notes", max_length=500),
        )
        return jsonify({
            "movement_id": movement.id,
            "new_balance_cents": movement.balance_after_cents,
            "movement": movement.to_dict(),
        }), 201

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to post account adjustment")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.get("/<int:customer_id>/receipts")
@require_actor
def list_receipts_route(customer_id: int):
    try:
        args = request.args
        limit, offset = parse_pagination(args)
        status = args.get("status")
        rows, total = account_service.list_receipts(
            customer_id=customer_id,
            status=status.upper() if status else None,
            date_from=coerce_datetime(args.get("from"), "from"),
            date_to=coerce_datetime(args.get("to"), "to"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [r.to_dict() for r in rows],
            "count": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list receipts")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.post("/<int:customer_id>/receipts")
@require_actor
def register_receipt_route(customer_id: int):
    """Body: amount_cents, method (CASH | CARD | TRANSFER | CHECK), notes."""
    try:
        data = request.get_json(silent=True) or {}
        method = coerce_str(data.get("method"), "method", required=True).upper()

        receipt = account_service.register_receipt(
            customer_id=customer_id,
            amount_cents=coerce_amount(data.get("amount_cents"), "amount_cents", minimum=1),
            method=method,
            actor_id=g.actor.id,
            notes=coerce_str(data.get("notes"), "notes", max_length=500),
        )
        return jsonify({"receipt": receipt.to_dict()}), 201

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to register receipt")
        return jsonify({"error": "Internal server error"}), 500


@accounts_bp.post("/receipts/<int:receipt_id>/void")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def void_receipt_route(receipt_id: int):
    """
    Void a customer payment with a compensating debit.

    Available to: admin, manager
    """
    try:
        data = request.get_json(silent=True) or {}
        receipt = reversal_service.void_receipt(
            receipt_id=receipt_id,
            reason=coerce_str(data.get("reason"), "reason", max_length=500),
            actor_id=g.actor.id,
        )
        return jsonify({"receipt": receipt.to_dict()}), 200

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void receipt")
        return jsonify({"error": "Internal server error"}), 500
