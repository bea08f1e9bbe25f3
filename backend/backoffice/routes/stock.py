# Overview: Flask API routes for the stock ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BackofficeError
from ..services import stock_service
from ..decorators import require_actor
from ..validation import coerce_datetime, coerce_int, coerce_str, parse_pagination


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.post("/movements")
@require_actor
def post_movement_route():
    """
    Manual stock entry, exit or stocktake adjustment.

    Body: product_id, kind (IN | OUT | ADJUST), quantity, reason
    ADJUST sets the stock to quantity.
    """
    try:
        data = request.get_json(silent=True) or {}
        kind = coerce_str(data.get("kind"), "kind", required=True).upper()

        movement = stock_service.post_manual_movement(
            product_id=coerce_int(data.get("product_id"), "product_id", minimum=1),
            kind=kind,
            quantity=coerce_int(data.get("quantity"), "quantity", minimum=0),
            reason=coerce_str(data.get("reason"), "reason", max_length=255),
            actor_id=g.actor.id,
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to post stock movement")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/movements")
@require_actor
def list_movements_route():
    try:
        args = request.args
        limit, offset = parse_pagination(args)
        kind = args.get("kind")
        rows, total = stock_service.list_stock_movements(
            product_id=coerce_int(args.get("product_id"), "product_id", required=False),
            kind=kind.upper() if kind else None,
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
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500
