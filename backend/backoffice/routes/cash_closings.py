# Overview: Flask API routes for cash closings; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import BackofficeError
from ..services import cash_closing_service
from ..decorators import require_actor
from ..validation import coerce_amount, coerce_datetime, coerce_int, coerce_str, parse_closing_lines, parse_pagination


cash_closings_bp = Blueprint("cash_closings", __name__, url_prefix="/api/cash-closings")


@cash_closings_bp.get("/preview")
@require_actor
def preview_route():
    """Query: from, to (ISO-8601, half-open window), scope (SALES | FULL)."""
    try:
        args = request.args
        data = cash_closing_service.preview_cash_closing(
            window_start=coerce_datetime(args.get("from"), "from", required=True),
            window_end=coerce_datetime(args.get("to"), "to", required=True),
            scope=args.get("scope"),
        )
        return jsonify({"preview": data}), 200

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to preview cash closing")
        return jsonify({"error": "Internal server error"}), 500


@cash_closings_bp.post("")
@require_actor
def close_cash_route():
    """
    Persist a cash closing.

    Body: window_start, window_end, opening_cash_cents, counted_cash_cents,
    scope, line_items[] (ADJUSTMENT_IN | ADJUSTMENT_OUT), notes
    """
    try:
        data = request.get_json(silent=True) or {}
        closing = cash_closing_service.close_cash(
            window_start=coerce_datetime(data.get("window_start"), "window_start", required=True),
            window_end=coerce_datetime(data.get("window_end"), "window_end", required=True),
            opening_cash_cents=coerce_amount(data.get("opening_cash_cents"), "opening_cash_cents", required=False) or 0,
            counted_cash_cents=coerce_amount(data.get("counted_cash_cents"), "counted_cash_cents"),
            line_items=parse_closing_lines(data),
            scope=coerce_str(data.get("scope"), "scope"),
            actor_id=g.actor.id,
            notes=coerce_str(data.get("notes"), "notes", max_length=2000),
        )
        return jsonify({
            "id": closing.id,
            "discrepancy_cents": closing.discrepancy_cents,
            "closing": closing.to_dict(include_lines=True),
        }), 201

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to close cash")
        return jsonify({"error": "Internal server error"}), 500


@cash_closings_bp.get("")
@require_actor
def list_closings_route():
    try:
        args = request.args
        limit, offset = parse_pagination(args)
        rows, total = cash_closing_service.list_cash_closings(
            scope=args.get("scope"),
            actor_id=coerce_int(args.get("actor_id"), "actor_id", required=False),
            date_from=coerce_datetime(args.get("from"), "from"),
            date_to=coerce_datetime(args.get("to"), "to"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "items": [c.to_dict() for c in rows],
            "count": total,
            "limit": limit,
            "offset": offset,
        }), 200

    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list cash closings")
        return jsonify({"error": "Internal server error"}), 500


@cash_closings_bp.get("/<int:closing_id>")
@require_actor
def get_closing_route(closing_id: int):
    try:
        closing = cash_closing_service.get_cash_closing(closing_id)
        return jsonify({"closing": closing.to_dict(include_lines=True)}), 200
    except BackofficeError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cash closing")
        return jsonify({"error": "Internal server error"}), 500
