from __future__ import annotations
from datetime import datetime
from backoffice.time_utils import parse_iso_datetime

from typing import Any

from .errors import ValidationFailed
from .services.document_service import DeliveryRequest, LineRequest, PaymentRequest
from .services.cash_closing_service import ClosingLineRequest


# Maximum amount: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


def coerce_int(value: Any, field: str, *, required: bool = True, minimum: int | None = None) -> int | None:
    """
    Strict integer coercion for JSON/query input.

    Rejects floats, booleans, decimals and scientific notation; "12" is
    accepted, "12.0" and 1e3 are not.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationFailed(f"{field} is required", {"field": field})
        return None

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationFailed(f"{field} must be a plain integer (scientific notation not allowed)", {"field": field})
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationFailed(f"{field} must be an integer (no decimals)", {"field": field})
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationFailed(f"{field} must be an integer", {"field": field})
    elif isinstance(value, float):
        raise ValidationFailed(f"{field} must be an integer, not a decimal", {"field": field})
    else:
        raise ValidationFailed(f"{field} must be an integer", {"field": field})

    if minimum is not None and result < minimum:
        raise ValidationFailed(f"{field} must be >= {minimum}", {"field": field, "value": result})
    return result


def coerce_amount(value: Any, field: str, *, required: bool = True, minimum: int = 0) -> int | None:
    result = coerce_int(value, field, required=required, minimum=minimum)
    if result is not None and result > MAX_AMOUNT_CENTS:
        raise ValidationFailed(
            f"{field} cannot exceed {MAX_AMOUNT_CENTS} (${MAX_AMOUNT_CENTS / 100:,.2f})",
            {"field": field, "value": result},
        )
    return result


def coerce_str(value: Any, field: str, *, required: bool = False, max_length: int | None = None) -> str | None:
    if value is None:
        if required:
            raise ValidationFailed(f"{field} is required", {"field": field})
        return None
    if not isinstance(value, str):
        raise ValidationFailed(f"{field} must be a string", {"field": field})
    text = value.strip()
    if not text:
        if required:
            raise ValidationFailed(f"{field} cannot be blank", {"field": field})
        return None
    if max_length and len(text) > max_length:
        raise ValidationFailed(f"{field} exceeds max length {max_length}", {"field": field})
    return text


def coerce_datetime(value: Any, field: str, *, required: bool = False) -> datetime | None:
    """Accept ISO-8601 strings; normalize to UTC-naive."""
    if isinstance(value, datetime):
        return value
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationFailed(f"{field} is required", {"field": field})
        return None
    if not isinstance(value, str):
        raise ValidationFailed(f"{field} must be an ISO-8601 datetime", {"field": field})
    try:
        dt = parse_iso_datetime(value)
    except ValueError:
        raise ValidationFailed(f"{field} must be an ISO-8601 datetime", {"field": field})
    if dt is None and required:
        raise ValidationFailed(f"{field} is required", {"field": field})
    return dt


def _require_list(payload: dict, key: str, *, required: bool = True) -> list:
    items = payload.get(key)
    if items is None:
        if required:
            raise ValidationFailed(f"{key} is required", {"field": key})
        return []
    if not isinstance(items, list):
        raise ValidationFailed(f"{key} must be a list", {"field": key})
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationFailed(f"{key}[{idx}] must be an object", {"field": key, "index": idx})
    return items


def parse_lines(payload: dict) -> list[LineRequest]:
    return [
        LineRequest(
            product_id=coerce_int(item.get("product_id"), f"lines[{idx}].product_id", minimum=1),
            quantity=coerce_int(item.get("quantity"), f"lines[{idx}].quantity", minimum=1),
            unit_price_cents=coerce_amount(item.get("unit_price_cents"), f"lines[{idx}].unit_price_cents", required=False),
            description=coerce_str(item.get("description"), f"lines[{idx}].description", max_length=255),
        )
        for idx, item in enumerate(_require_list(payload, "lines"))
    ]


def parse_payments(payload: dict) -> list[PaymentRequest]:
    return [
        PaymentRequest(
            method=coerce_str(item.get("method"), f"payments[{idx}].method", required=True),
            amount_cents=coerce_amount(item.get("amount_cents"), f"payments[{idx}].amount_cents", minimum=1),
            description=coerce_str(item.get("description"), f"payments[{idx}].description", max_length=255),
        )
        for idx, item in enumerate(_require_list(payload, "payments", required=False))
    ]


def parse_deliveries(payload: dict) -> list[DeliveryRequest]:
    return [
        DeliveryRequest(
            line_id=coerce_int(item.get("line_id"), f"deliveries[{idx}].line_id", minimum=1),
            quantity=coerce_int(item.get("quantity"), f"deliveries[{idx}].quantity", minimum=1),
        )
        for idx, item in enumerate(_require_list(payload, "deliveries"))
    ]


def parse_closing_lines(payload: dict) -> list[ClosingLineRequest]:
    return [
        ClosingLineRequest(
            kind=coerce_str(item.get("kind"), f"line_items[{idx}].kind", required=True),
            amount_cents=coerce_amount(item.get("amount_cents"), f"line_items[{idx}].amount_cents", minimum=1),
            method=coerce_str(item.get("method"), f"line_items[{idx}].method") or "CASH",
            description=coerce_str(item.get("description"), f"line_items[{idx}].description", max_length=255),
        )
        for idx, item in enumerate(_require_list(payload, "line_items", required=False))
    ]


def parse_pagination(args) -> tuple[int, int]:
    """limit is clamped to 1..500, offset to >= 0."""
    limit = coerce_int(args.get("limit"), "limit", required=False)
    offset = coerce_int(args.get("offset"), "offset", required=False)
    limit = 100 if limit is None else max(1, min(limit, 500))
    offset = 0 if offset is None else max(0, offset)
    return limit, offset
