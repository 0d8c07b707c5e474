from __future__ import annotations

from datetime import datetime
from typing import Any

from lpg_dispatch.time_utils import parse_iso_date


# Upper bound for a single money field: Rs 9,999,999.99
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


def request_payload(request) -> dict:
    """
    Merge JSON body or form fields into one dict.

    Drivers post multipart forms (proof photo attached); office tools post
    JSON. Repeated form keys (serials) are kept as lists.
    """
    if request.is_json:
        payload = request.get_json(silent=True)
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        return payload

    payload: dict[str, Any] = {}
    for key in request.form.keys():
        values = request.form.getlist(key)
        payload[key] = values if len(values) > 1 or key.endswith("[]") else values[0]
    return {key.removesuffix("[]"): value for key, value in payload.items()}


def coerce_int(value: Any, field: str, *, required: bool = False, minimum: int | None = None) -> int | None:
    """
    Strict integer parsing: rejects floats, decimals and scientific notation.

    Returns None for missing values unless ``required``.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"Missing required field: {field}")
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def coerce_amount_cents(value: Any, field: str, *, required: bool = False) -> int | None:
    amount = coerce_int(value, field, required=required, minimum=0)
    if amount is not None and amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS} (Rs {MAX_AMOUNT_CENTS / 100:,.2f})")
    return amount


def coerce_serials(value: Any) -> list[str]:
    """Accept a list, or a comma separated string, of serial numbers."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(part).strip() for part in value if str(part).strip()]
    raise ValidationError("serials must be a list of serial numbers")


def coerce_date(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        return parse_iso_date(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")
