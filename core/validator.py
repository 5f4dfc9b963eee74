"""
Validate extraction payloads and coerce line-item numerics.
"""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation
from typing import Any

# Parse status constants
PARSE_STATUS_SUCCESS = "success"
PARSE_STATUS_INVALID_JSON = "invalid_json"
PARSE_STATUS_VALIDATION_FAILED = "validation_failed"

# Parse failure reason constants
PARSE_FAILURE_NOT_AN_OBJECT = "not_an_object"
PARSE_FAILURE_MISSING_LINE_ITEMS = "missing_line_items"
PARSE_FAILURE_INVALID_LINE_ITEMS = "invalid_line_items"

_CURRENCY_MARKERS = ("₹", "Rs.", "Rs", "INR", "$", "€", "£")
MAX_QUANTITY = 10**9


class MalformedLineItemError(ValueError):
    """Raised when a line item cannot be reconciled as given."""

    def __init__(self, message: str, index: int | None = None, sku: Any = None):
        self.index = index
        self.sku = sku
        prefix = f"line item {index + 1}: " if index is not None else ""
        super().__init__(prefix + message)


def _to_decimal(raw: Any, field: str) -> Decimal:
    if isinstance(raw, bool):
        raise MalformedLineItemError(f"{field} must be numeric, got a boolean")
    if isinstance(raw, (int, float)):
        text = str(raw)
    else:
        text = str(raw).strip().replace(",", "")
        for marker in _CURRENCY_MARKERS:
            text = text.replace(marker, "").strip()
    if not text:
        raise MalformedLineItemError(f"{field} is empty")
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise MalformedLineItemError(f"{field} is not numeric: {raw!r}") from exc
    if not value.is_finite():
        raise MalformedLineItemError(f"{field} is not a finite number: {raw!r}")
    return value


def coerce_quantity(raw: Any) -> int:
    """
    Convert an extracted quantity to a non-negative int. Deterministic, pure.

    - Accepts ints, integral floats and numeric strings ("1,200", "48.0")
    - Raises MalformedLineItemError on None, booleans, negatives,
      fractions, non-numeric text and quantities above MAX_QUANTITY
    """
    if raw is None:
        raise MalformedLineItemError("quantity is missing")
    value = _to_decimal(raw, "quantity")
    if value < 0:
        raise MalformedLineItemError(f"quantity cannot be negative: {raw!r}")
    if value > MAX_QUANTITY:
        raise MalformedLineItemError(f"quantity exceeds {MAX_QUANTITY:,}: {raw!r}")
    if value != value.to_integral_value():
        raise MalformedLineItemError(f"quantity must be a whole number: {raw!r}")
    return int(value)


def coerce_amount(raw: Any) -> float:
    """
    Convert an extracted money amount to float. None/blank means 0.0.

    Strips currency markers and thousands separators. Raises
    MalformedLineItemError on negative or non-numeric input.
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return 0.0
    value = _to_decimal(raw, "taxable_value")
    if value < 0:
        raise MalformedLineItemError(f"taxable_value cannot be negative: {raw!r}")
    amount = float(value)
    if math.isinf(amount):
        raise MalformedLineItemError(f"taxable_value is out of range: {raw!r}")
    return amount


def validate_extraction_payload(payload: Any) -> tuple[bool, str | None]:
    """
    Structural validation of an extraction document before reconciliation.

    Required: a JSON object with a `line_items` list. Entries are checked
    one by one during reconciliation, so a bad row never rejects the
    whole document.
    Returns (True, None) if valid, (False, reason_constant) if invalid.
    """
    if not isinstance(payload, dict):
        return (False, PARSE_FAILURE_NOT_AN_OBJECT)
    if "line_items" not in payload or payload.get("line_items") is None:
        return (False, PARSE_FAILURE_MISSING_LINE_ITEMS)
    if not isinstance(payload.get("line_items"), list):
        return (False, PARSE_FAILURE_INVALID_LINE_ITEMS)
    return (True, None)
