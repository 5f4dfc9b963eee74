"""Product master model: packaging configuration per SKU and its defaults."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

NUMERIC_FIELDS = (
    "pieces_per_box",
    "box_weight_kg",
    "box_length_cm",
    "box_width_cm",
    "box_height_cm",
)


@dataclass(frozen=True)
class ProductConfig:
    """Packaging metadata for one SKU. None means 'not configured'."""

    pieces_per_box: float | None = None
    box_weight_kg: float | None = None
    box_length_cm: float | None = None
    box_width_cm: float | None = None
    box_height_cm: float | None = None
    name: str | None = None
    hsn_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.name is not None:
            data["name"] = self.name
        if self.hsn_code is not None:
            data["hsn_code"] = self.hsn_code
        for field in NUMERIC_FIELDS:
            data[field] = getattr(self, field)
        return data


DEFAULT_BOX_CONFIG = ProductConfig(
    pieces_per_box=48,
    box_weight_kg=5,
    box_length_cm=30,
    box_width_cm=25,
    box_height_cm=20,
)


def positive_number(value: Any) -> int | float | None:
    """
    Return value as a positive number, or None when absent, non-positive
    or unparseable. Integral values come back as int.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = value
    else:
        text = str(value).strip().replace(",", "")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if number != number or number <= 0 or number == float("inf"):
        return None
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def product_config_from_dict(data: Mapping[str, Any] | ProductConfig | None) -> ProductConfig:
    """Build a ProductConfig from a stored/edited dict; bad numerics become None."""
    if isinstance(data, ProductConfig):
        return data
    if not isinstance(data, Mapping):
        return ProductConfig()
    return ProductConfig(
        pieces_per_box=positive_number(data.get("pieces_per_box")),
        box_weight_kg=positive_number(data.get("box_weight_kg")),
        box_length_cm=positive_number(data.get("box_length_cm")),
        box_width_cm=positive_number(data.get("box_width_cm")),
        box_height_cm=positive_number(data.get("box_height_cm")),
        name=_optional_text(data.get("name")),
        hsn_code=_optional_text(data.get("hsn_code")),
    )


def coerce_product_master(raw: Mapping[str, Any] | None) -> dict[str, ProductConfig]:
    """Convert a {sku: dict} mapping into {sku: ProductConfig}, keeping key order."""
    if not isinstance(raw, Mapping):
        return {}
    return {str(sku): product_config_from_dict(cfg) for sku, cfg in raw.items()}


def validate_product_payload(sku: str | None, payload: Any) -> tuple[bool, str | None]:
    """
    Validate a product master edit.

    SKU is required. Numeric fields may be omitted (they fall back to the
    default box) but when provided must parse as positive numbers.
    Returns (True, None) if valid, (False, reason) if invalid.
    """
    if not sku or not str(sku).strip():
        return (False, "SKU is required")
    if not isinstance(payload, Mapping):
        return (False, "Product must be a JSON object")
    for field in NUMERIC_FIELDS:
        value = payload.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        if positive_number(value) is None:
            return (False, f"{field} must be a positive number")
    return (True, None)
