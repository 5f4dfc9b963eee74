"""Per-item shipping rollup: box count, weight and box dimensions."""

from __future__ import annotations

import math
from dataclasses import dataclass

from core.products import DEFAULT_BOX_CONFIG, ProductConfig, positive_number
from core.validator import coerce_quantity

DIMENSION_SEPARATOR = "×"


@dataclass(frozen=True)
class Rollup:
    """Derived shipping metrics for one line item."""

    pieces_per_box: int | float
    box_weight_kg: int | float
    box_dimensions: str
    num_boxes: int
    total_weight: int | float


def _resolve(value: int | float | None, default: int | float) -> int | float:
    resolved = positive_number(value)
    return resolved if resolved is not None else default


def _format_number(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_dimensions(length: int | float, width: int | float, height: int | float) -> str:
    """Render box dimensions as 'L×W×H' without trailing '.0'."""
    return DIMENSION_SEPARATOR.join(_format_number(v) for v in (length, width, height))


def compute_rollup(config: ProductConfig, quantity: object) -> Rollup:
    """
    Compute box count, total weight and dimensions for quantity pieces.

    Each field of config is resolved independently: its own value when
    positive, otherwise the default box value.

    Raises:
        MalformedLineItemError: quantity is missing, negative or not an integer.
    """
    qty = coerce_quantity(quantity)
    default = DEFAULT_BOX_CONFIG
    pieces_per_box = _resolve(config.pieces_per_box, default.pieces_per_box)
    box_weight_kg = _resolve(config.box_weight_kg, default.box_weight_kg)
    dimensions = format_dimensions(
        _resolve(config.box_length_cm, default.box_length_cm),
        _resolve(config.box_width_cm, default.box_width_cm),
        _resolve(config.box_height_cm, default.box_height_cm),
    )
    if isinstance(pieces_per_box, int):
        num_boxes = -(-qty // pieces_per_box)
    else:
        num_boxes = math.ceil(qty / pieces_per_box)
    return Rollup(
        pieces_per_box=pieces_per_box,
        box_weight_kg=box_weight_kg,
        box_dimensions=dimensions,
        num_boxes=num_boxes,
        total_weight=num_boxes * box_weight_kg,
    )

