"""
Reconciliation engine: enrich extracted line items with packaging rollups
and aggregate invoice totals.

Pure transform. The product master and line items are explicit inputs and
neither is mutated, so a pass can be re-run after master edits and always
reflects the current inputs only.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Iterable, Mapping, Sequence

from core.rollup import compute_rollup
from core.validator import MalformedLineItemError, coerce_amount, coerce_quantity
from sku_matcher import TIER_DEFAULT, build_normalized_index, match_sku

logger = logging.getLogger(__name__)

REQUIRED_ITEM_KEYS = ("sku", "quantity")


@dataclass(frozen=True)
class Totals:
    """Invoice-level sums over enriched line items."""

    quantity: int = 0
    boxes: int = 0
    weight: float = 0
    value: float = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ReconciliationResult:
    """Outcome of a lenient pass: enriched items, totals and rejected rows."""

    items: list[dict[str, Any]]
    totals: Totals
    rejected: list[dict[str, Any]] = field(default_factory=list)

    @property
    def unmatched_skus(self) -> list[Any]:
        return [item.get("sku") for item in self.items if item.get("match_tier") == TIER_DEFAULT]

    def to_dict(self) -> dict[str, Any]:
        return {
            "line_items": self.items,
            "totals": self.totals.to_dict(),
            "rejected": self.rejected,
            "unmatched_skus": self.unmatched_skus,
        }


def enrich_line_item(
    item: Mapping[str, Any],
    master: Mapping[str, Any],
    index: Mapping[str, str] | None = None,
    position: int | None = None,
) -> dict[str, Any]:
    """
    Return a new dict: the raw item plus pieces_per_box, box_weight_kg,
    box_dimensions, num_boxes, total_weight and match_tier.

    quantity and taxable_value are replaced with their coerced numeric
    values; every other field passes through untouched.

    Raises:
        MalformedLineItemError: item is not an object, lacks sku/quantity,
            or carries an invalid quantity or taxable_value.
    """
    if not isinstance(item, Mapping):
        raise MalformedLineItemError("line item must be an object", index=position)
    for key in REQUIRED_ITEM_KEYS:
        if key not in item:
            raise MalformedLineItemError(f"missing required field: {key}", index=position, sku=item.get("sku"))

    sku = item.get("sku")
    try:
        quantity = coerce_quantity(item.get("quantity"))
        taxable_value = coerce_amount(item.get("taxable_value"))
    except MalformedLineItemError as exc:
        raise MalformedLineItemError(str(exc), index=position, sku=sku) from exc

    match = match_sku(sku, master, index=index)
    if match.tier != TIER_DEFAULT:
        logger.debug("SKU matched (%s): %r -> %r", match.tier, sku, match.matched_sku)
    rollup = compute_rollup(match.config, quantity)

    enriched = dict(item)
    enriched.update(
        {
            "quantity": quantity,
            "taxable_value": taxable_value,
            "pieces_per_box": rollup.pieces_per_box,
            "box_weight_kg": rollup.box_weight_kg,
            "box_dimensions": rollup.box_dimensions,
            "num_boxes": rollup.num_boxes,
            "total_weight": rollup.total_weight,
            "match_tier": match.tier,
        }
    )
    return enriched


def compute_totals(items: Iterable[Mapping[str, Any]]) -> Totals:
    """Sum quantity, boxes, weight and value across enriched items."""
    quantity = 0
    boxes = 0
    weight: float = 0
    value: float = 0
    for item in items:
        quantity += item["quantity"]
        boxes += item["num_boxes"]
        weight += item["total_weight"]
        value += item.get("taxable_value") or 0
    return Totals(quantity=quantity, boxes=boxes, weight=weight, value=value)


def reconcile(
    line_items: Sequence[Mapping[str, Any]] | None,
    master: Mapping[str, Any],
) -> tuple[list[dict[str, Any]], Totals]:
    """
    Enrich every line item and aggregate totals. Order-preserving.

    Args:
        line_items: Raw extracted rows; None is treated as empty.
        master: Product master snapshot, {sku: ProductConfig or dict}.

    Returns:
        (enriched_items, totals)

    Raises:
        MalformedLineItemError: on the first structurally invalid item.
    """
    index = build_normalized_index(master)
    enriched = [
        enrich_line_item(item, master, index=index, position=i)
        for i, item in enumerate(line_items or [])
    ]
    return enriched, compute_totals(enriched)


def reconcile_partial(
    line_items: Sequence[Mapping[str, Any]] | None,
    master: Mapping[str, Any],
) -> ReconciliationResult:
    """
    Like reconcile(), but malformed items are skipped and reported in
    `rejected` ({index, sku, error}) instead of aborting the pass.
    Rejected items contribute nothing to totals.
    """
    index = build_normalized_index(master)
    enriched: list[dict[str, Any]] = []
    rejected: list[dict[str, Any]] = []
    for i, item in enumerate(line_items or []):
        try:
            enriched.append(enrich_line_item(item, master, index=index, position=i))
        except MalformedLineItemError as exc:
            logger.warning("Skipping malformed %s", exc)
            rejected.append({"index": i, "sku": exc.sku, "error": str(exc)})
    return ReconciliationResult(items=enriched, totals=compute_totals(enriched), rejected=rejected)
