"""Invoice history entries: built from a reconciled extraction, saved once per invoice number."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from core.reconcile import Totals
from core.storage import StorageBackend

logger = logging.getLogger(__name__)


def _section(extracted: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = extracted.get(key)
    return value if isinstance(value, Mapping) else {}


def build_history_entry(
    extracted: Mapping[str, Any],
    items: list[dict[str, Any]],
    totals: Totals,
) -> dict[str, Any]:
    """
    Flatten an extraction plus its enriched items into a history record.

    invoice_value comes from the extraction's totals block and falls back
    to the computed sum of taxable values. Storage assigns id/created_at.
    """
    invoice = _section(extracted, "invoice")
    invoice_value = _section(extracted, "totals").get("invoice_value")
    if invoice_value in (None, ""):
        invoice_value = totals.value
    return {
        "invoice_number": invoice.get("number"),
        "invoice_date": invoice.get("date"),
        "seller_name": _section(extracted, "seller").get("name"),
        "buyer_name": _section(extracted, "buyer").get("name"),
        "total_boxes": totals.boxes,
        "total_weight": totals.weight,
        "invoice_value": invoice_value,
        "line_items": list(items),
        "extracted_data": dict(extracted),
    }


def find_in_history(storage: StorageBackend, invoice_number: Any) -> dict[str, Any] | None:
    if invoice_number in (None, ""):
        return None
    for entry in storage.list_invoices(limit=None):
        if entry.get("invoice_number") == invoice_number:
            return entry
    return None


def save_to_history(
    storage: StorageBackend,
    extracted: Mapping[str, Any],
    items: list[dict[str, Any]],
    totals: Totals,
) -> tuple[dict[str, Any], bool]:
    """
    Save the reconciled invoice unless its number is already in history.

    Returns:
        (entry, created): the stored record and whether it was new.
    """
    entry = build_history_entry(extracted, items, totals)
    existing = find_in_history(storage, entry["invoice_number"])
    if existing is not None:
        logger.info("Invoice %s already in history (id=%s); not saved again", entry["invoice_number"], existing.get("id"))
        return existing, False
    saved = storage.save_invoice(entry)
    logger.info("Saved invoice %s to history (id=%s)", saved.get("invoice_number"), saved.get("id"))
    return saved, True


def history_totals(items: Iterable[Mapping[str, Any]]) -> Totals:
    """Sum stored items, treating any missing or null field as 0."""
    quantity = boxes = 0
    weight = value = 0.0
    for item in items:
        quantity += item.get("quantity") or 0
        boxes += item.get("num_boxes") or 0
        weight += item.get("total_weight") or 0
        value += item.get("taxable_value") or 0
    return Totals(quantity=quantity, boxes=boxes, weight=weight, value=value)


def history_extraction(entry: Mapping[str, Any]) -> dict[str, Any]:
    """
    Rebuild an extraction-shaped header for report writers from a history
    entry; flat entry fields win over the stored extraction.
    """
    data = entry.get("extracted_data") if isinstance(entry.get("extracted_data"), Mapping) else {}
    seller = dict(_section(data, "seller"))
    buyer = dict(_section(data, "buyer"))
    totals = dict(_section(data, "totals"))
    seller["name"] = entry.get("seller_name") or seller.get("name")
    buyer["name"] = entry.get("buyer_name") or buyer.get("name")
    if entry.get("invoice_value") not in (None, ""):
        totals["invoice_value"] = entry.get("invoice_value")
    return {
        "invoice": {
            "number": entry.get("invoice_number"),
            "date": entry.get("invoice_date"),
        },
        "seller": seller,
        "buyer": buyer,
        "totals": totals,
        "line_items": list(entry.get("line_items") or []),
    }
