"""Thin orchestration for the report pipeline: extract -> validate -> reconcile -> report/history."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping

from paths import INVOICES_DIR, SEED_PRODUCT_MASTER_PATH

from core.history import history_extraction, save_to_history
from core.products import ProductConfig, coerce_product_master
from core.reconcile import ReconciliationResult, reconcile_partial
from core.storage import StorageBackend
from core.validator import (
    PARSE_STATUS_INVALID_JSON,
    PARSE_STATUS_SUCCESS,
    PARSE_STATUS_VALIDATION_FAILED,
    validate_extraction_payload,
)

logger = logging.getLogger(__name__)


class InvalidExtractionError(ValueError):
    """Raised when an extraction document fails structural validation."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Extraction payload failed validation: {reason}")


def load_seed_products(seed_path: str | Path = SEED_PRODUCT_MASTER_PATH) -> dict[str, Any]:
    """Read the bundled {"products": {...}} seed; missing or malformed -> {}."""
    path = Path(seed_path)
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Seed product master %s unreadable: %s", path, exc)
        return {}
    products = data.get("products") if isinstance(data, dict) else None
    return products if isinstance(products, dict) else {}


def load_product_master(
    storage: StorageBackend,
    seed_path: str | Path = SEED_PRODUCT_MASTER_PATH,
) -> dict[str, ProductConfig]:
    """Snapshot of the stored product master; falls back to the seed file when the store is empty."""
    raw = storage.get_products()
    if not raw:
        raw = load_seed_products(seed_path)
        if raw:
            logger.info("Product store empty; using %d seed products from %s", len(raw), seed_path)
    return coerce_product_master(raw)


def resolve_webhook_url(storage: StorageBackend, config: Mapping[str, Any]) -> str:
    """Stored settings win over the environment."""
    settings = storage.get_settings()
    stored = (settings.get("webhook_url") or settings.get("webhookUrl") or "").strip()
    return stored or (config.get("webhook_url") or "")


def reconcile_extraction(
    extracted: Any,
    master: Mapping[str, Any],
) -> ReconciliationResult:
    """
    Validate an extraction document and reconcile its line items.

    Raises:
        InvalidExtractionError: the document is not reconcilable at all.
    """
    ok, reason = validate_extraction_payload(extracted)
    if not ok:
        raise InvalidExtractionError(reason)
    return reconcile_partial(extracted["line_items"], master)


def recalculate(entry: Mapping[str, Any], master: Mapping[str, Any]) -> tuple[dict[str, Any], ReconciliationResult]:
    """
    Re-run reconciliation for a stored history entry against the current master.

    Uses the raw extracted line items when the entry carries them, else the
    stored enriched items (their derived fields are recomputed).
    """
    extracted = history_extraction(entry)
    stored = entry.get("extracted_data")
    if isinstance(stored, Mapping) and isinstance(stored.get("line_items"), list):
        extracted["line_items"] = list(stored["line_items"])
    return extracted, reconcile_extraction(extracted, master)


def _failed(reason: str, error: Exception | str) -> dict[str, Any]:
    return {"status": "failed", "reason": reason, "error": str(error)}


def run_one(
    pdf_path: str | Path,
    storage: StorageBackend,
    config: Mapping[str, Any],
    formats: Iterable[str] = (),
    out_dir: str | Path | None = None,
    save_history: bool = True,
) -> dict:
    """
    Process a single PDF: webhook extraction, reconciliation, optional reports
    and history. Returns a result dict with 'status' ('success'|'failed').
    """
    from extraction_client import ExtractionParseError, ExtractionServiceError, extract_invoice, line_item_preview
    from core.reports import ReportError, write_report

    path = Path(pdf_path)
    if not path.exists() or path.suffix.lower() != ".pdf":
        return _failed("path_validation", f"Not a PDF file: {pdf_path}")

    webhook_url = resolve_webhook_url(storage, config)
    if not webhook_url:
        return _failed("no_webhook", "No extraction webhook URL configured (settings or EXTRACTION_WEBHOOK_URL).")

    try:
        extracted = extract_invoice(path, webhook_url, timeout=config.get("webhook_timeout") or 120)
    except ExtractionServiceError as exc:
        logger.error("Extraction failed for %s: %s", path.name, exc)
        return _failed("extraction_failed", exc)
    except ExtractionParseError as exc:
        logger.error("Extraction output unparseable for %s: %s", path.name, exc)
        return _failed(PARSE_STATUS_INVALID_JSON, exc)

    master = load_product_master(storage)
    try:
        result = reconcile_extraction(extracted, master)
    except InvalidExtractionError as exc:
        return _failed(PARSE_STATUS_VALIDATION_FAILED, exc)
    logger.info(
        "Extracted %d line items from %s: %s",
        len(extracted["line_items"]),
        path.name,
        line_item_preview(extracted["line_items"]),
    )

    outcome: dict[str, Any] = {
        "status": PARSE_STATUS_SUCCESS,
        "file": path.name,
        "extracted": extracted,
        "result": result,
        "reports": [],
        "history": None,
    }

    for fmt in formats:
        try:
            outcome["reports"].append(write_report(fmt, extracted, result.items, result.totals, out_dir or path.parent))
        except ReportError as exc:
            logger.error("Report %s for %s failed: %s", fmt, path.name, exc)

    if save_history:
        entry, created = save_to_history(storage, extracted, result.items, result.totals)
        if created:
            archived = storage.upload_invoice_pdf(path, entry.get("invoice_number"))
            if archived:
                logger.info("Archived %s to %s", path.name, archived["url"])
        outcome["history"] = entry
        outcome["history_created"] = created
    return outcome


def run_all(
    storage: StorageBackend,
    config: Mapping[str, Any],
    invoices_dir: str | Path = INVOICES_DIR,
    formats: Iterable[str] = (),
    out_dir: str | Path | None = None,
    save_history: bool = True,
) -> dict:
    """Process every PDF in invoices_dir. Returns a batch summary dict."""
    pdf_files = list_invoice_pdfs(invoices_dir)
    formats = tuple(formats)
    summary: dict[str, Any] = {"total": len(pdf_files), "processed": 0, "failed": 0, "results": []}
    for pdf_path in pdf_files:
        result = run_one(pdf_path, storage, config, formats=formats, out_dir=out_dir, save_history=save_history)
        result.setdefault("file", pdf_path.name)
        if result["status"] == PARSE_STATUS_SUCCESS:
            summary["processed"] += 1
        else:
            summary["failed"] += 1
        summary["results"].append(result)
    return summary


def list_invoice_pdfs(invoices_dir: str | Path = INVOICES_DIR) -> list[Path]:
    """Return sorted PDF paths in invoices_dir (empty when it doesn't exist)."""
    directory = Path(invoices_dir)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.suffix.lower() == ".pdf")
