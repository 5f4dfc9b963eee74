"""JSON API for the report builder: product master, settings, history, extraction and reports."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Body, Depends, FastAPI, File, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from config import load_config
from core.history import history_extraction, history_totals, save_to_history
from core.ingest import (
    InvalidExtractionError,
    load_product_master,
    reconcile_extraction,
    resolve_webhook_url,
)
from core.ledger import StorageError
from core.products import coerce_product_master, validate_product_payload
from core.reports import MEDIA_TYPES, REPORT_FORMATS, ReportError, render_report, report_filename
from core.storage import StorageBackend, select_storage
from extraction_client import (
    ExtractionParseError,
    ExtractionServiceError,
    decode_base64_pdf,
    extract_invoice_bytes,
    post_pdf_to_webhook,
)

logger = logging.getLogger(__name__)

_config: dict | None = None
_storage: StorageBackend | None = None


def get_config() -> dict:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_storage() -> StorageBackend:
    """Storage backend chosen once per process; tests override this dependency."""
    global _storage
    if _storage is None:
        _storage = select_storage(get_config())
    return _storage


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(cors_origin: str | None = None) -> FastAPI:
    app = FastAPI(title="Invoice Shipping Report Builder", docs_url=None, redoc_url=None)
    origin = cors_origin or get_config().get("cors_origin") or "*"
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in origin.split(",")],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
        allow_credentials=origin != "*",
    )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
        return _error(500, str(exc))

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    # Product master
    @app.get("/api/products")
    def list_products(storage: StorageBackend = Depends(get_storage)) -> dict:
        return storage.get_products()

    @app.put("/api/products", response_model=None)
    def replace_products(payload: Any = Body(...), storage: StorageBackend = Depends(get_storage)):
        if not isinstance(payload, dict):
            return _error(400, "Products must be a JSON object keyed by SKU")
        for sku, product in payload.items():
            ok, reason = validate_product_payload(sku, product)
            if not ok:
                return _error(400, f"{sku}: {reason}")
        storage.save_products(payload)
        return {"success": True, "message": "Products saved"}

    @app.put("/api/products/{sku}", response_model=None)
    def save_product(sku: str, payload: Any = Body(...), storage: StorageBackend = Depends(get_storage)):
        ok, reason = validate_product_payload(sku, payload)
        if not ok:
            return _error(400, reason)
        storage.save_product(sku, payload)
        return {"success": True, "message": f"Product {sku} saved"}

    @app.delete("/api/products/{sku}")
    def delete_product(sku: str, storage: StorageBackend = Depends(get_storage)) -> dict:
        storage.delete_product(sku)
        return {"success": True, "message": f"Product {sku} deleted"}

    # Settings
    @app.get("/api/settings")
    def get_settings(storage: StorageBackend = Depends(get_storage)) -> dict:
        return storage.get_settings()

    @app.put("/api/settings", response_model=None)
    def save_settings(payload: Any = Body(...), storage: StorageBackend = Depends(get_storage)):
        if not isinstance(payload, dict):
            return _error(400, "Settings must be a JSON object")
        storage.save_settings(payload)
        return {"success": True, "message": "Settings saved"}

    # Invoice history
    @app.get("/api/invoices")
    def list_invoices(limit: int | None = None, storage: StorageBackend = Depends(get_storage)) -> list:
        return storage.list_invoices(limit=limit)

    @app.post("/api/invoices", response_model=None)
    def create_invoice(payload: Any = Body(...), storage: StorageBackend = Depends(get_storage)):
        if not isinstance(payload, dict):
            return _error(400, "Invoice must be a JSON object")
        invoice = storage.save_invoice(payload)
        return {"success": True, "invoice": invoice}

    @app.get("/api/invoices/{invoice_id}", response_model=None)
    def get_invoice(invoice_id: int, storage: StorageBackend = Depends(get_storage)):
        invoice = storage.get_invoice(invoice_id)
        if invoice is None:
            return _error(404, "Invoice not found")
        return invoice

    @app.get("/api/invoices/{invoice_id}/report/{fmt}", response_model=None)
    def export_invoice(invoice_id: int, fmt: str, storage: StorageBackend = Depends(get_storage)):
        invoice = storage.get_invoice(invoice_id)
        if invoice is None:
            return _error(404, "Invoice not found")
        if fmt not in REPORT_FORMATS:
            return _error(400, f"Unknown report format: {fmt}")
        items = list(invoice.get("line_items") or [])
        extracted = history_extraction(invoice)
        try:
            data = render_report(fmt, extracted, items, history_totals(items), history=True)
        except ReportError as exc:
            return _error(400, str(exc))
        return _file_response(data, fmt, invoice.get("invoice_number"))

    # Extraction
    @app.post("/api/webhook/proxy", response_model=None)
    def webhook_proxy(payload: Any = Body(...)):
        payload = payload if isinstance(payload, dict) else {}
        webhook_url = payload.get("webhookUrl")
        file_b64 = payload.get("file")
        logger.info("Webhook proxy called: %s", webhook_url)
        if not webhook_url:
            return _error(400, "webhookUrl is required")
        if not file_b64:
            return _error(400, "file is required")
        try:
            pdf_bytes = decode_base64_pdf(file_b64)
        except ExtractionParseError as exc:
            return _error(400, str(exc))
        try:
            response = post_pdf_to_webhook(pdf_bytes, webhook_url, timeout=get_config().get("webhook_timeout") or 120)
        except ExtractionServiceError as exc:
            logger.error("Webhook proxy error: %s", exc)
            return _error(500, f"Failed to forward request to webhook: {exc}")
        try:
            content: Any = response.json()
        except ValueError:
            content = {"raw": response.text}
        return JSONResponse(status_code=response.status_code, content=content)

    @app.post("/api/invoices/process", response_model=None)
    def process_invoice(
        file: UploadFile = File(...),
        save_history: bool = False,
        storage: StorageBackend = Depends(get_storage),
    ):
        filename = file.filename or ""
        if not filename.lower().endswith(".pdf") and file.content_type != "application/pdf":
            return _error(400, "Upload must be a PDF file")
        webhook_url = resolve_webhook_url(storage, get_config())
        if not webhook_url:
            return _error(400, "No extraction webhook URL configured")
        pdf_bytes = file.file.read()
        try:
            extracted = extract_invoice_bytes(pdf_bytes, webhook_url, timeout=get_config().get("webhook_timeout") or 120)
        except (ExtractionServiceError, ExtractionParseError) as exc:
            logger.error("Extraction failed for %s: %s", filename, exc)
            return _error(502, str(exc))
        try:
            result = reconcile_extraction(extracted, load_product_master(storage))
        except InvalidExtractionError as exc:
            return _error(422, str(exc))
        body: dict[str, Any] = {"extracted": extracted, **result.to_dict()}
        if save_history:
            entry, created = save_to_history(storage, extracted, result.items, result.totals)
            body["history"] = {"id": entry.get("id"), "created": created}
        return body

    @app.post("/api/reconcile", response_model=None)
    def reconcile_items(payload: Any = Body(...), storage: StorageBackend = Depends(get_storage)):
        if not isinstance(payload, dict):
            return _error(422, "Body must be a JSON object")
        products = payload.get("products")
        master = coerce_product_master(products) if isinstance(products, dict) else load_product_master(storage)
        try:
            result = reconcile_extraction({"line_items": payload.get("line_items")}, master)
        except InvalidExtractionError as exc:
            return _error(422, str(exc))
        return result.to_dict()

    # Reports
    @app.post("/api/reports/{fmt}", response_model=None)
    def build_report(fmt: str, payload: Any = Body(...), storage: StorageBackend = Depends(get_storage)):
        if fmt not in REPORT_FORMATS:
            return _error(400, f"Unknown report format: {fmt}")
        payload = payload if isinstance(payload, dict) else {}
        extracted = payload.get("extracted")
        try:
            result = reconcile_extraction(extracted, load_product_master(storage))
        except InvalidExtractionError as exc:
            return _error(422, str(exc))
        try:
            data = render_report(fmt, extracted, result.items, result.totals)
        except ReportError as exc:
            return _error(400, str(exc))
        save_history = payload.get("save_history")
        if save_history is None:
            save_history = fmt == "pdf"
        if save_history:
            save_to_history(storage, extracted, result.items, result.totals)
        invoice = extracted.get("invoice") if isinstance(extracted.get("invoice"), dict) else {}
        return _file_response(data, fmt, invoice.get("number"))

    @app.get("/api/connection")
    def connection(storage: StorageBackend = Depends(get_storage)) -> dict:
        return {"backend": storage.check_connection()}


def _file_response(data: bytes, fmt: str, invoice_number: Any) -> Response:
    filename = report_filename(invoice_number, fmt)
    return Response(
        content=data,
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


app = create_app()
