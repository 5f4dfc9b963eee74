"""
Extraction webhook client: sends an invoice PDF to the OCR/LLM webhook and
returns its structured extraction.
"""

import base64
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests

logger = logging.getLogger(__name__)

UPLOAD_FILENAME = "invoice.pdf"
PDF_CONTENT_TYPE = "application/pdf"
DEFAULT_TIMEOUT = 120


class ExtractionServiceError(RuntimeError):
    """Raised when the extraction webhook is unreachable or answers non-OK."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ExtractionParseError(ValueError):
    """Raised when the webhook response is not a usable JSON document."""


def post_pdf_to_webhook(
    pdf_bytes: bytes,
    webhook_url: str,
    timeout: int = DEFAULT_TIMEOUT,
) -> requests.Response:
    """
    POST pdf_bytes as multipart field 'file' (invoice.pdf, application/pdf).

    Transport errors are raised as ExtractionServiceError; the status code
    is left for the caller to judge.
    """
    if not webhook_url:
        raise ExtractionServiceError("Extraction webhook URL is not configured.")
    logger.info("Posting %d bytes to extraction webhook %s", len(pdf_bytes), webhook_url)
    try:
        response = requests.post(
            webhook_url,
            files={"file": (UPLOAD_FILENAME, pdf_bytes, PDF_CONTENT_TYPE)},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise ExtractionServiceError(f"Failed to reach extraction webhook: {exc}") from exc
    logger.info("Extraction webhook response status: %s", response.status_code)
    logger.debug("Extraction webhook response: %s", _preview_text(response.text, limit=500))
    return response


def extract_invoice_bytes(
    pdf_bytes: bytes,
    webhook_url: str,
    timeout: int = DEFAULT_TIMEOUT,
) -> Dict[str, Any]:
    """Send PDF bytes to the webhook and return the normalized extraction."""
    response = post_pdf_to_webhook(pdf_bytes, webhook_url, timeout=timeout)
    if not response.ok:
        raise ExtractionServiceError(
            f"Extraction webhook returned HTTP {response.status_code}: "
            f"{_preview_text(response.text, limit=200)}",
            status_code=response.status_code,
        )
    return normalize_extraction(parse_webhook_response(response.text))


def extract_invoice(
    pdf_path: Union[str, Path],
    webhook_url: str,
    timeout: int = DEFAULT_TIMEOUT,
) -> Dict[str, Any]:
    """Read a PDF from disk and return its normalized extraction."""
    path = Path(pdf_path)
    if not path.exists():
        raise FileNotFoundError(f"PDF not found: {pdf_path}")
    return extract_invoice_bytes(path.read_bytes(), webhook_url, timeout=timeout)


def decode_base64_pdf(file_b64: str) -> bytes:
    """Decode a base64 payload (bare or data: URL) into raw bytes."""
    payload = (file_b64 or "").strip()
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        return base64.b64decode(payload, validate=True)
    except (ValueError, TypeError) as exc:
        raise ExtractionParseError(f"file is not valid base64: {exc}") from exc


def parse_webhook_response(raw_output: str) -> Dict[str, Any]:
    """
    Parse webhook output into a dict with recovery for common formatting wrappers.

    A top-level array (some webhook runners wrap results) yields its first
    object.
    """
    if not (raw_output or "").strip():
        raise ExtractionParseError(_format_parse_error("empty", raw_output, "Webhook returned empty response."))

    cleaned = _strip_markdown_fences(raw_output.strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        extracted = _extract_json_object(cleaned)
        if extracted is None:
            raise ExtractionParseError(_format_parse_error("no-json", raw_output, "No JSON object found in webhook output."))
        try:
            parsed = json.loads(extracted)
        except json.JSONDecodeError as exc:
            raise ExtractionParseError(
                _format_parse_error("invalid-json", raw_output, f"Invalid JSON after cleanup: {exc}")
            ) from exc

    return _unwrap(parsed, raw_output)


def _unwrap(parsed: Any, raw_output: str) -> Dict[str, Any]:
    if isinstance(parsed, list):
        parsed = parsed[0] if parsed else None
    if not isinstance(parsed, dict):
        raise ExtractionParseError(_format_parse_error("invalid-json", raw_output, "Top-level JSON must be an object."))
    return parsed


def _strip_markdown_fences(text: str) -> str:
    """Strip leading/trailing markdown code fences if present."""
    if not text.startswith("```"):
        return text
    lines = text.splitlines()
    if not lines:
        return text
    if lines[0].startswith("```"):
        lines = lines[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def _extract_json_object(text: str) -> Optional[str]:
    """Extract substring spanning first '{' to last '}'."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return None
    return text[start : end + 1].strip()


def _format_parse_error(category: str, raw_output: str, detail: str) -> str:
    """Return compact parser diagnostics with truncated output preview."""
    preview = _preview_text(raw_output, limit=300)
    return f"[{category}] {detail} preview='{preview}'"


def _preview_text(text: str, limit: int = 300) -> str:
    """Normalize and truncate preview text for diagnostics."""
    compact = (text or "").replace("\r", "\\r").replace("\n", "\\n").strip()
    if len(compact) <= limit:
        return compact
    return compact[:limit] + "...(truncated)"


def _section(parsed: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = parsed.get(key)
    return dict(value) if isinstance(value, dict) else {}


def normalize_extraction(parsed: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize webhook output to the expected document shape with stable key
    presence: invoice, seller, buyer and totals objects plus line_items.

    line_items is passed through as given (validation decides whether it is
    usable); unknown top-level keys are preserved.
    """
    if not isinstance(parsed, dict):
        raise ExtractionParseError("Webhook response is not a JSON object.")

    normalized: Dict[str, Any] = dict(parsed)
    for key in ("invoice", "seller", "buyer", "totals"):
        normalized[key] = _section(parsed, key)
    for key, fields in (("invoice", ("number", "date")), ("seller", ("name", "gstin")), ("buyer", ("name", "gstin"))):
        for field in fields:
            value = normalized[key].get(field)
            if value is None:
                normalized[key][field] = None
                continue
            text_value = str(value).strip()
            normalized[key][field] = text_value if text_value else None
    normalized["line_items"] = parsed.get("line_items")
    return normalized


def line_item_preview(items: Optional[List[Any]], limit: int = 3) -> str:
    """Short human-readable SKU list for log lines."""
    skus = [str(i.get("sku")) for i in (items or [])[:limit] if isinstance(i, dict)]
    more = len(items or []) - len(skus)
    return ", ".join(skus) + (f" (+{more} more)" if more > 0 else "")
