"""Storage backends for products, settings and invoice history.

Callers receive one StorageBackend and never branch on which store is
behind it; select_storage() makes that choice once at startup.
"""

from __future__ import annotations

import datetime
import logging
import time
from pathlib import Path
from typing import Any

from core.ledger import LedgerIOError, StorageError, atomic_rewrite_json, read_json, read_json_list
from paths import DATA_DIR

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {"webhook_url": ""}
DEFAULT_HISTORY_LIMIT = 100

BACKEND_DYNAMODB = "dynamodb"
BACKEND_LOCAL = "local"
BACKEND_NONE = "none"


def now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def new_invoice_id(existing_ids: list[int] | None = None) -> int:
    """Epoch-millisecond id, bumped past any id already in use."""
    candidate = int(time.time() * 1000)
    if existing_ids:
        candidate = max(candidate, max(existing_ids) + 1)
    return candidate


class StorageBackend:
    """Uniform CRUD interface over a key-value store."""

    name = BACKEND_NONE

    # Products
    def get_products(self) -> dict[str, dict[str, Any]]:
        raise NotImplementedError

    def save_products(self, products: dict[str, dict[str, Any]]) -> None:
        raise NotImplementedError

    def save_product(self, sku: str, product: dict[str, Any]) -> None:
        raise NotImplementedError

    def delete_product(self, sku: str) -> None:
        raise NotImplementedError

    # Settings
    def get_settings(self) -> dict[str, Any]:
        raise NotImplementedError

    def save_settings(self, settings: dict[str, Any]) -> None:
        raise NotImplementedError

    # Invoice history
    def list_invoices(self, limit: int | None = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    def save_invoice(self, invoice: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError

    def get_invoice(self, invoice_id: int) -> dict[str, Any] | None:
        raise NotImplementedError

    def upload_invoice_pdf(self, pdf_path: str | Path, invoice_number: str) -> dict[str, str] | None:
        """Archive the source PDF; backends without file storage return None."""
        return None

    def check_connection(self) -> str:
        raise NotImplementedError


class LocalJsonStorage(StorageBackend):
    """JSON files on local disk: products.json, settings.json, invoices.json."""

    name = BACKEND_LOCAL

    def __init__(
        self,
        data_dir: str | Path,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ):
        self.data_dir = Path(data_dir)
        self.products_path = self.data_dir / "products.json"
        self.settings_path = self.data_dir / "settings.json"
        self.invoices_path = self.data_dir / "invoices.json"
        self.history_limit = history_limit

    def get_products(self) -> dict[str, dict[str, Any]]:
        return read_json(self.products_path)

    def save_products(self, products: dict[str, dict[str, Any]]) -> None:
        atomic_rewrite_json(self.products_path, dict(products))

    def save_product(self, sku: str, product: dict[str, Any]) -> None:
        products = self.get_products()
        products[sku] = dict(product)
        atomic_rewrite_json(self.products_path, products)

    def delete_product(self, sku: str) -> None:
        products = self.get_products()
        if products.pop(sku, None) is not None:
            atomic_rewrite_json(self.products_path, products)

    def get_settings(self) -> dict[str, Any]:
        return read_json(self.settings_path, default=DEFAULT_SETTINGS)

    def save_settings(self, settings: dict[str, Any]) -> None:
        atomic_rewrite_json(self.settings_path, dict(settings))

    def list_invoices(self, limit: int | None = None) -> list[dict[str, Any]]:
        invoices = read_json_list(self.invoices_path)
        return invoices[:limit] if limit else invoices

    def save_invoice(self, invoice: dict[str, Any]) -> dict[str, Any]:
        invoices = read_json_list(self.invoices_path)
        record = {
            **invoice,
            "id": new_invoice_id([int(i["id"]) for i in invoices if "id" in i]),
            "created_at": now_iso(),
        }
        invoices.insert(0, record)
        del invoices[self.history_limit:]
        atomic_rewrite_json(self.invoices_path, invoices)
        return record

    def get_invoice(self, invoice_id: int) -> dict[str, Any] | None:
        for invoice in read_json_list(self.invoices_path):
            if str(invoice.get("id")) == str(invoice_id):
                return invoice
        return None

    def check_connection(self) -> str:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            read_json(self.settings_path, default=DEFAULT_SETTINGS)
        except (OSError, LedgerIOError) as exc:
            logger.warning("Local storage unavailable at %s: %s", self.data_dir, exc)
            return BACKEND_NONE
        return BACKEND_LOCAL


def select_storage(config: dict[str, Any], data_dir: str | Path | None = None) -> StorageBackend:
    """
    Pick the storage backend once, by capability detection.

    'local' always uses the JSON files. 'dynamodb' requires the tables to
    answer and raises StorageError otherwise. 'auto' tries DynamoDB first
    and falls back to the JSON files.
    """
    backend = config.get("storage_backend", "auto")
    history_limit = int(config.get("history_limit") or DEFAULT_HISTORY_LIMIT)
    local = LocalJsonStorage(data_dir or DATA_DIR, history_limit=history_limit)
    if backend == BACKEND_LOCAL:
        return local

    from core.dynamo_storage import DynamoDBStorage

    try:
        cloud = DynamoDBStorage(
            region=config.get("aws_region"),
            table_prefix=config.get("table_prefix") or "shipping-report",
            s3_bucket=config.get("s3_bucket"),
            history_limit=history_limit,
        )
        connected = cloud.check_connection() == BACKEND_DYNAMODB
    except StorageError as exc:
        logger.warning("DynamoDB storage could not be initialized: %s", exc)
        cloud, connected = None, False

    if connected:
        logger.info("Using DynamoDB storage (prefix=%s)", cloud.table_prefix)
        return cloud
    if backend == BACKEND_DYNAMODB:
        raise StorageError("STORAGE_BACKEND=dynamodb but the DynamoDB tables are not reachable.")
    logger.info("DynamoDB not reachable; using local JSON storage at %s", local.data_dir)
    return local
