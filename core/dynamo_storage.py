"""
DynamoDB storage backend, with optional S3 archiving of source PDFs.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from core.ledger import StorageError
from core.storage import (
    BACKEND_DYNAMODB,
    BACKEND_NONE,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_SETTINGS,
    StorageBackend,
    new_invoice_id,
    now_iso,
)

logger = logging.getLogger(__name__)

ID_ALLOCATION_ATTEMPTS = 5


def to_dynamo(value: Any) -> Any:
    """Convert floats (at any depth) to Decimal for DynamoDB."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    """Convert DynamoDB Decimals back to int/float, at any depth."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


def _scan_all(table, **kwargs) -> list[dict[str, Any]]:
    response = table.scan(**kwargs)
    items = response.get("Items", [])
    while "LastEvaluatedKey" in response:
        response = table.scan(ExclusiveStartKey=response["LastEvaluatedKey"], **kwargs)
        items.extend(response.get("Items", []))
    return items


def _client_error_message(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        return f"{error.get('Code', 'Unknown')}: {error.get('Message', str(exc))}"
    return str(exc)


class DynamoDBStorage(StorageBackend):
    """
    Tables: <prefix>-products (hash key 'sku'), <prefix>-settings (hash key
    'key', string values) and <prefix>-invoices (hash key 'id', number).
    """

    name = BACKEND_DYNAMODB

    def __init__(
        self,
        region: str | None = None,
        table_prefix: str = "shipping-report",
        s3_bucket: str | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        dynamodb=None,
        s3_client=None,
    ):
        boto_config = Config(connect_timeout=5, read_timeout=10, retries={"max_attempts": 2})
        try:
            self.dynamodb = dynamodb or boto3.resource("dynamodb", region_name=region, config=boto_config)
            if s3_bucket and s3_client is None:
                s3_client = boto3.client("s3", region_name=region, config=boto_config)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"DynamoDB initialization error: {_client_error_message(exc)}") from exc
        self.s3_client = s3_client
        self.s3_bucket = s3_bucket
        self.table_prefix = table_prefix
        self.history_limit = history_limit
        self.products_table_name = f"{table_prefix}-products"
        self.settings_table_name = f"{table_prefix}-settings"
        self.invoices_table_name = f"{table_prefix}-invoices"

    def _table(self, name: str):
        return self.dynamodb.Table(name)

    def _call(self, action: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (BotoCoreError, ClientError) as exc:
            logger.error("DynamoDB %s failed: %s", action, _client_error_message(exc))
            raise StorageError(f"DynamoDB {action} failed: {_client_error_message(exc)}") from exc

    def create_tables(self) -> None:
        """Create the three tables if they don't exist."""
        specs = (
            (self.products_table_name, "sku", "S"),
            (self.settings_table_name, "key", "S"),
            (self.invoices_table_name, "id", "N"),
        )
        for table_name, key, key_type in specs:
            try:
                table = self.dynamodb.create_table(
                    TableName=table_name,
                    KeySchema=[{"AttributeName": key, "KeyType": "HASH"}],
                    AttributeDefinitions=[{"AttributeName": key, "AttributeType": key_type}],
                    BillingMode="PAY_PER_REQUEST",
                )
                logger.info("Creating %s table...", table_name)
                table.wait_until_exists()
            except self.dynamodb.meta.client.exceptions.ResourceInUseException:
                logger.info("Table %s already exists", table_name)

    # Products
    def get_products(self) -> dict[str, dict[str, Any]]:
        rows = self._call("scan products", _scan_all, self._table(self.products_table_name))
        products: dict[str, dict[str, Any]] = {}
        for row in rows:
            row = from_dynamo(row)
            sku = row.pop("sku")
            row.pop("updated_at", None)
            products[sku] = row
        return products

    def save_product(self, sku: str, product: dict[str, Any]) -> None:
        item = to_dynamo({**product, "sku": sku, "updated_at": now_iso()})
        self._call("put product", self._table(self.products_table_name).put_item, Item=item)

    def save_products(self, products: dict[str, dict[str, Any]]) -> None:
        table = self._table(self.products_table_name)
        existing = set(self.get_products())
        stamp = now_iso()
        try:
            with table.batch_writer() as batch:
                for sku, product in products.items():
                    batch.put_item(Item=to_dynamo({**product, "sku": sku, "updated_at": stamp}))
                for sku in existing - set(products):
                    batch.delete_item(Key={"sku": sku})
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"DynamoDB batch write failed: {_client_error_message(exc)}") from exc

    def delete_product(self, sku: str) -> None:
        self._call("delete product", self._table(self.products_table_name).delete_item, Key={"sku": sku})

    # Settings
    def get_settings(self) -> dict[str, Any]:
        rows = self._call("scan settings", _scan_all, self._table(self.settings_table_name))
        settings = dict(DEFAULT_SETTINGS)
        for row in rows:
            settings[row["key"]] = row.get("value")
        return settings

    def save_settings(self, settings: dict[str, Any]) -> None:
        table = self._table(self.settings_table_name)
        stamp = now_iso()
        try:
            with table.batch_writer() as batch:
                for key, value in settings.items():
                    batch.put_item(Item={"key": key, "value": "" if value is None else str(value), "updated_at": stamp})
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"DynamoDB batch write failed: {_client_error_message(exc)}") from exc

    # Invoice history
    def list_invoices(self, limit: int | None = None) -> list[dict[str, Any]]:
        rows = self._call("scan invoices", _scan_all, self._table(self.invoices_table_name))
        invoices = [from_dynamo(row) for row in rows]
        invoices.sort(key=lambda inv: inv.get("created_at") or "", reverse=True)
        return invoices[:limit] if limit else invoices

    def save_invoice(self, invoice: dict[str, Any]) -> dict[str, Any]:
        """Conditional put; an id already taken in the same millisecond is bumped."""
        table = self._table(self.invoices_table_name)
        record = {**invoice, "id": new_invoice_id(), "created_at": now_iso()}
        for _ in range(ID_ALLOCATION_ATTEMPTS):
            try:
                table.put_item(
                    Item=to_dynamo(record),
                    ConditionExpression="attribute_not_exists(#id)",
                    ExpressionAttributeNames={"#id": "id"},
                )
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") != "ConditionalCheckFailedException":
                    raise StorageError(f"DynamoDB put invoice failed: {_client_error_message(exc)}") from exc
                logger.debug("Invoice id %s taken, retrying", record["id"])
                record["id"] += 1
                continue
            except BotoCoreError as exc:
                raise StorageError(f"DynamoDB put invoice failed: {_client_error_message(exc)}") from exc
            self._prune_history()
            return record
        raise StorageError(f"DynamoDB put invoice failed: no free id after {ID_ALLOCATION_ATTEMPTS} attempts")

    def _prune_history(self) -> None:
        invoices = self.list_invoices(limit=None)
        stale = invoices[self.history_limit:]
        if not stale:
            return
        table = self._table(self.invoices_table_name)
        try:
            with table.batch_writer() as batch:
                for invoice in stale:
                    batch.delete_item(Key={"id": invoice["id"]})
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"DynamoDB history prune failed: {_client_error_message(exc)}") from exc

    def get_invoice(self, invoice_id: int) -> dict[str, Any] | None:
        table = self._table(self.invoices_table_name)
        response = self._call("get invoice", table.get_item, Key={"id": int(invoice_id)})
        item = response.get("Item")
        return from_dynamo(item) if item else None

    # Source PDFs
    def upload_invoice_pdf(self, pdf_path: str | Path, invoice_number: str) -> dict[str, str] | None:
        """Upload the source PDF to S3; returns {'path', 'url'} or None on failure."""
        if not (self.s3_client and self.s3_bucket):
            return None
        safe_number = str(invoice_number or "invoice").replace("/", "_")
        key = f"{safe_number}_{new_invoice_id()}.pdf"
        try:
            with open(pdf_path, "rb") as handle:
                self.s3_client.upload_fileobj(handle, self.s3_bucket, key)
        except (OSError, BotoCoreError, ClientError) as exc:
            logger.error("S3 upload of %s failed: %s", pdf_path, _client_error_message(exc))
            return None
        return {"path": key, "url": f"https://{self.s3_bucket}.s3.amazonaws.com/{key}"}

    def check_connection(self) -> str:
        try:
            self._table(self.settings_table_name).scan(Limit=1)
        except (BotoCoreError, ClientError) as exc:
            logger.info("DynamoDB connection check failed: %s", _client_error_message(exc))
            return BACKEND_NONE
        return BACKEND_DYNAMODB
