"""Centralize configuration and environment variables for the report pipeline."""

from dotenv import load_dotenv
import os


STORAGE_BACKENDS = ("auto", "dynamodb", "local")


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}.") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}.")
    return value


def load_config() -> dict:
    """Load and validate configuration from environment.

    Loads variables from .env. Nothing is strictly required: the webhook
    URL may also come from stored settings, and storage falls back to the
    local JSON files when no cloud database answers.

    Returns:
        dict: Configuration with keys 'webhook_url', 'webhook_timeout',
        'storage_backend', 'aws_region', 'table_prefix', 's3_bucket',
        'cors_origin', 'port', 'log_level' and 'history_limit'.

    Raises:
        ValueError: If STORAGE_BACKEND is unknown or a numeric variable
            does not parse as a positive integer.
    """
    load_dotenv()
    storage_backend = os.environ.get("STORAGE_BACKEND", "auto").strip().lower() or "auto"
    if storage_backend not in STORAGE_BACKENDS:
        raise ValueError(
            f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}; got {storage_backend!r}."
        )
    return {
        "webhook_url": os.environ.get("EXTRACTION_WEBHOOK_URL", "").strip(),
        "webhook_timeout": _int_env("EXTRACTION_WEBHOOK_TIMEOUT", 120),
        "storage_backend": storage_backend,
        "aws_region": os.environ.get("AWS_DEFAULT_REGION", "us-east-1").strip() or "us-east-1",
        "table_prefix": os.environ.get("DYNAMODB_TABLE_PREFIX", "shipping-report").strip() or "shipping-report",
        "s3_bucket": os.environ.get("INVOICE_PDF_BUCKET", "").strip() or None,
        "cors_origin": os.environ.get("CORS_ORIGIN", "*").strip() or "*",
        "port": _int_env("PORT", 3001),
        "log_level": os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        "history_limit": _int_env("HISTORY_LIMIT", 100),
    }
