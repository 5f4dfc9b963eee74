"""Centralized filesystem paths for persistent data and configs."""

from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent

DATA_DIR = BASE_DIR / "data"

REPORTS_DIR = DATA_DIR / "reports"
LOGS_DIR = DATA_DIR / "logs"

CONFIG_DIR = BASE_DIR / "config"
SEED_PRODUCT_MASTER_PATH = CONFIG_DIR / "product_master.json"

INVOICES_DIR = BASE_DIR / "invoices"


def ensure_data_dirs() -> None:
    """Ensure required data directories exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    REPORTS_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
