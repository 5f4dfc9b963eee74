"""Environment configuration and logging setup."""

import logging

import pytest

import config
from core.log import setup_logging

ENV_VARS = (
    "EXTRACTION_WEBHOOK_URL",
    "EXTRACTION_WEBHOOK_TIMEOUT",
    "STORAGE_BACKEND",
    "AWS_DEFAULT_REGION",
    "DYNAMODB_TABLE_PREFIX",
    "INVOICE_PDF_BUCKET",
    "CORS_ORIGIN",
    "PORT",
    "LOG_LEVEL",
    "HISTORY_LIMIT",
)


@pytest.fixture
def clean_env(monkeypatch):
    monkeypatch.setattr(config, "load_dotenv", lambda: None)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestLoadConfig:
    def test_defaults(self, clean_env):
        cfg = config.load_config()
        assert cfg["webhook_url"] == ""
        assert cfg["webhook_timeout"] == 120
        assert cfg["storage_backend"] == "auto"
        assert cfg["aws_region"] == "us-east-1"
        assert cfg["table_prefix"] == "shipping-report"
        assert cfg["s3_bucket"] is None
        assert cfg["cors_origin"] == "*"
        assert cfg["port"] == 3001
        assert cfg["log_level"] == "INFO"
        assert cfg["history_limit"] == 100

    def test_overrides(self, clean_env):
        clean_env.setenv("EXTRACTION_WEBHOOK_URL", " http://hook ")
        clean_env.setenv("STORAGE_BACKEND", "LOCAL")
        clean_env.setenv("PORT", "8080")
        clean_env.setenv("INVOICE_PDF_BUCKET", "pdfs")
        cfg = config.load_config()
        assert cfg["webhook_url"] == "http://hook"
        assert cfg["storage_backend"] == "local"
        assert cfg["port"] == 8080
        assert cfg["s3_bucket"] == "pdfs"

    def test_unknown_backend(self, clean_env):
        clean_env.setenv("STORAGE_BACKEND", "postgres")
        with pytest.raises(ValueError):
            config.load_config()

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_bad_integer(self, clean_env, value):
        clean_env.setenv("HISTORY_LIMIT", value)
        with pytest.raises(ValueError):
            config.load_config()


class TestSetupLogging:
    def test_writes_log_file(self, tmp_path):
        root = logging.getLogger()
        previous = list(root.handlers)
        try:
            logger = setup_logging("DEBUG", tmp_path)
            logger.info("hello")
            for handler in root.handlers:
                handler.flush()
            assert "hello" in (tmp_path / "shipping_report.log").read_text(encoding="utf-8")
        finally:
            for handler in list(root.handlers):
                root.removeHandler(handler)
                handler.close()
            for handler in previous:
                root.addHandler(handler)

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            setup_logging("LOUD")
