"""Command-line entry point, run against local JSON storage."""

from unittest import mock

import pytest

from cli import main as cli
from core.storage import LocalJsonStorage

EXTRACTED = {
    "invoice": {"number": "INV/77", "date": "2024-09-09"},
    "seller": {"name": "Acme"},
    "buyer": {"name": "Mart"},
    "totals": {},
    "line_items": [{"sku": "TM-350", "quantity": 96, "taxable_value": 480}],
}


@pytest.fixture
def storage(tmp_path, monkeypatch):
    store = LocalJsonStorage(tmp_path / "data")
    monkeypatch.setattr(cli, "ensure_data_dirs", lambda: None)
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(
        cli,
        "load_config",
        lambda: {"webhook_url": "http://hook", "webhook_timeout": 5, "log_level": "INFO", "port": 3001},
    )
    monkeypatch.setattr(cli, "select_storage", lambda config: store)
    return store


class TestProductsCommand:
    def test_set_list_delete(self, storage, capsys):
        assert cli.main(["products", "set", "TM-350", "--pieces-per-box", "48", "--name", "Travel Mug"]) == 0
        assert storage.get_products() == {"TM-350": {"pieces_per_box": 48, "name": "Travel Mug"}}
        assert cli.main(["products", "list"]) == 0
        assert "TM-350: Travel Mug pieces_per_box=48" in capsys.readouterr().out
        assert cli.main(["products", "delete", "TM-350"]) == 0
        assert storage.get_products() == {}

    def test_invalid_product(self, storage, capsys):
        assert cli.main(["products", "set", "TM-350", "--box-weight-kg", "-1"]) == 1
        assert "box_weight_kg must be a positive number" in capsys.readouterr().err


class TestProcessAndHistory:
    def test_process_then_export(self, storage, tmp_path, capsys):
        pdf = tmp_path / "inv.pdf"
        pdf.write_bytes(b"%PDF-1.4")
        out_dir = tmp_path / "reports"
        with mock.patch("extraction_client.extract_invoice", return_value=EXTRACTED):
            code = cli.main(["process", str(pdf), "--format", "csv", "--out", str(out_dir)])
        assert code == 0
        out = capsys.readouterr().out
        assert "status=success invoice=INV/77" in out
        assert "boxes=2" in out
        assert (out_dir / "Report_INV_77.csv").exists()

        invoice_id = storage.list_invoices()[0]["id"]
        assert cli.main(["history"]) == 0
        assert "INV/77" in capsys.readouterr().out

        export_dir = tmp_path / "exports"
        assert cli.main(["export", str(invoice_id), "--format", "xlsx", "--out", str(export_dir)]) == 0
        assert (export_dir / "Report_INV_77.xlsx").exists()

    def test_process_failure_exit_code(self, storage, tmp_path, capsys):
        assert cli.main(["process", str(tmp_path / "missing.pdf")]) == 1
        assert "status=failed reason=path_validation" in capsys.readouterr().out

    def test_recalc_after_master_edit(self, storage, capsys):
        entry = storage.save_invoice(
            {
                "invoice_number": "INV/77",
                "total_boxes": 2,
                "total_weight": 10,
                "line_items": [],
                "extracted_data": EXTRACTED,
            }
        )
        storage.save_product("TM-350", {"pieces_per_box": 24, "box_weight_kg": 8})
        assert cli.main(["recalc", str(entry["id"])]) == 0
        assert "boxes 2 -> 4" in capsys.readouterr().out

    def test_unknown_invoice(self, storage, capsys):
        assert cli.main(["export", "999", "--format", "csv"]) == 1
        assert "Invoice not found" in capsys.readouterr().err
