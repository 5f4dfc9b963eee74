"""CSV, Excel and PDF report writers."""

import csv
import io

import fitz
import pytest
from openpyxl import load_workbook

from core.reconcile import reconcile
from core.reports import (
    EXCEL_SHEET_TITLE,
    REPORT_FORMATS,
    ReportError,
    render_csv,
    render_excel,
    render_pdf,
    render_report,
    report_filename,
    write_report,
)

EXTRACTED = {
    "invoice": {"number": "GST/24/001", "date": "2024-04-01"},
    "seller": {"name": "Acme Steelware", "gstin": "27AAAAA0000A1Z5"},
    "buyer": {"name": "Bottle Mart", "gstin": "29BBBBB1111B1Z6"},
    "totals": {"invoice_value": 1180},
    "line_items": [
        {"sku": "PROD-001", "description": 'Bottle, 500ml "Blue"', "quantity": 120, "taxable_value": 1000},
        {"sku": "XYZ-999", "description": "A very long description that goes past thirty chars", "quantity": 48},
    ],
}
MASTER = {
    "PROD-001": {
        "pieces_per_box": 50,
        "box_weight_kg": 4,
        "box_length_cm": 30,
        "box_width_cm": 20,
        "box_height_cm": 15,
    }
}


@pytest.fixture
def reconciled():
    return reconcile(EXTRACTED["line_items"], MASTER)


class TestReportFilename:
    def test_slashes_replaced(self):
        assert report_filename("GST/24/001", "csv") == "Report_GST_24_001.csv"

    def test_missing_number(self):
        assert report_filename(None, "pdf") == "Report_invoice.pdf"


class TestCsv:
    def test_layout(self, reconciled):
        items, totals = reconciled
        data = render_csv(EXTRACTED, items, totals)
        assert data.startswith(b"\xef\xbb\xbf")
        rows = list(csv.reader(io.StringIO(data.decode("utf-8-sig"))))
        assert rows[0] == [
            "#", "SKU", "Description", "Qty", "Pcs/Box", "Boxes",
            "Box Wt (kg)", "Dimensions", "Total Wt (kg)", "Value (Rs)",
        ]
        assert rows[1] == ["1", "PROD-001", 'Bottle, 500ml "Blue"', "120", "50", "3", "4", "30x20x15", "12.0", "1000.00"]
        assert rows[2][7] == "30x25x20"
        assert rows[-1] == ["", "", "TOTAL", "168", "", "4", "", "", "17.0", "1000.00"]
        assert len(rows) == 4

    def test_history_columns(self, reconciled):
        items, totals = reconciled
        data = render_report("csv", EXTRACTED, items, totals, history=True)
        header = next(csv.reader(io.StringIO(data.decode("utf-8-sig"))))
        assert "Dimensions" not in header
        assert "Value (Rs)" not in header
        assert header[-1] == "Total Wt (kg)"

    def test_no_data(self):
        with pytest.raises(ReportError):
            render_csv(None, [], reconcile([], {})[1])


class TestExcel:
    def test_sheet(self, reconciled):
        items, totals = reconciled
        wb = load_workbook(io.BytesIO(render_excel(EXTRACTED, items, totals)))
        assert wb.sheetnames == [EXCEL_SHEET_TITLE]
        ws = wb[EXCEL_SHEET_TITLE]
        assert ws["A1"].value == "SHIPPING REPORT"
        assert ws["B3"].value == "GST/24/001"
        assert ws["E3"].value == "2024-04-01"
        assert ws["B5"].value == "Acme Steelware"
        assert ws["B8"].value == "Bottle Mart"
        assert ws["E13"].value == "₹1180"
        assert ws["A15"].value == "#"
        assert ws["B16"].value == "PROD-001"
        assert ws["H16"].value == "30×20×15"
        assert ws["C18"].value == "TOTAL"
        assert ws["D18"].value == 168
        assert ws.column_dimensions["C"].width == 35


class TestPdf:
    def test_content(self, reconciled):
        items, totals = reconciled
        doc = fitz.open(stream=render_pdf(EXTRACTED, items, totals), filetype="pdf")
        text = doc[0].get_text()
        assert "SHIPPING REPORT" in text
        assert "Invoice: GST/24/001 | Date: 2024-04-01" in text
        assert "Total Boxes: 4" in text
        assert "TOTAL" in text
        assert "A very long description that go" not in text
        assert "A very long description that g" in text

    def test_many_items_paginate(self):
        raw = [{"sku": f"S-{i}", "quantity": i} for i in range(80)]
        items, totals = reconcile(raw, {})
        doc = fitz.open(stream=render_pdf(EXTRACTED, items, totals), filetype="pdf")
        assert doc.page_count > 1


class TestWriteReport:
    def test_writes_named_file(self, reconciled, tmp_path):
        items, totals = reconciled
        path = write_report("xlsx", EXTRACTED, items, totals, tmp_path)
        assert path.name == "Report_GST_24_001.xlsx"
        assert path.stat().st_size > 0

    @pytest.mark.parametrize("fmt", REPORT_FORMATS)
    def test_every_format_written(self, reconciled, tmp_path, fmt):
        items, totals = reconciled
        path = write_report(fmt, EXTRACTED, items, totals, tmp_path)
        assert path == tmp_path / f"Report_GST_24_001.{fmt}"
        assert path.exists()

    def test_unknown_format(self, reconciled, tmp_path):
        items, totals = reconciled
        with pytest.raises(ReportError):
            write_report("docx", EXTRACTED, items, totals, tmp_path)
