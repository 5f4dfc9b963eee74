"""
Shipping report writers: CSV, Excel (openpyxl) and PDF (PyMuPDF).

Every writer takes the extraction header (invoice/seller/buyer/totals),
the enriched line items and their Totals, and returns the file as bytes.
write_report() puts those bytes on disk under the report file name.
"""

from __future__ import annotations

import csv
import io
import logging
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import fitz  # PyMuPDF
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter

from core.reconcile import Totals
from core.rollup import DIMENSION_SEPARATOR

logger = logging.getLogger(__name__)

REPORT_FORMATS = ("csv", "xlsx", "pdf")

MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}

EXCEL_SHEET_TITLE = "Shipping Report"
EXCEL_COLUMN_WIDTHS = (4, 15, 35, 10, 10, 8, 12, 18, 12, 12)
PDF_DESCRIPTION_LIMIT = 30


class ReportError(ValueError):
    """Raised when a report cannot be produced from the given data."""


Column = tuple[str, Callable[[int, Mapping[str, Any]], Any]]


def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _fixed(value: Any, digits: int) -> str:
    return f"{_num(value):.{digits}f}"


def _text(value: Any) -> str:
    return "" if value is None else str(value)


CSV_COLUMNS: tuple[Column, ...] = (
    ("#", lambda i, item: i + 1),
    ("SKU", lambda i, item: _text(item.get("sku"))),
    ("Description", lambda i, item: _text(item.get("description"))),
    ("Qty", lambda i, item: item.get("quantity")),
    ("Pcs/Box", lambda i, item: item.get("pieces_per_box")),
    ("Boxes", lambda i, item: item.get("num_boxes")),
    ("Box Wt (kg)", lambda i, item: item.get("box_weight_kg")),
    ("Dimensions", lambda i, item: _text(item.get("box_dimensions")).replace(DIMENSION_SEPARATOR, "x")),
    ("Total Wt (kg)", lambda i, item: _fixed(item.get("total_weight"), 1)),
    ("Value (Rs)", lambda i, item: _fixed(item.get("taxable_value"), 2)),
)

HISTORY_CSV_COLUMNS: tuple[Column, ...] = tuple(
    col for col in CSV_COLUMNS if col[0] not in ("Dimensions", "Value (Rs)")
)


def report_filename(invoice_number: Any, fmt: str) -> str:
    """Report_<invoice number with '/' replaced by '_'>.<fmt>"""
    number = _text(invoice_number).replace("/", "_") or "invoice"
    return f"Report_{number}.{fmt}"


def _section(extracted: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = extracted.get(key)
    return value if isinstance(value, Mapping) else {}


def _check(extracted: Any) -> None:
    if not isinstance(extracted, Mapping) or not extracted:
        raise ReportError("No extracted invoice data to report on.")


def _invoice_value_text(extracted: Mapping[str, Any], totals: Totals) -> str:
    stated = _section(extracted, "totals").get("invoice_value")
    if stated in (None, "", 0):
        return f"{totals.value:.2f}"
    return _text(stated)


def _totals_row(totals: Totals, columns: Sequence[Column]) -> list[Any]:
    by_header = {
        "Description": "TOTAL",
        "Qty": totals.quantity,
        "Boxes": totals.boxes,
        "Total Wt (kg)": f"{totals.weight:.1f}",
        "Value (Rs)": f"{totals.value:.2f}",
    }
    return [by_header.get(header, "") for header, _ in columns]


def render_csv(
    extracted: Mapping[str, Any],
    items: Sequence[Mapping[str, Any]],
    totals: Totals,
    columns: Sequence[Column] = CSV_COLUMNS,
) -> bytes:
    """CSV with a UTF-8 BOM (for spreadsheet apps), one row per item and a TOTAL row."""
    _check(extracted)
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([header for header, _ in columns])
    for i, item in enumerate(items):
        writer.writerow([getter(i, item) for _, getter in columns])
    writer.writerow(_totals_row(totals, columns))
    return buffer.getvalue().encode("utf-8-sig")


def render_excel(
    extracted: Mapping[str, Any],
    items: Sequence[Mapping[str, Any]],
    totals: Totals,
) -> bytes:
    """Single 'Shipping Report' sheet: header block, summary, items table, totals row."""
    _check(extracted)
    invoice = _section(extracted, "invoice")
    seller = _section(extracted, "seller")
    buyer = _section(extracted, "buyer")

    wb = Workbook()
    ws = wb.active
    ws.title = EXCEL_SHEET_TITLE
    bold = Font(bold=True)

    ws.append(["SHIPPING REPORT"])
    ws["A1"].font = Font(bold=True, size=14)
    ws.append([])
    ws.append(["Invoice Number:", invoice.get("number"), "", "Invoice Date:", invoice.get("date")])
    ws.append([])
    ws.append(["FROM:", seller.get("name")])
    ws.append(["GSTIN:", seller.get("gstin") or ""])
    ws.append([])
    ws.append(["TO:", buyer.get("name")])
    ws.append(["GSTIN:", buyer.get("gstin") or ""])
    ws.append([])
    ws.append(["SUMMARY"])
    ws.cell(row=ws.max_row, column=1).font = bold
    ws.append(["Total Pieces:", totals.quantity, "", "Total Boxes:", totals.boxes])
    ws.append(
        [
            "Total Weight:",
            f"{totals.weight:.1f} kg",
            "",
            "Invoice Value:",
            f"₹{_invoice_value_text(extracted, totals)}",
        ]
    )
    ws.append([])

    header = ["#", "SKU", "Description", "Quantity", "Pcs/Box", "Boxes", "Box Wt (kg)", "Dimensions", "Total Wt (kg)", "Value (₹)"]
    ws.append(header)
    header_fill = PatternFill(start_color="DDDDDD", end_color="DDDDDD", fill_type="solid")
    for cell in ws[ws.max_row]:
        cell.font = bold
        cell.fill = header_fill

    for i, item in enumerate(items):
        ws.append(
            [
                i + 1,
                item.get("sku"),
                item.get("description"),
                item.get("quantity"),
                item.get("pieces_per_box"),
                item.get("num_boxes"),
                item.get("box_weight_kg"),
                item.get("box_dimensions"),
                round(_num(item.get("total_weight")), 1),
                round(_num(item.get("taxable_value")), 2),
            ]
        )

    ws.append(["", "", "TOTAL", totals.quantity, "", totals.boxes, "", "", round(totals.weight, 1), round(totals.value, 2)])
    for cell in ws[ws.max_row]:
        cell.font = bold

    for idx, width in enumerate(EXCEL_COLUMN_WIDTHS, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = width

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


# PDF layout works in millimetres on an A4 portrait page.
_PT_PER_MM = 72 / 25.4
_PAGE_W_MM, _PAGE_H_MM = 210, 297
_MARGIN_MM = 14
_ROW_H_MM = 6
_PDF_COLUMNS = (
    ("#", 8),
    ("SKU", 28),
    ("Description", 58),
    ("Qty", 16),
    ("Pcs/Box", 16),
    ("Boxes", 16),
    ("Box Wt", 18),
    ("Total Wt", 22),
)


def _pt(mm: float) -> float:
    return mm * _PT_PER_MM


def _centered(page: fitz.Page, text: str, y_mm: float, fontsize: float, fontname: str = "helv") -> None:
    width = fitz.get_text_length(text, fontname=fontname, fontsize=fontsize)
    x = (page.rect.width - width) / 2
    page.insert_text((x, _pt(y_mm)), text, fontsize=fontsize, fontname=fontname)


def _table_row(
    page: fitz.Page,
    y_mm: float,
    cells: Sequence[Any],
    fill: tuple[float, float, float] | None = None,
    text_color: tuple[float, float, float] = (0, 0, 0),
    fontname: str = "helv",
) -> None:
    x_mm = _MARGIN_MM
    for (_, width_mm), value in zip(_PDF_COLUMNS, cells):
        rect = fitz.Rect(_pt(x_mm), _pt(y_mm), _pt(x_mm + width_mm), _pt(y_mm + _ROW_H_MM))
        page.draw_rect(rect, color=(0.75, 0.75, 0.75), fill=fill, width=0.5)
        page.insert_text(
            (rect.x0 + 2, rect.y1 - _pt(1.8)),
            _text(value),
            fontsize=8,
            fontname=fontname,
            color=text_color,
        )
        x_mm += width_mm


def _header_row(page: fitz.Page, y_mm: float) -> None:
    _table_row(page, y_mm, [name for name, _ in _PDF_COLUMNS], fill=(60 / 255, 60 / 255, 60 / 255), text_color=(1, 1, 1), fontname="hebo")


def render_pdf(
    extracted: Mapping[str, Any],
    items: Sequence[Mapping[str, Any]],
    totals: Totals,
) -> bytes:
    """Title, invoice line, from/to, shaded summary band, grid table with TOTAL footer."""
    _check(extracted)
    invoice = _section(extracted, "invoice")
    doc = fitz.open()
    page = doc.new_page(width=_pt(_PAGE_W_MM), height=_pt(_PAGE_H_MM))

    _centered(page, "SHIPPING REPORT", 15, 16, fontname="hebo")
    _centered(page, f"Invoice: {_text(invoice.get('number'))} | Date: {_text(invoice.get('date'))}", 22, 10)
    page.insert_text((_pt(_MARGIN_MM), _pt(32)), f"From: {_text(_section(extracted, 'seller').get('name'))}", fontsize=9)
    page.insert_text((_pt(_MARGIN_MM), _pt(38)), f"To: {_text(_section(extracted, 'buyer').get('name'))}", fontsize=9)

    band = fitz.Rect(_pt(_MARGIN_MM), _pt(44), _pt(_PAGE_W_MM - _MARGIN_MM), _pt(54))
    page.draw_rect(band, color=None, fill=(245 / 255, 245 / 255, 245 / 255))
    page.insert_text(
        (_pt(20), _pt(50)),
        f"Total Boxes: {totals.boxes}    Total Weight: {totals.weight:.1f} kg    Total Pieces: {totals.quantity}",
        fontsize=10,
    )

    y = 58
    _header_row(page, y)
    y += _ROW_H_MM
    for i, item in enumerate(items):
        if y + _ROW_H_MM > _PAGE_H_MM - _MARGIN_MM:
            page = doc.new_page(width=_pt(_PAGE_W_MM), height=_pt(_PAGE_H_MM))
            y = _MARGIN_MM
            _header_row(page, y)
            y += _ROW_H_MM
        _table_row(
            page,
            y,
            [
                i + 1,
                item.get("sku"),
                _text(item.get("description"))[:PDF_DESCRIPTION_LIMIT],
                item.get("quantity"),
                item.get("pieces_per_box"),
                item.get("num_boxes"),
                item.get("box_weight_kg"),
                _fixed(item.get("total_weight"), 1),
            ],
        )
        y += _ROW_H_MM

    if y + _ROW_H_MM > _PAGE_H_MM - _MARGIN_MM:
        page = doc.new_page(width=_pt(_PAGE_W_MM), height=_pt(_PAGE_H_MM))
        y = _MARGIN_MM
    _table_row(
        page,
        y,
        ["", "", "TOTAL", totals.quantity, "", totals.boxes, "", f"{totals.weight:.1f}"],
        fill=(240 / 255, 240 / 255, 240 / 255),
        fontname="hebo",
    )

    data = doc.tobytes()
    doc.close()
    return data


def render_report(
    fmt: str,
    extracted: Mapping[str, Any],
    items: Sequence[Mapping[str, Any]],
    totals: Totals,
    history: bool = False,
) -> bytes:
    """Dispatch to the writer for fmt. History CSVs leave out Dimensions and Value."""
    if fmt == "csv":
        return render_csv(extracted, items, totals, columns=HISTORY_CSV_COLUMNS if history else CSV_COLUMNS)
    if fmt == "xlsx":
        return render_excel(extracted, items, totals)
    if fmt == "pdf":
        return render_pdf(extracted, items, totals)
    raise ReportError(f"Unknown report format: {fmt!r} (expected one of {', '.join(REPORT_FORMATS)})")


def write_report(
    fmt: str,
    extracted: Mapping[str, Any],
    items: Sequence[Mapping[str, Any]],
    totals: Totals,
    out_dir: str | Path,
    history: bool = False,
) -> Path:
    """Render and write the report; returns the written path."""
    data = render_report(fmt, extracted, items, totals, history=history)
    out_path = Path(out_dir) / report_filename(_section(extracted, "invoice").get("number"), fmt)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(data)
    logger.info("Wrote %s report: %s", fmt, out_path)
    return out_path
