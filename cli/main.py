"""Entry point for the shipping report pipeline: process invoices, manage products, export history."""

import argparse
import json
import sys
import traceback
from pathlib import Path

from config import load_config
from core.history import history_extraction, history_totals, save_to_history
from core.ingest import load_product_master, recalculate, run_all, run_one
from core.ledger import StorageError
from core.log import setup_logging
from core.products import NUMERIC_FIELDS, positive_number, validate_product_payload
from core.reports import REPORT_FORMATS, ReportError, write_report
from core.storage import select_storage
from paths import INVOICES_DIR, LOGS_DIR, REPORTS_DIR, ensure_data_dirs


def _print_result(result: dict, verbose: bool = False) -> None:
    """One status line per processed invoice, plus totals on success."""
    name = result.get("file", "?")
    if result.get("status") != "success":
        print(f"[{name}] status=failed reason={result.get('reason')}")
        if verbose and result.get("error"):
            print(f"  {result['error']}", file=sys.stderr)
        return

    reconciliation = result["result"]
    totals = reconciliation.totals
    invoice = result["extracted"].get("invoice") or {}
    print(
        f"[{name}] status=success invoice={invoice.get('number')} "
        f"items={len(reconciliation.items)} boxes={totals.boxes} "
        f"weight={totals.weight:.1f}kg value={totals.value:.2f}"
    )
    if reconciliation.unmatched_skus:
        print(f"  Unmatched SKUs (default box used): {', '.join(map(str, reconciliation.unmatched_skus))}")
    for rejected in reconciliation.rejected:
        print(f"  Skipped line item {rejected['index'] + 1}: {rejected['error']}")
    for path in result.get("reports", []):
        print(f"  Saved to {path}")
    if result.get("history") is not None:
        state = "saved" if result.get("history_created") else "already in history"
        print(f"  History: {state} (id={result['history'].get('id')})")


def cmd_process(args, config, storage) -> int:
    result = run_one(
        args.pdf,
        storage,
        config,
        formats=args.format or (),
        out_dir=args.out,
        save_history=not args.no_history,
    )
    _print_result(result, verbose=args.verbose)
    if result.get("status") != "success":
        return 1
    if args.json:
        print("\nStructured Output:")
        print(json.dumps(result["result"].to_dict(), indent=2, ensure_ascii=False))
    return 0


def cmd_batch(args, config, storage) -> int:
    invoices_dir = Path(args.dir)
    print(f"Processing all PDFs in {invoices_dir}...\n")
    summary = run_all(
        storage,
        config,
        invoices_dir=invoices_dir,
        formats=args.format or (),
        out_dir=args.out,
        save_history=not args.no_history,
    )
    if summary["total"] == 0:
        print(f"No PDF files found in {invoices_dir}")
        return 0
    for i, result in enumerate(summary["results"], start=1):
        print(f"[{i}/{summary['total']}]", end=" ")
        _print_result(result, verbose=args.verbose)

    print("\n=====================================")
    print("Batch Processing Summary")
    print("=====================================")
    print(f"Total files: {summary['total']}")
    print(f"Processed: {summary['processed']}")
    print(f"Failed: {summary['failed']}")
    print("=====================================")
    return 1 if summary["failed"] else 0


def _get_entry(storage, invoice_id: int) -> dict:
    entry = storage.get_invoice(invoice_id)
    if entry is None:
        raise LookupError(f"Invoice not found: {invoice_id}")
    return entry


def cmd_recalc(args, config, storage) -> int:
    entry = _get_entry(storage, args.invoice_id)
    extracted, result = recalculate(entry, load_product_master(storage))
    totals = result.totals
    print(
        f"Invoice {entry.get('invoice_number')}: boxes {entry.get('total_boxes')} -> {totals.boxes}, "
        f"weight {entry.get('total_weight')} -> {totals.weight:.1f}kg"
    )
    for fmt in args.format or ():
        print(f"  Saved to {write_report(fmt, extracted, result.items, totals, args.out)}")
    if args.save:
        entry_out, created = save_to_history(storage, extracted, result.items, totals)
        print(f"  History: {'saved' if created else 'already in history'} (id={entry_out.get('id')})")
    return 0


def cmd_export(args, config, storage) -> int:
    entry = _get_entry(storage, args.invoice_id)
    items = list(entry.get("line_items") or [])
    extracted = history_extraction(entry)
    totals = history_totals(items)
    for fmt in args.format:
        print(f"Saved to {write_report(fmt, extracted, items, totals, args.out, history=True)}")
    return 0


def cmd_history(args, config, storage) -> int:
    invoices = storage.list_invoices(limit=args.limit)
    if not invoices:
        print("No invoices in history.")
        return 0
    print(f"{'ID':<15} {'Invoice':<20} {'Date':<12} {'Boxes':>6} {'Weight':>9}  Buyer")
    for inv in invoices:
        print(
            f"{str(inv.get('id')):<15} {str(inv.get('invoice_number') or ''):<20} "
            f"{str(inv.get('invoice_date') or ''):<12} {inv.get('total_boxes') or 0:>6} "
            f"{float(inv.get('total_weight') or 0):>9.1f}  {inv.get('buyer_name') or ''}"
        )
    return 0


def cmd_products(args, config, storage) -> int:
    if args.products_command == "list":
        products = storage.get_products()
        if not products:
            print("No products configured (the seed product master is used when processing).")
            return 0
        for sku, product in products.items():
            fields = " ".join(f"{f}={product.get(f)}" for f in NUMERIC_FIELDS if product.get(f) is not None)
            print(f"{sku}: {product.get('name') or ''} {fields}".rstrip())
        return 0

    if args.products_command == "set":
        payload = {field: getattr(args, field) for field in NUMERIC_FIELDS if getattr(args, field) is not None}
        for field in ("name", "hsn_code"):
            if getattr(args, field):
                payload[field] = getattr(args, field)
        ok, reason = validate_product_payload(args.sku, payload)
        if not ok:
            print(f"Invalid product: {reason}", file=sys.stderr)
            return 1
        for field in NUMERIC_FIELDS:
            if field in payload:
                payload[field] = positive_number(payload[field])
        storage.save_product(args.sku, payload)
        print(f"Product {args.sku} saved")
        return 0

    storage.delete_product(args.sku)
    print(f"Product {args.sku} deleted")
    return 0


def cmd_init_tables(args, config, storage) -> int:
    from core.dynamo_storage import DynamoDBStorage

    cloud = DynamoDBStorage(
        region=config.get("aws_region"),
        table_prefix=config.get("table_prefix"),
        s3_bucket=config.get("s3_bucket"),
    )
    cloud.create_tables()
    print(f"DynamoDB tables ready (prefix={cloud.table_prefix})")
    return 0


def cmd_serve(args, config) -> int:
    import uvicorn

    uvicorn.run("core.api:app", host=args.host, port=args.port or config["port"])
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Invoice Shipping Report Builder")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Print caught exceptions and full tracebacks for debugging.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def add_report_options(p: argparse.ArgumentParser, required: bool = False) -> None:
        p.add_argument(
            "--format",
            action="append",
            choices=REPORT_FORMATS,
            required=required,
            help="Report format to write (repeatable).",
        )
        p.add_argument("--out", default=str(REPORTS_DIR), help="Directory for report files.")

    p = sub.add_parser("process", help="Process a single invoice PDF")
    p.add_argument("pdf", help="Path to the invoice PDF")
    add_report_options(p)
    p.add_argument("--no-history", action="store_true", help="Do not save the invoice to history.")
    p.add_argument("--json", action="store_true", help="Print the enriched line items as JSON.")

    p = sub.add_parser("batch", help="Process all PDFs in the invoices directory")
    p.add_argument("--dir", default=str(INVOICES_DIR), help="Directory of invoice PDFs.")
    add_report_options(p)
    p.add_argument("--no-history", action="store_true", help="Do not save invoices to history.")

    p = sub.add_parser("recalc", help="Re-reconcile a stored invoice against the current product master")
    p.add_argument("invoice_id", type=int)
    add_report_options(p)
    p.add_argument("--save", action="store_true", help="Save the recalculated invoice to history.")

    p = sub.add_parser("export", help="Export a stored invoice as a report")
    p.add_argument("invoice_id", type=int)
    add_report_options(p, required=True)

    p = sub.add_parser("history", help="List saved invoices")
    p.add_argument("--limit", type=int, default=20)

    p = sub.add_parser("products", help="Manage the product master")
    products_sub = p.add_subparsers(dest="products_command", required=True)
    products_sub.add_parser("list", help="List products")
    set_p = products_sub.add_parser("set", help="Add or update a product")
    set_p.add_argument("sku")
    set_p.add_argument("--name")
    set_p.add_argument("--hsn-code", dest="hsn_code")
    for field in NUMERIC_FIELDS:
        set_p.add_argument(f"--{field.replace('_', '-')}", dest=field)
    del_p = products_sub.add_parser("delete", help="Delete a product")
    del_p.add_argument("sku")

    sub.add_parser("init-tables", help="Create the DynamoDB tables")

    p = sub.add_parser("serve", help="Run the API server")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=None)

    return parser


COMMANDS = {
    "process": cmd_process,
    "batch": cmd_batch,
    "recalc": cmd_recalc,
    "export": cmd_export,
    "history": cmd_history,
    "products": cmd_products,
    "init-tables": cmd_init_tables,
}


def main(argv: list[str] | None = None) -> int:
    """Entry point with CLI argument parsing."""
    args = build_parser().parse_args(argv)
    ensure_data_dirs()

    try:
        config = load_config()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    setup_logging(config["log_level"], LOGS_DIR)

    if args.command == "serve":
        return cmd_serve(args, config)

    try:
        storage = select_storage(config)
        return COMMANDS[args.command](args, config, storage)
    except (StorageError, LookupError, ReportError) as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
