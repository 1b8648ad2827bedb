"""Command-line entry points for the Shop Ledger toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing the resulting reports. Keeping the CLI thin ensures the
same parser configuration can be reused by tests, scripts, or any alternative
front-end that wants to expose the package capabilities.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, extraction, log
from .constants import RenameOutcome
from .data_manager import Bill


ALL_SHOPS = "all"


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-cli",
        description="Command-line tools for the Shop Ledger workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as bills and master edits."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "add-shop": register_add_shop_command(subparsers),
        "rename-shop": register_rename_shop_command(subparsers),
        "delete-shop": register_delete_shop_command(subparsers),
        "add-bill": register_add_bill_command(subparsers),
        "delete-bill": register_delete_bill_command(subparsers),
        "extract-bill": register_extract_bill_command(subparsers),
        "import-data": register_import_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "dashboard": register_dashboard_command(subparsers),
        "shops": register_shops_command(subparsers),
        "shop-report": register_shop_report_command(subparsers),
        "bills": register_bills_command(subparsers),
        "bill-detail": register_bill_detail_command(subparsers),
        "export-data": register_export_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--cost", required=True, help="Manufacturing cost per unit.")
        parser.add_argument("--price", required=True, help="Default retail price per unit.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Change the name, cost, or default price of a product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--cost", default=None)
        parser.add_argument("--price", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Remove a product from the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_add_shop_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-shop``."""
    name = "add-shop"
    help_text = "Register a new shop in the Shops sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--location", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_shop)


def register_rename_shop_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``rename-shop``."""
    name = "rename-shop"
    help_text = "Rename a shop and update every bill that carries its name."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        target = parser.add_mutually_exclusive_group(required=True)
        target.add_argument("--shop-id")
        target.add_argument("--current-name", help="Name as shown on bills.")
        parser.add_argument("--new-name", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_rename_shop)


def register_delete_shop_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-shop``."""
    name = "delete-shop"
    help_text = "Remove a shop from the Shops sheet; its bills are kept."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--shop-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_shop)


def register_add_bill_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-bill``."""
    name = "add-bill"
    help_text = "Record a bill with one or more product lines."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--shop", required=True)
        parser.add_argument("--date", required=True, help="Bill date as YYYY-MM-DD.")
        parser.add_argument("--invoice", default="")
        parser.add_argument(
            "--item",
            action="append",
            default=[],
            metavar="NAME:PRICE:QTY",
            help="Bill line; repeat for more lines. PRICE may be empty to use the product default.",
        )
        parser.add_argument("--bill-id", default=None, help="Replace the bill with this id.")
        parser.add_argument(
            "--create-shop",
            action="store_true",
            help="Add the shop to the Shops sheet if it is not there yet.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_bill)


def register_delete_bill_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-bill``."""
    name = "delete-bill"
    help_text = "Delete a bill and its lines."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--bill-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_bill)


def register_extract_bill_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``extract-bill``."""
    name = "extract-bill"
    help_text = "Read a bill from an invoice image and optionally save it."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--image", type=Path, required=True)
        parser.add_argument("--mime-type", default=None, help="Defaults from the file extension.")
        parser.add_argument("--save", action="store_true", help="Save the draft when it validates.")
        parser.add_argument("--create-shop", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_extract_bill)


def register_import_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-data``."""
    name = "import-data"
    help_text = "Replace all bills, products, and shops with a backup bundle."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--input", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import)


def register_dashboard_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display revenue, cost, profit, and rankings."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--shop", default=ALL_SHOPS, help="Exact shop name, or 'all'.")
        parser.add_argument("--start", default=None, help="Inclusive start date, YYYY-MM-DD.")
        parser.add_argument("--end", default=None, help="Inclusive end date, YYYY-MM-DD.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_dashboard)


def register_shops_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``shops``."""
    name = "shops"
    help_text = "Display revenue and profit for every shop."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_shops_report)


def register_shop_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``shop-report``."""
    name = "shop-report"
    help_text = "Display the summary for a single shop."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--shop", required=True)
        parser.add_argument("--start", default=None)
        parser.add_argument("--end", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_shop_report)


def register_bills_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bills``."""
    name = "bills"
    help_text = "List recorded bills, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None, help="Match shop name or invoice number.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bills_report)


def register_bill_detail_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bill-detail``."""
    name = "bill-detail"
    help_text = "Display one bill with per-line cost and profit."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--bill-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bill_detail)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-data``."""
    name = "export-data"
    help_text = "Write every bill, product, and shop to a JSON backup bundle."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, default=None, help="Defaults to standard output.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    context = core_logic.load_runtime_context(target)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Argument translation
# ---------------------------------------------------------------------------


def parse_decimal(raw: str, label: str) -> Decimal:
    """Parse a decimal command-line value, naming ``label`` on failure."""
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise ValueError(f"{label} must be a number, got '{raw}'") from exc
    if not value.is_finite():
        raise ValueError(f"{label} must be a finite number, got '{raw}'")
    return value


def parse_item(raw: str, context: core_logic.RuntimeContext) -> core_logic.BillItemCommand:
    """Parse ``NAME:PRICE:QTY``; an empty price takes the product default.

    Product names may contain colons, so the price and quantity are split off
    the right-hand end.
    """
    parts = raw.rsplit(":", 2)
    if len(parts) != 3 or not parts[0].strip():
        raise ValueError(f"Item must look like NAME:PRICE:QTY, got '{raw}'")
    product_name, price_raw, quantity_raw = parts
    product_name = product_name.strip()
    if price_raw.strip():
        retail_price = parse_decimal(price_raw, "Item price")
    else:
        default_price = core_logic.product_defaults(context, product_name)
        if default_price is None:
            raise ValueError(f"No default price for unknown product '{product_name}'")
        retail_price = default_price
    return core_logic.BillItemCommand(
        product_name=product_name,
        retail_price=retail_price,
        quantity=parse_decimal(quantity_raw, "Item quantity"),
    )


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "name": args.name,
        "manufacturing_cost": parse_decimal(args.cost, "Cost"),
        "default_retail_price": parse_decimal(args.price, "Price"),
    }


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an update-product request; unset flags are left alone."""
    return {
        "name": args.name,
        "manufacturing_cost": parse_decimal(args.cost, "Cost") if args.cost is not None else None,
        "default_retail_price": parse_decimal(args.price, "Price") if args.price is not None else None,
    }


def translate_add_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> core_logic.BillCommand:
    """Translate CLI args into a bill command object."""
    return core_logic.BillCommand(
        shop_name=args.shop,
        bill_date=args.date,
        invoice_number=args.invoice,
        items=tuple(parse_item(raw, context) for raw in args.item),
        bill_id=args.bill_id,
    )


def translate_shop_filter(raw: Optional[str]) -> Optional[str]:
    """Map the ``all`` sentinel to ``None``; any other value is an exact name."""
    if raw is None or raw == ALL_SHOPS:
        return None
    return raw


def guess_mime_type(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix == ".png":
        return "image/png"
    if suffix == ".webp":
        return "image/webp"
    return "image/jpeg"


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    payload = translate_add_product(args)
    product = core_logic.add_product(context, **payload)
    print(f"Added product {product.name} ({product.product_id})")
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the BLL."""
    payload = translate_update_product(args)
    product = core_logic.update_product(context, args.product_id, **payload)
    print(f"Updated product {product.name} ({product.product_id})")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_product(context, args.product_id)
    print(f"Deleted product {args.product_id}")
    return 0


def run_add_shop(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    shop = core_logic.add_shop(context, args.name, location=args.location)
    print(f"Added shop {shop.name} ({shop.shop_id})")
    return 0


def run_rename_shop(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the rename workflow; an unknown shop id is reported as exit code 4."""
    if args.shop_id is not None:
        result = core_logic.rename_shop(context, args.shop_id, args.new_name)
    else:
        result = core_logic.rename_shop_by_name(context, args.current_name, args.new_name)

    if result.outcome is RenameOutcome.SHOP_NOT_FOUND:
        print(f"Shop {args.shop_id} not found; nothing renamed")
        return 4
    if result.outcome is RenameOutcome.MASTER_CREATED:
        print(f"Created shop {result.new_name}; bills for {result.old_name} were not changed")
        return 0
    print(f"Renamed {result.old_name} to {result.new_name}; {result.bills_updated} bills updated")
    return 0


def run_delete_shop(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_shop(context, args.shop_id)
    print(f"Deleted shop {args.shop_id}")
    return 0


def run_add_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the bill recording workflow via the BLL."""
    command = translate_add_bill(context, args)
    bill = core_logic.record_bill(context, command, create_shop=args.create_shop)
    print(f"Saved bill {bill.bill_id} for {bill.shop_name}: total {bill.total_amount}")
    return 0


def run_delete_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_bill(context, args.bill_id)
    print(f"Deleted bill {args.bill_id}")
    return 0


def run_extract_bill(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Extract a draft bill from an image, print it, and save it on request.

    A draft with validation issues is never saved; the issues are printed and
    the command exits with code 2 so the workbook stays untouched.
    """
    image_bytes = Path(args.image).read_bytes()
    extractor = extraction.create_extractor(context.settings)
    draft = core_logic.extract_bill(
        context,
        image_bytes,
        extractor,
        mime_type=args.mime_type or guess_mime_type(Path(args.image)),
    )
    print(format_bill(draft.bill))
    for issue in draft.validation.issues:
        print(f"  ! {issue.kind.value}: {issue.message}")

    if not args.save:
        return 0
    bill = core_logic.save_bill(context, draft.bill, create_shop=args.create_shop)
    print(f"Saved bill {bill.bill_id}")
    return 0


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the import workflow; malformed JSON is a business-rule failure."""
    try:
        payload = json.loads(Path(args.input).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise core_logic.ImportPayloadError(f"Import file is not valid JSON: {exc}") from exc
    counts = core_logic.import_bundle(context, payload)
    print(f"Imported {counts['bills']} bills, {counts['products']} products, {counts['shops']} shops")
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    bundle = core_logic.export_bundle(context)
    text = json.dumps(bundle, indent=2)
    if args.output is None:
        print(text)
    else:
        Path(args.output).write_text(text, encoding="utf-8")
        print(f"Exported data to {args.output}")
    return 0


def run_dashboard(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the dashboard reporting workflow."""
    report = core_logic.dashboard(
        context,
        shop_filter=translate_shop_filter(args.shop),
        start_date=args.start,
        end_date=args.end,
    )
    print(f"{context.settings.business_name}")
    print(f"Revenue:      {report.total_revenue}")
    print(f"Cost:         {report.total_cost}")
    print(f"Net profit:   {report.net_profit}")
    print(f"Margin:       {_percent(report.margin)}")
    print(f"Items sold:   {report.total_items_sold}")
    print(f"Bills:        {report.bill_count}")
    print("Top products:")
    for entry in report.top_products(context.settings.top_products):
        print(f"  {entry.name}: {entry.value}")
    print("Sales by shop:")
    for entry in report.shop_sales:
        print(f"  {entry.name}: {entry.value}")
    print("Monthly trend:")
    for point in report.monthly_trend:
        print(f"  {point.month}: revenue {point.revenue}, profit {point.profit}")
    return 0


def run_shops_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    for summary in core_logic.shop_overview(context):
        print(
            f"{summary.shop_name}: revenue {summary.total_revenue}, "
            f"profit {summary.net_profit}, bills {summary.bill_count}"
        )
    return 0


def run_shop_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    summary = core_logic.shop_report(context, args.shop, start_date=args.start, end_date=args.end)
    print(f"{summary.shop_name}")
    print(f"Revenue:    {summary.total_revenue}")
    print(f"Net profit: {summary.net_profit}")
    print(f"Bills:      {summary.bill_count}")
    return 0


def run_bills_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    needle = (args.search or "").casefold()
    for bill in core_logic.list_bills(context):
        if needle and needle not in bill.shop_name.casefold() and needle not in bill.invoice_number.casefold():
            continue
        print(f"{bill.bill_date}  {bill.bill_id}  {bill.shop_name}  #{bill.invoice_number}  {bill.total_amount}")
    return 0


def run_bill_detail(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    bill = core_logic.get_bill(context, args.bill_id)
    financials = core_logic.bill_breakdown(context, args.bill_id)
    print(format_bill(bill))
    for line in financials.lines:
        print(f"  {line.item.product_name}: cost {line.line_cost}, profit {line.line_profit}")
    print(f"Total cost: {financials.total_cost}")
    print(f"Net profit: {financials.net_profit}")
    return 0


def format_bill(bill: Bill) -> str:
    """Render a bill header and its lines as plain text."""
    lines = [f"{bill.bill_date} {bill.shop_name} #{bill.invoice_number} total {bill.total_amount}"]
    for item in bill.items:
        lines.append(f"  {item.product_name} {item.quantity} x {item.retail_price} = {item.total}")
    return "\n".join(lines)


def _percent(ratio: Decimal) -> str:
    return f"{(ratio * 100).quantize(Decimal('0.1'))}%"


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BillValidationError):
        for issue in error.result.issues:
            log.error("%s (%s): %s", issue.kind.value, issue.field, issue.message)
        return 2
    if isinstance(error, core_logic.PartialCascadeError):
        log.error("%s", error)
        log.error("Bills still using the old name: %s", ", ".join(error.pending_bill_ids))
        return 2
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
