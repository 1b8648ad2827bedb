"""Data access layer for Shop Ledger.

This module provides low-level helpers that read from and write to the
ledger workbook. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, replacing or
   deleting individual rows.
4. Bundle serialization: converting records to and from the JSON backup
   format.
"""


from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import DEFAULT_EXTRACTION_MODEL, DEFAULT_TOP_PRODUCTS, MONEY_QUANTUM, SheetName


CONFIG_FILE_NAME = "config.ini"
BILLS_SHEET = SheetName.BILLS.value
BILL_ITEMS_SHEET = SheetName.BILL_ITEMS.value
PRODUCTS_SHEET = SheetName.PRODUCTS.value
SHOPS_SHEET = SheetName.SHOPS.value
API_KEY_ENV_VAR = "GEMINI_API_KEY"

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    BILLS_SHEET: [
        "BillID",
        "ShopName",
        "InvoiceNumber",
        "BillDate",
        "TotalAmount",
        "CreatedAt",
    ],
    BILL_ITEMS_SHEET: [
        "ItemID",
        "BillID",
        "ProductName",
        "RetailPrice",
        "Quantity",
        "LineTotal",
    ],
    PRODUCTS_SHEET: [
        "ProductID",
        "ProductName",
        "ManufacturingCost",
        "DefaultRetailPrice",
    ],
    SHOPS_SHEET: [
        "ShopID",
        "ShopName",
        "Location",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    business_name: str
    schema_version: str
    top_products: int = DEFAULT_TOP_PRODUCTS
    extraction_model: str = DEFAULT_EXTRACTION_MODEL
    extraction_api_key: str = ""


@dataclass(frozen=True)
class BillItem:
    """One purchased line within a bill."""

    item_id: str
    product_name: str
    retail_price: Decimal
    quantity: Decimal
    total: Decimal


@dataclass(frozen=True)
class Bill:
    """One invoice issued by a shop."""

    bill_id: str
    shop_name: str
    invoice_number: str
    bill_date: str
    items: Tuple[BillItem, ...]
    total_amount: Decimal
    created_at: str


@dataclass(frozen=True)
class ProductMaster:
    """Catalog entry for a product the business sells."""

    product_id: str
    name: str
    manufacturing_cost: Decimal
    default_retail_price: Decimal


@dataclass(frozen=True)
class ShopMaster:
    """Catalog entry for a counterparty shop."""

    shop_id: str
    name: str
    location: Optional[str] = None


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. ``[Analytics]`` and ``[Extraction]``
    are optional and fall back to package defaults. The Gemini API key is read
    from ``Extraction.ApiKey`` and, when that is blank, from the
    ``GEMINI_API_KEY`` environment variable. Relative ``DataFile`` entries are
    anchored to ``base_path`` (or the current working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative data files.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required ``[System]`` option is missing.
        ValueError: If ``Analytics.TopProducts`` is not a positive integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    top_products = parser.getint("Analytics", "TopProducts", fallback=DEFAULT_TOP_PRODUCTS)
    if top_products <= 0:
        raise ValueError("Analytics.TopProducts must be a positive integer")
    extraction_model = parser.get("Extraction", "Model", fallback=DEFAULT_EXTRACTION_MODEL)
    api_key = parser.get("Extraction", "ApiKey", fallback="") or os.environ.get(API_KEY_ENV_VAR, "")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        business_name=business_name,
        schema_version=schema_version,
        top_products=top_products,
        extraction_model=extraction_model,
        extraction_api_key=api_key,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
        KeyError: If one of the ledger sheets is missing from the workbook.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    missing = [name for name in SHEET_COLUMNS if name not in wb.sheetnames]
    if missing:
        raise KeyError(f"Workbook '{data_file}' is missing sheets: {', '.join(missing)}")
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def iter_products(workbook: Workbook) -> Iterable[ProductMaster]:
    """Iterate over product records stored on the ``Products`` worksheet.

    Header and fully empty rows are skipped.
    """

    for raw in _iter_raw_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_shops(workbook: Workbook) -> Iterable[ShopMaster]:
    """Iterate over the ``Shops`` worksheet and yield typed records."""

    for raw in _iter_raw_rows(workbook, SHOPS_SHEET):
        yield deserialize_shop(raw)


def iter_bills(workbook: Workbook) -> Iterable[Bill]:
    """Stream bills from the ``Bills`` worksheet joined with their line items.

    Line items are read once from ``BillItems`` and grouped by ``BillID`` in
    sheet order, so each yielded :class:`Bill` carries its items in the order
    they were written.

    Args:
        workbook (Workbook): Workbook containing both bill sheets.

    Yields:
        Bill: One structured bill per populated row of the ``Bills`` sheet.
    """

    items_by_bill: Dict[str, List[BillItem]] = {}
    for raw in _iter_raw_rows(workbook, BILL_ITEMS_SHEET):
        bill_id, item = deserialize_bill_item(raw)
        items_by_bill.setdefault(bill_id, []).append(item)

    for raw in _iter_raw_rows(workbook, BILLS_SHEET):
        bill_id = str(raw[0])
        yield deserialize_bill(raw, items_by_bill.get(bill_id, []))


def append_product(workbook: Workbook, record: ProductMaster) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_shop(workbook: Workbook, record: ShopMaster) -> None:
    """Append a shop record to the ``Shops`` worksheet."""

    workbook[SHOPS_SHEET].append(serialize_shop(record))


def append_bill(workbook: Workbook, record: Bill) -> None:
    """Append a bill header and each of its line items.

    The header lands on ``Bills`` and every item on ``BillItems`` keyed by the
    bill identifier. Numeric fields go through :func:`amount_cell` so the
    precision the caller supplied survives a save and reload.
    """

    workbook[BILLS_SHEET].append(serialize_bill(record))
    item_sheet = workbook[BILL_ITEMS_SHEET]
    for item in record.items:
        item_sheet.append(serialize_bill_item(record.bill_id, item))


def replace_product(workbook: Workbook, record: ProductMaster) -> None:
    """Overwrite the row of an existing product in place.

    Raises:
        KeyError: If no row carries ``record.product_id``.
    """

    _replace_row(workbook, PRODUCTS_SHEET, "ProductID", record.product_id, serialize_product(record))


def replace_shop(workbook: Workbook, record: ShopMaster) -> None:
    """Overwrite the row of an existing shop in place.

    Raises:
        KeyError: If no row carries ``record.shop_id``.
    """

    _replace_row(workbook, SHOPS_SHEET, "ShopID", record.shop_id, serialize_shop(record))


def replace_bill(workbook: Workbook, record: Bill) -> None:
    """Overwrite a bill header and rewrite its line items.

    The header row is updated in place. Existing item rows for the bill are
    removed and the new items are appended, because the number of items may
    change between edits.

    Raises:
        KeyError: If no ``Bills`` row carries ``record.bill_id``.
    """

    _replace_row(workbook, BILLS_SHEET, "BillID", record.bill_id, serialize_bill(record))
    _delete_rows(workbook, BILL_ITEMS_SHEET, locate_rows(workbook, BILL_ITEMS_SHEET, "BillID", record.bill_id))
    item_sheet = workbook[BILL_ITEMS_SHEET]
    for item in record.items:
        item_sheet.append(serialize_bill_item(record.bill_id, item))


def delete_product(workbook: Workbook, product_id: str) -> None:
    """Remove a product row.

    Raises:
        KeyError: If the product cannot be found.
    """

    _delete_single_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)


def delete_shop(workbook: Workbook, shop_id: str) -> None:
    """Remove a shop row.

    Raises:
        KeyError: If the shop cannot be found.
    """

    _delete_single_row(workbook, SHOPS_SHEET, "ShopID", shop_id)


def delete_bill(workbook: Workbook, bill_id: str) -> None:
    """Remove a bill header together with all of its line items.

    Raises:
        KeyError: If the bill cannot be found.
    """

    _delete_single_row(workbook, BILLS_SHEET, "BillID", bill_id)
    _delete_rows(workbook, BILL_ITEMS_SHEET, locate_rows(workbook, BILL_ITEMS_SHEET, "BillID", bill_id))


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find the first row whose ``key_column`` equals ``key_value``.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    matches = locate_rows(workbook, sheet_name, key_column, key_value)
    return matches[0] if matches else None


def locate_rows(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> List[int]:
    """Return every 1-based row index whose ``key_column`` equals ``key_value``.

    Cell values are compared as strings so identifiers Excel stored as numbers
    still match.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    matches: List[int] = []
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1] if len(row) >= key_col_index else None
        if cell_value is not None and str(cell_value) == str(key_value):
            matches.append(row_idx)
    return matches


def serialize_product(record: ProductMaster) -> list[object]:
    """Convert a product into ``[ProductID, ProductName, ManufacturingCost, DefaultRetailPrice]``."""

    return [
        record.product_id,
        record.name,
        amount_cell(record.manufacturing_cost),
        amount_cell(record.default_retail_price),
    ]


def serialize_shop(record: ShopMaster) -> list[object]:
    """Convert a shop into ``[ShopID, ShopName, Location]``."""

    return [record.shop_id, record.name, record.location]


def serialize_bill(record: Bill) -> list[object]:
    """Convert a bill header into the ``Bills`` column ordering."""

    return [
        record.bill_id,
        record.shop_name,
        record.invoice_number,
        record.bill_date,
        amount_cell(record.total_amount),
        record.created_at,
    ]


def serialize_bill_item(bill_id: str, item: BillItem) -> list[object]:
    """Convert a line item into the ``BillItems`` column ordering."""

    return [
        item.item_id,
        bill_id,
        item.product_name,
        amount_cell(item.retail_price),
        amount_cell(item.quantity),
        amount_cell(item.total),
    ]


def deserialize_product(raw_row: Sequence[object]) -> ProductMaster:
    """Convert a raw worksheet row into a strongly typed product record.

    Numeric cells become :class:`~decimal.Decimal`; id and name cells are
    coerced to ``str`` to avoid surprises caused by Excel typing.
    """

    product_id, name, cost_raw, price_raw = _pad(raw_row, 4)
    return ProductMaster(
        product_id=str(product_id),
        name=str(name) if name is not None else "",
        manufacturing_cost=to_decimal(cost_raw),
        default_retail_price=to_decimal(price_raw),
    )


def deserialize_shop(raw_row: Sequence[object]) -> ShopMaster:
    """Convert a raw worksheet row into a strongly typed shop record."""

    shop_id, name, location = _pad(raw_row, 3)
    return ShopMaster(
        shop_id=str(shop_id),
        name=str(name) if name is not None else "",
        location=str(location) if location is not None else None,
    )


def deserialize_bill_item(raw_row: Sequence[object]) -> Tuple[str, BillItem]:
    """Convert a ``BillItems`` row into ``(bill_id, BillItem)``."""

    item_id, bill_id, product_name, price_raw, quantity_raw, total_raw = _pad(raw_row, 6)
    item = BillItem(
        item_id=str(item_id),
        product_name=str(product_name) if product_name is not None else "",
        retail_price=to_decimal(price_raw),
        quantity=to_decimal(quantity_raw),
        total=to_decimal(total_raw),
    )
    return str(bill_id), item


def deserialize_bill(raw_row: Sequence[object], items: Iterable[BillItem]) -> Bill:
    """Convert a ``Bills`` row plus its grouped items into a :class:`Bill`.

    Dates typed into Excel by hand come back as ``datetime`` objects and are
    normalized to ``YYYY-MM-DD`` text.
    """

    bill_id, shop_name, invoice_number, date_raw, total_raw, created_raw = _pad(raw_row, 6)
    return Bill(
        bill_id=str(bill_id),
        shop_name=str(shop_name) if shop_name is not None else "",
        invoice_number=str(invoice_number) if invoice_number is not None else "",
        bill_date=normalize_date(date_raw),
        items=tuple(items),
        total_amount=to_decimal(total_raw),
        created_at=str(created_raw) if created_raw is not None else "",
    )


def bill_to_dict(record: Bill) -> Dict[str, Any]:
    """Render a bill in the camelCase backup bundle format.

    Decimals are written as strings so no precision is lost in JSON.
    """

    return {
        "id": record.bill_id,
        "shopName": record.shop_name,
        "invoiceNumber": record.invoice_number,
        "date": record.bill_date,
        "items": [
            {
                "id": item.item_id,
                "productName": item.product_name,
                "retailPrice": str(item.retail_price),
                "quantity": str(item.quantity),
                "total": str(item.total),
            }
            for item in record.items
        ],
        "totalAmount": str(record.total_amount),
        "createdAt": record.created_at,
    }


def product_to_dict(record: ProductMaster) -> Dict[str, Any]:
    """Render a product in the camelCase backup bundle format."""

    return {
        "id": record.product_id,
        "name": record.name,
        "manufacturingCost": str(record.manufacturing_cost),
        "defaultRetailPrice": str(record.default_retail_price),
    }


def shop_to_dict(record: ShopMaster) -> Dict[str, Any]:
    """Render a shop in the camelCase backup bundle format."""

    payload: Dict[str, Any] = {"id": record.shop_id, "name": record.name}
    if record.location is not None:
        payload["location"] = record.location
    return payload


def bill_from_dict(data: Mapping[str, Any]) -> Bill:
    """Parse a bundle bill into a :class:`Bill`.

    Raises:
        KeyError: If ``id``, ``shopName``, ``date`` or ``items`` is absent.
        ValueError: If a numeric field cannot be interpreted as a decimal.
        TypeError: If ``items`` is not a list.
    """

    raw_items = data["items"]
    if not isinstance(raw_items, list):
        raise TypeError("Bill items must be a list")
    items = tuple(
        BillItem(
            item_id=str(item["id"]),
            product_name=str(item["productName"]),
            retail_price=to_decimal(item.get("retailPrice"), strict=True),
            quantity=to_decimal(item.get("quantity"), strict=True),
            total=to_decimal(item.get("total"), strict=True),
        )
        for item in raw_items
    )
    created_raw = data.get("createdAt")
    return Bill(
        bill_id=str(data["id"]),
        shop_name=str(data["shopName"]),
        invoice_number=str(data.get("invoiceNumber") or ""),
        bill_date=normalize_date(data["date"]),
        items=items,
        total_amount=to_decimal(data.get("totalAmount"), strict=True),
        created_at=str(created_raw) if created_raw is not None else "",
    )


def product_from_dict(data: Mapping[str, Any]) -> ProductMaster:
    """Parse a bundle product into a :class:`ProductMaster`.

    Raises:
        KeyError: If ``id`` or ``name`` is absent.
        ValueError: If a numeric field cannot be interpreted as a decimal.
    """

    return ProductMaster(
        product_id=str(data["id"]),
        name=str(data["name"]),
        manufacturing_cost=to_decimal(data.get("manufacturingCost"), strict=True),
        default_retail_price=to_decimal(data.get("defaultRetailPrice"), strict=True),
    )


def shop_from_dict(data: Mapping[str, Any]) -> ShopMaster:
    """Parse a bundle shop into a :class:`ShopMaster`.

    Raises:
        KeyError: If ``id`` or ``name`` is absent.
    """

    location = data.get("location")
    return ShopMaster(
        shop_id=str(data["id"]),
        name=str(data["name"]),
        location=str(location) if location is not None else None,
    )


def amount_cell(value: Decimal) -> object:
    """Return the cell value that stores ``value`` without loss.

    Excel keeps numbers as binary doubles, which hold roughly 15 to 17
    significant digits. Amounts that survive the double round trip are
    written as numeric cells; longer ones are written as text, which
    :func:`to_decimal` reads back exactly.

    Args:
        value (Decimal): Amount, price, or quantity to store.

    Returns:
        object: ``value`` itself, or its text form when a double would
            truncate it.
    """

    if Decimal(repr(float(value))) == value:
        return value
    log.debug("Storing %s as text to keep its precision", value)
    return str(value)


def quantize_money(value: Decimal) -> Decimal:
    """Round ``value`` half-up to :data:`~shop_ledger.constants.MONEY_QUANTUM`."""

    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def to_decimal(raw: object, *, strict: bool = False) -> Decimal:
    """Coerce a cell or JSON value into a :class:`~decimal.Decimal`.

    ``None`` and blank strings become ``Decimal("0")``. Floats go through
    ``str`` first so ``2.5`` becomes ``Decimal("2.5")`` rather than its binary
    expansion.

    Args:
        raw (object): Value read from a worksheet cell or a JSON document.
        strict (bool): When ``True`` unparseable values raise instead of
            defaulting to zero.

    Raises:
        ValueError: If ``strict`` is set and ``raw`` is not numeric.
    """

    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return Decimal("0")
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        if strict:
            raise ValueError(f"Not a decimal value: {raw!r}") from exc
        log.warning("Treating unparseable numeric cell %r as zero", raw)
        return Decimal("0")
    if not value.is_finite():
        if strict:
            raise ValueError(f"Not a finite decimal value: {raw!r}")
        log.warning("Treating non-finite numeric cell %r as zero", raw)
        return Decimal("0")
    return value


def normalize_date(raw: object) -> str:
    """Return ``raw`` as ``YYYY-MM-DD`` text; ``None`` becomes an empty string."""

    if raw is None:
        return ""
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()
    return str(raw).strip()


def _iter_raw_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def _header_map(sheet: Any) -> Dict[Any, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _pad(raw_row: Sequence[object], width: int) -> Tuple[object, ...]:
    values = tuple(raw_row[:width])
    return values + (None,) * (width - len(values))


def _replace_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, values: Sequence[object]) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")
    sheet = workbook[sheet_name]
    for col, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=col, value=value)


def _delete_single_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


def _delete_rows(workbook: Workbook, sheet_name: str, row_indexes: Iterable[int]) -> None:
    sheet = workbook[sheet_name]
    # Bottom-up so earlier indexes stay valid.
    for row_index in sorted(row_indexes, reverse=True):
        sheet.delete_rows(row_index)
