"""Business logic layer for Shop Ledger.

This module owns the rules that keep bills, the product master and the shop
master consistent with one another. It consumes the entity store for all
I/O, runs the master validator at every write boundary, owns the derived
bill totals, and cascades shop renames onto historical bills.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import analytics, data_manager, log, repository, validation
from .constants import EXPECTED_SCHEMA_VERSION, RenameOutcome, ValidationErrorKind
from .data_manager import Bill, BillItem, ProductMaster, ShopMaster
from .extraction import BillExtractor, PartialBill
from .validation import ValidationResult


BUNDLE_COLLECTIONS: Tuple[str, ...] = ("bills", "products", "shops")


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingFieldError(BusinessRuleViolation):
    """Raised when a required field is blank."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced bill, product, or shop id is unknown."""


class DuplicateNameError(BusinessRuleViolation):
    """Raised when a master name collides with another entry ignoring case."""


class BillValidationError(BusinessRuleViolation):
    """Raised when a bill fails the master validator; carries every issue."""

    def __init__(self, result: ValidationResult, *, bill_id: Optional[str] = None) -> None:
        self.result = result
        self.bill_id = bill_id
        summary = "; ".join(issue.message for issue in result.issues)
        super().__init__(f"Bill cannot be saved: {summary}")


class PartialCascadeError(BusinessRuleViolation):
    """Raised when a shop rename reached the master but not every bill.

    The ledger is inconsistent but not corrupted: ``updated_bill_ids`` carry
    the new name and ``pending_bill_ids`` still carry the old one.
    """

    def __init__(
        self,
        *,
        failed_step: str,
        shop_id: str,
        old_name: str,
        new_name: str,
        updated_bill_ids: Sequence[str],
        pending_bill_ids: Sequence[str],
    ) -> None:
        self.failed_step = failed_step
        self.shop_id = shop_id
        self.old_name = old_name
        self.new_name = new_name
        self.updated_bill_ids = tuple(updated_bill_ids)
        self.pending_bill_ids = tuple(pending_bill_ids)
        super().__init__(
            f"Rename of shop '{old_name}' to '{new_name}' failed during {failed_step}: "
            f"{len(self.updated_bill_ids)} bills updated, {len(self.pending_bill_ids)} still reference the old name"
        )


class ImportPayloadError(BusinessRuleViolation):
    """Raised when an import bundle is malformed; nothing has been written."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the entity store used by the BLL."""

    settings: data_manager.ConfigSettings
    store: repository.EntityStore
    workbook: Optional[Workbook] = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class BillItemCommand:
    """User intent for one line of a bill."""

    product_name: str
    retail_price: Decimal
    quantity: Decimal


@dataclass(frozen=True)
class BillCommand:
    """User intent for recording a bill."""

    shop_name: str
    bill_date: str
    items: Tuple[BillItemCommand, ...]
    invoice_number: str = ""
    bill_id: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class RenameResult:
    """How a shop rename was resolved and how many bills followed it."""

    outcome: RenameOutcome
    shop_id: Optional[str]
    old_name: Optional[str]
    new_name: str
    bills_updated: int = 0


@dataclass(frozen=True)
class ExtractedDraft:
    """A bill hydrated from an extraction, with its validation verdict."""

    bill: Bill
    validation: ValidationResult


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def generate_id(prefix: str) -> str:
    """Generate an opaque identifier such as ``B3f2a...``."""

    return f"{prefix}{uuid.uuid4().hex}"


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a workbook-backed store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context whose store reads and writes the workbook.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options or sheets are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=repository.workbook_store(workbook), workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Write the workbook behind ``context`` to its configured data file.

    Contexts without a workbook (for example an in-memory store) have nothing
    to persist.
    """
    if context.workbook is None:
        log.debug("Context has no workbook; nothing to persist")
        return
    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook from disk, discarding unsaved modifications.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, store=repository.workbook_store(workbook), workbook=workbook)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_bills(context: RuntimeContext) -> List[Bill]:
    """Return every bill, newest date first."""
    return sorted(context.store.bills.list(), key=lambda bill: bill.bill_date, reverse=True)


def list_products(context: RuntimeContext) -> List[ProductMaster]:
    return context.store.products.list()


def list_shops(context: RuntimeContext) -> List[ShopMaster]:
    return context.store.shops.list()


def get_bill(context: RuntimeContext, bill_id: str) -> Bill:
    """Resolve a bill by id.

    Raises:
        MissingReferenceError: If no bill carries ``bill_id``.
    """
    for bill in context.store.bills.list():
        if bill.bill_id == bill_id:
            return bill
    log.warning("Bill lookup failed for id '%s'", bill_id)
    raise MissingReferenceError(f"Unknown bill id: {bill_id}")


def get_product(context: RuntimeContext, product_id: str) -> ProductMaster:
    """Resolve a product by id.

    Raises:
        MissingReferenceError: If no product carries ``product_id``.
    """
    for product in context.store.products.list():
        if product.product_id == product_id:
            return product
    log.warning("Product lookup failed for id '%s'", product_id)
    raise MissingReferenceError(f"Unknown product id: {product_id}")


def get_shop(context: RuntimeContext, shop_id: str) -> ShopMaster:
    """Resolve a shop by id.

    Raises:
        MissingReferenceError: If no shop carries ``shop_id``.
    """
    for shop in context.store.shops.list():
        if shop.shop_id == shop_id:
            return shop
    log.warning("Shop lookup failed for id '%s'", shop_id)
    raise MissingReferenceError(f"Unknown shop id: {shop_id}")


def product_defaults(context: RuntimeContext, product_name: str) -> Optional[Decimal]:
    """Return the retail price to prefill when a line selects ``product_name``."""
    for product in context.store.products.list():
        if product.name == product_name:
            return product.default_retail_price
    return None


def dashboard(
    context: RuntimeContext,
    *,
    shop_filter: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> analytics.AnalyticsReport:
    """Aggregate the current bills against the current product master."""
    return analytics.calculate_analytics(
        context.store.bills.list(),
        context.store.products.list(),
        shop_filter=shop_filter,
        start_date=start_date,
        end_date=end_date,
    )


def shop_report(
    context: RuntimeContext,
    shop_name: str,
    *,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> analytics.ShopSummary:
    return analytics.calculate_shop_summary(
        context.store.bills.list(),
        context.store.products.list(),
        shop_name,
        start_date=start_date,
        end_date=end_date,
    )


def shop_overview(context: RuntimeContext) -> List[analytics.ShopSummary]:
    return analytics.calculate_shop_stats(
        context.store.bills.list(),
        context.store.products.list(),
        context.store.shops.list(),
    )


def bill_breakdown(context: RuntimeContext, bill_id: str) -> analytics.BillFinancials:
    return analytics.calculate_bill_financials(get_bill(context, bill_id), context.store.products.list())


# ---------------------------------------------------------------------------
# Derived fields and bill writes
# ---------------------------------------------------------------------------


def recompute_item(item: BillItem) -> BillItem:
    """Return ``item`` with ``total`` set to ``retail_price * quantity``."""
    return replace(item, total=item.retail_price * item.quantity)


def recompute_derived_fields(bill: Bill) -> Bill:
    """Recompute every line total and the bill total.

    This is the single owner of the two derived-field invariants; both the
    editor path (:func:`build_bill`) and the save path call it.
    """
    items = tuple(recompute_item(item) for item in bill.items)
    total_amount = sum((item.total for item in items), Decimal("0"))
    return replace(bill, items=items, total_amount=total_amount)


def build_bill(command: BillCommand) -> Bill:
    """Materialize a :class:`BillCommand` into a bill with derived totals.

    Fresh identifiers are generated for the bill (unless the command carries
    one) and for every line.
    """
    timestamp = _resolve_timestamp(command.timestamp)
    bill = Bill(
        bill_id=command.bill_id or generate_id("B"),
        shop_name=command.shop_name.strip(),
        invoice_number=command.invoice_number,
        bill_date=command.bill_date,
        items=tuple(
            BillItem(
                item_id=generate_id("I"),
                product_name=line.product_name,
                retail_price=line.retail_price,
                quantity=line.quantity,
                total=Decimal("0"),
            )
            for line in command.items
        ),
        total_amount=Decimal("0"),
        created_at=timestamp.isoformat(),
    )
    return recompute_derived_fields(bill)


def save_bill(context: RuntimeContext, bill: Bill, *, create_shop: bool = False) -> Bill:
    """Validate and persist a bill, replacing it when the id already exists.

    Derived totals are recomputed and surrounding whitespace is dropped from
    the shop name before validation. The shop name is then rewritten to
    the matching master's stored spelling so later rename cascades, which
    match exact names, pick the bill up. ``created_at`` of an existing bill is
    preserved.

    Args:
        context (RuntimeContext): Runtime context providing the store.
        bill (Bill): Candidate bill.
        create_shop (bool): When ``True`` a non-blank shop name without a
            master entry is added to the shop master instead of rejected.

    Returns:
        Bill: The bill as persisted.

    Raises:
        BillValidationError: If any validation issue remains.
    """
    bill = replace(recompute_derived_fields(bill), shop_name=bill.shop_name.strip())
    shops = context.store.shops.list()
    products = context.store.products.list()

    result = validation.validate_bill(bill, shops, products)
    if create_shop:
        result = ValidationResult(
            tuple(issue for issue in result.issues if issue.kind is not ValidationErrorKind.UNKNOWN_SHOP)
        )
    if not result.ok:
        log.error("Rejected bill '%s': %s", bill.bill_id, [issue.message for issue in result.issues])
        raise BillValidationError(result, bill_id=bill.bill_id)

    shop = validation.match_shop(bill.shop_name, shops)
    if shop is None:
        shop = add_shop(context, bill.shop_name)
        log.info("Created shop '%s' while saving bill '%s'", shop.name, bill.bill_id)
    bill = replace(bill, shop_name=shop.name)

    existing = {record.bill_id: record for record in context.store.bills.list()}
    if bill.bill_id in existing:
        bill = replace(bill, created_at=existing[bill.bill_id].created_at or bill.created_at)
        context.store.bills.replace(bill)
        log.info("Updated bill '%s' for shop '%s' (total=%s)", bill.bill_id, bill.shop_name, bill.total_amount)
    else:
        if not bill.created_at:
            bill = replace(bill, created_at=_resolve_timestamp(None).isoformat())
        context.store.bills.create(bill)
        log.info("Recorded bill '%s' for shop '%s' (total=%s)", bill.bill_id, bill.shop_name, bill.total_amount)
    return bill


def record_bill(context: RuntimeContext, command: BillCommand, *, create_shop: bool = False) -> Bill:
    """Build a bill from ``command`` and save it."""
    return save_bill(context, build_bill(command), create_shop=create_shop)


def delete_bill(context: RuntimeContext, bill_id: str) -> None:
    """Remove a bill.

    Raises:
        MissingReferenceError: If the bill is unknown.
    """
    try:
        context.store.bills.delete_by_id(bill_id)
    except repository.RecordNotFoundError as exc:
        raise MissingReferenceError(f"Unknown bill id: {bill_id}") from exc
    log.info("Deleted bill '%s'", bill_id)


# ---------------------------------------------------------------------------
# Master records
# ---------------------------------------------------------------------------


def add_product(
    context: RuntimeContext,
    *,
    name: str,
    manufacturing_cost: Decimal,
    default_retail_price: Decimal,
    product_id: Optional[str] = None,
) -> ProductMaster:
    """Register a product in the catalog.

    Raises:
        MissingFieldError: If ``name`` is blank.
        DuplicateNameError: If another product has the same name ignoring case.
        ValueError: If a monetary value is negative.
    """
    name = _require_name(name, "Product name")
    require_nonnegative_money(manufacturing_cost)
    require_nonnegative_money(default_retail_price)
    _require_unique_name(name, context.store.products.list(), kind="product")

    product = ProductMaster(
        product_id=product_id or generate_id("P"),
        name=name,
        manufacturing_cost=manufacturing_cost,
        default_retail_price=default_retail_price,
    )
    context.store.products.create(product)
    log.info("Added product '%s' (cost=%s, price=%s)", name, manufacturing_cost, default_retail_price)
    return product


def update_product(
    context: RuntimeContext,
    product_id: str,
    *,
    name: Optional[str] = None,
    manufacturing_cost: Optional[Decimal] = None,
    default_retail_price: Optional[Decimal] = None,
) -> ProductMaster:
    """Replace selected fields of a product.

    Renaming a product does not rewrite bills; lines carrying the old name
    stop resolving until corrected.

    Raises:
        MissingReferenceError: If the product is unknown.
        MissingFieldError: If ``name`` is given but blank.
        DuplicateNameError: If the new name collides with another product.
        ValueError: If a monetary value is negative.
    """
    product = get_product(context, product_id)
    changes: Dict[str, Any] = {}
    if name is not None:
        name = _require_name(name, "Product name")
        _require_unique_name(name, context.store.products.list(), kind="product", ignore_id=product_id)
        changes["name"] = name
    if manufacturing_cost is not None:
        require_nonnegative_money(manufacturing_cost)
        changes["manufacturing_cost"] = manufacturing_cost
    if default_retail_price is not None:
        require_nonnegative_money(default_retail_price)
        changes["default_retail_price"] = default_retail_price

    updated = replace(product, **changes)
    context.store.products.replace(updated)
    if name is not None and name != product.name:
        stale = sum(
            1
            for bill in context.store.bills.list()
            for item in bill.items
            if item.product_name == product.name
        )
        if stale:
            log.warning("%d bill lines still reference renamed product '%s'", stale, product.name)
    log.info("Updated product '%s'", product_id)
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product from the catalog.

    Raises:
        MissingReferenceError: If the product is unknown.
    """
    try:
        context.store.products.delete_by_id(product_id)
    except repository.RecordNotFoundError as exc:
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc
    log.info("Deleted product '%s'", product_id)


def add_shop(
    context: RuntimeContext,
    name: str,
    *,
    location: Optional[str] = None,
    shop_id: Optional[str] = None,
) -> ShopMaster:
    """Register a shop in the master list.

    Raises:
        MissingFieldError: If ``name`` is blank.
        DuplicateNameError: If another shop has the same name ignoring case.
    """
    name = _require_name(name, "Shop name")
    _require_unique_name(name, context.store.shops.list(), kind="shop")
    shop = ShopMaster(shop_id=shop_id or generate_id("S"), name=name, location=location)
    context.store.shops.create(shop)
    log.info("Added shop '%s'", name)
    return shop


def delete_shop(context: RuntimeContext, shop_id: str) -> None:
    """Remove a shop from the master list; its bills are kept.

    Raises:
        MissingReferenceError: If the shop is unknown.
    """
    try:
        context.store.shops.delete_by_id(shop_id)
    except repository.RecordNotFoundError as exc:
        raise MissingReferenceError(f"Unknown shop id: {shop_id}") from exc
    log.info("Deleted shop '%s'", shop_id)


# ---------------------------------------------------------------------------
# Rename propagation
# ---------------------------------------------------------------------------


def rename_shop(context: RuntimeContext, shop_id: str, new_name: str) -> RenameResult:
    """Rename a shop and cascade the new name onto its bills.

    The shop record is written first. Bills are then re-read from the store
    and every bill whose ``shop_name`` equals the old name exactly is
    rewritten. The two steps are not atomic.

    Args:
        context (RuntimeContext): Runtime context providing the store.
        shop_id (str): Identifier of the shop master to rename.
        new_name (str): Replacement name.

    Returns:
        RenameResult: ``SHOP_NOT_FOUND`` (nothing changed) when the id is
            unknown, otherwise ``RENAMED`` with the number of bills updated.

    Raises:
        MissingFieldError: If ``new_name`` is blank.
        DuplicateNameError: If ``new_name`` belongs to another shop.
        PartialCascadeError: If a bill write fails after the shop was renamed.
    """
    new_name = _require_name(new_name, "Shop name")
    shops = context.store.shops.list()
    shop = next((candidate for candidate in shops if candidate.shop_id == shop_id), None)
    if shop is None:
        log.warning("Rename requested for unknown shop id '%s'", shop_id)
        return RenameResult(outcome=RenameOutcome.SHOP_NOT_FOUND, shop_id=shop_id, old_name=None, new_name=new_name)

    _require_unique_name(new_name, shops, kind="shop", ignore_id=shop_id)
    old_name = shop.name
    # A failure here leaves everything untouched, so it propagates as-is.
    context.store.shops.replace(replace(shop, name=new_name))
    log.info("Renamed shop '%s' from '%s' to '%s'", shop_id, old_name, new_name)

    affected = [bill for bill in context.store.bills.list() if bill.shop_name == old_name]
    updated: List[str] = []
    for bill in affected:
        try:
            context.store.bills.replace(replace(bill, shop_name=new_name))
        except Exception as exc:
            pending = [candidate.bill_id for candidate in affected if candidate.bill_id not in updated]
            log.error(
                "Rename cascade for shop '%s' failed at bill '%s': %d updated, %d pending",
                shop_id,
                bill.bill_id,
                len(updated),
                len(pending),
            )
            raise PartialCascadeError(
                failed_step="bill update",
                shop_id=shop_id,
                old_name=old_name,
                new_name=new_name,
                updated_bill_ids=updated,
                pending_bill_ids=pending,
            ) from exc
        updated.append(bill.bill_id)

    log.info("Cascaded shop rename onto %d bills", len(updated))
    return RenameResult(
        outcome=RenameOutcome.RENAMED,
        shop_id=shop_id,
        old_name=old_name,
        new_name=new_name,
        bills_updated=len(updated),
    )


def rename_shop_by_name(context: RuntimeContext, current_name: str, new_name: str) -> RenameResult:
    """Rename a shop identified by the name shown on its bills.

    When a master record carries ``current_name`` exactly, this is a normal
    :func:`rename_shop`. A shop known only from bills has no id to anchor a
    cascade, so a new master named ``new_name`` is created instead and no
    bill is touched; the ``MASTER_CREATED`` outcome tells the caller.
    """
    shop = next((candidate for candidate in context.store.shops.list() if candidate.name == current_name), None)
    if shop is not None:
        return rename_shop(context, shop.shop_id, new_name)

    created = add_shop(context, new_name)
    log.info("Shop '%s' had no master record; created '%s' without touching bills", current_name, created.name)
    return RenameResult(
        outcome=RenameOutcome.MASTER_CREATED,
        shop_id=created.shop_id,
        old_name=current_name,
        new_name=created.name,
    )


# ---------------------------------------------------------------------------
# Export / import
# ---------------------------------------------------------------------------


def export_bundle(context: RuntimeContext, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Return every collection as a JSON-ready backup bundle."""
    bundle = {
        "bills": [data_manager.bill_to_dict(bill) for bill in context.store.bills.list()],
        "products": [data_manager.product_to_dict(product) for product in context.store.products.list()],
        "shops": [data_manager.shop_to_dict(shop) for shop in context.store.shops.list()],
        "exportDate": _resolve_timestamp(now).isoformat(),
    }
    log.info(
        "Exported %d bills, %d products, %d shops",
        len(bundle["bills"]),
        len(bundle["products"]),
        len(bundle["shops"]),
    )
    return bundle


def validate_import_bundle(payload: Any) -> Tuple[List[Bill], List[ProductMaster], List[ShopMaster]]:
    """Confirm a bundle is complete and parse every record.

    All three arrays must be present and be lists, every record must parse,
    and ids must be unique within each collection. Per-record master
    validation is not applied.

    Returns:
        tuple: Parsed bills, products and shops, with derived bill totals
            recomputed.

    Raises:
        ImportPayloadError: On any structural problem.
    """
    if not isinstance(payload, Mapping):
        raise ImportPayloadError("Import payload must be a JSON object")
    missing = [name for name in BUNDLE_COLLECTIONS if not isinstance(payload.get(name), list)]
    if missing:
        raise ImportPayloadError(f"Import payload is missing arrays: {', '.join(missing)}")

    try:
        bills = [recompute_derived_fields(data_manager.bill_from_dict(raw)) for raw in payload["bills"]]
        products = [data_manager.product_from_dict(raw) for raw in payload["products"]]
        shops = [data_manager.shop_from_dict(raw) for raw in payload["shops"]]
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ImportPayloadError(f"Malformed record in import payload: {exc}") from exc

    for name, ids in (
        ("bills", [bill.bill_id for bill in bills]),
        ("products", [product.product_id for product in products]),
        ("shops", [shop.shop_id for shop in shops]),
    ):
        if len(ids) != len(set(ids)):
            raise ImportPayloadError(f"Duplicate ids in '{name}'")
    return bills, products, shops


def import_bundle(context: RuntimeContext, payload: Any) -> Dict[str, int]:
    """Overwrite all three collections with the contents of ``payload``.

    The whole bundle is validated and parsed before the first write, so a
    malformed payload never leaves the store partially imported.

    Returns:
        dict[str, int]: Number of records imported per collection.

    Raises:
        ImportPayloadError: If the bundle is malformed.
    """
    bills, products, shops = validate_import_bundle(payload)

    for collection, records, key in (
        (context.store.bills, bills, repository.bill_key),
        (context.store.products, products, repository.product_key),
        (context.store.shops, shops, repository.shop_key),
    ):
        for existing in collection.list():
            collection.delete_by_id(key(existing))
        for record in records:
            collection.create(record)

    counts = {"bills": len(bills), "products": len(products), "shops": len(shops)}
    log.info("Imported bundle: %s", counts)
    return counts


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def prepare_extracted_bill(
    context: RuntimeContext,
    partial: PartialBill,
    *,
    timestamp: Optional[datetime] = None,
) -> ExtractedDraft:
    """Hydrate an extracted :class:`PartialBill` into a reviewable draft.

    Missing fields get neutral defaults (today's date, zero quantities) so
    the validator reports them instead of the draft being dropped. Nothing is
    persisted.
    """
    moment = _resolve_timestamp(timestamp)
    shops = context.store.shops.list()
    products = context.store.products.list()

    shop_name = partial.shop_name or ""
    matched = validation.match_shop(shop_name, shops)
    if matched is not None:
        shop_name = matched.name

    items = []
    for line in partial.items:
        quantity = line.quantity if line.quantity is not None else Decimal("0")
        retail_price = line.retail_price
        if retail_price is None:
            if line.total is not None and quantity:
                retail_price = data_manager.quantize_money(line.total / quantity)
            else:
                retail_price = Decimal("0")
        items.append(
            BillItem(
                item_id=generate_id("I"),
                product_name=line.product_name or "",
                retail_price=retail_price,
                quantity=quantity,
                total=Decimal("0"),
            )
        )

    bill = recompute_derived_fields(
        Bill(
            bill_id=generate_id("B"),
            shop_name=shop_name,
            invoice_number=partial.invoice_number or "",
            bill_date=partial.bill_date or moment.date().isoformat(),
            items=tuple(items),
            total_amount=Decimal("0"),
            created_at=moment.isoformat(),
        )
    )
    if partial.total_amount is not None and partial.total_amount != bill.total_amount:
        log.warning(
            "Extracted total %s differs from recomputed total %s",
            partial.total_amount,
            bill.total_amount,
        )
    return ExtractedDraft(bill=bill, validation=validation.validate_bill(bill, shops, products))


def extract_bill(
    context: RuntimeContext,
    image_bytes: bytes,
    extractor: BillExtractor,
    *,
    mime_type: str = "image/jpeg",
) -> ExtractedDraft:
    """Read an invoice image and return a validated draft bill."""
    partial = extractor.extract(
        image_bytes,
        [shop.name for shop in context.store.shops.list()],
        [product.name for product in context.store.products.list()],
        mime_type=mime_type,
    )
    return prepare_extracted_bill(context, partial)


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def _require_name(name: Optional[str], label: str) -> str:
    if name is None or not name.strip():
        log.error("%s is required", label)
        raise MissingFieldError(f"{label} is required")
    return name.strip()


def _require_unique_name(name: str, records: Sequence[Any], *, kind: str, ignore_id: Optional[str] = None) -> None:
    needle = name.casefold()
    for record in records:
        record_id = record.shop_id if kind == "shop" else record.product_id
        if record_id != ignore_id and record.name.casefold() == needle:
            log.error("%s name '%s' already exists", kind.capitalize(), name)
            raise DuplicateNameError(f"A {kind} named '{record.name}' already exists")
