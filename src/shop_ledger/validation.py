"""Master validation for bills.

Bills reference shops and products by name rather than by id, so every write
boundary has to confirm those names resolve against the current master
lists. The checks here are pure: they return a :class:`ValidationResult`
describing every problem found and never touch the store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Sequence, Tuple

from . import log
from .constants import ValidationErrorKind
from .data_manager import Bill, BillItem, ProductMaster, ShopMaster


@dataclass(frozen=True)
class ValidationIssue:
    """A single reason a bill cannot be saved."""

    kind: ValidationErrorKind
    field: str
    value: Optional[str]
    message: str


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a validation pass; ``ok`` when no issues were recorded."""

    issues: Tuple[ValidationIssue, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.issues

    def kinds(self) -> Tuple[ValidationErrorKind, ...]:
        return tuple(issue.kind for issue in self.issues)

    def merge(self, *others: "ValidationResult") -> "ValidationResult":
        combined = list(self.issues)
        for other in others:
            combined.extend(other.issues)
        return ValidationResult(tuple(combined))


VALID = ValidationResult()


def match_shop(shop_name: str, shops: Iterable[ShopMaster]) -> Optional[ShopMaster]:
    """Return the first shop whose name equals ``shop_name`` ignoring case and padding."""

    if not shop_name.strip():
        return None
    needle = shop_name.strip().casefold()
    for shop in shops:
        if shop.name.casefold() == needle:
            return shop
    return None


def validate_shop(shop_name: Optional[str], shops: Iterable[ShopMaster]) -> ValidationResult:
    """Check that a bill's shop name resolves to a master record.

    A blank name is reported as a missing required field, distinct from a
    name that simply has no master entry.

    Args:
        shop_name (str | None): Shop name as typed or extracted.
        shops (Iterable[ShopMaster]): Current shop master list.

    Returns:
        ValidationResult: Empty when a shop matches case-insensitively.
    """

    if shop_name is None or not shop_name.strip():
        return ValidationResult((
            ValidationIssue(
                kind=ValidationErrorKind.MISSING_REQUIRED_FIELD,
                field="shop_name",
                value=shop_name,
                message="Shop name is required",
            ),
        ))
    if match_shop(shop_name, shops) is None:
        log.warning("Shop '%s' is not in the shop master list", shop_name)
        return ValidationResult((
            ValidationIssue(
                kind=ValidationErrorKind.UNKNOWN_SHOP,
                field="shop_name",
                value=shop_name,
                message=f"Unknown shop: {shop_name}",
            ),
        ))
    return VALID


def validate_items(items: Sequence[BillItem], products: Iterable[ProductMaster]) -> ValidationResult:
    """Check that a bill has items and each names a known product.

    Product resolution is an exact, case-sensitive match on
    :attr:`ProductMaster.name`; every unresolved item yields its own issue so
    the caller can point at the offending line.

    Args:
        items (Sequence[BillItem]): Line items of the candidate bill.
        products (Iterable[ProductMaster]): Current product master list.

    Returns:
        ValidationResult: Empty when every item resolves.
    """

    if not items:
        return ValidationResult((
            ValidationIssue(
                kind=ValidationErrorKind.NO_ITEMS,
                field="items",
                value=None,
                message="At least one item is required",
            ),
        ))

    known = {product.name for product in products}
    issues = []
    for index, item in enumerate(items):
        if item.product_name not in known:
            log.warning("Item %d references unknown product '%s'", index, item.product_name)
            issues.append(
                ValidationIssue(
                    kind=ValidationErrorKind.UNKNOWN_PRODUCT,
                    field=f"items[{index}].product_name",
                    value=item.product_name,
                    message=f"Unknown product: {item.product_name}",
                )
            )
    return ValidationResult(tuple(issues))


def validate_item_values(items: Sequence[BillItem]) -> ValidationResult:
    """Reject negative prices and non-positive quantities."""

    issues = []
    for index, item in enumerate(items):
        if item.retail_price < Decimal("0"):
            issues.append(
                ValidationIssue(
                    kind=ValidationErrorKind.INVALID_VALUE,
                    field=f"items[{index}].retail_price",
                    value=str(item.retail_price),
                    message="Retail price must be zero or positive",
                )
            )
        if item.quantity <= Decimal("0"):
            issues.append(
                ValidationIssue(
                    kind=ValidationErrorKind.INVALID_VALUE,
                    field=f"items[{index}].quantity",
                    value=str(item.quantity),
                    message="Quantity must be greater than zero",
                )
            )
    return ValidationResult(tuple(issues))


def validate_bill_date(bill_date: Optional[str]) -> ValidationResult:
    """Require an ISO ``YYYY-MM-DD`` date."""

    if bill_date is None or not bill_date.strip():
        return ValidationResult((
            ValidationIssue(
                kind=ValidationErrorKind.MISSING_REQUIRED_FIELD,
                field="bill_date",
                value=bill_date,
                message="Bill date is required",
            ),
        ))
    try:
        parsed = date.fromisoformat(bill_date)
    except ValueError:
        parsed = None
    # fromisoformat also accepts compact forms like 20240115
    if parsed is None or parsed.isoformat() != bill_date:
        return ValidationResult((
            ValidationIssue(
                kind=ValidationErrorKind.INVALID_VALUE,
                field="bill_date",
                value=bill_date,
                message="Bill date must use the YYYY-MM-DD format",
            ),
        ))
    return VALID


def validate_bill(bill: Bill, shops: Iterable[ShopMaster], products: Iterable[ProductMaster]) -> ValidationResult:
    """Run every check a bill must pass before it is persisted."""

    result = validate_shop(bill.shop_name, shops).merge(
        validate_bill_date(bill.bill_date),
        validate_items(bill.items, products),
        validate_item_values(bill.items),
    )
    if not result.ok:
        log.debug("Bill '%s' failed validation: %s", bill.bill_id, [kind.value for kind in result.kinds()])
    return result
