"""Unit tests for the master validator."""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_bill, make_item
from shop_ledger import validation
from shop_ledger.constants import ValidationErrorKind
from shop_ledger.data_manager import ProductMaster, ShopMaster


SHOPS = [ShopMaster("S1", "Acme"), ShopMaster("S2", "Beta Stores")]
PRODUCTS = [
    ProductMaster("P1", "Widget", Decimal("40"), Decimal("100")),
    ProductMaster("P2", "Gadget", Decimal("2"), Decimal("5")),
]


# ---------------------------------------------------------------------------
# Shop checks
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("name", ["Acme", "acme", "ACME", "beta stores"])
def test_validate_shop_matches_ignoring_case(name):
    assert validation.validate_shop(name, SHOPS).ok


@pytest.mark.parametrize("name", [None, "", "   "])
def test_validate_shop_reports_blank_name_as_missing_field(name):
    result = validation.validate_shop(name, SHOPS)
    assert result.kinds() == (ValidationErrorKind.MISSING_REQUIRED_FIELD,)
    assert result.issues[0].field == "shop_name"


def test_validate_shop_reports_unknown_shop():
    result = validation.validate_shop("Unknown Shop Co", SHOPS)
    assert result.kinds() == (ValidationErrorKind.UNKNOWN_SHOP,)
    assert result.issues[0].value == "Unknown Shop Co"


def test_validate_shop_accepts_unknown_shop_after_master_added():
    shops = list(SHOPS)
    assert validation.validate_shop("Unknown Shop Co", shops).kinds() == (ValidationErrorKind.UNKNOWN_SHOP,)

    shops.append(ShopMaster("S3", "unknown shop co"))
    assert validation.validate_shop("Unknown Shop Co", shops).ok


def test_match_shop_ignores_surrounding_whitespace():
    assert validation.match_shop("  Acme ", SHOPS) == ShopMaster("S1", "Acme")


def test_validate_shop_with_empty_master_rejects_everything():
    assert validation.validate_shop("Acme", []).kinds() == (ValidationErrorKind.UNKNOWN_SHOP,)


def test_match_shop_returns_stored_record():
    assert validation.match_shop("aCmE", SHOPS) == ShopMaster("S1", "Acme")
    assert validation.match_shop("  ", SHOPS) is None
    assert validation.match_shop("Gamma", SHOPS) is None


def test_match_shop_first_entry_wins_on_case_collision():
    shops = [ShopMaster("S1", "ACME"), ShopMaster("S2", "acme")]
    assert validation.match_shop("Acme", shops).shop_id == "S1"


# ---------------------------------------------------------------------------
# Item checks
# ---------------------------------------------------------------------------


def test_validate_items_requires_at_least_one_item():
    assert validation.validate_items([], PRODUCTS).kinds() == (ValidationErrorKind.NO_ITEMS,)


def test_validate_items_is_case_sensitive():
    """Product resolution at validation time is an exact match."""

    result = validation.validate_items([make_item("widget", "1", "1")], PRODUCTS)
    assert result.kinds() == (ValidationErrorKind.UNKNOWN_PRODUCT,)


def test_validate_items_reports_every_unknown_line():
    items = [make_item("Widget", "1", "1"), make_item("Coke", "1", "1"), make_item("Pepsi", "1", "1")]
    result = validation.validate_items(items, PRODUCTS)
    assert [issue.field for issue in result.issues] == ["items[1].product_name", "items[2].product_name"]
    assert [issue.value for issue in result.issues] == ["Coke", "Pepsi"]


def test_validate_item_values_rejects_negative_price_and_zero_quantity():
    result = validation.validate_item_values([make_item("Widget", "-1", "0")])
    assert result.kinds() == (ValidationErrorKind.INVALID_VALUE, ValidationErrorKind.INVALID_VALUE)


def test_validate_item_values_allows_zero_price():
    assert validation.validate_item_values([make_item("Widget", "0", "1")]).ok


# ---------------------------------------------------------------------------
# Date checks
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("value", ["", None])
def test_validate_bill_date_requires_value(value):
    assert validation.validate_bill_date(value).kinds() == (ValidationErrorKind.MISSING_REQUIRED_FIELD,)


@pytest.mark.parametrize("value", ["15/01/2024", "2024-1-5", "20240115", "2024-02-30"])
def test_validate_bill_date_rejects_non_iso_dates(value):
    assert validation.validate_bill_date(value).kinds() == (ValidationErrorKind.INVALID_VALUE,)


def test_validate_bill_date_accepts_iso_date():
    assert validation.validate_bill_date("2024-02-29").ok


# ---------------------------------------------------------------------------
# Whole bill
# ---------------------------------------------------------------------------


def test_validate_bill_accepts_valid_bill():
    bill = make_bill("acme", "2024-01-15", [make_item("Widget", "100", "1")])
    assert validation.validate_bill(bill, SHOPS, PRODUCTS).ok


def test_validate_bill_reports_shop_and_product_issues_together():
    """Both problems are reported whatever order the checks run in."""

    bill = make_bill("Unknown Shop Co", "2024-01-15", [make_item("Coke", "1", "1")])
    kinds = set(validation.validate_bill(bill, SHOPS, PRODUCTS).kinds())
    assert kinds == {ValidationErrorKind.UNKNOWN_SHOP, ValidationErrorKind.UNKNOWN_PRODUCT}


def test_validate_bill_with_no_items_and_blank_shop():
    bill = make_bill("", "2024-01-15", [])
    kinds = validation.validate_bill(bill, SHOPS, PRODUCTS).kinds()
    assert ValidationErrorKind.MISSING_REQUIRED_FIELD in kinds
    assert ValidationErrorKind.NO_ITEMS in kinds


def test_validation_result_merge_concatenates_issues():
    first = validation.validate_shop("", SHOPS)
    second = validation.validate_items([], PRODUCTS)
    merged = first.merge(second)
    assert merged.kinds() == (ValidationErrorKind.MISSING_REQUIRED_FIELD, ValidationErrorKind.NO_ITEMS)
    assert validation.VALID.merge(validation.VALID).ok
