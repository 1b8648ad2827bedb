"""Unit tests for cost resolution and the aggregation engine."""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_bill, make_item
from shop_ledger import analytics
from shop_ledger.data_manager import ProductMaster, ShopMaster


WIDGET = ProductMaster("P1", "Widget", Decimal("40"), Decimal("100"))
GADGET = ProductMaster("P2", "Gadget", Decimal("2"), Decimal("5"))
PRODUCTS = [WIDGET, GADGET]


# ---------------------------------------------------------------------------
# Cost resolution
# ---------------------------------------------------------------------------


def test_cost_of_matches_ignoring_case():
    assert analytics.cost_of("WIDGET", PRODUCTS) == Decimal("40")
    assert analytics.cost_of("widget", PRODUCTS) == Decimal("40")


def test_cost_of_unknown_product_is_zero():
    assert analytics.cost_of("Coke", PRODUCTS) == Decimal("0")
    assert analytics.cost_of("Widget", []) == Decimal("0")


def test_build_cost_index_first_entry_wins():
    duplicates = [
        ProductMaster("P1", "Widget", Decimal("40"), Decimal("100")),
        ProductMaster("P9", "widget", Decimal("99"), Decimal("100")),
    ]
    index = analytics.build_cost_index(duplicates)
    assert analytics.resolve_cost("Widget", index) == Decimal("40")
    assert analytics.cost_of("WIDGET", duplicates) == Decimal("40")


# ---------------------------------------------------------------------------
# calculate_analytics
# ---------------------------------------------------------------------------


def test_calculate_analytics_single_bill_profit_and_margin():
    bills = [make_bill("Acme", "2024-01-15", [make_item("Widget", "100", "10")])]
    report = analytics.calculate_analytics(bills, PRODUCTS)

    assert report.total_revenue == Decimal("1000")
    assert report.total_cost == Decimal("400")
    assert report.net_profit == Decimal("600")
    assert report.margin == Decimal("0.6")
    assert report.total_items_sold == Decimal("10")
    assert report.bill_count == 1


def test_calculate_analytics_empty_input_is_all_zero():
    report = analytics.calculate_analytics([], PRODUCTS)

    assert report.total_revenue == Decimal("0")
    assert report.total_cost == Decimal("0")
    assert report.net_profit == Decimal("0")
    assert report.margin == Decimal("0")
    assert report.shop_sales == ()
    assert report.product_sales == ()
    assert report.monthly_trend == ()


def test_calculate_analytics_zero_revenue_has_zero_margin():
    bills = [make_bill("Acme", "2024-01-15", [make_item("Widget", "0", "3")])]
    report = analytics.calculate_analytics(bills, PRODUCTS)
    assert report.total_revenue == Decimal("0")
    assert report.total_cost == Decimal("120")
    assert report.margin == Decimal("0")


def test_calculate_analytics_unknown_product_costs_nothing():
    bills = [make_bill("Acme", "2024-01-15", [make_item("Coke", "3", "4")])]
    report = analytics.calculate_analytics(bills, PRODUCTS)
    assert report.total_cost == Decimal("0")
    assert report.net_profit == Decimal("12")


def test_calculate_analytics_uses_current_cost_for_history():
    """Changing a product's cost changes the cost of every past bill."""

    bills = [make_bill("Acme", "2023-06-01", [make_item("Widget", "100", "1")])]
    cheaper = [ProductMaster("P1", "Widget", Decimal("10"), Decimal("100"))]
    assert analytics.calculate_analytics(bills, PRODUCTS).total_cost == Decimal("40")
    assert analytics.calculate_analytics(bills, cheaper).total_cost == Decimal("10")


def test_calculate_analytics_is_idempotent():
    bills = [
        make_bill("Acme", "2024-01-15", [make_item("Widget", "100", "2")], bill_id="B1"),
        make_bill("Beta", "2024-02-15", [make_item("Gadget", "5", "4")], bill_id="B2"),
    ]
    assert analytics.calculate_analytics(bills, PRODUCTS) == analytics.calculate_analytics(bills, PRODUCTS)


def test_calculate_analytics_date_filter_is_inclusive():
    bills = [
        make_bill("Acme", "2024-01-31", [make_item("Widget", "100", "1")]),
        make_bill("Acme", "2024-02-01", [make_item("Widget", "100", "2")]),
        make_bill("Acme", "2024-02-29", [make_item("Widget", "100", "3")]),
        make_bill("Acme", "2024-03-01", [make_item("Widget", "100", "4")]),
    ]
    report = analytics.calculate_analytics(bills, PRODUCTS, start_date="2024-02-01", end_date="2024-02-29")
    assert report.bill_count == 2
    assert report.total_revenue == Decimal("500")
    assert [point.month for point in report.monthly_trend] == ["2024-02"]


def test_calculate_analytics_shop_filter_is_exact():
    bills = [
        make_bill("Acme", "2024-01-15", [make_item("Widget", "100", "1")]),
        make_bill("acme", "2024-01-16", [make_item("Widget", "100", "1")]),
        make_bill("Beta", "2024-01-17", [make_item("Widget", "100", "1")]),
    ]
    report = analytics.calculate_analytics(bills, PRODUCTS, shop_filter="Acme")
    assert report.bill_count == 1
    assert analytics.calculate_analytics(bills, PRODUCTS, shop_filter=None).bill_count == 3


def test_calculate_analytics_rankings_are_descending():
    bills = [
        make_bill("Small", "2024-01-01", [make_item("Gadget", "5", "1")]),
        make_bill("Big", "2024-01-02", [make_item("Widget", "100", "1"), make_item("Gadget", "5", "6")]),
    ]
    report = analytics.calculate_analytics(bills, PRODUCTS)
    assert [entry.name for entry in report.shop_sales] == ["Big", "Small"]
    assert report.shop_sales[0].value == Decimal("130")
    assert [(entry.name, entry.value) for entry in report.product_sales] == [
        ("Gadget", Decimal("7")),
        ("Widget", Decimal("1")),
    ]


def test_calculate_analytics_ties_keep_first_seen_order():
    bills = [
        make_bill("First", "2024-01-01", [make_item("Widget", "100", "1")]),
        make_bill("Second", "2024-01-02", [make_item("Widget", "100", "1")]),
    ]
    report = analytics.calculate_analytics(bills, PRODUCTS)
    assert [entry.name for entry in report.shop_sales] == ["First", "Second"]


def test_top_products_limits_ranking():
    items = [make_item(f"Item {index}", "1", str(index + 1)) for index in range(7)]
    report = analytics.calculate_analytics([make_bill("Acme", "2024-01-01", items)], PRODUCTS)
    top = report.top_products()
    assert len(top) == 5
    assert top[0].name == "Item 6"
    assert len(report.top_products(2)) == 2


def test_monthly_trend_sorted_with_profit_per_line():
    bills = [
        make_bill("Acme", "2024-03-10", [make_item("Widget", "100", "1")]),
        make_bill("Acme", "2024-01-05", [make_item("Widget", "100", "2"), make_item("Coke", "3", "1")]),
        make_bill("Beta", "2024-01-20", [make_item("Gadget", "5", "2")]),
    ]
    report = analytics.calculate_analytics(bills, PRODUCTS)
    assert [point.month for point in report.monthly_trend] == ["2024-01", "2024-03"]
    january = report.monthly_trend[0]
    assert january.revenue == Decimal("213")
    # 200 - 80, 3 - 0, 10 - 4
    assert january.profit == Decimal("129")


def test_gross_profit_identity_holds():
    bills = [
        make_bill("Acme", "2024-01-05", [make_item("Widget", "95.50", "3"), make_item("Gadget", "4.25", "2")]),
        make_bill("Beta", "2024-02-05", [make_item("Coke", "1.10", "9")]),
    ]
    report = analytics.calculate_analytics(bills, PRODUCTS)
    assert report.gross_profit == report.total_revenue - report.total_cost


# ---------------------------------------------------------------------------
# Shop summaries and bill breakdown
# ---------------------------------------------------------------------------


def test_calculate_shop_summary_filters_to_one_shop():
    bills = [
        make_bill("Acme", "2024-01-15", [make_item("Widget", "100", "10")]),
        make_bill("Beta", "2024-01-16", [make_item("Widget", "100", "1")]),
    ]
    summary = analytics.calculate_shop_summary(bills, PRODUCTS, "Acme")
    assert summary == analytics.ShopSummary("Acme", Decimal("1000"), Decimal("600"), 1)


def test_calculate_shop_stats_includes_master_shops_without_bills():
    shops = [ShopMaster("S1", "Quiet"), ShopMaster("S2", "Acme")]
    bills = [
        make_bill("Acme", "2024-01-15", [make_item("Widget", "100", "1")]),
        make_bill("Legacy", "2024-01-16", [make_item("Gadget", "5", "1")]),
    ]
    stats = analytics.calculate_shop_stats(bills, PRODUCTS, shops)
    assert [summary.shop_name for summary in stats] == ["Acme", "Legacy", "Quiet"]
    quiet = stats[-1]
    assert quiet.total_revenue == Decimal("0")
    assert quiet.bill_count == 0
    assert stats[0].net_profit == Decimal("60")


def test_calculate_bill_financials_breaks_down_lines():
    bill = make_bill("Acme", "2024-01-15", [make_item("Widget", "100", "2"), make_item("Coke", "3", "1")])
    financials = analytics.calculate_bill_financials(bill, PRODUCTS)

    widget_line, coke_line = financials.lines
    assert widget_line.unit_cost == Decimal("40")
    assert widget_line.line_cost == Decimal("80")
    assert widget_line.line_profit == Decimal("120")
    assert coke_line.line_cost == Decimal("0")
    assert financials.total_cost == Decimal("80")
    assert financials.net_profit == Decimal("123")


@pytest.mark.parametrize("start, end, expected", [("2024-02-01", None, 1), (None, "2024-01-31", 1), (None, None, 2)])
def test_filter_bills_open_ended_bounds(start, end, expected):
    bills = [
        make_bill("Acme", "2024-01-15", [make_item("Widget", "1", "1")]),
        make_bill("Acme", "2024-02-15", [make_item("Widget", "1", "1")]),
    ]
    assert len(analytics.filter_bills(bills, start_date=start, end_date=end)) == expected
