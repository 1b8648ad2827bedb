"""Cost resolution and financial aggregation over recorded bills.

Everything here is a pure function of the bills and product master handed
in: no store access, no caching between calls. Running the same aggregation
twice over the same inputs yields identical reports.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from . import log
from .constants import DEFAULT_TOP_PRODUCTS
from .data_manager import Bill, BillItem, ProductMaster, ShopMaster


ZERO = Decimal("0")


@dataclass(frozen=True)
class RankedValue:
    """A named total used for shop and product rankings."""

    name: str
    value: Decimal


@dataclass(frozen=True)
class MonthlyPoint:
    """Revenue and profit accumulated for one ``YYYY-MM`` month."""

    month: str
    revenue: Decimal
    profit: Decimal


@dataclass(frozen=True)
class AnalyticsReport:
    """Financial metrics derived from a filtered set of bills."""

    total_revenue: Decimal
    total_cost: Decimal
    gross_profit: Decimal
    margin: Decimal
    total_items_sold: Decimal
    bill_count: int
    shop_sales: Tuple[RankedValue, ...]
    product_sales: Tuple[RankedValue, ...]
    monthly_trend: Tuple[MonthlyPoint, ...]

    @property
    def net_profit(self) -> Decimal:
        # No operating-expense layer exists, so net equals gross.
        return self.gross_profit

    def top_products(self, limit: int = DEFAULT_TOP_PRODUCTS) -> Tuple[RankedValue, ...]:
        """Return the ``limit`` best-selling products by quantity."""

        return self.product_sales[:limit]


@dataclass(frozen=True)
class ShopSummary:
    """Revenue, profit and bill count for a single shop."""

    shop_name: str
    total_revenue: Decimal
    gross_profit: Decimal
    bill_count: int

    @property
    def net_profit(self) -> Decimal:
        return self.gross_profit


@dataclass(frozen=True)
class BillLineFinancials:
    """Manufacturing cost and profit of one bill line."""

    item: BillItem
    unit_cost: Decimal
    line_cost: Decimal
    line_profit: Decimal


@dataclass(frozen=True)
class BillFinancials:
    """Profit breakdown for a single bill."""

    bill_id: str
    lines: Tuple[BillLineFinancials, ...]
    total_cost: Decimal
    net_profit: Decimal


def cost_of(product_name: str, products: Iterable[ProductMaster]) -> Decimal:
    """Resolve a product's manufacturing cost by name, ignoring case.

    Unknown products cost zero. A miss is deliberately not an error so that
    analytics keep working against an incomplete catalog.

    Args:
        product_name (str): Name recorded on a bill line.
        products (Iterable[ProductMaster]): Current product master list.

    Returns:
        Decimal: The first matching product's ``manufacturing_cost`` or zero.
    """

    needle = product_name.casefold()
    for product in products:
        if product.name.casefold() == needle:
            return product.manufacturing_cost
    log.debug("No manufacturing cost for product '%s'; using zero", product_name)
    return ZERO


def build_cost_index(products: Iterable[ProductMaster]) -> Dict[str, Decimal]:
    """Map case-folded product names to cost; the first entry of a name wins."""

    index: Dict[str, Decimal] = {}
    for product in products:
        index.setdefault(product.name.casefold(), product.manufacturing_cost)
    return index


def resolve_cost(product_name: str, cost_index: Mapping[str, Decimal]) -> Decimal:
    """Look ``product_name`` up in an index built by :func:`build_cost_index`."""

    return cost_index.get(product_name.casefold(), ZERO)


def filter_bills(
    bills: Iterable[Bill],
    *,
    shop_filter: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> List[Bill]:
    """Apply the shop filter, then the inclusive date bounds.

    Dates are compared as ``YYYY-MM-DD`` strings, which orders them
    chronologically. ``None`` disables the corresponding filter.
    """

    filtered = list(bills)
    if shop_filter is not None:
        filtered = [bill for bill in filtered if bill.shop_name == shop_filter]
    if start_date:
        filtered = [bill for bill in filtered if bill.bill_date >= start_date]
    if end_date:
        filtered = [bill for bill in filtered if bill.bill_date <= end_date]
    return filtered


def calculate_analytics(
    bills: Iterable[Bill],
    products: Iterable[ProductMaster],
    *,
    shop_filter: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> AnalyticsReport:
    """Compute revenue, cost, profit, margin and breakdowns for a bill set.

    Revenue comes from each bill's ``total_amount``; cost is the resolved
    manufacturing cost times quantity for every line. Monthly profit is
    accumulated per line as ``item.total - line cost``. Rankings keep the
    first-seen order when values tie.

    Args:
        bills (Iterable[Bill]): Full bill collection.
        products (Iterable[ProductMaster]): Product master used for costs.
        shop_filter (str | None): Exact shop name, or ``None`` for all shops.
        start_date (str | None): Inclusive lower bound, ``YYYY-MM-DD``.
        end_date (str | None): Inclusive upper bound, ``YYYY-MM-DD``.

    Returns:
        AnalyticsReport: All-zero metrics with empty breakdowns when no bill
            survives the filters.
    """

    cost_index = build_cost_index(products)
    selected = filter_bills(bills, shop_filter=shop_filter, start_date=start_date, end_date=end_date)

    total_revenue = ZERO
    total_cost = ZERO
    total_items_sold = ZERO
    shop_sales: Dict[str, Decimal] = defaultdict(Decimal)
    product_sales: Dict[str, Decimal] = defaultdict(Decimal)
    monthly_revenue: Dict[str, Decimal] = defaultdict(Decimal)
    monthly_profit: Dict[str, Decimal] = defaultdict(Decimal)

    for bill in selected:
        total_revenue += bill.total_amount
        shop_sales[bill.shop_name] += bill.total_amount

        month_key = bill.bill_date[0:7]
        monthly_revenue[month_key] += bill.total_amount

        for item in bill.items:
            total_items_sold += item.quantity
            item_cost = resolve_cost(item.product_name, cost_index) * item.quantity
            total_cost += item_cost
            monthly_profit[month_key] += item.total - item_cost
            product_sales[item.product_name] += item.quantity

    gross_profit = total_revenue - total_cost
    margin = gross_profit / total_revenue if total_revenue > ZERO else ZERO

    report = AnalyticsReport(
        total_revenue=total_revenue,
        total_cost=total_cost,
        gross_profit=gross_profit,
        margin=margin,
        total_items_sold=total_items_sold,
        bill_count=len(selected),
        shop_sales=_rank(shop_sales),
        product_sales=_rank(product_sales),
        monthly_trend=tuple(
            MonthlyPoint(month=month, revenue=monthly_revenue[month], profit=monthly_profit[month])
            for month in sorted(monthly_revenue)
        ),
    )
    log.debug(
        "Aggregated %d bills: revenue=%s cost=%s profit=%s",
        report.bill_count,
        total_revenue,
        total_cost,
        gross_profit,
    )
    return report


def calculate_shop_summary(
    bills: Iterable[Bill],
    products: Iterable[ProductMaster],
    shop_name: str,
    *,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
) -> ShopSummary:
    """Aggregate the bills of one shop into a :class:`ShopSummary`."""

    report = calculate_analytics(
        bills,
        products,
        shop_filter=shop_name,
        start_date=start_date,
        end_date=end_date,
    )
    return ShopSummary(
        shop_name=shop_name,
        total_revenue=report.total_revenue,
        gross_profit=report.gross_profit,
        bill_count=report.bill_count,
    )


def calculate_shop_stats(
    bills: Iterable[Bill],
    products: Iterable[ProductMaster],
    shops: Iterable[ShopMaster],
) -> List[ShopSummary]:
    """Summarize every shop, known or only seen on bills.

    Shops from the master list start at zero so they appear even without
    bills; names that only occur on bills are added as they are met. The
    result is ordered by revenue, highest first.
    """

    cost_index = build_cost_index(products)
    revenue: Dict[str, Decimal] = defaultdict(Decimal)
    profit: Dict[str, Decimal] = defaultdict(Decimal)
    counts: Dict[str, int] = defaultdict(int)

    for shop in shops:
        revenue.setdefault(shop.name, ZERO)

    for bill in bills:
        name = bill.shop_name
        revenue[name] += bill.total_amount
        counts[name] += 1
        bill_profit = ZERO
        for item in bill.items:
            bill_profit += item.total - resolve_cost(item.product_name, cost_index) * item.quantity
        profit[name] += bill_profit

    summaries = [
        ShopSummary(shop_name=name, total_revenue=revenue[name], gross_profit=profit[name], bill_count=counts[name])
        for name in revenue
    ]
    return sorted(summaries, key=lambda summary: summary.total_revenue, reverse=True)


def calculate_bill_financials(bill: Bill, products: Iterable[ProductMaster]) -> BillFinancials:
    """Break a single bill down into per-line cost and profit."""

    cost_index = build_cost_index(products)
    lines = []
    for item in bill.items:
        unit_cost = resolve_cost(item.product_name, cost_index)
        line_cost = unit_cost * item.quantity
        lines.append(
            BillLineFinancials(
                item=item,
                unit_cost=unit_cost,
                line_cost=line_cost,
                line_profit=item.total - line_cost,
            )
        )
    total_cost = sum((line.line_cost for line in lines), ZERO)
    return BillFinancials(
        bill_id=bill.bill_id,
        lines=tuple(lines),
        total_cost=total_cost,
        net_profit=bill.total_amount - total_cost,
    )


def _rank(totals: Mapping[str, Decimal]) -> Tuple[RankedValue, ...]:
    ranked = sorted(totals.items(), key=lambda entry: entry[1], reverse=True)
    return tuple(RankedValue(name=name, value=value) for name, value in ranked)
