"""View renderer for the produce ledger.

Turns derivation results into presentational structures: list items, stock
cards, headline figures and a month grid. The functions here never touch the
ledger store; they take plain data and return frozen dataclasses that any
front-end (the CLI, a web template) can lay out as it sees fit.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .constants import LedgerFilter, Product, SortKey, TransactionType, ViewFilter
from .derivation import (
    DayActivity,
    InventoryEntry,
    LedgerTotals,
    bucket_by_month,
    compute_inventory,
    compute_totals,
    filter_and_sort,
    in_stock,
    recent_purchases,
)
from .ledger import TransactionRecord

CENTS = Decimal("0.01")
WEEKDAY_HEADERS: Tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
EMPTY_LIST_TITLE = "No transactions found"


@dataclass(frozen=True)
class EmptyState:
    title: Optional[str]
    message: str


@dataclass(frozen=True)
class TransactionItem:
    """One row of the transaction list."""

    id: int
    type: TransactionType
    title: str
    date_label: str
    quantity_label: str
    price_label: str
    total_label: str


@dataclass(frozen=True)
class TransactionListView:
    items: Tuple[TransactionItem, ...]
    empty_state: Optional[EmptyState]


@dataclass(frozen=True)
class InventoryCard:
    product: Product
    name: str
    balance_label: str
    unit_label: str


@dataclass(frozen=True)
class InventoryView:
    cards: Tuple[InventoryCard, ...]
    empty_state: Optional[EmptyState]


@dataclass(frozen=True)
class StatsView:
    purchase_total: str
    sale_total: str
    profit: str


@dataclass(frozen=True)
class CalendarCell:
    """A day of the month grid; blank leading cells are ``None`` in the grid."""

    day: int
    is_today: bool
    purchase_count: int
    sale_count: int

    @property
    def has_transactions(self) -> bool:
        return self.purchase_count > 0 or self.sale_count > 0


@dataclass(frozen=True)
class CalendarView:
    year: int
    month: int
    title: str
    headers: Tuple[str, ...]
    cells: Tuple[Optional[CalendarCell], ...]

    def weeks(self) -> List[Tuple[Optional[CalendarCell], ...]]:
        """Split the grid into rows of seven, padding the last row with blanks."""

        padded = self.cells + (None,) * (-len(self.cells) % 7)
        return [padded[index:index + 7] for index in range(0, len(padded), 7)]


@dataclass(frozen=True)
class Dashboard:
    transactions: TransactionListView
    inventory: InventoryView
    recent_purchases: TransactionListView
    stats: StatsView
    calendar: CalendarView


def round_cents(value: Decimal) -> Decimal:
    """Round to two places with ``ROUND_HALF_UP`` at any magnitude.

    The working precision grows with the value so ``quantize`` never runs
    out of digits on very large totals.
    """

    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + 3)
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def format_money(value: Decimal, currency: str) -> str:
    return f"{round_cents(value)} {currency}"


def format_quantity(value: Decimal) -> str:
    """Drop trailing zeros so ``Decimal("10.0")`` reads as ``10``."""

    return format(value.normalize(), "f")


def format_date(value: date) -> str:
    return value.strftime("%d.%m.%Y")


def empty_list_message(active_filter: LedgerFilter) -> str:
    if active_filter is ViewFilter.PURCHASE:
        return "You have no purchases"
    if active_filter is ViewFilter.SALE:
        return "You have no sales"
    return "Add your first transaction!"


def render_transaction(record: TransactionRecord, currency: str) -> TransactionItem:
    sign = "-" if record.type is TransactionType.PURCHASE else "+"
    unit_label = record.unit.label
    return TransactionItem(
        id=record.id,
        type=record.type,
        title=f"{record.type.label}: {record.product.label}",
        date_label=format_date(record.date),
        quantity_label=f"{format_quantity(record.amount)} {unit_label}",
        price_label=f"Price: {format_quantity(record.price)} {currency}/{unit_label}",
        total_label=f"{sign}{format_money(record.total, currency)}",
    )


def render_transaction_list(
    records: Sequence[TransactionRecord],
    active_filter: LedgerFilter,
    currency: str,
) -> TransactionListView:
    """Render an already filtered and sorted list, with an empty state keyed by filter."""

    if not records:
        return TransactionListView(
            items=(),
            empty_state=EmptyState(EMPTY_LIST_TITLE, empty_list_message(active_filter)),
        )
    return TransactionListView(
        items=tuple(render_transaction(record, currency) for record in records),
        empty_state=None,
    )


def render_recent_purchases(records: Sequence[TransactionRecord], currency: str) -> TransactionListView:
    if not records:
        return TransactionListView(items=(), empty_state=EmptyState(EMPTY_LIST_TITLE, "Add your first purchase!"))
    return TransactionListView(
        items=tuple(render_transaction(record, currency) for record in records),
        empty_state=None,
    )


def render_inventory(inventory: Dict[Product, InventoryEntry]) -> InventoryView:
    """Build stock cards for products that are actually on hand."""

    cards = tuple(
        InventoryCard(
            product=product,
            name=product.label,
            balance_label=str(round_cents(entry.balance)),
            unit_label=entry.unit.label,
        )
        for product, entry in in_stock(inventory).items()
    )
    if not cards:
        return InventoryView(cards=(), empty_state=EmptyState(None, "No goods in stock"))
    return InventoryView(cards=cards, empty_state=None)


def render_stats(totals: LedgerTotals, currency: str) -> StatsView:
    return StatsView(
        purchase_total=format_money(totals.purchase_total, currency),
        sale_total=format_money(totals.sale_total, currency),
        profit=format_money(totals.profit, currency),
    )


def build_calendar(
    buckets: Dict[int, DayActivity],
    year: int,
    month: int,
    *,
    today: Optional[date] = None,
) -> CalendarView:
    """Lay the day buckets of one month out on a Monday-first grid.

    Leading ``None`` cells pad the grid up to the weekday of the 1st. Days
    without activity get zero counts.
    """

    first_weekday, days_in_month = calendar.monthrange(year, month)
    cells: List[Optional[CalendarCell]] = [None] * first_weekday
    empty = DayActivity(purchase_count=0, sale_count=0)
    for day in range(1, days_in_month + 1):
        activity = buckets.get(day, empty)
        cells.append(
            CalendarCell(
                day=day,
                is_today=today is not None and today == date(year, month, day),
                purchase_count=activity.purchase_count,
                sale_count=activity.sale_count,
            )
        )
    return CalendarView(
        year=year,
        month=month,
        title=f"{calendar.month_name[month]} {year}",
        headers=WEEKDAY_HEADERS,
        cells=tuple(cells),
    )


def render_calendar(
    records: Iterable[TransactionRecord],
    year: int,
    month: int,
    *,
    today: Optional[date] = None,
) -> CalendarView:
    return build_calendar(bucket_by_month(records, year, month), year, month, today=today)


def render_dashboard(
    records: Sequence[TransactionRecord],
    *,
    active_filter: LedgerFilter,
    sort_key: SortKey,
    year: int,
    month: int,
    currency: str,
    today: Optional[date] = None,
) -> Dashboard:
    """Derive and render every panel from one ledger snapshot."""

    visible = filter_and_sort(records, active_filter, sort_key)
    return Dashboard(
        transactions=render_transaction_list(visible, active_filter, currency),
        inventory=render_inventory(compute_inventory(records)),
        recent_purchases=render_recent_purchases(recent_purchases(records), currency),
        stats=render_stats(compute_totals(records), currency),
        calendar=render_calendar(records, year, month, today=today),
    )
