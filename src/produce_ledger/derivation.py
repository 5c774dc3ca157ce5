"""Derivation engine for the produce ledger.

Every function in this module is pure: it receives a snapshot of ledger
records plus parameters and returns fresh data structures, never mutating
its input. Results are recomputed from scratch on each call so there is no
accumulator that can drift away from the ledger contents.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Sequence

from . import log
from .constants import LedgerFilter, Product, SortKey, TransactionType, Unit, ViewFilter, parse_filter
from .ledger import TransactionRecord

ZERO = Decimal("0")
RECENT_PURCHASES_LIMIT = 10


@dataclass(frozen=True)
class InventoryEntry:
    """Running stock and money totals for one product."""

    balance: Decimal
    unit: Unit
    purchase_total: Decimal
    sale_total: Decimal


@dataclass(frozen=True)
class LedgerTotals:
    """Aggregate money flow over the whole ledger."""

    purchase_total: Decimal
    sale_total: Decimal
    profit: Decimal


@dataclass(frozen=True)
class DayActivity:
    """Number of purchases and sales recorded on one calendar day."""

    purchase_count: int
    sale_count: int

    @property
    def total_count(self) -> int:
        return self.purchase_count + self.sale_count


def _matches(record: TransactionRecord, active_filter: LedgerFilter) -> bool:
    if active_filter is ViewFilter.ALL:
        return True
    if active_filter is ViewFilter.PURCHASE:
        return record.type is TransactionType.PURCHASE
    if active_filter is ViewFilter.SALE:
        return record.type is TransactionType.SALE
    return record.product is active_filter


_SORTERS: Dict[SortKey, tuple[Callable[[TransactionRecord], object], bool]] = {
    SortKey.NEWEST: (lambda record: record.created_at, True),
    SortKey.OLDEST: (lambda record: record.created_at, False),
    SortKey.AMOUNT_DESC: (lambda record: record.amount, True),
    SortKey.PRICE_DESC: (lambda record: record.price, True),
}


def filter_and_sort(
    records: Iterable[TransactionRecord],
    active_filter: LedgerFilter = ViewFilter.ALL,
    sort_key: SortKey = SortKey.NEWEST,
) -> List[TransactionRecord]:
    """Return the transactions matching ``active_filter`` in ``sort_key`` order.

    Filtering keeps the original relative order of the surviving records.
    The sort is stable in both directions, so records with equal keys keep
    that relative order too. An empty result is a normal outcome.

    Args:
        records (Iterable[TransactionRecord]): Ledger snapshot.
        active_filter (ViewFilter | Product | str): ``ViewFilter.ALL`` keeps
            every record, ``PURCHASE``/``SALE`` match on type and a
            ``Product`` matches on the product key. String keys such as
            ``"cherry"`` are resolved with :func:`parse_filter`.
        sort_key (SortKey): ``NEWEST``/``OLDEST`` order by ``created_at``;
            ``AMOUNT_DESC``/``PRICE_DESC`` order by quantity or unit price,
            largest first.

    Returns:
        list[TransactionRecord]: New list; the input is not modified.

    Raises:
        ValueError: If ``active_filter`` names neither a view filter nor a
            product, or ``sort_key`` does not name a :class:`SortKey`.
    """

    active_filter = parse_filter(active_filter)
    key, descending = _SORTERS[SortKey(sort_key)]
    matching = [record for record in records if _matches(record, active_filter)]
    # sorted(reverse=True) keeps equal elements in their original order.
    return sorted(matching, key=key, reverse=descending)


def compute_inventory(records: Iterable[TransactionRecord]) -> Dict[Product, InventoryEntry]:
    """Derive per-product balances and money totals.

    The balance is purchases minus sales and may go negative when more was
    sold than bought. The unit reported for a product is the unit of the last
    transaction seen for it; mixed units are not reconciled. Products appear
    in the order they are first seen, including those with zero balance.
    """

    balances: Dict[Product, Decimal] = {}
    units: Dict[Product, Unit] = {}
    purchases: Dict[Product, Decimal] = {}
    sales: Dict[Product, Decimal] = {}

    for record in records:
        product = record.product
        balances.setdefault(product, ZERO)
        purchases.setdefault(product, ZERO)
        sales.setdefault(product, ZERO)
        units[product] = record.unit
        if record.type is TransactionType.PURCHASE:
            balances[product] += record.amount
            purchases[product] += record.total
        else:
            balances[product] -= record.amount
            sales[product] += record.total

    inventory = {
        product: InventoryEntry(
            balance=balances[product],
            unit=units[product],
            purchase_total=purchases[product],
            sale_total=sales[product],
        )
        for product in balances
    }
    log.debug("Calculated inventory for %d products", len(inventory))
    return inventory


def in_stock(inventory: Dict[Product, InventoryEntry]) -> Dict[Product, InventoryEntry]:
    """Keep only products with a strictly positive balance."""

    return {product: entry for product, entry in inventory.items() if entry.balance > ZERO}


def compute_totals(records: Iterable[TransactionRecord]) -> LedgerTotals:
    """Sum purchase and sale totals and derive profit as sales minus purchases."""

    purchase_total = ZERO
    sale_total = ZERO
    for record in records:
        if record.type is TransactionType.PURCHASE:
            purchase_total += record.total
        else:
            sale_total += record.total
    totals = LedgerTotals(
        purchase_total=purchase_total,
        sale_total=sale_total,
        profit=sale_total - purchase_total,
    )
    log.debug(
        "Calculated totals: purchases=%s sales=%s profit=%s",
        totals.purchase_total,
        totals.sale_total,
        totals.profit,
    )
    return totals


def bucket_by_month(records: Iterable[TransactionRecord], year: int, month: int) -> Dict[int, DayActivity]:
    """Count purchases and sales per day of the given month.

    Records are matched on their business ``date``, not on ``created_at``.
    Days without activity are absent from the result.

    Raises:
        ValueError: If ``month`` is outside 1..12.
    """

    if not 1 <= month <= 12:
        raise ValueError(f"Month must be between 1 and 12, got {month}")

    counts: Dict[int, List[int]] = {}
    for record in records:
        if record.date.year != year or record.date.month != month:
            continue
        day_counts = counts.setdefault(record.date.day, [0, 0])
        if record.type is TransactionType.PURCHASE:
            day_counts[0] += 1
        else:
            day_counts[1] += 1

    return {
        day: DayActivity(purchase_count=purchase_count, sale_count=sale_count)
        for day, (purchase_count, sale_count) in sorted(counts.items())
    }


def recent_purchases(records: Sequence[TransactionRecord], limit: int = RECENT_PURCHASES_LIMIT) -> List[TransactionRecord]:
    """Return the newest purchases by ``created_at``, at most ``limit`` of them."""

    return filter_and_sort(records, ViewFilter.PURCHASE, SortKey.NEWEST)[:limit]


__all__ = [
    "DayActivity",
    "InventoryEntry",
    "LedgerTotals",
    "bucket_by_month",
    "compute_inventory",
    "compute_totals",
    "filter_and_sort",
    "in_stock",
    "recent_purchases",
]
