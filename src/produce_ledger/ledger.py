"""Ledger store for the produce ledger.

The ledger is the only mutable state in the application: an ordered,
append-mostly list of :class:`TransactionRecord` entries owned by one
session. Every other component reads a snapshot from :class:`LedgerStore`
and derives its own view without side effects.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from . import log
from .constants import Product, TransactionType, Unit


class LedgerError(Exception):
    """Base class for errors raised by the produce ledger."""


class ValidationError(LedgerError, ValueError):
    """Raised when user input or a record violates a ledger constraint."""


@dataclass(frozen=True)
class TransactionRecord:
    """A single purchase or sale entry.

    ``total`` is stored denormalized and never recomputed after creation.
    ``date`` is the business date chosen by the user while ``created_at``
    records when the entry was made and drives recency ordering.
    """

    id: int
    type: TransactionType
    product: Product
    amount: Decimal
    unit: Unit
    price: Decimal
    total: Decimal
    date: date
    created_at: datetime

    @property
    def is_purchase(self) -> bool:
        return self.type is TransactionType.PURCHASE


def _current_utc() -> datetime:
    return datetime.now(UTC)


def generate_transaction_id(existing: Iterable[int] = (), *, when: Optional[datetime] = None) -> int:
    """Allocate a time-derived identifier that is unique within ``existing``.

    Args:
        existing (Iterable[int]): Identifiers already present in the ledger.
        when (datetime | None): Moment used to derive the identifier. When
            ``None`` the current UTC time is used.

    Returns:
        int: Milliseconds since the Unix epoch, bumped past the largest
            existing identifier when the clock has not advanced far enough.
            Identifiers therefore stay unique and increasing even when two
            records are created within the same millisecond.
    """

    when = when or _current_utc()
    candidate = int(when.timestamp() * 1000)
    highest = max(existing, default=None)
    if highest is not None and candidate <= highest:
        candidate = highest + 1
    return candidate


def validate_record(record: TransactionRecord) -> None:
    """Check a record against the ledger's field constraints.

    Raises:
        ValidationError: If the type, product or unit is outside the known
            enums, or if the amount or price is not a finite positive number.
    """

    if not isinstance(record.type, TransactionType):
        raise ValidationError(f"Unknown transaction type: {record.type!r}")
    if not isinstance(record.product, Product):
        raise ValidationError(f"Unknown product: {record.product!r}")
    if not isinstance(record.unit, Unit):
        raise ValidationError(f"Unknown unit: {record.unit!r}")
    require_positive("amount", record.amount)
    require_positive("price", record.price)


def require_positive(name: str, value: Decimal) -> None:
    """Validate that ``value`` is a finite decimal strictly greater than zero."""

    if not isinstance(value, Decimal) or not value.is_finite() or value <= Decimal("0"):
        log.warning("Validation failed for %s: %s", name, value)
        raise ValidationError(f"{name.capitalize()} must be a positive number")


def build_transaction(
    *,
    transaction_id: int,
    transaction_type: TransactionType,
    product: Product,
    amount: Decimal,
    unit: Unit,
    price: Decimal,
    business_date: date,
    created_at: Optional[datetime] = None,
) -> TransactionRecord:
    """Materialize a validated :class:`TransactionRecord`.

    The total is calculated here, once, as ``amount * price`` without
    rounding; display code rounds to two places when formatting.
    """

    require_positive("amount", amount)
    require_positive("price", price)
    record = TransactionRecord(
        id=transaction_id,
        type=transaction_type,
        product=product,
        amount=amount,
        unit=unit,
        price=price,
        total=amount * price,
        date=business_date,
        created_at=created_at or _current_utc(),
    )
    validate_record(record)
    return record


class LedgerStore:
    """In-memory ordered collection of transactions.

    The store keeps insertion order and hands out tuples so callers never
    hold a reference to the live list. Persistence is not the store's
    concern; the controller schedules a save after every mutation.
    """

    def __init__(self, records: Iterable[TransactionRecord] = ()) -> None:
        self._records: List[TransactionRecord] = []
        self.replace_all(records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, transaction_id: object) -> bool:
        return any(record.id == transaction_id for record in self._records)

    def add(self, record: TransactionRecord) -> TransactionRecord:
        """Append ``record`` after validating it.

        Raises:
            ValidationError: If the record fails :func:`validate_record` or
                its identifier is already taken. The store is left untouched.
        """

        validate_record(record)
        if record.id in self:
            log.warning("Rejected duplicate transaction id %s", record.id)
            raise ValidationError(f"Duplicate transaction id: {record.id}")
        self._records.append(record)
        log.info(
            "Added %s transaction %s for %s (amount=%s %s, price=%s)",
            record.type.value,
            record.id,
            record.product.value,
            record.amount,
            record.unit.value,
            record.price,
        )
        return record

    def remove(self, transaction_id: int) -> bool:
        """Drop the entry with ``transaction_id``.

        Removing an unknown identifier is a no-op.

        Returns:
            bool: ``True`` when an entry was removed.
        """

        remaining = [record for record in self._records if record.id != transaction_id]
        removed = len(remaining) != len(self._records)
        self._records = remaining
        if removed:
            log.info("Removed transaction %s", transaction_id)
        else:
            log.debug("Remove ignored for unknown transaction %s", transaction_id)
        return removed

    def replace_all(self, records: Iterable[TransactionRecord]) -> None:
        """Swap the whole ledger for ``records`` without merging.

        The incoming sequence is validated as a unit; on failure the current
        ledger is kept.

        Raises:
            ValidationError: If any record is invalid or identifiers repeat.
        """

        incoming = list(records)
        seen = set()
        for record in incoming:
            validate_record(record)
            if record.id in seen:
                raise ValidationError(f"Duplicate transaction id: {record.id}")
            seen.add(record.id)
        self._records = incoming
        log.debug("Ledger replaced with %d transactions", len(incoming))

    def all(self) -> Tuple[TransactionRecord, ...]:
        """Return an immutable snapshot of the ledger in insertion order."""

        return tuple(self._records)

    def ids(self) -> Sequence[int]:
        return [record.id for record in self._records]


__all__ = [
    "LedgerError",
    "LedgerStore",
    "TransactionRecord",
    "ValidationError",
    "build_transaction",
    "generate_transaction_id",
    "require_positive",
    "validate_record",
]
