"""Interaction controller for the produce ledger.

The controller turns user intents into ledger mutations. Every mutation is
applied to the in-memory store first, handed to the save queue without
waiting for it, and followed by a full re-render. View-only intents (filter,
sort, month navigation) never touch the ledger or storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Mapping, Optional, Union

from . import log
from .constants import LedgerFilter, Product, SortKey, TransactionType, Unit, ViewFilter, parse_filter
from .gateway import BackgroundSaver, PersistenceGateway
from .ledger import (
    LedgerStore,
    TransactionRecord,
    ValidationError,
    build_transaction,
    generate_transaction_id,
)
from .renderer import CalendarView, Dashboard, render_calendar, render_dashboard

REQUIRED_FIELDS = ("type", "product", "amount", "unit", "price")
ADDED_MESSAGE = "Transaction added!"
DELETED_MESSAGE = "Transaction deleted!"


@dataclass(frozen=True)
class Notification:
    message: str
    level: str = "success"


@dataclass(frozen=True)
class TransactionForm:
    """Parsed and validated form input, ready to become a record."""

    type: TransactionType
    product: Product
    amount: Decimal
    unit: Unit
    price: Decimal
    date: Optional[date]


def _parse_enum(enum_type, field: str, raw: object):
    try:
        return enum_type(str(raw).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown {field}: {raw}") from exc


def _parse_positive_decimal(field: str, raw: object) -> Decimal:
    try:
        value = Decimal(str(raw).strip().replace(",", "."))
    except InvalidOperation as exc:
        raise ValidationError(f"{field.capitalize()} must be a number") from exc
    if not value.is_finite() or value <= 0:
        raise ValidationError(f"{field.capitalize()} must be a positive number")
    return value


def parse_form(form_values: Mapping[str, object]) -> TransactionForm:
    """Validate raw form values as submitted by a front-end.

    ``amount`` and ``price`` accept either a dot or a comma as decimal
    separator. ``date`` is optional; a blank value means "today".

    Raises:
        ValidationError: If a required field is missing or blank, a numeric
            field is not a positive number, an enum field is unknown, or the
            date is not ``YYYY-MM-DD``.
    """

    missing = [
        field
        for field in REQUIRED_FIELDS
        if form_values.get(field) is None or not str(form_values.get(field)).strip()
    ]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")

    raw_date = form_values.get("date")
    business_date: Optional[date] = None
    if isinstance(raw_date, datetime):
        business_date = raw_date.date()
    elif isinstance(raw_date, date):
        business_date = raw_date
    elif raw_date is not None and str(raw_date).strip():
        try:
            business_date = date.fromisoformat(str(raw_date).strip())
        except ValueError as exc:
            raise ValidationError(f"Invalid date: {raw_date}") from exc

    return TransactionForm(
        type=_parse_enum(TransactionType, "transaction type", form_values["type"]),
        product=_parse_enum(Product, "product", form_values["product"]),
        amount=_parse_positive_decimal("amount", form_values["amount"]),
        unit=_parse_enum(Unit, "unit", form_values["unit"]),
        price=_parse_positive_decimal("price", form_values["price"]),
        date=business_date,
    )


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    """Move ``(year, month)`` by ``delta`` months, crossing year boundaries."""

    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _noop(*_args) -> None:
    return None


class LedgerController:
    """Session-scoped owner of the ledger store and the view state.

    Args:
        store (LedgerStore): The ledger this session edits.
        gateway (PersistenceGateway): Storage used for ``load`` and saves.
        saver (BackgroundSaver | None): Save queue; defaults to a background
            queue in front of ``gateway``.
        on_render (Callable[[Dashboard], None] | None): Receives a full
            dashboard after every mutation or view change.
        on_calendar (Callable[[CalendarView], None] | None): Receives the
            calendar alone after month navigation.
        on_notify (Callable[[Notification], None] | None): Receives
            success messages.
        currency (str): Symbol passed through to the renderer.
        clock (Callable[[], datetime] | None): Source of "now" as an aware
            UTC datetime; its date is "today".
    """

    def __init__(
        self,
        store: LedgerStore,
        gateway: PersistenceGateway,
        *,
        saver: Optional[BackgroundSaver] = None,
        on_render: Optional[Callable[[Dashboard], None]] = None,
        on_calendar: Optional[Callable[[CalendarView], None]] = None,
        on_notify: Optional[Callable[[Notification], None]] = None,
        currency: str = "₽",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.saver = saver or BackgroundSaver(gateway)
        self.on_render = on_render or _noop
        self.on_calendar = on_calendar or _noop
        self.on_notify = on_notify or _noop
        self.currency = currency
        self.clock = clock or (lambda: datetime.now(UTC))

        today = self.today()
        self.active_filter: LedgerFilter = ViewFilter.ALL
        self.sort_key: SortKey = SortKey.NEWEST
        self.year = today.year
        self.month = today.month

    def today(self) -> date:
        return self.clock().date()

    # -- rendering -----------------------------------------------------------

    def dashboard(self) -> Dashboard:
        return render_dashboard(
            self.store.all(),
            active_filter=self.active_filter,
            sort_key=self.sort_key,
            year=self.year,
            month=self.month,
            currency=self.currency,
            today=self.today(),
        )

    def calendar(self) -> CalendarView:
        return render_calendar(self.store.all(), self.year, self.month, today=self.today())

    def rerender(self) -> Dashboard:
        dashboard = self.dashboard()
        self.on_render(dashboard)
        return dashboard

    def _persist(self) -> None:
        self.saver.submit(self.store.all())

    # -- intents -------------------------------------------------------------

    def load(self) -> int:
        """Replace the ledger with the stored copy when the copy is non-empty.

        Returns:
            int: Number of records now in the ledger.
        """

        records = self.gateway.load()
        if records:
            try:
                self.store.replace_all(records)
            except ValidationError as exc:
                log.error("Stored ledger rejected, keeping local copy: %s", exc)
            else:
                log.info("Loaded ledger with %d transactions", len(records))
        else:
            log.info("Stored ledger is empty; keeping %d local transactions", len(self.store))
        self.rerender()
        return len(self.store)

    def submit_transaction(self, form_values: Mapping[str, object]) -> TransactionRecord:
        """Validate a form, append the new record, persist and re-render.

        Raises:
            ValidationError: If the form is invalid. Nothing is mutated,
                persisted or rendered in that case.
        """

        try:
            form = parse_form(form_values)
        except ValidationError as exc:
            log.warning("Rejected transaction form: %s", exc)
            raise

        now = self.clock()
        record = build_transaction(
            transaction_id=generate_transaction_id(self.store.ids(), when=now),
            transaction_type=form.type,
            product=form.product,
            amount=form.amount,
            unit=form.unit,
            price=form.price,
            business_date=form.date or self.today(),
            created_at=now,
        )
        self.store.add(record)
        self._persist()
        self.rerender()
        self.on_notify(Notification(ADDED_MESSAGE, "success"))
        return record

    def delete_transaction(self, transaction_id: int) -> bool:
        """Remove a record by id; unknown ids are ignored but still re-render."""

        try:
            transaction_id = int(transaction_id)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid transaction id: {transaction_id!r}") from exc
        removed = self.store.remove(transaction_id)
        self._persist()
        self.rerender()
        self.on_notify(Notification(DELETED_MESSAGE, "error"))
        return removed

    def change_filter(self, active_filter: Union[str, LedgerFilter]) -> Dashboard:
        try:
            self.active_filter = parse_filter(active_filter)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        return self.rerender()

    def change_sort(self, sort_key: Union[str, SortKey]) -> Dashboard:
        try:
            self.sort_key = SortKey(sort_key)
        except ValueError as exc:
            raise ValidationError(f"Unknown sort key: {sort_key}") from exc
        return self.rerender()

    def change_month(self, delta: int) -> CalendarView:
        """Move the calendar by ``delta`` months and re-render only the calendar."""

        self.year, self.month = shift_month(self.year, self.month, delta)
        view = self.calendar()
        self.on_calendar(view)
        return view

    def close(self) -> None:
        self.saver.close()
