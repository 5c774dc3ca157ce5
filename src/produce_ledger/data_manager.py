"""Data access layer for the produce ledger.

This module provides low-level helpers that read and write ledger data.
Business rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file
   that backs the local storage backend.
3. Record codecs: converting :class:`~produce_ledger.ledger.TransactionRecord`
   instances to and from worksheet rows and JSON payloads.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import Product, SheetName, TransactionType, Unit
from .ledger import TransactionRecord


CONFIG_FILE_NAME = "config.ini"
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value

TRANSACTION_COLUMNS: Sequence[str] = (
    "ID",
    "Type",
    "Product",
    "Amount",
    "Unit",
    "Price",
    "Total",
    "Date",
    "CreatedAt",
)

DEFAULT_BACKEND = "workbook"
DEFAULT_SERVER_URL = "http://localhost:3000"
DEFAULT_TIMEOUT = 10.0
DEFAULT_CURRENCY = "₽"
DEFAULT_LOG_DIR = ".logs"
SUPPORTED_BACKENDS = ("workbook", "http")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    backend: str = DEFAULT_BACKEND
    server_url: str = DEFAULT_SERVER_URL
    token: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    currency: str = DEFAULT_CURRENCY
    log_dir: Path = Path(DEFAULT_LOG_DIR)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the ledger behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match wins.

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

    Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _resolve_path(raw: str, base_path: Path) -> Path:
    path = Path(raw).expanduser()
    if path.is_absolute():
        return path
    return (base_path / path).resolve()


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Storage]``, ``[Server]`` and
    ``[Display]`` are optional and fall back to module defaults, as is
    ``[System] LogDir``. Relative ``DataFile`` and ``LogDir`` entries are
    expanded against ``base_path`` when provided, or against the current
    working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            ``DataFile`` and ``LogDir`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing, or if an
            optional value cannot be interpreted.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    backend = parser.get("Storage", "Backend", fallback=DEFAULT_BACKEND).strip().lower()
    if backend not in SUPPORTED_BACKENDS:
        raise KeyError(f"Unsupported storage backend: {backend}")

    try:
        timeout = parser.getfloat("Server", "Timeout", fallback=DEFAULT_TIMEOUT)
    except ValueError as exc:
        raise KeyError(f"Invalid configuration entry Server.Timeout: {exc}") from exc

    token = parser.get("Server", "Token", fallback="").strip() or None

    if base_path is None:
        base_path = Path.cwd()
    data_file_path = _resolve_path(data_file_raw, base_path)
    log_dir_raw = parser.get("System", "LogDir", fallback=DEFAULT_LOG_DIR).strip() or DEFAULT_LOG_DIR
    log_dir = _resolve_path(log_dir_raw, base_path)

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        backend=backend,
        server_url=parser.get("Server", "BaseUrl", fallback=DEFAULT_SERVER_URL).strip(),
        token=token,
        timeout=timeout,
        currency=parser.get("Display", "Currency", fallback=DEFAULT_CURRENCY).strip() or DEFAULT_CURRENCY,
        log_dir=log_dir,
    )


def load_settings(config_path: Optional[Path] = None) -> ConfigSettings:
    """Locate, read and parse the configuration in one call."""

    located = Path(find_config_file(config_path)).expanduser().resolve()
    parser = read_config(located)
    settings = parse_settings(parser, base_path=located.parent)
    log.info("Loaded settings from '%s' (backend=%s)", located, settings.backend)
    return settings


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
        KeyError: If the workbook lacks the transactions sheet.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    if TRANSACTIONS_SHEET not in wb.sheetnames:
        raise KeyError(f"Workbook '{data_file}' has no '{TRANSACTIONS_SHEET}' sheet")
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRecord]:
    """Stream transaction records from the ``Transactions`` worksheet.

    The generator skips the header and rows whose cells are all ``None``.
    Each meaningful row is transformed via :func:`deserialize_transaction`.

    Yields:
        TransactionRecord: Normalized record for each populated row.
    """

    sheet = workbook[TRANSACTIONS_SHEET]
    for raw in sheet.iter_rows(min_row=2, max_col=len(TRANSACTION_COLUMNS), values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_transaction(raw)


def write_transactions(workbook: Workbook, records: Iterable[TransactionRecord]) -> int:
    """Replace every data row of the ``Transactions`` sheet with ``records``.

    The header row is preserved. The write is wholesale: rows that are not in
    ``records`` disappear.

    Returns:
        int: Number of rows written.
    """

    sheet = workbook[TRANSACTIONS_SHEET]
    if sheet.max_row > 1:
        sheet.delete_rows(2, sheet.max_row - 1)
    count = 0
    # Rows are addressed explicitly; ``append`` keeps counting past deleted rows.
    for row_index, record in enumerate(records, start=2):
        for column_index, value in enumerate(serialize_transaction(record), start=1):
            sheet.cell(row=row_index, column=column_index, value=value)
        count += 1
    return count


def serialize_transaction(record: TransactionRecord) -> list[object]:
    """Convert a record into the worksheet column ordering.

    Amounts, prices and totals are written as their exact decimal text since
    Excel numbers are doubles and keep only about 15 significant digits. The
    business date and the creation timestamp are written as ISO strings.
    """

    return [
        record.id,
        record.type.value,
        record.product.value,
        str(record.amount),
        record.unit.value,
        str(record.price),
        str(record.total),
        record.date.isoformat(),
        record.created_at.isoformat(),
    ]


def _to_decimal(raw: object, field: str) -> Decimal:
    try:
        return Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid {field}: {raw!r}") from exc


def _to_date(raw: object) -> date:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


def _to_timestamp(raw: object) -> datetime:
    moment = raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRecord:
    """Convert a raw worksheet row into a typed record.

    Raises:
        ValueError: If a cell cannot be converted to its field type.
    """

    (
        transaction_id,
        transaction_type,
        product,
        amount_raw,
        unit,
        price_raw,
        total_raw,
        date_raw,
        created_raw,
    ) = tuple(raw_row) + (None,) * (len(TRANSACTION_COLUMNS) - len(raw_row))

    if transaction_id is None or date_raw is None or created_raw is None:
        raise ValueError(f"Incomplete transaction row: {tuple(raw_row)!r}")

    return TransactionRecord(
        id=int(transaction_id),
        type=TransactionType(str(transaction_type)),
        product=Product(str(product)),
        amount=_to_decimal(amount_raw, "amount"),
        unit=Unit(str(unit)),
        price=_to_decimal(price_raw, "price"),
        total=_to_decimal(total_raw, "total"),
        date=_to_date(date_raw),
        created_at=_to_timestamp(created_raw),
    )


def _json_number(value: Decimal) -> int | float:
    return int(value) if value == value.to_integral_value() else float(value)


def transaction_to_payload(record: TransactionRecord) -> dict[str, Any]:
    """Encode a record as the JSON object exchanged with the ledger server."""

    return {
        "id": record.id,
        "type": record.type.value,
        "product": record.product.value,
        "amount": _json_number(record.amount),
        "unit": record.unit.value,
        "price": _json_number(record.price),
        "total": _json_number(record.total),
        "date": record.date.isoformat(),
        "createdAt": record.created_at.astimezone(UTC).isoformat().replace("+00:00", "Z"),
    }


def transaction_from_payload(payload: Mapping[str, Any]) -> TransactionRecord:
    """Decode one JSON object received from the ledger server.

    Entries written by older clients may lack ``createdAt``; the timestamp is
    then recovered from the millisecond identifier. A missing ``total`` is
    recomputed from amount and price.

    Raises:
        ValueError: If a field is missing or malformed.
    """

    try:
        transaction_id = int(payload["id"])
        amount = _to_decimal(payload["amount"], "amount")
        price = _to_decimal(payload["price"], "price")
        total_raw = payload.get("total")
        created_raw = payload.get("createdAt")
        return TransactionRecord(
            id=transaction_id,
            type=TransactionType(str(payload["type"])),
            product=Product(str(payload["product"])),
            amount=amount,
            unit=Unit(str(payload["unit"])),
            price=price,
            total=_to_decimal(total_raw, "total") if total_raw is not None else amount * price,
            date=_to_date(payload["date"]),
            created_at=(
                _to_timestamp(created_raw)
                if created_raw
                else datetime.fromtimestamp(transaction_id / 1000, UTC)
            ),
        )
    except KeyError as exc:
        raise ValueError(f"Missing transaction field: {exc}") from exc
    except TypeError as exc:
        raise ValueError(f"Malformed transaction payload: {payload!r}") from exc
