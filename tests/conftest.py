"""Shared pytest fixtures and utilities for produce ledger tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, List
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from produce_ledger import constants, detach_file_handler, ledger  # noqa: E402
from produce_ledger.controller import LedgerController  # noqa: E402
from produce_ledger.gateway import BackgroundSaver  # noqa: E402
from produce_ledger.setup_excel import create_ledger_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
FIXED_NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Storage]\n"
    "Backend = {backend}\n\n"
    "[Server]\n"
    "BaseUrl = http://ledger.test\n"
    "Token = {token}\n"
    "Timeout = 5\n\n"
    "[Display]\n"
    "Currency = RUB\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _detach_log_file() -> Iterator[None]:
    """Close log files opened inside temporary config directories."""

    yield
    detach_file_handler()


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "ledger.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_ledger_workbook(base_dir / filename, overwrite=True)

    return _create_workbook


@pytest.fixture
def ledger_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh ledger workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Stall",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        backend: str = "workbook",
        token: str = "",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        bundle_dir = workbook_path.parent
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                backend=backend,
                token=token,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


# ---------------------------------------------------------------------------
# Ledger fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_record() -> Callable[..., ledger.TransactionRecord]:
    """Build records with sensible defaults and increasing ids/timestamps."""

    counter = {"next": 1}

    def _make(
        transaction_type: constants.TransactionType = constants.TransactionType.PURCHASE,
        product: constants.Product = constants.Product.CHERRY,
        amount: str = "1",
        price: str = "1",
        *,
        unit: constants.Unit = constants.Unit.KG,
        business_date: date = date(2025, 6, 1),
        transaction_id: int | None = None,
        created_at: datetime | None = None,
    ) -> ledger.TransactionRecord:
        index = counter["next"]
        counter["next"] += 1
        return ledger.build_transaction(
            transaction_id=transaction_id if transaction_id is not None else index,
            transaction_type=transaction_type,
            product=product,
            amount=Decimal(amount),
            unit=unit,
            price=Decimal(price),
            business_date=business_date,
            created_at=created_at or FIXED_NOW + timedelta(minutes=index),
        )

    return _make


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Return a clock that advances one second per call from ``FIXED_NOW``."""

    ticks = {"count": 0}

    def _now() -> datetime:
        ticks["count"] += 1
        return FIXED_NOW + timedelta(seconds=ticks["count"])

    return _now


@pytest.fixture
def gateway() -> Mock:
    """Return a mock persistence gateway that loads nothing and saves fine."""

    mock = Mock(name="gateway")
    mock.load.return_value = []
    mock.save.return_value = True
    return mock


@pytest.fixture
def renders() -> List[object]:
    return []


@pytest.fixture
def notifications() -> List[object]:
    return []


@pytest.fixture
def controller(gateway: Mock, clock, renders, notifications) -> LedgerController:
    """Controller wired to a mock gateway with inline saves."""

    return LedgerController(
        ledger.LedgerStore(),
        gateway,
        saver=BackgroundSaver(gateway, background=False),
        on_render=renders.append,
        on_notify=notifications.append,
        currency="RUB",
        clock=clock,
    )
