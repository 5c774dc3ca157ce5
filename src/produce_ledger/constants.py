"""Enumerations shared across the produce ledger modules.

The product catalog, measurement units and view keys live here so that the
ledger store, the derivation engine, the persistence backends and the
presentation layer agree on a single set of identifiers. Enum values double
as the wire format exchanged with the ledger server.
"""

from __future__ import annotations

from enum import Enum
from typing import Union


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class TransactionType(str, Enum):
    """Enumerate the two kinds of ledger entries."""

    PURCHASE = "purchase"
    SALE = "sale"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class Product(str, Enum):
    """Enumerate the fixed produce catalog."""

    CHERRY = "cherry"
    STRAWBERRY = "strawberry"
    RASPBERRY = "raspberry"
    BLUEBERRY = "blueberry"
    APPLE = "apple"
    PEAR = "pear"
    PLUM = "plum"
    OTHER = "other"

    @property
    def label(self) -> str:
        return PRODUCT_LABELS[self]


class Unit(str, Enum):
    """Enumerate the measurement units a quantity may be recorded in."""

    KG = "kg"
    G = "g"
    PCS = "pcs"
    BOX = "box"
    CRATE = "crate"

    @property
    def label(self) -> str:
        return UNIT_LABELS[self]


class ViewFilter(str, Enum):
    """Enumerate the non-product transaction list filters."""

    ALL = "all"
    PURCHASE = "purchase"
    SALE = "sale"


class SortKey(str, Enum):
    """Enumerate the transaction list orderings."""

    NEWEST = "newest"
    OLDEST = "oldest"
    AMOUNT_DESC = "amount"
    PRICE_DESC = "price"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    TRANSACTIONS = "Transactions"


PRODUCT_LABELS = {
    Product.CHERRY: "Cherry",
    Product.STRAWBERRY: "Strawberry",
    Product.RASPBERRY: "Raspberry",
    Product.BLUEBERRY: "Blueberry",
    Product.APPLE: "Apples",
    Product.PEAR: "Pears",
    Product.PLUM: "Plums",
    Product.OTHER: "Other goods",
}

UNIT_LABELS = {
    Unit.KG: "kg",
    Unit.G: "g",
    Unit.PCS: "pcs",
    Unit.BOX: "box",
    Unit.CRATE: "crate",
}

# A list filter is either one of the fixed keys or a specific product.
LedgerFilter = Union[ViewFilter, Product]


def parse_filter(value: Union[str, LedgerFilter]) -> LedgerFilter:
    """Resolve the string form of a list filter.

    ``ViewFilter`` keys win over product keys; both enums share no values so
    the order only matters for readability.

    Raises:
        ValueError: If ``value`` names neither a ``ViewFilter`` nor a
            ``Product``. The ledger layer re-raises this as its own
            ``ValidationError``.
    """

    if isinstance(value, (ViewFilter, Product)):
        return value
    text = str(value).strip().lower()
    for enum_type in (ViewFilter, Product):
        try:
            return enum_type(text)
        except ValueError:
            continue
    raise ValueError(f"Unknown filter: {value}")


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "LedgerFilter",
    "Product",
    "PRODUCT_LABELS",
    "SheetName",
    "SortKey",
    "TransactionType",
    "Unit",
    "UNIT_LABELS",
    "ViewFilter",
    "parse_filter",
]
