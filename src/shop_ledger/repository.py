"""Entity store adapters for bills, products, and shops.

Every collection honours the same four-operation contract (``list``,
``create``, ``replace``, ``delete_by_id``) so the business layer never knows
whether records live in the ledger workbook or in memory. The in-memory
implementation doubles as the test fake.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Generic, List, Protocol, TypeVar

from openpyxl.workbook import Workbook

from . import data_manager, log
from .data_manager import Bill, ProductMaster, ShopMaster


T = TypeVar("T")


class RecordNotFoundError(KeyError):
    """Raised when ``replace`` or ``delete_by_id`` targets an unknown id."""


class Collection(Protocol[T]):
    """Durable get-all/save/delete contract for one record type."""

    def list(self) -> List[T]:
        ...

    def create(self, record: T) -> T:
        ...

    def replace(self, record: T) -> T:
        ...

    def delete_by_id(self, record_id: str) -> None:
        ...


def bill_key(record: Bill) -> str:
    return record.bill_id


def product_key(record: ProductMaster) -> str:
    return record.product_id


def shop_key(record: ShopMaster) -> str:
    return record.shop_id


class InMemoryCollection(Generic[T]):
    """Dictionary-backed collection preserving insertion order."""

    def __init__(self, name: str, key: Callable[[T], str], records: List[T] | None = None) -> None:
        self.name = name
        self._key = key
        self._records: Dict[str, T] = {}
        for record in records or []:
            self.create(record)

    def list(self) -> List[T]:
        return list(self._records.values())

    def create(self, record: T) -> T:
        record_id = self._key(record)
        if record_id in self._records:
            raise ValueError(f"Duplicate {self.name} id: {record_id}")
        self._records[record_id] = record
        return record

    def replace(self, record: T) -> T:
        record_id = self._key(record)
        if record_id not in self._records:
            raise RecordNotFoundError(f"Unknown {self.name} id: {record_id}")
        self._records[record_id] = record
        return record

    def delete_by_id(self, record_id: str) -> None:
        try:
            del self._records[record_id]
        except KeyError as exc:
            raise RecordNotFoundError(f"Unknown {self.name} id: {record_id}") from exc


class WorkbookCollection(Generic[T]):
    """Collection stored on worksheets of an ``openpyxl`` workbook.

    Reads always rescan the sheet so callers observe their own writes. The
    workbook is only written to disk when the owning context is persisted.
    """

    def __init__(
        self,
        workbook: Workbook,
        name: str,
        key: Callable[[T], str],
        *,
        reader: Callable[[Workbook], object],
        appender: Callable[[Workbook, T], None],
        replacer: Callable[[Workbook, T], None],
        deleter: Callable[[Workbook, str], None],
    ) -> None:
        self.workbook = workbook
        self.name = name
        self._key = key
        self._reader = reader
        self._appender = appender
        self._replacer = replacer
        self._deleter = deleter

    def list(self) -> List[T]:
        return list(self._reader(self.workbook))  # type: ignore[call-overload]

    def create(self, record: T) -> T:
        record_id = self._key(record)
        if any(self._key(existing) == record_id for existing in self.list()):
            raise ValueError(f"Duplicate {self.name} id: {record_id}")
        self._appender(self.workbook, record)
        log.debug("Appended %s '%s' to workbook", self.name, record_id)
        return record

    def replace(self, record: T) -> T:
        record_id = self._key(record)
        try:
            self._replacer(self.workbook, record)
        except KeyError as exc:
            raise RecordNotFoundError(f"Unknown {self.name} id: {record_id}") from exc
        log.debug("Replaced %s '%s' in workbook", self.name, record_id)
        return record

    def delete_by_id(self, record_id: str) -> None:
        try:
            self._deleter(self.workbook, record_id)
        except KeyError as exc:
            raise RecordNotFoundError(f"Unknown {self.name} id: {record_id}") from exc
        log.debug("Deleted %s '%s' from workbook", self.name, record_id)


@dataclass(frozen=True)
class EntityStore:
    """The three collections the ledger works against."""

    bills: Collection[Bill]
    products: Collection[ProductMaster]
    shops: Collection[ShopMaster]


def in_memory_store(
    *,
    bills: List[Bill] | None = None,
    products: List[ProductMaster] | None = None,
    shops: List[ShopMaster] | None = None,
) -> EntityStore:
    """Build an :class:`EntityStore` held entirely in memory."""

    return EntityStore(
        bills=InMemoryCollection("bill", bill_key, bills),
        products=InMemoryCollection("product", product_key, products),
        shops=InMemoryCollection("shop", shop_key, shops),
    )


def workbook_store(workbook: Workbook) -> EntityStore:
    """Build an :class:`EntityStore` over the ledger workbook sheets."""

    return EntityStore(
        bills=WorkbookCollection(
            workbook,
            "bill",
            bill_key,
            reader=data_manager.iter_bills,
            appender=data_manager.append_bill,
            replacer=data_manager.replace_bill,
            deleter=data_manager.delete_bill,
        ),
        products=WorkbookCollection(
            workbook,
            "product",
            product_key,
            reader=data_manager.iter_products,
            appender=data_manager.append_product,
            replacer=data_manager.replace_product,
            deleter=data_manager.delete_product,
        ),
        shops=WorkbookCollection(
            workbook,
            "shop",
            shop_key,
            reader=data_manager.iter_shops,
            appender=data_manager.append_shop,
            replacer=data_manager.replace_shop,
            deleter=data_manager.delete_shop,
        ),
    )
