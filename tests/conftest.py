"""Shared pytest fixtures and utilities for Shop Ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator, Sequence

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from shop_ledger import cli, constants, core_logic, data_manager, repository  # noqa: E402
from shop_ledger.data_manager import Bill, BillItem, ProductMaster, ShopMaster  # noqa: E402
from shop_ledger.setup_workbook import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "BusinessName = {business_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Analytics]\n"
    "TopProducts = {top_products}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    business_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _no_ambient_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's GEMINI_API_KEY from leaking into settings."""

    monkeypatch.delenv(data_manager.API_KEY_ENV_VAR, raising=False)


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "ledger.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh ledger workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        business_name: str = "Test Traders",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        top_products: int = 5,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                business_name=business_name,
                schema_version=schema_version,
                top_products=top_products,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            business_name=business_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a workbook-backed runtime context through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Record builders
# ---------------------------------------------------------------------------


def make_item(product_name: str, retail_price: str, quantity: str, *, item_id: str | None = None) -> BillItem:
    """Build a line item whose total is already consistent."""

    price = Decimal(retail_price)
    qty = Decimal(quantity)
    return BillItem(
        item_id=item_id or f"I-{uuid.uuid4().hex[:8]}",
        product_name=product_name,
        retail_price=price,
        quantity=qty,
        total=price * qty,
    )


def make_bill(
    shop_name: str,
    bill_date: str,
    items: Sequence[BillItem],
    *,
    bill_id: str | None = None,
    invoice_number: str = "",
    total_amount: Decimal | None = None,
) -> Bill:
    """Build a bill; the total defaults to the sum of its lines."""

    return Bill(
        bill_id=bill_id or f"B-{uuid.uuid4().hex[:8]}",
        shop_name=shop_name,
        invoice_number=invoice_number,
        bill_date=bill_date,
        items=tuple(items),
        total_amount=total_amount if total_amount is not None else sum((i.total for i in items), Decimal("0")),
        created_at="2024-01-01T00:00:00+00:00",
    )


@pytest.fixture
def widget() -> ProductMaster:
    return ProductMaster(
        product_id="P-WIDGET",
        name="Widget",
        manufacturing_cost=Decimal("40"),
        default_retail_price=Decimal("100"),
    )


@pytest.fixture
def acme() -> ShopMaster:
    return ShopMaster(shop_id="S-ACME", name="Acme")


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "ledger.xlsx",
        business_name="Test Traders",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def memory_context_factory(
    settings: data_manager.ConfigSettings,
) -> Callable[..., core_logic.RuntimeContext]:
    """Build runtime contexts over an in-memory store."""

    def _create(
        *,
        bills: Sequence[Bill] = (),
        products: Sequence[ProductMaster] = (),
        shops: Sequence[ShopMaster] = (),
    ) -> core_logic.RuntimeContext:
        store = repository.in_memory_store(bills=list(bills), products=list(products), shops=list(shops))
        return core_logic.RuntimeContext(settings=settings, store=store)

    return _create


@pytest.fixture
def memory_context(
    memory_context_factory: Callable[..., core_logic.RuntimeContext],
    widget: ProductMaster,
    acme: ShopMaster,
) -> core_logic.RuntimeContext:
    """In-memory context seeded with the Widget product and the Acme shop."""

    return memory_context_factory(products=[widget], shops=[acme])


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="ledger-cli", description="Ledger CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
