"""Create the empty ledger workbook named by ``config.ini``.

``ledger-setup`` reads ``System.DataFile`` and writes one sheet per record
type (``Bills``, ``BillItems``, ``Products``, ``Shops``) with a frozen, bold
header row. The CLI refuses to start against a workbook missing any of these
sheets, so this is the first command run on a new installation.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .data_manager import SHEET_COLUMNS, ConfigSettings

HEADER_FONT = Font(bold=True)


def load_settings(config_path: Path) -> ConfigSettings:
    """Parse ``config_path``; a relative ``DataFile`` is anchored to its directory."""

    config_path = config_path.expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Write a header-only ledger workbook to ``destination``.

    Args:
        destination (Path): Target ``.xlsx`` path; parent folders are created.
        sheet_columns (Mapping[str, Sequence[str]]): Header names per sheet,
            in sheet order.
        overwrite (bool): Replace an existing file instead of failing.

    Returns:
        Path: The resolved path that was written.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is off.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Ledger workbook already exists: {destination}")

    workbook = openpyxl.Workbook()
    placeholder = workbook.active
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        worksheet.append(list(columns))
        for cell in worksheet[1]:
            cell.font = HEADER_FONT
        worksheet.freeze_panes = "A2"
    if placeholder is not None:
        workbook.remove(placeholder)

    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(destination)
    log.info("Created ledger workbook '%s' with sheets %s", destination, list(sheet_columns))
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``System.DataFile`` in ``config_path``."""

    settings = load_settings(config_path)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-setup",
        description="Create an empty Shop Ledger workbook.",
    )
    parser.add_argument("--config", type=Path, default=Path(data_manager.CONFIG_FILE_NAME))
    parser.add_argument("--force", action="store_true", help="Replace an existing workbook.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the setup; returns 0 on success and 1 on any failure."""

    args = build_parser().parse_args(argv)
    config_path = args.config.expanduser().resolve()
    print(f"Shop Ledger setup using {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Pass --force to replace it.")
        return 1
    except (OSError, KeyError, ValueError) as exc:
        log.error("Workbook setup failed: %s", exc)
        print(f"[ERROR] {exc}")
        return 1

    print(f"[SUCCESS] Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
