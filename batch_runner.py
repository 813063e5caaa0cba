#!/usr/bin/env python3
"""
ActReco batch tools

  run-all <anchor> <template.xlsx>   build an ActReco workbook for every
                                     ALL.contract under the anchor's folder,
                                     one child process per company
  latest <anchor>                    list the newest ActReco workbook of
                                     every company
  tabs <template.xlsx> <base dir>    one sheet per company folder, copied
                                     from the "App" template sheet

<anchor> is any file inside the root folder (e.g. a *.actreco marker file).
"""

from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from dotenv import load_dotenv

from office_sessions import WorkbookSession
from recon_builder import OUTPUT_DIR_NAME, TEMPLATE_SHEET, natural_sort_key, sheet_title
from recon_common import (
    AutomationError,
    CliArgumentParser,
    NotFoundError,
    ReconError,
    WriteError,
    copy_with_retry,
    numbered_path,
    setup_logger,
)


LOGGER_NAME = "batch_runner"
CONTRACT_FILE_NAME = "ALL.contract"
IGNORED_FOLDERS = ("@ Weak", "@ Bads", "ALL", "App")
SUMMARY_SHEET = "ALL"
SUMMARY_FIRST_ROW = 6
BUILDER_SCRIPT = Path(__file__).with_name("recon_builder.py")


# ------------------------------- FS Utilities ------------------------------ #


def find_contract_files(
    root: Path,
    logger: logging.Logger,
    ignored: Sequence[str] = IGNORED_FOLDERS,
) -> List[Path]:
    found: List[Path] = []
    for child in sorted(root.iterdir(), key=lambda p: natural_sort_key(p.name)):
        if child.is_dir():
            if child.name in ignored:
                logger.debug(f"Ignoring folder: {child}")
                continue
            found.extend(find_contract_files(child, logger, ignored))
        elif child.is_file() and child.name == CONTRACT_FILE_NAME:
            found.append(child)
    return found


def find_actreco_dir(folder: Path) -> Optional[Path]:
    for child in folder.iterdir():
        if child.is_dir() and child.name.upper() == OUTPUT_DIR_NAME.upper():
            return child
    return None


def latest_workbook(folder: Path) -> Optional[Path]:
    candidates = [
        p for p in folder.iterdir()
        if p.is_file() and p.suffix.lower() == ".xlsx" and not p.name.startswith("~")
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda p: p.stat().st_mtime)


def latest_actreco_files(root: Path, logger: logging.Logger) -> List[Path]:
    results: List[Path] = []
    for contract in find_contract_files(root, logger):
        actreco_dir = find_actreco_dir(contract.parent)
        if actreco_dir is None:
            logger.debug(f"No {OUTPUT_DIR_NAME} folder next to {contract}")
            continue
        latest = latest_workbook(actreco_dir)
        if latest is not None:
            results.append(latest)
    return results


# ------------------------------- Batch Runs -------------------------------- #


def builder_command(contract: Path, template: Path) -> List[str]:
    return [sys.executable, str(BUILDER_SCRIPT), str(contract), str(template)]


def run_all(root: Path, template: Path, logger: logging.Logger) -> Dict[Path, int]:
    """Start one builder process per company and wait for all of them.

    Each child owns its own output workbook, so they may run side by side.
    """
    contracts = find_contract_files(root, logger)
    if not contracts:
        logger.info(f"No {CONTRACT_FILE_NAME} files found under {root}")
        return {}

    logger.info(f"Running {len(contracts)} job(s) in parallel")
    processes: Dict[Path, subprocess.Popen] = {}
    exit_codes: Dict[Path, int] = {}
    for contract in contracts:
        logger.info(f"Starting: {contract}")
        try:
            processes[contract] = subprocess.Popen(builder_command(contract, template))
        except OSError as e:
            logger.error(f"Failed to start process for {contract}: {e}")
            exit_codes[contract] = 1

    for contract, proc in processes.items():
        code = proc.wait()
        exit_codes[contract] = code
        if code == 0:
            logger.info(f"Finished: {contract}")
        else:
            logger.error(f"Failed ({code}): {contract}")
    return exit_codes


# ------------------------------ Tabs Workbook ------------------------------ #


def company_folders(base_dir: Path) -> List[str]:
    if not base_dir.is_dir():
        raise NotFoundError(f"Directory does not exist: {base_dir}")
    names = [
        p.name for p in base_dir.iterdir()
        if p.is_dir() and p.name.upper() != SUMMARY_SHEET
    ]
    return sorted(names, key=natural_sort_key)


def unique_sheet_name(existing: Sequence[str], base: str) -> str:
    taken = {n.casefold() for n in existing}
    name = base
    counter = 1
    while name.casefold() in taken:
        suffix = f" ({counter})"
        name = base[: 31 - len(suffix)] + suffix
        counter += 1
    return name


def build_tabs_workbook(template: Path, base_dir: Path, logger: logging.Logger) -> Path:
    names = company_folders(base_dir)
    if not names:
        raise NotFoundError(f"No company folders found in {base_dir}")
    logger.info(f"Company folders: {', '.join(names)}")

    save_dir = base_dir / SUMMARY_SHEET / OUTPUT_DIR_NAME
    save_dir.mkdir(parents=True, exist_ok=True)
    out_path = numbered_path(save_dir, f"{base_dir.name} ActReco", ".xlsx")
    result = copy_with_retry(template, out_path, logger=logger)
    if not result.ok:
        raise AutomationError(f"Failed to copy template to {out_path}: {result.reason}")

    try:
        with WorkbookSession.open(out_path) as session:
            session.get_section(TEMPLATE_SHEET)
            summary = session.get_section(SUMMARY_SHEET)
            for name in names:
                title = unique_sheet_name(session.sheet_names, sheet_title(name))
                sheet = session.duplicate_section(TEMPLATE_SHEET, title)
                try:
                    sheet.set_cell(2, 2, f"Data for {title}")
                except WriteError as e:
                    logger.warning(str(e))
                logger.info(f"Created sheet: {title}")

            for offset, name in enumerate(names):
                try:
                    summary.set_cell(SUMMARY_FIRST_ROW + offset, 1, name)
                except WriteError as e:
                    logger.warning(str(e))
            session.recalculate()
            session.save()
    except ReconError:
        out_path.unlink(missing_ok=True)
        raise

    logger.info(f"Saved {out_path}")
    return out_path


# ---------------------------------- Main ---------------------------------- #


def parse_args(argv: Optional[List[str]] = None):
    parser = CliArgumentParser(description="ActReco batch tools")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_run = sub.add_parser("run-all", help="Build every company's ActReco workbook")
    p_run.add_argument("anchor", help="Any file in the root folder")
    p_run.add_argument("template", help="Template workbook (.xlsx)")

    p_latest = sub.add_parser("latest", help="List the newest ActReco workbooks")
    p_latest.add_argument("anchor", help="Any file in the root folder")

    p_tabs = sub.add_parser("tabs", help="Build a workbook with one sheet per company")
    p_tabs.add_argument("template", help="Template workbook with App and ALL sheets")
    p_tabs.add_argument("base_dir", help="Folder holding the company folders")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    logger = setup_logger(LOGGER_NAME, verbose=False)
    try:
        args = parse_args(argv)
        if args.verbose:
            logger.setLevel(logging.DEBUG)
        load_dotenv()
        if args.command == "run-all":
            codes = run_all(Path(args.anchor).resolve().parent, Path(args.template).resolve(), logger)
            if any(codes.values()):
                raise SystemExit(1)
        elif args.command == "latest":
            files = latest_actreco_files(Path(args.anchor).resolve().parent, logger)
            if not files:
                logger.info(f"No .xlsx files found in any {OUTPUT_DIR_NAME} folder")
            for f in files:
                print(f)
        else:
            build_tabs_workbook(Path(args.template), Path(args.base_dir), logger)
    except ReconError as e:
        logger.error(str(e))
        raise SystemExit(1)


if __name__ == "__main__":
    main()
