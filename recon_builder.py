#!/usr/bin/env python3
"""
ActReco Workbook Builder CLI

Builds a reconciliation ("ActReco") workbook for one company folder:

- Copies the template workbook to <company>/ActReco/YYYY-MM-DD[_vN].xlsx
- Keeps the "App" template sheet, renamed after the company folder
- Scans section folders (Pricings, Bank-OT, Bank-IN, EHF-IN, Card-OT, Card-IN)
  named "YYYY-MM-DD <amount>" and writes date/amount/cost/path rows
- Fills {Key} placeholders from the company's ALL.contract data source
- Requests a full recalculation, saves and closes

Requirements:
- openpyxl for Excel
- PyYAML for data sources and section maps
- python-dotenv for environment fallbacks

Usage:
  python recon_builder.py <ALL.contract> <template.xlsx> [open] [--sections sections.yaml] [--verbose]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

import yaml
from dotenv import load_dotenv

from contract_data import int_field, load_layered
from contract_templating import BRACE_TOKEN_RE, apply_placeholders
from office_sessions import SheetView, WorkbookSession
from recon_common import (
    AutomationError,
    CliArgumentParser,
    NotFoundError,
    ParseError,
    ReconError,
    WriteError,
    copy_with_retry,
    open_path,
    parse_open_flag,
    setup_logger,
    versioned_path,
)


LOGGER_NAME = "recon_builder"

PRICINGS = "Pricings"
TEMPLATE_SHEET = "App"
OUTPUT_DIR_NAME = "ActReco"
DEFAULT_START_ROW = 5
DEFAULT_PREPAY_MONTHS = 2
DEFAULT_PRICE_MARKER = "DEFAULT"
COPY_ATTEMPTS = 2
COPY_DELAY_SECONDS = 1.0

COLUMN_FIELDS = ("date", "amount", "cost", "path")


# ------------------------------- Data Models ------------------------------- #


@dataclass(frozen=True)
class ColumnMap:
    date: Optional[int] = None
    amount: Optional[int] = None
    cost: Optional[int] = None
    path: Optional[int] = None

    def columns(self) -> List[int]:
        return [c for c in (self.date, self.amount, self.cost, self.path) if c is not None]


@dataclass(frozen=True)
class Section:
    name: str
    columns: ColumnMap
    start_row: int = DEFAULT_START_ROW

    @property
    def is_pricings(self) -> bool:
        return self.name == PRICINGS


@dataclass(frozen=True)
class Entry:
    kind: str  # "dated" or "lump"
    amount: str
    source: Path
    date: Optional[str] = None


@dataclass(frozen=True)
class SectionRow:
    date: str
    amount: str
    cost: Optional[str] = None
    path: Optional[str] = None


@dataclass(frozen=True)
class PricingRules:
    prepay_months: int = DEFAULT_PREPAY_MONTHS
    default_price: Optional[str] = None


@dataclass
class RunSummary:
    output_path: Path
    sheet_name: str
    rows_per_section: Dict[str, int] = field(default_factory=dict)
    skipped_sections: List[str] = field(default_factory=list)


DEFAULT_SECTIONS: List[Section] = [
    Section(PRICINGS, ColumnMap(date=3, amount=4)),
    Section("Bank-OT", ColumnMap(date=6, amount=7, path=8)),
    Section("Bank-IN", ColumnMap(date=9, amount=10, path=11)),
    Section("EHF-IN", ColumnMap(date=12, amount=13, path=14)),
    Section("Card-OT", ColumnMap(date=18, amount=19, path=20)),
    Section("Card-IN", ColumnMap(date=15, amount=16, path=17)),
]


def load_sections(path: Path) -> List[Section]:
    if not path.is_file():
        raise NotFoundError(f"Sections file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ParseError(f"Failed to parse sections file {path}: {e}") from e

    items = cfg.get("sections") if isinstance(cfg, dict) else None
    if not isinstance(items, list) or not items:
        raise ParseError(f"Sections file {path} needs a non-empty 'sections' list")

    sections: List[Section] = []
    for idx, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ParseError(f"Section #{idx} in {path} must be a mapping")
        for key in ("name", "columns"):
            if key not in item:
                raise ParseError(f"Section #{idx} in {path} is missing required key: {key}")
        columns = item["columns"] or {}
        unknown = set(columns) - set(COLUMN_FIELDS)
        if unknown:
            raise ParseError(f"Section {item['name']}: unknown column field(s) {sorted(unknown)}")
        try:
            column_map = ColumnMap(**{k: int(v) for k, v in columns.items()})
            start_row = int(item.get("start_row", DEFAULT_START_ROW))
        except (TypeError, ValueError) as e:
            raise ParseError(f"Section {item['name']}: columns and start_row must be integers ({e})") from e
        if start_row < 1 or any(c < 1 for c in column_map.columns()):
            raise ParseError(f"Section {item['name']}: rows and columns are 1-based")
        sections.append(Section(str(item["name"]).strip(), column_map, start_row))
    return sections


# ------------------------------ Name Parsing ------------------------------- #


DATED_NAME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})\s+([\d,]+)")
LUMP_NAME_RE = re.compile(r"^ALL\s+([\d,]+)")
COST_NAME_RE = re.compile(r"^#Cost\s+([\d,]+)")


def parse_entry_name(path: Path) -> Optional[Entry]:
    """Classify a folder/file by name; None when it is not a reconciliation record."""
    name = path.name
    m = DATED_NAME_RE.match(name)
    if m:
        return Entry(kind="dated", date=m.group(1), amount=m.group(2), source=path)
    m = LUMP_NAME_RE.match(name)
    if m:
        return Entry(kind="lump", amount=m.group(1), source=path)
    return None


def natural_sort_key(name: str):
    """Digit runs compare as numbers, text case-insensitively; raw name breaks ties."""
    parts = re.split(r"(\d+)", name.casefold())
    return tuple(int(p) if p.isdigit() else p for p in parts), name


# ------------------------------- FS Scanning ------------------------------- #


def scan_section(root: Path, section: Section, logger: logging.Logger) -> List[Path]:
    folder = root / section.name
    if not folder.is_dir():
        raise NotFoundError(f'Folder "{section.name}" not found under {root}')
    if section.is_pricings:
        items = [p for p in folder.iterdir() if p.is_file() and p.suffix.lower() == ".txt"]
    else:
        items = [p for p in folder.iterdir() if p.is_dir()]
    logger.debug(f"{section.name}: {len(items)} candidate(s) in {folder}")
    return sorted(items, key=lambda p: natural_sort_key(p.name))


def find_cost(folder: Path) -> Optional[str]:
    if not folder.is_dir():
        return None
    for p in sorted(folder.iterdir(), key=lambda x: natural_sort_key(x.name)):
        if not p.is_file() or p.suffix.lower() != ".txt":
            continue
        m = COST_NAME_RE.match(p.name)
        if m:
            return m.group(1)
    return None


# ----------------------------- Row Building -------------------------------- #


def project_months(today: date, count: int) -> List[str]:
    """First day of each of the ``count`` months after ``today``'s month."""
    months: List[str] = []
    for offset in range(1, count + 1):
        year, month0 = divmod(today.year * 12 + (today.month - 1) + offset, 12)
        months.append(date(year, month0 + 1, 1).isoformat())
    return months


def build_section_rows(
    section: Section,
    items: Sequence[Path],
    rules: PricingRules,
    today: date,
    logger: logging.Logger,
) -> List[SectionRow]:
    dated: List[Entry] = []
    lumps: List[Entry] = []
    for item in items:
        entry = parse_entry_name(item)
        if entry is None:
            logger.debug(f"{section.name}: skipping {item.name} (name does not match)")
        elif entry.kind == "dated":
            dated.append(entry)
        elif section.is_pricings:
            lumps.append(entry)
        else:
            logger.debug(f"{section.name}: ALL entries are only expanded for {PRICINGS}; skipping {item.name}")

    rows: List[SectionRow] = []
    for entry in dated:
        cost = find_cost(entry.source) if section.columns.cost is not None else None
        rows.append(SectionRow(date=entry.date or "", amount=entry.amount, cost=cost, path=str(entry.source)))

    if not section.is_pricings:
        return rows

    months = project_months(today, rules.prepay_months)
    for entry in lumps:
        for month in months:
            rows.append(SectionRow(date=month, amount=entry.amount, path=str(entry.source)))

    if not rows:
        if rules.default_price is None:
            logger.warning(f"{PRICINGS}: no price files and no DefaultPrice configured; nothing written")
            return rows
        logger.info(f"{PRICINGS}: no price files; using default price {rules.default_price}")
        for month in months:
            rows.append(SectionRow(date=month, amount=rules.default_price, path=DEFAULT_PRICE_MARKER))
    return rows


# ------------------------------ Excel Writing ------------------------------ #


def write_section_rows(sheet: SheetView, section: Section, rows: Sequence[SectionRow], logger: logging.Logger) -> int:
    cols = section.columns
    try:
        sheet.clear_columns(cols.columns(), section.start_row)
    except WriteError as e:
        logger.warning(f"{section.name}: could not clear previous rows: {e}")

    written = 0
    for offset, item in enumerate(rows):
        row = section.start_row + offset
        values = (
            (cols.date, item.date),
            (cols.amount, item.amount),
            (cols.cost, item.cost),
            (cols.path, item.path),
        )
        for col, value in values:
            if col is None or value is None:
                continue
            try:
                sheet.set_cell(row, col, value)
            except WriteError as e:
                logger.warning(f"{section.name}: {e}")
        written += 1
    return written


def process_section(
    sheet: SheetView,
    root: Path,
    section: Section,
    rules: PricingRules,
    today: date,
    logger: logging.Logger,
) -> int:
    try:
        items = scan_section(root, section, logger)
    except NotFoundError as e:
        if not section.is_pricings:
            raise
        logger.warning(str(e))
        items = []

    rows = build_section_rows(section, items, rules, today, logger)
    if not rows:
        logger.info(f"{section.name}: no entries; section skipped")
        return 0
    written = write_section_rows(sheet, section, rows, logger)
    logger.info(f"{section.name}: wrote {written} row(s) from row {section.start_row}")
    return written


def write_sections(
    sheet: SheetView,
    root: Path,
    sections: Sequence[Section],
    rules: PricingRules,
    today: date,
    logger: logging.Logger,
    summary: Optional[RunSummary] = None,
) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for section in sections:
        try:
            counts[section.name] = process_section(sheet, root, section, rules, today, logger)
        except NotFoundError as e:
            logger.warning(f"{section.name}: {e}; skipping")
            if summary is not None:
                summary.skipped_sections.append(section.name)
    if summary is not None:
        summary.rows_per_section.update(counts)
    return counts


# ---------------------------------- Main ---------------------------------- #


INVALID_SHEET_CHARS_RE = re.compile(r"[\[\]:*?/\\]")


def sheet_title(name: str) -> str:
    """Excel sheet names: no []:*?/\\ and at most 31 characters."""
    cleaned = INVALID_SHEET_CHARS_RE.sub("_", name).strip().strip("'")
    return cleaned[:31] or "Sheet"


def pricing_rules(data: Mapping[str, str]) -> PricingRules:
    default_price = str(data.get("DefaultPrice", "")).strip() or None
    return PricingRules(
        prepay_months=int_field(data, "PrepayMonths", DEFAULT_PREPAY_MONTHS),
        default_price=default_price,
    )


def prepare_output_workbook(
    template_path: Path,
    company_dir: Path,
    today: date,
    logger: logging.Logger,
    attempts: int = COPY_ATTEMPTS,
    delay: float = COPY_DELAY_SECONDS,
) -> Path:
    save_dir = company_dir / OUTPUT_DIR_NAME
    save_dir.mkdir(parents=True, exist_ok=True)
    out_path = versioned_path(save_dir, today.isoformat(), ".xlsx")
    result = copy_with_retry(template_path, out_path, attempts=attempts, delay=delay, logger=logger)
    if not result.ok:
        raise AutomationError(
            f"Failed to copy template to {out_path} after {result.attempts} attempt(s): {result.reason}"
        )
    logger.debug(f"Copied template to {out_path}")
    return out_path


def run_reconciliation(
    data_path: Path,
    template_path: Path,
    logger: logging.Logger,
    sections: Sequence[Section] = DEFAULT_SECTIONS,
    today: Optional[date] = None,
    env: Optional[Mapping[str, str]] = None,
    copy_delay: float = COPY_DELAY_SECONDS,
) -> RunSummary:
    today = today or date.today()
    if not template_path.is_file():
        raise NotFoundError(f"Template workbook not found: {template_path}")
    # Parse the data source before anything is written
    data = load_layered(data_path, logger, env=env)
    rules = pricing_rules(data)

    company_dir = data_path.resolve().parent
    sheet_name = sheet_title(company_dir.name)
    logger.info(f"Company folder: {company_dir}")

    out_path = prepare_output_workbook(template_path, company_dir, today, logger, delay=copy_delay)
    summary = RunSummary(output_path=out_path, sheet_name=sheet_name)
    try:
        with WorkbookSession.open(out_path) as session:
            sheet = session.keep_only(TEMPLATE_SHEET)
            sheet.rename(sheet_name)
            try:
                sheet.set_cell(2, 2, f"Data for {sheet_name}")
            except WriteError as e:
                logger.warning(str(e))

            write_sections(sheet, company_dir, sections, rules, today, logger, summary)
            apply_placeholders(sheet, data, logger, pattern=BRACE_TOKEN_RE)

            session.recalculate()
            session.save()
    except ReconError:
        out_path.unlink(missing_ok=True)
        raise

    logger.info(f"Saved {out_path}")
    return summary


def parse_args(argv: Optional[List[str]] = None):
    parser = CliArgumentParser(description="ActReco workbook builder")
    parser.add_argument("data", help="Path to the company's ALL.contract data source")
    parser.add_argument("template", help="Path to the template workbook (.xlsx)")
    parser.add_argument("open", nargs="?", default=None, help="Open the result when done (true/false)")
    parser.add_argument("--sections", help="YAML file overriding the section column maps")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    logger = setup_logger(LOGGER_NAME, verbose=False)
    try:
        args = parse_args(argv)
        if args.verbose:
            logger.setLevel(logging.DEBUG)
        load_dotenv()
        sections = load_sections(Path(args.sections)) if args.sections else DEFAULT_SECTIONS
        summary = run_reconciliation(Path(args.data), Path(args.template), logger, sections=sections)
    except ReconError as e:
        logger.error(str(e))
        raise SystemExit(1)

    if parse_open_flag(args.open):
        open_path(summary.output_path, logger)


if __name__ == "__main__":
    main()
