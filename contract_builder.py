#!/usr/bin/env python3
"""
Contract Builder CLI

Fills a Word contract template from an ALL.contract data source and writes
two artifacts next to the data source:

  <data dir>/Contract/<ContractNumber>/<template name>.docx
  <data dir>/Contract/<ContractNumber>/<template name>.pdf

The template is opened read-only and saved under the new name; it is never
modified in place.

Usage:
  python contract_builder.py <ALL.contract> <template.docx> [open] [--verbose]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv

from contract_data import load_layered
from contract_templating import BRACKET_TOKEN_RE, apply_placeholders, generate_contract_number
from office_sessions import DocumentSession
from recon_common import (
    CliArgumentParser,
    NotFoundError,
    ReconError,
    UsageError,
    open_path,
    parse_open_flag,
    setup_logger,
)


LOGGER_NAME = "contract_builder"
CONTRACT_DIR_NAME = "Contract"
UNSAFE_PATH_CHARS_RE = re.compile(r'[<>:"/\\|?*]')


@dataclass
class ContractOutput:
    contract_number: str
    docx_path: Path
    pdf_path: Path
    placeholders: Dict[str, str]


def contract_folder_name(contract_number: str) -> str:
    return UNSAFE_PATH_CHARS_RE.sub("_", contract_number).strip() or "contract"


def generate_contract_files(
    data_path: Path,
    template_path: Path,
    logger: logging.Logger,
    env: Optional[Mapping[str, str]] = None,
) -> ContractOutput:
    if template_path.suffix.lower() != ".docx":
        raise UsageError(f"Template must be a .docx file: {template_path}")
    if not template_path.is_file():
        raise NotFoundError(f"Template not found: {template_path}")
    data = load_layered(data_path, logger, env=env)

    contract_number = generate_contract_number(data)
    logger.info(f"Contract number: {contract_number}")

    out_dir = data_path.resolve().parent / CONTRACT_DIR_NAME / contract_folder_name(contract_number)
    docx_path = out_dir / f"{template_path.stem}.docx"
    pdf_path = out_dir / f"{template_path.stem}.pdf"

    with DocumentSession.open(template_path) as session:
        placeholders = apply_placeholders(
            session, data, logger, pattern=BRACKET_TOKEN_RE, contract_number=contract_number
        )
        out_dir.mkdir(parents=True, exist_ok=True)
        try:
            session.save_as(docx_path)
            session.export_pdf(pdf_path)
        except ReconError:
            for p in (docx_path, pdf_path):
                p.unlink(missing_ok=True)
            raise

    logger.info(f"Saved {docx_path}")
    logger.info(f"Saved {pdf_path}")
    return ContractOutput(
        contract_number=contract_number,
        docx_path=docx_path,
        pdf_path=pdf_path,
        placeholders=placeholders,
    )


def parse_args(argv: Optional[List[str]] = None):
    parser = CliArgumentParser(description="Contract document builder")
    parser.add_argument("data", help="Path to the ALL.contract data source")
    parser.add_argument("template", help="Path to the Word template (.docx)")
    parser.add_argument("open", nargs="?", default=None, help="Open the PDF when done (true/false)")
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    logger = setup_logger(LOGGER_NAME, verbose=False)
    try:
        args = parse_args(argv)
        if args.verbose:
            logger.setLevel(logging.DEBUG)
        load_dotenv()
        result = generate_contract_files(Path(args.data), Path(args.template), logger)
    except ReconError as e:
        logger.error(str(e))
        raise SystemExit(1)

    if parse_open_flag(args.open):
        open_path(result.pdf_path, logger)


if __name__ == "__main__":
    main()
