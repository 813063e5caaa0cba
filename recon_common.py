"""
Shared plumbing for the ActReco and contract builders.

- Error taxonomy used by every CLI (exit status 1 on any ReconError)
- Logger setup with severity markers
- Bounded-retry file copy returning a typed result
- Versioned output names and "open the result" helper
"""

from __future__ import annotations

import argparse
import logging
import os
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# ------------------------------- Error Types ------------------------------- #


class ReconError(Exception):
    """Base class for every error the builders report to the user."""


class UsageError(ReconError):
    pass


class NotFoundError(ReconError):
    pass


class SheetNotFound(NotFoundError):
    def __init__(self, sheet_name: str, workbook_path: Optional[Path] = None):
        self.sheet_name = sheet_name
        self.workbook_path = workbook_path
        where = f" in {workbook_path}" if workbook_path else ""
        super().__init__(f'Sheet "{sheet_name}" not found{where}')


class ParseError(ReconError):
    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.line = line
        self.column = column
        super().__init__(message)


class AutomationError(ReconError):
    """A workbook/document session could not be opened, written or saved."""


class WriteError(ReconError):
    """A single cell or token update failed; callers log and continue."""


# ------------------------------ CLI Utilities ------------------------------ #


def setup_logger(name: str, verbose: bool) -> logging.Logger:
    logger = logging.getLogger(name)
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter("[%(levelname)s] %(message)s")
    handler.setFormatter(formatter)
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    return logger


class CliArgumentParser(argparse.ArgumentParser):
    """argparse parser that reports bad arguments as UsageError (exit 1)."""

    def error(self, message):
        self.print_usage(sys.stderr)
        raise UsageError(message)


def parse_open_flag(value: Optional[str]) -> bool:
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "open"}


def open_path(path: Path, logger: logging.Logger) -> None:
    """Hand a generated file to the OS default application."""
    try:
        if sys.platform.startswith("win"):
            os.startfile(str(path))  # type: ignore[attr-defined]
        elif sys.platform == "darwin":
            subprocess.Popen(["open", str(path)])
        else:
            subprocess.Popen(["xdg-open", str(path)])
    except OSError as e:
        logger.warning(f"Could not open {path}: {e}")


# ------------------------------- FS Utilities ------------------------------ #


@dataclass(frozen=True)
class CopyResult:
    ok: bool
    attempts: int
    reason: str = ""


def copy_with_retry(
    source: Path,
    dest: Path,
    attempts: int = 2,
    delay: float = 1.0,
    logger: Optional[logging.Logger] = None,
) -> CopyResult:
    """Copy ``source`` to ``dest``, retrying while the destination is locked.

    A missing source is not retried.
    """
    if not source.is_file():
        return CopyResult(ok=False, attempts=0, reason=f"Source not found: {source}")
    reason = ""
    for attempt in range(1, max(1, attempts) + 1):
        try:
            shutil.copy2(source, dest)
            return CopyResult(ok=True, attempts=attempt)
        except OSError as e:
            reason = str(e)
            if logger:
                logger.debug(f"Copy attempt {attempt} of {source.name} failed: {e}")
            if attempt < attempts:
                time.sleep(delay)
    return CopyResult(ok=False, attempts=max(1, attempts), reason=reason)


def versioned_path(directory: Path, stem: str, suffix: str) -> Path:
    """Return ``stem.suffix`` or the first free ``stem_vN.suffix`` in ``directory``."""
    candidate = directory / f"{stem}{suffix}"
    version = 1
    while candidate.exists():
        candidate = directory / f"{stem}_v{version}{suffix}"
        version += 1
    return candidate


def numbered_path(directory: Path, base_name: str, suffix: str) -> Path:
    """Return the first free ``"<base_name> N.suffix"`` starting from 1."""
    counter = 1
    while True:
        candidate = directory / f"{base_name} {counter}{suffix}"
        if not candidate.exists():
            return candidate
        counter += 1
