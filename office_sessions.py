"""
Office sessions

Narrow session objects standing in for the desktop office application:
- WorkbookSession / SheetView over openpyxl
- DocumentSession over python-docx, with a paginated PDF export via PyMuPDF

Sessions are context managers; close() always runs so no handle is leaked.
"""

from __future__ import annotations

import html
from pathlib import Path
from typing import Iterable, Iterator, List, Optional
from zipfile import BadZipFile

import docx
import fitz  # PyMuPDF
import openpyxl
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table
from docx.text.paragraph import Paragraph
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from recon_common import AutomationError, NotFoundError, SheetNotFound, WriteError


PDF_PAGE = fitz.paper_rect("a4")
PDF_MARGIN = 50


# ------------------------------ Excel Session ------------------------------ #


class SheetView:
    """One worksheet of an open workbook, addressed with 1-based (row, col)."""

    def __init__(self, worksheet):
        self.worksheet = worksheet

    @property
    def title(self) -> str:
        return self.worksheet.title

    def rename(self, name: str) -> None:
        self.worksheet.title = name

    def get_cell(self, row: int, col: int):
        return self.worksheet.cell(row=row, column=col).value

    def set_cell(self, row: int, col: int, value) -> None:
        try:
            self.worksheet.cell(row=row, column=col).value = value
        except (AttributeError, ValueError, TypeError) as e:
            raise WriteError(f"{self.title}!{get_column_letter(col)}{row}: {e}") from e

    def clear_columns(self, columns: Iterable[int], start_row: int) -> None:
        last = self.worksheet.max_row
        for col in columns:
            for row in range(start_row, last + 1):
                cell = self.worksheet.cell(row=row, column=col)
                if cell.value is not None:
                    self.set_cell(row, col, None)

    def text(self) -> str:
        parts: List[str] = []
        for row in self.worksheet.iter_rows(values_only=True):
            for value in row:
                if isinstance(value, str):
                    parts.append(value)
        return "\n".join(parts)

    def replace_all(self, token: str, value: str) -> int:
        """Replace ``token`` inside every string cell; return cells changed.

        Cells that refuse the update are skipped and reported together in a
        single WriteError once the sheet has been walked.
        """
        changed = 0
        failed: List[str] = []
        for row in self.worksheet.iter_rows():
            for cell in row:
                if not isinstance(cell.value, str) or token not in cell.value:
                    continue
                new_value = value if cell.value == token else cell.value.replace(token, value)
                try:
                    cell.value = new_value
                    changed += 1
                except (AttributeError, ValueError) as e:
                    failed.append(f"{cell.coordinate} ({e})")
        if failed:
            raise WriteError(f"{self.title}: failed to replace {token} in " + ", ".join(failed))
        return changed


class WorkbookSession:
    def __init__(self, path: Path, workbook):
        self.path = path
        self.workbook = workbook

    @classmethod
    def open(cls, path: Path) -> "WorkbookSession":
        if not path.exists():
            raise NotFoundError(f"Workbook not found: {path}")
        try:
            workbook = openpyxl.load_workbook(path)
        except (InvalidFileException, BadZipFile, KeyError, OSError) as e:
            raise AutomationError(f"Failed to open workbook {path}: {e}") from e
        return cls(path, workbook)

    def __enter__(self) -> "WorkbookSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def sheet_names(self) -> List[str]:
        return list(self.workbook.sheetnames)

    def get_section(self, name: str) -> SheetView:
        if name not in self.workbook.sheetnames:
            raise SheetNotFound(name, self.path)
        return SheetView(self.workbook[name])

    def keep_only(self, name: str) -> SheetView:
        view = self.get_section(name)
        for title in list(self.workbook.sheetnames):
            if title != name:
                self.workbook.remove(self.workbook[title])
        self.workbook.active = 0
        return view

    def duplicate_section(self, name: str, new_name: str) -> SheetView:
        source = self.get_section(name).worksheet
        copy = self.workbook.copy_worksheet(source)
        copy.title = new_name
        # Place the copy right after its template, like a manual tab duplicate
        self.workbook.move_sheet(copy, offset=self.workbook.index(source) + 1 - self.workbook.index(copy))
        return SheetView(copy)

    def recalculate(self) -> None:
        # openpyxl has no calculation engine; Excel/LibreOffice recompute on open
        self.workbook.calculation.fullCalcOnLoad = True

    def save(self) -> None:
        self.save_as(self.path)

    def save_as(self, path: Path) -> None:
        try:
            self.workbook.save(path)
        except OSError as e:
            raise AutomationError(f"Failed to save workbook {path}: {e}") from e
        self.path = path

    def close(self) -> None:
        if self.workbook is not None:
            self.workbook.close()
            self.workbook = None


# ------------------------------- Word Session ------------------------------ #


def _runs_text(paragraph: Paragraph) -> str:
    return "".join(run.text for run in paragraph.runs)


def _replace_in_paragraph(paragraph: Paragraph, token: str, value: str) -> int:
    count = _runs_text(paragraph).count(token)
    if not count:
        return 0
    for run in paragraph.runs:
        if token in run.text:
            run.text = run.text.replace(token, value)
    # Token split across runs: collapse the text into the first run
    if token in _runs_text(paragraph):
        runs = paragraph.runs
        runs[0].text = _runs_text(paragraph).replace(token, value)
        for run in runs[1:]:
            run.text = ""
    return count


def _table_paragraphs(table: Table) -> Iterator[Paragraph]:
    for row in table.rows:
        for cell in row.cells:
            yield from cell.paragraphs
            for nested in cell.tables:
                yield from _table_paragraphs(nested)


class DocumentSession:
    def __init__(self, path: Path, document):
        self.path = path
        self.document = document

    @classmethod
    def open(cls, path: Path) -> "DocumentSession":
        if not path.exists():
            raise NotFoundError(f"Template not found: {path}")
        try:
            document = docx.Document(str(path))
        except (PackageNotFoundError, BadZipFile, KeyError, ValueError) as e:
            raise AutomationError(f"Failed to open document {path}: {e}") from e
        return cls(path, document)

    def __enter__(self) -> "DocumentSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def paragraphs(self) -> Iterator[Paragraph]:
        yield from self.document.paragraphs
        for table in self.document.tables:
            yield from _table_paragraphs(table)
        for section in self.document.sections:
            for part in (section.header, section.footer):
                # Linked parts have no definition of their own; touching them would add one
                if part.is_linked_to_previous:
                    continue
                yield from part.paragraphs
                for table in part.tables:
                    yield from _table_paragraphs(table)

    def text(self) -> str:
        return "\n".join(_runs_text(p) for p in self.paragraphs())

    def replace_all(self, token: str, value: str) -> int:
        return sum(_replace_in_paragraph(p, token, value) for p in self.paragraphs())

    def save_as(self, path: Path) -> None:
        if path.resolve() == self.path.resolve():
            raise AutomationError(f"Refusing to overwrite template {path}")
        try:
            self.document.save(str(path))
        except OSError as e:
            raise AutomationError(f"Failed to save document {path}: {e}") from e

    def export_pdf(self, pdf_path: Path) -> None:
        export_pdf(self.document, pdf_path)

    def close(self) -> None:
        self.document = None


# ------------------------------- PDF Export -------------------------------- #


def document_html(document) -> str:
    blocks: List[str] = []
    for block in document.iter_inner_content():
        if isinstance(block, Table):
            rows = []
            for row in block.rows:
                cells = "".join(f"<td>{html.escape(cell.text)}</td>" for cell in row.cells)
                rows.append(f"<tr>{cells}</tr>")
            blocks.append("<table border='1'>" + "".join(rows) + "</table>")
        else:
            text = html.escape(block.text) or "&nbsp;"
            blocks.append(f"<p>{text}</p>")
    return "\n".join(blocks)


def export_pdf(document, pdf_path: Path, css: Optional[str] = None) -> int:
    """Render the document's text into a paginated A4 PDF; return page count."""
    story = fitz.Story(html=document_html(document), user_css=css or "body {font-size: 11pt;}")
    where = PDF_PAGE + (PDF_MARGIN, PDF_MARGIN, -PDF_MARGIN, -PDF_MARGIN)
    try:
        writer = fitz.DocumentWriter(str(pdf_path))
    except RuntimeError as e:
        raise AutomationError(f"Failed to create PDF {pdf_path}: {e}") from e
    pages = 0
    try:
        more = 1
        while more:
            device = writer.begin_page(PDF_PAGE)
            more, _ = story.place(where)
            story.draw(device)
            writer.end_page()
            pages += 1
    finally:
        writer.close()
    return pages
