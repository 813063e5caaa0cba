import logging
from pathlib import Path

import openpyxl
import pytest


CONTRACT_TEXT = """\
ComName: Mechanical Silk
ContractPrefix: RC
Day: 5
Month: 4
Year: 2025
PrepayMonths: 2
ManagerPhone: 998901234567
"""


@pytest.fixture
def logger():
    log = logging.getLogger("tests")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def template_xlsx(tmp_path) -> Path:
    wb = openpyxl.Workbook()
    app = wb.active
    app.title = "App"
    app["A1"] = "{ComName}"
    app["A2"] = "Contract {Contract}"
    app["A3"] = "{Missing}"
    app["E1"] = "=SUM(D5:D20)"
    other = wb.create_sheet("Notes")
    other["A1"] = "scratch"
    summary = wb.create_sheet("ALL")
    summary["A5"] = "Companies"
    path = tmp_path / "template.xlsx"
    wb.save(path)
    wb.close()
    return path


@pytest.fixture
def company_dir(tmp_path) -> Path:
    company = tmp_path / "Mechanical Silk"
    (company / "Bank-OT" / "2025-03-14 1,250,000 wire").mkdir(parents=True)
    (company / "Bank-OT" / "2025-03-02 300").mkdir()
    (company / "Bank-OT" / "notes.txt").mkdir()
    (company / "Pricings").mkdir()
    (company / "Pricings" / "ALL 1,200,000.txt").write_text("")
    (company / "Pricings" / "2025-01-01 900,000.txt").write_text("")
    (company / "Pricings" / "readme.md").write_text("")
    (company / "ALL.contract").write_text(CONTRACT_TEXT, encoding="utf-8")
    return company
