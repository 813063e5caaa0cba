import docx
import pytest

from contract_builder import contract_folder_name, generate_contract_files, main
from recon_common import NotFoundError, ParseError, UsageError


def _docx_text(path):
    document = docx.Document(str(path))
    parts = [p.text for p in document.paragraphs]
    for table in document.tables:
        for row in table.rows:
            parts.extend(cell.text for cell in row.cells)
    return "\n".join(parts)


@pytest.fixture
def contract_template(tmp_path):
    document = docx.Document()
    document.add_paragraph("Contract No. [ContractNum] of [Date]")
    document.add_paragraph("[ComName] agrees to pay [Amount] ([AmountText]) in [MonthText].")
    document.add_paragraph("Contact: [ManagerPhone]; fax: [FaxPhone]; [ComName].")
    path = tmp_path / "Service Agreement.docx"
    document.save(str(path))
    return path


def test_generate_contract_files(company_dir, contract_template, logger):
    (company_dir / "ALL.contract").write_text(
        "ComName: «Mechanical Silk»\nContractPrefix: RC\nDay: 5\nMonth: 4\nYear: 2025\n"
        "Amount: 5\nManagerPhone: 998901234567\n",
        encoding="utf-8",
    )
    result = generate_contract_files(company_dir / "ALL.contract", contract_template, logger, env={})

    assert result.contract_number == "RC-MS-05042025"
    out_dir = company_dir.resolve() / "Contract" / "RC-MS-05042025"
    assert result.docx_path == out_dir / "Service Agreement.docx"
    assert result.pdf_path == out_dir / "Service Agreement.pdf"
    assert result.pdf_path.exists()

    text = _docx_text(result.docx_path)
    assert "Contract No. RC-MS-05042025 of 2025-04-05" in text
    assert "«Mechanical Silk» agrees to pay 5 (пять) in апрель." in text
    assert "Contact: +998901234567; fax: ; «Mechanical Silk»." in text
    assert "[" not in text

    # template untouched
    assert "[ContractNum]" in _docx_text(contract_template)


def test_env_prefix_fallback(company_dir, contract_template, logger):
    (company_dir / "ALL.contract").write_text("ComName: Silk Road\nDay: 1\nMonth: 2\nYear: 2026\n", encoding="utf-8")
    result = generate_contract_files(
        company_dir / "ALL.contract", contract_template, logger, env={"CONTRACT_PREFIX": "SR"}
    )
    assert result.contract_number == "SR-SR-01022026"


def test_missing_template_produces_nothing(company_dir, tmp_path, logger):
    with pytest.raises(NotFoundError):
        generate_contract_files(company_dir / "ALL.contract", tmp_path / "missing.docx", logger, env={})
    assert not (company_dir / "Contract").exists()


def test_non_docx_template_is_usage_error(company_dir, template_xlsx, logger):
    with pytest.raises(UsageError):
        generate_contract_files(company_dir / "ALL.contract", template_xlsx, logger, env={})


def test_malformed_data_produces_nothing(company_dir, contract_template, logger):
    (company_dir / "ALL.contract").write_text("ComName: {broken\n", encoding="utf-8")
    with pytest.raises(ParseError):
        generate_contract_files(company_dir / "ALL.contract", contract_template, logger, env={})
    assert not (company_dir / "Contract").exists()


def test_contract_folder_name_is_path_safe():
    assert contract_folder_name("A-17/2025") == "A-17_2025"


def test_cli_requires_template(company_dir):
    with pytest.raises(SystemExit) as exc:
        main([str(company_dir / "ALL.contract")])
    assert exc.value.code == 1
