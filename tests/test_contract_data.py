import pytest

from contract_data import (
    int_field,
    layer_with_env,
    load_data_source,
    parse_data_text,
    sanitize_line,
)
from recon_common import NotFoundError, ParseError


@pytest.mark.parametrize(
    "line, expected",
    [
        ("Phone: 998901234567", "Phone: '998901234567'"),
        ("Amount: 1,200,000", "Amount: '1,200,000'"),
        ("  Day: 05", "  Day: '05'"),
        ('ComName: OOO "Silk" Trade', "ComName: 'OOO \"Silk\" Trade'"),
        ("Note: it's fine", "Note: 'it''s fine'"),
        ("Account: 00123 # main account", "Account: '00123' # main account"),
    ],
)
def test_sanitize_quotes_ambiguous_values(line, expected):
    assert sanitize_line(line) == expected


@pytest.mark.parametrize(
    "line",
    [
        "ComName: Mechanical Silk",
        "Phone: '998901234567'",
        'Phone: "998901234567"',
        "List: [1, 2]",
        "# comment: 123",
        "Empty:",
        "Year: 2025-04-05",
    ],
)
def test_sanitize_leaves_other_lines(line):
    assert sanitize_line(line) == line


def test_parse_keeps_numbers_as_typed():
    data = parse_data_text("Account: 00123\nAmount: 1,200,000\nDay: 5\nNote:\n")
    assert data == {"Account": "00123", "Amount": "1,200,000", "Day": "5", "Note": ""}


def test_parse_error_reports_line():
    with pytest.raises(ParseError) as exc:
        parse_data_text("ComName: Silk\nDay: 5\nBroken: [unclosed\nYear: 2025\n")
    assert exc.value.line is not None
    assert exc.value.line >= 3


def test_parse_rejects_non_mapping():
    with pytest.raises(ParseError, match="key: value"):
        parse_data_text("- a\n- b\n")


def test_empty_source_is_empty_mapping():
    assert parse_data_text("") == {}


def test_load_missing_source(tmp_path):
    with pytest.raises(NotFoundError):
        load_data_source(tmp_path / "ALL.contract")


def test_load_reads_utf8_with_bom(tmp_path):
    path = tmp_path / "ALL.contract"
    path.write_text("\ufeffComName: «Шёлк»\n", encoding="utf-8")
    assert load_data_source(path) == {"ComName": "«Шёлк»"}


def test_env_fills_missing_and_blank_fields():
    env = {"CONTRACT_PREFIX": "RC", "PREPAY_MONTHS": "3", "DEFAULT_PRICE": "500"}
    merged = layer_with_env({"ContractPrefix": "", "PrepayMonths": "6", "ComName": "Silk"}, env=env)
    assert merged["ContractPrefix"] == "RC"
    assert merged["PrepayMonths"] == "6"
    assert merged["DefaultPrice"] == "500"
    assert "ContractFormat" not in merged
    with pytest.raises(TypeError):
        merged["ComName"] = "Other"


def test_int_field():
    assert int_field({"PrepayMonths": "3"}, "PrepayMonths", 2) == 3
    assert int_field({}, "PrepayMonths", 2) == 2
    with pytest.raises(ParseError):
        int_field({"PrepayMonths": "three"}, "PrepayMonths", 2)
    with pytest.raises(ParseError):
        int_field({"PrepayMonths": "0"}, "PrepayMonths", 2)
    with pytest.raises(ParseError):
        int_field({"PrepayMonths": "1e400"}, "PrepayMonths", 2)


@pytest.mark.parametrize(
    "text, key, expected",
    [
        ("Time: 10:30\n", "Time", "10:30"),
        ("Code: 1_000\n", "Code", "1_000"),
        ("Flag: yes\n", "Flag", "yes"),
        ("Country: NO\n", "Country", "NO"),
        ("On: off\n", "On", "off"),
        ("Signed: Y\n", "Signed", "Y"),
        ("Rate: .5\n", "Rate", ".5"),
        ("Start: 2025-04-05\n", "Start", "2025-04-05"),
        ("Hex: 0x1F\n", "Hex", "0x1F"),
    ],
)
def test_parse_keeps_yaml_typed_words_as_text(text, key, expected):
    assert parse_data_text(text) == {key: expected}
