import logging

import pytest
from num2words import num2words

from contract_templating import (
    BRACE_TOKEN_RE,
    apply_placeholders,
    company_initials,
    compose_date,
    find_tokens,
    generate_contract_number,
    month_name,
    number_to_words,
    resolve_token,
)
from recon_common import WriteError


class FakeDocument:
    """Minimal text()/replace_all() target that records replace calls."""

    def __init__(self, text):
        self.body = text
        self.calls = []

    def text(self):
        return self.body

    def replace_all(self, token, value):
        self.calls.append(token)
        count = self.body.count(token)
        self.body = self.body.replace(token, value)
        return count


# ----------------------------- Contract Number ----------------------------- #


def test_default_contract_number():
    data = {"ContractPrefix": "RC", "ComName": "Mechanical Silk", "Day": 5, "Month": 4, "Year": 2025}
    assert generate_contract_number(data) == "RC-MS-05042025"


def test_supplied_contract_number_is_used_verbatim():
    data = {"ContractNumber": "  A-17/2025 ", "ComName": "Mechanical Silk"}
    assert generate_contract_number(data) == "A-17/2025"


def test_blank_contract_number_is_generated():
    data = {"ContractNumber": "   ", "ComName": "Silk", "Day": "1", "Month": "12", "Year": "2024"}
    assert generate_contract_number(data) == "-S-01122024"


def test_repeated_format_token_replaced_once():
    data = {"ContractFormat": "{Day}.{Month}/{Day}", "Day": "3", "Month": "7"}
    assert generate_contract_number(data) == "03.07/{Day}"


def test_company_initials_strip_quotes():
    assert company_initials('«MECHANICAL silk» "Trade" LLC') == "MSTL"
    assert company_initials("") == ""


# ------------------------------- Resolution -------------------------------- #


def test_find_tokens_collapses_duplicates():
    assert find_tokens("[A] and [B] and [A] but not [C D]") == {"A", "B"}
    assert find_tokens("{Key} [Other]", BRACE_TOKEN_RE) == {"Key"}


def test_month_text():
    assert resolve_token("MonthText", {"Month": "4"}, "") == "апрель"
    assert month_name("13") == ""


def test_number_text():
    assert resolve_token("AmountText", {"Amount": "5"}, "") == "пять"
    assert number_to_words("1,200,000") == num2words(1200000, lang="ru")
    assert number_to_words("42.75") == num2words(42, lang="ru")
    assert resolve_token("AmountText", {}, "") == ""


def test_phone_gets_country_prefix():
    assert resolve_token("ManagerPhone", {"ManagerPhone": "998901234567"}, "") == "+998901234567"
    assert resolve_token("ManagerPhone", {"ManagerPhone": "+998901234567"}, "") == "+998901234567"
    assert resolve_token("ManagerPhone", {}, "") == ""


def test_date_composition():
    assert compose_date({"Year": "2025", "Month": "4", "Day": "5"}) == "2025-04-05"
    assert resolve_token("Date", {"Year": "2025", "Month": "4"}, "") == ""


def test_contract_tokens_and_default_lookup():
    assert resolve_token("ContractNum", {}, "RC-1") == "RC-1"
    assert resolve_token("Contract", {}, "RC-1") == "RC-1"
    assert resolve_token("City", {"City": "Tashkent"}, "") == "Tashkent"
    assert resolve_token("City", {"City": None}, "") == ""


def test_every_occurrence_replaced_with_one_call_per_token():
    doc = FakeDocument("[ComName] signs. [ComName] pays. [ComName] / [ComNameText].")
    resolved = apply_placeholders(doc, {"ComName": "ABC"}, logging.getLogger("tests"))
    assert doc.body == "ABC signs. ABC pays. ABC / ."
    assert sorted(doc.calls) == sorted(["[ComName]", "[ComNameText]"])
    assert resolved == {"ComName": "ABC", "ComNameText": ""}


def test_brace_tokens_for_sheets():
    doc = FakeDocument("{ComName} / {Contract}")
    data = {"ComName": "Mechanical Silk", "ContractPrefix": "RC", "Day": "5", "Month": "4", "Year": "2025"}
    apply_placeholders(doc, data, logging.getLogger("tests"), pattern=BRACE_TOKEN_RE)
    assert doc.body == "Mechanical Silk / RC-MS-05042025"


def test_write_failure_is_a_warning(caplog):
    class Stubborn(FakeDocument):
        def replace_all(self, token, value):
            if token == "[Bad]":
                raise WriteError("locked cell")
            return super().replace_all(token, value)

    doc = Stubborn("[Bad] [Good]")
    with caplog.at_level(logging.WARNING, logger="tests"):
        apply_placeholders(doc, {"Good": "ok"}, logging.getLogger("tests"))
    assert doc.body == "[Bad] ok"
    assert "locked cell" in caplog.text


@pytest.mark.parametrize("value", ["abc", "", "  "])
def test_number_to_words_non_numeric(value):
    assert number_to_words(value) == ""
