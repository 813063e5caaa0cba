"""
Placeholder templating and contract numbers.

Documents carry ``[Key]`` tokens, spreadsheets ``{Key}`` tokens. Each distinct
token is resolved once and replaced everywhere in a single pass:

  ContractNum / Contract  -> contract number (supplied or generated)
  MonthText               -> Russian month name for ``Month``
  <Base>Text              -> ``<Base>`` spelled out in Russian words
  <Base>Phone             -> phone with ``998`` country code shown as ``+998``
  Date                    -> YYYY-MM-DD from Year/Month/Day
  anything else           -> value from the data source, or ""
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Mapping, Optional, Pattern, Set

from num2words import num2words

from recon_common import WriteError


BRACKET_TOKEN_RE = re.compile(r"\[([A-Za-z0-9_]+)\]")
BRACE_TOKEN_RE = re.compile(r"\{([A-Za-z0-9_]+)\}")

DEFAULT_CONTRACT_FORMAT = "{Prefix}-{CName}-{Day}{Month}{Year}"
CONTRACT_TOKENS = {"ContractNum", "Contract"}
NUMBER_LANG = "ru"

RUSSIAN_MONTHS = (
    "январь", "февраль", "март", "апрель", "май", "июнь",
    "июль", "август", "сентябрь", "октябрь", "ноябрь", "декабрь",
)


# ----------------------------- Value Formatting ---------------------------- #


def month_name(month) -> str:
    try:
        number = int(str(month).strip())
    except ValueError:
        return ""
    if 1 <= number <= 12:
        return RUSSIAN_MONTHS[number - 1]
    return ""


def number_to_words(value) -> str:
    """Cardinal words for the integer part of ``value``; "" if not a number."""
    raw = str(value).strip().replace(",", "").replace(" ", "")
    if not raw:
        return ""
    try:
        number = int(float(raw))
    except (ValueError, OverflowError):
        return ""
    return num2words(number, lang=NUMBER_LANG)


def format_phone(value) -> str:
    text = str(value).strip()
    if not text:
        return ""
    return re.sub(r"^998", "+998", text)


def _pad2(value) -> str:
    text = str(value).strip()
    return text.zfill(2) if text else ""


def compose_date(data: Mapping[str, str]) -> str:
    year = str(data.get("Year", "")).strip()
    month = _pad2(data.get("Month", ""))
    day = _pad2(data.get("Day", ""))
    if not (year and month and day):
        return ""
    return f"{year}-{month}-{day}"


# ----------------------------- Contract Number ----------------------------- #


def company_initials(name) -> str:
    if not name:
        return ""
    cleaned = re.sub(r"[«»\"']", "", str(name)).strip()
    return "".join(word[0].upper() for word in cleaned.split() if word)


def generate_contract_number(data: Mapping[str, str], default_prefix: str = "") -> str:
    supplied = str(data.get("ContractNumber", "") or "").strip()
    if supplied:
        return supplied

    fmt = str(data.get("ContractFormat", "") or "") or DEFAULT_CONTRACT_FORMAT
    values = {
        "{Prefix}": str(data.get("ContractPrefix", "") or "") or default_prefix,
        "{CName}": company_initials(data.get("ComName", "")),
        "{Day}": _pad2(data.get("Day", "") or ""),
        "{Month}": _pad2(data.get("Month", "") or ""),
        "{Year}": str(data.get("Year", "") or ""),
    }
    # First occurrence only: a repeated token keeps its later copies
    for token, value in values.items():
        fmt = fmt.replace(token, value, 1)
    return fmt


# ------------------------------- Resolution -------------------------------- #


def find_tokens(text: str, pattern: Pattern[str] = BRACKET_TOKEN_RE) -> Set[str]:
    return set(pattern.findall(text or ""))


def resolve_token(name: str, data: Mapping[str, str], contract_number: str) -> str:
    if name in CONTRACT_TOKENS:
        return contract_number
    if name == "MonthText":
        return month_name(data.get("Month", ""))
    if name.endswith("Text"):
        base = name[: -len("Text")]
        value = data.get(base)
        return number_to_words(value) if value not in (None, "") else ""
    if name.endswith("Phone"):
        value = data.get(name)
        return format_phone(value) if value not in (None, "") else ""
    if name == "Date":
        return compose_date(data)
    value = data.get(name)
    return "" if value is None else str(value)


def build_placeholder_map(
    tokens: Set[str],
    data: Mapping[str, str],
    contract_number: Optional[str] = None,
) -> Dict[str, str]:
    if contract_number is None:
        contract_number = generate_contract_number(data)
    return {name: resolve_token(name, data, contract_number) for name in sorted(tokens)}


def wrap_token(name: str, pattern: Pattern[str]) -> str:
    if pattern is BRACE_TOKEN_RE:
        return "{" + name + "}"
    return f"[{name}]"


def apply_placeholders(
    target,
    data: Mapping[str, str],
    logger: logging.Logger,
    pattern: Pattern[str] = BRACKET_TOKEN_RE,
    contract_number: Optional[str] = None,
) -> Dict[str, str]:
    """Fill every token found in ``target`` (anything with text()/replace_all()).

    Returns the resolved placeholder map. Failed replacements are warnings.
    """
    tokens = find_tokens(target.text(), pattern)
    resolved = build_placeholder_map(tokens, data, contract_number)
    logger.debug(f"Found {len(tokens)} distinct placeholder(s)")
    for name, value in resolved.items():
        token = wrap_token(name, pattern)
        try:
            count = target.replace_all(token, value)
        except WriteError as e:
            logger.warning(f"Placeholder {token} not fully replaced: {e}")
            continue
        if not value:
            logger.debug(f"{token} resolved to empty text ({count} occurrence(s))")
        else:
            logger.debug(f"{token} -> {value!r} ({count} occurrence(s))")
    return resolved
