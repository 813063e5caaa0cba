"""
Contract data sources.

An ``ALL.contract`` file is a flat, hand-edited YAML mapping. Before parsing,
unquoted numeric-like values (phones, account numbers, amounts with commas)
and values carrying stray quotes are rewritten as single-quoted scalars so
YAML keeps them as the exact text the user typed. The loader itself resolves
no YAML 1.1 implicit types besides null, so times, ``yes``/``no`` and
underscored numbers stay text as well.

Missing fields fall back to environment variables (``.env`` is loaded by the
CLIs), resolved once into a read-only mapping.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

import yaml

from recon_common import NotFoundError, ParseError


# Data key -> environment variable consulted when the key is absent or blank
ENV_FALLBACKS: Dict[str, str] = {
    "ContractPrefix": "CONTRACT_PREFIX",
    "ContractFormat": "CONTRACT_FORMAT",
    "PrepayMonths": "PREPAY_MONTHS",
    "DefaultPrice": "DEFAULT_PRICE",
}

KEY_VALUE_RE = re.compile(r"^(?P<head>\s*[A-Za-z0-9_]+\s*:\s+)(?P<value>\S.*?)\s*$")
NUMERIC_LIKE_RE = re.compile(r"^[+\-]?\d[\d,.\s]*$")
# Plain YAML constructs left untouched by the sanitizer
STRUCTURAL_STARTS = ("'", '"', "[", "{", "|", ">", "&", "*", "!", "#")

# YAML 1.1 implicit types that would rewrite typed text (10:30, 1_000, yes, NO)
TYPED_TAGS = (
    "tag:yaml.org,2002:bool",
    "tag:yaml.org,2002:int",
    "tag:yaml.org,2002:float",
    "tag:yaml.org,2002:timestamp",
)


class TextLoader(yaml.SafeLoader):
    """Safe loader that keeps every plain scalar as a string (null excepted)."""


TextLoader.yaml_implicit_resolvers = {
    first: [(tag, regexp) for tag, regexp in resolvers if tag not in TYPED_TAGS]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def sanitize_line(line: str) -> str:
    m = KEY_VALUE_RE.match(line)
    if not m:
        return line
    value = m.group("value")
    if value.startswith(STRUCTURAL_STARTS):
        return line
    # Trailing comments stay comments
    comment = ""
    if " #" in value:
        value, _, rest = value.partition(" #")
        value = value.rstrip()
        comment = " #" + rest
    if NUMERIC_LIKE_RE.match(value) or '"' in value or "'" in value:
        quoted = "'" + value.replace("'", "''") + "'"
        return f"{m.group('head')}{quoted}{comment}"
    return line


def sanitize_text(text: str) -> str:
    return "\n".join(sanitize_line(line) for line in text.splitlines())


def _error_context(text: str, line_index: int, radius: int = 2) -> str:
    lines = text.splitlines()
    start = max(0, line_index - radius)
    out: List[str] = []
    for idx in range(start, min(len(lines), line_index + radius + 1)):
        marker = ">>" if idx == line_index else "  "
        out.append(f"{marker} {idx + 1} | {lines[idx]}")
    return "\n".join(out)


def parse_data_text(text: str, source: str = "<data>") -> Dict[str, str]:
    sanitized = sanitize_text(text)
    try:
        raw = yaml.load(sanitized, Loader=TextLoader)
    except yaml.MarkedYAMLError as e:
        mark = e.problem_mark or e.context_mark
        if mark is None:
            raise ParseError(f"Failed to parse {source}: {e}") from e
        problem = e.problem or str(e)
        raise ParseError(
            f"Failed to parse {source}: {problem} (line {mark.line + 1}, column {mark.column + 1})\n"
            + _error_context(sanitized, mark.line),
            line=mark.line + 1,
            column=mark.column + 1,
        ) from e
    except yaml.YAMLError as e:
        raise ParseError(f"Failed to parse {source}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ParseError(f"{source} must contain key: value pairs, got {type(raw).__name__}")
    return {str(k): "" if v is None else str(v) for k, v in raw.items()}


def load_data_source(path: Path, logger: Optional[logging.Logger] = None) -> Dict[str, str]:
    if not path.is_file():
        raise NotFoundError(f"Data source not found: {path}")
    with open(path, "r", encoding="utf-8-sig") as f:
        text = f.read()
    data = parse_data_text(text, source=str(path))
    if logger:
        logger.debug(f"Loaded {len(data)} field(s) from {path.name}")
    return data


def layer_with_env(
    data: Mapping[str, str],
    env: Optional[Mapping[str, str]] = None,
    fallbacks: Mapping[str, str] = ENV_FALLBACKS,
) -> Mapping[str, str]:
    """Merge ``data`` over ``env`` fallbacks into a read-only mapping."""
    env = os.environ if env is None else env
    merged = dict(data)
    for key, env_name in fallbacks.items():
        if str(merged.get(key, "")).strip():
            continue
        env_value = env.get(env_name)
        if env_value is not None and env_value.strip():
            merged[key] = env_value.strip()
    return MappingProxyType(merged)


def load_layered(path: Path, logger: Optional[logging.Logger] = None,
                 env: Optional[Mapping[str, str]] = None) -> Mapping[str, str]:
    return layer_with_env(load_data_source(path, logger), env=env)


def int_field(data: Mapping[str, str], key: str, default: int, minimum: int = 1) -> int:
    raw = str(data.get(key, "")).strip().replace(",", "")
    if not raw:
        return default
    try:
        value = int(float(raw))
    except (ValueError, OverflowError):
        raise ParseError(f"{key} must be a whole number, got {data.get(key)!r}")
    if value < minimum:
        raise ParseError(f"{key} must be at least {minimum}, got {value}")
    return value
