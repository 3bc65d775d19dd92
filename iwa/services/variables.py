"""Environment variable mappings supplied at release time."""

from __future__ import annotations

import json
import re
import tomllib
from collections.abc import Iterable, Mapping
from pathlib import Path

from iwa.core.result import Err, Ok, Result
from iwa.services.errors import InvalidInput
from iwa.services.model import Variables, VarValue

__all__ = ["coerce_value", "load_vars_file", "parse_var_assignments", "validate_variables"]

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_INT_RE = re.compile(r"^-?(0|[1-9]\d*)$")
_FLOAT_RE = re.compile(r"^-?(0|[1-9]\d*)\.\d+$")


def coerce_value(raw: str) -> VarValue:
    """Interpret a command-line value: true/false, integers and decimals.

    Anything else, including values with leading zeros, stays a string.
    """
    if raw == "true":
        return True
    if raw == "false":
        return False
    if _INT_RE.match(raw):
        return int(raw)
    if _FLOAT_RE.match(raw):
        return float(raw)
    return raw


def validate_variables(mapping: Mapping[str, object]) -> Result[Variables, InvalidInput]:
    out: Variables = {}
    for key, value in mapping.items():
        if not _KEY_RE.match(key):
            return Err(InvalidInput(message=f"invalid variable name: {key!r}"))
        if not isinstance(value, (str, int, float, bool)):
            return Err(
                InvalidInput(
                    message=f"variable {key} must be a string, number or boolean",
                    hint="Environment documents only carry a flat mapping.",
                )
            )
        if isinstance(value, float) and value != value:
            return Err(InvalidInput(message=f"variable {key} is NaN"))
        out[key] = value
    return Ok(out)


def parse_var_assignments(items: Iterable[str]) -> Result[Variables, InvalidInput]:
    """Parse `KEY=VALUE` strings; later assignments win."""
    raw: dict[str, object] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep:
            return Err(InvalidInput(message=f"expected KEY=VALUE, got {item!r}"))
        raw[key.strip()] = coerce_value(value)
    return validate_variables(raw)


def load_vars_file(path: Path) -> Result[Variables, InvalidInput]:
    """Load a flat TOML (`.toml`) or JSON (anything else) table."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        return Err(InvalidInput(message=f"cannot read vars file: {e}", hint=str(path)))

    try:
        data: object
        if path.suffix.lower() == ".toml":
            data = tomllib.loads(text)
        else:
            data = json.loads(text)
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        return Err(InvalidInput(message=f"invalid vars file: {e}", hint=str(path)))

    if not isinstance(data, dict):
        return Err(InvalidInput(message="vars file root must be a table", hint=str(path)))
    return validate_variables({str(k): v for k, v in data.items()})
