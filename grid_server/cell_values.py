# grid_server/cell_values.py - Cell value string form, numeric parsing and write coercion

import json
import math
import re
from typing import Any, Optional

from grid_server.models import ColumnType

# Numeric literal accepted by number filters/sorts. Mirrored in SQL by the
# grid_to_number function of each dialect (see database.py).
NUMERIC_PATTERN = r"^-?\d+(\.\d+)?([eE][+-]?\d+)?$"
_NUMERIC_RE = re.compile(NUMERIC_PATTERN)

# Largest integer a float holds exactly
_MAX_SAFE_INT = 2 ** 53


def string_form(value: Any) -> str:
    """Text a cell shows for a stored value ("" for absent/null)"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    return json.dumps(value)


def parse_number(text: Any) -> Optional[float]:
    """Parse the string form of a value as a finite double, None if it isn't one"""
    if text is None or isinstance(text, bool):
        return None
    if isinstance(text, (int, float)):
        try:
            number = float(text)
        except OverflowError:
            return None
        return number if math.isfinite(number) else None
    candidate = str(text).strip()
    if not _NUMERIC_RE.match(candidate):
        return None
    number = float(candidate)
    return number if math.isfinite(number) else None


def _compact_number(number: float) -> Any:
    if number.is_integer() and abs(number) < _MAX_SAFE_INT:
        return int(number)
    return number


def coerce_cell_value(column_type: ColumnType, value: Any) -> Any:
    """Normalise an incoming cell write for the column's declared type.

    number: empty or non-finite input becomes None, otherwise a number.
    text/singleSelect: empty or whitespace-only input becomes None,
    otherwise the raw string.
    attachment: passes through unchanged except "" becomes None.
    """
    if column_type == ColumnType.NUMBER:
        if value is None or isinstance(value, bool):
            return None
        number = parse_number(value)
        return None if number is None else _compact_number(number)

    if column_type == ColumnType.ATTACHMENT:
        return None if value == "" else value

    if value is None:
        return None
    text = value if isinstance(value, str) else string_form(value)
    return None if text.strip() == "" else text
