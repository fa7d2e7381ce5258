"""Conversions between Python field values and their stored string form."""
from __future__ import annotations
import math
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from collections.abc import Sized
from typing import Any, Optional

from ohm_lib.errors import InvalidRangeValue, InvalidValue

NUMERIC_TYPES = (int, float, Decimal)


def is_null_or_empty(value: Any) -> bool:
    """True for None, blank strings and empty containers."""
    if value is None:
        return True
    if isinstance(value, (str, bytes)):
        return len(value.strip()) == 0
    if isinstance(value, Sized):
        return len(value) == 0
    return False


def to_store_value(value: Any) -> str:
    """Render a field value the way it appears in bodies and index keys."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def is_numeric(value: Any) -> bool:
    return isinstance(value, NUMERIC_TYPES) and not isinstance(value, bool)


def to_score(value: Any, field_name: str) -> float:
    """Return the sorted-set score for a comparable field value.

    Numeric strings are scored by their value; NaN is rejected.
    """
    score = parse_score(value, field_name)
    if math.isnan(score):
        raise InvalidRangeValue(f"{field_name}: {value!r} is not numeric")
    return score


def parse_score(value: Any, field_name: str) -> float:
    """Parse a range predicate bound, accepting numeric strings."""
    if is_numeric(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(Decimal(value.strip()))
        except (InvalidOperation, ValueError) as e:
            raise InvalidRangeValue(f"{field_name}: {value!r} is not numeric", cause=e)
    raise InvalidRangeValue(f"{field_name}: {value!r} is not numeric")


def format_score(score: float) -> str:
    """Format a score bound for ZRANGEBYSCORE without a trailing ``.0``."""
    if score.is_integer():
        return str(int(score))
    return repr(score)


def from_store_value(py_type: Optional[type], raw: str) -> Any:
    """Convert a stored string back into `py_type`.

    Unknown or missing types keep the raw string.
    """
    if py_type is None or py_type is str or py_type is Any:
        return raw
    if py_type is bool:
        return raw.lower() in ("true", "1")
    if py_type is int:
        return int(raw)
    if py_type is float:
        return float(raw)
    if py_type is Decimal:
        return Decimal(raw)
    if py_type is datetime:
        return datetime.fromisoformat(raw)
    if py_type is date:
        return date.fromisoformat(raw)
    if py_type is bytes:
        return raw.encode("utf-8")
    if isinstance(py_type, type) and issubclass(py_type, Enum):
        for member in py_type:
            if str(member.value) == raw:
                return member
        raise InvalidValue(f"{raw!r} is not a value of {py_type.__name__}")
    return raw


def coerce(py_type: Optional[type], value: Any) -> Any:
    """Coerce a caller-supplied query value to the field's declared type.

    Keeps ``age == 30`` and ``age == "30"`` and ``age == 30.0`` on an int
    field pointing at the same index key.
    """
    if py_type is None or isinstance(value, bool) or (isinstance(py_type, type) and isinstance(value, py_type)):
        return value
    try:
        return from_store_value(py_type, to_store_value(value))
    except (ValueError, TypeError, InvalidOperation):
        if py_type is int and isinstance(value, float) and value.is_integer():
            return int(value)
        return value
