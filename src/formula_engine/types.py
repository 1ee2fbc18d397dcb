import re
from datetime import date, datetime
from enum import IntEnum, auto
from typing import Iterable, Optional, Union

from openpyxl.utils.datetime import WINDOWS_EPOCH, to_ISO8601, to_excel

from formula_engine.errors import ERROR_PREFIX, CoercionError, InvalidRangeUsageError


class ValueType(IntEnum):
    NULL = auto()
    NUMBER = auto()
    DATE = auto()
    TEXT = auto()
    BOOLEAN = auto()
    ARRAY = auto()


ScalarValue = None | int | float | str | bool | datetime
Value = Union[ScalarValue, "list[Value]"]

# Sentinel text returned by domain functions for an invalid numeric domain.
SENTINEL_VALUE_ERROR = "#VALUE!"
SENTINEL_NUM_ERROR = "#NUM!"

# Same prefix JavaScript's parseFloat accepts
FLOAT_PREFIX_REGEX = re.compile(r"\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def value_type(value: Value) -> ValueType:
    """Return the ValueType for a given value."""
    if value is None:
        return ValueType.NULL
    # bool must be checked before int
    if isinstance(value, bool):
        return ValueType.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueType.NUMBER
    if isinstance(value, str):
        return ValueType.TEXT
    if isinstance(value, (datetime, date)):
        return ValueType.DATE
    if isinstance(value, list):
        return ValueType.ARRAY
    raise CoercionError(f"Unknown value type: {value!r}")


def parse_number(val: str) -> int | float:
    """Parse a NUMBER token. Integers stay integers."""
    return float(val) if "." in val else int(val)


def parse_float_prefix(val: str) -> Optional[float]:
    """Parse the leading numeric part of some text, or None if there is none."""
    match = FLOAT_PREFIX_REGEX.match(val)
    if not match:
        return None
    return float(match.group(0))


def normalize_number(num: int | float) -> int | float:
    """Collapse integral floats to ints so results read like the literals."""
    if isinstance(num, float) and num.is_integer():
        return int(num)
    return num


def coerce_to_number(val: Value, epoch=WINDOWS_EPOCH) -> int | float:
    """Convert a value to a number for operator arithmetic.

    Unparsable text and empty cells count as 0. Arrays are rejected because
    a range is only meaningful as a function argument.
    """
    if val is None:
        return 0
    if isinstance(val, bool):
        return int(val)
    if isinstance(val, (int, float)):
        return val
    if isinstance(val, str):
        num = parse_float_prefix(val)
        return 0 if num is None else num
    if isinstance(val, (datetime, date)):
        return to_excel(val, epoch=epoch)
    if isinstance(val, list):
        raise InvalidRangeUsageError("Cannot use range in this context")
    raise CoercionError(f"Cannot convert {val!r} to number")


def to_number_or_none(val: Value, epoch=WINDOWS_EPOCH) -> Optional[int | float]:
    """Convert a function argument to a number, or None when it isn't one."""
    if val is None:
        return None
    if isinstance(val, list):
        # A single-cell range behaves like the cell itself
        if len(val) == 1:
            return to_number_or_none(val[0], epoch)
        return None
    if isinstance(val, bool):
        return int(val)
    if isinstance(val, (int, float)):
        return val
    if isinstance(val, str):
        return parse_float_prefix(val)
    if isinstance(val, (datetime, date)):
        return to_excel(val, epoch=epoch)
    return None


def coerce_to_bool(value: Value) -> bool:
    """Convert a value to boolean.

    Text "true"/"false" is read case-insensitively, any other non-empty text
    is truthy.
    """
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        return len(value) > 0
    if isinstance(value, list):
        if len(value) == 1:
            return coerce_to_bool(value[0])
        return len(value) > 0
    return True


def coerce_to_text(value: Value) -> str:
    """Convert a scalar value to text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value).upper()
    if isinstance(value, (int, float)):
        return str(normalize_number(value))
    if isinstance(value, str):
        return value
    if isinstance(value, (date, datetime)):
        return to_ISO8601(value).replace("T", " ")
    if isinstance(value, list):
        if len(value) == 1:
            return coerce_to_text(value[0])
        raise InvalidRangeUsageError("Cannot convert range to text")
    raise CoercionError(f"Cannot convert {value!r} to text")


def aggregate_numbers(values: Iterable[Value], epoch=WINDOWS_EPOCH) -> list[float]:
    """Keep the values that read as numbers, skipping everything else."""
    result: list[float] = []
    for val in values:
        num = to_number_or_none(val, epoch)
        if num is not None:
            result.append(num)
    return result


def is_error(value: Value) -> bool:
    """Return True if the value is a sentinel or an ``#ERROR:`` value."""
    if not isinstance(value, str):
        return False
    if value in (SENTINEL_VALUE_ERROR, SENTINEL_NUM_ERROR):
        return True
    return value.startswith(ERROR_PREFIX)
