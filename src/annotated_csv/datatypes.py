"""
Parse and format functions for each annotated datatype.

Every DataType has exactly one parser and one formatter; the tables are checked for
completeness at import time. Parsers receive non-empty text only, empty cells are resolved
by the decoder against the #default annotation.
"""
import math
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict

from core.model import DataType

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1
UINT64_MAX = (1 << 64) - 1

_INTEGER = re.compile(r"[+-]?\d+")
_UNSIGNED = re.compile(r"\+?\d+")
_DECIMAL = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
_SPECIAL_FLOATS = {"inf": math.inf, "+inf": math.inf, "-inf": -math.inf, "nan": math.nan}
_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,9}))?"
    r"(?:([Zz])|([+-])(\d{2}):(\d{2}))"
)
_DURATION_PART = re.compile(r"(\d+)(ns|us|µs|ms|s|m|h|d|w)")
_NANOS_PER_UNIT = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3_600 * 1_000_000_000,
    "d": 86_400 * 1_000_000_000,
    "w": 604_800 * 1_000_000_000,
}
_TRUE = {"1", "t", "T", "true", "TRUE", "True"}
_FALSE = {"0", "f", "F", "false", "FALSE", "False"}


def _parse_string(text: str) -> str:
    return text


def _parse_long(text: str) -> int:
    if not _INTEGER.fullmatch(text):
        raise ValueError(f"invalid integer {text!r}")
    value = int(text)
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"integer {text} out of range")
    return value


def _parse_unsigned_long(text: str) -> int:
    if not _UNSIGNED.fullmatch(text):
        raise ValueError(f"invalid unsigned integer {text!r}")
    value = int(text)
    if value > UINT64_MAX:
        raise ValueError(f"unsigned integer {text} out of range")
    return value


def _parse_double(text: str) -> float:
    special = _SPECIAL_FLOATS.get(text.lower())
    if special is not None:
        return special
    if not _DECIMAL.fullmatch(text):
        raise ValueError(f"invalid float {text!r}")
    return float(text)


def _parse_boolean(text: str) -> bool:
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"invalid boolean {text!r}")


def _parse_time(text: str) -> datetime:
    m = _RFC3339.fullmatch(text)
    if not m:
        raise ValueError(f"invalid RFC3339 time {text!r}")
    year, month, day, hour, minute, second = (int(g) for g in m.groups()[:6])
    # Precision below one microsecond is dropped
    micros = int((m.group(7) or "").ljust(6, "0")[:6])
    if m.group(8):
        tz = timezone.utc
    else:
        offset = timedelta(hours=int(m.group(10)), minutes=int(m.group(11)))
        tz = timezone(-offset if m.group(9) == "-" else offset)
    return datetime(year, month, day, hour, minute, second, micros, tzinfo=tz)


def _parse_duration(text: str) -> timedelta:
    body = text[1:] if text.startswith("-") else text
    if not body:
        raise ValueError(f"invalid duration {text!r}")
    nanos = 0
    pos = 0
    while pos < len(body):
        m = _DURATION_PART.match(body, pos)
        if not m:
            raise ValueError(f"invalid duration {text!r}")
        nanos += int(m.group(1)) * _NANOS_PER_UNIT[m.group(2)]
        pos = m.end()
    # Precision below one microsecond is dropped
    total = timedelta(microseconds=nanos // 1_000)
    return -total if text.startswith("-") else total


def _format_string(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"expected str, got {type(value).__name__}")
    return value


def _format_integer(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected int, got {type(value).__name__}")
    return str(value)


def _format_unsigned(value: Any) -> str:
    text = _format_integer(value)
    if value < 0:
        raise ValueError(f"unsigned value {value} is negative")
    return text


def _format_double(value: Any) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected float, got {type(value).__name__}")
    value = float(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    # Shortest repr, written out without an exponent
    text = format(Decimal(repr(value)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def _format_boolean(value: Any) -> str:
    if not isinstance(value, bool):
        raise TypeError(f"expected bool, got {type(value).__name__}")
    return "true" if value else "false"


def _format_time(value: Any) -> str:
    if not isinstance(value, datetime):
        raise TypeError(f"expected datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    return text + "Z"


def _format_duration(value: Any) -> str:
    if not isinstance(value, timedelta):
        raise TypeError(f"expected timedelta, got {type(value).__name__}")
    if not value:
        return "0s"
    sign = "-" if value < timedelta(0) else ""
    micros = abs(value) // timedelta(microseconds=1)
    parts = []
    for unit, size in (("h", 3_600_000_000), ("m", 60_000_000), ("s", 1_000_000),
                       ("ms", 1_000), ("us", 1)):
        count, micros = divmod(micros, size)
        if count:
            parts.append(f"{count}{unit}")
    return sign + "".join(parts)


PARSERS: Dict[DataType, Callable[[str], Any]] = {
    DataType.STRING: _parse_string,
    DataType.LONG: _parse_long,
    DataType.UNSIGNED_LONG: _parse_unsigned_long,
    DataType.DOUBLE: _parse_double,
    DataType.BOOLEAN: _parse_boolean,
    DataType.TIME: _parse_time,
    DataType.TIME_NANO: _parse_time,
    DataType.DURATION: _parse_duration,
}

FORMATTERS: Dict[DataType, Callable[[Any], str]] = {
    DataType.STRING: _format_string,
    DataType.LONG: _format_integer,
    DataType.UNSIGNED_LONG: _format_unsigned,
    DataType.DOUBLE: _format_double,
    DataType.BOOLEAN: _format_boolean,
    DataType.TIME: _format_time,
    DataType.TIME_NANO: _format_time,
    DataType.DURATION: _format_duration,
}

assert set(PARSERS) == set(DataType) == set(FORMATTERS), "datatype dispatch is incomplete"


def parse_value(data_type: DataType, text: str) -> Any:
    """Parse non-empty cell text. Raises ValueError on malformed input."""
    return PARSERS[data_type](text)


def format_value(data_type: DataType, value: Any) -> str:
    """Format a cell value; ``None`` becomes an empty cell."""
    if value is None:
        return ""
    return FORMATTERS[data_type](value)


def empty_value(data_type: DataType) -> Any:
    """Value stored for an empty cell that has no default."""
    return "" if data_type is DataType.STRING else None
