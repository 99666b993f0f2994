# utils/helpers.py
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
import logging
import re
from typing import Any, Optional, Union

NumberLike = Union[Decimal, float, int, str]

_log = logging.getLogger(__name__)

# commas only as three-digit group separators: 1,250 or -12,000.75
_GROUPED = re.compile(r"^[-+]?\d{1,3}(,\d{3})+(\.\d+)?$")


def to_decimal(v: Any, default: Optional[Decimal] = Decimal("0")) -> Optional[Decimal]:
    """
    Parse a quantity/amount coming off the wire into a Decimal.

    Accepts Decimal, int, float (via str() to avoid binary noise) and numeric
    strings, including ones with thousands separators. None, empty strings and
    unparsable values return `default`; so does a comma used any other way
    ("1,5" is not guessed to mean 1.5 or 15).
    """
    if v is None or isinstance(v, bool):
        return default
    if isinstance(v, Decimal):
        return v if v.is_finite() else default
    if isinstance(v, int):
        return Decimal(v)
    if isinstance(v, float):
        v = str(v)
    s = str(v).strip()
    if not s:
        return default
    if "," in s:
        if not _GROUPED.match(s):
            _log.warning("to_decimal: ambiguous separators in %r", v)
            return default
        s = s.replace(",", "")
    try:
        d = Decimal(s)
    except InvalidOperation:
        _log.debug("to_decimal: failed to parse %r", v)
        return default
    return d if d.is_finite() else default


def parse_datetime(v: Any) -> Optional[datetime]:
    """
    Best-effort parse of API dates ("2024-01-31", "2024-01-31 10:15:00",
    ISO strings with 'T'/'Z'/offset) into a naive datetime.

    Aware values are converted to UTC and made naive so every result is
    mutually comparable. Returns None when the value is missing or unparsable.
    """
    if v is None:
        return None
    if isinstance(v, datetime):
        dt = v
    elif isinstance(v, date):
        return datetime(v.year, v.month, v.day)
    else:
        s = str(v).strip()
        if not s or s.startswith("0000-00-00"):
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            try:
                dt = datetime.strptime(s, "%Y/%m/%d")
            except ValueError:
                return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_date(v: Any) -> Optional[date]:
    dt = parse_datetime(v)
    return dt.date() if dt is not None else None


def first_present(row: dict, keys: tuple[str, ...]) -> tuple[Optional[str], Any]:
    """
    Return (key, value) for the first key in `keys` whose value is not None/"".
    (None, None) when none of them is present.
    """
    for k in keys:
        val = row.get(k)
        if val is None:
            continue
        if isinstance(val, str) and not val.strip():
            continue
        return k, val
    return None, None


def fmt_qty(v: NumberLike) -> str:
    """Compact quantity text for operator messages (no trailing zeros)."""
    d = to_decimal(v, default=None)
    if d is None:
        return str(v)
    text = format(d.normalize(), "f")
    return text if text != "-0" else "0"


def norm_id(v: Any) -> Any:
    """
    Normalize an identifier coming from JSON: numeric strings become ints so
    "12" and 12 refer to the same record; everything else is kept as text.
    """
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, int):
        return v
    if isinstance(v, float) and v.is_integer():
        return int(v)
    s = str(v).strip()
    if not s:
        return None
    if s.isdigit():
        return int(s)
    return s
