# utils/validators.py
from __future__ import annotations

from decimal import Decimal

from .helpers import to_decimal


# ---- Numeric parsing & validators ----

def try_parse_decimal(x):
    """
    Best-effort parse to Decimal.

    Returns:
        (ok: bool, value: Decimal|None)
    """
    val = to_decimal(x, default=None)
    return (val is not None), val


def within_remaining(requested, remaining) -> bool:
    """True iff 0 < requested <= remaining (both parsed as Decimal)."""
    ok_r, req = try_parse_decimal(requested)
    ok_m, rem = try_parse_decimal(remaining)
    if not (ok_r and ok_m):
        return False
    return Decimal("0") < req <= rem
