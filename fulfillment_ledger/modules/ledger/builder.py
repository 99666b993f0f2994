"""
Client ledger assembly: chronological order, running balance, totals.

Ordering: occurred_at ascending with undated entries last; same instant
breaks ties by entry type (order, return, payment, refund) then reference id,
numeric ids numerically. The same input therefore always yields the same order.

When a filter is given, balances and totals are recomputed over the visible
entries only, so the last running balance always equals
debit_total - credit_total.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from ...constants import ENTRY_TYPES, ZERO
from ...utils.helpers import norm_id
from .model import ClientLedger, LedgerEntry, LedgerFilter

_log = logging.getLogger(__name__)

_TYPE_ORDER = {t: i for i, t in enumerate(ENTRY_TYPES)}


def _ref_key(ref) -> tuple:
    rid = norm_id(ref)
    if isinstance(rid, int):
        return (0, rid, "")
    return (1, 0, "" if rid is None else str(rid))


def sort_key(e: LedgerEntry) -> tuple:
    return (
        e.occurred_at is None,
        e.occurred_at or datetime.min,
        _TYPE_ORDER.get(e.entry_type, len(_TYPE_ORDER)),
        _ref_key(e.reference_id),
    )


def sort_entries(entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
    return sorted(entries, key=sort_key)


def build(entries: Iterable[LedgerEntry], *, filters: Optional[LedgerFilter] = None) -> ClientLedger:
    ordered = sort_entries(entries)
    if filters is not None and not filters.is_empty:
        ordered = [e for e in ordered if filters.matches(e)]

    balance: Decimal = ZERO
    debit_total: Decimal = ZERO
    credit_total: Decimal = ZERO
    balances: List[Decimal] = []
    for e in ordered:
        balance += e.debit_amount - e.credit_amount
        debit_total += e.debit_amount
        credit_total += e.credit_amount
        balances.append(balance)

    warnings = []
    undated = sum(1 for e in ordered if e.date_flagged)
    if undated:
        warnings.append(f"Entries without a valid date: {undated} (listed last).")
        _log.warning("Ledger built with %d undated entries", undated)

    return ClientLedger(
        entries=tuple(ordered),
        running_balance_by_entry=tuple(balances),
        debit_total=debit_total,
        credit_total=credit_total,
        net_total=debit_total - credit_total,
        warnings=tuple(warnings),
        filters=filters,
    )
