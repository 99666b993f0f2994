from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from ...constants import ENTRY_TYPES, ZERO
from ...utils.helpers import fmt_qty


@dataclass(frozen=True)
class LedgerEntry:
    entry_type: str
    reference_id: int | str | None
    occurred_at: Optional[datetime]
    status: str | None
    debit_amount: Decimal
    credit_amount: Decimal
    notes: str | None = None
    date_flagged: bool = False

    @property
    def amount(self) -> Decimal:
        """Signed effect on the client's balance (debit - credit)."""
        return self.debit_amount - self.credit_amount

    def search_text(self) -> str:
        parts = [
            str(self.reference_id) if self.reference_id is not None else "",
            self.status or "",
            self.entry_type,
            fmt_qty(self.amount),
            self.occurred_at.date().isoformat() if self.occurred_at else "",
        ]
        return " ".join(parts).lower()


@dataclass(frozen=True)
class LedgerFilter:
    entry_type: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None

    @property
    def has_date_range(self) -> bool:
        return self.date_from is not None or self.date_to is not None

    @property
    def is_empty(self) -> bool:
        return not (self.entry_type or self.has_date_range or (self.search or "").strip())

    def matches(self, entry: LedgerEntry) -> bool:
        if self.entry_type and entry.entry_type != self.entry_type:
            return False
        if self.has_date_range:
            if entry.occurred_at is None:
                return False
            d = entry.occurred_at.date()
            if self.date_from is not None and d < self.date_from:
                return False
            if self.date_to is not None and d > self.date_to:
                return False
        needle = (self.search or "").strip().lower()
        if needle and needle not in entry.search_text():
            return False
        return True


@dataclass(frozen=True)
class ClientLedger:
    entries: tuple[LedgerEntry, ...] = ()
    running_balance_by_entry: tuple[Decimal, ...] = ()
    debit_total: Decimal = ZERO
    credit_total: Decimal = ZERO
    net_total: Decimal = ZERO
    warnings: tuple[str, ...] = ()
    filters: Optional[LedgerFilter] = None

    @property
    def totals(self) -> Dict[str, Decimal]:
        return {
            "debit_total": self.debit_total,
            "credit_total": self.credit_total,
            "net_total": self.net_total,
        }

    def summary_by_type(self) -> Dict[str, Dict[str, object]]:
        """Count and total amount per entry type (every type present, zeros included)."""
        out: Dict[str, Dict[str, object]] = {t: {"count": 0, "amount": ZERO} for t in ENTRY_TYPES}
        for e in self.entries:
            bucket = out.setdefault(e.entry_type, {"count": 0, "amount": ZERO})
            bucket["count"] += 1
            bucket["amount"] += e.debit_amount + e.credit_amount
        return out

    def rows(self, descending: bool = False) -> List[dict]:
        rows = [
            {
                "entry_type": e.entry_type,
                "reference_id": e.reference_id,
                "occurred_at": e.occurred_at,
                "status": e.status,
                "debit": e.debit_amount,
                "credit": e.credit_amount,
                "amount": e.amount,
                "notes": e.notes,
                "date_flagged": e.date_flagged,
                "balance_after": bal,
            }
            for e, bal in zip(self.entries, self.running_balance_by_entry)
        ]
        if descending:
            rows.reverse()
        return rows
