# fulfillment_ledger/tests/test_reconciler.py
from __future__ import annotations

import logging
from decimal import Decimal

import pytest

from fulfillment_ledger.modules.fulfillment.reconciler import (
    fulfillable_lines,
    reconcile,
    reconcile_order,
)
from fulfillment_ledger.utils.errors import DataIntegrityWarning

from factories import make_line, make_order


def test_remaining_is_ordered_minus_fulfilled_minus_returned():
    rec = reconcile(make_line("L1", "O1", ordered=100, fulfilled=40, returned=10))
    assert rec.remaining == Decimal("50")
    assert rec.is_fulfillable is True
    assert rec.warning is None


@pytest.mark.parametrize(
    "ordered, fulfilled, returned, expected",
    [
        (10, 0, 0, "10"),
        (10, 10, 0, "0"),
        (10, 4, 6, "0"),
        ("2.5", "1.25", 0, "1.25"),
    ],
)
def test_remaining_never_negative(ordered, fulfilled, returned, expected):
    rec = reconcile(make_line("L", "O", ordered, fulfilled, returned))
    assert rec.remaining == Decimal(expected)
    assert rec.is_fulfillable == (rec.remaining > 0)


def test_over_fulfilled_line_clamps_to_zero_with_warning(caplog):
    line = make_line("L9", "O4", ordered=10, fulfilled=8, returned=5)
    with caplog.at_level(logging.WARNING):
        rec = reconcile(line)

    assert rec.remaining == Decimal("0")
    assert rec.is_fulfillable is False
    assert isinstance(rec.warning, DataIntegrityWarning)
    assert rec.warning.line_id == "L9"
    assert rec.warning.order_id == "O4"
    assert rec.warning.raw_remaining == Decimal("-3")
    assert any("L9" in r.getMessage() for r in caplog.records)


def test_fully_delivered_line_has_no_warning():
    rec = reconcile(make_line("L1", "O1", ordered=5, fulfilled=5))
    assert rec.remaining == 0
    assert rec.warning is None


def test_reconcile_order_and_fulfillable_lines():
    order = make_order(
        "O1",
        [
            make_line("L1", "O1", 10, 2),
            make_line("L2", "O1", 10, 10),
            make_line("L3", "O1", 3, 0, 1),
        ],
    )
    recs = reconcile_order(order)
    assert {k: v.remaining for k, v in recs.items()} == {
        "L1": Decimal("8"),
        "L2": Decimal("0"),
        "L3": Decimal("2"),
    }
    assert [ln.line_id for ln in fulfillable_lines(order)] == ["L1", "L3"]
