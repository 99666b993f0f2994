# fulfillment_ledger/tests/test_fulfillment_controller.py
from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from fulfillment_ledger.modules.fulfillment.controller import FulfillmentSessionController
from fulfillment_ledger.utils.errors import ValidationError

from factories import make_batch, make_line, make_order


def _delivery_setup(gateway):
    o1 = make_order("O1", [
        make_line("L1", "O1", ordered=100, fulfilled=40, returned=10),
        make_line("L2", "O1", ordered=5, fulfilled=5, variant_id=8),
        make_line("L3", "O1", ordered=20, variant_id=9),
    ], order_date="2024-03-01")
    o2 = make_order("O2", [make_line("L1", "O2", ordered=10)], order_date="2024-03-05")
    gateway.pending["delivery"] = [o1, o2]
    gateway.batches = [
        make_batch("B-jan", 30, "2024-01-01"),
        make_batch("B-feb", 80, "2024-02-01"),
        make_batch("C-1", 50, "2024-02-10", variant_id=9),
    ]
    return o1, o2


@pytest.fixture()
def delivery(gateway, ref_cache, app):
    _delivery_setup(gateway)
    ctrl = FulfillmentSessionController(gateway, "delivery", reference_cache=ref_cache)
    asyncio.run(ctrl.load_orders())
    return ctrl


@pytest.mark.usefixtures("app")
def test_orders_listed_newest_first_then_higher_id(gateway):
    gateway.pending["receiving"] = [
        make_order(5, kind="purchase", order_date="2024-01-01"),
        make_order(7, kind="purchase", order_date="2024-02-01"),
        make_order(9, kind="purchase", order_date="2024-01-01"),
        make_order(11, kind="purchase", order_date=None),
    ]
    ctrl = FulfillmentSessionController(gateway, "receiving")
    orders = asyncio.run(ctrl.load_orders())
    assert [o.order_id for o in orders] == [7, 9, 5, 11]


@pytest.mark.usefixtures("app")
def test_load_failure_falls_back_to_empty_list(gateway, spy):
    gateway.fail.add("fetch_pending_orders")
    ctrl = FulfillmentSessionController(gateway, "delivery")
    errors = spy(ctrl.error)
    loaded = spy(ctrl.orders_loaded)

    assert asyncio.run(ctrl.load_orders()) == []
    assert loaded == [[]]
    assert len(errors) == 1


def test_toggle_selects_remaining_and_proposes_batch(delivery, spy):
    states = spy(delivery.state_changed)
    loaded = spy(delivery.batches_loaded)

    assert asyncio.run(delivery.toggle_line("O1", "L1")) is True

    sel = delivery.selection("O1", "L1")
    assert sel.requested_quantity == Decimal("50")
    assert sel.remaining == Decimal("50")
    assert [b.batch_id for b in sel.candidates] == ["B-feb", "B-jan"]
    assert sel.chosen_batch_id == "B-feb"
    assert sel.fulfillment_date == date(2024, 2, 1)
    assert sel.under_supplied is False
    assert sel.loading is False
    assert states == ["selecting"]
    assert len(loaded) == 1
    assert loaded[0][0] == ("O1", "L1")


def test_under_supplied_line_is_flagged(delivery, gateway, spy):
    gateway.batches = [make_batch("B-jan", 20, "2024-01-01"), make_batch("B-feb", 20, "2024-02-01")]
    warnings = spy(delivery.warning)

    asyncio.run(delivery.toggle_line("O1", "L1"))

    sel = delivery.selection("O1", "L1")
    assert sel.chosen_batch_id == "B-feb"
    assert sel.under_supplied is True
    assert any("B-feb" in w for w in warnings)


def test_toggle_again_deselects(delivery, spy):
    asyncio.run(delivery.toggle_line("O1", "L1"))
    states = spy(delivery.state_changed)

    assert asyncio.run(delivery.toggle_line("O1", "L1")) is False
    assert delivery.selections() == []
    assert delivery.active_order_id is None
    assert states == ["idle"]


def test_selecting_on_another_order_is_rejected(delivery, spy):
    asyncio.run(delivery.toggle_line("O1", "L1"))
    before = delivery.selections()
    warnings = spy(delivery.warning)

    assert asyncio.run(delivery.toggle_line("O2", "L1")) is False

    assert delivery.active_order_id == "O1"
    assert delivery.selections() == before
    assert delivery.selection("O2", "L1") is None
    assert len(warnings) == 1 and "O1" in warnings[0]
    assert asyncio.run(delivery.select_all("O2")) == 0


def test_nothing_remaining_is_rejected(delivery, spy):
    warnings = spy(delivery.warning)
    assert asyncio.run(delivery.toggle_line("O1", "L2")) is False
    assert delivery.selections() == []
    assert warnings


def test_select_all_skips_lines_with_nothing_remaining(delivery, spy):
    infos = spy(delivery.info)
    added = asyncio.run(delivery.select_all("O1"))

    assert added == 2
    assert [s.line_id for s in delivery.selections()] == ["L1", "L3"]
    assert delivery.selection("O1", "L3").chosen_batch_id == "C-1"
    assert infos


def test_missing_batch_blocks_submission_and_names_the_line(delivery, gateway, spy):
    asyncio.run(delivery.select_all("O1"))
    delivery.selection("O1", "L3").chosen_batch_id = None
    errors = spy(delivery.error)

    with pytest.raises(ValidationError) as exc:
        delivery.build_payload("O1")
    assert exc.value.line_ids == ["L3"]
    assert "L3" in str(exc.value)

    assert asyncio.run(delivery.submit("O1")) is False
    assert gateway.submitted == []
    assert len(errors) == 1 and "L3" in errors[0]
    assert delivery.state == "selecting"


def test_requested_quantity_out_of_range_is_kept_but_blocks(delivery, spy):
    asyncio.run(delivery.toggle_line("O1", "L1"))
    warnings = spy(delivery.warning)

    assert delivery.set_requested_quantity("O1", "L1", "60") is True
    assert delivery.selection("O1", "L1").requested_quantity == Decimal("60")
    assert warnings

    with pytest.raises(ValidationError) as exc:
        delivery.build_payload("O1")
    assert exc.value.line_ids == ["L1"]

    assert delivery.set_requested_quantity("O1", "L1", "0") is True
    with pytest.raises(ValidationError):
        delivery.build_payload("O1")

    assert delivery.set_requested_quantity("O1", "L1", "abc") is False
    assert delivery.selection("O1", "L1").requested_quantity == Decimal("0")


def test_choose_batch_must_be_a_candidate(delivery, spy):
    asyncio.run(delivery.toggle_line("O1", "L1"))
    warnings = spy(delivery.warning)

    assert delivery.choose_batch("O1", "L1", "C-1") is False
    assert warnings
    assert delivery.choose_batch("O1", "L1", "B-jan") is True

    sel = delivery.selection("O1", "L1")
    assert sel.chosen_batch_id == "B-jan"
    assert sel.fulfillment_date == date(2024, 1, 1)
    assert sel.under_supplied is True


def test_edits_on_inactive_order_are_rejected(delivery, spy):
    asyncio.run(delivery.toggle_line("O1", "L1"))
    warnings = spy(delivery.warning)

    assert delivery.set_requested_quantity("O2", "L1", 1) is False
    assert delivery.set_notes("O2", "x") is False
    assert len(warnings) == 2


def test_payload_shape(delivery):
    asyncio.run(delivery.toggle_line("O1", "L1"))
    delivery.set_requested_quantity("O1", "L1", "12.5")
    delivery.set_notes("O1", "  leave at gate ")

    assert delivery.build_payload("O1") == {
        "order_id": "O1",
        "warehouse_id": 3,
        "items": [
            {
                "line_id": "L1",
                "quantity": Decimal("12.5"),
                "batch_reference": "B-feb",
                "production_date": "2024-02-01",
            }
        ],
        "notes": "leave at gate",
    }


def test_submit_success_resets_and_refreshes(delivery, gateway, spy):
    asyncio.run(delivery.toggle_line("O1", "L1"))
    calls_before = gateway.pending_calls
    submitted = spy(delivery.submitted)
    states = spy(delivery.state_changed)
    infos = spy(delivery.info)

    assert asyncio.run(delivery.submit("O1")) is True

    assert len(gateway.submitted) == 1
    flow, payload = gateway.submitted[0]
    assert flow == "delivery"
    assert payload["items"][0]["line_id"] == "L1"
    assert submitted == [payload]
    assert states == ["submitting", "idle"]
    assert "Saved." in infos
    assert delivery.selections() == []
    assert delivery.active_order_id is None
    assert gateway.pending_calls == calls_before + 1


def test_submit_failure_keeps_selections(delivery, gateway, spy):
    asyncio.run(delivery.toggle_line("O1", "L1"))
    gateway.fail.add("submit_fulfillment")
    errors = spy(delivery.error)
    states = spy(delivery.state_changed)

    assert asyncio.run(delivery.submit("O1")) is False
    assert delivery.state == "selecting"
    assert states == ["submitting", "selecting"]
    assert delivery.selection("O1", "L1") is not None
    assert len(errors) == 1


def test_batch_fetch_failure_leaves_line_without_candidates(delivery, gateway, spy):
    gateway.fail.add("fetch_inventory_batches")
    errors = spy(delivery.error)

    assert asyncio.run(delivery.toggle_line("O1", "L1")) is True

    sel = delivery.selection("O1", "L1")
    assert sel.candidates == ()
    assert sel.chosen_batch_id is None
    assert len(errors) == 1


def test_unexpected_submit_error_returns_to_selecting(delivery, gateway, spy):
    asyncio.run(delivery.toggle_line("O1", "L1"))

    async def reset(payload, flow):
        raise ConnectionResetError("peer reset")

    gateway.submit_fulfillment = reset
    errors = spy(delivery.error)
    warnings = spy(delivery.warning)

    assert asyncio.run(delivery.submit("O1")) is False
    assert delivery.state == "selecting"
    assert delivery.selection("O1", "L1") is not None
    assert len(errors) == 1
    assert "peer reset" in errors[0]

    assert delivery.set_requested_quantity("O1", "L1", "10") is True
    assert warnings == []


def test_unexpected_batch_error_stops_loading(delivery, gateway, spy):
    async def broken(*args, **kwargs):
        raise RuntimeError("bad inventory row")

    gateway.fetch_inventory_batches = broken
    errors = spy(delivery.error)

    assert asyncio.run(delivery.toggle_line("O1", "L1")) is True

    sel = delivery.selection("O1", "L1")
    assert sel.loading is False
    assert sel.candidates == ()
    assert len(errors) == 1


def test_response_for_deselected_line_is_discarded(delivery, gateway, spy):
    loaded = spy(delivery.batches_loaded)

    async def scenario():
        gate = asyncio.Event()
        gateway.batch_gates[7] = gate
        pending = asyncio.create_task(delivery.toggle_line("O1", "L1"))
        await asyncio.sleep(0)
        assert delivery.selection("O1", "L1").loading is True
        await delivery.toggle_line("O1", "L1")   # deselect while in flight
        gate.set()
        await pending

    asyncio.run(scenario())
    assert delivery.selections() == []
    assert loaded == []


def test_superseded_toggle_response_is_discarded(delivery, gateway):
    async def scenario():
        first_gate = asyncio.Event()
        gateway.batch_gates[7] = first_gate
        first = asyncio.create_task(delivery.toggle_line("O1", "L1"))
        await asyncio.sleep(0)
        await delivery.toggle_line("O1", "L1")   # off
        gateway.batch_gates.pop(7)
        gateway.batches = [make_batch("B-new", 100, "2024-04-01")]
        await delivery.toggle_line("O1", "L1")   # on again, answered at once
        gateway.batches = [make_batch("B-old", 100, "2023-01-01")]
        first_gate.set()
        await first

    asyncio.run(scenario())
    assert delivery.selection("O1", "L1").chosen_batch_id == "B-new"


def test_close_discards_in_flight_responses(delivery, gateway, spy):
    loaded = spy(delivery.batches_loaded)

    async def scenario():
        gate = asyncio.Event()
        gateway.batch_gates[7] = gate
        pending = asyncio.create_task(delivery.toggle_line("O1", "L1"))
        await asyncio.sleep(0)
        delivery.close()
        gate.set()
        await pending

    asyncio.run(scenario())
    assert loaded == []
    assert delivery.selections() == []
    assert delivery.orders() == []


def test_clear_order_resets_session(delivery, spy):
    asyncio.run(delivery.select_all("O1"))
    changes = spy(delivery.selection_changed)

    delivery.clear_order("O1")

    assert delivery.selections() == []
    assert delivery.state == "idle"
    assert changes == [[]]
    assert asyncio.run(delivery.toggle_line("O2", "L1")) is True


@pytest.mark.usefixtures("app")
def test_receiving_flow_uses_production_date_and_no_batch(gateway):
    gateway.pending["receiving"] = [make_order(21, kind="purchase", warehouse_id=2)]
    gateway.lines[21] = [make_line(301, 21, ordered=12, fulfilled=2, returned=1)]
    ctrl = FulfillmentSessionController(gateway, "receiving")

    async def scenario():
        await ctrl.load_orders()
        assert await ctrl.toggle_line("21", "301") is True
        sel = ctrl.selection(21, 301)
        assert sel.requested_quantity == Decimal("9")
        assert sel.fulfillment_date == date.today()
        assert ctrl.set_fulfillment_date(21, 301, "2024-06-30") is True
        assert ctrl.set_fulfillment_date(21, 301, "garbage") is False
        return await ctrl.submit(21)

    assert asyncio.run(scenario()) is True
    assert gateway.line_calls == [21]
    assert gateway.batch_calls == []
    flow, payload = gateway.submitted[0]
    assert flow == "receiving"
    assert payload == {
        "order_id": 21,
        "warehouse_id": 2,
        "items": [{"line_id": 301, "quantity": Decimal("9"), "batch_reference": None, "production_date": "2024-06-30"}],
        "notes": None,
    }
