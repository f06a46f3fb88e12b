from datetime import datetime, timezone
from decimal import Decimal

import pytest

from tiberio.errors import (
    InvalidQuantity,
    InvalidState,
    InvalidStatus,
    MissingReason,
    QuantityExceeded,
)
from tiberio.services import return_ledger as ledger
from tiberio.services.return_ledger import ItemLedgerState, derive_status, mark_received, process_return

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_partial_return_credits_kept_quantity():
    item = ItemLedgerState(ordered_qty=10)
    out = process_return(item, 3, "damaged", now=NOW)
    assert out.refunded_qty == 3
    assert out.status == ledger.PARTIALLY_RETURNED
    assert out.stock_credit == 7
    assert out.refund_reason == "damaged"
    assert out.refunded_at == NOW


def test_full_return_credits_nothing():
    out = process_return(ItemLedgerState(ordered_qty=15), 15, "wrong item", now=NOW)
    assert out.refunded_qty == 15
    assert out.status == ledger.RETURNED
    assert out.stock_credit == 0


@pytest.mark.parametrize("ordered", [1, 2, 7, 20])
def test_credit_and_status_for_every_valid_quantity(ordered):
    for qty in range(1, ordered + 1):
        out = process_return(ItemLedgerState(ordered_qty=ordered), qty, "r")
        assert out.stock_credit == ordered - qty
        expected = ledger.RETURNED if qty == ordered else ledger.PARTIALLY_RETURNED
        assert out.status == expected


@pytest.mark.parametrize("qty", [0, -1, -10, 2.5, "3", None, True, Decimal("1.5")])
def test_invalid_quantities_rejected(qty):
    item = ItemLedgerState(ordered_qty=10)
    with pytest.raises(InvalidQuantity):
        process_return(item, qty, "damaged")
    assert item == ItemLedgerState(ordered_qty=10)


def test_integral_float_and_decimal_accepted():
    assert process_return(ItemLedgerState(ordered_qty=4), 2.0, "x").refunded_qty == 2
    assert process_return(ItemLedgerState(ordered_qty=4), Decimal("4"), "x").stock_credit == 0


@pytest.mark.parametrize("reason", [None, "", "   ", "\n\t"])
def test_reason_required(reason):
    with pytest.raises(MissingReason):
        process_return(ItemLedgerState(ordered_qty=5), 1, reason)


def test_reason_is_stripped():
    assert process_return(ItemLedgerState(ordered_qty=5), 1, "  torn box ").refund_reason == "torn box"


def test_quantity_exceeded_message():
    with pytest.raises(QuantityExceeded) as exc:
        process_return(ItemLedgerState(ordered_qty=5), 6, "damaged")
    assert str(exc.value) == "Cannot return 6 items. Only 5 items available for return."


def test_quantity_checked_before_reason():
    with pytest.raises(InvalidQuantity):
        process_return(ItemLedgerState(ordered_qty=5), 0, "")


@pytest.mark.parametrize(
    "state",
    [
        ItemLedgerState(10, 3, ledger.PARTIALLY_RETURNED),
        ItemLedgerState(10, 10, ledger.RETURNED),
        ItemLedgerState(10, 0, ledger.RECEIVED),
    ],
)
def test_no_return_after_item_is_resolved(state):
    with pytest.raises(InvalidState):
        process_return(state, 1, "again")


def test_state_checked_before_availability():
    # a fully returned item reports the state problem, not the quantity one
    with pytest.raises(InvalidState):
        process_return(ItemLedgerState(10, 10, ledger.RETURNED), 5, "again")


def test_mark_received_only_from_pending():
    assert mark_received(ItemLedgerState(ordered_qty=3)) == ledger.RECEIVED
    for state in (
        ItemLedgerState(3, 0, ledger.RECEIVED),
        ItemLedgerState(3, 1, ledger.PARTIALLY_RETURNED),
        ItemLedgerState(3, 3, ledger.RETURNED),
    ):
        with pytest.raises(InvalidState):
            mark_received(state)


def test_derive_status_refunds_win_over_explicit_status():
    assert derive_status(10, 0, ledger.PENDING) == ledger.PENDING
    assert derive_status(10, 0, ledger.RECEIVED) == ledger.RECEIVED
    assert derive_status(10, 4, ledger.RECEIVED) == ledger.PARTIALLY_RETURNED
    assert derive_status(10, 10, ledger.PENDING) == ledger.RETURNED
    # stale refund-derived status with no refund falls back to pending
    assert derive_status(10, 0, ledger.RETURNED) == ledger.PENDING


def test_derive_status_rejects_bad_input():
    with pytest.raises(InvalidStatus):
        derive_status(10, 0, "shipped")
    with pytest.raises(InvalidQuantity):
        derive_status(10, 11, ledger.PENDING)
    with pytest.raises(InvalidQuantity):
        derive_status(10, -1, ledger.PENDING)
