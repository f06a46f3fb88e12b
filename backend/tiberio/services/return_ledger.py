"""
Return/refund ledger for purchase order items.

Everything here is pure: callers load the item, hand its ledger state in,
and persist the outcome together with the stock credit in one transaction.

Stock credit rule: a return of `r` units against an item with `a` units still
available to return resolves the whole outstanding batch at once. The `r`
units go back to the supplier and the remaining `a - r` units are kept, so
exactly `a - r` is credited to sellable stock. Because the batch is resolved
in one shot, an item that already carries a return is rejected rather than
returned again.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from numbers import Integral
from typing import Optional

from tiberio.errors import (
    InvalidQuantity,
    InvalidState,
    InvalidStatus,
    MissingReason,
    QuantityExceeded,
)

PENDING = "pending"
RECEIVED = "received"
PARTIALLY_RETURNED = "partially_returned"
RETURNED = "returned"

ITEM_STATUSES = (PENDING, RECEIVED, PARTIALLY_RETURNED, RETURNED)


@dataclass(frozen=True)
class ItemLedgerState:
    ordered_qty: int
    refunded_qty: int = 0
    status: str = PENDING

    @property
    def available_to_return(self) -> int:
        return self.ordered_qty - self.refunded_qty


@dataclass(frozen=True)
class ReturnOutcome:
    refunded_qty: int
    status: str
    refund_reason: str
    refunded_at: datetime
    stock_credit: int


def derive_status(ordered_qty: int, refunded_qty: int, explicit_status: str) -> str:
    """
    Single source of truth for an item's status.

    Any refund decides the status on its own; without one the explicitly set
    status (pending or received) stands.
    """
    if explicit_status not in ITEM_STATUSES:
        raise InvalidStatus(f"Unknown item status: {explicit_status}")
    if refunded_qty < 0 or refunded_qty > ordered_qty:
        raise InvalidQuantity(
            f"Refunded quantity {refunded_qty} outside 0..{ordered_qty}"
        )
    if refunded_qty > 0:
        return RETURNED if refunded_qty == ordered_qty else PARTIALLY_RETURNED
    if explicit_status in (PENDING, RECEIVED):
        return explicit_status
    return PENDING


def _as_quantity(value) -> int:
    if isinstance(value, bool) or value is None:
        raise InvalidQuantity("Returned quantity must be a whole number")
    if isinstance(value, Integral):
        qty = int(value)
    elif isinstance(value, float) and value.is_integer():
        qty = int(value)
    elif isinstance(value, Decimal) and value.is_finite() and value == value.to_integral_value():
        qty = int(value)
    else:
        raise InvalidQuantity("Returned quantity must be a whole number")
    if qty <= 0:
        raise InvalidQuantity("Returned quantity must be greater than 0")
    return qty


def process_return(
    item: ItemLedgerState,
    requested_qty,
    reason: Optional[str],
    now: Optional[datetime] = None,
) -> ReturnOutcome:
    qty = _as_quantity(requested_qty)

    if reason is None or not str(reason).strip():
        raise MissingReason("Refund reason is required")

    current = derive_status(item.ordered_qty, item.refunded_qty, item.status)
    if current != PENDING:
        raise InvalidState(f"Item is already {current}; no further returns allowed")

    available = item.available_to_return
    if qty > available:
        raise QuantityExceeded(
            f"Cannot return {qty} items. Only {available} items available for return."
        )

    refunded = item.refunded_qty + qty
    return ReturnOutcome(
        refunded_qty=refunded,
        status=derive_status(item.ordered_qty, refunded, current),
        refund_reason=str(reason).strip(),
        refunded_at=now or datetime.now(timezone.utc),
        stock_credit=available - qty,
    )


def mark_received(item: ItemLedgerState) -> str:
    current = derive_status(item.ordered_qty, item.refunded_qty, item.status)
    if current != PENDING:
        raise InvalidState(f"Item is already {current}; cannot mark as received")
    return derive_status(item.ordered_qty, item.refunded_qty, RECEIVED)
