from datetime import date

import pytest

from tiberio.client.connection import ConnectionManager
from tiberio.client.latest import LatestRequests
from tiberio.client.reconcile import (
    TRANSACTION_SEARCH_FIELDS,
    ChangeEvent,
    LiveCollection,
    ViewFilter,
    normalize_id,
    reconcile,
)
from tiberio.errors import ValidationError

from fakes import FakeSocketClient, InlineExecutor

ORDERED = ViewFilter(status="ordered")


def ev(message):
    return ChangeEvent.from_message(message, "order")


def test_updated_entity_leaving_filter_is_removed():
    local = [{"id": 5, "status": "ordered"}, {"id": 9, "status": "ordered"}]
    result = reconcile(local, ev({"type": "updated", "order": {"id": 5, "status": "completed"}}), ORDERED, 1)
    assert result.items == [{"id": 9, "status": "ordered"}]
    assert not result.stale
    assert local == [{"id": 5, "status": "ordered"}, {"id": 9, "status": "ordered"}]


def test_updated_entity_replaced_in_place():
    local = [{"id": 1, "status": "ordered"}, {"id": 2, "status": "ordered", "description": "old"}, {"id": 3, "status": "ordered"}]
    updated = {"id": 2, "status": "ordered", "description": "new"}
    result = reconcile(local, ev({"type": "updated", "order": updated}), ORDERED, 1)
    assert [o["id"] for o in result.items] == [1, 2, 3]
    assert result.items[1]["description"] == "new"


def test_updated_entity_not_in_view_is_ignored():
    local = [{"id": 1, "status": "ordered"}]
    result = reconcile(local, ev({"type": "updated", "order": {"id": 8, "status": "ordered"}}), ORDERED, 1)
    assert result.items == local


def test_deleted_is_idempotent():
    local = [{"id": 7}, {"id": 8}]
    deleted = ev({"type": "deleted", "orderId": 7})
    once = reconcile(local, deleted, ViewFilter(), 1).items
    twice = reconcile(once, deleted, ViewFilter(), 1).items
    assert once == twice == [{"id": 8}]


def test_ids_compared_as_integers():
    local = [{"id": "7"}, {"id": 8.0}]
    assert reconcile(local, ev({"type": "deleted", "orderId": 7.0}), ViewFilter(), 1).items == [{"id": 8.0}]
    assert reconcile(local, ev({"type": "deleted", "orderId": "8"}), ViewFilter(), 1).items == [{"id": "7"}]


def test_added_prepends_on_first_page():
    local = [{"id": 1, "status": "ordered"}]
    added = ev({"type": "added", "order": {"id": 2, "status": "ordered"}})
    result = reconcile(local, added, ORDERED, 1)
    assert [o["id"] for o in result.items] == [2, 1]
    # replay upserts instead of duplicating
    assert [o["id"] for o in reconcile(result.items, added, ORDERED, 1).items] == [2, 1]


def test_added_on_later_page_marks_view_stale():
    local = [{"id": 1, "status": "ordered"}]
    result = reconcile(local, ev({"type": "added", "order": {"id": 2, "status": "ordered"}}), ORDERED, 2)
    assert result.stale
    assert result.items == local


@pytest.mark.parametrize("page", [1, 3])
def test_added_never_inserts_non_matching_entity(page):
    local = [{"id": 1, "status": "ordered"}]
    result = reconcile(local, ev({"type": "added", "order": {"id": 2, "status": "cancelled"}}), ORDERED, page)
    assert result.items == local
    assert not result.stale


def test_view_filter_search_supplier_and_dates():
    entity = {
        "id": 1,
        "status": "ordered",
        "supplier_id": "4",
        "receipt_number": "RC-77",
        "description": "Gauze restock",
        "supplier_name": "Medisupply",
        "created_at": "2026-01-05T10:00:00+00:00",
    }
    assert ViewFilter(search="gauze").matches(entity)
    assert ViewFilter(search="medi", supplier_id=4).matches(entity)
    assert not ViewFilter(search="syringe").matches(entity)
    assert not ViewFilter(supplier_id=5).matches(entity)
    assert ViewFilter(start_date=date(2026, 1, 1), end_date=date(2026, 1, 5)).matches(entity)
    assert not ViewFilter(start_date=date(2026, 1, 6)).matches(entity)
    assert not ViewFilter(end_date=date(2026, 1, 4)).matches(entity)


@pytest.mark.parametrize(
    "message",
    [
        None,
        {"type": "renamed", "order": {"id": 1}},
        {"type": "added"},
        {"type": "updated", "order": {"id": "abc"}},
        {"type": "deleted"},
        {"type": "deleted", "orderId": True},
    ],
)
def test_malformed_messages_rejected(message):
    with pytest.raises(ValidationError):
        ev(message)


def test_normalize_id():
    assert normalize_id(3) == 3
    assert normalize_id("3") == 3
    assert normalize_id(" 3 ") == 3
    assert normalize_id(3.0) == 3
    assert normalize_id("3.0") == 3
    assert normalize_id(3.5) is None
    assert normalize_id(False) is None
    assert normalize_id("x") is None
    assert normalize_id(None) is None


class Backend:
    """In-memory stand-in for the order store's list and stats endpoints."""

    def __init__(self, rows):
        self.rows = rows
        self.page_calls = 0
        self.stats_calls = 0

    def fetch_page(self, view_filter, page):
        self.page_calls += 1
        return [r for r in self.rows if view_filter.matches(r)]

    def fetch_stats(self):
        self.stats_calls += 1
        return {"total_orders": len(self.rows)}


def live_view(rows, page=1):
    backend = Backend(rows)
    fake = FakeSocketClient()
    manager = ConnectionManager(client_factory=lambda: fake)
    view = LiveCollection(
        name="orders",
        entity_key="order",
        fetch_page=backend.fetch_page,
        fetch_stats=backend.fetch_stats,
        requests=LatestRequests(InlineExecutor()),
        view_filter=ORDERED,
        page=page,
    )
    view.attach(manager, "order-updated")
    manager.connect("http://bus.test")
    return view, backend, fake


def test_live_view_loads_after_connect():
    view, backend, _ = live_view([{"id": 5, "status": "ordered"}, {"id": 9, "status": "ordered"}])
    assert [o["id"] for o in view.items] == [5, 9]
    assert view.stats == {"total_orders": 2}
    assert backend.page_calls == 1


def test_live_view_applies_events_and_refreshes_stats():
    view, backend, fake = live_view([{"id": 5, "status": "ordered"}, {"id": 9, "status": "ordered"}])
    fake.deliver("order-updated", {"type": "updated", "order": {"id": 5, "status": "completed"}})
    assert [o["id"] for o in view.items] == [9]
    assert backend.page_calls == 1
    assert backend.stats_calls == 2


def test_live_view_refetches_when_merge_is_unsafe():
    view, backend, fake = live_view([{"id": 5, "status": "ordered"}], page=2)
    fake.deliver("order-updated", {"type": "added", "order": {"id": 6, "status": "ordered"}})
    assert backend.page_calls == 2

    fake.deliver("order-updated", {"type": "mystery"})
    assert backend.page_calls == 3


def test_live_view_refetches_while_connection_is_stale():
    view, backend, fake = live_view([{"id": 5, "status": "ordered"}])
    fake.drop()
    # a late message arriving before rooms are restored is not trusted
    fake.handlers["order-updated"]({"type": "deleted", "orderId": 5})
    assert backend.page_calls == 2
    assert [o["id"] for o in view.items] == [5]

    fake.reconnect()
    assert backend.page_calls == 3


def test_set_view_reloads_with_new_filter():
    view, backend, _ = live_view([{"id": 5, "status": "ordered"}, {"id": 6, "status": "cancelled"}])
    view.set_view(ViewFilter(status="cancelled"))
    assert [o["id"] for o in view.items] == [6]


def test_transaction_view_filter():
    view = ViewFilter(patient_id=17, search="tx-", search_fields=TRANSACTION_SEARCH_FIELDS)
    assert view.matches({"id": 1, "patient_id": 17, "receipt_number": "TX-001"})
    assert not view.matches({"id": 2, "patient_id": "18", "receipt_number": "TX-002"})
    assert not view.matches({"id": 3, "patient_id": 17, "receipt_number": "RC-9", "description": "tx-"})
    assert view.as_params() == {"patient_id": 17, "search": "tx-"}
