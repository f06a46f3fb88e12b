from datetime import date

import pytest
import requests

from tiberio.client.api import OrderStoreClient
from tiberio.client.latest import LatestRequests
from tiberio.client.reconcile import TRANSACTION_SEARCH_FIELDS, LiveCollection, ViewFilter
from tiberio.errors import NotFoundError, StateConflictError, TransportError, ValidationError

from fakes import FakeResponse, FakeSession, InlineExecutor


def make_client(*responses, error=None):
    session = FakeSession(responses, error=error)
    return OrderStoreClient("http://api.test/", token="tok", session=session), session


def test_bearer_token_attached():
    client, session = make_client()
    assert session.headers["Authorization"] == "Bearer tok"
    assert client.base_url == "http://api.test"


def test_return_item_sends_body():
    client, session = make_client(FakeResponse(200, {"message": "Item returned successfully"}))
    body = client.return_item(4, 9, 3, "damaged")
    assert body["message"] == "Item returned successfully"
    method, url, kwargs = session.calls[0]
    assert method == "PATCH"
    assert url == "http://api.test/api/orders/4/items/9/return"
    assert kwargs["json"] == {"returned_quantity": 3, "refund_reason": "damaged"}


def test_list_orders_drops_empty_params():
    client, session = make_client(FakeResponse(200, {"orders": [], "pagination": {}}))
    client.list_orders(page=2, status="ordered", search="", supplier_id=None)
    assert session.calls[0][2]["params"] == {"page": 2, "status": "ordered"}


@pytest.mark.parametrize(
    "status, error",
    [
        (400, ValidationError),
        (422, ValidationError),
        (404, NotFoundError),
        (409, StateConflictError),
        (500, TransportError),
        (503, TransportError),
    ],
)
def test_error_mapping(status, error):
    client, _ = make_client(FakeResponse(status, {"detail": "nope"}))
    with pytest.raises(error) as exc:
        client.get_order(1)
    assert str(exc.value) == "nope"


def test_error_without_json_body():
    client, _ = make_client(FakeResponse(502))
    with pytest.raises(TransportError) as exc:
        client.delete_order(3)
    assert "502" in str(exc.value)


def test_network_failure_is_transport_error():
    client, session = make_client(error=requests.ConnectionError("refused"))
    with pytest.raises(TransportError):
        client.update_item_status(1, 2, "received")
    assert len(session.calls) == 1


def test_only_reads_are_retried():
    client = OrderStoreClient("http://api.test")
    retry = client.session.get_adapter("http://api.test").max_retries
    assert set(retry.allowed_methods) == {"GET", "HEAD"}
    assert retry.is_retry("PATCH", 503) is False
    assert retry.is_retry("GET", 503) is True


def test_order_page_sends_view_filter():
    client, session = make_client(FakeResponse(200, {"orders": [{"id": 1}], "pagination": {}}))
    view = ViewFilter(status="ordered", supplier_id=3, start_date=date(2026, 1, 1))
    assert client.order_page(view, 2, limit=20) == [{"id": 1}]
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("GET", "http://api.test/api/orders")
    assert kwargs["params"] == {
        "page": 2,
        "limit": 20,
        "status": "ordered",
        "supplier_id": 3,
        "start_date": "2026-01-01",
    }


def test_transaction_page_drops_order_only_filters():
    client, session = make_client(FakeResponse(200, {"transactions": [], "pagination": {}}))
    view = ViewFilter(patient_id=17, supplier_id=3, search="TX", search_fields=TRANSACTION_SEARCH_FIELDS)
    assert client.transaction_page(view, 1) == []
    assert session.calls[0][2]["params"] == {"page": 1, "patient_id": 17, "search": "TX"}


def test_live_collection_over_rest_client():
    client, session = make_client(
        FakeResponse(200, {"orders": [{"id": 4, "status": "ordered"}], "pagination": {}}),
        FakeResponse(200, {"total_orders": 1}),
    )
    view = LiveCollection(
        name="orders",
        entity_key="order",
        fetch_page=client.order_page,
        fetch_stats=client.order_stats,
        requests=LatestRequests(InlineExecutor()),
        view_filter=ViewFilter(status="ordered"),
    )
    view.refresh()
    assert view.items == [{"id": 4, "status": "ordered"}]
    assert view.stats == {"total_orders": 1}
    assert session.calls[1][1] == "http://api.test/api/orders/stats"


def test_cancel_transaction_is_a_single_patch():
    client, session = make_client(FakeResponse(200, {"message": "Transaction cancelled successfully"}))
    client.cancel_transaction(8)
    assert [(m, u) for m, u, _ in session.calls] == [("PATCH", "http://api.test/api/transactions/8/cancel")]
