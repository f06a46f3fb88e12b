from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from tiberio.config import settings
from tiberio.errors import (
    NotFoundError,
    StateConflictError,
    TransportError,
    ValidationError,
)
from tiberio.utils.logging import get_logger

log = get_logger("tiberio.client")


class OrderStoreClient:
    """
    REST client for the order store.

    Reads are retried with exponential backoff by the session adapter.
    Mutations are sent once: a failed PATCH/POST/DELETE is surfaced as a
    TransportError and retrying is left to the user.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.API_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.session = session or self._build_session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    @staticmethod
    def _build_session() -> requests.Session:
        retry = Retry(
            total=settings.HTTP_READ_RETRIES,
            backoff_factor=settings.HTTP_BACKOFF_FACTOR,
            status_forcelist=(502, 503, 504),
            allowed_methods=frozenset({"GET", "HEAD"}),
            raise_on_status=False,
        )
        s = requests.Session()
        adapter = HTTPAdapter(max_retries=retry)
        s.mount("http://", adapter)
        s.mount("https://", adapter)
        return s

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            log.warning("%s %s failed: %s", method, path, e)
            raise TransportError(f"No response from server: {e}") from e

        if resp.status_code < 400:
            return resp.json()

        try:
            detail = resp.json().get("detail")
        except ValueError:
            detail = None
        message = detail or f"{method} {path} failed with {resp.status_code}"
        if resp.status_code == 404:
            raise NotFoundError(message)
        if resp.status_code == 409:
            raise StateConflictError(message)
        if resp.status_code in (400, 422):
            raise ValidationError(message)
        raise TransportError(message)

    # reads

    def list_orders(self, **params) -> Dict:
        """params: page, limit, status, supplier_id, search, start_date, end_date, sort_by, sort_order"""
        query = {k: v for k, v in params.items() if v not in (None, "")}
        return self._request("GET", "/api/orders", params=query)

    def get_order(self, order_id: int) -> Dict:
        return self._request("GET", f"/api/orders/{order_id}")

    def order_stats(self) -> Dict:
        return self._request("GET", "/api/orders/stats")

    def list_transactions(self, **params) -> Dict:
        query = {k: v for k, v in params.items() if v not in (None, "")}
        return self._request("GET", "/api/transactions", params=query)

    # page fetchers for LiveCollection: view_filter is a reconcile.ViewFilter

    def order_page(self, view_filter, page: int, limit: Optional[int] = None) -> List[Dict]:
        return self.list_orders(page=page, limit=limit, **view_filter.as_params())["orders"]

    def transaction_page(self, view_filter, page: int, limit: Optional[int] = None) -> List[Dict]:
        params = view_filter.as_params()
        params.pop("supplier_id", None)
        params.pop("start_date", None)
        params.pop("end_date", None)
        return self.list_transactions(page=page, limit=limit, **params)["transactions"]

    # mutations

    def create_order(self, order_data: Dict) -> Dict:
        return self._request("POST", "/api/orders", json=order_data)

    def update_order_status(self, order_id: int, status: str) -> Dict:
        return self._request("PATCH", f"/api/orders/{order_id}/status", json={"status": status})

    def update_item_status(self, order_id: int, item_id: int, status: str) -> Dict:
        return self._request(
            "PATCH", f"/api/orders/{order_id}/items/{item_id}/status", json={"status": status}
        )

    def return_item(
        self, order_id: int, item_id: int, returned_quantity: int, refund_reason: str
    ) -> Dict:
        return self._request(
            "PATCH",
            f"/api/orders/{order_id}/items/{item_id}/return",
            json={"returned_quantity": returned_quantity, "refund_reason": refund_reason},
        )

    def delete_order(self, order_id: int) -> Dict:
        return self._request("DELETE", f"/api/orders/{order_id}")

    def create_transaction(self, transaction_data: Dict) -> Dict:
        return self._request("POST", "/api/transactions", json=transaction_data)

    def fulfill_transaction(self, transaction_id: int) -> Dict:
        return self._request("PATCH", f"/api/transactions/{transaction_id}/fulfill")

    def fulfill_transaction_item(self, item_id: int) -> Dict:
        return self._request("PATCH", f"/api/transactions/items/{item_id}/fulfill")

    def cancel_transaction(self, transaction_id: int) -> Dict:
        return self._request("PATCH", f"/api/transactions/{transaction_id}/cancel")
