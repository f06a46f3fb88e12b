"""
Merging change notifications into locally held list views.

A view is one page of a filtered, sorted collection. `reconcile` is pure and
keyed by entity id, so replaying an event leaves the view unchanged.
`LiveCollection` wires it to a connection and falls back to a full refetch
whenever an incremental merge cannot be trusted.
"""
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Hashable, List, Optional, Sequence, Tuple

from tiberio.errors import StaleViewError, ValidationError
from tiberio.utils.logging import get_logger

log = get_logger("tiberio.client.reconcile")

ADDED = "added"
UPDATED = "updated"
DELETED = "deleted"

ORDER_SEARCH_FIELDS = ("receipt_number", "description", "supplier_name")
TRANSACTION_SEARCH_FIELDS = ("receipt_number",)


def normalize_id(value) -> Optional[int]:
    """Ids arrive as ints, floats or numeric strings; compare them as ints."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                as_float = float(text)
            except ValueError:
                return None
            return int(as_float) if as_float.is_integer() else None
    return None


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


@dataclass(frozen=True)
class ViewFilter:
    status: Optional[str] = None
    supplier_id: Optional[int] = None
    patient_id: Optional[int] = None
    search: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search_fields: Tuple[str, ...] = ORDER_SEARCH_FIELDS

    def matches(self, entity: Dict[str, Any]) -> bool:
        if self.status and entity.get("status") != self.status:
            return False
        if self.supplier_id is not None and normalize_id(entity.get("supplier_id")) != normalize_id(
            self.supplier_id
        ):
            return False
        if self.patient_id is not None and normalize_id(entity.get("patient_id")) != normalize_id(
            self.patient_id
        ):
            return False
        if self.search:
            needle = self.search.lower()
            if not any(needle in str(entity.get(f) or "").lower() for f in self.search_fields):
                return False
        if self.start_date or self.end_date:
            created = _as_date(entity.get("created_at"))
            if created is None:
                return False
            if self.start_date and created < self.start_date:
                return False
            if self.end_date and created > self.end_date:
                return False
        return True

    def as_params(self) -> Dict[str, Any]:
        params = {
            "status": self.status,
            "supplier_id": self.supplier_id,
            "patient_id": self.patient_id,
            "search": self.search,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }
        return {k: v for k, v in params.items() if v is not None}


@dataclass(frozen=True)
class ChangeEvent:
    type: str
    entity: Optional[Dict[str, Any]] = None
    entity_id: Optional[int] = None

    @classmethod
    def from_message(cls, message: Dict[str, Any], entity_key: str) -> "ChangeEvent":
        """
        Parse a bus message such as {"type": "updated", "order": {...}} or
        {"type": "deleted", "orderId": 7}.
        """
        if not isinstance(message, dict):
            raise ValidationError("Change notification must be an object")
        kind = message.get("type")
        if kind in (ADDED, UPDATED):
            entity = message.get(entity_key)
            if entity is None:
                entity = message.get("entity")
            if not isinstance(entity, dict):
                raise ValidationError(f"{kind} notification without {entity_key}")
            entity_id = normalize_id(entity.get("id"))
            if entity_id is None:
                raise ValidationError(f"{kind} notification with invalid id")
            return cls(kind, entity, entity_id)
        if kind == DELETED:
            raw = message.get(f"{entity_key}Id", message.get("entityId"))
            entity_id = normalize_id(raw)
            if entity_id is None:
                raise ValidationError(f"deleted notification with invalid id {raw!r}")
            return cls(kind, None, entity_id)
        raise ValidationError(f"Unknown notification type {kind!r}")


@dataclass(frozen=True)
class ReconcileResult:
    items: List[Dict[str, Any]]
    # true when the page cannot be patched locally and must be refetched
    stale: bool = False


def _index_of(items: Sequence[Dict[str, Any]], entity_id: int) -> int:
    for i, it in enumerate(items):
        if normalize_id(it.get("id")) == entity_id:
            return i
    return -1


def reconcile(
    collection: Sequence[Dict[str, Any]],
    event: ChangeEvent,
    view_filter: ViewFilter,
    page: int,
) -> ReconcileResult:
    items = list(collection)
    idx = _index_of(items, event.entity_id)

    if event.type == ADDED:
        if not view_filter.matches(event.entity):
            return ReconcileResult(items)
        if idx >= 0:
            items[idx] = event.entity
            return ReconcileResult(items)
        if page != 1:
            # inserting here would shift every later page boundary
            return ReconcileResult(items, stale=True)
        return ReconcileResult([event.entity] + items)

    if event.type == UPDATED:
        if idx < 0:
            return ReconcileResult(items)
        if view_filter.matches(event.entity):
            items[idx] = event.entity
        else:
            del items[idx]
        return ReconcileResult(items)

    if event.type == DELETED:
        if idx >= 0:
            del items[idx]
        return ReconcileResult(items)

    raise ValidationError(f"Unknown notification type {event.type!r}")


@dataclass
class LiveCollection:
    """
    One live list view (orders, transactions, ...).

    fetch_page(view_filter, page) returns the entities of a page and
    fetch_stats() the aggregate counters; both run through `requests` so a
    newer reload always wins over an older one still in flight.
    """

    name: str
    entity_key: str
    fetch_page: Callable[[ViewFilter, int], List[Dict[str, Any]]]
    requests: Any
    fetch_stats: Optional[Callable[[], Dict[str, Any]]] = None
    view_filter: ViewFilter = field(default_factory=ViewFilter)
    page: int = 1
    items: List[Dict[str, Any]] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    on_change: Optional[Callable[["LiveCollection"], None]] = None

    def __post_init__(self):
        self._lock = threading.RLock()
        self._connection = None
        self._topic = None

    @property
    def list_key(self) -> Hashable:
        return (self.name, "list")

    @property
    def stats_key(self) -> Hashable:
        return (self.name, "stats")

    def attach(self, connection, topic: str) -> None:
        self._connection = connection
        self._topic = topic
        connection.subscribe(topic, self.handle_message)
        connection.add_resync_listener(self.refresh)

    def detach(self) -> None:
        if self._connection is None:
            return
        self._connection.unsubscribe(self._topic, self.handle_message)
        self._connection.remove_resync_listener(self.refresh)
        self._connection = None

    def set_view(self, view_filter: Optional[ViewFilter] = None, page: Optional[int] = None) -> None:
        with self._lock:
            if view_filter is not None:
                self.view_filter = view_filter
            if page is not None:
                self.page = page
        self.refresh()

    def refresh(self) -> None:
        with self._lock:
            view_filter, page = self.view_filter, self.page
        self.requests.submit(
            self.list_key,
            lambda: self.fetch_page(view_filter, page),
            self._set_items,
            self._on_fetch_error,
        )
        self.refresh_stats()

    def refresh_stats(self) -> None:
        if self.fetch_stats is None:
            return
        self.requests.submit(self.stats_key, self.fetch_stats, self._set_stats, self._on_fetch_error)

    def handle_message(self, message: Dict[str, Any]) -> None:
        with self._lock:
            try:
                if self._connection is not None and self._connection.is_stale:
                    raise StaleViewError("subscriptions not yet restored")
                event = ChangeEvent.from_message(message, self.entity_key)
                result = reconcile(self.items, event, self.view_filter, self.page)
                if result.stale:
                    raise StaleViewError(f"{event.type} event outside page {self.page}")
                self.items = result.items
            except (StaleViewError, ValidationError) as e:
                log.warning("%s view needs a reload: %s", self.name, e)
                stale = True
            else:
                stale = False

        if stale:
            self.refresh()
            return
        self._changed()
        self.refresh_stats()

    def _set_items(self, items: List[Dict[str, Any]]) -> None:
        with self._lock:
            self.items = list(items)
        self._changed()

    def _set_stats(self, stats: Dict[str, Any]) -> None:
        with self._lock:
            self.stats = dict(stats)
        self._changed()

    def _on_fetch_error(self, exc: BaseException) -> None:
        log.warning("%s reload failed: %s", self.name, exc)

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)
