import math
import os
import tempfile
from datetime import date, datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Tuple

from filelock import FileLock, Timeout
from sqlalchemy import case, func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tiberio.adapters.event_emitter import (
    INVENTORY_TOPIC,
    ORDER_TOPIC,
    EventEmitter,
    NullEmitter,
)
from tiberio.config import settings
from tiberio.errors import (
    InvalidQuantity,
    InvalidStatus,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from tiberio.models.order import ORDER_STATUSES, Order, OrderItem
from tiberio.models.product import Product
from tiberio.models.supplier import Supplier
from tiberio.services import return_ledger
from tiberio.services.inventory_service import InventoryService, product_to_dict
from tiberio.utils.logging import get_logger
from tiberio.utils.transactions import committed_transaction

log = get_logger("tiberio.orders")

SORT_FIELDS = ("id", "created_at", "updated_at", "status", "total_price", "receipt_number")
TERMINAL_ITEM_STATUSES = (
    return_ledger.RECEIVED,
    return_ledger.PARTIALLY_RETURNED,
    return_ledger.RETURNED,
)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def item_to_dict(it: OrderItem) -> Dict:
    product = it.product
    return {
        "id": it.id,
        "order_id": it.order_id,
        "item_id": it.product_id,
        "qty": it.qty,
        "refunded_qty": it.refunded_qty or 0,
        "unit_price": float(it.unit_price or 0),
        "status": it.status,
        "refunded_at": _iso(it.refunded_at),
        "refund_reason": it.refund_reason,
        "product_code": product.code if product else None,
        "product_description": product.description if product else None,
    }


def order_to_dict(order: Order) -> Dict:
    supplier = order.supplier
    return {
        "id": order.id,
        "supplier_id": order.supplier_id,
        "description": order.description,
        "status": order.status,
        "total_price": float(order.total_price or 0),
        "receipt_number": order.receipt_number,
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
        "supplier_name": supplier.name if supplier else None,
        "contact_person": supplier.contact_person if supplier else None,
        "contact_number": supplier.contact_number if supplier else None,
        "email": supplier.email if supplier else None,
        "supplier_address": supplier.address if supplier else None,
        "items": [item_to_dict(it) for it in order.items],
    }


def derive_order_status(item_statuses: Iterable[str], current: str) -> str:
    """
    Aggregate order status after an item changed. Cancelled orders keep their
    status; otherwise the order is returned once every item is, and completed
    once every item has been resolved one way or another.
    """
    statuses = list(item_statuses)
    if current == "cancelled" or not statuses:
        return current
    if all(s == return_ledger.RETURNED for s in statuses):
        return "returned"
    if all(s in TERMINAL_ITEM_STATUSES for s in statuses):
        return "completed"
    return current


class OrderService:
    def __init__(self, db: Session, emitter: Optional[EventEmitter] = None):
        self.db = db
        self.events = emitter or NullEmitter()

    # -- queries ---------------------------------------------------------

    def _get_order(self, order_id: int) -> Order:
        order = (
            self.db.query(Order)
            .filter(Order.id == order_id, Order.is_deleted == False)  # noqa: E712
            .first()
        )
        if not order:
            raise NotFoundError("Order not found")
        return order

    def get_order(self, order_id: int) -> Dict:
        return order_to_dict(self._get_order(order_id))

    def list_orders(
        self,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[str] = None,
        supplier_id: Optional[int] = None,
        search: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        sort_by: str = "created_at",
        sort_order: str = "DESC",
    ) -> Tuple[List[Dict], Dict]:
        limit = limit or settings.DEFAULT_PAGE_SIZE
        query = (
            self.db.query(Order)
            .outerjoin(Supplier, Order.supplier_id == Supplier.id)
            .filter(Order.is_deleted == False)  # noqa: E712
        )
        if status:
            query = query.filter(Order.status == status)
        if supplier_id:
            query = query.filter(Order.supplier_id == supplier_id)
        if search:
            like = f"%{search}%"
            query = query.filter(
                Order.receipt_number.ilike(like)
                | Order.description.ilike(like)
                | Supplier.name.ilike(like)
            )
        if start_date:
            query = query.filter(Order.created_at >= datetime.combine(start_date, time.min))
        if end_date:
            query = query.filter(
                Order.created_at < datetime.combine(end_date + timedelta(days=1), time.min)
            )

        total = query.with_entities(func.count(Order.id)).scalar() or 0

        field = sort_by if sort_by in SORT_FIELDS else "created_at"
        column = getattr(Order, field)
        if str(sort_order).upper() == "ASC":
            query = query.order_by(column.asc(), Order.id.asc())
        else:
            query = query.order_by(column.desc(), Order.id.desc())

        orders = query.offset((page - 1) * limit).limit(limit).all()
        total_pages = math.ceil(total / limit) if total else 0
        pagination = {
            "current_page": page,
            "total_pages": total_pages,
            "total_items": total,
            "items_per_page": limit,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        }
        return [order_to_dict(o) for o in orders], pagination

    def order_stats(self) -> Dict:
        row = (
            self.db.query(
                func.count(Order.id),
                func.sum(case((Order.status == "ordered", 1), else_=0)),
                func.sum(case((Order.status.in_(("delivered", "completed")), 1), else_=0)),
                func.sum(case((Order.status == "on_delivery", 1), else_=0)),
                func.coalesce(func.sum(Order.total_price), 0),
            )
            .filter(Order.is_deleted == False)  # noqa: E712
            .one()
        )
        return {
            "total_orders": row[0] or 0,
            "pending_orders": int(row[1] or 0),
            "completed_orders": int(row[2] or 0),
            "on_delivery_orders": int(row[3] or 0),
            "total_value": float(row[4] or 0),
        }

    # -- mutations -------------------------------------------------------

    def create_order(
        self,
        supplier_id: int,
        items: List[Dict],
        description: Optional[str] = None,
        receipt_number: Optional[str] = None,
    ) -> Dict:
        """
        items: list of {item_id: int, qty: int, unit_price: number}
        The order and all of its items are inserted in one transaction.
        """
        if not supplier_id or not items:
            raise ValidationError("Supplier ID and items are required")

        with committed_transaction(self.db):
            if not self.db.get(Supplier, supplier_id):
                raise NotFoundError(f"Supplier {supplier_id} not found")

            order = Order(
                supplier_id=supplier_id,
                description=description or None,
                receipt_number=receipt_number or None,
                status="ordered",
            )
            total = Decimal("0")
            for li in items:
                product_id = li.get("item_id")
                qty = li.get("qty")
                if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
                    raise InvalidQuantity("Each item needs a quantity of at least 1")
                try:
                    unit_price = Decimal(str(li.get("unit_price", 0)))
                except InvalidOperation:
                    raise ValidationError("Unit price must be a number")
                if not unit_price.is_finite() or unit_price < 0:
                    raise ValidationError("Unit price cannot be negative")
                product = self.db.get(Product, product_id) if product_id else None
                if not product or product.is_deleted:
                    raise NotFoundError(f"Product {product_id} not found")

                order.items.append(
                    OrderItem(
                        product_id=product.id,
                        qty=qty,
                        refunded_qty=0,
                        unit_price=unit_price,
                        status=return_ledger.PENDING,
                    )
                )
                total += unit_price * qty
            order.total_price = total
            self.db.add(order)
            self.db.flush()
            order_id = order.id

        created = self.get_order(order_id)
        log.info("order %s created with %s items", order_id, len(created["items"]))
        self.events.emit(ORDER_TOPIC, {"type": "added", "order": created})
        return created

    def update_order_status(self, order_id: int, status: str) -> Dict:
        if status not in ORDER_STATUSES:
            raise InvalidStatus("Invalid status. Must be one of: " + ", ".join(ORDER_STATUSES))
        with committed_transaction(self.db):
            order = self._get_order(order_id)
            order.status = status
        updated = self.get_order(order_id)
        self.events.emit(ORDER_TOPIC, {"type": "updated", "order": updated})
        return updated

    def _get_item(self, order_id: int, item_id: int, lock: bool = False) -> OrderItem:
        self._get_order(order_id)
        qry = self.db.query(OrderItem).filter(
            OrderItem.id == item_id, OrderItem.order_id == order_id
        )
        if lock:
            qry = qry.with_for_update()
        item = qry.first()
        if not item:
            raise NotFoundError("Order item not found")
        return item

    def _refresh_aggregate(self, order_id: int) -> None:
        order = self._get_order(order_id)
        new_status = derive_order_status((it.status for it in order.items), order.status)
        if new_status != order.status:
            log.info("order %s status %s -> %s", order_id, order.status, new_status)
            order.status = new_status

    def update_item_status(self, order_id: int, item_id: int, status: str) -> Dict:
        """Only the explicit pending -> received transition goes through here."""
        if status != return_ledger.RECEIVED:
            raise InvalidStatus(
                "Invalid status. Items can only be marked as received here; "
                "use the return endpoint for returns"
            )
        try:
            with committed_transaction(self.db):
                item = self._get_item(order_id, item_id, lock=True)
                state = return_ledger.ItemLedgerState(item.qty, item.refunded_qty or 0, item.status)
                item.status = return_ledger.mark_received(state)
                self.db.flush()
                self._refresh_aggregate(order_id)
        except StaleDataError:
            raise StateConflictError("Order item was modified concurrently; reload and retry")

        updated = self.get_order(order_id)
        log.info("order %s item %s received", order_id, item_id)
        self.events.emit(ORDER_TOPIC, {"type": "updated", "order": updated})
        return updated

    def _item_lock(self, item_id: int) -> FileLock:
        locks_dir = settings.LOCK_DIR or os.path.join(tempfile.gettempdir(), "tiberio_locks")
        os.makedirs(locks_dir, exist_ok=True)
        return FileLock(os.path.join(locks_dir, f"order_item_{item_id}.lock"))

    def return_item(
        self, order_id: int, item_id: int, returned_quantity, refund_reason: Optional[str]
    ) -> Dict:
        """
        Record a return against one order item and credit the kept quantity
        back to stock. The item update, the stock credit and the order
        aggregate are committed together or not at all.
        """
        lock = self._item_lock(item_id)
        inventory = InventoryService(self.db)
        try:
            with lock.acquire(timeout=settings.LOCK_TIMEOUT_SECONDS):
                with committed_transaction(self.db):
                    item = self._get_item(order_id, item_id, lock=True)
                    state = return_ledger.ItemLedgerState(
                        item.qty, item.refunded_qty or 0, item.status
                    )
                    outcome = return_ledger.process_return(state, returned_quantity, refund_reason)

                    item.refunded_qty = outcome.refunded_qty
                    item.status = outcome.status
                    item.refund_reason = outcome.refund_reason
                    item.refunded_at = outcome.refunded_at
                    self.db.flush()

                    inventory.credit(item.product_id, outcome.stock_credit)
                    self._refresh_aggregate(order_id)
        except Timeout:
            raise StateConflictError("Order item is being updated; try again")
        except StaleDataError:
            raise StateConflictError("Order item was modified concurrently; reload and retry")

        log.info(
            "order %s item %s returned %s (credited %s to stock)",
            order_id,
            item_id,
            outcome.refunded_qty,
            outcome.stock_credit,
        )
        updated = self.get_order(order_id)
        self.events.emit(ORDER_TOPIC, {"type": "updated", "order": updated})
        for product in inventory.touched_products():
            self.events.emit(
                INVENTORY_TOPIC, {"type": "updated", "product": product_to_dict(product)}
            )
        return {
            "message": "Item returned successfully",
            "order": updated,
            "returned_quantity": outcome.refunded_qty,
            "stock_credit": outcome.stock_credit,
        }

    def delete_order(self, order_id: int) -> None:
        with committed_transaction(self.db):
            order = self._get_order(order_id)
            order.is_deleted = True
        log.info("order %s deleted", order_id)
        self.events.emit(ORDER_TOPIC, {"type": "deleted", "orderId": int(order_id)})
