import math
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tiberio.adapters.event_emitter import (
    INVENTORY_TOPIC,
    TRANSACTION_TOPIC,
    EventEmitter,
    NullEmitter,
)
from tiberio.config import settings
from tiberio.errors import (
    InvalidQuantity,
    InvalidState,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from tiberio.models.product import Product
from tiberio.models.transaction import Transaction, TransactionItem
from tiberio.services.inventory_service import InventoryService, product_to_dict
from tiberio.utils.logging import get_logger
from tiberio.utils.transactions import committed_transaction

log = get_logger("tiberio.transactions")

PENDING = "pending"
FULFILLED = "fulfilled"
CANCELLED = "cancelled"


def transaction_to_dict(t: Transaction) -> Dict:
    return {
        "id": t.id,
        "patient_id": t.patient_id,
        "receipt_number": t.receipt_number,
        "subtotal_price": float(t.subtotal_price or 0),
        "total_discount": float(t.total_discount or 0),
        "final_price": float(t.final_price or 0),
        "discount_percent": float(t.discount_percent or 0),
        "status": t.status,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "items": [
            {
                "id": it.id,
                "product_id": it.product_id,
                "quantity": it.quantity,
                "unit_price": float(it.unit_price or 0),
                "discount": float(it.discount or 0),
                "status": it.status,
            }
            for it in t.items
        ],
    }


class TransactionService:
    """Clinic sales. Creating one debits stock for every line."""

    def __init__(self, db: Session, emitter: Optional[EventEmitter] = None):
        self.db = db
        self.events = emitter or NullEmitter()

    def _get(self, transaction_id: int) -> Transaction:
        t = (
            self.db.query(Transaction)
            .filter(Transaction.id == transaction_id, Transaction.is_deleted == False)  # noqa: E712
            .first()
        )
        if not t:
            raise NotFoundError("Transaction not found")
        return t

    def get_transaction(self, transaction_id: int) -> Dict:
        return transaction_to_dict(self._get(transaction_id))

    def list_transactions(
        self,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[str] = None,
        patient_id: Optional[int] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[Dict], Dict]:
        limit = limit or settings.DEFAULT_PAGE_SIZE
        query = self.db.query(Transaction).filter(Transaction.is_deleted == False)  # noqa: E712
        if status:
            query = query.filter(Transaction.status == status)
        if patient_id:
            query = query.filter(Transaction.patient_id == patient_id)
        if search:
            query = query.filter(Transaction.receipt_number.ilike(f"%{search}%"))
        total = query.with_entities(func.count(Transaction.id)).scalar() or 0
        rows = (
            query.order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        total_pages = math.ceil(total / limit) if total else 0
        return [transaction_to_dict(t) for t in rows], {
            "current_page": page,
            "total_pages": total_pages,
            "total_items": total,
            "items_per_page": limit,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        }

    def _receipt_taken(self, receipt_number: str) -> bool:
        return (
            self.db.query(Transaction.id)
            .filter(Transaction.receipt_number == receipt_number)
            .first()
            is not None
        )

    def create_transaction(
        self,
        patient_id: Optional[int],
        receipt_number: str,
        items: List[Dict],
        discount_percent: float = 0,
    ) -> Dict:
        """
        items: list of {product_id: int, quantity: int, discount: number}
        Unit prices come from the product catalogue, not the request.
        """
        if not receipt_number or not items:
            raise ValidationError("Missing required fields: receipt_number and items")

        inventory = InventoryService(self.db)
        try:
            with committed_transaction(self.db):
                if self._receipt_taken(receipt_number):
                    raise StateConflictError("Receipt number already exists")

                t = Transaction(
                    patient_id=patient_id,
                    receipt_number=receipt_number,
                    discount_percent=Decimal(str(discount_percent or 0)),
                    status=PENDING,
                )
                subtotal = Decimal("0")
                discount_total = Decimal("0")
                for li in items:
                    qty = li.get("quantity")
                    if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
                        raise InvalidQuantity("Each item must have a quantity of at least 1")
                    product = self.db.get(Product, li.get("product_id"))
                    if not product or product.is_deleted:
                        raise NotFoundError(f"Product with ID {li.get('product_id')} not found")
                    inventory.debit(product.id, qty)

                    unit_price = Decimal(product.unit_price or 0)
                    discount = Decimal(str(li.get("discount") or 0))
                    t.items.append(
                        TransactionItem(
                            product_id=product.id,
                            quantity=qty,
                            unit_price=unit_price,
                            discount=discount,
                            status=PENDING,
                        )
                    )
                    subtotal += unit_price * qty
                    discount_total += discount

                t.subtotal_price = subtotal
                t.total_discount = discount_total
                t.final_price = subtotal - discount_total
                self.db.add(t)
                self.db.flush()
                transaction_id = t.id
        except IntegrityError:
            # a concurrent sale took the receipt number between the check and the insert
            self.db.rollback()
            raise StateConflictError("Receipt number already exists")

        created = self.get_transaction(transaction_id)
        log.info("transaction %s created (%s)", transaction_id, receipt_number)
        self.events.emit(TRANSACTION_TOPIC, {"type": "added", "transaction": created})
        self._emit_stock(inventory)
        return created

    def fulfill_transaction(self, transaction_id: int) -> Dict:
        with committed_transaction(self.db):
            t = self._get(transaction_id)
            if t.status == FULFILLED:
                raise InvalidState("Transaction is already fulfilled")
            if t.status == CANCELLED:
                raise InvalidState("Cannot fulfill a cancelled transaction")
            t.status = FULFILLED
            for it in t.items:
                it.status = FULFILLED
        log.info("transaction %s fulfilled", transaction_id)
        return self._updated(transaction_id)

    def fulfill_item(self, item_id: int) -> Dict:
        """Fulfil one line; the sale follows once every line is fulfilled."""
        with committed_transaction(self.db):
            item = self.db.get(TransactionItem, item_id)
            if not item or item.transaction.is_deleted:
                raise NotFoundError("Transaction item not found")
            t = item.transaction
            if t.status == CANCELLED:
                raise InvalidState("Cannot fulfill an item of a cancelled transaction")
            if item.status == FULFILLED:
                raise InvalidState("Item is already fulfilled")
            item.status = FULFILLED
            if all(it.status == FULFILLED for it in t.items):
                t.status = FULFILLED
            transaction_id = t.id
        log.info("transaction %s item %s fulfilled", transaction_id, item_id)
        return self._updated(transaction_id)

    def cancel_transaction(self, transaction_id: int) -> Dict:
        """
        Cancel a sale and put every debited unit back into stock. The status
        change and the stock restore commit together.
        """
        inventory = InventoryService(self.db)
        with committed_transaction(self.db):
            t = self._get(transaction_id)
            if t.status == CANCELLED:
                raise InvalidState("Transaction is already cancelled")
            for it in t.items:
                inventory.credit(it.product_id, it.quantity)
                it.status = CANCELLED
            t.status = CANCELLED
        log.info("transaction %s cancelled, stock restored", transaction_id)
        updated = self._updated(transaction_id)
        self._emit_stock(inventory)
        return updated

    def delete_transaction(self, transaction_id: int) -> None:
        """Soft delete only; stock is restored by cancelling, not deleting."""
        with committed_transaction(self.db):
            self._get(transaction_id).is_deleted = True
        log.info("transaction %s deleted", transaction_id)
        self.events.emit(
            TRANSACTION_TOPIC, {"type": "deleted", "transactionId": int(transaction_id)}
        )

    def _updated(self, transaction_id: int) -> Dict:
        updated = self.get_transaction(transaction_id)
        self.events.emit(TRANSACTION_TOPIC, {"type": "updated", "transaction": updated})
        return updated

    def _emit_stock(self, inventory: InventoryService) -> None:
        for product in inventory.touched_products():
            self.events.emit(
                INVENTORY_TOPIC, {"type": "updated", "product": product_to_dict(product)}
            )
