from typing import Dict, List

from sqlalchemy.orm import Session

from tiberio.errors import InvalidQuantity, NotFoundError, ValidationError
from tiberio.models.product import Product
from tiberio.utils.logging import get_logger

log = get_logger("tiberio.inventory")


def product_to_dict(p: Product) -> Dict:
    return {
        "id": p.id,
        "code": p.code,
        "description": p.description,
        "unit_price": float(p.unit_price or 0),
        "stock": p.stock,
    }


class InventoryService:
    """
    Stock ledger primitives. Adjustments run inside the caller's transaction;
    `touched` collects the products changed so the caller can broadcast them
    once the transaction has committed.
    """

    def __init__(self, db: Session):
        self.db = db
        self.touched: List[Product] = []

    def _locked_product(self, product_id: int) -> Product:
        # FOR UPDATE is silently dropped on dialects without row locks (sqlite)
        product = (
            self.db.query(Product)
            .filter(Product.id == product_id, Product.is_deleted == False)  # noqa: E712
            .with_for_update()
            .first()
        )
        if not product:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def stock_of(self, product_id: int) -> int:
        product = self.db.get(Product, product_id)
        if not product or product.is_deleted:
            raise NotFoundError(f"Product {product_id} not found")
        return product.stock

    def credit(self, product_id: int, qty: int) -> Product:
        if qty < 0:
            raise InvalidQuantity("Stock credit cannot be negative")
        product = self._locked_product(product_id)
        if qty:
            product.stock = (product.stock or 0) + qty
            self.db.flush()
            self.touched.append(product)
            log.info("credited %s to product %s (stock=%s)", qty, product_id, product.stock)
        return product

    def debit(self, product_id: int, qty: int) -> Product:
        if qty <= 0:
            raise InvalidQuantity("Quantity must be positive")
        product = self._locked_product(product_id)
        if (product.stock or 0) < qty:
            raise ValidationError(f"Insufficient stock for product ID {product_id}")
        product.stock = product.stock - qty
        self.db.flush()
        self.touched.append(product)
        log.info("debited %s from product %s (stock=%s)", qty, product_id, product.stock)
        return product

    def touched_products(self) -> List[Product]:
        """Changed products, each once, in first-touched order."""
        seen = {}
        for p in self.touched:
            seen.setdefault(p.id, p)
        return list(seen.values())
