from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from tiberio.api.deps import require_token
from tiberio.db import get_db
from tiberio.models.product import Product
from tiberio.services.inventory_service import product_to_dict

router = APIRouter(tags=["inventory"], dependencies=[Depends(require_token)])


@router.get("/{product_id}", summary="Get product with current stock")
def get_product(product_id: int, db: Session = Depends(get_db)):
    p = db.get(Product, product_id)
    if not p or p.is_deleted:
        raise HTTPException(status_code=404, detail="Product not found")
    return product_to_dict(p)
