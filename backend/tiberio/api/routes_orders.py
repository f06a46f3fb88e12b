from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from tiberio.adapters.event_emitter import EventEmitter
from tiberio.api.deps import get_emitter, require_token
from tiberio.config import settings
from tiberio.db import get_db
from tiberio.errors import NotFoundError, StateConflictError, ValidationError
from tiberio.schemas.order_schema import CreateOrderIn, ReturnItemIn, StatusIn
from tiberio.services.order_service import OrderService

router = APIRouter(tags=["orders"], dependencies=[Depends(require_token)])


def _raise_http(e: Exception):
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, StateConflictError):
        raise HTTPException(status_code=409, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


@router.get("", summary="List orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    status: Optional[str] = None,
    supplier_id: Optional[int] = None,
    search: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    sort_by: str = "created_at",
    sort_order: str = "DESC",
    db: Session = Depends(get_db),
):
    svc = OrderService(db)
    orders, pagination = svc.list_orders(
        page=page,
        limit=limit,
        status=status,
        supplier_id=supplier_id,
        search=search,
        start_date=start_date,
        end_date=end_date,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return {"orders": orders, "pagination": pagination}


@router.get("/stats", summary="Order statistics")
def order_stats(db: Session = Depends(get_db)):
    return OrderService(db).order_stats()


@router.get("/{order_id}", summary="Get order with items")
def get_order(order_id: int, db: Session = Depends(get_db)):
    try:
        return OrderService(db).get_order(order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("", summary="Create purchase order")
def create_order(
    payload: CreateOrderIn,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    svc = OrderService(db, emitter)
    try:
        return svc.create_order(
            payload.supplier_id,
            [it.model_dump() for it in payload.items],
            description=payload.description,
            receipt_number=payload.receipt_number,
        )
    except (ValidationError, NotFoundError, StateConflictError) as e:
        _raise_http(e)


@router.patch("/{order_id}/status", summary="Update order status")
def update_order_status(
    order_id: int,
    payload: StatusIn,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    svc = OrderService(db, emitter)
    try:
        order = svc.update_order_status(order_id, payload.status)
        return {"message": "Order status updated successfully", "order": order}
    except (ValidationError, NotFoundError, StateConflictError) as e:
        _raise_http(e)


@router.patch("/{order_id}/items/{item_id}/status", summary="Mark an order item received")
def update_item_status(
    order_id: int,
    item_id: int,
    payload: StatusIn,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    svc = OrderService(db, emitter)
    try:
        order = svc.update_item_status(order_id, item_id, payload.status)
        return {"message": "Order item status updated successfully", "order": order}
    except (ValidationError, NotFoundError, StateConflictError) as e:
        _raise_http(e)


@router.patch("/{order_id}/items/{item_id}/return", summary="Return part or all of an order item")
def return_item(
    order_id: int,
    item_id: int,
    payload: ReturnItemIn,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    svc = OrderService(db, emitter)
    try:
        return svc.return_item(
            order_id, item_id, payload.returned_quantity, payload.refund_reason
        )
    except (ValidationError, NotFoundError, StateConflictError) as e:
        _raise_http(e)


@router.delete("/{order_id}", summary="Delete order")
def delete_order(
    order_id: int,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    try:
        OrderService(db, emitter).delete_order(order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Order deleted successfully"}
