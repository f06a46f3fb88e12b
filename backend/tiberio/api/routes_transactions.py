from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from tiberio.adapters.event_emitter import EventEmitter
from tiberio.api.deps import get_emitter, require_token
from tiberio.config import settings
from tiberio.db import get_db
from tiberio.errors import NotFoundError, StateConflictError, ValidationError
from tiberio.schemas.transaction_schema import CreateTransactionIn
from tiberio.services.transaction_service import TransactionService

router = APIRouter(tags=["transactions"], dependencies=[Depends(require_token)])


def _raise_http(e: Exception):
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, StateConflictError):
        raise HTTPException(status_code=409, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


@router.get("", summary="List sales transactions")
def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    status: Optional[str] = None,
    patient_id: Optional[int] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
):
    rows, pagination = TransactionService(db).list_transactions(
        page=page, limit=limit, status=status, patient_id=patient_id, search=search
    )
    return {"transactions": rows, "pagination": pagination}


@router.post("", status_code=201, summary="Record a sale")
def create_transaction(
    payload: CreateTransactionIn,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    svc = TransactionService(db, emitter)
    try:
        return svc.create_transaction(
            payload.patient_id,
            payload.receipt_number,
            [it.model_dump() for it in payload.items],
            discount_percent=payload.discount_percent,
        )
    except (ValidationError, NotFoundError, StateConflictError) as e:
        _raise_http(e)


@router.get("/{transaction_id}", summary="Get a sale with its items")
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        return TransactionService(db).get_transaction(transaction_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{transaction_id}/fulfill", summary="Mark a sale fulfilled")
def fulfill_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    try:
        t = TransactionService(db, emitter).fulfill_transaction(transaction_id)
        return {"message": "Transaction fulfilled successfully", "transaction": t}
    except (ValidationError, NotFoundError, StateConflictError) as e:
        _raise_http(e)


@router.patch("/items/{item_id}/fulfill", summary="Mark one sale line fulfilled")
def fulfill_transaction_item(
    item_id: int,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    try:
        t = TransactionService(db, emitter).fulfill_item(item_id)
        return {"message": "Item fulfilled successfully", "transaction": t}
    except (ValidationError, NotFoundError, StateConflictError) as e:
        _raise_http(e)


@router.patch("/{transaction_id}/cancel", summary="Cancel a sale and restore stock")
def cancel_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    try:
        t = TransactionService(db, emitter).cancel_transaction(transaction_id)
        return {"message": "Transaction cancelled successfully", "transaction": t}
    except (ValidationError, NotFoundError, StateConflictError) as e:
        _raise_http(e)


@router.delete("/{transaction_id}", summary="Delete a sale")
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    emitter: EventEmitter = Depends(get_emitter),
):
    try:
        TransactionService(db, emitter).delete_transaction(transaction_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Transaction deleted successfully"}
