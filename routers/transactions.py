from datetime import date
from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from database import get_store
from gate import ConsistencyGate, GateResult
from ledger import LedgerStore
from models import TransactionType
from projector import BalanceProjector
import models, schemas, auth

router = APIRouter(prefix="/api/transactions", tags=["Transactions"])


def _out(result: GateResult) -> schemas.TransactionOut:
    out = schemas.TransactionOut.model_validate(result.record)
    out.warnings = list(result.warnings)
    return out


@router.get("", response_model=List[schemas.TransactionOut])
def list_transactions(
    category_id: Optional[int]             = Query(None, description="Filter by category ID"),
    bill_id:     Optional[int]             = Query(None, description="Filter by bill ID"),
    type:        Optional[TransactionType] = Query(None, description="EXPENSE or INCOME"),
    date_from:   Optional[date]            = Query(None, description="Start date YYYY-MM-DD"),
    date_to:     Optional[date]            = Query(None, description="End date YYYY-MM-DD"),
    search:      Optional[str]             = Query(None, description="Search in description"),
    limit:       int                       = Query(1000, ge=1, le=5000),
    offset:      int                       = Query(0,    ge=0),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """List transactions with optional filters, newest first."""
    where = {"user_id": current_user.id}
    if category_id is not None:
        where["category_id"] = category_id
    if bill_id is not None:
        where["bill_id"] = bill_id
    if type is not None:
        where["type"] = type
    if date_from or date_to:
        where["date"] = {}
        if date_from:
            where["date"]["gte"] = date_from
        if date_to:
            where["date"]["lte"] = date_to
    if search:
        where["description"] = {"contains": search}

    return store.find_many(
        models.Transaction, where=where, order_by=["-date", "-id"], skip=offset, take=limit,
    )


@router.get("/stats", response_model=schemas.TransactionStats)
def transaction_stats(
    date_from: Optional[date] = Query(None, description="Start date YYYY-MM-DD"),
    date_to:   Optional[date] = Query(None, description="End date YYYY-MM-DD"),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Income, expenses, balance and a per-category breakdown."""
    return BalanceProjector(store).transaction_stats(current_user.id, date_from, date_to)


@router.get("/{tx_id}", response_model=schemas.TransactionOut)
def get_transaction(
    tx_id: int,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    return ConsistencyGate(store).owned(models.Transaction, tx_id, current_user.id)


@router.post("", response_model=schemas.TransactionOut, status_code=status.HTTP_201_CREATED)
def create_transaction(
    data: schemas.TransactionCreate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Record a transaction. A repeated payment for an already paid bill is accepted with a warning."""
    return _out(ConsistencyGate(store).create_transaction(current_user.id, **data.model_dump()))


@router.put("/{tx_id}", response_model=schemas.TransactionOut)
def update_transaction(
    tx_id: int,
    data: schemas.TransactionUpdate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Update a transaction. Only provided fields are changed; send bill_id: null to unlink a bill."""
    fields = data.model_dump(exclude_unset=True)
    return _out(ConsistencyGate(store).update_transaction(current_user.id, tx_id, **fields))


@router.delete("/{tx_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_transaction(
    tx_id: int,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Delete a transaction by ID."""
    ConsistencyGate(store).delete_transaction(current_user.id, tx_id)
