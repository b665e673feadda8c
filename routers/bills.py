from datetime import date
from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from database import get_store
from gate import ConsistencyGate
from ledger import LedgerStore
from models import BillStatus
from projector import BalanceProjector
from routers.transactions import _out
import models, schemas, auth

router = APIRouter(prefix="/api/bills", tags=["Bills"])


def _with_status(bill: models.Bill, projector: BalanceProjector, as_of: Optional[date] = None) -> schemas.BillOut:
    out = schemas.BillOut.model_validate(bill)
    out.status = projector.bill_status(bill.id, as_of)
    return out


@router.get("", response_model=List[schemas.BillOut])
def list_bills(
    status: Optional[BillStatus] = Query(None, description="UPCOMING, PAID or OVERDUE"),
    as_of:  Optional[date]       = Query(None, description="Evaluate status on this date (default today)"),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """List bills with their current status, soonest due first."""
    projector = BalanceProjector(store)
    bills = [
        _with_status(b, projector, as_of)
        for b in store.find_many(models.Bill, where={"user_id": current_user.id}, order_by="due_date")
    ]
    if status is not None:
        bills = [b for b in bills if b.status.status == status]
    return sorted(bills, key=lambda b: b.status.due_date)


@router.get("/reminders", response_model=List[schemas.BillOut])
def bill_reminders(
    days:  int            = Query(7, ge=0, le=365),
    as_of: Optional[date] = Query(None),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Unpaid bills due in the next `days` days, plus any overdue ones."""
    return BalanceProjector(store).bill_reminders(current_user.id, days, as_of)


@router.get("/{bill_id}", response_model=schemas.BillOut)
def get_bill(
    bill_id: int,
    as_of: Optional[date] = Query(None),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    bill = ConsistencyGate(store).owned(models.Bill, bill_id, current_user.id)
    return _with_status(bill, BalanceProjector(store), as_of)


@router.get("/{bill_id}/status", response_model=schemas.BillStatusOut)
def bill_status(
    bill_id: int,
    as_of: Optional[date] = Query(None),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    ConsistencyGate(store).owned(models.Bill, bill_id, current_user.id)
    return BalanceProjector(store).bill_status(bill_id, as_of)


@router.post("", response_model=schemas.BillOut, status_code=status.HTTP_201_CREATED)
def create_bill(
    data: schemas.BillCreate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    bill = ConsistencyGate(store).create_bill(current_user.id, **data.model_dump())
    return _with_status(bill, BalanceProjector(store))


@router.put("/{bill_id}", response_model=schemas.BillOut)
def update_bill(
    bill_id: int,
    data: schemas.BillUpdate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    bill = ConsistencyGate(store).update_bill(current_user.id, bill_id, **data.model_dump(exclude_none=True))
    return _with_status(bill, BalanceProjector(store))


@router.post("/{bill_id}/pay", response_model=schemas.TransactionOut, status_code=status.HTTP_201_CREATED)
def pay_bill(
    bill_id: int,
    data: schemas.BillPay,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Record a payment for the bill as an expense transaction."""
    result = ConsistencyGate(store).pay_bill(current_user.id, bill_id, data.payment_date, data.amount)
    return _out(result)


@router.delete("/{bill_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_bill(
    bill_id: int,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Delete a bill. Its payments stay in the ledger, unlinked."""
    ConsistencyGate(store).delete_bill(current_user.id, bill_id)
