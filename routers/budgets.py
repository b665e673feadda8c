from fastapi import APIRouter, Depends, Query, status
from typing import List
from allocations import AllocationEngine
from database import get_store
from gate import ConsistencyGate
from ledger import LedgerStore
from projector import BalanceProjector
import models, schemas, auth

router = APIRouter(prefix="/api/budgets", tags=["Budgets"])


@router.get("", response_model=List[schemas.BudgetOut])
def list_budgets(
    limit:  int = Query(100, ge=1, le=1000),
    offset: int = Query(0,   ge=0),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """List budgets, most recent period first."""
    return store.find_many(
        models.Budget, where={"user_id": current_user.id},
        order_by=["-start_date", "-id"], skip=offset, take=limit,
    )


@router.post("", response_model=schemas.BudgetOut, status_code=status.HTTP_201_CREATED)
def create_budget(
    data: schemas.BudgetCreate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Create a budget, optionally with its initial allocations (all or nothing)."""
    fields = data.model_dump()
    allocations = fields.pop("allocations")
    return ConsistencyGate(store).create_budget(current_user.id, allocations=allocations, **fields)


@router.get("/{budget_id}", response_model=schemas.BudgetOut)
def get_budget(
    budget_id: int,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    return ConsistencyGate(store).owned(models.Budget, budget_id, current_user.id)


@router.put("/{budget_id}", response_model=schemas.BudgetOut)
def update_budget(
    budget_id: int,
    data: schemas.BudgetUpdate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Update a budget. The amount cannot drop below what is already allocated."""
    return ConsistencyGate(store).update_budget(current_user.id, budget_id, **data.model_dump(exclude_none=True))


@router.delete("/{budget_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_budget(
    budget_id: int,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Delete a budget together with its allocations."""
    ConsistencyGate(store).owned(models.Budget, budget_id, current_user.id)
    store.delete(models.Budget, budget_id)


# ── allocations ──

@router.get("/{budget_id}/allocations", response_model=List[schemas.AllocationOut])
def list_allocations(
    budget_id: int,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    ConsistencyGate(store).owned(models.Budget, budget_id, current_user.id)
    return store.find_many(models.CategoryAllocation, where={"budget_id": budget_id}, order_by="id")


@router.put("/{budget_id}/allocations/{category_id}", response_model=schemas.AllocationOut)
def upsert_allocation(
    budget_id: int,
    category_id: int,
    data: schemas.AllocationIn,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Set the amount planned for a category. Rejected if the budget would be over-allocated."""
    ConsistencyGate(store).owned(models.Budget, budget_id, current_user.id)
    return AllocationEngine(store).upsert_allocation(budget_id, category_id, data.amount)


@router.delete("/{budget_id}/allocations/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_allocation(
    budget_id: int,
    category_id: int,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Remove an allocation. Removing one that does not exist is not an error."""
    ConsistencyGate(store).owned(models.Budget, budget_id, current_user.id)
    AllocationEngine(store).remove_allocation(budget_id, category_id)


@router.get("/{budget_id}/utilization", response_model=schemas.BudgetUtilization)
def budget_utilization(
    budget_id: int,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Allocated vs. spent per category for the budget period."""
    ConsistencyGate(store).owned(models.Budget, budget_id, current_user.id)
    return BalanceProjector(store).budget_utilization(budget_id)
