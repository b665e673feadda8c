from fastapi import APIRouter, Depends, Query, status
from typing import Optional
from database import get_store
from gate import ConsistencyGate
from ledger import LedgerStore
from projector import BalanceProjector
import models, schemas, auth

router = APIRouter(prefix="/api/savings-goals", tags=["Savings goals"])


@router.get("", response_model=schemas.SavingsOverview)
def list_goals(
    status: Optional[str] = Query(None, pattern="^(active|completed)$"),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Goals with progress, newest first, plus totals."""
    completed = None if status is None else status == "completed"
    return BalanceProjector(store).savings_overview(current_user.id, completed)


@router.post("", response_model=schemas.SavingsGoalOut, status_code=status.HTTP_201_CREATED)
def create_goal(
    data: schemas.SavingsGoalCreate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    goal = ConsistencyGate(store).create_goal(current_user.id, **data.model_dump())
    return BalanceProjector(store).goal_view(goal)


@router.get("/{goal_id}", response_model=schemas.SavingsGoalOut)
def get_goal(
    goal_id: int,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    goal = ConsistencyGate(store).owned(models.SavingsGoal, goal_id, current_user.id)
    return BalanceProjector(store).goal_view(goal)


@router.put("/{goal_id}", response_model=schemas.SavingsGoalOut)
def update_goal(
    goal_id: int,
    data: schemas.SavingsGoalUpdate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Update a goal. `completed` follows the amounts and cannot be sent."""
    goal = ConsistencyGate(store).update_goal(current_user.id, goal_id, **data.model_dump(exclude_none=True))
    return BalanceProjector(store).goal_view(goal)


@router.post("/{goal_id}/add-funds", response_model=schemas.SavingsGoalOut)
def add_funds(
    goal_id: int,
    data: schemas.AddFunds,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    goal = ConsistencyGate(store).add_funds(current_user.id, goal_id, data.amount)
    return BalanceProjector(store).goal_view(goal)


@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_goal(
    goal_id: int,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    ConsistencyGate(store).delete_goal(current_user.id, goal_id)
