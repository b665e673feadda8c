from fastapi import APIRouter, Depends, Query, status
from typing import List, Optional
from database import get_store
from gate import ConsistencyGate
from ledger import LedgerStore
from models import CategoryType
import models, schemas, auth

router = APIRouter(prefix="/api/categories", tags=["Categories"])


@router.get("", response_model=List[schemas.CategoryOut])
def list_categories(
    type: Optional[CategoryType] = Query(None, description="EXPENSE or INCOME"),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """List the current user's categories, alphabetically."""
    where = {"user_id": current_user.id}
    if type is not None:
        where["type"] = type
    return store.find_many(models.Category, where=where, order_by="name")


@router.post("", response_model=schemas.CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(
    data: schemas.CategoryCreate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Create a new category."""
    return ConsistencyGate(store).create_category(current_user.id, **data.model_dump())


@router.put("/{cat_id}", response_model=schemas.CategoryOut)
def update_category(
    cat_id: int,
    data: schemas.CategoryUpdate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Update a category. Default categories are read-only."""
    return ConsistencyGate(store).update_category(current_user.id, cat_id, **data.model_dump(exclude_none=True))


@router.delete("/{cat_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(
    cat_id: int,
    reassign_to: Optional[int] = Query(None, description="Move transactions and bills to this category first"),
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Delete a category. Refused while records use it, unless reassign_to is given."""
    ConsistencyGate(store).delete_category(current_user.id, cat_id, reassign_to=reassign_to)
