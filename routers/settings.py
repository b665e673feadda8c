from fastapi import APIRouter, Depends
from database import get_store
from ledger import LedgerStore
import models, schemas, auth

router = APIRouter(prefix="/api/settings", tags=["Settings"])


@router.get("", response_model=schemas.SettingsOut)
def get_settings(current_user: models.User = Depends(auth.get_current_user)):
    """Currency formatting, notification and theme preferences."""
    return current_user


@router.put("", response_model=schemas.SettingsOut)
def update_settings(
    data: schemas.SettingsUpdate,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Update settings. Only provided fields are changed."""
    return store.update(models.User, current_user.id, **data.model_dump(exclude_none=True))
