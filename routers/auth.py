from fastapi import APIRouter, HTTPException, Depends, status
from database import get_store
from gate import ConsistencyGate
from ledger import LedgerStore
import models, schemas, auth as auth_utils

router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/register", response_model=schemas.Token, status_code=status.HTTP_201_CREATED)
def register(data: schemas.UserRegister, store: LedgerStore = Depends(get_store)):
    """Register a new user with the default categories. Returns JWT token."""
    if store.find_first(models.User, where={"email": data.email}):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = ConsistencyGate(store).register_user(
        email=data.email,
        password_hash=auth_utils.hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
    )
    return schemas.Token(
        access_token=auth_utils.create_access_token(user.id),
        user=schemas.UserOut.model_validate(user),
    )


@router.post("/login", response_model=schemas.Token)
def login(data: schemas.UserLogin, store: LedgerStore = Depends(get_store)):
    """Login with email + password. Returns JWT token."""
    user = store.find_first(models.User, where={"email": data.email})
    if not user or not auth_utils.verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    return schemas.Token(
        access_token=auth_utils.create_access_token(user.id),
        user=schemas.UserOut.model_validate(user),
    )


@router.get("/me", response_model=schemas.UserOut)
def me(current_user: models.User = Depends(auth_utils.get_current_user)):
    """Return the currently authenticated user."""
    return current_user


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
def delete_account(
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth_utils.get_current_user),
):
    """Delete the account and everything it owns."""
    ConsistencyGate(store).delete_user(current_user.id)
