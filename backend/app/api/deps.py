"""
Shared FastAPI dependencies: acting user, inventory store, reconciliation
service.
"""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.security import get_user_from_token
from app.core.settings import settings
from app.db.session import get_db
from app.services.inventory_reconciliation import InventoryReconciliationService
from app.services.inventory_store import InventoryStore, SqlAlchemyInventoryStore
from app.services.supabase_store import SupabaseInventoryStore

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Acting user for history rows, taken from the bearer token's subject.

    Raises:
        HTTPException 401: missing, expired or invalid token
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    user_id = get_user_from_token(credentials.credentials)
    if user_id is None:
        raise credentials_exception
    return user_id


def get_store(db: Session = Depends(get_db)) -> InventoryStore:
    if settings.uses_supabase:
        return SupabaseInventoryStore.from_settings()
    return SqlAlchemyInventoryStore(db)


def get_reconciliation_service(
    store: InventoryStore = Depends(get_store),
) -> InventoryReconciliationService:
    return InventoryReconciliationService(
        store,
        compare_and_swap=settings.STOCK_COMPARE_AND_SWAP,
    )
