# utils/store_context.py
from typing import Optional
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from database import get_db
from models.store import Store


def resolve_store_id(db: Session, store_code: Optional[str] = None) -> Optional[int]:
    """Returns the id of the active store named by code, or of the default store."""
    query = db.query(Store).filter(Store.is_active == True)  # noqa: E712
    if store_code:
        store = query.filter(Store.code == store_code).first()
    else:
        store = query.filter(Store.is_default == True).order_by(Store.id).first()  # noqa: E712
    return store.id if store else None


# FastAPI dependency; None when no store can be resolved for the request
def get_current_store_id(
    store_code: Optional[str] = Header(None, alias="X-Store-Code"),
    db: Session = Depends(get_db),
) -> Optional[int]:
    return resolve_store_id(db, store_code)
