# backend/models/store.py
from sqlalchemy import Column, Integer, String, Boolean, DateTime, func
from database import Base

# A storefront (tenant). Checkout sessions and orders are always scoped to one store.
class Store(Base):
    __tablename__ = "stores"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    code = Column(String, unique=True, nullable=False, index=True)

    # The default store serves requests that do not name a store explicitly
    is_default = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, server_default=func.now())
