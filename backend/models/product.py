# backend/models/product.py
from sqlalchemy import Column, Integer, String, Numeric, Boolean, ForeignKey, CheckConstraint
from database import Base

# Model Product
# A catalog item sold by a vendor inside a store.
# Price and tax rate are read once when the cart is snapshotted;
# stock_quantity is only ever decremented when an order is materialized.
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    vendor_id = Column(Integer, nullable=False, index=True)

    name = Column(String, nullable=False, index=True)
    sku = Column(String, unique=True, nullable=False, index=True)
    description = Column(String)

    # Net unit price and tax rate (percent), guarded by constraints.
    price = Column(Numeric(12, 2), CheckConstraint("price >= 0"), nullable=False)
    tax_rate = Column(Numeric(5, 2), CheckConstraint("tax_rate >= 0 AND tax_rate <= 100"), nullable=False, default=0)

    # Inventory.
    stock_quantity = Column(Integer, CheckConstraint("stock_quantity >= 0"), nullable=False, default=0)

    # Unpublished products cannot be ordered any more.
    is_active = Column(Boolean, nullable=False, default=True)
