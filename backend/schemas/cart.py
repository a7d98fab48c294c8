from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional

# Request schema for adding an item to the cart
class CartAddItem(BaseModel):
    product_id: int
    qty: int = Field(gt=0)

# Request schema for changing the quantity of a cart line
class CartUpdateItem(BaseModel):
    qty: int = Field(gt=0)

# Response schema for a single cart line item
class CartItemOut(BaseModel):
    id: int
    product_id: int
    name: str
    qty: int
    unit_price: Decimal
    line_total: Decimal

    class Config:
        from_attributes = True

# Response schema for the entire cart summary
class CartOut(BaseModel):
    items: List[CartItemOut]
    sub_total: Decimal
    tax_amount: Decimal
    total: Decimal


# One frozen line of a cart snapshot
class CartSnapshotLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: int
    product_name: str
    sku: str
    unit_price: Decimal
    quantity: int = Field(gt=0)
    line_total: Decimal
    vendor_id: int
    store_id: int

# Point-in-time copy of the cart, embedded as JSON in a checkout session.
# total_amount excludes shipping.
class CartSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: tuple[CartSnapshotLine, ...]
    sub_total: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    # Cart the snapshot was taken from; its ordered lines are removed after the order
    cart_id: Optional[int] = None
