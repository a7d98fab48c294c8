from decimal import Decimal
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime


# Output schema for an individual order line item
class OrderItemOut(BaseModel):
    product_id: int
    product_name: str
    product_sku: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    class Config:
        from_attributes = True


# Output schema representing the full order details
class OrderResponse(BaseModel):
    id: int
    order_number: str
    status: str
    sub_total: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total_amount: Decimal
    created_at: Optional[datetime] = None
    items: List[OrderItemOut]
