from decimal import Decimal
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field

from models.checkout_session import PaymentMethod
from schemas.cart import CartSnapshotLine


# Postal address as entered at checkout; stored on the session as formatted text
class AddressIn(BaseModel):
    full_name: str = Field(min_length=1)
    street: str = Field(min_length=1)
    zip: str = Field(min_length=1)
    city: str = Field(min_length=1)
    country: Optional[str] = None
    phone: Optional[str] = None

    @property
    def formatted(self) -> str:
        parts = [self.full_name, self.street, f"{self.zip} {self.city}"]
        if self.country:
            parts.append(self.country)
        if self.phone:
            parts.append(self.phone)
        return ", ".join(parts)


# Input schema for opening a checkout session from the current cart
class CheckoutSessionCreate(BaseModel):
    shipping_address: AddressIn
    billing_address: Optional[AddressIn] = None
    customer_notes: Optional[str] = Field(default=None, max_length=1000)


class ShippingSelection(BaseModel):
    method: str = Field(min_length=1)
    cost: Decimal = Field(ge=0)


class PaymentSelection(BaseModel):
    payment_method: PaymentMethod


class ShippingMethodOption(BaseModel):
    name: str
    description: str
    cost: Decimal


# Output schema for a checkout session
class CheckoutSessionOut(BaseModel):
    id: int
    status: str
    payment_method: str
    shipping_method: Optional[str] = None
    shipping_cost: Decimal
    sub_total: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    expires_at: datetime
    shipping_address: str
    billing_address: str
    customer_notes: Optional[str] = None
    order_id: Optional[int] = None
    items: List[CartSnapshotLine]


# Response schema for payment initiation result
class PaymentInitiationResponse(BaseModel):
    checkout_session_id: int
    payment_intent_id: str
    redirect_url: Optional[str]
