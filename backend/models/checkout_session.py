# backend/models/checkout_session.py
import enum
from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum, JSON, func
from sqlalchemy.orm import validates
from database import Base
from exceptions import InvalidStateError
from schemas.cart import CartSnapshot


class CheckoutSessionStatus(str, enum.Enum):
    DRAFT = "draft"
    COD = "cod"
    PAID = "paid"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"


class PaymentMethod(str, enum.Enum):
    ONLINE = "online"
    CASH_ON_DELIVERY = "cash_on_delivery"


# Legal status moves; completed, expired and failed are terminal
ALLOWED_TRANSITIONS = {
    CheckoutSessionStatus.DRAFT: {
        CheckoutSessionStatus.COD,
        CheckoutSessionStatus.PAID,
        CheckoutSessionStatus.EXPIRED,
        CheckoutSessionStatus.FAILED,
    },
    CheckoutSessionStatus.COD: {CheckoutSessionStatus.COMPLETED},
    CheckoutSessionStatus.PAID: {CheckoutSessionStatus.COMPLETED},
    CheckoutSessionStatus.COMPLETED: set(),
    CheckoutSessionStatus.EXPIRED: set(),
    CheckoutSessionStatus.FAILED: set(),
}


# Pre-order staging record: frozen cart, shipping and payment choices.
# Points one way at the Order it produced; the Order never points back.
class CheckoutSession(Base):
    __tablename__ = "checkout_sessions"

    id = Column(Integer, primary_key=True, index=True)
    store_id = Column(Integer, ForeignKey("stores.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Serialized CartSnapshot, written once at creation
    cart_snapshot = Column(JSON, nullable=False)

    shipping_method = Column(String, nullable=True)
    shipping_cost = Column(Numeric(12, 2), nullable=False, default=0)

    payment_method = Column(Enum(PaymentMethod), nullable=False, default=PaymentMethod.ONLINE)
    # External payment reference, only for online payments
    payment_intent_id = Column(String, unique=True, nullable=True, index=True)

    status = Column(Enum(CheckoutSessionStatus), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)

    # Formatted address snapshots, not references
    shipping_address = Column(String, nullable=False)
    billing_address = Column(String, nullable=False)
    customer_notes = Column(String, nullable=True)

    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    @property
    def snapshot(self) -> CartSnapshot:
        return CartSnapshot.model_validate(self.cart_snapshot)

    @property
    def total_amount(self):
        return self.snapshot.total_amount + (self.shipping_cost or 0)

    @validates("cart_snapshot")
    def _write_snapshot_once(self, key, value):
        if self.cart_snapshot is not None:
            raise ValueError("cart snapshot cannot be replaced once written")
        return value

    @validates("order_id")
    def _stamp_order_once(self, key, value):
        if self.order_id is not None and value != self.order_id:
            raise ValueError(f"checkout session {self.id} already produced order {self.order_id}")
        return value

    @validates("status")
    def _check_transition(self, key, value):
        current = self.status
        if current is None or current == value:
            return value
        if value not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateError(
                f"Checkout session cannot move from {current.value} to {value.value}",
                status=current.value,
            )
        if value == CheckoutSessionStatus.COMPLETED and self.order_id is None:
            raise InvalidStateError("Checkout session cannot complete without an order", status=current.value)
        return value
