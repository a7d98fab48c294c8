# backend/routes/checkout.py
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from database import get_db
from models.checkout_session import CheckoutSession
from models.order import Order
from models.users import User
from schemas.checkout import (
    CheckoutSessionCreate, CheckoutSessionOut, PaymentInitiationResponse,
    PaymentSelection, ShippingMethodOption, ShippingSelection,
)
from schemas.order import OrderItemOut, OrderResponse
from services import checkout_sessions
from services.cart_snapshot import build_snapshot
from services.order_materializer import materialize
from services.payment_gateway import current_payment_provider
from utils.payment_providers import PaymentProvider
from utils.store_context import get_current_store_id
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/checkout-sessions", tags=["Checkout"])
logger = logging.getLogger(__name__)


# Map CheckoutSession model to CheckoutSessionOut schema
def _session_to_out(session: CheckoutSession) -> CheckoutSessionOut:
    snapshot = session.snapshot
    return CheckoutSessionOut(
        id=session.id,
        status=session.status.value,
        payment_method=session.payment_method.value,
        shipping_method=session.shipping_method,
        shipping_cost=session.shipping_cost,
        sub_total=snapshot.sub_total,
        tax_amount=snapshot.tax_amount,
        total_amount=session.total_amount,
        expires_at=session.expires_at,
        shipping_address=session.shipping_address,
        billing_address=session.billing_address,
        customer_notes=session.customer_notes,
        order_id=session.order_id,
        items=list(snapshot.items),
    )


# Map Order model to OrderResponse schema
def _order_to_out(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        status=order.status.value,
        sub_total=order.sub_total,
        tax_amount=order.tax_amount,
        shipping_amount=order.shipping_amount,
        total_amount=order.total_amount,
        created_at=order.created_at,
        items=[OrderItemOut.model_validate(it) for it in order.items],
    )


@router.post("", response_model=CheckoutSessionOut, status_code=status.HTTP_201_CREATED)
def create_checkout_session(
    payload: CheckoutSessionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    store_id: Optional[int] = Depends(get_current_store_id),
):
    snapshot = build_snapshot(db, current_user.id)
    billing = payload.billing_address.formatted if payload.billing_address else None
    session = checkout_sessions.create_session(
        db,
        user_id=current_user.id,
        store_id=store_id,
        snapshot=snapshot,
        shipping_address=payload.shipping_address.formatted,
        billing_address=billing,
        notes=payload.customer_notes,
    )
    return _session_to_out(session)


@router.get("/shipping-methods", response_model=List[ShippingMethodOption])
def get_shipping_methods():
    return checkout_sessions.list_shipping_methods()


@router.get("/{session_id}", response_model=CheckoutSessionOut)
def get_checkout_session(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _session_to_out(checkout_sessions.get_session(db, session_id, current_user.id))


@router.post("/{session_id}/shipping", response_model=CheckoutSessionOut)
def select_shipping(
    session_id: int,
    payload: ShippingSelection,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    session = checkout_sessions.select_shipping(db, session_id, current_user.id, payload.method, payload.cost)
    return _session_to_out(session)


@router.post("/{session_id}/payment", response_model=CheckoutSessionOut)
def select_payment(
    session_id: int,
    payload: PaymentSelection,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    session = checkout_sessions.select_payment(db, session_id, current_user.id, payload.payment_method)
    return _session_to_out(session)


# Start the hosted payment for an online checkout and hand back the provider redirect
@router.post("/{session_id}/pay", response_model=PaymentInitiationResponse)
async def start_payment(
    session_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    provider: PaymentProvider = Depends(current_payment_provider),
):
    session = checkout_sessions.prepare_online_payment(db, session_id, current_user.id)
    initiation = await provider.create_payment(
        session.id,
        session.total_amount,
        current_user.email,
        request.client.host if request.client else None,
    )
    checkout_sessions.attach_payment_intent(db, session_id, current_user.id, initiation.reference)
    logger.info("%s payment %s started for checkout session %s", provider.name, initiation.reference, session_id)
    return PaymentInitiationResponse(
        checkout_session_id=session_id,
        payment_intent_id=initiation.reference,
        redirect_url=initiation.redirect_url,
    )


# Customer-side materialization: cash on delivery, or a paid session returning from the provider
@router.post("/{session_id}/complete", response_model=OrderResponse)
def complete_checkout(
    session_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    order = materialize(db, session_id, user_id=current_user.id)
    return _order_to_out(order)
