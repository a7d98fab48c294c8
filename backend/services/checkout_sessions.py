# backend/services/checkout_sessions.py
"""
Checkout session state machine.

    draft --select COD--> cod --materialize--> completed
    draft --payment confirmed--> paid --materialize--> completed
    draft --payment failed--> failed
    draft --past expires_at--> expired

Every mutation reads the session row with SELECT ... FOR UPDATE inside one
transaction, so concurrent callers on the same session are serialized and
the loser observes a status precondition failure instead of a lost update.
"""
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from config import settings
from database import transaction
from exceptions import EmptyCartError, InvalidStateError, NotFoundError, UnknownReferenceError, ValidationError
from models.checkout_session import CheckoutSession, CheckoutSessionStatus, PaymentMethod
from schemas.cart import CartSnapshot
from schemas.checkout import ShippingMethodOption
from utils.money import quantize_money

logger = logging.getLogger(__name__)

SHIPPING_METHODS = [
    ShippingMethodOption(name="Standard", description="5-7 business days", cost=Decimal("5.00")),
    ShippingMethodOption(name="Express", description="2-3 business days", cost=Decimal("15.00")),
    ShippingMethodOption(name="Next Day", description="1 business day", cost=Decimal("25.00")),
]


def utcnow() -> datetime:
    # Naive UTC, matching how DateTime columns round-trip through SQLite
    return datetime.now(timezone.utc).replace(tzinfo=None)


def list_shipping_methods() -> List[ShippingMethodOption]:
    return list(SHIPPING_METHODS)


def lock_session(db: Session, session_id: int, user_id: Optional[int]) -> CheckoutSession:
    session = (
        db.query(CheckoutSession)
        .filter(CheckoutSession.id == session_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    # Another user's session is reported exactly like a missing one
    if session is None or (user_id is not None and session.user_id != user_id):
        raise NotFoundError("Checkout session", session_id)
    return session


def _require_draft(session: CheckoutSession, now: datetime) -> None:
    if session.status != CheckoutSessionStatus.DRAFT:
        raise InvalidStateError(
            f"Checkout session is {session.status.value} and can no longer be changed",
            status=session.status.value,
        )
    if session.expires_at < now:
        raise InvalidStateError("Checkout session has expired, please start checkout again",
                                status=session.status.value)


def create_session(
    db: Session,
    user_id: int,
    store_id: Optional[int],
    snapshot: CartSnapshot,
    shipping_address: str,
    billing_address: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> CheckoutSession:
    if user_id is None:
        raise ValidationError("Checkout requires a signed-in customer")
    if store_id is None:
        raise ValidationError("No store is available for checkout")
    if not snapshot.items:
        raise EmptyCartError()
    if not shipping_address:
        raise ValidationError("A shipping address is required")

    now = now or utcnow()
    session = CheckoutSession(
        store_id=store_id,
        user_id=user_id,
        cart_snapshot=snapshot.model_dump(mode="json"),
        shipping_method=None,
        shipping_cost=Decimal("0.00"),
        payment_method=PaymentMethod.ONLINE,
        status=CheckoutSessionStatus.DRAFT,
        expires_at=now + timedelta(minutes=settings.CHECKOUT_SESSION_TTL_MINUTES),
        shipping_address=shipping_address,
        billing_address=billing_address or shipping_address,
        customer_notes=notes,
    )
    with transaction(db):
        db.add(session)
    db.refresh(session)

    logger.info("Checkout session %s created for user %s in store %s (total %s)",
                session.id, user_id, store_id, snapshot.total_amount)
    return session


def get_session(db: Session, session_id: int, user_id: int) -> CheckoutSession:
    session = db.query(CheckoutSession).filter(CheckoutSession.id == session_id).first()
    if session is None or session.user_id != user_id:
        raise NotFoundError("Checkout session", session_id)
    return session


def select_shipping(
    db: Session, session_id: int, user_id: int, method: str, cost, now: Optional[datetime] = None
) -> CheckoutSession:
    method = (method or "").strip()
    if not method:
        raise ValidationError("A shipping method is required")
    cost = quantize_money(cost)
    if cost < 0:
        raise ValidationError("Shipping cost cannot be negative")

    now = now or utcnow()
    with transaction(db):
        session = lock_session(db, session_id, user_id)
        _require_draft(session, now)
        # The provider was already asked for the current total
        if session.payment_intent_id:
            raise InvalidStateError("Shipping cannot change after the payment has been started",
                                    status=session.status.value)
        session.shipping_method = method
        session.shipping_cost = cost

    logger.info("Checkout session %s shipping set to %s (%s)", session_id, method, cost)
    return session


def select_payment(
    db: Session, session_id: int, user_id: int, method: PaymentMethod, now: Optional[datetime] = None
) -> CheckoutSession:
    now = now or utcnow()
    with transaction(db):
        session = lock_session(db, session_id, user_id)
        _require_draft(session, now)
        if method == PaymentMethod.CASH_ON_DELIVERY and session.payment_intent_id:
            raise InvalidStateError("An online payment has already been started for this checkout",
                                    status=session.status.value)
        session.payment_method = method
        # Cash on delivery needs no confirmation from a payment provider
        if method == PaymentMethod.CASH_ON_DELIVERY:
            session.status = CheckoutSessionStatus.COD

    logger.info("Checkout session %s payment method set to %s", session_id, method.value)
    return session


def prepare_online_payment(
    db: Session, session_id: int, user_id: int, now: Optional[datetime] = None
) -> CheckoutSession:
    """Checks that a hosted payment may be started; holds no lock afterwards."""
    now = now or utcnow()
    with transaction(db):
        session = lock_session(db, session_id, user_id)
        _require_draft(session, now)
        if session.payment_method != PaymentMethod.ONLINE:
            raise InvalidStateError("Checkout session is not set up for online payment",
                                    status=session.status.value)
        if session.payment_intent_id:
            raise InvalidStateError("A payment already exists for this checkout",
                                    status=session.status.value)
    return session


def attach_payment_intent(
    db: Session, session_id: int, user_id: int, payment_intent_id: str, now: Optional[datetime] = None
) -> CheckoutSession:
    now = now or utcnow()
    with transaction(db):
        session = lock_session(db, session_id, user_id)
        _require_draft(session, now)
        if session.payment_method != PaymentMethod.ONLINE:
            raise InvalidStateError("Checkout session is not set up for online payment",
                                    status=session.status.value)
        if session.payment_intent_id and session.payment_intent_id != payment_intent_id:
            raise InvalidStateError("A payment already exists for this checkout",
                                    status=session.status.value)
        session.payment_intent_id = payment_intent_id

    logger.info("Checkout session %s linked to payment %s", session_id, payment_intent_id)
    return session


def _lock_by_reference(db: Session, payment_intent_id: str) -> CheckoutSession:
    session = (
        db.query(CheckoutSession)
        .filter(CheckoutSession.payment_intent_id == payment_intent_id)
        .with_for_update()
        .populate_existing()
        .first()
    )
    if session is None:
        raise UnknownReferenceError(payment_intent_id)
    return session


def mark_paid(db: Session, payment_intent_id: str) -> Tuple[CheckoutSession, bool]:
    """
    Moves the session holding this payment reference from draft to paid.

    Returns (session, changed). A session that is already paid or completed
    is returned unchanged, so redelivered confirmations are harmless.
    """
    with transaction(db):
        session = _lock_by_reference(db, payment_intent_id)
        if session.status in (CheckoutSessionStatus.PAID, CheckoutSessionStatus.COMPLETED):
            changed = False
        elif session.status == CheckoutSessionStatus.DRAFT:
            session.status = CheckoutSessionStatus.PAID
            changed = True
        else:
            raise InvalidStateError(
                f"Checkout session is {session.status.value} and cannot accept a payment",
                status=session.status.value,
            )

    if changed:
        logger.info("Checkout session %s marked as paid (%s)", session.id, payment_intent_id)
    else:
        logger.info("Checkout session %s already %s, payment %s ignored",
                    session.id, session.status.value, payment_intent_id)
    return session, changed


def mark_failed(db: Session, payment_intent_id: str) -> Tuple[CheckoutSession, bool]:
    """Records a failed online payment; a confirmed payment is never downgraded."""
    with transaction(db):
        session = _lock_by_reference(db, payment_intent_id)
        if session.status == CheckoutSessionStatus.DRAFT:
            session.status = CheckoutSessionStatus.FAILED
            changed = True
        else:
            changed = False

    if changed:
        logger.warning("Checkout session %s payment %s failed", session.id, payment_intent_id)
    elif session.status != CheckoutSessionStatus.FAILED:
        logger.warning("Payment failure for %s ignored, checkout session %s is %s",
                       payment_intent_id, session.id, session.status.value)
    return session, changed


def expire_stale(db: Session, now: Optional[datetime] = None) -> int:
    """Moves every draft session past its deadline to expired; returns how many."""
    now = now or utcnow()
    with transaction(db):
        count = (
            db.query(CheckoutSession)
            .filter(
                CheckoutSession.status == CheckoutSessionStatus.DRAFT,
                CheckoutSession.expires_at < now,
            )
            .update({CheckoutSession.status: CheckoutSessionStatus.EXPIRED}, synchronize_session="fetch")
        )
    if count:
        logger.info("Expired %s checkout sessions", count)
    return count
