# backend/services/order_materializer.py
import logging
import secrets
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from config import settings
from database import transaction
from exceptions import InsufficientStockError, InvalidStateError, ProductUnavailableError
from models.checkout_session import CheckoutSession, CheckoutSessionStatus, PaymentMethod
from models.order import Order, OrderItem, OrderStatus
from models.product import Product
from services.carts import remove_ordered_items
from services.checkout_sessions import lock_session, utcnow
from utils.money import quantize_money

logger = logging.getLogger(__name__)

# Order status an order starts with, by the checkout session status it came from
INITIAL_ORDER_STATUS = {
    CheckoutSessionStatus.PAID: OrderStatus.PAID,
    CheckoutSessionStatus.COD: OrderStatus.PENDING_PAYMENT,
}


def generate_order_number(db: Session, now: Optional[datetime] = None) -> str:
    # ORD-<timestamp>-<4 hex>; the unique index on order_number is the final guard
    timestamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")
    while True:
        order_number = f"ORD-{timestamp}-{secrets.token_hex(2).upper()}"
        exists = db.query(Order.id).filter(Order.order_number == order_number).first()
        if not exists:
            return order_number
        logger.warning("Order number %s already taken, generating another", order_number)


class _AlreadyMaterialized(Exception):
    """Another caller stamped the session first; this transaction must not commit."""


def materialize(db: Session, session_id: int, user_id: Optional[int] = None, now: Optional[datetime] = None) -> Order:
    """
    Turns a paid or cash-on-delivery checkout session into an Order, once.

    Stock re-check, order + items, the session stamp and stock decrement
    happen in one transaction. The stamp and each decrement are conditional
    UPDATEs, so concurrent callers on the same session produce one order
    even where the database ignores FOR UPDATE. A session that already
    produced an order returns that order untouched. Pass user_id to restrict
    the call to the session owner.
    """
    now = now or utcnow()
    try:
        with transaction(db):
            session = lock_session(db, session_id, user_id)

            if session.order_id is not None:
                logger.info("Checkout session %s already materialized as order %s", session_id, session.order_id)
                return db.get(Order, session.order_id)

            if session.status not in INITIAL_ORDER_STATUS:
                raise InvalidStateError(
                    f"Checkout session is {session.status.value}; an order needs a confirmed payment or cash on delivery",
                    status=session.status.value,
                )
            if session.status == CheckoutSessionStatus.COD and session.expires_at < now:
                raise InvalidStateError("Checkout session has expired, please start checkout again",
                                        status=session.status.value)

            snapshot = session.snapshot
            _check_products(db, snapshot)
            order = _build_order(db, session, snapshot, now)
            db.add(order)
            db.flush()

            _stamp_session(db, session_id, order.id)
            _decrement_stock(db, snapshot)
    except _AlreadyMaterialized:
        return _existing_order(db, session_id)

    logger.info("Order %s (%s) created from checkout session %s",
                order.id, order.order_number, session_id)
    _release_cart_quietly(db, snapshot, session_id)
    return order


def _stamp_session(db: Session, session_id: int, order_id: int) -> None:
    claimed = (
        db.query(CheckoutSession)
        .filter(
            CheckoutSession.id == session_id,
            CheckoutSession.order_id.is_(None),
            CheckoutSession.status.in_(list(INITIAL_ORDER_STATUS)),
        )
        .update(
            {CheckoutSession.order_id: order_id, CheckoutSession.status: CheckoutSessionStatus.COMPLETED},
            synchronize_session=False,
        )
    )
    if claimed != 1:
        raise _AlreadyMaterialized()


def _existing_order(db: Session, session_id: int) -> Order:
    session = db.query(CheckoutSession).filter(CheckoutSession.id == session_id).populate_existing().one()
    if session.order_id is None:
        raise InvalidStateError(f"Checkout session is {session.status.value} and cannot be turned into an order",
                                status=session.status.value)
    logger.info("Checkout session %s was materialized concurrently as order %s", session_id, session.order_id)
    return db.get(Order, session.order_id)


def _requested_quantities(snapshot) -> dict:
    requested = {}
    for line in snapshot.items:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
    return requested


def _check_products(db: Session, snapshot) -> None:
    product_ids = sorted({line.product_id for line in snapshot.items})
    # Lock in id order so concurrent orders over the same products cannot deadlock
    rows = (
        db.query(Product)
        .filter(Product.id.in_(product_ids))
        .order_by(Product.id)
        .with_for_update()
        .populate_existing()
        .all()
    )
    products = {p.id: p for p in rows}
    requested = _requested_quantities(snapshot)

    for line in snapshot.items:
        product = products.get(line.product_id)
        if product is None or not product.is_active:
            logger.warning("Product %s in checkout no longer exists", line.product_id)
            raise ProductUnavailableError(line.product_id, line.product_name)
        if product.stock_quantity < requested[line.product_id]:
            logger.warning("Insufficient stock for product %s: requested %s, available %s",
                           product.id, requested[line.product_id], product.stock_quantity)
            raise InsufficientStockError(product.id, line.product_name,
                                         requested[line.product_id], product.stock_quantity)


def _decrement_stock(db: Session, snapshot) -> None:
    names = {line.product_id: line.product_name for line in snapshot.items}
    for product_id, quantity in sorted(_requested_quantities(snapshot).items()):
        updated = (
            db.query(Product)
            .filter(Product.id == product_id, Product.stock_quantity >= quantity)
            .update({Product.stock_quantity: Product.stock_quantity - quantity}, synchronize_session=False)
        )
        if updated != 1:
            available = db.query(Product.stock_quantity).filter(Product.id == product_id).scalar() or 0
            logger.warning("Stock for product %s changed during checkout: requested %s, available %s",
                           product_id, quantity, available)
            raise InsufficientStockError(product_id, names[product_id], quantity, available)


def _build_order(db: Session, session: CheckoutSession, snapshot, now: datetime) -> Order:
    commission_rate = Decimal(settings.VENDOR_COMMISSION_RATE)
    shipping = quantize_money(session.shipping_cost or 0)

    order = Order(
        store_id=session.store_id,
        user_id=session.user_id,
        order_number=generate_order_number(db, now),
        status=INITIAL_ORDER_STATUS[session.status],
        sub_total=snapshot.sub_total,
        tax_amount=snapshot.tax_amount,
        shipping_amount=shipping,
        total_amount=snapshot.sub_total + snapshot.tax_amount + shipping,
        shipping_method=session.shipping_method,
        payment_method=session.payment_method.value,
        payment_transaction_id=(
            session.payment_intent_id if session.payment_method == PaymentMethod.ONLINE else None
        ),
        shipping_address=session.shipping_address,
        billing_address=session.billing_address,
        customer_notes=session.customer_notes,
    )
    # Frozen snapshot values only; the catalog is not re-read for prices or names
    order.items = [
        OrderItem(
            product_id=line.product_id,
            vendor_id=line.vendor_id,
            store_id=line.store_id,
            product_name=line.product_name,
            product_sku=line.sku,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=line.line_total,
            vendor_commission=quantize_money(line.line_total * commission_rate),
        )
        for line in snapshot.items
    ]
    return order


def _release_cart_quietly(db: Session, snapshot, session_id: int) -> None:
    # The order is committed; a cart that fails to update is only a nuisance
    try:
        remove_ordered_items(db, snapshot)
    except Exception:
        db.rollback()
        logger.warning("Failed to update cart after checkout session %s", session_id, exc_info=True)
