# backend/services/carts.py
"""Cart provider: the user's open cart, read at checkout and trimmed of ordered lines after an order."""
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session, joinedload

from models.cart import Cart, CartItem
from utils.money import quantize_money


def line_tax(line_total: Decimal, tax_rate) -> Decimal:
    if not tax_rate:
        return Decimal("0.00")
    return quantize_money(Decimal(line_total) * Decimal(tax_rate) / 100)


def find_open_cart(db: Session, user_id: int) -> Optional[Cart]:
    return (
        db.query(Cart)
        .options(joinedload(Cart.items).joinedload(CartItem.product))
        .filter(Cart.user_id == user_id, Cart.status == "open")
        .first()
    )


def get_open_cart(db: Session, user_id: int) -> Cart:
    # Retrieve active cart or create a new one
    cart = find_open_cart(db, user_id)
    if not cart:
        cart = Cart(user_id=user_id, status="open")
        db.add(cart)
        db.commit()
        db.refresh(cart)
    return cart


def remove_ordered_items(db: Session, snapshot) -> None:
    """
    Takes the ordered quantities out of the cart the snapshot was built from.

    Items added after checkout started stay in the cart; the cart is closed
    only when nothing is left in it.
    """
    if snapshot.cart_id is None:
        return
    cart = db.get(Cart, snapshot.cart_id)
    if cart is None or cart.status != "open":
        return

    ordered = {}
    for line in snapshot.items:
        ordered[line.product_id] = ordered.get(line.product_id, 0) + line.quantity

    for item in list(cart.items):
        qty = ordered.get(item.product_id, 0)
        if qty <= 0:
            continue
        if item.qty > qty:
            item.qty -= qty
            ordered[item.product_id] = 0
        else:
            ordered[item.product_id] = qty - item.qty
            cart.items.remove(item)

    if not cart.items:
        # Next request starts a fresh cart
        cart.status = "ordered"
    db.commit()
