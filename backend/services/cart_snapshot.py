# backend/services/cart_snapshot.py
from decimal import Decimal
from sqlalchemy.orm import Session

from exceptions import EmptyCartError
from schemas.cart import CartSnapshot, CartSnapshotLine
from services.carts import find_open_cart, line_tax
from utils.money import quantize_money


def build_snapshot(db: Session, user_id: int) -> CartSnapshot:
    """
    Freezes the user's open cart into an immutable CartSnapshot.

    Unit prices come from the price captured when each item was added to the
    cart; name, sku, vendor and tax rate come from the product as it is now.
    Stock is not checked or reserved here.
    """
    cart = find_open_cart(db, user_id)
    if not cart or not cart.items:
        raise EmptyCartError()

    lines = []
    sub_total = Decimal("0.00")
    tax_amount = Decimal("0.00")
    for item in cart.items:
        product = item.product
        unit_price = quantize_money(item.unit_price_snapshot)
        line_total = quantize_money(unit_price * item.qty)

        lines.append(CartSnapshotLine(
            product_id=product.id,
            product_name=product.name,
            sku=product.sku,
            unit_price=unit_price,
            quantity=item.qty,
            line_total=line_total,
            vendor_id=product.vendor_id,
            store_id=product.store_id,
        ))
        sub_total += line_total
        tax_amount += line_tax(line_total, product.tax_rate)

    return CartSnapshot(
        items=tuple(lines),
        sub_total=sub_total,
        tax_amount=tax_amount,
        total_amount=sub_total + tax_amount,
        cart_id=cart.id,
    )
