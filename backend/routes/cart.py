# backend/routes/cart.py
import logging
from decimal import Decimal
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from database import get_db
from utils.tokenJWT import get_current_user
from utils.money import quantize_money
from models.users import User
from models.product import Product
from models.cart import Cart, CartItem
from schemas.cart import CartAddItem, CartUpdateItem, CartOut, CartItemOut
from services.carts import get_open_cart, line_tax

router = APIRouter(prefix="/cart", tags=["Cart"])
logger = logging.getLogger(__name__)


def _cart_to_out(cart: Cart) -> CartOut:
    items_out = []
    sub_total = Decimal("0.00")
    tax_amount = Decimal("0.00")

    for it in cart.items:
        # Stored net price snapshot, not the current catalog price
        unit_price = quantize_money(it.unit_price_snapshot)
        line_total = quantize_money(unit_price * it.qty)
        sub_total += line_total
        tax_amount += line_tax(line_total, it.product.tax_rate if it.product else 0)

        items_out.append(CartItemOut(
            id=it.id,
            product_id=it.product_id,
            name=it.product.name if it.product else "",
            qty=it.qty,
            unit_price=unit_price,
            line_total=line_total,
        ))

    return CartOut(items=items_out, sub_total=sub_total, tax_amount=tax_amount, total=sub_total + tax_amount)


def _get_item(db: Session, cart: Cart, item_id: int) -> CartItem:
    item = db.query(CartItem).filter(CartItem.id == item_id, CartItem.cart_id == cart.id).first()
    if not item:
        raise HTTPException(status_code=404, detail="Cart item not found")
    return item


@router.get("", response_model=CartOut)
def get_cart(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = get_open_cart(db, current_user.id)
    return _cart_to_out(cart)


@router.post("/add", response_model=CartOut, status_code=status.HTTP_200_OK)
def add_to_cart(
    payload: CartAddItem,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = get_open_cart(db, current_user.id)

    product = db.query(Product).filter(Product.id == payload.product_id, Product.is_active.is_(True)).first()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    item = db.query(CartItem).filter(
        CartItem.cart_id == cart.id, CartItem.product_id == payload.product_id
    ).first()
    new_qty = payload.qty + (item.qty if item else 0)

    # Advisory check only; stock is enforced when the order is created
    if new_qty > product.stock_quantity:
        raise HTTPException(status_code=400, detail="Insufficient stock")

    if item:
        item.qty = new_qty
    else:
        item = CartItem(
            cart_id=cart.id,
            product_id=product.id,
            qty=payload.qty,
            unit_price_snapshot=product.price,
        )
        db.add(item)

    db.commit()
    db.refresh(cart)
    logger.info("User %s added %s x product %s to cart %s", current_user.id, payload.qty, product.id, cart.id)
    return _cart_to_out(cart)


@router.put("/items/{item_id}", response_model=CartOut)
def update_cart_item(
    item_id: int,
    payload: CartUpdateItem,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = get_open_cart(db, current_user.id)
    item = _get_item(db, cart, item_id)

    product = db.query(Product).filter(Product.id == item.product_id).first()
    if product and payload.qty > product.stock_quantity:
        raise HTTPException(status_code=400, detail="Insufficient stock")

    item.qty = payload.qty
    db.commit()
    db.refresh(cart)
    return _cart_to_out(cart)


@router.delete("/items/{item_id}", response_model=CartOut)
def delete_cart_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = get_open_cart(db, current_user.id)
    item = _get_item(db, cart, item_id)

    db.delete(item)
    db.commit()
    db.refresh(cart)
    return _cart_to_out(cart)
