"""Seeds a local database with a default store, a demo customer and a small catalog."""
from decimal import Decimal

from database import SessionLocal, init_db
from models.product import Product
from models.store import Store
from models.users import User
from utils.tokenJWT import create_access_token

DEMO_EMAIL = "customer@example.com"

# name, sku, price, tax_rate, stock
DEMO_PRODUCTS = [
    ("Ceramic Mug", "MUG-001", "12.50", "0", 40),
    ("Cotton Tote Bag", "BAG-001", "20.00", "0", 25),
    ("Notebook A5", "NTB-005", "30.00", "8", 60),
    ("Desk Lamp", "LMP-010", "40.00", "23", 10),
]


def seed():
    init_db()
    session = SessionLocal()
    try:
        store = session.query(Store).filter(Store.code == "main").first()
        if not store:
            store = Store(name="Main Store", code="main", is_default=True)
            session.add(store)
            session.flush()
            print(f"Created store {store.code} (id={store.id})")

        user = session.query(User).filter(User.email == DEMO_EMAIL).first()
        if not user:
            # Passwords are managed by the identity service; "!" never matches a hash
            user = User(email=DEMO_EMAIL, password_hash="!", first_name="Demo", last_name="Customer")
            session.add(user)
            print(f"Created user {DEMO_EMAIL}")

        created = 0
        for name, sku, price, tax_rate, stock in DEMO_PRODUCTS:
            if session.query(Product).filter(Product.sku == sku).first():
                continue
            session.add(Product(
                store_id=store.id,
                vendor_id=1,
                name=name,
                sku=sku,
                price=Decimal(price),
                tax_rate=Decimal(tax_rate),
                stock_quantity=stock,
            ))
            created += 1

        session.commit()
        print(f"Created {created} products")
        print(f"Bearer token for {DEMO_EMAIL}: {create_access_token({'sub': DEMO_EMAIL})}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    seed()
