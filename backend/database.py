# backend/database.py
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from dotenv import load_dotenv

from config import settings
from exceptions import TransientError

logger = logging.getLogger(__name__)

load_dotenv()

# 1. Database URL from settings (environment / .env), SQLite file by default
SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

# 2. Hosted Postgres URLs use the legacy "postgres://" scheme which SQLAlchemy rejects
if SQLALCHEMY_DATABASE_URL and SQLALCHEMY_DATABASE_URL.startswith("postgres://"):
    SQLALCHEMY_DATABASE_URL = SQLALCHEMY_DATABASE_URL.replace("postgres://", "postgresql://", 1)

# 3. Dialect specific connection arguments
if "sqlite" in SQLALCHEMY_DATABASE_URL:
    connect_args = {"check_same_thread": False} # Only for SQLite
else:
    connect_args = {} # Empty for PostgreSQL

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args=connect_args
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db():
    # Register every model on Base.metadata before creating tables
    import models.users, models.store, models.product, models.cart  # noqa: F401
    import models.order, models.checkout_session  # noqa: F401
    Base.metadata.create_all(bind=engine)


@contextmanager
def transaction(db: Session):
    """Commits the unit of work, or rolls it back and re-raises.

    Storage failures (constraint violations, deadlocks, lost connections)
    surface as TransientError, which callers may retry.
    """
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Transaction rolled back after storage error: %s", e)
        raise TransientError() from e
    except Exception:
        db.rollback()
        raise
