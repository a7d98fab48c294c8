# backend/config.py
from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import ClassVar
from pathlib import Path

# Resolve absolute path to the .env file for reliable loading
env_path = Path(__file__).parent.parent / ".env"

class Settings(BaseSettings):
    SECRET_KEY: str = "dev-secret-change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite:///./database_checkout.db"
    LOG_LEVEL: str = "INFO"

    # Which PaymentProvider implementation handles checkout payments: "stripe" or "payu"
    PAYMENT_PROVIDER: str = "stripe"
    CURRENCY: str = "usd"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_TOLERANCE: int = 300

    PAYU_API_URL: str = "https://secure.snd.payu.com"
    PAYU_POS_ID: str = ""
    PAYU_CLIENT_ID: str = ""
    PAYU_CLIENT_SECRET: str = ""
    PAYU_SECOND_KEY_MD5: str = ""

    FRONTEND_URL: str = "http://localhost:5173"
    # Public backend URL used for payment notifications (webhook)
    BACKEND_URL: str = "http://127.0.0.1:8000"

    # Checkout flow
    CHECKOUT_SESSION_TTL_MINUTES: int = 120
    VENDOR_COMMISSION_RATE: Decimal = Decimal("0.15")

    # Expiry sweeper
    SWEEPER_ENABLED: bool = True
    SWEEPER_INTERVAL_SECONDS: int = 60

    # When True, a verified webhook that names an unknown payment reference is
    # answered with 503 so the provider redelivers it later.
    WEBHOOK_RETRY_UNKNOWN_REFERENCE: bool = False

    class Config:
        env_file: ClassVar[str] = str(env_path)

settings = Settings()
