# backend/main.py
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

load_dotenv()

from config import settings
from database import SessionLocal, init_db
from exceptions import (
    CheckoutError, InsufficientStockError, InvalidSignatureError, InvalidStateError,
    MalformedPayloadError, NotFoundError, PaymentProviderError, ProductUnavailableError,
    TransientError, ValidationError,
)
from services.sweeper import SessionExpirySweeper

# Routers
from routes.cart import router as cart_router
from routes.checkout import router as checkout_router
from routes.payments import router as payments_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()

    sweeper_task = None
    if settings.SWEEPER_ENABLED:
        sweeper = SessionExpirySweeper(SessionLocal)
        sweeper_task = asyncio.create_task(sweeper.run_forever())

    yield

    if sweeper_task:
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            logger.info("Checkout session sweeper stopped")


app = FastAPI(title="Checkout API", version="1.0.0", lifespan=lifespan)

# CORS Configuration
origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
if settings.FRONTEND_URL:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Domain errors to HTTP status; subclasses resolve through their bases
ERROR_STATUS_CODES = {
    ValidationError: 422,
    NotFoundError: 404,
    InvalidStateError: 409,
    InsufficientStockError: 409,
    ProductUnavailableError: 409,
    InvalidSignatureError: 400,
    MalformedPayloadError: 400,
    PaymentProviderError: 502,
    TransientError: 503,
}


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    status_code = next(
        (ERROR_STATUS_CODES[cls] for cls in type(exc).__mro__ if cls in ERROR_STATUS_CODES), 500
    )
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


app.include_router(cart_router)
app.include_router(checkout_router)
app.include_router(payments_router)


@app.get("/")
def read_root():
    return {"message": "Checkout API is running"}
