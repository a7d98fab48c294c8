# backend/routes/payments.py
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from exceptions import InvalidSignatureError, MalformedPayloadError, UnknownReferenceError
from services.payment_gateway import current_payment_provider, reconcile
from utils.payment_providers import PaymentProvider

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = logging.getLogger(__name__)


# Provider notifications. Unauthenticated: the signature header is the only credential.
@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    provider: PaymentProvider = Depends(current_payment_provider),
):
    body = await request.body()
    signature = request.headers.get(provider.signature_header)

    try:
        result = reconcile(db, provider, body, signature)
    except InvalidSignatureError as e:
        client = request.client.host if request.client else None
        logger.warning("Rejected %s webhook from %s: %s", provider.name, client, e.reason)
        return JSONResponse(status_code=400, content={"status": "error", "message": "Invalid signature"})
    except MalformedPayloadError as e:
        logger.warning("Malformed %s webhook: %s", provider.name, e.reason)
        return JSONResponse(status_code=400, content={"status": "error", "message": "Malformed payload"})
    except UnknownReferenceError as e:
        logger.warning("%s webhook for unknown payment reference %s", provider.name, e.reference)
        if settings.WEBHOOK_RETRY_UNKNOWN_REFERENCE:
            return JSONResponse(status_code=503, content={"status": "retry"})
        return {"status": "ok"}

    logger.info("%s webhook handled: %s (checkout session %s, order %s)",
                provider.name, result.status.value, result.checkout_session_id, result.order_id)
    return {"status": "ok"}
