# backend/services/payment_gateway.py
"""
Payment reconciliation: verified provider notifications drive checkout
sessions to paid or failed, and paid sessions on to an order.

Providers deliver at least once, so every step here tolerates repeats:
mark_paid reports an already-paid session as unchanged, and materialize
returns the existing order for a session that already has one.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from config import settings
from exceptions import InsufficientStockError, InvalidStateError, ProductUnavailableError
from services.checkout_sessions import mark_failed, mark_paid
from services.order_materializer import materialize
from utils.payment_providers import OutcomeKind, PaymentOutcome, PaymentProvider
from utils.payu_client import PayUProvider
from utils.stripe_client import StripeProvider

logger = logging.getLogger(__name__)

PROVIDERS = {
    "stripe": StripeProvider,
    "payu": PayUProvider,
}


def get_payment_provider(name: Optional[str] = None) -> PaymentProvider:
    name = (name or settings.PAYMENT_PROVIDER).lower()
    try:
        return PROVIDERS[name]()
    except KeyError:
        raise ValueError(f"Unknown payment provider: {name}") from None


class ReconciliationStatus(str, enum.Enum):
    IGNORED = "ignored"
    PAID = "paid"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    REJECTED = "rejected"
    UNFULFILLABLE = "unfulfillable"


@dataclass
class ReconciliationResult:
    status: ReconciliationStatus
    event_type: Optional[str] = None
    checkout_session_id: Optional[int] = None
    order_id: Optional[int] = None


def verify(provider: PaymentProvider, payload: bytes, signature_header: Optional[str]) -> PaymentOutcome:
    """Authenticates the raw notification, then classifies it. Raises InvalidSignatureError."""
    event = provider.verify_signature(payload, signature_header)
    return provider.classify(event)


def reconcile(
    db: Session, provider: PaymentProvider, payload: bytes, signature_header: Optional[str]
) -> ReconciliationResult:
    """
    Applies one provider notification.

    Raises InvalidSignatureError / MalformedPayloadError for requests that
    must be rejected, UnknownReferenceError when no session carries the
    payment reference, and TransientError when storage failed. Everything
    else resolves to a ReconciliationResult the provider can be acknowledged with.
    """
    outcome = verify(provider, payload, signature_header)

    if outcome.kind == OutcomeKind.IGNORED:
        logger.info("%s event %s acknowledged without action", provider.name, outcome.event_type)
        return ReconciliationResult(ReconciliationStatus.IGNORED, event_type=outcome.event_type)

    if outcome.kind == OutcomeKind.FAILED:
        session, changed = mark_failed(db, outcome.reference)
        return ReconciliationResult(
            ReconciliationStatus.FAILED if changed else ReconciliationStatus.DUPLICATE,
            event_type=outcome.event_type,
            checkout_session_id=session.id,
            order_id=session.order_id,
        )

    try:
        session, changed = mark_paid(db, outcome.reference)
    except InvalidStateError as e:
        # Money may have been captured for a session that can no longer take it
        logger.error("Payment %s for a %s checkout session was not applied; needs manual review",
                     outcome.reference, e.status)
        return ReconciliationResult(ReconciliationStatus.REJECTED, event_type=outcome.event_type)

    session_id = session.id
    try:
        order = materialize(db, session_id)
    except (InsufficientStockError, ProductUnavailableError) as e:
        # Payment stays captured; resolving it is an operator task
        logger.error("Paid checkout session %s could not be fulfilled: %s", session_id, e)
        return ReconciliationResult(
            ReconciliationStatus.UNFULFILLABLE, event_type=outcome.event_type, checkout_session_id=session_id
        )

    return ReconciliationResult(
        ReconciliationStatus.PAID if changed else ReconciliationStatus.DUPLICATE,
        event_type=outcome.event_type,
        checkout_session_id=session_id,
        order_id=order.id,
    )


def current_payment_provider() -> PaymentProvider:
    """FastAPI dependency for the configured provider."""
    return get_payment_provider()
