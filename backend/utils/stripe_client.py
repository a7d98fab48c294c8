# backend/utils/stripe_client.py
import json
import logging
from decimal import Decimal
from typing import Optional
from urllib.parse import urljoin

import stripe

from config import settings
from exceptions import InvalidSignatureError, MalformedPayloadError, PaymentProviderError
from utils.money import to_minor_units
from utils.payment_providers import OutcomeKind, PaymentInitiation, PaymentOutcome

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
# payment_status values that mean the money was captured
PAID_STATUSES = {"paid", "no_payment_required"}


class StripeProvider:
    name = "stripe"
    signature_header = "Stripe-Signature"

    def __init__(self, secret_key: str = None, webhook_secret: str = None, tolerance: int = None):
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        self.tolerance = tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE
        self.success_url = urljoin(settings.FRONTEND_URL, "/checkout/payment-success?session_id={CHECKOUT_SESSION_ID}")
        self.cancel_url = urljoin(settings.FRONTEND_URL, "/checkout/payment-cancelled")

    def verify_signature(self, payload: bytes, header: Optional[str]) -> dict:
        if not header:
            raise InvalidSignatureError("Missing Stripe-Signature header")
        if not self.webhook_secret:
            raise InvalidSignatureError("Webhook secret is not configured")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), header, self.webhook_secret, self.tolerance
            )
        except UnicodeDecodeError as e:
            raise InvalidSignatureError("Payload is not valid UTF-8") from e
        except stripe.SignatureVerificationError as e:
            raise InvalidSignatureError(str(e)) from e

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise MalformedPayloadError("Event body is not valid JSON") from e
        if not isinstance(event, dict):
            raise MalformedPayloadError("Event body is not an object")
        return event

    def classify(self, event: dict) -> PaymentOutcome:
        event_type = event.get("type")
        if event_type != CHECKOUT_COMPLETED:
            return PaymentOutcome(kind=OutcomeKind.IGNORED, event_type=event_type)

        data = event.get("data") or {}
        session = data.get("object") if isinstance(data, dict) else None
        if not isinstance(session, dict):
            raise MalformedPayloadError("Checkout event has no session object")
        reference = session.get("id")
        if not reference or not isinstance(reference, str):
            raise MalformedPayloadError("Checkout event has no session id")

        payment_status = session.get("payment_status")
        paid = isinstance(payment_status, str) and payment_status in PAID_STATUSES
        kind = OutcomeKind.PAID if paid else OutcomeKind.FAILED
        return PaymentOutcome(
            kind=kind,
            event_type=event_type,
            reference=reference,
            transaction_id=session.get("payment_intent") or reference,
        )

    async def create_payment(
        self, checkout_session_id: int, amount: Decimal, customer_email: Optional[str], customer_ip: Optional[str]
    ) -> PaymentInitiation:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                payment_method_types=["card"],
                line_items=[{
                    "price_data": {
                        "currency": settings.CURRENCY,
                        "product_data": {"name": f"Checkout #{checkout_session_id}"},
                        "unit_amount": to_minor_units(amount),
                    },
                    "quantity": 1,
                }],
                customer_email=customer_email,
                success_url=self.success_url,
                cancel_url=self.cancel_url,
                metadata={"checkout_session_id": str(checkout_session_id)},
            )
        except stripe.StripeError as e:
            logger.error("Stripe checkout creation failed for session %s: %s", checkout_session_id, e)
            raise PaymentProviderError(self.name, "Payment could not be started") from e

        return PaymentInitiation(reference=session.id, redirect_url=session.url)
