# backend/utils/payu_client.py
import hashlib
import hmac
import json
import logging
import time
from decimal import Decimal
from typing import Optional
from urllib.parse import urljoin

import httpx

from config import settings
from exceptions import InvalidSignatureError, MalformedPayloadError, PaymentProviderError
from utils.money import to_minor_units
from utils.payment_providers import OutcomeKind, PaymentInitiation, PaymentOutcome

logger = logging.getLogger(__name__)

# PayU signs notifications with one of these digests over body + second key
DIGESTS = {
    "MD5": hashlib.md5,
    "SHA256": hashlib.sha256,
    "SHA-256": hashlib.sha256,
}


def parse_signature_header(header: str) -> dict:
    # "sender=checkout;signature=...;algorithm=SHA-256;content=DOCUMENT"
    parts = {}
    for chunk in header.split(";"):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key] = value
    return parts


class PayUClient:
    def __init__(self):
        # Initialize configuration and callback URLs
        self.api_url = settings.PAYU_API_URL
        self.pos_id = settings.PAYU_POS_ID
        self.client_id = settings.PAYU_CLIENT_ID
        self.client_secret = settings.PAYU_CLIENT_SECRET
        self.notify_url = urljoin(settings.BACKEND_URL, "/payments/webhook")
        self.continue_url = urljoin(settings.FRONTEND_URL, "/checkout/payment-success")

    async def get_auth_token(self) -> str:
        # Retrieve OAuth access token using client credentials
        auth_url = urljoin(self.api_url, "/pl/standard/user/oauth/authorize")
        payload = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(auth_url, data=payload)
                response.raise_for_status()
                return response.json()["access_token"]
            except (httpx.RequestError, httpx.HTTPStatusError) as e:
                logger.error("PayU auth error: %s", e)
                raise

    async def create_order(self, token: str, order_data: dict) -> dict:
        # Submit order request to PayU API
        order_url = urljoin(self.api_url, "/api/v2_1/orders")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}"
        }
        async with httpx.AsyncClient() as client:
            try:
                # PayU answers a created order with a 302 whose body still carries orderId
                response = await client.post(order_url, json=order_data, headers=headers, follow_redirects=False)
                if response.status_code >= 400:
                    response.raise_for_status()

                data = response.json() if response.content else {}
                if 300 <= response.status_code < 400 and not data.get("redirectUri"):
                    data["redirectUri"] = response.headers.get("Location")
                return data
            except (httpx.RequestError, httpx.HTTPStatusError) as e:
                resp_text = e.response.text if isinstance(e, httpx.HTTPStatusError) else str(e)
                logger.error("PayU create order error: %s", resp_text)
                raise


class PayUProvider:
    name = "payu"
    signature_header = "OpenPayU-Signature"

    def __init__(self, second_key: str = None, client: PayUClient = None):
        self.second_key = second_key if second_key is not None else settings.PAYU_SECOND_KEY_MD5
        self.client = client or PayUClient()

    def verify_signature(self, payload: bytes, header: Optional[str]) -> dict:
        if not header:
            raise InvalidSignatureError("Missing OpenPayU-Signature header")
        if not self.second_key:
            raise InvalidSignatureError("Signature key is not configured")

        parts = parse_signature_header(header)
        signature = parts.get("signature")
        digest = DIGESTS.get(parts.get("algorithm", "SHA-256").upper())
        if not signature or digest is None:
            raise InvalidSignatureError("Unsupported or incomplete signature header")

        expected = digest(payload + self.second_key.encode("utf-8")).hexdigest()
        if not hmac.compare_digest(expected, signature.lower()):
            raise InvalidSignatureError("Signature mismatch")

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise MalformedPayloadError("Notification body is not valid JSON") from e
        if not isinstance(event, dict):
            raise MalformedPayloadError("Notification body is not an object")
        return event

    def classify(self, event: dict) -> PaymentOutcome:
        order = event.get("order") or {}
        if not isinstance(order, dict):
            raise MalformedPayloadError("Notification order is not an object")
        status = order.get("status")
        if status is not None and not isinstance(status, str):
            raise MalformedPayloadError("Notification order status is not a string")
        event_type = f"order.{status.lower()}" if status else None

        if status == "COMPLETED":
            kind = OutcomeKind.PAID
        elif status == "CANCELED":
            kind = OutcomeKind.FAILED
        else:
            # PENDING, WAITING_FOR_CONFIRMATION and refunds need no action here
            return PaymentOutcome(kind=OutcomeKind.IGNORED, event_type=event_type)

        reference = order.get("orderId")
        if not reference or not isinstance(reference, str):
            raise MalformedPayloadError("Notification has no orderId")

        properties = event.get("properties") or []
        if not isinstance(properties, list) or not all(isinstance(p, dict) for p in properties):
            raise MalformedPayloadError("Notification properties are not a list of objects")
        payment_id = None
        for prop in properties:
            if prop.get("name") == "PAYMENT_ID":
                payment_id = prop.get("value")
        return PaymentOutcome(kind=kind, event_type=event_type, reference=reference,
                              transaction_id=str(payment_id) if payment_id else reference)

    async def create_payment(
        self, checkout_session_id: int, amount: Decimal, customer_email: Optional[str], customer_ip: Optional[str]
    ) -> PaymentInitiation:
        order_data = {
            "notifyUrl": self.client.notify_url,
            "continueUrl": self.client.continue_url,
            "customerIp": customer_ip or "127.0.0.1",
            "merchantPosId": self.client.pos_id,
            "description": f"Checkout #{checkout_session_id}",
            "currencyCode": settings.CURRENCY.upper(),
            "totalAmount": to_minor_units(amount),
            # extOrderId must be unique per PayU order
            "extOrderId": f"{checkout_session_id}_{int(time.time())}",
            "buyer": {"email": customer_email} if customer_email else None,
            "products": [{
                "name": f"Checkout #{checkout_session_id}",
                "unitPrice": to_minor_units(amount),
                "quantity": 1,
            }],
        }
        order_data = {k: v for k, v in order_data.items() if v is not None}

        try:
            token = await self.client.get_auth_token()
            response = await self.client.create_order(token, order_data)
        except httpx.HTTPError as e:
            raise PaymentProviderError(self.name, "Payment could not be started") from e

        reference = response.get("orderId")
        if not reference:
            logger.error("PayU order response without orderId for session %s", checkout_session_id)
            raise PaymentProviderError(self.name, "Payment provider returned no order id")
        return PaymentInitiation(reference=reference, redirect_url=response.get("redirectUri"))
