# utils/payment_providers.py
"""
Capability shared by payment providers.

A provider turns a raw, signed notification into a PaymentOutcome and can
start a hosted payment for a checkout session. Implementations live in
utils/stripe_client.py and utils/payu_client.py and are picked by the
PAYMENT_PROVIDER setting.
"""
import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol


class OutcomeKind(str, enum.Enum):
    IGNORED = "ignored"
    PAID = "paid"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentOutcome:
    kind: OutcomeKind
    event_type: Optional[str]
    reference: Optional[str] = None
    transaction_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentInitiation:
    reference: str
    redirect_url: Optional[str]


class PaymentProvider(Protocol):
    """Verify, classify and start payments for one provider."""

    name: str
    signature_header: str

    def verify_signature(self, payload: bytes, header: Optional[str]) -> dict:
        """Check the signature header against the raw body, then decode the event.

        Raises InvalidSignatureError before any field of the payload is read,
        and MalformedPayloadError when a correctly signed body is not an event.
        """
        ...

    def classify(self, event: dict) -> PaymentOutcome:
        """Map a verified event onto paid / failed / ignored."""
        ...

    async def create_payment(
        self, checkout_session_id: int, amount: Decimal, customer_email: Optional[str], customer_ip: Optional[str]
    ) -> PaymentInitiation:
        """Create the hosted payment and return its reference and redirect URL."""
        ...
