"""Tests for webhook verification and payment reconciliation."""

import json
from decimal import Decimal

import pytest
from conftest import payu_notification, payu_signature, stripe_event, stripe_signature

from exceptions import InvalidSignatureError, MalformedPayloadError, UnknownReferenceError
from models.checkout_session import CheckoutSessionStatus, PaymentMethod
from models.order import Order, OrderStatus
from services import checkout_sessions
from services.payment_gateway import ReconciliationStatus, get_payment_provider, reconcile
from utils.payment_providers import OutcomeKind
from utils.payu_client import PayUProvider
from utils.stripe_client import StripeProvider


@pytest.fixture
def online_session(db, user, products, start_checkout):
    """Mug ($30) and bag ($20), Standard shipping ($5), online payment started."""
    session = start_checkout(user, [(products["mug"], 1), (products["bag"], 1)])
    checkout_sessions.select_shipping(db, session.id, user.id, "Standard", Decimal("5"))
    checkout_sessions.select_payment(db, session.id, user.id, PaymentMethod.ONLINE)
    return checkout_sessions.attach_payment_intent(db, session.id, user.id, "cs_test_123")


def deliver(db, provider, payload, header=None):
    if header is None:
        header = stripe_signature(payload)
    return reconcile(db, provider, payload, header)


class TestStripeSignature:
    def test_valid(self, stripe_provider):
        payload = stripe_event("cs_test_123")
        event = stripe_provider.verify_signature(payload, stripe_signature(payload))
        assert event["type"] == "checkout.session.completed"

    def test_missing_header(self, stripe_provider):
        with pytest.raises(InvalidSignatureError, match="Missing"):
            stripe_provider.verify_signature(stripe_event("cs_test_123"), None)

    def test_wrong_secret(self, stripe_provider):
        payload = stripe_event("cs_test_123")
        with pytest.raises(InvalidSignatureError):
            stripe_provider.verify_signature(payload, stripe_signature(payload, secret="whsec_other"))

    def test_tampered_body(self, stripe_provider):
        payload = stripe_event("cs_test_123")
        header = stripe_signature(payload)
        with pytest.raises(InvalidSignatureError):
            stripe_provider.verify_signature(stripe_event("cs_test_999"), header)

    def test_stale_timestamp(self, stripe_provider):
        payload = stripe_event("cs_test_123")
        with pytest.raises(InvalidSignatureError):
            stripe_provider.verify_signature(payload, stripe_signature(payload, timestamp=1000000000))

    def test_unconfigured_secret(self):
        provider = StripeProvider(secret_key="sk_test", webhook_secret="")
        payload = stripe_event("cs_test_123")
        with pytest.raises(InvalidSignatureError):
            provider.verify_signature(payload, stripe_signature(payload))

    def test_signed_garbage(self, stripe_provider):
        payload = b"not json"
        with pytest.raises(MalformedPayloadError):
            stripe_provider.verify_signature(payload, stripe_signature(payload))


class TestStripeClassify:
    def test_paid(self, stripe_provider):
        outcome = stripe_provider.classify(json.loads(stripe_event("cs_test_123")))
        assert outcome.kind == OutcomeKind.PAID
        assert outcome.reference == "cs_test_123"
        assert outcome.transaction_id == "pi_test_1"

    def test_unpaid(self, stripe_provider):
        outcome = stripe_provider.classify(json.loads(stripe_event("cs_test_123", payment_status="unpaid")))
        assert outcome.kind == OutcomeKind.FAILED

    def test_other_event_types(self, stripe_provider):
        outcome = stripe_provider.classify(json.loads(stripe_event("cs_test_123", event_type="charge.refunded")))
        assert outcome.kind == OutcomeKind.IGNORED
        assert outcome.event_type == "charge.refunded"

    def test_missing_reference(self, stripe_provider):
        event = {"type": "checkout.session.completed", "data": {"object": {}}}
        with pytest.raises(MalformedPayloadError):
            stripe_provider.classify(event)

    def test_data_not_an_object(self, stripe_provider):
        event = {"type": "checkout.session.completed", "data": ["cs_test_123"]}
        with pytest.raises(MalformedPayloadError):
            stripe_provider.classify(event)


class TestReconcile:
    def test_happy_path_online(self, db, products, stripe_provider, online_session):
        result = deliver(db, stripe_provider, stripe_event("cs_test_123"))

        assert result.status == ReconciliationStatus.PAID
        assert result.checkout_session_id == online_session.id
        order = db.get(Order, result.order_id)
        assert order.status == OrderStatus.PAID
        assert order.total_amount == Decimal("55.00")
        assert len(order.items) == 2
        db.refresh(online_session)
        assert online_session.status == CheckoutSessionStatus.COMPLETED
        assert online_session.order_id == order.id
        db.refresh(products["mug"])
        db.refresh(products["bag"])
        assert products["mug"].stock_quantity == 9
        assert products["bag"].stock_quantity == 9

    def test_duplicate_delivery_creates_one_order(self, db, products, stripe_provider, online_session):
        payload = stripe_event("cs_test_123")
        first = deliver(db, stripe_provider, payload)
        second = deliver(db, stripe_provider, payload)

        assert first.status == ReconciliationStatus.PAID
        assert second.status == ReconciliationStatus.DUPLICATE
        assert second.order_id == first.order_id
        assert db.query(Order).count() == 1
        db.refresh(products["mug"])
        assert products["mug"].stock_quantity == 9

    def test_invalid_signature_changes_nothing(self, db, products, stripe_provider, online_session):
        payload = stripe_event("cs_test_123")

        with pytest.raises(InvalidSignatureError):
            deliver(db, stripe_provider, payload, header=stripe_signature(payload, secret="whsec_forged"))

        db.refresh(online_session)
        assert online_session.status == CheckoutSessionStatus.DRAFT
        assert db.query(Order).count() == 0
        db.refresh(products["mug"])
        assert products["mug"].stock_quantity == 10

    def test_ignored_event(self, db, stripe_provider, online_session):
        result = deliver(db, stripe_provider, stripe_event("cs_test_123", event_type="payment_intent.created"))

        assert result.status == ReconciliationStatus.IGNORED
        db.refresh(online_session)
        assert online_session.status == CheckoutSessionStatus.DRAFT

    def test_failed_payment(self, db, stripe_provider, online_session):
        result = deliver(db, stripe_provider, stripe_event("cs_test_123", payment_status="unpaid"))

        assert result.status == ReconciliationStatus.FAILED
        db.refresh(online_session)
        assert online_session.status == CheckoutSessionStatus.FAILED
        assert db.query(Order).count() == 0

    def test_failure_after_payment_is_ignored(self, db, stripe_provider, online_session):
        deliver(db, stripe_provider, stripe_event("cs_test_123"))

        result = deliver(db, stripe_provider, stripe_event("cs_test_123", payment_status="unpaid"))

        assert result.status == ReconciliationStatus.DUPLICATE
        db.refresh(online_session)
        assert online_session.status == CheckoutSessionStatus.COMPLETED

    def test_unknown_reference(self, db, stripe_provider, online_session):
        with pytest.raises(UnknownReferenceError):
            deliver(db, stripe_provider, stripe_event("cs_unknown"))

    def test_payment_for_expired_session(self, db, stripe_provider, online_session):
        online_session.status = CheckoutSessionStatus.EXPIRED
        db.commit()

        result = deliver(db, stripe_provider, stripe_event("cs_test_123"))

        assert result.status == ReconciliationStatus.REJECTED
        assert db.query(Order).count() == 0

    def test_paid_but_out_of_stock(self, db, products, stripe_provider, online_session):
        products["bag"].stock_quantity = 0
        db.commit()

        result = deliver(db, stripe_provider, stripe_event("cs_test_123"))

        assert result.status == ReconciliationStatus.UNFULFILLABLE
        assert db.query(Order).count() == 0
        db.refresh(online_session)
        assert online_session.status == CheckoutSessionStatus.PAID


class TestPayU:
    @pytest.fixture
    def payu_session(self, db, user, products, start_checkout):
        session = start_checkout(user, [(products["lamp"], 2)])
        checkout_sessions.select_shipping(db, session.id, user.id, "Standard", Decimal("5"))
        return checkout_sessions.attach_payment_intent(db, session.id, user.id, "PAYU123")

    def test_completed_notification(self, db, payu_provider, payu_session):
        payload = payu_notification("PAYU123")

        result = reconcile(db, payu_provider, payload, payu_signature(payload))

        assert result.status == ReconciliationStatus.PAID
        order = db.get(Order, result.order_id)
        assert order.total_amount == Decimal("85.00")
        assert order.payment_transaction_id == "PAYU123"

    def test_canceled_notification(self, db, payu_provider, payu_session):
        payload = payu_notification("PAYU123", status="CANCELED")

        result = reconcile(db, payu_provider, payload, payu_signature(payload))

        assert result.status == ReconciliationStatus.FAILED

    def test_pending_notification(self, db, payu_provider, payu_session):
        payload = payu_notification("PAYU123", status="PENDING")

        result = reconcile(db, payu_provider, payload, payu_signature(payload))

        assert result.status == ReconciliationStatus.IGNORED

    def test_wrong_key(self, db, payu_provider, payu_session):
        payload = payu_notification("PAYU123")

        with pytest.raises(InvalidSignatureError):
            reconcile(db, payu_provider, payload, payu_signature(payload, key="other"))
        db.refresh(payu_session)
        assert payu_session.status == CheckoutSessionStatus.DRAFT

    def test_unsupported_algorithm(self, payu_provider):
        payload = payu_notification("PAYU123")
        with pytest.raises(InvalidSignatureError):
            payu_provider.verify_signature(payload, "signature=abc;algorithm=SHA-1")

    def test_payment_id_is_transaction_id(self, payu_provider):
        outcome = payu_provider.classify(json.loads(payu_notification("PAYU123")))
        assert outcome.reference == "PAYU123"
        assert outcome.transaction_id == "5000001"

    def test_non_string_status(self, payu_provider):
        event = {"order": {"orderId": "PAYU123", "status": 123}}
        with pytest.raises(MalformedPayloadError):
            payu_provider.classify(event)

    def test_properties_must_be_objects(self, payu_provider):
        event = {"order": {"orderId": "PAYU123", "status": "COMPLETED"}, "properties": ["x"]}
        with pytest.raises(MalformedPayloadError):
            payu_provider.classify(event)

    def test_signed_malformed_notification_changes_nothing(self, db, payu_provider, payu_session):
        payload = json.dumps({"order": {"orderId": "PAYU123", "status": ["COMPLETED"]}}).encode("utf-8")

        with pytest.raises(MalformedPayloadError):
            reconcile(db, payu_provider, payload, payu_signature(payload))

        db.refresh(payu_session)
        assert payu_session.status == CheckoutSessionStatus.DRAFT
        assert db.query(Order).count() == 0


class TestProviderRegistry:
    def test_by_name(self):
        assert isinstance(get_payment_provider("stripe"), StripeProvider)
        assert isinstance(get_payment_provider("PayU"), PayUProvider)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown payment provider"):
            get_payment_provider("paypal")
