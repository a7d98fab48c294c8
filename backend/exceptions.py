"""
Domain exceptions for the checkout flow.

Services raise these; main.py maps them onto HTTP responses.
"""
from typing import Optional


class CheckoutError(Exception):
    """Base exception for checkout, payment and order operations"""
    pass


class ValidationError(CheckoutError):
    """Raised when the request cannot start or continue a checkout"""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class EmptyCartError(ValidationError):
    """Raised when checkout is attempted with an empty cart"""
    def __init__(self):
        super().__init__("Your cart is empty")


class NotFoundError(CheckoutError):
    """Raised when a record does not exist or belongs to another user"""
    def __init__(self, resource: str, resource_id):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class InvalidStateError(CheckoutError):
    """Raised when a checkout session is not in a status that allows the operation"""
    def __init__(self, message: str, status: Optional[str] = None):
        self.message = message
        self.status = status
        super().__init__(message)


class InvalidSignatureError(CheckoutError):
    """Raised when a payment notification fails signature verification"""
    def __init__(self, reason: str = "Signature verification failed"):
        self.reason = reason
        super().__init__(reason)


class MalformedPayloadError(CheckoutError):
    """Raised when a signed payment notification cannot be interpreted"""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class UnknownReferenceError(CheckoutError):
    """Raised when a payment reference matches no checkout session"""
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"No checkout session for payment reference: {reference}")


class InsufficientStockError(CheckoutError):
    """Raised when a product no longer has enough stock for an order line"""
    def __init__(self, product_id: int, product_name: str, requested: int, available: int):
        self.product_id = product_id
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(
            f"'{product_name}' is no longer available in the requested quantity "
            f"(requested {requested}, available {available})"
        )


class ProductUnavailableError(CheckoutError):
    """Raised when a product in a cart snapshot no longer exists"""
    def __init__(self, product_id: int, product_name: str):
        self.product_id = product_id
        self.product_name = product_name
        super().__init__(f"'{product_name}' is no longer available")


class TransientError(CheckoutError):
    """Raised when a storage transaction failed and was rolled back; safe to retry"""
    def __init__(self, message: str = "Temporary failure, please retry"):
        self.message = message
        super().__init__(message)


class PaymentProviderError(CheckoutError):
    """Raised when the payment provider cannot start a payment"""
    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")
