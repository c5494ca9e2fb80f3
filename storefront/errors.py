"""Error taxonomy for the order service.

Every error carries the HTTP status the API layer reports it with. Errors are
raised where they are detected and rendered once by the exception handler
registered in ``storefront.main``.
"""

from typing import Optional


class StorefrontError(Exception):
    """Base class for expected, operational errors."""

    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message}
        if self.field:
            body["field"] = self.field
        return body


class ValidationError(StorefrontError):
    """Malformed input: bad amount, incomplete address, pricing mismatch."""

    status_code = 422


class NotFound(StorefrontError):
    status_code = 404


class Forbidden(StorefrontError):
    status_code = 403


class InvalidTransition(StorefrontError):
    """A status change the order state machine does not allow."""

    status_code = 409


class DuplicateReceipt(StorefrontError):
    """The payment provider already has an order for this receipt."""

    status_code = 409


class GatewayUnavailable(StorefrontError):
    """Transport failure or timeout talking to the payment provider.

    No order has been mutated when this is raised; the caller may retry.
    """

    status_code = 503


class CatalogUnavailable(StorefrontError):
    status_code = 503


class DeliveryFailure(StorefrontError):
    """A push or socket delivery failed. Logged, never surfaced to clients."""

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target


class SubscriptionExpired(DeliveryFailure):
    """The push service reports the subscription is gone (404/410)."""
