class StorefrontError(Exception):
    """Base class for errors raised by the storefront service."""


class ConfigurationError(StorefrontError):
    """A required setting is missing; the service cannot start."""


class PaymentProviderError(StorefrontError):
    """The payment provider rejected or failed a request."""

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code


class WebhookSignatureError(StorefrontError):
    """A webhook delivery could not be authenticated."""


class WebhookPayloadError(StorefrontError):
    """A verified webhook event carries data that cannot be applied."""


class OrderNotFoundError(StorefrontError):
    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id
