"""
Domain exceptions.

Each exception carries the HTTP status the API layer answers with; the
message is safe to show to clients.
"""


class MarketplaceError(Exception):
    """Base exception for marketplace operations."""

    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ValidationError(MarketplaceError):
    """Raised when request input is missing or malformed."""

    status_code = 400


class AuthenticationError(MarketplaceError):
    """Raised when no valid session accompanies the request."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class AuthorizationError(MarketplaceError):
    """Raised when the caller does not own the resource."""

    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)


class NotFoundError(MarketplaceError):
    status_code = 404


class InsufficientBalanceError(ValidationError):
    def __init__(self, message: str = "Insufficient balance"):
        super().__init__(message)


class WebhookError(MarketplaceError):
    """Raised when a webhook payload cannot be verified or processed."""

    status_code = 400


class WebhookAuthenticationError(WebhookError):
    """Raised when a provider rejects a webhook's signature."""

    status_code = 401

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)


class PaymentProviderError(MarketplaceError):
    """Raised when Stripe or PayPal fails in a way retries did not fix."""

    status_code = 502


class GoneError(MarketplaceError):
    """Raised when a resource existed but has expired."""

    status_code = 410


class RateLimitedError(MarketplaceError):
    """Raised when a usage allowance is used up."""

    status_code = 429
