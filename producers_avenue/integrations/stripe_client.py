"""
Stripe API client for hosted checkout.

Implements:
- Checkout Session creation for a cart
- Exponential backoff for transient errors
- Error classification into retryable and permanent failures
"""
import time
from enum import Enum
from typing import Any, Dict, List, Optional

import stripe
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from producers_avenue.config import get_settings
from producers_avenue.core.errors import PaymentProviderError, ValidationError
from producers_avenue.core.money import to_cents, to_money
from producers_avenue.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class StripeErrorType(Enum):
    """Classification of Stripe errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these
    RATE_LIMIT = "rate_limit"  # Retry with longer backoff


class StripeTransientError(PaymentProviderError):
    """A Stripe failure worth retrying."""

    def __init__(self, message: str, error_type: StripeErrorType):
        super().__init__(message)
        self.error_type = error_type


class StripeClient:
    """Wrapper for the Stripe API used by checkout."""

    def __init__(self) -> None:
        settings = get_settings()
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        self.settings = settings

    @staticmethod
    def _classify_error(error: stripe.error.StripeError) -> StripeErrorType:
        if isinstance(error, stripe.error.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.error.APIConnectionError, stripe.error.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (
                stripe.error.CardError,
                stripe.error.InvalidRequestError,
                stripe.error.AuthenticationError,
                stripe.error.PermissionError,
            ),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _handle_stripe_error(self, error: stripe.error.StripeError) -> None:
        """
        Log and re-raise a Stripe error as a domain error.

        Raises:
            StripeTransientError: Retryable failure
            PaymentProviderError: Permanent failure
        """
        error_type = self._classify_error(error)

        logger.error(
            "stripe_api_error",
            error_type=error_type.value,
            error_code=getattr(error, "code", None),
            error_message=str(error),
        )

        message = getattr(error, "user_message", None) or str(error)
        if error_type == StripeErrorType.PERMANENT:
            raise PaymentProviderError(message)
        raise StripeTransientError(message, error_type)

    def _line_items(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        line_items = []
        for item in items:
            kind = "Product" if item.get("type") == "product" else "Service"
            line_items.append(
                {
                    "price_data": {
                        "currency": self.settings.currency.lower(),
                        "product_data": {
                            "name": item.get("title") or kind,
                            "description": f"{kind} purchase",
                            "images": [item["image_url"]] if item.get("image_url") else [],
                        },
                        "unit_amount": to_cents(to_money(item["price"])),
                    },
                    "quantity": 1,
                }
            )
        return line_items

    @retry(
        retry=retry_if_exception_type(StripeTransientError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def create_checkout_session(
        self,
        items: List[Dict[str, Any]],
        user_id: str,
        checkout_id: str,
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a hosted Checkout Session for a cart.

        Args:
            items: Cart lines ``{id, type, price, seller_id, title?, image_url?}``
            user_id: Buyer, stored in session metadata
            checkout_id: Stored checkout the webhook rebuilds orders from
            customer_email: Prefilled on the payment page

        Returns:
            Dict[str, Any]: ``{"sessionId", "url"}``

        Raises:
            ValidationError: Empty cart or malformed line
            PaymentProviderError: Stripe refused or kept failing
        """
        if not items:
            raise ValidationError("No items provided")
        try:
            line_items = self._line_items(items)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid cart item: {e}")

        logger.info(
            "creating_checkout_session", user_id=user_id, checkout_id=checkout_id, lines=len(line_items)
        )

        start = time.time()
        try:
            session = stripe.checkout.Session.create(
                payment_method_types=["card"],
                line_items=line_items,
                mode="payment",
                success_url=f"{self.settings.app_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{self.settings.app_url}/cart",
                customer_email=customer_email,
                client_reference_id=checkout_id,
                metadata={"user_id": user_id, "checkout_id": checkout_id},
            )
        except stripe.error.StripeError as e:
            metrics.record_provider_call("stripe", "create_checkout_session", "error", time.time() - start)
            self._handle_stripe_error(e)
            raise  # For type checker

        metrics.record_provider_call("stripe", "create_checkout_session", "success", time.time() - start)
        logger.info("checkout_session_created", session_id=session.id, user_id=user_id)
        return {"sessionId": session.id, "url": session.url}
