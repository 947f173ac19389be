"""
PayPal REST client (Orders v2 and webhook verification).

Talks to PayPal over ``httpx`` with client-credentials OAuth. Transient
failures (network errors, 5xx, 429) are retried with exponential backoff.
"""
import json
import time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from producers_avenue.config import get_settings
from producers_avenue.core.errors import PaymentProviderError, ValidationError
from producers_avenue.core.money import to_money
from producers_avenue.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

# Headers PayPal signs every webhook delivery with
TRANSMISSION_HEADERS = {
    "transmission_id": "paypal-transmission-id",
    "transmission_time": "paypal-transmission-time",
    "transmission_sig": "paypal-transmission-sig",
    "cert_url": "paypal-cert-url",
    "auth_algo": "paypal-auth-algo",
}


class PayPalTransientError(PaymentProviderError):
    """A PayPal failure worth retrying."""


class PayPalClient:
    """Async PayPal REST API client."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = get_settings()
        self.base_url = self.settings.paypal_api_base
        self._client = http_client or httpx.AsyncClient(
            base_url=self.base_url, timeout=self.settings.paypal_timeout_seconds
        )

    async def close(self) -> None:
        await self._client.aclose()

    @retry(
        retry=retry_if_exception_type(PayPalTransientError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _request(
        self, method: str, path: str, operation: str, **kwargs: Any
    ) -> Dict[str, Any]:
        start = time.time()
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            metrics.record_provider_call("paypal", operation, "error", time.time() - start)
            logger.warning("paypal_request_error", operation=operation, error=str(e))
            raise PayPalTransientError(f"PayPal request failed: {e}")

        duration = time.time() - start
        if response.status_code >= 500 or response.status_code == 429:
            metrics.record_provider_call("paypal", operation, "error", duration)
            logger.warning(
                "paypal_transient_error", operation=operation, status_code=response.status_code
            )
            raise PayPalTransientError(f"PayPal returned {response.status_code}")

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {}

        if response.is_error:
            metrics.record_provider_call("paypal", operation, "error", duration)
            logger.error(
                "paypal_api_error",
                operation=operation,
                status_code=response.status_code,
                error_name=data.get("name"),
                error_message=data.get("message"),
            )
            raise PaymentProviderError(data.get("message") or f"PayPal {operation} failed")

        metrics.record_provider_call("paypal", operation, "success", duration)
        return data

    async def get_access_token(self) -> str:
        """Exchange the client credentials for a bearer token."""
        data = await self._request(
            "POST",
            "/v1/oauth2/token",
            "oauth_token",
            auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
            data={"grant_type": "client_credentials"},
        )
        token = data.get("access_token")
        if not token:
            raise PaymentProviderError("PayPal did not return an access token")
        return token

    async def _authorized(self) -> Dict[str, str]:
        token = await self.get_access_token()
        return {"Authorization": f"Bearer {token}"}

    async def create_order(
        self, items: List[Dict[str, Any]], user_id: str, checkout_id: str
    ) -> Dict[str, Any]:
        """
        Create a CAPTURE-intent order for a cart.

        The buyer id goes in ``reference_id`` and the stored checkout id in
        ``custom_id`` (127 characters at most) so the capture can rebuild
        orders.

        Returns:
            Dict[str, Any]: ``{"orderId", "approvalUrl"}``
        """
        if not items:
            raise ValidationError("No items provided")
        currency = self.settings.currency
        try:
            prices = [to_money(item["price"]) for item in items]
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid cart item: {e}")
        total = sum(prices, Decimal("0"))

        paypal_items = []
        for item, price in zip(items, prices):
            kind = "Product" if item.get("type") == "product" else "Service"
            paypal_items.append(
                {
                    "name": item.get("title") or kind,
                    "description": f"{kind} purchase",
                    "unit_amount": {"currency_code": currency, "value": f"{price:.2f}"},
                    "quantity": "1",
                }
            )

        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": user_id,
                    "custom_id": checkout_id,
                    "description": "Producers Avenue Purchase",
                    "amount": {
                        "currency_code": currency,
                        "value": f"{total:.2f}",
                        "breakdown": {
                            "item_total": {"currency_code": currency, "value": f"{total:.2f}"}
                        },
                    },
                    "items": paypal_items,
                }
            ],
            "application_context": {
                "return_url": f"{self.settings.app_url}/checkout/success",
                "cancel_url": f"{self.settings.app_url}/cart",
                "brand_name": "Producers Avenue",
                "user_action": "PAY_NOW",
            },
        }

        data = await self._request(
            "POST", "/v2/checkout/orders", "create_order", json=body, headers=await self._authorized()
        )
        approval_url = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        logger.info(
            "paypal_order_created",
            paypal_order_id=data.get("id"),
            user_id=user_id,
            checkout_id=checkout_id,
        )
        return {"orderId": data.get("id"), "approvalUrl": approval_url}

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        """Fetch an order's current state without changing it."""
        return await self._request(
            "GET",
            f"/v2/checkout/orders/{order_id}",
            "get_order",
            headers=await self._authorized(),
        )

    async def capture_order(self, order_id: str) -> Dict[str, Any]:
        """Capture an approved order; returns PayPal's order body."""
        data = await self._request(
            "POST",
            f"/v2/checkout/orders/{order_id}/capture",
            "capture_order",
            json={},
            headers=await self._authorized(),
        )
        logger.info("paypal_order_captured", paypal_order_id=order_id, status=data.get("status"))
        return data

    async def verify_webhook_signature(self, body: bytes, headers: Mapping[str, str]) -> bool:
        """
        Ask PayPal whether a webhook delivery is authentic.

        Any failure (missing configuration, network, malformed body) counts
        as not verified.
        """
        if not self.settings.paypal_webhook_id:
            logger.error("paypal_webhook_id_not_configured")
            return False
        try:
            payload = {key: headers.get(header, "") for key, header in TRANSMISSION_HEADERS.items()}
            payload["webhook_id"] = self.settings.paypal_webhook_id
            payload["webhook_event"] = json.loads(body)
            data = await self._request(
                "POST",
                "/v1/notifications/verify-webhook-signature",
                "verify_webhook_signature",
                json=payload,
                headers=await self._authorized(),
            )
        except (PaymentProviderError, ValueError) as e:
            logger.warning("paypal_webhook_verification_error", error=str(e))
            return False
        return data.get("verification_status") == "SUCCESS"


def order_buyer(order: Dict[str, Any]) -> Optional[str]:
    """The buyer recorded in ``reference_id`` when the order was created."""
    units = order.get("purchase_units") or []
    return units[0].get("reference_id") if units else None


def capture_details(captured: Dict[str, Any]) -> Dict[str, Any]:
    """
    Pull the buyer, checkout id and capture id out of a captured order body.

    PayPal echoes ``custom_id`` on the purchase unit or on the capture
    itself depending on the API version, so both are checked.

    Raises:
        ValidationError: The order body lacks the checkout metadata
    """
    try:
        unit = captured["purchase_units"][0]
        captures = (unit.get("payments") or {}).get("captures") or []
        first_capture = captures[0] if captures else {}
        checkout_id = unit.get("custom_id") or first_capture["custom_id"]
        buyer_id = unit["reference_id"]
    except (KeyError, IndexError, TypeError):
        raise ValidationError("PayPal order is missing checkout metadata")
    return {
        "buyer_id": buyer_id,
        "checkout_id": checkout_id,
        "capture_id": first_capture.get("id"),
    }
