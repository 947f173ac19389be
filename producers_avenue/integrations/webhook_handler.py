"""
Payment webhook handlers with signature verification and event deduplication.

Implements:
- Stripe signature verification through the SDK
- PayPal signature verification through PayPal's verify API
- Event deduplication using Redis (fails open when Redis is down)
- Event type routing to order/ledger/wallet operations
"""
import json
import time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import redis.asyncio as aioredis
import stripe
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.config import get_settings
from producers_avenue.core.errors import WebhookAuthenticationError, WebhookError
from producers_avenue.core.ledger import ledger
from producers_avenue.core.money import to_money
from producers_avenue.core.orders import order_service
from producers_avenue.integrations.paypal_client import PayPalClient
from producers_avenue.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Dict[str, Any], AsyncSession], Awaitable[Dict[str, Any]]]


class WebhookHandler:
    """
    Routes verified provider events to registered handlers.

    Processed event ids are kept in Redis for ``webhook_dedup_ttl_seconds``
    so redelivered events are acknowledged without being applied twice.
    """

    provider = "unknown"

    def __init__(self, redis_client: Optional[aioredis.Redis] = None):
        self.settings = get_settings()
        self.redis_client = redis_client
        self.event_handlers: Dict[str, EventHandler] = {}

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for a specific event type.

        Args:
            event_type: Provider event type (e.g. 'checkout.session.completed')
            handler: Async callable taking ``(resource, db)``
        """
        self.event_handlers[event_type] = handler

    def _dedup_key(self, event_id: str) -> str:
        return f"webhook:processed:{self.provider}:{event_id}"

    async def is_event_processed(self, event_id: str) -> bool:
        if self.redis_client is None:
            return False
        try:
            return bool(await self.redis_client.exists(self._dedup_key(event_id)))
        except Exception as e:
            logger.warning("webhook_dedup_check_error", error=str(e), event_id=event_id)
            # If Redis is down, process the event anyway to avoid losing it
            return False

    async def mark_event_processed(self, event_id: str) -> None:
        if self.redis_client is None:
            return
        try:
            await self.redis_client.setex(
                self._dedup_key(event_id), self.settings.webhook_dedup_ttl_seconds, "1"
            )
        except Exception as e:
            logger.warning("webhook_mark_processed_error", error=str(e), event_id=event_id)

    async def process_event(
        self,
        event_id: str,
        event_type: str,
        resource: Dict[str, Any],
        db: AsyncSession,
    ) -> Dict[str, Any]:
        """
        Process a verified webhook event.

        Args:
            event_id: Provider event id
            event_type: Provider event type
            resource: The event's object (Stripe ``data.object``, PayPal ``resource``)
            db: Database session

        Returns:
            Dict[str, Any]: ``status`` is success, duplicate or ignored

        Raises:
            WebhookError: If the handler fails
        """
        start = time.time()
        logger.info(
            "processing_webhook_event",
            provider=self.provider,
            event_id=event_id,
            event_type=event_type,
        )

        if await self.is_event_processed(event_id):
            logger.info("webhook_event_already_processed", event_id=event_id, event_type=event_type)
            metrics.record_webhook_event(self.provider, event_type, "duplicate", time.time() - start)
            return {"status": "duplicate", "event_id": event_id}

        handler = self.event_handlers.get(event_type)
        if handler is None:
            logger.info("webhook_no_handler", event_id=event_id, event_type=event_type)
            metrics.record_webhook_event(self.provider, event_type, "ignored", time.time() - start)
            return {"status": "ignored", "event_id": event_id, "event_type": event_type}

        try:
            result = await handler(resource, db)
        except Exception as e:
            metrics.record_webhook_event(self.provider, event_type, "failed", time.time() - start)
            logger.error(
                "webhook_event_processing_failed",
                provider=self.provider,
                event_id=event_id,
                event_type=event_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise WebhookError(f"Failed to process event {event_id}") from e

        await self.mark_event_processed(event_id)
        metrics.record_webhook_event(self.provider, event_type, "success", time.time() - start)
        logger.info("webhook_event_processed_successfully", event_id=event_id, event_type=event_type)
        return {"status": "success", "event_id": event_id, "event_type": event_type, "result": result}


class StripeWebhookHandler(WebhookHandler):
    provider = "stripe"

    def __init__(self, redis_client: Optional[aioredis.Redis] = None):
        super().__init__(redis_client)
        self.register_handler("checkout.session.completed", self.handle_checkout_completed)
        self.register_handler("payment_intent.payment_failed", self.handle_payment_failed)
        self.register_handler("charge.refunded", self.handle_charge_refunded)

    def verify(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the ``Stripe-Signature`` header and decode the event.

        Returns:
            Dict[str, Any]: The event as plain JSON

        Raises:
            WebhookError: Missing or invalid signature
        """
        if not signature:
            metrics.record_webhook_signature_failure(self.provider)
            raise WebhookError("No signature")
        try:
            stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=self.settings.stripe_webhook_secret,
            )
        except (stripe.error.SignatureVerificationError, ValueError) as e:
            metrics.record_webhook_signature_failure(self.provider)
            logger.error("webhook_signature_verification_failed", provider=self.provider, error=str(e))
            raise WebhookError("Webhook signature verification failed")

        event = json.loads(payload)
        logger.info("webhook_signature_verified", event_id=event.get("id"), event_type=event.get("type"))
        return event

    async def handle_event(self, event: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
        resource = (event.get("data") or {}).get("object") or {}
        return await self.process_event(event.get("id", ""), event.get("type", ""), resource, db)

    async def handle_checkout_completed(
        self, session: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        """Create orders for a paid Checkout Session from its stored checkout."""
        metadata = session.get("metadata") or {}
        user_id = metadata.get("user_id")
        checkout_id = metadata.get("checkout_id") or session.get("client_reference_id")
        if not user_id or not checkout_id:
            logger.error("checkout_session_missing_metadata", session_id=session.get("id"))
            return {"status": "skipped", "reason": "Missing metadata"}

        checkout = await order_service.load_checkout(db, checkout_id)
        if checkout is None or checkout.buyer_id != user_id:
            logger.error(
                "checkout_session_unknown_checkout",
                session_id=session.get("id"),
                checkout_id=checkout_id,
            )
            return {"status": "skipped", "reason": "Unknown checkout"}

        result = await order_service.complete_checkout(
            db, checkout, payment_reference=session.get("payment_intent")
        )
        return {
            "orders_created": len(result.orders),
            "failed_lines": result.failed_lines,
        }

    async def handle_payment_failed(
        self, payment_intent: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        error = (payment_intent.get("last_payment_error") or {}).get("message")
        logger.info("handling_payment_intent_failed", payment_intent_id=payment_intent.get("id"), error=error)
        return await order_service.fail_payment(db, payment_intent["id"])

    async def handle_charge_refunded(
        self, charge: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        payment_intent_id = charge.get("payment_intent")
        if not payment_intent_id:
            logger.warning("charge_refunded_no_payment_intent", charge_id=charge.get("id"))
            return {"status": "skipped", "reason": "No payment_intent associated"}

        sales = await ledger.entries_for_provider_reference(db, payment_intent_id, type="sale")
        if charge.get("amount_refunded") is None:
            return await order_service.refund_sales(db, sales, fully_refunded=True)

        # amount_refunded is the running total across every refund of the charge
        total_refunded = to_money(Decimal(charge["amount_refunded"]) / 100)
        already_recorded = await ledger.refunded_total(db, provider_reference=payment_intent_id)
        refund_amount = total_refunded - already_recorded
        if refund_amount <= 0:
            logger.info(
                "refund_already_recorded",
                payment_intent_id=payment_intent_id,
                amount_refunded=str(total_refunded),
            )
            return {"refunds_recorded": 0, "orders_updated": 0}
        return await order_service.refund_sales(
            db, sales, refund_amount, fully_refunded=charge.get("refunded")
        )


class PayPalWebhookHandler(WebhookHandler):
    provider = "paypal"

    def __init__(self, paypal_client: PayPalClient, redis_client: Optional[aioredis.Redis] = None):
        super().__init__(redis_client)
        self.paypal_client = paypal_client
        self.register_handler("PAYMENT.CAPTURE.COMPLETED", self.handle_capture_completed)
        self.register_handler("PAYMENT.CAPTURE.DENIED", self.handle_capture_denied)
        self.register_handler("PAYMENT.CAPTURE.REFUNDED", self.handle_capture_refunded)

    async def verify(self, body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """
        Verify a delivery with PayPal and decode the event.

        Raises:
            WebhookAuthenticationError: PayPal did not confirm the signature
            WebhookError: Body is not JSON
        """
        if not await self.paypal_client.verify_webhook_signature(body, headers):
            metrics.record_webhook_signature_failure(self.provider)
            logger.error("webhook_signature_verification_failed", provider=self.provider)
            raise WebhookAuthenticationError()
        try:
            return json.loads(body)
        except ValueError:
            raise WebhookError("Invalid webhook payload")

    async def handle_event(self, event: Dict[str, Any], db: AsyncSession) -> Dict[str, Any]:
        return await self.process_event(
            event.get("id", ""), event.get("event_type", ""), event.get("resource") or {}, db
        )

    @staticmethod
    def _related_order_id(resource: Dict[str, Any]) -> Optional[str]:
        return (
            (resource.get("supplementary_data") or {}).get("related_ids") or {}
        ).get("order_id")

    @staticmethod
    def _refunded_capture_id(resource: Dict[str, Any]) -> Optional[str]:
        # A refund resource links "up" to the capture it refunds
        for link in resource.get("links") or []:
            if link.get("rel") == "up" and link.get("href"):
                return link["href"].rstrip("/").rsplit("/", 1)[-1]
        return resource.get("id")

    async def handle_capture_completed(
        self, resource: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        order_id = self._related_order_id(resource)
        if not order_id:
            logger.error("paypal_capture_missing_order_id", capture_id=resource.get("id"))
            return {"status": "skipped", "reason": "No related order id"}
        return await order_service.confirm_capture(db, order_id, capture_id=resource.get("id"))

    async def handle_capture_denied(
        self, resource: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        order_id = self._related_order_id(resource)
        if not order_id:
            logger.error("paypal_capture_missing_order_id", capture_id=resource.get("id"))
            return {"status": "skipped", "reason": "No related order id"}
        return await order_service.fail_payment(db, order_id)

    async def handle_capture_refunded(
        self, resource: Dict[str, Any], db: AsyncSession
    ) -> Dict[str, Any]:
        capture_id = self._refunded_capture_id(resource)
        if not capture_id:
            return {"status": "skipped", "reason": "No capture id"}

        sales = await ledger.entries_for_capture(db, capture_id, type="sale")
        if not sales:
            logger.error("paypal_refund_no_transaction", capture_id=capture_id)
            return {"refunds_recorded": 0, "orders_updated": 0}

        amount = (resource.get("amount") or {}).get("value")
        refund_amount = to_money(amount) if amount is not None else None
        return await order_service.refund_sales(db, sales, refund_amount)
