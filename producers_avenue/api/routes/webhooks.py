"""Payment provider webhook endpoints."""
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.api.dependencies import get_paypal_client, get_redis
from producers_avenue.database.connection import get_db
from producers_avenue.integrations.paypal_client import PayPalClient
from producers_avenue.integrations.webhook_handler import (
    PayPalWebhookHandler,
    StripeWebhookHandler,
)

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post(
    "/stripe/webhook",
    summary="Stripe webhook endpoint",
    description="Handle Stripe webhook events",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    redis_client: aioredis.Redis = Depends(get_redis),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    """
    Handle Stripe webhook events.

    Verifies the signature before touching any state; redelivered events
    are acknowledged without being applied again.
    """
    body = await request.body()
    handler = StripeWebhookHandler(redis_client)
    event = handler.verify(body, stripe_signature)

    logger.info("api_webhook_received", provider="stripe", event_id=event.get("id"), event_type=event.get("type"))
    result = await handler.handle_event(event, db)
    return {"received": True, **result}


@router.post(
    "/paypal/webhook",
    summary="PayPal webhook endpoint",
    description="Handle PayPal payment capture events",
)
async def paypal_webhook(
    request: Request,
    paypal: PayPalClient = Depends(get_paypal_client),
    redis_client: aioredis.Redis = Depends(get_redis),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    body = await request.body()
    handler = PayPalWebhookHandler(paypal, redis_client)
    event = await handler.verify(body, request.headers)

    logger.info(
        "api_webhook_received",
        provider="paypal",
        event_id=event.get("id"),
        event_type=event.get("event_type"),
    )
    result = await handler.handle_event(event, db)
    return {"received": True, **result}
