"""Stripe and PayPal checkout endpoints."""
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.api.dependencies import (
    CurrentUser,
    get_current_user,
    get_paypal_client,
    get_stripe_client,
)
from producers_avenue.api.schemas import CheckoutRequest, PayPalCaptureRequest
from producers_avenue.config import get_settings
from producers_avenue.core.errors import AuthorizationError, ValidationError
from producers_avenue.core.orders import order_service
from producers_avenue.database.connection import get_db
from producers_avenue.integrations.paypal_client import (
    PayPalClient,
    capture_details,
    order_buyer,
)
from producers_avenue.integrations.stripe_client import StripeClient

logger = structlog.get_logger(__name__)

stripe_router = APIRouter(prefix="/stripe", tags=["checkout"])
paypal_router = APIRouter(prefix="/paypal", tags=["checkout"])


@stripe_router.post(
    "/checkout",
    summary="Create a Stripe Checkout Session",
    description="Returns the hosted payment page for the cart",
)
async def stripe_checkout(
    request: CheckoutRequest,
    user: CurrentUser = Depends(get_current_user),
    stripe_client: StripeClient = Depends(get_stripe_client),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    items = [item.model_dump() for item in request.items]
    checkout = await order_service.start_checkout(db, user.id, items, "stripe")
    # Committed before the provider call so the webhook can always find it
    await db.commit()

    session = await stripe_client.create_checkout_session(
        items, user_id=user.id, checkout_id=checkout.id, customer_email=user.email
    )
    checkout.provider_reference = session["sessionId"]
    return session


@paypal_router.post(
    "/checkout",
    summary="Create a PayPal order",
    description="Returns the PayPal order id and approval URL",
)
async def paypal_checkout(
    request: CheckoutRequest,
    user: CurrentUser = Depends(get_current_user),
    paypal: PayPalClient = Depends(get_paypal_client),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    items = [item.model_dump() for item in request.items]
    checkout = await order_service.start_checkout(db, user.id, items, "paypal")
    await db.commit()

    created = await paypal.create_order(items, user_id=user.id, checkout_id=checkout.id)
    checkout.provider_reference = created["orderId"]
    return created


@paypal_router.post(
    "/capture",
    summary="Capture a PayPal order",
    description="Captures an approved order and creates the marketplace orders",
)
async def paypal_capture(
    request: PayPalCaptureRequest,
    user: CurrentUser = Depends(get_current_user),
    paypal: PayPalClient = Depends(get_paypal_client),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if not request.orderId:
        raise ValidationError("Order ID is required")

    # Ownership is checked before capturing so nobody else can settle a buyer's order
    approved = await paypal.get_order(request.orderId)
    if order_buyer(approved) != user.id:
        logger.warning("paypal_capture_buyer_mismatch", paypal_order_id=request.orderId)
        raise AuthorizationError()

    captured = await paypal.capture_order(request.orderId)
    if captured.get("status") != "COMPLETED":
        logger.warning(
            "paypal_capture_not_completed",
            paypal_order_id=request.orderId,
            status=captured.get("status"),
        )
        raise ValidationError("Payment not completed")

    details = capture_details(captured)
    checkout = await order_service.load_checkout(db, details["checkout_id"])
    if checkout is None or checkout.buyer_id != user.id:
        logger.error(
            "paypal_capture_unknown_checkout",
            paypal_order_id=request.orderId,
            checkout_id=details["checkout_id"],
        )
        raise ValidationError("PayPal order is missing checkout metadata")

    result = await order_service.complete_checkout(
        db, checkout, payment_reference=request.orderId, capture_id=details["capture_id"]
    )
    return {
        "success": True,
        "orderId": request.orderId,
        "orders": [order.id for order in result.orders],
        "failed_items": result.failed_lines,
    }


@paypal_router.get("/capture", summary="PayPal approval redirect", include_in_schema=False)
async def paypal_return(token: Optional[str] = None) -> RedirectResponse:
    # PayPal sends the buyer back with ?token=<order id>
    if not token:
        return RedirectResponse("/cart?error=missing_token")
    return RedirectResponse(f"{get_settings().app_url}/orders?paypal_token={token}")
