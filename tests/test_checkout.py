"""
Checkout endpoint tests with mocked Stripe and PayPal clients.
"""
from decimal import Decimal
from typing import Any, Callable, Dict
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import BUYER_ID, OTHER_USER_ID, SELLER_ID, auth, cart_line
from producers_avenue.core.errors import PaymentProviderError, ValidationError
from producers_avenue.core.orders import order_service
from producers_avenue.database.models import Checkout, Order, Transaction


def open_checkout(checkout_id: str = "chk-0001", buyer_id: str = BUYER_ID) -> Checkout:
    return Checkout(
        id=checkout_id,
        buyer_id=buyer_id,
        provider="paypal",
        provider_reference="PP-ORDER-1",
        items=[cart_line(price="30.00")],
        amount=Decimal("30.00"),
        status="open",
    )


def approved_order(buyer_id: str = BUYER_ID, order_id: str = "PP-ORDER-1") -> Dict[str, Any]:
    return {
        "id": order_id,
        "status": "APPROVED",
        "purchase_units": [{"reference_id": buyer_id, "custom_id": "chk-0001"}],
    }


def captured_order(
    buyer_id: str = BUYER_ID,
    status: str = "COMPLETED",
    order_id: str = "PP-ORDER-1",
    checkout_id: str = "chk-0001",
) -> Dict[str, Any]:
    return {
        "id": order_id,
        "status": status,
        "purchase_units": [
            {
                "reference_id": buyer_id,
                "payments": {
                    "captures": [
                        {"id": "CAP-1", "status": "COMPLETED", "custom_id": checkout_id}
                    ]
                },
            }
        ],
    }


class TestStripeCheckout:
    """Stripe Checkout Session endpoint."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_creates_session(
        self,
        client: AsyncClient,
        stripe_mock: AsyncMock,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        stripe_mock.create_checkout_session = AsyncMock(
            return_value={"sessionId": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"}
        )

        response = await client.post(
            "/stripe/checkout",
            json={"items": [{**cart_line(), "title": "Trap Beat"}]},
            headers=auth(BUYER_ID, email="buyer@example.com"),
        )

        assert response.status_code == 200
        assert response.json()["sessionId"] == "cs_test_1"

        async with session_factory() as session:
            checkout = (await session.execute(select(Checkout))).scalar_one()
        assert checkout.buyer_id == BUYER_ID
        assert checkout.provider == "stripe"
        assert checkout.provider_reference == "cs_test_1"
        assert checkout.status == "open"
        assert checkout.amount == Decimal("100.00")
        assert checkout.items == [
            {"id": "beat-001", "type": "product", "seller_id": SELLER_ID, "price": "100.00"}
        ]

        items = stripe_mock.create_checkout_session.await_args.args[0]
        kwargs = stripe_mock.create_checkout_session.await_args.kwargs
        assert items[0]["title"] == "Trap Beat"
        assert kwargs == {
            "user_id": BUYER_ID,
            "checkout_id": checkout.id,
            "customer_email": "buyer@example.com",
        }

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_empty_cart(self, client: AsyncClient, stripe_mock: AsyncMock) -> None:
        response = await client.post("/stripe/checkout", json={"items": []}, headers=auth(BUYER_ID))

        assert response.status_code == 400
        assert response.json() == {"error": "No items provided"}
        assert stripe_mock.create_checkout_session.await_count == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_provider_failure_is_502(self, client: AsyncClient, stripe_mock: AsyncMock) -> None:
        stripe_mock.create_checkout_session = AsyncMock(
            side_effect=PaymentProviderError("Stripe is unavailable")
        )

        response = await client.post(
            "/stripe/checkout", json={"items": [cart_line()]}, headers=auth(BUYER_ID)
        )

        assert response.status_code == 502
        assert response.json() == {"error": "Stripe is unavailable"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_negative_price_rejected(self, client: AsyncClient) -> None:
        response = await client.post(
            "/stripe/checkout", json={"items": [cart_line(price="-5")]}, headers=auth(BUYER_ID)
        )

        assert response.status_code == 400
        assert "error" in response.json()

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient) -> None:
        response = await client.post("/stripe/checkout", json={"items": [cart_line()]})

        assert response.status_code == 401


class TestPayPalCheckout:
    """PayPal order creation and capture endpoints."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_order(
        self,
        client: AsyncClient,
        paypal_mock: AsyncMock,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        paypal_mock.create_order.return_value = {
            "orderId": "PP-ORDER-1",
            "approvalUrl": "https://www.sandbox.paypal.com/checkoutnow?token=PP-ORDER-1",
        }

        response = await client.post(
            "/paypal/checkout", json={"items": [cart_line()]}, headers=auth(BUYER_ID)
        )

        assert response.status_code == 200
        assert response.json()["orderId"] == "PP-ORDER-1"
        async with session_factory() as session:
            checkout = (await session.execute(select(Checkout))).scalar_one()
        assert checkout.provider == "paypal"
        assert checkout.provider_reference == "PP-ORDER-1"
        assert paypal_mock.create_order.await_args.kwargs == {
            "user_id": BUYER_ID,
            "checkout_id": checkout.id,
        }

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_capture_creates_orders(
        self,
        client: AsyncClient,
        paypal_mock: AsyncMock,
        seed: Callable,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await seed(open_checkout())
        paypal_mock.get_order.return_value = approved_order()
        paypal_mock.capture_order.return_value = captured_order()

        response = await client.post(
            "/paypal/capture", json={"orderId": "PP-ORDER-1"}, headers=auth(BUYER_ID)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["orderId"] == "PP-ORDER-1"
        assert len(body["orders"]) == 1
        assert body["failed_items"] == []

        async with session_factory() as session:
            order = (await session.execute(select(Order))).scalar_one()
            sale = (
                await session.execute(select(Transaction).where(Transaction.type == "sale"))
            ).scalar_one()
            checkout = await session.get(Checkout, "chk-0001")
        assert order.payment_method == "paypal"
        assert order.payment_reference == "PP-ORDER-1"
        assert (sale.user_id, sale.provider_capture_id) == (SELLER_ID, "CAP-1")
        assert checkout.status == "completed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_repeated_capture_creates_no_second_orders(
        self,
        client: AsyncClient,
        paypal_mock: AsyncMock,
        seed: Callable,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await seed(open_checkout())
        paypal_mock.get_order.return_value = approved_order()
        paypal_mock.capture_order.return_value = captured_order()

        first = await client.post(
            "/paypal/capture", json={"orderId": "PP-ORDER-1"}, headers=auth(BUYER_ID)
        )
        second = await client.post(
            "/paypal/capture", json={"orderId": "PP-ORDER-1"}, headers=auth(BUYER_ID)
        )

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["orders"] == []
        async with session_factory() as session:
            assert len((await session.execute(select(Order))).scalars().all()) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_capture_requires_order_id(self, client: AsyncClient) -> None:
        response = await client.post("/paypal/capture", json={}, headers=auth(BUYER_ID))

        assert response.status_code == 400
        assert response.json() == {"error": "Order ID is required"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_capture_not_completed(
        self,
        client: AsyncClient,
        paypal_mock: AsyncMock,
        seed: Callable,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await seed(open_checkout())
        paypal_mock.get_order.return_value = approved_order()
        paypal_mock.capture_order.return_value = captured_order(status="PENDING")

        response = await client.post(
            "/paypal/capture", json={"orderId": "PP-ORDER-1"}, headers=auth(BUYER_ID)
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Payment not completed"}
        async with session_factory() as session:
            assert (await session.execute(select(Order))).scalars().all() == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_capture_by_other_user_is_forbidden_before_capturing(
        self,
        client: AsyncClient,
        paypal_mock: AsyncMock,
        seed: Callable,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await seed(open_checkout())
        paypal_mock.get_order.return_value = approved_order(buyer_id=BUYER_ID)
        paypal_mock.capture_order.return_value = captured_order(buyer_id=BUYER_ID)

        response = await client.post(
            "/paypal/capture", json={"orderId": "PP-ORDER-1"}, headers=auth(OTHER_USER_ID)
        )

        assert response.status_code == 403
        paypal_mock.get_order.assert_awaited_once_with("PP-ORDER-1")
        assert paypal_mock.capture_order.await_count == 0
        async with session_factory() as session:
            assert (await session.get(Checkout, "chk-0001")).status == "open"
            assert (await session.execute(select(Order))).scalars().all() == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_capture_of_unknown_checkout(
        self, client: AsyncClient, paypal_mock: AsyncMock
    ) -> None:
        paypal_mock.get_order.return_value = approved_order()
        paypal_mock.capture_order.return_value = captured_order(checkout_id="chk-missing")

        response = await client.post(
            "/paypal/capture", json={"orderId": "PP-ORDER-1"}, headers=auth(BUYER_ID)
        )

        assert response.status_code == 400
        assert response.json() == {"error": "PayPal order is missing checkout metadata"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_return_redirects(self, client: AsyncClient) -> None:
        missing = await client.get("/paypal/capture")
        approved = await client.get("/paypal/capture", params={"token": "PP-ORDER-1"})

        assert missing.status_code == 307
        assert missing.headers["location"] == "/cart?error=missing_token"
        assert approved.status_code == 307
        assert approved.headers["location"] == "http://app.test/orders?paypal_token=PP-ORDER-1"


class TestCheckoutRecords:
    """Persisted carts and their one-time completion."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_start_rejects_empty_cart(self, test_db: AsyncSession) -> None:
        with pytest.raises(ValidationError, match="No items provided"):
            await order_service.start_checkout(test_db, BUYER_ID, [], "stripe")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_start_rejects_bad_line(self, test_db: AsyncSession) -> None:
        with pytest.raises(ValidationError):
            await order_service.start_checkout(
                test_db, BUYER_ID, [cart_line(type="bundle")], "stripe"
            )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_complete_is_applied_once(self, test_db: AsyncSession) -> None:
        checkout = await order_service.start_checkout(
            test_db,
            BUYER_ID,
            [cart_line(price="40.00"), cart_line(item_id="mix-001", type="service")],
            "stripe",
        )
        assert checkout.amount == Decimal("140.00")

        first = await order_service.complete_checkout(test_db, checkout, payment_reference="pi_1")
        second = await order_service.complete_checkout(test_db, checkout, payment_reference="pi_1")

        assert len(first.orders) == 2
        assert second.orders == []
        orders = (await test_db.execute(select(Order))).scalars().all()
        assert len(orders) == 2
        assert {o.payment_reference for o in orders} == {"pi_1"}
