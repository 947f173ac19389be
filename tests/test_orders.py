"""
Order service tests: checkout completion, reads, status changes and
payment outcomes (failure, refund).
"""
from decimal import Decimal
from typing import Callable

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import BUYER_ID, OTHER_USER_ID, SELLER_ID, auth, cart_line
from producers_avenue.core.ledger import ledger
from producers_avenue.core.orders import CartLine, order_service
from producers_avenue.core.errors import ValidationError
from producers_avenue.database.models import Notification, Order, Transaction, Wallet


async def _entries(session_factory: async_sessionmaker[AsyncSession], **filters: str) -> list:
    async with session_factory() as session:
        stmt = select(Transaction).filter_by(**filters).order_by(Transaction.created_at)
        return list((await session.execute(stmt)).scalars().all())


async def _balance(session_factory: async_sessionmaker[AsyncSession], user_id: str) -> Decimal:
    async with session_factory() as session:
        result = await session.execute(select(Wallet.balance).where(Wallet.user_id == user_id))
        return result.scalar_one()


class TestCartLine:
    """Test suite for cart metadata parsing."""

    @pytest.mark.unit
    def test_parse_valid_line(self) -> None:
        line = CartLine.parse({"id": 7, "type": "service", "price": "49.5", "seller_id": "s1"})

        assert line.id == "7"
        assert line.price == Decimal("49.50")

    @pytest.mark.unit
    def test_parse_missing_field(self) -> None:
        with pytest.raises(ValidationError, match="Invalid cart item"):
            CartLine.parse({"id": "1", "type": "product", "price": "10"})

    @pytest.mark.unit
    def test_parse_unknown_type(self) -> None:
        with pytest.raises(ValidationError, match="Invalid item type: bundle"):
            CartLine.parse(cart_line(type="bundle"))

    @pytest.mark.unit
    def test_parse_negative_price(self) -> None:
        with pytest.raises(ValidationError, match="cannot be negative"):
            CartLine.parse(cart_line(price="-1"))


class TestCheckoutCompletion:
    """Test suite for create_orders_from_checkout."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_one_order_per_line(
        self, checkout: Callable, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        result = await checkout(
            [cart_line("beat-1", "100.00"), cart_line("mix-1", "40.00", type="service")]
        )

        assert len(result.orders) == 2
        assert result.failed_lines == []
        for order in result.orders:
            assert order.buyer_id == BUYER_ID
            assert order.status == "completed"
            assert order.payment_status == "paid"
            assert order.payment_reference == "pi_test_123"
            assert len(order.items) == 1
            assert order.order_number.startswith("PA-")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_ledger_and_wallet_entries(
        self, checkout: Callable, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        result = await checkout([cart_line(price="100.00")])
        order_id = result.orders[0].id

        purchases = await _entries(session_factory, type="purchase")
        sales = await _entries(session_factory, type="sale")

        assert [(p.user_id, p.amount, p.order_id) for p in purchases] == [
            (BUYER_ID, Decimal("-100.00"), order_id)
        ]
        assert [(s.user_id, s.amount, s.provider) for s in sales] == [
            (SELLER_ID, Decimal("95.00"), "stripe")
        ]
        assert await _balance(session_factory, SELLER_ID) == Decimal("95.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_both_parties_notified(
        self, checkout: Callable, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await checkout([cart_line()])

        async with session_factory() as session:
            rows = (await session.execute(select(Notification))).scalars().all()

        by_user = {n.user_id: n.title for n in rows}
        assert by_user == {SELLER_ID: "New Order!", BUYER_ID: "Order Confirmed!"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bad_line_is_skipped(
        self, checkout: Callable, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        result = await checkout(
            [cart_line("good-1"), cart_line("bad-1", type="bundle"), cart_line("good-2")]
        )

        assert [o.items[0].item_id for o in result.orders] == ["good-1", "good-2"]
        assert result.failed_lines == ["bad-1"]
        async with session_factory() as session:
            count = len((await session.execute(select(Order))).scalars().all())
        assert count == 2


class TestOrderReads:
    """Order endpoints through the HTTP API."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_purchases_and_sales(self, client: AsyncClient, checkout: Callable) -> None:
        await checkout([cart_line("beat-1"), cart_line("beat-2", seller_id="seller-2")])

        purchases = (await client.get("/orders", headers=auth(BUYER_ID))).json()["orders"]
        sales = (
            await client.get("/orders", params={"type": "sales"}, headers=auth(SELLER_ID))
        ).json()["orders"]
        nothing = (await client.get("/orders", headers=auth(SELLER_ID))).json()["orders"]

        assert len(purchases) == 2
        assert [o["items"][0]["item_id"] for o in sales] == ["beat-1"]
        assert nothing == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_list_filters_by_status(self, client: AsyncClient, checkout: Callable) -> None:
        await checkout([cart_line()])

        completed = await client.get("/orders", params={"status": "completed"}, headers=auth(BUYER_ID))
        pending = await client.get("/orders", params={"status": "pending"}, headers=auth(BUYER_ID))

        assert len(completed.json()["orders"]) == 1
        assert pending.json()["orders"] == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_get_single_order(self, client: AsyncClient, checkout: Callable) -> None:
        result = await checkout([cart_line(price="19.99")])
        order_id = result.orders[0].id

        as_buyer = await client.get("/orders", params={"id": order_id}, headers=auth(BUYER_ID))
        as_seller = await client.get("/orders", params={"id": order_id}, headers=auth(SELLER_ID))
        as_stranger = await client.get("/orders", params={"id": order_id}, headers=auth(OTHER_USER_ID))
        missing = await client.get("/orders", params={"id": "nope"}, headers=auth(BUYER_ID))

        assert as_buyer.status_code == 200
        assert as_buyer.json()["order"]["amount"] == 19.99
        assert as_seller.status_code == 200
        assert as_stranger.status_code == 403
        assert missing.status_code == 404
        assert missing.json() == {"error": "Order not found"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient) -> None:
        response = await client.get("/orders")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}


class TestOrderStatusUpdate:
    """Test suite for buyer/seller status changes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_buyer_cancels_and_seller_is_notified(
        self,
        client: AsyncClient,
        checkout: Callable,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        order = (await checkout([cart_line()])).orders[0]

        response = await client.patch(
            "/orders",
            json={"order_id": order.id, "status": "cancelled", "cancel_reason": "Changed my mind"},
            headers=auth(BUYER_ID),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Order status updated successfully"
        assert body["order"]["status"] == "cancelled"
        assert body["order"]["cancel_reason"] == "Changed my mind"

        async with session_factory() as session:
            notes = (
                await session.execute(
                    select(Notification).where(Notification.type == "order_update")
                )
            ).scalars().all()
        assert [(n.user_id, n.message) for n in notes] == [
            (SELLER_ID, f"Order #{order.order_number} status changed to cancelled")
        ]

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_seller_update_notifies_buyer(
        self,
        client: AsyncClient,
        checkout: Callable,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        order = (await checkout([cart_line()])).orders[0]

        response = await client.post(
            "/orders", json={"order_id": order.id, "status": "processing"}, headers=auth(SELLER_ID)
        )

        assert response.status_code == 200
        async with session_factory() as session:
            recipient = (
                await session.execute(
                    select(Notification.user_id).where(Notification.type == "order_update")
                )
            ).scalar_one()
        assert recipient == BUYER_ID

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_validation_errors(self, client: AsyncClient, checkout: Callable) -> None:
        order = (await checkout([cart_line()])).orders[0]

        missing = await client.patch("/orders", json={"status": "completed"}, headers=auth(BUYER_ID))
        invalid = await client.patch(
            "/orders", json={"order_id": order.id, "status": "shipped"}, headers=auth(BUYER_ID)
        )
        forbidden = await client.patch(
            "/orders", json={"order_id": order.id, "status": "completed"}, headers=auth(OTHER_USER_ID)
        )

        assert missing.json() == {"error": "order_id and status are required"}
        assert invalid.json() == {"error": "Invalid status"}
        assert forbidden.status_code == 403


class TestPaymentOutcomes:
    """Test suite for failure and refund handling."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fail_payment_reverses_sale(
        self, checkout: Callable, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await checkout([cart_line(price="100.00")])

        async with session_factory() as session:
            result = await order_service.fail_payment(session, "pi_test_123")
            await session.commit()

        assert result == {"transactions_updated": 2, "orders_updated": 1}
        async with session_factory() as session:
            order = (await session.execute(select(Order))).scalar_one()
        assert (order.status, order.payment_status) == ("cancelled", "failed")
        assert {e.status for e in await _entries(session_factory)} == {"failed"}
        assert await _balance(session_factory, SELLER_ID) == Decimal("0.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_fail_payment_unknown_reference(self, test_db: AsyncSession) -> None:
        result = await order_service.fail_payment(test_db, "pi_unknown")

        assert result == {"transactions_updated": 0, "orders_updated": 0}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refund_sale(
        self, checkout: Callable, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await checkout([cart_line(price="100.00")])

        async with session_factory() as session:
            sales = await ledger.entries_for_provider_reference(session, "pi_test_123", type="sale")
            result = await order_service.refund_sales(session, sales)
            await session.commit()

        assert result == {"refunds_recorded": 1, "orders_updated": 1}
        refunds = await _entries(session_factory, type="refund")
        assert [(r.user_id, r.amount) for r in refunds] == [(SELLER_ID, Decimal("-95.00"))]
        assert [s.status for s in await _entries(session_factory, type="sale")] == ["refunded"]
        assert await _balance(session_factory, SELLER_ID) == Decimal("0.00")
        async with session_factory() as session:
            order = (await session.execute(select(Order))).scalar_one()
        assert (order.status, order.payment_status) == ("refunded", "refunded")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refund_is_not_applied_twice(
        self, checkout: Callable, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await checkout([cart_line(price="100.00")])

        for _ in range(2):
            async with session_factory() as session:
                sales = await ledger.entries_for_provider_reference(session, "pi_test_123", type="sale")
                await order_service.refund_sales(session, sales)
                await session.commit()

        assert len(await _entries(session_factory, type="refund")) == 1
        assert await _balance(session_factory, SELLER_ID) == Decimal("0.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_partial_refunds_close_the_order_once_covered(
        self, checkout: Callable, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await checkout([cart_line(price="100.00")])

        results = []
        for amount in (Decimal("30.00"), Decimal("70.00")):
            async with session_factory() as session:
                sales = await ledger.entries_for_provider_reference(session, "pi_test_123", type="sale")
                results.append(await order_service.refund_sales(session, sales, amount))
                await session.commit()
            if amount == Decimal("30.00"):
                assert [s.status for s in await _entries(session_factory, type="sale")] == [
                    "completed"
                ]

        assert results == [
            {"refunds_recorded": 1, "orders_updated": 0},
            {"refunds_recorded": 1, "orders_updated": 1},
        ]
        refunds = await _entries(session_factory, type="refund")
        assert sorted(r.amount for r in refunds) == [Decimal("-70.00"), Decimal("-30.00")]
        assert [s.status for s in await _entries(session_factory, type="sale")] == ["refunded"]
        async with session_factory() as session:
            order = (await session.execute(select(Order))).scalar_one()
        assert order.payment_status == "refunded"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_refund_is_split_across_sellers(
        self, checkout: Callable, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await checkout([cart_line(price="100.00"), cart_line("beat-2", "20.00", seller_id="seller-2")])

        async with session_factory() as session:
            sales = await ledger.entries_for_provider_reference(session, "pi_test_123", type="sale")
            result = await order_service.refund_sales(
                session, sales, Decimal("60.00"), fully_refunded=False
            )
            await session.commit()

        assert result == {"refunds_recorded": 2, "orders_updated": 0}
        refunds = {r.user_id: r.amount for r in await _entries(session_factory, type="refund")}
        assert refunds == {SELLER_ID: Decimal("-50.00"), "seller-2": Decimal("-10.00")}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_confirm_capture_records_capture_id(
        self, checkout: Callable, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        await checkout([cart_line()], payment_method="paypal", payment_reference="PP-ORDER-1")

        async with session_factory() as session:
            result = await order_service.confirm_capture(session, "PP-ORDER-1", capture_id="CAP-1")
            await session.commit()

        assert result == {"transactions_updated": 2, "orders_updated": 1}
        assert {e.provider_capture_id for e in await _entries(session_factory)} == {"CAP-1"}
