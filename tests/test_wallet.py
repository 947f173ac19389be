"""
Wallet and payout tests.

The wallet balance must never go below zero through payouts, and a
cancelled payout must return exactly what it reserved.
"""
from decimal import Decimal
from typing import Any, Callable

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import ADMIN_HEADERS, SELLER_ID, auth, cart_line
from producers_avenue.core.errors import InsufficientBalanceError, ValidationError
from producers_avenue.core.wallet import payout_service, wallet_tracker
from producers_avenue.database.models import Notification, Transaction, Wallet

PAYOUT_DETAILS = {"email": "seller@example.com"}


async def _wallet(session_factory: async_sessionmaker[AsyncSession], user_id: str) -> Wallet:
    async with session_factory() as session:
        result = await session.execute(select(Wallet).where(Wallet.user_id == user_id))
        return result.scalar_one()


class TestWalletTracker:
    """Test suite for atomic wallet adjustments."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_or_create_wallet_is_idempotent(self, test_db: AsyncSession) -> None:
        first = await wallet_tracker.get_or_create_wallet(test_db, "user-1")
        second = await wallet_tracker.get_or_create_wallet(test_db, "user-1")

        assert first.id == second.id
        assert first.balance == Decimal("0")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_credit_and_debit(self, test_db: AsyncSession) -> None:
        await wallet_tracker.credit(test_db, "user-1", Decimal("95.00"))
        await wallet_tracker.debit(test_db, "user-1", Decimal("20.00"))

        wallet = await wallet_tracker.get_wallet(test_db, "user-1")
        assert wallet.balance == Decimal("75.00")
        assert wallet.total_earned == Decimal("75.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reserve_refuses_more_than_balance(self, test_db: AsyncSession) -> None:
        await wallet_tracker.credit(test_db, "user-1", Decimal("30.00"))

        reserved = await wallet_tracker.reserve_for_payout(test_db, "user-1", Decimal("30.01"))

        wallet = await wallet_tracker.get_wallet(test_db, "user-1")
        assert reserved is False
        assert wallet.balance == Decimal("30.00")
        assert wallet.pending_balance == Decimal("0")


class TestPayoutService:
    """Test suite for PayoutService."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [None, "abc", 0, -5])
    async def test_request_payout_invalid_amount(self, test_db: AsyncSession, amount: Any) -> None:
        with pytest.raises(ValidationError, match="Invalid amount"):
            await payout_service.request_payout(test_db, "user-1", amount, "paypal", PAYOUT_DETAILS)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_request_payout_requires_method_and_details(self, test_db: AsyncSession) -> None:
        with pytest.raises(ValidationError, match="Payout method and details are required"):
            await payout_service.request_payout(test_db, "user-1", 50, "paypal", None)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_request_payout_below_minimum(self, test_db: AsyncSession) -> None:
        with pytest.raises(ValidationError, match=r"Minimum payout amount is \$10.00"):
            await payout_service.request_payout(test_db, "user-1", "9.99", "paypal", PAYOUT_DETAILS)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_request_payout_insufficient_balance(self, test_db: AsyncSession) -> None:
        await wallet_tracker.credit(test_db, "user-1", Decimal("40.00"))

        with pytest.raises(InsufficientBalanceError, match="Insufficient balance"):
            await payout_service.request_payout(test_db, "user-1", 50, "paypal", PAYOUT_DETAILS)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sequential_payouts_never_overdraw(self, test_db: AsyncSession) -> None:
        """Two payouts that together exceed the balance: only the first succeeds."""
        await wallet_tracker.credit(test_db, "user-1", Decimal("100.00"))

        await payout_service.request_payout(test_db, "user-1", 60, "paypal", PAYOUT_DETAILS)
        with pytest.raises(InsufficientBalanceError):
            await payout_service.request_payout(test_db, "user-1", 60, "paypal", PAYOUT_DETAILS)

        wallet = await wallet_tracker.get_wallet(test_db, "user-1")
        assert wallet.balance == Decimal("40.00")
        assert wallet.pending_balance == Decimal("60.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_request_then_cancel_restores_funds(self, test_db: AsyncSession) -> None:
        await wallet_tracker.credit(test_db, "user-1", Decimal("100.00"))

        payout = await payout_service.request_payout(
            test_db, "user-1", "25.50", "bank_transfer", {"iban": "DE00"}
        )
        cancelled = await payout_service.cancel_payout(test_db, "user-1", payout.id, "cancel")

        wallet = await wallet_tracker.get_wallet(test_db, "user-1")
        entries = (
            await test_db.execute(select(Transaction).where(Transaction.reference_id == payout.id))
        ).scalars().all()
        assert cancelled.status == "cancelled"
        assert wallet.balance == Decimal("100.00")
        assert wallet.pending_balance == Decimal("0")
        assert [(e.type, e.amount, e.status) for e in entries] == [
            ("payout_request", Decimal("-25.50"), "cancelled")
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cancel_twice_fails(self, test_db: AsyncSession) -> None:
        await wallet_tracker.credit(test_db, "user-1", Decimal("100.00"))
        payout = await payout_service.request_payout(test_db, "user-1", 30, "paypal", PAYOUT_DETAILS)
        await payout_service.cancel_payout(test_db, "user-1", payout.id, "cancel")

        with pytest.raises(ValidationError, match="Invalid action or payout status"):
            await payout_service.cancel_payout(test_db, "user-1", payout.id, "cancel")

        wallet = await wallet_tracker.get_wallet(test_db, "user-1")
        assert wallet.balance == Decimal("100.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_complete_payout_settles_pending(self, test_db: AsyncSession) -> None:
        await wallet_tracker.credit(test_db, "user-1", Decimal("100.00"))
        payout = await payout_service.request_payout(test_db, "user-1", 30, "paypal", PAYOUT_DETAILS)

        completed = await payout_service.complete_payout(test_db, payout.id)

        wallet = await wallet_tracker.get_wallet(test_db, "user-1")
        assert completed.status == "completed"
        assert wallet.balance == Decimal("70.00")
        assert wallet.pending_balance == Decimal("0")
        assert wallet.total_withdrawn == Decimal("30.00")


class TestWalletAPI:
    """Wallet endpoints through the HTTP API."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_balance_creates_empty_wallet(self, client: AsyncClient) -> None:
        response = await client.get("/wallet", params={"type": "balance"}, headers=auth("new-user"))

        assert response.status_code == 200
        wallet = response.json()["wallet"]
        assert wallet["user_id"] == "new-user"
        assert wallet["balance"] == 0

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_summary_without_wallet(self, client: AsyncClient) -> None:
        response = await client.get("/wallet", headers=auth("new-user"))

        assert response.status_code == 200
        assert response.json() == {"wallet": None, "recent_transactions": []}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sale_shows_in_wallet(self, client: AsyncClient, checkout: Callable) -> None:
        await checkout([cart_line(price="100.00")])

        summary = (await client.get("/wallet", headers=auth(SELLER_ID))).json()
        pending = (await client.get("/wallet", params={"type": "pending"}, headers=auth(SELLER_ID))).json()
        sales = (
            await client.get(
                "/wallet",
                params={"type": "transactions", "transaction_type": "sale"},
                headers=auth(SELLER_ID),
            )
        ).json()

        assert summary["wallet"]["balance"] == 95.0
        assert summary["wallet"]["total_earned"] == 95.0
        assert [t["type"] for t in summary["recent_transactions"]] == ["sale"]
        assert pending == {"pending_amount": 100.0, "pending_items": 1}
        assert len(sales["transactions"]) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_payout_lifecycle(
        self,
        client: AsyncClient,
        checkout: Callable,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await checkout([cart_line(price="100.00")])

        response = await client.post(
            "/wallet",
            json={
                "action": "request_payout",
                "amount": 50,
                "payout_method": "paypal",
                "payout_details": PAYOUT_DETAILS,
            },
            headers=auth(SELLER_ID),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Payout request submitted successfully"
        payout_id = body["payout"]["id"]

        wallet = await _wallet(session_factory, SELLER_ID)
        assert wallet.balance == Decimal("45.00")
        assert wallet.pending_balance == Decimal("50.00")

        response = await client.post(f"/admin/payouts/{payout_id}/complete", headers=ADMIN_HEADERS)
        assert response.status_code == 200
        assert response.json()["payout"]["status"] == "completed"

        wallet = await _wallet(session_factory, SELLER_ID)
        assert wallet.pending_balance == Decimal("0")
        assert wallet.total_withdrawn == Decimal("50.00")

        async with session_factory() as session:
            titles = (
                await session.execute(
                    select(Notification.title).where(Notification.user_id == SELLER_ID)
                )
            ).scalars().all()
        assert "Payout Request Submitted" in titles
        assert "Payout Sent" in titles

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_payout_via_patch(
        self,
        client: AsyncClient,
        checkout: Callable,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await checkout([cart_line(price="100.00")])
        payout = (
            await client.post(
                "/wallet",
                json={
                    "action": "request_payout",
                    "amount": "20.00",
                    "payout_method": "paypal",
                    "payout_details": PAYOUT_DETAILS,
                },
                headers=auth(SELLER_ID),
            )
        ).json()["payout"]

        response = await client.patch(
            "/wallet", json={"payout_id": payout["id"], "action": "cancel"}, headers=auth(SELLER_ID)
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Payout cancelled successfully"}
        wallet = await _wallet(session_factory, SELLER_ID)
        assert wallet.balance == Decimal("95.00")
        assert wallet.pending_balance == Decimal("0")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_insufficient_balance_returns_400(self, client: AsyncClient) -> None:
        response = await client.post(
            "/wallet",
            json={
                "action": "request_payout",
                "amount": 50,
                "payout_method": "paypal",
                "payout_details": PAYOUT_DETAILS,
            },
            headers=auth("broke-user"),
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Insufficient balance"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_invalid_action(self, client: AsyncClient) -> None:
        response = await client.post("/wallet", json={"action": "withdraw_all"}, headers=auth(SELLER_ID))

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid action"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_unknown_payout(self, client: AsyncClient) -> None:
        response = await client.patch(
            "/wallet", json={"payout_id": "missing", "action": "cancel"}, headers=auth(SELLER_ID)
        )

        assert response.status_code == 404
        assert response.json() == {"error": "Payout not found"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_cancel_requires_fields(self, client: AsyncClient) -> None:
        response = await client.patch("/wallet", json={}, headers=auth(SELLER_ID))

        assert response.status_code == 400
        assert response.json() == {"error": "payout_id and action are required"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_admin_complete_requires_key(self, client: AsyncClient) -> None:
        missing = await client.post("/admin/payouts/any/complete")
        wrong = await client.post("/admin/payouts/any/complete", headers={"X-API-Key": "nope"})
        unknown = await client.post("/admin/payouts/any/complete", headers=ADMIN_HEADERS)

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert unknown.status_code == 404
