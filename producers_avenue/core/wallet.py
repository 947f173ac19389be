"""
Wallet balance tracker and payout flow.

Balance changes are single ``UPDATE ... SET balance = balance + :delta``
statements so concurrent adjustments to one wallet cannot lose updates.
A payout moves money from ``balance`` to ``pending_balance`` with a
conditional update (``WHERE balance >= :amount``), so the balance check
and the debit happen in one statement.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.config import get_settings
from producers_avenue.core.errors import (
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from producers_avenue.core.ledger import ledger
from producers_avenue.core.money import to_money
from producers_avenue.core.notifications import notifier
from producers_avenue.database.models import Order, OrderItem, Payout, Wallet
from producers_avenue.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class WalletTracker:
    """Atomic balance adjustments on per-user wallets."""

    async def get_wallet(self, db: AsyncSession, user_id: str) -> Optional[Wallet]:
        stmt = (
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_wallet(self, db: AsyncSession, user_id: str) -> Wallet:
        """Return the user's wallet, creating an empty one on first access."""
        wallet = await self.get_wallet(db, user_id)
        if wallet is not None:
            return wallet

        try:
            async with db.begin_nested():
                wallet = Wallet(
                    user_id=user_id,
                    balance=Decimal("0"),
                    pending_balance=Decimal("0"),
                    total_earned=Decimal("0"),
                    total_withdrawn=Decimal("0"),
                )
                db.add(wallet)
            logger.info("wallet_created", user_id=user_id)
            return wallet
        except IntegrityError:
            # Created by a concurrent request between our read and insert
            wallet = await self.get_wallet(db, user_id)
            if wallet is None:
                raise
            return wallet

    async def _apply(self, db: AsyncSession, user_id: str, *criteria: Any, **values: Any) -> int:
        stmt = (
            update(Wallet)
            .where(Wallet.user_id == user_id, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount

    async def credit(
        self, db: AsyncSession, user_id: str, amount: Decimal, earned: bool = True
    ) -> None:
        """
        Add ``amount`` to the available balance.

        Args:
            earned: Also count the amount towards ``total_earned`` (sales do,
                returned payouts do not)
        """
        amount = to_money(amount)
        await self.get_or_create_wallet(db, user_id)
        values: Dict[str, Any] = {"balance": Wallet.balance + amount}
        if earned:
            values["total_earned"] = Wallet.total_earned + amount
        await self._apply(db, user_id, **values)
        logger.info("wallet_credited", user_id=user_id, amount=str(amount), earned=earned)

    async def debit(self, db: AsyncSession, user_id: str, amount: Decimal) -> None:
        """
        Subtract ``amount`` from the available balance unconditionally.

        Used for refunds, which may take a balance below zero.
        """
        amount = to_money(amount)
        await self.get_or_create_wallet(db, user_id)
        await self._apply(
            db,
            user_id,
            balance=Wallet.balance - amount,
            total_earned=Wallet.total_earned - amount,
        )
        logger.info("wallet_debited", user_id=user_id, amount=str(amount))

    async def reserve_for_payout(self, db: AsyncSession, user_id: str, amount: Decimal) -> bool:
        """
        Move ``amount`` from balance to pending_balance if the balance covers it.

        Returns:
            bool: False when the balance was insufficient and nothing changed
        """
        rows = await self._apply(
            db,
            user_id,
            Wallet.balance >= amount,
            balance=Wallet.balance - amount,
            pending_balance=Wallet.pending_balance + amount,
        )
        return rows == 1

    async def release_payout(self, db: AsyncSession, user_id: str, amount: Decimal) -> None:
        """Return a cancelled payout's amount to the available balance."""
        await self._apply(
            db,
            user_id,
            balance=Wallet.balance + amount,
            pending_balance=Wallet.pending_balance - amount,
        )

    async def settle_payout(self, db: AsyncSession, user_id: str, amount: Decimal) -> None:
        """Remove a paid-out amount from pending_balance."""
        await self._apply(
            db,
            user_id,
            pending_balance=Wallet.pending_balance - amount,
            total_withdrawn=Wallet.total_withdrawn + amount,
        )


wallet_tracker = WalletTracker()


class PayoutService:
    """Payout requests, cancellations and completions."""

    def __init__(self, tracker: Optional[WalletTracker] = None):
        self.settings = get_settings()
        self.tracker = tracker or wallet_tracker

    async def request_payout(
        self,
        db: AsyncSession,
        user_id: str,
        amount: Any,
        payout_method: Optional[str],
        payout_details: Optional[Dict[str, Any]],
    ) -> Payout:
        """
        Request a withdrawal of ``amount`` from the user's wallet.

        Raises:
            ValidationError: Invalid amount, missing method/details, or
                amount below the minimum payout
            InsufficientBalanceError: Amount exceeds the available balance
        """
        try:
            amount = to_money(amount) if amount is not None else None
        except ValueError:
            amount = None
        if amount is None or amount <= 0:
            raise ValidationError("Invalid amount")

        if not payout_method or not payout_details:
            raise ValidationError("Payout method and details are required")

        min_payout = to_money(self.settings.min_payout_amount)
        if amount < min_payout:
            metrics.record_payout("rejected")
            raise ValidationError(f"Minimum payout amount is ${min_payout}")

        await self.tracker.get_or_create_wallet(db, user_id)
        if not await self.tracker.reserve_for_payout(db, user_id, amount):
            metrics.record_payout("rejected")
            logger.warning("payout_insufficient_balance", user_id=user_id, amount=str(amount))
            raise InsufficientBalanceError()

        payout = Payout(
            user_id=user_id,
            amount=amount,
            status="pending",
            payout_method=payout_method,
            payout_details=payout_details,
        )
        db.add(payout)
        await db.flush()

        await ledger.append(
            db,
            user_id=user_id,
            type="payout_request",
            amount=-amount,
            status="pending",
            description=f"Payout request via {payout_method}",
            reference_id=payout.id,
        )
        await notifier.emit(
            db,
            user_id=user_id,
            type="payout",
            title="Payout Request Submitted",
            message=f"Your payout request for ${amount:.2f} is being processed",
            link="/wallet/transactions",
        )

        metrics.record_payout("requested")
        logger.info(
            "payout_requested",
            payout_id=payout.id,
            user_id=user_id,
            amount=str(amount),
            payout_method=payout_method,
        )
        return payout

    async def cancel_payout(
        self,
        db: AsyncSession,
        user_id: str,
        payout_id: Optional[str],
        action: Optional[str],
    ) -> Payout:
        """
        Cancel a pending payout and return its funds to the balance.

        Raises:
            ValidationError: Missing fields, or the action/status does not
                allow cancellation
            NotFoundError: No such payout for this user
        """
        if not payout_id or not action:
            raise ValidationError("payout_id and action are required")

        result = await db.execute(
            select(Payout).where(Payout.id == payout_id, Payout.user_id == user_id)
        )
        payout = result.scalar_one_or_none()
        if payout is None:
            raise NotFoundError("Payout not found")

        if action != "cancel" or payout.status != "pending":
            raise ValidationError("Invalid action or payout status")

        # Guarded so two concurrent cancels release the funds only once
        cancelled = await db.execute(
            update(Payout)
            .where(Payout.id == payout_id, Payout.status == "pending")
            .values(status="cancelled")
            .execution_options(synchronize_session="fetch")
        )
        if cancelled.rowcount != 1:
            raise ValidationError("Invalid action or payout status")

        await self.tracker.release_payout(db, user_id, payout.amount)
        await ledger.update_status_by_reference(db, payout_id, "payout_request", "cancelled")
        await db.refresh(payout)

        metrics.record_payout("cancelled")
        logger.info("payout_cancelled", payout_id=payout_id, user_id=user_id)
        return payout

    async def complete_payout(self, db: AsyncSession, payout_id: str) -> Payout:
        """
        Mark a pending payout as paid out.

        Raises:
            NotFoundError: Unknown payout
            ValidationError: Payout is not pending
        """
        payout = await db.get(Payout, payout_id)
        if payout is None:
            raise NotFoundError("Payout not found")

        completed = await db.execute(
            update(Payout)
            .where(Payout.id == payout_id, Payout.status == "pending")
            .values(status="completed")
            .execution_options(synchronize_session="fetch")
        )
        if completed.rowcount != 1:
            raise ValidationError("Only pending payouts can be completed")

        await self.tracker.settle_payout(db, payout.user_id, payout.amount)
        await ledger.update_status_by_reference(db, payout_id, "payout_request", "completed")
        await db.refresh(payout)
        await notifier.emit(
            db,
            user_id=payout.user_id,
            type="payout",
            title="Payout Sent",
            message=f"Your payout of ${payout.amount:.2f} has been sent",
            link="/wallet/transactions",
        )

        metrics.record_payout("completed")
        logger.info("payout_completed", payout_id=payout_id, user_id=payout.user_id)
        return payout


class WalletQueries:
    """Read-side views of a user's wallet."""

    def __init__(self, tracker: Optional[WalletTracker] = None):
        self.settings = get_settings()
        self.tracker = tracker or wallet_tracker

    async def summary(self, db: AsyncSession, user_id: str) -> Dict[str, Any]:
        """The wallet (or None when never created) and the 10 latest entries."""
        wallet = await self.tracker.get_wallet(db, user_id)
        recent = await ledger.list_for_user(db, user_id, limit=10)
        return {"wallet": wallet, "recent_transactions": recent}

    async def pending_earnings(
        self, db: AsyncSession, user_id: str, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Earnings from recent paid sales that are not yet withdrawable.

        Counts the seller's items on paid orders that are completed or
        processing. The amount only includes orders created inside the
        pending window; ``pending_items`` counts every matching item.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.settings.pending_earnings_window_days)

        stmt = (
            select(OrderItem.price, OrderItem.quantity, Order.created_at)
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                OrderItem.seller_id == user_id,
                Order.status.in_(("completed", "processing")),
                Order.payment_status == "paid",
            )
        )
        rows = (await db.execute(stmt)).all()

        pending_amount = sum(
            (to_money(price) * quantity for price, quantity, created_at in rows
             if _as_utc(created_at) > cutoff),
            Decimal("0"),
        )
        return {"pending_amount": to_money(pending_amount), "pending_items": len(rows)}


payout_service = PayoutService()
wallet_queries = WalletQueries()
