"""
Transaction ledger.

Append-mostly store of signed money movements per user. Entries are
never deleted; a status change updates the row in place.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.core.money import to_money
from producers_avenue.database.models import Transaction
from producers_avenue.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class TransactionLedger:
    """Appends and updates ledger entries."""

    async def append(
        self,
        db: AsyncSession,
        user_id: str,
        type: str,
        amount: Decimal,
        status: str,
        description: Optional[str] = None,
        order_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        provider: Optional[str] = None,
        provider_reference: Optional[str] = None,
        provider_capture_id: Optional[str] = None,
    ) -> Transaction:
        """
        Insert one signed entry.

        Args:
            db: Database session
            user_id: Owner of the entry
            type: purchase, sale, refund or payout_request
            amount: Signed amount; negative for money leaving the user
            status: Initial status
            description: Free text shown in the wallet history
            order_id: Order the entry belongs to, if any
            reference_id: Non-order reference (payout id)
            provider: stripe or paypal
            provider_reference: Payment intent id or PayPal order id
            provider_capture_id: PayPal capture id

        Returns:
            Transaction: The flushed row
        """
        entry = Transaction(
            user_id=user_id,
            type=type,
            amount=to_money(amount),
            status=status,
            description=description,
            order_id=order_id,
            reference_id=reference_id,
            provider=provider,
            provider_reference=provider_reference,
            provider_capture_id=provider_capture_id,
            completed_at=datetime.now(timezone.utc) if status == "completed" else None,
        )
        db.add(entry)
        await db.flush()

        metrics.record_ledger_entry(type)
        logger.info(
            "ledger_entry_appended",
            transaction_id=entry.id,
            user_id=user_id,
            type=type,
            amount=str(entry.amount),
            status=status,
        )
        return entry

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str,
        limit: int = 50,
        type: Optional[str] = None,
    ) -> List[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id == user_id)
        if type:
            stmt = stmt.where(Transaction.type == type)
        stmt = stmt.order_by(Transaction.created_at.desc()).limit(limit)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def update_status_by_reference(
        self, db: AsyncSession, reference_id: str, type: str, status: str
    ) -> int:
        """
        Set the status of every entry tied to a reference (e.g. a payout).

        Returns:
            int: Number of entries updated
        """
        values = {"status": status}
        if status == "completed":
            values["completed_at"] = datetime.now(timezone.utc)
        result = await db.execute(
            update(Transaction)
            .where(Transaction.reference_id == reference_id, Transaction.type == type)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def set_status(
        self,
        db: AsyncSession,
        entry: Transaction,
        status: str,
        capture_id: Optional[str] = None,
    ) -> Transaction:
        entry.status = status
        if status == "completed":
            entry.completed_at = datetime.now(timezone.utc)
        if capture_id:
            entry.provider_capture_id = capture_id
        await db.flush()
        return entry

    async def entries_for_provider_reference(
        self, db: AsyncSession, provider_reference: str, type: Optional[str] = None
    ) -> List[Transaction]:
        """Entries created for one Stripe payment intent or PayPal order."""
        stmt = select(Transaction).where(Transaction.provider_reference == provider_reference)
        if type:
            stmt = stmt.where(Transaction.type == type)
        result = await db.execute(stmt.order_by(Transaction.created_at))
        return list(result.scalars().all())

    async def entries_for_capture(
        self, db: AsyncSession, capture_id: str, type: Optional[str] = None
    ) -> List[Transaction]:
        stmt = select(Transaction).where(Transaction.provider_capture_id == capture_id)
        if type:
            stmt = stmt.where(Transaction.type == type)
        result = await db.execute(stmt.order_by(Transaction.created_at))
        return list(result.scalars().all())

    async def refunded_total(
        self,
        db: AsyncSession,
        provider_reference: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> Decimal:
        """Sum of refunds already recorded for a provider payment or an order."""
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.type == "refund"
        )
        if provider_reference:
            stmt = stmt.where(Transaction.provider_reference == provider_reference)
        if order_id:
            stmt = stmt.where(Transaction.order_id == order_id)
        result = await db.execute(stmt)
        return abs(to_money(result.scalar_one()))

    async def record_refund(
        self,
        db: AsyncSession,
        original_sale: Transaction,
        refund_amount: Optional[Decimal] = None,
        final: bool = True,
    ) -> Transaction:
        """
        Record a refund against a seller's sale entry.

        Inserts a negative ``refund`` entry for the seller. The original
        entry is marked ``refunded`` only when ``final``; a partial refund
        leaves it open for later refunds. No entry is written for the buyer.

        Args:
            db: Database session
            original_sale: The seller's sale entry being refunded
            refund_amount: Amount refunded; defaults to the full sale amount
            final: Whether this refund closes the sale

        Returns:
            Transaction: The new refund entry
        """
        amount = to_money(refund_amount if refund_amount is not None else original_sale.amount)
        refund = await self.append(
            db,
            user_id=original_sale.user_id,
            type="refund",
            amount=-abs(amount),
            status="completed",
            description=f"Refund for order {original_sale.order_id}",
            order_id=original_sale.order_id,
            provider=original_sale.provider,
            provider_reference=original_sale.provider_reference,
            provider_capture_id=original_sale.provider_capture_id,
        )
        if final:
            original_sale.status = "refunded"
        await db.flush()

        logger.info(
            "ledger_refund_recorded",
            original_transaction_id=original_sale.id,
            refund_transaction_id=refund.id,
            seller_id=original_sale.user_id,
            amount=str(amount),
            final=final,
        )
        return refund


ledger = TransactionLedger()
