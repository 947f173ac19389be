"""
Order service.

Creates orders from completed checkouts, serves order reads, applies
buyer/seller status changes and applies payment-provider outcomes
(capture confirmed, denied, refunded) to orders, the ledger and wallets.
"""
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.config import get_settings
from producers_avenue.core.errors import AuthorizationError, NotFoundError, ValidationError
from producers_avenue.core.ledger import ledger
from producers_avenue.core.money import to_money
from producers_avenue.core.notifications import notifier
from producers_avenue.core.wallet import WalletTracker, wallet_tracker
from producers_avenue.database.models import (
    ITEM_TYPES,
    ORDER_STATUSES,
    Checkout,
    Order,
    OrderItem,
    Product,
    ProductDownload,
    Service,
    Transaction,
    utcnow,
)
from producers_avenue.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class CartLine:
    """One line of a checkout cart as stored in provider metadata."""

    id: str
    type: str
    price: Decimal
    seller_id: str

    @classmethod
    def parse(cls, raw: Dict[str, Any]) -> "CartLine":
        """
        Build a cart line from provider metadata.

        Raises:
            ValidationError: Missing field, unknown item type or bad price
        """
        try:
            line = cls(
                id=str(raw["id"]),
                type=str(raw["type"]),
                price=to_money(raw["price"]),
                seller_id=str(raw["seller_id"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Invalid cart item: {e}")
        if line.type not in ITEM_TYPES:
            raise ValidationError(f"Invalid item type: {line.type}")
        if line.price < 0:
            raise ValidationError("Item price cannot be negative")
        return line

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "seller_id": self.seller_id,
            "price": f"{self.price:.2f}",
        }


@dataclass
class CheckoutResult:
    orders: List[Order] = field(default_factory=list)
    failed_lines: List[str] = field(default_factory=list)


class OrderService:
    """Order lifecycle operations."""

    def __init__(self, tracker: Optional[WalletTracker] = None):
        self.settings = get_settings()
        self.tracker = tracker or wallet_tracker

    # Checkout sessions

    async def start_checkout(
        self,
        db: AsyncSession,
        buyer_id: str,
        items: List[Dict[str, Any]],
        provider: str,
    ) -> Checkout:
        """
        Persist a cart before handing it to a payment provider.

        Provider metadata fields are too small for a cart, so providers
        only carry the returned checkout's id.

        Raises:
            ValidationError: Empty cart or an invalid line
        """
        if not items:
            raise ValidationError("No items provided")
        lines = [CartLine.parse(raw) for raw in items]
        checkout = Checkout(
            buyer_id=buyer_id,
            provider=provider,
            items=[line.to_metadata() for line in lines],
            amount=sum((line.price for line in lines), Decimal("0")),
            status="open",
        )
        db.add(checkout)
        await db.flush()
        logger.info(
            "checkout_started",
            checkout_id=checkout.id,
            buyer_id=buyer_id,
            provider=provider,
            lines=len(lines),
            amount=str(checkout.amount),
        )
        return checkout

    async def load_checkout(
        self, db: AsyncSession, checkout_id: Optional[str]
    ) -> Optional[Checkout]:
        if not checkout_id:
            return None
        return await db.get(Checkout, checkout_id)

    async def complete_checkout(
        self,
        db: AsyncSession,
        checkout: Checkout,
        payment_reference: Optional[str] = None,
        capture_id: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Turn a paid checkout into orders, once.

        The checkout is claimed with a conditional update, so a redelivered
        webhook or a repeated capture creates no second set of orders.
        """
        claimed = await db.execute(
            update(Checkout)
            .where(Checkout.id == checkout.id, Checkout.status == "open")
            .values(status="completed", completed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            logger.warning("checkout_already_completed", checkout_id=checkout.id)
            return CheckoutResult()

        return await self.create_orders_from_checkout(
            db,
            buyer_id=checkout.buyer_id,
            items=checkout.items,
            payment_method=checkout.provider,
            payment_reference=payment_reference,
            capture_id=capture_id,
        )

    # Checkout completion

    async def _item_title(self, db: AsyncSession, line: CartLine) -> str:
        if line.type == "product":
            row = await db.get(Product, line.id)
            return row.title if row else "Product"
        row = await db.get(Service, line.id)
        return row.name if row else "Service"

    async def _create_line_order(
        self,
        db: AsyncSession,
        buyer_id: str,
        line: CartLine,
        payment_method: str,
        payment_reference: Optional[str],
        capture_id: Optional[str],
    ) -> Order:
        title = await self._item_title(db, line)

        order = Order(
            buyer_id=buyer_id,
            amount=line.price,
            currency=self.settings.currency,
            status="completed",
            payment_status="paid",
            payment_method=payment_method,
            payment_reference=payment_reference,
            items=[
                OrderItem(
                    item_id=line.id,
                    item_type=line.type,
                    item_name=title,
                    seller_id=line.seller_id,
                    price=line.price,
                    quantity=1,
                )
            ],
        )
        db.add(order)
        await db.flush()

        seller_amount = to_money(line.price * (Decimal("1") - self.settings.platform_fee_rate))
        await ledger.append(
            db,
            user_id=buyer_id,
            type="purchase",
            amount=-line.price,
            status="completed",
            description=f"Purchased: {title}",
            order_id=order.id,
            provider=payment_method,
            provider_reference=payment_reference,
            provider_capture_id=capture_id,
        )
        await ledger.append(
            db,
            user_id=line.seller_id,
            type="sale",
            amount=seller_amount,
            status="completed",
            description=f"Sale of {line.type}: {title}",
            order_id=order.id,
            provider=payment_method,
            provider_reference=payment_reference,
            provider_capture_id=capture_id,
        )
        await self.tracker.credit(db, line.seller_id, seller_amount)

        if line.type == "product":
            db.add(
                ProductDownload(
                    product_id=line.id,
                    buyer_id=buyer_id,
                    order_id=order.id,
                    order_item_id=order.items[0].id,
                    download_count=0,
                    max_downloads=self.settings.max_downloads,
                    expires_at=utcnow() + timedelta(days=self.settings.download_expiry_days),
                )
            )
            await db.flush()

        await notifier.emit(
            db,
            user_id=line.seller_id,
            type="order",
            title="New Order!",
            message=f"You have a new order for {title}",
            link=f"/orders/{order.id}",
        )
        await notifier.emit(
            db,
            user_id=buyer_id,
            type="order",
            title="Order Confirmed!",
            message=f"Your order for {title} has been confirmed",
            link=f"/orders/{order.id}",
        )
        return order

    async def create_orders_from_checkout(
        self,
        db: AsyncSession,
        buyer_id: str,
        items: Iterable[Dict[str, Any]],
        payment_method: str,
        payment_reference: Optional[str] = None,
        capture_id: Optional[str] = None,
    ) -> CheckoutResult:
        """
        Create one order per cart line of a paid checkout.

        Each line runs in its own savepoint and is committed on its own.
        A line that fails is rolled back, logged and skipped; lines
        already committed stay committed, there is no compensation across
        lines.

        Args:
            db: Database session
            buyer_id: Authenticated buyer
            items: Cart lines ``{id, type, price, seller_id}``
            payment_method: stripe or paypal
            payment_reference: Payment intent id or PayPal order id
            capture_id: PayPal capture id, when known

        Returns:
            CheckoutResult: Orders created and ids of lines that failed
        """
        result = CheckoutResult()
        for raw in items:
            try:
                line = CartLine.parse(raw)
                async with db.begin_nested():
                    order = await self._create_line_order(
                        db, buyer_id, line, payment_method, payment_reference, capture_id
                    )
            except Exception as e:
                item_id = str(raw.get("id")) if isinstance(raw, dict) else repr(raw)
                result.failed_lines.append(item_id)
                metrics.record_checkout_line_failed(payment_method)
                logger.error(
                    "checkout_line_failed",
                    buyer_id=buyer_id,
                    item_id=item_id,
                    payment_reference=payment_reference,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            await db.commit()
            result.orders.append(order)
            metrics.record_order_created(payment_method, float(line.price))
            logger.info(
                "order_created",
                order_id=order.id,
                order_number=order.order_number,
                buyer_id=buyer_id,
                seller_id=line.seller_id,
                amount=str(line.price),
            )

        return result

    # Reads

    async def _load_order(self, db: AsyncSession, order_id: str) -> Order:
        result = await db.execute(select(Order).where(Order.id == order_id))
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found")
        return order

    @staticmethod
    def _is_participant(order: Order, user_id: str) -> tuple[bool, bool]:
        is_buyer = order.buyer_id == user_id
        is_seller = any(item.seller_id == user_id for item in order.items)
        return is_buyer, is_seller

    async def get_order(self, db: AsyncSession, order_id: str, user_id: str) -> Order:
        """
        Fetch an order visible to the caller.

        Raises:
            NotFoundError: Unknown order
            AuthorizationError: Caller is neither the buyer nor a seller
        """
        order = await self._load_order(db, order_id)
        is_buyer, is_seller = self._is_participant(order, user_id)
        if not is_buyer and not is_seller:
            raise AuthorizationError()
        return order

    async def list_orders(
        self,
        db: AsyncSession,
        user_id: str,
        type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[Order]:
        """
        List the caller's purchases (default) or sales, newest first.

        Sales are the distinct orders containing at least one item sold
        by the caller.
        """
        stmt = select(Order)
        if type == "sales":
            sold = select(OrderItem.order_id).where(OrderItem.seller_id == user_id)
            stmt = stmt.where(Order.id.in_(sold))
        else:
            stmt = stmt.where(Order.buyer_id == user_id)
        if status:
            stmt = stmt.where(Order.status == status)
        stmt = stmt.order_by(Order.created_at.desc()).limit(limit)
        result = await db.execute(stmt)
        return list(result.scalars().unique().all())

    # Buyer/seller status changes

    async def update_order_status(
        self,
        db: AsyncSession,
        order_id: Optional[str],
        user_id: str,
        status: Optional[str],
        cancel_reason: Optional[str] = None,
    ) -> Order:
        """
        Change an order's status on behalf of its buyer or one of its sellers.

        Any status may follow any other. The counter-party is notified.

        Raises:
            ValidationError: Missing fields or unknown status
            NotFoundError: Unknown order
            AuthorizationError: Caller is neither the buyer nor a seller
        """
        if not order_id or not status:
            raise ValidationError("order_id and status are required")
        if status not in ORDER_STATUSES:
            raise ValidationError("Invalid status")

        order = await self._load_order(db, order_id)
        is_buyer, is_seller = self._is_participant(order, user_id)
        if not is_buyer and not is_seller:
            logger.warning("order_status_update_forbidden", order_id=order_id, user_id=user_id)
            raise AuthorizationError()

        previous = order.status
        order.status = status
        if status == "cancelled" and cancel_reason:
            order.cancel_reason = cancel_reason
        await db.flush()

        if is_buyer:
            recipient = order.items[0].seller_id if order.items else None
        else:
            recipient = order.buyer_id
        await notifier.emit(
            db,
            user_id=recipient,
            type="order_update",
            title="Order Status Updated",
            message=f"Order #{order.order_number} status changed to {status}",
            link=f"/orders/{order.id}",
        )

        metrics.record_order_status_change(status, "user")
        logger.info(
            "order_status_updated",
            order_id=order.id,
            user_id=user_id,
            previous_status=previous,
            status=status,
        )
        return order

    # Payment provider outcomes

    async def _set_payment_state(
        self, db: AsyncSession, order_ids: Iterable[str], **values: Any
    ) -> int:
        ids = list({i for i in order_ids if i})
        if not ids:
            return 0
        result = await db.execute(
            update(Order)
            .where(Order.id.in_(ids))
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if "status" in values:
            metrics.record_order_status_change(values["status"], "webhook")
        return result.rowcount

    async def mark_orders_paid(self, db: AsyncSession, provider_reference: str) -> int:
        result = await db.execute(
            update(Order)
            .where(Order.payment_reference == provider_reference)
            .values(payment_status="paid")
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def mark_orders_failed(self, db: AsyncSession, provider_reference: str) -> int:
        result = await db.execute(
            update(Order)
            .where(Order.payment_reference == provider_reference)
            .values(payment_status="failed", status="cancelled")
            .execution_options(synchronize_session="fetch")
        )
        metrics.record_order_status_change("cancelled", "webhook")
        return result.rowcount

    async def mark_order_refunded(self, db: AsyncSession, order_id: str) -> int:
        return await self._set_payment_state(
            db, [order_id], status="refunded", payment_status="refunded"
        )

    async def confirm_capture(
        self, db: AsyncSession, provider_reference: str, capture_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Mark the entries and orders of a provider payment as paid.

        Returns:
            Dict[str, Any]: Counts of entries and orders touched
        """
        entries = await ledger.entries_for_provider_reference(db, provider_reference)
        if not entries:
            logger.warning("capture_no_transactions", provider_reference=provider_reference)
            return {"transactions_updated": 0, "orders_updated": 0}

        for entry in entries:
            if entry.status in ("pending", "completed"):
                await ledger.set_status(db, entry, "completed", capture_id=capture_id)
            elif capture_id:
                entry.provider_capture_id = capture_id
        orders_updated = await self.mark_orders_paid(db, provider_reference)

        logger.info(
            "payment_capture_confirmed",
            provider_reference=provider_reference,
            capture_id=capture_id,
            transactions=len(entries),
            orders=orders_updated,
        )
        return {"transactions_updated": len(entries), "orders_updated": orders_updated}

    async def fail_payment(self, db: AsyncSession, provider_reference: str) -> Dict[str, Any]:
        """
        Apply a denied/failed payment.

        Entries become ``failed``; orders become ``cancelled`` with
        payment_status ``failed``. Sellers already credited for the sale
        are debited back and the buyer is notified.
        """
        entries = await ledger.entries_for_provider_reference(db, provider_reference)
        if not entries:
            logger.warning("payment_failed_no_transactions", provider_reference=provider_reference)
            return {"transactions_updated": 0, "orders_updated": 0}

        buyers = set()
        for entry in entries:
            if entry.type == "sale" and entry.status == "completed":
                await self.tracker.debit(db, entry.user_id, entry.amount)
            if entry.type == "purchase":
                buyers.add(entry.user_id)
            await ledger.set_status(db, entry, "failed")

        orders_updated = await self.mark_orders_failed(db, provider_reference)
        for buyer_id in buyers:
            await notifier.emit(
                db,
                user_id=buyer_id,
                type="payment_failed",
                title="Payment Failed",
                message="Your payment was declined. Please try again.",
                link="/orders",
            )

        logger.info(
            "payment_failure_applied",
            provider_reference=provider_reference,
            transactions=len(entries),
            orders=orders_updated,
        )
        return {"transactions_updated": len(entries), "orders_updated": orders_updated}

    @staticmethod
    def _allocate(sales: List[Transaction], refund_amount: Decimal) -> List[Decimal]:
        """Split a refund across sales in proportion to their amounts."""
        if len(sales) == 1:
            return [to_money(refund_amount)]
        total = sum((s.amount for s in sales), Decimal("0"))
        shares = [to_money(refund_amount * s.amount / total) for s in sales[:-1]]
        shares.append(to_money(refund_amount - sum(shares, Decimal("0"))))
        return shares

    async def refund_sales(
        self,
        db: AsyncSession,
        sales: List[Transaction],
        refund_amount: Optional[Decimal] = None,
        fully_refunded: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Refund seller sale entries.

        For each sale: a negative refund entry for the seller, the seller
        wallet debited, and both parties notified. The buyer receives a
        notification but no ledger entry. A sale and its order are marked
        refunded only once the payment is fully refunded; partial refunds
        leave them open so later refunds still apply.

        Args:
            sales: Sale entries to refund
            refund_amount: Amount refunded by this event. Split across the
                sales in proportion to their amounts. When omitted every
                sale is refunded in full.
            fully_refunded: Whether the provider reports the payment as
                fully refunded. When unknown, a sale is closed once its
                recorded refunds reach the order amount.
        """
        open_sales = [s for s in sales if s.type == "sale" and s.status != "refunded"]
        if not open_sales:
            logger.warning("refund_no_sales_found")
            return {"refunds_recorded": 0, "orders_updated": 0}

        if refund_amount is None:
            shares: List[Optional[Decimal]] = [None] * len(open_sales)
        else:
            shares = list(self._allocate(open_sales, refund_amount))

        recorded = 0
        closed_orders = set()
        for sale, share in zip(open_sales, shares):
            if share is not None and share <= 0:
                continue
            order = await db.get(Order, sale.order_id) if sale.order_id else None

            if share is None or fully_refunded:
                final = True
            elif fully_refunded is False or order is None:
                final = False
            else:
                already = await ledger.refunded_total(db, order_id=order.id)
                final = already + share >= order.amount

            refund = await ledger.record_refund(db, sale, share, final=final)
            await self.tracker.debit(db, sale.user_id, abs(refund.amount))
            recorded += 1
            if final and sale.order_id:
                closed_orders.add(sale.order_id)

            amount = abs(refund.amount)
            await notifier.emit(
                db,
                user_id=order.buyer_id if order else None,
                type="refund_processed",
                title="Refund Processed",
                message=f"Your refund of ${amount:.2f} has been processed.",
                link="/orders",
            )
            await notifier.emit(
                db,
                user_id=sale.user_id,
                type="refund_issued",
                title="Refund Issued",
                message=f"A refund of ${amount:.2f} was issued for your sale.",
                link="/wallet/transactions",
            )

        orders_updated = 0
        for order_id in closed_orders:
            orders_updated += await self.mark_order_refunded(db, order_id)
        logger.info("sales_refunded", refunds=recorded, orders=orders_updated)
        return {"refunds_recorded": recorded, "orders_updated": orders_updated}


order_service = OrderService()
