"""Marketplace service listings: browse, create, edit, soft-delete."""
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.config import get_settings
from producers_avenue.core.errors import AuthorizationError, NotFoundError, ValidationError
from producers_avenue.core.money import to_money
from producers_avenue.database.models import Order, OrderItem, Service

logger = structlog.get_logger(__name__)

# Fields a seller may change through PATCH
EDITABLE_FIELDS = (
    "name",
    "description",
    "category",
    "subcategory",
    "starting_price",
    "delivery_time",
    "delivery_time_unit",
    "images",
    "portfolio_items",
    "tags",
    "features",
    "requirements",
    "pricing_tiers",
    "status",
)

# Columns that cannot be cleared
REQUIRED_FIELDS = ("name", "description", "category", "starting_price", "delivery_time_unit")
LIST_FIELDS = ("images", "portfolio_items", "tags", "features", "pricing_tiers")

# Sellers pause and resume through PATCH; deletion goes through DELETE
SETTABLE_STATUSES = ("active", "paused")


class ServiceCatalog:
    """CRUD over the ``services`` table."""

    def __init__(self) -> None:
        self.settings = get_settings()

    async def get_service(self, db: AsyncSession, service_id: str) -> Service:
        result = await db.execute(
            select(Service).where(Service.id == service_id, Service.status == "active")
        )
        service = result.scalar_one_or_none()
        if service is None:
            raise NotFoundError("Service not found")
        return service

    async def list_services(
        self,
        db: AsyncSession,
        user_id: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "created_at",
        order: str = "desc",
        limit: int = 20,
    ) -> List[Service]:
        stmt = select(Service).where(Service.status == "active")
        if user_id:
            stmt = stmt.where(Service.user_id == user_id)
        if category:
            stmt = stmt.where(Service.category == category)
        if search:
            pattern = f"%{search.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Service.name).like(pattern),
                    func.lower(Service.description).like(pattern),
                )
            )

        ascending = order == "asc"
        if sort_by == "price":
            column = Service.starting_price
            stmt = stmt.order_by(column.asc() if ascending else column.desc())
        elif sort_by == "popular":
            stmt = stmt.order_by(Service.views.desc())
        else:
            column = Service.created_at
            stmt = stmt.order_by(column.asc() if ascending else column.desc())

        result = await db.execute(stmt.limit(limit))
        return list(result.scalars().all())

    async def create_service(
        self, db: AsyncSession, user_id: str, data: Dict[str, Any]
    ) -> Service:
        """
        Create an active listing for ``user_id``.

        Raises:
            ValidationError: Required fields missing or price below minimum
        """
        name = (data.get("name") or "").strip()
        description = (data.get("description") or "").strip()
        category = data.get("category")
        starting_price = data.get("starting_price")

        if not name or not description or not category or not starting_price:
            raise ValidationError(
                "Name, description, category, and starting price are required"
            )
        try:
            price = to_money(starting_price)
        except ValueError:
            raise ValidationError("Invalid starting price")
        minimum = to_money(self.settings.min_service_price)
        if price < minimum:
            raise ValidationError(f"Minimum service price is ${minimum}")

        service = Service(
            user_id=user_id,
            name=name,
            description=description,
            category=category,
            subcategory=data.get("subcategory") or None,
            starting_price=price,
            delivery_time=data.get("delivery_time") or None,
            delivery_time_unit=data.get("delivery_time_unit") or "days",
            images=data.get("images") or [],
            portfolio_items=data.get("portfolio_items") or [],
            tags=data.get("tags") or [],
            features=data.get("features") or [],
            requirements=data.get("requirements") or None,
            pricing_tiers=data.get("pricing_tiers") or [],
            status="active",
            views=0,
            orders_count=0,
        )
        db.add(service)
        await db.flush()
        logger.info("service_created", service_id=service.id, user_id=user_id)
        return service

    async def _owned(self, db: AsyncSession, service_id: str, user_id: str) -> Service:
        service = await db.get(Service, service_id)
        if service is None or service.user_id != user_id:
            raise AuthorizationError()
        return service

    def _validated_changes(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Check a PATCH body before anything is written.

        Raises:
            ValidationError: A required field cleared, a bad price or status
        """
        changes = {}
        for key in EDITABLE_FIELDS:
            if key not in data:
                continue
            value = data[key]
            if isinstance(value, str):
                value = value.strip()
            if key in REQUIRED_FIELDS and (value is None or value == ""):
                raise ValidationError(f"{key} cannot be empty")
            if key in LIST_FIELDS and value is None:
                value = []
            if key == "starting_price":
                try:
                    value = to_money(value)
                except ValueError:
                    raise ValidationError("Invalid starting price")
                minimum = to_money(self.settings.min_service_price)
                if value < minimum:
                    raise ValidationError(f"Minimum service price is ${minimum}")
            if key == "status" and value not in SETTABLE_STATUSES:
                raise ValidationError("Invalid status")
            changes[key] = value
        return changes

    async def update_service(
        self, db: AsyncSession, user_id: str, service_id: Optional[str], data: Dict[str, Any]
    ) -> Service:
        if not service_id:
            raise ValidationError("service_id is required")
        service = await self._owned(db, service_id, user_id)

        changes = self._validated_changes(data)
        for key, value in changes.items():
            setattr(service, key, value)
        await db.flush()

        logger.info("service_updated", service_id=service_id, fields=sorted(set(data) & set(EDITABLE_FIELDS)))
        return service

    async def delete_service(
        self, db: AsyncSession, user_id: str, service_id: Optional[str]
    ) -> None:
        """
        Soft-delete a listing.

        Raises:
            ValidationError: No id, or the service has open orders
            AuthorizationError: Not the caller's service
        """
        if not service_id:
            raise ValidationError("Service ID is required")
        service = await self._owned(db, service_id, user_id)

        open_orders = await db.execute(
            select(func.count(OrderItem.id))
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                OrderItem.item_id == service_id,
                OrderItem.item_type == "service",
                Order.status.in_(("pending", "processing")),
            )
        )
        if open_orders.scalar_one() > 0:
            raise ValidationError("Cannot delete service with pending orders")

        service.status = "deleted"
        await db.flush()
        logger.info("service_deleted", service_id=service_id, user_id=user_id)


service_catalog = ServiceCatalog()
