"""
Purchase-gated product downloads.

A paid product line grants the buyer a download entitlement that is
limited in time and in number of downloads. Each successful download
hands out a short-lived signed link to the product file.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.config import get_settings
from producers_avenue.core.errors import (
    AuthorizationError,
    GoneError,
    NotFoundError,
    RateLimitedError,
)
from producers_avenue.database.models import Product, ProductDownload, utcnow
from producers_avenue.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

DOWNLOAD_TOKEN_AUDIENCE = "product-download"


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class DownloadService:
    """Checks entitlements and issues signed download links."""

    def __init__(self) -> None:
        self.settings = get_settings()

    async def _entitlement(
        self, db: AsyncSession, product_id: str, buyer_id: str, message: str
    ) -> ProductDownload:
        result = await db.execute(
            select(ProductDownload)
            .where(ProductDownload.product_id == product_id, ProductDownload.buyer_id == buyer_id)
            .order_by(ProductDownload.created_at.desc())
            .limit(1)
        )
        entitlement = result.unique().scalar_one_or_none()
        if entitlement is None:
            metrics.record_download("not_purchased")
            raise AuthorizationError(message)
        return entitlement

    def signed_link(self, product: Product, buyer_id: str) -> str:
        """A link to the product file that stops working after the link TTL."""
        claims = {
            "sub": buyer_id,
            "pid": product.id,
            "file": product.file_url,
            "aud": DOWNLOAD_TOKEN_AUDIENCE,
            "exp": utcnow() + timedelta(seconds=self.settings.download_link_ttl_seconds),
        }
        token = jwt.encode(
            claims, self.settings.auth_jwt_secret, algorithm=self.settings.auth_jwt_algorithm
        )
        base = self.settings.files_base_url.rstrip("/")
        return f"{base}/{product.file_url.lstrip('/')}?token={token}"

    async def download(
        self,
        db: AsyncSession,
        product_id: str,
        buyer_id: str,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Spend one download of a purchased product.

        Returns:
            Dict[str, Any]: Signed link, file details and what is left

        Raises:
            AuthorizationError: Not purchased, or the order is not paid
            GoneError: The entitlement has expired
            RateLimitedError: No downloads left
            NotFoundError: The product has no file
        """
        entitlement = await self._entitlement(
            db, product_id, buyer_id, "Product not purchased or download record not found"
        )
        if entitlement.order.payment_status != "paid":
            metrics.record_download("unpaid")
            raise AuthorizationError("Order payment not completed")
        if utcnow() > _aware(entitlement.expires_at):
            metrics.record_download("expired")
            raise GoneError("Download link has expired")
        if entitlement.downloads_remaining <= 0:
            metrics.record_download("exhausted")
            raise RateLimitedError("Download limit reached")

        product = await db.get(Product, product_id)
        if product is None or not product.file_url:
            metrics.record_download("missing_file")
            raise NotFoundError("Product file not found")

        # Concurrent downloads may not spend more than the allowance
        spent = await db.execute(
            update(ProductDownload)
            .where(
                ProductDownload.id == entitlement.id,
                ProductDownload.download_count < ProductDownload.max_downloads,
            )
            .values(
                download_count=ProductDownload.download_count + 1,
                last_downloaded_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if spent.rowcount == 0:
            metrics.record_download("exhausted")
            raise RateLimitedError("Download limit reached")
        await db.refresh(entitlement)

        metrics.record_download("served")
        logger.info(
            "product_downloaded",
            product_id=product_id,
            buyer_id=buyer_id,
            download_id=entitlement.id,
            download_count=entitlement.download_count,
            client_ip=client_ip,
            user_agent=user_agent,
        )
        return {
            "success": True,
            "downloadUrl": self.signed_link(product, buyer_id),
            "fileName": product.title,
            "fileSize": product.file_size,
            "fileType": product.file_type,
            "downloadsRemaining": entitlement.downloads_remaining,
            "expiresAt": _aware(entitlement.expires_at).isoformat(),
        }

    async def extend(self, db: AsyncSession, product_id: str, buyer_id: str) -> Dict[str, Any]:
        """
        Restart the expiry window of an entitlement that still has downloads.

        Raises:
            AuthorizationError: Not purchased
            RateLimitedError: No downloads left
        """
        entitlement = await self._entitlement(db, product_id, buyer_id, "Product not purchased")
        if entitlement.downloads_remaining <= 0:
            raise RateLimitedError("No downloads remaining")

        entitlement.expires_at = utcnow() + timedelta(days=self.settings.download_expiry_days)
        await db.flush()
        logger.info(
            "download_extended",
            product_id=product_id,
            buyer_id=buyer_id,
            expires_at=entitlement.expires_at.isoformat(),
        )
        return {
            "success": True,
            "message": "Download link extended",
            "expiresAt": entitlement.expires_at.isoformat(),
        }


download_service = DownloadService()
