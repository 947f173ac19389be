"""Purchased product downloads."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.api.dependencies import CurrentUser, get_current_user
from producers_avenue.core.downloads import download_service
from producers_avenue.database.connection import get_db

router = APIRouter(prefix="/products", tags=["downloads"])


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


@router.get(
    "/{product_id}/download",
    summary="Download a purchased product",
    description="Spends one download and returns a short-lived signed link",
    responses={
        403: {"description": "Not purchased or order unpaid"},
        410: {"description": "Download entitlement expired"},
        429: {"description": "Download limit reached"},
    },
)
async def download_product(
    product_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    return await download_service.download(
        db,
        product_id,
        user.id,
        client_ip=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


@router.post("/{product_id}/download", summary="Extend a download entitlement")
async def extend_download(
    product_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    return await download_service.extend(db, product_id, user.id)
