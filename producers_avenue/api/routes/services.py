"""Service listing endpoints."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.api.dependencies import CurrentUser, get_current_user
from producers_avenue.api.schemas import ServiceFields, ServiceResponse, ServiceUpdateRequest
from producers_avenue.core.catalog import service_catalog
from producers_avenue.database.connection import get_db

router = APIRouter(prefix="/services", tags=["services"])


def _service(service: Any) -> Dict[str, Any]:
    return ServiceResponse.model_validate(service).model_dump(mode="json")


@router.get("", summary="Get or browse services")
async def get_services(
    id: Optional[str] = None,
    user_id: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    order: str = "desc",
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if id:
        return {"service": _service(await service_catalog.get_service(db, id))}

    services = await service_catalog.list_services(
        db,
        user_id=user_id,
        category=category,
        search=search,
        sort_by=sort_by,
        order=order,
        limit=limit,
    )
    return {"services": [_service(s) for s in services]}


@router.post("", summary="Create a service")
async def create_service(
    request: ServiceFields,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    service = await service_catalog.create_service(db, user.id, request.model_dump())
    return {"success": True, "service": _service(service), "message": "Service created successfully"}


@router.patch("", summary="Update a service")
async def update_service(
    request: ServiceUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    data = request.model_dump(exclude_unset=True)
    service_id = data.pop("service_id", None)
    service = await service_catalog.update_service(db, user.id, service_id, data)
    return {"success": True, "service": _service(service), "message": "Service updated successfully"}


@router.delete("", summary="Delete a service")
async def delete_service(
    id: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    await service_catalog.delete_service(db, user.id, id)
    return {"success": True, "message": "Service deleted successfully"}
