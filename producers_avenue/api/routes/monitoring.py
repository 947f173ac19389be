"""Health probes and Prometheus metrics."""
from typing import Any, Dict

import structlog
from fastapi import APIRouter, HTTPException, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from producers_avenue.api.schemas import HealthCheckResponse
from producers_avenue.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["monitoring"])

health_check = HealthCheck()


@router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check database and Redis health",
)
async def health() -> Dict[str, Any]:
    return await health_check.check_all()


@router.get("/health/live", summary="Liveness probe")
async def liveness() -> Dict[str, Any]:
    return await health_check.liveness()


@router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Ready unless the database is unreachable",
)
async def readiness() -> Dict[str, Any]:
    result = await health_check.readiness()
    if result["status"] == "unhealthy":
        logger.warning("readiness_check_failed", checks=result["checks"])
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
    return result


@router.get("/metrics", summary="Prometheus metrics", include_in_schema=False)
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
