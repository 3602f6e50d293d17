"""Health check endpoints.

``/health`` is a liveness probe; ``/health/detail`` also checks the database.
Both are public.
"""

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel

from skyplanner.core import check_db_connection

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class HealthDetailResponse(HealthResponse):
    database: str


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe; does not touch the database."""
    return HealthResponse(status="healthy", version=request.app.state.settings.app_version)


@router.get(
    "/health/detail",
    response_model=HealthDetailResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Database unavailable"},
    },
)
async def health_detail(request: Request, response: Response) -> HealthDetailResponse:
    """Readiness probe. Returns 503 if the database is unavailable."""
    db_healthy = await check_db_connection()
    if not db_healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthDetailResponse(
        status="healthy" if db_healthy else "unhealthy",
        version=request.app.state.settings.app_version,
        database="connected" if db_healthy else "disconnected",
    )
