"""System health endpoints."""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..dependencies import Services, get_services

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    tags=["System"]
)

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    database_status: str
    timestamp: datetime
    error: Optional[str] = None

@router.get("/health", response_model=SystemHealth)
async def get_health(services: Services = Depends(get_services)):
    """Report whether the service and its database are reachable."""
    pool = getattr(services.store, 'pool', None)
    database_status = 'not_configured'
    error = None

    if pool is not None:
        try:
            async with pool.acquire() as conn:
                await conn.fetchval('SELECT 1')
            database_status = 'healthy'
        except Exception as e:
            logger.error(f"Health check database query failed: {e}")
            database_status = 'unhealthy'
            error = str(e)

    health = SystemHealth(
        status='unhealthy' if database_status == 'unhealthy' else 'healthy',
        database_status=database_status,
        timestamp=datetime.now(timezone.utc),
        error=error,
    )
    return JSONResponse(
        status_code=503 if health.status == 'unhealthy' else 200,
        content=health.model_dump(mode='json'),
    )
