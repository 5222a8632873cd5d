"""Health check endpoint.

Reports database and Redis connectivity plus the settlement mode. Redis only
backs order-placement idempotency, so an unreachable Redis degrades the
service rather than failing it.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text

from agentic_marketplace import __version__
from agentic_marketplace.api.deps import get_app_settings
from agentic_marketplace.config import Settings
from agentic_marketplace.infrastructure.database.engine import get_engine
from agentic_marketplace.infrastructure.redis_client import get_redis
from agentic_marketplace.logging_config import get_logger
from agentic_marketplace.schemas.common import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)

HEALTHY = "healthy"


async def _check_database() -> str:
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health.db_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


async def _check_redis() -> str:
    try:
        await get_redis().ping()
    except Exception as exc:
        logger.warning("health.redis_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return HEALTHY


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check(settings: Settings = Depends(get_app_settings)) -> HealthResponse:
    database = await _check_database()
    redis = await _check_redis()
    return HealthResponse(
        status="ok" if database == redis == HEALTHY else "degraded",
        version=__version__,
        database=database,
        redis=redis,
        settlement="simulated" if settings.settlement_simulate else "http",
    )
