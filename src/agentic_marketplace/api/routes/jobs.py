"""Scheduled job endpoints, called by the cron runner with the system bearer secret.

Routes:
    POST   /api/v1/jobs/auto-release  — Release escrows past their deadline
    POST   /api/v1/jobs/side-effects  — Work off the outbox (webhooks, seller stats)
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query

from agentic_marketplace.api.deps import get_app_settings, get_orchestrator, get_system_actor
from agentic_marketplace.config import Settings
from agentic_marketplace.domain.actor import Actor
from agentic_marketplace.domain.exceptions import ValidationError
from agentic_marketplace.logging_config import get_logger
from agentic_marketplace.orchestration.transaction_orchestrator import TransactionOrchestrator
from agentic_marketplace.schemas.common import OutboxReportResponse, SweepResponse

router = APIRouter(prefix="/api/v1/jobs", tags=["Jobs"])
logger = get_logger(__name__)


@router.post(
    "/auto-release",
    response_model=SweepResponse,
    summary="Run the auto-release sweep",
)
async def auto_release(
    now: datetime | None = Query(
        default=None, description="Override the sweep clock; rejected in production"
    ),
    actor: Actor = Depends(get_system_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_app_settings),
) -> SweepResponse:
    if now is not None and settings.app_env == "production":
        raise ValidationError("The sweep clock cannot be overridden in production", "now")
    logger.info("jobs.auto_release.start", actor=str(actor))
    report = await orchestrator.run_auto_release_sweep(now)
    return SweepResponse(
        released=report.released,
        completed_orders=report.completed_orders,
        failures=report.failures,
    )


@router.post(
    "/side-effects",
    response_model=OutboxReportResponse,
    summary="Process pending side effects",
)
async def side_effects(
    limit: int = Query(default=100, ge=1, le=1000),
    actor: Actor = Depends(get_system_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> OutboxReportResponse:
    logger.info("jobs.side_effects.start", actor=str(actor))
    report = await orchestrator.process_side_effects(limit)
    return OutboxReportResponse(
        processed=report.processed,
        succeeded=report.succeeded,
        failed=report.failed,
        skipped=report.skipped,
        errors=report.errors,
    )
