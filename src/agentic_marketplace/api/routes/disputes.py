"""Dispute REST API routes.

Routes:
    GET    /api/v1/disputes/open               — Admin queue
    GET    /api/v1/disputes/{id}               — Get dispute details
    POST   /api/v1/disputes/{id}/review        — Admin picks up the dispute
    POST   /api/v1/disputes/{id}/arbitrate     — Run AI arbitration
    POST   /api/v1/disputes/{id}/auto-resolve  — Apply a confident AI recommendation
    POST   /api/v1/disputes/{id}/resolve       — Admin resolution
    POST   /api/v1/disputes/{id}/cancel        — Buyer withdraws the dispute
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agentic_marketplace.api.deps import get_actor, get_orchestrator
from agentic_marketplace.domain.actor import Actor
from agentic_marketplace.logging_config import get_logger
from agentic_marketplace.orchestration.transaction_orchestrator import TransactionOrchestrator
from agentic_marketplace.schemas.common import TransactionOutcomeResponse
from agentic_marketplace.schemas.disputes import (
    AutoResolveRequest,
    DisputeResponse,
    ResolveDisputeRequest,
)

router = APIRouter(prefix="/api/v1/disputes", tags=["Disputes"])
logger = get_logger(__name__)


@router.get(
    "/open",
    response_model=list[DisputeResponse],
    summary="List disputes awaiting a decision",
)
async def list_open_disputes(
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> list[DisputeResponse]:
    disputes = await orchestrator.list_open_disputes()
    return [DisputeResponse.model_validate(d) for d in disputes]


@router.get(
    "/{dispute_id}",
    response_model=DisputeResponse,
    summary="Get dispute details",
)
async def get_dispute(
    dispute_id: str,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> DisputeResponse:
    dispute = await orchestrator.get_dispute(dispute_id)
    return DisputeResponse.model_validate(dispute)


@router.post(
    "/{dispute_id}/review",
    response_model=TransactionOutcomeResponse,
    summary="Start admin review",
)
async def start_review(
    dispute_id: str,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    outcome = await orchestrator.start_review(dispute_id, actor)
    return TransactionOutcomeResponse.from_outcome(outcome)


@router.post(
    "/{dispute_id}/arbitrate",
    response_model=TransactionOutcomeResponse,
    summary="Run AI arbitration",
)
async def arbitrate(
    dispute_id: str,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    """Store the AI recommendation; resolves automatically only if policy says so."""
    outcome = await orchestrator.arbitrate_and_maybe_resolve(dispute_id, actor)
    return TransactionOutcomeResponse.from_outcome(outcome)


@router.post(
    "/{dispute_id}/auto-resolve",
    response_model=TransactionOutcomeResponse,
    summary="Apply the AI recommendation if confident",
)
async def auto_resolve(
    dispute_id: str,
    request: AutoResolveRequest | None = None,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    threshold = request.confidence_threshold if request is not None else None
    outcome = await orchestrator.auto_resolve_dispute(dispute_id, actor, threshold)
    return TransactionOutcomeResponse.from_outcome(outcome)


@router.post(
    "/{dispute_id}/resolve",
    response_model=TransactionOutcomeResponse,
    summary="Resolve a dispute",
)
async def resolve(
    dispute_id: str,
    request: ResolveDisputeRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    """Settle the escrow per the resolution, then update the order and dispute."""
    outcome = await orchestrator.resolve_dispute(
        dispute_id, request.resolution, request.notes, actor
    )
    return TransactionOutcomeResponse.from_outcome(outcome)


@router.post(
    "/{dispute_id}/cancel",
    response_model=TransactionOutcomeResponse,
    summary="Withdraw a dispute",
)
async def cancel(
    dispute_id: str,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    """Buyer withdrawal: the escrow is released to the seller and the order completes."""
    outcome = await orchestrator.cancel_dispute(dispute_id, actor)
    return TransactionOutcomeResponse.from_outcome(outcome)
