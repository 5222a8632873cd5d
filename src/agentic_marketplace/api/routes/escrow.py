"""Escrow REST API routes (read-only; escrows change through order and dispute flows).

Routes:
    GET    /api/v1/escrow/{id}  — Get escrow details
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from agentic_marketplace.api.deps import get_orchestrator
from agentic_marketplace.orchestration.transaction_orchestrator import TransactionOrchestrator
from agentic_marketplace.schemas.escrow import EscrowResponse

router = APIRouter(prefix="/api/v1/escrow", tags=["Escrow"])


@router.get(
    "/{escrow_id}",
    response_model=EscrowResponse,
    summary="Get escrow details",
)
async def get_escrow(
    escrow_id: str,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> EscrowResponse:
    escrow = await orchestrator.get_escrow(escrow_id)
    return EscrowResponse.model_validate(escrow)
