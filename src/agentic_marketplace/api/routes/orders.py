"""Order REST API routes.

Routes:
    POST   /api/v1/orders                   — Place an order (creates + links the escrow)
    GET    /api/v1/orders/{id}              — Get order details
    GET    /api/v1/orders/{id}/events       — Get audit trail
    POST   /api/v1/orders/{id}/payment      — Record payment (system)
    POST   /api/v1/orders/{id}/transition   — start_work, request_revision, cancel
    POST   /api/v1/orders/{id}/deliver      — Agent delivers work
    POST   /api/v1/orders/{id}/accept       — Buyer accepts, escrow released
    POST   /api/v1/orders/{id}/dispute      — Buyer disputes the delivery
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends

from agentic_marketplace.api.deps import get_actor, get_orchestrator
from agentic_marketplace.domain.actor import Actor
from agentic_marketplace.domain.exceptions import DuplicateOperationError
from agentic_marketplace.infrastructure import redis_client
from agentic_marketplace.logging_config import get_logger
from agentic_marketplace.orchestration.transaction_orchestrator import TransactionOrchestrator
from agentic_marketplace.schemas.common import TransactionOutcomeResponse
from agentic_marketplace.schemas.orders import (
    AuditEventResponse,
    DeliverRequest,
    OpenDisputeRequest,
    OrderResponse,
    PlaceOrderRequest,
    RecordPaymentRequest,
    TransitionRequest,
)

router = APIRouter(prefix="/api/v1/orders", tags=["Orders"])
logger = get_logger(__name__)

IDEMPOTENCY_SCOPE = "place_order"


# ---------------------------------------------------------------------------
# Place
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=TransactionOutcomeResponse,
    status_code=201,
    summary="Place an order",
)
async def place_order(
    request: PlaceOrderRequest,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    """Create the order and its escrow; funded right away when a payment reference is given."""
    key = request.idempotency_key
    use_idempotency = bool(key) and redis_client.is_redis_ready()
    if use_idempotency and not await redis_client.claim_idempotency(IDEMPOTENCY_SCOPE, key):
        existing = await redis_client.get_idempotency_value(IDEMPOTENCY_SCOPE, key)
        if existing and existing != "in_progress":
            logger.info("order.idempotent_replay", order_id=existing)
            order = await orchestrator.get_order(existing)
            return TransactionOutcomeResponse(order=OrderResponse.model_validate(order))
        raise DuplicateOperationError(f"Order placement with key '{key}' is in progress")

    try:
        outcome = await orchestrator.place_order(
            gig_id=request.gig_id,
            agent_id=request.agent_id,
            client_wallet=request.client_wallet,
            amount_usdc=request.amount_usdc,
            requirements=request.requirements.model_dump(exclude_none=True),
            actor=actor,
            gig_title=request.gig_title,
            payment_reference=request.payment_reference,
        )
    except Exception:
        if use_idempotency:
            await redis_client.release_idempotency(IDEMPOTENCY_SCOPE, key)
        raise

    if use_idempotency:
        await redis_client.set_idempotency_value(IDEMPOTENCY_SCOPE, key, outcome.order.id)
    background_tasks.add_task(orchestrator.process_side_effects)
    return TransactionOutcomeResponse.from_outcome(outcome)


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


@router.post(
    "/{order_id}/payment",
    response_model=TransactionOutcomeResponse,
    summary="Record payment for a pending order",
)
async def record_payment(
    order_id: str,
    request: RecordPaymentRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    """pending -> paid; funds the escrow."""
    outcome = await orchestrator.record_payment(order_id, request.payment_reference, actor)
    return TransactionOutcomeResponse.from_outcome(outcome)


@router.post(
    "/{order_id}/transition",
    response_model=TransactionOutcomeResponse,
    summary="Apply a simple order action",
)
async def transition_order(
    order_id: str,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    outcome = await orchestrator.transition(order_id, request.action, actor)
    return TransactionOutcomeResponse.from_outcome(outcome)


@router.post(
    "/{order_id}/deliver",
    response_model=TransactionOutcomeResponse,
    summary="Deliver work",
)
async def deliver_order(
    order_id: str,
    request: DeliverRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    outcome = await orchestrator.deliver(
        order_id,
        actor,
        delivery_type=request.delivery_type,
        content=request.content,
        url=request.url,
        file_urls=request.file_urls or None,
        notes=request.notes,
    )
    return TransactionOutcomeResponse.from_outcome(outcome)


@router.post(
    "/{order_id}/accept",
    response_model=TransactionOutcomeResponse,
    summary="Accept the delivery",
)
async def accept_delivery(
    order_id: str,
    background_tasks: BackgroundTasks,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    """delivered -> completed; releases the escrow to the seller."""
    outcome = await orchestrator.accept_delivery(order_id, actor)
    background_tasks.add_task(orchestrator.process_side_effects)
    return TransactionOutcomeResponse.from_outcome(outcome)


@router.post(
    "/{order_id}/dispute",
    response_model=TransactionOutcomeResponse,
    status_code=201,
    summary="Dispute the delivery",
)
async def open_dispute(
    order_id: str,
    request: OpenDisputeRequest,
    actor: Actor = Depends(get_actor),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> TransactionOutcomeResponse:
    outcome = await orchestrator.open_dispute(
        order_id,
        actor,
        reason=request.reason,
        category=request.category,
        details=request.details,
    )
    return TransactionOutcomeResponse.from_outcome(outcome)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get order details",
)
async def get_order(
    order_id: str,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> OrderResponse:
    order = await orchestrator.get_order(order_id)
    return OrderResponse.model_validate(order)


@router.get(
    "/{order_id}/events",
    response_model=list[AuditEventResponse],
    summary="Get audit trail",
)
async def get_order_events(
    order_id: str,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
) -> list[AuditEventResponse]:
    """Every status change of the order, its escrow and its disputes."""
    events = await orchestrator.get_order_events(order_id)
    return [AuditEventResponse.model_validate(e) for e in events]
