"""Dispute Engine — dispute records, arbitration and resolution bookkeeping.

Owns every write to the disputes table. It never moves money: settlement for
a resolution is done by the Escrow Ledger, coordinated by the orchestrator.

Arbitration is split in two so that no database transaction is held open
while the advisor thinks:
    prepare_arbitration  — validate status, snapshot the case, note the version.
    record_arbitration   — store the verdict if the dispute hasn't moved on.
request_arbitration runs both around an advisor call for single-session use.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from agentic_marketplace.arbitration.case_summary import ArbitrationCase
from agentic_marketplace.config import get_settings
from agentic_marketplace.domain.enums import (
    ACTIVE_DISPUTE_STATUSES,
    AiRecommendation,
    DisputeCategory,
    DisputeResolution,
    DisputeStatus,
    EntityType,
    EventType,
)
from agentic_marketplace.domain.exceptions import (
    ConflictError,
    DisputeNotFoundError,
    OrderNotFoundError,
    StaleRecordError,
    ValidationError,
)
from agentic_marketplace.domain.state_machine import DisputeStateMachine, fire_event
from agentic_marketplace.infrastructure.database.orm_models import Dispute
from agentic_marketplace.infrastructure.database.repositories import (
    AgentRepository,
    DeliveryRepository,
    DisputeRepository,
    EventRepository,
    OrderRepository,
)
from agentic_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from agentic_marketplace.config import Settings
    from agentic_marketplace.domain.protocols import ArbitrationAdvisor, ArbitrationVerdict

logger = get_logger(__name__)

AI_AUTO_RESOLVER = "ai_auto"

_RESOLUTION_EVENTS = {
    DisputeResolution.PAY_SELLER: "resolve_for_seller",
    DisputeResolution.REFUND_BUYER: "resolve_for_buyer",
    DisputeResolution.SPLIT: "resolve_split",
}


class DisputeEngine:
    """Manages the dispute lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        advisor: ArbitrationAdvisor | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._advisor = advisor
        self._settings = settings or get_settings()
        self._disputes = DisputeRepository(session)
        self._orders = OrderRepository(session)
        self._deliveries = DeliveryRepository(session)
        self._agents = AgentRepository(session)
        self._events = EventRepository(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, dispute_id: str) -> Dispute:
        dispute = await self._disputes.get_by_id(dispute_id)
        if dispute is None:
            raise DisputeNotFoundError(dispute_id)
        return dispute

    async def find_active_for_order(self, order_id: str) -> Dispute | None:
        active = await self._disputes.find_active_for_order(order_id)
        return active[0] if active else None

    async def list_for_order(self, order_id: str) -> list[Dispute]:
        return await self._disputes.find_by(order_id=order_id)

    async def list_open(self) -> list[Dispute]:
        """The admin queue: every dispute that still needs a decision."""
        return await self._disputes.find_by(status=ACTIVE_DISPUTE_STATUSES)

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    async def open(
        self,
        order_id: str,
        escrow_id: str | None,
        buyer_wallet: str,
        seller_wallet: str,
        amount_usdc: Decimal,
        category: DisputeCategory | str,
        reason: str,
        details: str | None = None,
        actor: str = "system:system",
    ) -> Dispute:
        """Create a dispute in ``open``.

        Raises:
            ValidationError: Reason too short or unknown category.
            ConflictError: The order already has a dispute awaiting a decision.
        """
        reason = (reason or "").strip()
        if len(reason) < self._settings.dispute_reason_min_length:
            raise ValidationError(
                f"Dispute reason must be at least "
                f"{self._settings.dispute_reason_min_length} characters",
                "reason",
            )
        try:
            category = DisputeCategory(category or DisputeCategory.OTHER)
        except ValueError as exc:
            raise ValidationError(f"Unknown dispute category '{category}'", "category") from exc

        existing = await self.find_active_for_order(order_id)
        if existing is not None:
            raise ConflictError(
                f"Order {order_id} already has an active dispute ({existing.id})",
                code="DISPUTE_ALREADY_ACTIVE",
            )

        dispute = await self._disputes.create(
            Dispute(
                order_id=order_id,
                escrow_id=escrow_id,
                buyer_wallet=buyer_wallet,
                seller_wallet=seller_wallet,
                amount_usdc=amount_usdc,
                category=category.value,
                reason=reason,
                details=(details or "").strip() or None,
                status=DisputeStatus.OPEN.value,
            )
        )
        await self._record(dispute, EventType.DISPUTE_OPENED, None, actor, {
            "category": category.value,
        })
        logger.info(
            "dispute.opened",
            dispute_id=dispute.id,
            order_id=order_id,
            category=category.value,
        )
        return dispute

    async def start_review(self, dispute_id: str, actor: str = "admin:admin") -> Dispute:
        dispute = await self.get(dispute_id)
        old_status = dispute.status
        dispute.status = fire_event(DisputeStateMachine(dispute.status), "start_review", "dispute")
        await self._disputes.replace(dispute)
        await self._record(dispute, EventType.DISPUTE_REVIEW_STARTED, old_status, actor)
        logger.info("dispute.review_started", dispute_id=dispute_id)
        return dispute

    # ------------------------------------------------------------------
    # Arbitration
    # ------------------------------------------------------------------

    async def prepare_arbitration(self, dispute_id: str) -> tuple[ArbitrationCase, int]:
        """Check the dispute can be arbitrated and snapshot its case.

        Returns the case and the dispute's row version at snapshot time.
        """
        dispute = await self.get(dispute_id)
        # validates open/under_review without keeping the transition
        fire_event(DisputeStateMachine(dispute.status), "record_arbitration", "dispute")

        order = await self._orders.get_by_id(dispute.order_id)
        if order is None:
            raise OrderNotFoundError(dispute.order_id)
        delivery = await self._deliveries.get_latest_for_order(order.id)
        agent = await self._agents.get_by_id(order.agent_id)
        return ArbitrationCase.from_records(dispute, order, delivery, agent), dispute.version

    async def record_arbitration(
        self,
        dispute_id: str,
        verdict: ArbitrationVerdict,
        expected_version: int | None = None,
    ) -> Dispute:
        """Store the advisor's verdict and move to ``ai_arbitrated``.

        Raises:
            StaleRecordError: The dispute changed while the advisor was working.
        """
        dispute = await self.get(dispute_id)
        if expected_version is not None and dispute.version != expected_version:
            raise StaleRecordError("Dispute", dispute_id)

        old_status = dispute.status
        dispute.status = fire_event(
            DisputeStateMachine(dispute.status), "record_arbitration", "dispute"
        )
        dispute.ai_analysis = verdict.analysis
        dispute.ai_recommendation = verdict.recommendation.value
        dispute.ai_confidence = verdict.confidence
        dispute.ai_arbitrated_at = datetime.now(UTC)
        await self._disputes.replace(dispute)

        await self._record(dispute, EventType.DISPUTE_ARBITRATED, old_status, AI_AUTO_RESOLVER, {
            "recommendation": verdict.recommendation.value,
            "confidence": verdict.confidence,
        })
        logger.info(
            "dispute.arbitrated",
            dispute_id=dispute_id,
            recommendation=verdict.recommendation.value,
            confidence=verdict.confidence,
        )
        return dispute

    async def request_arbitration(self, dispute_id: str) -> Dispute:
        """Ask the advisor for a verdict and store it.

        On advisor failure or timeout nothing is written and ArbitrationError
        propagates.
        """
        if self._advisor is None:
            raise RuntimeError("DisputeEngine was built without an arbitration advisor")
        case, version = await self.prepare_arbitration(dispute_id)
        verdict = await self._advisor.arbitrate(case.render())
        return await self.record_arbitration(dispute_id, verdict, expected_version=version)

    async def auto_resolve_if_confident(
        self,
        dispute_id: str,
        confidence_threshold: int | None = None,
    ) -> DisputeResolution | None:
        """Claim a confidently arbitrated dispute for automatic resolution.

        Returns the resolution to apply, or None when the stored confidence is
        below the threshold (nothing is written in that case). A dispute that
        is already claimed returns its resolution again so that a failed
        settlement can be retried.
        """
        threshold = (
            confidence_threshold
            if confidence_threshold is not None
            else self._settings.auto_resolve_confidence_threshold
        )
        dispute = await self.get(dispute_id)

        if dispute.status == DisputeStatus.AUTO_RESOLVED:
            return AiRecommendation(dispute.ai_recommendation).to_resolution()
        if dispute.status != DisputeStatus.AI_ARBITRATED:
            raise ConflictError(
                f"Dispute {dispute_id} has no arbitration to act on (status '{dispute.status}')",
                code="DISPUTE_NOT_ARBITRATED",
            )
        if dispute.ai_confidence is None or dispute.ai_confidence < threshold:
            logger.info(
                "dispute.auto_resolve_skipped",
                dispute_id=dispute_id,
                confidence=dispute.ai_confidence,
                threshold=threshold,
            )
            return None

        resolution = AiRecommendation(dispute.ai_recommendation).to_resolution()
        old_status = dispute.status
        dispute.status = fire_event(
            DisputeStateMachine(dispute.status), "claim_auto_resolution", "dispute"
        )
        dispute.auto_resolved = True
        await self._disputes.replace(dispute)
        await self._record(dispute, EventType.DISPUTE_AUTO_RESOLVED, old_status, AI_AUTO_RESOLVER, {
            "resolution": resolution.value,
            "confidence": dispute.ai_confidence,
            "threshold": threshold,
        })
        logger.info(
            "dispute.auto_resolve_claimed",
            dispute_id=dispute_id,
            resolution=resolution.value,
            confidence=dispute.ai_confidence,
        )
        return resolution

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(
        self,
        dispute_id: str,
        resolution: DisputeResolution,
        notes: str,
        resolved_by: str,
    ) -> Dispute:
        """Mark the dispute resolved. Terminal disputes are never touched again."""
        dispute = await self.get(dispute_id)
        self.ensure_active(dispute)

        old_status = dispute.status
        dispute.status = fire_event(
            DisputeStateMachine(dispute.status), _RESOLUTION_EVENTS[resolution], "dispute"
        )
        dispute.resolution = resolution.value
        dispute.resolution_notes = notes
        dispute.resolved_by = resolved_by
        dispute.resolved_at = datetime.now(UTC)
        if resolved_by == AI_AUTO_RESOLVER:
            dispute.auto_resolved = True
        await self._disputes.replace(dispute)

        await self._record(dispute, EventType.DISPUTE_RESOLVED, old_status, resolved_by, {
            "resolution": resolution.value,
        })
        logger.info(
            "dispute.resolved",
            dispute_id=dispute_id,
            resolution=resolution.value,
            resolved_by=resolved_by,
        )
        return dispute

    async def cancel(self, dispute_id: str, actor: str = "system:system") -> Dispute:
        """Buyer withdrawal, only before arbitration."""
        dispute = await self.get(dispute_id)
        self.ensure_active(dispute)
        old_status = dispute.status
        dispute.status = fire_event(DisputeStateMachine(dispute.status), "withdraw", "dispute")
        dispute.resolved_at = datetime.now(UTC)
        dispute.resolved_by = actor
        await self._disputes.replace(dispute)
        await self._record(dispute, EventType.DISPUTE_CANCELLED, old_status, actor)
        logger.info("dispute.cancelled", dispute_id=dispute_id)
        return dispute

    def check_can_cancel(self, dispute: Dispute) -> None:
        self.ensure_active(dispute)
        fire_event(DisputeStateMachine(dispute.status), "withdraw", "dispute")

    @staticmethod
    def ensure_active(dispute: Dispute) -> None:
        if DisputeStatus(dispute.status).is_terminal:
            raise ConflictError(
                f"Dispute {dispute.id} is already {dispute.status}",
                code="DISPUTE_ALREADY_RESOLVED",
            )

    async def _record(
        self,
        dispute: Dispute,
        event_type: EventType,
        old_status: str | None,
        actor: str,
        metadata: dict | None = None,
    ) -> None:
        await self._events.record(
            entity_type=EntityType.DISPUTE,
            entity_id=dispute.id,
            order_id=dispute.order_id,
            event_type=event_type,
            old_status=old_status,
            new_status=dispute.status,
            actor=actor,
            metadata=metadata,
        )
