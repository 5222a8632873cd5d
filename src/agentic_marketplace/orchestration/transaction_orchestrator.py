"""Transaction Orchestrator — multi-step flows across orders, escrows and disputes.

Every flow runs its steps in the same order:

    decide  ->  settle money  ->  persist order  ->  persist dispute

Each step runs in its own database transaction (``session_factory.begin()``),
so a step that committed stays committed when a later one fails. Failures in
secondary bookkeeping are reported in ``TransactionOutcome.warnings`` instead
of being raised; failures before any money moved are raised.

Usage:
    orchestrator = TransactionOrchestrator(session_factory, settlement, advisor)
    outcome = await orchestrator.accept_delivery(order_id, Actor.client(wallet))
    if not outcome.complete:
        ...  # outcome.warnings says what needs attention
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from agentic_marketplace.config import get_settings
from agentic_marketplace.domain.actor import Actor
from agentic_marketplace.domain.enums import (
    ActorRole,
    DeliveryType,
    DisputeCategory,
    DisputeResolution,
    EscrowStatus,
    OrderAction,
    OrderStatus,
    SideEffectKind,
)
from agentic_marketplace.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    MarketplaceError,
    RoleNotPermittedError,
    ValidationError,
)
from agentic_marketplace.domain.state_machine import validate_transition
from agentic_marketplace.infrastructure.database.repositories import EventRepository
from agentic_marketplace.logging_config import get_logger
from agentic_marketplace.services.dispute_engine import AI_AUTO_RESOLVER, DisputeEngine
from agentic_marketplace.services.escrow_ledger import EscrowLedger
from agentic_marketplace.services.order_registry import OrderRegistry, SellerRegistry
from agentic_marketplace.services.outbox import (
    OutboxProcessor,
    OutboxReport,
    build_order_created_payload,
    build_seller_stats_payload,
)

if TYPE_CHECKING:
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from agentic_marketplace.config import Settings
    from agentic_marketplace.domain.protocols import (
        ArbitrationAdvisor,
        NotificationSink,
        SettlementService,
    )
    from agentic_marketplace.infrastructure.database.orm_models import (
        AuditEvent,
        Dispute,
        Escrow,
        Order,
    )

logger = get_logger(__name__)

AUTO_RELEASE_ACTOR = Actor.system("auto_release")
WITHDRAWAL_NOTES = "Dispute withdrawn by the buyer; funds released to the seller"

_RESOLVED_ESCROW_STATUSES = frozenset(
    {EscrowStatus.RELEASED, EscrowStatus.REFUNDED}
)


@dataclass
class TransactionOutcome:
    """Result of an orchestrated flow.

    ``complete`` is False when a secondary step failed after the primary one
    committed; ``warnings`` says which.
    """

    order: Order | None = None
    escrow: Escrow | None = None
    dispute: Dispute | None = None
    resolution: DisputeResolution | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.warnings


@dataclass
class SweepReport:
    released: list[str] = field(default_factory=list)
    completed_orders: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)


class TransactionOrchestrator:
    """Coordinates the Order Registry, Escrow Ledger and Dispute Engine."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settlement: SettlementService,
        advisor: ArbitrationAdvisor | None = None,
        notifier: NotificationSink | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settlement = settlement
        self._advisor = advisor
        self._notifier = notifier
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Per-transaction service builders
    # ------------------------------------------------------------------

    def _ledger(self, session: AsyncSession) -> EscrowLedger:
        return EscrowLedger(session, self._settlement, self._settings)

    def _disputes(self, session: AsyncSession) -> DisputeEngine:
        return DisputeEngine(session, self._advisor, self._settings)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_order(self, order_id: str) -> Order:
        async with self._session_factory() as session:
            return await OrderRegistry(session).get(order_id)

    async def get_order_events(self, order_id: str) -> list[AuditEvent]:
        async with self._session_factory() as session:
            await OrderRegistry(session).get(order_id)
            return await EventRepository(session).get_for_order(order_id)

    async def get_escrow(self, escrow_id: str) -> Escrow:
        async with self._session_factory() as session:
            return await self._ledger(session).get(escrow_id)

    async def get_dispute(self, dispute_id: str) -> Dispute:
        async with self._session_factory() as session:
            return await self._disputes(session).get(dispute_id)

    async def list_open_disputes(self) -> list[Dispute]:
        async with self._session_factory() as session:
            return await self._disputes(session).list_open()

    # ------------------------------------------------------------------
    # Order placement & payment
    # ------------------------------------------------------------------

    async def place_order(
        self,
        gig_id: str,
        agent_id: str,
        client_wallet: str,
        amount_usdc: Decimal | str,
        requirements: dict,
        actor: Actor,
        gig_title: str | None = None,
        payment_reference: str | None = None,
    ) -> TransactionOutcome:
        """Create an order with its escrow; fund the escrow when payment is proven.

        All of it commits together: no money moves here, so there is nothing
        to leave behind half-done.
        """
        if actor.role is ActorRole.CLIENT:
            self._require_identity(actor, client_wallet, "place an order for this wallet")
        elif actor.role is not ActorRole.SYSTEM:
            raise RoleNotPermittedError(role=actor.role.value, action="place_order")

        async with self._session_factory.begin() as session:
            seller = await SellerRegistry(session).get(agent_id)
            registry = OrderRegistry(session)
            ledger = self._ledger(session)

            order = await registry.create(
                gig_id=gig_id,
                agent_id=agent_id,
                client_wallet=client_wallet,
                amount_usdc=amount_usdc,
                requirements=requirements,
                actor=actor,
                gig_title=gig_title,
                payment_reference=payment_reference,
            )
            escrow = await ledger.create(
                order_id=order.id,
                buyer_wallet=client_wallet,
                seller_wallet=seller.wallet_address,
                amount_usdc=order.amount_usdc,
                actor=str(actor),
            )
            order = await registry.attach_escrow(order.id, escrow.id)
            if payment_reference:
                escrow = await ledger.mark_funded(escrow.id, payment_reference, actor=str(actor))
            if seller.webhook_url:
                await registry.enqueue_side_effect(
                    order.id,
                    SideEffectKind.ORDER_WEBHOOK,
                    build_order_created_payload(order, seller.webhook_url),
                )

        logger.info(
            "orchestrator.order_placed",
            order_id=order.id,
            escrow_id=escrow.id,
            status=order.status,
        )
        return TransactionOutcome(order=order, escrow=escrow)

    async def record_payment(
        self, order_id: str, payment_reference: str, actor: Actor
    ) -> TransactionOutcome:
        """pending -> paid, funding the order's escrow in the same transaction."""
        if not payment_reference:
            raise ValidationError("A payment reference is required", "payment_reference")

        async with self._session_factory.begin() as session:
            registry = OrderRegistry(session)
            ledger = self._ledger(session)
            order = await registry.get(order_id)
            next_status = validate_transition(order.status, OrderAction.PAY, actor.role)

            escrow = None
            if order.escrow_id:
                escrow = await ledger.mark_funded(
                    order.escrow_id, payment_reference, actor=str(actor)
                )
            order = await registry.transition(
                order_id,
                next_status,
                expected_status=OrderStatus.PENDING,
                actor=actor,
                payment_reference=payment_reference,
            )

        logger.info("orchestrator.payment_recorded", order_id=order_id)
        return TransactionOutcome(order=order, escrow=escrow)

    # ------------------------------------------------------------------
    # Seller & buyer actions
    # ------------------------------------------------------------------

    async def transition(
        self, order_id: str, action: OrderAction | str, actor: Actor
    ) -> TransactionOutcome:
        """Apply a simple order action (start_work, request_revision, cancel)."""
        action = OrderAction(action)
        if action is OrderAction.CANCEL:
            return await self.cancel_order(order_id, actor)
        if action not in (OrderAction.START_WORK, OrderAction.REQUEST_REVISION):
            raise ValidationError(
                f"Action '{action.value}' has its own operation", "action"
            )

        async with self._session_factory.begin() as session:
            registry = OrderRegistry(session)
            order = await registry.get(order_id)
            next_status = validate_transition(order.status, action, actor.role)
            self._authorize(order, actor)
            order = await registry.transition(
                order_id,
                next_status,
                expected_status=OrderStatus(order.status),
                actor=actor,
                metadata={"action": action.value},
            )
        return TransactionOutcome(order=order)

    async def cancel_order(self, order_id: str, actor: Actor) -> TransactionOutcome:
        """pending/paid -> cancelled.

        A funded escrow is refunded before the order changes; if the refund
        fails nothing is written. An unfunded escrow is voided.
        """
        async with self._session_factory.begin() as session:
            registry = OrderRegistry(session)
            ledger = self._ledger(session)
            order = await registry.get(order_id)
            next_status = validate_transition(order.status, OrderAction.CANCEL, actor.role)
            self._authorize(order, actor)

            escrow = None
            if order.escrow_id:
                escrow = await ledger.get(order.escrow_id)
                if escrow.status == EscrowStatus.FUNDED:
                    escrow = await ledger.refund(escrow.id, actor=str(actor))
                elif escrow.status == EscrowStatus.CREATED:
                    escrow = await ledger.void(escrow.id, actor=str(actor))

            order = await registry.transition(
                order_id,
                next_status,
                expected_status=OrderStatus(order.status),
                actor=actor,
                metadata={"action": OrderAction.CANCEL.value},
            )

        logger.info("orchestrator.order_cancelled", order_id=order_id)
        return TransactionOutcome(order=order, escrow=escrow)

    async def deliver(
        self,
        order_id: str,
        actor: Actor,
        delivery_type: DeliveryType | str = DeliveryType.TEXT,
        content: str | None = None,
        url: str | None = None,
        file_urls: list[str] | None = None,
        notes: str | None = None,
    ) -> TransactionOutcome:
        """Store a delivery and move the order to ``delivered``."""
        async with self._session_factory.begin() as session:
            registry = OrderRegistry(session)
            order = await registry.get(order_id)
            next_status = validate_transition(order.status, OrderAction.DELIVER, actor.role)
            self._authorize(order, actor)

            delivery = await registry.add_delivery(
                order_id,
                DeliveryType(delivery_type),
                content=content,
                url=url,
                file_urls=file_urls,
                notes=notes,
                actor=actor,
            )
            order = await registry.transition(
                order_id,
                next_status,
                expected_status=OrderStatus(order.status),
                actor=actor,
                metadata={"delivery_id": delivery.id},
            )
        return TransactionOutcome(order=order)

    async def accept_delivery(self, order_id: str, actor: Actor) -> TransactionOutcome:
        """delivered -> completed, releasing the escrow.

        A failed release is a warning: the order still completes and the
        escrow stays funded, so the auto-release sweep picks it up later.
        """
        outcome = TransactionOutcome()

        async with self._session_factory() as session:
            order = await OrderRegistry(session).get(order_id)
        next_status = validate_transition(order.status, OrderAction.ACCEPT, actor.role)
        self._authorize(order, actor)

        if order.escrow_id:
            try:
                async with self._session_factory.begin() as session:
                    ledger = self._ledger(session)
                    escrow = await ledger.get(order.escrow_id)
                    if escrow.status == EscrowStatus.FUNDED:
                        escrow = await ledger.release(escrow.id, actor=str(actor))
                outcome.escrow = escrow
            except MarketplaceError as exc:
                logger.warning(
                    "orchestrator.accept.escrow_release_failed",
                    order_id=order_id,
                    escrow_id=order.escrow_id,
                    error=exc.message,
                )
                outcome.warnings.append(f"Escrow release failed: {exc.message}")

        async with self._session_factory.begin() as session:
            registry = OrderRegistry(session)
            outcome.order = await registry.transition(
                order_id,
                next_status,
                expected_status=OrderStatus.DELIVERED,
                actor=actor,
                metadata={"action": OrderAction.ACCEPT.value},
            )
            await registry.enqueue_side_effect(
                order_id,
                SideEffectKind.SELLER_STATS,
                build_seller_stats_payload(outcome.order),
            )

        logger.info(
            "orchestrator.delivery_accepted",
            order_id=order_id,
            complete=outcome.complete,
        )
        return outcome

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def open_dispute(
        self,
        order_id: str,
        actor: Actor,
        reason: str,
        category: DisputeCategory | str = DisputeCategory.OTHER,
        details: str | None = None,
    ) -> TransactionOutcome:
        """Freeze the escrow, mark the order disputed, then create the dispute record.

        If creating the record fails after the order moved to ``disputed``,
        the outcome carries a warning and ``reconcile_dispute_record`` can
        finish the job.
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

        outcome = TransactionOutcome()
        async with self._session_factory.begin() as session:
            registry = OrderRegistry(session)
            ledger = self._ledger(session)
            order = await registry.get(order_id)
            next_status = validate_transition(order.status, OrderAction.DISPUTE, actor.role)
            self._authorize(order, actor)
            if await self._disputes(session).find_active_for_order(order_id) is not None:
                raise ConflictError(
                    f"Order {order_id} already has an active dispute",
                    code="DISPUTE_ALREADY_ACTIVE",
                )

            if order.escrow_id:
                escrow = await ledger.get(order.escrow_id)
                if escrow.status == EscrowStatus.FUNDED:
                    escrow = await ledger.open_dispute(escrow.id, reason, actor=str(actor))
                outcome.escrow = escrow

            outcome.order = await registry.transition(
                order_id,
                next_status,
                expected_status=OrderStatus(order.status),
                actor=actor,
                metadata={"action": OrderAction.DISPUTE.value, "category": category.value},
            )

        try:
            outcome.dispute = await self._create_dispute_record(
                outcome.order, actor, reason, category, details
            )
        except MarketplaceError as exc:
            logger.warning(
                "orchestrator.dispute.record_failed",
                order_id=order_id,
                error=exc.message,
            )
            outcome.warnings.append(f"Dispute record was not created: {exc.message}")

        logger.info(
            "orchestrator.dispute_opened",
            order_id=order_id,
            dispute_id=outcome.dispute.id if outcome.dispute else None,
        )
        return outcome

    async def reconcile_dispute_record(
        self,
        order_id: str,
        actor: Actor,
        reason: str | None = None,
        category: DisputeCategory | str = DisputeCategory.OTHER,
    ) -> TransactionOutcome:
        """Create the missing dispute record for an order left ``disputed`` without one."""
        self._require_role(actor, {ActorRole.ADMIN, ActorRole.SYSTEM}, "reconcile_dispute")

        async with self._session_factory() as session:
            order = await OrderRegistry(session).get(order_id)
            existing = await self._disputes(session).find_active_for_order(order_id)
            escrow = await self._ledger(session).get(order.escrow_id) if order.escrow_id else None

        if order.status != OrderStatus.DISPUTED:
            raise ConflictError(
                f"Order {order_id} is '{order.status}', not disputed",
                code="ORDER_NOT_DISPUTED",
            )
        if existing is not None:
            return TransactionOutcome(order=order, escrow=escrow, dispute=existing)

        reason = reason or (escrow.dispute_reason if escrow is not None else None)
        if not reason:
            raise ValidationError("A reason is needed to rebuild the dispute record", "reason")
        dispute = await self._create_dispute_record(
            order, actor, reason, DisputeCategory(category), None
        )
        logger.info("orchestrator.dispute_reconciled", order_id=order_id, dispute_id=dispute.id)
        return TransactionOutcome(order=order, escrow=escrow, dispute=dispute)

    async def start_review(self, dispute_id: str, actor: Actor) -> TransactionOutcome:
        self._require_role(actor, {ActorRole.ADMIN}, "start_review")
        async with self._session_factory.begin() as session:
            dispute = await self._disputes(session).start_review(dispute_id, actor=str(actor))
        return TransactionOutcome(dispute=dispute)

    async def request_arbitration(self, dispute_id: str, actor: Actor) -> TransactionOutcome:
        """Run the arbitration advisor and store its verdict.

        The advisor is called between two transactions so no connection is
        held while it works. On advisor failure nothing is written.
        """
        self._require_role(actor, {ActorRole.ADMIN, ActorRole.SYSTEM}, "request_arbitration")
        if self._advisor is None:
            raise RuntimeError("No arbitration advisor configured")

        async with self._session_factory() as session:
            case, version = await self._disputes(session).prepare_arbitration(dispute_id)

        verdict = await self._advisor.arbitrate(case.render())

        async with self._session_factory.begin() as session:
            dispute = await self._disputes(session).record_arbitration(
                dispute_id, verdict, expected_version=version
            )
        return TransactionOutcome(dispute=dispute)

    async def auto_resolve_dispute(
        self,
        dispute_id: str,
        actor: Actor,
        confidence_threshold: int | None = None,
    ) -> TransactionOutcome:
        """Resolve per the stored AI recommendation if it is confident enough.

        Below the threshold the outcome has no resolution and nothing changed.
        """
        self._require_role(actor, {ActorRole.ADMIN, ActorRole.SYSTEM}, "auto_resolve")

        async with self._session_factory.begin() as session:
            engine = self._disputes(session)
            resolution = await engine.auto_resolve_if_confident(dispute_id, confidence_threshold)
            dispute = await engine.get(dispute_id)

        if resolution is None:
            return TransactionOutcome(dispute=dispute)

        notes = (
            f"Auto-resolved by AI arbitration ({dispute.ai_confidence}% confidence): "
            f"{resolution.value}"
        )
        return await self._resolve(
            dispute_id,
            resolution,
            notes,
            resolved_by=AI_AUTO_RESOLVER,
            actor=Actor.system(AI_AUTO_RESOLVER),
        )

    async def arbitrate_and_maybe_resolve(
        self, dispute_id: str, actor: Actor
    ) -> TransactionOutcome:
        """request_arbitration, then auto_resolve_dispute when policy allows it."""
        outcome = await self.request_arbitration(dispute_id, actor)
        if not self._settings.auto_resolve_after_arbitration:
            return outcome
        return await self.auto_resolve_dispute(dispute_id, actor)

    async def resolve_dispute(
        self,
        dispute_id: str,
        resolution: DisputeResolution | str,
        notes: str,
        actor: Actor,
    ) -> TransactionOutcome:
        """Manual resolution by an admin."""
        self._require_role(actor, {ActorRole.ADMIN, ActorRole.SYSTEM}, "resolve_dispute")
        notes = (notes or "").strip()
        if len(notes) < self._settings.resolution_notes_min_length:
            raise ValidationError(
                f"Resolution notes must be at least "
                f"{self._settings.resolution_notes_min_length} characters",
                "notes",
            )
        return await self._resolve(
            dispute_id,
            DisputeResolution(resolution),
            notes,
            resolved_by=actor.identity,
            actor=actor,
        )

    async def cancel_dispute(self, dispute_id: str, actor: Actor) -> TransactionOutcome:
        """Buyer withdraws the dispute, conceding to the seller.

        The escrow is released to the seller, the order completes, and the
        dispute ends ``cancelled``.
        """
        async with self._session_factory() as session:
            engine = self._disputes(session)
            dispute = await engine.get(dispute_id)
            if actor.role is not ActorRole.CLIENT:
                raise RoleNotPermittedError(role=actor.role.value, action="cancel_dispute")
            self._require_identity(actor, dispute.buyer_wallet, "withdraw this dispute")
            engine.check_can_cancel(dispute)

        outcome = await self._settle_and_complete(
            dispute,
            DisputeResolution.PAY_SELLER,
            WITHDRAWAL_NOTES,
            resolved_by=str(actor),
            actor=Actor.system("dispute_withdrawal"),
        )

        try:
            async with self._session_factory.begin() as session:
                outcome.dispute = await self._disputes(session).cancel(
                    dispute_id, actor=str(actor)
                )
        except MarketplaceError as exc:
            logger.warning(
                "orchestrator.dispute_cancel.record_failed",
                dispute_id=dispute_id,
                error=exc.message,
            )
            outcome.warnings.append(f"Dispute record was not updated: {exc.message}")
        return outcome

    # ------------------------------------------------------------------
    # Scheduled work
    # ------------------------------------------------------------------

    async def run_auto_release_sweep(self, now: datetime | None = None) -> SweepReport:
        """Release every funded, undisputed escrow past its deadline.

        Orders still ``delivered`` complete; orders in any other status are
        left alone.
        """
        now = now or datetime.now(UTC)
        report = SweepReport()

        async with self._session_factory.begin() as session:
            claimed = await self._ledger(session).get_due_for_auto_release(now)
            due = [(escrow.id, escrow.order_id) for escrow in claimed]

        for escrow_id, order_id in due:
            try:
                async with self._session_factory.begin() as session:
                    await self._ledger(session).release(escrow_id, actor=str(AUTO_RELEASE_ACTOR))
            except MarketplaceError as exc:
                logger.warning(
                    "orchestrator.sweep.release_failed",
                    escrow_id=escrow_id,
                    error=exc.message,
                )
                report.failures[escrow_id] = exc.message
                continue
            report.released.append(escrow_id)

            try:
                async with self._session_factory.begin() as session:
                    registry = OrderRegistry(session)
                    order = await registry.get(order_id)
                    if order.status == OrderStatus.DELIVERED:
                        order = await registry.transition(
                            order_id,
                            OrderStatus.COMPLETED,
                            expected_status=OrderStatus.DELIVERED,
                            actor=AUTO_RELEASE_ACTOR,
                            metadata={"escrow_id": escrow_id, "reason": "auto_release"},
                        )
                        await registry.enqueue_side_effect(
                            order_id,
                            SideEffectKind.SELLER_STATS,
                            build_seller_stats_payload(order),
                        )
                        report.completed_orders.append(order_id)
            except MarketplaceError as exc:
                logger.warning(
                    "orchestrator.sweep.order_update_failed",
                    order_id=order_id,
                    error=exc.message,
                )
                report.failures[escrow_id] = exc.message

        logger.info(
            "orchestrator.sweep.finished",
            due=len(due),
            released=len(report.released),
            failed=len(report.failures),
        )
        return report

    async def process_side_effects(self, limit: int = 100) -> OutboxReport:
        processor = OutboxProcessor(
            self._session_factory,
            self._notifier,
            claim_ttl_seconds=self._settings.outbox_claim_ttl_seconds,
        )
        return await processor.process_pending(limit)

    # ------------------------------------------------------------------
    # Resolution internals
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        dispute_id: str,
        resolution: DisputeResolution,
        notes: str,
        resolved_by: str,
        actor: Actor,
    ) -> TransactionOutcome:
        async with self._session_factory() as session:
            dispute = await self._disputes(session).get(dispute_id)
        DisputeEngine.ensure_active(dispute)

        outcome = await self._settle_and_complete(dispute, resolution, notes, resolved_by, actor)

        try:
            async with self._session_factory.begin() as session:
                outcome.dispute = await self._disputes(session).resolve(
                    dispute_id, resolution, notes, resolved_by
                )
        except MarketplaceError as exc:
            logger.warning(
                "orchestrator.resolve.dispute_update_failed",
                dispute_id=dispute_id,
                error=exc.message,
            )
            outcome.warnings.append(f"Dispute record was not updated: {exc.message}")

        logger.info(
            "orchestrator.dispute_resolved",
            dispute_id=dispute_id,
            resolution=resolution.value,
            resolved_by=resolved_by,
            complete=outcome.complete,
        )
        return outcome

    async def _settle_and_complete(
        self,
        dispute: Dispute,
        resolution: DisputeResolution,
        notes: str,
        resolved_by: str,
        actor: Actor,
    ) -> TransactionOutcome:
        """Decide, settle the escrow, then move the order. Shared by every resolve path.

        Re-running after a partial failure is safe: an escrow already settled
        with the same outcome and an order already in its target status are
        skipped.
        """
        outcome = TransactionOutcome(resolution=resolution)

        async with self._session_factory() as session:
            order = await OrderRegistry(session).get(dispute.order_id)
        target = validate_transition(
            OrderStatus.DISPUTED, OrderAction.RESOLVE, actor.role, resolution
        )
        if order.status != target:
            validate_transition(order.status, OrderAction.RESOLVE, actor.role, resolution)

        escrow_id = dispute.escrow_id or order.escrow_id
        if escrow_id:
            async with self._session_factory.begin() as session:
                ledger = self._ledger(session)
                escrow = await ledger.get(escrow_id)
                if escrow.status == EscrowStatus.DISPUTED:
                    escrow = await ledger.resolve_dispute(escrow_id, resolution, notes, resolved_by)
                elif escrow.status in _RESOLVED_ESCROW_STATUSES and escrow.resolution != resolution:
                    raise ConflictError(
                        f"Escrow {escrow_id} was already settled as '{escrow.status}'",
                        code="ESCROW_ALREADY_SETTLED",
                    )
            outcome.escrow = escrow

        if order.status == target:
            outcome.order = order
            return outcome

        try:
            async with self._session_factory.begin() as session:
                outcome.order = await OrderRegistry(session).transition(
                    order.id,
                    target,
                    expected_status=OrderStatus.DISPUTED,
                    actor=actor,
                    metadata={"resolution": resolution.value, "dispute_id": dispute.id},
                )
        except MarketplaceError as exc:
            logger.warning(
                "orchestrator.resolve.order_update_failed",
                order_id=order.id,
                error=exc.message,
            )
            outcome.warnings.append(f"Order was not updated: {exc.message}")
        return outcome

    async def _create_dispute_record(
        self,
        order: Order,
        actor: Actor,
        reason: str,
        category: DisputeCategory,
        details: str | None,
    ) -> Dispute:
        async with self._session_factory.begin() as session:
            seller_wallet = ""
            escrow = None
            if order.escrow_id:
                escrow = await self._ledger(session).get(order.escrow_id)
                seller_wallet = escrow.seller_wallet
            else:
                seller_wallet = (await SellerRegistry(session).get(order.agent_id)).wallet_address
            return await self._disputes(session).open(
                order_id=order.id,
                escrow_id=escrow.id if escrow is not None else None,
                buyer_wallet=order.client_wallet,
                seller_wallet=seller_wallet,
                amount_usdc=order.amount_usdc,
                category=category,
                reason=reason,
                details=details,
                actor=str(actor),
            )

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    @staticmethod
    def _authorize(order: Order, actor: Actor) -> None:
        """Clients act on their own orders, agents on orders placed with them."""
        if actor.role is ActorRole.CLIENT:
            TransactionOrchestrator._require_identity(
                actor, order.client_wallet, "act on this order"
            )
        elif actor.role is ActorRole.AGENT and actor.identity != order.agent_id:
            raise AuthorizationError("Only the assigned agent can act on this order")

    @staticmethod
    def _require_identity(actor: Actor, wallet: str, what: str) -> None:
        if actor.identity.lower() != (wallet or "").lower():
            raise AuthorizationError(f"Only the buyer can {what}")

    @staticmethod
    def _require_role(actor: Actor, roles: set[ActorRole], action: str) -> None:
        if actor.role not in roles:
            raise RoleNotPermittedError(role=actor.role.value, action=action)
