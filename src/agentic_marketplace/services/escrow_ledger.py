"""Escrow Ledger — custody lifecycle and fee arithmetic.

This is the only component that asks the settlement service to move money.
Every mutation:
    1. Re-reads the escrow and checks the transition with EscrowStateMachine
       (before any funds move).
    2. Calls the settlement service with a deterministic idempotency key
       (``<escrow id>:<operation>``), so a retried or concurrent attempt can
       never settle twice.
    3. Writes the new status under the row-version guard.

If settlement fails the status is left untouched and the error propagates;
the operation can simply be retried.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import or_, update

from agentic_marketplace.config import get_settings
from agentic_marketplace.domain.enums import (
    DisputeResolution,
    EntityType,
    EscrowStatus,
    EventType,
)
from agentic_marketplace.domain.exceptions import (
    ConflictError,
    EscrowNotFoundError,
    ValidationError,
)
from agentic_marketplace.domain.money import FeeBreakdown, PayoutPlan, to_minor_units
from agentic_marketplace.domain.protocols import TransferLeg
from agentic_marketplace.domain.state_machine import EscrowStateMachine, fire_event
from agentic_marketplace.infrastructure.database.orm_models import Escrow
from agentic_marketplace.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
)
from agentic_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from agentic_marketplace.config import Settings
    from agentic_marketplace.domain.protocols import SettlementService

logger = get_logger(__name__)

_RESOLUTION_EVENTS = {
    DisputeResolution.PAY_SELLER: "resolve_for_seller",
    DisputeResolution.REFUND_BUYER: "resolve_for_buyer",
    DisputeResolution.SPLIT: "resolve_for_buyer",
}


def fees_of(escrow: Escrow) -> FeeBreakdown:
    return FeeBreakdown(
        amount=escrow.amount,
        fee_rate_percent=Decimal(escrow.platform_fee_rate),
        platform_fee=escrow.platform_fee,
        seller_amount=escrow.seller_amount,
    )


class EscrowLedger:
    """Manages the escrow lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        settlement: SettlementService,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._settlement = settlement
        self._settings = settings or get_settings()
        self._escrows = EscrowRepository(session)
        self._events = EventRepository(session)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, escrow_id: str) -> Escrow:
        escrow = await self._escrows.get_by_id(escrow_id)
        if escrow is None:
            raise EscrowNotFoundError(escrow_id)
        return escrow

    async def find_by_order(self, order_id: str) -> Escrow | None:
        found = await self._escrows.find_by(order_id=order_id)
        return found[0] if found else None

    # ------------------------------------------------------------------
    # Creation & funding
    # ------------------------------------------------------------------

    async def create(
        self,
        order_id: str,
        buyer_wallet: str,
        seller_wallet: str,
        amount_usdc: Decimal | str,
        actor: str = "system:system",
    ) -> Escrow:
        """Create an escrow in ``created``, capturing the current fee rate."""
        if not buyer_wallet or not seller_wallet:
            raise ValidationError("Escrow needs both a buyer and a seller wallet", "wallet")
        amount = to_minor_units(amount_usdc)
        fees = FeeBreakdown.compute(amount, self._settings.platform_fee_percent)

        escrow = await self._escrows.create(
            Escrow(
                order_id=order_id,
                buyer_wallet=buyer_wallet,
                seller_wallet=seller_wallet,
                amount=fees.amount,
                platform_fee_rate=fees.fee_rate_percent,
                platform_fee=fees.platform_fee,
                seller_amount=fees.seller_amount,
                status=EscrowStatus.CREATED.value,
            )
        )
        await self._record(escrow, EventType.ESCROW_CREATED, None, actor, {
            "amount": fees.amount,
            "platform_fee": fees.platform_fee,
            "seller_amount": fees.seller_amount,
            "fee_rate_percent": str(fees.fee_rate_percent),
        })
        logger.info(
            "escrow.created",
            escrow_id=escrow.id,
            order_id=order_id,
            amount=fees.amount,
            platform_fee=fees.platform_fee,
        )
        return escrow

    async def mark_funded(
        self,
        escrow_id: str,
        settlement_reference: str,
        funded_at: datetime | None = None,
        actor: str = "system:system",
    ) -> Escrow:
        """created -> funded; starts the auto-release clock."""
        escrow = await self.get(escrow_id)
        old_status = escrow.status
        escrow.status = fire_event(EscrowStateMachine(escrow.status), "fund", "escrow")

        funded_at = funded_at or datetime.now(UTC)
        escrow.funded_at = funded_at
        escrow.auto_release_deadline = funded_at + timedelta(
            hours=self._settings.auto_release_window_hours
        )
        escrow.funding_reference = settlement_reference
        await self._escrows.replace(escrow)

        await self._record(escrow, EventType.ESCROW_FUNDED, old_status, actor, {
            "funding_reference": settlement_reference,
            "auto_release_deadline": escrow.auto_release_deadline.isoformat(),
        })
        logger.info(
            "escrow.funded",
            escrow_id=escrow_id,
            deadline=escrow.auto_release_deadline.isoformat(),
        )
        return escrow

    async def void(self, escrow_id: str, actor: str = "system:system") -> Escrow:
        """created -> cancelled, for an order cancelled before payment."""
        escrow = await self.get(escrow_id)
        old_status = escrow.status
        escrow.status = fire_event(EscrowStateMachine(escrow.status), "void", "escrow")
        await self._escrows.replace(escrow)
        await self._record(escrow, EventType.ESCROW_CANCELLED, old_status, actor)
        logger.info("escrow.voided", escrow_id=escrow_id)
        return escrow

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def release(self, escrow_id: str, actor: str = "system:system") -> Escrow:
        """funded -> released: seller amount to the seller, fee to the platform."""
        escrow = await self.get(escrow_id)
        machine = EscrowStateMachine(escrow.status)
        old_status = escrow.status
        new_status = fire_event(machine, "release", "escrow")

        reference = await self._settle(escrow, PayoutPlan.release(fees_of(escrow)), "release")

        escrow.status = new_status
        escrow.released_at = datetime.now(UTC)
        escrow.settlement_reference = reference
        await self._escrows.replace(escrow)
        await self._record(escrow, EventType.ESCROW_RELEASED, old_status, actor, {
            "settlement_reference": reference,
        })
        logger.info("escrow.released", escrow_id=escrow_id, reference=reference)
        return escrow

    async def refund(self, escrow_id: str, actor: str = "system:system") -> Escrow:
        """funded -> refunded: the full amount back to the buyer."""
        escrow = await self.get(escrow_id)
        old_status = escrow.status
        new_status = fire_event(EscrowStateMachine(escrow.status), "refund", "escrow")

        reference = await self._settle(escrow, PayoutPlan.refund(fees_of(escrow)), "refund")

        escrow.status = new_status
        escrow.refunded_at = datetime.now(UTC)
        escrow.settlement_reference = reference
        await self._escrows.replace(escrow)
        await self._record(escrow, EventType.ESCROW_REFUNDED, old_status, actor, {
            "settlement_reference": reference,
        })
        logger.info("escrow.refunded", escrow_id=escrow_id, reference=reference)
        return escrow

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def open_dispute(
        self, escrow_id: str, reason: str, actor: str = "system:system"
    ) -> Escrow:
        """funded -> disputed. Freezes the escrow out of the auto-release sweep."""
        escrow = await self.get(escrow_id)
        old_status = escrow.status
        escrow.status = fire_event(EscrowStateMachine(escrow.status), "open_dispute", "escrow")
        escrow.dispute_reason = reason
        await self._escrows.replace(escrow)
        await self._record(escrow, EventType.ESCROW_DISPUTED, old_status, actor, {
            "reason": reason,
        })
        logger.info("escrow.disputed", escrow_id=escrow_id)
        return escrow

    async def resolve_dispute(
        self,
        escrow_id: str,
        outcome: DisputeResolution,
        notes: str,
        resolved_by: str,
    ) -> Escrow:
        """disputed -> released (pay_seller) or refunded (refund_buyer, split).

        On settlement failure the escrow stays ``disputed``.
        """
        escrow = await self.get(escrow_id)
        old_status = escrow.status
        new_status = fire_event(
            EscrowStateMachine(escrow.status), _RESOLUTION_EVENTS[outcome], "escrow"
        )

        fees = fees_of(escrow)
        if outcome is DisputeResolution.PAY_SELLER:
            plan = PayoutPlan.release(fees)
        else:
            plan = PayoutPlan.refund(fees)

        reference = await self._settle(escrow, plan, f"resolve:{outcome.value}")

        now = datetime.now(UTC)
        escrow.status = new_status
        escrow.settlement_reference = reference
        escrow.resolution = outcome.value
        escrow.resolution_notes = notes
        escrow.resolved_by = resolved_by
        escrow.resolved_at = now
        if new_status == EscrowStatus.RELEASED:
            escrow.released_at = now
        elif new_status == EscrowStatus.REFUNDED:
            escrow.refunded_at = now
        await self._escrows.replace(escrow)

        await self._record(escrow, EventType.ESCROW_RESOLVED, old_status, resolved_by, {
            "resolution": outcome.value,
            "settlement_reference": reference,
            "buyer": plan.buyer,
            "seller": plan.seller,
            "platform": plan.platform,
        })
        logger.info(
            "escrow.dispute_resolved",
            escrow_id=escrow_id,
            resolution=outcome.value,
            reference=reference,
        )
        return escrow

    # ------------------------------------------------------------------
    # Auto-release
    # ------------------------------------------------------------------

    async def get_due_for_auto_release(self, now: datetime | None = None) -> list[Escrow]:
        """Claim and return funded, undisputed escrows whose deadline has passed.

        Each escrow is claimed with a conditional UPDATE on its version, so two
        overlapping sweeps never receive the same escrow while a claim is live.
        """
        now = now or datetime.now(UTC)
        claim_until = now + timedelta(seconds=self._settings.auto_release_claim_ttl_seconds)

        claimed: list[Escrow] = []
        for candidate in await self._escrows.find_due_for_auto_release(now):
            result = await self._session.execute(
                update(Escrow)
                .where(
                    Escrow.id == candidate.id,
                    Escrow.version == candidate.version,
                    Escrow.status == EscrowStatus.FUNDED.value,
                    or_(
                        Escrow.auto_release_claimed_until.is_(None),
                        Escrow.auto_release_claimed_until < now,
                    ),
                )
                .values(auto_release_claimed_until=claim_until, version=Escrow.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed.append(await self.get(candidate.id))
            else:
                logger.info("escrow.auto_release_claim_lost", escrow_id=candidate.id)

        if claimed:
            logger.info("escrow.auto_release_due", count=len(claimed))
        return claimed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _settle(self, escrow: Escrow, plan: PayoutPlan, operation: str) -> str:
        custody = self._settings.escrow_custody_wallet
        legs = [
            TransferLeg(custody, to_account, amount)
            for to_account, amount in (
                (escrow.buyer_wallet, plan.buyer),
                (escrow.seller_wallet, plan.seller),
                (self._settings.platform_wallet, plan.platform),
            )
            if amount > 0
        ]
        if plan.total != escrow.amount:
            logger.error(
                "escrow.payout_mismatch",
                escrow_id=escrow.id,
                amount=escrow.amount,
                payout=plan.total,
            )
            raise ConflictError(
                f"Payout for escrow {escrow.id} moves {plan.total} of {escrow.amount}",
                code="PAYOUT_MISMATCH",
            )
        key = f"{escrow.id}:{operation}"
        logger.info("escrow.settlement_requested", escrow_id=escrow.id, key=key, legs=len(legs))
        return await self._settlement.transfer(legs, idempotency_key=key)

    async def _record(
        self,
        escrow: Escrow,
        event_type: EventType,
        old_status: str | None,
        actor: str,
        metadata: dict | None = None,
    ) -> None:
        await self._events.record(
            entity_type=EntityType.ESCROW,
            entity_id=escrow.id,
            order_id=escrow.order_id,
            event_type=event_type,
            old_status=old_status,
            new_status=escrow.status,
            actor=actor,
            metadata=metadata,
        )
