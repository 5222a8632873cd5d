"""Outbox processing for best-effort side effects.

Side effects are queued in the ``side_effects`` table inside the same
transaction as the state change that triggers them, and worked off here:

    seller_stats  — bump the seller's job count and lifetime earnings. The
                    stats update and the ``done`` mark commit together, so an
                    order is counted exactly once.
    order_webhook — notify the seller of a new order. The entry is leased
                    (``claimed_until``) before delivery and delivered outside
                    any transaction; the notifier does its own retrying. A
                    lease left behind by a crashed worker expires and the
                    entry is picked up again, up to MAX_WEBHOOK_CLAIMS times.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from agentic_marketplace.domain.enums import SideEffectKind, SideEffectStatus
from agentic_marketplace.domain.exceptions import MarketplaceError, StaleRecordError
from agentic_marketplace.infrastructure.database.repositories import SideEffectRepository
from agentic_marketplace.logging_config import get_logger
from agentic_marketplace.services.order_registry import SellerRegistry

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from agentic_marketplace.domain.protocols import NotificationSink
    from agentic_marketplace.infrastructure.database.orm_models import Order, SideEffect

logger = get_logger(__name__)

ORDER_CREATED_EVENT = "order.created"
MAX_STATS_ATTEMPTS = 5
MAX_WEBHOOK_CLAIMS = 3
DEFAULT_CLAIM_TTL_SECONDS = 300


def build_order_created_payload(order: Order, webhook_url: str) -> dict:
    """Outbox payload for the new-order webhook."""
    requirements = order.requirements or {}
    return {
        "url": webhook_url,
        "body": {
            "event": ORDER_CREATED_EVENT,
            "timestamp": datetime.now(UTC).isoformat(),
            "data": {
                "order_id": order.id,
                "gig_id": order.gig_id,
                "gig_title": order.gig_title or "",
                "agent_id": order.agent_id,
                "client_wallet": order.client_wallet,
                "amount_usdc": str(order.amount_usdc),
                "requirements": {
                    "description": requirements.get("description", ""),
                    "inputs": requirements.get("inputs"),
                    "delivery_preferences": requirements.get("delivery_preferences"),
                },
                "payment_signature": order.payment_reference,
            },
        },
    }


def build_seller_stats_payload(order: Order) -> dict:
    return {"agent_id": order.agent_id, "amount_usdc": str(order.amount_usdc)}


@dataclass
class OutboxReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class OutboxProcessor:
    """Works off pending side effects, one transaction per entry."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationSink | None = None,
        claim_ttl_seconds: int = DEFAULT_CLAIM_TTL_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._claim_ttl = timedelta(seconds=claim_ttl_seconds)

    async def process_pending(self, limit: int = 100) -> OutboxReport:
        report = OutboxReport()
        async with self._session_factory() as session:
            pending = await SideEffectRepository(session).get_pending(datetime.now(UTC), limit)
            entries = [(entry.id, entry.kind) for entry in pending]

        for entry_id, kind in entries:
            report.processed += 1
            if kind == SideEffectKind.SELLER_STATS:
                outcome = await self._apply_seller_stats(entry_id)
            elif kind == SideEffectKind.ORDER_WEBHOOK:
                outcome = await self._deliver_webhook(entry_id)
            else:
                logger.warning("outbox.unknown_kind", side_effect_id=entry_id, kind=kind)
                outcome = None

            if outcome is None:
                report.skipped += 1
            elif outcome:
                report.succeeded += 1
            else:
                report.failed += 1
                report.errors.append(f"{kind}:{entry_id}")

        if entries:
            logger.info(
                "outbox.processed",
                processed=report.processed,
                succeeded=report.succeeded,
                failed=report.failed,
                skipped=report.skipped,
            )
        return report

    async def _apply_seller_stats(self, entry_id: int) -> bool | None:
        try:
            async with self._session_factory.begin() as session:
                repo = SideEffectRepository(session)
                entry = await repo.get_by_id(entry_id)
                if entry is None or entry.status != SideEffectStatus.PENDING:
                    return None
                await SellerRegistry(session).record_completed_job(
                    entry.payload["agent_id"],
                    Decimal(entry.payload["amount_usdc"]),
                )
                self._mark(entry, SideEffectStatus.DONE)
                await repo.replace(entry)
        except StaleRecordError:
            logger.info("outbox.seller_stats_claimed_elsewhere", side_effect_id=entry_id)
            return None
        except MarketplaceError as exc:
            logger.warning(
                "outbox.seller_stats_failed",
                side_effect_id=entry_id,
                error=exc.message,
            )
            await self._record_failure(entry_id, exc.message)
            return False
        return True

    async def _deliver_webhook(self, entry_id: int) -> bool | None:
        if self._notifier is None:
            return None

        try:
            async with self._session_factory.begin() as session:
                repo = SideEffectRepository(session)
                entry = await repo.get_by_id(entry_id)
                now = datetime.now(UTC)
                if entry is None or entry.status != SideEffectStatus.PENDING:
                    return None
                if entry.claimed_until is not None and entry.claimed_until >= now:
                    return None
                if entry.attempts >= MAX_WEBHOOK_CLAIMS:
                    self._mark(entry, SideEffectStatus.FAILED, "Delivery lease expired too often")
                    entry.claimed_until = None
                    await repo.replace(entry)
                    logger.warning("outbox.webhook_abandoned", side_effect_id=entry_id)
                    return False
                if entry.claimed_until is not None:
                    logger.info("outbox.webhook_reclaimed", side_effect_id=entry_id)
                entry.attempts += 1
                entry.claimed_until = now + self._claim_ttl
                await repo.replace(entry)
                order_id = entry.order_id
                payload = dict(entry.payload)
        except StaleRecordError:
            logger.info("outbox.webhook_claimed_elsewhere", side_effect_id=entry_id)
            return None

        result = await self._notifier.deliver(payload["url"], payload["body"], order_id)

        async with self._session_factory.begin() as session:
            repo = SideEffectRepository(session)
            entry = await repo.get_by_id(entry_id)
            if result.success:
                self._mark(entry, SideEffectStatus.DONE)
            else:
                self._mark(entry, SideEffectStatus.FAILED, result.error)
            entry.attempts = max(entry.attempts, result.attempts)
            entry.claimed_until = None
            await repo.replace(entry)

        if not result.success:
            logger.warning(
                "outbox.webhook_failed",
                side_effect_id=entry_id,
                order_id=order_id,
                error=result.error,
            )
        return result.success

    async def _record_failure(self, entry_id: int, error: str) -> None:
        async with self._session_factory.begin() as session:
            repo = SideEffectRepository(session)
            entry = await repo.get_by_id(entry_id)
            if entry is None:
                return
            entry.attempts += 1
            entry.last_error = error
            if entry.attempts >= MAX_STATS_ATTEMPTS:
                self._mark(entry, SideEffectStatus.FAILED, error)
            await repo.replace(entry)

    @staticmethod
    def _mark(entry: SideEffect, status: SideEffectStatus, error: str | None = None) -> None:
        entry.status = status.value
        entry.last_error = error
        entry.processed_at = datetime.now(UTC)
