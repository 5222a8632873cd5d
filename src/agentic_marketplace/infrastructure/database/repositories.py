"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a narrow interface to
the service layer: get-by-id, find-by-equality (a list/tuple/set value means
"any of these"), create, and replace. They accept an AsyncSession and never
manage their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.orm.exc import StaleDataError

from agentic_marketplace.domain.enums import (
    ACTIVE_DISPUTE_STATUSES,
    EscrowStatus,
    SideEffectStatus,
)
from agentic_marketplace.domain.exceptions import StaleRecordError
from agentic_marketplace.infrastructure.database.orm_models import (
    Agent,
    AuditEvent,
    Base,
    Delivery,
    Dispute,
    Escrow,
    Order,
    SideEffect,
)

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from agentic_marketplace.domain.enums import EntityType, EventType, SideEffectKind

ModelT = TypeVar("ModelT", bound=Base)


class _Repository(Generic[ModelT]):
    model: type[ModelT]
    entity_name: str = "Record"

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, record_id: str | int) -> ModelT | None:
        """Fetch a record by primary key, bypassing the identity map."""
        result = await self._session.execute(
            select(self.model)
            .where(self.model.id == record_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by(self, **filters: Any) -> list[ModelT]:
        """Fetch records matching every filter, oldest first.

        A list, tuple, set or frozenset value matches any of its members.
        """
        stmt = select(self.model)
        for field, value in filters.items():
            column = getattr(self.model, field)
            if isinstance(value, (list, tuple, set, frozenset)):
                stmt = stmt.where(column.in_([str(v) for v in value]))
            elif value is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == value)
        if hasattr(self.model, "created_at"):
            stmt = stmt.order_by(self.model.created_at.asc())
        result = await self._session.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def create(self, record: ModelT) -> ModelT:
        """Insert a new record."""
        self._session.add(record)
        await self._session.flush()
        return record

    async def replace(self, record: ModelT) -> ModelT:
        """Write back a modified record.

        Raises:
            StaleRecordError: Another writer updated the row since it was read.
        """
        try:
            await self._session.flush()
        except StaleDataError as exc:
            raise StaleRecordError(self.entity_name, str(record.id)) from exc
        return record


class AgentRepository(_Repository[Agent]):
    model = Agent
    entity_name = "Agent"


class OrderRepository(_Repository[Order]):
    model = Order
    entity_name = "Order"


class DeliveryRepository(_Repository[Delivery]):
    model = Delivery
    entity_name = "Delivery"

    async def get_latest_for_order(self, order_id: str) -> Delivery | None:
        result = await self._session.execute(
            select(Delivery)
            .where(Delivery.order_id == order_id)
            .order_by(Delivery.delivered_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


class EscrowRepository(_Repository[Escrow]):
    model = Escrow
    entity_name = "Escrow"

    async def find_due_for_auto_release(self, now: datetime) -> list[Escrow]:
        """Funded, undisputed escrows past their deadline and not claimed by a live sweep."""
        result = await self._session.execute(
            select(Escrow)
            .where(
                Escrow.status == EscrowStatus.FUNDED.value,
                Escrow.dispute_reason.is_(None),
                Escrow.auto_release_deadline.is_not(None),
                Escrow.auto_release_deadline <= now,
                or_(
                    Escrow.auto_release_claimed_until.is_(None),
                    Escrow.auto_release_claimed_until < now,
                ),
            )
            .order_by(Escrow.auto_release_deadline.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())


class DisputeRepository(_Repository[Dispute]):
    model = Dispute
    entity_name = "Dispute"

    async def find_active_for_order(self, order_id: str) -> list[Dispute]:
        return await self.find_by(order_id=order_id, status=ACTIVE_DISPUTE_STATUSES)


class SideEffectRepository(_Repository[SideEffect]):
    model = SideEffect
    entity_name = "SideEffect"

    async def enqueue(self, order_id: str, kind: SideEffectKind, payload: dict) -> SideEffect:
        """Queue a side effect unless one of this kind already exists for the order."""
        existing = await self.find_by(order_id=order_id, kind=kind.value)
        if existing:
            return existing[0]
        return await self.create(SideEffect(order_id=order_id, kind=kind.value, payload=payload))

    async def get_pending(self, now: datetime, limit: int = 100) -> list[SideEffect]:
        """Pending entries not leased by a live worker, oldest first."""
        result = await self._session.execute(
            select(SideEffect)
            .where(
                SideEffect.status == SideEffectStatus.PENDING.value,
                or_(SideEffect.claimed_until.is_(None), SideEffect.claimed_until < now),
            )
            .order_by(SideEffect.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        entity_type: EntityType,
        entity_id: str,
        event_type: EventType,
        old_status: str | None,
        new_status: str,
        actor: str = "system:system",
        order_id: str | None = None,
        metadata: dict | None = None,
    ) -> AuditEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = AuditEvent(
            entity_type=entity_type.value,
            entity_id=entity_id,
            order_id=order_id,
            event_type=event_type.value,
            old_status=str(old_status) if old_status is not None else None,
            new_status=str(new_status),
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_for_order(self, order_id: str) -> list[AuditEvent]:
        """Every event touching an order, its escrow or its disputes, in order."""
        result = await self._session.execute(
            select(AuditEvent)
            .where(AuditEvent.order_id == order_id)
            .order_by(AuditEvent.id.asc())
        )
        return list(result.scalars().all())
