"""Order Registry — persistence of orders, deliveries and sellers.

Owns every write to the orders, deliveries and agents tables. Status changes
are checked against the status the caller decided on (``expected_status``),
and the row version guards against a concurrent writer slipping in between.
Outbox entries are written in the same transaction as the status change they
belong to.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from agentic_marketplace.domain.enums import (
    DeliveryType,
    EntityType,
    EventType,
    OrderStatus,
    SideEffectKind,
)
from agentic_marketplace.domain.exceptions import (
    ConflictError,
    OrderNotFoundError,
    SellerNotFoundError,
    ValidationError,
)
from agentic_marketplace.domain.money import from_minor_units, to_minor_units
from agentic_marketplace.infrastructure.database.orm_models import Agent, Delivery, Order
from agentic_marketplace.infrastructure.database.repositories import (
    AgentRepository,
    DeliveryRepository,
    EventRepository,
    OrderRepository,
    SideEffectRepository,
)
from agentic_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from agentic_marketplace.domain.actor import Actor
    from agentic_marketplace.infrastructure.database.orm_models import SideEffect

logger = get_logger(__name__)


class OrderRegistry:
    """Reads and writes orders and their deliveries."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._orders = OrderRepository(session)
        self._deliveries = DeliveryRepository(session)
        self._side_effects = SideEffectRepository(session)
        self._events = EventRepository(session)

    async def get(self, order_id: str) -> Order:
        order = await self._orders.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def find_by(self, **filters: object) -> list[Order]:
        return await self._orders.find_by(**filters)

    async def create(
        self,
        gig_id: str,
        agent_id: str,
        client_wallet: str,
        amount_usdc: Decimal | str,
        requirements: dict,
        actor: Actor,
        gig_title: str | None = None,
        payment_reference: str | None = None,
    ) -> Order:
        """Create an order; it starts ``paid`` when a payment reference is supplied."""
        if not (requirements or {}).get("description", "").strip():
            raise ValidationError("Order requirements need a description", "requirements")
        amount = from_minor_units(to_minor_units(amount_usdc))
        status = OrderStatus.PAID if payment_reference else OrderStatus.PENDING

        order = await self._orders.create(
            Order(
                gig_id=gig_id,
                gig_title=gig_title,
                agent_id=agent_id,
                client_wallet=client_wallet,
                amount_usdc=amount,
                requirements=requirements,
                status=status.value,
                payment_reference=payment_reference,
            )
        )
        await self._events.record(
            entity_type=EntityType.ORDER,
            entity_id=order.id,
            order_id=order.id,
            event_type=EventType.ORDER_CREATED,
            old_status=None,
            new_status=status,
            actor=str(actor),
            metadata={"amount_usdc": str(amount), "gig_id": gig_id},
        )
        logger.info("order.created", order_id=order.id, status=status.value, amount=str(amount))
        return order

    async def transition(
        self,
        order_id: str,
        new_status: OrderStatus,
        expected_status: OrderStatus | frozenset[OrderStatus],
        actor: Actor,
        metadata: dict | None = None,
        payment_reference: str | None = None,
    ) -> Order:
        """Move an order to ``new_status`` if it is still in ``expected_status``.

        Raises:
            ConflictError: The order moved on since the caller decided.
            StaleRecordError: Another writer updated the row concurrently.
        """
        order = await self.get(order_id)
        expected = (
            expected_status if isinstance(expected_status, frozenset) else {expected_status}
        )
        if order.status not in expected:
            raise ConflictError(
                f"Order {order_id} is '{order.status}', expected "
                f"{' or '.join(sorted(str(s) for s in expected))}",
                code="ORDER_STATUS_CHANGED",
            )

        old_status = order.status
        order.status = new_status.value
        if payment_reference is not None:
            order.payment_reference = payment_reference
        await self._orders.replace(order)
        await self._events.record(
            entity_type=EntityType.ORDER,
            entity_id=order.id,
            order_id=order.id,
            event_type=EventType.ORDER_TRANSITIONED,
            old_status=old_status,
            new_status=new_status,
            actor=str(actor),
            metadata=metadata,
        )
        logger.info(
            "order.transitioned",
            order_id=order_id,
            old_status=old_status,
            new_status=new_status.value,
            actor=str(actor),
        )
        return order

    async def attach_escrow(self, order_id: str, escrow_id: str) -> Order:
        """Link an escrow. Set at most once, never cleared."""
        order = await self.get(order_id)
        if order.escrow_id == escrow_id:
            return order
        if order.escrow_id is not None:
            raise ConflictError(
                f"Order {order_id} is already linked to escrow {order.escrow_id}",
                code="ESCROW_ALREADY_LINKED",
            )
        order.escrow_id = escrow_id
        return await self._orders.replace(order)

    async def add_delivery(
        self,
        order_id: str,
        delivery_type: DeliveryType,
        content: str | None = None,
        url: str | None = None,
        file_urls: list[str] | None = None,
        notes: str | None = None,
        actor: Actor | None = None,
    ) -> Delivery:
        if not (content or url or file_urls):
            raise ValidationError("A delivery needs content, a URL or files", "delivery")
        delivery = await self._deliveries.create(
            Delivery(
                order_id=order_id,
                delivery_type=delivery_type.value,
                content=content,
                url=url,
                file_urls=file_urls,
                notes=notes,
            )
        )
        await self._events.record(
            entity_type=EntityType.ORDER,
            entity_id=order_id,
            order_id=order_id,
            event_type=EventType.DELIVERY_SUBMITTED,
            old_status=None,
            new_status=OrderStatus.DELIVERED,
            actor=str(actor) if actor is not None else "system:system",
            metadata={"delivery_id": delivery.id, "delivery_type": delivery_type.value},
        )
        logger.info("order.delivery_added", order_id=order_id, delivery_id=delivery.id)
        return delivery

    async def latest_delivery(self, order_id: str) -> Delivery | None:
        return await self._deliveries.get_latest_for_order(order_id)

    async def enqueue_side_effect(
        self, order_id: str, kind: SideEffectKind, payload: dict
    ) -> SideEffect:
        return await self._side_effects.enqueue(order_id, kind, payload)


class SellerRegistry:
    """Seller lookup and lifetime stats."""

    def __init__(self, session: AsyncSession) -> None:
        self._agents = AgentRepository(session)

    async def get(self, agent_id: str) -> Agent:
        agent = await self._agents.get_by_id(agent_id)
        if agent is None:
            raise SellerNotFoundError(agent_id)
        return agent

    async def register(
        self,
        agent_id: str,
        wallet_address: str,
        name: str = "",
        webhook_url: str | None = None,
    ) -> Agent:
        agent = await self._agents.create(
            Agent(id=agent_id, name=name, wallet_address=wallet_address, webhook_url=webhook_url)
        )
        logger.info("seller.registered", agent_id=agent_id)
        return agent

    async def record_completed_job(self, agent_id: str, amount_usdc: Decimal) -> Agent:
        agent = await self.get(agent_id)
        agent.total_jobs += 1
        agent.total_earned_usdc = Decimal(agent.total_earned_usdc) + Decimal(amount_usdc)
        await self._agents.replace(agent)
        logger.info(
            "seller.stats_updated",
            agent_id=agent_id,
            total_jobs=agent.total_jobs,
            total_earned_usdc=str(agent.total_earned_usdc),
        )
        return agent
