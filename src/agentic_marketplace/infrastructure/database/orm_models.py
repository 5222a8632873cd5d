"""SQLAlchemy 2.0 ORM models for the Agentic Marketplace.

Tables:
    1. agents         — Sellers: payout wallet, webhook URL, lifetime stats.
    2. orders         — Purchases of a gig by a client wallet.
    3. deliveries     — Work delivered by the agent against an order.
    4. escrows        — Custody of an order's funds until release or refund.
    5. disputes       — Buyer complaints and their arbitration/resolution.
    6. side_effects   — Outbox of best-effort work (seller stats, webhooks).
    7. audit_events   — Append-only log of every status change.

Design decisions:
    - Escrow money is stored as BigInteger micro-USDC; order and dispute
      amounts as Numeric(18, 6) for display.
    - Every mutable record carries a `version` column used as the mapper's
      version_id_col: a write racing another writer raises StaleDataError
      instead of silently overwriting.
    - Timestamps are timezone-aware UTC on every backend (UTCDateTime).
    - JSON columns become JSONB on PostgreSQL.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from agentic_marketplace.domain.enums import (
    DisputeCategory,
    DisputeStatus,
    EscrowStatus,
    OrderStatus,
    SideEffectStatus,
)

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """DateTime that always round-trips as an aware UTC datetime.

    SQLite drops tzinfo on the way back; this re-attaches it.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in_values(column: str, enum_cls: type) -> str:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return f"{column} IN ({values})"


def new_order_id() -> str:
    return str(uuid.uuid4())


def new_escrow_id() -> str:
    return f"ESC-{uuid.uuid4().hex[:8].upper()}"


def new_dispute_id() -> str:
    return f"DSP-{uuid.uuid4().hex[:8].upper()}"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. agents
# ---------------------------------------------------------------------------
class Agent(Base):
    """A seller on the marketplace."""

    __tablename__ = "agents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    wallet_address: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Payout wallet for released escrows",
    )
    webhook_url: Mapped[str | None] = mapped_column(String(500), nullable=True, default=None)

    total_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earned_usdc: Mapped[Decimal] = mapped_column(
        Numeric(18, 6),
        nullable=False,
        default=Decimal("0"),
        comment="Lifetime gross order value of accepted orders",
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (CheckConstraint("total_jobs >= 0", name="ck_agent_jobs_non_negative"),)

    def __repr__(self) -> str:
        return f"<Agent id={self.id} jobs={self.total_jobs}>"


# ---------------------------------------------------------------------------
# 2. orders
# ---------------------------------------------------------------------------
class Order(Base):
    """A client's purchase of a gig from an agent."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_order_id)

    # --- Immutable after creation ---
    gig_id: Mapped[str] = mapped_column(String(64), nullable=False)
    gig_title: Mapped[str | None] = mapped_column(String(200), nullable=True, default=None)
    agent_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("agents.id"),
        nullable=False,
        comment="Seller",
    )
    client_wallet: Mapped[str] = mapped_column(String(64), nullable=False, comment="Buyer")
    amount_usdc: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)
    requirements: Mapped[dict] = mapped_column(
        JSONVariant,
        nullable=False,
        default=dict,
        comment="description, inputs, delivery_preferences, file_refs",
    )

    # --- Mutable ---
    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default=OrderStatus.PENDING.value,
        comment="Current lifecycle state (guarded by OrderStateMachine)",
    )
    escrow_id: Mapped[str | None] = mapped_column(String(16), nullable=True, default=None)
    payment_reference: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        default=None,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_values("status", OrderStatus), name="ck_order_valid_status"),
        CheckConstraint("amount_usdc > 0", name="ck_order_positive_amount"),
        Index("idx_order_status", "status"),
        Index("idx_order_agent", "agent_id"),
        Index("idx_order_client", "client_wallet"),
    )

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} amount={self.amount_usdc} USDC>"


# ---------------------------------------------------------------------------
# 3. deliveries
# ---------------------------------------------------------------------------
class Delivery(Base):
    """Work handed over by the agent. An order may have several (revisions)."""

    __tablename__ = "deliveries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_order_id)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False)
    delivery_type: Mapped[str] = mapped_column(String(10), nullable=False, default="text")
    content: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    url: Mapped[str | None] = mapped_column(String(2000), nullable=True, default=None)
    file_urls: Mapped[list | None] = mapped_column(JSONVariant, nullable=True, default=None)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    delivered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (Index("idx_delivery_order", "order_id"),)


# ---------------------------------------------------------------------------
# 4. escrows
# ---------------------------------------------------------------------------
class Escrow(Base):
    """Custody of one order's funds."""

    __tablename__ = "escrows"

    id: Mapped[str] = mapped_column(String(16), primary_key=True, default=new_escrow_id)
    order_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("orders.id"),
        nullable=False,
        unique=True,
    )
    buyer_wallet: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_wallet: Mapped[str] = mapped_column(String(64), nullable=False)

    # --- Financials (micro-USDC) ---
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    platform_fee_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        nullable=False,
        comment="Fee percent captured at creation",
    )
    platform_fee: Mapped[int] = mapped_column(BigInteger, nullable=False)
    seller_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=EscrowStatus.CREATED.value,
        comment="Current lifecycle state (guarded by EscrowStateMachine)",
    )

    # --- Timing ---
    funded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, default=None)
    auto_release_deadline: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        default=None,
    )
    auto_release_claimed_until: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        default=None,
        comment="Set by the sweep that is currently releasing this escrow",
    )
    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, default=None)
    refunded_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, default=None)

    # --- Dispute shadow ---
    dispute_reason: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    resolution: Mapped[str | None] = mapped_column(String(16), nullable=True, default=None)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    resolved_by: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, default=None)

    # --- Settlement proof ---
    funding_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    settlement_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_values("status", EscrowStatus), name="ck_escrow_valid_status"),
        CheckConstraint("amount > 0", name="ck_escrow_positive_amount"),
        CheckConstraint(
            "platform_fee + seller_amount = amount",
            name="ck_escrow_fee_split_exact",
        ),
        Index("idx_escrow_status_deadline", "status", "auto_release_deadline"),
    )

    def __repr__(self) -> str:
        return f"<Escrow id={self.id} status={self.status} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 5. disputes
# ---------------------------------------------------------------------------
class Dispute(Base):
    """A buyer's complaint against an order."""

    __tablename__ = "disputes"

    id: Mapped[str] = mapped_column(String(16), primary_key=True, default=new_dispute_id)
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("orders.id"), nullable=False)
    escrow_id: Mapped[str | None] = mapped_column(String(16), nullable=True, default=None)
    buyer_wallet: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_wallet: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_usdc: Mapped[Decimal] = mapped_column(Numeric(18, 6), nullable=False)

    category: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=DisputeCategory.OTHER.value,
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=DisputeStatus.OPEN.value,
        comment="Current lifecycle state (guarded by DisputeStateMachine)",
    )

    # --- Arbitration ---
    ai_analysis: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    ai_recommendation: Mapped[str | None] = mapped_column(String(16), nullable=True)
    ai_confidence: Mapped[int | None] = mapped_column(Integer, nullable=True, default=None)
    ai_arbitrated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Resolution ---
    resolution: Mapped[str | None] = mapped_column(String(16), nullable=True, default=None)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    resolved_by: Mapped[str | None] = mapped_column(String(128), nullable=True, default=None)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, default=None)
    auto_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_values("status", DisputeStatus), name="ck_dispute_valid_status"),
        CheckConstraint(_in_values("category", DisputeCategory), name="ck_dispute_category"),
        CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 100)",
            name="ck_dispute_confidence_bounds",
        ),
        Index("idx_dispute_order", "order_id"),
        Index("idx_dispute_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Dispute id={self.id} order={self.order_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 6. side_effects (outbox)
# ---------------------------------------------------------------------------
class SideEffect(Base):
    """Best-effort work queued in the same transaction as a state change.

    Unique per (order_id, kind), so seller stats for an order can be queued
    at most once no matter how many paths complete it.
    """

    __tablename__ = "side_effects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(String(36), nullable=False)
    kind: Mapped[str] = mapped_column(String(24), nullable=False)
    status: Mapped[str] = mapped_column(
        String(12),
        nullable=False,
        default=SideEffectStatus.PENDING.value,
    )
    payload: Mapped[dict] = mapped_column(JSONVariant, nullable=False, default=dict)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
        default=None,
        comment="Lease held by the worker currently delivering this entry",
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("order_id", "kind", name="uq_side_effect_order_kind"),
        CheckConstraint(_in_values("status", SideEffectStatus), name="ck_side_effect_status"),
        Index("idx_side_effect_status", "status"),
    )


# ---------------------------------------------------------------------------
# 7. audit_events
# ---------------------------------------------------------------------------
class AuditEvent(Base):
    """Immutable audit log entry. One row per status change of any entity."""

    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(16), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(36), nullable=True, default=None)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(24), nullable=True)
    new_status: Mapped[str] = mapped_column(String(24), nullable=False)
    actor: Mapped[str] = mapped_column(String(160), nullable=False, default="system:system")
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONVariant,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_order", "order_id"),
        Index("idx_audit_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent {self.entity_type}:{self.entity_id} {self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )


for _model in (Agent, Order, Escrow, Dispute):
    event.listen(_model, "before_update", _set_updated_at)
