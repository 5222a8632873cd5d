"""Domain enumerations for the Agentic Marketplace.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class OrderStatus(enum.StrEnum):
    """Lifecycle states of an order.

    Transitions are enforced by the OrderStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    PAID = "paid"
    IN_PROGRESS = "in_progress"
    DELIVERED = "delivered"
    REVISION_REQUESTED = "revision_requested"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        return _ORDER_STATUS_LABELS[self]


_ORDER_STATUS_LABELS = {
    OrderStatus.PENDING: "Pending Payment",
    OrderStatus.PAID: "Paid - Awaiting Start",
    OrderStatus.IN_PROGRESS: "In Progress",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.REVISION_REQUESTED: "Revision Requested",
    OrderStatus.COMPLETED: "Completed",
    OrderStatus.DISPUTED: "Disputed",
    OrderStatus.CANCELLED: "Cancelled",
}


class OrderAction(enum.StrEnum):
    """Actions that move an order between states."""

    PAY = "pay"
    START_WORK = "start_work"
    DELIVER = "deliver"
    REQUEST_REVISION = "request_revision"
    ACCEPT = "accept"
    DISPUTE = "dispute"
    CANCEL = "cancel"
    RESOLVE = "resolve"


class ActorRole(enum.StrEnum):
    """Who is asking for a transition."""

    CLIENT = "client"  # buyer
    AGENT = "agent"  # seller
    SYSTEM = "system"  # scheduled jobs, payment intake, auto-resolution
    ADMIN = "admin"


class EscrowStatus(enum.StrEnum):
    """Lifecycle states of an escrow.

    CANCELLED is only reachable from CREATED, when an unpaid order is
    cancelled and the escrow never held funds.
    """

    CREATED = "created"
    FUNDED = "funded"
    RELEASED = "released"
    REFUNDED = "refunded"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"


class DisputeStatus(enum.StrEnum):
    """Lifecycle states of a dispute."""

    OPEN = "open"
    UNDER_REVIEW = "under_review"
    AI_ARBITRATED = "ai_arbitrated"  # recommendation stored, awaiting a decision
    AUTO_RESOLVED = "auto_resolved"  # claimed for automatic resolution
    RESOLVED_BUYER = "resolved_buyer"
    RESOLVED_SELLER = "resolved_seller"
    RESOLVED_SPLIT = "resolved_split"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_DISPUTE_STATUSES

    @property
    def label(self) -> str:
        return _DISPUTE_STATUS_LABELS[self]


TERMINAL_DISPUTE_STATUSES = frozenset(
    {
        DisputeStatus.RESOLVED_BUYER,
        DisputeStatus.RESOLVED_SELLER,
        DisputeStatus.RESOLVED_SPLIT,
        DisputeStatus.CANCELLED,
    }
)

ACTIVE_DISPUTE_STATUSES = frozenset(
    {
        DisputeStatus.OPEN,
        DisputeStatus.UNDER_REVIEW,
        DisputeStatus.AI_ARBITRATED,
        DisputeStatus.AUTO_RESOLVED,
    }
)

_DISPUTE_STATUS_LABELS = {
    DisputeStatus.OPEN: "Open",
    DisputeStatus.UNDER_REVIEW: "Under Review",
    DisputeStatus.AI_ARBITRATED: "AI Reviewed",
    DisputeStatus.AUTO_RESOLVED: "AI Auto-Resolved",
    DisputeStatus.RESOLVED_BUYER: "Refunded",
    DisputeStatus.RESOLVED_SELLER: "Paid to Seller",
    DisputeStatus.RESOLVED_SPLIT: "Split - Buyer Refunded",
    DisputeStatus.CANCELLED: "Cancelled",
}


class DisputeCategory(enum.StrEnum):
    QUALITY = "quality"
    INCOMPLETE = "incomplete"
    TIMING = "timing"
    COMMUNICATION = "communication"
    MISMATCH = "mismatch"
    OTHER = "other"

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]


_CATEGORY_LABELS = {
    DisputeCategory.QUALITY: "Quality Issues",
    DisputeCategory.INCOMPLETE: "Incomplete Delivery",
    DisputeCategory.TIMING: "Missed Deadline",
    DisputeCategory.COMMUNICATION: "Communication Problems",
    DisputeCategory.MISMATCH: "Not as Described",
    DisputeCategory.OTHER: "Other",
}


class DisputeResolution(enum.StrEnum):
    """Final outcome of a dispute, applied to both escrow and order."""

    REFUND_BUYER = "refund_buyer"
    PAY_SELLER = "pay_seller"
    SPLIT = "split"

    @property
    def dispute_status(self) -> DisputeStatus:
        return {
            DisputeResolution.REFUND_BUYER: DisputeStatus.RESOLVED_BUYER,
            DisputeResolution.PAY_SELLER: DisputeStatus.RESOLVED_SELLER,
            DisputeResolution.SPLIT: DisputeStatus.RESOLVED_SPLIT,
        }[self]


class AiRecommendation(enum.StrEnum):
    """What the arbitration advisor suggests."""

    REFUND_BUYER = "refund_buyer"
    PAY_SELLER = "pay_seller"
    PARTIAL_REFUND = "partial_refund"

    def to_resolution(self) -> DisputeResolution:
        if self is AiRecommendation.PARTIAL_REFUND:
            return DisputeResolution.SPLIT
        return DisputeResolution(self.value)


class DeliveryType(enum.StrEnum):
    TEXT = "text"
    FILE = "file"
    URL = "url"
    MIXED = "mixed"


class SideEffectKind(enum.StrEnum):
    """Best-effort work queued in the outbox alongside a state change."""

    SELLER_STATS = "seller_stats"
    ORDER_WEBHOOK = "order_webhook"


class SideEffectStatus(enum.StrEnum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class EntityType(enum.StrEnum):
    ORDER = "order"
    ESCROW = "escrow"
    DISPUTE = "dispute"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the audit_events table.

    Every status change MUST produce exactly one event.
    """

    # Order lifecycle
    ORDER_CREATED = "order_created"
    ORDER_TRANSITIONED = "order_transitioned"
    DELIVERY_SUBMITTED = "delivery_submitted"

    # Escrow lifecycle
    ESCROW_CREATED = "escrow_created"
    ESCROW_FUNDED = "escrow_funded"
    ESCROW_RELEASED = "escrow_released"
    ESCROW_REFUNDED = "escrow_refunded"
    ESCROW_DISPUTED = "escrow_disputed"
    ESCROW_RESOLVED = "escrow_resolved"
    ESCROW_CANCELLED = "escrow_cancelled"

    # Dispute lifecycle
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_REVIEW_STARTED = "dispute_review_started"
    DISPUTE_ARBITRATED = "dispute_arbitrated"
    DISPUTE_AUTO_RESOLVED = "dispute_auto_resolved"
    DISPUTE_RESOLVED = "dispute_resolved"
    DISPUTE_CANCELLED = "dispute_cancelled"
