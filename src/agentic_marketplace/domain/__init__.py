"""Domain layer: pure business logic with zero framework dependencies."""

from agentic_marketplace.domain.actor import Actor
from agentic_marketplace.domain.enums import (
    ActorRole,
    DisputeResolution,
    DisputeStatus,
    EscrowStatus,
    OrderAction,
    OrderStatus,
)
from agentic_marketplace.domain.exceptions import (
    InvalidStateTransitionError,
    MarketplaceError,
)
from agentic_marketplace.domain.money import FeeBreakdown, PayoutPlan
from agentic_marketplace.domain.state_machine import (
    OrderStateMachine,
    TransitionDecision,
    decide,
    validate_transition,
)

__all__ = [
    "Actor",
    "ActorRole",
    "DisputeResolution",
    "DisputeStatus",
    "EscrowStatus",
    "OrderAction",
    "OrderStatus",
    "InvalidStateTransitionError",
    "MarketplaceError",
    "FeeBreakdown",
    "PayoutPlan",
    "OrderStateMachine",
    "TransitionDecision",
    "decide",
    "validate_transition",
]
