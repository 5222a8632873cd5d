"""Lifecycle guards for orders, escrows and disputes.

Uses python-statemachine to enforce legal transitions at the domain level.
No matter what the orchestrator or the API does, an illegal transition
(e.g. pending -> completed) raises TransitionNotAllowed, which the services
translate into InvalidStateTransitionError.

Order transition table (role gate in ORDER_ACTION_ROLES):
    pending            -> paid                (pay)               system
    paid               -> in_progress         (start_work)        agent
    in_progress        -> delivered           (deliver)           agent
    delivered          -> revision_requested  (request_revision)  client
    revision_requested -> delivered           (deliver)           agent
    delivered          -> completed           (accept)            client
    delivered          -> disputed            (dispute)           client
    revision_requested -> disputed            (dispute)           client
    pending, paid      -> cancelled           (cancel)            client, system
    disputed           -> completed           (resolve: pay_seller)          admin, system
    disputed           -> cancelled           (resolve: refund_buyer, split) admin, system
"""

from __future__ import annotations

from dataclasses import dataclass

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from agentic_marketplace.domain.enums import (
    ActorRole,
    DisputeResolution,
    OrderAction,
    OrderStatus,
)
from agentic_marketplace.domain.exceptions import (
    InvalidStateTransitionError,
    RoleNotPermittedError,
    ValidationError,
)


def _check_status(machine_cls: type[StateMachine], current_status: str) -> None:
    """Reject status strings the machine does not know."""
    valid_values = {s.value for s in machine_cls.states}
    if current_status not in valid_values:
        valid = ", ".join(sorted(valid_values))
        raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")


class OrderStateMachine(StateMachine):
    """State machine that guards the order lifecycle.

    Usage:
        sm = OrderStateMachine(current_status="delivered")
        sm.accept()
        sm.status  # "completed"
    """

    PENDING = State("Pending", value="pending", initial=True)
    PAID = State("Paid", value="paid")
    IN_PROGRESS = State("In progress", value="in_progress")
    DELIVERED = State("Delivered", value="delivered")
    REVISION_REQUESTED = State("Revision requested", value="revision_requested")
    DISPUTED = State("Disputed", value="disputed")
    COMPLETED = State("Completed", value="completed", final=True)
    CANCELLED = State("Cancelled", value="cancelled", final=True)

    pay = PENDING.to(PAID)
    start_work = PAID.to(IN_PROGRESS)
    deliver = IN_PROGRESS.to(DELIVERED) | REVISION_REQUESTED.to(DELIVERED)
    request_revision = DELIVERED.to(REVISION_REQUESTED)
    accept = DELIVERED.to(COMPLETED)
    dispute = DELIVERED.to(DISPUTED) | REVISION_REQUESTED.to(DISPUTED)
    cancel = PENDING.to(CANCELLED) | PAID.to(CANCELLED)
    resolve = DISPUTED.to(COMPLETED, cond="settles_to_seller") | DISPUTED.to(
        CANCELLED, unless="settles_to_seller"
    )

    def __init__(self, current_status: str = "pending") -> None:
        _check_status(type(self), current_status)
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        return str(self.current_state.value)

    def settles_to_seller(self, resolution: DisputeResolution | None = None) -> bool:
        """Only pay_seller completes the order; refund_buyer and split cancel it."""
        return resolution == DisputeResolution.PAY_SELLER


ORDER_ACTION_ROLES: dict[OrderAction, frozenset[ActorRole]] = {
    OrderAction.PAY: frozenset({ActorRole.SYSTEM}),
    OrderAction.START_WORK: frozenset({ActorRole.AGENT}),
    OrderAction.DELIVER: frozenset({ActorRole.AGENT}),
    OrderAction.REQUEST_REVISION: frozenset({ActorRole.CLIENT}),
    OrderAction.ACCEPT: frozenset({ActorRole.CLIENT}),
    OrderAction.DISPUTE: frozenset({ActorRole.CLIENT}),
    OrderAction.CANCEL: frozenset({ActorRole.CLIENT, ActorRole.SYSTEM}),
    OrderAction.RESOLVE: frozenset({ActorRole.ADMIN, ActorRole.SYSTEM}),
}


@dataclass(frozen=True)
class TransitionDecision:
    """Result of asking whether an order action is allowed."""

    allowed: bool
    next_status: OrderStatus | None = None
    reason: str | None = None
    role_rejected: bool = False


def _fire(current_status: str, action: str, resolution: DisputeResolution | None) -> str | None:
    sm = OrderStateMachine(current_status=current_status)
    try:
        sm.send(action, resolution=resolution)
    except TransitionNotAllowed:
        return None
    return sm.status


def decide(
    current_status: OrderStatus | str,
    action: OrderAction | str,
    role: ActorRole | str,
    resolution: DisputeResolution | str | None = None,
) -> TransitionDecision:
    """Decide whether ``role`` may apply ``action`` to an order in ``current_status``.

    Pure and deterministic: builds a throwaway state machine, never touches
    storage. The role check runs after the structural check so that the
    rejection names the status when the pair does not exist at all.
    """
    status = OrderStatus(current_status)
    try:
        action = OrderAction(action)
    except ValueError:
        return TransitionDecision(allowed=False, reason=f"Unknown action '{action}'")
    role = ActorRole(role)

    if action is OrderAction.RESOLVE and resolution is None:
        return TransitionDecision(allowed=False, reason="Resolve requires a resolution")
    resolution = DisputeResolution(resolution) if resolution is not None else None

    next_status = _fire(status.value, action.value, resolution)
    if next_status is None:
        return TransitionDecision(
            allowed=False,
            reason=f"Cannot {action.value} an order in status '{status.value}'",
        )

    if role not in ORDER_ACTION_ROLES[action]:
        return TransitionDecision(
            allowed=False,
            reason=f"Role '{role.value}' cannot perform '{action.value}'",
            role_rejected=True,
        )

    return TransitionDecision(allowed=True, next_status=OrderStatus(next_status))


def validate_transition(
    current_status: OrderStatus | str,
    action: OrderAction | str,
    role: ActorRole | str,
    resolution: DisputeResolution | str | None = None,
) -> OrderStatus:
    """Like decide(), but returns the next status or raises.

    Raises:
        InvalidStateTransitionError: The action is not allowed from this status.
        RoleNotPermittedError: The action exists here but not for this role.
        ValidationError: resolve without a resolution.
    """
    decision = decide(current_status, action, role, resolution)
    if decision.allowed and decision.next_status is not None:
        return decision.next_status
    if decision.role_rejected:
        raise RoleNotPermittedError(role=str(role), action=str(action))
    if str(action) == OrderAction.RESOLVE and resolution is None:
        raise ValidationError(decision.reason or "Resolve requires a resolution", "resolution")
    raise InvalidStateTransitionError(current_state=str(current_status), action=str(action))


def available_actions(
    current_status: OrderStatus | str, role: ActorRole | str
) -> list[OrderAction]:
    """Actions ``role`` can take on an order in ``current_status``."""
    actions = []
    for action in OrderAction:
        resolution = DisputeResolution.PAY_SELLER if action is OrderAction.RESOLVE else None
        if decide(current_status, action, role, resolution).allowed:
            actions.append(action)
    return actions


class EscrowStateMachine(StateMachine):
    """State machine that guards the escrow lifecycle.

    Transition table:
        created  -> funded     (fund)
        created  -> cancelled  (void)
        funded   -> released   (release)
        funded   -> refunded   (refund)
        funded   -> disputed   (open_dispute)
        disputed -> released   (resolve_for_seller)
        disputed -> refunded   (resolve_for_buyer)
    """

    CREATED = State("Created", value="created", initial=True)
    FUNDED = State("Funded", value="funded")
    DISPUTED = State("Disputed", value="disputed")
    RELEASED = State("Released", value="released", final=True)
    REFUNDED = State("Refunded", value="refunded", final=True)
    CANCELLED = State("Cancelled", value="cancelled", final=True)

    fund = CREATED.to(FUNDED)
    void = CREATED.to(CANCELLED)
    release = FUNDED.to(RELEASED)
    refund = FUNDED.to(REFUNDED)
    open_dispute = FUNDED.to(DISPUTED)
    resolve_for_seller = DISPUTED.to(RELEASED)
    resolve_for_buyer = DISPUTED.to(REFUNDED)

    def __init__(self, current_status: str = "created") -> None:
        _check_status(type(self), current_status)
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        return str(self.current_state.value)


class DisputeStateMachine(StateMachine):
    """State machine that guards the dispute lifecycle.

    Transition table:
        open                                             -> under_review     (start_review)
        open, under_review                               -> ai_arbitrated    (record_arbitration)
        ai_arbitrated                                    -> auto_resolved    (claim_auto_resolution)
        open, under_review, ai_arbitrated, auto_resolved -> resolved_buyer   (resolve_for_buyer)
        open, under_review, ai_arbitrated, auto_resolved -> resolved_seller  (resolve_for_seller)
        open, under_review, ai_arbitrated, auto_resolved -> resolved_split   (resolve_split)
        open, under_review                               -> cancelled        (withdraw)
    """

    OPEN = State("Open", value="open", initial=True)
    UNDER_REVIEW = State("Under review", value="under_review")
    AI_ARBITRATED = State("AI arbitrated", value="ai_arbitrated")
    AUTO_RESOLVED = State("Auto resolved", value="auto_resolved")
    RESOLVED_BUYER = State("Resolved for buyer", value="resolved_buyer", final=True)
    RESOLVED_SELLER = State("Resolved for seller", value="resolved_seller", final=True)
    RESOLVED_SPLIT = State("Resolved split", value="resolved_split", final=True)
    CANCELLED = State("Cancelled", value="cancelled", final=True)

    start_review = OPEN.to(UNDER_REVIEW)
    record_arbitration = OPEN.to(AI_ARBITRATED) | UNDER_REVIEW.to(AI_ARBITRATED)
    claim_auto_resolution = AI_ARBITRATED.to(AUTO_RESOLVED)
    resolve_for_buyer = (
        OPEN.to(RESOLVED_BUYER)
        | UNDER_REVIEW.to(RESOLVED_BUYER)
        | AI_ARBITRATED.to(RESOLVED_BUYER)
        | AUTO_RESOLVED.to(RESOLVED_BUYER)
    )
    resolve_for_seller = (
        OPEN.to(RESOLVED_SELLER)
        | UNDER_REVIEW.to(RESOLVED_SELLER)
        | AI_ARBITRATED.to(RESOLVED_SELLER)
        | AUTO_RESOLVED.to(RESOLVED_SELLER)
    )
    resolve_split = (
        OPEN.to(RESOLVED_SPLIT)
        | UNDER_REVIEW.to(RESOLVED_SPLIT)
        | AI_ARBITRATED.to(RESOLVED_SPLIT)
        | AUTO_RESOLVED.to(RESOLVED_SPLIT)
    )
    withdraw = OPEN.to(CANCELLED) | UNDER_REVIEW.to(CANCELLED)

    def __init__(self, current_status: str = "open") -> None:
        _check_status(type(self), current_status)
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        return str(self.current_state.value)


def fire_event(machine: StateMachine, event_name: str, entity: str) -> str:
    """Fire ``event_name`` on ``machine`` and return the new status value.

    Raises:
        InvalidStateTransitionError: If the event is not allowed from the current state.
    """
    previous = str(machine.current_state.value)
    try:
        machine.send(event_name)
    except TransitionNotAllowed as exc:
        raise InvalidStateTransitionError(
            current_state=previous,
            action=event_name,
            entity=entity,
        ) from exc
    return str(machine.current_state.value)
