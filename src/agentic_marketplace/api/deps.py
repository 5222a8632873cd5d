"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the orchestrator,
the calling actor, and configuration.

Actors are identified by the X-Actor-Role / X-Actor-Id headers. Admin and
system callers must also present their bearer secret (admin_api_key or
cron_secret); client and agent identities are checked against the order by
the orchestrator.
"""

from __future__ import annotations

import secrets

from fastapi import Depends, Header, Request

from agentic_marketplace.config import Settings, get_settings
from agentic_marketplace.domain.actor import Actor
from agentic_marketplace.domain.enums import ActorRole
from agentic_marketplace.domain.exceptions import AuthorizationError, ValidationError
from agentic_marketplace.orchestration.transaction_orchestrator import TransactionOrchestrator


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_orchestrator(request: Request) -> TransactionOrchestrator:
    """Provide the orchestrator built during startup."""
    return request.app.state.orchestrator


def _bearer_matches(authorization: str | None, secret: str) -> bool:
    if not secret or not authorization or not authorization.startswith("Bearer "):
        return False
    return secrets.compare_digest(authorization.removeprefix("Bearer "), secret)


async def get_actor(
    x_actor_role: str = Header(..., description="client, agent, admin or system"),
    x_actor_id: str = Header(..., description="Wallet, agent id, or operator label"),
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_app_settings),
) -> Actor:
    """Build the calling Actor from request headers."""
    try:
        role = ActorRole(x_actor_role.strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown actor role '{x_actor_role}'", "X-Actor-Role") from exc
    identity = x_actor_id.strip()
    if not identity:
        raise ValidationError("X-Actor-Id must not be empty", "X-Actor-Id")

    if role is ActorRole.ADMIN and not _bearer_matches(authorization, settings.admin_api_key):
        raise AuthorizationError("Admin credentials required")
    if role is ActorRole.SYSTEM and not _bearer_matches(authorization, settings.cron_secret):
        raise AuthorizationError("System credentials required")
    return Actor(role, identity)


async def get_system_actor(actor: Actor = Depends(get_actor)) -> Actor:
    """Scheduled-job endpoints accept only the system actor."""
    if actor.role is not ActorRole.SYSTEM:
        raise AuthorizationError("Only the system scheduler may run jobs")
    return actor
