"""The caller of a state-changing operation."""

from __future__ import annotations

from dataclasses import dataclass

from agentic_marketplace.domain.enums import ActorRole


@dataclass(frozen=True)
class Actor:
    """A role plus the identity claimed for it.

    Clients are identified by wallet address, agents by agent id. Admin and
    system actors carry a free-form label that ends up in ``resolved_by`` and
    the audit log.
    """

    role: ActorRole
    identity: str

    @classmethod
    def client(cls, wallet: str) -> Actor:
        return cls(ActorRole.CLIENT, wallet)

    @classmethod
    def agent(cls, agent_id: str) -> Actor:
        return cls(ActorRole.AGENT, agent_id)

    @classmethod
    def admin(cls, name: str = "admin") -> Actor:
        return cls(ActorRole.ADMIN, name)

    @classmethod
    def system(cls, name: str = "system") -> Actor:
        return cls(ActorRole.SYSTEM, name)

    def __str__(self) -> str:
        return f"{self.role.value}:{self.identity}"
