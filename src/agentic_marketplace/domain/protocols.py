"""Collaborator protocols.

Defines the interfaces the engine calls out to: the settlement service that
moves funds, the arbitration advisor that reviews disputes, and the
notification sink that delivers webhooks. These are Protocols (structural
subtyping), so concrete clients just need to match the shape.

The domain layer has ZERO imports from httpx, LiteLLM, or any external service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from agentic_marketplace.domain.enums import AiRecommendation


@dataclass(frozen=True)
class TransferLeg:
    """One movement out of the custody account.

    Attributes:
        from_account: Custody wallet holding the escrowed funds.
        to_account: Recipient wallet (seller, platform, or buyer).
        amount: Micro-USDC.
    """

    from_account: str
    to_account: str
    amount: int


@runtime_checkable
class SettlementService(Protocol):
    """Moves funds out of custody.

    Concrete implementations:
        - infrastructure/settlement.py HttpSettlementClient
        - infrastructure/settlement.py SimulatedSettlementService
    """

    async def transfer(self, legs: list[TransferLeg], idempotency_key: str) -> str:
        """Commit every leg together and return one settlement reference.

        Raises:
            InsufficientFundsError: Custody cannot cover the batch.
            SettlementError: The batch was rejected or could not be confirmed.
        """
        ...


@dataclass(frozen=True)
class ArbitrationVerdict:
    """Structured output of the arbitration advisor.

    Attributes:
        analysis: Free-text reasoning.
        recommendation: refund_buyer, pay_seller, or partial_refund.
        confidence: 0-100.
        raw_response: Unparsed model output, kept for the audit log.
    """

    analysis: str
    recommendation: AiRecommendation
    confidence: int
    raw_response: str = ""


@runtime_checkable
class ArbitrationAdvisor(Protocol):
    async def arbitrate(self, case_summary: str) -> ArbitrationVerdict:
        """Review a dispute case summary.

        Raises:
            ArbitrationError: The advisor failed or returned nothing usable.
        """
        ...


@dataclass(frozen=True)
class WebhookResult:
    success: bool
    attempts: int
    status_code: int | None = None
    error: str | None = None
    delivery_ids: list[str] = field(default_factory=list)


@runtime_checkable
class NotificationSink(Protocol):
    async def deliver(self, url: str, payload: dict, delivery_key_prefix: str) -> WebhookResult:
        """Deliver ``payload`` to ``url``; never raises for HTTP failures."""
        ...
