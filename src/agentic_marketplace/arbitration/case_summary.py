"""Case summary sent to the arbitration advisor.

The summary is plain markdown: dispute, order, requirements, delivery, and a
fixed task section telling the model to answer with ANALYSIS /
RECOMMENDATION / CONFIDENCE blocks that llm_advisor.parse_verdict reads back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from agentic_marketplace.infrastructure.database.orm_models import (
        Agent,
        Delivery,
        Dispute,
        Order,
    )

DELIVERED_CONTENT_LIMIT = 3000

TASK_SECTION = """## Your Task
Analyze this dispute objectively and provide:
1. A brief analysis of the situation (2-4 paragraphs)
2. Your recommendation: REFUND_BUYER, PAY_SELLER, or PARTIAL_REFUND
3. Your confidence level (0-100%)

Consider:
- Did the seller deliver what was requested?
- Is the buyer's complaint valid based on the requirements?
- Was there a clear misunderstanding vs. failure to deliver?
- Is there evidence of good faith effort by the seller?

**Respond in this exact format:**
ANALYSIS:
[Your analysis here]

RECOMMENDATION: [REFUND_BUYER|PAY_SELLER|PARTIAL_REFUND]

CONFIDENCE: [0-100]"""


@dataclass(frozen=True)
class DeliverySnapshot:
    delivery_type: str
    delivered_at: datetime
    content: str | None = None
    url: str | None = None
    file_urls: list[str] = field(default_factory=list)
    notes: str | None = None


@dataclass(frozen=True)
class ArbitrationCase:
    """Everything the advisor gets to see about a dispute."""

    dispute_id: str
    category: str
    reason: str
    amount_usdc: str
    order_created_at: datetime
    requirements_description: str
    details: str | None = None
    requirements_inputs: str | None = None
    delivery_preferences: str | None = None
    gig_title: str | None = None
    agent_name: str | None = None
    delivery: DeliverySnapshot | None = None

    @classmethod
    def from_records(
        cls,
        dispute: Dispute,
        order: Order,
        delivery: Delivery | None = None,
        agent: Agent | None = None,
    ) -> ArbitrationCase:
        requirements = order.requirements or {}
        snapshot = None
        if delivery is not None:
            snapshot = DeliverySnapshot(
                delivery_type=delivery.delivery_type,
                delivered_at=delivery.delivered_at,
                content=delivery.content,
                url=delivery.url,
                file_urls=list(delivery.file_urls or []),
                notes=delivery.notes,
            )
        return cls(
            dispute_id=dispute.id,
            category=dispute.category,
            reason=dispute.reason,
            details=dispute.details,
            amount_usdc=f"${order.amount_usdc} USDC",
            order_created_at=order.created_at,
            requirements_description=requirements.get("description", ""),
            requirements_inputs=requirements.get("inputs"),
            delivery_preferences=requirements.get("delivery_preferences"),
            gig_title=order.gig_title,
            agent_name=agent.name if agent is not None and agent.name else None,
            delivery=snapshot,
        )

    def render(self) -> str:
        lines = [
            "## Dispute Information",
            f"- **Dispute ID:** {self.dispute_id}",
            f"- **Category:** {self.category}",
            f"- **Buyer's Complaint:** {self.reason}",
        ]
        if self.details:
            lines.append(f"- **Additional Details:** {self.details}")

        lines += [
            "",
            "## Order Information",
            f"- **Amount:** {self.amount_usdc}",
            f"- **Ordered:** {self.order_created_at.date().isoformat()}",
        ]
        if self.gig_title:
            lines.append(f"- **Gig:** {self.gig_title}")
        if self.agent_name:
            lines.append(f"- **Agent:** {self.agent_name}")

        lines += [
            "",
            "## Order Requirements (what the buyer asked for)",
            "**Description:**",
            self.requirements_description,
        ]
        if self.requirements_inputs:
            lines += ["", "**Inputs provided:**", self.requirements_inputs]
        if self.delivery_preferences:
            lines += ["", "**Delivery preferences:**", self.delivery_preferences]

        lines += ["", "## Delivery Status"]
        lines += self._delivery_lines()
        lines += ["", TASK_SECTION]
        return "\n".join(lines)

    def _delivery_lines(self) -> list[str]:
        delivery = self.delivery
        if delivery is None:
            return ["**No delivery has been submitted yet.**"]

        lines = [
            f"**Delivery was submitted** on {delivery.delivered_at.date().isoformat()}",
            "",
            f"**Delivery Type:** {delivery.delivery_type}",
        ]
        if delivery.content:
            text = delivery.content[:DELIVERED_CONTENT_LIMIT]
            if len(delivery.content) > DELIVERED_CONTENT_LIMIT:
                text += "\n... (truncated)"
            lines += ["", "**Delivered Content:**", "```", text, "```"]
        if delivery.url:
            lines += ["", f"**Delivery URL:** {delivery.url}"]
        if delivery.file_urls:
            lines += ["", f"**Files delivered:** {len(delivery.file_urls)} file(s)"]
        if delivery.notes:
            lines += ["", f"**Agent's Notes:** {delivery.notes}"]
        return lines
