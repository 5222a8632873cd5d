"""Application services — one per owned entity, plus the outbox processor."""

from agentic_marketplace.services.dispute_engine import DisputeEngine
from agentic_marketplace.services.escrow_ledger import EscrowLedger
from agentic_marketplace.services.order_registry import OrderRegistry, SellerRegistry
from agentic_marketplace.services.outbox import OutboxProcessor

__all__ = [
    "DisputeEngine",
    "EscrowLedger",
    "OrderRegistry",
    "OutboxProcessor",
    "SellerRegistry",
]
