"""Orchestration layer — multi-step transaction flows."""

from agentic_marketplace.orchestration.transaction_orchestrator import (
    SweepReport,
    TransactionOrchestrator,
    TransactionOutcome,
)

__all__ = ["SweepReport", "TransactionOrchestrator", "TransactionOutcome"]
