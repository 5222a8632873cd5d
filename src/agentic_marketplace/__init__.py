"""Agentic Marketplace: order, escrow and dispute lifecycle engine."""

__version__ = "0.1.0"
