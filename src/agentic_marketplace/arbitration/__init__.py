"""Dispute arbitration: case summaries and the LLM-backed advisor."""

from agentic_marketplace.arbitration.case_summary import ArbitrationCase
from agentic_marketplace.arbitration.llm_advisor import LiteLLMArbitrationAdvisor, parse_verdict

__all__ = ["ArbitrationCase", "LiteLLMArbitrationAdvisor", "parse_verdict"]
