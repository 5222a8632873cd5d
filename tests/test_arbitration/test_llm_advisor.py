"""Unit tests for the LiteLLMArbitrationAdvisor.

Uses mocked LiteLLM responses so no real LLM API is called.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from agentic_marketplace.arbitration.llm_advisor import (
    ARBITRATOR_SYSTEM_PROMPT,
    LiteLLMArbitrationAdvisor,
)
from agentic_marketplace.domain.enums import AiRecommendation
from agentic_marketplace.domain.exceptions import ArbitrationError

SUMMARY = "## Dispute Information\n- **Category:** quality"


def _mock_llm_response(content: str) -> MagicMock:
    """Create a mock LiteLLM completion response."""
    mock_resp = MagicMock()
    mock_resp.choices = [MagicMock()]
    mock_resp.choices[0].message.content = content
    return mock_resp


class TestArbitrate:
    @pytest.mark.asyncio
    async def test_verdict_parsed(self) -> None:
        advisor = LiteLLMArbitrationAdvisor(model="gpt-4o")
        reply = "ANALYSIS:\nDelivery matches.\n\nRECOMMENDATION: PAY_SELLER\n\nCONFIDENCE: 91"

        with patch("agentic_marketplace.arbitration.llm_advisor.litellm") as mock_litellm:
            mock_litellm.acompletion = AsyncMock(return_value=_mock_llm_response(reply))
            verdict = await advisor.arbitrate(SUMMARY)

        assert verdict.recommendation is AiRecommendation.PAY_SELLER
        assert verdict.confidence == 91

        kwargs = mock_litellm.acompletion.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["messages"][0] == {"role": "system", "content": ARBITRATOR_SYSTEM_PROMPT}
        assert kwargs["messages"][1]["content"] == SUMMARY

    @pytest.mark.asyncio
    async def test_advisor_failure_raises(self) -> None:
        advisor = LiteLLMArbitrationAdvisor()

        with patch.object(
            LiteLLMArbitrationAdvisor,
            "_call_llm",
            AsyncMock(side_effect=Exception("API rate limit exceeded")),
        ):
            with pytest.raises(ArbitrationError) as exc_info:
                await advisor.arbitrate(SUMMARY)

        assert exc_info.value.code == "ARBITRATION_ERROR"
        assert "rate limit" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        advisor = LiteLLMArbitrationAdvisor(timeout_seconds=0.01)

        async def slow_call(_summary: str) -> str:
            await asyncio.sleep(1)
            return "RECOMMENDATION: PAY_SELLER\nCONFIDENCE: 99"

        with patch.object(advisor, "_call_llm", side_effect=slow_call):
            with pytest.raises(ArbitrationError) as exc_info:
                await advisor.arbitrate(SUMMARY)

        assert exc_info.value.timed_out is True
        assert exc_info.value.code == "ARBITRATION_TIMEOUT"

    @pytest.mark.asyncio
    async def test_empty_reply_is_an_error(self) -> None:
        advisor = LiteLLMArbitrationAdvisor()

        with patch.object(
            LiteLLMArbitrationAdvisor,
            "_call_llm",
            AsyncMock(side_effect=ValueError("LLM returned empty response")),
        ):
            with pytest.raises(ArbitrationError):
                await advisor.arbitrate(SUMMARY)
