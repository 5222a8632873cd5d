"""LiteLLMArbitrationAdvisor — asks an LLM to review a dispute.

Arbitration flow:
    1. Receive the rendered case summary (see case_summary.py).
    2. Call the LLM via LiteLLM (Gemini, GPT-4o, Claude, ...), retrying
       transient failures with tenacity, the whole call bounded by
       arbitration_timeout_seconds.
    3. Parse ANALYSIS / RECOMMENDATION / CONFIDENCE out of the reply.

Parsing is forgiving: a missing recommendation becomes partial_refund and a
missing confidence becomes 70, which sits below the auto-resolve threshold,
so a sloppy reply can never trigger settlement on its own.
"""

from __future__ import annotations

import asyncio
import re

import litellm
from tenacity import retry, stop_after_attempt, wait_exponential

from agentic_marketplace.config import get_settings
from agentic_marketplace.domain.enums import AiRecommendation
from agentic_marketplace.domain.exceptions import ArbitrationError
from agentic_marketplace.domain.protocols import ArbitrationVerdict
from agentic_marketplace.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_RECOMMENDATION = AiRecommendation.PARTIAL_REFUND
DEFAULT_CONFIDENCE = 70

ARBITRATOR_SYSTEM_PROMPT = """You are an AI arbitrator for a freelance marketplace where AI agents sell services.

Your job is to objectively analyze a dispute between a buyer and a seller (an AI agent)
and provide a fair recommendation. Base your judgement only on the requirements and the
delivery shown to you. Be concise and follow the response format exactly.
"""

_ANALYSIS_RE = re.compile(
    r"ANALYSIS:\s*(.*?)(?=RECOMMENDATION:|CONFIDENCE:|$)",
    re.IGNORECASE | re.DOTALL,
)
_RECOMMENDATION_RE = re.compile(
    r"RECOMMENDATION:\s*\**\s*\[?\s*(REFUND_BUYER|PAY_SELLER|PARTIAL_REFUND)",
    re.IGNORECASE,
)
_CONFIDENCE_RE = re.compile(r"CONFIDENCE:\s*\**\s*\[?\s*(-?\d+)", re.IGNORECASE)


def parse_verdict(response: str) -> ArbitrationVerdict:
    """Extract analysis, recommendation and confidence from a free-form reply."""
    analysis_match = _ANALYSIS_RE.search(response)
    analysis = analysis_match.group(1).strip() if analysis_match else response.strip()
    if not analysis:
        analysis = response.strip()

    recommendation_match = _RECOMMENDATION_RE.search(response)
    recommendation = (
        AiRecommendation(recommendation_match.group(1).lower())
        if recommendation_match
        else DEFAULT_RECOMMENDATION
    )

    confidence_match = _CONFIDENCE_RE.search(response)
    confidence = int(confidence_match.group(1)) if confidence_match else DEFAULT_CONFIDENCE
    confidence = max(0, min(100, confidence))

    return ArbitrationVerdict(
        analysis=analysis,
        recommendation=recommendation,
        confidence=confidence,
        raw_response=response,
    )


class LiteLLMArbitrationAdvisor:
    """ArbitrationAdvisor backed by LiteLLM."""

    def __init__(
        self,
        model: str | None = None,
        fallback_models: list[str] | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        """Initialize with optional overrides (defaults come from config)."""
        self._model = model
        self._fallback_models = fallback_models
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout_seconds = timeout_seconds

    def _get_model_config(self) -> dict:
        """Resolve model configuration from overrides or settings."""
        settings = get_settings()
        return {
            "model": self._model or settings.litellm_model,
            "fallback_models": self._fallback_models or settings.litellm_fallback_model_list,
            "max_tokens": self._max_tokens or settings.litellm_max_tokens,
            "temperature": (
                self._temperature if self._temperature is not None else settings.litellm_temperature
            ),
            "timeout": (
                self._timeout_seconds
                if self._timeout_seconds is not None
                else settings.arbitration_timeout_seconds
            ),
        }

    async def arbitrate(self, case_summary: str) -> ArbitrationVerdict:
        """Review a case summary.

        Raises:
            ArbitrationError: The model failed, returned nothing, or timed out.
        """
        config = self._get_model_config()
        logger.info("arbitration.llm.start", model=config["model"], summary_chars=len(case_summary))

        try:
            response = await asyncio.wait_for(
                self._call_llm(case_summary),
                timeout=config["timeout"],
            )
        except TimeoutError as exc:
            logger.warning("arbitration.llm.timeout", timeout=config["timeout"])
            raise ArbitrationError(
                f"Arbitration timed out after {config['timeout']}s",
                timed_out=True,
            ) from exc
        except Exception as exc:
            logger.exception("arbitration.llm.error")
            raise ArbitrationError(f"Arbitration advisor failed: {exc}") from exc

        verdict = parse_verdict(response)
        logger.info(
            "arbitration.llm.result",
            recommendation=verdict.recommendation.value,
            confidence=verdict.confidence,
        )
        return verdict

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _call_llm(self, case_summary: str) -> str:
        """Call the LLM via LiteLLM with retry logic."""
        config = self._get_model_config()

        kwargs: dict = {}
        if config["fallback_models"]:
            kwargs["fallbacks"] = config["fallback_models"]

        response = await litellm.acompletion(
            model=config["model"],
            messages=[
                {"role": "system", "content": ARBITRATOR_SYSTEM_PROMPT},
                {"role": "user", "content": case_summary},
            ],
            max_tokens=config["max_tokens"],
            temperature=config["temperature"],
            **kwargs,
        )

        content = response.choices[0].message.content
        if not content:
            raise ValueError("LLM returned empty response")

        return content.strip()
