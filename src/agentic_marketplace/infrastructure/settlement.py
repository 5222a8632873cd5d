"""Settlement clients: move USDC out of the escrow custody account.

Two implementations of the SettlementService protocol:
    - HttpSettlementClient: talks to the settlement gateway over HTTP.
    - SimulatedSettlementService: fake transaction references for development
      and tests, with an optional custody balance to exercise the
      insufficient-funds path.

Every batch carries an idempotency key. Replaying a key returns the original
reference instead of moving funds again.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

import httpx

from agentic_marketplace.domain.exceptions import InsufficientFundsError, SettlementError
from agentic_marketplace.domain.money import from_minor_units
from agentic_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from agentic_marketplace.config import Settings
    from agentic_marketplace.domain.protocols import SettlementService, TransferLeg

logger = get_logger(__name__)


def _legs_payload(legs: list[TransferLeg]) -> list[dict[str, Any]]:
    return [
        {
            "from": leg.from_account,
            "to": leg.to_account,
            "amount": str(from_minor_units(leg.amount)),
        }
        for leg in legs
    ]


class HttpSettlementClient:
    """Client for the settlement gateway.

    POST /transfers commits all legs of a batch atomically. Responses:
        200/201 -> {"reference": "0x..."}
        402     -> insufficient custody balance
        anything else, or a transport failure -> SettlementError
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 30,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def transfer(self, legs: list[TransferLeg], idempotency_key: str) -> str:
        total = sum(leg.amount for leg in legs)
        try:
            response = await self._client.post(
                "/transfers",
                json={"legs": _legs_payload(legs), "idempotency_key": idempotency_key},
                headers={"Idempotency-Key": idempotency_key},
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "settlement.transport_error",
                error=str(exc),
                base_url=self._base_url,
                idempotency_key=idempotency_key,
            )
            raise SettlementError(f"Settlement gateway request failed: {exc}") from exc

        if response.status_code in (200, 201):
            reference = _safe_json(response).get("reference")
            if not reference:
                logger.warning(
                    "settlement.unreadable_response",
                    status_code=response.status_code,
                    body=response.text[:200],
                    idempotency_key=idempotency_key,
                )
                raise SettlementError("Settlement gateway returned no reference")
            logger.info(
                "settlement.transferred",
                reference=reference,
                legs=len(legs),
                total=str(from_minor_units(total)),
            )
            return str(reference)

        if response.status_code == 402:
            body = _safe_json(response)
            raise InsufficientFundsError(
                required=str(from_minor_units(total)),
                available=body.get("available"),
            )

        body = _safe_json(response)
        logger.warning(
            "settlement.rejected",
            status_code=response.status_code,
            body=body,
            idempotency_key=idempotency_key,
        )
        raise SettlementError(
            body.get("message")
            or f"Settlement gateway returned HTTP {response.status_code}"
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _safe_json(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class SimulatedSettlementService:
    """In-process settlement that never touches a chain."""

    def __init__(self, custody_balance: int | None = None) -> None:
        """
        Args:
            custody_balance: Micro-USDC available in custody, or None for unlimited.
        """
        self.custody_balance = custody_balance
        self.transfers: list[tuple[str, list[TransferLeg], str]] = []
        self._by_key: dict[str, str] = {}

    async def transfer(self, legs: list[TransferLeg], idempotency_key: str) -> str:
        if idempotency_key in self._by_key:
            logger.info("settlement.replayed", idempotency_key=idempotency_key, simulated=True)
            return self._by_key[idempotency_key]

        total = sum(leg.amount for leg in legs)
        if self.custody_balance is not None:
            if total > self.custody_balance:
                raise InsufficientFundsError(
                    required=str(from_minor_units(total)),
                    available=str(from_minor_units(self.custody_balance)),
                )
            self.custody_balance -= total

        reference = "0x" + uuid.uuid4().hex + uuid.uuid4().hex
        self._by_key[idempotency_key] = reference
        self.transfers.append((idempotency_key, list(legs), reference))
        logger.info(
            "settlement.transferred",
            reference=reference,
            legs=len(legs),
            total=str(from_minor_units(total)),
            simulated=True,
        )
        return reference


def build_settlement_service(settings: Settings) -> SettlementService:
    if settings.settlement_simulate:
        return SimulatedSettlementService()
    return HttpSettlementClient(
        base_url=settings.settlement_api_url,
        api_key=settings.settlement_api_key,
        timeout_seconds=settings.settlement_timeout_seconds,
    )
