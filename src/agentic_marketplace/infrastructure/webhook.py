"""Webhook delivery to sellers.

Delivery flow:
    1. POST the JSON payload with X-Marketplace-Event and
       X-Marketplace-Delivery: <order id>-<attempt> headers.
    2. 2xx -> delivered.
    3. 4xx -> permanent failure, not retried.
    4. 5xx, timeouts, connection errors -> retried via tenacity, waiting
       1s then 5s between attempts (three attempts total).

Failures are reported in the WebhookResult, never raised: webhooks are
best-effort and must not disturb the order workflow.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from agentic_marketplace.domain.exceptions import WebhookDeliveryError
from agentic_marketplace.domain.protocols import WebhookResult
from agentic_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from tenacity import RetryCallState

    from agentic_marketplace.config import Settings

logger = get_logger(__name__)

EVENT_HEADER = "X-Marketplace-Event"
DELIVERY_HEADER = "X-Marketplace-Delivery"


class _RetryableStatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class WebhookNotifier:
    """NotificationSink backed by httpx with tenacity retries."""

    def __init__(
        self,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        retry_delays: list[float] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._max_attempts = max_attempts
        self._retry_delays = retry_delays if retry_delays is not None else [1.0, 5.0, 15.0]
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    @classmethod
    def from_settings(cls, settings: Settings) -> WebhookNotifier:
        return cls(
            timeout_seconds=settings.webhook_timeout_seconds,
            max_attempts=settings.webhook_max_attempts,
            retry_delays=settings.webhook_retry_delay_list,
        )

    def _wait(self, retry_state: RetryCallState) -> float:
        if not self._retry_delays:
            return 0.0
        index = min(retry_state.attempt_number - 1, len(self._retry_delays) - 1)
        return self._retry_delays[index]

    async def deliver(self, url: str, payload: dict, delivery_key_prefix: str) -> WebhookResult:
        delivery_ids: list[str] = []
        event_name = str(payload.get("event", "unknown"))

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=self._wait,
                retry=retry_if_exception_type((httpx.TransportError, _RetryableStatusError)),
                reraise=True,
            ):
                with attempt:
                    number = attempt.retry_state.attempt_number
                    delivery_id = f"{delivery_key_prefix}-{number}"
                    delivery_ids.append(delivery_id)
                    response = await self._client.post(
                        url,
                        json=payload,
                        headers={EVENT_HEADER: event_name, DELIVERY_HEADER: delivery_id},
                    )
                    if response.is_success:
                        logger.info(
                            "webhook.delivered",
                            url=url,
                            event=event_name,
                            attempt=number,
                            status_code=response.status_code,
                        )
                        return WebhookResult(
                            success=True,
                            attempts=number,
                            status_code=response.status_code,
                            delivery_ids=delivery_ids,
                        )
                    if not response.is_server_error:
                        raise WebhookDeliveryError(
                            f"Rejected with status {response.status_code}",
                            status_code=response.status_code,
                        )
                    logger.warning(
                        "webhook.attempt_failed",
                        url=url,
                        attempt=number,
                        status_code=response.status_code,
                    )
                    raise _RetryableStatusError(response.status_code)
        except WebhookDeliveryError as exc:
            logger.warning("webhook.rejected", url=url, status_code=exc.status_code)
            return WebhookResult(
                success=False,
                attempts=len(delivery_ids),
                status_code=exc.status_code,
                error=exc.message,
                delivery_ids=delivery_ids,
            )
        except _RetryableStatusError as exc:
            error = str(exc)
            status_code: int | None = exc.status_code
        except httpx.HTTPError as exc:
            error = str(exc) or type(exc).__name__
            status_code = None

        logger.error(
            "webhook.exhausted",
            url=url,
            attempts=len(delivery_ids),
            error=error,
        )
        return WebhookResult(
            success=False,
            attempts=len(delivery_ids),
            status_code=status_code,
            error=error,
            delivery_ids=delivery_ids,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
