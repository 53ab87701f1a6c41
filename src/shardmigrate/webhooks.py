"""
Operator-supplied HTTP callbacks.

The cutover lock and unlock, as well as the optional error callback, are
plain HTTP POST webhooks. The body is a JSON object whose ``Payload`` field is
the configured payload string; extra fields (such as the failing stage for the
error callback) are merged in next to it.

The lock webhook has a strong contract: it must not return a 2xx response
until every in-flight transaction on the source shard has finished and no
further writes can happen until the unlock webhook is called.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from shardmigrate.exceptions import WEBHOOK_RETRY_CONFIG, RetryConfig, WebhookError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WebhookSpec:
    """
    An HTTP callback target.

    Attributes:
        uri: URL to POST to.
        payload: Opaque string passed back to the operator's service.
    """

    uri: str
    payload: str = ""

    async def post(
        self,
        client: httpx.AsyncClient,
        extra: dict[str, Any] | None = None,
        *,
        retry_config: RetryConfig = WEBHOOK_RETRY_CONFIG,
    ) -> None:
        """
        POST the payload, retrying on transport errors and non-2xx replies.

        Args:
            client: Shared HTTP client.
            extra: Additional JSON fields to send next to ``Payload``.
            retry_config: Retry policy.

        Raises:
            WebhookError: If no attempt succeeded.
        """
        body: dict[str, Any] = {"Payload": self.payload}
        if extra:
            body.update(extra)

        last_error: WebhookError | None = None
        for attempt in range(retry_config.max_attempts):
            if attempt > 0:
                delay_ms = retry_config.get_delay_ms(attempt - 1)
                logger.debug(
                    "Retrying webhook %s (attempt %d/%d) in %.0fms",
                    self.uri,
                    attempt + 1,
                    retry_config.max_attempts,
                    delay_ms,
                )
                await asyncio.sleep(delay_ms / 1000)

            try:
                response = await client.post(self.uri, json=body)
            except httpx.HTTPError as e:
                last_error = WebhookError(self.uri, f"{type(e).__name__}: {e}")
                logger.warning("Webhook %s request failed: %s", self.uri, e)
                continue

            if response.is_success:
                return

            last_error = WebhookError(
                self.uri,
                f"unexpected status {response.status_code}",
                status_code=response.status_code,
            )
            logger.warning(
                "Webhook %s returned status %d",
                self.uri,
                response.status_code,
            )

        assert last_error is not None
        raise last_error

    def to_dict(self) -> dict[str, str]:
        return {"uri": self.uri, "payload": self.payload}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WebhookSpec:
        return cls(uri=data.get("uri", ""), payload=data.get("payload", ""))


__all__ = ["WebhookSpec"]
