"""Outbound confirmation webhooks, posted once an approval is committed."""

import logging
from typing import Any, Mapping, Optional

import httpx

from sentinel.config import WebhookConfig
from sentinel.errors import WebhookDeliveryError

logger = logging.getLogger(__name__)

SOURCE_HEADER = "x-sentinel-source"
MAX_ERROR_BODY_CHARS = 200


class WebhookClient:
    """POSTs JSON confirmations to the URL supplied by the agent.

    Args:
        config: Timeout and source header value.
        client: Optional shared ``httpx.AsyncClient``; a short-lived one is
            created per call when omitted.
    """

    def __init__(
        self, config: WebhookConfig, client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._config = config
        self._client = client

    async def post_confirmation(
        self,
        url: str,
        payload: Mapping[str, Any],
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Deliver ``payload``; raises WebhookDeliveryError on any failure."""
        request_headers = {
            "content-type": "application/json",
            SOURCE_HEADER: self._config.source_header,
            **(headers or {}),
        }
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=dict(payload), headers=request_headers,
                    timeout=self._config.timeout_sec,
                )
            else:
                async with httpx.AsyncClient(timeout=self._config.timeout_sec) as client:
                    response = await client.post(url, json=dict(payload), headers=request_headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise WebhookDeliveryError(f"Webhook transport error: {exc}") from exc

        if not response.is_success:
            body = response.text[:MAX_ERROR_BODY_CHARS]
            raise WebhookDeliveryError(
                f"Webhook failed ({response.status_code}): {body}",
                status_code=response.status_code,
            )
        logger.debug("Webhook delivered to %s (%d)", url, response.status_code)
