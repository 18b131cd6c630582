"""Notifier: Best-effort operations webhook."""

from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Posts cycle summaries to an operations webhook.

    Delivery failures are logged and never raised: losing a notification must
    not fail a monitor cycle.

    :ivar url: Webhook URL; None disables notifications.
    :ivar timeout: Request timeout in seconds.
    """

    def __init__(self, url: str | None, client: httpx.AsyncClient | None = None, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def send(self, payload: dict) -> bool:
        """POST a JSON payload.

        :param payload: Webhook body.
        :returns: True if the webhook answered with a 2xx status.
        """
        if not self.url:
            return False

        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(self.url, json=payload, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.error(f"[MONITOR] Failed to send alert webhook: {e}")
            return False

        if not response.is_success:
            logger.error(f"[MONITOR] Webhook responded with status {response.status_code}")
            return False

        e2e_status = (payload.get("e2e") or {}).get("status", "n/a")
        logger.info(f"[ALERT] webhook dispatched (status={response.status_code}, e2e={e2e_status})")
        return True
