"""Webhook notifier — posts objective events to an external URL."""

import logging
from typing import Optional

import httpx

from app.analytics.objectives import ObjectiveEvent

logger = logging.getLogger("ascendant.notify")


class WebhookNotifier:
    """Delivers ``ObjectiveEvent`` payloads by HTTP POST.

    Args:
        url: Target URL.  ``None`` turns the notifier into a no-op.
    """

    def __init__(self, url: Optional[str]) -> None:
        self._url = url

    @property
    def enabled(self) -> bool:
        return bool(self._url)

    async def send(self, event: ObjectiveEvent) -> bool:
        """Post one event.  Returns ``True`` on a 2xx response.

        Delivery failures are logged, never raised.
        """
        if not self._url:
            return False
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self._url,
                    json=event.to_payload(),
                    timeout=10.0,
                )
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Webhook %s for account %s failed: %s",
                event.event_type, event.account_id, exc,
            )
            return False
        logger.info("Webhook triggered: %s (%s)", event.event_type, event.account_id)
        return True
