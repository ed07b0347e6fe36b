"""Outbound webhook adapter for queue events."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

LOGGER = logging.getLogger(__name__)


class WebhookAdapter:
    """POSTs queue events to an HTTP endpoint (n8n, Zapier, an SMS relay...)."""

    def __init__(
        self,
        *,
        url: Optional[str],
        timeout_seconds: float = 3.0,
        use_stub: bool = False,
    ) -> None:
        self.url = url
        self.use_stub = use_stub or not url
        self._timeout = timeout_seconds

    def send(self, event_type: str, payload: Dict[str, Any]) -> bool:
        """Deliver one event. Returns False instead of raising on failure."""

        if self.use_stub:
            LOGGER.debug(
                "webhook stub: event=%s body=%s",
                event_type,
                json.dumps(payload, default=str),
            )
            return True

        try:
            with self._http_client() as client:
                response = client.post(
                    self.url,
                    json=payload,
                    headers={"X-Queue-Event": event_type},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            LOGGER.error(
                "webhook delivery failed: event=%s status=%s body=%s",
                event_type,
                exc.response.status_code,
                exc.response.text,
            )
            return False
        except httpx.HTTPError as exc:
            LOGGER.error("webhook delivery failed: event=%s error=%s", event_type, exc)
            return False

        LOGGER.debug("webhook delivered: event=%s status=%s", event_type, response.status_code)
        return True

    def _http_client(self) -> httpx.Client:
        return httpx.Client(
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
        )
