"""Best-effort fan-out of queue events.

Events go out after the owning transaction has committed. Nothing here may
raise into the caller: a failed delivery is logged and dropped.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from redis.exceptions import RedisError

from clinicq.services.cache import cache_publish
from clinicq.utils.config import get_settings
from notification_service.webhook_adapter import WebhookAdapter

if TYPE_CHECKING:
    from clinicq.services.appointments import AppointmentRead

LOGGER = logging.getLogger(__name__)


class QueueNotifier:
    """Publishes appointment events to Redis and an optional webhook."""

    def __init__(self, *, channel_prefix: str, webhook: WebhookAdapter) -> None:
        self.channel_prefix = channel_prefix
        self.webhook = webhook

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        message = {
            "event": event_type,
            "sent_at": datetime.now(timezone.utc).isoformat(),
            "data": payload,
        }
        body = json.dumps(message, default=str)
        channel = f"{self.channel_prefix}:{payload.get('clinic_id', 'unknown')}"

        try:
            cache_publish(channel, body)
        except RedisError as exc:
            LOGGER.error("Event publish failed: channel=%s event=%s error=%s", channel, event_type, exc)

        try:
            self.webhook.send(event_type, message)
        except Exception as exc:  # pragma: no cover - defensive
            LOGGER.error("Webhook adapter raised: event=%s error=%s", event_type, exc)

    def appointment_created(self, appointment: "AppointmentRead") -> None:
        self.publish("appointment.created", appointment.model_dump(mode="json"))

    def status_changed(
        self,
        appointment: "AppointmentRead",
        previous_status: Optional[str],
    ) -> None:
        payload = appointment.model_dump(mode="json")
        payload["previous_status"] = previous_status
        self.publish("appointment.status_changed", payload)

    def appointment_deleted(self, appointment: "AppointmentRead") -> None:
        self.publish("appointment.deleted", appointment.model_dump(mode="json"))

    def payment_recorded(self, appointment: "AppointmentRead") -> None:
        self.publish("payment.recorded", appointment.model_dump(mode="json"))


settings = get_settings()

notifier = QueueNotifier(
    channel_prefix=settings.events_channel_prefix,
    webhook=WebhookAdapter(
        url=settings.notify_webhook_url,
        timeout_seconds=settings.notify_timeout_seconds,
        use_stub=settings.notify_use_stub,
    ),
)
