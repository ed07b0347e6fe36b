"""Event delivery is best-effort and never breaks the core."""

import json
import types
from datetime import date

import httpx
from redis.exceptions import ConnectionError as RedisConnectionError

from clinicq.models.appointment import BookingSource
from clinicq.services import notifications
from clinicq.services.allocator import book_appointment
from clinicq.services.appointments import AppointmentCreate, get_appointment
from clinicq.services.notifications import QueueNotifier, notifier
from notification_service.webhook_adapter import WebhookAdapter


def _adapter_with(handler) -> WebhookAdapter:
    adapter = WebhookAdapter(url="https://hooks.example.com/queue", timeout_seconds=1)
    adapter._http_client = lambda: httpx.Client(transport=httpx.MockTransport(handler))
    return adapter


def test_publish_goes_to_clinic_channel_and_webhook(monkeypatch) -> None:
    published = []
    delivered = []
    monkeypatch.setattr(notifications, "cache_publish", lambda channel, body: published.append((channel, body)) or 1)

    def handler(request: httpx.Request) -> httpx.Response:
        delivered.append((request.headers["X-Queue-Event"], json.loads(request.content)))
        return httpx.Response(204)

    queue_notifier = QueueNotifier(channel_prefix="test:events", webhook=_adapter_with(handler))
    queue_notifier.publish("appointment.created", {"clinic_id": "c1", "token_number": 7})

    (channel, body), = published
    assert channel == "test:events:c1"
    assert json.loads(body)["data"]["token_number"] == 7
    assert delivered[0][0] == "appointment.created"
    assert delivered[0][1]["event"] == "appointment.created"


def test_webhook_failure_is_reported_not_raised() -> None:
    adapter = _adapter_with(lambda request: httpx.Response(500, text="boom"))

    assert adapter.send("appointment.created", {"clinic_id": "c1"}) is False


def test_stub_webhook_accepts_everything() -> None:
    adapter = WebhookAdapter(url=None)

    assert adapter.use_stub
    assert adapter.send("appointment.created", {}) is True


def test_redis_outage_does_not_undo_booking(clinic, monkeypatch) -> None:
    def broken_publish(channel: str, body: str) -> int:
        raise RedisConnectionError("redis is down")

    monkeypatch.setattr(notifier, "publish", types.MethodType(QueueNotifier.publish, notifier))
    monkeypatch.setattr(notifications, "cache_publish", broken_publish)

    booked = book_appointment(
        clinic.id,
        AppointmentCreate(appointment_date=date(2024, 6, 1), patient_name="Asha"),
        source=BookingSource.ONLINE,
    )

    assert get_appointment(booked.id).token_number == 1
