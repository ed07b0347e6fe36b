"""Shared fixtures: a throwaway SQLite database and an event recorder."""

import os
from datetime import date, time
from typing import Any, Dict, List, Tuple

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./.pytest-clinicq.db")
os.environ.setdefault("NOTIFY_USE_STUB", "true")

from clinicq.services import db  # noqa: E402
from clinicq.services.clinics import ClinicCreate, ClinicRead, create_clinic  # noqa: E402
from clinicq.services.notifications import notifier  # noqa: E402

QUEUE_DAY = date(2024, 6, 1)


@pytest.fixture
def anyio_backend() -> str:
    """The async tests drive the app with asyncio primitives (asyncio.gather)."""

    return "asyncio"


@pytest.fixture(autouse=True)
def database(tmp_path):
    """Fresh file-backed database per test; threads share it like workers would."""

    db.configure(f"sqlite:///{tmp_path / 'queue.db'}", lock_timeout_seconds=15)
    db.init_db()
    yield db.engine
    db.engine.dispose()


@pytest.fixture(autouse=True)
def events(monkeypatch) -> List[Tuple[str, Dict[str, Any]]]:
    """Capture published events instead of talking to Redis."""

    recorded: List[Tuple[str, Dict[str, Any]]] = []

    def fake_publish(event_type: str, payload: Dict[str, Any]) -> None:
        recorded.append((event_type, payload))

    monkeypatch.setattr(notifier, "publish", fake_publish)
    return recorded


@pytest.fixture
def clinic() -> ClinicRead:
    return create_clinic(
        ClinicCreate(
            slug="acme",
            name="Acme Clinic",
            doctor_name="Dr. Rao",
            morning_start=time(9, 0),
            morning_end=time(12, 0),
            evening_start=time(18, 0),
            evening_end=time(20, 0),
            slot_duration=15,
            consultation_fee=400,
        )
    )


@pytest.fixture
def other_clinic() -> ClinicRead:
    return create_clinic(ClinicCreate(slug="beta", name="Beta Clinic"))
