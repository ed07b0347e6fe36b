"""Clinic ORM model."""

from __future__ import annotations

import uuid
from datetime import datetime, time, timezone
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import DateTime, Integer, String, Time
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinicq.models.base import Base
from clinicq.services.hours import OperatingHours

if TYPE_CHECKING:
    from clinicq.models.appointment import Appointment
else:  # pragma: no cover - typing runtime fallback
    Appointment = "Appointment"  # type: ignore[assignment]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClinicStatus(str, Enum):
    """Availability banner shown on the public profile."""

    AVAILABLE = "available"
    BUSY = "busy"
    CLOSED = "closed"


class Clinic(Base):
    """A tenant clinic and its scheduling configuration."""

    __tablename__ = "clinics"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    slug: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    doctor_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    specialization: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    mobile: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    morning_start: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    morning_end: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    evening_start: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    evening_end: Mapped[Optional[time]] = mapped_column(Time, nullable=True)
    slot_duration: Mapped[int] = mapped_column(Integer, default=15, nullable=False)

    consultation_fee: Mapped[int] = mapped_column(Integer, default=500, nullable=False)
    clinic_status: Mapped[ClinicStatus] = mapped_column(
        SAEnum(
            ClinicStatus,
            native_enum=False,
            length=16,
            values_callable=lambda members: [m.value for m in members],
        ),
        default=ClinicStatus.AVAILABLE,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )

    appointments: Mapped[List["Appointment"]] = relationship(
        back_populates="clinic",
    )

    def operating_hours(self) -> OperatingHours:
        """Return the clinic's windows as a validated-on-use value object."""

        return OperatingHours(
            morning_start=self.morning_start,
            morning_end=self.morning_end,
            evening_start=self.evening_start,
            evening_end=self.evening_end,
            slot_duration=self.slot_duration,
        )
