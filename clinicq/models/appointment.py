"""Appointment model definition."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from clinicq.models.base import Base

if TYPE_CHECKING:
    from clinicq.models.clinic import Clinic
else:  # pragma: no cover - typing runtime fallback
    Clinic = "Clinic"  # type: ignore[assignment]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _values(members):
    return [m.value for m in members]


class AppointmentStatus(str, Enum):
    """Lifecycle states of an appointment.

    ``booked`` and ``confirmed`` are the same "waiting" state; the booking
    channel decides which label is stored.
    """

    BOOKED = "booked"
    CONFIRMED = "confirmed"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_waiting(self) -> bool:
        return self in WAITING_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


WAITING_STATUSES = frozenset({AppointmentStatus.BOOKED, AppointmentStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED})


class BookingSource(str, Enum):
    ONLINE = "online"
    MANUAL = "manual"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class PaymentMethod(str, Enum):
    CASH = "cash"
    UPI = "upi"


class Appointment(Base):
    """A patient's place in a clinic's queue for one day."""

    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint(
            "clinic_id",
            "appointment_date",
            "token_number",
            name="uq_appointments_scope_token",
        ),
        # At most one ongoing appointment per (clinic, date).
        Index(
            "uq_appointments_scope_ongoing",
            "clinic_id",
            "appointment_date",
            unique=True,
            postgresql_where=text("status = 'ongoing'"),
            sqlite_where=text("status = 'ongoing'"),
        ),
        Index("idx_appointments_scope_status", "clinic_id", "appointment_date", "status"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )
    tracking_code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    clinic_id: Mapped[str] = mapped_column(
        ForeignKey("clinics.id"),
        nullable=False,
    )
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    token_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[AppointmentStatus] = mapped_column(
        SAEnum(
            AppointmentStatus,
            native_enum=False,
            length=16,
            values_callable=_values,
        ),
        default=AppointmentStatus.BOOKED,
        nullable=False,
    )
    booking_source: Mapped[BookingSource] = mapped_column(
        SAEnum(BookingSource, native_enum=False, length=16, values_callable=_values),
        nullable=False,
    )

    patient_name: Mapped[str] = mapped_column(String(255), nullable=False)
    patient_mobile: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    patient_age: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    patient_gender: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    visit_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    appointment_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    appointment_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(PaymentStatus, native_enum=False, length=16, values_callable=_values),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SAEnum(PaymentMethod, native_enum=False, length=16, values_callable=_values),
        nullable=True,
    )
    fee: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )

    clinic: Mapped["Clinic"] = relationship(back_populates="appointments")
