"""Appointment read models, listing, payments and administrative deletes."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import func, or_, select

from clinicq.models.appointment import (
    WAITING_STATUSES,
    Appointment,
    AppointmentStatus,
    BookingSource,
    PaymentMethod,
    PaymentStatus,
)
from clinicq.models.clinic import Clinic
from clinicq.services.db import get_session
from clinicq.services.errors import NotFound
from clinicq.services.notifications import notifier
from clinicq.utils.config import get_settings

LOGGER = logging.getLogger(__name__)

# Tab aliases accepted by the listing filter.
WAITING_ALIASES = {"new", "booked", "confirmed"}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps (SQLite drops the offset)."""

    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AppointmentCreate(BaseModel):
    """Booking payload shared by the online and manual channels."""

    appointment_date: date
    patient_name: str = Field(min_length=1, max_length=255)
    patient_mobile: Optional[str] = Field(default=None, max_length=32)
    patient_age: Optional[int] = Field(default=None, ge=0, le=150)
    patient_gender: Optional[str] = Field(default=None, max_length=16)
    address: Optional[str] = Field(default=None, max_length=512)
    visit_reason: Optional[str] = None
    appointment_type: Optional[str] = Field(default=None, max_length=32)
    appointment_time: Optional[time] = None


class AppointmentRead(BaseModel):
    """Snapshot of an appointment taken inside its transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tracking_code: str
    clinic_id: str
    appointment_date: date
    token_number: int
    status: AppointmentStatus
    booking_source: BookingSource
    patient_name: str
    patient_mobile: Optional[str] = None
    patient_age: Optional[int] = None
    patient_gender: Optional[str] = None
    address: Optional[str] = None
    visit_reason: Optional[str] = None
    appointment_type: Optional[str] = None
    appointment_time: Optional[time] = None
    payment_status: PaymentStatus
    payment_method: Optional[PaymentMethod] = None
    fee: Optional[int] = None
    created_at: datetime
    checked_in_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @field_validator("created_at", "checked_in_at", "completed_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class StatusCounts(BaseModel):
    new: int = 0
    ongoing: int = 0
    completed: int = 0


class AppointmentPage(BaseModel):
    appointments: List[AppointmentRead]
    count: int
    has_more: bool
    counts: StatusCounts


class EarningsSummary(BaseModel):
    total: int = 0
    cash: int = 0
    upi: int = 0


def get_appointment(appointment_id: str) -> AppointmentRead:
    """Return one appointment or raise ``NotFound``."""

    with get_session(read_only=True) as session:
        appointment = session.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFound(f"Appointment {appointment_id} not found")
        return AppointmentRead.model_validate(appointment)


def list_appointments(
    clinic_id: str,
    *,
    appointment_date: Optional[date] = None,
    search: Optional[str] = None,
    status: Optional[str] = None,
    page: int = 0,
    limit: Optional[int] = None,
) -> AppointmentPage:
    """List a clinic's appointments for the dashboard.

    A search term looks across all dates; the date filter only applies when
    no search is given. Tab counts are always for the selected date and
    honour the search term.
    """

    limit = limit or get_settings().default_page_size
    term = f"%{search.strip()}%" if search and search.strip() else None

    filters = [Appointment.clinic_id == clinic_id]
    if appointment_date is not None and term is None:
        filters.append(Appointment.appointment_date == appointment_date)
    if term is not None:
        filters.append(_search_clause(term))
    if status:
        if status in WAITING_ALIASES:
            filters.append(Appointment.status.in_(list(WAITING_STATUSES)))
        else:
            filters.append(Appointment.status == AppointmentStatus(status))

    with get_session(read_only=True) as session:
        total = session.scalar(select(func.count()).select_from(Appointment).where(*filters))
        rows = session.scalars(
            select(Appointment)
            .where(*filters)
            .order_by(Appointment.appointment_date.desc(), Appointment.token_number.asc())
            .offset(page * limit)
            .limit(limit)
        ).all()
        appointments = [AppointmentRead.model_validate(row) for row in rows]
        counts = _status_counts(session, clinic_id, appointment_date, term)

    total = total or 0
    return AppointmentPage(
        appointments=appointments,
        count=total,
        has_more=(page + 1) * limit < total,
        counts=counts,
    )


def _search_clause(term: str):
    return or_(
        Appointment.patient_name.ilike(term),
        Appointment.address.ilike(term),
        Appointment.patient_mobile.ilike(term),
    )


def _status_counts(session, clinic_id: str, appointment_date: Optional[date], term: Optional[str]) -> StatusCounts:
    filters = [Appointment.clinic_id == clinic_id]
    if appointment_date is not None:
        filters.append(Appointment.appointment_date == appointment_date)
    if term is not None:
        filters.append(_search_clause(term))

    grouped: Dict[AppointmentStatus, int] = dict(
        session.execute(
            select(Appointment.status, func.count())
            .where(*filters)
            .group_by(Appointment.status)
        ).all()
    )
    return StatusCounts(
        new=sum(grouped.get(s, 0) for s in WAITING_STATUSES),
        ongoing=grouped.get(AppointmentStatus.ONGOING, 0),
        completed=grouped.get(AppointmentStatus.COMPLETED, 0),
    )


def record_payment(
    appointment_id: str,
    method: PaymentMethod,
    fee: Optional[int] = None,
) -> AppointmentRead:
    """Mark an appointment paid; the fee defaults to the clinic's consultation fee."""

    with get_session() as session:
        appointment = session.get(Appointment, appointment_id, with_for_update=True)
        if appointment is None:
            raise NotFound(f"Appointment {appointment_id} not found")
        if fee is None:
            clinic = session.get(Clinic, appointment.clinic_id)
            fee = clinic.consultation_fee if clinic else 0
        appointment.payment_status = PaymentStatus.PAID
        appointment.payment_method = method
        appointment.fee = fee
        session.flush()
        result = AppointmentRead.model_validate(appointment)

    LOGGER.info(
        "Payment recorded appointment=%s method=%s fee=%s",
        appointment_id,
        method.value,
        fee,
    )
    notifier.payment_recorded(result)
    return result


def earnings_summary(
    clinic_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> EarningsSummary:
    """Sum paid fees per payment method over an inclusive date range."""

    filters = [
        Appointment.clinic_id == clinic_id,
        Appointment.payment_status == PaymentStatus.PAID,
    ]
    if start is not None:
        filters.append(Appointment.appointment_date >= start)
    if end is not None:
        filters.append(Appointment.appointment_date <= end)

    with get_session(read_only=True) as session:
        rows = session.execute(
            select(Appointment.payment_method, func.coalesce(func.sum(Appointment.fee), 0))
            .where(*filters)
            .group_by(Appointment.payment_method)
        ).all()

    summary = EarningsSummary()
    for method, amount in rows:
        amount = int(amount or 0)
        summary.total += amount
        if method is PaymentMethod.CASH:
            summary.cash += amount
        elif method is PaymentMethod.UPI:
            summary.upi += amount
    return summary


def delete_appointment(appointment_id: str) -> AppointmentRead:
    """Administrative hard delete.

    The scope counter is left alone, so the deleted token is never reissued.
    """

    with get_session() as session:
        appointment = session.get(Appointment, appointment_id, with_for_update=True)
        if appointment is None:
            raise NotFound(f"Appointment {appointment_id} not found")
        result = AppointmentRead.model_validate(appointment)
        session.delete(appointment)

    LOGGER.warning(
        "Appointment %s (token %s on %s) deleted by administrator",
        result.id,
        result.token_number,
        result.appointment_date,
    )
    notifier.appointment_deleted(result)
    return result
