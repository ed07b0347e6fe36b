"""Staff-facing clinic routes: settings, manual entry, queue control."""

from __future__ import annotations

from datetime import date, time
from typing import List, Literal, Optional

from fastapi import APIRouter, Query, status

from clinicq.models.appointment import BookingSource
from clinicq.services import clinics as clinic_service
from clinicq.services.allocator import book_appointment
from clinicq.services.appointments import (
    AppointmentCreate,
    AppointmentPage,
    AppointmentRead,
    EarningsSummary,
    earnings_summary,
    list_appointments,
)
from clinicq.services.clinics import ClinicCreate, ClinicRead, ClinicSettingsUpdate
from clinicq.services.lifecycle import CallNextResult, call_next

router = APIRouter()

StatusFilter = Literal["new", "booked", "confirmed", "ongoing", "completed", "cancelled"]


@router.post("", response_model=ClinicRead, status_code=status.HTTP_201_CREATED)
def create_clinic(payload: ClinicCreate) -> ClinicRead:
    """Register a clinic at signup."""

    return clinic_service.create_clinic(payload)


@router.get("/{clinic_id}", response_model=ClinicRead)
def get_clinic(clinic_id: str) -> ClinicRead:
    return clinic_service.get_clinic(clinic_id)


@router.patch("/{clinic_id}", response_model=ClinicRead)
def update_clinic(clinic_id: str, payload: ClinicSettingsUpdate) -> ClinicRead:
    """Edit clinic settings; operating hours are re-validated."""

    return clinic_service.update_clinic(clinic_id, payload)


@router.get("/{clinic_id}/slots", response_model=List[time])
def get_slots(clinic_id: str) -> List[time]:
    return clinic_service.list_slots(clinic_id)


@router.post(
    "/{clinic_id}/appointments",
    response_model=AppointmentRead,
    status_code=status.HTTP_201_CREATED,
)
def add_manual_appointment(clinic_id: str, payload: AppointmentCreate) -> AppointmentRead:
    """Staff walk-in entry; the patient gets the next token of the day."""

    return book_appointment(clinic_id, payload, source=BookingSource.MANUAL)


@router.get("/{clinic_id}/appointments", response_model=AppointmentPage)
def get_appointments(
    clinic_id: str,
    appointment_date: Optional[date] = Query(default=None, alias="date"),
    search: Optional[str] = None,
    status_filter: Optional[StatusFilter] = Query(default=None, alias="status"),
    page: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1, le=100),
) -> AppointmentPage:
    return list_appointments(
        clinic_id,
        appointment_date=appointment_date,
        search=search,
        status=status_filter,
        page=page,
        limit=limit,
    )


@router.post("/{clinic_id}/queue/{appointment_date}/next", response_model=CallNextResult)
def next_patient(clinic_id: str, appointment_date: date) -> CallNextResult:
    """Finish the current patient and call the next waiting token."""

    return call_next(clinic_id, appointment_date)


@router.get("/{clinic_id}/earnings", response_model=EarningsSummary)
def get_earnings(
    clinic_id: str,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> EarningsSummary:
    return earnings_summary(clinic_id, start, end)
