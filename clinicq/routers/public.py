"""Unauthenticated routes: clinic profile, online booking, tracking."""

from __future__ import annotations

from fastapi import APIRouter, status

from clinicq.models.appointment import BookingSource
from clinicq.services.allocator import book_appointment
from clinicq.services.appointments import AppointmentCreate, AppointmentRead
from clinicq.services.clinics import PublicProfile, get_clinic_by_slug, get_public_profile
from clinicq.services.queue_status import QueueStatus, get_queue_status

router = APIRouter()


@router.get("/public/{slug}", response_model=PublicProfile)
def public_profile(slug: str) -> PublicProfile:
    return get_public_profile(slug)


@router.post(
    "/public/{slug}/book",
    response_model=AppointmentRead,
    status_code=status.HTTP_201_CREATED,
)
def book_online(slug: str, payload: AppointmentCreate) -> AppointmentRead:
    """Patient self-booking from the clinic's public page."""

    clinic = get_clinic_by_slug(slug)
    return book_appointment(clinic.id, payload, source=BookingSource.ONLINE)


@router.get("/track/{tracking_code}", response_model=QueueStatus)
def track(tracking_code: str) -> QueueStatus:
    """Queue position for a tracking code; the wait estimate is approximate."""

    return get_queue_status(tracking_code)
