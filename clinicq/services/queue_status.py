"""Live "now serving" status for public trackers."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.orm import aliased

from clinicq.models.appointment import Appointment, AppointmentStatus
from clinicq.models.clinic import Clinic
from clinicq.services.db import get_session
from clinicq.services.errors import NotFound
from clinicq.utils.config import get_settings

LOGGER = logging.getLogger(__name__)


class QueueStatus(BaseModel):
    """Tracker view of one appointment.

    ``estimated_wait_minutes`` is a rough heuristic (people ahead times an
    average consultation length), not a promise.
    """

    tracking_code: str
    your_token: int
    now_serving_token: Optional[int] = None
    positions_ahead: int = Field(ge=0)
    estimated_wait_minutes: int = Field(ge=0)
    status: AppointmentStatus
    appointment_date: date
    patient_name: str
    clinic_name: str
    clinic_slug: str


def now_serving(ongoing_token: Optional[int], last_completed_token: Optional[int]) -> Optional[int]:
    """The ongoing token if any, else the highest completed one."""

    if ongoing_token is not None:
        return ongoing_token
    return last_completed_token


def positions_ahead(token: int, status: AppointmentStatus, serving: Optional[int]) -> int:
    if not status.is_waiting:
        return 0
    if serving is None:
        # Nobody served yet: every lower token is still ahead.
        return max(0, token - 1)
    return max(0, token - serving)


def get_queue_status(tracking_code: str) -> QueueStatus:
    """Resolve a tracking code to its position in the clinic's queue.

    The target row and both scope aggregates come from one SELECT, so the
    answer reflects a single snapshot of the scope.
    """

    ongoing = aliased(Appointment)
    completed = aliased(Appointment)

    ongoing_token = (
        select(ongoing.token_number)
        .where(
            ongoing.clinic_id == Appointment.clinic_id,
            ongoing.appointment_date == Appointment.appointment_date,
            ongoing.status == AppointmentStatus.ONGOING,
        )
        .order_by(ongoing.token_number)
        .limit(1)
        .correlate(Appointment)
        .scalar_subquery()
    )
    last_completed_token = (
        select(func.max(completed.token_number))
        .where(
            completed.clinic_id == Appointment.clinic_id,
            completed.appointment_date == Appointment.appointment_date,
            completed.status == AppointmentStatus.COMPLETED,
        )
        .correlate(Appointment)
        .scalar_subquery()
    )

    stmt = (
        select(
            Appointment.token_number,
            Appointment.status,
            Appointment.appointment_date,
            Appointment.patient_name,
            Clinic.name.label("clinic_name"),
            Clinic.slug.label("clinic_slug"),
            ongoing_token.label("ongoing_token"),
            last_completed_token.label("last_completed_token"),
        )
        .select_from(Appointment)
        .join(Clinic, Clinic.id == Appointment.clinic_id)
        .where(Appointment.tracking_code == tracking_code)
    )

    with get_session(read_only=True) as session:
        row = session.execute(stmt).first()

    if row is None:
        LOGGER.debug("Unknown tracking code %s", tracking_code)
        raise NotFound("Appointment not found")

    serving = now_serving(row.ongoing_token, row.last_completed_token)
    ahead = positions_ahead(row.token_number, row.status, serving)
    return QueueStatus(
        tracking_code=tracking_code,
        your_token=row.token_number,
        now_serving_token=serving,
        positions_ahead=ahead,
        estimated_wait_minutes=ahead * get_settings().average_minutes_per_token,
        status=row.status,
        appointment_date=row.appointment_date,
        patient_name=row.patient_name,
        clinic_name=row.clinic_name,
        clinic_slug=row.clinic_slug,
    )
