"""Appointment lifecycle transitions.

Allowed moves::

    booked / confirmed --> ongoing --> completed
            \\                \\
             +--> cancelled <--+

``completed`` and ``cancelled`` are terminal, and ``completed`` is only
reachable through ``ongoing``.

Lock order is always scope row first, then appointment rows. Check-in and
call-next take the scope lock so the single-ongoing check and the write
happen under one lock; complete and cancel only lock their own row.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Dict, FrozenSet, Iterator, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from clinicq.models.appointment import (
    WAITING_STATUSES,
    Appointment,
    AppointmentStatus,
)
from clinicq.models.clinic import Clinic
from clinicq.services.allocator import lock_scope
from clinicq.services.appointments import AppointmentRead
from clinicq.services.db import get_session, is_lock_timeout
from clinicq.services.errors import (
    InvalidTransition,
    NotFound,
    QueueConflict,
    ScopeLockTimeout,
)
from clinicq.services.notifications import notifier

LOGGER = logging.getLogger(__name__)

ONGOING_INDEX = "uq_appointments_scope_ongoing"
# SQLite names the columns, not the index, of a violated unique index.
SQLITE_ONGOING_VIOLATION = "UNIQUE constraint failed: appointments.clinic_id, appointments.appointment_date"

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    AppointmentStatus.BOOKED: frozenset({AppointmentStatus.ONGOING, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.ONGOING, AppointmentStatus.CANCELLED}),
    AppointmentStatus.ONGOING: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


class CallNextResult(BaseModel):
    """Outcome of advancing the queue by one patient."""

    completed: Optional[AppointmentRead] = None
    ongoing: Optional[AppointmentRead] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def _is_ongoing_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    if getattr(diag, "constraint_name", None) == ONGOING_INDEX:
        return True
    message = str(orig).strip()
    return ONGOING_INDEX in message or message.endswith(SQLITE_ONGOING_VIOLATION)


@contextmanager
def _storage_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        if _is_ongoing_violation(exc):
            raise QueueConflict() from exc
        raise
    except OperationalError as exc:
        if is_lock_timeout(exc):
            raise ScopeLockTimeout("Queue is busy, please retry") from exc
        raise


def _apply(appointment: Appointment, target: AppointmentStatus) -> None:
    current = appointment.status
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)

    appointment.status = target
    if target is AppointmentStatus.ONGOING:
        appointment.checked_in_at = _utcnow()
    elif target is AppointmentStatus.COMPLETED:
        appointment.completed_at = _utcnow()


def _ongoing_in_scope(session: Session, clinic_id: str, appointment_date: date) -> Optional[Appointment]:
    return session.scalars(
        select(Appointment)
        .where(
            Appointment.clinic_id == clinic_id,
            Appointment.appointment_date == appointment_date,
            Appointment.status == AppointmentStatus.ONGOING,
        )
        .with_for_update()
    ).first()


def _check_in(session: Session, appointment_id: str) -> Tuple[Appointment, str]:
    scope = session.execute(
        select(Appointment.clinic_id, Appointment.appointment_date).where(Appointment.id == appointment_id)
    ).first()
    if scope is None:
        raise NotFound(f"Appointment {appointment_id} not found")

    lock_scope(session, scope.clinic_id, scope.appointment_date)
    appointment = session.get(Appointment, appointment_id, with_for_update=True, populate_existing=True)
    if appointment is None:
        raise NotFound(f"Appointment {appointment_id} not found")

    if not can_transition(appointment.status, AppointmentStatus.ONGOING):
        raise InvalidTransition(appointment.status.value, AppointmentStatus.ONGOING.value)

    current = _ongoing_in_scope(session, scope.clinic_id, scope.appointment_date)
    if current is not None:
        LOGGER.warning(
            "Check-in of token %s refused: token %s already ongoing clinic=%s date=%s",
            appointment.token_number,
            current.token_number,
            scope.clinic_id,
            scope.appointment_date,
        )
        raise QueueConflict(
            f"Token {current.token_number} is already ongoing; complete or cancel it first"
        )

    previous = appointment.status.value
    _apply(appointment, AppointmentStatus.ONGOING)
    session.flush()
    return appointment, previous


def transition(appointment_id: str, target: AppointmentStatus) -> AppointmentRead:
    """Move one appointment to ``target`` or raise without changing it."""

    with _storage_errors():
        with get_session() as session:
            if target is AppointmentStatus.ONGOING:
                appointment, previous = _check_in(session, appointment_id)
            else:
                appointment = session.get(Appointment, appointment_id, with_for_update=True)
                if appointment is None:
                    raise NotFound(f"Appointment {appointment_id} not found")
                previous = appointment.status.value
                _apply(appointment, target)
                session.flush()
            result = AppointmentRead.model_validate(appointment)

    LOGGER.info(
        "Appointment %s token %s: %s -> %s",
        result.id,
        result.token_number,
        previous,
        result.status.value,
    )
    notifier.status_changed(result, previous)
    return result


def check_in(appointment_id: str) -> AppointmentRead:
    return transition(appointment_id, AppointmentStatus.ONGOING)


def complete(appointment_id: str) -> AppointmentRead:
    return transition(appointment_id, AppointmentStatus.COMPLETED)


def cancel(appointment_id: str) -> AppointmentRead:
    return transition(appointment_id, AppointmentStatus.CANCELLED)


def call_next(clinic_id: str, appointment_date: date) -> CallNextResult:
    """Complete whoever is ongoing and check in the lowest waiting token.

    This is the explicit "next patient" policy; a plain check-in never
    completes anyone implicitly. Both changes commit together.
    """

    with _storage_errors():
        with get_session() as session:
            if session.get(Clinic, clinic_id) is None:
                raise NotFound(f"Clinic {clinic_id} not found")
            lock_scope(session, clinic_id, appointment_date)

            finished = _ongoing_in_scope(session, clinic_id, appointment_date)
            if finished is not None:
                _apply(finished, AppointmentStatus.COMPLETED)
                # The ongoing slot must be free before the next row claims it.
                session.flush()

            upcoming = session.scalars(
                select(Appointment)
                .where(
                    Appointment.clinic_id == clinic_id,
                    Appointment.appointment_date == appointment_date,
                    Appointment.status.in_(list(WAITING_STATUSES)),
                )
                .order_by(Appointment.token_number.asc())
                .limit(1)
                .with_for_update()
            ).first()
            previous_upcoming = upcoming.status.value if upcoming is not None else None
            if upcoming is not None:
                _apply(upcoming, AppointmentStatus.ONGOING)
                session.flush()

            result = CallNextResult(
                completed=AppointmentRead.model_validate(finished) if finished else None,
                ongoing=AppointmentRead.model_validate(upcoming) if upcoming else None,
            )

    if result.completed is not None:
        notifier.status_changed(result.completed, AppointmentStatus.ONGOING.value)
    if result.ongoing is not None:
        notifier.status_changed(result.ongoing, previous_upcoming)
    LOGGER.info(
        "Call next clinic=%s date=%s: completed=%s ongoing=%s",
        clinic_id,
        appointment_date,
        result.completed.token_number if result.completed else None,
        result.ongoing.token_number if result.ongoing else None,
    )
    return result
