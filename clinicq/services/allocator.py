"""Per-clinic, per-day token allocation.

Tokens come from the ``token_counters`` row of the (clinic, date) scope. The
row is incremented with a single ``UPDATE ... RETURNING``, which holds its
row lock until the booking transaction ends, so concurrent bookings for one
scope queue behind each other while other scopes proceed untouched. The
appointment row is inserted in that same transaction: a failed insert rolls
the increment back and no token is lost or handed out twice.
"""

from __future__ import annotations

import logging
import secrets
from datetime import date, time
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from clinicq.models.appointment import Appointment, AppointmentStatus, BookingSource
from clinicq.models.clinic import Clinic
from clinicq.models.token_counter import TokenCounter
from clinicq.services.appointments import AppointmentCreate, AppointmentRead
from clinicq.services.db import get_session, is_lock_timeout
from clinicq.services.errors import (
    InvalidBooking,
    NotFound,
    ScopeLockTimeout,
    TooManyConflicts,
)
from clinicq.services.hours import generate_slots
from clinicq.services.notifications import notifier
from clinicq.utils.config import get_settings

LOGGER = logging.getLogger(__name__)

INITIAL_STATUS = {
    BookingSource.ONLINE: AppointmentStatus.CONFIRMED,
    BookingSource.MANUAL: AppointmentStatus.BOOKED,
}


def _scope_max_token(clinic_id: str, appointment_date: date):
    return (
        select(func.coalesce(func.max(Appointment.token_number), 0))
        .where(
            Appointment.clinic_id == clinic_id,
            Appointment.appointment_date == appointment_date,
        )
        .scalar_subquery()
    )


def _ensure_counter(session: Session, clinic_id: str, appointment_date: date) -> None:
    """Create the scope's counter row if missing, seeded from existing tokens."""

    values = {
        "clinic_id": clinic_id,
        "appointment_date": appointment_date,
        "last_token": _scope_max_token(clinic_id, appointment_date),
    }
    dialect = session.get_bind().dialect.name

    if dialect in ("postgresql", "sqlite"):
        insert = pg_insert if dialect == "postgresql" else sqlite_insert
        stmt = insert(TokenCounter).values(**values).on_conflict_do_nothing(
            index_elements=["clinic_id", "appointment_date"],
        )
        session.execute(stmt)
        return

    if session.get(TokenCounter, (clinic_id, appointment_date)) is not None:
        return
    try:
        with session.begin_nested():
            session.add(
                TokenCounter(
                    clinic_id=clinic_id,
                    appointment_date=appointment_date,
                    last_token=session.scalar(select(_scope_max_token(clinic_id, appointment_date))),
                )
            )
    except IntegrityError:
        LOGGER.debug("Counter for %s/%s created concurrently", clinic_id, appointment_date)


def lock_scope(session: Session, clinic_id: str, appointment_date: date) -> TokenCounter:
    """Take the (clinic, date) scope lock for the rest of the transaction."""

    _ensure_counter(session, clinic_id, appointment_date)
    return session.scalars(
        select(TokenCounter)
        .where(
            TokenCounter.clinic_id == clinic_id,
            TokenCounter.appointment_date == appointment_date,
        )
        .with_for_update()
    ).one()


def allocate_token(session: Session, clinic_id: str, appointment_date: date) -> int:
    """Reserve the next token of the scope inside the caller's transaction.

    The caller must create the appointment in the same transaction; the
    reservation becomes visible only when that transaction commits.
    """

    _ensure_counter(session, clinic_id, appointment_date)
    token = session.execute(
        update(TokenCounter)
        .where(
            TokenCounter.clinic_id == clinic_id,
            TokenCounter.appointment_date == appointment_date,
        )
        .values(last_token=TokenCounter.last_token + 1)
        .returning(TokenCounter.last_token)
        .execution_options(synchronize_session=False)
    ).scalar_one()
    return int(token)


def _resync_counter(session: Session, clinic_id: str, appointment_date: date) -> None:
    """Lift the counter to the highest token actually stored in the scope."""

    stored_max = _scope_max_token(clinic_id, appointment_date)
    session.execute(
        update(TokenCounter)
        .where(
            TokenCounter.clinic_id == clinic_id,
            TokenCounter.appointment_date == appointment_date,
            TokenCounter.last_token < stored_max,
        )
        .values(last_token=stored_max)
        .execution_options(synchronize_session=False)
    )


def new_tracking_code() -> str:
    """Random URL-safe code, unrelated to the token or the appointment id."""

    return secrets.token_urlsafe(get_settings().tracking_code_bytes)


def _check_requested_time(clinic: Clinic, requested: Optional[time]) -> None:
    if requested is None:
        return
    slots = generate_slots(clinic.operating_hours())
    if not slots:
        raise InvalidBooking("This clinic does not take timed bookings; please call the clinic")
    if requested not in slots:
        raise InvalidBooking(f"{requested.isoformat()} is not an offered slot")


def book_appointment(
    clinic_id: str,
    payload: AppointmentCreate,
    *,
    source: BookingSource,
) -> AppointmentRead:
    """Allocate a token and create the appointment as one transaction.

    Lock timeouts surface as ``ScopeLockTimeout``. Uniqueness violations can
    only come from rows written around the allocator (or a tracking code
    collision); those are retried a bounded number of times after re-syncing
    the counter, then reported as ``TooManyConflicts``.
    """

    max_attempts = get_settings().allocation_max_retries + 1

    for attempt in range(1, max_attempts + 1):
        try:
            with get_session() as session:
                clinic = session.get(Clinic, clinic_id)
                if clinic is None:
                    raise NotFound(f"Clinic {clinic_id} not found")
                _check_requested_time(clinic, payload.appointment_time)

                if attempt > 1:
                    _ensure_counter(session, clinic_id, payload.appointment_date)
                    _resync_counter(session, clinic_id, payload.appointment_date)
                token = allocate_token(session, clinic_id, payload.appointment_date)

                appointment = Appointment(
                    tracking_code=new_tracking_code(),
                    clinic_id=clinic_id,
                    token_number=token,
                    status=INITIAL_STATUS[source],
                    booking_source=source,
                    **payload.model_dump(),
                )
                session.add(appointment)
                session.flush()
                result = AppointmentRead.model_validate(appointment)
        except IntegrityError as exc:
            LOGGER.warning(
                "Token conflict clinic=%s date=%s attempt=%s/%s: %s",
                clinic_id,
                payload.appointment_date,
                attempt,
                max_attempts,
                exc.orig,
            )
            continue
        except OperationalError as exc:
            if is_lock_timeout(exc):
                LOGGER.warning(
                    "Scope lock timeout clinic=%s date=%s",
                    clinic_id,
                    payload.appointment_date,
                )
                raise ScopeLockTimeout() from exc
            raise

        LOGGER.info(
            "Allocated token %s clinic=%s date=%s source=%s",
            result.token_number,
            clinic_id,
            result.appointment_date,
            source.value,
        )
        notifier.appointment_created(result)
        return result

    raise TooManyConflicts(
        f"Could not allocate a token after {max_attempts} attempts, please retry"
    )
