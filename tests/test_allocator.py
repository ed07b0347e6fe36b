"""Token allocation under concurrent bookings."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, time

import pytest
from sqlalchemy import func, select

from clinicq.models.appointment import Appointment, AppointmentStatus, BookingSource
from clinicq.models.token_counter import TokenCounter
from clinicq.services import db
from clinicq.services.allocator import allocate_token, book_appointment
from clinicq.services.appointments import AppointmentCreate, get_appointment
from clinicq.services.errors import (
    InvalidBooking,
    NotFound,
    ScopeLockTimeout,
    TooManyConflicts,
)
from clinicq.services.queue_status import get_queue_status
from clinicq.utils.config import get_settings

DAY = date(2024, 6, 1)


def _request(name: str, day: date = DAY, **extra) -> AppointmentCreate:
    return AppointmentCreate(appointment_date=day, patient_name=name, **extra)


def test_first_booking_of_a_day_gets_token_one(clinic) -> None:
    first = book_appointment(clinic.id, _request("Asha"), source=BookingSource.MANUAL)
    second = book_appointment(clinic.id, _request("Ravi"), source=BookingSource.MANUAL)
    next_day = book_appointment(clinic.id, _request("Meena", date(2024, 6, 2)), source=BookingSource.MANUAL)

    assert (first.token_number, second.token_number, next_day.token_number) == (1, 2, 1)


def test_booking_source_sets_initial_status(clinic) -> None:
    manual = book_appointment(clinic.id, _request("Asha"), source=BookingSource.MANUAL)
    online = book_appointment(clinic.id, _request("Ravi"), source=BookingSource.ONLINE)

    assert manual.status is AppointmentStatus.BOOKED
    assert online.status is AppointmentStatus.CONFIRMED
    assert manual.status.is_waiting and online.status.is_waiting


def test_concurrent_bookings_get_every_token_exactly_once(clinic) -> None:
    total = 24

    def book(i: int):
        return book_appointment(clinic.id, _request(f"Patient {i}"), source=BookingSource.ONLINE)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(book, range(total)))

    assert sorted(r.token_number for r in results) == list(range(1, total + 1))
    assert len({r.id for r in results}) == total


def test_concurrent_scopes_keep_separate_sequences(clinic, other_clinic) -> None:
    per_clinic = 10
    jobs = [(c.id, i) for i in range(per_clinic) for c in (clinic, other_clinic)]

    def book(job):
        clinic_id, i = job
        return book_appointment(clinic_id, _request(f"P{i}"), source=BookingSource.MANUAL)

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(book, jobs))

    for c in (clinic, other_clinic):
        tokens = sorted(r.token_number for r in results if r.clinic_id == c.id)
        assert tokens == list(range(1, per_clinic + 1))


def test_concurrent_end_to_end_bookings_are_trackable(clinic) -> None:
    def book(i: int):
        return book_appointment(clinic.id, _request(f"Walk-in {i}"), source=BookingSource.MANUAL)

    with ThreadPoolExecutor(max_workers=5) as pool:
        results = list(pool.map(book, range(5)))

    assert sorted(r.token_number for r in results) == [1, 2, 3, 4, 5]
    assert len({r.tracking_code for r in results}) == 5
    for booked in results:
        status = get_queue_status(booked.tracking_code)
        assert status.your_token == booked.token_number
        assert status.status is AppointmentStatus.BOOKED


def test_rolled_back_allocation_leaves_no_gap(clinic) -> None:
    with pytest.raises(RuntimeError):
        with db.get_session() as session:
            assert allocate_token(session, clinic.id, DAY) == 1
            raise RuntimeError("appointment insert failed")

    booked = book_appointment(clinic.id, _request("Asha"), source=BookingSource.MANUAL)

    assert booked.token_number == 1


def test_tokens_are_not_reused_after_cancel_or_delete(clinic) -> None:
    from clinicq.services.appointments import delete_appointment
    from clinicq.services.lifecycle import cancel

    first = book_appointment(clinic.id, _request("Asha"), source=BookingSource.MANUAL)
    second = book_appointment(clinic.id, _request("Ravi"), source=BookingSource.MANUAL)
    cancel(first.id)
    delete_appointment(second.id)

    third = book_appointment(clinic.id, _request("Meena"), source=BookingSource.MANUAL)

    assert third.token_number == 3
    with pytest.raises(NotFound):
        get_appointment(second.id)


def _insert_outside_allocator(clinic_id: str, token: int) -> None:
    with db.get_session() as session:
        session.add(
            Appointment(
                tracking_code=f"legacy-{token}",
                clinic_id=clinic_id,
                appointment_date=DAY,
                token_number=token,
                status=AppointmentStatus.BOOKED,
                booking_source=BookingSource.MANUAL,
                patient_name="Legacy",
            )
        )


def test_counter_is_seeded_from_existing_tokens(clinic) -> None:
    _insert_outside_allocator(clinic.id, 4)

    booked = book_appointment(clinic.id, _request("Asha"), source=BookingSource.MANUAL)

    assert booked.token_number == 5


def test_stale_counter_is_resynced_after_conflict(clinic) -> None:
    with db.get_session() as session:
        session.add(TokenCounter(clinic_id=clinic.id, appointment_date=DAY, last_token=0))
    _insert_outside_allocator(clinic.id, 1)

    booked = book_appointment(clinic.id, _request("Asha"), source=BookingSource.MANUAL)

    assert booked.token_number == 2


def test_single_retry_recovers_from_one_conflict(clinic, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "allocation_max_retries", 1)
    with db.get_session() as session:
        session.add(TokenCounter(clinic_id=clinic.id, appointment_date=DAY, last_token=0))
    _insert_outside_allocator(clinic.id, 1)

    booked = book_appointment(clinic.id, _request("Asha"), source=BookingSource.MANUAL)

    assert booked.token_number == 2


def test_conflicts_past_retry_bound_fail(clinic, monkeypatch) -> None:
    monkeypatch.setattr(get_settings(), "allocation_max_retries", 0)
    with db.get_session() as session:
        session.add(TokenCounter(clinic_id=clinic.id, appointment_date=DAY, last_token=0))
    _insert_outside_allocator(clinic.id, 1)

    with pytest.raises(TooManyConflicts):
        book_appointment(clinic.id, _request("Asha"), source=BookingSource.MANUAL)


def test_lock_wait_is_bounded(clinic) -> None:
    db.configure(str(db.engine.url), lock_timeout_seconds=0.2)
    holder = db.engine.connect()
    holder.begin()
    try:
        with pytest.raises(ScopeLockTimeout):
            book_appointment(clinic.id, _request("Asha"), source=BookingSource.MANUAL)
    finally:
        holder.rollback()
        holder.close()

    booked = book_appointment(clinic.id, _request("Asha"), source=BookingSource.MANUAL)
    assert booked.token_number == 1


def test_unknown_clinic(clinic) -> None:
    with pytest.raises(NotFound):
        book_appointment("missing", _request("Asha"), source=BookingSource.MANUAL)


def test_requested_time_must_be_an_offered_slot(clinic) -> None:
    ok = book_appointment(
        clinic.id,
        _request("Asha", appointment_time=time(9, 30)),
        source=BookingSource.ONLINE,
    )
    assert ok.appointment_time == time(9, 30)

    with pytest.raises(InvalidBooking):
        book_appointment(clinic.id, _request("Ravi", appointment_time=time(13, 0)), source=BookingSource.ONLINE)


def test_requested_time_between_slots_is_rejected(clinic) -> None:
    with pytest.raises(InvalidBooking):
        book_appointment(
            clinic.id,
            _request("Asha", appointment_time=time(9, 30, 45)),
            source=BookingSource.ONLINE,
        )

    with db.get_session() as session:
        assert session.scalar(select(func.count()).select_from(Appointment)) == 0


def test_phone_only_clinic_rejects_timed_booking(other_clinic) -> None:
    walk_in = book_appointment(other_clinic.id, _request("Asha"), source=BookingSource.MANUAL)
    assert walk_in.token_number == 1

    with pytest.raises(InvalidBooking):
        book_appointment(other_clinic.id, _request("Ravi", appointment_time=time(9, 0)), source=BookingSource.ONLINE)


def test_booking_emits_created_event(clinic, events) -> None:
    booked = book_appointment(clinic.id, _request("Asha"), source=BookingSource.ONLINE)

    assert events == [("appointment.created", booked.model_dump(mode="json"))]
