"""Slot generation from operating hours."""

from datetime import time

import pytest

from clinicq.services.errors import InvalidConfiguration
from clinicq.services.hours import OperatingHours, generate_slots


def test_morning_window_excludes_end() -> None:
    hours = OperatingHours(morning_start=time(9, 0), morning_end=time(9, 45), slot_duration=15)

    assert generate_slots(hours) == [time(9, 0), time(9, 15), time(9, 30)]


def test_missing_morning_window_is_skipped() -> None:
    hours = OperatingHours(evening_start=time(18, 0), evening_end=time(18, 30), slot_duration=15)

    assert generate_slots(hours) == [time(18, 0), time(18, 15)]


def test_no_windows_means_no_slots() -> None:
    assert generate_slots(OperatingHours()) == []


def test_half_configured_window_is_skipped() -> None:
    hours = OperatingHours(
        morning_start=time(9, 0),
        evening_start=time(17, 0),
        evening_end=time(17, 30),
        slot_duration=10,
    )

    assert generate_slots(hours) == [time(17, 0), time(17, 10), time(17, 20)]


def test_morning_slots_come_before_evening() -> None:
    hours = OperatingHours(
        morning_start=time(10, 0),
        morning_end=time(10, 40),
        evening_start=time(19, 0),
        evening_end=time(19, 30),
        slot_duration=20,
    )

    assert generate_slots(hours) == [time(10, 0), time(10, 20), time(19, 0), time(19, 20)]


def test_generation_is_repeatable() -> None:
    hours = OperatingHours(morning_start=time(8, 0), morning_end=time(9, 0), slot_duration=15)

    assert generate_slots(hours) == generate_slots(hours)


@pytest.mark.parametrize("duration", [0, -15])
def test_non_positive_duration_is_rejected(duration: int) -> None:
    hours = OperatingHours(morning_start=time(9, 0), morning_end=time(10, 0), slot_duration=duration)

    with pytest.raises(InvalidConfiguration):
        generate_slots(hours)


def test_inverted_window_is_rejected() -> None:
    hours = OperatingHours(morning_start=time(12, 0), morning_end=time(9, 0))

    with pytest.raises(InvalidConfiguration):
        generate_slots(hours)
