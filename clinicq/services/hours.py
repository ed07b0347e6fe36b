"""Operating hours and slot generation."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from clinicq.services.errors import InvalidConfiguration

DEFAULT_SLOT_DURATION = 15

Window = Tuple[Optional[time], Optional[time]]


@dataclass(frozen=True)
class OperatingHours:
    """Morning and evening windows of a clinic.

    Either window may be unset; a clinic with neither only takes phone
    bookings.
    """

    morning_start: Optional[time] = None
    morning_end: Optional[time] = None
    evening_start: Optional[time] = None
    evening_end: Optional[time] = None
    slot_duration: int = DEFAULT_SLOT_DURATION

    @property
    def windows(self) -> List[Window]:
        return [
            (self.morning_start, self.morning_end),
            (self.evening_start, self.evening_end),
        ]

    def validate(self) -> "OperatingHours":
        """Raise ``InvalidConfiguration`` for a zero duration or inverted window."""

        if self.slot_duration is None or self.slot_duration <= 0:
            raise InvalidConfiguration(
                f"Slot duration must be positive, got {self.slot_duration}"
            )
        for start, end in self.windows:
            if start is not None and end is not None and start >= end:
                raise InvalidConfiguration(
                    f"Window start {start.isoformat('minutes')} must be before "
                    f"end {end.isoformat('minutes')}"
                )
        return self


def generate_slots(hours: OperatingHours) -> List[time]:
    """Return every bookable time of day, morning window first.

    Each window yields ``start, start + duration, ...`` strictly before its
    end. Windows with a missing bound are skipped, so the result may be empty.
    """

    hours.validate()
    step = timedelta(minutes=hours.slot_duration)
    # Arithmetic on a fixed day keeps time-of-day comparisons simple.
    anchor = date(2000, 1, 1)

    slots: List[time] = []
    for start, end in hours.windows:
        if start is None or end is None:
            continue
        current = datetime.combine(anchor, start)
        stop = datetime.combine(anchor, end)
        while current < stop:
            slots.append(current.time())
            current += step
    return slots

