"""
Slot grid arithmetic.

The day is quantized into fixed slots (30 minutes from 08:00, 20 per day by
default). An appointment is drawn in the slot that matches its start exactly;
the slots it covers afterwards are continuation slots that defer to it and
cannot take a new booking.
"""

import math
from datetime import date, datetime
from typing import Iterable, Optional

from ...config import SCHEDULE_START_HOUR, SLOT_MINUTES, SLOTS_PER_DAY
from ...models import STATUS_CANCELLED, Appointment
from .time_calculator import effective_duration, interval_end

SLOT_START = "start"
SLOT_CONTINUATION = "continuation"
SLOT_FREE = "free"


def slot_span(duration_minutes: Optional[int]) -> int:
    """Number of grid slots an appointment of this duration occupies"""
    return math.ceil(effective_duration(duration_minutes) / SLOT_MINUTES)


def time_slots() -> list[str]:
    """Grid labels: 08:00, 08:30, ... 17:30"""
    labels = []
    for i in range(SLOTS_PER_DAY):
        minutes = SCHEDULE_START_HOUR * 60 + i * SLOT_MINUTES
        labels.append(f"{minutes // 60:02d}:{minutes % 60:02d}")
    return labels


def slot_datetime(day: date, slot_time: str) -> datetime:
    hour, minute = map(int, slot_time.split(":"))
    return datetime(day.year, day.month, day.day, hour, minute)


def _duration_of(appointment: Appointment) -> Optional[int]:
    procedure = getattr(appointment, "procedure", None)
    return procedure.duration if procedure is not None else None


def _applies(appointment: Appointment, dentist_id: Optional[int]) -> bool:
    if appointment.status == STATUS_CANCELLED:
        return False
    return dentist_id is None or appointment.dentist_id == dentist_id


def is_starting_slot(
    appointment: Appointment, day: date, slot_time: str, dentist_id: Optional[int] = None
) -> bool:
    """True when the appointment starts exactly at this slot boundary"""
    if not _applies(appointment, dentist_id):
        return False
    return appointment.scheduled_date == slot_datetime(day, slot_time)


def is_continuation_slot(
    appointment: Appointment, day: date, slot_time: str, dentist_id: Optional[int] = None
) -> bool:
    """True when the slot lies strictly inside the appointment's interval"""
    if not _applies(appointment, dentist_id):
        return False
    start = appointment.scheduled_date
    end = interval_end(start, _duration_of(appointment))
    return start < slot_datetime(day, slot_time) < end


def build_day_grid(
    appointments: Iterable[Appointment], day: date, dentist_id: Optional[int] = None
) -> list[dict]:
    """Classify every slot of the day for one dentist (or all, when dentist_id is None)"""
    appointments = list(appointments)
    grid = []
    for label in time_slots():
        cell = {
            "time": label,
            "kind": SLOT_FREE,
            "appointmentId": None,
            "span": 0,
        }
        for appointment in appointments:
            if is_starting_slot(appointment, day, label, dentist_id):
                cell.update(
                    kind=SLOT_START,
                    appointmentId=appointment.id,
                    span=slot_span(_duration_of(appointment)),
                )
                break
            if is_continuation_slot(appointment, day, label, dentist_id):
                cell.update(kind=SLOT_CONTINUATION, appointmentId=appointment.id)
                break
        grid.append(cell)
    return grid
