from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, Optional

from dateutil import parser as date_parser

from ..schemas import OCCUPYING_STATUSES, Appointment, AppointmentStatus, AvailabilityDay, check_time


def is_occupying(status: AppointmentStatus | str) -> bool:
    return AppointmentStatus(status) in OCCUPYING_STATUSES


def occupied_times(appointments: Iterable[Appointment], on_date: str | None = None) -> set[str]:
    return {
        appointment.time
        for appointment in appointments
        if appointment.occupies_slot and (on_date is None or appointment.date == on_date)
    }


def resolve_slots(day: Optional[AvailabilityDay], appointments_on_date: Iterable[Appointment]) -> list[str]:
    """Times still bookable on a date: offered slots minus pending/accepted bookings."""
    if day is None or day.closed:
        return []
    taken = occupied_times(appointments_on_date)
    # zero-padded HH:MM sorts chronologically as plain strings
    return sorted(slot for slot in set(day.time_slots) if slot not in taken)


def parse_date(value: str) -> date:
    # strptime keeps the value a naive local date; no UTC round trip.
    return datetime.strptime(value, "%Y-%m-%d").date()


def is_valid_time(value: str) -> bool:
    try:
        check_time(value)
    except ValueError:
        return False
    return True


def normalize_time(value: str) -> str:
    """Accept '14:30', '2:30 PM' or '2:30pm' and return 24-hour 'HH:MM'."""
    try:
        parsed = date_parser.parse(value.strip(), fuzzy=True)
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"invalid time: {value!r}") from exc
    return check_time(parsed.strftime("%H:%M"))


def format_date_display(value: str) -> str:
    parsed = parse_date(value)
    return parsed.strftime("%A, %B ") + f"{parsed.day}, {parsed.year}"


def format_time_display(value: str) -> str:
    dt = datetime.strptime(value, "%H:%M")
    return dt.strftime("%-I:%M %p")


def slot_start(appointment_date: str, appointment_time: str) -> datetime:
    return datetime.strptime(f"{appointment_date} {appointment_time}", "%Y-%m-%d %H:%M")
