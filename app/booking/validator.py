from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Union

from ..schemas import Appointment, AppointmentStatus, AvailabilityDay, Customer
from .errors import Accepted, RejectReason, Rejection
from .slots import occupied_times

LEGAL_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.ACCEPTED, AppointmentStatus.DECLINED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.ACCEPTED: frozenset({AppointmentStatus.DECLINED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.DECLINED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

# Statuses after which the customer gets a message.
NOTIFY_ON = frozenset(
    {AppointmentStatus.ACCEPTED, AppointmentStatus.DECLINED, AppointmentStatus.CANCELLED}
)


@dataclass(frozen=True)
class ReservationTicket:
    date: str
    time: str
    customer: Customer


def validate_and_reserve(
    date: str,
    day: Optional[AvailabilityDay],
    appointments_on_date: Iterable[Appointment],
    requested_time: str,
    customer: Customer,
) -> Union[Accepted[ReservationTicket], Rejection]:
    """Advisory booking check against the last known availability and bookings.

    The persistence layer repeats the slot uniqueness check at write time, so a
    ticket is not a guarantee that the insert will succeed.
    """
    if day is None or day.closed:
        return Rejection(
            RejectReason.DATE_UNAVAILABLE,
            "This date is not available for booking. Please select a date with available time slots.",
        )
    if requested_time not in day.time_slots:
        return Rejection(RejectReason.SLOT_NOT_OFFERED, f"{requested_time} is not offered on {date}")
    if requested_time in occupied_times(appointments_on_date, on_date=date):
        return Rejection(RejectReason.SLOT_TAKEN, "This time slot is already booked")
    if not (customer.name.strip() and customer.email.strip() and customer.phone.strip()):
        return Rejection(RejectReason.INVALID_CUSTOMER, "Customer information is required")
    return Accepted(ReservationTicket(date=date, time=requested_time, customer=customer))


def can_transition(current: AppointmentStatus, new_status: AppointmentStatus) -> bool:
    return current == new_status or new_status in LEGAL_TRANSITIONS[current]


def transition_status(
    appointment: Appointment, new_status: AppointmentStatus | str
) -> Union[Accepted[Appointment], Rejection]:
    new_status = AppointmentStatus(new_status)
    if appointment.status == new_status:
        return Accepted(appointment)
    if not can_transition(appointment.status, new_status):
        return Rejection(
            RejectReason.ILLEGAL_TRANSITION,
            f"Cannot change appointment from {appointment.status.value} to {new_status.value}",
        )
    return Accepted(appointment.model_copy(update={"status": new_status}))
