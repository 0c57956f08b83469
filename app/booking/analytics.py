"""
Business analytics over appointments.

Only accepted appointments that are not excluded with ``include_in_analytics``
count towards revenue and popularity figures. Dates stay naive local values.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..schemas import Appointment, AppointmentStatus
from .slots import parse_date


@dataclass(frozen=True)
class AnalyticsSummary:
    total_revenue: float = 0.0
    revenue_by_date: dict[str, float] = field(default_factory=dict)
    bookings_by_time: dict[str, int] = field(default_factory=dict)
    bookings_by_weekday: dict[str, int] = field(default_factory=dict)
    bookings_by_service: dict[str, int] = field(default_factory=dict)
    bookings_by_client: dict[str, int] = field(default_factory=dict)

    @property
    def returning_clients(self) -> int:
        return sum(1 for count in self.bookings_by_client.values() if count > 1)

    @property
    def retention_rate(self) -> float:
        """Share of clients with more than one booking, in percent."""
        if not self.bookings_by_client:
            return 0.0
        return self.returning_clients / len(self.bookings_by_client) * 100


def analytics_appointments(
    appointments: Iterable[Appointment],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    client_email: Optional[str] = None,
) -> list[Appointment]:
    selected = []
    for appointment in appointments:
        if not appointment.include_in_analytics:
            continue
        if start_date and appointment.date < start_date:
            continue
        if end_date and appointment.date > end_date:
            continue
        if client_email and appointment.customer.email.lower() != client_email.lower():
            continue
        selected.append(appointment)
    return selected


def summarize(
    appointments: Iterable[Appointment],
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    client_email: Optional[str] = None,
) -> AnalyticsSummary:
    accepted = [
        appointment
        for appointment in analytics_appointments(appointments, start_date, end_date, client_email)
        if appointment.status is AppointmentStatus.ACCEPTED
    ]

    revenue: dict[str, float] = defaultdict(float)
    for appointment in accepted:
        revenue[appointment.date] += appointment.price

    return AnalyticsSummary(
        total_revenue=round(sum(revenue.values()), 2),
        revenue_by_date={date: round(amount, 2) for date, amount in sorted(revenue.items())},
        bookings_by_time=dict(sorted(Counter(a.time for a in accepted).items())),
        bookings_by_weekday=dict(Counter(parse_date(a.date).strftime("%A") for a in accepted)),
        bookings_by_service=dict(Counter(a.service for a in accepted).most_common()),
        bookings_by_client=dict(Counter(a.customer.email.lower() for a in accepted if a.customer.email)),
    )
