from __future__ import annotations

import pytest

from app.booking.analytics import AnalyticsSummary, analytics_appointments, summarize
from app.store import BookingSession


@pytest.fixture
def booked(appointment_repo, make_booking):
    """Books a slot and moves it to ``status``; returns the stored appointment."""

    def _book(date, time, status="accepted", service="Haircut", include=True, email=None):
        appointment = appointment_repo.create(make_booking(date, time, service))
        changes = {"status": status, "include_in_analytics": include}
        if email:
            changes["customer"] = {**appointment.customer.model_dump(), "email": email}
        return appointment_repo.update(appointment.id, changes)

    return _book


def test_excluded_appointments_are_ignored(booked) -> None:
    appointments = [
        booked("2025-06-10", "09:00"),
        booked("2025-06-10", "10:00", include=False),
    ]

    summary = summarize(appointments)

    assert summary.total_revenue == 30.0
    assert summary.bookings_by_time == {"09:00": 1}
    assert analytics_appointments(appointments) == appointments[:1]


def test_only_accepted_bookings_count(booked) -> None:
    appointments = [
        booked("2025-06-10", "09:00"),
        booked("2025-06-10", "10:00", status="pending"),
        booked("2025-06-10", "11:00", status="declined"),
        booked("2025-06-10", "12:00", status="cancelled"),
    ]
    assert summarize(appointments).total_revenue == 30.0


def test_revenue_and_popularity_breakdowns(booked) -> None:
    appointments = [
        booked("2025-06-11", "14:00", service="Fade"),
        booked("2025-06-10", "09:00"),
        booked("2025-06-10", "14:00"),
        booked("2025-06-11", "09:00"),
    ]

    summary = summarize(appointments)

    assert summary.total_revenue == 120.0
    assert list(summary.revenue_by_date.items()) == [("2025-06-10", 60.0), ("2025-06-11", 60.0)]
    assert list(summary.bookings_by_time) == ["09:00", "14:00"]
    assert summary.bookings_by_time == {"09:00": 2, "14:00": 2}
    assert list(summary.bookings_by_service.items()) == [("Haircut", 3), ("Fade", 1)]
    assert summary.bookings_by_weekday == {"Tuesday": 2, "Wednesday": 2}


def test_date_range_and_client_filters(booked) -> None:
    appointments = [
        booked("2025-06-09", "09:00"),
        booked("2025-06-10", "09:00", email="sam@example.com"),
        booked("2025-06-12", "09:00"),
    ]

    assert summarize(appointments, start_date="2025-06-10", end_date="2025-06-11").total_revenue == 30.0
    assert summarize(appointments, client_email="SAM@example.com").bookings_by_client == {"sam@example.com": 1}


def test_retention_counts_returning_clients(booked) -> None:
    appointments = [
        booked("2025-06-10", "09:00"),
        booked("2025-06-11", "09:00", email="JORDAN@example.com"),
        booked("2025-06-12", "09:00", email="sam@example.com"),
    ]

    summary = summarize(appointments)

    assert summary.bookings_by_client == {"jordan@example.com": 2, "sam@example.com": 1}
    assert summary.returning_clients == 1
    assert summary.retention_rate == 50.0


def test_empty_summary() -> None:
    summary = summarize([])
    assert summary == AnalyticsSummary()
    assert summary.retention_rate == 0.0


def test_session_stats_skip_excluded_appointments(booked) -> None:
    session = BookingSession(persistence=None)
    for appointment in (
        booked("2025-06-10", "09:00"),
        booked("2025-06-10", "10:00", status="pending"),
        booked("2025-06-10", "11:00", include=False),
    ):
        session.appointments.put(appointment)

    assert session.stats() == {
        "pending": 1,
        "accepted": 1,
        "declined": 0,
        "cancelled": 0,
        "total": 2,
        "revenue": 30.0,
    }
    assert session.analytics().bookings_by_time == {"09:00": 1}
