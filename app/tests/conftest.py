from __future__ import annotations

import os

# The API module builds its repositories at import time.
os.environ["PERSISTENCE_BACKEND"] = "memory"
os.environ["REMINDERS_ENABLED"] = "false"

import pytest

from app.db.repository import InMemoryAppointmentRepository, InMemoryAvailabilityRepository
from app.schemas import AppointmentCreate, Customer


@pytest.fixture
def customer() -> Customer:
    return Customer(name="Jordan Lee", email="jordan@example.com", phone="555-123-4567")


@pytest.fixture
def availability_repo() -> InMemoryAvailabilityRepository:
    return InMemoryAvailabilityRepository()


@pytest.fixture
def appointment_repo() -> InMemoryAppointmentRepository:
    return InMemoryAppointmentRepository()


@pytest.fixture
def make_booking(customer):
    def _make(date: str, time: str, service: str = "Haircut") -> AppointmentCreate:
        return AppointmentCreate(customer=customer, service=service, price=30, date=date, time=time)

    return _make
