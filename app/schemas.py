from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def check_date(value: str) -> str:
    if not DATE_PATTERN.match(value):
        raise ValueError("Invalid date format. Expected YYYY-MM-DD")
    datetime.strptime(value, "%Y-%m-%d")
    return value


def check_time(value: str) -> str:
    if not TIME_PATTERN.match(value):
        raise ValueError("Invalid time format. Expected HH:MM (24-hour)")
    return value


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    CANCELLED = "cancelled"


OCCUPYING_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.ACCEPTED})


class AvailabilityDay(BaseModel):
    """Bookable time slots for one calendar date.

    Slots are kept unique and ascending. ``closed`` hides every slot without
    discarding them, so reopening a date restores its previous times.
    """

    model_config = ConfigDict(populate_by_name=True)

    time_slots: list[str] = Field(default_factory=list, alias="timeSlots")
    closed: bool = False

    @field_validator("time_slots", mode="before")
    @classmethod
    def _normalize_slots(cls, value: Any) -> list[str]:
        if value is None:
            return []
        slots = [check_time(str(slot)) for slot in value]
        return sorted(set(slots))

    @property
    def is_empty(self) -> bool:
        return not self.time_slots and not self.closed

    def to_wire(self) -> dict:
        return {
            "timeSlots": list(self.time_slots),
            "closed": self.closed,
            "available": not self.closed,
        }


class Customer(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""


class Appointment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    customer: Customer
    service: str
    price: float = 0.0
    duration: int = 45
    date: str
    time: str
    status: AppointmentStatus = AppointmentStatus.PENDING
    include_in_analytics: bool = Field(default=True, alias="includeInAnalytics")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator("date")
    @classmethod
    def _check_date(cls, value: str) -> str:
        return check_date(value)

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return check_time(value)

    @property
    def occupies_slot(self) -> bool:
        return self.status in OCCUPYING_STATUSES

    @classmethod
    def from_row(cls, row: dict) -> "Appointment":
        return cls(
            id=row["id"],
            customer=Customer(
                name=row.get("customer_name") or "",
                email=row.get("customer_email") or "",
                phone=row.get("customer_phone") or "",
            ),
            service=row["service"],
            price=row.get("price") or 0,
            duration=row.get("duration") or 45,
            date=str(row["date"])[:10],
            time=str(row["time"])[:5],
            status=row.get("status") or AppointmentStatus.PENDING,
            include_in_analytics=row.get("include_in_analytics") is not False,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class AppointmentCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer: Customer = Field(default_factory=Customer)
    service: str
    price: float = 0.0
    duration: Optional[int] = None
    date: str
    time: str
    include_in_analytics: bool = Field(default=True, alias="includeInAnalytics")

    @field_validator("date")
    @classmethod
    def _check_date(cls, value: str) -> str:
        return check_date(value)

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        return check_time(value)

    def to_row(self, default_duration: int = 45) -> dict:
        return {
            "customer_name": self.customer.name.strip(),
            "customer_email": self.customer.email.strip(),
            "customer_phone": self.customer.phone.strip(),
            "service": self.service,
            "price": self.price,
            "duration": self.duration or default_duration,
            "date": self.date,
            "time": self.time,
            "status": AppointmentStatus.PENDING.value,
            "include_in_analytics": self.include_in_analytics,
        }


class AppointmentUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Optional[AppointmentStatus] = None
    customer: Optional[Customer] = None
    service: Optional[str] = None
    price: Optional[float] = None
    duration: Optional[int] = None
    date: Optional[str] = None
    time: Optional[str] = None
    include_in_analytics: Optional[bool] = Field(default=None, alias="includeInAnalytics")

    @field_validator("date")
    @classmethod
    def _check_date(cls, value: Optional[str]) -> Optional[str]:
        return check_date(value) if value is not None else value

    @field_validator("time")
    @classmethod
    def _check_time(cls, value: Optional[str]) -> Optional[str]:
        return check_time(value) if value is not None else value

    def changes(self) -> dict:
        """Non-null fields the caller actually sent, keyed by ``Appointment`` field name."""
        return self.model_dump(exclude_unset=True, exclude_none=True, mode="json")


class DateError(BaseModel):
    date: str
    error: str


class AvailabilityPayload(BaseModel):
    availability: dict[str, AvailabilityDay] = Field(default_factory=dict)

    def to_wire(self) -> dict:
        return {
            "availability": {date: day.to_wire() for date, day in sorted(self.availability.items())}
        }


class AvailabilitySaveResponse(AvailabilityPayload):
    errors: list[DateError] = Field(default_factory=list)
    message: Optional[str] = None
