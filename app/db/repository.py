from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

import httpx

from ..booking.errors import NetworkUnavailable, PersistenceError, SlotTakenError, StatusConflictError
from ..config import Settings
from ..schemas import Appointment, AppointmentCreate, AvailabilityDay, Customer

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class AvailabilityRepository(Protocol):
    def list_days(
        self, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> dict[str, AvailabilityDay]:
        ...

    def get_day(self, date: str) -> Optional[AvailabilityDay]:
        ...

    def upsert_day(self, date: str, day: AvailabilityDay) -> AvailabilityDay:
        ...

    def delete_day(self, date: str) -> None:
        ...


class AppointmentRepository(Protocol):
    def list_appointments(
        self,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[Appointment]:
        ...

    def get(self, appointment_id: str) -> Optional[Appointment]:
        ...

    def create(self, payload: AppointmentCreate) -> Appointment:
        ...

    def update(
        self, appointment_id: str, changes: dict, expected_status: Optional[str] = None
    ) -> Optional[Appointment]:
        ...

    def delete(self, appointment_id: str) -> bool:
        ...


def _in_range(date: str, start_date: Optional[str], end_date: Optional[str]) -> bool:
    if start_date and date < start_date:
        return False
    if end_date and date > end_date:
        return False
    return True


@dataclass
class InMemoryAvailabilityRepository:
    store: dict[str, AvailabilityDay] = field(default_factory=dict)

    def list_days(
        self, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> dict[str, AvailabilityDay]:
        return {
            date: day.model_copy()
            for date, day in sorted(self.store.items())
            if _in_range(date, start_date, end_date)
        }

    def get_day(self, date: str) -> Optional[AvailabilityDay]:
        day = self.store.get(date)
        return day.model_copy() if day else None

    def upsert_day(self, date: str, day: AvailabilityDay) -> AvailabilityDay:
        self.store[date] = day.model_copy()
        return day

    def delete_day(self, date: str) -> None:
        self.store.pop(date, None)


@dataclass
class InMemoryAppointmentRepository:
    store: dict[str, Appointment] = field(default_factory=dict)
    default_duration: int = 45
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _slot_holder(self, date: str, time: str, exclude_id: str | None = None) -> Optional[Appointment]:
        for appointment in self.store.values():
            if appointment.id == exclude_id:
                continue
            if appointment.date == date and appointment.time == time and appointment.occupies_slot:
                return appointment
        return None

    def list_appointments(
        self,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[Appointment]:
        appointments = [
            appointment.model_copy()
            for appointment in self.store.values()
            if (status is None or appointment.status.value == status)
            and _in_range(appointment.date, start_date, end_date)
        ]
        return sorted(appointments, key=lambda appointment: (appointment.date, appointment.time))

    def get(self, appointment_id: str) -> Optional[Appointment]:
        appointment = self.store.get(appointment_id)
        return appointment.model_copy() if appointment else None

    def create(self, payload: AppointmentCreate) -> Appointment:
        row = payload.to_row(self.default_duration)
        now = datetime.now()
        with self.lock:
            if self._slot_holder(payload.date, payload.time):
                raise SlotTakenError(payload.date, payload.time)
            appointment = Appointment.from_row(
                {**row, "id": uuid.uuid4().hex, "created_at": now, "updated_at": now}
            )
            self.store[appointment.id] = appointment
        return appointment.model_copy()

    def update(
        self, appointment_id: str, changes: dict, expected_status: Optional[str] = None
    ) -> Optional[Appointment]:
        with self.lock:
            current = self.store.get(appointment_id)
            if current is None:
                return None
            if expected_status is not None and current.status.value != expected_status:
                raise StatusConflictError(appointment_id, expected_status)
            updates = dict(changes)
            if isinstance(updates.get("customer"), dict):
                updates["customer"] = Customer(**updates["customer"])
            updated = Appointment.model_validate(
                {**current.model_dump(), **updates, "updated_at": datetime.now()}
            )
            if updated.occupies_slot and self._slot_holder(updated.date, updated.time, exclude_id=appointment_id):
                raise SlotTakenError(updated.date, updated.time)
            self.store[appointment_id] = updated
        return updated.model_copy()

    def delete(self, appointment_id: str) -> bool:
        with self.lock:
            return self.store.pop(appointment_id, None) is not None


def _execute(query, slot: tuple[str, str] | None = None):
    try:
        return query.execute()
    except httpx.TransportError as exc:
        raise NetworkUnavailable(f"Supabase unreachable: {exc}") from exc
    except Exception as exc:
        if slot is not None and getattr(exc, "code", None) == UNIQUE_VIOLATION:
            raise SlotTakenError(*slot) from exc
        raise PersistenceError(str(exc)) from exc


def _day_from_row(row: dict) -> AvailabilityDay:
    return AvailabilityDay(time_slots=row.get("time_ranges") or [], closed=bool(row.get("is_closed")))


class SupabaseAvailabilityRepository:
    table = "availability"

    def __init__(self, client) -> None:
        self.client = client

    def list_days(
        self, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> dict[str, AvailabilityDay]:
        query = self.client.table(self.table).select("*").order("date")
        if start_date:
            query = query.gte("date", start_date)
        if end_date:
            query = query.lte("date", end_date)
        response = _execute(query)
        return {str(row["date"])[:10]: _day_from_row(row) for row in response.data or []}

    def get_day(self, date: str) -> Optional[AvailabilityDay]:
        response = _execute(self.client.table(self.table).select("*").eq("date", date).limit(1))
        rows = response.data or []
        return _day_from_row(rows[0]) if rows else None

    def upsert_day(self, date: str, day: AvailabilityDay) -> AvailabilityDay:
        payload = {
            "date": date,
            "time_ranges": list(day.time_slots),
            "is_closed": day.closed,
            "updated_at": datetime.now().isoformat(),
        }
        response = _execute(self.client.table(self.table).upsert(payload, on_conflict="date"))
        rows = response.data or []
        return _day_from_row(rows[0]) if rows else day

    def delete_day(self, date: str) -> None:
        _execute(self.client.table(self.table).delete().eq("date", date))


class SupabaseAppointmentRepository:
    table = "appointments"

    def __init__(self, client, default_duration: int = 45) -> None:
        self.client = client
        self.default_duration = default_duration

    def list_appointments(
        self,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[Appointment]:
        query = self.client.table(self.table).select("*").order("date").order("time")
        if status:
            query = query.eq("status", status)
        if start_date:
            query = query.gte("date", start_date)
        if end_date:
            query = query.lte("date", end_date)
        response = _execute(query)
        return [Appointment.from_row(row) for row in response.data or []]

    def get(self, appointment_id: str) -> Optional[Appointment]:
        response = _execute(self.client.table(self.table).select("*").eq("id", appointment_id).limit(1))
        rows = response.data or []
        return Appointment.from_row(rows[0]) if rows else None

    def create(self, payload: AppointmentCreate) -> Appointment:
        row = payload.to_row(self.default_duration)
        response = _execute(self.client.table(self.table).insert(row), slot=(payload.date, payload.time))
        return Appointment.from_row(response.data[0])

    def update(
        self, appointment_id: str, changes: dict, expected_status: Optional[str] = None
    ) -> Optional[Appointment]:
        payload = {key: value for key, value in changes.items() if key != "customer"}
        if "include_in_analytics" in payload:
            payload["include_in_analytics"] = bool(payload["include_in_analytics"])
        customer = changes.get("customer")
        if customer:
            payload.update(
                customer_name=customer.get("name"),
                customer_email=customer.get("email"),
                customer_phone=customer.get("phone"),
            )
        payload["updated_at"] = datetime.now().isoformat()
        current = self.get(appointment_id)
        if current is None:
            return None
        slot = (payload.get("date", current.date), payload.get("time", current.time))
        query = self.client.table(self.table).update(payload).eq("id", appointment_id)
        if expected_status is not None:
            # conditional write: no row comes back if the status moved on
            query = query.eq("status", expected_status)
        rows = _execute(query, slot=slot).data or []
        if not rows and expected_status is not None:
            raise StatusConflictError(appointment_id, expected_status)
        return Appointment.from_row(rows[0]) if rows else None

    def delete(self, appointment_id: str) -> bool:
        response = _execute(self.client.table(self.table).delete().eq("id", appointment_id))
        return bool(response.data)


def build_repositories(settings: Settings):
    if settings.persistence_backend == "memory":
        logger.warning("Using in-memory persistence; data is lost on restart")
        return (
            InMemoryAvailabilityRepository(),
            InMemoryAppointmentRepository(default_duration=settings.default_duration_minutes),
        )

    if not settings.supabase_url or not settings.supabase_key:
        raise ValueError("Missing Supabase configuration (SUPABASE_URL/SUPABASE_KEY).")

    from supabase import create_client

    client = create_client(settings.supabase_url, settings.supabase_key)
    availability_repo = SupabaseAvailabilityRepository(client)
    appointment_repo = SupabaseAppointmentRepository(client, default_duration=settings.default_duration_minutes)
    return availability_repo, appointment_repo
