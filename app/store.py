from __future__ import annotations

import itertools
import logging
from collections import Counter
from datetime import date as Date
from typing import Callable, Dict, List, Optional, Protocol, Union

from .booking.analytics import AnalyticsSummary, analytics_appointments, summarize
from .booking.editor import AvailabilityEditor
from .booking.errors import (
    Accepted,
    NetworkUnavailable,
    PersistenceError,
    RejectedByServer,
    RejectReason,
    Rejection,
)
from .booking.slots import resolve_slots
from .booking.validator import transition_status, validate_and_reserve
from .polling import PeriodicTask
from .schemas import (
    Appointment,
    AppointmentCreate,
    AppointmentStatus,
    AvailabilityDay,
    AvailabilitySaveResponse,
)

logger = logging.getLogger(__name__)


class PersistenceService(Protocol):
    async def fetch_availability(
        self, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> Dict[str, AvailabilityDay]:
        ...

    async def save_availability(self, days: Dict[str, AvailabilityDay]) -> AvailabilitySaveResponse:
        ...

    async def fetch_appointments(
        self,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Appointment]:
        ...

    async def create_appointment(self, payload: AppointmentCreate) -> Appointment:
        ...

    async def update_appointment(self, appointment_id: str, changes: dict) -> Appointment:
        ...

    async def delete_appointment(self, appointment_id: str) -> None:
        ...


class _SequencedCache:
    """Applies fetch results in request order: an older response never replaces a newer one."""

    def __init__(self) -> None:
        self._fetch_seq = itertools.count(1)
        self._applied_seq = 0
        self.stale = False

    def _next_seq(self) -> int:
        return next(self._fetch_seq)

    def supersede_fetches(self) -> None:
        """Mark a local commit as newer than any fetch still in flight."""
        self._applied_seq = self._next_seq()

    def _accept(self, seq: int) -> bool:
        if seq <= self._applied_seq:
            logger.debug("Dropping out-of-order fetch #%d (applied #%d)", seq, self._applied_seq)
            return False
        self._applied_seq = seq
        self.stale = False
        return True


class AvailabilityCache(_SequencedCache):
    def __init__(self, persistence: PersistenceService) -> None:
        super().__init__()
        self.persistence = persistence
        self.days: Dict[str, AvailabilityDay] = {}
        # dates deleted locally that still need clearing remotely
        self.removed: set[str] = set()

    def get(self, date: str) -> Optional[AvailabilityDay]:
        return self.days.get(date)

    async def refresh(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> bool:
        seq = self._next_seq()
        try:
            days = await self.persistence.fetch_availability(start_date, end_date)
        except PersistenceError as exc:
            self.stale = True
            logger.warning("Availability refresh failed, using cached snapshot: %s", exc)
            return False
        if not self._accept(seq):
            return False
        self.days = {date: day for date, day in days.items() if not day.is_empty}
        return True


class AppointmentCache(_SequencedCache):
    def __init__(self, persistence: PersistenceService) -> None:
        super().__init__()
        self.persistence = persistence
        self.appointments: Dict[str, Appointment] = {}

    def get(self, appointment_id: str) -> Optional[Appointment]:
        return self.appointments.get(appointment_id)

    def on_date(self, date: str) -> List[Appointment]:
        return [appointment for appointment in self.appointments.values() if appointment.date == date]

    def put(self, appointment: Appointment) -> None:
        self.appointments[appointment.id] = appointment

    def ordered(self) -> List[Appointment]:
        return sorted(self.appointments.values(), key=lambda appointment: (appointment.date, appointment.time))

    async def refresh(self) -> bool:
        seq = self._next_seq()
        try:
            appointments = await self.persistence.fetch_appointments()
        except PersistenceError as exc:
            self.stale = True
            logger.warning("Appointment refresh failed, using cached snapshot: %s", exc)
            return False
        if not self._accept(seq):
            return False
        self.appointments = {appointment.id: appointment for appointment in appointments}
        return True


class BookingSession:
    """Per-client view of availability and appointments.

    Reads come from the caches; every mutation is committed to the
    persistence service before it is reflected locally.
    """

    def __init__(self, persistence: PersistenceService, today: Callable[[], Date] = Date.today) -> None:
        self.persistence = persistence
        self.availability = AvailabilityCache(persistence)
        self.appointments = AppointmentCache(persistence)
        self.editor = AvailabilityEditor(self.availability, persistence, today=today)
        self.updating: set[str] = set()

    async def refresh(self) -> None:
        if not self.editor.has_unsaved_edits:
            await self.availability.refresh()
        if not self.updating:
            await self.appointments.refresh()

    def poller(self, interval_seconds: float) -> PeriodicTask:
        """Background refresh loop; call ``trigger()`` on it when the view regains focus."""
        return PeriodicTask(self.refresh, interval_seconds, name="booking_session")

    def bookable_slots(self, date: str) -> List[str]:
        return resolve_slots(self.availability.get(date), self.appointments.on_date(date))

    def analytics(
        self, start_date: Optional[str] = None, end_date: Optional[str] = None, client_email: Optional[str] = None
    ) -> AnalyticsSummary:
        return summarize(self.appointments.ordered(), start_date, end_date, client_email)

    def stats(self) -> Dict[str, float]:
        """Dashboard counts per status over appointments included in analytics, plus revenue."""
        included = analytics_appointments(self.appointments.ordered())
        counts = Counter(appointment.status.value for appointment in included)
        return {status.value: counts.get(status.value, 0) for status in AppointmentStatus} | {
            "total": sum(counts.values()),
            "revenue": summarize(included).total_revenue,
        }

    async def book(self, payload: AppointmentCreate) -> Union[Accepted[Appointment], Rejection]:
        check = validate_and_reserve(
            payload.date,
            self.availability.get(payload.date),
            self.appointments.on_date(payload.date),
            payload.time,
            payload.customer,
        )
        if isinstance(check, Rejection):
            return check
        try:
            created = await self.persistence.create_appointment(payload)
        except RejectedByServer as exc:
            if exc.reason is RejectReason.SLOT_TAKEN:
                logger.warning("Slot %s %s was taken before the booking reached the server", payload.date, payload.time)
            await self.appointments.refresh()
            return exc.as_rejection()
        except NetworkUnavailable:
            return Rejection(
                RejectReason.NETWORK_UNAVAILABLE, "Cannot connect to server. Please try booking again."
            )
        except PersistenceError as exc:
            return Rejection(RejectReason.SERVER_ERROR, f"Failed to create appointment: {exc}")
        self.appointments.put(created)
        self.appointments.supersede_fetches()
        await self.appointments.refresh()
        return Accepted(created)

    async def update_status(
        self, appointment_id: str, status: AppointmentStatus | str
    ) -> Union[Accepted[Appointment], Rejection]:
        if appointment_id in self.updating:
            return Rejection(RejectReason.UPDATE_IN_PROGRESS, "This appointment is already being updated.")
        current = self.appointments.get(appointment_id)
        if current is None:
            return Rejection(RejectReason.NOT_FOUND, "Appointment not found.")
        outcome = transition_status(current, status)
        if isinstance(outcome, Rejection) or outcome.value.status == current.status:
            return outcome

        # Optimistic: show the new status now, put the old one back if the commit fails.
        self.updating.add(appointment_id)
        self.appointments.put(outcome.value)
        try:
            committed = await self.persistence.update_appointment(
                appointment_id, {"status": outcome.value.status.value}
            )
        except PersistenceError as exc:
            self.appointments.put(current)
            logger.warning("Status update for %s failed, reverted to %s: %s", appointment_id, current.status.value, exc)
            if isinstance(exc, RejectedByServer):
                return exc.as_rejection()
            if isinstance(exc, NetworkUnavailable):
                return Rejection(
                    RejectReason.NETWORK_UNAVAILABLE,
                    "Failed to update appointment status. Cannot connect to server. Status reverted.",
                )
            return Rejection(RejectReason.SERVER_ERROR, f"Failed to update appointment status: {exc}")
        finally:
            self.updating.discard(appointment_id)
        self.appointments.put(committed)
        self.appointments.supersede_fetches()
        return Accepted(committed)

    async def cancel(self, appointment_id: str) -> Union[Accepted[Appointment], Rejection]:
        return await self.update_status(appointment_id, AppointmentStatus.CANCELLED)

    async def delete(self, appointment_id: str) -> Union[Accepted[str], Rejection]:
        try:
            await self.persistence.delete_appointment(appointment_id)
        except RejectedByServer as exc:
            return exc.as_rejection()
        except NetworkUnavailable:
            return Rejection(RejectReason.NETWORK_UNAVAILABLE, "Cannot connect to server. Appointment not deleted.")
        except PersistenceError as exc:
            return Rejection(RejectReason.SERVER_ERROR, f"Failed to delete appointment: {exc}")
        self.appointments.appointments.pop(appointment_id, None)
        self.appointments.supersede_fetches()
        return Accepted(appointment_id)
