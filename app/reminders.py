"""
Appointment reminder checker.

Accepted appointments starting 90–150 minutes from now get one SMS reminder.
The window is wider than the check interval so a booking is never skipped
between two runs; sent ids are remembered so it is not reminded twice.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .booking.slots import slot_start
from .db.repository import AppointmentRepository
from .notifications import SmsNotifier
from .schemas import Appointment, AppointmentStatus

logger = logging.getLogger(__name__)


class ReminderChecker:
    def __init__(
        self,
        repository: AppointmentRepository,
        notifier: SmsNotifier,
        window_start_minutes: int = 90,
        window_end_minutes: int = 150,
    ) -> None:
        self.repository = repository
        self.notifier = notifier
        self.window_start = timedelta(minutes=window_start_minutes)
        self.window_end = timedelta(minutes=window_end_minutes)
        self.sent: set[str] = set()

    def due(self, appointments: Iterable[Appointment], now: datetime) -> list[Appointment]:
        due = []
        for appointment in appointments:
            if appointment.status is not AppointmentStatus.ACCEPTED or appointment.id in self.sent:
                continue
            until = slot_start(appointment.date, appointment.time) - now
            if self.window_start <= until <= self.window_end:
                due.append(appointment)
        return due

    def check(self, now: Optional[datetime] = None) -> int:
        """Send reminders that are due; returns how many were sent."""
        # Local wall-clock time, matching how dates and times are stored.
        now = now or datetime.now()
        appointments = self.repository.list_appointments(
            status=AppointmentStatus.ACCEPTED.value,
            start_date=now.date().isoformat(),
            end_date=(now + self.window_end).date().isoformat(),
        )
        sent = 0
        for appointment in self.due(appointments, now):
            logger.info("Sending reminder for appointment %s", appointment.id)
            try:
                result = self.notifier.send_reminder(appointment)
            except Exception:
                logger.exception("Error processing appointment %s for reminder", appointment.id)
                continue
            if result.success:
                self.sent.add(appointment.id)
                sent += 1
            else:
                logger.warning("Reminder for appointment %s not sent: %s", appointment.id, result.error)
        return sent

    async def check_async(self) -> int:
        return await asyncio.to_thread(self.check)
