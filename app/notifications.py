"""
SMS notifications for appointment events, sent through the Twilio REST API.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from .booking.slots import format_date_display, format_time_display
from .schemas import Appointment, AppointmentStatus

logger = logging.getLogger(__name__)

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"


@dataclass(frozen=True)
class SmsResult:
    success: bool
    sid: Optional[str] = None
    error: Optional[str] = None


def format_phone_number(phone: str) -> str:
    """Best-effort E.164: bare 10-digit numbers are assumed to be US numbers."""
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def mask_phone(phone: str) -> str:
    digits = "".join(ch for ch in phone if ch.isdigit())
    if len(digits) < 4:
        return phone
    return f"***{digits[-4:]}"


class SmsNotifier:
    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        business_name: str = "GJ Fadezz",
        booking_url: str = "",
        timeout_seconds: float = 20.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.business_name = business_name
        self.booking_url = booking_url
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        if not self.enabled:
            logger.warning("Twilio credentials not found. SMS notifications will be disabled.")

    @classmethod
    def from_settings(cls, settings) -> "SmsNotifier":
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_phone_number,
            business_name=settings.business_name,
            booking_url=settings.booking_url,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def send_sms(self, to: str, message: str) -> SmsResult:
        if not self.enabled:
            logger.info("[SMS] Twilio not configured. Would send to %s: %s", mask_phone(to), message)
            return SmsResult(success=False, error="SMS service not configured")

        formatted = format_phone_number(to)
        try:
            with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = client.post(
                    TWILIO_MESSAGES_URL.format(account_sid=self.account_sid),
                    auth=(self.account_sid, self.auth_token),
                    data={"From": self.from_number, "To": formatted, "Body": message},
                )
                response.raise_for_status()
                sid = response.json().get("sid")
        except httpx.HTTPError as exc:
            logger.error("[SMS] Error sending message to %s: %s", mask_phone(formatted), exc)
            return SmsResult(success=False, error=str(exc))

        logger.info("[SMS] Message sent to %s. SID: %s", mask_phone(formatted), sid)
        return SmsResult(success=True, sid=sid)

    def _when(self, appointment: Appointment) -> str:
        return f"{format_date_display(appointment.date)} at {format_time_display(appointment.time)}"

    def send_confirmation(self, appointment: Appointment) -> SmsResult:
        message = (
            f"Hi {appointment.customer.name}! Your appointment for {appointment.service} on "
            f"{self._when(appointment)} has been received and is pending confirmation. "
            f"We'll notify you once it's been reviewed. - {self.business_name}"
        )
        return self.send_sms(appointment.customer.phone, message)

    def send_status_update(self, appointment: Appointment) -> SmsResult:
        if appointment.status is AppointmentStatus.ACCEPTED:
            message = (
                f"Great news {appointment.customer.name}! Your appointment for {appointment.service} on "
                f"{self._when(appointment)} has been confirmed. See you then! - {self.business_name}"
            )
        elif appointment.status is AppointmentStatus.DECLINED:
            message = (
                f"Hi {appointment.customer.name}, unfortunately we're unable to accommodate your "
                f"appointment for {appointment.service} on {self._when(appointment)}. "
                f"Please book a different time. - {self.business_name}"
            )
        else:
            return SmsResult(success=False, error="Unknown status")
        return self.send_sms(appointment.customer.phone, message)

    def send_reminder(self, appointment: Appointment) -> SmsResult:
        message = (
            f"Reminder: You have an appointment for {appointment.service} with {self.business_name} "
            f"today ({format_date_display(appointment.date)}) at {format_time_display(appointment.time)}. "
            "See you in 2 hours!"
        )
        return self.send_sms(appointment.customer.phone, message)

    def send_cancellation(self, appointment: Appointment) -> SmsResult:
        message = (
            f"Hi {appointment.customer.name}, we're sorry to inform you that your appointment for "
            f"{appointment.service} on {self._when(appointment)} has been cancelled. "
            f"Please reschedule at your earliest convenience: {self.booking_url} - {self.business_name}"
        )
        return self.send_sms(appointment.customer.phone, message)

    def for_status(self, status: AppointmentStatus) -> Optional[Callable[[Appointment], SmsResult]]:
        if status in (AppointmentStatus.ACCEPTED, AppointmentStatus.DECLINED):
            return self.send_status_update
        if status is AppointmentStatus.CANCELLED:
            return self.send_cancellation
        return None


def notify_safely(send: Callable[[Appointment], SmsResult], appointment: Appointment) -> None:
    # Notifications never fail a booking or a status change.
    try:
        result = send(appointment)
    except Exception:
        logger.exception("[SMS] Notification for appointment %s crashed", appointment.id)
        return
    if not result.success:
        logger.warning("[SMS] Notification for appointment %s not sent: %s", appointment.id, result.error)
