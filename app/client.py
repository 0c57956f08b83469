from __future__ import annotations

import logging
from typing import Optional

import httpx

from .booking.errors import NetworkUnavailable, PersistenceError, RejectReason, RejectedByServer
from .schemas import (
    Appointment,
    AppointmentCreate,
    AvailabilityDay,
    AvailabilitySaveResponse,
    DateError,
)

logger = logging.getLogger(__name__)

_STATUS_REASONS = {
    404: RejectReason.NOT_FOUND,
    409: RejectReason.ILLEGAL_TRANSITION,
}


def _json_body(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_message(response: httpx.Response) -> str:
    body = _json_body(response)
    message = body.get("error") or body.get("message")
    if message:
        return str(message)
    return f"Server returned {response.status_code}: {response.reason_phrase}"


def _reason(response: httpx.Response) -> Optional[RejectReason]:
    raw = _json_body(response).get("reason")
    if raw:
        try:
            return RejectReason(raw)
        except ValueError:
            logger.warning("Unknown rejection reason from server: %s", raw)
    return _STATUS_REASONS.get(response.status_code)


class BookingApiClient:
    """Persistence service reached over the REST API.

    Transport failures raise ``NetworkUnavailable``; typed 4xx answers raise
    ``RejectedByServer`` so callers can show the server's own reason.
    """

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 10.0) -> None:
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @classmethod
    def from_settings(cls, settings) -> "BookingApiClient":
        return cls(settings.api_base_url)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return await self.client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise NetworkUnavailable(f"Cannot connect to server: {exc}") from exc

    def _raise_for_rejection(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        message = _error_message(response)
        reason = _reason(response)
        if reason is not None and response.status_code < 500:
            raise RejectedByServer(reason, message)
        raise PersistenceError(message)

    async def fetch_availability(
        self, start_date: Optional[str] = None, end_date: Optional[str] = None
    ) -> dict[str, AvailabilityDay]:
        params = {key: value for key, value in {"startDate": start_date, "endDate": end_date}.items() if value}
        response = await self._request("GET", "/api/availability", params=params)
        self._raise_for_rejection(response)
        data = response.json()
        if not isinstance(data, dict) or "availability" not in data:
            raise PersistenceError("Invalid response format from server")
        return {date: AvailabilityDay.model_validate(day) for date, day in data["availability"].items()}

    async def save_availability(self, days: dict[str, AvailabilityDay]) -> AvailabilitySaveResponse:
        body = {
            "availability": {
                date: {"timeSlots": list(day.time_slots), "closed": day.closed} for date, day in days.items()
            }
        }
        response = await self._request("POST", "/api/availability", json=body)
        if response.status_code == 500:
            details = _json_body(response).get("details")
            if isinstance(details, list):
                return AvailabilitySaveResponse(errors=[DateError.model_validate(item) for item in details])
        self._raise_for_rejection(response)
        return AvailabilitySaveResponse.model_validate(response.json())

    async def fetch_appointments(
        self,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> list[Appointment]:
        params = {
            key: value
            for key, value in {"status": status, "startDate": start_date, "endDate": end_date}.items()
            if value
        }
        response = await self._request("GET", "/api/appointments", params=params)
        self._raise_for_rejection(response)
        data = response.json()
        if not isinstance(data, list):
            raise PersistenceError("Invalid response format from server")
        return [Appointment.model_validate(item) for item in data]

    async def create_appointment(self, payload: AppointmentCreate) -> Appointment:
        response = await self._request(
            "POST", "/api/appointments", json=payload.model_dump(mode="json", by_alias=True)
        )
        self._raise_for_rejection(response)
        return Appointment.model_validate(response.json())

    async def update_appointment(self, appointment_id: str, changes: dict) -> Appointment:
        response = await self._request("PATCH", f"/api/appointments/{appointment_id}", json=changes)
        self._raise_for_rejection(response)
        return Appointment.model_validate(response.json())

    async def delete_appointment(self, appointment_id: str) -> None:
        response = await self._request("DELETE", f"/api/appointments/{appointment_id}")
        self._raise_for_rejection(response)
