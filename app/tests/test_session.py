from __future__ import annotations

import asyncio
from datetime import date

import httpx
import pytest

from app import main
from app.booking.errors import Accepted, NetworkUnavailable, PartialFailure, RejectReason, Rejection
from app.client import BookingApiClient
from app.notifications import SmsNotifier
from app.schemas import Appointment, AppointmentCreate, AppointmentStatus, AvailabilityDay, Customer
from app.store import BookingSession

DATE = "2025-06-10"
TODAY = date(2025, 6, 1)


@pytest.fixture
def api(availability_repo, appointment_repo):
    main.app.dependency_overrides[main.get_availability_repo] = lambda: availability_repo
    main.app.dependency_overrides[main.get_appointment_repo] = lambda: appointment_repo
    main.app.dependency_overrides[main.get_notifier] = lambda: SmsNotifier(None, None, None)
    yield main.app
    main.app.dependency_overrides.clear()


def _api_client(app) -> BookingApiClient:
    transport = httpx.ASGITransport(app=app)
    return BookingApiClient("http://test", client=httpx.AsyncClient(transport=transport, base_url="http://test"))


def _offline_client() -> BookingApiClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return BookingApiClient(
        "http://test", client=httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    )


def _appointment(id: str, status: AppointmentStatus = AppointmentStatus.PENDING, time: str = "09:00") -> Appointment:
    return Appointment(
        id=id,
        customer=Customer(name="A", email="a@example.com", phone="5551234567"),
        service="Haircut",
        date=DATE,
        time=time,
        status=status,
    )


def test_booking_session_end_to_end(api, availability_repo, make_booking) -> None:
    availability_repo.upsert_day(DATE, AvailabilityDay(time_slots=["09:00", "09:45"]))

    async def scenario():
        session = BookingSession(_api_client(api), today=lambda: TODAY)
        await session.refresh()
        steps = {"initial": session.bookable_slots(DATE)}

        booked = await session.book(make_booking(DATE, "09:00"))
        steps["booked"] = booked
        steps["after_booking"] = session.bookable_slots(DATE)
        steps["again"] = await session.book(make_booking(DATE, "09:00"))

        steps["declined"] = await session.update_status(booked.value.id, "declined")
        steps["after_decline"] = session.bookable_slots(DATE)
        steps["stats"] = session.stats()
        await session.persistence.aclose()
        return steps

    steps = asyncio.run(scenario())

    assert steps["initial"] == ["09:00", "09:45"]
    assert isinstance(steps["booked"], Accepted)
    assert steps["booked"].value.status is AppointmentStatus.PENDING
    assert steps["after_booking"] == ["09:45"]
    assert steps["again"].reason is RejectReason.SLOT_TAKEN
    assert steps["declined"].value.status is AppointmentStatus.DECLINED
    assert steps["after_decline"] == ["09:00", "09:45"]
    assert steps["stats"] == {"pending": 0, "accepted": 0, "declined": 1, "cancelled": 0, "total": 1, "revenue": 0.0}


def test_stale_session_gets_server_slot_taken(api, availability_repo, make_booking) -> None:
    availability_repo.upsert_day(DATE, AvailabilityDay(time_slots=["09:00"]))

    async def scenario():
        first = BookingSession(_api_client(api))
        second = BookingSession(_api_client(api))
        await first.refresh()
        await second.refresh()
        await first.book(make_booking(DATE, "09:00"))
        result = await second.book(make_booking(DATE, "09:00"))
        return result, second.bookable_slots(DATE)

    result, slots_after = asyncio.run(scenario())

    assert isinstance(result, Rejection)
    assert result.reason is RejectReason.SLOT_TAKEN
    assert slots_after == []


def test_illegal_transition_is_rejected_locally(api, availability_repo, make_booking) -> None:
    availability_repo.upsert_day(DATE, AvailabilityDay(time_slots=["09:00"]))

    async def scenario():
        session = BookingSession(_api_client(api))
        await session.refresh()
        booked = await session.book(make_booking(DATE, "09:00"))
        await session.cancel(booked.value.id)
        return await session.update_status(booked.value.id, AppointmentStatus.ACCEPTED)

    result = asyncio.run(scenario())
    assert result.reason is RejectReason.ILLEGAL_TRANSITION


def test_editor_saves_through_api(api, availability_repo) -> None:
    availability_repo.upsert_day("2025-06-11", AvailabilityDay(time_slots=["15:00"]))

    async def scenario():
        session = BookingSession(_api_client(api), today=lambda: TODAY)
        await session.refresh()
        session.editor.add_slot(DATE, "9:00 AM")
        session.editor.remove_slot("2025-06-11", "15:00")
        return await session.editor.save_snapshot(), session

    result, session = asyncio.run(scenario())

    assert result.ok
    assert availability_repo.get_day(DATE).time_slots == ["09:00"]
    assert availability_repo.get_day("2025-06-11") is None
    assert set(session.availability.days) == {DATE}


def test_editor_partial_failure_through_api(api, availability_repo, monkeypatch) -> None:
    original = availability_repo.upsert_day

    def flaky(day_date, day):
        if day_date == "2025-06-11":
            from app.booking.errors import PersistenceError

            raise PersistenceError("row locked")
        return original(day_date, day)

    monkeypatch.setattr(availability_repo, "upsert_day", flaky)

    async def scenario():
        session = BookingSession(_api_client(api), today=lambda: TODAY)
        session.editor.add_slot(DATE, "09:00")
        session.editor.add_slot("2025-06-11", "09:00")
        return await session.editor.save_snapshot()

    result = asyncio.run(scenario())

    assert isinstance(result, PartialFailure)
    assert result.succeeded == [DATE]
    assert result.failed == {"2025-06-11": "row locked"}


def test_refresh_failure_keeps_cached_snapshot() -> None:
    async def scenario():
        session = BookingSession(_offline_client())
        session.availability.days = {DATE: AvailabilityDay(time_slots=["09:00"])}
        ok = await session.availability.refresh()
        booked = await session.book(
            AppointmentCreate(
                customer=Customer(name="A", email="a@example.com", phone="5551234567"),
                service="Haircut",
                date=DATE,
                time="09:00",
            )
        )
        return ok, session, booked

    ok, session, booked = asyncio.run(scenario())

    assert ok is False
    assert session.availability.stale
    assert session.bookable_slots(DATE) == ["09:00"]
    assert booked.reason is RejectReason.NETWORK_UNAVAILABLE


class _ControlledPersistence:
    """Fetches and updates complete only when the test releases them."""

    def __init__(self) -> None:
        self.fetch_gates: list[tuple[asyncio.Event, list[Appointment]]] = []
        self.update_gate = asyncio.Event()
        self.update_error: Exception | None = None
        self.updates: list[tuple[str, dict]] = []

    async def fetch_availability(self, start_date=None, end_date=None):
        return {}

    async def fetch_appointments(self, status=None, start_date=None, end_date=None):
        gate, result = self.fetch_gates.pop(0)
        await gate.wait()
        return result

    async def update_appointment(self, appointment_id, changes):
        self.updates.append((appointment_id, changes))
        await self.update_gate.wait()
        if self.update_error is not None:
            raise self.update_error
        return _appointment(appointment_id, AppointmentStatus(changes["status"]))


def test_slower_older_fetch_does_not_overwrite_newer() -> None:
    persistence = _ControlledPersistence()
    older_gate, newer_gate = asyncio.Event(), asyncio.Event()
    persistence.fetch_gates = [
        (older_gate, [_appointment("old")]),
        (newer_gate, [_appointment("new")]),
    ]

    async def scenario():
        session = BookingSession(persistence)
        older = asyncio.create_task(session.appointments.refresh())
        await asyncio.sleep(0)
        newer = asyncio.create_task(session.appointments.refresh())
        await asyncio.sleep(0)
        newer_gate.set()
        applied_newer = await newer
        older_gate.set()
        applied_older = await older
        return session, applied_newer, applied_older

    session, applied_newer, applied_older = asyncio.run(scenario())

    assert applied_newer is True
    assert applied_older is False
    assert list(session.appointments.appointments) == ["new"]


def test_failed_status_update_rolls_back() -> None:
    persistence = _ControlledPersistence()
    persistence.update_error = NetworkUnavailable("offline")

    async def scenario():
        session = BookingSession(persistence)
        session.appointments.put(_appointment("7"))
        update = asyncio.create_task(session.update_status("7", AppointmentStatus.ACCEPTED))
        await asyncio.sleep(0)
        during = session.appointments.get("7").status
        second = await session.update_status("7", AppointmentStatus.DECLINED)
        persistence.update_gate.set()
        return session, during, second, await update

    session, during, second, result = asyncio.run(scenario())

    assert during is AppointmentStatus.ACCEPTED
    assert second.reason is RejectReason.UPDATE_IN_PROGRESS
    assert result.reason is RejectReason.NETWORK_UNAVAILABLE
    assert session.appointments.get("7").status is AppointmentStatus.PENDING
    assert session.updating == set()
    assert persistence.updates == [("7", {"status": "accepted"})]


def test_successful_status_update_is_kept() -> None:
    persistence = _ControlledPersistence()
    persistence.update_gate.set()

    async def scenario():
        session = BookingSession(persistence)
        session.appointments.put(_appointment("7"))
        return session, await session.update_status("7", "accepted")

    session, result = asyncio.run(scenario())

    assert result.ok
    assert session.appointments.get("7").status is AppointmentStatus.ACCEPTED


def test_unknown_appointment_update_is_not_found() -> None:
    session = BookingSession(_ControlledPersistence())
    result = asyncio.run(session.update_status("missing", "accepted"))
    assert result.reason is RejectReason.NOT_FOUND


def test_delete_removes_from_cache(api, availability_repo, make_booking) -> None:
    availability_repo.upsert_day(DATE, AvailabilityDay(time_slots=["09:00"]))

    async def scenario():
        session = BookingSession(_api_client(api))
        await session.refresh()
        booked = await session.book(make_booking(DATE, "09:00"))
        deleted = await session.delete(booked.value.id)
        missing = await session.delete(booked.value.id)
        return session, deleted, missing

    session, deleted, missing = asyncio.run(scenario())

    assert deleted.ok
    assert session.appointments.appointments == {}
    assert missing.reason is RejectReason.NOT_FOUND


def test_poller_refreshes_session(api, availability_repo) -> None:
    availability_repo.upsert_day(DATE, AvailabilityDay(time_slots=["09:00"]))

    async def scenario():
        session = BookingSession(_api_client(api))
        poller = session.poller(interval_seconds=60)
        runner = asyncio.create_task(poller.run())
        while poller.runs < 1:
            await asyncio.sleep(0.01)
        poller.cancel()
        await asyncio.wait_for(runner, timeout=1)
        return session

    session = asyncio.run(scenario())
    assert session.bookable_slots(DATE) == ["09:00"]


def test_client_from_settings_uses_api_base_url() -> None:
    from app.config import Settings

    client = BookingApiClient.from_settings(Settings(api_base_url="http://booking.local:9000"))
    assert client.client.base_url.host == "booking.local"
    assert client.client.base_url.port == 9000
    asyncio.run(client.aclose())
