from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Optional

from dotenv import load_dotenv

from fastapi import BackgroundTasks, Body, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

load_dotenv()

from .booking.analytics import summarize
from .booking.errors import (
    NetworkUnavailable,
    PersistenceError,
    RejectReason,
    Rejection,
    SlotTakenError,
    StatusConflictError,
)
from .booking.validator import NOTIFY_ON, transition_status, validate_and_reserve
from .config import settings
from .db.repository import AppointmentRepository, AvailabilityRepository, build_repositories
from .notifications import SmsNotifier, mask_phone, notify_safely
from .polling import PeriodicTask
from .reminders import ReminderChecker
from .schemas import (
    Appointment,
    AppointmentCreate,
    AppointmentStatus,
    AppointmentUpdate,
    AvailabilityDay,
    check_date,
)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

availability_repo, appointment_repo = build_repositories(settings)
notifier = SmsNotifier.from_settings(settings)


def get_availability_repo() -> AvailabilityRepository:
    return availability_repo


def get_appointment_repo() -> AppointmentRepository:
    return appointment_repo


def get_notifier() -> SmsNotifier:
    return notifier


@asynccontextmanager
async def lifespan(app: FastAPI):
    reminder_task: Optional[PeriodicTask] = None
    runner: Optional[asyncio.Task] = None
    if settings.reminders_enabled:
        checker = ReminderChecker(
            appointment_repo,
            notifier,
            window_start_minutes=settings.reminder_window_start_minutes,
            window_end_minutes=settings.reminder_window_end_minutes,
        )
        reminder_task = PeriodicTask(checker.check_async, settings.reminder_interval_seconds, name="reminders")
        runner = asyncio.create_task(reminder_task.run())
    logger.info("Booking API starting (%s, %s persistence)", settings.environment, settings.persistence_backend)
    try:
        yield
    finally:
        if reminder_task and runner:
            reminder_task.cancel()
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass


app = FastAPI(title="Booking API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    logger.info("[%s %s] Rejected invalid input: %s", request.method, request.url.path, message)
    return JSONResponse(
        status_code=400,
        content={
            "error": f"{field}: {message}" if field else message,
            "reason": RejectReason.INVALID_INPUT.value,
        },
    )


@app.exception_handler(NetworkUnavailable)
async def network_unavailable_handler(request: Request, exc: NetworkUnavailable) -> JSONResponse:
    logger.error("[%s %s] Persistence unreachable: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"error": "Database unavailable", "details": str(exc)})


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("[%s %s] Persistence error: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


def _rejected(rejection: Rejection, status_code: int = 400) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": rejection.message, "reason": rejection.reason.value},
    )


def _slot_taken(exc: SlotTakenError) -> JSONResponse:
    logger.warning("Slot %s %s taken at write time", exc.date, exc.time)
    return JSONResponse(status_code=400, content={"error": "This time slot is already booked", "reason": "SlotTaken"})


def _check_range(start_date: Optional[str], end_date: Optional[str]) -> None:
    try:
        for value in (start_date, end_date):
            if value:
                check_date(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/api/availability")
def list_availability(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    repo: AvailabilityRepository = Depends(get_availability_repo),
) -> dict:
    _check_range(start_date, end_date)
    days = repo.list_days(start_date, end_date)
    logger.info("[GET /api/availability] Returning %d date(s)", len(days))
    return {"availability": {date: day.to_wire() for date, day in sorted(days.items())}}


@app.post("/api/availability")
def save_availability(
    payload: Any = Body(default=None),
    repo: AvailabilityRepository = Depends(get_availability_repo),
) -> JSONResponse:
    availability = payload.get("availability") if isinstance(payload, dict) else None
    if not isinstance(availability, dict):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Availability data is required. Expected format: "
                '{ availability: { "YYYY-MM-DD": { timeSlots: [...], closed: false } } }'
            },
        )

    saved: dict[str, dict] = {}
    cleared: list[str] = []
    errors: list[dict] = []
    logger.info("[POST /api/availability] Processing %d date(s)", len(availability))
    for date, raw_day in availability.items():
        try:
            check_date(date)
            day = AvailabilityDay.model_validate(raw_day or {})
        except (ValueError, ValidationError) as exc:
            errors.append({"date": date, "error": str(exc).splitlines()[0]})
            continue
        try:
            if day.is_empty:
                repo.delete_day(date)
                cleared.append(date)
            else:
                saved[date] = repo.upsert_day(date, day).to_wire()
        except PersistenceError as exc:
            logger.warning("[POST /api/availability] Error saving date %s: %s", date, exc)
            errors.append({"date": date, "error": str(exc)})

    if errors and not saved and not cleared:
        return JSONResponse(status_code=500, content={"error": "Failed to save availability", "details": errors})

    logger.info(
        "[POST /api/availability] Saved %d date(s), cleared %d, %d error(s)", len(saved), len(cleared), len(errors)
    )
    body: dict[str, Any] = {"availability": dict(sorted(saved.items()))}
    if errors:
        body["errors"] = errors
        body["message"] = (
            f"Saved {len(saved) + len(cleared)} date(s) successfully, {len(errors)} date(s) failed"
        )
        return JSONResponse(status_code=207, content=body)
    return JSONResponse(status_code=200, content=body)


@app.get("/api/analytics")
def analytics_summary(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    client: Optional[str] = None,
    repo: AppointmentRepository = Depends(get_appointment_repo),
) -> dict:
    _check_range(start_date, end_date)
    summary = summarize(repo.list_appointments(start_date=start_date, end_date=end_date), client_email=client)
    return {
        **asdict(summary),
        "returning_clients": summary.returning_clients,
        "retention_rate": round(summary.retention_rate, 1),
    }


@app.get("/api/appointments", response_model=list[Appointment])
def list_appointments(
    status: Optional[AppointmentStatus] = None,
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    repo: AppointmentRepository = Depends(get_appointment_repo),
) -> list[Appointment]:
    _check_range(start_date, end_date)
    appointments = repo.list_appointments(status.value if status else None, start_date, end_date)
    logger.info("[GET /api/appointments] Returning %d appointment(s)", len(appointments))
    return sorted(appointments, key=lambda appointment: (appointment.date, appointment.time))


@app.post("/api/appointments", response_model=Appointment, status_code=201)
def create_appointment(
    payload: AppointmentCreate,
    background_tasks: BackgroundTasks,
    availability: AvailabilityRepository = Depends(get_availability_repo),
    repo: AppointmentRepository = Depends(get_appointment_repo),
    sms: SmsNotifier = Depends(get_notifier),
):
    logger.info(
        "[POST /api/appointments] Booking request for %s at %s %s (%s)",
        payload.service,
        payload.date,
        payload.time,
        mask_phone(payload.customer.phone),
    )
    if not payload.service.strip():
        return JSONResponse(status_code=400, content={"error": "Service, date, and time are required"})

    check = validate_and_reserve(
        payload.date,
        availability.get_day(payload.date),
        repo.list_appointments(start_date=payload.date, end_date=payload.date),
        payload.time,
        payload.customer,
    )
    if isinstance(check, Rejection):
        logger.info("[POST /api/appointments] Rejected: %s", check.reason.value)
        return _rejected(check)

    try:
        created = repo.create(payload)
    except SlotTakenError as exc:
        return _slot_taken(exc)

    logger.info("[POST /api/appointments] Created appointment %s on %s at %s", created.id, created.date, created.time)
    background_tasks.add_task(notify_safely, sms.send_confirmation, created)
    return created


@app.patch("/api/appointments/{appointment_id}", response_model=Appointment)
def update_appointment(
    appointment_id: str,
    payload: AppointmentUpdate,
    background_tasks: BackgroundTasks,
    repo: AppointmentRepository = Depends(get_appointment_repo),
    sms: SmsNotifier = Depends(get_notifier),
):
    current = repo.get(appointment_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Appointment not found")

    changes = payload.changes()
    if payload.status is not None:
        outcome = transition_status(current, payload.status)
        if isinstance(outcome, Rejection):
            return _rejected(outcome, status_code=409)
        if outcome.value.status == current.status:
            changes.pop("status")

    if not changes:
        return current

    expected_status = current.status.value if "status" in changes else None
    try:
        updated = repo.update(appointment_id, changes, expected_status=expected_status)
    except SlotTakenError as exc:
        return _slot_taken(exc)
    except StatusConflictError as exc:
        logger.warning("[PATCH /api/appointments/%s] %s", appointment_id, exc)
        return _rejected(
            Rejection(RejectReason.ILLEGAL_TRANSITION, "Appointment status changed, reload and try again"),
            status_code=409,
        )
    if updated is None:
        raise HTTPException(status_code=404, detail="Appointment not found")

    logger.info("[PATCH /api/appointments/%s] Status now %s", appointment_id, updated.status.value)
    if updated.status != current.status and updated.status in NOTIFY_ON:
        send = sms.for_status(updated.status)
        if send is not None:
            background_tasks.add_task(notify_safely, send, updated)
    return updated


@app.delete("/api/appointments/{appointment_id}", status_code=204)
def delete_appointment(
    appointment_id: str,
    repo: AppointmentRepository = Depends(get_appointment_repo),
) -> Response:
    if not repo.delete(appointment_id):
        raise HTTPException(status_code=404, detail="Appointment not found")
    logger.info("[DELETE /api/appointments/%s] Deleted", appointment_id)
    return Response(status_code=204)
